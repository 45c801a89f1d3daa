"""
Title extraction and slug allocation for manifest pages.
"""

import logging

from slugify import slugify

log = logging.getLogger(__name__)

DEFAULT_TITLE: str = 'Untitled'
DEFAULT_SLUG: str = 'untitled'


def first_label_string(label: object) -> str:
    """
    Returns the first usable string from a IIIF label.

    Handles the shapes seen across Presentation versions:
    - v3 language map: `{"en": ["Title", ...]}` -> first key's first entry.
    - plain string (v2, or loose v3).
    - v2 value object `{"@value": "Title", "@language": "en"}`, or a list of those/strings.
    Falls back to "Untitled".
    """
    if not label:
        return DEFAULT_TITLE
    if isinstance(label, str):
        return label
    if isinstance(label, list):
        for entry in label:
            found: str = first_label_string(entry)
            if found != DEFAULT_TITLE:
                return found
        return DEFAULT_TITLE
    if isinstance(label, dict):
        if '@value' in label:
            value: object = label.get('@value')
            return str(value) if value else DEFAULT_TITLE
        keys: list[str] = list(label.keys())
        if not keys:
            return DEFAULT_TITLE
        first: object = label[keys[0]]
        if isinstance(first, list) and first:
            return str(first[0])
        if isinstance(first, str) and first:
            return first
    return DEFAULT_TITLE


def base_slug(title: str | None) -> str:
    """
    Lowercase, diacritics-stripped, hyphenated slug; "untitled" when nothing survives.
    """
    slug: str = slugify(title or DEFAULT_SLUG, lowercase=True)
    return slug or DEFAULT_SLUG


def allocate_slug(title: str | None, manifest_id: str, by_id: dict[str, str]) -> str:
    """
    Picks the filename slug for `manifest_id`, given the current id -> slug bindings.

    An id that is already bound keeps its slug, even if its title changed since. Otherwise the
    base slug is tried, then `-1`, `-2`, ... until one is free or already owned by this id.
    Does not mutate `by_id`.
    Called by: ManifestCache.put(), RenderPool
    """
    existing: str | None = by_id.get(manifest_id)
    if existing:
        return existing
    owners: dict[str, str] = {slug: owner for owner, slug in by_id.items()}
    base: str = base_slug(title)
    slug: str = base
    i: int = 1
    while slug in owners and owners[slug] != manifest_id:
        slug = f'{base}-{i}'
        i += 1
    log.debug(f'allocated slug ``{slug}`` for ``{manifest_id}``')
    return slug
