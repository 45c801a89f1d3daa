"""
Best-effort IIIF Presentation v2 -> v3 normalization.

A `Normalizer` tries an ordered list of strategies. Each strategy returns the normalized
resource, or None when it doesn't apply; a strategy that raises is skipped. When nothing
applies the resource comes back unchanged, so downstream code must cope with either shape.

Only the parts the build reads are upgraded (ids, types, labels, collection members);
everything else is carried over as-is.
"""

import logging
from collections.abc import Callable

log = logging.getLogger(__name__)

PRESENTATION_2_CONTEXT: str = 'http://iiif.io/api/presentation/2/context.json'
PRESENTATION_3_CONTEXT: str = 'http://iiif.io/api/presentation/3/context.json'

V2_TYPE_MAP: dict[str, str] = {
    'sc:Collection': 'Collection',
    'sc:Manifest': 'Manifest',
    'sc:Canvas': 'Canvas',
    'sc:Sequence': 'Sequence',
    'sc:Range': 'Range',
    'oa:Annotation': 'Annotation',
}
V2_MEMBER_KEYS: tuple[str, ...] = ('collections', 'manifests', 'members')

Strategy = Callable[[dict], dict | None]


def _contexts(resource: dict) -> list[str]:
    ctx: object = resource.get('@context')
    if isinstance(ctx, str):
        return [ctx]
    if isinstance(ctx, list):
        return [c for c in ctx if isinstance(c, str)]
    return []


def _v3_type(value: object) -> str:
    type_str: str = str(value or '')
    if type_str in V2_TYPE_MAP:
        return V2_TYPE_MAP[type_str]
    return type_str.split(':', 1)[-1] if type_str.startswith('sc:') else type_str


def upgrade_label(label: object) -> object:
    """
    Turns a v2 label into a v3 language map.
    - 'Title' -> {'none': ['Title']}
    - {'@value': 'Title', '@language': 'en'} -> {'en': ['Title']}
    - a list of strings/value objects is grouped by language, keeping order.
    v3 language maps and empty labels are returned untouched.
    """
    if label is None or label == '':
        return label
    if isinstance(label, str):
        return {'none': [label]}
    entries: list[object]
    if isinstance(label, dict):
        if '@value' not in label:
            return label
        entries = [label]
    elif isinstance(label, list):
        entries = label
    else:
        return {'none': [str(label)]}
    out: dict[str, list[str]] = {}
    for entry in entries:
        if isinstance(entry, dict):
            lang: str = str(entry.get('@language') or 'none')
            out.setdefault(lang, []).append(str(entry.get('@value', '')))
        elif entry is not None:
            out.setdefault('none', []).append(str(entry))
    return out


def _upgrade_reference(ref: object, default_type: str = '') -> object:
    if isinstance(ref, str):
        return {'id': ref, 'type': default_type} if default_type else {'id': ref}
    if not isinstance(ref, dict):
        return ref
    return upgrade_resource(ref, default_type)


def upgrade_resource(resource: dict, default_type: str = '') -> dict:
    """
    Upgrades one v2 resource (and its collection members) to v3 keys.
    Called by: upgrade_presentation2(), upgrade_legacy_types()
    """
    out: dict[str, object] = {}
    for key, value in resource.items():
        if key in ('@context', '@id', '@type') or key in V2_MEMBER_KEYS:
            continue
        out[key] = value
    out['id'] = resource.get('@id') or resource.get('id') or ''
    out['type'] = _v3_type(resource.get('@type') or resource.get('type') or default_type)
    if 'label' in resource:
        out['label'] = upgrade_label(resource.get('label'))
    items: list[object] = list(resource.get('items') or []) if isinstance(resource.get('items'), list) else []
    for member_key, member_type in (('collections', 'Collection'), ('manifests', 'Manifest'), ('members', '')):
        members: object = resource.get(member_key)
        if isinstance(members, list):
            items.extend(_upgrade_reference(m, member_type) for m in members)
    if items:
        out['items'] = items
    return out


def upgrade_presentation2(resource: dict) -> dict | None:
    """Applies to resources whose @context names Presentation 2."""
    if not any('presentation/2' in ctx for ctx in _contexts(resource)):
        return None
    upgraded: dict = upgrade_resource(resource)
    return {'@context': PRESENTATION_3_CONTEXT, **upgraded}


def normalize_keys(resource: dict) -> dict | None:
    """Fills `id`/`type` from `@id`/`@type` on v3-style resources that only carry the JSON-LD keys."""
    if 'id' in resource and 'type' in resource:
        return None
    if '@id' not in resource and '@type' not in resource:
        return None
    if str(resource.get('@type', '')).startswith('sc:'):
        return None
    out: dict = dict(resource)
    out.setdefault('id', resource.get('@id', ''))
    out.setdefault('type', resource.get('@type', ''))
    return out


def upgrade_legacy_types(resource: dict) -> dict | None:
    """Context-less resources that still use `sc:` types."""
    if not str(resource.get('@type', '')).startswith('sc:'):
        return None
    return upgrade_resource(resource)


DEFAULT_STRATEGIES: tuple[Strategy, ...] = (upgrade_presentation2, normalize_keys, upgrade_legacy_types)


class Normalizer:
    """
    Runs the ordered strategy list with an identity fallback.
    - The first strategy returning a dict wins.
    - A strategy that raises is logged and the next one is tried.
    - Non-dict input (None, lists) passes straight through.
    """

    def __init__(self, strategies: tuple[Strategy, ...] | list[Strategy] = DEFAULT_STRATEGIES) -> None:
        self.strategies: list[Strategy] = list(strategies)

    def normalize(self, resource: object) -> object:
        if not isinstance(resource, dict):
            return resource
        for strategy in self.strategies:
            try:
                result: dict | None = strategy(resource)
            except Exception as exc:
                log.debug(f'normalize strategy ``{getattr(strategy, "__name__", strategy)}`` failed; err, ``{exc}``')
                continue
            if isinstance(result, dict):
                return result
        return resource


def resource_id(resource: object) -> str:
    if not isinstance(resource, dict):
        return ''
    return str(resource.get('id') or resource.get('@id') or '')


def resource_type(resource: object) -> str:
    if not isinstance(resource, dict):
        return ''
    return str(resource.get('type') or resource.get('@type') or '')
