"""
Source-collection signature and the cache invalidation rule.
"""

import hashlib
import json
import logging
from datetime import datetime, timezone

from canopy_iiif.cache import ManifestCache, ManifestIndex
from canopy_iiif.logs import Console

log = logging.getLogger(__name__)


def canonical_json(obj: object) -> str:
    """
    Serializes with object keys sorted at every depth (array order kept) and no whitespace,
    so key order and formatting of the source document don't affect the result.
    """
    return json.dumps(obj, sort_keys=True, separators=(',', ':'), ensure_ascii=False)


def compute_hash(obj: object) -> str:
    """
    Returns the sha256 hex digest of `canonical_json(obj)`, or '' when `obj` can't be serialized.
    """
    try:
        payload: str = canonical_json(obj)
    except (TypeError, ValueError) as exc:
        log.debug(f'could not hash collection; err, ``{exc}``')
        return ''
    return hashlib.sha256(payload.encode('utf-8')).hexdigest()


def _now_iso() -> str:
    """UTC, millisecond precision, 'Z' suffix; e.g. 2026-10-19T12:00:00.000Z"""
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def check_and_maybe_flush(
    collection_uri: str, normalized_collection: object, cache: ManifestCache, console: Console | None = None
) -> ManifestIndex:
    """
    Compares the current source against the stored signature and flushes the manifest cache
    when the source URI changed (or nothing was recorded yet).

    A different document at the same URI does NOT flush: manifests are picked up again one by
    one, and the hash is only stored for diagnostics.
    Called by: build.build_iiif_collection_pages()
    """
    current_hash: str = compute_hash(normalized_collection)
    previous: dict[str, str] | None = cache.index.collection
    uri_changed: bool = previous is None or previous.get('uri') != collection_uri
    if uri_changed:
        log.info(f'collection changed (previous: ``{previous.get("uri") if previous else None}``), flushing cache')
        if console is not None:
            console.warn('IIIF: collection changed, flushing cache.')
        cache.flush()
    elif previous.get('hash') != current_hash:
        log.debug(f'collection document changed at the same uri; keeping cache. hash, ``{current_hash}``')
    cache.index.collection = {'uri': collection_uri, 'hash': current_hash, 'updatedAt': _now_iso()}
    cache.save_index()
    return cache.index
