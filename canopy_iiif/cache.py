"""
On-disk cache of resolved IIIF manifests.

Layout under the cache root:
  manifests/<slug>.json     one pretty-printed manifest per file
  manifest-index.json       {"byId": {...}, "collection": {...} | null, "parents": {...}}

Every filesystem operation is best-effort: read failures are cache-misses and write failures
are logged, so a cold or corrupted cache only slows a build down.
"""

import asyncio
import json
import logging
import os
import shutil
from pathlib import Path

from canopy_iiif.slugs import allocate_slug, first_label_string

log = logging.getLogger(__name__)

INDEX_FILENAME: str = 'manifest-index.json'
MANIFESTS_DIRNAME: str = 'manifests'


class ManifestIndex:
    """
    Holds the persistent id -> slug bindings, the last-seen collection signature, and provenance.
    - `by_id`: manifest id -> slug; slugs are unique among current bindings.
    - `collection`: `{'uri', 'hash', 'updatedAt'}` for the configured source, or None.
    - `parents`: manifest id -> id of the collection it was found in.
    """

    def __init__(
        self,
        by_id: dict[str, str] | None = None,
        collection: dict[str, str] | None = None,
        parents: dict[str, str] | None = None,
    ) -> None:
        self.by_id: dict[str, str] = by_id if by_id is not None else {}
        self.collection: dict[str, str] | None = collection
        self.parents: dict[str, str] = parents if parents is not None else {}

    @classmethod
    def from_json(cls, data: object) -> 'ManifestIndex':
        """
        Builds an index from parsed JSON, tolerating missing or mistyped parts.
        """
        if not isinstance(data, dict):
            return cls()
        by_id: object = data.get('byId')
        collection: object = data.get('collection')
        parents: object = data.get('parents')
        return cls(
            by_id={str(k): str(v) for k, v in by_id.items()} if isinstance(by_id, dict) else {},
            collection=collection if isinstance(collection, dict) else None,
            parents={str(k): str(v) for k, v in parents.items()} if isinstance(parents, dict) else {},
        )

    def to_json(self) -> dict[str, object]:
        return {'byId': self.by_id, 'collection': self.collection, 'parents': self.parents}


class ManifestCache:
    """
    Owns the cached manifest files and the index file.
    - Loads the index once per build and keeps it in memory; writes it back after each change.
    - Binds slugs synchronously, so concurrent workers on one event loop never interleave updates.
    - Self-heals: an index entry whose file is missing or unreadable is just a miss.
    - `flush()` drops every manifest file and binding, leaving the collection signature alone.
    """

    def __init__(self, cache_dir: Path) -> None:
        self.cache_dir: Path = Path(cache_dir)
        self.manifests_dir: Path = self.cache_dir / MANIFESTS_DIRNAME
        self.index_path: Path = self.cache_dir / INDEX_FILENAME
        self.index: ManifestIndex = self.load_index()

    def load_index(self) -> ManifestIndex:
        """
        Reads the persisted index; absent or unparseable means empty.
        """
        try:
            with self.index_path.open('r', encoding='utf-8') as fh:
                data: object = json.load(fh)
        except FileNotFoundError:
            return ManifestIndex()
        except (OSError, ValueError) as exc:
            log.warning(f'ignoring unreadable manifest index ``{self.index_path}``; err, ``{exc}``')
            return ManifestIndex()
        return ManifestIndex.from_json(data)

    def save_index(self) -> None:
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            tmp_path: Path = self.index_path.with_suffix('.json.tmp')
            with tmp_path.open('w', encoding='utf-8') as fh:
                json.dump(self.index.to_json(), fh, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.index_path)
        except OSError as exc:
            log.warning(f'could not save manifest index ``{self.index_path}``; err, ``{exc}``')

    def manifest_path(self, slug: str) -> Path:
        return self.manifests_dir / f'{slug}.json'

    def slug_for_id(self, manifest_id: str) -> str | None:
        return self.index.by_id.get(manifest_id)

    def get(self, manifest_id: str) -> dict | None:
        """
        Returns the cached manifest for `manifest_id`, or None on any kind of miss.
        Called by: RenderPool
        """
        if not manifest_id:
            return None
        slug: str | None = self.slug_for_id(manifest_id)
        if not slug:
            return None
        path: Path = self.manifest_path(slug)
        try:
            with path.open('r', encoding='utf-8') as fh:
                manifest: object = json.load(fh)
        except FileNotFoundError:
            log.debug(f'index entry for ``{manifest_id}`` has no file at ``{path}``')
            return None
        except (OSError, ValueError) as exc:
            log.debug(f'unreadable cached manifest ``{path}``; err, ``{exc}``')
            return None
        return manifest if isinstance(manifest, dict) else None

    def bind(self, manifest: dict, manifest_id: str, parent: str | None = None) -> str:
        """
        Records the id -> slug binding (and parent) in memory and returns the slug.
        Synchronous, so concurrent workers on one event loop never interleave allocations.
        """
        title: str = first_label_string(manifest.get('label') if isinstance(manifest, dict) else None)
        slug: str = allocate_slug(title, manifest_id, self.index.by_id)
        self.index.by_id[manifest_id] = slug
        if parent:
            self.index.parents[manifest_id] = parent
        return slug

    def write_manifest(self, slug: str, manifest: dict) -> None:
        """
        Writes `manifests/<slug>.json`; failures are logged and leave a cache-miss behind.
        """
        try:
            self.manifests_dir.mkdir(parents=True, exist_ok=True)
            with self.manifest_path(slug).open('w', encoding='utf-8') as fh:
                json.dump(manifest, fh, ensure_ascii=False, indent=2)
        except (OSError, TypeError, ValueError) as exc:
            log.warning(f'could not cache manifest ``{slug}``; err, ``{exc}``')

    def put(self, manifest: dict, manifest_id: str, parent: str | None = None) -> str:
        """
        Stores `manifest` under a slug derived from its label, and returns that slug.

        The binding is recorded before anything touches the disk, so the returned slug is usable
        even when the write fails; the missing file is re-fetched next build.
        """
        slug: str = self.bind(manifest, manifest_id, parent)
        self.write_manifest(slug, manifest)
        self.save_index()
        return slug

    async def aput(self, manifest: dict, manifest_id: str, parent: str | None = None) -> str:
        """
        Same as `put()`, but the manifest file is written on a worker thread.
        The index is still saved on the event loop, after the binding, so saves never race.
        Called by: RenderPool
        """
        slug: str = self.bind(manifest, manifest_id, parent)
        await asyncio.to_thread(self.write_manifest, slug, manifest)
        self.save_index()
        return slug

    def flush(self) -> None:
        """
        Deletes every cached manifest and resets the id bindings.
        The index file itself is rewritten by the caller.
        Called by: signature.check_and_maybe_flush()
        """
        try:
            shutil.rmtree(self.manifests_dir)
        except FileNotFoundError:
            pass
        except OSError as exc:
            log.warning(f'could not flush ``{self.manifests_dir}``; err, ``{exc}``')
        try:
            self.manifests_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            log.warning(f'could not recreate ``{self.manifests_dir}``; err, ``{exc}``')
        self.index.by_id = {}
        self.index.parents = {}
