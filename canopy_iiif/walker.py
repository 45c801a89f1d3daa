"""
Flattens a IIIF collection graph into an ordered list of manifest tasks.
"""

import logging
from collections.abc import Iterator
from typing import Protocol

from canopy_iiif.fetch import is_http_uri
from canopy_iiif.logs import Console
from canopy_iiif.normalize import Normalizer, resource_id, resource_type

log = logging.getLogger(__name__)

_EXHAUSTED: object = object()


class Task:
    """One manifest to resolve and render, with the id of the collection that listed it."""

    __slots__ = ('id', 'parent')

    def __init__(self, id: str, parent: str = '') -> None:
        self.id: str = id
        self.parent: str = parent

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Task) and (self.id, self.parent) == (other.id, other.parent)

    def __hash__(self) -> int:
        return hash((self.id, self.parent))

    def __repr__(self) -> str:
        return f'Task(id={self.id!r}, parent={self.parent!r})'


class JsonSource(Protocol):
    async def read_json(self, uri: str) -> dict | None: ...


class CollectionWalker:
    """
    Walks `items` depth-first with an explicit stack, so nesting depth isn't bounded by recursion.
    - Manifest children become tasks, in item-array order.
    - Collection children are dereferenced, normalized, and walked in place.
    - Untyped children with an http(s) id are dereferenced and re-dispatched on the resolved type.
    - Collection ids already seen are skipped (cycles, duplicate links); so are repeated manifest ids.
    - A branch that can't be fetched is reported and skipped; siblings carry on.
    """

    def __init__(self, source: JsonSource, normalizer: Normalizer, console: Console | None = None) -> None:
        self.source: JsonSource = source
        self.normalizer: Normalizer = normalizer
        self.console: Console | None = console

    async def collect_tasks(self, root_collection: dict, root_id: str = '') -> list[Task]:
        """
        Returns the manifest tasks reachable from `root_collection`.
        Called by: build.build_iiif_collection_pages()
        """
        tasks: list[Task] = []
        emitted: set[str] = set()
        visited: set[str] = set()
        stack: list[tuple[str, Iterator[object]]] = []

        root_key: str = resource_id(root_collection) or root_id
        if root_key:
            visited.add(root_key)
        if root_id:
            visited.add(root_id)
        stack.append((root_key, self._items(root_collection)))

        while stack:
            collection_id, items = stack[-1]
            item: object = next(items, _EXHAUSTED)
            if item is _EXHAUSTED:
                stack.pop()
                continue
            if not isinstance(item, dict):
                continue
            item_type: str = resource_type(item)
            item_id: str = resource_id(item)

            if 'Manifest' in item_type:
                self._emit(tasks, emitted, item_id, collection_id)
            elif 'Collection' in item_type:
                frame: tuple[str, Iterator[object]] | None = await self._enter_collection(item_id, visited)
                if frame is not None:
                    stack.append(frame)
            elif is_http_uri(item_id):
                if item_id in visited or item_id in emitted:
                    continue
                resolved: object = await self._dereference(item_id)
                resolved_type: str = resource_type(resolved)
                if 'Collection' in resolved_type:
                    frame = self._frame_for(item_id, resolved, visited)
                    if frame is not None:
                        stack.append(frame)
                elif 'Manifest' in resolved_type:
                    self._emit(tasks, emitted, item_id, collection_id)
                else:
                    log.debug(f'ignoring ``{item_id}`` with unrecognized type ``{resolved_type}``')
        log.info(f'collected {len(tasks)} manifest task(s)')
        return tasks

    def _emit(self, tasks: list[Task], emitted: set[str], manifest_id: str, parent: str) -> None:
        if manifest_id in emitted:
            log.debug(f'manifest ``{manifest_id}`` already listed; skipping duplicate from ``{parent}``')
            return
        emitted.add(manifest_id)
        tasks.append(Task(manifest_id, parent))

    async def _enter_collection(self, ref_id: str, visited: set[str]) -> tuple[str, Iterator[object]] | None:
        if not ref_id:
            return None
        if ref_id in visited:
            log.debug(f'collection ``{ref_id}`` already visited')
            return None
        resolved: object = await self._dereference(ref_id)
        return self._frame_for(ref_id, resolved, visited)

    def _frame_for(self, ref_id: str, resolved: object, visited: set[str]) -> tuple[str, Iterator[object]] | None:
        if not isinstance(resolved, dict):
            visited.add(ref_id)
            return None
        collection_id: str = resource_id(resolved) or ref_id
        if collection_id in visited:
            visited.add(ref_id)
            return None
        visited.update({ref_id, collection_id})
        return (collection_id, self._items(resolved))

    async def _dereference(self, uri: str) -> object:
        """
        Fetches and normalizes a referenced resource; None (reported) when it can't be read.
        """
        fetched: dict | None = await self.source.read_json(uri)
        if fetched is None:
            log.warning(f'could not dereference ``{uri}``; skipping branch')
            if self.console is not None:
                self.console.response(uri, 'ERR', ok=False)
            return None
        return self.normalizer.normalize(fetched)

    @staticmethod
    def _items(collection: object) -> Iterator[object]:
        items: object = collection.get('items') if isinstance(collection, dict) else None
        return iter(items if isinstance(items, list) else [])
