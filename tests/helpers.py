"""
Test doubles and fixtures shared by the test modules.
"""

import asyncio
import copy
import io
from pathlib import Path

from canopy_iiif.config import CanopyConfig
from canopy_iiif.fetch import FetchResult
from canopy_iiif.logs import Console

WORKS_LAYOUT_HTML: str = (
    '{% set head %}<meta name="iiif-manifest" content="{{ manifest.id }}">{% endset %}'
    '<article><h1>{{ title }}</h1>{{ components.Viewer(manifest) }}</article>'
)


def quiet_console() -> Console:
    return Console(stream=io.StringIO(), color=False)


def make_config(root: Path, collection_uri: str = 'http://x/collection', **kwargs: object) -> CanopyConfig:
    return CanopyConfig(
        collection_uri=collection_uri,
        content_dir=root / 'content',
        out_dir=root / 'site',
        cache_dir=root / '.cache' / 'iiif',
        **kwargs,
    )


def write_works_layout(content_dir: Path, source: str = WORKS_LAYOUT_HTML) -> Path:
    path: Path = content_dir / 'works' / '_layout.html'
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(source, encoding='utf-8')
    return path


class FakeSource:
    """
    Dict-backed stand-in for `JsonFetcher.read_json()`; unknown uris read as None.
    """

    def __init__(self, docs: dict[str, dict]) -> None:
        self.docs: dict[str, dict] = docs
        self.calls: list[str] = []

    async def read_json(self, uri: str) -> dict | None:
        self.calls.append(uri)
        await asyncio.sleep(0)
        doc: dict | None = self.docs.get(uri)
        return copy.deepcopy(doc) if doc is not None else None


class FakeFetcher(FakeSource):
    """
    Also answers `fetch()`; ids in `raising` throw, and every call records start/end events.
    """

    def __init__(self, docs: dict[str, dict], raising: set[str] | None = None, delays: dict[str, int] | None = None) -> None:
        super().__init__(docs)
        self.raising: set[str] = raising or set()
        self.delays: dict[str, int] = delays or {}
        self.events: list[tuple[str, str]] = []

    async def fetch(self, uri: str) -> FetchResult:
        self.events.append(('start', uri))
        try:
            for _ in range(self.delays.get(uri, 1)):
                await asyncio.sleep(0)
            if uri in self.raising:
                raise RuntimeError(f'boom: {uri}')
            doc: dict | None = self.docs.get(uri)
            if doc is None:
                return FetchResult(uri, status=404, error='http 404')
            return FetchResult(uri, status=200, data=copy.deepcopy(doc))
        finally:
            self.events.append(('end', uri))


def manifest(manifest_id: str, title: str | None = None) -> dict:
    doc: dict = {'id': manifest_id, 'type': 'Manifest'}
    if title is not None:
        doc['label'] = {'en': [title]}
    return doc
