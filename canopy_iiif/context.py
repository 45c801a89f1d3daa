"""
Per-build state, created once per build and torn down at the end.
"""

import logging
from pathlib import Path

import httpx

from canopy_iiif.cache import ManifestCache
from canopy_iiif.config import CanopyConfig
from canopy_iiif.fetch import JsonFetcher, build_client
from canopy_iiif.logs import Console
from canopy_iiif.normalize import Normalizer
from canopy_iiif.render import PageRenderer

log = logging.getLogger(__name__)


class BuildContext:
    """
    Bundles the collaborators one build run needs, so nothing is cached at module level.
    - Owns the `httpx.AsyncClient` behind the fetcher; `async with` closes it at build end.
    - Holds the manifest cache (index loaded on construction), normalizer, renderer, and console.
    - Accepts ready-made collaborators, which tests use to substitute doubles.
    """

    def __init__(
        self,
        config: CanopyConfig,
        *,
        console: Console | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        fetcher: JsonFetcher | None = None,
        renderer: PageRenderer | None = None,
        normalizer: Normalizer | None = None,
        progress: bool = True,
    ) -> None:
        self.config: CanopyConfig = config
        self.console: Console = console if console is not None else Console()
        self.progress: bool = progress
        self._client: httpx.AsyncClient | None = None
        if fetcher is None:
            self._client = build_client(config.timeout_s, transport=transport)
            fetcher = JsonFetcher(self._client, retries=config.retries)
        self.fetcher: JsonFetcher = fetcher
        self.cache: ManifestCache = ManifestCache(config.cache_dir)
        self.normalizer: Normalizer = normalizer if normalizer is not None else Normalizer()
        self.renderer: PageRenderer = (
            renderer if renderer is not None else PageRenderer(config.content_dir, config.out_dir)
        )

    @property
    def out_dir(self) -> Path:
        return self.config.out_dir

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> 'BuildContext':
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
