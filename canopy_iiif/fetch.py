"""
JSON retrieval for collections and manifests: http(s) via httpx, or local files.
"""

import asyncio
import json
import logging
import re
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx

log = logging.getLogger(__name__)

HTTP_URI_RE: re.Pattern[str] = re.compile(r'^https?://', re.IGNORECASE)
USER_AGENT: str = 'canopy-iiif/0.1 (+https://iiif.io/)'
DEFAULT_TIMEOUT_S: float = 30.0


def is_http_uri(uri: object) -> bool:
    return bool(HTTP_URI_RE.match(str(uri or '')))


def build_client(timeout_s: float = DEFAULT_TIMEOUT_S, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """
    Creates the async client shared by one build (headers, timeouts, limits).
    `transport` lets tests swap in an `httpx.MockTransport`.
    """
    headers: dict[str, str] = {'user-agent': USER_AGENT, 'accept': 'application/json'}
    timeout: httpx.Timeout = httpx.Timeout(timeout_s)
    limits: httpx.Limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
    return httpx.AsyncClient(
        headers=headers, timeout=timeout, limits=limits, follow_redirects=True, transport=transport
    )


class FetchResult:
    """
    Outcome of one fetch: the HTTP status (None when no response arrived), parsed JSON on success,
    and a short error string otherwise.
    """

    def __init__(self, uri: str, status: int | None = None, data: object = None, error: str = '') -> None:
        self.uri: str = uri
        self.status: int | None = status
        self.data: object = data
        self.error: str = error

    @property
    def ok(self) -> bool:
        return self.status is not None and 200 <= self.status < 300 and not self.error

    @property
    def status_label(self) -> str:
        """For console lines: the status code when there was one, else 'ERR'."""
        return str(self.status) if self.status is not None else 'ERR'


class JsonFetcher:
    """
    Retrieves JSON documents without ever raising to the caller.
    - Sends `Accept: application/json` and follows redirects.
    - Treats non-2xx, timeouts, transport errors, and non-JSON bodies as failed results.
    - Retries 5xx and transport errors `retries` extra times, with capped exponential backoff.
    - Reads `file://` URIs and plain paths from disk.
    """

    def __init__(self, client: httpx.AsyncClient, retries: int = 0) -> None:
        self.client: httpx.AsyncClient = client
        self.retries: int = max(0, retries)

    async def fetch(self, uri: str) -> FetchResult:
        """
        GETs an http(s) URI and parses the body as JSON.
        Called by: read_json(), RenderPool
        """
        result: FetchResult = FetchResult(uri, error='not attempted')
        for attempt in range(1, self.retries + 2):
            result = await self._fetch_once(uri)
            retryable: bool = result.status is None or result.status >= 500
            if result.ok or not retryable or attempt > self.retries:
                break
            log.debug(f'retrying ``{uri}`` after attempt {attempt}; err, ``{result.error}``')
            await _sleep(min(2**attempt, 15))
        return result

    async def _fetch_once(self, uri: str) -> FetchResult:
        try:
            resp: httpx.Response = await self.client.get(uri, headers={'accept': 'application/json'})
        except httpx.TimeoutException as exc:
            log.debug(f'timeout fetching ``{uri}``; err, ``{exc!r}``')
            return FetchResult(uri, error='timeout')
        except httpx.HTTPError as exc:
            log.debug(f'transport error fetching ``{uri}``; err, ``{exc!r}``')
            return FetchResult(uri, error=type(exc).__name__)
        if not resp.is_success:
            return FetchResult(uri, status=resp.status_code, error=f'http {resp.status_code}')
        try:
            data: object = resp.json()
        except ValueError as exc:
            log.debug(f'non-json body from ``{uri}``; err, ``{exc}``')
            return FetchResult(uri, status=resp.status_code, error='invalid json')
        return FetchResult(uri, status=resp.status_code, data=data)

    async def read_json(self, uri: str) -> dict | None:
        """
        Returns the JSON object at `uri` (http(s), file:// or a local path), or None on any failure.
        Called by: build.build_iiif_collection_pages(), CollectionWalker
        """
        if not uri:
            return None
        if is_http_uri(uri):
            result: FetchResult = await self.fetch(uri)
            if not result.ok:
                log.debug(f'could not read ``{uri}``; err, ``{result.error}``')
                return None
            return result.data if isinstance(result.data, dict) else None
        path: Path = local_path_for(uri)
        try:
            with path.open('r', encoding='utf-8') as fh:
                data: object = json.load(fh)
        except (OSError, ValueError) as exc:
            log.debug(f'could not read ``{path}``; err, ``{exc}``')
            return None
        return data if isinstance(data, dict) else None


def local_path_for(uri: str) -> Path:
    if uri.startswith('file://'):
        return Path(unquote(urlparse(uri).path))
    return Path(uri).expanduser().resolve()


async def _sleep(backoff_s: float) -> None:
    """
    Sleeps for given seconds; centralizes sleep for easier tweaking.
    """
    await asyncio.sleep(backoff_s)
