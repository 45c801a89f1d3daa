"""
Build configuration: `canopy.yml` (or $CANOPY_CONFIG) plus environment overrides.

Example `canopy.yml`:

    collection:
      uri: https://iiif.io/api/cookbook/recipe/0032-collection/collection.json
    iiif:
      chunkSize: 10
      concurrency: 6
      timeout: 30
      retries: 0
    paths:
      content: content
      output: site
      cache: .cache/iiif

Environment variables are read once, when the config is loaded, and are never written back:
CANOPY_COLLECTION_URI, CANOPY_CHUNK_SIZE, CANOPY_FETCH_CONCURRENCY, CANOPY_FETCH_TIMEOUT.
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path

import yaml

log = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME: str = 'canopy.yml'
DEFAULT_COLLECTION_URI: str = 'https://iiif.io/api/cookbook/recipe/0032-collection/collection.json'
DEFAULT_CHUNK_SIZE: int = 10
DEFAULT_CONCURRENCY: int = 6
DEFAULT_TIMEOUT_S: float = 30.0
DEFAULT_RETRIES: int = 0


class CanopyConfig:
    """
    Resolved settings for one build.
    - `collection_uri`: URI or local path of the source IIIF Collection ('' means none configured).
    - `chunk_size` / `concurrency`: render-pool knobs, both >= 1.
    - `timeout_s` / `retries`: per-request fetch hardening.
    - `content_dir` / `out_dir` / `cache_dir`: where layouts live, pages go, and manifests are cached.
    - `source`: the config file that was read, if any.
    """

    def __init__(
        self,
        collection_uri: str = DEFAULT_COLLECTION_URI,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        concurrency: int = DEFAULT_CONCURRENCY,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        retries: int = DEFAULT_RETRIES,
        content_dir: Path = Path('content'),
        out_dir: Path = Path('site'),
        cache_dir: Path = Path('.cache/iiif'),
        source: Path | None = None,
    ) -> None:
        self.collection_uri: str = collection_uri
        self.chunk_size: int = max(1, chunk_size)
        self.concurrency: int = max(1, concurrency)
        self.timeout_s: float = timeout_s
        self.retries: int = max(0, retries)
        self.content_dir: Path = Path(content_dir)
        self.out_dir: Path = Path(out_dir)
        self.cache_dir: Path = Path(cache_dir)
        self.source: Path | None = source

    def __repr__(self) -> str:
        return (
            f'CanopyConfig(collection_uri={self.collection_uri!r}, chunk_size={self.chunk_size}, '
            f'concurrency={self.concurrency}, timeout_s={self.timeout_s}, retries={self.retries})'
        )


def read_yaml(path: Path) -> dict:
    """
    Returns the mapping in a YAML file; {} when it is absent, empty, unreadable, or not a mapping.
    """
    if not path.exists():
        return {}
    try:
        with path.open('r', encoding='utf-8') as fh:
            data: object = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        log.warning(f'failed to read ``{path}``; using defaults. err, ``{exc}``')
        return {}
    return data if isinstance(data, dict) else {}


def _section(data: Mapping, key: str) -> Mapping:
    value: object = data.get(key)
    return value if isinstance(value, Mapping) else {}


def _positive_number(raw: object, default: int | float, label: str, cast: type = int) -> int | float:
    """
    Casts `raw` with `cast`; missing, non-numeric, or < 1 values give `default`.
    """
    if raw is None or raw == '':
        return default
    try:
        number = cast(raw)
    except (TypeError, ValueError):
        log.warning(f'ignoring non-numeric {label} ``{raw}``; using {default}')
        return default
    if number < 1:
        log.warning(f'ignoring {label} ``{raw}`` (must be >= 1); using {default}')
        return default
    return number


def load_config(path: str | Path | None = None, environ: Mapping[str, str] | None = None) -> CanopyConfig:
    """
    Loads `path` (else $CANOPY_CONFIG, else ./canopy.yml), then applies environment overrides.
    Called by: build.main()
    """
    env: Mapping[str, str] = os.environ if environ is None else environ
    ## locate and read the config file ------------------------------
    config_path: Path = Path(path or env.get('CANOPY_CONFIG') or DEFAULT_CONFIG_FILENAME).expanduser()
    data: dict = read_yaml(config_path)
    source: Path | None = config_path if data else None
    if source:
        log.info(f'loaded config from ``{config_path}``')
    collection: Mapping = _section(data, 'collection')
    iiif: Mapping = _section(data, 'iiif')
    paths: Mapping = _section(data, 'paths')

    ## file values, falling back to defaults ------------------------
    collection_uri: str = str(collection.get('uri') if collection.get('uri') is not None else DEFAULT_COLLECTION_URI)
    chunk_size = _positive_number(iiif.get('chunkSize'), DEFAULT_CHUNK_SIZE, 'iiif.chunkSize')
    concurrency = _positive_number(iiif.get('concurrency'), DEFAULT_CONCURRENCY, 'iiif.concurrency')
    timeout_s = _positive_number(iiif.get('timeout'), DEFAULT_TIMEOUT_S, 'iiif.timeout', cast=float)
    retries_raw: object = iiif.get('retries')
    retries: int = DEFAULT_RETRIES
    if retries_raw is not None:
        try:
            retries = max(0, int(retries_raw))
        except (TypeError, ValueError):
            log.warning(f'ignoring non-numeric iiif.retries ``{retries_raw}``')

    ## environment overrides ----------------------------------------
    if env.get('CANOPY_COLLECTION_URI'):
        collection_uri = str(env['CANOPY_COLLECTION_URI'])
        log.info('using collection URI from CANOPY_COLLECTION_URI')
    chunk_size = _positive_number(env.get('CANOPY_CHUNK_SIZE'), chunk_size, 'CANOPY_CHUNK_SIZE')
    concurrency = _positive_number(env.get('CANOPY_FETCH_CONCURRENCY'), concurrency, 'CANOPY_FETCH_CONCURRENCY')
    timeout_s = _positive_number(env.get('CANOPY_FETCH_TIMEOUT'), timeout_s, 'CANOPY_FETCH_TIMEOUT', cast=float)

    return CanopyConfig(
        collection_uri=collection_uri.strip(),
        chunk_size=int(chunk_size),
        concurrency=int(concurrency),
        timeout_s=float(timeout_s),
        retries=retries,
        content_dir=Path(str(paths.get('content') or 'content')),
        out_dir=Path(str(paths.get('output') or 'site')),
        cache_dir=Path(str(paths.get('cache') or '.cache/iiif')),
        source=source,
    )
