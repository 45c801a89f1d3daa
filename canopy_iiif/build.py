"""
Builds work pages from the configured IIIF Collection, then writes the search artifacts.

Usage:
  canopy-iiif --config canopy.yml
  python -m canopy_iiif --collection-uri https://example.org/iiif/collection.json --no-progress

Args:
  --config (optional) -- defaults to $CANOPY_CONFIG, then ./canopy.yml
  --collection-uri (optional) -- overrides collection.uri for this run
  --no-progress (optional) -- hides the chunk progress bar
"""

import argparse
import asyncio
import logging
import sys
import time

import httpx
import humanize

from canopy_iiif.config import CanopyConfig, load_config
from canopy_iiif.context import BuildContext
from canopy_iiif.errors import CollectionUnavailable
from canopy_iiif.logs import Console, setup_logging
from canopy_iiif.normalize import resource_id
from canopy_iiif.pool import RenderPool
from canopy_iiif.search import SearchRecord, build_search_page, collect_page_records, write_search_index
from canopy_iiif.signature import check_and_maybe_flush
from canopy_iiif.walker import CollectionWalker, Task

log = logging.getLogger(__name__)


class BuildSummary:
    """
    What a build produced, for the closing console lines.
    """

    def __init__(self) -> None:
        self.records: list[SearchRecord] = []
        self.pages_written: int = 0
        self.bytes_written: int = 0
        self.failures: int = 0
        self.elapsed_s: float = 0.0

    def describe(self) -> str:
        return (
            f'Built {humanize.intcomma(self.pages_written)} work page(s) '
            f'({humanize.naturalsize(self.bytes_written)}) in {humanize.naturaldelta(self.elapsed_s)}; '
            f'{self.failures} skipped.'
        )


async def build_iiif_collection_pages(context: BuildContext, summary: BuildSummary | None = None) -> list[SearchRecord]:
    """
    Runs the IIIF stage and returns the search records of the pages it wrote.

    Flow:
    - Skips (returns []) when there's no works layout or no collection configured.
    - Fetches the source collection; skips when it can't be obtained.
    - Normalizes it, applies the cache invalidation rule, and stores the new signature.
    - Walks the collection graph into manifest tasks.
    - Renders the tasks chunk by chunk.

    Never raises for anything the stage itself runs into.
    Called by: run_build()
    """
    config: CanopyConfig = context.config
    console: Console = context.console

    ## preconditions -------------------------------------------------
    if not context.renderer.has_works_layout():
        console.line(f'IIIF: No {context.renderer.works_layout_path} found; skipping IIIF page build.', 'yellow')
        return []
    collection_uri: str = config.collection_uri
    try:
        if not collection_uri:
            raise CollectionUnavailable('no collection configured')
        collection: dict | None = await context.fetcher.read_json(collection_uri)
        if collection is None:
            raise CollectionUnavailable(f'could not read ``{collection_uri}``')
    except CollectionUnavailable as exc:
        log.warning(f'IIIF stage skipped; err, ``{exc}``')
        console.warn('IIIF: No collection available; skipping.')
        return []

    console.line('\n-- Building Canopy from IIIF Collection...\n', 'cyan')
    console.line(f'{collection_uri}\n', 'white')
    console.line('Creating Manifest listing...\n', 'cyan')

    ## normalize and apply the invalidation rule ---------------------
    normalized: object = context.normalizer.normalize(collection)
    if not isinstance(normalized, dict):
        normalized = collection
    check_and_maybe_flush(collection_uri, normalized, context.cache, console)

    ## walk the graph ------------------------------------------------
    walker: CollectionWalker = CollectionWalker(context.fetcher, context.normalizer, console)
    tasks: list[Task] = await walker.collect_tasks(normalized, resource_id(normalized) or collection_uri)

    ## render --------------------------------------------------------
    pool: RenderPool = RenderPool(context)
    records: list[SearchRecord] = await pool.render_all(tasks, config.chunk_size, config.concurrency)
    if summary is not None:
        summary.pages_written += pool.pages_written
        summary.bytes_written += pool.bytes_written
        summary.failures += pool.failures
    return records


async def run_build(
    config: CanopyConfig,
    *,
    console: Console | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    progress: bool = True,
) -> BuildSummary:
    """
    Runs the IIIF stage inside a fresh build context, then writes search-index.json and search.html.
    Called by: main()
    """
    start: float = time.monotonic()
    summary: BuildSummary = BuildSummary()
    async with BuildContext(config, console=console, transport=transport, progress=progress) as context:
        work_records: list[SearchRecord] = await build_iiif_collection_pages(context, summary)
        page_records: list[SearchRecord] = collect_page_records(config.content_dir)
        summary.records = work_records + page_records
        write_search_index(summary.records, config.out_dir)
        build_search_page(context.renderer, config.out_dir)
    summary.elapsed_s = time.monotonic() - start
    return summary


class CLI:
    """
    Manages command-line parsing for the entrypoint.
    - Accepts an optional config path and a collection-uri override.
    - Accepts a flag to hide the progress bar (useful in CI logs).
    - Exposes a parse helper to support testing with custom argv.
    """

    @staticmethod
    def build_parser() -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(description='Build static work pages from a IIIF Collection.')
        parser.add_argument('--config', default=None, help='Path to canopy.yml (default: $CANOPY_CONFIG or ./canopy.yml)')
        parser.add_argument('--collection-uri', default=None, help='IIIF Collection URI or local path; overrides config')
        parser.add_argument('--no-progress', action='store_true', help='Hide the chunk progress bar')
        return parser

    @staticmethod
    def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
        return CLI.build_parser().parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """
    Loads config, runs the build, and prints a summary.
    Returns 1 only when the content directory is missing; IIIF problems degrade instead.
    Called by: dundermain, console script
    """
    setup_logging()
    args: argparse.Namespace = CLI.parse_args(argv)
    config: CanopyConfig = load_config(args.config)
    if args.collection_uri:
        config.collection_uri = args.collection_uri.strip()
    if not config.content_dir.is_dir():
        print(f'No content directory found at {config.content_dir.resolve()}', file=sys.stderr)
        return 1
    console: Console = Console()
    summary: BuildSummary = asyncio.run(run_build(config, console=console, progress=not args.no_progress))
    console.line(summary.describe(), 'green', bright=True)
    console.line(f'Search index: {config.out_dir / "search-index.json"} ({len(summary.records)} record(s))', 'white')
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
