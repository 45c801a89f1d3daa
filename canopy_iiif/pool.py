"""
Chunked, bounded-concurrency resolution and rendering of manifest tasks.

Tasks are split into fixed-size chunks processed strictly one after another. Inside a chunk,
`min(concurrency, len(chunk))` workers pull the next task from a shared cursor, so one slow
fetch doesn't hold back the rest. Console output is buffered per task and released in task
order, whatever order the workers finish in.
"""

import asyncio
import logging
from pathlib import Path

from tqdm import tqdm

from canopy_iiif.context import BuildContext
from canopy_iiif.errors import FetchError, RenderError
from canopy_iiif.fetch import FetchResult, is_http_uri
from canopy_iiif.logs import Console, response_text
from canopy_iiif.search import SearchRecord
from canopy_iiif.slugs import base_slug, first_label_string
from canopy_iiif.walker import Task

log = logging.getLogger(__name__)

WORKS_DIRNAME: str = 'works'

LogLine = tuple[str, str]  # (text, color)


def chunked(tasks: list[Task], size: int) -> list[list[Task]]:
    """
    Splits `tasks` into consecutive chunks of `size` (the last may be shorter), keeping order.
    """
    size = max(1, size)
    return [tasks[i : i + size] for i in range(0, len(tasks), size)]


def display_path(path: Path) -> str:
    try:
        return str(path.resolve().relative_to(Path.cwd()))
    except ValueError:
        return str(path)


class OrderedLogBuffer:
    """
    Collects each task's console lines by position and prints them in position order.
    - `put(i, lines)` stores slot i, then prints every contiguous finished slot from the front.
    - Slots finishing early wait until all earlier slots are in.
    """

    def __init__(self, size: int, console: Console) -> None:
        self.slots: list[list[LogLine] | None] = [None] * size
        self.console: Console = console
        self.next_print: int = 0

    def put(self, index: int, lines: list[LogLine]) -> None:
        self.slots[index] = lines
        self.flush()

    def flush(self) -> None:
        while self.next_print < len(self.slots) and self.slots[self.next_print] is not None:
            for text, color in self.slots[self.next_print]:
                self.console.line(text, color)
            self.slots[self.next_print] = []
            self.next_print += 1


class RenderPool:
    """
    Resolves, renders, and writes one page per task.
    - Resolution: cache hit, else an http(s) fetch (non-http ids are skipped).
    - A fetched manifest is normalized and cached; its slug comes from the cache binding.
    - Any failure is confined to its own task: reported in red, left out of the records.
    - Keeps running totals (`pages_written`, `bytes_written`, `failures`) for the build summary.
    """

    def __init__(self, context: BuildContext) -> None:
        self.context: BuildContext = context
        self.console: Console = context.console
        self.pages_written: int = 0
        self.bytes_written: int = 0
        self.failures: int = 0

    async def render_all(self, tasks: list[Task], chunk_size: int = 10, concurrency: int = 6) -> list[SearchRecord]:
        """
        Processes every task, chunk by chunk, and returns the search records of rendered pages
        in task order.
        Called by: build.build_iiif_collection_pages()
        """
        chunks: list[list[Task]] = chunked(tasks, chunk_size)
        self.console.line(f'Aggregating {len(tasks)} Manifest(s) in {max(1, len(chunks))} chunk(s)...', 'cyan')
        records: list[SearchRecord] = []
        progress = tqdm(chunks, desc='Chunks', unit='chunk', disable=not self.context.progress, leave=False)
        for ci, chunk in enumerate(progress):
            self.console.line(f'\nChunk ({ci + 1}/{len(chunks)})', 'magenta')
            chunk_records: list[SearchRecord | None] = await self.render_chunk(chunk, concurrency)
            records.extend(r for r in chunk_records if r is not None)
        progress.close()
        return records

    async def render_chunk(self, chunk: list[Task], concurrency: int) -> list[SearchRecord | None]:
        """
        Runs the chunk's workers to completion; slot i of the result belongs to chunk[i].
        """
        results: list[SearchRecord | None] = [None] * len(chunk)
        buffer: OrderedLogBuffer = OrderedLogBuffer(len(chunk), self.console)
        cursor: int = 0

        async def worker() -> None:
            nonlocal cursor
            while cursor < len(chunk):
                index: int = cursor
                cursor += 1
                lines, record = await self.process_task(chunk[index])
                results[index] = record
                buffer.put(index, lines)

        workers: int = min(max(1, concurrency), len(chunk))
        await asyncio.gather(*(worker() for _ in range(workers)))
        return results

    async def process_task(self, task: Task) -> tuple[list[LogLine], SearchRecord | None]:
        """
        Handles one task end to end; never raises.
        """
        lines: list[LogLine] = []
        try:
            record: SearchRecord | None = await self._process(task, lines)
        except FetchError as exc:
            log.debug(f'task ``{task.id}`` unresolved; err, ``{exc}``')
            status: object = exc.status if exc.status is not None else 'ERR'
            lines.append((response_text(task.id, status, ok=False), 'red'))
            record = None
        except RenderError as exc:
            log.warning(f'task ``{task.id}`` failed; err, ``{exc!r}``')
            lines.append((f'IIIF: {exc}', 'red'))
            record = None
        except Exception as exc:
            log.warning(f'task ``{task.id}`` failed; err, ``{exc!r}``')
            lines.append((f'IIIF: failed to render for {task.id or "<unknown>"} - {exc}', 'red'))
            record = None
        if record is None:
            self.failures += 1
        return lines, record

    async def _process(self, task: Task, lines: list[LogLine]) -> SearchRecord | None:
        ctx: BuildContext = self.context
        manifest_id: str = task.id
        slug: str | None = None

        ## resolve: cache, else fetch ------------------------------
        manifest: object = ctx.cache.get(manifest_id)
        if manifest is not None:
            lines.append((response_text(manifest_id, 'Cached'), 'yellow'))
            slug = ctx.cache.slug_for_id(manifest_id)
        elif is_http_uri(manifest_id):
            try:
                result: FetchResult = await ctx.fetcher.fetch(manifest_id)
            except Exception as exc:
                log.debug(f'fetch raised for ``{manifest_id}``; err, ``{exc!r}``')
                lines.append((response_text(manifest_id, 'ERR', ok=False), 'red'))
                return None
            if not result.ok or not isinstance(result.data, dict):
                raise FetchError(manifest_id, result.status, result.error or 'not a JSON object')
            lines.append((response_text(manifest_id, result.status), 'yellow'))
            manifest = ctx.normalizer.normalize(result.data)
            slug = await ctx.cache.aput(manifest, manifest_id, task.parent or None)
        else:
            lines.append((response_text(manifest_id, 'SKIP', ok=False), 'red'))
            return None

        ## normalize, title, slug ----------------------------------
        manifest = ctx.normalizer.normalize(manifest)
        if not isinstance(manifest, dict):
            lines.append((response_text(manifest_id, 'ERR', ok=False), 'red'))
            return None
        title: str = first_label_string(manifest.get('label'))
        slug = slug or base_slug(title)

        ## render and write ----------------------------------------
        href: str = f'{WORKS_DIRNAME}/{slug}.html'
        out_path: Path = ctx.out_dir / WORKS_DIRNAME / f'{slug}.html'
        page = ctx.renderer.render_manifest(manifest, title, out_path)
        size: int = await asyncio.to_thread(ctx.renderer.write_page, out_path, page.html)
        self.pages_written += 1
        self.bytes_written += size
        lines.append((f'✓ Created {display_path(out_path)}', 'green'))
        return SearchRecord(id=str(manifest.get('id') or manifest_id), title=title, href=href)
