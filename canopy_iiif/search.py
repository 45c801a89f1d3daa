"""
Search records and the artifacts the client-side search runtime reads.
"""

import json
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from canopy_iiif.render import PageRenderer

log = logging.getLogger(__name__)

SEARCH_INDEX_FILENAME: str = 'search-index.json'
SEARCH_PAGE_FILENAME: str = 'search.html'
HEADING_RE: re.Pattern[str] = re.compile(r'^\s*#\s+(.+?)\s*$', re.MULTILINE)
PAGE_SUFFIXES: tuple[str, ...] = ('.mdx', '.md')


class SearchRecord:
    """
    One entry in the search index.
    Work pages carry the manifest `id`; content pages carry `type='page'` instead.
    """

    __slots__ = ('title', 'href', 'id', 'type')

    def __init__(self, title: str, href: str, id: str | None = None, type: str | None = None) -> None:
        self.title: str = title
        self.href: str = href
        self.id: str | None = id
        self.type: str | None = type

    def to_dict(self) -> dict[str, str]:
        out: dict[str, str] = {}
        if self.id is not None:
            out['id'] = self.id
        out['title'] = self.title
        out['href'] = self.href
        if self.type is not None:
            out['type'] = self.type
        return out

    def __eq__(self, other: object) -> bool:
        return isinstance(other, SearchRecord) and self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f'SearchRecord({self.to_dict()!r})'


def extract_title(source: str) -> str:
    """
    Returns the text of the first `# ` heading, else 'Untitled'.
    """
    match: re.Match[str] | None = HEADING_RE.search(source)
    return match.group(1).strip() if match else 'Untitled'


def collect_page_records(content_dir: Path) -> list[SearchRecord]:
    """
    Builds page records for content files, in sorted path order.
    Reserved `_` files and the sitemap are skipped; so is the generated works directory's layout.
    Called by: build.run_build()
    """
    records: list[SearchRecord] = []
    content_dir = Path(content_dir)
    if not content_dir.is_dir():
        return records
    for path in sorted(content_dir.rglob('*')):
        if not path.is_file() or path.suffix.lower() not in PAGE_SUFFIXES:
            continue
        if path.name.startswith('_') or path.stem.lower() == 'sitemap':
            continue
        try:
            source: str = path.read_text(encoding='utf-8')
        except OSError as exc:
            log.warning(f'could not read ``{path}``; err, ``{exc}``')
            continue
        rel: Path = path.relative_to(content_dir).with_suffix('.html')
        records.append(SearchRecord(title=extract_title(source), href=rel.as_posix(), type='page'))
    return records


def write_search_index(records: list[SearchRecord], out_dir: Path) -> Path:
    """
    Writes the flat JSON array of records to `<out_dir>/search-index.json`.
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    idx_path: Path = out_dir / SEARCH_INDEX_FILENAME
    with idx_path.open('w', encoding='utf-8') as fh:
        json.dump([r.to_dict() for r in records], fh, ensure_ascii=False, indent=2)
    return idx_path


def build_search_page(renderer: 'PageRenderer', out_dir: Path) -> Path:
    """
    Writes `<out_dir>/search.html`: an input and a result list the search runtime fills in.
    Called by: build.run_build()
    """
    out_path: Path = Path(out_dir) / SEARCH_PAGE_FILENAME
    content: str = (
        '<div class="search"><h1>Search</h1><p>Search the collection by title.</p>'
        '<input id="search-input" type="search" placeholder="Type to search…" style="width: 100%; padding: 0.5rem">'
        '<ul id="search-results"></ul></div>'
    )
    html: str = renderer.compose('Search', content, out_path, head='<script defer src="search.js"></script>')
    renderer.write_page(out_path, html)
    return out_path
