import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from canopy_iiif.errors import RenderError
from canopy_iiif.render import PageRenderer, RenderedPage, html_shell
from canopy_iiif.search import (
    SearchRecord,
    build_search_page,
    collect_page_records,
    extract_title,
    write_search_index,
)
from tests.helpers import manifest, write_works_layout


class TestPageRenderer(unittest.TestCase):
    """
    Tests composing work pages from the Jinja2 layouts.
    """

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        root: Path = Path(self._tmp.name)
        self.content_dir: Path = root / 'content'
        self.out_dir: Path = root / 'site'
        self.content_dir.mkdir()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_has_works_layout(self) -> None:
        renderer: PageRenderer = PageRenderer(self.content_dir, self.out_dir)
        self.assertFalse(renderer.has_works_layout())
        write_works_layout(self.content_dir)
        self.assertTrue(renderer.has_works_layout())

    def test_viewer_page_references_hydration_script(self) -> None:
        """
        Checks relative hrefs from works/ and the exported head markup.
        """
        write_works_layout(self.content_dir)
        renderer: PageRenderer = PageRenderer(self.content_dir, self.out_dir)
        out_path: Path = self.out_dir / 'works' / 'test-work.html'
        page: RenderedPage = renderer.render_manifest(manifest('http://x/m1', 'Test Work'), 'Test Work', out_path)
        self.assertIn('<script defer src="../canopy-viewer.js"></script>', page.html)
        self.assertIn('href="../styles.css"', page.html)
        self.assertIn('<title>Test Work</title>', page.html)
        self.assertEqual(page.head, '<meta name="iiif-manifest" content="http://x/m1">')

    def test_plain_page_has_no_hydration_script(self) -> None:
        write_works_layout(self.content_dir, '<p>{{ title }}</p>')
        renderer: PageRenderer = PageRenderer(self.content_dir, self.out_dir)
        page: RenderedPage = renderer.render_manifest(manifest('http://x/m1'), 'Plain', self.out_dir / 'works' / 'p.html')
        self.assertNotIn('canopy-viewer.js', page.html)
        self.assertEqual(page.head, '')

    def test_titles_are_escaped(self) -> None:
        write_works_layout(self.content_dir, '<p>{{ title }}</p>')
        renderer: PageRenderer = PageRenderer(self.content_dir, self.out_dir)
        page: RenderedPage = renderer.render_manifest(manifest('http://x/m1'), '<b>x</b>', self.out_dir / 'works' / 'x.html')
        self.assertIn('<p>&lt;b&gt;x&lt;/b&gt;</p>', page.html)

    def test_site_layout_wraps_content(self) -> None:
        write_works_layout(self.content_dir, '<p>{{ manifest.label | label }}</p>')
        (self.content_dir / '_layout.html').write_text('<div class="shell">{{ content }}</div>', encoding='utf-8')
        renderer: PageRenderer = PageRenderer(self.content_dir, self.out_dir)
        page: RenderedPage = renderer.render_manifest(manifest('http://x/m1', 'Lab'), 'Lab', self.out_dir / 'works' / 'l.html')
        self.assertIn('<div class="shell"><p>Lab</p></div>', page.html)

    def test_template_failure_raises_render_error(self) -> None:
        write_works_layout(self.content_dir, '{{ components.Viewer() }}')
        renderer: PageRenderer = PageRenderer(self.content_dir, self.out_dir)
        with self.assertRaises(RenderError) as ctx:
            renderer.render_manifest(manifest('http://x/m1'), 'T', self.out_dir / 'works' / 't.html')
        self.assertEqual(ctx.exception.manifest_id, 'http://x/m1')

    def test_write_page_creates_directories(self) -> None:
        renderer: PageRenderer = PageRenderer(self.content_dir, self.out_dir)
        out_path: Path = self.out_dir / 'works' / 'deep' / 'a.html'
        size: int = renderer.write_page(out_path, '<p>é</p>')
        self.assertEqual(size, len('<p>é</p>'.encode('utf-8')))
        self.assertEqual(out_path.read_text(encoding='utf-8'), '<p>é</p>')

    def test_shell_template_is_compiled_once(self) -> None:
        """
        Checks that composing a page reuses the module-level shell instead of building an Environment.
        """
        renderer: PageRenderer = PageRenderer(self.content_dir, self.out_dir)
        renderer.site_layout()
        with patch('canopy_iiif.render.Environment') as mock_env:
            html: str = html_shell('T', '<p>x</p>', 'styles.css')
            renderer.compose('T', '<p>y</p>', self.out_dir / 'y.html')
        mock_env.assert_not_called()
        self.assertIn('<body><p>x</p></body>', html)


class TestSearchArtifacts(unittest.TestCase):
    """
    Tests search records, the index file, and the search page.
    """

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        root: Path = Path(self._tmp.name)
        self.content_dir: Path = root / 'content'
        self.out_dir: Path = root / 'site'
        self.content_dir.mkdir()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_record_serialization_omits_missing_fields(self) -> None:
        work: SearchRecord = SearchRecord(id='http://x/m1', title='Test Work', href='works/test-work.html')
        page: SearchRecord = SearchRecord(title='About', href='about.html', type='page')
        self.assertEqual(work.to_dict(), {'id': 'http://x/m1', 'title': 'Test Work', 'href': 'works/test-work.html'})
        self.assertEqual(page.to_dict(), {'title': 'About', 'href': 'about.html', 'type': 'page'})

    def test_write_search_index(self) -> None:
        records: list[SearchRecord] = [SearchRecord(id='http://x/m1', title='Café', href='works/cafe.html')]
        path: Path = write_search_index(records, self.out_dir)
        with path.open('r', encoding='utf-8') as fh:
            computed: list = json.load(fh)
        self.assertEqual(computed, [{'id': 'http://x/m1', 'title': 'Café', 'href': 'works/cafe.html'}])

    def test_extract_title(self) -> None:
        self.assertEqual(extract_title('intro\n# About Us \nbody'), 'About Us')
        self.assertEqual(extract_title('no heading here'), 'Untitled')

    def test_collect_page_records(self) -> None:
        """
        Checks that reserved files and the sitemap are skipped and hrefs mirror the content tree.
        """
        (self.content_dir / 'about.mdx').write_text('# About\n', encoding='utf-8')
        (self.content_dir / 'guide').mkdir()
        (self.content_dir / 'guide' / 'start.md').write_text('# Getting Started\n', encoding='utf-8')
        (self.content_dir / '_app.mdx').write_text('# App\n', encoding='utf-8')
        (self.content_dir / 'sitemap.mdx').write_text('# Sitemap\n', encoding='utf-8')
        (self.content_dir / 'notes.txt').write_text('# Notes\n', encoding='utf-8')
        computed: list[dict] = [r.to_dict() for r in collect_page_records(self.content_dir)]
        expected: list[dict] = [
            {'title': 'About', 'href': 'about.html', 'type': 'page'},
            {'title': 'Getting Started', 'href': 'guide/start.html', 'type': 'page'},
        ]
        self.assertEqual(computed, expected)

    def test_build_search_page(self) -> None:
        renderer: PageRenderer = PageRenderer(self.content_dir, self.out_dir)
        path: Path = build_search_page(renderer, self.out_dir)
        html: str = path.read_text(encoding='utf-8')
        self.assertEqual(path.name, 'search.html')
        self.assertIn('id="search-input"', html)
        self.assertIn('<script defer src="search.js"></script>', html)


if __name__ == '__main__':
    unittest.main()
