"""
Page composition for work pages, using Jinja2 templates from the content directory.

- `content/works/_layout.html` renders one manifest (required for the IIIF stage).
- `content/_layout.html` wraps every page (optional; a plain header/main/footer otherwise).
- A work layout may export a `head` variable (`{% set head %}...{% endset %}`) that lands in <head>.
"""

import logging
import os
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, Template, select_autoescape
from markupsafe import Markup

from canopy_iiif.errors import RenderError
from canopy_iiif.slugs import first_label_string

log = logging.getLogger(__name__)

WORKS_LAYOUT: str = 'works/_layout.html'
SITE_LAYOUT: str = '_layout.html'
STYLES_FILENAME: str = 'styles.css'
VIEWER_SCRIPT_FILENAME: str = 'canopy-viewer.js'
HYDRATE_MARKERS: tuple[str, ...] = ('data-canopy-hydrate', 'data-canopy-viewer')

DEFAULT_SITE_LAYOUT: str = (
    '<header class="site-header"><a href="{{ base_href }}" class="brand">{{ site_title }}</a></header>'
    '<main class="content">{{ content }}</main>'
    '<footer class="site-footer">Built with canopy-iiif</footer>'
)
HTML_SHELL: str = (
    '<!doctype html><html lang="en"><head><meta charset="utf-8"/>'
    '<meta name="viewport" content="width=device-width, initial-scale=1"/>'
    '<title>{{ title }}</title><link rel="stylesheet" href="{{ css_href }}">'
    '{% if script_href %}<script defer src="{{ script_href }}"></script>{% endif %}'
    '{{ head }}</head><body>{{ body }}</body></html>'
)
SHELL_TEMPLATE: Template = Environment(autoescape=True).from_string(HTML_SHELL)


def viewer(manifest: object) -> Markup:
    """Placeholder the client runtime hydrates into an image viewer."""
    manifest_id: str = ''
    if isinstance(manifest, dict):
        manifest_id = str(manifest.get('id') or manifest.get('@id') or '')
    return Markup('<div data-canopy-viewer data-iiif-content="{}"></div>').format(manifest_id)


def fallback(name: str = 'Component', **props: object) -> Markup:
    """Stand-in for a component the site doesn't provide."""
    return Markup('<div data-canopy-fallback="{}"></div>').format(name)


COMPONENTS: dict[str, object] = {
    'Viewer': viewer,
    'Fallback': fallback,
    'HelloWorld': lambda **props: fallback('HelloWorld', **props),
}


class RenderedPage:
    def __init__(self, html: str, head: str = '') -> None:
        self.html: str = html
        self.head: str = head


def relative_href(target: Path, out_path: Path) -> str:
    return Path(os.path.relpath(target, out_path.parent)).as_posix()


def html_shell(title: str, body: str, css_href: str, script_href: str | None = None, head: str = '') -> str:
    """
    Wraps rendered body markup in the document shell.
    """
    return SHELL_TEMPLATE.render(
        title=title, body=Markup(body), css_href=css_href, script_href=script_href, head=Markup(head)
    )


class PageRenderer:
    """
    Renders manifests into full HTML documents.
    - Loads layouts lazily from the content directory; one renderer per build, nothing module-level.
    - Exposes `components` (Viewer, Fallback, ...) and a `label` filter to templates.
    - References the viewer script only when the body contains a hydration marker.
    - Computes stylesheet/script hrefs relative to each output page.
    """

    def __init__(self, content_dir: Path, out_dir: Path, site_title: str = 'Canopy') -> None:
        self.content_dir: Path = Path(content_dir)
        self.out_dir: Path = Path(out_dir)
        self.site_title: str = site_title
        self.env: Environment = Environment(
            loader=FileSystemLoader(str(self.content_dir)),
            autoescape=select_autoescape(enabled_extensions=('html', 'xml'), default_for_string=True),
        )
        self.env.filters['label'] = first_label_string
        self.env.globals['components'] = COMPONENTS
        self._works_layout: Template | None = None
        self._site_layout: Template | None = None

    @property
    def works_layout_path(self) -> Path:
        return self.content_dir / WORKS_LAYOUT

    def has_works_layout(self) -> bool:
        return self.works_layout_path.is_file()

    def works_layout(self) -> Template:
        if self._works_layout is None:
            self._works_layout = self.env.get_template(WORKS_LAYOUT)
        return self._works_layout

    def site_layout(self) -> Template:
        if self._site_layout is None:
            if (self.content_dir / SITE_LAYOUT).is_file():
                self._site_layout = self.env.get_template(SITE_LAYOUT)
            else:
                self._site_layout = self.env.from_string(DEFAULT_SITE_LAYOUT)
        return self._site_layout

    def compose(self, title: str, content: str, out_path: Path, head: str = '') -> str:
        """
        Places page content inside the site layout and the document shell.
        Called by: render_manifest(), search.build_search_page()
        """
        base_href: str = relative_href(self.out_dir / 'index.html', out_path)
        body: str = self.site_layout().render(
            content=Markup(content), title=title, site_title=self.site_title, base_href=base_href
        )
        script_href: str | None = None
        if any(marker in body for marker in HYDRATE_MARKERS):
            script_href = relative_href(self.out_dir / VIEWER_SCRIPT_FILENAME, out_path)
        css_href: str = relative_href(self.out_dir / STYLES_FILENAME, out_path) or STYLES_FILENAME
        return html_shell(title=title, body=body, css_href=css_href, script_href=script_href, head=head)

    def render_manifest(self, manifest: dict, title: str, out_path: Path) -> RenderedPage:
        """
        Renders the works layout for one manifest and composes the full page.
        Raises RenderError for any template failure.
        Called by: RenderPool
        """
        manifest_id: str = str(manifest.get('id') or manifest.get('@id') or '')
        try:
            module = self.works_layout().make_module({'manifest': manifest, 'title': title})
            head: str = str(getattr(module, 'head', '') or '')
            html: str = self.compose(title, str(module), out_path, head=head)
        except Exception as exc:
            raise RenderError(manifest_id, str(exc)) from exc
        return RenderedPage(html, head)

    def write_page(self, out_path: Path, html: str) -> int:
        """
        Writes a page and returns the number of bytes written.
        """
        out_path.parent.mkdir(parents=True, exist_ok=True)
        data: bytes = html.encode('utf-8')
        out_path.write_bytes(data)
        return len(data)
