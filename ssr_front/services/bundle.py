"""Server bundle loading.

The server bundle is a Jinja2 template that renders the application markup
for one URL. While rendering it can declare page metadata through ``meta``
and hand initial state to the client through ``ssr.set_state``::

    {% do meta.title(post.title ~ " | Blog") %}
    {% do meta.meta(name="description", content=post.summary) %}
    {% do ssr.set_state({"post": post}) %}
    <article>...</article>

Metadata must be declared before the first markup is emitted; it is read
when the first chunk of output arrives.
"""

import copy
import logging
import os
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, urlsplit

from cachetools import TTLCache
from jinja2 import DictLoader, Environment
from markupsafe import escape

from ..core.cache import create_render_cache
from ..core.config import Config
from ..core.state import Swappable


logger = logging.getLogger(__name__)

MOUNT_MARKER = "<div id=app></div>"
STYLESHEET_LINK = '<link href="/dist/styles.css" rel="stylesheet">'
ENTRY_NAME = "server-bundle"


@dataclass(frozen=True)
class HtmlTemplate:
    head: str
    tail: str


def split_template(template: str, *, inline_css: str = "", production: bool = False) -> HtmlTemplate:
    index = template.find(MOUNT_MARKER)
    if index < 0:
        raise ValueError(f"Template does not contain the mount point {MOUNT_MARKER}")
    style = f'<style type="text/css">{inline_css}</style>' if production else ""
    return HtmlTemplate(
        head=template[:index].replace(STYLESHEET_LINK, style),
        tail=template[index + len(MOUNT_MARKER):],
    )


def _render_attrs(attrs: Dict[str, Any]) -> str:
    return "".join(f' {name.replace("_", "-")}="{escape(value)}"' for name, value in attrs.items())


@dataclass(frozen=True)
class PageMeta:
    title: str
    meta: str
    link: str

    @property
    def text(self) -> str:
        return f"{self.title}{self.meta}{self.link}"


class MetaCollector:
    """Collects title, meta and link tags declared while a page renders."""

    def __init__(self, default_title: str = ""):
        self._title = default_title
        self._meta: List[Dict[str, Any]] = []
        self._links: List[Dict[str, Any]] = []

    def title(self, text: str) -> str:
        self._title = str(text)
        return ""

    def meta(self, **attrs: Any) -> str:
        self._meta.append(attrs)
        return ""

    def link(self, **attrs: Any) -> str:
        self._links.append(attrs)
        return ""

    def inject(self) -> PageMeta:
        title = f'<title data-ssr="true">{escape(self._title)}</title>' if self._title else ""
        return PageMeta(
            title=title,
            meta="".join(f'<meta data-ssr="true"{_render_attrs(attrs)}>' for attrs in self._meta),
            link="".join(f'<link data-ssr="true"{_render_attrs(attrs)}>' for attrs in self._links),
        )

    def snapshot(self) -> Tuple[str, tuple, tuple]:
        return self._title, tuple(dict(a) for a in self._meta), tuple(dict(a) for a in self._links)

    def restore(self, snapshot: Tuple[str, tuple, tuple]) -> None:
        title, meta, links = snapshot
        self._title = title
        self._meta = [dict(a) for a in meta]
        self._links = [dict(a) for a in links]


@dataclass
class RenderContext:
    """Per-request render state; owned by exactly one render pipeline."""

    url: str
    meta: MetaCollector = field(default_factory=MetaCollector)
    initial_state: Optional[Any] = None

    def set_state(self, state: Any) -> str:
        self.initial_state = state
        return ""


@dataclass(frozen=True)
class CachedRender:
    chunks: Tuple[str, ...]
    meta: Tuple[str, tuple, tuple]
    initial_state: Optional[Any]


class BundleRenderer:
    """Streams the server bundle for a render context, caching finished pages by URL."""

    def __init__(self, source: str, cache: Optional[TTLCache] = None):
        self.environment = Environment(
            loader=DictLoader({ENTRY_NAME: source}),
            enable_async=True,
            autoescape=True,
            trim_blocks=True,
            lstrip_blocks=True,
            extensions=["jinja2.ext.do"],
        )
        # Compiles eagerly so a broken bundle fails at load time, not per request
        self.template = self.environment.get_template(ENTRY_NAME)
        self.cache = cache

    async def render_to_stream(self, context: RenderContext) -> AsyncIterator[str]:
        cached = self.cache.get(context.url) if self.cache is not None else None
        if cached is not None:
            context.meta.restore(cached.meta)
            context.initial_state = copy.deepcopy(cached.initial_state)
            for chunk in cached.chunks:
                yield chunk
            return

        parsed = urlsplit(context.url)
        chunks: List[str] = []
        # Metadata as the head saw it: at the first chunk, or at the end when nothing was emitted
        meta = None
        stream = self.template.generate_async(
            url=context.url,
            path=parsed.path,
            query=dict(parse_qsl(parsed.query)),
            meta=context.meta,
            ssr=context,
        )
        async for chunk in stream:
            if not chunk:
                continue
            if meta is None:
                meta = context.meta.snapshot()
            chunks.append(chunk)
            yield chunk

        if self.cache is not None:
            if meta is None:
                meta = context.meta.snapshot()
            self.cache[context.url] = CachedRender(tuple(chunks), meta, copy.deepcopy(context.initial_state))


@dataclass(frozen=True)
class ActiveBundle:
    renderer: Optional[BundleRenderer] = None
    template: Optional[HtmlTemplate] = None

    @property
    def ready(self) -> bool:
        return self.renderer is not None and self.template is not None


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


class BundleLoader:
    """Builds renderers and templates and publishes them as one ``ActiveBundle``.

    Every update constructs the complete new renderer or template first and
    then swaps a new ``ActiveBundle`` in, so a request always sees a matching
    pair from a single point in time.
    """

    def __init__(self, config: Config):
        self.config = config
        self.active: Swappable[ActiveBundle] = Swappable(ActiveBundle())

    @property
    def bundle_path(self) -> str:
        return self.config.dist_path("server-bundle.html")

    @property
    def template_path(self) -> str:
        return self.config.dist_path("index.html")

    def create_renderer(self, source: str) -> BundleRenderer:
        cache = create_render_cache(self.config.RENDER_CACHE_MAX, self.config.RENDER_CACHE_MAX_AGE)
        return BundleRenderer(source, cache=cache)

    def create_template(self, source: str) -> HtmlTemplate:
        inline_css = _read_text(self.config.dist_path("styles.css")) if self.config.is_production else ""
        return split_template(source, inline_css=inline_css, production=self.config.is_production)

    def load_production(self) -> ActiveBundle:
        renderer = self.create_renderer(_read_text(self.bundle_path))
        template = self.create_template(_read_text(self.template_path))
        bundle = ActiveBundle(renderer=renderer, template=template)
        self.active.swap(bundle)
        logger.info(f"Loaded server bundle from {os.path.abspath(self.config.DIST_DIR)}")
        return bundle

    def bundle_updated(self, source: str) -> None:
        try:
            renderer = self.create_renderer(source)
        except Exception as e:
            logger.error(f"Server bundle failed to compile, keeping previous renderer: {str(e)}")
            return
        self.active.update(lambda current: replace(current, renderer=renderer))
        logger.info("Server bundle updated")

    def index_updated(self, source: str) -> None:
        try:
            template = self.create_template(source)
        except Exception as e:
            logger.error(f"HTML template is unusable, keeping previous template: {str(e)}")
            return
        self.active.update(lambda current: replace(current, template=template))
        logger.info("HTML template updated")
