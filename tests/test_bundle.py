"""Tests for template splitting, the bundle renderer and bundle reloading."""

import os

import pytest
from jinja2 import TemplateSyntaxError

from ssr_front.core.cache import create_render_cache
from ssr_front.services.bundle import (
    BundleLoader,
    BundleRenderer,
    MetaCollector,
    RenderContext,
    split_template,
)
from ssr_front.services.dev_server import setup_dev_server

from .conftest import INDEX_HTML, SERVER_BUNDLE


async def collect(renderer: BundleRenderer, context: RenderContext) -> str:
    return "".join([chunk async for chunk in renderer.render_to_stream(context)])


class TestSplitTemplate:
    def test_production_inlines_stylesheet(self):
        template = split_template(INDEX_HTML, inline_css="body{margin:0}", production=True)
        assert template.head == (
            '<!DOCTYPE html><html><head><meta charset="utf-8"><title></title>'
            '<style type="text/css">body{margin:0}</style></head><body>'
        )
        assert template.tail == '<script src="/dist/app.js"></script></body></html>'

    def test_development_drops_stylesheet(self):
        template = split_template(INDEX_HTML, inline_css="ignored", production=False)
        assert template.head == '<!DOCTYPE html><html><head><meta charset="utf-8"><title></title></head><body>'
        assert "<style" not in template.head

    def test_head_and_tail_cover_template_around_mount(self):
        source = "<p>before</p><div id=app></div><p>after</p>"
        template = split_template(source)
        assert template.head + "<div id=app></div>" + template.tail == source

    def test_missing_mount_point_is_rejected(self):
        with pytest.raises(ValueError):
            split_template("<html><body></body></html>")


class TestMetaCollector:
    def test_default_title_is_used_until_overridden(self):
        meta = MetaCollector(default_title="Site")
        assert meta.inject().title == '<title data-ssr="true">Site</title>'
        meta.title("Post <1>")
        assert meta.inject().title == '<title data-ssr="true">Post &lt;1&gt;</title>'

    def test_meta_and_link_attributes_are_escaped(self):
        meta = MetaCollector()
        meta.meta(name="description", content='say "hi"')
        meta.link(rel="canonical", href="https://blog.example/post/a")
        meta.meta(http_equiv="refresh", content="30")
        page = meta.inject()
        assert page.title == ""
        assert page.meta == (
            '<meta data-ssr="true" name="description" content="say &#34;hi&#34;">'
            '<meta data-ssr="true" http-equiv="refresh" content="30">'
        )
        assert page.link == '<link data-ssr="true" rel="canonical" href="https://blog.example/post/a">'
        assert page.text == page.title + page.meta + page.link


class TestBundleRenderer:
    async def test_renders_markup_meta_and_state(self):
        renderer = BundleRenderer(SERVER_BUNDLE)
        context = RenderContext(url="/post/hello?q=x")
        html = await collect(renderer, context)

        assert html.strip() == '<div id="app" data-server-rendered="true"><h1>/post/hello</h1></div>'
        assert "<title data-ssr=\"true\">Post /post/hello</title>" in context.meta.inject().text
        assert context.initial_state == {"path": "/post/hello", "q": "x"}

    async def test_output_is_autoescaped(self):
        renderer = BundleRenderer("<p>{{ path }}</p>")
        html = await collect(renderer, RenderContext(url="/<script>"))
        assert html == "<p>/&lt;script&gt;</p>"

    async def test_broken_bundle_fails_at_construction(self):
        with pytest.raises(TemplateSyntaxError):
            BundleRenderer("{% if %}")

    async def test_cache_replays_finished_render(self):
        renderer = BundleRenderer(SERVER_BUNDLE, cache=create_render_cache(10, 60))
        first_context = RenderContext(url="/post/a")
        first = await collect(renderer, first_context)

        # Swap the template out; a cache hit must not touch it
        renderer.template = renderer.environment.from_string("changed")
        second_context = RenderContext(url="/post/a")
        second = await collect(renderer, second_context)

        assert second == first
        assert second_context.meta.inject() == first_context.meta.inject()
        assert second_context.initial_state == first_context.initial_state
        assert second_context.initial_state is not first_context.initial_state

    async def test_cached_meta_matches_head_at_first_chunk(self):
        source = '{% do meta.title("Early") %}<p>body</p>{% do meta.title("Late") %}{% do meta.meta(name="robots", content="noindex") %}'
        renderer = BundleRenderer(source, cache=create_render_cache(10, 60))

        first_context = RenderContext(url="/post/a", meta=MetaCollector("Site"))
        stream = renderer.render_to_stream(first_context)
        assert await stream.__anext__() == "<p>body</p>"
        head_meta = first_context.meta.inject()
        async for _ in stream:
            pass

        second_context = RenderContext(url="/post/a", meta=MetaCollector("Site"))
        stream = renderer.render_to_stream(second_context)
        assert await stream.__anext__() == "<p>body</p>"
        assert second_context.meta.inject() == head_meta
        assert head_meta.title == '<title data-ssr="true">Early</title>'
        assert head_meta.meta == ""
        await stream.aclose()

    async def test_cache_is_optional(self):
        renderer = BundleRenderer(SERVER_BUNDLE, cache=create_render_cache(0, 60))
        assert renderer.cache is None
        first = await collect(renderer, RenderContext(url="/post/a"))
        renderer.template = renderer.environment.from_string("changed")
        assert await collect(renderer, RenderContext(url="/post/a")) == "changed"
        assert first != "changed"

    async def test_abandoned_render_is_not_cached(self):
        cache = create_render_cache(10, 60)
        renderer = BundleRenderer(SERVER_BUNDLE, cache=cache)
        stream = renderer.render_to_stream(RenderContext(url="/post/a"))
        await stream.__anext__()
        await stream.aclose()
        assert len(cache) == 0


class TestBundleLoader:
    def test_production_load_is_ready(self, make_config):
        loader = BundleLoader(make_config())
        bundle = loader.load_production()
        assert bundle.ready
        assert loader.active.get() is bundle
        assert '<style type="text/css">body{margin:0}</style>' in bundle.template.head

    def test_production_load_fails_without_bundle(self, make_config, dist_dir):
        os.remove(os.path.join(dist_dir, "server-bundle.html"))
        with pytest.raises(FileNotFoundError):
            BundleLoader(make_config()).load_production()

    def test_development_updates_swap_whole_bundle(self, make_config):
        loader = BundleLoader(make_config(ENVIRONMENT="development"))
        assert not loader.active.get().ready

        loader.bundle_updated(SERVER_BUNDLE)
        half = loader.active.get()
        assert half.renderer is not None and not half.ready

        loader.index_updated(INDEX_HTML)
        full = loader.active.get()
        assert full.ready
        assert full is not half
        assert full.renderer is half.renderer
        assert "<link" not in full.template.head

    def test_broken_update_keeps_previous_value(self, make_config):
        loader = BundleLoader(make_config(ENVIRONMENT="development"))
        loader.bundle_updated(SERVER_BUNDLE)
        loader.index_updated(INDEX_HTML)
        before = loader.active.get()

        loader.bundle_updated("{% for %}")
        loader.index_updated("<html>no mount point</html>")
        assert loader.active.get() is before


class TestDevServerWatcher:
    async def test_reports_initial_contents_and_changes(self, make_config, dist_dir):
        loader = BundleLoader(make_config(ENVIRONMENT="development"))
        watcher = setup_dev_server(
            bundle_path=loader.bundle_path,
            template_path=loader.template_path,
            bundle_updated=loader.bundle_updated,
            index_updated=loader.index_updated,
        )

        assert await watcher.check() == 2
        assert loader.active.get().ready
        assert await watcher.check() == 0

        bundle_path = os.path.join(dist_dir, "server-bundle.html")
        previous_renderer = loader.active.get().renderer
        with open(bundle_path, "w", encoding="utf-8") as f:
            f.write("<main>rebuilt bundle</main>")
        st = os.stat(bundle_path)
        os.utime(bundle_path, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000_000))

        assert await watcher.check() == 1
        renderer = loader.active.get().renderer
        assert renderer is not previous_renderer
        assert await collect(renderer, RenderContext(url="/")) == "<main>rebuilt bundle</main>"

    async def test_undecodable_artifact_keeps_previous_bundle(self, make_config, dist_dir, caplog):
        loader = BundleLoader(make_config(ENVIRONMENT="development"))
        watcher = setup_dev_server(
            bundle_path=loader.bundle_path,
            template_path=loader.template_path,
            bundle_updated=loader.bundle_updated,
            index_updated=loader.index_updated,
        )
        with open(loader.bundle_path, "wb") as f:
            f.write(b"\xff\xfe broken")

        # The template is still picked up even though the bundle cannot be read
        assert await watcher.check() == 1
        active = loader.active.get()
        assert active.template is not None
        assert active.renderer is None

        assert await watcher.check() == 0
        errors = [r for r in caplog.records if "not valid UTF-8" in r.getMessage()]
        assert len(errors) == 1

        with open(loader.bundle_path, "w", encoding="utf-8") as f:
            f.write("<main>fixed</main>")
        st = os.stat(loader.bundle_path)
        os.utime(loader.bundle_path, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000_000))
        assert await watcher.check() == 1
        assert loader.active.get().ready

    async def test_missing_artifacts_are_skipped(self, tmp_path):
        seen = []
        watcher = setup_dev_server(
            bundle_path=str(tmp_path / "missing-bundle.html"),
            template_path=str(tmp_path / "missing-index.html"),
            bundle_updated=seen.append,
            index_updated=seen.append,
        )
        assert await watcher.check() == 0
        assert seen == []
