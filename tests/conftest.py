import os
from typing import Callable, Dict, List

import httpx
import pytest

from ssr_front.core.config import Config
from ssr_front.services.options import SiteOptions


INDEX_HTML = (
    '<!DOCTYPE html><html><head><meta charset="utf-8"><title></title>'
    '<link href="/dist/styles.css" rel="stylesheet"></head>'
    '<body><div id=app></div><script src="/dist/app.js"></script></body></html>'
)

SERVER_BUNDLE = """\
{% do meta.title("Home" if path == "/" else "Post " ~ path) %}
{% do meta.meta(name="description", content="Page at " ~ path) %}
{% do ssr.set_state({"path": path, "q": query.get("q", "")}) %}
<div id="app" data-server-rendered="true"><h1>{{ path }}</h1></div>
"""

STYLES_CSS = "body{margin:0}"

POSTS = [
    {
        "pathName": "hello-world",
        "title": "Hello & welcome",
        "summary": "First post",
        "createdAt": "2017-05-01T12:00:00.000Z",
        "updatedAt": "2017-05-03T08:30:00.000Z",
        "type": "post",
    },
    {
        "pathName": "about",
        "title": "About",
        "createdAt": "2017-04-01T00:00:00.000Z",
        "updatedAt": "2017-04-02T00:00:00.000Z",
        "type": "page",
    },
]

SITEMAP_API = "http://api.test/sitemap"
RSS_API = "http://api.test/rss"
OPTIONS_API = "http://api.test/options"
COLLECT_API = "http://collect.test/collect"


@pytest.fixture
def site() -> SiteOptions:
    return SiteOptions(
        title="Test Blog",
        description="Notes and posts",
        site_url="https://blog.example",
        favicon="",
        sitemap_api=SITEMAP_API,
        rss_api=RSS_API,
        analytics_id="UA-TEST-1",
    )


@pytest.fixture
def dist_dir(tmp_path) -> str:
    dist = tmp_path / "dist"
    dist.mkdir()
    (dist / "index.html").write_text(INDEX_HTML, encoding="utf-8")
    (dist / "server-bundle.html").write_text(SERVER_BUNDLE, encoding="utf-8")
    (dist / "styles.css").write_text(STYLES_CSS, encoding="utf-8")
    (dist / "app.js").write_text("console.log('app')", encoding="utf-8")
    (dist / "service-worker.js").write_text("self.addEventListener('fetch', () => {})", encoding="utf-8")
    static = tmp_path / "static"
    static.mkdir()
    (static / "logo.svg").write_text("<svg></svg>", encoding="utf-8")
    return str(dist)


@pytest.fixture
def make_config(tmp_path, dist_dir) -> Callable[..., Config]:
    def _make(**overrides) -> Config:
        values = dict(
            ENVIRONMENT="production",
            SITE_TITLE="Test Blog",
            SITE_DESCRIPTION="Notes and posts",
            SITE_URL="https://blog.example/",
            FAVICON_PATH=os.path.join(str(tmp_path), "static", "favicon.ico"),
            OPTIONS_API="",
            SITEMAP_API=SITEMAP_API,
            RSS_API=RSS_API,
            DIST_DIR=dist_dir,
            STATIC_DIR=os.path.join(str(tmp_path), "static"),
            ANALYTICS_ID="",
            ANALYTICS_ENDPOINT=COLLECT_API,
            SCHEDULER_TIMEZONE="UTC",
            DEV_POLL_INTERVAL=0.05,
        )
        values.update(overrides)
        return Config(**values)

    return _make


class Upstream:
    """Scriptable fake of the blog API and the analytics collector."""

    def __init__(self):
        self.responses: Dict[str, httpx.Response] = {
            SITEMAP_API: httpx.Response(200, json=POSTS),
            RSS_API: httpx.Response(200, json={"data": POSTS}),
            OPTIONS_API: httpx.Response(200, json={"title": "Remote Blog", "siteUrl": "https://remote.example/"}),
        }
        self.requests: List[httpx.Request] = []
        self.hits: List[Dict[str, str]] = []

    def fail(self, url: str, status_code: int = 500) -> None:
        self.responses[url] = httpx.Response(status_code, text="upstream down")

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url == COLLECT_API:
            self.hits.append(dict(httpx.QueryParams(request.content.decode("utf-8"))))
            return httpx.Response(200)
        response = self.responses.get(url)
        if response is None:
            return httpx.Response(404)
        return httpx.Response(response.status_code, content=response.content, headers=response.headers)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def upstream() -> Upstream:
    return Upstream()
