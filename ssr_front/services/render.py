import html
import json
import logging
import re
import time
from enum import Enum
from typing import AsyncGenerator, AsyncIterator, Optional

from fastapi import Request, Response
from fastapi.responses import PlainTextResponse, StreamingResponse

from ..core.state import Swappable
from .analytics import AnalyticsForwarder, resolve_client_id, set_client_id_cookie
from .bundle import ActiveBundle, MetaCollector, RenderContext
from .options import SiteOptions


logger = logging.getLogger(__name__)

HTML_MEDIA_TYPE = "text/html; charset=utf-8"
WAITING_MESSAGE = "waiting for compilation... refresh in a moment."
TITLE_PLACEHOLDER = "<title></title>"
TITLE_PATTERN = re.compile(r"<.*?>(.+?)<.*?>")


class RenderState(Enum):
    NOT_STARTED = "not-started"
    HEADERS_PENDING = "headers-pending"
    STREAMING = "streaming"
    FINALIZED = "finalized"
    ERRORED = "errored"


def request_path(request: Request) -> str:
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def initial_state_script(state) -> str:
    payload = json.dumps(state, ensure_ascii=False).replace("<", "\\u003c")
    return f"<script>window.__INITIAL_STATE__={payload}</script>"


class PageRender:
    """One request's trip through the renderer.

    The response head is injected exactly once, on the move from
    HEADERS_PENDING to STREAMING. Whichever way the stream ends, the
    template tail is the last thing written.
    """

    def __init__(self, request: Request, bundle: ActiveBundle, site: SiteOptions, analytics: AnalyticsForwarder):
        self.request = request
        self.bundle = bundle
        self.site = site
        self.analytics = analytics
        self.url = request_path(request)
        self.context = RenderContext(url=self.url, meta=MetaCollector(default_title=site.title))
        self.state = RenderState.NOT_STARTED
        self.started_at = time.time()
        self._stream: Optional[AsyncGenerator[str, None]] = None
        self._head: Optional[str] = None
        self._first: Optional[str] = None

    async def _pull(self) -> Optional[str]:
        try:
            return await self._stream.__anext__()
        except StopAsyncIteration:
            return None
        except Exception as e:
            self.state = RenderState.ERRORED
            logger.error(f"Render of {self.url} failed: {str(e)}", exc_info=True)
            return None

    def _inject_head(self, response: Response) -> str:
        page = self.context.meta.inject()
        matched = TITLE_PATTERN.search(page.title)

        client_id, minted = resolve_client_id(self.request)
        if minted:
            set_client_id_cookie(response, client_id)

        self.analytics.track(self.request, {
            "dt": html.unescape(matched.group(1)) if matched else self.site.title,
            "dr": self.request.headers.get("referer") or self.url,
            "dp": self.url,
            "z": str(int(time.time() * 1000)),
            "cid": client_id,
        })
        return self.bundle.template.head.replace(TITLE_PLACEHOLDER, page.text, 1)

    def _state_script(self) -> str:
        try:
            return initial_state_script(self.context.initial_state)
        except (TypeError, ValueError) as e:
            logger.error(f"Initial state of {self.url} is not serialisable: {str(e)}")
            return ""

    async def start(self) -> StreamingResponse:
        self.state = RenderState.HEADERS_PENDING
        self._stream = self.bundle.renderer.render_to_stream(self.context)
        self._first = await self._pull()

        response = StreamingResponse(self._body(), media_type=HTML_MEDIA_TYPE)
        # Zero-chunk completion still gets a head; an error before any chunk does not
        if self.state is RenderState.HEADERS_PENDING:
            self._head = self._inject_head(response)
            self.state = RenderState.STREAMING
        return response

    async def _body(self) -> AsyncIterator[str]:
        try:
            if self._head is not None:
                yield self._head
            chunk = self._first
            while chunk is not None:
                yield chunk
                chunk = await self._pull()

            if self.state is RenderState.STREAMING and self.context.initial_state is not None:
                script = self._state_script()
                if script:
                    yield script
            yield self.bundle.template.tail

            if self.state is RenderState.STREAMING:
                self.state = RenderState.FINALIZED
                logger.debug(f"whole request: {int((time.time() - self.started_at) * 1000)}ms")
        finally:
            await self._stream.aclose()


class RenderPipeline:
    def __init__(self, bundles: Swappable[ActiveBundle], site: SiteOptions, analytics: AnalyticsForwarder):
        self.bundles = bundles
        self.site = site
        self.analytics = analytics

    async def handle(self, request: Request) -> Response:
        bundle = self.bundles.get()
        if not bundle.ready:
            return PlainTextResponse(WAITING_MESSAGE)
        return await PageRender(request, bundle, self.site, self.analytics).start()
