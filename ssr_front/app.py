import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import FileResponse, PlainTextResponse

from .core.config import Config
from .core.http import create_http_client
from .core.middleware import global_exception_handler, log_requests, serve_favicon
from .core.static import CachedStaticFiles
from .services.analytics import AnalyticsForwarder
from .services.bundle import BundleLoader
from .services.dev_server import setup_dev_server
from .services.options import load_site_options
from .services.refresher import ContentRefresher
from .services.render import RenderPipeline

logger = logging.getLogger(__name__)

XML_MEDIA_TYPE = "application/xml"


def create_app(config: Optional[Config] = None, *, http_client: Optional[httpx.AsyncClient] = None) -> FastAPI:
    """Build the SSR front server.

    Startup order: site options and, in production, the server bundle (both
    fatal on failure); the bundle watcher in development; then the feed
    refresher with its daily schedule. Pages render as soon as a bundle is active;
    until then the catch-all route answers with a waiting message.
    """
    config = config or Config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = http_client or create_http_client(config.UPSTREAM_TIMEOUT)
        loader = BundleLoader(config)
        try:
            site = await load_site_options(config, client)
            if config.is_production:
                loader.load_production()
        except Exception as e:
            logger.error(f"Startup aborted: {str(e)}", exc_info=True)
            if http_client is None:
                await client.aclose()
            raise

        watcher = None
        if not config.is_production:
            watcher = setup_dev_server(
                bundle_path=loader.bundle_path,
                template_path=loader.template_path,
                bundle_updated=loader.bundle_updated,
                index_updated=loader.index_updated,
                interval=config.DEV_POLL_INTERVAL,
            )
            await watcher.check()
            watcher.start()

        refresher = ContentRefresher(site, client)
        scheduler = AsyncIOScheduler(timezone=config.SCHEDULER_TIMEZONE) if config.SCHEDULER_TIMEZONE else AsyncIOScheduler()
        refresher.schedule(scheduler, config.REFRESH_CRON, config.SCHEDULER_TIMEZONE)
        scheduler.start()
        initial_refresh = asyncio.create_task(refresher.refresh_all())

        analytics = AnalyticsForwarder(site, client, config.ANALYTICS_ENDPOINT)
        app.state.site = site
        app.state.refresher = refresher
        app.state.bundles = loader
        app.state.analytics = analytics
        app.state.pipeline = RenderPipeline(loader.active, site, analytics)
        logger.info(f"Server ready in {config.ENVIRONMENT} mode")

        try:
            yield
        finally:
            if not initial_refresh.done():
                initial_refresh.cancel()
            scheduler.shutdown(wait=False)
            if watcher is not None:
                await watcher.stop()
            await analytics.drain()
            if http_client is None:
                await client.aclose()

    app = FastAPI(
        title="SSR Front Server",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.config = config

    @app.middleware("http")
    async def _serve_favicon(request, call_next):
        return await serve_favicon(request, call_next)

    @app.middleware("http")
    async def _log_requests(request, call_next):
        return await log_requests(request, call_next)

    @app.exception_handler(Exception)
    async def _global_exception_handler(request, exc):
        return await global_exception_handler(request, exc)

    static_max_age = config.STATIC_MAX_AGE if config.is_production else 0

    @app.get("/service-worker.js")
    async def service_worker():
        path = config.dist_path("service-worker.js")
        if not os.path.isfile(path):
            raise HTTPException(status_code=404, detail="Not Found")
        return FileResponse(path, media_type="application/javascript", headers={"Cache-Control": "public, max-age=0"})

    app.mount("/dist", CachedStaticFiles(directory=config.DIST_DIR, check_dir=False, max_age=static_max_age), name="dist")
    app.mount("/static", CachedStaticFiles(directory=config.STATIC_DIR, check_dir=False, max_age=static_max_age), name="static")

    @app.get("/favicon.ico")
    async def favicon():
        return Response(status_code=404)

    @app.get("/_.gif")
    async def analytics_beacon(request: Request):
        return await request.app.state.analytics.collect(request)

    @app.get("/robots.txt")
    async def robots(request: Request):
        return PlainTextResponse(request.app.state.refresher.robots.get())

    @app.get("/rss.xml")
    async def rss(request: Request):
        return Response(content=request.app.state.refresher.rss.get(), media_type=XML_MEDIA_TYPE)

    @app.get("/sitemap.xml")
    async def sitemap(request: Request):
        return Response(content=request.app.state.refresher.sitemap.get(), media_type=XML_MEDIA_TYPE)

    @app.get("/{full_path:path}")
    async def render_page(request: Request, full_path: str):
        return await request.app.state.pipeline.handle(request)

    return app


app = create_app()
