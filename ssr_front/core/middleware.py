import logging
import os
import time
from typing import Callable
from urllib.parse import unquote

from fastapi import Request
from fastapi.responses import FileResponse, PlainTextResponse


logger = logging.getLogger(__name__)

FAVICON_MAX_AGE = 60 * 60 * 24 * 365


async def log_requests(request: Request, call_next: Callable):
    start_time = time.time()
    request_id = f"{int(time.time() * 1000)}-{id(request)}"
    target = f"{request.url.path}?{request.url.query}" if request.url.query else request.url.path
    logger.debug(f"{request.method} {unquote(target)}")

    try:
        response = await call_next(request)
        process_time = time.time() - start_time
        # Only log slow requests (>1s) or errors
        if process_time > 1.0 or response.status_code >= 400:
            logger.info(f"[{request_id}] {request.method} {request.url.path} - {response.status_code} - {process_time:.2f}s")
        return response
    except Exception as e:
        process_time = time.time() - start_time
        logger.error(f"[{request_id}] {request.method} {request.url.path} - ERROR: {str(e)} - {process_time:.2f}s")
        raise


async def serve_favicon(request: Request, call_next: Callable):
    """Answer ``/favicon.ico`` from the configured icon file when there is one."""
    if request.url.path == "/favicon.ico" and request.method in ("GET", "HEAD"):
        site = getattr(request.app.state, "site", None)
        favicon = site.favicon if site else ""
        if favicon and os.path.isfile(favicon):
            return FileResponse(
                favicon,
                media_type="image/x-icon",
                headers={"Cache-Control": f"public, max-age={FAVICON_MAX_AGE}"},
            )
    return await call_next(request)


async def global_exception_handler(request: Request, exc: Exception):
    request_id = f"{int(time.time() * 1000)}-{id(request)}"
    logger.error(f"[{request_id}] Unhandled exception in {request.method} {request.url.path}: {str(exc)}", exc_info=True)
    return PlainTextResponse("Internal server error", status_code=500)
