import logging
from typing import Any

import httpx


logger = logging.getLogger(__name__)


class UpstreamError(RuntimeError):
    """Raised when an upstream API cannot be fetched or returns an error status."""

    def __init__(self, url: str, message: str):
        super().__init__(f"{url}: {message}")
        self.url = url


def create_http_client(timeout_seconds: float = 10.0) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=timeout_seconds,
        follow_redirects=True,
        limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
    )


async def fetch_json(client: httpx.AsyncClient, url: str) -> Any:
    try:
        response = await client.get(url)
        response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as e:
        logger.error(f"Upstream {url} answered {e.response.status_code}")
        raise UpstreamError(url, f"HTTP {e.response.status_code}") from e
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"Failed to fetch {url}: {str(e)}")
        raise UpstreamError(url, str(e) or type(e).__name__) from e
