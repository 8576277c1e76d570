import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Set, Tuple

import httpx
from fastapi import Request, Response

from .options import SiteOptions


logger = logging.getLogger(__name__)

CLIENT_ID_COOKIE = "id"
CLIENT_ID_LIFETIME = timedelta(days=365 * 2)

# 1x1 transparent GIF
PIXEL = (
    b"GIF89a\x01\x00\x01\x00\x80\x00\x00\x00\x00\x00\xff\xff\xff!\xf9\x04\x01\x00\x00\x00\x00"
    b",\x00\x00\x00\x00\x01\x00\x01\x00\x00\x02\x02D\x01\x00;"
)


def resolve_client_id(request: Request) -> Tuple[str, bool]:
    """Return the visitor's id and whether it was minted for this request."""
    client_id = request.cookies.get(CLIENT_ID_COOKIE)
    if client_id:
        return client_id, False
    return str(uuid.uuid4()), True


def set_client_id_cookie(response: Response, client_id: str) -> None:
    response.set_cookie(
        CLIENT_ID_COOKIE,
        client_id,
        expires=datetime.now(timezone.utc) + CLIENT_ID_LIFETIME,
    )


class AnalyticsForwarder:
    """Forwards pageview hits to a Measurement Protocol collector.

    Hits are sent from background tasks so a slow collector never holds up
    a response. Without an analytics id every call is a no-op.
    """

    def __init__(self, site: SiteOptions, client: httpx.AsyncClient, endpoint: str):
        self.site = site
        self.client = client
        self.endpoint = endpoint
        self._pending: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.site.analytics_id and self.endpoint)

    def build_payload(self, request: Request, params: Dict[str, str]) -> Dict[str, str]:
        payload = {key: str(value) for key, value in params.items()}
        payload.setdefault("t", "pageview")
        # Protocol version, property and client address always come from the server
        payload.update({
            "v": "1",
            "tid": self.site.analytics_id,
            "uip": request.client.host if request.client else "",
            "ua": request.headers.get("user-agent", ""),
        })
        return payload

    async def _send(self, payload: Dict[str, str]) -> None:
        try:
            response = await self.client.post(self.endpoint, data=payload)
            if response.status_code >= 400:
                logger.warning(f"Analytics collector answered {response.status_code}")
        except Exception as e:
            logger.warning(f"Failed to send analytics hit: {str(e)}")

    def track(self, request: Request, params: Dict[str, str]) -> None:
        if not self.enabled:
            return
        task = asyncio.create_task(self._send(self.build_payload(request, params)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def collect(self, request: Request) -> Response:
        """Handle the ``/_.gif`` beacon sent from the browser."""
        client_id, minted = resolve_client_id(request)
        params = dict(request.query_params)
        params["cid"] = client_id
        params.setdefault("z", str(int(datetime.now(timezone.utc).timestamp() * 1000)))
        self.track(request, params)

        response = Response(content=PIXEL, media_type="image/gif", headers={"Cache-Control": "no-store"})
        if minted:
            set_client_id_cookie(response, client_id)
        return response
