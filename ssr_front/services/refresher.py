import asyncio
import logging
from typing import Any, Callable

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ..core.http import fetch_json
from ..core.state import Swappable
from .content import build_robots, build_rss, build_sitemap
from .options import SiteOptions


logger = logging.getLogger(__name__)

REFRESH_JOB_ID = "refresh-feeds"


class ContentRefresher:
    """Owns the cached sitemap, RSS and robots text.

    Sitemap and RSS are fetched from their upstream endpoints and replaced
    whole on every successful cycle; a failed cycle leaves the previous text
    in place. Robots text is built once from the site options.
    """

    def __init__(self, site: SiteOptions, client: httpx.AsyncClient):
        self.site = site
        self.client = client
        self.sitemap: Swappable[str] = Swappable("")
        self.rss: Swappable[str] = Swappable("")
        self.robots: Swappable[str] = Swappable(build_robots(site))

    async def _refresh(self, name: str, url: str, build: Callable[[Any, SiteOptions], str], target: Swappable[str]) -> bool:
        if not url:
            logger.warning(f"No upstream endpoint configured for {name}, keeping cached value")
            return False
        try:
            body = await fetch_json(self.client, url)
            text = build(body, self.site)
        except Exception as e:
            logger.error(f"Failed to refresh {name} from {url}: {str(e)}")
            return False
        target.swap(text)
        logger.info(f"Refreshed {name} ({len(text)} bytes)")
        return True

    async def refresh_sitemap(self) -> bool:
        return await self._refresh("sitemap", self.site.sitemap_api, build_sitemap, self.sitemap)

    async def refresh_rss(self) -> bool:
        return await self._refresh("rss", self.site.rss_api, build_rss, self.rss)

    async def refresh_all(self) -> None:
        await asyncio.gather(self.refresh_rss(), self.refresh_sitemap())

    def schedule(self, scheduler: AsyncIOScheduler, crontab: str, timezone: str = "") -> None:
        trigger = CronTrigger.from_crontab(crontab, timezone=timezone or None)
        scheduler.add_job(
            self.refresh_all,
            trigger,
            id=REFRESH_JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        logger.info(f"Feed refresh scheduled with cron '{crontab}'")
