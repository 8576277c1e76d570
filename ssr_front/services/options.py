import logging
from dataclasses import dataclass, replace
from typing import Any, Dict

import httpx

from ..core.config import Config
from ..core.http import fetch_json


logger = logging.getLogger(__name__)

# Remote option keys understood by ``load_site_options`` and the field each one sets.
REMOTE_KEYS = {
    "title": "title",
    "description": "description",
    "siteUrl": "site_url",
    "favicon": "favicon",
    "sitemapApi": "sitemap_api",
    "rssApi": "rss_api",
    "analyticsId": "analytics_id",
}


@dataclass(frozen=True)
class SiteOptions:
    title: str
    description: str
    site_url: str
    favicon: str
    sitemap_api: str
    rss_api: str
    analytics_id: str

    @classmethod
    def from_config(cls, config: Config) -> "SiteOptions":
        return cls(
            title=config.SITE_TITLE,
            description=config.SITE_DESCRIPTION,
            site_url=config.SITE_URL.rstrip("/"),
            favicon=config.FAVICON_PATH,
            sitemap_api=config.SITEMAP_API,
            rss_api=config.RSS_API,
            analytics_id=config.ANALYTICS_ID,
        )


def merge_remote_options(site: SiteOptions, remote: Dict[str, Any]) -> SiteOptions:
    values = {}
    for key, field_name in REMOTE_KEYS.items():
        value = remote.get(key)
        if isinstance(value, str) and value:
            values[field_name] = value.rstrip("/") if field_name == "site_url" else value
    return replace(site, **values)


async def load_site_options(config: Config, client: httpx.AsyncClient) -> SiteOptions:
    """Resolve the site options every other component starts from.

    Environment values are the base. When ``OPTIONS_API`` is set, the JSON
    object it returns overrides them; a failed or malformed response is
    fatal because the server cannot start without its options.
    """
    config.validate()
    site = SiteOptions.from_config(config)

    if config.OPTIONS_API:
        remote = await fetch_json(client, config.OPTIONS_API)
        if isinstance(remote, dict) and isinstance(remote.get("data"), dict):
            remote = remote["data"]
        if not isinstance(remote, dict):
            raise ValueError(f"OPTIONS_API returned {type(remote).__name__}, expected an object")
        site = merge_remote_options(site, remote)

    if not site.title:
        raise ValueError("SITE_TITLE environment variable (or remote 'title' option) is required")
    logger.info(f"Site options loaded for '{site.title}' ({site.site_url})")
    return site
