"""Transformers turning upstream post listings into served text.

The upstream API answers with a JSON array of entries (or an object holding
that array under ``data``). Each entry may carry ``pathName``, ``title``,
``summary``, ``createdAt``, ``updatedAt`` and ``type`` (``post`` or
``page``); missing fields fall back to sensible defaults.
"""

import logging
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote
from xml.etree import ElementTree as ET

from .options import SiteOptions


logger = logging.getLogger(__name__)

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'
SITEMAP_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"


def extract_entries(body: Any) -> List[Dict[str, Any]]:
    if isinstance(body, dict):
        body = body.get("data", [])
    if not isinstance(body, list):
        raise ValueError(f"Expected a list of entries, got {type(body).__name__}")
    entries = [entry for entry in body if isinstance(entry, dict) and entry.get("pathName")]
    skipped = len(body) - len(entries)
    if skipped:
        logger.warning(f"Skipped {skipped} upstream entries without a pathName")
    return entries


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def entry_url(site: SiteOptions, entry: Dict[str, Any]) -> str:
    path_name = quote(str(entry["pathName"]).strip("/"))
    if entry.get("type", "post") == "page":
        return f"{site.site_url}/{path_name}"
    return f"{site.site_url}/post/{path_name}"


def build_robots(site: SiteOptions) -> str:
    return "\n".join([
        "User-agent: *",
        "Allow: /",
        f"Sitemap: {site.site_url}/sitemap.xml",
        "",
    ])


def build_sitemap(body: Any, site: SiteOptions) -> str:
    urlset = ET.Element("urlset", xmlns=SITEMAP_NS)

    home = ET.SubElement(urlset, "url")
    ET.SubElement(home, "loc").text = f"{site.site_url}/"
    ET.SubElement(home, "changefreq").text = "daily"
    ET.SubElement(home, "priority").text = "1.0"

    for entry in extract_entries(body):
        is_page = entry.get("type", "post") == "page"
        node = ET.SubElement(urlset, "url")
        ET.SubElement(node, "loc").text = entry_url(site, entry)
        modified = parse_timestamp(entry.get("updatedAt")) or parse_timestamp(entry.get("createdAt"))
        if modified:
            ET.SubElement(node, "lastmod").text = modified.date().isoformat()
        ET.SubElement(node, "changefreq").text = "monthly" if is_page else "weekly"
        ET.SubElement(node, "priority").text = "0.6" if is_page else "0.8"

    return XML_DECLARATION + ET.tostring(urlset, encoding="unicode")


def build_rss(body: Any, site: SiteOptions, now: Optional[datetime] = None) -> str:
    rss = ET.Element("rss", version="2.0")
    channel = ET.SubElement(rss, "channel")
    ET.SubElement(channel, "title").text = site.title
    ET.SubElement(channel, "link").text = f"{site.site_url}/"
    ET.SubElement(channel, "description").text = site.description or site.title
    ET.SubElement(channel, "lastBuildDate").text = format_datetime(now or datetime.now(timezone.utc))

    for entry in extract_entries(body):
        if entry.get("type", "post") == "page":
            continue
        link = entry_url(site, entry)
        item = ET.SubElement(channel, "item")
        ET.SubElement(item, "title").text = str(entry.get("title") or entry["pathName"])
        ET.SubElement(item, "link").text = link
        ET.SubElement(item, "guid", isPermaLink="true").text = link
        ET.SubElement(item, "description").text = str(entry.get("summary") or "")
        published = parse_timestamp(entry.get("createdAt"))
        if published:
            ET.SubElement(item, "pubDate").text = format_datetime(published)

    return XML_DECLARATION + ET.tostring(rss, encoding="unicode")
