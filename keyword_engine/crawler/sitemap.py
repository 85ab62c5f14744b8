"""Sitemap-driven listing of a site's pages.

Reads the site's sitemap (or sitemap index), then fetches each listed
page for its title and description. Used to refresh the project's page
list in the background after an analysis; every failure here is local.
"""

import asyncio
import logging
from typing import Optional
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

from keyword_engine.crawler.crawler import DEFAULT_USER_AGENT, normalize_target_url
from keyword_engine.models import SitePage

logger = logging.getLogger(__name__)

_SITEMAP_CANDIDATES = ("sitemap.xml", "sitemap_index.xml", "sitemap-0.xml")
_MAX_CHILD_SITEMAPS = 5


def _locs(xml: str, parent: str) -> list[str]:
    """Return <loc> values nested under <parent> elements."""
    soup = BeautifulSoup(xml, "xml")
    locs = []
    for node in soup.find_all(parent):
        loc = node.find("loc")
        if loc and loc.get_text(strip=True):
            locs.append(loc.get_text(strip=True))
    return locs


async def fetch_sitemap_urls(client: httpx.AsyncClient, site_url: str) -> list[str]:
    """Find page URLs from the first sitemap location that responds.

    A sitemap index is followed one level deep, for at most five child
    sitemaps.
    """
    base = normalize_target_url(site_url).rstrip("/")

    for candidate in _SITEMAP_CANDIDATES:
        url = f"{base}/{candidate}"
        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            logger.debug("Sitemap candidate %s failed: %s", url, e)
            continue
        if not response.is_success:
            continue

        xml = response.text
        if "<url" not in xml and "<sitemap" not in xml:
            continue

        child_sitemaps = _locs(xml, "sitemap")
        if child_sitemaps:
            urls: list[str] = []
            for child in child_sitemaps[:_MAX_CHILD_SITEMAPS]:
                try:
                    child_response = await client.get(child)
                except httpx.HTTPError as e:
                    logger.debug("Child sitemap %s failed: %s", child, e)
                    continue
                if child_response.is_success:
                    urls.extend(_locs(child_response.text, "url"))
            return urls

        urls = _locs(xml, "url")
        if urls:
            return urls

    return []


async def _page_meta(client: httpx.AsyncClient, url: str) -> Optional[tuple[str, str]]:
    """Fetch (title, description) for one page, or None on failure."""
    try:
        response = await client.get(url, headers={"Accept": "text/html"})
    except httpx.HTTPError as e:
        logger.debug("Page meta fetch failed for %s: %s", url, e)
        return None
    if not response.is_success:
        return None

    soup = BeautifulSoup(response.text, "lxml")
    og_title = soup.find("meta", attrs={"property": "og:title"})
    og_desc = soup.find("meta", attrs={"property": "og:description"})
    desc = soup.find("meta", attrs={"name": "description"})

    title = soup.title.get_text(strip=True) if soup.title else ""
    if not title and og_title:
        title = (og_title.get("content") or "").strip()
    description = (desc.get("content") or "").strip() if desc else ""
    if not description and og_desc:
        description = (og_desc.get("content") or "").strip()
    return title, description


async def crawl_site_pages(
    site_url: str,
    max_pages: int = 100,
    batch_size: int = 5,
    timeout: float = 10.0,
    user_agent: str = DEFAULT_USER_AGENT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> list[SitePage]:
    """List the site's own pages with titles and descriptions.

    Only URLs on the site's host are kept. Pages that fail to load or
    have no title are skipped.
    """
    host = urlparse(normalize_target_url(site_url)).hostname

    async with httpx.AsyncClient(
        timeout=timeout,
        headers={"User-Agent": user_agent},
        follow_redirects=True,
        transport=transport,
    ) as client:
        urls = await fetch_sitemap_urls(client, site_url)
        same_host = [u for u in urls if urlparse(u).hostname == host][:max_pages]
        logger.info(
            "Sitemap for %s lists %d URLs (%d on host)", site_url, len(urls), len(same_host)
        )

        pages: list[SitePage] = []
        for start in range(0, len(same_host), batch_size):
            batch = same_host[start:start + batch_size]
            metas = await asyncio.gather(*(_page_meta(client, u) for u in batch))
            for url, meta in zip(batch, metas):
                if meta and meta[0]:
                    pages.append(
                        SitePage(
                            url=url,
                            path=urlparse(url).path or "/",
                            title=meta[0],
                            description=meta[1],
                        )
                    )

    return pages
