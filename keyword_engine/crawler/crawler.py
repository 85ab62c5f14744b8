"""Single-page crawler using Playwright and BeautifulSoup.

Fetches one URL in a headless browser (JS-rendered pages are common
among SaaS landing pages) and extracts the structured text the site
analyzer reads: title, meta tags, headings, paragraphs, links and
OpenGraph data.

No retries: a failed fetch raises FetchError and the caller decides
whether that is fatal.
"""

import logging
import re
from typing import Any

from bs4 import BeautifulSoup
from playwright.async_api import Browser, Error as PlaywrightError, TimeoutError as PlaywrightTimeout

from keyword_engine.errors import FetchError
from keyword_engine.models import CrawlResult, Heading, Link

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; KeywordEngineBot/1.0)"

# Elements that carry no page content
_NOISE_TAGS = ["script", "style", "nav", "footer", "header", "noscript", "iframe", "svg"]

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)

# Paragraphs shorter than this are usually buttons or captions
_MIN_PARAGRAPH_CHARS = 30


def normalize_target_url(url: str) -> str:
    """Prefix https:// onto bare hosts like "example.com"."""
    url = url.strip()
    if not _SCHEME_RE.match(url):
        url = f"https://{url}"
    return url


def parse_page(
    url: str,
    html: str,
    max_paragraphs: int = 30,
    max_links: int = 50,
) -> CrawlResult:
    """Extract a CrawlResult from raw HTML. Performs no network access."""
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(_NOISE_TAGS):
        tag.decompose()

    title = soup.title.get_text(strip=True) if soup.title else ""

    meta_desc = soup.find("meta", attrs={"name": "description"})
    meta_description = (meta_desc.get("content") or "").strip() if meta_desc else ""

    meta_kw = soup.find("meta", attrs={"name": "keywords"})
    meta_keywords = tuple(
        k.strip() for k in ((meta_kw.get("content") or "") if meta_kw else "").split(",")
        if k.strip()
    )

    headings = []
    for tag in soup.find_all(["h1", "h2", "h3"]):
        text = tag.get_text(" ", strip=True)
        if text:
            headings.append(Heading(level=int(tag.name[1]), text=text))

    paragraphs = []
    for tag in soup.find_all("p"):
        text = tag.get_text(" ", strip=True)
        if len(text) > _MIN_PARAGRAPH_CHARS:
            paragraphs.append(text)
    paragraphs = paragraphs[:max_paragraphs]

    links = []
    for tag in soup.find_all("a", href=True):
        href = tag["href"].strip()
        text = tag.get_text(" ", strip=True)
        if _SCHEME_RE.match(href) and text:
            links.append(Link(href=href, text=text))
            if len(links) >= max_links:
                break

    og_data: dict[str, str] = {}
    for tag in soup.find_all("meta", attrs={"property": re.compile(r"^og:")}):
        prop = tag.get("property") or ""
        content = tag.get("content") or ""
        if prop and content:
            og_data[prop[3:]] = content

    return CrawlResult(
        url=url,
        title=title,
        meta_description=meta_description,
        meta_keywords=meta_keywords,
        headings=tuple(headings),
        paragraphs=tuple(paragraphs),
        links=tuple(links),
        og_data=og_data,
        structured_text=_structured_text(title, meta_description, headings, paragraphs),
    )


def _structured_text(
    title: str,
    meta_description: str,
    headings: list[Heading],
    paragraphs: list[str],
) -> str:
    """Flatten page content into markdown for the language model."""
    lines = [f"# {title}"]
    if meta_description:
        lines.append(f"\n> {meta_description}")
    lines.append("\n## Headings")
    lines.extend(f"{'#' * h.level} {h.text}" for h in headings)
    lines.append("\n## Content")
    lines.extend(paragraphs)
    return "\n".join(lines)


class Crawler:
    """Fetches pages through a shared Playwright browser."""

    def __init__(self, browser: Browser, config: dict[str, Any] | None = None):
        crawl_config = (config or {}).get("crawl", {})
        self.browser = browser
        self.timeout_ms = crawl_config.get("page_timeout_ms", 15000)
        self.user_agent = crawl_config.get("user_agent", DEFAULT_USER_AGENT)
        self.max_paragraphs = crawl_config.get("max_paragraphs", 30)
        self.max_links = crawl_config.get("max_links", 50)

    async def crawl(self, url: str) -> CrawlResult:
        """Fetch a page and extract its structured content.

        Raises:
            FetchError: On timeout, navigation failure or a non-2xx status.
        """
        target = normalize_target_url(url)
        html = await self._fetch(target)
        result = parse_page(target, html, self.max_paragraphs, self.max_links)
        logger.info(
            "Crawled %s: title=%r headings=%d paragraphs=%d links=%d",
            target, result.title, len(result.headings),
            len(result.paragraphs), len(result.links),
        )
        return result

    async def _fetch(self, url: str) -> str:
        context = None
        try:
            context = await self.browser.new_context(
                user_agent=self.user_agent,
                extra_http_headers={"Accept": "text/html"},
            )
            page = await context.new_page()
            response = await page.goto(url, timeout=self.timeout_ms, wait_until="domcontentloaded")
            if response is None:
                raise FetchError(url, "no response")
            if not response.ok:
                raise FetchError(url, f"HTTP {response.status}", status=response.status)
            return await page.content()
        except PlaywrightTimeout as e:
            raise FetchError(url, f"timeout after {self.timeout_ms}ms") from e
        except PlaywrightError as e:
            raise FetchError(url, str(e)[:300]) from e
        finally:
            if context is not None:
                await context.close()
