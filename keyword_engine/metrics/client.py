"""DataForSEO client for keyword volumes, suggestions and SERP difficulty.

All three lookups are live (synchronous) endpoints authenticated with
HTTP basic auth. Failures surface as ProviderError; callers decide how
to degrade.
"""

import asyncio
import logging
from datetime import date, timedelta
from typing import Any, Optional

import httpx

from keyword_engine.errors import ProviderError
from keyword_engine.metrics.competition import normalize_competition
from keyword_engine.models import KeywordMetrics, SerpItem, SerpResult

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "https://api.dataforseo.com/v3"
_VOLUME_PATH = "/keywords_data/google_ads/search_volume/live"
_SUGGESTIONS_PATH = "/keywords_data/google_ads/keywords_for_keywords/live"
_SERP_PATH = "/serp/google/organic/live/regular"

# Provider limit on keywords per search volume task
_VOLUME_TASK_LIMIT = 1000

_BASE_BACKOFF_SECONDS = 2.0

BIG_BRAND_DOMAINS = frozenset({
    "google.com", "apple.com", "amazon.com", "microsoft.com",
    "facebook.com", "wikipedia.org", "youtube.com", "reddit.com",
    "forbes.com", "techcrunch.com", "medium.com",
})


def serp_difficulty(top_domains: list[str], has_featured_snippet: bool) -> int:
    """Estimate 0-100 ranking difficulty from the top organic results.

    Args:
        top_domains: Domains of the top 10 organic results, in rank order.
        has_featured_snippet: Whether the SERP shows a featured snippet.
    """
    top10 = top_domains[:10]
    brand_count = sum(1 for d in top10 if d in BIG_BRAND_DOMAINS)
    difficulty = brand_count * 8
    difficulty += min(len(top10) * 3, 30)
    if has_featured_snippet:
        difficulty += 10
    return min(difficulty, 100)


def _months_ago(months: int, today: Optional[date] = None) -> str:
    """ISO date roughly `months` calendar months before today."""
    today = today or date.today()
    year = today.year
    month = today.month - months
    while month <= 0:
        month += 12
        year -= 1
    # Clamp the day for shorter months (e.g. 31 March -> 28 February)
    day = today.day
    while True:
        try:
            return date(year, month, day).isoformat()
        except ValueError:
            day -= 1


def _parse_metrics(item: dict[str, Any]) -> KeywordMetrics:
    competition, level = normalize_competition(
        item.get("competition"), item.get("competition_level")
    )
    monthly = item.get("monthly_searches") or []
    return KeywordMetrics(
        keyword=item.get("keyword") or "",
        search_volume=_as_int(item.get("search_volume")),
        cpc=_as_float(item.get("cpc")),
        competition=competition,
        competition_level=level,
        trend=tuple(_as_int(m.get("search_volume")) for m in monthly if isinstance(m, dict)),
    )


def _as_int(value: Any) -> int:
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return 0


def _as_float(value: Any) -> float:
    try:
        return max(float(value), 0.0)
    except (TypeError, ValueError):
        return 0.0


class MetricsClient:
    """Client for the DataForSEO keyword and SERP APIs.

    Usage::

        client = MetricsClient(login="...", password="...")
        volumes = await client.get_volumes(["app ideas", "app analytics"])
    """

    def __init__(
        self,
        login: Optional[str],
        password: Optional[str],
        base_url: str = _DEFAULT_BASE_URL,
        location_code: int = 2840,
        language_code: str = "en",
        timeout: float = 60.0,
        max_retries: int = 3,
        serp_batch_size: int = 3,
        serp_concurrency: int = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._login = login
        self._password = password
        self._base_url = base_url.rstrip("/")
        self.location_code = location_code
        self.language_code = language_code
        self._timeout = timeout
        self._max_retries = max_retries
        self._serp_batch_size = serp_batch_size
        self._serp_semaphore = asyncio.Semaphore(serp_concurrency)
        self._transport = transport

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "MetricsClient":
        metrics = config.get("metrics", {})
        return cls(
            login=metrics.get("login"),
            password=metrics.get("password"),
            base_url=metrics.get("base_url", _DEFAULT_BASE_URL),
            location_code=metrics.get("location_code", 2840),
            language_code=metrics.get("language_code", "en"),
            timeout=metrics.get("timeout_seconds", 60),
            max_retries=metrics.get("max_retries", 3),
            serp_batch_size=metrics.get("serp_batch_size", 3),
            serp_concurrency=metrics.get("serp_concurrency", 2),
        )

    # ── Public lookups ─────────────────────────────────────────────

    async def get_volumes(
        self,
        keywords: list[str],
        location_code: Optional[int] = None,
        language_code: Optional[str] = None,
    ) -> list[KeywordMetrics]:
        """Fetch search volume, CPC, competition and 12-month trend.

        Raises:
            ProviderError: On missing credentials or a failed request.
        """
        if not keywords:
            return []
        self._check_credentials()

        date_from = _months_ago(12)
        tasks = [
            {
                "keywords": keywords[i:i + _VOLUME_TASK_LIMIT],
                "location_code": location_code or self.location_code,
                "language_code": language_code or self.language_code,
                "date_from": date_from,
            }
            for i in range(0, len(keywords), _VOLUME_TASK_LIMIT)
        ]
        data = await self._post(_VOLUME_PATH, tasks)

        results = [
            _parse_metrics(item)
            for task in data.get("tasks") or []
            for item in (task or {}).get("result") or []
            if isinstance(item, dict)
        ]
        logger.info("Fetched volumes for %d/%d keywords", len(results), len(keywords))
        return results

    async def get_suggestions(
        self,
        seed_keyword: str,
        location_code: Optional[int] = None,
        language_code: Optional[str] = None,
        limit: int = 50,
    ) -> list[KeywordMetrics]:
        """Expand one seed keyword into related keywords with metrics.

        Raises:
            ProviderError: On missing credentials or a failed request.
        """
        self._check_credentials()
        tasks = [
            {
                "keyword": seed_keyword,
                "location_code": location_code or self.location_code,
                "language_code": language_code or self.language_code,
                "limit": limit,
                "sort_by": "search_volume",
            }
        ]
        data = await self._post(_SUGGESTIONS_PATH, tasks)
        task = (data.get("tasks") or [{}])[0] or {}
        results = [
            _parse_metrics(item)
            for item in task.get("result") or []
            if isinstance(item, dict)
        ]
        logger.debug("Got %d suggestions for '%s'", len(results), seed_keyword)
        return results[:limit]

    async def get_serp_difficulty(
        self,
        keywords: list[str],
        location_code: Optional[int] = None,
        language_code: Optional[str] = None,
    ) -> list[SerpResult]:
        """Look up the organic SERP for each keyword and score its difficulty.

        Keywords are sent in small batches that run concurrently. A failed
        batch is skipped; ProviderError is raised only if all batches fail.
        """
        if not keywords:
            return []
        self._check_credentials()

        batches = [
            keywords[i:i + self._serp_batch_size]
            for i in range(0, len(keywords), self._serp_batch_size)
        ]
        outcomes = await asyncio.gather(
            *(self._serp_batch(b, location_code, language_code) for b in batches),
            return_exceptions=True,
        )

        results: list[SerpResult] = []
        failures = 0
        for batch, outcome in zip(batches, outcomes):
            if isinstance(outcome, ProviderError):
                failures += 1
                logger.error("SERP batch %s failed: %s", batch, outcome)
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            results.extend(outcome)

        if failures == len(batches):
            raise ProviderError(f"All {failures} SERP batches failed")

        logger.info("SERP difficulty computed for %d/%d keywords", len(results), len(keywords))
        return results

    # ── Internals ──────────────────────────────────────────────────

    async def _serp_batch(
        self,
        batch: list[str],
        location_code: Optional[int],
        language_code: Optional[str],
    ) -> list[SerpResult]:
        tasks = [
            {
                "keyword": kw,
                "location_code": location_code or self.location_code,
                "language_code": language_code or self.language_code,
                "depth": 10,
            }
            for kw in batch
        ]
        async with self._serp_semaphore:
            data = await self._post(_SERP_PATH, tasks)

        results = []
        for task in data.get("tasks") or []:
            task = task or {}
            keyword = (task.get("data") or {}).get("keyword") or ""
            task_result = (task.get("result") or [{}])[0] or {}
            items = [i for i in task_result.get("items") or [] if isinstance(i, dict)]

            organic = [i for i in items if i.get("type") == "organic"][:10]
            top = tuple(
                SerpItem(
                    position=_as_int(i.get("rank_absolute")),
                    title=i.get("title") or "",
                    domain=i.get("domain") or "",
                    url=i.get("url") or "",
                )
                for i in organic
            )
            has_snippet = any(i.get("type") == "featured_snippet" for i in items)
            has_paa = any(i.get("type") == "people_also_ask" for i in items)

            results.append(
                SerpResult(
                    keyword=keyword,
                    difficulty=serp_difficulty([t.domain for t in top], has_snippet),
                    top_results=top,
                    has_featured_snippet=has_snippet,
                    has_people_also_ask=has_paa,
                )
            )
        return results

    def _check_credentials(self) -> None:
        if not self._login or not self._password:
            raise ProviderError("DataForSEO credentials not configured")

    async def _post(self, path: str, payload: list[dict[str, Any]]) -> dict[str, Any]:
        """POST a task list, retrying with exponential backoff on 429."""
        url = f"{self._base_url}{path}"
        async with httpx.AsyncClient(
            timeout=self._timeout,
            auth=(self._login or "", self._password or ""),
            transport=self._transport,
        ) as client:
            for attempt in range(self._max_retries + 1):
                try:
                    response = await client.post(url, json=payload)
                except httpx.HTTPError as e:
                    raise ProviderError(f"DataForSEO request to {path} failed: {e}") from e

                if response.status_code == 429 and attempt < self._max_retries:
                    wait = _BASE_BACKOFF_SECONDS * (2 ** attempt)
                    logger.warning(
                        "DataForSEO rate limited (attempt %d/%d), retrying in %.1fs",
                        attempt + 1, self._max_retries, wait,
                    )
                    await asyncio.sleep(wait)
                    continue

                if not response.is_success:
                    raise ProviderError(
                        f"DataForSEO error {response.status_code}: {response.text[:300]}",
                        status=response.status_code,
                    )
                try:
                    return response.json()
                except ValueError as e:
                    raise ProviderError(f"DataForSEO returned invalid JSON: {e}") from e

        raise ProviderError(f"DataForSEO rate limit retries exhausted for {path}", status=429)
