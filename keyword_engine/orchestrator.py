"""Pipeline orchestrator for keyword discovery.

Ties together all pipeline stages for one (owner, site) request:
1. Freshness cache check (reuse an analysis younger than 24 hours)
2. Crawl the site and run the site analysis (fatal on failure)
3. Enrich seed keywords with search volume
4. Expand the top seeds through keyword suggestions, then classify
5. Infer competitor keywords
6. Attach SERP difficulty to the top candidates and re-score
7. Sort, cluster the top keywords into article candidates
8. Persist everything, then refresh the site page list in the background

Only the crawl and the site analysis can fail the request. Every later
stage logs its error and continues with a degraded default.
"""

import asyncio
import logging
import re
import secrets
import string
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlparse

from playwright.async_api import async_playwright

from keyword_engine.analysis.classifier import KeywordClassifier
from keyword_engine.analysis.clusterer import ClusterBuilder
from keyword_engine.analysis.competitor_spy import CompetitorSpy
from keyword_engine.analysis.site_analyzer import SiteAnalyzer
from keyword_engine.crawler.crawler import DEFAULT_USER_AGENT, Crawler, normalize_target_url
from keyword_engine.crawler.sitemap import crawl_site_pages
from keyword_engine.errors import (
    ClassificationError,
    ClusterError,
    PersistError,
    PipelineTimeoutError,
    ProviderError,
    SpyError,
)
from keyword_engine.llm.client import LLMClient
from keyword_engine.metrics.client import MetricsClient
from keyword_engine.models import (
    DEFAULT_CLASSIFICATION,
    AnalysisResult,
    AnalysisStats,
    CompetitionLevel,
    CrawlResult,
    EnrichedKeyword,
    KeywordCluster,
    KeywordMetrics,
    SiteAnalysis,
    SitePage,
)
from keyword_engine.scoring.opportunity import opportunity_score
from keyword_engine.storage.bigquery_client import BigQueryClient

logger = logging.getLogger(__name__)

_API_KEY_ALPHABET = string.ascii_letters + string.digits


def generate_slug(value: str) -> str:
    """URL slug from a site title or URL."""
    slug = value.lower()
    slug = re.sub(r"https?://", "", slug)
    slug = slug.replace("www.", "")
    slug = re.sub(r"[^a-z0-9]+", "-", slug)
    return slug.strip("-")[:60]


def generate_api_key() -> str:
    """Per-project public API key."""
    return "kw_pk_" + "".join(secrets.choice(_API_KEY_ALPHABET) for _ in range(32))


def _enriched(
    keyword: str,
    intent: str,
    relevance: str,
    category: str,
    source: str,
    metrics: Optional[KeywordMetrics],
) -> EnrichedKeyword:
    """Build a pipeline keyword, with zero metrics when none are known."""
    if metrics is None:
        return EnrichedKeyword(
            keyword=keyword,
            intent=intent,
            relevance=relevance,
            category=category,
            source=source,
            competition_level=CompetitionLevel.UNKNOWN.value,
        )
    return EnrichedKeyword(
        keyword=keyword,
        intent=intent,
        relevance=relevance,
        category=category,
        source=source,
        search_volume=metrics.search_volume,
        cpc=metrics.cpc,
        competition=metrics.competition,
        competition_level=metrics.competition_level.value,
        trend=list(metrics.trend),
        opportunity_score=opportunity_score(
            metrics.search_volume, metrics.competition, metrics.cpc, None
        ),
    )


class AnalysisPipeline:
    """Runs one keyword discovery analysis per call to run()."""

    def __init__(
        self,
        config: dict[str, Any],
        crawler: Any,
        llm: Any,
        metrics: Any,
        store: Any,
        site_pages_fetcher: Optional[Callable[[str], Awaitable[list[SitePage]]]] = None,
    ):
        """Initialize the pipeline.

        Args:
            config: Application configuration.
            crawler: Page crawler (Crawler or compatible).
            llm: Language model client (LLMClient or compatible).
            metrics: Keyword metrics client (MetricsClient or compatible).
            store: Persistence store (BigQueryClient or compatible).
            site_pages_fetcher: Coroutine listing a site's pages; defaults
                to a sitemap crawl.
        """
        pipeline = config.get("pipeline", {})
        vertex = config.get("vertex_ai", {})
        self.config = config

        self.cache_ttl = timedelta(hours=pipeline.get("cache_ttl_hours", 24))
        self.timeout_seconds = pipeline.get("timeout_seconds", 300)
        self.expansion_seeds = pipeline.get("expansion_seeds", 5)
        self.expansion_min_volume = pipeline.get("expansion_min_volume", 10)
        self.suggestions_per_seed = pipeline.get("suggestions_per_seed", 20)
        self.max_competitors = pipeline.get("max_competitors", 3)
        self.serp_top_n = pipeline.get("serp_top_n", 15)
        self.serp_min_volume = pipeline.get("serp_min_volume", 50)
        self.cluster_max_keywords = pipeline.get("cluster_max_keywords", 150)
        self.cluster_min_keywords = pipeline.get("cluster_min_keywords", 5)
        self.keyword_batch_size = pipeline.get("keyword_batch_size", 50)

        analysis_model = vertex.get("analysis_model")
        classification_model = vertex.get("classification_model")

        self.crawler = crawler
        self.metrics = metrics
        self.store = store
        self.site_analyzer = SiteAnalyzer(llm, model_name=analysis_model)
        self.classifier = KeywordClassifier(
            llm,
            model_name=classification_model,
            batch_size=pipeline.get("classify_batch_size", 80),
        )
        self.spy = CompetitorSpy(crawler, llm, metrics, model_name=analysis_model)
        self.cluster_builder = ClusterBuilder(llm, model_name=analysis_model)
        self.site_pages_fetcher = site_pages_fetcher or self._sitemap_pages

        self._background_tasks: set[asyncio.Task] = set()

    # ── Entry point ────────────────────────────────────────────────

    async def run(self, owner_id: str, url: str) -> AnalysisResult:
        """Analyze a site for an owner, or return a fresh cached analysis.

        Raises:
            FetchError: The site could not be crawled.
            AnalysisError: The site analysis failed.
            PipelineTimeoutError: The run exceeded its wall-clock budget.
        """
        try:
            return await asyncio.wait_for(
                self._run(owner_id, url), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise PipelineTimeoutError(
                f"Analysis of {url} exceeded {self.timeout_seconds}s"
            ) from e

    async def _run(self, owner_id: str, url: str) -> AnalysisResult:
        target = normalize_target_url(url)
        logger.info("=== Analysis starting: owner=%s, url=%s ===", owner_id, target)

        # ── Stage 0: Cache check ───────────────────────────────────
        cached = self._check_cache(owner_id, target)
        if cached is not None:
            return cached

        # ── Stage 1-2: Crawl + site analysis (fatal) ───────────────
        crawl = await self.crawler.crawl(target)
        analysis = await self.site_analyzer.analyze(crawl)
        context = analysis.product_context

        # ── Stage 3: Seed volumes ──────────────────────────────────
        keywords, provider_available = await self._enrich_seeds(analysis)
        seen = {k.key for k in keywords}

        if provider_available:
            # ── Stage 4: Expansion ─────────────────────────────────
            keywords.extend(await self._expand(keywords, seen, context))
            # ── Stage 5: Competitors ───────────────────────────────
            keywords.extend(await self._spy_competitors(analysis, seen, context))
        else:
            logger.warning("Metrics provider unavailable: skipping expansion and competitor spying")

        # ── Stage 6: SERP difficulty ───────────────────────────────
        await self._enrich_serp(keywords)

        # ── Stage 7: Final ranking ─────────────────────────────────
        keywords.sort(key=lambda k: k.opportunity_score, reverse=True)

        # ── Stage 8: Clustering ────────────────────────────────────
        clusters = await self._cluster(keywords, context)

        # ── Stage 9: Persist ───────────────────────────────────────
        project_id, analysis_id, created_at = self._persist(
            owner_id, crawl, analysis, keywords, clusters
        )

        stats = AnalysisStats.from_run(keywords, clusters)
        logger.info(
            "=== Analysis complete: id=%s keywords=%d with_volume=%d expanded=%d "
            "competitor=%d serp=%d clusters=%d ===",
            analysis_id, stats.total_keywords, stats.with_volume, stats.expanded,
            stats.from_competitors, stats.with_serp_data, stats.clusters,
        )

        self._spawn_site_pages_refresh(project_id, crawl.url)

        return AnalysisResult(
            analysis_id=analysis_id,
            cached=False,
            project_id=project_id,
            created_at=created_at,
            stats=stats,
            keywords=keywords,
            clusters=clusters,
            competitors=list(analysis.competitors),
        )

    # ── Stages ─────────────────────────────────────────────────────

    def _check_cache(self, owner_id: str, url: str) -> Optional[AnalysisResult]:
        """Return the latest analysis if it is inside the freshness window."""
        try:
            latest = self.store.find_latest_analysis(owner_id, url)
        except PersistError as e:
            logger.warning("Cache lookup failed, running a fresh analysis: %s", e)
            return None
        if latest is None:
            return None

        created_at = latest["created_at"]
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        age = datetime.now(timezone.utc) - created_at
        if age >= self.cache_ttl:
            logger.info("Cached analysis %s is stale (%s old)", latest["analysis_id"], age)
            return None

        logger.info("Returning cached analysis %s (%s old)", latest["analysis_id"], age)
        return AnalysisResult(
            analysis_id=latest["analysis_id"],
            cached=True,
            project_id=latest.get("project_id"),
            created_at=created_at,
        )

    async def _enrich_seeds(
        self, analysis: SiteAnalysis
    ) -> tuple[list[EnrichedKeyword], bool]:
        """Attach volumes to seed keywords.

        Returns the seed keywords and whether the provider answered.
        """
        seeds = analysis.seed_keywords
        try:
            volumes = await self.metrics.get_volumes([s.keyword for s in seeds])
        except ProviderError as e:
            logger.error("Seed volume lookup failed, continuing without volumes: %s", e)
            return [
                _enriched(s.keyword, s.intent, s.relevance, s.category, "seed", None)
                for s in seeds
            ], False

        volume_map = {v.keyword.lower(): v for v in volumes}
        keywords = [
            _enriched(
                s.keyword, s.intent, s.relevance, s.category, "seed",
                volume_map.get(s.keyword.lower()),
            )
            for s in seeds
        ]
        logger.info(
            "Seed enrichment: %d/%d keywords have volume",
            sum(1 for k in keywords if k.search_volume > 0), len(keywords),
        )
        return keywords, True

    async def _suggestions_for(self, seed: str) -> list[KeywordMetrics]:
        try:
            return await self.metrics.get_suggestions(seed, limit=self.suggestions_per_seed)
        except ProviderError as e:
            logger.warning("Suggestions for '%s' failed: %s", seed, e)
            return []

    async def _expand(
        self, keywords: list[EnrichedKeyword], seen: set[str], context: str
    ) -> list[EnrichedKeyword]:
        """Expand the top seeds through suggestions and classify the new keywords."""
        top_seeds = sorted(
            (k for k in keywords if k.search_volume >= self.expansion_min_volume),
            key=lambda k: k.search_volume,
            reverse=True,
        )[:self.expansion_seeds]
        if not top_seeds:
            logger.info("No seed keyword has enough volume to expand")
            return []

        # Fan out; `seen` is only touched after every call has returned
        suggestion_lists = await asyncio.gather(
            *(self._suggestions_for(seed.keyword) for seed in top_seeds)
        )

        new_metrics: list[KeywordMetrics] = []
        for suggestions in suggestion_lists:
            for s in suggestions:
                key = s.keyword.strip().lower()
                if not key or key in seen:
                    continue
                seen.add(key)
                new_metrics.append(s)

        if not new_metrics:
            return []

        try:
            classifications = await self.classifier.classify(
                [
                    {"keyword": m.keyword, "search_volume": m.search_volume, "cpc": m.cpc}
                    for m in new_metrics
                ],
                context,
            )
        except ClassificationError as e:
            logger.error("Classification failed, using default tags: %s", e)
            classifications = {}

        expanded = []
        for m in new_metrics:
            c = classifications.get(m.keyword.strip().lower(), DEFAULT_CLASSIFICATION)
            expanded.append(
                _enriched(m.keyword.strip(), c.intent, c.relevance, c.category, "expanded", m)
            )
        logger.info(
            "Expansion: %d new keywords from %d seeds", len(expanded), len(top_seeds)
        )
        return expanded

    async def _spy_competitors(
        self, analysis: SiteAnalysis, seen: set[str], context: str
    ) -> list[EnrichedKeyword]:
        urls = [
            c.url for c in analysis.competitors
            if urlparse(c.url).scheme in ("http", "https")
        ]
        if not urls:
            return []
        try:
            found = await self.spy.spy(urls, context, seen, self.max_competitors)
        except SpyError as e:
            logger.error("Competitor spying failed, continuing without: %s", e)
            return []
        logger.info("Competitor spying: %d new keywords", len(found))
        return found

    async def _enrich_serp(self, keywords: list[EnrichedKeyword]) -> None:
        """Attach SERP difficulty to the top candidates and re-score them."""
        candidates = sorted(
            (k for k in keywords if k.search_volume >= self.serp_min_volume),
            key=lambda k: k.opportunity_score,
            reverse=True,
        )[:self.serp_top_n]
        if not candidates:
            return

        try:
            serp_results = await self.metrics.get_serp_difficulty(
                [k.keyword for k in candidates]
            )
        except ProviderError as e:
            logger.error("SERP lookup failed, continuing without difficulty: %s", e)
            return

        serp_map = {s.keyword.lower(): s for s in serp_results}
        updated = 0
        for kw in keywords:
            serp = serp_map.get(kw.key)
            if serp is not None:
                kw.apply_serp_difficulty(serp.difficulty)
                updated += 1
        logger.info("SERP difficulty attached to %d keywords", updated)

    async def _cluster(
        self, keywords: list[EnrichedKeyword], context: str
    ) -> list[KeywordCluster]:
        eligible = [
            k for k in keywords if k.search_volume > 0 or k.relevance == "high"
        ][:self.cluster_max_keywords]
        if len(eligible) < self.cluster_min_keywords:
            logger.info("Only %d keywords eligible for clustering, skipping", len(eligible))
            return []
        try:
            return await self.cluster_builder.cluster(eligible, context)
        except ClusterError as e:
            logger.error("Clustering failed, continuing without clusters: %s", e)
            return []

    # ── Persistence ────────────────────────────────────────────────

    def _persist(
        self,
        owner_id: str,
        crawl: CrawlResult,
        analysis: SiteAnalysis,
        keywords: list[EnrichedKeyword],
        clusters: list[KeywordCluster],
    ) -> tuple[str, str, datetime]:
        """Write the run. Failed writes are logged; nothing is rolled back."""
        created_at = datetime.now(timezone.utc)
        now = created_at.isoformat()
        project_id = self._ensure_project(owner_id, crawl, now)
        analysis_id = str(uuid.uuid4())

        try:
            self.store.insert_analysis({
                "analysis_id": analysis_id,
                "project_id": project_id,
                "site_title": crawl.title,
                "site_description": crawl.meta_description,
                "product_summary": analysis.product_summary,
                "target_audience": analysis.target_audience,
                "content_angles": [
                    {"title": a.title, "type": a.type} for a in analysis.content_angles
                ],
                "key_tools": [
                    {"name": t.name, "description": t.description} for t in analysis.key_tools
                ],
                "created_at": now,
            })
        except PersistError as e:
            logger.error("Analysis insert failed for %s: %s", analysis_id, e)

        rows = [_keyword_row(analysis_id, kw, now) for kw in keywords]
        for start in range(0, len(rows), self.keyword_batch_size):
            batch = rows[start:start + self.keyword_batch_size]
            try:
                self.store.insert_keywords_batch(batch)
            except PersistError as e:
                logger.error(
                    "Keyword batch %d-%d insert failed: %s", start, start + len(batch), e
                )

        if analysis.competitors:
            try:
                self.store.insert_competitors([
                    {
                        "analysis_id": analysis_id,
                        "name": c.name,
                        "url": c.url,
                        "reason": c.reason,
                        "created_at": now,
                    }
                    for c in analysis.competitors
                ])
            except PersistError as e:
                logger.error("Competitor insert failed: %s", e)

        if clusters:
            try:
                self.store.insert_clusters([_cluster_row(analysis_id, c, now) for c in clusters])
            except PersistError as e:
                logger.error("Cluster insert failed: %s", e)

        return project_id, analysis_id, created_at

    def _ensure_project(self, owner_id: str, crawl: CrawlResult, now: str) -> str:
        slug = generate_slug(crawl.title or crawl.url)
        try:
            existing = self.store.find_project(owner_id, crawl.url)
        except PersistError as e:
            logger.error("Project lookup failed: %s", e)
            existing = None

        if existing is not None:
            project_id = existing["project_id"]
            if not existing.get("slug"):
                try:
                    self.store.update_project_slug(project_id, slug)
                except PersistError as e:
                    logger.error("Slug backfill failed for project %s: %s", project_id, e)
            return project_id

        project_id = str(uuid.uuid4())
        try:
            self.store.insert_project({
                "project_id": project_id,
                "owner_id": owner_id,
                "name": crawl.title,
                "url": crawl.url,
                "slug": slug,
                "api_key": generate_api_key(),
                "created_at": now,
            })
        except PersistError as e:
            logger.error("Project insert failed for %s: %s", crawl.url, e)
        return project_id

    # ── Background site page refresh ───────────────────────────────

    async def _sitemap_pages(self, site_url: str) -> list[SitePage]:
        sitemap = self.config.get("sitemap", {})
        return await crawl_site_pages(
            site_url,
            max_pages=sitemap.get("max_pages", 100),
            batch_size=sitemap.get("batch_size", 5),
            timeout=sitemap.get("timeout_seconds", 10),
            user_agent=self.config.get("crawl", {}).get("user_agent", DEFAULT_USER_AGENT),
        )

    async def _refresh_site_pages(self, project_id: str, site_url: str) -> None:
        pages = await self.site_pages_fetcher(site_url)
        if not pages:
            logger.info("Sitemap refresh for %s found no pages", site_url)
            return
        now = datetime.now(timezone.utc).isoformat()
        self.store.replace_site_pages(
            project_id,
            [
                {
                    "project_id": project_id,
                    "url": p.url,
                    "path": p.path,
                    "title": p.title,
                    "description": p.description,
                    "crawled_at": now,
                }
                for p in pages
            ],
        )

    def _spawn_site_pages_refresh(self, project_id: str, site_url: str) -> None:
        """Start the site page refresh without waiting for it."""
        task = asyncio.create_task(self._refresh_site_pages(project_id, site_url))
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            logger.warning("Site page refresh was cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error("Site page refresh failed: %s", error, exc_info=error)

    async def drain_background_tasks(self) -> None:
        """Wait for detached tasks (for process entry points about to exit)."""
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)


def _keyword_row(analysis_id: str, kw: EnrichedKeyword, now: str) -> dict[str, Any]:
    return {
        "analysis_id": analysis_id,
        "keyword": kw.keyword,
        "intent": kw.intent,
        "relevance": kw.relevance,
        "category": kw.category,
        "search_volume": kw.search_volume,
        "cpc": kw.cpc,
        "competition": kw.competition,
        "competition_level": kw.competition_level,
        "trend": kw.trend,
        "opportunity_score": kw.opportunity_score,
        "serp_difficulty": kw.serp_difficulty,
        "source": kw.source,
        "competitor_domain": kw.competitor_domain,
        "created_at": now,
    }


def _cluster_row(analysis_id: str, cluster: KeywordCluster, now: str) -> dict[str, Any]:
    return {
        "analysis_id": analysis_id,
        "topic": cluster.topic,
        "article_title": cluster.article_title,
        "pillar_keyword": cluster.pillar_keyword,
        "supporting_keywords": cluster.supporting_keywords,
        "search_intent": cluster.search_intent,
        "article_type": cluster.article_type,
        "difficulty": cluster.difficulty,
        "total_volume": cluster.total_volume,
        "avg_competition": cluster.avg_competition,
        "created_at": now,
    }


async def run_analysis(config: dict[str, Any], owner_id: str, url: str) -> AnalysisResult:
    """Build the production clients and run one analysis.

    Waits for the background site page refresh before returning so the
    process can exit cleanly.
    """
    gcp = config["gcp"]
    vertex_config = config.get("vertex_ai", {})

    store = BigQueryClient(
        project_id=gcp["project_id"],
        dataset_id=gcp["bigquery_dataset"],
        location=gcp.get("region", "us-east4"),
    )
    store.ensure_tables_exist()

    llm = LLMClient(
        project_id=gcp["project_id"],
        region=gcp.get("region", "us-east4"),
        model_name=vertex_config.get("analysis_model", "gemini-1.5-pro"),
        temperature=vertex_config.get("temperature", 0.4),
        max_output_tokens=vertex_config.get("max_output_tokens", 8192),
    )
    metrics = MetricsClient.from_config(config)

    async with async_playwright() as p:
        headless = config.get("crawl", {}).get("headless", True)
        browser = await p.chromium.launch(headless=headless)
        logger.info("Browser launched (headless=%s)", headless)
        try:
            pipeline = AnalysisPipeline(
                config=config,
                crawler=Crawler(browser, config),
                llm=llm,
                metrics=metrics,
                store=store,
            )
            result = await pipeline.run(owner_id, url)
            await pipeline.drain_background_tasks()
        finally:
            await browser.close()

    return result
