"""Tests for the analysis pipeline with every external service faked."""

import asyncio
import unittest
from datetime import datetime, timedelta, timezone

from playwright.async_api import Error as PlaywrightError

from keyword_engine.errors import (
    AnalysisError,
    FetchError,
    LLMError,
    PersistError,
    PipelineTimeoutError,
    ProviderError,
)
from keyword_engine.llm.prompts import (
    CLASSIFY_SYSTEM_PROMPT,
    CLUSTER_SYSTEM_PROMPT,
    COMPETITOR_SYSTEM_PROMPT,
    SITE_ANALYSIS_SYSTEM_PROMPT,
)
from keyword_engine.models import (
    CompetitionLevel,
    CrawlResult,
    KeywordMetrics,
    SerpResult,
    SitePage,
)
from keyword_engine.orchestrator import AnalysisPipeline, generate_api_key, generate_slug

SITE_URL = "https://ideaforge.io"

# keyword -> (volume, cpc, competition)
VOLUMES = {
    "app ideas": (5000, 2.0, 0.3),
    "app analytics": (1000, 1.0, 0.5),
    "app idea generator": (800, 1.5, 0.2),
    "best app ideas": (600, 0.5, 0.4),
    "analytics sdk": (300, 4.0, 0.6),
    "rival alternatives": (400, 3.0, 0.5),
}

SUGGESTIONS = {
    "app ideas": ["app ideas", "App Idea Generator", "best app ideas"],
    "app analytics": ["best app ideas", "analytics sdk"],
}


def _metrics(keyword: str) -> KeywordMetrics:
    volume, cpc, competition = VOLUMES[keyword.strip().lower()]
    return KeywordMetrics(keyword, volume, cpc, competition, CompetitionLevel.MEDIUM, (volume,))


def _quoted(prompt: str) -> list[str]:
    return [line.split('"')[1] for line in prompt.splitlines() if line.startswith('- "')]


class FakeCrawler:

    def __init__(self, fail: bool = False, delay: float = 0.0, broken_urls=()):
        self.fail = fail
        self.broken_urls = set(broken_urls)
        self.delay = delay
        self.urls: list[str] = []

    async def crawl(self, url):
        self.urls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise FetchError(url, "HTTP 500", status=500)
        if url in self.broken_urls:
            raise PlaywrightError("Target page, context or browser has been closed")
        return CrawlResult(url=url, title="IdeaForge | App idea lab", meta_description="Ideas")


class FakeLLM:
    """Answers each prompt type with a canned response."""

    def __init__(self, seeds=None, fail_on=()):
        self.seeds = seeds if seeds is not None else [
            {"keyword": "app ideas", "intent": "informational", "relevance": "high", "category": "broad"},
            {"keyword": "App Ideas", "intent": "informational", "relevance": "high", "category": "broad"},
            {"keyword": "app analytics", "intent": "commercial", "relevance": "medium", "category": "niche"},
            {"keyword": "mobile app revenue", "intent": "informational", "relevance": "medium",
             "category": "broad"},
            {"keyword": "app idea validation", "intent": "informational", "relevance": "high",
             "category": "niche"},
        ]
        self.fail_on = set(fail_on)
        self.calls: list[str] = []

    async def generate_json(self, prompt, system_instruction, response_schema, model_name=None):
        self.calls.append(system_instruction)
        if system_instruction in self.fail_on:
            raise LLMError("model unavailable")
        if system_instruction == SITE_ANALYSIS_SYSTEM_PROMPT:
            return {
                "productSummary": "IdeaForge validates mobile app ideas.",
                "targetAudience": "Indie developers",
                "seedKeywords": self.seeds,
                "competitors": [
                    {"name": "Rival", "url": "https://rival.com", "reason": "Same niche"},
                    {"name": "Offline", "url": "rival-print-magazine", "reason": "Print"},
                ],
                "contentAngles": [{"title": "50 app ideas", "type": "listicle"}],
                "keyTools": [],
            }
        if system_instruction == CLASSIFY_SYSTEM_PROMPT:
            return {
                "classified": [
                    {"keyword": k, "intent": "commercial", "relevance": "high", "category": "niche"}
                    for k in _quoted(prompt)
                ]
            }
        if system_instruction == COMPETITOR_SYSTEM_PROMPT:
            return {
                "inferredKeywords": [
                    {"keyword": "app idea generator", "intent": "commercial", "category": "niche"},
                    {"keyword": "rival alternatives", "intent": "commercial", "category": "comparison"},
                ]
            }
        if system_instruction == CLUSTER_SYSTEM_PROMPT:
            keywords = _quoted(prompt)
            return {
                "clusters": [{
                    "topic": "App ideas",
                    "articleTitle": "App ideas worth building",
                    "pillarKeyword": keywords[-1],
                    "supportingKeywords": keywords[:-1],
                    "searchIntent": "informational",
                    "articleType": "listicle",
                    "difficulty": "easy",
                }]
            }
        raise AssertionError(f"Unexpected prompt: {system_instruction[:40]}")


class FakeMetrics:

    def __init__(self, volumes_fail=False, serp_fail=False):
        self.volumes_fail = volumes_fail
        self.serp_fail = serp_fail
        self.volume_calls: list[list[str]] = []
        self.suggestion_calls: list[str] = []
        self.serp_calls: list[list[str]] = []

    async def get_volumes(self, keywords):
        self.volume_calls.append(list(keywords))
        if self.volumes_fail:
            raise ProviderError("DataForSEO error 401", status=401)
        return [_metrics(k) for k in keywords if k.lower() in VOLUMES]

    async def get_suggestions(self, seed, limit=50):
        self.suggestion_calls.append(seed)
        return [_metrics(k) for k in SUGGESTIONS.get(seed, [])][:limit]

    async def get_serp_difficulty(self, keywords):
        self.serp_calls.append(list(keywords))
        if self.serp_fail:
            raise ProviderError("All SERP batches failed")
        return [SerpResult(keyword=k.upper(), difficulty=40) for k in keywords]


class FakeStore:

    def __init__(self, latest=None, project=None, fail_keywords=False):
        self.latest = latest
        self.project = project
        self.fail_keywords = fail_keywords
        self.projects: list[dict] = []
        self.analyses: list[dict] = []
        self.keyword_batches: list[list[dict]] = []
        self.competitors: list[dict] = []
        self.clusters: list[dict] = []
        self.slug_updates: list[tuple[str, str]] = []
        self.site_pages: dict[str, list[dict]] = {}

    def find_latest_analysis(self, owner_id, url):
        return self.latest

    def find_project(self, owner_id, url):
        return self.project

    def insert_project(self, row):
        self.projects.append(row)

    def insert_analysis(self, row):
        self.analyses.append(row)

    def insert_keywords_batch(self, rows):
        if self.fail_keywords:
            raise PersistError("quota exceeded")
        self.keyword_batches.append(rows)

    def insert_competitors(self, rows):
        self.competitors.extend(rows)

    def insert_clusters(self, rows):
        self.clusters.extend(rows)

    def update_project_slug(self, project_id, slug):
        self.slug_updates.append((project_id, slug))

    def replace_site_pages(self, project_id, rows):
        self.site_pages[project_id] = rows

    @property
    def keyword_rows(self):
        return [row for batch in self.keyword_batches for row in batch]


async def _pages(site_url):
    return [SitePage(url=f"{site_url}/blog", path="/blog", title="Blog", description="")]


class PipelineTestCase(unittest.IsolatedAsyncioTestCase):

    def _pipeline(self, crawler=None, llm=None, metrics=None, store=None, pages=_pages, config=None):
        self.crawler = crawler or FakeCrawler()
        self.llm = llm or FakeLLM()
        self.metrics = metrics or FakeMetrics()
        self.store = store or FakeStore()
        self.pipeline = AnalysisPipeline(
            config or {},
            crawler=self.crawler,
            llm=self.llm,
            metrics=self.metrics,
            store=self.store,
            site_pages_fetcher=pages,
        )
        return self.pipeline

    async def _run(self, url=SITE_URL, **kwargs):
        pipeline = self._pipeline(**kwargs)
        try:
            return await pipeline.run("owner-1", url)
        finally:
            await pipeline.drain_background_tasks()


class TestFullRun(PipelineTestCase):
    """A run where every service answers."""

    async def asyncSetUp(self):
        self.result = await self._run()

    def test_not_cached(self):
        self.assertFalse(self.result.cached)
        self.assertIsNotNone(self.result.analysis_id)

    def test_keywords_unique_case_insensitive(self):
        keys = [k.keyword.lower() for k in self.result.keywords]
        self.assertEqual(len(keys), len(set(keys)))

    def test_sources(self):
        by_source = {}
        for k in self.result.keywords:
            by_source.setdefault(k.source, set()).add(k.keyword.lower())
        self.assertEqual(
            by_source["seed"],
            {"app ideas", "app analytics", "mobile app revenue", "app idea validation"},
        )
        self.assertEqual(by_source["expanded"], {"app idea generator", "best app ideas", "analytics sdk"})
        self.assertEqual(by_source["competitor"], {"rival alternatives"})

    def test_only_seeds_with_volume_are_expanded(self):
        self.assertEqual(sorted(self.metrics.suggestion_calls), ["app analytics", "app ideas"])

    def test_expanded_keywords_are_classified(self):
        expanded = [k for k in self.result.keywords if k.source == "expanded"]
        self.assertTrue(all(k.intent == "commercial" and k.relevance == "high" for k in expanded))

    def test_competitor_keyword(self):
        rival = next(k for k in self.result.keywords if k.source == "competitor")
        self.assertEqual(rival.relevance, "medium")
        self.assertEqual(rival.competitor_domain, "rival.com")
        self.assertEqual(rival.search_volume, 400)

    def test_only_http_competitors_are_crawled(self):
        self.assertEqual(self.crawler.urls, [SITE_URL, "https://rival.com"])

    def test_serp_candidates(self):
        asked = self.metrics.serp_calls[0]
        self.assertEqual(len(asked), 6)
        self.assertNotIn("mobile app revenue", asked)

    def test_serp_difficulty_rescored(self):
        app_ideas = next(k for k in self.result.keywords if k.key == "app ideas")
        self.assertEqual(app_ideas.serp_difficulty, 40)
        self.assertEqual(app_ideas.opportunity_score, 242)
        zero = next(k for k in self.result.keywords if k.key == "mobile app revenue")
        self.assertIsNone(zero.serp_difficulty)
        self.assertEqual(zero.opportunity_score, 0)
        self.assertEqual(zero.competition_level, "UNKNOWN")

    def test_sorted_by_opportunity(self):
        scores = [k.opportunity_score for k in self.result.keywords]
        self.assertEqual(scores, sorted(scores, reverse=True))

    def test_clusters(self):
        self.assertEqual(len(self.result.clusters), 1)
        members = self.result.clusters[0].members
        self.assertEqual(len(members), 7)
        self.assertNotIn("mobile app revenue", members)
        self.assertEqual(self.result.clusters[0].pillar_keyword, "app ideas")

    def test_stats(self):
        stats = self.result.stats
        self.assertEqual(stats.total_keywords, 8)
        self.assertEqual(stats.with_volume, 6)
        self.assertEqual(stats.expanded, 3)
        self.assertEqual(stats.from_competitors, 1)
        self.assertEqual(stats.with_serp_data, 6)
        self.assertEqual(stats.clusters, 1)

    def test_persisted(self):
        self.assertEqual(len(self.store.projects), 1)
        project = self.store.projects[0]
        self.assertEqual(project["url"], SITE_URL)
        self.assertEqual(project["slug"], "ideaforge-app-idea-lab")
        self.assertTrue(project["api_key"].startswith("kw_pk_"))
        self.assertEqual(self.store.analyses[0]["analysis_id"], self.result.analysis_id)
        self.assertEqual(self.store.analyses[0]["content_angles"], [{"title": "50 app ideas", "type": "listicle"}])
        self.assertEqual(len(self.store.keyword_rows), 8)
        self.assertEqual(len(self.store.competitors), 2)
        self.assertEqual(len(self.store.clusters), 1)

    def test_created_at_matches_persisted_rows(self):
        self.assertEqual(self.result.created_at.isoformat(), self.store.analyses[0]["created_at"])
        self.assertEqual(self.result.created_at.isoformat(), self.store.keyword_rows[0]["created_at"])

    def test_site_pages_refreshed(self):
        rows = self.store.site_pages[self.result.project_id]
        self.assertEqual(rows[0]["path"], "/blog")


class TestDegradation(PipelineTestCase):
    """Failures after site analysis never abort the run."""

    async def test_provider_down_keeps_all_seeds(self):
        seeds = [
            {"keyword": f"keyword {i}", "intent": "informational", "relevance": "medium", "category": "broad"}
            for i in range(80)
        ]
        result = await self._run(llm=FakeLLM(seeds=seeds), metrics=FakeMetrics(volumes_fail=True))

        self.assertEqual(result.stats.total_keywords, 80)
        self.assertEqual(result.stats.with_volume, 0)
        self.assertTrue(all(k.source == "seed" for k in result.keywords))
        self.assertTrue(all(k.search_volume == 0 and k.opportunity_score == 0 for k in result.keywords))
        self.assertEqual(self.metrics.suggestion_calls, [])
        self.assertEqual(self.crawler.urls, [SITE_URL])
        self.assertEqual([len(b) for b in self.store.keyword_batches], [50, 30])

    async def test_classification_failure_uses_defaults(self):
        result = await self._run(llm=FakeLLM(fail_on={CLASSIFY_SYSTEM_PROMPT}))
        expanded = [k for k in result.keywords if k.source == "expanded"]
        self.assertEqual(len(expanded), 3)
        self.assertTrue(all(
            (k.intent, k.relevance, k.category) == ("informational", "medium", "broad")
            for k in expanded
        ))

    async def test_padded_suggestion_keeps_its_classification(self):
        class PaddedMetrics(FakeMetrics):
            async def get_suggestions(self, seed, limit=50):
                self.suggestion_calls.append(seed)
                if seed == "app ideas":
                    return [_metrics("  App Idea Generator ")]
                return []

        result = await self._run(metrics=PaddedMetrics())
        generator = next(k for k in result.keywords if k.key == "app idea generator")
        self.assertEqual(generator.keyword, "App Idea Generator")
        self.assertEqual(generator.source, "expanded")
        self.assertEqual((generator.intent, generator.relevance), ("commercial", "high"))

    async def test_competitor_failure(self):
        result = await self._run(llm=FakeLLM(fail_on={COMPETITOR_SYSTEM_PROMPT}))
        self.assertEqual(result.stats.from_competitors, 0)
        self.assertEqual(result.stats.expanded, 3)

    async def test_competitor_browser_error(self):
        result = await self._run(crawler=FakeCrawler(broken_urls={"https://rival.com"}))
        self.assertFalse(result.cached)
        self.assertEqual(result.stats.from_competitors, 0)
        self.assertEqual(result.stats.expanded, 3)

    async def test_serp_failure(self):
        result = await self._run(metrics=FakeMetrics(serp_fail=True))
        self.assertEqual(result.stats.with_serp_data, 0)
        app_ideas = next(k for k in result.keywords if k.key == "app ideas")
        self.assertEqual(app_ideas.opportunity_score, 288)

    async def test_cluster_failure(self):
        result = await self._run(llm=FakeLLM(fail_on={CLUSTER_SYSTEM_PROMPT}))
        self.assertEqual(result.clusters, [])
        self.assertEqual(result.stats.total_keywords, 8)

    async def test_too_few_keywords_to_cluster(self):
        seeds = [{"keyword": "app ideas", "relevance": "medium"}]
        result = await self._run(llm=FakeLLM(seeds=seeds), metrics=FakeMetrics())
        self.assertNotIn(CLUSTER_SYSTEM_PROMPT, self.llm.calls)
        self.assertEqual(result.clusters, [])

    async def test_keyword_persist_failure(self):
        result = await self._run(store=FakeStore(fail_keywords=True))
        self.assertEqual(result.stats.total_keywords, 8)
        self.assertEqual(len(self.store.analyses), 1)

    async def test_site_page_refresh_failure_is_isolated(self):
        async def broken(site_url):
            raise RuntimeError("sitemap parser exploded")

        result = await self._run(pages=broken)
        self.assertFalse(result.cached)
        self.assertEqual(self.store.site_pages, {})


class TestFatalErrors(PipelineTestCase):

    async def test_crawl_failure(self):
        with self.assertRaises(FetchError):
            await self._run(crawler=FakeCrawler(fail=True))
        self.assertEqual(self.store.analyses, [])

    async def test_site_analysis_failure(self):
        with self.assertRaises(AnalysisError):
            await self._run(llm=FakeLLM(fail_on={SITE_ANALYSIS_SYSTEM_PROMPT}))
        self.assertEqual(self.metrics.volume_calls, [])

    async def test_timeout(self):
        with self.assertRaises(PipelineTimeoutError):
            await self._run(
                crawler=FakeCrawler(delay=1.0),
                config={"pipeline": {"timeout_seconds": 0.05}},
            )


class TestCache(PipelineTestCase):

    async def test_fresh_analysis_is_reused(self):
        created = datetime.now(timezone.utc) - timedelta(hours=1)
        store = FakeStore(latest={"analysis_id": "a-1", "project_id": "p-1", "created_at": created})
        result = await self._run(store=store)
        self.assertTrue(result.cached)
        self.assertEqual(result.analysis_id, "a-1")
        self.assertEqual(self.crawler.urls, [])
        self.assertEqual(self.store.analyses, [])

    async def test_naive_timestamp_treated_as_utc(self):
        created = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(hours=2)
        store = FakeStore(latest={"analysis_id": "a-1", "project_id": "p-1", "created_at": created})
        result = await self._run(store=store)
        self.assertTrue(result.cached)

    async def test_stale_analysis_is_rerun(self):
        created = datetime.now(timezone.utc) - timedelta(hours=25)
        store = FakeStore(latest={"analysis_id": "a-1", "project_id": "p-1", "created_at": created})
        result = await self._run(store=store)
        self.assertFalse(result.cached)
        self.assertNotEqual(result.analysis_id, "a-1")

    async def test_bare_host_is_normalized(self):
        await self._run(url="ideaforge.io")
        self.assertEqual(self.crawler.urls[0], SITE_URL)

    async def test_existing_project_gets_slug(self):
        store = FakeStore(project={"project_id": "p-9", "slug": None})
        result = await self._run(store=store)
        self.assertEqual(result.project_id, "p-9")
        self.assertEqual(store.projects, [])
        self.assertEqual(store.slug_updates, [("p-9", "ideaforge-app-idea-lab")])


class TestHelpers(unittest.TestCase):

    def test_generate_slug(self):
        self.assertEqual(generate_slug("https://www.My-App.io/"), "my-app-io")
        self.assertEqual(generate_slug("IdeaForge | App idea lab"), "ideaforge-app-idea-lab")
        self.assertEqual(len(generate_slug("x" * 200)), 60)

    def test_generate_api_key(self):
        key = generate_api_key()
        self.assertTrue(key.startswith("kw_pk_"))
        self.assertEqual(len(key), 38)
        self.assertNotEqual(key, generate_api_key())


if __name__ == "__main__":
    unittest.main()
