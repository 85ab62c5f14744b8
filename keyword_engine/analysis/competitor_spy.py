"""Competitor keyword inference.

Crawls competitor sites one at a time, asks the model which keywords
each one targets, and enriches the new ones with a single batched
volume lookup.
"""

import logging
from typing import Any, Optional
from urllib.parse import urlparse

from keyword_engine.errors import FetchError, LLMError, ProviderError, SpyError
from keyword_engine.llm.prompts import COMPETITOR_SCHEMA, COMPETITOR_SYSTEM_PROMPT, build_competitor_prompt
from keyword_engine.models import CATEGORIES, INTENTS, EnrichedKeyword, KeywordMetrics, coerce_choice
from keyword_engine.scoring.opportunity import opportunity_score

logger = logging.getLogger(__name__)


class CompetitorSpy:
    """Infers keywords that competitors target."""

    def __init__(self, crawler: Any, llm: Any, metrics: Any, model_name: Optional[str] = None):
        self.crawler = crawler
        self.llm = llm
        self.metrics = metrics
        self.model_name = model_name

    async def spy(
        self,
        urls: list[str],
        product_context: str,
        existing_keywords: set[str],
        max_competitors: int = 3,
    ) -> list[EnrichedKeyword]:
        """Collect new keywords from up to max_competitors competitor sites.

        existing_keywords holds lower-cased keywords already in the run and
        is extended in place with every keyword accepted here.

        Raises:
            SpyError: If no attempted competitor could be analyzed.
        """
        targets = urls[:max_competitors]
        if not targets:
            return []

        inferred: list[EnrichedKeyword] = []
        failures = 0

        for url in targets:
            try:
                crawl = await self.crawler.crawl(url)
                data = await self.llm.generate_json(
                    build_competitor_prompt(crawl, product_context),
                    system_instruction=COMPETITOR_SYSTEM_PROMPT,
                    response_schema=COMPETITOR_SCHEMA,
                    model_name=self.model_name,
                )
            except (FetchError, LLMError) as e:
                failures += 1
                logger.error("Failed to spy on %s: %s", url, e)
                continue
            except Exception as e:
                failures += 1
                logger.error("Failed to spy on %s: %s", url, e, exc_info=True)
                continue

            domain = urlparse(crawl.url).hostname or url
            accepted = 0
            for item in data.get("inferredKeywords") or []:
                if not isinstance(item, dict) or not isinstance(item.get("keyword"), str):
                    continue
                keyword = item["keyword"].strip()
                if not keyword or keyword.lower() in existing_keywords:
                    continue
                existing_keywords.add(keyword.lower())
                accepted += 1
                inferred.append(
                    EnrichedKeyword(
                        keyword=keyword,
                        intent=coerce_choice(item.get("intent"), INTENTS, "informational"),
                        relevance="medium",
                        category=coerce_choice(item.get("category"), CATEGORIES, "broad"),
                        source="competitor",
                        competitor_domain=domain,
                    )
                )
            logger.info("Competitor %s: %d new keywords", domain, accepted)

        if failures == len(targets):
            raise SpyError(f"All {failures} competitor sites failed")
        if not inferred:
            return []

        volume_map: dict[str, KeywordMetrics] = {}
        try:
            volumes = await self.metrics.get_volumes([k.keyword for k in inferred])
            volume_map = {v.keyword.lower(): v for v in volumes}
        except ProviderError as e:
            logger.error("Metrics lookup failed during competitor enrichment: %s", e)

        for kw in inferred:
            data = volume_map.get(kw.key)
            if data is None:
                continue
            kw.search_volume = data.search_volume
            kw.cpc = data.cpc
            kw.competition = data.competition
            kw.competition_level = data.competition_level.value
            kw.trend = list(data.trend)
            kw.opportunity_score = opportunity_score(
                data.search_volume, data.competition, data.cpc, None
            )

        return inferred
