"""Language-model reading of a crawled site.

Turns the crawled page into a product summary, audience, seed keywords,
competitors, content angles and key tools. Any failure here is fatal to
the pipeline: without seed keywords there is nothing to expand.
"""

import logging
from typing import Any, Optional

from keyword_engine.errors import AnalysisError, LLMError
from keyword_engine.llm.prompts import (
    SITE_ANALYSIS_SCHEMA,
    SITE_ANALYSIS_SYSTEM_PROMPT,
    build_site_analysis_prompt,
)
from keyword_engine.models import (
    CATEGORIES,
    CONTENT_ANGLE_TYPES,
    INTENTS,
    RELEVANCES,
    Competitor,
    ContentAngle,
    CrawlResult,
    KeyTool,
    SeedKeyword,
    SiteAnalysis,
    coerce_choice,
)

logger = logging.getLogger(__name__)

# Advisory cardinality bounds requested from the model
SEED_KEYWORD_RANGE = (50, 80)
COMPETITOR_RANGE = (5, 10)
CONTENT_ANGLE_RANGE = (15, 25)


def _check_range(name: str, count: int, bounds: tuple[int, int]) -> None:
    low, high = bounds
    if not low <= count <= high:
        logger.warning("Site analysis returned %d %s (expected %d-%d)", count, name, low, high)


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _list(data: dict[str, Any], key: str, required: bool = True) -> list[Any]:
    value = data.get(key)
    if value is None and not required:
        return []
    if not isinstance(value, list):
        raise AnalysisError(f"Site analysis field '{key}' is not a list")
    return value


def parse_site_analysis(data: dict[str, Any]) -> SiteAnalysis:
    """Validate a raw model response into a SiteAnalysis.

    Raises:
        AnalysisError: If required fields are missing or malformed, or
            no usable seed keyword remains.
    """
    product_summary = _text(data.get("productSummary"))
    target_audience = _text(data.get("targetAudience"))
    if not product_summary or not target_audience:
        raise AnalysisError("Site analysis is missing productSummary or targetAudience")

    seeds: list[SeedKeyword] = []
    seen: set[str] = set()
    for item in _list(data, "seedKeywords"):
        if not isinstance(item, dict):
            continue
        keyword = _text(item.get("keyword"))
        if not keyword or keyword.lower() in seen:
            continue
        seen.add(keyword.lower())
        seeds.append(
            SeedKeyword(
                keyword=keyword,
                intent=coerce_choice(item.get("intent"), INTENTS, "informational"),
                relevance=coerce_choice(item.get("relevance"), RELEVANCES, "medium"),
                category=coerce_choice(item.get("category"), CATEGORIES, "broad"),
            )
        )
    if not seeds:
        raise AnalysisError("Site analysis returned no seed keywords")

    competitors = [
        Competitor(
            name=_text(item.get("name")),
            url=_text(item.get("url")),
            reason=_text(item.get("reason")),
        )
        for item in _list(data, "competitors")
        if isinstance(item, dict) and _text(item.get("url"))
    ]

    angles = []
    for item in _list(data, "contentAngles"):
        # Older prompt versions returned bare titles
        if isinstance(item, str) and item.strip():
            angles.append(ContentAngle(title=item.strip()))
        elif isinstance(item, dict) and _text(item.get("title")):
            angles.append(
                ContentAngle(
                    title=_text(item.get("title")),
                    type=coerce_choice(item.get("type"), CONTENT_ANGLE_TYPES, "informational"),
                )
            )

    tools = [
        KeyTool(name=_text(item.get("name")), description=_text(item.get("description")))
        for item in _list(data, "keyTools", required=False)
        if isinstance(item, dict) and _text(item.get("name"))
    ]

    _check_range("seed keywords", len(seeds), SEED_KEYWORD_RANGE)
    _check_range("competitors", len(competitors), COMPETITOR_RANGE)
    _check_range("content angles", len(angles), CONTENT_ANGLE_RANGE)

    return SiteAnalysis(
        product_summary=product_summary,
        target_audience=target_audience,
        seed_keywords=tuple(seeds),
        competitors=tuple(competitors),
        content_angles=tuple(angles),
        key_tools=tuple(tools),
    )


class SiteAnalyzer:
    """Runs the site analysis model call."""

    def __init__(self, llm: Any, model_name: Optional[str] = None):
        self.llm = llm
        self.model_name = model_name

    async def analyze(self, crawl: CrawlResult) -> SiteAnalysis:
        """Analyze a crawled site.

        Raises:
            AnalysisError: On model failure or an invalid response.
        """
        try:
            data = await self.llm.generate_json(
                build_site_analysis_prompt(crawl),
                system_instruction=SITE_ANALYSIS_SYSTEM_PROMPT,
                response_schema=SITE_ANALYSIS_SCHEMA,
                model_name=self.model_name,
            )
        except LLMError as e:
            raise AnalysisError(f"Site analysis failed for {crawl.url}: {e}") from e

        analysis = parse_site_analysis(data)
        logger.info(
            "Site analysis for %s: %d seeds, %d competitors, %d content angles, %d tools",
            crawl.url,
            len(analysis.seed_keywords),
            len(analysis.competitors),
            len(analysis.content_angles),
            len(analysis.key_tools),
        )
        return analysis
