"""Shared data models for the keyword discovery pipeline."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from keyword_engine.scoring.opportunity import opportunity_score

INTENTS = ("informational", "commercial", "transactional", "navigational")
RELEVANCES = ("high", "medium", "low")
CATEGORIES = ("broad", "niche", "question", "comparison")
SOURCES = ("seed", "expanded", "competitor")
DIFFICULTIES = ("easy", "medium", "hard")
CLUSTER_INTENTS = ("informational", "commercial", "transactional")
ARTICLE_TYPES = ("informational", "comparison", "listicle", "how-to")
CONTENT_ANGLE_TYPES = ("informational", "comparison", "listicle", "how-to", "faq")


def coerce_choice(value: object, allowed: tuple[str, ...], default: str) -> str:
    """Return value lower-cased if it is one of allowed, else default."""
    if isinstance(value, str):
        candidate = value.strip().lower()
        if candidate in allowed:
            return candidate
    return default


class CompetitionLevel(str, Enum):
    """Categorical competition as reported by the metrics provider."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    UNKNOWN = "UNKNOWN"


# ── Crawl ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Heading:
    level: int
    text: str


@dataclass(frozen=True)
class Link:
    href: str
    text: str


@dataclass(frozen=True)
class CrawlResult:
    """Structured text extracted from a single fetched page."""

    url: str
    title: str
    meta_description: str
    meta_keywords: tuple[str, ...] = ()
    headings: tuple[Heading, ...] = ()
    paragraphs: tuple[str, ...] = ()
    links: tuple[Link, ...] = ()
    og_data: dict[str, str] = field(default_factory=dict)
    structured_text: str = ""


@dataclass(frozen=True)
class SitePage:
    """A page discovered through the site's sitemap."""

    url: str
    path: str
    title: str
    description: str


# ── Site analysis ──────────────────────────────────────────────────


@dataclass(frozen=True)
class SeedKeyword:
    keyword: str
    intent: str = "informational"
    relevance: str = "medium"
    category: str = "broad"


@dataclass(frozen=True)
class Competitor:
    name: str
    url: str
    reason: str = ""


@dataclass(frozen=True)
class ContentAngle:
    title: str
    type: str = "informational"  # informational | comparison | listicle | how-to | faq


@dataclass(frozen=True)
class KeyTool:
    name: str
    description: str = ""


@dataclass(frozen=True)
class SiteAnalysis:
    """Language-model reading of a crawled site."""

    product_summary: str
    target_audience: str
    seed_keywords: tuple[SeedKeyword, ...] = ()
    competitors: tuple[Competitor, ...] = ()
    content_angles: tuple[ContentAngle, ...] = ()
    key_tools: tuple[KeyTool, ...] = ()

    @property
    def product_context(self) -> str:
        """One-line product description passed to downstream prompts."""
        return f"{self.product_summary} Target audience: {self.target_audience}"


@dataclass(frozen=True)
class Classification:
    keyword: str
    intent: str = "informational"
    relevance: str = "medium"
    category: str = "broad"


DEFAULT_CLASSIFICATION = Classification(keyword="")


# ── Metrics ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class KeywordMetrics:
    """Volume, cost and competition for one keyword from the provider."""

    keyword: str
    search_volume: int = 0
    cpc: float = 0.0
    competition: float = 0.0
    competition_level: CompetitionLevel = CompetitionLevel.LOW
    trend: tuple[int, ...] = ()


@dataclass(frozen=True)
class SerpItem:
    position: int
    title: str
    domain: str
    url: str


@dataclass(frozen=True)
class SerpResult:
    keyword: str
    difficulty: int
    top_results: tuple[SerpItem, ...] = ()
    has_featured_snippet: bool = False
    has_people_also_ask: bool = False


# ── Pipeline working set ───────────────────────────────────────────


@dataclass
class EnrichedKeyword:
    """A keyword carried through the pipeline with its metrics and score.

    Mutated only during SERP enrichment, when serp_difficulty is attached
    and opportunity_score is recomputed.
    """

    keyword: str
    intent: str
    relevance: str
    category: str
    source: str  # seed | expanded | competitor
    search_volume: int = 0
    cpc: float = 0.0
    competition: float = 0.0
    competition_level: str = CompetitionLevel.UNKNOWN.value
    trend: list[int] = field(default_factory=list)
    opportunity_score: int = 0
    serp_difficulty: Optional[int] = None
    competitor_domain: Optional[str] = None

    @property
    def key(self) -> str:
        """Case-insensitive identity used for deduplication."""
        return self.keyword.lower()

    def apply_serp_difficulty(self, difficulty: int) -> None:
        """Attach SERP difficulty and recompute the opportunity score."""
        self.serp_difficulty = difficulty
        self.opportunity_score = opportunity_score(
            self.search_volume, self.competition, self.cpc, difficulty
        )


@dataclass
class KeywordCluster:
    """A group of keywords that one article should target."""

    topic: str
    article_title: str
    pillar_keyword: str
    supporting_keywords: list[str] = field(default_factory=list)
    search_intent: str = "informational"
    article_type: str = "informational"
    difficulty: str = "medium"
    total_volume: int = 0
    avg_competition: float = 0.0

    @property
    def members(self) -> list[str]:
        return [self.pillar_keyword, *self.supporting_keywords]


@dataclass(frozen=True)
class AnalysisStats:
    """Degradation counters returned with a fresh analysis."""

    total_keywords: int
    with_volume: int
    expanded: int
    from_competitors: int
    with_serp_data: int
    clusters: int

    @classmethod
    def from_run(
        cls, keywords: list[EnrichedKeyword], clusters: list[KeywordCluster]
    ) -> "AnalysisStats":
        return cls(
            total_keywords=len(keywords),
            with_volume=sum(1 for k in keywords if k.search_volume > 0),
            expanded=sum(1 for k in keywords if k.source == "expanded"),
            from_competitors=sum(1 for k in keywords if k.source == "competitor"),
            with_serp_data=sum(1 for k in keywords if k.serp_difficulty is not None),
            clusters=len(clusters),
        )


@dataclass
class AnalysisResult:
    """What the caller receives: a cached identifier or a full run."""

    analysis_id: str
    cached: bool
    project_id: Optional[str] = None
    created_at: Optional[datetime] = None
    stats: Optional[AnalysisStats] = None
    keywords: list[EnrichedKeyword] = field(default_factory=list)
    clusters: list[KeywordCluster] = field(default_factory=list)
    competitors: list[Competitor] = field(default_factory=list)
