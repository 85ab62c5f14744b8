"""Topic clustering of scored keywords into article candidates.

The model proposes the grouping; everything it returns is then checked
against the keywords it was given. Unknown keywords are dropped, a
keyword claimed by an earlier (higher-ranked) cluster is removed from
later ones, and each cluster's pillar is re-picked as its
highest-opportunity member.
"""

import logging
from typing import Any, Optional

from keyword_engine.errors import ClusterError, LLMError
from keyword_engine.llm.prompts import CLUSTER_SCHEMA, CLUSTER_SYSTEM_PROMPT, build_cluster_prompt
from keyword_engine.models import (
    ARTICLE_TYPES,
    CLUSTER_INTENTS,
    DIFFICULTIES,
    EnrichedKeyword,
    KeywordCluster,
    coerce_choice,
)

logger = logging.getLogger(__name__)


def build_clusters(
    raw_clusters: list[Any], keywords: list[EnrichedKeyword]
) -> list[KeywordCluster]:
    """Validate model clusters against the keywords that were clustered.

    Cluster order is preserved; it reflects the model's ranking.
    """
    by_key = {k.key: k for k in keywords}
    claimed: set[str] = set()
    clusters: list[KeywordCluster] = []

    for raw in raw_clusters:
        if not isinstance(raw, dict):
            continue

        candidates = [raw.get("pillarKeyword")]
        supporting = raw.get("supportingKeywords")
        if isinstance(supporting, list):
            candidates.extend(supporting)

        members: list[EnrichedKeyword] = []
        for name in candidates:
            if not isinstance(name, str):
                continue
            kw = by_key.get(name.strip().lower())
            if kw is None or kw.key in claimed:
                continue
            claimed.add(kw.key)
            members.append(kw)

        if not members:
            logger.debug("Dropping cluster %r: no valid members", raw.get("topic"))
            continue

        pillar = max(members, key=lambda k: k.opportunity_score)
        rest = [k for k in members if k is not pillar]

        clusters.append(
            KeywordCluster(
                topic=str(raw.get("topic") or pillar.keyword),
                article_title=str(raw.get("articleTitle") or pillar.keyword),
                pillar_keyword=pillar.keyword,
                supporting_keywords=[k.keyword for k in rest],
                search_intent=coerce_choice(raw.get("searchIntent"), CLUSTER_INTENTS, "informational"),
                article_type=coerce_choice(raw.get("articleType"), ARTICLE_TYPES, "informational"),
                difficulty=coerce_choice(raw.get("difficulty"), DIFFICULTIES, "medium"),
                total_volume=pillar.search_volume + sum(k.search_volume for k in rest),
                avg_competition=pillar.competition,
            )
        )

    return clusters


class ClusterBuilder:
    """Groups keywords into topic clusters through the model."""

    def __init__(self, llm: Any, model_name: Optional[str] = None):
        self.llm = llm
        self.model_name = model_name

    async def cluster(
        self, keywords: list[EnrichedKeyword], product_context: str
    ) -> list[KeywordCluster]:
        """Cluster keywords into article candidates.

        Raises:
            ClusterError: If the model call fails.
        """
        if not keywords:
            return []

        try:
            data = await self.llm.generate_json(
                build_cluster_prompt(keywords, product_context),
                system_instruction=CLUSTER_SYSTEM_PROMPT,
                response_schema=CLUSTER_SCHEMA,
                model_name=self.model_name,
            )
        except LLMError as e:
            raise ClusterError(f"Keyword clustering failed: {e}") from e

        raw_clusters = data.get("clusters") or []
        if not isinstance(raw_clusters, list):
            raise ClusterError("Clustering response has no cluster list")

        clusters = build_clusters(raw_clusters, keywords)
        logger.info(
            "Built %d clusters from %d keywords (%d proposed)",
            len(clusters), len(keywords), len(raw_clusters),
        )
        return clusters
