"""Intent, relevance and category tagging for discovered keywords.

Keywords are sent to the model in batches to bound prompt size. A
failed batch loses only its own tags; callers fall back to
DEFAULT_CLASSIFICATION for anything missing from the result.
"""

import logging
from typing import Any, Optional

from keyword_engine.errors import ClassificationError, LLMError
from keyword_engine.llm.prompts import CLASSIFY_SCHEMA, CLASSIFY_SYSTEM_PROMPT, build_classify_prompt
from keyword_engine.models import CATEGORIES, INTENTS, RELEVANCES, Classification, coerce_choice

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 80


class KeywordClassifier:
    """Batches keywords through the classification model call."""

    def __init__(
        self,
        llm: Any,
        model_name: Optional[str] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self.llm = llm
        self.model_name = model_name
        self.batch_size = batch_size

    async def classify(
        self, keywords: list[dict[str, Any]], product_context: str
    ) -> dict[str, Classification]:
        """Classify keywords.

        Args:
            keywords: Dicts with keyword, search_volume and cpc.
            product_context: Product summary and audience.

        Returns:
            Classifications keyed by lower-cased keyword.

        Raises:
            ClassificationError: If every batch failed.
        """
        if not keywords:
            return {}

        results: dict[str, Classification] = {}
        batches = [
            keywords[i:i + self.batch_size]
            for i in range(0, len(keywords), self.batch_size)
        ]
        failed = 0

        for idx, batch in enumerate(batches, 1):
            try:
                data = await self.llm.generate_json(
                    build_classify_prompt(batch, product_context),
                    system_instruction=CLASSIFY_SYSTEM_PROMPT,
                    response_schema=CLASSIFY_SCHEMA,
                    model_name=self.model_name,
                )
            except LLMError as e:
                failed += 1
                logger.error(
                    "Classification batch %d/%d (%d keywords) failed: %s",
                    idx, len(batches), len(batch), e,
                )
                continue

            for item in data.get("classified") or []:
                if not isinstance(item, dict) or not isinstance(item.get("keyword"), str):
                    continue
                keyword = item["keyword"].strip()
                if not keyword:
                    continue
                results[keyword.lower()] = Classification(
                    keyword=keyword,
                    intent=coerce_choice(item.get("intent"), INTENTS, "informational"),
                    relevance=coerce_choice(item.get("relevance"), RELEVANCES, "medium"),
                    category=coerce_choice(item.get("category"), CATEGORIES, "broad"),
                )

        if failed == len(batches):
            raise ClassificationError(f"All {failed} classification batches failed")

        logger.info("Classified %d/%d keywords", len(results), len(keywords))
        return results
