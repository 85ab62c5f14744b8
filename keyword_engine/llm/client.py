"""Gemini LLM client for structured (JSON) generation.

Uses Vertex AI Generative Models with a response schema so that every
pipeline stage gets back a JSON object of a known shape.
"""

import asyncio
import json
import logging
from typing import Any, Optional

import vertexai
from vertexai.generative_models import GenerationConfig, GenerativeModel

from keyword_engine.errors import LLMError

logger = logging.getLogger(__name__)

# Retry settings
_MAX_RETRIES = 3
_BASE_BACKOFF_SECONDS = 2.0


class LLMClient:
    """Client for Vertex AI Gemini generative models."""

    def __init__(
        self,
        project_id: str,
        region: str,
        model_name: str = "gemini-1.5-pro",
        temperature: float = 0.4,
        max_output_tokens: int = 8192,
    ):
        """Initialize the LLM client.

        Args:
            project_id: GCP project ID.
            region: GCP region for Vertex AI endpoint.
            model_name: Default Gemini model name.
            temperature: Sampling temperature.
            max_output_tokens: Output token cap per call.
        """
        vertexai.init(project=project_id, location=region)
        self.model_name = model_name
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        logger.info(
            "LLMClient initialized: model=%s, region=%s", model_name, region
        )

    async def generate_json(
        self,
        prompt: str,
        system_instruction: str,
        response_schema: dict[str, Any],
        model_name: Optional[str] = None,
    ) -> dict[str, Any]:
        """Generate a JSON object that follows response_schema.

        Args:
            prompt: User prompt.
            system_instruction: System prompt for this call.
            response_schema: OpenAPI-style schema for the response.
            model_name: Overrides the default model for this call.

        Returns:
            The parsed JSON object.

        Raises:
            LLMError: If the call fails, retries are exhausted, or the
                response is not a JSON object.
        """
        name = model_name or self.model_name
        model = GenerativeModel(name, system_instruction=system_instruction)
        generation_config = GenerationConfig(
            response_mime_type="application/json",
            response_schema=response_schema,
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
        )

        for attempt in range(_MAX_RETRIES):
            try:
                response = await model.generate_content_async(
                    prompt,
                    generation_config=generation_config,
                )
                return parse_json_response(response.text)

            except LLMError:
                raise
            except Exception as e:
                error_str = str(e).lower()
                if "429" in error_str or "resource exhausted" in error_str:
                    wait_time = _BASE_BACKOFF_SECONDS * (2 ** attempt)
                    logger.warning(
                        "LLM rate limited (attempt %d/%d), retrying in %.1fs",
                        attempt + 1,
                        _MAX_RETRIES,
                        wait_time,
                    )
                    await asyncio.sleep(wait_time)
                else:
                    raise LLMError(f"{name} call failed: {e}") from e

        raise LLMError(f"{name} exhausted {_MAX_RETRIES} retries")


def parse_json_response(response_text: str) -> dict[str, Any]:
    """Parse a model response into a JSON object.

    Raises:
        LLMError: If the text is not a JSON object.
    """
    # Strip markdown code fences if present
    text = response_text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        lines = lines[1:-1] if lines[-1].strip() == "```" else lines[1:]
        text = "\n".join(lines)

    try:
        result = json.loads(text)
    except (json.JSONDecodeError, ValueError) as e:
        raise LLMError(f"Failed to parse LLM response: {e}") from e

    if not isinstance(result, dict):
        raise LLMError(f"Expected a JSON object, got {type(result).__name__}")
    return result
