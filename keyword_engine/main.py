"""CLI entry point for the keyword discovery pipeline.

Usage:
    python -m keyword_engine.main https://example.com --owner OWNER_ID [--config path/to/config.yaml] [-v]
"""

import argparse
import asyncio
import json
import logging
import sys

from keyword_engine.config import load_config
from keyword_engine.errors import AnalysisError, FetchError, PipelineTimeoutError
from keyword_engine.models import AnalysisResult
from keyword_engine.orchestrator import run_analysis


def summarize(result: AnalysisResult, top: int = 20) -> dict:
    """JSON-ready summary of an analysis result."""
    summary = {
        "analysisId": result.analysis_id,
        "cached": result.cached,
        "projectId": result.project_id,
        "createdAt": result.created_at.isoformat() if result.created_at else None,
    }
    if result.stats is not None:
        summary["stats"] = {
            "totalKeywords": result.stats.total_keywords,
            "withVolume": result.stats.with_volume,
            "expanded": result.stats.expanded,
            "fromCompetitors": result.stats.from_competitors,
            "withSerpData": result.stats.with_serp_data,
            "clusters": result.stats.clusters,
        }
    if result.keywords:
        summary["topKeywords"] = [
            {
                "keyword": k.keyword,
                "source": k.source,
                "searchVolume": k.search_volume,
                "opportunityScore": k.opportunity_score,
                "serpDifficulty": k.serp_difficulty,
            }
            for k in result.keywords[:top]
        ]
    if result.clusters:
        summary["clusters"] = [
            {
                "topic": c.topic,
                "articleTitle": c.article_title,
                "pillarKeyword": c.pillar_keyword,
                "keywords": len(c.members),
                "totalVolume": c.total_volume,
            }
            for c in result.clusters
        ]
    return summary


def main() -> None:
    """Parse arguments and run one analysis."""
    parser = argparse.ArgumentParser(
        description="Keyword Engine: discover and score keyword opportunities for a website",
    )
    parser.add_argument("url", help="Website to analyze")
    parser.add_argument(
        "--owner",
        required=True,
        help="Owner (user) id the analysis belongs to",
    )
    parser.add_argument(
        "--config",
        default="config/config.yaml",
        help="Path to configuration YAML (default: config/config.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    args = parser.parse_args()

    # Configure logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )
    # Suppress noisy libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("google").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info("Keyword Engine starting")

    try:
        config = load_config(args.config)
        result = asyncio.run(run_analysis(config, args.owner, args.url))
    except FileNotFoundError as e:
        logger.error("Configuration file not found: %s", e)
        sys.exit(1)
    except (FetchError, AnalysisError, PipelineTimeoutError) as e:
        logger.error("Analysis failed: %s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Analysis interrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.error("Analysis failed: %s", e, exc_info=True)
        sys.exit(1)

    print(json.dumps(summarize(result), indent=2))


if __name__ == "__main__":
    main()
