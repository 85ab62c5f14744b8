"""Prompt templates and response schemas for the language-model stages.

Each stage has a system prompt, a user prompt builder and a response
schema in the OpenAPI subset accepted by Gemini's JSON mode.
"""

from keyword_engine.models import (
    ARTICLE_TYPES,
    CATEGORIES,
    CLUSTER_INTENTS,
    CONTENT_ANGLE_TYPES,
    DIFFICULTIES,
    INTENTS,
    RELEVANCES,
    CrawlResult,
    EnrichedKeyword,
)


def _enum(values: tuple[str, ...], description: str | None = None) -> dict:
    schema = {"type": "string", "enum": list(values)}
    if description:
        schema["description"] = description
    return schema


def _array(items: dict, description: str | None = None) -> dict:
    schema = {"type": "array", "items": items}
    if description:
        schema["description"] = description
    return schema


def _object(properties: dict, description: str | None = None) -> dict:
    schema = {
        "type": "object",
        "properties": properties,
        "required": list(properties),
    }
    if description:
        schema["description"] = description
    return schema


_NO_EM_DASH = (
    "NEVER use em dashes in any output. Use commas, colons, or hyphens instead."
)

# ── Site analysis ──────────────────────────────────────────────────

SITE_ANALYSIS_SYSTEM_PROMPT = """You are a world-class SEO strategist who specializes in finding keywords that are easy to rank for while still having meaningful search volume. Your goal is to find "golden keywords": terms that real people type into Google, that have decent volume, and where competition is low enough to rank on page 1 within 3-6 months.

You think like someone who would actually search Google. You avoid jargon-heavy terms that nobody types. You prioritize:
- Questions people ask ("how to...", "what is the best...", "why do...")
- Comparison queries ("X vs Y", "X alternatives", "best X for Y")
- Broad industry terms that bring top-of-funnel traffic
- Long-tail terms with clear purchase or action intent
- Terms that AI assistants would cite content for"""

SITE_ANALYSIS_PROMPT_TEMPLATE = """Analyze this website and generate a comprehensive keyword strategy.

Website data:
URL: {url}
Title: {title}
Meta Description: {meta_description}
Meta Keywords: {meta_keywords}

{structured_text}

Generate 50-80 seed keywords split into 4 categories:

**BROAD (15-20 keywords):** High-volume industry terms. 1-3 word terms that many people search for when starting their research.

**NICHE (15-20 keywords):** Specific to this product's domain. 2-4 word terms.

**QUESTION (10-20 keywords):** Exact questions people type into Google or ask AI assistants. Always start with how/what/why/where/which/can/is/does.

**COMPARISON (5-10 keywords):** "vs" queries, "alternatives to", "best X for Y".

Also provide:
- 5-10 competitors (direct and indirect tools/sites in this space), each with a full https URL
- 15-25 article ideas that would rank well on Google AND get cited by AI assistants, mixing informational, comparison, listicle, how-to and faq types. Include at least 3 comparison/listicle articles and 2 FAQ-style articles.
- The key tools or features of the product shown on the site (empty if none are clear)

IMPORTANT: Only suggest keywords that REAL PEOPLE actually type into Google. Avoid made-up compound terms.
IMPORTANT: {no_em_dash}"""

SITE_ANALYSIS_SCHEMA = _object({
    "productSummary": {
        "type": "string",
        "description": "One-paragraph summary of what the product/site does",
    },
    "targetAudience": {"type": "string", "description": "Who is the target audience"},
    "seedKeywords": _array(
        _object({
            "keyword": {"type": "string"},
            "intent": _enum(INTENTS),
            "relevance": _enum(RELEVANCES),
            "category": _enum(CATEGORIES),
        }),
        "50-80 seed keywords across all categories",
    ),
    "competitors": _array(
        _object({
            "name": {"type": "string"},
            "url": {"type": "string"},
            "reason": {"type": "string"},
        }),
        "5-10 direct or indirect competitors",
    ),
    "contentAngles": _array(
        _object({
            "title": {"type": "string", "description": "SEO-optimized article title"},
            "type": _enum(CONTENT_ANGLE_TYPES, "Content type"),
        }),
        "15-25 article ideas optimized for SEO and AI discoverability",
    ),
    "keyTools": _array(
        _object({
            "name": {"type": "string", "description": "Tool or feature name as shown on the site"},
            "description": {"type": "string", "description": "One-sentence description"},
        }),
        "Key tools or features of the product; empty if none are clear",
    ),
})


def build_site_analysis_prompt(crawl: CrawlResult) -> str:
    return SITE_ANALYSIS_PROMPT_TEMPLATE.format(
        url=crawl.url,
        title=crawl.title,
        meta_description=crawl.meta_description,
        meta_keywords=", ".join(crawl.meta_keywords),
        structured_text=crawl.structured_text,
        no_em_dash=_NO_EM_DASH,
    )


# ── Keyword classification ─────────────────────────────────────────

CLASSIFY_SYSTEM_PROMPT = """You classify SEO keywords. For each keyword, determine:
- intent: informational (learning), commercial (researching products), transactional (ready to buy/use), navigational (looking for specific site)
- relevance: how relevant is this keyword to the product described? high/medium/low
- category: broad (generic industry term), niche (domain-specific), question (starts with how/what/why/etc), comparison (vs, alternatives, best X for Y)"""

CLASSIFY_SCHEMA = _object({
    "classified": _array(
        _object({
            "keyword": {"type": "string"},
            "intent": _enum(INTENTS),
            "relevance": _enum(RELEVANCES),
            "category": _enum(CATEGORIES),
        })
    ),
})


def build_classify_prompt(keywords: list[dict], product_context: str) -> str:
    """Build the classification prompt.

    Args:
        keywords: Dicts with keyword, search_volume and cpc.
        product_context: Product summary and audience.
    """
    lines = "\n".join(
        f'- "{k["keyword"]}" (vol: {k.get("search_volume", 0)}, cpc: ${k.get("cpc", 0)})'
        for k in keywords
    )
    return f"Product context: {product_context}\n\nClassify each keyword:\n{lines}"


# ── Competitor keyword inference ───────────────────────────────────

COMPETITOR_SYSTEM_PROMPT = (
    "You analyze competitor websites to extract keywords they are targeting. "
    "Focus on keywords visible in their content, headings, meta data, and page "
    "structure. Only extract keywords that real people would search on Google."
)

COMPETITOR_PROMPT_TEMPLATE = """Our product: {product_context}

Analyze this competitor website and extract 20-40 keywords they appear to be targeting:

Competitor URL: {url}
Title: {title}
Description: {meta_description}

{structured_text}

Extract keywords that:
- Are clearly targeted by this competitor's content
- Real people would search for on Google
- Would be relevant to our product too (potential content gaps)
- Include a mix of broad, niche, question, and comparison terms"""

COMPETITOR_SCHEMA = _object({
    "inferredKeywords": _array(
        _object({
            "keyword": {"type": "string"},
            "intent": _enum(INTENTS),
            "category": _enum(CATEGORIES),
            "confidence": _enum(RELEVANCES),
        })
    ),
})


def build_competitor_prompt(crawl: CrawlResult, product_context: str) -> str:
    return COMPETITOR_PROMPT_TEMPLATE.format(
        product_context=product_context,
        url=crawl.url,
        title=crawl.title,
        meta_description=crawl.meta_description,
        structured_text=crawl.structured_text,
    )


# ── Clustering ─────────────────────────────────────────────────────

CLUSTER_SYSTEM_PROMPT = f"""You are an SEO content strategist. You group keywords into topic clusters where each cluster represents ONE article to write. The goal is to maximize ranking potential and AI citability.

Rules:
- Each cluster should have 1 pillar keyword (highest volume/opportunity) and 3-10 supporting keywords
- Use the keywords exactly as given; do not invent new ones
- Group by semantic similarity and search intent
- The article title should target the pillar keyword and naturally include supporting keywords
- Prioritize clusters that are easy to rank for (low competition, decent volume)
- A keyword can only belong to ONE cluster
- Create 10-25 clusters depending on how many keywords there are
- Order clusters by ranking potential (easiest to rank with most traffic first)
- Assign an articleType: "informational" for deep dives, "comparison" for X vs Y or alternatives, "listicle" for Top N or Best X for Y, "how-to" for step-by-step guides
- Aim for at least 2-3 comparison, 2-3 listicle and 2-3 how-to clusters
- {_NO_EM_DASH}"""

CLUSTER_SCHEMA = _object({
    "clusters": _array(
        _object({
            "topic": {"type": "string", "description": "Short topic name for this cluster"},
            "articleTitle": {"type": "string", "description": "Suggested SEO-optimized article title"},
            "pillarKeyword": {"type": "string", "description": "The main keyword for this cluster"},
            "supportingKeywords": _array({"type": "string"}, "Other keywords in this cluster"),
            "searchIntent": _enum(CLUSTER_INTENTS),
            "articleType": _enum(ARTICLE_TYPES),
            "difficulty": _enum(DIFFICULTIES),
        })
    ),
})


def build_cluster_prompt(keywords: list[EnrichedKeyword], product_context: str) -> str:
    lines = "\n".join(
        f'- "{k.keyword}" (vol: {k.search_volume}, comp: {round(k.competition * 100)}%, '
        f"opp: {k.opportunity_score}, intent: {k.intent})"
        for k in keywords
    )
    return (
        f"Product context: {product_context}\n\n"
        "Group these keywords into topic clusters. Each cluster = 1 article to write.\n\n"
        f"Keywords:\n{lines}"
    )
