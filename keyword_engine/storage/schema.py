"""BigQuery table schemas for the keyword discovery pipeline."""

from google.cloud.bigquery import SchemaField

PROJECTS_SCHEMA = [
    SchemaField("project_id", "STRING", mode="REQUIRED"),
    SchemaField("owner_id", "STRING", mode="REQUIRED"),
    SchemaField("name", "STRING"),
    SchemaField("url", "STRING", mode="REQUIRED"),
    SchemaField("slug", "STRING"),
    SchemaField("api_key", "STRING"),
    SchemaField("created_at", "TIMESTAMP", mode="REQUIRED"),
]

ANALYSES_SCHEMA = [
    SchemaField("analysis_id", "STRING", mode="REQUIRED"),
    SchemaField("project_id", "STRING", mode="REQUIRED"),
    SchemaField("site_title", "STRING"),
    SchemaField("site_description", "STRING"),
    SchemaField("product_summary", "STRING"),
    SchemaField("target_audience", "STRING"),
    SchemaField(
        "content_angles",
        "RECORD",
        mode="REPEATED",
        fields=[
            SchemaField("title", "STRING"),
            SchemaField("type", "STRING"),
        ],
    ),
    SchemaField(
        "key_tools",
        "RECORD",
        mode="REPEATED",
        fields=[
            SchemaField("name", "STRING"),
            SchemaField("description", "STRING"),
        ],
    ),
    SchemaField("created_at", "TIMESTAMP", mode="REQUIRED"),
]

KEYWORDS_SCHEMA = [
    SchemaField("analysis_id", "STRING", mode="REQUIRED"),
    SchemaField("keyword", "STRING", mode="REQUIRED"),
    SchemaField("intent", "STRING"),
    SchemaField("relevance", "STRING"),
    SchemaField("category", "STRING"),
    SchemaField("search_volume", "INTEGER"),
    SchemaField("cpc", "FLOAT"),
    SchemaField("competition", "FLOAT"),
    SchemaField("competition_level", "STRING"),
    SchemaField("trend", "INTEGER", mode="REPEATED"),
    SchemaField("opportunity_score", "INTEGER"),
    SchemaField("serp_difficulty", "INTEGER"),
    SchemaField("source", "STRING", mode="REQUIRED"),
    SchemaField("competitor_domain", "STRING"),
    SchemaField("created_at", "TIMESTAMP", mode="REQUIRED"),
]

COMPETITORS_SCHEMA = [
    SchemaField("analysis_id", "STRING", mode="REQUIRED"),
    SchemaField("name", "STRING"),
    SchemaField("url", "STRING"),
    SchemaField("reason", "STRING"),
    SchemaField("created_at", "TIMESTAMP", mode="REQUIRED"),
]

KEYWORD_CLUSTERS_SCHEMA = [
    SchemaField("analysis_id", "STRING", mode="REQUIRED"),
    SchemaField("topic", "STRING"),
    SchemaField("article_title", "STRING"),
    SchemaField("pillar_keyword", "STRING", mode="REQUIRED"),
    SchemaField("supporting_keywords", "STRING", mode="REPEATED"),
    SchemaField("search_intent", "STRING"),
    SchemaField("article_type", "STRING"),
    SchemaField("difficulty", "STRING"),
    SchemaField("total_volume", "INTEGER"),
    SchemaField("avg_competition", "FLOAT"),
    SchemaField("created_at", "TIMESTAMP", mode="REQUIRED"),
]

SITE_PAGES_SCHEMA = [
    SchemaField("project_id", "STRING", mode="REQUIRED"),
    SchemaField("url", "STRING", mode="REQUIRED"),
    SchemaField("path", "STRING"),
    SchemaField("title", "STRING"),
    SchemaField("description", "STRING"),
    SchemaField("crawled_at", "TIMESTAMP", mode="REQUIRED"),
]

# Map table names to schemas for easy iteration
TABLE_SCHEMAS = {
    "projects": PROJECTS_SCHEMA,
    "analyses": ANALYSES_SCHEMA,
    "keywords": KEYWORDS_SCHEMA,
    "competitors": COMPETITORS_SCHEMA,
    "keyword_clusters": KEYWORD_CLUSTERS_SCHEMA,
    "site_pages": SITE_PAGES_SCHEMA,
}
