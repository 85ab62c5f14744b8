"""BigQuery client for the keyword discovery pipeline.

Handles table creation, the freshness-cache lookup, and inserts for
projects, analyses, keywords, competitors, clusters and site pages.
Rows are insert-only; a keyword row is never updated once written.
"""

import logging
from typing import Any, Optional

from google.api_core.exceptions import GoogleAPIError
from google.cloud import bigquery
from google.cloud.exceptions import NotFound

from keyword_engine.errors import PersistError
from keyword_engine.storage.schema import TABLE_SCHEMAS

logger = logging.getLogger(__name__)


class BigQueryClient:
    """Client for all BigQuery operations in the pipeline."""

    def __init__(self, project_id: str, dataset_id: str, location: str = "us-east4"):
        self.project_id = project_id
        self.dataset_id = dataset_id
        self.location = location
        self.client = bigquery.Client(project=project_id)
        self.dataset_ref = f"{project_id}.{dataset_id}"

    def ensure_tables_exist(self) -> None:
        """Create dataset and all tables if they don't exist."""
        dataset = bigquery.Dataset(self.dataset_ref)
        dataset.location = self.location
        try:
            self.client.get_dataset(self.dataset_ref)
            logger.info("Dataset %s already exists", self.dataset_ref)
        except NotFound:
            self.client.create_dataset(dataset)
            logger.info("Created dataset %s", self.dataset_ref)

        for table_name, schema in TABLE_SCHEMAS.items():
            table_ref = f"{self.dataset_ref}.{table_name}"
            table = bigquery.Table(table_ref, schema=schema)
            try:
                self.client.get_table(table_ref)
                logger.debug("Table %s already exists", table_ref)
            except NotFound:
                self.client.create_table(table)
                logger.info("Created table %s", table_ref)

    # ── Queries ────────────────────────────────────────────────────

    def find_project(self, owner_id: str, url: str) -> Optional[dict[str, Any]]:
        """Return the owner's project for a normalized URL, if any."""
        query = f"""
            SELECT project_id, slug
            FROM `{self.dataset_ref}.projects`
            WHERE owner_id = @owner_id AND url = @url
            ORDER BY created_at
            LIMIT 1
        """
        rows = self._query(query, owner_id=owner_id, url=url)
        return {"project_id": rows[0].project_id, "slug": rows[0].slug} if rows else None

    def find_latest_analysis(self, owner_id: str, url: str) -> Optional[dict[str, Any]]:
        """Return the most recent analysis for (owner, normalized URL), if any."""
        query = f"""
            SELECT a.analysis_id, a.project_id, a.created_at
            FROM `{self.dataset_ref}.analyses` AS a
            JOIN `{self.dataset_ref}.projects` AS p
              ON a.project_id = p.project_id
            WHERE p.owner_id = @owner_id AND p.url = @url
            ORDER BY a.created_at DESC
            LIMIT 1
        """
        rows = self._query(query, owner_id=owner_id, url=url)
        if not rows:
            return None
        row = rows[0]
        return {
            "analysis_id": row.analysis_id,
            "project_id": row.project_id,
            "created_at": row.created_at,
        }

    # ── Inserts ────────────────────────────────────────────────────

    def insert_project(self, row: dict[str, Any]) -> None:
        self._insert("projects", [row])

    def insert_analysis(self, row: dict[str, Any]) -> None:
        self._insert("analyses", [row])

    def insert_keywords_batch(self, rows: list[dict[str, Any]]) -> None:
        """Insert one batch of keyword rows."""
        self._insert("keywords", rows)

    def insert_competitors(self, rows: list[dict[str, Any]]) -> None:
        self._insert("competitors", rows)

    def insert_clusters(self, rows: list[dict[str, Any]]) -> None:
        self._insert("keyword_clusters", rows)

    # ── Updates ────────────────────────────────────────────────────

    def update_project_slug(self, project_id: str, slug: str) -> None:
        """Backfill the slug of a project created without one."""
        query = f"""
            UPDATE `{self.dataset_ref}.projects`
            SET slug = @slug
            WHERE project_id = @project_id
        """
        self._query(query, slug=slug, project_id=project_id)
        logger.info("Set slug of project %s to %s", project_id, slug)

    def replace_site_pages(self, project_id: str, rows: list[dict[str, Any]]) -> None:
        """Replace the project's site page list."""
        query = f"""
            DELETE FROM `{self.dataset_ref}.site_pages`
            WHERE project_id = @project_id
        """
        self._query(query, project_id=project_id)
        self._insert("site_pages", rows)
        logger.info("Stored %d site pages for project %s", len(rows), project_id)

    # ── Internals ──────────────────────────────────────────────────

    def _insert(self, table_name: str, rows: list[dict[str, Any]]) -> None:
        if not rows:
            return
        table_ref = f"{self.dataset_ref}.{table_name}"
        try:
            errors = self.client.insert_rows_json(table_ref, rows)
        except GoogleAPIError as e:
            raise PersistError(f"BigQuery insert into {table_name} failed: {e}") from e
        if errors:
            raise PersistError(f"BigQuery insert errors ({table_name}): {errors}")
        logger.debug("Inserted %d %s rows", len(rows), table_name)

    def _query(self, query: str, **params: str) -> list[Any]:
        job_config = bigquery.QueryJobConfig(
            query_parameters=[
                bigquery.ScalarQueryParameter(name, "STRING", value)
                for name, value in params.items()
            ]
        )
        try:
            return list(self.client.query(query, job_config=job_config).result())
        except GoogleAPIError as e:
            raise PersistError(f"BigQuery query failed: {e}") from e
