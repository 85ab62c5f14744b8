"""Tests for the BigQuery store with the client mocked out."""

import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from google.api_core.exceptions import BadRequest
from google.cloud.exceptions import NotFound

from keyword_engine.errors import PersistError
from keyword_engine.storage.bigquery_client import BigQueryClient
from keyword_engine.storage.schema import TABLE_SCHEMAS


@patch("keyword_engine.storage.bigquery_client.bigquery.Client")
class TestBigQueryClient(unittest.TestCase):

    def _store(self, client_cls):
        self.client = MagicMock()
        client_cls.return_value = self.client
        return BigQueryClient("proj", "kw")

    def test_ensure_tables_creates_missing(self, client_cls):
        store = self._store(client_cls)
        self.client.get_dataset.side_effect = NotFound("no dataset")
        self.client.get_table.side_effect = NotFound("no table")
        store.ensure_tables_exist()
        self.client.create_dataset.assert_called_once()
        self.assertEqual(self.client.create_table.call_count, len(TABLE_SCHEMAS))

    def test_insert_keywords(self, client_cls):
        store = self._store(client_cls)
        self.client.insert_rows_json.return_value = []
        store.insert_keywords_batch([{"keyword": "a"}])
        self.client.insert_rows_json.assert_called_once_with("proj.kw.keywords", [{"keyword": "a"}])

    def test_empty_insert_is_skipped(self, client_cls):
        store = self._store(client_cls)
        store.insert_clusters([])
        self.client.insert_rows_json.assert_not_called()

    def test_insert_errors_raise(self, client_cls):
        store = self._store(client_cls)
        self.client.insert_rows_json.return_value = [{"index": 0, "errors": ["bad"]}]
        with self.assertRaises(PersistError):
            store.insert_analysis({"analysis_id": "x"})

    def test_api_error_raises(self, client_cls):
        store = self._store(client_cls)
        self.client.insert_rows_json.side_effect = BadRequest("schema mismatch")
        with self.assertRaises(PersistError):
            store.insert_project({"project_id": "p"})

    def test_find_latest_analysis(self, client_cls):
        store = self._store(client_cls)
        created = datetime(2024, 5, 1, tzinfo=timezone.utc)
        row = MagicMock(analysis_id="a1", project_id="p1", created_at=created)
        self.client.query.return_value.result.return_value = [row]

        latest = store.find_latest_analysis("owner", "https://app.io")

        self.assertEqual(latest, {"analysis_id": "a1", "project_id": "p1", "created_at": created})
        job_config = self.client.query.call_args.kwargs["job_config"]
        names = {p.name for p in job_config.query_parameters}
        self.assertEqual(names, {"owner_id", "url"})

    def test_find_project_none(self, client_cls):
        store = self._store(client_cls)
        self.client.query.return_value.result.return_value = []
        self.assertIsNone(store.find_project("owner", "https://app.io"))

    def test_replace_site_pages(self, client_cls):
        store = self._store(client_cls)
        self.client.insert_rows_json.return_value = []
        store.replace_site_pages("p1", [{"url": "https://app.io/"}])
        self.assertIn("DELETE FROM", self.client.query.call_args.args[0])
        self.client.insert_rows_json.assert_called_once_with("proj.kw.site_pages", [{"url": "https://app.io/"}])


if __name__ == "__main__":
    unittest.main()
