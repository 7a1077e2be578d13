"""Integration tests for the REST API."""

import os
import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient

from schema_sync.infrastructure.executors.destructive_executor import CONFIRMATION_PHRASE
from schema_sync.presentation.api.app import create_app
from tests.fixtures.test_data import FULL_REFERENCE_SQL, TestDataFactory

BASE = "/api/v1/tenants"


class TestSchemaApi(unittest.TestCase):
    """Test the HTTP surface."""

    def setUp(self):
        """Set up test fixtures."""
        self.database = TestDataFactory.drifted_database()
        self.bare = TestDataFactory.unbootstrapped_database()
        container = TestDataFactory.create_container(
            FULL_REFERENCE_SQL, {"tenant-a": self.database, "tenant-bare": self.bare}
        )
        self.client = TestClient(create_app(container))

    def _plan(self):
        response = self.client.post(f"{BASE}/tenant-a/schema/plan")
        self.assertEqual(response.status_code, 200)
        return response.json()

    def test_health(self):
        """Test that the health endpoint responds."""
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "healthy"})

    def test_plan(self):
        """Test that a plan is returned with counts and SQL bundles."""
        payload = self._plan()
        self.assertEqual(payload["summary_counts"], {"SAFE": 6, "CAUTION": 2, "DESTRUCTIVE": 2})
        self.assertIn("DROP POLICY", payload["manual_sql"])
        self.assertNotIn("DROP", payload["patch_sql_safe"])

    def test_plan_for_unbootstrapped_tenant(self):
        """Test that a missing role yields 424 with bootstrap SQL."""
        response = self.client.post(f"{BASE}/tenant-bare/schema/plan")
        self.assertEqual(response.status_code, 424)
        self.assertEqual(response.json()["message"], "bootstrap_required")
        self.assertIn("CREATE ROLE", response.json()["bootstrap_sql"])

    def test_unknown_tenant_is_404(self):
        """Test that unknown tenants map to 404."""
        response = self.client.post(f"{BASE}/nobody/schema/plan")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["detail"]["message"], "unknown_tenant")

    def test_preflight_uses_plan_queries_by_default(self):
        """Test that an empty query list runs the plan's own queries."""
        # Arrange
        plan = self._plan()
        self.database.select_results["orphan_count"] = {"orphan_count": 2}

        # Act
        response = self.client.post(f"{BASE}/tenant-a/schema/preflight", json={"plan_id": plan["plan_id"]})

        # Assert
        self.assertEqual(response.status_code, 200)
        results = response.json()["results"]
        self.assertEqual(len(results), len(plan["preflight_queries"]))
        self.assertIn({"orphan_count": 2}, [r.get("result") for r in results])

    def test_apply_safe(self):
        """Test that the safe tier is applied and audited."""
        # Arrange
        plan = self._plan()

        # Act
        response = self.client.post(f"{BASE}/tenant-a/schema/apply-safe", json={"plan_id": plan["plan_id"]})

        # Assert
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["overall_ok"])
        self.assertEqual(body["mode"], "safe")
        self.assertEqual(len(body["statements"]), 6)
        self.assertIsNotNone(body["history_id"])

    def test_apply_safe_unknown_plan_is_404(self):
        """Test that unknown plan ids map to 404."""
        response = self.client.post(f"{BASE}/tenant-a/schema/apply-safe", json={"plan_id": "nope"})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["detail"]["message"], "plan_not_found")

    def test_apply_destructive_wrong_phrase(self):
        """Test that a wrong phrase is refused with 400 and nothing runs."""
        # Arrange
        plan = self._plan()

        # Act
        response = self.client.post(
            f"{BASE}/tenant-a/schema/apply-destructive",
            json={"plan_id": plan["plan_id"], "confirmation_phrase": "allow destructive changes"},
        )

        # Assert
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "confirmation_phrase_mismatch")
        self.assertEqual(self.database.executed, [])

    def test_apply_destructive_with_phrase(self):
        """Test that the exact phrase applies manual changes."""
        # Arrange
        plan = self._plan()

        # Act
        response = self.client.post(
            f"{BASE}/tenant-a/schema/apply-destructive",
            json={"plan_id": plan["plan_id"], "confirmation_phrase": CONFIRMATION_PHRASE},
        )

        # Assert
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["state"], "committed")
        self.assertEqual(self.database.column("guardians", "student_id")["type"], "uuid")

    def test_history(self):
        """Test that history is newest first and honors the limit."""
        # Arrange
        plan = self._plan()
        self.client.post(f"{BASE}/tenant-a/schema/apply-safe", json={"plan_id": plan["plan_id"]})

        # Act
        response = self.client.get(f"{BASE}/tenant-a/schema/history", params={"limit": 1})

        # Assert
        self.assertEqual(response.status_code, 200)
        history = response.json()["history"]
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0]["status"], "safe_applied")


class TestAppLogging(unittest.TestCase):
    """Test logging setup of the app factory."""

    def test_log_level_comes_from_environment(self):
        """Test that create_app configures logging from LOG_LEVEL."""
        container = TestDataFactory.create_container(FULL_REFERENCE_SQL, {})
        with patch.dict(os.environ, {"LOG_LEVEL": "debug"}), \
                patch("schema_sync.presentation.api.app.logging.basicConfig") as basic_config:
            create_app(container)
        basic_config.assert_called_once_with(level="DEBUG")


if __name__ == '__main__':
    unittest.main()
