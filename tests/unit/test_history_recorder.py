"""Unit tests for the history repository and recorder."""

import unittest
from datetime import datetime, timedelta, timezone

from schema_sync.domain.entities.errors import DatabaseError, PlanNotFoundError
from schema_sync.domain.entities.history import HistoryRecord, HistoryStatus
from schema_sync.infrastructure.repositories.history_repository import (
    HistoryRecorder, InMemoryHistoryRepository
)
from tests.fixtures.test_data import TestDataFactory


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self):
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


class TestHistoryRecorder(unittest.TestCase):
    """Test HistoryRecorder functionality."""

    def setUp(self):
        """Set up test fixtures."""
        self.repository = InMemoryHistoryRepository()
        self.recorder = HistoryRecorder(self.repository, clock=StepClock())

    def test_list_is_newest_first(self):
        """Test that history is returned in reverse chronological order."""
        # Arrange
        for status in (HistoryStatus.PLANNED, HistoryStatus.PREFLIGHT_RUN, HistoryStatus.SAFE_APPLIED):
            self.recorder.record("tenant-a", status, "hash")

        # Act
        records = self.recorder.list("tenant-a")

        # Assert
        self.assertEqual(
            [r.status for r in records],
            [HistoryStatus.SAFE_APPLIED, HistoryStatus.PREFLIGHT_RUN, HistoryStatus.PLANNED],
        )

    def test_default_limit_is_25(self):
        """Test that at most 25 records are returned by default."""
        # Arrange
        for _ in range(30):
            self.recorder.record("tenant-a", HistoryStatus.PREFLIGHT_RUN, "hash")

        # Act / Assert
        self.assertEqual(len(self.recorder.list("tenant-a")), 25)
        self.assertEqual(len(self.recorder.list("tenant-a", limit=5)), 5)

    def test_equal_timestamps_keep_insert_order_reversed(self):
        """Test that ties are broken by insertion, latest first."""
        # Arrange
        fixed = datetime(2026, 1, 1, tzinfo=timezone.utc)
        recorder = HistoryRecorder(self.repository, clock=lambda: fixed)
        first = recorder.record("tenant-a", HistoryStatus.PLANNED, "hash")
        second = recorder.record("tenant-a", HistoryStatus.FAILED, "hash")

        # Act
        records = recorder.list("tenant-a")

        # Assert
        self.assertEqual([r.id for r in records], [second.id, first.id])

    def test_history_is_scoped_per_tenant(self):
        """Test that tenants never see each other's records."""
        self.recorder.record("tenant-a", HistoryStatus.PLANNED, "hash")
        self.recorder.record("tenant-b", HistoryStatus.PLANNED, "hash")
        self.assertEqual([r.tenant_id for r in self.recorder.list("tenant-b")], ["tenant-b"])

    def test_records_are_append_only(self):
        """Test that a record id cannot be written twice."""
        # Arrange
        record = self.recorder.record("tenant-a", HistoryStatus.PLANNED, "hash", record_id="fixed")

        # Act / Assert
        with self.assertRaises(DatabaseError):
            self.repository.append(record)

    def test_stored_detail_is_isolated_from_caller(self):
        """Test that mutating the caller's detail does not change the stored record."""
        # Arrange
        detail = {"results": [1]}
        record = self.recorder.record("tenant-a", HistoryStatus.PREFLIGHT_RUN, "hash", detail)

        # Act
        detail["results"].append(2)

        # Assert
        self.assertEqual(self.repository.get(record.id).detail, {"results": [1]})

    def test_read_records_cannot_change_stored_rows(self):
        """Test that mutating records returned by get or list leaves the audit log intact."""
        # Arrange
        record = self.recorder.record("tenant-a", HistoryStatus.PREFLIGHT_RUN, "hash", {"results": [1]})

        # Act
        self.repository.get(record.id).detail["results"].append(2)
        self.repository.list_for_tenant("tenant-a")[0].detail["tampered"] = True
        record.detail["results"].append(3)

        # Assert
        self.assertEqual(self.repository.get(record.id).detail, {"results": [1]})

    def test_plan_round_trip_through_history(self):
        """Test that a recorded plan is reloaded by its id."""
        # Arrange
        plan = TestDataFactory.create_plan([TestDataFactory.create_change()])
        record = self.recorder.record_plan(plan)

        # Act
        loaded = self.recorder.load_plan("tenant-a", plan.plan_id)

        # Assert
        self.assertEqual(record.id, plan.plan_id)
        self.assertEqual(record.status, HistoryStatus.PLANNED)
        self.assertEqual(record.detail["summary_counts"], {"SAFE": 1, "CAUTION": 0, "DESTRUCTIVE": 0})
        self.assertEqual(loaded.changes, plan.changes)

    def test_load_plan_rejects_unknown_or_foreign_ids(self):
        """Test that unknown ids, other tenants and non-plan records are not found."""
        # Arrange
        plan = TestDataFactory.create_plan([])
        self.recorder.record_plan(plan)
        other = self.recorder.record("tenant-a", HistoryStatus.PREFLIGHT_RUN, "hash")

        # Act / Assert
        with self.assertRaises(PlanNotFoundError):
            self.recorder.load_plan("tenant-a", "missing")
        with self.assertRaises(PlanNotFoundError):
            self.recorder.load_plan("tenant-b", plan.plan_id)
        with self.assertRaises(PlanNotFoundError):
            self.recorder.load_plan("tenant-a", other.id)

    def test_record_to_dict(self):
        """Test the serialized form of a record."""
        record = HistoryRecord(
            id="r1", tenant_id="tenant-a", status=HistoryStatus.REJECTED, ssot_version_hash="abc",
            created_at=datetime(2026, 1, 1, tzinfo=timezone.utc), detail={"error": "plan_stale"},
        )
        self.assertEqual(record.to_dict()["status"], "rejected")
        self.assertEqual(record.to_dict()["created_at"], "2026-01-01T00:00:00+00:00")


if __name__ == '__main__':
    unittest.main()
