"""Unit tests for DiffEngine."""

import unittest

from schema_sync.domain.entities.schema import CatalogRows
from schema_sync.domain.entities.evolution import RiskLevel, StatementIntent, tally
from schema_sync.domain.services.diff_engine import DiffEngine
from schema_sync.domain.services.risk_classifier import RiskClassifier
from schema_sync.infrastructure.database.introspector import snapshot_from_catalog
from schema_sync.infrastructure.reference.loader import ReferenceSchemaLoader
from tests.fixtures.test_data import (
    FULL_REFERENCE_SQL, LOCKED_TABLE_REFERENCE_SQL, STUDENTS_REFERENCE_SQL, TestDataFactory
)


def live_snapshot(database):
    return snapshot_from_catalog(database.fetch_catalog("public"))


class TestDiffEngine(unittest.TestCase):
    """Test DiffEngine functionality."""

    def setUp(self):
        """Set up test fixtures."""
        self.loader = ReferenceSchemaLoader()
        self.engine = DiffEngine(RiskClassifier())

    def _diff(self, reference_sql, database):
        reference = self.loader.load(reference_sql).snapshot
        return self.engine.compute_diff(reference, live_snapshot(database))

    def test_missing_column_generates_single_safe_change(self):
        """Test that a missing nullable column yields exactly one SAFE add_column."""
        # Arrange
        database = TestDataFactory.students_database()

        # Act
        changes, preflight = self._diff(STUDENTS_REFERENCE_SQL, database)

        # Assert
        self.assertEqual(len(changes), 1)
        change = changes[0]
        self.assertEqual(change.intent, StatementIntent.ADD_COLUMN)
        self.assertEqual(change.risk_level, RiskLevel.SAFE)
        self.assertEqual(change.object.table, "students")
        self.assertEqual(change.object.name, "middle_name")
        self.assertEqual(
            change.sql_preview, "ALTER TABLE public.students ADD COLUMN IF NOT EXISTS middle_name text;"
        )
        self.assertEqual(preflight, [])

    def test_live_only_objects_produce_no_changes(self):
        """Test that the diff is additive-only."""
        # Arrange
        database = TestDataFactory.students_database()

        # Act
        changes, _ = self._diff(STUDENTS_REFERENCE_SQL, database)

        # Assert
        self.assertFalse(any("legacy_flag" in c.change_id for c in changes))
        self.assertFalse(any(c.intent == StatementIntent.DROP for c in changes))

    def test_diff_is_deterministic(self):
        """Test that identical inputs yield identical ordered output."""
        # Arrange
        database = TestDataFactory.drifted_database()

        # Act
        first, first_preflight = self._diff(FULL_REFERENCE_SQL, database)
        second, second_preflight = self._diff(FULL_REFERENCE_SQL, database)

        # Assert
        self.assertEqual([c.to_dict() for c in first], [c.to_dict() for c in second])
        self.assertEqual(first_preflight, second_preflight)

    def test_empty_database_gets_full_creation(self):
        """Test that every reference object is created on an empty tenant."""
        # Act
        changes, preflight = self._diff(FULL_REFERENCE_SQL, TestDataFactory.empty_database())

        # Assert
        intents = [c.intent for c in changes]
        self.assertEqual(intents.count(StatementIntent.CREATE_TABLE), 2)
        self.assertIn(StatementIntent.CREATE_EXTENSION, intents)
        self.assertEqual(tally(changes), {"SAFE": 10, "CAUTION": 1, "DESTRUCTIVE": 0})
        self.assertEqual(preflight, [])

    def test_columns_added_after_create_table_are_planned_for_missing_tables(self):
        """Test that ALTER-declared columns are added after the table is created."""
        # Act
        changes, _ = self._diff(FULL_REFERENCE_SQL, TestDataFactory.empty_database())

        # Assert
        column_ids = sorted(c.change_id for c in changes if c.intent == StatementIntent.ADD_COLUMN)
        self.assertEqual(column_ids, [
            "column:add_column:students:email",
            "column:add_column:students:middle_name",
        ])

    def test_drifted_database_changes(self):
        """Test that each kind of drift maps to the expected change and risk."""
        # Act
        changes, _ = self._diff(FULL_REFERENCE_SQL, TestDataFactory.drifted_database())
        by_id = {c.change_id: c for c in changes}

        # Assert
        self.assertEqual(set(by_id), {
            "column:add_column:students:email",
            "column:add_column:students:middle_name",
            "column:set_not_null:students:last_name",
            "column:alter_column_type:guardians:student_id",
            "constraint:add_constraint:guardians:guardians_student_id_fkey",
            "index:create_index:guardians:guardians_student_id_idx",
            "index:create_unique_index:students:students_email_key",
            "rls:enable_rls:students:students",
            "policy:replace_policy:students:students_read",
            "view:create_or_replace_view:student_names:student_names",
        })
        self.assertEqual(by_id["column:set_not_null:students:last_name"].risk_level, RiskLevel.CAUTION)
        self.assertEqual(
            by_id["column:alter_column_type:guardians:student_id"].risk_level, RiskLevel.DESTRUCTIVE
        )
        self.assertEqual(by_id["policy:replace_policy:students:students_read"].risk_level, RiskLevel.DESTRUCTIVE)
        self.assertEqual(tally(changes), {"SAFE": 6, "CAUTION": 2, "DESTRUCTIVE": 2})

    def test_type_change_sql(self):
        """Test that a type mismatch renders ALTER COLUMN ... TYPE with a cast."""
        # Act
        changes, _ = self._diff(FULL_REFERENCE_SQL, TestDataFactory.drifted_database())
        change = next(c for c in changes if c.intent == StatementIntent.ALTER_COLUMN_TYPE)

        # Assert
        self.assertEqual(
            change.sql_preview,
            "ALTER TABLE public.guardians ALTER COLUMN student_id TYPE uuid USING student_id::uuid;",
        )
        self.assertIn("live integer", change.reason)

    def test_replace_policy_drops_then_creates(self):
        """Test that a divergent policy is replaced in two statements."""
        # Act
        changes, _ = self._diff(FULL_REFERENCE_SQL, TestDataFactory.drifted_database())
        change = next(c for c in changes if c.intent == StatementIntent.REPLACE_POLICY)

        # Assert
        first, second = change.sql_preview.split("\n")
        self.assertEqual(first, "DROP POLICY IF EXISTS students_read ON public.students;")
        self.assertTrue(second.startswith("CREATE POLICY students_read ON public.students FOR SELECT"))

    def test_preflight_queries_for_drifted_database(self):
        """Test that NOT NULL and foreign key changes carry verification queries."""
        # Act
        _, preflight = self._diff(FULL_REFERENCE_SQL, TestDataFactory.drifted_database())

        # Assert
        self.assertEqual([q.change_id for q in preflight], [
            "column:set_not_null:students:last_name",
            "constraint:add_constraint:guardians:guardians_student_id_fkey",
        ])
        self.assertEqual(
            preflight[0].query, "SELECT COUNT(*) AS null_count FROM public.students WHERE last_name IS NULL"
        )
        self.assertEqual(
            preflight[1].query,
            "SELECT COUNT(*) AS orphan_count FROM public.guardians c LEFT JOIN public.students p "
            "ON p.id = c.student_id WHERE c.student_id IS NOT NULL AND p.id IS NULL",
        )

    def test_required_column_without_default_is_caution(self):
        """Test that NOT NULL without default on an existing table needs review."""
        # Arrange
        reference = STUDENTS_REFERENCE_SQL + "ALTER TABLE public.students ADD COLUMN IF NOT EXISTS code text NOT NULL;"

        # Act
        changes, preflight = self._diff(reference, TestDataFactory.students_database())
        change = next(c for c in changes if c.object.name == "code")

        # Assert
        self.assertEqual(change.intent, StatementIntent.ADD_REQUIRED_COLUMN)
        self.assertEqual(change.risk_level, RiskLevel.CAUTION)
        self.assertEqual(preflight[0].query, "SELECT COUNT(*) AS row_count FROM public.students")

    def test_required_column_with_default_is_safe(self):
        """Test that NOT NULL with a default is an ordinary add_column."""
        # Arrange
        reference = STUDENTS_REFERENCE_SQL + (
            "ALTER TABLE public.students ADD COLUMN IF NOT EXISTS active boolean NOT NULL DEFAULT true;"
        )

        # Act
        changes, _ = self._diff(reference, TestDataFactory.students_database())
        change = next(c for c in changes if c.object.name == "active")

        # Assert
        self.assertEqual(change.intent, StatementIntent.ADD_COLUMN)
        self.assertEqual(change.risk_level, RiskLevel.SAFE)

    def test_locked_table_is_never_safe(self):
        """Test that changes on locked tables are escalated to CAUTION."""
        # Arrange
        engine = DiffEngine(RiskClassifier(["lesson_template_overrides"]))
        reference = self.loader.load(LOCKED_TABLE_REFERENCE_SQL).snapshot

        # Act
        changes, _ = engine.compute_diff(reference, live_snapshot(TestDataFactory.empty_database()))
        levels = {c.object.table: c.risk_level for c in changes}

        # Assert
        self.assertEqual(levels["lesson_template_overrides"], RiskLevel.CAUTION)
        self.assertEqual(levels["lessons"], RiskLevel.SAFE)

    def test_type_aliases_do_not_drift(self):
        """Test that int4 in the catalog equals integer in the reference."""
        # Arrange
        reference = self.loader.load("CREATE TABLE public.counters (id integer, hits int NOT NULL);").snapshot
        live = snapshot_from_catalog(CatalogRows.from_rows(
            "public",
            tables=[{"name": "counters", "rls_enabled": False}],
            columns=[
                {"table_name": "counters", "name": "id", "type": "int4", "nullable": True},
                {"table_name": "counters", "name": "hits", "type": "integer", "nullable": True},
            ],
        ))

        # Act
        changes, _ = self.engine.compute_diff(reference, live)

        # Assert
        self.assertEqual([c.intent for c in changes], [StatementIntent.SET_NOT_NULL])


if __name__ == '__main__':
    unittest.main()
