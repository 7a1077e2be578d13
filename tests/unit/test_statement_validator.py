"""Unit tests for StatementValidator."""

import unittest

from schema_sync.domain.entities.errors import (
    DestructiveKeywordDetected, QueryNotAllowed, StatementNotAllowed
)
from schema_sync.domain.services.statement_validator import StatementValidator, split_statements


class TestStatementValidator(unittest.TestCase):
    """Test StatementValidator functionality."""

    def setUp(self):
        """Set up test fixtures."""
        self.validator = StatementValidator()

    def test_safe_forms_pass(self):
        """Test that each additive statement form is accepted."""
        statements = [
            "CREATE TABLE IF NOT EXISTS public.courses (id uuid PRIMARY KEY);",
            "ALTER TABLE public.students ADD COLUMN IF NOT EXISTS middle_name text;",
            "CREATE INDEX IF NOT EXISTS students_name_idx ON public.students (first_name);",
            "CREATE UNIQUE INDEX IF NOT EXISTS students_email_key ON public.students (email);",
            "ALTER TABLE public.students ENABLE ROW LEVEL SECURITY;",
            "CREATE POLICY students_read ON public.students FOR SELECT USING (true);",
            "CREATE EXTENSION IF NOT EXISTS pgcrypto;",
            "CREATE OR REPLACE VIEW public.student_names AS SELECT id FROM public.students;",
        ]
        for statement in statements:
            self.validator.validate_safe(statement)

    def test_drop_is_denied(self):
        """Test that DROP anywhere in the statement is rejected."""
        with self.assertRaises(DestructiveKeywordDetected) as ctx:
            self.validator.validate_safe("DROP TABLE public.students;")
        self.assertEqual(ctx.exception.code, "statement_contains_destructive_keywords")

    def test_denylist_runs_before_allowlist(self):
        """Test that an allow-listed form carrying DROP is still denied."""
        with self.assertRaises(DestructiveKeywordDetected):
            self.validator.validate_safe(
                "CREATE TABLE IF NOT EXISTS public.t (id int); DROP TABLE public.students;"
            )

    def test_rename_and_type_change_are_denied(self):
        """Test that RENAME and ALTER COLUMN ... TYPE are rejected."""
        with self.assertRaises(DestructiveKeywordDetected):
            self.validator.validate_safe("ALTER TABLE public.students RENAME COLUMN a TO b;")
        with self.assertRaises(DestructiveKeywordDetected):
            self.validator.validate_safe("ALTER TABLE public.t ALTER COLUMN c TYPE uuid USING c::uuid;")

    def test_type_change_without_column_keyword_is_denied(self):
        """Test that the short ALTER <col> TYPE forms are caught by the denylist."""
        statements = [
            "ALTER TABLE public.students ALTER middle_name TYPE integer;",
            "ALTER TABLE public.students ALTER middle_name SET DATA TYPE integer;",
            "ALTER TABLE public.students ADD COLUMN IF NOT EXISTS x int, ALTER middle_name TYPE integer;",
        ]
        for statement in statements:
            with self.assertRaises(DestructiveKeywordDetected):
                self.validator.validate_safe(statement)

    def test_alter_table_with_extra_actions_is_not_allowed(self):
        """Test that a safe ALTER TABLE prefix cannot smuggle a second action."""
        with self.assertRaises(StatementNotAllowed):
            self.validator.validate_safe(
                "ALTER TABLE public.students ADD COLUMN IF NOT EXISTS x int, "
                "ALTER COLUMN last_name SET NOT NULL;"
            )

    def test_commas_inside_definitions_are_one_action(self):
        """Test that commas in type modifiers and key lists do not count as actions."""
        self.validator.validate_safe("ALTER TABLE public.fees ADD COLUMN IF NOT EXISTS amount numeric(10,2);")
        self.validator.validate_safe(
            "ALTER TABLE public.enrolments ADD CONSTRAINT enrolments_pair_fkey "
            "FOREIGN KEY (student_id, course_id) REFERENCES public.offerings (student_id, course_id);"
        )

    def test_unknown_statement_is_not_allowed(self):
        """Test that statements outside the allow-list are rejected."""
        with self.assertRaises(StatementNotAllowed) as ctx:
            self.validator.validate_safe("ALTER TABLE public.students ALTER COLUMN last_name SET NOT NULL;")
        self.assertEqual(ctx.exception.code, "statement_not_allowed_in_safe_mode")

    def test_add_column_without_if_not_exists_is_not_allowed(self):
        """Test that the non-idempotent form is rejected."""
        with self.assertRaises(StatementNotAllowed):
            self.validator.validate_safe("ALTER TABLE public.students ADD COLUMN middle_name text;")

    def test_multiple_statements_are_not_allowed(self):
        """Test that a safe statement must be a single statement."""
        with self.assertRaises(StatementNotAllowed):
            self.validator.validate_safe(
                "CREATE EXTENSION IF NOT EXISTS pgcrypto; CREATE EXTENSION IF NOT EXISTS citext;"
            )

    def test_preflight_accepts_select(self):
        """Test that a single SELECT is accepted."""
        self.validator.validate_preflight("SELECT COUNT(*) FROM public.students WHERE last_name IS NULL")

    def test_preflight_rejects_semicolon(self):
        """Test that any semicolon rejects the query."""
        with self.assertRaises(QueryNotAllowed) as ctx:
            self.validator.validate_preflight("SELECT 1; DELETE FROM public.students")
        self.assertEqual(ctx.exception.code, "query_not_allowed")
        with self.assertRaises(QueryNotAllowed):
            self.validator.validate_preflight("SELECT 1;")

    def test_preflight_rejects_non_select(self):
        """Test that only SELECT queries are accepted."""
        for query in ("UPDATE public.students SET first_name = 'x'", "", "   ", None):
            with self.assertRaises(QueryNotAllowed):
                self.validator.validate_preflight(query)

    def test_split_statements_drops_comment_fragments(self):
        """Test that comment-only fragments are not statements."""
        statements = split_statements("-- header\nCREATE EXTENSION IF NOT EXISTS pgcrypto;\n-- trailing note\n")
        self.assertEqual(len(statements), 1)
        self.assertIn("CREATE EXTENSION IF NOT EXISTS pgcrypto;", statements[0])


if __name__ == '__main__':
    unittest.main()
