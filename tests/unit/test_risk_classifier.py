"""Unit tests for risk classification."""

import unittest

from schema_sync.domain.entities.evolution import ChangeCategory, RiskLevel, StatementIntent
from schema_sync.domain.services.risk_classifier import RISK_POLICY, SAFE_INTENTS, RiskClassifier, classify


class TestRiskClassifier(unittest.TestCase):
    """Test RiskClassifier functionality."""

    def setUp(self):
        """Set up test fixtures."""
        self.classifier = RiskClassifier(["lesson_template_overrides"])

    def test_additive_changes_are_safe(self):
        """Test that purely additive intents are SAFE."""
        self.assertEqual(classify(ChangeCategory.COLUMN, StatementIntent.ADD_COLUMN), RiskLevel.SAFE)
        self.assertEqual(classify(ChangeCategory.TABLE, StatementIntent.CREATE_TABLE), RiskLevel.SAFE)
        self.assertEqual(classify(ChangeCategory.RLS, StatementIntent.ENABLE_RLS), RiskLevel.SAFE)

    def test_constraints_and_not_null_need_review(self):
        """Test that changes that can fail on existing rows are CAUTION."""
        self.assertEqual(classify(ChangeCategory.CONSTRAINT, StatementIntent.ADD_CONSTRAINT), RiskLevel.CAUTION)
        self.assertEqual(classify(ChangeCategory.COLUMN, StatementIntent.SET_NOT_NULL), RiskLevel.CAUTION)
        self.assertEqual(
            classify(ChangeCategory.COLUMN, StatementIntent.ADD_REQUIRED_COLUMN), RiskLevel.CAUTION
        )

    def test_drops_renames_and_type_changes_are_destructive(self):
        """Test that drop and rename are DESTRUCTIVE for every category."""
        for category in ChangeCategory:
            self.assertEqual(classify(category, StatementIntent.DROP), RiskLevel.DESTRUCTIVE)
            self.assertEqual(classify(category, StatementIntent.RENAME), RiskLevel.DESTRUCTIVE)
        self.assertEqual(
            classify(ChangeCategory.COLUMN, StatementIntent.ALTER_COLUMN_TYPE), RiskLevel.DESTRUCTIVE
        )

    def test_unknown_pairs_default_to_destructive(self):
        """Test that pairs missing from the policy table are never SAFE."""
        self.assertEqual(classify(ChangeCategory.VIEW, StatementIntent.ADD_COLUMN), RiskLevel.DESTRUCTIVE)

    def test_locked_table_escalates_safe_to_caution(self):
        """Test that SAFE changes on locked tables become CAUTION."""
        # Act
        level = self.classifier.classify(
            ChangeCategory.COLUMN, StatementIntent.ADD_COLUMN, "lesson_template_overrides"
        )

        # Assert
        self.assertEqual(level, RiskLevel.CAUTION)
        self.assertEqual(
            self.classifier.classify(ChangeCategory.COLUMN, StatementIntent.ADD_COLUMN, "students"),
            RiskLevel.SAFE,
        )

    def test_locked_table_keeps_destructive(self):
        """Test that escalation never lowers a level."""
        level = self.classifier.classify(
            ChangeCategory.COLUMN, StatementIntent.ALTER_COLUMN_TYPE, "lesson_template_overrides"
        )
        self.assertEqual(level, RiskLevel.DESTRUCTIVE)

    def test_safe_intents_match_policy(self):
        """Test that SAFE_INTENTS holds exactly the intents mapped to SAFE."""
        expected = {intent for (_, intent), level in RISK_POLICY.items() if level == RiskLevel.SAFE}
        self.assertEqual(set(SAFE_INTENTS), expected)
        self.assertNotIn(StatementIntent.ADD_CONSTRAINT, SAFE_INTENTS)


if __name__ == '__main__':
    unittest.main()
