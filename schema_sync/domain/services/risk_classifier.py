from typing import Dict, Tuple, Iterable, FrozenSet
import logging

from schema_sync.domain.entities.evolution import ChangeCategory, StatementIntent, RiskLevel

logger = logging.getLogger(__name__)

C = ChangeCategory
I = StatementIntent

RISK_POLICY: Dict[Tuple[ChangeCategory, StatementIntent], RiskLevel] = {
    (C.TABLE, I.CREATE_TABLE): RiskLevel.SAFE,
    (C.COLUMN, I.ADD_COLUMN): RiskLevel.SAFE,
    (C.INDEX, I.CREATE_INDEX): RiskLevel.SAFE,
    (C.INDEX, I.CREATE_UNIQUE_INDEX): RiskLevel.SAFE,
    (C.RLS, I.ENABLE_RLS): RiskLevel.SAFE,
    (C.POLICY, I.CREATE_POLICY): RiskLevel.SAFE,
    (C.EXTENSION, I.CREATE_EXTENSION): RiskLevel.SAFE,
    (C.VIEW, I.CREATE_OR_REPLACE_VIEW): RiskLevel.SAFE,
    (C.CONSTRAINT, I.ADD_CONSTRAINT): RiskLevel.CAUTION,
    (C.COLUMN, I.SET_NOT_NULL): RiskLevel.CAUTION,
    (C.COLUMN, I.ADD_REQUIRED_COLUMN): RiskLevel.CAUTION,
    (C.COLUMN, I.ALTER_COLUMN_TYPE): RiskLevel.DESTRUCTIVE,
    (C.POLICY, I.REPLACE_POLICY): RiskLevel.DESTRUCTIVE,
}

# Intents the safe executor may run. Derived from the policy table, never from SQL text.
SAFE_INTENTS: FrozenSet[StatementIntent] = frozenset(
    intent for (_, intent), level in RISK_POLICY.items() if level == RiskLevel.SAFE
)


def classify(category: ChangeCategory, intent: StatementIntent) -> RiskLevel:
    """
    Pure policy lookup. Drops and renames are destructive for every category;
    any pair missing from the table is treated as destructive.
    """
    if intent in (StatementIntent.DROP, StatementIntent.RENAME):
        return RiskLevel.DESTRUCTIVE
    return RISK_POLICY.get((category, intent), RiskLevel.DESTRUCTIVE)


class RiskClassifier:
    """
    Assigns risk levels at change construction time.
    Changes on locked tables are never reported as SAFE.
    """

    def __init__(self, locked_tables: Iterable[str] = ()):
        self._locked = frozenset(t.lower() for t in locked_tables)

    def is_locked(self, table: str) -> bool:
        return bool(table) and table.lower() in self._locked

    def classify(self, category: ChangeCategory, intent: StatementIntent, table: str = "") -> RiskLevel:
        level = classify(category, intent)
        if level == RiskLevel.SAFE and self.is_locked(table):
            logger.debug(f"[RiskClassifier] Escalating {intent.value} on locked table {table} to CAUTION")
            return RiskLevel.CAUTION
        return level
