import logging
import threading
from typing import List, Optional

from schema_sync.domain.entities.evolution import (
    ApplyResult, Change, ExecutionState, Plan
)
from schema_sync.domain.entities.errors import StatementNotAllowed, StatementValidationError
from schema_sync.domain.repositories.interfaces import ISchemaConnector
from schema_sync.domain.services.plan_builder import safe_statements
from schema_sync.domain.services.risk_classifier import SAFE_INTENTS
from schema_sync.domain.services.statement_validator import StatementValidator
from schema_sync.infrastructure.executors.statement_runner import run_statements

logger = logging.getLogger(__name__)


class SafeExecutor:
    """
    Applies the SAFE tier of a plan without human confirmation.

    Every statement passes all gates before the first one runs: denylist,
    allow-list, then membership in the plan's SAFE changes with a safe intent.
    A single failure rejects the whole request.
    """

    def __init__(self, validator: Optional[StatementValidator] = None):
        self._validator = validator or StatementValidator()

    def apply(
        self,
        plan: Plan,
        connector: ISchemaConnector,
        statements: Optional[List[str]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ApplyResult:
        logger.debug(f"[SafeExecutor] state -> {ExecutionState.VALIDATING.value}")
        if statements is None:
            items = [(c.sql_preview.strip(), c) for c in safe_statements(plan)]
        else:
            items = [(s.strip(), self._find_safe_change(plan, s)) for s in statements]

        try:
            for statement, change in items:
                self._validate(statement, change)
        except StatementValidationError as e:
            logger.warning(f"[SafeExecutor] Rejected plan {plan.plan_id}: {e.code}")
            return ApplyResult(state=ExecutionState.REJECTED, error=e.code, message=e.message)

        if not items:
            logger.info(f"[SafeExecutor] Plan {plan.plan_id} has no safe changes")
            return ApplyResult(state=ExecutionState.COMMITTED, message="no_safe_changes")

        return run_statements(connector, items, cancel_event, component="SafeExecutor")

    def _validate(self, statement: str, change: Optional[Change]) -> None:
        self._validator.validate_safe(statement)
        if change is None or not change.is_safe or change.intent not in SAFE_INTENTS:
            raise StatementNotAllowed("Statement is not a safe change of this plan", statement)

    @staticmethod
    def _find_safe_change(plan: Plan, statement: str) -> Optional[Change]:
        wanted = statement.strip()
        return next((c for c in plan.safe_changes if c.sql_preview.strip() == wanted), None)
