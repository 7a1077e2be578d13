import hmac
import logging
import threading
from typing import Optional, Union, List, Tuple, Any

from schema_sync.domain.entities.evolution import (
    ApplyResult, Change, ConfirmationRequired, ExecutionState, Plan
)
from schema_sync.domain.repositories.interfaces import ISchemaConnector
from schema_sync.domain.services.plan_builder import manual_statements
from schema_sync.domain.services.statement_validator import split_statements
from schema_sync.infrastructure.executors.statement_runner import run_statements

logger = logging.getLogger(__name__)

CONFIRMATION_PHRASE = "ALLOW DESTRUCTIVE CHANGES"


def confirmation_matches(phrase: Any) -> bool:
    """Byte-exact comparison: no trimming, no case folding."""
    if not isinstance(phrase, str):
        return False
    return hmac.compare_digest(phrase.encode("utf-8"), CONFIRMATION_PHRASE.encode("utf-8"))


class DestructiveExecutor:
    """
    Applies the CAUTION and DESTRUCTIVE tiers of a plan.

    Runs only with an explicit destructive flag and the exact confirmation
    phrase; otherwise ConfirmationRequired is returned and the database is
    never touched.
    """

    def apply(
        self,
        plan: Plan,
        connector: ISchemaConnector,
        confirmation_phrase: Any,
        allow_destructive: bool = True,
        cancel_event: Optional[threading.Event] = None,
    ) -> Union[ApplyResult, ConfirmationRequired]:
        if not allow_destructive or not confirmation_matches(confirmation_phrase):
            logger.warning(f"[DestructiveExecutor] Confirmation missing or mismatched for plan {plan.plan_id}")
            return ConfirmationRequired()

        items = self._statements(plan)
        if not items:
            logger.info(f"[DestructiveExecutor] Plan {plan.plan_id} has no manual changes")
            return ApplyResult(state=ExecutionState.COMMITTED, message="no_manual_changes")

        logger.info(f"[DestructiveExecutor] Applying {len(items)} statements for plan {plan.plan_id}")
        return run_statements(connector, items, cancel_event, component="DestructiveExecutor")

    @staticmethod
    def _statements(plan: Plan) -> List[Tuple[str, Change]]:
        items = []
        for change in manual_statements(plan):
            for statement in split_statements(change.sql_preview):
                items.append((statement, change))
        return items
