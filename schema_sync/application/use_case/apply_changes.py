"""Use case for applying a stored plan."""
import logging
import threading
from typing import Optional, Union, Any, Dict

from schema_sync.application.dtos.plan_dto import ApplyResponse
from schema_sync.domain.entities.evolution import (
    ApplyResult, BootstrapRequired, ConfirmationRequired, ExecutionState, Plan
)
from schema_sync.domain.entities.errors import DatabaseConnectionError, DatabaseError, PlanStale
from schema_sync.domain.entities.history import HistoryStatus
from schema_sync.domain.repositories.interfaces import IReferenceSource, ISchemaConnector
from schema_sync.domain.services.hashing import hash_reference_text
from schema_sync.infrastructure.database.introspector import LiveSchemaIntrospector
from schema_sync.infrastructure.executors.destructive_executor import (
    DestructiveExecutor, confirmation_matches
)
from schema_sync.infrastructure.executors.safe_executor import SafeExecutor
from schema_sync.infrastructure.repositories.history_repository import HistoryRecorder

logger = logging.getLogger(__name__)


class ApplyChangesUseCase:
    """
    Use case: Apply the safe or the manual tier of a stored plan.
    Every outcome is written to history, including rejections.
    """

    def __init__(
        self,
        reference_source: IReferenceSource,
        introspector: LiveSchemaIntrospector,
        recorder: HistoryRecorder,
        safe_executor: SafeExecutor,
        destructive_executor: DestructiveExecutor,
    ):
        self._source = reference_source
        self._introspector = introspector
        self._recorder = recorder
        self._safe = safe_executor
        self._destructive = destructive_executor

    def apply_safe(
        self,
        tenant_id: str,
        plan_id: str,
        connector: ISchemaConnector,
        cancel_event: Optional[threading.Event] = None,
    ) -> ApplyResponse:
        plan = self._recorder.load_plan(tenant_id, plan_id)
        try:
            self._check_fresh(plan)
        except PlanStale as e:
            result = ApplyResult(state=ExecutionState.REJECTED, error=e.code, message=e.message)
        else:
            result = self._safe.apply(plan, connector, cancel_event=cancel_event)

        return self._finish(plan, connector, result, "safe", HistoryStatus.SAFE_APPLIED, {
            "approval_method": "safe_tier",
        })

    def apply_destructive(
        self,
        tenant_id: str,
        plan_id: str,
        connector: ISchemaConnector,
        confirmation_phrase: Any,
        allow_destructive: bool = True,
        cancel_event: Optional[threading.Event] = None,
    ) -> Union[ApplyResponse, ConfirmationRequired]:
        plan = self._recorder.load_plan(tenant_id, plan_id)
        matched = bool(allow_destructive) and confirmation_matches(confirmation_phrase)
        audit = {
            "approval_method": "confirmation_phrase",
            "confirmation_phrase_matched": matched,
            "allow_destructive": bool(allow_destructive),
        }

        if not matched:
            refusal = ConfirmationRequired()
            self._recorder.record(tenant_id, HistoryStatus.REJECTED, plan.reference_version_hash, dict(
                audit, plan_id=plan_id, mode="destructive", error=refusal.message,
            ))
            return refusal

        try:
            self._check_fresh(plan)
        except PlanStale as e:
            result = ApplyResult(state=ExecutionState.REJECTED, error=e.code, message=e.message)
        else:
            outcome = self._destructive.apply(
                plan, connector, confirmation_phrase, allow_destructive, cancel_event=cancel_event
            )
            if isinstance(outcome, ConfirmationRequired):
                return outcome
            result = outcome

        return self._finish(plan, connector, result, "destructive", HistoryStatus.DESTRUCTIVE_APPLIED, audit)

    def _check_fresh(self, plan: Plan) -> None:
        text, _ = self._source.read()
        current = hash_reference_text(text)
        if current != plan.reference_version_hash:
            raise PlanStale(
                f"Plan {plan.plan_id} was built for reference {plan.reference_version_hash[:12]}, "
                f"current is {current[:12]}"
            )

    def _finish(
        self,
        plan: Plan,
        connector: ISchemaConnector,
        result: ApplyResult,
        mode: str,
        success_status: HistoryStatus,
        audit: Dict[str, Any],
    ) -> ApplyResponse:
        if result.statements:
            result.db_snapshot_hash_after = self._snapshot_hash(connector)

        if result.state == ExecutionState.COMMITTED:
            status = success_status
        elif result.state == ExecutionState.REJECTED:
            status = HistoryStatus.REJECTED
        else:
            status = HistoryStatus.FAILED

        detail = dict(audit)
        detail.update({
            "plan_id": plan.plan_id,
            "mode": mode,
            "summary_counts": plan.summary_counts,
            "db_snapshot_hash_before": plan.db_snapshot_hash,
            "db_snapshot_hash_after": result.db_snapshot_hash_after,
            "execution": result.to_dict(),
            "error": result.error,
        })
        record = self._recorder.record(plan.tenant_id, status, plan.reference_version_hash, detail)
        return ApplyResponse(plan_id=plan.plan_id, mode=mode, result=result, history_id=record.id)

    def _snapshot_hash(self, connector: ISchemaConnector) -> Optional[str]:
        try:
            live = self._introspector.introspect(connector)
        except DatabaseConnectionError as e:
            logger.warning(f"[ApplyChangesUseCase] Post-apply introspection could not connect: {e.code}")
            return None
        except DatabaseError as e:
            logger.warning(f"[ApplyChangesUseCase] Post-apply introspection failed: {e.kind.value}")
            return None
        if isinstance(live, BootstrapRequired):
            return None
        return self._introspector.snapshot_hash(live)
