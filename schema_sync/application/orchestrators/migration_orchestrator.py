"""Main orchestrator for the schema migration lifecycle."""
import logging
import threading
from typing import Any, List, Optional, Sequence, Union

from schema_sync.application.dtos.plan_dto import ApplyResponse, PlanResponse, PreflightResponse
from schema_sync.application.use_case.apply_changes import ApplyChangesUseCase
from schema_sync.application.use_case.build_plan import BuildPlanUseCase
from schema_sync.application.use_case.run_preflight import RunPreflightUseCase
from schema_sync.domain.entities.evolution import BootstrapRequired, ConfirmationRequired, PreflightQuery
from schema_sync.domain.entities.history import HistoryRecord
from schema_sync.domain.repositories.interfaces import ITenantRegistry
from schema_sync.infrastructure.repositories.history_repository import DEFAULT_HISTORY_LIMIT, HistoryRecorder

logger = logging.getLogger(__name__)


def _require(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} is required")
    return value.strip()


class SchemaMigrationOrchestrator:
    """
    Request surface for plan, preflight, apply and history.
    Single Responsibility: Coordinate use cases per tenant request.
    """

    def __init__(
        self,
        tenant_registry: ITenantRegistry,
        build_plan: BuildPlanUseCase,
        run_preflight: RunPreflightUseCase,
        apply_changes: ApplyChangesUseCase,
        recorder: HistoryRecorder,
    ):
        self._tenants = tenant_registry
        self._build_plan = build_plan
        self._run_preflight = run_preflight
        self._apply = apply_changes
        self._recorder = recorder

    def create_plan(self, tenant_id: str) -> Union[PlanResponse, BootstrapRequired]:
        tenant_id = _require(tenant_id, "tenant_id")
        logger.info(f"[SchemaMigrationOrchestrator] create_plan tenant={tenant_id}")
        return self._build_plan.execute(tenant_id, self._tenants.connector_for(tenant_id))

    def run_preflight(
        self,
        tenant_id: str,
        plan_id: str,
        queries: Optional[Sequence[Union[str, PreflightQuery]]] = None,
    ) -> PreflightResponse:
        tenant_id = _require(tenant_id, "tenant_id")
        plan_id = _require(plan_id, "plan_id")
        logger.info(f"[SchemaMigrationOrchestrator] run_preflight tenant={tenant_id} plan={plan_id}")
        return self._run_preflight.execute(tenant_id, plan_id, self._tenants.connector_for(tenant_id), queries)

    def apply_safe(
        self, tenant_id: str, plan_id: str, cancel_event: Optional[threading.Event] = None
    ) -> ApplyResponse:
        tenant_id = _require(tenant_id, "tenant_id")
        plan_id = _require(plan_id, "plan_id")
        logger.info(f"[SchemaMigrationOrchestrator] apply_safe tenant={tenant_id} plan={plan_id}")
        return self._apply.apply_safe(tenant_id, plan_id, self._tenants.connector_for(tenant_id), cancel_event)

    def apply_destructive(
        self,
        tenant_id: str,
        plan_id: str,
        confirmation_phrase: Any,
        allow_destructive: bool = True,
        cancel_event: Optional[threading.Event] = None,
    ) -> Union[ApplyResponse, ConfirmationRequired]:
        tenant_id = _require(tenant_id, "tenant_id")
        plan_id = _require(plan_id, "plan_id")
        logger.info(f"[SchemaMigrationOrchestrator] apply_destructive tenant={tenant_id} plan={plan_id}")
        return self._apply.apply_destructive(
            tenant_id, plan_id, self._tenants.connector_for(tenant_id),
            confirmation_phrase, allow_destructive, cancel_event,
        )

    def fetch_history(self, tenant_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[HistoryRecord]:
        tenant_id = _require(tenant_id, "tenant_id")
        return self._recorder.list(tenant_id, limit)
