"""Use case for running preflight checks."""
from typing import Optional, Sequence, Union

from schema_sync.application.dtos.plan_dto import PreflightResponse
from schema_sync.domain.entities.evolution import PreflightQuery
from schema_sync.domain.entities.history import HistoryStatus
from schema_sync.domain.repositories.interfaces import ISchemaConnector
from schema_sync.infrastructure.executors.preflight_runner import PreflightRunner
from schema_sync.infrastructure.repositories.history_repository import HistoryRecorder


class RunPreflightUseCase:
    """
    Use case: Run read-only verification queries for a stored plan.
    An empty query list means the queries the plan derived itself.
    """

    def __init__(self, recorder: HistoryRecorder, runner: PreflightRunner):
        self._recorder = recorder
        self._runner = runner

    def execute(
        self,
        tenant_id: str,
        plan_id: str,
        connector: ISchemaConnector,
        queries: Optional[Sequence[Union[str, PreflightQuery]]] = None,
    ) -> PreflightResponse:
        plan = self._recorder.load_plan(tenant_id, plan_id)
        selected = list(queries) if queries else list(plan.preflight_queries)
        results = self._runner.run(connector, selected)

        self._recorder.record(
            tenant_id,
            HistoryStatus.PREFLIGHT_RUN,
            plan.reference_version_hash,
            {"plan_id": plan_id, "results": [r.to_dict() for r in results]},
        )
        return PreflightResponse(plan_id=plan_id, results=results)
