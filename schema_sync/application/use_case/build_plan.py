"""Use case for building a migration plan."""
import logging
from typing import Union

from schema_sync.application.dtos.plan_dto import PlanResponse
from schema_sync.domain.entities.evolution import BootstrapRequired
from schema_sync.domain.repositories.interfaces import IReferenceSource, ISchemaConnector
from schema_sync.domain.services.plan_builder import PlanBuilder
from schema_sync.infrastructure.database.introspector import LiveSchemaIntrospector
from schema_sync.infrastructure.reference.loader import ReferenceSchemaLoader
from schema_sync.infrastructure.repositories.history_repository import HistoryRecorder

logger = logging.getLogger(__name__)


class BuildPlanUseCase:
    """
    Use case: Compute a fresh plan for one tenant.
    Single Responsibility: load reference, introspect, diff, record.
    """

    def __init__(
        self,
        reference_source: IReferenceSource,
        loader: ReferenceSchemaLoader,
        introspector: LiveSchemaIntrospector,
        plan_builder: PlanBuilder,
        recorder: HistoryRecorder,
    ):
        self._source = reference_source
        self._loader = loader
        self._introspector = introspector
        self._plan_builder = plan_builder
        self._recorder = recorder

    def execute(self, tenant_id: str, connector: ISchemaConnector) -> Union[PlanResponse, BootstrapRequired]:
        text, version = self._source.read()
        reference = self._loader.load(text, version)

        live = self._introspector.introspect(connector, reference.version_hash)
        if isinstance(live, BootstrapRequired):
            self._recorder.record_bootstrap(tenant_id, live)
            return live

        snapshot_hash = self._introspector.snapshot_hash(live)
        plan = self._plan_builder.build(tenant_id, reference, live, snapshot_hash)
        self._recorder.record_plan(plan)

        return PlanResponse(
            plan=plan,
            patch_sql_safe=PlanBuilder.patch_sql_safe(plan),
            manual_sql=PlanBuilder.manual_sql(plan),
        )
