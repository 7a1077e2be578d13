"""Dependency Injection Container."""

from typing import Optional, Dict, List, Callable
import os
import logging

logger = logging.getLogger(__name__)

DEFAULT_LOCKED_TABLES = ("lesson_template_overrides",)


def _split_csv(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    return [part.strip() for part in value.split(",") if part.strip()]


class DIContainer:
    """
    Dependency Injection Container.
    Follows Dependency Inversion Principle.

    Settings come from environment variables unless ``configure`` overrides them.
    """

    def __init__(self):
        self._reference_path: Optional[str] = os.getenv("SCHEMA_SYNC_REFERENCE_PATH")
        self._reference_version: Optional[str] = os.getenv("SCHEMA_SYNC_REFERENCE_VERSION")
        self._tenants_file: Optional[str] = os.getenv("SCHEMA_SYNC_TENANTS_FILE")
        self._history_dsn: Optional[str] = os.getenv("SCHEMA_SYNC_HISTORY_DSN")
        self._target_schema: str = os.getenv("SCHEMA_SYNC_TARGET_SCHEMA", "public")
        self._required_role: str = os.getenv("SCHEMA_SYNC_REQUIRED_ROLE", "app_user")
        locked = _split_csv(os.getenv("SCHEMA_SYNC_LOCKED_TABLES"))
        self._locked_tables: List[str] = list(DEFAULT_LOCKED_TABLES) if locked is None else locked
        self._tenants: Optional[Dict[str, str]] = None
        self._reference_text: Optional[str] = None
        self._connector_factory: Optional[Callable] = None
        self._services = {}

    def configure(
        self,
        reference_path: Optional[str] = None,
        reference_text: Optional[str] = None,
        reference_version: Optional[str] = None,
        tenants: Optional[Dict[str, str]] = None,
        tenants_file: Optional[str] = None,
        history_dsn: Optional[str] = None,
        target_schema: Optional[str] = None,
        required_role: Optional[str] = None,
        locked_tables: Optional[List[str]] = None,
        connector_factory: Optional[Callable] = None,
    ):
        """Configure the container. Any previously built services are discarded."""
        if reference_path is not None:
            self._reference_path = reference_path
        if reference_text is not None:
            self._reference_text = reference_text
        if reference_version is not None:
            self._reference_version = reference_version
        if tenants is not None:
            self._tenants = dict(tenants)
        if tenants_file is not None:
            self._tenants_file = tenants_file
        if history_dsn is not None:
            self._history_dsn = history_dsn
        if target_schema is not None:
            self._target_schema = target_schema
        if required_role is not None:
            self._required_role = required_role
        if locked_tables is not None:
            self._locked_tables = list(locked_tables)
        if connector_factory is not None:
            self._connector_factory = connector_factory
        self._services = {}
        return self

    def get_reference_source(self):
        """Get reference schema source."""
        if "reference_source" not in self._services:
            from schema_sync.infrastructure.reference.source import FileReferenceSource, StaticReferenceSource

            if self._reference_text is not None:
                source = StaticReferenceSource(self._reference_text, self._reference_version or "inline")
            elif self._reference_path:
                source = FileReferenceSource(self._reference_path, self._reference_version)
            else:
                raise ValueError("SCHEMA_SYNC_REFERENCE_PATH is not configured")
            self._services["reference_source"] = source
        return self._services["reference_source"]

    def get_loader(self):
        if "loader" not in self._services:
            from schema_sync.infrastructure.reference.loader import ReferenceSchemaLoader
            self._services["loader"] = ReferenceSchemaLoader(self._target_schema)
        return self._services["loader"]

    def get_bootstrap_detector(self):
        if "bootstrap_detector" not in self._services:
            from schema_sync.domain.services.bootstrap import BootstrapDetector
            self._services["bootstrap_detector"] = BootstrapDetector(self._required_role, self._target_schema)
        return self._services["bootstrap_detector"]

    def get_introspector(self):
        """Get live schema introspector."""
        if "introspector" not in self._services:
            from schema_sync.infrastructure.database.introspector import LiveSchemaIntrospector
            self._services["introspector"] = LiveSchemaIntrospector(
                self.get_bootstrap_detector(), self._target_schema
            )
        return self._services["introspector"]

    def get_diff_engine(self):
        """Get diff engine."""
        if "diff_engine" not in self._services:
            from schema_sync.domain.services.diff_engine import DiffEngine
            from schema_sync.domain.services.risk_classifier import RiskClassifier

            classifier = RiskClassifier(self._locked_tables)
            self._services["diff_engine"] = DiffEngine(classifier, schema=self._target_schema)
        return self._services["diff_engine"]

    def get_plan_builder(self):
        if "plan_builder" not in self._services:
            from schema_sync.domain.services.plan_builder import PlanBuilder
            self._services["plan_builder"] = PlanBuilder(self.get_diff_engine())
        return self._services["plan_builder"]

    def get_history_repository(self):
        """Get history repository; in-memory when no control database is configured."""
        if "history_repository" not in self._services:
            from schema_sync.infrastructure.repositories.history_repository import (
                InMemoryHistoryRepository, PostgresHistoryRepository
            )

            if self._history_dsn:
                self._services["history_repository"] = PostgresHistoryRepository(self._history_dsn)
            else:
                logger.warning("[DIContainer] SCHEMA_SYNC_HISTORY_DSN not set, history is kept in memory")
                self._services["history_repository"] = InMemoryHistoryRepository()
        return self._services["history_repository"]

    def get_history_recorder(self):
        if "history_recorder" not in self._services:
            from schema_sync.infrastructure.repositories.history_repository import HistoryRecorder
            self._services["history_recorder"] = HistoryRecorder(self.get_history_repository())
        return self._services["history_recorder"]

    def get_tenant_registry(self):
        """Get tenant registry."""
        if "tenant_registry" not in self._services:
            from schema_sync.infrastructure.repositories.tenant_registry import StaticTenantRegistry

            kwargs = {"connector_factory": self._connector_factory} if self._connector_factory else {}
            if self._tenants is not None:
                registry = StaticTenantRegistry(self._tenants, **kwargs)
            elif self._tenants_file:
                registry = StaticTenantRegistry.from_file(self._tenants_file, **kwargs)
            else:
                logger.warning("[DIContainer] No tenants configured")
                registry = StaticTenantRegistry({}, **kwargs)
            self._services["tenant_registry"] = registry
        return self._services["tenant_registry"]

    def get_orchestrator(self):
        """Get schema migration orchestrator."""
        if "orchestrator" not in self._services:
            from schema_sync.application.orchestrators.migration_orchestrator import SchemaMigrationOrchestrator
            from schema_sync.application.use_case.apply_changes import ApplyChangesUseCase
            from schema_sync.application.use_case.build_plan import BuildPlanUseCase
            from schema_sync.application.use_case.run_preflight import RunPreflightUseCase
            from schema_sync.infrastructure.executors.destructive_executor import DestructiveExecutor
            from schema_sync.infrastructure.executors.preflight_runner import PreflightRunner
            from schema_sync.infrastructure.executors.safe_executor import SafeExecutor
            from schema_sync.domain.services.statement_validator import StatementValidator

            recorder = self.get_history_recorder()
            validator = StatementValidator()

            build_plan = BuildPlanUseCase(
                self.get_reference_source(),
                self.get_loader(),
                self.get_introspector(),
                self.get_plan_builder(),
                recorder,
            )
            run_preflight = RunPreflightUseCase(recorder, PreflightRunner(validator))
            apply_changes = ApplyChangesUseCase(
                self.get_reference_source(),
                self.get_introspector(),
                recorder,
                SafeExecutor(validator),
                DestructiveExecutor(),
            )

            self._services["orchestrator"] = SchemaMigrationOrchestrator(
                self.get_tenant_registry(), build_plan, run_preflight, apply_changes, recorder
            )
        return self._services["orchestrator"]
