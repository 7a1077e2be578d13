import uuid
import logging
from datetime import datetime, timezone
from typing import List, Optional, Dict

from schema_sync.domain.entities.schema import ReferenceSchema, SchemaSnapshot
from schema_sync.domain.entities.evolution import Change, ChangeCategory, Plan, RiskLevel
from schema_sync.domain.services.diff_engine import DiffEngine

logger = logging.getLogger(__name__)

EXECUTION_PRIORITY: Dict[ChangeCategory, int] = {
    ChangeCategory.EXTENSION: 1,
    ChangeCategory.TABLE: 2,
    ChangeCategory.COLUMN: 3,
    ChangeCategory.CONSTRAINT: 4,
    ChangeCategory.INDEX: 5,
    ChangeCategory.RLS: 6,
    ChangeCategory.POLICY: 7,
    ChangeCategory.VIEW: 8,
}

_SECTIONS = (
    ("Caution changes (CAUTION)", RiskLevel.CAUTION),
    ("Destructive changes (DESTRUCTIVE)", RiskLevel.DESTRUCTIVE),
)


def execution_order(changes: List[Change]) -> List[Change]:
    """Order changes to respect dependencies; sorted() is stable so plan order breaks ties."""
    return sorted(changes, key=lambda c: EXECUTION_PRIORITY.get(c.category, 99))


def safe_statements(plan: Plan) -> List[Change]:
    return [c for c in execution_order(plan.safe_changes) if c.is_executable]


def manual_statements(plan: Plan) -> List[Change]:
    return [c for c in execution_order(plan.manual_changes) if c.is_executable]


def render_sql_bundle(changes: List[Change]) -> str:
    return "\n\n".join(c.sql_preview.strip() for c in changes)


def render_manual_steps(changes: List[Change]) -> str:
    """Markdown review bundle: CAUTION section first, then DESTRUCTIVE."""
    lines: List[str] = []
    for heading, level in _SECTIONS:
        bucket = [c for c in changes if c.risk_level == level]
        if not bucket:
            continue
        lines.append(f"## {heading}")
        lines.append("")
        for change in bucket:
            lines.append(f"### {change.title}")
            lines.append(f"- Risk: {level.value}")
            lines.append(f"- Why: {change.reason}")
            lines.append("")
            sql = change.sql_preview.strip()
            if sql:
                lines.extend(["```sql", sql, "```", ""])
    return "\n".join(lines)


class PlanBuilder:
    """
    Turns a reference/live comparison into a reviewable Plan.
    Single Responsibility: plan assembly, no database access.
    """

    def __init__(self, diff_engine: DiffEngine):
        self._diff_engine = diff_engine

    def build(
        self,
        tenant_id: str,
        reference: ReferenceSchema,
        live: SchemaSnapshot,
        db_snapshot_hash: Optional[str] = None,
    ) -> Plan:
        changes, preflight = self._diff_engine.compute_diff(reference.snapshot, live)
        plan = Plan(
            plan_id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            created_at=datetime.now(timezone.utc),
            reference_version=reference.version,
            reference_version_hash=reference.version_hash,
            changes=changes,
            preflight_queries=preflight,
            manual_steps=render_manual_steps(changes),
            db_snapshot_hash=db_snapshot_hash,
        )
        logger.info(f"[PlanBuilder] Built plan {plan.plan_id} for tenant {tenant_id}: {plan.summary_counts}")
        return plan

    @staticmethod
    def patch_sql_safe(plan: Plan) -> str:
        return render_sql_bundle(safe_statements(plan))

    @staticmethod
    def manual_sql(plan: Plan) -> str:
        return render_sql_bundle(manual_statements(plan))
