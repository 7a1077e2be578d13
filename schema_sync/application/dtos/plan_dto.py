"""Data Transfer Objects for application layer."""

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

from schema_sync.domain.entities.evolution import ApplyResult, Plan, PreflightResult
from schema_sync.domain.entities.history import HistoryRecord


@dataclass
class PlanResponse:
    """Plan plus the SQL bundles rendered for review."""
    plan: Plan
    patch_sql_safe: str = ""
    manual_sql: str = ""

    def to_dict(self) -> Dict[str, Any]:
        payload = self.plan.to_dict()
        payload["patch_sql_safe"] = self.patch_sql_safe
        payload["manual_sql"] = self.manual_sql
        return payload


@dataclass
class PreflightResponse:
    plan_id: str
    results: List[PreflightResult] = field(default_factory=list)

    @property
    def all_ok(self) -> bool:
        return all(r.ok for r in self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "all_ok": self.all_ok,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class ApplyResponse:
    """Result of apply_safe / apply_destructive with the audit record it produced."""
    plan_id: str
    mode: str
    result: ApplyResult
    history_id: Optional[str] = None

    @property
    def overall_ok(self) -> bool:
        return self.result.overall_ok

    def to_dict(self) -> Dict[str, Any]:
        payload = self.result.to_dict()
        payload.update({"plan_id": self.plan_id, "mode": self.mode, "history_id": self.history_id})
        return payload


def history_to_dict(records: List[HistoryRecord]) -> List[Dict[str, Any]]:
    return [r.to_dict() for r in records]
