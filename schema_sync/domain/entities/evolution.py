from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Dict, Any, Tuple
from enum import Enum


class RiskLevel(Enum):
    """Risk tiers assigned to every change."""
    SAFE = "SAFE"
    CAUTION = "CAUTION"
    DESTRUCTIVE = "DESTRUCTIVE"


class ChangeCategory(Enum):
    """Object category a change targets."""
    TABLE = "TABLE"
    COLUMN = "COLUMN"
    INDEX = "INDEX"
    CONSTRAINT = "CONSTRAINT"
    RLS = "RLS"
    POLICY = "POLICY"
    EXTENSION = "EXTENSION"
    VIEW = "VIEW"


class ChangeAction(Enum):
    """Structural action: create when wholly absent, alter when divergent."""
    CREATE = "create"
    ALTER = "alter"
    ENABLE = "enable"


class StatementIntent(Enum):
    """
    Closed set of statement intents. Assigned when a change is constructed and
    used for risk classification; the rendered SQL is checked separately at
    execution time.
    """
    CREATE_TABLE = "create_table"
    ADD_COLUMN = "add_column"
    ADD_REQUIRED_COLUMN = "add_required_column"
    CREATE_INDEX = "create_index"
    CREATE_UNIQUE_INDEX = "create_unique_index"
    ENABLE_RLS = "enable_rls"
    CREATE_POLICY = "create_policy"
    CREATE_EXTENSION = "create_extension"
    CREATE_OR_REPLACE_VIEW = "create_or_replace_view"
    ADD_CONSTRAINT = "add_constraint"
    SET_NOT_NULL = "set_not_null"
    ALTER_COLUMN_TYPE = "alter_column_type"
    REPLACE_POLICY = "replace_policy"
    DROP = "drop"
    RENAME = "rename"


class ExecutionState(Enum):
    """Executor state machine."""
    IDLE = "idle"
    VALIDATING = "validating"
    EXECUTING = "executing"
    COMMITTED = "committed"
    REJECTED = "rejected"
    PARTIALLY_FAILED = "partially_failed"


@dataclass(frozen=True)
class ObjectRef:
    """Identity of the object a change targets."""
    table: str
    name: str


@dataclass(frozen=True)
class Change:
    """A single reviewable structural change. Immutable once generated."""
    change_id: str
    category: ChangeCategory
    action: ChangeAction
    intent: StatementIntent
    object: ObjectRef
    risk_level: RiskLevel
    reason: str
    sql_preview: str
    title: str = ""

    @property
    def is_safe(self) -> bool:
        return self.risk_level == RiskLevel.SAFE

    @property
    def is_executable(self) -> bool:
        """False for comment-only previews that need a hand-written migration."""
        sql = self.sql_preview.strip()
        return bool(sql) and not sql.startswith("--")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "change_id": self.change_id,
            "category": self.category.value,
            "action": self.action.value,
            "intent": self.intent.value,
            "object": {"table": self.object.table, "name": self.object.name},
            "risk_level": self.risk_level.value,
            "reason": self.reason,
            "sql_preview": self.sql_preview,
            "title": self.title,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Change":
        obj = data.get("object") or {}
        return cls(
            change_id=data["change_id"],
            category=ChangeCategory(data["category"]),
            action=ChangeAction(data["action"]),
            intent=StatementIntent(data["intent"]),
            object=ObjectRef(table=obj.get("table", ""), name=obj.get("name", "")),
            risk_level=RiskLevel(data["risk_level"]),
            reason=data.get("reason", ""),
            sql_preview=data.get("sql_preview", ""),
            title=data.get("title", ""),
        )


@dataclass(frozen=True)
class PreflightQuery:
    """Read-only verification query tied to a change."""
    change_id: Optional[str]
    query: str
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"change_id": self.change_id, "query": self.query, "description": self.description}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PreflightQuery":
        return cls(
            change_id=data.get("change_id"),
            query=data["query"],
            description=data.get("description", ""),
        )


def tally(changes: List[Change]) -> Dict[str, int]:
    """Count changes per risk level; every level is always present."""
    counts = {level.value: 0 for level in RiskLevel}
    for change in changes:
        counts[change.risk_level.value] += 1
    return counts


@dataclass
class Plan:
    """Reviewable migration plan for one tenant."""
    plan_id: str
    tenant_id: str
    created_at: datetime
    reference_version: str
    reference_version_hash: str
    changes: List[Change] = field(default_factory=list)
    preflight_queries: List[PreflightQuery] = field(default_factory=list)
    manual_steps: str = ""
    db_snapshot_hash: Optional[str] = None
    bootstrap_sql: Optional[str] = None

    @property
    def summary_counts(self) -> Dict[str, int]:
        return tally(self.changes)

    @property
    def safe_changes(self) -> List[Change]:
        return [c for c in self.changes if c.is_safe]

    @property
    def manual_changes(self) -> List[Change]:
        return [c for c in self.changes if not c.is_safe]

    def find_change(self, change_id: str) -> Optional[Change]:
        return next((c for c in self.changes if c.change_id == change_id), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "tenant_id": self.tenant_id,
            "created_at": self.created_at.isoformat(),
            "reference_version": self.reference_version,
            "reference_version_hash": self.reference_version_hash,
            "db_snapshot_hash": self.db_snapshot_hash,
            "summary_counts": self.summary_counts,
            "changes": [c.to_dict() for c in self.changes],
            "preflight_queries": [q.to_dict() for q in self.preflight_queries],
            "manual_steps": self.manual_steps,
            "bootstrap_sql": self.bootstrap_sql,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Plan":
        # summary_counts is recomputed from changes, never read back
        return cls(
            plan_id=data["plan_id"],
            tenant_id=data["tenant_id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            reference_version=data.get("reference_version", ""),
            reference_version_hash=data["reference_version_hash"],
            changes=[Change.from_dict(c) for c in data.get("changes", [])],
            preflight_queries=[PreflightQuery.from_dict(q) for q in data.get("preflight_queries", [])],
            manual_steps=data.get("manual_steps", ""),
            db_snapshot_hash=data.get("db_snapshot_hash"),
            bootstrap_sql=data.get("bootstrap_sql"),
        )


@dataclass(frozen=True)
class BootstrapRequired:
    """
    Non-error signal: the tenant lacks prerequisite objects, so no plan can be
    computed until the bootstrap script has been run manually.
    """
    bootstrap_sql: str
    hint: str
    missing: Tuple[str, ...] = ()
    reference_version_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": "bootstrap_required",
            "bootstrap_sql": self.bootstrap_sql,
            "hint": self.hint,
            "missing": list(self.missing),
            "ssot_version_hash": self.reference_version_hash,
        }


@dataclass(frozen=True)
class ConfirmationRequired:
    """Returned by the destructive path when the confirmation phrase does not match."""
    message: str = "confirmation_phrase_mismatch"
    hint: str = "Type the required confirmation phrase exactly to apply destructive changes."

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "hint": self.hint}


@dataclass(frozen=True)
class PreflightResult:
    """Outcome of a single preflight query."""
    change_id: Optional[str]
    query: str
    ok: bool
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {"change_id": self.change_id, "query": self.query, "ok": self.ok}
        if self.ok:
            payload["result"] = self.result
        else:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class StatementResult:
    """Outcome of one executed statement."""
    statement: str
    ok: bool
    error: Optional[str] = None
    error_kind: Optional[str] = None
    change_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {"statement": self.statement, "ok": self.ok, "change_id": self.change_id}
        if not self.ok:
            payload["error"] = self.error
            payload["error_kind"] = self.error_kind
        return payload


@dataclass
class ApplyResult:
    """Result of a safe or destructive apply."""
    state: ExecutionState
    statements: List[StatementResult] = field(default_factory=list)
    error: Optional[str] = None
    message: Optional[str] = None
    db_snapshot_hash_after: Optional[str] = None

    @property
    def overall_ok(self) -> bool:
        return self.state == ExecutionState.COMMITTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "overall_ok": self.overall_ok,
            "statements": [s.to_dict() for s in self.statements],
            "error": self.error,
            "message": self.message,
            "db_snapshot_hash_after": self.db_snapshot_hash_after,
        }
