from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any
from enum import Enum


class HistoryStatus(Enum):
    """Lifecycle transitions written to the audit log."""
    PLANNED = "planned"
    BOOTSTRAP_REQUIRED = "bootstrap_required"
    PREFLIGHT_RUN = "preflight_run"
    SAFE_APPLIED = "safe_applied"
    DESTRUCTIVE_APPLIED = "destructive_applied"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass(frozen=True)
class HistoryRecord:
    """One append-only audit row. Never updated or deleted."""
    id: str
    tenant_id: str
    status: HistoryStatus
    ssot_version_hash: str
    created_at: datetime
    detail: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "status": self.status.value,
            "ssot_version_hash": self.ssot_version_hash,
            "created_at": self.created_at.isoformat(),
            "detail": self.detail,
        }
