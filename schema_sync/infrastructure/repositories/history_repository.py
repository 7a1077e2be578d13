"""Append-only migration history."""

import copy
import uuid
import logging
import threading
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any, Callable

import psycopg2
from psycopg2.extras import Json, RealDictCursor

from schema_sync.domain.entities.history import HistoryRecord, HistoryStatus
from schema_sync.domain.entities.evolution import Plan, BootstrapRequired
from schema_sync.domain.entities.errors import DatabaseConnectionError, DatabaseError, PlanNotFoundError
from schema_sync.domain.repositories.interfaces import IHistoryRepository

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 25


class InMemoryHistoryRepository(IHistoryRepository):
    """Process-local audit log for development and tests."""

    def __init__(self):
        self._records: List[HistoryRecord] = []
        self._lock = threading.Lock()

    @staticmethod
    def _copy(record: HistoryRecord) -> HistoryRecord:
        return HistoryRecord(
            id=record.id,
            tenant_id=record.tenant_id,
            status=record.status,
            ssot_version_hash=record.ssot_version_hash,
            created_at=record.created_at,
            detail=copy.deepcopy(record.detail),
        )

    def append(self, record: HistoryRecord) -> HistoryRecord:
        stored = self._copy(record)
        with self._lock:
            if any(r.id == stored.id for r in self._records):
                raise DatabaseError(f"History record {stored.id} already exists")
            self._records.append(stored)
        return self._copy(stored)

    def get(self, record_id: str) -> Optional[HistoryRecord]:
        with self._lock:
            found = next((r for r in self._records if r.id == record_id), None)
        return self._copy(found) if found is not None else None

    def list_for_tenant(self, tenant_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[HistoryRecord]:
        with self._lock:
            matching = [self._copy(r) for r in reversed(self._records) if r.tenant_id == tenant_id]
        # sorted() is stable, so later inserts stay first on equal timestamps
        return sorted(matching, key=lambda r: r.created_at, reverse=True)[:max(limit, 0)]


class PostgresHistoryRepository(IHistoryRepository):
    """
    Audit log in a control database.
    Single Responsibility: INSERT and SELECT only; the table is created on first use.
    """

    TABLE = "schema_migration_audit"

    _DDL = (
        f"""
        CREATE TABLE IF NOT EXISTS {TABLE} (
            seq bigserial PRIMARY KEY,
            id text NOT NULL UNIQUE,
            tenant_id text NOT NULL,
            status text NOT NULL,
            ssot_version_hash text NOT NULL,
            created_at timestamptz NOT NULL,
            detail jsonb NOT NULL DEFAULT '{{}}'::jsonb
        )
        """,
        f"CREATE INDEX IF NOT EXISTS {TABLE}_tenant_created_idx ON {TABLE} (tenant_id, created_at DESC)",
    )

    def __init__(self, connection_string: str):
        if not connection_string:
            raise DatabaseConnectionError("No connection string configured for history storage")
        self._conn_string = connection_string
        self._ready = False

    def _connect(self):
        try:
            conn = psycopg2.connect(self._conn_string)
        except psycopg2.OperationalError as e:
            logger.error(f"[PostgresHistoryRepository] Connection failed (pgcode={e.pgcode})")
            raise DatabaseConnectionError("Could not connect to history database") from e
        if not self._ready:
            with conn:
                with conn.cursor() as cur:
                    for ddl in self._DDL:
                        cur.execute(ddl)
            self._ready = True
        return conn

    def append(self, record: HistoryRecord) -> HistoryRecord:
        conn = self._connect()
        try:
            with conn:
                with conn.cursor() as cur:
                    cur.execute(
                        f"INSERT INTO {self.TABLE} (id, tenant_id, status, ssot_version_hash, created_at, detail) "
                        "VALUES (%s, %s, %s, %s, %s, %s)",
                        (record.id, record.tenant_id, record.status.value, record.ssot_version_hash,
                         record.created_at, Json(record.detail)),
                    )
            return record
        except psycopg2.Error as e:
            raise DatabaseError(f"Failed to append history record: {e.pgerror or e}") from e
        finally:
            conn.close()

    def get(self, record_id: str) -> Optional[HistoryRecord]:
        rows = self._select(f"SELECT * FROM {self.TABLE} WHERE id = %s", (record_id,))
        return rows[0] if rows else None

    def list_for_tenant(self, tenant_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[HistoryRecord]:
        return self._select(
            f"SELECT * FROM {self.TABLE} WHERE tenant_id = %s ORDER BY created_at DESC, seq DESC LIMIT %s",
            (tenant_id, max(limit, 0)),
        )

    def _select(self, query: str, params) -> List[HistoryRecord]:
        conn = self._connect()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, params)
                rows = cur.fetchall()
            return [self._to_record(row) for row in rows]
        except psycopg2.Error as e:
            raise DatabaseError(f"Failed to read history: {e.pgerror or e}") from e
        finally:
            conn.close()

    @staticmethod
    def _to_record(row: Dict[str, Any]) -> HistoryRecord:
        return HistoryRecord(
            id=row["id"],
            tenant_id=row["tenant_id"],
            status=HistoryStatus(row["status"]),
            ssot_version_hash=row["ssot_version_hash"],
            created_at=row["created_at"],
            detail=row["detail"] or {},
        )


class HistoryRecorder:
    """
    Writes lifecycle transitions and reads stored plans back.
    Single Responsibility: audit bookkeeping on top of an append-only repository.
    """

    def __init__(
        self,
        repository: IHistoryRepository,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._repository = repository
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def record(
        self,
        tenant_id: str,
        status: HistoryStatus,
        ssot_version_hash: str,
        detail: Optional[Dict[str, Any]] = None,
        record_id: Optional[str] = None,
    ) -> HistoryRecord:
        record = HistoryRecord(
            id=record_id or str(uuid.uuid4()),
            tenant_id=tenant_id,
            status=status,
            ssot_version_hash=ssot_version_hash,
            created_at=self._clock(),
            detail=detail or {},
        )
        stored = self._repository.append(record)
        logger.info(f"[HistoryRecorder] {tenant_id}: {status.value} ({stored.id})")
        return stored

    def record_plan(self, plan: Plan) -> HistoryRecord:
        return self.record(
            plan.tenant_id,
            HistoryStatus.PLANNED,
            plan.reference_version_hash,
            {
                "plan": plan.to_dict(),
                "summary_counts": plan.summary_counts,
                "db_snapshot_hash_before": plan.db_snapshot_hash,
            },
            record_id=plan.plan_id,
        )

    def record_bootstrap(self, tenant_id: str, bootstrap: BootstrapRequired) -> HistoryRecord:
        return self.record(
            tenant_id,
            HistoryStatus.BOOTSTRAP_REQUIRED,
            bootstrap.reference_version_hash or "",
            {"missing": list(bootstrap.missing), "hint": bootstrap.hint},
        )

    def load_plan(self, tenant_id: str, plan_id: str) -> Plan:
        record = self._repository.get(plan_id)
        if (
            record is None
            or record.tenant_id != tenant_id
            or record.status != HistoryStatus.PLANNED
            or "plan" not in record.detail
        ):
            raise PlanNotFoundError(f"Plan {plan_id} not found for tenant {tenant_id}")
        return Plan.from_dict(record.detail["plan"])

    def list(self, tenant_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[HistoryRecord]:
        return self._repository.list_for_tenant(tenant_id, limit)
