"""Sequential statement execution shared by the safe and destructive executors."""

import logging
import threading
from typing import List, Optional, Tuple, FrozenSet

from schema_sync.domain.entities.evolution import (
    ApplyResult, Change, ExecutionState, StatementIntent, StatementResult
)
from schema_sync.domain.entities.errors import DatabaseConnectionError, DatabaseError, ErrorKind
from schema_sync.domain.repositories.interfaces import ISchemaConnector

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"

# Forms without IF NOT EXISTS; an existing object means the change is already in place.
DUPLICATE_TOLERANT_INTENTS: FrozenSet[StatementIntent] = frozenset({
    StatementIntent.CREATE_POLICY,
    StatementIntent.ADD_CONSTRAINT,
})


def run_statements(
    connector: ISchemaConnector,
    items: List[Tuple[str, Optional[Change]]],
    cancel_event: Optional[threading.Event] = None,
    component: str = "StatementRunner",
) -> ApplyResult:
    """
    Execute statements one by one, each in its own transaction.
    Failures are captured per statement and never stop the run; a lost
    connection marks the current and all remaining statements as failed.
    """
    results: List[StatementResult] = []
    executed = 0
    logger.debug(f"[{component}] state -> {ExecutionState.EXECUTING.value}")

    for index, (statement, change) in enumerate(items):
        change_id = change.change_id if change else None
        if cancel_event is not None and cancel_event.is_set():
            logger.warning(f"[{component}] Cancelled with {len(items) - index} statements remaining")
            results.extend(
                StatementResult(statement=s, ok=False, error=CANCELLED, change_id=c.change_id if c else None)
                for s, c in items[index:]
            )
            break

        try:
            connector.execute(statement)
            results.append(StatementResult(statement=statement, ok=True, change_id=change_id))
        except DatabaseConnectionError as e:
            logger.error(f"[{component}] Connection lost with {len(items) - index} statements remaining")
            results.extend(
                StatementResult(
                    statement=s, ok=False, error=e.message, error_kind=ErrorKind.CONNECTION.value,
                    change_id=c.change_id if c else None,
                )
                for s, c in items[index:]
            )
            break
        except DatabaseError as e:
            if e.kind == ErrorKind.DUPLICATE_OBJECT and change and change.intent in DUPLICATE_TOLERANT_INTENTS:
                logger.info(f"[{component}] {change_id} already present, treating as no-op")
                results.append(StatementResult(statement=statement, ok=True, change_id=change_id))
            else:
                logger.error(f"[{component}] Statement for {change_id} failed: {e.kind.value}")
                results.append(StatementResult(
                    statement=statement, ok=False, error=e.message, error_kind=e.kind.value, change_id=change_id
                ))
        executed += 1

    if executed == 0 and results:
        state = ExecutionState.REJECTED
    elif all(r.ok for r in results):
        state = ExecutionState.COMMITTED
    else:
        state = ExecutionState.PARTIALLY_FAILED

    error = None
    if any(r.error == CANCELLED for r in results):
        error = CANCELLED
    elif any(r.error_kind == ErrorKind.CONNECTION.value for r in results):
        error = DatabaseConnectionError.code
    elif state == ExecutionState.PARTIALLY_FAILED:
        error = "partial_failure"
    logger.info(f"[{component}] state -> {state.value} ({sum(r.ok for r in results)}/{len(results)} ok)")
    return ApplyResult(state=state, statements=results, error=error)
