import logging
from typing import List, Sequence, Union, Optional

from schema_sync.domain.entities.evolution import PreflightQuery, PreflightResult
from schema_sync.domain.entities.errors import DatabaseConnectionError, DatabaseError, QueryNotAllowed
from schema_sync.domain.repositories.interfaces import ISchemaConnector
from schema_sync.domain.services.statement_validator import StatementValidator

logger = logging.getLogger(__name__)


class PreflightRunner:
    """
    Runs read-only verification queries against a tenant database.
    Single Responsibility: query gating and execution, one result per query.
    """

    def __init__(self, validator: Optional[StatementValidator] = None):
        self._validator = validator or StatementValidator()

    def run(
        self, connector: ISchemaConnector, queries: Sequence[Union[str, PreflightQuery]]
    ) -> List[PreflightResult]:
        results = []
        for item in queries:
            query = item if isinstance(item, PreflightQuery) else PreflightQuery(change_id=None, query=item)
            results.append(self._run_one(connector, query))
        failed = sum(1 for r in results if not r.ok)
        logger.info(f"[PreflightRunner] Ran {len(results)} queries, {failed} failed")
        return results

    def _run_one(self, connector: ISchemaConnector, query: PreflightQuery) -> PreflightResult:
        try:
            self._validator.validate_preflight(query.query)
        except QueryNotAllowed as e:
            logger.warning(f"[PreflightRunner] Rejected query for {query.change_id}: {e.message}")
            return PreflightResult(change_id=query.change_id, query=query.query, ok=False, error=e.code)

        try:
            row = connector.run_select(query.query)
        except DatabaseConnectionError as e:
            logger.warning(f"[PreflightRunner] Query for {query.change_id} could not connect")
            return PreflightResult(change_id=query.change_id, query=query.query, ok=False, error=e.message)
        except DatabaseError as e:
            logger.warning(f"[PreflightRunner] Query for {query.change_id} failed: {e.kind.value}")
            return PreflightResult(change_id=query.change_id, query=query.query, ok=False, error=e.message)
        return PreflightResult(change_id=query.change_id, query=query.query, ok=True, result=row)
