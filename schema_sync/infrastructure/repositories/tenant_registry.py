import json
import logging
from typing import Dict, List, Callable, Optional

from schema_sync.domain.entities.errors import UnknownTenantError
from schema_sync.domain.repositories.interfaces import ISchemaConnector, ITenantRegistry

logger = logging.getLogger(__name__)


def _postgres_connector(dsn: str) -> ISchemaConnector:
    from schema_sync.infrastructure.database.connector import PostgresConnector
    return PostgresConnector(dsn)


class StaticTenantRegistry(ITenantRegistry):
    """
    Maps tenant ids to connection strings.
    Connectors are built lazily by ``connector_factory`` and cached per tenant.
    """

    def __init__(
        self,
        tenants: Dict[str, str],
        connector_factory: Optional[Callable[[str], ISchemaConnector]] = None,
    ):
        self._tenants = dict(tenants)
        self._factory = connector_factory or _postgres_connector
        self._connectors: Dict[str, ISchemaConnector] = {}

    @classmethod
    def from_file(cls, path: str, **kwargs) -> "StaticTenantRegistry":
        with open(path, "r", encoding="utf-8") as handle:
            tenants = json.load(handle)
        if not isinstance(tenants, dict):
            raise ValueError(f"Tenants file {path} must contain a JSON object of tenant_id -> dsn")
        logger.info(f"[StaticTenantRegistry] Loaded {len(tenants)} tenants from {path}")
        return cls(tenants, **kwargs)

    def connector_for(self, tenant_id: str) -> ISchemaConnector:
        if tenant_id not in self._tenants:
            raise UnknownTenantError(f"Unknown tenant {tenant_id}")
        if tenant_id not in self._connectors:
            self._connectors[tenant_id] = self._factory(self._tenants[tenant_id])
        return self._connectors[tenant_id]

    def tenant_ids(self) -> List[str]:
        return sorted(self._tenants)
