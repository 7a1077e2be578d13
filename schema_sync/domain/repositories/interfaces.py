from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional, Tuple
from schema_sync.domain.entities.schema import CatalogRows
from schema_sync.domain.entities.history import HistoryRecord


class ISchemaConnector(ABC):
    """
    Interface for a tenant database connection.

    Implementations translate vendor errors into ``DatabaseError`` with an
    ``ErrorKind``; callers never look at vendor codes.
    """

    @abstractmethod
    def fetch_catalog(self, schema: str) -> CatalogRows:
        """Read catalog metadata for ``schema`` inside one read-only snapshot."""
        pass

    @abstractmethod
    def role_exists(self, role: str) -> bool:
        pass

    @abstractmethod
    def schema_exists(self, schema: str) -> bool:
        pass

    @abstractmethod
    def execute(self, statement: str) -> None:
        """Execute one DDL statement in its own transaction."""
        pass

    @abstractmethod
    def run_select(self, query: str) -> Optional[Dict[str, Any]]:
        """Run a read-only query and return its first row (or None)."""
        pass

    def close(self) -> None:
        pass


class IHistoryRepository(ABC):
    """Append-only audit storage. No update or delete path exists."""

    @abstractmethod
    def append(self, record: HistoryRecord) -> HistoryRecord:
        pass

    @abstractmethod
    def get(self, record_id: str) -> Optional[HistoryRecord]:
        pass

    @abstractmethod
    def list_for_tenant(self, tenant_id: str, limit: int = 25) -> List[HistoryRecord]:
        """Newest first."""
        pass


class IReferenceSource(ABC):
    """Interface for the versioned canonical schema document."""

    @abstractmethod
    def read(self) -> Tuple[str, str]:
        """Return ``(sql_text, version_tag)``."""
        pass


class ITenantRegistry(ABC):
    """Resolves a tenant id to a connector for its database."""

    @abstractmethod
    def connector_for(self, tenant_id: str) -> ISchemaConnector:
        pass

    @abstractmethod
    def tenant_ids(self) -> List[str]:
        pass
