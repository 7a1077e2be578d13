"""Live schema introspection."""

import logging
from typing import List, Optional, Union, Dict, Any

from schema_sync.domain.entities.schema import (
    CatalogRows, ObjectKind, SchemaObjectDescriptor, SchemaSnapshot
)
from schema_sync.domain.entities.evolution import BootstrapRequired
from schema_sync.domain.entities.errors import DatabaseConnectionError
from schema_sync.domain.repositories.interfaces import ISchemaConnector
from schema_sync.domain.services.bootstrap import BootstrapDetector
from schema_sync.domain.services.canonical import canonical_type
from schema_sync.domain.services.hashing import hash_snapshot

logger = logging.getLogger(__name__)

CONSTRAINT_TYPES = {
    "p": "primary_key",
    "f": "foreign_key",
    "u": "unique",
    "c": "check",
    "x": "exclude",
}


def _role_list(value: Any) -> List[str]:
    if value is None:
        return ["public"]
    if isinstance(value, str):
        value = [v.strip().strip('"') for v in value.strip("{}").split(",") if v.strip()]
    return sorted(str(v).lower() if str(v).upper() == "PUBLIC" else str(v) for v in value) or ["public"]


def snapshot_from_catalog(rows: CatalogRows) -> SchemaSnapshot:
    """Canonicalize raw catalog rows into descriptors comparable with the reference."""
    descriptors: List[SchemaObjectDescriptor] = []

    primary_keys: Dict[str, List[str]] = {}
    for row in sorted(rows.primary_keys, key=lambda r: (r["table_name"], r.get("position", 0))):
        primary_keys.setdefault(row["table_name"], []).append(row["column_name"])

    for row in rows.tables:
        descriptors.append(SchemaObjectDescriptor(ObjectKind.TABLE, row["name"], row["name"], {
            "rls_enabled": bool(row.get("rls_enabled")),
            "primary_key": primary_keys.get(row["name"], []),
        }))

    for row in rows.columns:
        descriptors.append(SchemaObjectDescriptor(ObjectKind.COLUMN, row["table_name"], row["name"], {
            "type": canonical_type(row.get("type")),
            "nullable": bool(row.get("nullable", True)),
            "default": row.get("default"),
        }))

    for row in rows.indexes:
        definition = row.get("definition") or ""
        descriptors.append(SchemaObjectDescriptor(ObjectKind.INDEX, row["table_name"], row["name"], {
            "unique": definition.upper().startswith("CREATE UNIQUE"),
            "definition": definition,
        }))

    for row in rows.constraints:
        descriptors.append(SchemaObjectDescriptor(ObjectKind.CONSTRAINT, row["table_name"], row["name"], {
            "definition": row.get("definition") or "",
            "constraint_type": CONSTRAINT_TYPES.get(row.get("type"), "other"),
        }))

    for row in rows.policies:
        descriptors.append(SchemaObjectDescriptor(ObjectKind.POLICY, row["table_name"], row["name"], {
            "permissive": (row.get("permissive") or "PERMISSIVE").upper(),
            "command": (row.get("command") or "ALL").upper(),
            "roles": _role_list(row.get("roles")),
            "using": row.get("using"),
            "check": row.get("check"),
        }))

    for row in rows.views:
        descriptors.append(SchemaObjectDescriptor(ObjectKind.VIEW, row["name"], row["name"], {
            "definition": row.get("definition") or "",
        }))

    for row in rows.extensions:
        descriptors.append(SchemaObjectDescriptor(ObjectKind.EXTENSION, "", row["name"], {
            "schema": row.get("schema"),
            "version": row.get("version"),
        }))

    return SchemaSnapshot(descriptors=descriptors, schema=rows.schema)


class LiveSchemaIntrospector:
    """
    Reads a tenant database into a SchemaSnapshot.
    Single Responsibility: introspection; prerequisites are checked first.
    """

    def __init__(self, detector: BootstrapDetector, schema: str = "public"):
        self._detector = detector
        self._schema = schema

    def introspect(
        self, connector: Optional[ISchemaConnector], reference_version_hash: Optional[str] = None
    ) -> Union[SchemaSnapshot, BootstrapRequired]:
        if connector is None:
            raise DatabaseConnectionError("No database handle for tenant")

        bootstrap = self._detector.detect(connector, reference_version_hash)
        if bootstrap is not None:
            return bootstrap

        snapshot = snapshot_from_catalog(connector.fetch_catalog(self._schema))
        logger.info(
            f"[LiveSchemaIntrospector] Introspected {len(snapshot.table_names())} tables, "
            f"{len(snapshot.descriptors)} objects in schema {self._schema}"
        )
        return snapshot

    @staticmethod
    def snapshot_hash(snapshot: SchemaSnapshot) -> str:
        return hash_snapshot(snapshot.to_dict())
