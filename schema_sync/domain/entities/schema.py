from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any, Tuple, Iterable
from enum import Enum


class ObjectKind(Enum):
    """Kinds of structural objects compared between reference and live schemas."""
    TABLE = "table"
    COLUMN = "column"
    INDEX = "index"
    CONSTRAINT = "constraint"
    POLICY = "policy"
    EXTENSION = "extension"
    VIEW = "view"


@dataclass(frozen=True)
class SchemaObjectDescriptor:
    """
    Normalized description of one schema object.

    Produced identically by the reference loader and the live introspector so
    both sides compare structurally. ``table`` is the owning table for columns,
    indexes, constraints and policies, the object's own name for tables and
    views, and empty for extensions.
    """
    kind: ObjectKind
    table: str
    name: str
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def identity(self) -> Tuple[str, str, str]:
        return (self.kind.value, self.table, self.name)

    def attr(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)


def descriptor_sort_key(descriptor: SchemaObjectDescriptor) -> Tuple[str, str, str]:
    """Stable ordering: by table, then kind, then object name."""
    return (descriptor.table, descriptor.kind.value, descriptor.name)


@dataclass
class SchemaSnapshot:
    """Ordered set of descriptors with identity lookups."""
    descriptors: List[SchemaObjectDescriptor] = field(default_factory=list)
    schema: str = "public"
    _index: Dict[Tuple[str, str, str], SchemaObjectDescriptor] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self):
        self.descriptors = sorted(self.descriptors, key=descriptor_sort_key)
        self._index = {d.identity: d for d in self.descriptors}

    def get(self, kind: ObjectKind, table: str, name: str) -> Optional[SchemaObjectDescriptor]:
        return self._index.get((kind.value, table, name))

    def has(self, kind: ObjectKind, table: str, name: str) -> bool:
        return (kind.value, table, name) in self._index

    def of_kind(self, kind: ObjectKind) -> List[SchemaObjectDescriptor]:
        return [d for d in self.descriptors if d.kind == kind]

    def for_table(self, table: str, kind: Optional[ObjectKind] = None) -> List[SchemaObjectDescriptor]:
        return [
            d for d in self.descriptors
            if d.table == table and (kind is None or d.kind == kind)
        ]

    def table_names(self) -> List[str]:
        return [d.name for d in self.of_kind(ObjectKind.TABLE)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema": self.schema,
            "objects": [
                {
                    "kind": d.kind.value,
                    "table": d.table,
                    "name": d.name,
                    "attributes": d.attributes,
                }
                for d in self.descriptors
            ],
        }


@dataclass(frozen=True)
class ReferenceSchema:
    """Parsed canonical (SSOT) schema plus its version stamp."""
    version: str
    version_hash: str
    snapshot: SchemaSnapshot


@dataclass
class CatalogRows:
    """
    Raw catalog metadata fetched from a tenant database in one read snapshot.
    Each list holds plain row dicts as returned by the connector.
    """
    schema: str = "public"
    tables: List[Dict[str, Any]] = field(default_factory=list)
    columns: List[Dict[str, Any]] = field(default_factory=list)
    primary_keys: List[Dict[str, Any]] = field(default_factory=list)
    indexes: List[Dict[str, Any]] = field(default_factory=list)
    constraints: List[Dict[str, Any]] = field(default_factory=list)
    policies: List[Dict[str, Any]] = field(default_factory=list)
    views: List[Dict[str, Any]] = field(default_factory=list)
    extensions: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_rows(cls, schema: str, **sections: Iterable[Dict[str, Any]]) -> "CatalogRows":
        return cls(schema=schema, **{k: [dict(r) for r in v] for k, v in sections.items()})
