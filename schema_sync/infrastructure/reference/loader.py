"""Reference (SSOT) schema loader."""

import re
import logging
from typing import List, Optional, Dict, Any, Tuple

import sqlparse

from schema_sync.domain.entities.schema import (
    ObjectKind, SchemaObjectDescriptor, SchemaSnapshot, ReferenceSchema
)
from schema_sync.domain.entities.errors import ParseError
from schema_sync.domain.services.canonical import (
    IDENT_PATTERN, QUALIFIED_PATTERN, normalize_identifier, split_qualified,
    canonical_type, quote_ident, qualified, normalize_sql_text, find_matching_paren, split_top_level
)
from schema_sync.domain.services.hashing import hash_reference_text

logger = logging.getLogger(__name__)

_FLAGS = re.IGNORECASE | re.DOTALL

_CREATE_TABLE_RE = re.compile(
    rf"^CREATE\s+TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?(?P<name>{QUALIFIED_PATTERN})\s*\(", _FLAGS
)
_ALTER_TABLE_RE = re.compile(
    rf"^ALTER\s+TABLE\s+(?:IF\s+EXISTS\s+)?(?:ONLY\s+)?(?P<table>{QUALIFIED_PATTERN})\s+(?P<actions>.+)$", _FLAGS
)
_ADD_COLUMN_RE = re.compile(r"^ADD\s+COLUMN\s+(?:IF\s+NOT\s+EXISTS\s+)?(?P<definition>.+)$", _FLAGS)
_ADD_CONSTRAINT_RE = re.compile(rf"^ADD\s+CONSTRAINT\s+(?P<name>{IDENT_PATTERN})\s+(?P<definition>.+)$", _FLAGS)
_ENABLE_RLS_RE = re.compile(r"^ENABLE\s+ROW\s+LEVEL\s+SECURITY$", _FLAGS)
_CREATE_INDEX_RE = re.compile(
    rf"^CREATE\s+(?P<unique>UNIQUE\s+)?INDEX\s+(?:CONCURRENTLY\s+)?(?:IF\s+NOT\s+EXISTS\s+)?"
    rf"(?P<name>{IDENT_PATTERN})\s+ON\s+(?:ONLY\s+)?(?P<table>{QUALIFIED_PATTERN})(?P<rest>.*)$", _FLAGS
)
_CREATE_POLICY_RE = re.compile(
    rf"^CREATE\s+POLICY\s+(?P<name>{IDENT_PATTERN})\s+ON\s+(?P<table>{QUALIFIED_PATTERN})(?P<rest>.*)$", _FLAGS
)
_CREATE_EXTENSION_RE = re.compile(
    rf"^CREATE\s+EXTENSION\s+(?:IF\s+NOT\s+EXISTS\s+)?(?P<name>{IDENT_PATTERN})(?P<rest>.*)$", _FLAGS
)
_CREATE_VIEW_RE = re.compile(
    rf"^CREATE\s+(?:OR\s+REPLACE\s+)?VIEW\s+(?P<name>{QUALIFIED_PATTERN})(?P<options>.*?)\s+AS\s+(?P<body>.+)$", _FLAGS
)

_TABLE_CONSTRAINT_STARTERS = re.compile(
    r"^(?:CONSTRAINT\s|PRIMARY\s+KEY|FOREIGN\s+KEY|UNIQUE\b|CHECK\b|EXCLUDE\b|LIKE\s)", re.IGNORECASE
)
_COLUMN_RE = re.compile(rf"^(?P<name>{IDENT_PATTERN})\s+(?P<rest>.+)$", _FLAGS)
_COLUMN_KEYWORDS = (
    r"DEFAULT|NOT\s+NULL|NULL|PRIMARY\s+KEY|UNIQUE|REFERENCES|CHECK|CONSTRAINT|GENERATED|COLLATE"
)
_TYPE_END_RE = re.compile(rf"\s+(?:{_COLUMN_KEYWORDS})\b", re.IGNORECASE)
_DEFAULT_RE = re.compile(
    r"\bDEFAULT\s+(?P<value>.+?)(?=\s+(?:NOT\s+NULL|NULL|PRIMARY\s+KEY|UNIQUE|REFERENCES|CHECK|CONSTRAINT|GENERATED|COLLATE)\b|$)",
    _FLAGS,
)
_PK_RE = re.compile(r"^(?:CONSTRAINT\s+\S+\s+)?PRIMARY\s+KEY\s*\((?P<cols>[^)]*)\)", re.IGNORECASE)


def constraint_type_of(definition: str) -> str:
    head = definition.strip().upper()
    for prefix, kind in (("FOREIGN", "foreign_key"), ("CHECK", "check"), ("UNIQUE", "unique"),
                         ("PRIMARY", "primary_key"), ("EXCLUDE", "exclude")):
        if head.startswith(prefix):
            return kind
    return "other"


def parse_column_definition(entry: str) -> Optional[Dict[str, Any]]:
    """Parse ``name type [DEFAULT x] [NOT NULL] ...``; returns None for table-level clauses."""
    trimmed = entry.strip().rstrip(",").strip()
    if not trimmed or _TABLE_CONSTRAINT_STARTERS.match(trimmed):
        return None
    match = _COLUMN_RE.match(trimmed)
    if not match:
        return None

    rest = match.group("rest")
    type_end = _TYPE_END_RE.search(rest)
    raw_type = rest[:type_end.start()] if type_end else rest
    default_match = _DEFAULT_RE.search(rest)
    primary_key = bool(re.search(r"\bPRIMARY\s+KEY\b", rest, re.IGNORECASE))
    not_null = primary_key or bool(re.search(r"\bNOT\s+NULL\b", rest, re.IGNORECASE))

    return {
        "name": normalize_identifier(match.group("name")),
        "type": canonical_type(raw_type),
        "nullable": not not_null,
        "default": default_match.group("value").strip() if default_match else None,
        "primary_key": primary_key,
        "definition": " ".join(trimmed.split()),
    }


_POLICY_AS_RE = re.compile(r"\s*AS\s+(?P<v>PERMISSIVE|RESTRICTIVE)\b", re.IGNORECASE)
_POLICY_FOR_RE = re.compile(r"\s*FOR\s+(?P<v>ALL|SELECT|INSERT|UPDATE|DELETE)\b", re.IGNORECASE)
_POLICY_TO_RE = re.compile(r"\s*TO\s+(?P<v>.+?)(?=\s+USING\b|\s+WITH\s+CHECK\b|\s*$)", _FLAGS)
_POLICY_USING_RE = re.compile(r"\s*USING\s*(?=\()", re.IGNORECASE)
_POLICY_CHECK_RE = re.compile(r"\s*WITH\s+CHECK\s*(?=\()", re.IGNORECASE)


def parse_policy_clauses(rest: str) -> Dict[str, Any]:
    clauses: Dict[str, Any] = {
        "permissive": "PERMISSIVE",
        "command": "ALL",
        "roles": ["public"],
        "using": None,
        "check": None,
    }
    pos = 0
    for pattern, key in ((_POLICY_AS_RE, "permissive"), (_POLICY_FOR_RE, "command"), (_POLICY_TO_RE, "roles")):
        match = pattern.match(rest, pos)
        if not match:
            continue
        value = match.group("v").strip()
        if key == "roles":
            clauses[key] = sorted(normalize_identifier(r) for r in split_top_level(value))
        else:
            clauses[key] = value.upper()
        pos = match.end()

    for pattern, key in ((_POLICY_USING_RE, "using"), (_POLICY_CHECK_RE, "check")):
        match = pattern.match(rest, pos)
        if not match:
            continue
        close = find_matching_paren(rest, match.end())
        if close == -1:
            raise ParseError(f"Unbalanced parentheses in policy {key} clause")
        clauses[key] = " ".join(rest[match.end() + 1:close].split())
        pos = close + 1
    return clauses


class _DescriptorCollector:
    """Accumulates declarative intent; the first declaration of an object wins."""

    def __init__(self, schema: str):
        self.schema = schema
        self.tables: Dict[str, Dict[str, Any]] = {}
        self.columns: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.objects: Dict[Tuple[str, str, str], SchemaObjectDescriptor] = {}

    def ensure_table(self, table: str) -> Dict[str, Any]:
        if table not in self.tables:
            self.tables[table] = {
                "create_sql": None, "primary_key": [], "rls_enabled": False, "inline_columns": [],
            }
            self.columns[table] = {}
        return self.tables[table]

    def add_column(self, table: str, column: Dict[str, Any]) -> None:
        self.ensure_table(table)
        self.columns[table].setdefault(column["name"], column)

    def add(self, descriptor: SchemaObjectDescriptor) -> None:
        if descriptor.identity not in self.objects:
            self.objects[descriptor.identity] = descriptor

    def build(self) -> List[SchemaObjectDescriptor]:
        descriptors = list(self.objects.values())
        for table, attrs in self.tables.items():
            columns = self.columns[table]
            if not attrs["create_sql"]:
                attrs = dict(
                    attrs, create_sql=self._render_create_table(table, columns), inline_columns=list(columns)
                )
            descriptors.append(SchemaObjectDescriptor(ObjectKind.TABLE, table, table, attrs))
            for column in columns.values():
                attributes = {k: v for k, v in column.items() if k != "name"}
                descriptors.append(SchemaObjectDescriptor(ObjectKind.COLUMN, table, column["name"], attributes))
        return descriptors

    def _render_create_table(self, table: str, columns: Dict[str, Dict[str, Any]]) -> str:
        body = ",\n  ".join(c["definition"] for c in columns.values())
        if body:
            return f"CREATE TABLE IF NOT EXISTS {qualified(self.schema, table)} (\n  {body}\n);"
        return f"CREATE TABLE IF NOT EXISTS {qualified(self.schema, table)} ();"


class ReferenceSchemaLoader:
    """
    Parses the canonical schema SQL into normalized descriptors.

    Idempotent DDL (``ADD COLUMN IF NOT EXISTS`` and friends) is read as
    declarative intent: the loader records what must exist, it does not replay
    the script.
    """

    def __init__(self, target_schema: str = "public"):
        self._schema = target_schema

    def load(self, text: str, version: str = "") -> ReferenceSchema:
        if not isinstance(text, str) or not text.strip():
            raise ParseError("Reference schema text is empty")

        collector = _DescriptorCollector(self._schema)
        recognized = 0
        for raw in sqlparse.split(text):
            statement = self._clean(raw)
            if statement and self._parse_statement(statement, collector):
                recognized += 1

        if recognized == 0:
            raise ParseError("Reference schema contains no recognizable schema statements")

        snapshot = SchemaSnapshot(descriptors=collector.build(), schema=self._schema)
        logger.info(
            f"[ReferenceSchemaLoader] Parsed {recognized} statements into "
            f"{len(snapshot.descriptors)} descriptors (version={version or 'unversioned'})"
        )
        return ReferenceSchema(version=version, version_hash=hash_reference_text(text), snapshot=snapshot)

    def _clean(self, raw: str) -> str:
        stripped = sqlparse.format(raw, strip_comments=True).strip()
        return stripped[:-1].rstrip() if stripped.endswith(";") else stripped

    def _in_scope(self, schema: Optional[str]) -> bool:
        return schema is None or schema == self._schema

    def _parse_statement(self, statement: str, collector: _DescriptorCollector) -> bool:
        for matcher, handler in (
            (_CREATE_TABLE_RE, self._on_create_table),
            (_ALTER_TABLE_RE, self._on_alter_table),
            (_CREATE_INDEX_RE, self._on_create_index),
            (_CREATE_POLICY_RE, self._on_create_policy),
            (_CREATE_EXTENSION_RE, self._on_create_extension),
            (_CREATE_VIEW_RE, self._on_create_view),
        ):
            match = matcher.match(statement)
            if match:
                return handler(statement, match, collector)
        logger.debug(f"[ReferenceSchemaLoader] Ignoring non-structural statement: {statement[:60]!r}")
        return False

    def _on_create_table(self, statement: str, match, collector: _DescriptorCollector) -> bool:
        schema, table = split_qualified(match.group("name"))
        open_paren = match.end() - 1
        close_paren = find_matching_paren(statement, open_paren)
        if close_paren == -1:
            raise ParseError(f"Unbalanced parentheses in CREATE TABLE {table}")
        if not self._in_scope(schema):
            return True

        attrs = collector.ensure_table(table)
        primary_key: List[str] = []
        inline_columns: List[str] = []
        for item in split_top_level(statement[open_paren + 1:close_paren]):
            column = parse_column_definition(item)
            if column:
                collector.add_column(table, column)
                inline_columns.append(column["name"])
                if column["primary_key"]:
                    primary_key.append(column["name"])
                continue
            pk = _PK_RE.match(item)
            if pk:
                primary_key.extend(normalize_identifier(c) for c in pk.group("cols").split(","))
            named = _ADD_CONSTRAINT_RE.match("ADD " + item)
            if named and not pk:
                self._add_constraint(table, named.group("name"), named.group("definition"), collector)

        create_sql = statement
        if not re.match(r"^CREATE\s+TABLE\s+IF\s+NOT\s+EXISTS", create_sql, re.IGNORECASE):
            create_sql = re.sub(r"^CREATE\s+TABLE\s+", "CREATE TABLE IF NOT EXISTS ", create_sql,
                                count=1, flags=re.IGNORECASE)
        if not attrs["create_sql"]:
            attrs["create_sql"] = create_sql + ";"
            attrs["inline_columns"] = inline_columns
        attrs["primary_key"] = attrs["primary_key"] or primary_key
        return True

    def _on_alter_table(self, statement: str, match, collector: _DescriptorCollector) -> bool:
        schema, table = split_qualified(match.group("table"))
        if not self._in_scope(schema):
            return True

        recognized = False
        for action in split_top_level(match.group("actions")):
            column_match = _ADD_COLUMN_RE.match(action)
            if column_match:
                column = parse_column_definition(column_match.group("definition"))
                if column is None:
                    raise ParseError(f"Malformed ADD COLUMN on {table}: {action!r}")
                collector.add_column(table, column)
                recognized = True
                continue
            constraint_match = _ADD_CONSTRAINT_RE.match(action)
            if constraint_match:
                self._add_constraint(table, constraint_match.group("name"),
                                     constraint_match.group("definition"), collector)
                recognized = True
                continue
            if _ENABLE_RLS_RE.match(action):
                collector.ensure_table(table)["rls_enabled"] = True
                recognized = True
        return recognized

    def _add_constraint(self, table: str, raw_name: str, definition: str, collector: _DescriptorCollector) -> None:
        name = normalize_identifier(raw_name)
        definition = " ".join(definition.split())
        sql = f"ALTER TABLE {qualified(self._schema, table)} ADD CONSTRAINT {quote_ident(name)} {definition};"
        collector.add(SchemaObjectDescriptor(ObjectKind.CONSTRAINT, table, name, {
            "definition": definition,
            "constraint_type": constraint_type_of(definition),
            "sql": sql,
        }))

    def _on_create_index(self, statement: str, match, collector: _DescriptorCollector) -> bool:
        schema, table = split_qualified(match.group("table"))
        if not self._in_scope(schema):
            return True
        unique = bool(match.group("unique"))
        name = normalize_identifier(match.group("name"))
        rest = " ".join(match.group("rest").split())
        sql = (
            f"CREATE {'UNIQUE ' if unique else ''}INDEX IF NOT EXISTS {quote_ident(name)} "
            f"ON {qualified(self._schema, table)} {rest};"
        )
        collector.add(SchemaObjectDescriptor(ObjectKind.INDEX, table, name, {
            "unique": unique,
            "definition": normalize_sql_text(sql),
            "sql": sql,
        }))
        return True

    def _on_create_policy(self, statement: str, match, collector: _DescriptorCollector) -> bool:
        schema, table = split_qualified(match.group("table"))
        if not self._in_scope(schema):
            return True
        name = normalize_identifier(match.group("name"))
        rest = " ".join(match.group("rest").split())
        clauses = parse_policy_clauses(rest)
        clauses["sql"] = (
            f"CREATE POLICY {quote_ident(name)} ON {qualified(self._schema, table)}"
            f"{(' ' + rest) if rest else ''};"
        )
        collector.add(SchemaObjectDescriptor(ObjectKind.POLICY, table, name, clauses))
        return True

    def _on_create_extension(self, statement: str, match, collector: _DescriptorCollector) -> bool:
        name = normalize_identifier(match.group("name"))
        rest = " ".join(match.group("rest").split())
        schema_match = re.search(rf"\bSCHEMA\s+({IDENT_PATTERN})", rest, re.IGNORECASE)
        sql = f"CREATE EXTENSION IF NOT EXISTS {quote_ident(name)}{(' ' + rest) if rest else ''};"
        collector.add(SchemaObjectDescriptor(ObjectKind.EXTENSION, "", name, {
            "schema": normalize_identifier(schema_match.group(1)) if schema_match else None,
            "sql": sql,
        }))
        return True

    def _on_create_view(self, statement: str, match, collector: _DescriptorCollector) -> bool:
        schema, view = split_qualified(match.group("name"))
        if not self._in_scope(schema):
            return True
        options = " ".join(match.group("options").split())
        body = match.group("body").strip()
        sql = (
            f"CREATE OR REPLACE VIEW {qualified(self._schema, view)}"
            f"{(' ' + options) if options else ''} AS {body};"
        )
        collector.add(SchemaObjectDescriptor(ObjectKind.VIEW, view, view, {
            "definition": normalize_sql_text(body),
            "sql": sql,
        }))
        return True
