import re
import logging
from typing import List, Tuple, Optional

from schema_sync.domain.entities.schema import ObjectKind, SchemaObjectDescriptor, SchemaSnapshot
from schema_sync.domain.entities.evolution import (
    Change, ChangeAction, ChangeCategory, ObjectRef, PreflightQuery, StatementIntent
)
from schema_sync.domain.services.canonical import (
    IDENT_PATTERN, QUALIFIED_PATTERN, normalize_identifier, split_qualified, quote_ident, qualified
)
from schema_sync.domain.services.risk_classifier import RiskClassifier

logger = logging.getLogger(__name__)

_FK_RE = re.compile(
    rf"^FOREIGN\s+KEY\s*\(\s*(?P<col>{IDENT_PATTERN})\s*\)\s*REFERENCES\s+(?P<ref>{QUALIFIED_PATTERN})"
    rf"\s*\(\s*(?P<ref_col>{IDENT_PATTERN})\s*\)",
    re.IGNORECASE,
)
_SERIAL_RE = re.compile(r"\b(?:small|big)?serial[248]?\b", re.IGNORECASE)


def change_sort_key(change: Change) -> Tuple[str, str, str, str]:
    return (change.object.table, change.object.name, change.category.value, change.intent.value)


class DiffEngine:
    """
    Computes structural differences between the reference schema and a live
    tenant schema.
    Single Responsibility: Only handles diff computation.

    The diff is additive-only: objects that exist only in the live database
    never produce changes.
    """

    def __init__(self, classifier: Optional[RiskClassifier] = None, schema: str = "public"):
        self._classifier = classifier or RiskClassifier()
        self._schema = schema
        logger.info(f"[DiffEngine] Initialized for schema '{schema}'")

    def compute_diff(
        self, reference: SchemaSnapshot, live: SchemaSnapshot
    ) -> Tuple[List[Change], List[PreflightQuery]]:
        """
        Compare reference against live.
        Returns the ordered change list and the preflight queries derived from it.
        """
        changes: List[Change] = []
        preflight: List[PreflightQuery] = []

        for extension in reference.of_kind(ObjectKind.EXTENSION):
            if not live.has(ObjectKind.EXTENSION, "", extension.name):
                changes.append(self._create_extension(extension))

        for table in reference.of_kind(ObjectKind.TABLE):
            live_table = live.get(ObjectKind.TABLE, table.name, table.name)
            if live_table is None:
                changes.append(self._create_table(table))
                # columns declared only by later ALTER TABLE statements
                inline = set(table.attr("inline_columns") or [])
                for column in reference.for_table(table.name, ObjectKind.COLUMN):
                    if column.name not in inline:
                        changes.append(self._add_column(table.name, column))
            else:
                changes.extend(self._compare_columns(table.name, reference, live, preflight))

            if table.attr("rls_enabled") and not (live_table and live_table.attr("rls_enabled")):
                changes.append(self._enable_rls(table.name))

        for index in reference.of_kind(ObjectKind.INDEX):
            if not live.has(ObjectKind.INDEX, index.table, index.name):
                changes.append(self._create_index(index))

        for constraint in reference.of_kind(ObjectKind.CONSTRAINT):
            if not live.has(ObjectKind.CONSTRAINT, constraint.table, constraint.name):
                change = self._add_constraint(constraint)
                changes.append(change)
                query = self._orphan_check(constraint, change, live)
                if query:
                    preflight.append(query)

        for policy in reference.of_kind(ObjectKind.POLICY):
            live_policy = live.get(ObjectKind.POLICY, policy.table, policy.name)
            if live_policy is None:
                changes.append(self._create_policy(policy))
            elif self._policy_diverges(policy, live_policy):
                changes.append(self._replace_policy(policy, live_policy))

        for view in reference.of_kind(ObjectKind.VIEW):
            if not live.has(ObjectKind.VIEW, view.table, view.name):
                changes.append(self._create_view(view))

        changes.sort(key=change_sort_key)
        preflight.sort(key=lambda q: (q.change_id or "", q.query))

        logger.info(f"[DiffEngine] Computed {len(changes)} changes, {len(preflight)} preflight queries")
        return changes, preflight

    # ------------------------------------------------------------------ columns

    def _compare_columns(
        self, table: str, reference: SchemaSnapshot, live: SchemaSnapshot, preflight: List[PreflightQuery]
    ) -> List[Change]:
        changes = []
        target = qualified(self._schema, table)
        for column in reference.for_table(table, ObjectKind.COLUMN):
            live_column = live.get(ObjectKind.COLUMN, table, column.name)
            if live_column is None:
                change = self._add_column(table, column)
                changes.append(change)
                if change.intent == StatementIntent.ADD_REQUIRED_COLUMN:
                    preflight.append(PreflightQuery(
                        change_id=change.change_id,
                        query=f"SELECT COUNT(*) AS row_count FROM {target}",
                        description=f"Rows in {table} that would need a value for {column.name}",
                    ))
                continue

            wanted_type, live_type = column.attr("type"), live_column.attr("type")
            if wanted_type and live_type and wanted_type != live_type:
                changes.append(self._alter_type(table, column, live_type))

            if not column.attr("nullable", True) and live_column.attr("nullable", True):
                change = self._set_not_null(table, column)
                changes.append(change)
                preflight.append(PreflightQuery(
                    change_id=change.change_id,
                    query=(
                        f"SELECT COUNT(*) AS null_count FROM {target} "
                        f"WHERE {quote_ident(column.name)} IS NULL"
                    ),
                    description=f"Rows in {table} where {column.name} is NULL",
                ))
        return changes

    def _add_column(self, table: str, column: SchemaObjectDescriptor) -> Change:
        definition = column.attr("definition") or f"{quote_ident(column.name)} {column.attr('type')}"
        has_default = column.attr("default") is not None or bool(_SERIAL_RE.search(definition))
        required = not column.attr("nullable", True) and not has_default

        intent = StatementIntent.ADD_REQUIRED_COLUMN if required else StatementIntent.ADD_COLUMN
        reason = (
            f"Column {table}.{column.name} is NOT NULL without a default; fails on populated tables"
            if required else f"Column {table}.{column.name} is missing"
        )
        title = f"Add {'required ' if required else ''}column {table}.{column.name}"
        sql = f"ALTER TABLE {qualified(self._schema, table)} ADD COLUMN IF NOT EXISTS {definition};"
        return self._make(ChangeCategory.COLUMN, ChangeAction.CREATE, intent, table, column.name, reason, sql, title)

    def _alter_type(self, table: str, column: SchemaObjectDescriptor, live_type: str) -> Change:
        wanted = column.attr("type")
        name = quote_ident(column.name)
        sql = (
            f"ALTER TABLE {qualified(self._schema, table)} ALTER COLUMN {name} "
            f"TYPE {wanted} USING {name}::{wanted};"
        )
        return self._make(
            ChangeCategory.COLUMN, ChangeAction.ALTER, StatementIntent.ALTER_COLUMN_TYPE, table, column.name,
            f"Type mismatch on {table}.{column.name}: live {live_type}, reference {wanted}",
            sql, f"Change type of {table}.{column.name} to {wanted}",
        )

    def _set_not_null(self, table: str, column: SchemaObjectDescriptor) -> Change:
        sql = (
            f"ALTER TABLE {qualified(self._schema, table)} ALTER COLUMN {quote_ident(column.name)} SET NOT NULL;"
        )
        return self._make(
            ChangeCategory.COLUMN, ChangeAction.ALTER, StatementIntent.SET_NOT_NULL, table, column.name,
            f"Column {table}.{column.name} is nullable in the live database but NOT NULL in the reference",
            sql, f"Set NOT NULL on {table}.{column.name}",
        )

    # ------------------------------------------------------------------ objects

    def _create_table(self, table: SchemaObjectDescriptor) -> Change:
        return self._make(
            ChangeCategory.TABLE, ChangeAction.CREATE, StatementIntent.CREATE_TABLE, table.name, table.name,
            f"Table {table.name} is missing", table.attr("create_sql"), f"Create table {table.name}",
        )

    def _enable_rls(self, table: str) -> Change:
        return self._make(
            ChangeCategory.RLS, ChangeAction.ENABLE, StatementIntent.ENABLE_RLS, table, table,
            f"Row level security is not enabled on {table}",
            f"ALTER TABLE {qualified(self._schema, table)} ENABLE ROW LEVEL SECURITY;",
            f"Enable row level security on {table}",
        )

    def _create_index(self, index: SchemaObjectDescriptor) -> Change:
        unique = bool(index.attr("unique"))
        intent = StatementIntent.CREATE_UNIQUE_INDEX if unique else StatementIntent.CREATE_INDEX
        return self._make(
            ChangeCategory.INDEX, ChangeAction.CREATE, intent, index.table, index.name,
            f"Index {index.name} on {index.table} is missing", index.attr("sql"),
            f"Create {'unique ' if unique else ''}index {index.name} on {index.table}",
        )

    def _add_constraint(self, constraint: SchemaObjectDescriptor) -> Change:
        return self._make(
            ChangeCategory.CONSTRAINT, ChangeAction.CREATE, StatementIntent.ADD_CONSTRAINT,
            constraint.table, constraint.name,
            f"Constraint {constraint.name} on {constraint.table} is missing; existing rows may violate it",
            constraint.attr("sql"), f"Add constraint {constraint.name} on {constraint.table}",
        )

    def _orphan_check(
        self, constraint: SchemaObjectDescriptor, change: Change, live: SchemaSnapshot
    ) -> Optional[PreflightQuery]:
        """Orphan-row count for single-column foreign keys on tables that already exist."""
        match = _FK_RE.match(constraint.attr("definition") or "")
        if not match or not live.has(ObjectKind.TABLE, constraint.table, constraint.table):
            return None
        ref_schema, ref_table = split_qualified(match.group("ref"))
        col = quote_ident(normalize_identifier(match.group("col")))
        ref_col = quote_ident(normalize_identifier(match.group("ref_col")))
        query = (
            f"SELECT COUNT(*) AS orphan_count FROM {qualified(self._schema, constraint.table)} c "
            f"LEFT JOIN {qualified(ref_schema or self._schema, ref_table)} p ON p.{ref_col} = c.{col} "
            f"WHERE c.{col} IS NOT NULL AND p.{ref_col} IS NULL"
        )
        return PreflightQuery(
            change_id=change.change_id,
            query=query,
            description=f"Rows in {constraint.table} violating {constraint.name}",
        )

    def _create_policy(self, policy: SchemaObjectDescriptor) -> Change:
        return self._make(
            ChangeCategory.POLICY, ChangeAction.CREATE, StatementIntent.CREATE_POLICY, policy.table, policy.name,
            f"Policy {policy.name} on {policy.table} is missing", policy.attr("sql"),
            f"Create policy {policy.name} on {policy.table}",
        )

    @staticmethod
    def _policy_diverges(policy: SchemaObjectDescriptor, live_policy: SchemaObjectDescriptor) -> bool:
        wanted_cmd = (policy.attr("command") or "ALL").upper()
        live_cmd = (live_policy.attr("command") or "ALL").upper()
        wanted_roles = sorted(policy.attr("roles") or ["public"])
        live_roles = sorted(live_policy.attr("roles") or ["public"])
        return wanted_cmd != live_cmd or wanted_roles != live_roles

    def _replace_policy(self, policy: SchemaObjectDescriptor, live_policy: SchemaObjectDescriptor) -> Change:
        drop = f"DROP POLICY IF EXISTS {quote_ident(policy.name)} ON {qualified(self._schema, policy.table)};"
        reason = (
            f"Policy {policy.name} on {policy.table} differs: live "
            f"{live_policy.attr('command')} to {','.join(live_policy.attr('roles') or [])}, reference "
            f"{policy.attr('command')} to {','.join(policy.attr('roles') or [])}"
        )
        return self._make(
            ChangeCategory.POLICY, ChangeAction.ALTER, StatementIntent.REPLACE_POLICY, policy.table, policy.name,
            reason, f"{drop}\n{policy.attr('sql')}", f"Replace policy {policy.name} on {policy.table}",
        )

    def _create_extension(self, extension: SchemaObjectDescriptor) -> Change:
        return self._make(
            ChangeCategory.EXTENSION, ChangeAction.CREATE, StatementIntent.CREATE_EXTENSION, "", extension.name,
            f"Extension {extension.name} is not installed", extension.attr("sql"),
            f"Create extension {extension.name}",
        )

    def _create_view(self, view: SchemaObjectDescriptor) -> Change:
        return self._make(
            ChangeCategory.VIEW, ChangeAction.CREATE, StatementIntent.CREATE_OR_REPLACE_VIEW, view.table, view.name,
            f"View {view.name} is missing", view.attr("sql"), f"Create or replace view {view.name}",
        )

    def _make(
        self,
        category: ChangeCategory,
        action: ChangeAction,
        intent: StatementIntent,
        table: str,
        name: str,
        reason: str,
        sql: str,
        title: str,
    ) -> Change:
        return Change(
            change_id=f"{category.value.lower()}:{intent.value}:{table}:{name}",
            category=category,
            action=action,
            intent=intent,
            object=ObjectRef(table=table, name=name),
            risk_level=self._classifier.classify(category, intent, table),
            reason=reason,
            sql_preview=sql or f"-- No SQL available for {title}",
            title=title,
        )
