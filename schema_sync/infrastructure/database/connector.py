"""PostgreSQL tenant connector."""

import logging
from typing import Dict, Any, Optional, List

import psycopg2
from psycopg2 import errorcodes
from psycopg2.extras import RealDictCursor

from schema_sync.domain.entities.schema import CatalogRows
from schema_sync.domain.entities.errors import DatabaseConnectionError, DatabaseError, ErrorKind
from schema_sync.domain.repositories.interfaces import ISchemaConnector

logger = logging.getLogger(__name__)

PGCODE_KINDS: Dict[str, ErrorKind] = {
    errorcodes.UNDEFINED_COLUMN: ErrorKind.UNDEFINED_COLUMN,
    errorcodes.UNDEFINED_TABLE: ErrorKind.UNDEFINED_TABLE,
    errorcodes.UNDEFINED_FUNCTION: ErrorKind.UNDEFINED_FUNCTION,
    errorcodes.DUPLICATE_OBJECT: ErrorKind.DUPLICATE_OBJECT,
    errorcodes.DUPLICATE_TABLE: ErrorKind.DUPLICATE_OBJECT,
    errorcodes.DUPLICATE_COLUMN: ErrorKind.DUPLICATE_OBJECT,
    errorcodes.INSUFFICIENT_PRIVILEGE: ErrorKind.INSUFFICIENT_PRIVILEGE,
    errorcodes.SYNTAX_ERROR: ErrorKind.SYNTAX_ERROR,
}

CATALOG_QUERIES: Dict[str, str] = {
    "tables": """
        SELECT c.relname AS name, c.relrowsecurity AS rls_enabled
        FROM pg_class c
        JOIN pg_namespace n ON n.oid = c.relnamespace
        WHERE n.nspname = %(schema)s AND c.relkind IN ('r', 'p')
        ORDER BY c.relname
    """,
    "columns": """
        SELECT c.relname AS table_name,
               a.attname AS name,
               pg_catalog.format_type(a.atttypid, a.atttypmod) AS type,
               NOT a.attnotnull AS nullable,
               pg_get_expr(ad.adbin, ad.adrelid) AS "default"
        FROM pg_attribute a
        JOIN pg_class c ON c.oid = a.attrelid
        JOIN pg_namespace n ON n.oid = c.relnamespace
        LEFT JOIN pg_attrdef ad ON ad.adrelid = a.attrelid AND ad.adnum = a.attnum
        WHERE n.nspname = %(schema)s AND c.relkind IN ('r', 'p')
          AND a.attnum > 0 AND NOT a.attisdropped
        ORDER BY c.relname, a.attnum
    """,
    "primary_keys": """
        SELECT c.relname AS table_name, att.attname AS column_name, ord.ordinality AS position
        FROM pg_index i
        JOIN pg_class c ON c.oid = i.indrelid
        JOIN pg_namespace n ON n.oid = c.relnamespace
        JOIN unnest(i.indkey) WITH ORDINALITY AS ord(attnum, ordinality) ON TRUE
        JOIN pg_attribute att ON att.attrelid = c.oid AND att.attnum = ord.attnum
        WHERE n.nspname = %(schema)s AND i.indisprimary
        ORDER BY c.relname, ord.ordinality
    """,
    "indexes": """
        SELECT tablename AS table_name, indexname AS name, indexdef AS definition
        FROM pg_indexes
        WHERE schemaname = %(schema)s
        ORDER BY tablename, indexname
    """,
    "constraints": """
        SELECT cls.relname AS table_name, con.conname AS name, con.contype AS type,
               pg_get_constraintdef(con.oid) AS definition
        FROM pg_constraint con
        JOIN pg_class cls ON cls.oid = con.conrelid
        JOIN pg_namespace n ON n.oid = cls.relnamespace
        WHERE n.nspname = %(schema)s
        ORDER BY cls.relname, con.conname
    """,
    "policies": """
        SELECT tablename AS table_name, policyname AS name, permissive, cmd AS command,
               roles::text[] AS roles, qual AS "using", with_check AS "check"
        FROM pg_policies
        WHERE schemaname = %(schema)s
        ORDER BY tablename, policyname
    """,
    "views": """
        SELECT c.relname AS name, pg_get_viewdef(c.oid, true) AS definition
        FROM pg_class c
        JOIN pg_namespace n ON n.oid = c.relnamespace
        WHERE n.nspname = %(schema)s AND c.relkind = 'v'
        ORDER BY c.relname
    """,
    "extensions": """
        SELECT e.extname AS name, n.nspname AS schema, e.extversion AS version
        FROM pg_extension e
        JOIN pg_namespace n ON n.oid = e.extnamespace
        ORDER BY e.extname
    """,
}


def error_kind_for(error: Exception) -> ErrorKind:
    code = getattr(error, "pgcode", None)
    if code is None:
        return ErrorKind.GENERIC
    return PGCODE_KINDS.get(code, ErrorKind.GENERIC)


class PostgresConnector(ISchemaConnector):
    """
    psycopg2 connector for one tenant database.
    Single Responsibility: database I/O; vendor codes never leave this class.
    """

    def __init__(self, connection_string: str, connect_timeout: int = 10):
        if not connection_string:
            raise DatabaseConnectionError("No connection string configured for tenant database")
        self._conn_string = connection_string
        self._connect_timeout = connect_timeout

    def _connect(self):
        try:
            return psycopg2.connect(self._conn_string, connect_timeout=self._connect_timeout)
        except psycopg2.OperationalError as e:
            # message may contain the DSN
            logger.error(f"[PostgresConnector] Connection failed (pgcode={e.pgcode})")
            raise DatabaseConnectionError("Could not connect to tenant database") from e

    def fetch_catalog(self, schema: str) -> CatalogRows:
        conn = self._connect()
        try:
            conn.set_session(isolation_level="REPEATABLE READ", readonly=True)
            sections: Dict[str, List[Dict[str, Any]]] = {}
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                for section, query in CATALOG_QUERIES.items():
                    cur.execute(query, {"schema": schema})
                    sections[section] = cur.fetchall()
            conn.rollback()
            logger.debug(f"[PostgresConnector] Catalog read for schema {schema}: "
                         f"{len(sections['tables'])} tables")
            return CatalogRows.from_rows(schema, **sections)
        except psycopg2.Error as e:
            raise DatabaseError(str(e).strip(), error_kind_for(e)) from e
        finally:
            conn.close()

    def role_exists(self, role: str) -> bool:
        row = self._fetch_one("SELECT 1 AS present FROM pg_catalog.pg_roles WHERE rolname = %s", (role,))
        return row is not None

    def schema_exists(self, schema: str) -> bool:
        row = self._fetch_one("SELECT 1 AS present FROM pg_catalog.pg_namespace WHERE nspname = %s", (schema,))
        return row is not None

    def execute(self, statement: str) -> None:
        conn = self._connect()
        try:
            with conn:
                with conn.cursor() as cur:
                    cur.execute(statement)
        except psycopg2.Error as e:
            kind = error_kind_for(e)
            logger.warning(f"[PostgresConnector] Statement failed ({kind.value}): {e.pgerror or e}")
            raise DatabaseError(str(e).strip(), kind) from e
        finally:
            conn.close()

    def run_select(self, query: str) -> Optional[Dict[str, Any]]:
        conn = self._connect()
        try:
            conn.set_session(readonly=True)
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query)
                row = cur.fetchone()
            conn.rollback()
            return dict(row) if row is not None else None
        except psycopg2.Error as e:
            raise DatabaseError(str(e).strip(), error_kind_for(e)) from e
        finally:
            conn.close()

    def _fetch_one(self, query: str, params) -> Optional[Dict[str, Any]]:
        conn = self._connect()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
            conn.rollback()
            return dict(row) if row is not None else None
        except psycopg2.Error as e:
            raise DatabaseError(str(e).strip(), error_kind_for(e)) from e
        finally:
            conn.close()
