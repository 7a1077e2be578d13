"""SQL statement gates used by the executors and the preflight runner."""

import re
import logging
from typing import List

import sqlparse

from schema_sync.domain.entities.errors import (
    DestructiveKeywordDetected, StatementNotAllowed, QueryNotAllowed
)
from schema_sync.domain.services.canonical import IDENT_PATTERN, QUALIFIED_PATTERN, split_top_level

logger = logging.getLogger(__name__)

_FLAGS = re.IGNORECASE | re.DOTALL

DESTRUCTIVE_PATTERNS = (
    re.compile(r"\bDROP\b", _FLAGS),
    re.compile(r"\bRENAME\b", _FLAGS),
    re.compile(r"\bALTER\s+(?:COLUMN\s+)?\S+\s+(?:SET\s+DATA\s+)?TYPE\b", _FLAGS),
)

SAFE_STATEMENT_PATTERNS = (
    re.compile(rf"^CREATE\s+TABLE\s+IF\s+NOT\s+EXISTS\s+{QUALIFIED_PATTERN}\s*\(", _FLAGS),
    re.compile(rf"^ALTER\s+TABLE\s+{QUALIFIED_PATTERN}\s+ADD\s+COLUMN\s+IF\s+NOT\s+EXISTS\s+", _FLAGS),
    re.compile(rf"^CREATE\s+(?:UNIQUE\s+)?INDEX\s+IF\s+NOT\s+EXISTS\s+{IDENT_PATTERN}\s+ON\s+", _FLAGS),
    re.compile(rf"^ALTER\s+TABLE\s+{QUALIFIED_PATTERN}\s+ENABLE\s+ROW\s+LEVEL\s+SECURITY\s*;?$", _FLAGS),
    re.compile(rf"^CREATE\s+POLICY\s+{IDENT_PATTERN}\s+ON\s+", _FLAGS),
    re.compile(rf"^ALTER\s+TABLE\s+{QUALIFIED_PATTERN}\s+ADD\s+CONSTRAINT\s+{IDENT_PATTERN}\s+", _FLAGS),
    re.compile(rf"^CREATE\s+EXTENSION\s+IF\s+NOT\s+EXISTS\s+{IDENT_PATTERN}", _FLAGS),
    re.compile(rf"^CREATE\s+OR\s+REPLACE\s+VIEW\s+{QUALIFIED_PATTERN}", _FLAGS),
)

_ALTER_TABLE_RE = re.compile(rf"^ALTER\s+TABLE\s+{QUALIFIED_PATTERN}\s+(?P<actions>.+?)\s*;?$", _FLAGS)
_SELECT_RE = re.compile(r"^\s*SELECT\b", re.IGNORECASE)


def split_statements(sql: str) -> List[str]:
    """Split a SQL bundle into executable statements, dropping comment-only fragments."""
    statements = []
    for raw in sqlparse.split(sql or ""):
        if sqlparse.format(raw, strip_comments=True).strip().rstrip(";").strip():
            statements.append(raw.strip())
    return statements


class StatementValidator:
    """
    Validates statements before execution.
    Single Responsibility: SQL gatekeeping, no execution.
    """

    def check_denylist(self, statement: str) -> None:
        for pattern in DESTRUCTIVE_PATTERNS:
            if pattern.search(statement or ""):
                logger.warning(f"[StatementValidator] Destructive keyword matched {pattern.pattern!r}")
                raise DestructiveKeywordDetected(
                    f"Statement matches destructive pattern {pattern.pattern!r}", statement
                )

    def check_allowlist(self, statement: str) -> None:
        text = (statement or "").strip()
        if len(split_statements(text)) != 1:
            raise StatementNotAllowed("Safe statements must be a single SQL statement", statement)
        if not any(p.match(text) for p in SAFE_STATEMENT_PATTERNS):
            raise StatementNotAllowed("Statement does not match any safe statement form", statement)
        alter = _ALTER_TABLE_RE.match(text)
        if alter and len(split_top_level(alter.group("actions"))) != 1:
            raise StatementNotAllowed("ALTER TABLE must carry exactly one action", statement)

    def validate_safe(self, statement: str) -> None:
        """Denylist first, then allow-list."""
        self.check_denylist(statement)
        self.check_allowlist(statement)

    def validate_preflight(self, query: str) -> None:
        if not isinstance(query, str) or not query.strip():
            raise QueryNotAllowed("Preflight query is empty", query if isinstance(query, str) else None)
        if ";" in query:
            raise QueryNotAllowed("Preflight query must not contain ';'", query)
        if not _SELECT_RE.match(query):
            raise QueryNotAllowed("Preflight query must start with SELECT", query)
