"""Exception hierarchy for the schema sync engine."""

from typing import Optional
from enum import Enum


class ErrorKind(Enum):
    """Machine-readable database error kinds reported by connectors."""
    UNDEFINED_COLUMN = "undefined_column"
    UNDEFINED_TABLE = "undefined_table"
    UNDEFINED_FUNCTION = "undefined_function"
    DUPLICATE_OBJECT = "duplicate_object"
    INSUFFICIENT_PRIVILEGE = "insufficient_privilege"
    SYNTAX_ERROR = "syntax_error"
    CONNECTION = "connection"
    GENERIC = "generic"

    @property
    def is_schema_mismatch(self) -> bool:
        return self in (
            ErrorKind.UNDEFINED_COLUMN,
            ErrorKind.UNDEFINED_TABLE,
            ErrorKind.UNDEFINED_FUNCTION,
        )


class SchemaSyncError(Exception):
    """Base class; ``code`` is the stable identifier surfaced to callers."""
    code = "schema_sync_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class ParseError(SchemaSyncError):
    """The reference schema text cannot be decomposed into recognizable units."""
    code = "invalid_ssot_text"


class DatabaseConnectionError(SchemaSyncError, ConnectionError):
    """Invalid database handle or failed connection."""
    code = "connection_failed"


class DatabaseError(SchemaSyncError):
    """A statement failed at the database; ``kind`` tells callers what class of failure."""
    code = "database_error"

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.GENERIC):
        super().__init__(message)
        self.kind = kind


class StatementValidationError(SchemaSyncError):
    """A statement failed executor validation before anything ran."""
    code = "statement_validation_failed"

    def __init__(self, message: str, statement: Optional[str] = None):
        super().__init__(message)
        self.statement = statement


class StatementNotAllowed(StatementValidationError):
    code = "statement_not_allowed_in_safe_mode"


class DestructiveKeywordDetected(StatementValidationError):
    code = "statement_contains_destructive_keywords"


class QueryNotAllowed(StatementValidationError):
    code = "query_not_allowed"


class PlanStale(SchemaSyncError):
    """The stored plan was built against a different reference version."""
    code = "plan_stale"


class PlanNotFoundError(SchemaSyncError, KeyError):
    code = "plan_not_found"

    def __str__(self):
        return self.message


class UnknownTenantError(SchemaSyncError, KeyError):
    code = "unknown_tenant"

    def __str__(self):
        return self.message
