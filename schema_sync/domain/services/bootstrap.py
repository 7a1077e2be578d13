import logging
from typing import List, Optional

from schema_sync.domain.entities.evolution import BootstrapRequired
from schema_sync.domain.repositories.interfaces import ISchemaConnector
from schema_sync.domain.services.canonical import quote_ident

logger = logging.getLogger(__name__)

BOOTSTRAP_HINT = "Run the bootstrap SQL once on the tenant database, then retry."

_BOOTSTRAP_TEMPLATE = """-- Bootstrap: prerequisites for schema drift detection and migration.
-- Safe to run multiple times.

DO $$
BEGIN
  IF NOT EXISTS (SELECT 1 FROM pg_catalog.pg_roles WHERE rolname = {role_literal}) THEN
    CREATE ROLE {role} NOLOGIN;
  END IF;
END
$$;

CREATE SCHEMA IF NOT EXISTS {schema};

GRANT USAGE ON SCHEMA {schema} TO {role};
GRANT SELECT, INSERT, UPDATE, DELETE ON ALL TABLES IN SCHEMA {schema} TO {role};
ALTER DEFAULT PRIVILEGES IN SCHEMA {schema}
  GRANT SELECT, INSERT, UPDATE, DELETE ON TABLES TO {role};
"""


def render_bootstrap_sql(required_role: str = "app_user", target_schema: str = "public") -> str:
    role_literal = "'" + required_role.replace("'", "''") + "'"
    return _BOOTSTRAP_TEMPLATE.format(
        role=quote_ident(required_role),
        role_literal=role_literal,
        schema=quote_ident(target_schema),
    )


class BootstrapDetector:
    """
    Checks that a tenant has the objects every plan depends on.
    Single Responsibility: prerequisite detection only; it never creates anything.
    """

    def __init__(self, required_role: str = "app_user", target_schema: str = "public"):
        self._role = required_role
        self._schema = target_schema

    @property
    def bootstrap_sql(self) -> str:
        return render_bootstrap_sql(self._role, self._schema)

    def missing_prerequisites(self, connector: ISchemaConnector) -> List[str]:
        missing = []
        if not connector.role_exists(self._role):
            missing.append(f"role:{self._role}")
        if not connector.schema_exists(self._schema):
            missing.append(f"schema:{self._schema}")
        return missing

    def detect(
        self, connector: ISchemaConnector, reference_version_hash: Optional[str] = None
    ) -> Optional[BootstrapRequired]:
        """Returns BootstrapRequired when prerequisites are missing, otherwise None."""
        missing = self.missing_prerequisites(connector)
        if not missing:
            return None
        logger.warning(f"[BootstrapDetector] Missing prerequisites: {', '.join(missing)}")
        return BootstrapRequired(
            bootstrap_sql=self.bootstrap_sql,
            hint=BOOTSTRAP_HINT,
            missing=tuple(missing),
            reference_version_hash=reference_version_hash,
        )
