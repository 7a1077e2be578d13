"""FastAPI application."""

import logging
import os
from typing import Optional, List, Dict, Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from schema_sync.application.dtos.plan_dto import history_to_dict
from schema_sync.domain.entities.evolution import BootstrapRequired, ConfirmationRequired
from schema_sync.domain.entities.errors import (
    DatabaseConnectionError, DatabaseError, ParseError, PlanNotFoundError, SchemaSyncError, UnknownTenantError
)
from schema_sync.infrastructure.di_container import DIContainer

logger = logging.getLogger(__name__)


class PreflightInput(BaseModel):
    """Input model for preflight; no queries means the plan's own."""
    plan_id: str
    queries: List[str] = Field(default_factory=list)


class ApplySafeInput(BaseModel):
    plan_id: str


class ApplyDestructiveInput(BaseModel):
    """Input model for destructive apply."""
    plan_id: str
    confirmation_phrase: str = ""
    allow_destructive: bool = True


def _http_error(error: Exception) -> HTTPException:
    if isinstance(error, (PlanNotFoundError, UnknownTenantError)):
        status = 404
    elif isinstance(error, ValueError):
        status = 400
    elif isinstance(error, ParseError):
        status = 422
    elif isinstance(error, (DatabaseConnectionError, DatabaseError)):
        status = 502
    else:
        status = 500
    code = getattr(error, "code", "bad_request" if status == 400 else "internal_error")
    message = getattr(error, "message", str(error))
    if status >= 500:
        logger.error(f"[API] {code}: {message}")
    return HTTPException(status_code=status, detail={"message": code, "detail": message})


def create_app(container: Optional[DIContainer] = None) -> FastAPI:
    """Create and configure FastAPI application."""

    logging.basicConfig(level=os.getenv("LOG_LEVEL", "WARNING").upper())
    container = container or DIContainer()

    app = FastAPI(
        title="Schema Sync",
        description="Schema drift detection and controlled migration for tenant databases",
        version="1.0.0"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def orchestrator():
        return container.get_orchestrator()

    @app.get("/")
    def root():
        """Root endpoint."""
        return {
            "name": "Schema Sync",
            "version": "1.0.0",
            "endpoints": {
                "plan": "/api/v1/tenants/{tenant_id}/schema/plan",
                "preflight": "/api/v1/tenants/{tenant_id}/schema/preflight",
                "apply_safe": "/api/v1/tenants/{tenant_id}/schema/apply-safe",
                "apply_destructive": "/api/v1/tenants/{tenant_id}/schema/apply-destructive",
                "history": "/api/v1/tenants/{tenant_id}/schema/history",
            }
        }

    @app.post("/api/v1/tenants/{tenant_id}/schema/plan")
    def create_plan(tenant_id: str):
        try:
            outcome = orchestrator().create_plan(tenant_id)
        except (SchemaSyncError, ValueError) as e:
            raise _http_error(e)
        if isinstance(outcome, BootstrapRequired):
            return JSONResponse(status_code=424, content=outcome.to_dict())
        return outcome.to_dict()

    @app.post("/api/v1/tenants/{tenant_id}/schema/preflight")
    def run_preflight(tenant_id: str, input_data: PreflightInput):
        try:
            response = orchestrator().run_preflight(tenant_id, input_data.plan_id, input_data.queries)
        except (SchemaSyncError, ValueError) as e:
            raise _http_error(e)
        return response.to_dict()

    @app.post("/api/v1/tenants/{tenant_id}/schema/apply-safe")
    def apply_safe(tenant_id: str, input_data: ApplySafeInput):
        try:
            response = orchestrator().apply_safe(tenant_id, input_data.plan_id)
        except (SchemaSyncError, ValueError) as e:
            raise _http_error(e)
        return response.to_dict()

    @app.post("/api/v1/tenants/{tenant_id}/schema/apply-destructive")
    def apply_destructive(tenant_id: str, input_data: ApplyDestructiveInput):
        try:
            outcome = orchestrator().apply_destructive(
                tenant_id, input_data.plan_id, input_data.confirmation_phrase, input_data.allow_destructive
            )
        except (SchemaSyncError, ValueError) as e:
            raise _http_error(e)
        if isinstance(outcome, ConfirmationRequired):
            return JSONResponse(status_code=400, content=outcome.to_dict())
        return outcome.to_dict()

    @app.get("/api/v1/tenants/{tenant_id}/schema/history")
    def fetch_history(tenant_id: str, limit: int = 25) -> Dict[str, Any]:
        try:
            records = orchestrator().fetch_history(tenant_id, limit)
        except (SchemaSyncError, ValueError) as e:
            raise _http_error(e)
        return {"tenant_id": tenant_id, "history": history_to_dict(records)}

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app
