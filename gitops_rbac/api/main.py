"""
GITOPS RBAC API - Main Application Entry Point

FastAPI surface over the access-control core.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from gitops_rbac.config import Settings, configure_logging, get_settings
from gitops_rbac.core.access_core import AccessCore
from gitops_rbac.core.exceptions import AuditPersistenceError, ConfigurationError


def create_app(
    core: Optional[AccessCore] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)
    core = core or AccessCore.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await core.start()
        yield
        await core.stop()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="GitOps RBAC - policy decisions and audit trail",
        docs_url="/api/docs" if settings.DEBUG else None,
        redoc_url="/api/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )
    app.state.core = core

    @app.exception_handler(AuditPersistenceError)
    async def audit_failure_handler(request: Request, exc: AuditPersistenceError):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Audit trail unavailable; request refused"},
        )

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": exc.message},
        )

    from gitops_rbac.api.routes import router

    app.include_router(router, prefix="/api/v1", tags=["Access Control"])

    @app.get("/api/health", tags=["Health"])
    async def health_check():
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "service": settings.APP_NAME,
            "policy_generation": core.store.generation_number,
            "audit_head": core.audit_logger.last_sequence,
        }

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        create_app(settings=settings),
        host=settings.HOST,
        port=settings.PORT,
    )
