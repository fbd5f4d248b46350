"""
FinSync API: main entry point.

DESIGN DECISION: Routes are thin. Every rule lives in the components they
call; the API only parses requests and maps errors to status codes:

- ValidationError  -> 400
- NotFoundError    -> 404
- ProviderError    -> 502
- PersistenceError -> 500

Successful responses carry `"success": true`; errors carry `"error"`.

Run with: uvicorn finsync.api.app:create_api --factory
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from finsync import __version__
from finsync.api.middleware import RequestLoggingMiddleware
from finsync.api.routes import accounts, companies, dashboard, debts, sync, transactions
from finsync.errors import (
    FinSyncError,
    NotFoundError,
    PersistenceError,
    ProviderError,
    ValidationError,
)
from finsync.orchestrator import AppComponents, create_app_components

logger = structlog.get_logger()

ERROR_STATUS = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (ProviderError, 502),
    (PersistenceError, 500),
]


def _status_for(exc: FinSyncError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 500


async def finsync_error_handler(request: Request, exc: FinSyncError) -> JSONResponse:
    status = _status_for(exc)
    log = logger.error if status >= 500 else logger.warning
    log(
        "request_failed",
        method=request.method,
        path=request.url.path,
        status=status,
        error_type=type(exc).__name__,
        error=str(exc),
    )
    return JSONResponse(status_code=status, content={"error": str(exc)})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": details},
    )


def create_api(components: Optional[AppComponents] = None) -> FastAPI:
    """
    Build the FastAPI app around a set of components.

    Args:
        components: Wired application components; built from settings when None
    """
    components = components or create_app_components()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("api_starting", providers=[p.value for p in components.registry.providers])
        yield
        logger.info("api_stopping")
        await components.registry.aclose()

    app = FastAPI(
        title="FinSync API",
        description="Multi-source financial sync, allocation and debt tracking",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.components = components

    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(FinSyncError, finsync_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    @app.get("/health", tags=["system"])
    async def health_check():
        """Liveness check."""
        return {
            "status": "healthy",
            "version": __version__,
            "providers": [p.value for p in components.registry.providers],
        }

    app.include_router(sync.router, prefix="/api", tags=["sync"])
    app.include_router(transactions.router, prefix="/api/transactions", tags=["transactions"])
    app.include_router(dashboard.router, prefix="/api/dashboard", tags=["dashboard"])
    app.include_router(companies.router, prefix="/api/companies", tags=["companies"])
    app.include_router(debts.router, prefix="/api/debts", tags=["debts"])
    app.include_router(accounts.router, prefix="/api", tags=["accounts"])

    return app
