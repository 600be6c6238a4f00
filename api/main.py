"""
Product Authority API
=====================
HTTP API for supplier catalog ingestion, the match review queue and
product merges.

This API provides:
- Health check
- Catalog imports (JSON rows, CSV upload) and import history
- Triage queue with confirm / reassign / create-and-link / ignore
- Product search and merge

Callers are pre-authorized upstream; mutating endpoints take the audit
actor from the X-Actor-Id header.

Usage:
    uvicorn api.main:app --host 0.0.0.0 --port 8000 --reload

Or via the entrypoint script:
    python scripts/run_api.py
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from api import __version__
from api.routers import health_router, imports_router, products_router, triage_router
from authority.errors import (
    AuthorityError,
    MergeFailedError,
    MergePreconditionError,
    NotFoundError,
    PersistenceConflictError,
    RowValidationError,
)
from authority.logging_config import setup_logging
from authority.services import Services, build_services
from authority.settings import load_config

logger = logging.getLogger(__name__)


def _error(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "detail": detail,
            "status_code": status_code
        }
    )


def _register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error(404, "Not found", exc.message)

    @app.exception_handler(PersistenceConflictError)
    async def conflict_handler(request: Request, exc: PersistenceConflictError):
        return _error(409, "Conflict", exc.message)

    @app.exception_handler(MergePreconditionError)
    async def merge_precondition_handler(request: Request, exc: MergePreconditionError):
        return _error(422, "Merge precondition failed", exc.message)

    @app.exception_handler(RowValidationError)
    async def validation_handler(request: Request, exc: RowValidationError):
        return _error(422, "Validation failed", exc.message)

    @app.exception_handler(ValidationError)
    async def schema_validation_handler(request: Request, exc: ValidationError):
        return _error(422, "Validation failed", str(exc))

    @app.exception_handler(MergeFailedError)
    async def merge_failed_handler(request: Request, exc: MergeFailedError):
        logger.error(f"Merge failed: {exc.message}")
        return _error(500, "Merge failed", exc.message)

    @app.exception_handler(AuthorityError)
    async def authority_error_handler(request: Request, exc: AuthorityError):
        logger.error(f"Unhandled authority error: {exc.message}", exc_info=True)
        return _error(500, "Internal server error", exc.message)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return _error(500, "Internal server error", str(exc))


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        services: Pre-built Services (tests); when None they are built at
            startup from config and AUTHORITY_BACKEND, and closed at shutdown

    Returns:
        FastAPI app
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Lifespan context manager for startup/shutdown events.
        """
        owns_services = app.state.services is None
        if owns_services:
            setup_logging()
            app.state.services = build_services(load_config())
        logger.info("Product Authority API starting up...")
        yield
        logger.info("Product Authority API shutting down...")
        if owns_services:
            app.state.services.close()
            app.state.services = None

    app = FastAPI(
        title="Product Authority API",
        description="""
## Product identity resolution & supplier catalog ingestion

- **Imports**: supplier catalog rows (JSON or CSV) matched to canonical products
- **Triage**: review queue for low-confidence and unmatched supplier items
- **Products**: search and transactional merge of duplicate products
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.services = services

    # Add CORS middleware (configure origins for production)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    _register_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(imports_router)
    app.include_router(triage_router)
    app.include_router(products_router)

    @app.get("/", tags=["Root"])
    def root():
        """
        API root - returns welcome message and links.
        """
        return {
            "message": "Welcome to the Product Authority API",
            "version": __version__,
            "docs": "/docs",
            "redoc": "/redoc",
            "endpoints": {
                "health": "/api/v1/health",
                "import_rows": "/api/v1/imports/{supplier_id}/rows",
                "import_csv": "/api/v1/imports/{supplier_id}/csv",
                "import_runs": "/api/v1/imports/runs",
                "triage": "/api/v1/triage",
                "triage_stats": "/api/v1/triage/stats",
                "product_search": "/api/v1/products/search",
                "product_merge": "/api/v1/products/merge"
            }
        }

    return app


app = create_app()
