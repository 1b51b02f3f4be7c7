import logging

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core import errors
from .core.config import Settings, get_settings
from .core.logging import init_logging, request_context_middleware
from .db.factory import make_repository
from .routers import cash_boxes, concepts, cost_centers, documents, expenses, funds, health


def create_app(settings_override: Settings | None = None) -> FastAPI:
    """Application factory.

    settings_override: pass an already constructed Settings instance for tests
    to isolate environment (e.g., temp DB or memory backend). Falls back to
    cached get_settings().
    """
    settings = settings_override or get_settings()
    if settings_override is not None:
        settings.init_post_load()
    init_logging(debug=settings.debug)

    # Schema creation is idempotent; a fresh test DB gets its tables here.
    try:
        repository = make_repository(settings)
    except Exception:
        logging.getLogger("treasury").exception("failed to initialise persistence on startup")
        raise

    app = FastAPI(title=settings.app_name, debug=settings.debug, version=settings.version)
    app.state.settings = settings
    app.state.repository = repository

    # Middleware (request id / structured logging)
    app.middleware("http")(request_context_middleware)

    # Error handlers
    app.add_exception_handler(errors.TreasuryError, errors.treasury_error_handler)
    app.add_exception_handler(StarletteHTTPException, errors.http_error_handler)
    app.add_exception_handler(RequestValidationError, errors.validation_error_handler)
    app.add_exception_handler(Exception, errors.server_error_handler)

    # Routers
    app.include_router(health.router)
    app.include_router(concepts.router)
    app.include_router(cost_centers.router)
    app.include_router(expenses.router)
    app.include_router(funds.router)
    app.include_router(cash_boxes.router)
    app.include_router(documents.router)

    @app.get("/")
    async def root():
        return {"message": settings.app_name, "version": settings.version}

    return app


app = create_app()
