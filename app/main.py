import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

# .env must be loaded before Settings is first built
load_dotenv()

from .container import Container, build_container
from .core.config import Settings, get_settings
from .database import create_db_and_tables
from .exceptions import StorageDegraded, StoreError, http_exception_handler, validation_exception_handler
from .middleware import ErrorHandlingMiddleware, RequestContextMiddleware, SecurityMiddleware
from .routers import admin_router, auth_router, vendor_router
from .utils import utcnow

logger = logging.getLogger(__name__)


def _startup(app: FastAPI, container: Container) -> None:
    """Create tables and drop expired rows; failures degrade /health instead of aborting boot."""
    try:
        create_db_and_tables(container.engine)
    except Exception as e:
        app.state.startup_error = str(e)
        logger.exception("Could not prepare the database")
        return
    logger.info("Database tables ready")
    try:
        container.prune_expired()
    except (StoreError, StorageDegraded) as e:
        logger.warning(f"Startup housekeeping skipped: {e}")


def _install_middleware(app: FastAPI, settings: Settings) -> None:
    # Last added runs first: CORS, security headers, request context, error handling
    app.add_middleware(ErrorHandlingMiddleware, debug=settings.DEBUG)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(SecurityMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=settings.allowed_methods_list,
        allow_headers=settings.allowed_headers_list,
    )


def create_app(settings: Optional[Settings] = None, container: Optional[Container] = None) -> FastAPI:
    """Build the application around an explicitly constructed container.

    The container (engine, identity provider, stores, email client) lives
    exactly as long as the app: tables are created at startup and the engine
    is disposed at shutdown.
    """
    settings = settings or get_settings()
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, logging.INFO), format=settings.LOG_FORMAT)
    container = container or build_container(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} starting ({settings.ENV})")
        _startup(app, container)
        yield
        logger.info(f"{settings.APP_NAME} stopping")
        container.close()

    docs = settings.DOCS_ENABLED
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
        docs_url="/docs" if docs else None,
        redoc_url="/redoc" if docs else None,
        openapi_url="/openapi.json" if docs else None,
    )
    app.state.container = container
    app.state.startup_error = None

    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    _install_middleware(app, settings)

    for module in (auth_router, admin_router, vendor_router):
        app.include_router(module.router)

    @app.get("/health", tags=["Health"])
    def health():
        healthy = app.state.startup_error is None
        return {
            "status": "healthy" if healthy else "degraded",
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "rate_limit_backend": settings.RATE_LIMIT_BACKEND,
            "timestamp": utcnow().isoformat(),
        }

    return app


app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run("app.main:app", host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
