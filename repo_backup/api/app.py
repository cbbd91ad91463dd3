"""FastAPI application for repo-backup."""

import logging
import sys
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from repo_backup import BackupConfig, BackupEngine
from repo_backup._utils import logger
from repo_backup.exceptions import PayloadTooLargeError, ValidationError

from .config import Settings, settings as default_settings
from .exceptions import error_response, register_exception_handlers
from .routers import backup, clone, files, health

# Room for multipart framing and JSON syntax around the counted content;
# the engine enforces the exact limit on the content itself
REQUEST_OVERHEAD = 64 * 1024


def configure_logging(settings: Settings) -> None:
    """Attach an app-managed stdout handler to the package logger.

    Independent of uvicorn's logging config unless DISABLE_APP_LOGGING is set.
    """
    level = logging.DEBUG if settings.debug else logging.INFO
    logger.setLevel(level)
    logger.handlers.clear()

    if settings.disable_app_logging:
        logger.propagate = True
        return

    logger.propagate = False
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    formatter = logging.Formatter(
        '%(asctime)s - [%(name)s] - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%dT%H:%M:%SZ' if settings.utc_logging else '%Y-%m-%d %H:%M:%S'
    )
    if settings.utc_logging:
        formatter.converter = time.gmtime
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build this worker's engine; each worker gets its own admission gate."""
    if getattr(app.state, "engine", None) is None:
        config = app.state.backup_config or BackupConfig.from_env()
        app.state.engine = BackupEngine(config)
        logger.info(
            f"Backup engine ready [base:{config.github_source}, "
            f"max_connections:{config.max_connections}]"
        )
    yield
    logger.info("Shutting down backup engine...")


def create_app(config: Optional[BackupConfig] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure FastAPI application."""
    settings = settings or default_settings
    configure_logging(settings)

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
    )
    app.state.backup_config = config
    app.state.engine = BackupEngine(config) if config is not None else None

    # Add CORS middleware
    if settings.websites:
        app.add_middleware(
            CORSMiddleware,
            allow_origin_regex=settings.cors_origin_regex,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def log_connection(request: Request, call_next):
        """Log each connection and reject bodies declared far over the limit."""
        client = request.client.host if request.client else "unknown"
        logger.info(f"Connection received from client-IP: {client} [{request.method} {request.url.path}]")

        engine = getattr(request.app.state, "engine", None)
        declared = request.headers.get("content-length")
        if engine is not None and declared is not None:
            try:
                size = int(declared)
            except ValueError:
                return error_response(ValidationError("Invalid Content-Length header", stage="received"))
            limit = engine.config.max_payload_size + REQUEST_OVERHEAD
            if size > limit:
                return error_response(PayloadTooLargeError(size, limit, stage="received"))
        return await call_next(request)

    register_exception_handlers(app)

    app.include_router(files.router)
    app.include_router(backup.router)
    app.include_router(clone.router)
    app.include_router(health.router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": settings.api_title,
            "version": settings.api_version,
        }

    return app


# Create default app instance
app = create_app()
