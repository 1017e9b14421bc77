"""Main application entrypoint for PebbleDrive."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pebbledrive.api import routes_config, routes_health, routes_upload
from pebbledrive.core.config import settings
from pebbledrive.core.logging import setup_logging
from pebbledrive.core.middleware import HTTPErrorLoggingMiddleware
from pebbledrive.storage.factory import get_file_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the metadata schema on every cold start (idempotent)."""
    get_file_store().ensure_schema()
    logger.info(
        f"{settings.SERVICE_NAME} started: storage={settings.STORAGE_BACKEND}, "
        f"sessions={settings.SESSION_BACKEND}"
    )
    yield


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed requests as 400 with the field errors."""
    return JSONResponse(
        status_code=400,
        content={
            "detail": {
                "code": "invalid_request",
                "message": "Missing or invalid request fields",
                "errors": jsonable_encoder(exc.errors()),
            }
        },
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    # Initialize logging first
    setup_logging()

    app = FastAPI(
        title=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(HTTPErrorLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    app.include_router(routes_health.router, tags=["health"])
    app.include_router(routes_config.router)
    app.include_router(routes_upload.router)

    return app


# Export app instance for ASGI servers
app = create_app()
