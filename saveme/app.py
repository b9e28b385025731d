"""
FastAPI application entry point for the vault backend.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from saveme.config import DEFAULT_JWT_SECRET, Settings, get_settings
from saveme.dependencies import build_db_client, build_storage_backend
from saveme.errors import VaultError
from saveme.routes import router
from saveme.storage import AVATARS, LOCAL_URL_PREFIX, LocalStorageBackend

logger = logging.getLogger(__name__)


async def _vault_error_handler(request: Request, exc: VaultError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        location = [str(part) for part in errors[0].get("loc", ()) if part != "body"]
        field = ".".join(location)
        message = f"{field}: {errors[0].get('msg')}" if field else errors[0].get("msg", message)
    return JSONResponse(status_code=400, content={"detail": message})


async def _unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)
    if settings.jwt_secret == DEFAULT_JWT_SECRET:
        logger.warning("Using the default JWT secret; set JWT_SECRET in the environment")

    app = FastAPI(title="SaveMe Vault API", version="0.1.0")
    app.state.settings = settings
    app.state.db = build_db_client(settings)
    app.state.storage = build_storage_backend(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        response = await call_next(request)
        logger.info(
            "%s %s -> %d (auth header: %s)",
            request.method,
            request.url.path,
            response.status_code,
            "yes" if "authorization" in request.headers else "no",
        )
        return response

    app.add_exception_handler(VaultError, _vault_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unexpected_error_handler)

    app.include_router(router, prefix=settings.api_prefix)

    storage = app.state.storage
    if isinstance(storage, LocalStorageBackend):
        # Avatars are public; documents only leave through the download route.
        app.mount(
            f"{LOCAL_URL_PREFIX}/{AVATARS}",
            StaticFiles(directory=storage.namespace_dir(AVATARS)),
            name="avatars",
        )
    return app
