"""
Dependency wiring for the FastAPI app.

Backends are built once by ``create_app`` and kept on ``app.state``; route
handlers receive them through the ``get_*`` dependencies below.
"""

from __future__ import annotations

import logging

from botocore.exceptions import BotoCoreError
from fastapi import Request

from saveme.config import Settings
from saveme.db import DbClient, InMemoryDbClient, SqlDbClient
from saveme.storage import (
    InMemoryStorageBackend,
    LocalStorageBackend,
    S3StorageBackend,
    StorageBackend,
)

logger = logging.getLogger(__name__)


def build_db_client(settings: Settings) -> DbClient:
    if settings.use_in_memory_backends or not settings.database_url:
        logger.warning("No DATABASE_URL configured; records are kept in memory only")
        return InMemoryDbClient()
    return SqlDbClient(settings.database_url)


def build_storage_backend(settings: Settings) -> StorageBackend:
    """
    Pick the blob backend once at startup. A configured bucket wins; if its
    client cannot be built we fall back to local disk rather than refusing to boot.
    """
    if settings.use_in_memory_backends:
        return InMemoryStorageBackend()

    if settings.s3_bucket:
        try:
            backend = S3StorageBackend(
                bucket=settings.s3_bucket,
                region=settings.s3_region or "",
                endpoint=settings.s3_endpoint or "",
                access_key_id=settings.aws_access_key_id or "",
                secret_access_key=settings.aws_secret_access_key or "",
                public_base_url=settings.s3_public_base_url,
                key_prefix=settings.s3_key_prefix,
            )
            logger.info("Using S3 storage bucket %s", settings.s3_bucket)
            return backend
        except (BotoCoreError, ValueError) as exc:
            logger.error("S3 storage unavailable (%s); falling back to local uploads", exc)

    local = LocalStorageBackend(settings.uploads_dir)
    local.prepare()
    logger.info("Using local storage at %s", local.root)
    return local


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db_client(request: Request) -> DbClient:
    return request.app.state.db


def get_storage_backend(request: Request) -> StorageBackend:
    return request.app.state.storage
