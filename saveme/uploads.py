"""
Upload pipeline for documents and avatars.

An upload is staged into a spooled temporary file first; size and type limits
are enforced while staging, so nothing reaches the storage backend unless the
whole payload is acceptable. Metadata is written only after the blob write
completes.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from typing import BinaryIO, Optional

from saveme.config import Settings
from saveme.db import DbClient, DocumentRecord, UserRecord, new_id
from saveme.errors import NotFoundError, ValidationError
from saveme.storage import AVATARS, DOCUMENTS, StorageBackend, generate_blob_name

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
SPOOL_MAX_SIZE = 1024 * 1024

IMAGE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp"})
IMAGE_CONTENT_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})


@dataclass(frozen=True)
class UploadPolicy:
    namespace: str
    max_bytes: int
    allowed_extensions: Optional[frozenset] = None
    allowed_content_types: Optional[frozenset] = None
    missing_message: str = "No file uploaded. Please select a file."
    type_message: str = "Invalid file type."

    def size_message(self) -> str:
        mb = 1024 * 1024
        if self.max_bytes >= mb and self.max_bytes % mb == 0:
            limit = f"{self.max_bytes // mb}MB"
        else:
            limit = f"{self.max_bytes} bytes"
        return f"File size too large. Maximum size is {limit}"


def document_policy(settings: Settings) -> UploadPolicy:
    return UploadPolicy(namespace=DOCUMENTS, max_bytes=settings.max_document_bytes)


def avatar_policy(settings: Settings) -> UploadPolicy:
    return UploadPolicy(
        namespace=AVATARS,
        max_bytes=settings.max_avatar_bytes,
        allowed_extensions=IMAGE_EXTENSIONS,
        allowed_content_types=IMAGE_CONTENT_TYPES,
        missing_message="No file uploaded. Please select an image file.",
        type_message="Invalid file type. Only images are allowed.",
    )


@dataclass
class StagedUpload:
    original_name: str
    content_type: Optional[str]
    size_bytes: int
    buffer: BinaryIO

    def close(self) -> None:
        self.buffer.close()


def _check_type(filename: str, content_type: Optional[str], policy: UploadPolicy) -> None:
    if policy.allowed_extensions is not None:
        extension = os.path.splitext(filename)[1].lower()
        if extension not in policy.allowed_extensions:
            raise ValidationError(policy.type_message)
    if policy.allowed_content_types is not None:
        declared = (content_type or "").split(";")[0].strip().lower()
        if declared not in policy.allowed_content_types:
            raise ValidationError(policy.type_message)


def stage_upload(
    filename: Optional[str],
    content_type: Optional[str],
    stream: Optional[BinaryIO],
    policy: UploadPolicy,
) -> StagedUpload:
    """Validate an incoming file and copy it into a temporary buffer."""
    if stream is None or not filename:
        raise ValidationError(policy.missing_message)
    _check_type(filename, content_type, policy)

    buffer = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE)
    size = 0
    try:
        while True:
            chunk = stream.read(CHUNK_SIZE)
            if not chunk:
                break
            size += len(chunk)
            if size > policy.max_bytes:
                raise ValidationError(policy.size_message())
            buffer.write(chunk)
    except BaseException:
        buffer.close()
        raise
    buffer.seek(0)
    return StagedUpload(
        original_name=filename,
        content_type=content_type,
        size_bytes=size,
        buffer=buffer,
    )


def _store_staged(
    storage: StorageBackend,
    staged: StagedUpload,
    policy: UploadPolicy,
    prefix: Optional[str] = None,
) -> tuple[str, str]:
    stored_name = generate_blob_name(staged.original_name, prefix=prefix)
    try:
        locator = storage.store(
            staged.buffer, policy.namespace, stored_name, staged.content_type
        )
    finally:
        staged.close()
    return stored_name, locator


def store_document(
    db: DbClient,
    storage: StorageBackend,
    owner_id: str,
    filename: Optional[str],
    content_type: Optional[str],
    stream: Optional[BinaryIO],
    policy: UploadPolicy,
) -> DocumentRecord:
    staged = stage_upload(filename, content_type, stream, policy)
    stored_name, locator = _store_staged(storage, staged, policy)

    record = DocumentRecord(
        id=new_id(),
        owner_id=owner_id,
        stored_name=stored_name,
        original_name=staged.original_name,
        locator=locator,
        content_type=staged.content_type,
        size_bytes=staged.size_bytes,
    )
    try:
        return db.documents.insert(record)
    except Exception:
        logger.error("Saving document metadata failed; blob %s is orphaned", locator)
        raise


def discard_blob(storage: StorageBackend, locator: Optional[str]) -> None:
    """Best-effort removal of a blob nobody references any more."""
    if not locator:
        return
    outcome = storage.delete(locator)
    if not outcome.deleted:
        logger.info("Previous blob %s not removed: %s", locator, outcome.reason)


def _owner(db: DbClient, owner_id: str) -> UserRecord:
    user = db.get_user(owner_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def replace_avatar(
    db: DbClient,
    storage: StorageBackend,
    owner_id: str,
    filename: Optional[str],
    content_type: Optional[str],
    stream: Optional[BinaryIO],
    policy: UploadPolicy,
) -> tuple[UserRecord, Optional[str]]:
    """
    Store a new avatar and point the user at it. Returns the updated user and
    the previous locator, which the caller discards once the response is out.
    """
    user = _owner(db, owner_id)
    staged = stage_upload(filename, content_type, stream, policy)
    _, locator = _store_staged(storage, staged, policy, prefix=owner_id)

    try:
        updated = db.update_user(owner_id, {"avatar": locator})
    except Exception:
        logger.error("Saving avatar locator failed; blob %s is orphaned", locator)
        raise
    if updated is None:
        raise NotFoundError("User not found")
    return updated, user.avatar


def remove_avatar(db: DbClient, storage: StorageBackend, owner_id: str) -> None:
    user = _owner(db, owner_id)
    if not user.avatar:
        return
    db.update_user(owner_id, {"avatar": None})
    discard_blob(storage, user.avatar)
