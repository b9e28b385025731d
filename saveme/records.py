"""
Owner-scoped operations on password entries and documents.

Routes call these functions with the authenticated owner id; validation
happens here, before anything reaches the database.
"""

from __future__ import annotations

import logging
from typing import Optional

from saveme.db import DbClient, DocumentRecord, PasswordEntry, new_id
from saveme.errors import NotFoundError, StorageInconsistencyError, ValidationError
from saveme.storage import RetrievalTarget, StorageBackend

logger = logging.getLogger(__name__)

CATEGORIES = ("social", "email", "banking", "shopping", "work", "other")
DEFAULT_CATEGORY = "other"

REQUIRED_PASSWORD_FIELDS = {"title": "Title is required", "secret": "Password is required"}
OPTIONAL_PASSWORD_FIELDS = ("username", "website", "notes")


def normalize_category(value: Optional[str]) -> str:
    category = (value or "").strip().lower()
    return category if category in CATEGORIES else DEFAULT_CATEGORY


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _required(fields: dict, name: str) -> str:
    value = fields.get(name)
    # Secrets are opaque: only titles get trimmed.
    if name == "title" and value is not None:
        value = value.strip()
    if not value:
        raise ValidationError(REQUIRED_PASSWORD_FIELDS[name])
    return value


# Password entries


def list_password_entries(db: DbClient, owner_id: str) -> list[PasswordEntry]:
    return db.passwords.list(owner_id)


def get_password_entry(db: DbClient, entry_id: str, owner_id: str) -> PasswordEntry:
    entry = db.passwords.get(entry_id, owner_id)
    if entry is None:
        raise NotFoundError("Password not found")
    return entry


def create_password_entry(db: DbClient, owner_id: str, fields: dict) -> PasswordEntry:
    entry = PasswordEntry(
        id=new_id(),
        owner_id=owner_id,
        title=_required(fields, "title"),
        secret=_required(fields, "secret"),
        username=_clean(fields.get("username")),
        website=_clean(fields.get("website")),
        category=normalize_category(fields.get("category")),
        notes=_clean(fields.get("notes")),
    )
    return db.passwords.insert(entry)


def update_password_entry(
    db: DbClient, entry_id: str, owner_id: str, fields: dict
) -> PasswordEntry:
    """
    Apply the supplied fields to an owned entry. Required fields may be
    omitted but not blanked; category always falls back to the default.
    """
    changes: dict = {}
    for name in REQUIRED_PASSWORD_FIELDS:
        if fields.get(name) is not None:
            changes[name] = _required(fields, name)
    for name in OPTIONAL_PASSWORD_FIELDS:
        if name in fields:
            changes[name] = _clean(fields[name])
    changes["category"] = normalize_category(fields.get("category"))

    entry = db.passwords.update(entry_id, owner_id, changes)
    if entry is None:
        raise NotFoundError("Password not found")
    return entry


def delete_password_entry(db: DbClient, entry_id: str, owner_id: str) -> None:
    if not db.passwords.delete(entry_id, owner_id):
        raise NotFoundError("Password not found")


# Documents


def list_documents(db: DbClient, owner_id: str) -> list[DocumentRecord]:
    return db.documents.list(owner_id)


def get_document(db: DbClient, document_id: str, owner_id: str) -> DocumentRecord:
    document = db.documents.get(document_id, owner_id)
    if document is None:
        raise NotFoundError("Document not found")
    return document


def delete_document(
    db: DbClient, storage: StorageBackend, document_id: str, owner_id: str
) -> None:
    document = get_document(db, document_id, owner_id)
    db.documents.delete(document.id, owner_id)
    outcome = storage.delete(document.locator)
    if not outcome.deleted:
        logger.info(
            "Blob for document %s not removed (%s): %s",
            document.id,
            outcome.reason,
            document.locator,
        )


def resolve_document_download(
    db: DbClient, storage: StorageBackend, document_id: str, owner_id: str
) -> tuple[DocumentRecord, RetrievalTarget]:
    document = get_document(db, document_id, owner_id)
    target = storage.resolve_retrieval_target(document.locator, document.original_name)
    if target is None:
        logger.warning(
            "Storage inconsistency: document %s exists but blob %s is missing",
            document.id,
            document.locator,
        )
        raise StorageInconsistencyError("File not found")
    return document, target
