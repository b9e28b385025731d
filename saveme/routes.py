"""
HTTP routes for the vault API.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, UploadFile
from fastapi.responses import FileResponse, RedirectResponse

from saveme import accounts, records, uploads
from saveme.config import Settings
from saveme.db import DbClient, DocumentRecord, PasswordEntry, UserRecord
from saveme.dependencies import get_app_settings, get_db_client, get_storage_backend
from saveme.schemas import (
    AuthResponse,
    AvatarResponse,
    ChangePasswordRequest,
    DocumentResponse,
    LoginRequest,
    MessageResponse,
    PasswordEntryRequest,
    PasswordEntryResponse,
    ProfileUpdateRequest,
    RegisterRequest,
    UserResponse,
)
from saveme.security import get_current_owner_id
from saveme.storage import RedirectTarget, StorageBackend

logger = logging.getLogger(__name__)

router = APIRouter()


def _user(user: UserRecord) -> UserResponse:
    return UserResponse(**user.as_dict())


def _entry(entry: PasswordEntry) -> PasswordEntryResponse:
    return PasswordEntryResponse(**entry.as_dict())


def _document(document: DocumentRecord) -> DocumentResponse:
    return DocumentResponse(**document.as_dict())


# Auth


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(
    payload: RegisterRequest,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_app_settings),
):
    user, token = accounts.register(
        db, settings, payload.email, payload.password, payload.display_name
    )
    return AuthResponse(token=token, user=_user(user))


@router.post("/auth/login", response_model=AuthResponse)
def login(
    payload: LoginRequest,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_app_settings),
):
    user, token = accounts.login(db, settings, payload.email, payload.password)
    return AuthResponse(token=token, user=_user(user))


# Password entries


@router.get("/passwords", response_model=list[PasswordEntryResponse])
def list_passwords(
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    return [_entry(entry) for entry in records.list_password_entries(db, owner_id)]


@router.get("/passwords/{entry_id}", response_model=PasswordEntryResponse)
def get_password(
    entry_id: str,
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    return _entry(records.get_password_entry(db, entry_id, owner_id))


@router.post("/passwords", response_model=PasswordEntryResponse, status_code=201)
def create_password(
    payload: PasswordEntryRequest,
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    entry = records.create_password_entry(db, owner_id, payload.model_dump())
    return _entry(entry)


@router.put("/passwords/{entry_id}", response_model=PasswordEntryResponse)
def update_password(
    entry_id: str,
    payload: PasswordEntryRequest,
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    entry = records.update_password_entry(
        db, entry_id, owner_id, payload.model_dump(exclude_unset=True)
    )
    return _entry(entry)


@router.delete("/passwords/{entry_id}", response_model=MessageResponse)
def delete_password(
    entry_id: str,
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    records.delete_password_entry(db, entry_id, owner_id)
    return MessageResponse(message="Password deleted successfully")


# Documents


@router.get("/documents", response_model=list[DocumentResponse])
def list_documents(
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    return [_document(doc) for doc in records.list_documents(db, owner_id)]


@router.post("/documents/upload", response_model=DocumentResponse, status_code=201)
def upload_document(
    file: Optional[UploadFile] = File(None),
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
    storage: StorageBackend = Depends(get_storage_backend),
    settings: Settings = Depends(get_app_settings),
):
    document = uploads.store_document(
        db,
        storage,
        owner_id,
        file.filename if file else None,
        file.content_type if file else None,
        file.file if file else None,
        uploads.document_policy(settings),
    )
    logger.info("Stored document %s (%d bytes)", document.id, document.size_bytes)
    return _document(document)


@router.get("/documents/{document_id}", response_model=DocumentResponse)
def get_document(
    document_id: str,
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    return _document(records.get_document(db, document_id, owner_id))


@router.get("/documents/{document_id}/download")
def download_document(
    document_id: str,
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
    storage: StorageBackend = Depends(get_storage_backend),
):
    document, target = records.resolve_document_download(
        db, storage, document_id, owner_id
    )
    if isinstance(target, RedirectTarget):
        return RedirectResponse(target.url, status_code=302)
    return FileResponse(
        target.path,
        media_type=document.content_type or "application/octet-stream",
        filename=document.original_name,
    )


@router.delete("/documents/{document_id}", response_model=MessageResponse)
def delete_document(
    document_id: str,
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
    storage: StorageBackend = Depends(get_storage_backend),
):
    records.delete_document(db, storage, document_id, owner_id)
    return MessageResponse(message="Document deleted successfully")


# User profile


@router.get("/user/profile", response_model=UserResponse)
def get_profile(
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    return _user(accounts.get_profile(db, owner_id))


@router.put("/user/profile", response_model=UserResponse)
def update_profile(
    payload: ProfileUpdateRequest,
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    user = accounts.update_profile(db, owner_id, payload.display_name, payload.email)
    return _user(user)


@router.post("/user/avatar", response_model=AvatarResponse)
def upload_avatar(
    background_tasks: BackgroundTasks,
    avatar: Optional[UploadFile] = File(None),
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
    storage: StorageBackend = Depends(get_storage_backend),
    settings: Settings = Depends(get_app_settings),
):
    user, previous = uploads.replace_avatar(
        db,
        storage,
        owner_id,
        avatar.filename if avatar else None,
        avatar.content_type if avatar else None,
        avatar.file if avatar else None,
        uploads.avatar_policy(settings),
    )
    if previous:
        background_tasks.add_task(uploads.discard_blob, storage, previous)
    return AvatarResponse(message="Avatar uploaded successfully", avatar=user.avatar)


@router.delete("/user/avatar", response_model=MessageResponse)
def delete_avatar(
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
    storage: StorageBackend = Depends(get_storage_backend),
):
    uploads.remove_avatar(db, storage, owner_id)
    return MessageResponse(message="Avatar deleted successfully")


@router.put("/user/change-password", response_model=MessageResponse)
def change_password(
    payload: ChangePasswordRequest,
    owner_id: str = Depends(get_current_owner_id),
    db: DbClient = Depends(get_db_client),
):
    accounts.change_password(
        db, owner_id, payload.current_password, payload.new_password
    )
    return MessageResponse(message="Password changed successfully")
