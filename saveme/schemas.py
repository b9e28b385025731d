"""
Pydantic schemas for the vault API.

Request models keep every field optional so that missing values surface as
400s with a field-specific message from the service layer.
"""

from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class RegisterRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    display_name: Optional[str] = Field(default=None, max_length=128)


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class UserResponse(BaseModel):
    id: str
    email: str
    display_name: Optional[str] = None
    avatar: Optional[str] = None
    created_at: float
    updated_at: float


class AuthResponse(BaseModel):
    token: str
    user: UserResponse


class ProfileUpdateRequest(BaseModel):
    display_name: Optional[str] = Field(default=None, max_length=128)
    email: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    current_password: Optional[str] = None
    new_password: Optional[str] = None


class PasswordEntryRequest(BaseModel):
    title: Optional[str] = None
    username: Optional[str] = None
    # Older clients send the secret as "password".
    secret: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("secret", "password")
    )
    website: Optional[str] = None
    category: Optional[str] = None
    notes: Optional[str] = None


class PasswordEntryResponse(BaseModel):
    id: str
    owner_id: str
    title: str
    username: Optional[str] = None
    secret: str
    website: Optional[str] = None
    category: str
    notes: Optional[str] = None
    created_at: float
    updated_at: float


class DocumentResponse(BaseModel):
    id: str
    owner_id: str
    stored_name: str
    original_name: str
    locator: str
    content_type: Optional[str] = None
    size_bytes: int
    created_at: float


class MessageResponse(BaseModel):
    message: str


class AvatarResponse(BaseModel):
    message: str
    avatar: Optional[str] = None
