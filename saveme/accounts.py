"""
Account operations: registration, login, profile and password changes.
"""

from __future__ import annotations

import logging
from typing import Optional

from saveme.config import Settings
from saveme.db import DbClient, UserRecord, new_id
from saveme.errors import AuthenticationError, NotFoundError, ValidationError
from saveme.security import hash_password, issue_token, verify_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def _normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def register(
    db: DbClient,
    settings: Settings,
    email: Optional[str],
    password: Optional[str],
    display_name: Optional[str] = None,
) -> tuple[UserRecord, str]:
    email = _normalize_email(email)
    if not email or not password:
        raise ValidationError("Email and password are required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        )
    if db.get_user_by_email(email):
        raise ValidationError("Email already in use")

    user = db.create_user(
        UserRecord(
            id=new_id(),
            email=email,
            password_hash=hash_password(password),
            display_name=(display_name or "").strip() or None,
        )
    )
    logger.info("Registered user %s", user.id)
    return user, issue_token(user.id, settings)


def login(
    db: DbClient, settings: Settings, email: Optional[str], password: Optional[str]
) -> tuple[UserRecord, str]:
    email = _normalize_email(email)
    if not email or not password:
        raise ValidationError("Email and password are required")
    user = db.get_user_by_email(email)
    if user is None or not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid email or password")
    return user, issue_token(user.id, settings)


def get_profile(db: DbClient, user_id: str) -> UserRecord:
    user = db.get_user(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def update_profile(
    db: DbClient,
    user_id: str,
    display_name: Optional[str] = None,
    email: Optional[str] = None,
) -> UserRecord:
    changes: dict = {}
    if display_name:
        changes["display_name"] = display_name.strip()
    if email:
        email = _normalize_email(email)
        existing = db.get_user_by_email(email)
        if existing and existing.id != user_id:
            raise ValidationError("Email already in use")
        changes["email"] = email

    user = db.update_user(user_id, changes) if changes else db.get_user(user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def change_password(
    db: DbClient,
    user_id: str,
    current_password: Optional[str],
    new_password: Optional[str],
) -> None:
    if not current_password or not new_password:
        raise ValidationError("Current password and new password are required")
    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"New password must be at least {MIN_PASSWORD_LENGTH} characters"
        )
    user = get_profile(db, user_id)
    if not verify_password(current_password, user.password_hash):
        raise AuthenticationError("Current password is incorrect")
    db.update_user(user_id, {"password_hash": hash_password(new_password)})
