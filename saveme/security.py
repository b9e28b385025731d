"""
Credential hashing and bearer-token handling.

Passwords are hashed with bcrypt; access tokens are HS256 JWTs carrying the
user id in ``sub``. ``get_current_owner_id`` is the authentication gate every
owner-scoped route depends on.
"""

from __future__ import annotations

import logging
import time

import bcrypt
import jwt
from fastapi import Depends, Request

from saveme.config import Settings
from saveme.dependencies import get_app_settings
from saveme.errors import AuthenticationError, InvalidTokenError

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of input.
BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


def issue_token(user_id: str, settings: Settings) -> str:
    now = int(time.time())
    payload = {"sub": user_id, "iat": now, "exp": now + settings.jwt_expires_seconds}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> str:
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.PyJWTError as exc:
        logger.info("Token verification failed: %s", exc)
        raise InvalidTokenError("Invalid or expired token") from exc
    return str(payload["sub"])


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization")
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_owner_id(
    request: Request, settings: Settings = Depends(get_app_settings)
) -> str:
    token = _bearer_token(request)
    if not token:
        raise AuthenticationError("Access token required")
    return decode_token(token, settings)
