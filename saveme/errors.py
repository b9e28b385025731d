"""
Error taxonomy shared by the record store, upload pipeline and routes.

Each error carries the HTTP status it maps to; the app registers a single
handler for ``VaultError`` that renders ``{"detail": message}``.
"""

from __future__ import annotations


class VaultError(Exception):
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(VaultError):
    """Missing or invalid field, or an upload that breaks a file constraint."""

    status_code = 400


class NotFoundError(VaultError):
    """Record is absent or belongs to another owner. The two are not told apart."""

    status_code = 404


class StorageInconsistencyError(NotFoundError):
    """Metadata record exists but its backing blob does not."""


class AuthenticationError(VaultError):
    status_code = 401


class InvalidTokenError(AuthenticationError):
    status_code = 403
