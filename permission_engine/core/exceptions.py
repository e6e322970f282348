"""Domain exceptions raised by the permission engine.

The service layer raises these; ``permission_engine.main`` maps them to
HTTP responses in one place.
"""
from typing import Dict, Optional


class EngineError(Exception):
    """Base exception for the permission engine."""

    status_code = 400

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class ValidationError(EngineError):
    """Raised when input has the wrong shape (empty name, unknown permission ids...)."""

    status_code = 422

    def __init__(self, message: str = "Invalid input", fields: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.fields = fields or {}


class ConflictError(EngineError):
    """Raised when a resource with the same identity already exists."""

    status_code = 409


class PermissionDeniedError(EngineError):
    """Raised for forbidden operations and for authorization failures shown to users."""

    status_code = 403

    def __init__(self, message: str = "Permission denied", required_permission: Optional[str] = None):
        super().__init__(message)
        self.required_permission = required_permission


class NotFoundError(EngineError):
    """Raised when a role, user or permission id does not resolve."""

    status_code = 404


class StorageError(EngineError):
    """Raised when the backing store is unavailable or timed out."""

    status_code = 503
