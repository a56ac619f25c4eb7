"""Error types shared by services and blueprints."""

from __future__ import annotations

from typing import Any, Dict, Optional


class PokeOlivosError(Exception):
    """Raised when a PokeOlivos operation fails with a user-facing message."""

    status_code = 400
    error_key = "error"

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload or {"error": self.error_key, "message": message}


class ValidationError(PokeOlivosError):
    """Input rejected before any backend call (missing field, bad code, bad file)."""

    error_key = "validation_failed"


class InvalidCodeFormat(ValidationError):
    error_key = "invalid_code_format"


class ScanDecodeError(PokeOlivosError):
    """The scanner delivered a payload we could not read; the scanner stays open."""

    status_code = 422
    error_key = "scan_decode_failed"


class BackendError(PokeOlivosError):
    status_code = 502
    error_key = "backend_error"


class ConflictError(BackendError):
    """Uniqueness violation reported by the backend. Expected, never fatal."""

    status_code = 409
    error_key = "conflict"


class AuthorizationError(PokeOlivosError):
    status_code = 403
    error_key = "forbidden"
