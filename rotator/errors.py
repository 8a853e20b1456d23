"""Rotation error taxonomy.

Every failure a step can raise is a ``RotationError``. The orchestrator owns
retry policy, so each error carries a stable ``code`` and whether retrying the
same step can succeed without operator intervention.
"""
from fastapi import HTTPException
from typing import Optional, Dict, Any


class RotationError(Exception):
    """Base class for errors surfaced to the orchestrator."""

    code = "ROTATION_FAILED"
    retryable = True
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            body["details"] = self.details
        return body


class GenerationError(RotationError):
    """The vault could not produce a candidate value."""
    code = "GENERATION_FAILED"
    status_code = 502


class VersionConflict(RotationError):
    """Request token already maps to a version with a different value."""
    code = "VERSION_CONFLICT"
    retryable = False
    status_code = 409


class ApplyError(RotationError):
    """The target resource could not be updated."""
    code = "APPLY_FAILED"
    status_code = 502


class IdentityNotFound(ApplyError):
    """The identity named by the pending credentials does not exist on the target."""
    code = "IDENTITY_NOT_FOUND"


class ValidationError(RotationError):
    """The pending credentials do not work against the target resource."""
    code = "VALIDATION_FAILED"
    status_code = 422


class StaleVersionError(RotationError):
    """A staging label moved between read and write (concurrent rotation)."""
    code = "STALE_VERSION"
    status_code = 409


class SecretNotFound(RotationError):
    """No version of the secret holds the requested staging label."""
    code = "NOT_FOUND"
    retryable = False
    status_code = 404


def raise_rotation_error(
    code: str,
    status_code: int,
    message: str,
    details: Optional[Dict[str, Any]] = None
) -> None:
    """Raise a standardized rotation HTTPException.

    Args:
        code: Error code (VERSION_CONFLICT, STALE_VERSION, etc.)
        status_code: HTTP Status Code (404, 409, etc.)
        message: Human readable message
        details: Optional extra details
    """
    error_body: Dict[str, Any] = {
        "code": code,
        "message": message
    }
    if details:
        error_body["details"] = details

    raise HTTPException(status_code=status_code, detail={"error": error_body})
