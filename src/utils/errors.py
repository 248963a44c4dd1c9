"""Error handling utilities."""

from typing import Any, Optional


class EscrowBackendError(Exception):
    """Base exception for the escrow backend."""

    status_code = 500

    def __init__(self, message: str = "", *, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message or self.__class__.__doc__ or ""
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": False, "message": self.message}
        payload.update(self.details)
        return payload


class ValidationError(EscrowBackendError):
    """Malformed request input."""
    status_code = 400

    def __init__(self, message: str = "Validation errors", errors: Optional[list[str]] = None):
        super().__init__(message, details={"errors": errors or []})
        self.errors = errors or []


class GuardViolation(EscrowBackendError):
    """A state-machine guard rejected the transition."""
    status_code = 400

    # Reasons about who may act map to 403
    FORBIDDEN_REASONS = frozenset({
        "Not token owner",
        "Not buyer",
        "Not seller",
        "Not authorized",
        "Buyer not verified",
        "Seller not verified",
    })

    def __init__(self, reason: str):
        super().__init__(reason, details={"reason": reason})
        self.reason = reason
        if reason in self.FORBIDDEN_REASONS:
            self.status_code = 403


class AuthenticationError(EscrowBackendError):
    """Missing or invalid credentials."""
    status_code = 401


class AuthorizationError(EscrowBackendError):
    """Authenticated caller lacks the required role."""
    status_code = 403


class NotFoundError(EscrowBackendError):
    """Referenced record does not exist."""
    status_code = 404


class ConflictError(EscrowBackendError):
    """Duplicate unique key or conflicting state."""
    status_code = 409


class LedgerUnavailable(EscrowBackendError):
    """The ledger could not be reached."""
    status_code = 503

    def __init__(self, message: str = "Ledger unavailable", retry_after: int = 5):
        super().__init__(message, details={"retryAfter": retry_after})
        self.retry_after = retry_after


class SupabaseError(EscrowBackendError):
    """Supabase operation error."""
    pass
