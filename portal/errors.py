"""Error taxonomy shared by the identity, session and ticket layers."""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class PortalError(RuntimeError):
    """Base class for failures that map onto an HTTP response."""

    status_code = 500
    code = "portal_error"
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)

    def to_payload(self) -> Dict[str, Any]:
        return {"detail": str(self), "code": self.code}


class ValidationError(PortalError):
    """Raised when a request carries malformed or conflicting data."""

    status_code = 400
    code = "validation_error"
    default_message = "Invalid request data"

    def __init__(self, message: Optional[str] = None, *, errors: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        if self.errors:
            payload["errors"] = self.errors
        return payload


class InvalidCredentials(PortalError):
    status_code = 401
    code = "invalid_credentials"
    default_message = "Invalid credentials"


class AccountInactive(PortalError):
    status_code = 403
    code = "account_inactive"
    default_message = "Account is inactive"


class PendingApproval(AccountInactive):
    code = "pending_approval"
    default_message = "Account is awaiting administrator approval"


class SessionInvalid(PortalError):
    status_code = 401
    code = "session_invalid"
    default_message = "Invalid session"


class Unauthenticated(PortalError):
    status_code = 401
    code = "unauthenticated"
    default_message = "Not authenticated"


class Forbidden(PortalError):
    status_code = 403
    code = "forbidden"
    default_message = "Not authorized"


class UserNotFound(PortalError):
    status_code = 404
    code = "user_not_found"
    default_message = "User not found"


class TicketNotFound(PortalError):
    status_code = 404
    code = "ticket_not_found"
    default_message = "Ticket not found"


class DirectoryUnavailable(PortalError):
    status_code = 503
    code = "directory_unavailable"
    default_message = "Directory service is unavailable"


class ExternalUnavailable(PortalError):
    """Raised when the helpdesk rejects or cannot serve a request."""

    status_code = 500
    code = "external_unavailable"
    default_message = "Helpdesk request failed"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        upstream_status: Optional[int] = None,
        upstream_body: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body


class PartialSyncFailure(PortalError):
    """The helpdesk accepted a write but the local shadow record was not updated."""

    status_code = 500
    code = "partial_sync_failure"
    default_message = "Ticket was updated in the helpdesk but the local record could not be saved"

    def __init__(self, external_ticket_id: str, message: Optional[str] = None) -> None:
        super().__init__(message)
        self.external_ticket_id = external_ticket_id

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["external_ticket_id"] = self.external_ticket_id
        return payload


__all__ = [
    "AccountInactive",
    "DirectoryUnavailable",
    "ExternalUnavailable",
    "Forbidden",
    "InvalidCredentials",
    "PartialSyncFailure",
    "PendingApproval",
    "PortalError",
    "SessionInvalid",
    "TicketNotFound",
    "Unauthenticated",
    "UserNotFound",
    "ValidationError",
]
