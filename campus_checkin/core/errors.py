"""
Error taxonomy for check-in issuance and validation.

Every failure is terminal for the request that raised it. `retryable` tells
the scanner UI whether to offer a retry (true faults) or just show the
message (expected outcomes such as an expired or already-used QR).
"""
from __future__ import annotations
from typing import Any, Dict, Optional


class CheckinError(Exception):
    """Base exception for all check-in errors."""

    kind = "CheckinError"
    status_code = 400
    retryable = False
    default_message = "Check-in failed"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "error": self.message,
            "kind": self.kind,
            "retryable": self.retryable,
        }
        body.update(self.details)
        return body


class Unauthorized(CheckinError):
    kind = "Unauthorized"
    status_code = 401
    default_message = "Unauthorized"


class InvalidRequest(CheckinError):
    kind = "InvalidRequest"
    status_code = 400
    default_message = "Invalid request"


class RegistrationNotFound(CheckinError):
    kind = "RegistrationNotFound"
    status_code = 404
    default_message = "Invalid registration"


class EventNotFound(CheckinError):
    kind = "EventNotFound"
    status_code = 404
    default_message = "Event not found"


class InvalidTokenFormat(CheckinError):
    kind = "InvalidTokenFormat"
    status_code = 400
    default_message = "Invalid QR format"


class InvalidTokenStructure(CheckinError):
    kind = "InvalidTokenStructure"
    status_code = 400
    default_message = "Invalid QR token structure"


class TokenExpired(CheckinError):
    kind = "TokenExpired"
    status_code = 400
    default_message = "QR code has expired"


class RecordNotFound(CheckinError):
    kind = "RecordNotFound"
    status_code = 404
    default_message = "Invalid or unregistered QR code"


class NotAuthorized(CheckinError):
    kind = "NotAuthorized"
    status_code = 403
    default_message = "You do not have permission to check in participants for this event"


class AlreadyCheckedIn(CheckinError):
    """The record was already used; details carry checked_in_at and the participant."""

    kind = "AlreadyCheckedIn"
    status_code = 409
    default_message = "QR already used or participant already checked in"

    def __init__(self, *, checked_in_at: Optional[str] = None, participant: Optional[Dict[str, Any]] = None):
        super().__init__(details={
            "already_checked_in": True,
            "checked_in_at": checked_in_at,
            "participant": participant,
        })


class IssuanceConflict(CheckinError):
    kind = "IssuanceConflict"
    status_code = 409
    retryable = True
    default_message = "A QR token for this event is already being issued"


class UpdateFailed(CheckinError):
    kind = "UpdateFailed"
    status_code = 500
    retryable = True
    default_message = "Failed to process check-in"


# outcomes the scanner sees routinely, as opposed to faults
EXPECTED_KINDS = frozenset({
    AlreadyCheckedIn.kind,
    TokenExpired.kind,
    RecordNotFound.kind,
    NotAuthorized.kind,
    InvalidTokenFormat.kind,
    InvalidTokenStructure.kind,
})
