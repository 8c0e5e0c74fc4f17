"""
Error kinds and typed results for the booking core.

Services raise one of the BookingError subclasses below. booking_core
catches them at the core boundary and hands callers a ServiceResult, so
expected outcomes (conflicts, validation failures) never escape as crashes.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class ErrorKind:
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    UNAVAILABLE = "unavailable"


class ErrorCode:
    """Stable error codes exposed to callers (used for localization at the edge)."""

    USER_NOT_FOUND = "user_not_found"
    SERVER_NOT_FOUND = "server_not_found"
    RESPAWN_NOT_FOUND = "respawn_not_found"
    SLOT_NOT_FOUND = "slot_not_found"
    PERIOD_NOT_FOUND = "period_not_found"
    DIFFICULTY_NOT_FOUND = "difficulty_not_found"
    REQUEST_NOT_FOUND = "request_not_found"
    CLAIM_NOT_FOUND = "claim_not_found"
    CHARACTER_NOT_FOUND = "character_not_found"
    CHARACTER_NOT_FOUND_EXTERNAL = "character_not_found_external"

    EMPTY_PARTY = "empty_party"
    MULTIPLE_LEADERS = "multiple_leaders"
    PARTY_TOO_LARGE = "party_too_large"
    RESPAWN_UNAVAILABLE = "respawn_unavailable"
    CHARACTER_NOT_OWNED = "character_not_owned"
    CHARACTER_SERVER_MISMATCH = "character_server_mismatch"
    CHARACTER_SERVER_NOT_CONFIGURED = "character_server_not_configured"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    INSUFFICIENT_POINTS = "insufficient_points"
    INVALID_AMOUNT = "invalid_amount"
    INVALID_TIME_RANGE = "invalid_time_range"
    INVALID_DATE_RANGE = "invalid_date_range"
    INVALID_PLAYER_RANGE = "invalid_player_range"
    SOURCE_TARGET_SAME_SERVER = "source_target_same_server"
    NO_RESPAWNS_TO_COPY = "no_respawns_to_copy"
    RESPAWN_IN_USE = "respawn_in_use"
    SLOT_IN_USE = "slot_in_use"
    PERIOD_IN_USE = "period_in_use"
    SERVER_IN_USE = "server_in_use"
    DIFFICULTY_IN_USE = "difficulty_in_use"
    NOT_AUTHORIZED = "not_authorized"

    CONFLICT_WITH_APPROVED_REQUEST = "conflict_with_approved_request"

    STORAGE_UNAVAILABLE = "storage_unavailable"
    TRANSACTION_RETRY = "transaction_retry"


class BookingError(ValueError):
    """Base class for expected, recoverable failures of the booking core."""

    kind = ErrorKind.VALIDATION

    def __init__(self, code: str, message: Optional[str] = None, params: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message or code.replace("_", " ").capitalize()
        self.params = params or {}
        super().__init__(self.message)


class NotFoundError(BookingError):
    """A referenced entity does not exist."""

    kind = ErrorKind.NOT_FOUND


class ValidationError(BookingError):
    """Malformed input, business-rule violation, insufficient points or illegal transition."""

    kind = ErrorKind.VALIDATION


class ConflictError(BookingError):
    """Another approved request already holds the (respawn, slot, period) tuple."""

    kind = ErrorKind.CONFLICT


class UnavailableError(BookingError):
    """Storage could not be reached or aborted the transaction. Callers may retry."""

    kind = ErrorKind.UNAVAILABLE


@dataclass
class ServiceResult:
    """Success with data, or failure with kind, code and message."""

    success: bool
    data: Any = None
    kind: Optional[str] = None
    code: Optional[str] = None
    message: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Any = None) -> "ServiceResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: BookingError) -> "ServiceResult":
        return cls(
            success=False,
            kind=error.kind,
            code=error.code,
            message=error.message,
            params=dict(error.params),
        )

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        return {
            "success": False,
            "error": {
                "kind": self.kind,
                "code": self.code,
                "message": self.message,
                "params": self.params,
            },
        }
