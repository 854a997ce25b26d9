"""
Error taxonomy for the lifecycle core.

Every error carries a stable ``code`` for programmatic handling and renders
to the structured envelope ``{"ok": false, "code", "message", "details"}``.
"""

from typing import Any, Dict, Optional


class ControlCenterError(Exception):
    """Base class for all lifecycle errors.

    Attributes:
        code: Stable error code
        message: Human-readable description (never contains storage internals)
        details: Optional structured context
    """

    default_code = "CONTROL_CENTER_ERROR"
    http_status = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code or self.default_code
        self.message = message
        self.details = details or {}
        super().__init__(f"{self.code}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        body: Dict[str, Any] = {
            "ok": False,
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(ControlCenterError):
    """Malformed input. Rejected before any transaction opens."""

    default_code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(ControlCenterError):
    """Issue, run or batch absent."""

    default_code = "NOT_FOUND"
    http_status = 404


class InvalidTransition(ControlCenterError):
    """The issue exists but the requested move is not in the transition table."""

    default_code = "INVALID_TRANSITION"
    http_status = 409

    def __init__(self, from_state: str, to_state: str, message: Optional[str] = None):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            message or f"Invalid transition: {from_state} -> {to_state}",
            details={"from": from_state, "to": to_state},
        )


class ImmutabilityError(ControlCenterError):
    """Raised when attempting to modify or delete an append-only record."""

    default_code = "IMMUTABILITY_VIOLATION"
    http_status = 409

    def __init__(self, object_type: str, object_id: Any):
        self.object_type = object_type
        self.object_id = object_id
        super().__init__(
            f"{object_type} records are append-only. Cannot modify {object_id}.",
            details={"object_type": object_type, "object_id": str(object_id)},
        )


class StorageError(ControlCenterError):
    """Transaction or connectivity failure. Always accompanied by rollback."""

    default_code = "STORAGE_ERROR"
    http_status = 500


class ConflictError(ControlCenterError):
    """The request collides with existing data (duplicate key, finished run)."""

    default_code = "CONFLICT"
    http_status = 409
