"""
Error taxonomy for route progress operations.

Every error carries an HTTP status and a JSON-safe payload so the API layer can
render it without knowing which component raised it. Storage errors never carry
driver text.
"""

from typing import Any, Dict, Optional


class RouteQuestError(Exception):
    """Base class for client-distinguishable failures."""

    status_code = 400
    code = "error"

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = {"error": self.code, "message": message}
        if payload:
            self.payload.update(payload)


class ValidationError(RouteQuestError):
    """Malformed input, rejected before any storage interaction."""

    status_code = 422
    code = "validation_error"


class NotFoundError(RouteQuestError):
    status_code = 404
    code = "not_found"


class OutOfRangeError(RouteQuestError):
    """The player is outside the checkpoint geofence."""

    status_code = 400
    code = "out_of_range"

    def __init__(self, checkpoint_name: str, required_radius: float, distance: float):
        super().__init__(
            f"You must be within {required_radius:g}m of {checkpoint_name}",
            payload={
                "checkpoint": checkpoint_name,
                "required_radius": required_radius,
                "distance": round(distance, 1),
            },
        )
        self.checkpoint_name = checkpoint_name
        self.required_radius = required_radius
        self.distance = distance


class ConflictError(RouteQuestError):
    status_code = 409
    code = "conflict"

    def __init__(self, message: str, reason: str = "conflict"):
        super().__init__(message, payload={"reason": reason})
        self.reason = reason


class AuthorizationError(RouteQuestError):
    status_code = 403
    code = "forbidden"


class StorageError(RouteQuestError):
    """Transaction or connectivity failure after retries were exhausted."""

    status_code = 503
    code = "storage_unavailable"
