"""
Error taxonomy for the SafeGuard core.

Every error is a local failure returned to the caller; none is fatal to the
process. The HTTP layer maps them to status codes through ``http_status``.
"""

from typing import Any, Dict, Optional


class SafetyCoreError(Exception):
    """Base exception for all SafeGuard core errors."""

    error_code: str = "SAFETY_CORE_ERROR"
    http_status: int = 500

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error_code": self.error_code, "message": self.message, "details": self.details}


class ValidationError(SafetyCoreError):
    """Malformed input to a mutating call; no state was changed."""

    error_code = "VALIDATION_ERROR"
    http_status = 422


class InvalidSample(ValidationError):
    """Malformed location input; history was not mutated."""

    error_code = "INVALID_SAMPLE"


class NotFound(SafetyCoreError):
    error_code = "NOT_FOUND"
    http_status = 404

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(
            f"{entity} {entity_id} not found",
            details={"entity": entity, "id": str(entity_id)},
        )
        self.entity = entity
        self.entity_id = entity_id


class Expired(SafetyCoreError):
    """Session past its TTL, deactivated, or no longer granted to the requester."""

    error_code = "EXPIRED"
    http_status = 410
