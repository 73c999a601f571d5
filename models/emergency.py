from datetime import datetime
from types import MappingProxyType
from typing import Any, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from models.location import LocationPoint


def freeze(value: Any) -> Any:
    """Read-only deep copy: mappings become MappingProxyType, lists become tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    return value


def thaw(value: Any) -> Any:
    """Plain, mutable deep copy of a (possibly frozen) JSON-like value."""
    if isinstance(value, Mapping):
        return {key: thaw(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [thaw(item) for item in value]
    return value


class RecordingMeta(BaseModel):
    """Metadata handed over by the media collaborator; never raw bytes."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: str
    timestamp: datetime
    location: Optional[LocationPoint] = None
    duration_seconds: Optional[float] = None
    size_bytes: int = 0


class DeviceStatus(BaseModel):
    battery_percent: Optional[int] = Field(default=None, ge=0, le=100)
    online: Optional[bool] = None
    last_seen: Optional[datetime] = None


class MedicalProfile(BaseModel):
    medical_info: Optional[str] = None
    blood_type: Optional[str] = None
    allergies: List[str] = Field(default_factory=list)
    medications: List[str] = Field(default_factory=list)
    notes: Optional[str] = None


class EmergencySession(BaseModel):
    """
    A time-boxed, permission-filtered read view over a safety-data snapshot.

    Only ``access_count``, ``last_accessed_at`` and ``active`` ever change,
    and only through SessionBroker.
    """

    id: str = Field(frozen=True)
    reason: str = Field(frozen=True)
    created_at: datetime = Field(frozen=True)
    expires_at: datetime = Field(frozen=True)
    audience: Tuple[str, ...] = Field(default=(), frozen=True)
    # Deeply read-only; see freeze()
    data_snapshot: Any = Field(frozen=True)
    access_count: int = 0
    last_accessed_at: Optional[datetime] = None
    active: bool = True

    @field_validator("data_snapshot")
    @classmethod
    def _freeze_snapshot(cls, value: Any) -> Any:
        if not isinstance(value, Mapping):
            raise ValueError("data_snapshot must be a mapping")
        return freeze(value)

    @field_serializer("data_snapshot")
    def _serialize_snapshot(self, value: Any) -> Any:
        return thaw(value)

    def is_resolvable(self, now: datetime) -> bool:
        return self.active and now < self.expires_at


class TriggerResult(BaseModel):
    session: EmergencySession
    access_url: str
    notified: int = 0
