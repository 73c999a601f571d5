from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class LocationSample(BaseModel):
    """A single position fix. Immutable once recorded."""

    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float
    accuracy_meters: float = 0.0
    captured_at: datetime


class NoFix(BaseModel):
    """Returned by LocationTrack.current() while history is empty."""

    model_config = ConfigDict(frozen=True)

    has_fix: bool = False


NO_FIX = NoFix()


class SpeedReading(BaseModel):
    model_config = ConfigDict(frozen=True)

    speed_kmh: float
    is_stationary: bool


class Familiarity(BaseModel):
    model_config = ConfigDict(frozen=True)

    visit_count: int
    is_unfamiliar: bool
    # Comes from the isolation predicate, see services/location/tracker.py
    is_isolated: bool


class LocationPoint(BaseModel):
    """Loose lat/lng pair used by messages and recordings."""

    lat: float
    lng: float
    accuracy_meters: Optional[float] = None
