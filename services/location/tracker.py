"""
Location tracking: bounded sample history and derived kinematics.

Samples arrive from the device geolocation callback as discrete events.
History is kept newest-first and capped at LOCATION_HISTORY_LIMIT; the
oldest sample is evicted on overflow.
"""

import logging
import math
from datetime import timezone
from typing import Any, Callable, Iterable, List, Mapping, Union

from pydantic import ValidationError as PydanticValidationError

from common.constants import (
    EARTH_RADIUS_KM,
    FAMILIAR_RADIUS_KM,
    FAMILIAR_VISIT_THRESHOLD,
    LOCATION_HISTORY_LIMIT,
    STATIONARY_SPEED_KMH,
)
from common.errors import InvalidSample
from models.location import NO_FIX, Familiarity, LocationSample, NoFix, SpeedReading

logger = logging.getLogger(__name__)

IsolationPredicate = Callable[[LocationSample], bool]


def assume_isolated(sample: LocationSample) -> bool:
    """
    Placeholder isolation signal.

    No point-of-interest data is available to the core, so every location
    is reported as isolated. Inject a real predicate into LocationTrack to
    replace it; the ThreatAnalyzer contract does not change.
    """
    return True


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(min(1.0, a)))


def _coerce_sample(raw: Union[LocationSample, Mapping[str, Any]]) -> LocationSample:
    if isinstance(raw, LocationSample):
        sample = raw
    else:
        try:
            sample = LocationSample.model_validate(raw)
        except PydanticValidationError as e:
            raise InvalidSample(
                "Malformed location sample",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e

    if not (math.isfinite(sample.lat) and math.isfinite(sample.lng)):
        raise InvalidSample("Coordinates must be finite numbers")
    if not (-90.0 <= sample.lat <= 90.0 and -180.0 <= sample.lng <= 180.0):
        raise InvalidSample(
            "Coordinates out of range", details={"lat": sample.lat, "lng": sample.lng}
        )
    if not math.isfinite(sample.accuracy_meters) or sample.accuracy_meters < 0:
        raise InvalidSample("Accuracy must be a non-negative finite number")
    if sample.captured_at.tzinfo is None:
        # Naive timestamps from device callbacks are UTC
        sample = sample.model_copy(
            update={"captured_at": sample.captured_at.replace(tzinfo=timezone.utc)}
        )
    return sample


class LocationTrack:
    """Owns the LocationSample sequence."""

    def __init__(
        self,
        limit: int = LOCATION_HISTORY_LIMIT,
        isolation: IsolationPredicate = assume_isolated,
    ) -> None:
        self._limit = limit
        self._isolation = isolation
        self._history: List[LocationSample] = []

    def record(self, sample: Union[LocationSample, Mapping[str, Any]]) -> LocationSample:
        """
        Prepend a sample and trim history to the bound.

        Raises:
            InvalidSample: malformed input, or a fix not newer than the
                current one. History is left untouched.
        """
        sample = _coerce_sample(sample)
        if self._history and sample.captured_at <= self._history[0].captured_at:
            raise InvalidSample(
                "Sample is not newer than the latest fix",
                details={
                    "captured_at": sample.captured_at.isoformat(),
                    "latest": self._history[0].captured_at.isoformat(),
                },
            )

        self._history.insert(0, sample)
        if len(self._history) > self._limit:
            del self._history[self._limit:]
        return sample

    def current(self) -> Union[LocationSample, NoFix]:
        return self._history[0] if self._history else NO_FIX

    def has_fix(self) -> bool:
        return bool(self._history)

    def history(self) -> List[LocationSample]:
        return list(self._history)

    def recent(self, limit: int) -> List[LocationSample]:
        return self._history[:limit]

    def __len__(self) -> int:
        return len(self._history)

    def speed(self) -> SpeedReading:
        """Speed between the two most recent samples."""
        if len(self._history) < 2:
            return SpeedReading(speed_kmh=0.0, is_stationary=True)

        newest, previous = self._history[0], self._history[1]
        elapsed = (newest.captured_at - previous.captured_at).total_seconds()
        if elapsed <= 0:
            return SpeedReading(speed_kmh=0.0, is_stationary=True)

        distance = haversine_km(previous.lat, previous.lng, newest.lat, newest.lng)
        speed_kmh = distance / (elapsed / 3600.0)
        return SpeedReading(speed_kmh=speed_kmh, is_stationary=speed_kmh < STATIONARY_SPEED_KMH)

    def familiarity(self, sample: Union[LocationSample, Mapping[str, Any]]) -> Familiarity:
        """Count prior visits within FAMILIAR_RADIUS_KM of ``sample``."""
        sample = _coerce_sample(sample)
        visits = sum(
            1
            for prior in self._history
            if prior.captured_at < sample.captured_at
            and haversine_km(prior.lat, prior.lng, sample.lat, sample.lng) <= FAMILIAR_RADIUS_KM
        )
        return Familiarity(
            visit_count=visits,
            is_unfamiliar=visits < FAMILIAR_VISIT_THRESHOLD,
            is_isolated=bool(self._isolation(sample)),
        )

    def export(self) -> List[dict]:
        return [s.model_dump(mode="json") for s in self._history]

    def restore(self, records: Iterable[Mapping[str, Any]]) -> int:
        """Load persisted history; malformed records are skipped."""
        samples: List[LocationSample] = []
        for record in records or []:
            try:
                samples.append(_coerce_sample(record))
            except InvalidSample as e:
                logger.warning("Skipping persisted location sample: %s", e.message)
        samples.sort(key=lambda s: s.captured_at, reverse=True)

        deduped: List[LocationSample] = []
        for s in samples:
            if not deduped or s.captured_at < deduped[-1].captured_at:
                deduped.append(s)
        self._history = deduped[: self._limit]
        return len(self._history)
