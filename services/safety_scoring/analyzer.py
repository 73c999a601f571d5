"""
Location threat scoring.

ThreatAnalyzer is a pure function of the current sample, the location track
and the hour of day. Rules are evaluated in a fixed order (night-time rule,
then stationary rule); the emitted level is the maximum severity reached,
suggestions accumulate, and confidence keeps the value of the last rule
that fired.

ThreatMonitor wraps the analyzer and holds the only retained assessment.
When monitoring is disabled it does not invoke the analyzer at all.
"""

import logging
from datetime import datetime, timezone, tzinfo
from typing import List, Optional

from common.constants import (
    BASE_CONFIDENCE,
    NIGHT_CONFIDENCE,
    NIGHT_END_HOUR,
    NIGHT_START_HOUR,
    STATIONARY_CONFIDENCE,
)
from common.enums import ThreatLevel
from models.location import LocationSample
from models.threat import ThreatAssessment
from services.location.tracker import LocationTrack

logger = logging.getLogger(__name__)

UNFAMILIAR_AT_NIGHT = "unfamiliar area at night: share your live location with a trusted contact"
STATIONARY_ISOLATED = "stationary in isolated area: consider moving toward a busier, well-lit place"


def is_night_time(hour_of_day: int) -> bool:
    return hour_of_day < NIGHT_END_HOUR or hour_of_day > NIGHT_START_HOUR


def _escalate(current: ThreatLevel, candidate: ThreatLevel) -> ThreatLevel:
    return candidate if candidate.severity > current.severity else current


class ThreatAnalyzer:
    def assess(
        self,
        sample: LocationSample,
        track: LocationTrack,
        hour_of_day: int,
        assessed_at: Optional[datetime] = None,
    ) -> ThreatAssessment:
        if not 0 <= hour_of_day <= 23:
            raise ValueError(f"hour_of_day must be 0-23, got {hour_of_day}")

        level = ThreatLevel.LOW
        confidence = BASE_CONFIDENCE
        suggestions: List[str] = []

        familiarity = track.familiarity(sample)

        if is_night_time(hour_of_day) and familiarity.is_unfamiliar:
            level = _escalate(level, ThreatLevel.MEDIUM)
            confidence = NIGHT_CONFIDENCE
            suggestions.append(UNFAMILIAR_AT_NIGHT)

        if track.speed().is_stationary and familiarity.is_isolated:
            level = _escalate(level, ThreatLevel.MEDIUM)
            confidence = STATIONARY_CONFIDENCE
            suggestions.append(STATIONARY_ISOLATED)

        return ThreatAssessment(
            level=level,
            confidence=confidence,
            suggestions=tuple(suggestions),
            assessed_at=assessed_at or sample.captured_at,
        )


class ThreatMonitor:
    """Keeps the latest assessment; recomputes it on every new sample."""

    def __init__(self, analyzer: Optional[ThreatAnalyzer] = None) -> None:
        self._analyzer = analyzer or ThreatAnalyzer()
        self._latest: Optional[ThreatAssessment] = None

    @property
    def latest(self) -> Optional[ThreatAssessment]:
        return self._latest

    def update(
        self,
        sample: LocationSample,
        track: LocationTrack,
        enabled: bool = True,
        tz: tzinfo = timezone.utc,
    ) -> Optional[ThreatAssessment]:
        """Reassess ``sample``; night-time is judged on the wall clock in ``tz``."""
        if not enabled:
            return self._latest

        hour = sample.captured_at.astimezone(tz).hour
        self._latest = self._analyzer.assess(sample, track, hour)
        if self._latest.level is not ThreatLevel.LOW:
            logger.info(
                "Threat level %s (confidence %.2f): %s",
                self._latest.level.value,
                self._latest.confidence,
                "; ".join(self._latest.suggestions),
            )
        return self._latest
