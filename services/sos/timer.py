"""
Safety timer: a countdown that escalates to an emergency trigger unless the
user checks in first.

States: idle -> running -> {checked in -> idle, expired -> idle}.

The timer does not own a clock. An external scheduler calls ``tick()`` once
per second; ``check_in()`` is the only way to cancel a pending expiry.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from common.clock import format_countdown
from common.enums import TimerState
from common.errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimerExpired:
    duration_seconds: int


@dataclass(frozen=True)
class CheckedIn:
    remaining_seconds: int
    # Location/battery snapshot composed by the caller for the outgoing message
    snapshot: Dict[str, Any] = field(default_factory=dict)


class SafetyTimer:
    def __init__(self) -> None:
        self.duration_seconds = 0
        self.remaining_seconds = 0
        self.state = TimerState.IDLE

    @property
    def active(self) -> bool:
        return self.state is TimerState.RUNNING

    def start(self, minutes: int) -> None:
        """Start (or restart) the countdown; restarting overwrites the remaining time."""
        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
            raise ValidationError(
                "Timer duration must be a positive number of minutes",
                details={"minutes": minutes},
            )
        self.start_seconds(minutes * 60)

    def start_seconds(self, seconds: int) -> None:
        if isinstance(seconds, bool) or not isinstance(seconds, int) or seconds <= 0:
            raise ValidationError(
                "Timer duration must be a positive number of seconds",
                details={"seconds": seconds},
            )
        if self.active:
            logger.info("Restarting safety timer with %s remaining", self.formatted_remaining())
        self.duration_seconds = seconds
        self.remaining_seconds = seconds
        self.state = TimerState.RUNNING

    def tick(self) -> Optional[TimerExpired]:
        """Advance one second; returns TimerExpired exactly once when time runs out."""
        if not self.active:
            return None

        self.remaining_seconds -= 1
        if self.remaining_seconds > 0:
            return None

        self.remaining_seconds = 0
        self.state = TimerState.IDLE
        logger.warning("Safety timer expired after %ss without check-in", self.duration_seconds)
        return TimerExpired(duration_seconds=self.duration_seconds)

    def check_in(self, snapshot: Optional[Dict[str, Any]] = None) -> CheckedIn:
        if not self.active:
            raise ValidationError("No safety timer is running")

        remaining = self.remaining_seconds
        self.state = TimerState.IDLE
        self.remaining_seconds = 0
        return CheckedIn(remaining_seconds=remaining, snapshot=dict(snapshot or {}))

    def formatted_remaining(self) -> str:
        return format_countdown(self.remaining_seconds)

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "active": self.active,
            "duration_seconds": self.duration_seconds,
            "remaining_seconds": self.remaining_seconds,
            "display": self.formatted_remaining(),
        }
