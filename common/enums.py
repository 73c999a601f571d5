"""
Safety Enums
Shared enumerations for contacts, threat scoring, timers and alerts.
"""

from enum import Enum


class ThreatLevel(str, Enum):
    """Threat classification, ordered by severity"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {ThreatLevel.LOW: 0, ThreatLevel.MEDIUM: 1, ThreatLevel.HIGH: 2}


class AccessLevel(str, Enum):
    """How much of a shared package a contact may see"""
    FULL = "full"
    LIMITED = "limited"
    EMERGENCY_ONLY = "emergency-only"


class Permission(str, Enum):
    """Per-contact data access flags"""
    REALTIME_LOCATION = "realtime_location"
    LOCATION_HISTORY = "location_history"
    RECORDINGS = "recordings"
    MEDICAL_INFO = "medical_info"
    DEVICE_STATUS = "device_status"
    EMERGENCY_ALERTS = "emergency_alerts"


class TimerState(str, Enum):
    """Safety timer states"""
    IDLE = "idle"
    RUNNING = "running"


class AlertType(str, Enum):
    """Message kinds produced for trusted contacts"""
    EMERGENCY_ALERT = "emergency_alert"
    CHECK_IN = "check_in"
