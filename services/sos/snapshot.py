"""
Emergency data snapshots.

``compose_snapshot`` builds the immutable package stored in an emergency
session. It never raises: a section that is missing or cannot be composed is
replaced by the UNKNOWN placeholder and a warning is logged, so the alert
still goes out with partial data.

``filter_package`` narrows a stored snapshot to what one contact may see.
Filtering happens on read, so a single session serves contacts with
different clearance. Forbidden fields are silently omitted.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from common.constants import SNAPSHOT_HISTORY_LIMIT, UNKNOWN
from common.enums import AccessLevel, Permission
from models.contact import Contact
from models.emergency import DeviceStatus, MedicalProfile, RecordingMeta, thaw
from models.location import LocationSample
from models.threat import ThreatAssessment

logger = logging.getLogger(__name__)

MEDICAL_FIELDS = ("medical_info", "blood_type", "allergies", "medications", "notes")


@dataclass
class SnapshotInputs:
    """Read-only references handed to SessionBroker.trigger."""

    current_location: Any = None
    history: Any = None
    device: Any = None
    contacts: Any = None
    recordings: Any = None
    profile: Any = None
    settings: Any = None
    threat: Any = None


def _or_unknown(value: Any) -> Any:
    return UNKNOWN if value is None else value


def _sample_dict(raw: Any) -> Dict[str, Any]:
    sample = raw if isinstance(raw, LocationSample) else LocationSample.model_validate(raw)
    return sample.model_dump(mode="json")


def _current_location(raw: Any) -> Any:
    if raw is None or not getattr(raw, "has_fix", True):
        return UNKNOWN
    return _sample_dict(raw)


def _accuracy(raw: Any) -> Any:
    if raw is None or not getattr(raw, "has_fix", True):
        return UNKNOWN
    if isinstance(raw, LocationSample):
        return raw.accuracy_meters
    return _or_unknown(raw.get("accuracy_meters"))


def _items(raw: Any, build: Callable[[Any], Any], label: str, limit: Optional[int] = None) -> Any:
    if raw is None:
        return UNKNOWN
    out: List[Any] = []
    for item in raw:
        if limit is not None and len(out) >= limit:
            break
        try:
            out.append(build(item))
        except Exception as e:
            logger.warning("Dropping malformed %s entry from snapshot: %s", label, e)
    return out


def _recording_dict(raw: Any) -> Dict[str, Any]:
    meta = raw if isinstance(raw, RecordingMeta) else RecordingMeta.model_validate(raw)
    return meta.model_dump(mode="json")


def _contact_dict(raw: Any) -> Dict[str, Any]:
    contact = raw if isinstance(raw, Contact) else Contact.model_validate(raw)
    return {
        "id": contact.id,
        "name": contact.name,
        "phone": contact.phone,
        "relation": _or_unknown(contact.relation),
        "verified": contact.verified,
    }


def _device(raw: Any) -> Dict[str, Any]:
    if raw is None:
        raw = DeviceStatus()
    status = raw if isinstance(raw, DeviceStatus) else DeviceStatus.model_validate(raw)
    return {
        "battery": _or_unknown(status.battery_percent),
        "online": _or_unknown(status.online),
        "last_seen": status.last_seen.isoformat() if status.last_seen else UNKNOWN,
    }


def _settings(raw: Any) -> Any:
    if raw is None:
        return UNKNOWN
    if hasattr(raw, "model_dump"):
        return raw.model_dump(mode="json")
    return dict(raw)


def _medical(raw: Any) -> Dict[str, Any]:
    if raw is None:
        return {name: UNKNOWN for name in MEDICAL_FIELDS}
    profile = raw if isinstance(raw, MedicalProfile) else MedicalProfile.model_validate(raw)
    data = profile.model_dump(mode="json")
    return {name: _or_unknown(data.get(name)) for name in MEDICAL_FIELDS}


def _threat(raw: Any) -> Any:
    if raw is None:
        return UNKNOWN
    assessment = raw if isinstance(raw, ThreatAssessment) else ThreatAssessment.model_validate(raw)
    return assessment.model_dump(mode="json")


def _section(name: str, build: Callable[..., Any], *args: Any) -> Any:
    try:
        return build(*args)
    except Exception as e:
        logger.warning("Snapshot section '%s' unavailable: %s", name, e)
        return UNKNOWN


def compose_snapshot(inputs: Optional[SnapshotInputs], now: datetime) -> Dict[str, Any]:
    inputs = inputs or SnapshotInputs()

    medical = _section("profile.medical", _medical, inputs.profile)
    if medical == UNKNOWN:
        medical = {name: UNKNOWN for name in MEDICAL_FIELDS}

    return {
        "timestamp": now.isoformat(),
        "location": {
            "current": _section("location.current", _current_location, inputs.current_location),
            "history": _section(
                "location.history",
                _items,
                inputs.history,
                _sample_dict,
                "location",
                SNAPSHOT_HISTORY_LIMIT,
            ),
            "accuracy": _section("location.accuracy", _accuracy, inputs.current_location),
        },
        "device": _section("device", _device, inputs.device),
        "recordings": _section(
            "recordings", _items, inputs.recordings, _recording_dict, "recording"
        ),
        "contacts": _section("contacts", _items, inputs.contacts, _contact_dict, "contact"),
        "profile": {
            "settings": _section("profile.settings", _settings, inputs.settings),
            **medical,
        },
        "threat": _section("threat", _threat, inputs.threat),
    }


_ALL_LEVELS = frozenset(AccessLevel)
_NOT_EMERGENCY_ONLY = frozenset({AccessLevel.FULL, AccessLevel.LIMITED})
_FULL_ONLY = frozenset({AccessLevel.FULL})

# (package path, required permission, access levels that may see it)
PACKAGE_RULES: Tuple[Tuple[Tuple[str, ...], Permission, frozenset], ...] = (
    (("location", "current"), Permission.REALTIME_LOCATION, _ALL_LEVELS),
    (("location", "accuracy"), Permission.REALTIME_LOCATION, _ALL_LEVELS),
    (("location", "history"), Permission.LOCATION_HISTORY, _FULL_ONLY),
    (("device",), Permission.DEVICE_STATUS, _NOT_EMERGENCY_ONLY),
    (("recordings",), Permission.RECORDINGS, _FULL_ONLY),
    (("contacts",), Permission.EMERGENCY_ALERTS, _NOT_EMERGENCY_ONLY),
    (("profile", "settings"), Permission.DEVICE_STATUS, _NOT_EMERGENCY_ONLY),
    *((("profile", name), Permission.MEDICAL_INFO, _NOT_EMERGENCY_ONLY) for name in MEDICAL_FIELDS),
    (("threat",), Permission.REALTIME_LOCATION, _ALL_LEVELS),
)


def _lookup(data: Mapping[str, Any], path: Iterable[str]) -> Tuple[bool, Any]:
    node: Any = data
    for key in path:
        if not isinstance(node, Mapping) or key not in node:
            return False, None
        node = node[key]
    return True, node


def _assign(data: Dict[str, Any], path: Tuple[str, ...], value: Any) -> None:
    node = data
    for key in path[:-1]:
        node = node.setdefault(key, {})
    node[path[-1]] = value


def filter_package(snapshot: Mapping[str, Any], contact: Contact) -> Dict[str, Any]:
    """Copy of ``snapshot`` holding only the fields ``contact`` may read."""
    package: Dict[str, Any] = {"timestamp": snapshot.get("timestamp", UNKNOWN)}
    for path, permission, levels in PACKAGE_RULES:
        if contact.access_level not in levels or not contact.permissions.allows(permission):
            continue
        found, value = _lookup(snapshot, path)
        if found:
            _assign(package, path, thaw(value))
    return package
