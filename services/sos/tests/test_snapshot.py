"""
Unit tests for emergency snapshot composition and permission filtering.

pytest services/sos/tests/test_snapshot.py -q
"""

from datetime import datetime, timezone

import pytest

from common.constants import SNAPSHOT_HISTORY_LIMIT, UNKNOWN
from common.enums import AccessLevel
from libs.config import SafetySettings
from models.contact import Contact
from models.emergency import DeviceStatus, MedicalProfile, RecordingMeta
from models.location import NO_FIX
from models.threat import ThreatAssessment
from services.sos.snapshot import SnapshotInputs, compose_snapshot, filter_package

# Mark all tests as unit tests
pytestmark = pytest.mark.unit

NOW = datetime(2024, 5, 1, 14, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def full_inputs(make_sample):
    history = [make_sample(-i) for i in range(30)]
    contact = Contact(id="ctc_1", name="Mom", phone="+353800000111", relation="Mother", created_at=NOW)
    return SnapshotInputs(
        current_location=history[0],
        history=history,
        device=DeviceStatus(battery_percent=64, online=True, last_seen=NOW),
        contacts=[contact],
        recordings=[RecordingMeta(id="rec_1", type="audio", timestamp=NOW, size_bytes=2048)],
        profile=MedicalProfile(blood_type="O+", allergies=["penicillin"]),
        settings=SafetySettings(),
        threat=ThreatAssessment(confidence=0.7),
    )


@pytest.fixture
def snapshot(full_inputs):
    return compose_snapshot(full_inputs, NOW)


def _contact(**kwargs):
    return Contact(id="ctc_x", name="X", phone="+1 555 0100", created_at=NOW, **kwargs)


class TestComposeSnapshot:
    def test_full_snapshot_shape(self, snapshot):
        assert snapshot["timestamp"] == NOW.isoformat()
        assert snapshot["location"]["current"]["lat"] == pytest.approx(53.3438)
        assert snapshot["location"]["accuracy"] == 10.0
        assert len(snapshot["location"]["history"]) == SNAPSHOT_HISTORY_LIMIT
        assert snapshot["device"] == {"battery": 64, "online": True, "last_seen": NOW.isoformat()}
        assert snapshot["recordings"][0]["id"] == "rec_1"
        assert snapshot["contacts"] == [
            {"id": "ctc_1", "name": "Mom", "phone": "+353800000111", "relation": "Mother", "verified": False}
        ]
        assert snapshot["profile"]["blood_type"] == "O+"
        assert snapshot["profile"]["allergies"] == ["penicillin"]
        assert snapshot["profile"]["medical_info"] == UNKNOWN
        assert snapshot["profile"]["settings"]["auto_record"] is True
        assert snapshot["threat"]["level"] == "low"

    def test_missing_inputs_become_placeholders(self):
        snapshot = compose_snapshot(None, NOW)

        assert snapshot["location"] == {"current": UNKNOWN, "history": UNKNOWN, "accuracy": UNKNOWN}
        assert snapshot["device"] == {"battery": UNKNOWN, "online": UNKNOWN, "last_seen": UNKNOWN}
        assert snapshot["recordings"] == UNKNOWN
        assert snapshot["contacts"] == UNKNOWN
        assert snapshot["profile"]["settings"] == UNKNOWN
        assert snapshot["profile"]["blood_type"] == UNKNOWN
        assert snapshot["threat"] == UNKNOWN

    def test_no_fix_is_unknown_location(self):
        snapshot = compose_snapshot(SnapshotInputs(current_location=NO_FIX, history=[]), NOW)
        assert snapshot["location"]["current"] == UNKNOWN
        assert snapshot["location"]["accuracy"] == UNKNOWN
        assert snapshot["location"]["history"] == []

    def test_broken_sections_never_raise(self):
        inputs = SnapshotInputs(
            current_location={"lat": "north"},
            history=42,
            device="charging",
            contacts=[{"name": "no id"}],
            recordings=[object()],
            profile=["not", "a", "profile"],
            settings=7,
            threat={"level": "catastrophic"},
        )

        snapshot = compose_snapshot(inputs, NOW)

        assert snapshot["location"]["current"] == UNKNOWN
        assert snapshot["location"]["history"] == UNKNOWN
        assert snapshot["device"] == UNKNOWN
        assert snapshot["contacts"] == []
        assert snapshot["recordings"] == []
        assert snapshot["profile"]["medical_info"] == UNKNOWN
        assert snapshot["profile"]["settings"] == UNKNOWN
        assert snapshot["threat"] == UNKNOWN


class TestFilterPackage:
    def test_full_access_sees_everything(self, snapshot):
        package = filter_package(snapshot, _contact())
        assert package == snapshot

    def test_denied_permission_omits_fields(self, snapshot):
        contact = _contact()
        contact.permissions.medical_info = False

        package = filter_package(snapshot, contact)

        for name in ("medical_info", "blood_type", "allergies", "medications", "notes"):
            assert name not in package["profile"]
        assert package["profile"]["settings"] == snapshot["profile"]["settings"]
        assert package["location"] == snapshot["location"]

    def test_no_realtime_location_hides_current_position(self, snapshot):
        contact = _contact()
        contact.permissions.realtime_location = False

        package = filter_package(snapshot, contact)

        assert "current" not in package["location"]
        assert "accuracy" not in package["location"]
        assert "history" in package["location"]
        assert "threat" not in package

    def test_limited_access_drops_history_and_recordings(self, snapshot):
        package = filter_package(snapshot, _contact(access_level=AccessLevel.LIMITED))

        assert "history" not in package["location"]
        assert "recordings" not in package
        assert "device" in package

    def test_emergency_only_keeps_core_fields(self, snapshot):
        package = filter_package(snapshot, _contact(access_level=AccessLevel.EMERGENCY_ONLY))

        assert set(package) == {"timestamp", "location", "threat"}
        assert set(package["location"]) == {"current", "accuracy"}

    def test_filtering_does_not_mutate_snapshot(self, snapshot):
        package = filter_package(snapshot, _contact())
        package["location"]["current"]["lat"] = 0.0
        assert snapshot["location"]["current"]["lat"] != 0.0
