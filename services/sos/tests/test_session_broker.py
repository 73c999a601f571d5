"""
Unit tests for emergency sessions: trigger, resolve, expiry and revocation.

pytest services/sos/tests/test_session_broker.py -q
"""

import threading

import pytest
from pydantic import ValidationError as PydanticValidationError

from common.constants import MAX_SESSIONS, SESSION_TTL, UNKNOWN
from common.errors import Expired, NotFound
from models.emergency import MedicalProfile
from services.notification.manager import NotificationManager
from services.notification.senders import LoggingSender
from services.sos.broker import SessionBroker
from services.sos.snapshot import SnapshotInputs

# Mark all tests as unit tests
pytestmark = pytest.mark.unit

ACCESS_BASE = "https://safeguard.test/emergency"


@pytest.fixture
def outbox_sender():
    return LoggingSender()


@pytest.fixture
def broker(registry, clock, audit, outbox_sender):
    b = SessionBroker(
        registry,
        clock=clock,
        access_url_base=ACCESS_BASE,
        notifier=NotificationManager(outbox_sender),
        audit=audit,
    )
    registry.on_revoke(b.deactivate_all_for)
    return b


@pytest.fixture
def inputs(make_sample, registry):
    return SnapshotInputs(
        current_location=make_sample(0),
        history=[make_sample(0)],
        contacts=registry.list(),
        profile=MedicalProfile(medical_info="Asthma", blood_type="A-"),
    )


class TestTrigger:
    def test_trigger_opens_session(self, broker, add_verified, clock, inputs):
        mom = add_verified()

        result = broker.trigger("Test emergency", inputs)

        session = result.session
        assert session.id.startswith("emg_")
        assert session.active is True
        assert session.access_count == 0
        assert session.created_at == clock.now
        assert (session.expires_at - session.created_at).total_seconds() == SESSION_TTL
        assert session.audience == (mom.id,)
        assert result.access_url == f"{ACCESS_BASE}/{session.id}"
        assert broker.get(session.id) is session

    def test_trigger_notifies_only_notifiable_contacts(
        self, broker, registry, add_verified, outbox_sender, inputs
    ):
        mom = add_verified("Mom", "+353800000111")
        registry.add("Unverified", "+353800000222")
        add_verified("Emergency Services", "911")

        result = broker.trigger("Test emergency", inputs)

        assert result.notified == 1
        assert [phone for phone, _ in outbox_sender.outbox] == [mom.phone]
        message = outbox_sender.outbox[0][1]
        assert "Test emergency" in message
        assert result.access_url in message

    def test_trigger_with_no_inputs_uses_placeholders(self, broker):
        session = broker.trigger("Nothing known", None).session
        assert session.data_snapshot["location"]["current"] == UNKNOWN
        assert session.data_snapshot["device"]["battery"] == UNKNOWN

    def test_sender_failure_does_not_fail_trigger(self, broker, add_verified, outbox_sender, mocker):
        add_verified()
        mocker.patch.object(outbox_sender, "send", side_effect=RuntimeError("network down"))

        result = broker.trigger("Test emergency", None)

        assert result.notified == 0
        assert result.session.active is True

    def test_only_most_recent_sessions_retained(self, broker, clock):
        ids = []
        for i in range(MAX_SESSIONS + 2):
            ids.append(broker.trigger(f"alert {i}").session.id)
            clock.advance(seconds=1)

        sessions = broker.sessions()
        assert len(sessions) == MAX_SESSIONS
        assert [s.id for s in sessions] == ids[2:]
        with pytest.raises(NotFound):
            broker.get(ids[0])

    def test_session_fields_are_immutable(self, broker):
        session = broker.trigger("alert").session
        with pytest.raises(PydanticValidationError):
            session.reason = "changed"

    def test_snapshot_contents_are_read_only(self, broker, inputs):
        session = broker.trigger("Test emergency", inputs).session
        snapshot = broker.get(session.id).data_snapshot

        with pytest.raises(TypeError):
            snapshot["timestamp"] = "changed"
        with pytest.raises(TypeError):
            snapshot["location"]["current"]["lat"] = 0.0
        with pytest.raises(AttributeError):
            snapshot["location"]["history"].append({"lat": 0.0})

    def test_session_dump_is_plain_json(self, broker, inputs):
        session = broker.trigger("Test emergency", inputs).session
        dumped = session.model_dump(mode="json")["data_snapshot"]

        assert isinstance(dumped["location"], dict)
        assert isinstance(dumped["location"]["history"], list)


class TestResolve:
    def test_mom_scenario_medical_info_omitted(self, broker, registry, add_verified, inputs):
        mom = add_verified("Mom", "+353800000111", medical_info=False)
        session = broker.trigger("Test emergency", inputs).session

        package = broker.resolve(session.id, mom.id)

        assert package["location"]["current"]["lat"] == pytest.approx(53.3438)
        assert "medical_info" not in package["profile"]
        assert "blood_type" not in package["profile"]
        assert broker.get(session.id).access_count == 1
        assert registry.get(mom.id).total_accesses == 1

    def test_mutating_a_package_does_not_change_the_session(self, broker, add_verified, inputs):
        mom = add_verified()
        session = broker.trigger("Test emergency", inputs).session

        first = broker.resolve(session.id, mom.id)
        first["location"]["current"]["lat"] = 0.0
        first["location"]["history"].clear()

        second = broker.resolve(session.id, mom.id)
        assert second["location"]["current"]["lat"] == pytest.approx(53.3438)
        assert len(second["location"]["history"]) == 1

    def test_each_resolve_increments_access_count(self, broker, add_verified, clock):
        mom = add_verified()
        session = broker.trigger("alert").session

        for expected in range(1, 4):
            clock.advance(seconds=10)
            broker.resolve(session.id, mom.id)
            assert session.access_count == expected
            assert session.last_accessed_at == clock.now

    def test_expired_session_rejected_without_increment(self, broker, add_verified, clock):
        mom = add_verified()
        session = broker.trigger("alert").session

        clock.advance(seconds=SESSION_TTL - 1)
        broker.resolve(session.id, mom.id)

        clock.advance(seconds=2)
        with pytest.raises(Expired):
            broker.resolve(session.id, mom.id)
        assert session.access_count == 1

    def test_expiry_is_exact(self, broker, add_verified, clock):
        mom = add_verified()
        session = broker.trigger("alert").session

        clock.advance(seconds=SESSION_TTL)
        with pytest.raises(Expired):
            broker.resolve(session.id, mom.id)

    def test_unknown_session_or_contact_not_found(self, broker, add_verified):
        mom = add_verified()
        session = broker.trigger("alert").session

        with pytest.raises(NotFound):
            broker.resolve("emg_missing", mom.id)
        with pytest.raises(NotFound):
            broker.resolve(session.id, "ctc_missing")

    def test_contact_outside_audience_not_found(self, broker, registry, add_verified):
        add_verified()
        session = broker.trigger("alert").session
        late = add_verified("Late", "+353800000999")

        with pytest.raises(NotFound):
            broker.resolve(session.id, late.id)
        assert session.access_count == 0

    def test_deactivated_session_expired(self, broker, add_verified):
        mom = add_verified()
        session = broker.trigger("alert").session

        broker.deactivate(session.id)
        broker.deactivate(session.id)

        assert session.active is False
        with pytest.raises(Expired):
            broker.resolve(session.id, mom.id)

    def test_rejected_access_is_audited(self, broker, add_verified, audit, clock):
        mom = add_verified()
        session = broker.trigger("alert").session
        clock.advance(seconds=SESSION_TTL + 1)

        with pytest.raises(Expired):
            broker.resolve(session.id, mom.id)

        access = audit.records("access")
        assert access[-1]["event_id"] == session.id
        assert access[-1]["contact_id"] == mom.id

    def test_concurrent_resolves_count_every_access(self, broker, add_verified):
        mom = add_verified()
        session = broker.trigger("alert").session

        def worker():
            for _ in range(25):
                broker.resolve(session.id, mom.id)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert session.access_count == 200


class TestRevocationCascade:
    def test_revoke_deactivates_sessions_for_contact(self, broker, registry, add_verified):
        mom = add_verified("Mom", "+353800000111")
        dad = add_verified("Dad", "+353800000222")
        first = broker.trigger("first").session
        second = broker.trigger("second").session

        registry.revoke(mom.id)

        assert first.active is False
        assert second.active is False
        with pytest.raises(Expired):
            broker.resolve(first.id, mom.id)
        with pytest.raises(Expired):
            broker.resolve(first.id, dad.id)

    def test_revoke_leaves_unrelated_sessions_active(self, broker, registry, add_verified):
        mom = add_verified("Mom", "+353800000111")
        before = broker.trigger("before mom").session
        registry.revoke(mom.id)

        dad = add_verified("Dad", "+353800000222")
        after = broker.trigger("after").session

        assert before.active is False
        assert after.active is True
        assert broker.resolve(after.id, dad.id)["timestamp"]

    def test_deactivate_all_for_returns_count(self, broker, add_verified):
        mom = add_verified()
        broker.trigger("a")
        broker.trigger("b")
        assert broker.deactivate_all_for(mom.id) == 2
        assert broker.deactivate_all_for(mom.id) == 0


class TestPersistence:
    def test_export_restore(self, broker, registry, add_verified, clock, audit):
        mom = add_verified()
        session = broker.trigger("alert").session
        broker.resolve(session.id, mom.id)

        restored = SessionBroker(registry, clock=clock, access_url_base=ACCESS_BASE)
        assert restored.restore(broker.export()) == 1

        copy = restored.get(session.id)
        assert copy.access_count == 1
        assert copy.audience == (mom.id,)
        assert restored.resolve(session.id, mom.id) == broker.resolve(session.id, mom.id)

    def test_restore_skips_malformed(self, broker, registry, clock):
        broker.trigger("alert")
        restored = SessionBroker(registry, clock=clock)
        assert restored.restore(broker.export() + [{"id": "emg_bad"}]) == 1
