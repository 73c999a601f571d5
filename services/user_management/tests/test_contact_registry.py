"""
Unit tests for the emergency contact registry.

pytest services/user_management/tests/test_contact_registry.py -q
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from common.enums import AccessLevel, Permission
from common.errors import NotFound, ValidationError
from services.user_management.contacts import ContactRegistry

# Mark all tests as unit tests
pytestmark = pytest.mark.unit


class TestAddContact:
    def test_new_contact_defaults(self, registry, clock):
        contact = registry.add("Mom", "+353 800 000 111", "Mother")

        assert contact.id.startswith("ctc_")
        assert contact.verified is False
        assert contact.verified_at is None
        assert contact.access_level is AccessLevel.FULL
        assert contact.permissions.enabled() == set(Permission)
        assert contact.created_at == clock.now

        grant = registry.grant_for(contact.id)
        assert grant.granted is True
        assert grant.granted_at == clock.now

    @pytest.mark.parametrize(
        "name, phone",
        [("", "+353800"), ("  ", "+353800"), ("Mom", ""), ("Mom", "call me")],
    )
    def test_rejects_invalid_input(self, registry, name, phone):
        with pytest.raises(ValidationError):
            registry.add(name, phone)
        assert len(registry) == 0

    def test_ids_are_unique_and_never_reused(self, registry):
        first = registry.add("A", "+1 555 0100")
        registry.remove(first.id)
        second = registry.add("A", "+1 555 0100")
        assert second.id != first.id

    def test_contact_id_is_immutable(self, registry):
        contact = registry.add("A", "+1 555 0100")
        with pytest.raises(PydanticValidationError):
            contact.id = "ctc_other"

    def test_writes_audit_record(self, registry, audit):
        contact = registry.add("A", "+1 555 0100")
        records = audit.records("contact")
        assert records[-1]["contact_id"] == contact.id


class TestVerify:
    def test_verify_sets_timestamp(self, registry, clock):
        contact = registry.add("A", "+1 555 0100")
        registry.verify(contact.id)
        assert contact.verified is True
        assert contact.verified_at == clock.now

    def test_verify_is_idempotent(self, registry, clock):
        contact = registry.add("A", "+1 555 0100")
        registry.verify(contact.id)
        first_verified_at = contact.verified_at

        clock.advance(minutes=5)
        registry.verify(contact.id)

        assert contact.verified is True
        assert contact.verified_at == first_verified_at

    def test_verify_unknown_raises_not_found(self, registry):
        with pytest.raises(NotFound):
            registry.verify("ctc_missing")


class TestRemove:
    def test_remove_deletes_contact_and_grant(self, registry):
        contact = registry.add("A", "+1 555 0100")
        registry.remove(contact.id)

        assert contact.id not in registry
        with pytest.raises(NotFound):
            registry.grant_for(contact.id)

    def test_remove_absent_is_noop(self, registry):
        registry.add("A", "+1 555 0100")
        registry.remove("ctc_missing")
        assert len(registry) == 1


class TestPermissions:
    def test_partial_update_merges(self, registry):
        contact = registry.add("A", "+1 555 0100")
        registry.set_permissions(contact.id, {"medical_info": False})

        assert contact.permissions.medical_info is False
        assert contact.permissions.enabled() == set(Permission) - {Permission.MEDICAL_INFO}

    def test_accepts_enum_keys(self, registry):
        contact = registry.add("A", "+1 555 0100")
        registry.set_permissions(contact.id, {Permission.RECORDINGS: False})
        assert contact.permissions.recordings is False

    def test_unknown_permission_rejected_without_change(self, registry):
        contact = registry.add("A", "+1 555 0100")
        with pytest.raises(ValidationError):
            registry.set_permissions(contact.id, {"medical_info": False, "superpowers": True})
        assert contact.permissions.medical_info is True

    def test_non_boolean_value_rejected(self, registry):
        contact = registry.add("A", "+1 555 0100")
        with pytest.raises(ValidationError):
            registry.set_permissions(contact.id, {"recordings": "no"})

    def test_unknown_contact_raises_not_found(self, registry):
        with pytest.raises(NotFound):
            registry.set_permissions("ctc_missing", {"recordings": False})

    def test_set_access_level(self, registry):
        contact = registry.add("A", "+1 555 0100")
        registry.set_access_level(contact.id, "limited")
        assert contact.access_level is AccessLevel.LIMITED

        with pytest.raises(ValidationError):
            registry.set_access_level(contact.id, "everything")


class TestNotifiable:
    def test_only_verified_granted_alertable_contacts(self, registry, add_verified):
        mom = add_verified("Mom", "+353800000111")
        add_verified("Quiet", "+353800000222", emergency_alerts=False)
        registry.add("Unverified", "+353800000333")
        revoked = add_verified("Revoked", "+353800000444")
        registry.revoke(revoked.id)

        assert [c.id for c in registry.notifiable()] == [mom.id]

    def test_emergency_services_never_notified(self, registry, add_verified):
        add_verified("Emergency Services", "911")
        assert registry.notifiable() == []


class TestRevoke:
    def test_revoke_stamps_once_and_notifies_listeners(self, registry, clock, mocker):
        listener = mocker.Mock()
        registry.on_revoke(listener)
        contact = registry.add("A", "+1 555 0100")

        grant = registry.revoke(contact.id)
        revoked_at = grant.revoked_at
        clock.advance(seconds=30)
        registry.revoke(contact.id)

        assert grant.granted is False
        assert grant.revoked_at == revoked_at
        assert listener.call_count == 2
        listener.assert_called_with(contact.id)

    def test_revoke_unknown_raises_not_found(self, registry):
        with pytest.raises(NotFound):
            registry.revoke("ctc_missing")


class TestPersistence:
    def test_export_restore_round_trip(self, registry, add_verified, clock):
        mom = add_verified("Mom", "+353800000111", medical_info=False)
        registry.revoke(add_verified("B", "+353800000222").id)

        restored = ContactRegistry(clock)
        assert restored.restore(registry.export()) == 2
        assert restored.get(mom.id).permissions.medical_info is False
        assert [c.id for c in restored.notifiable()] == [mom.id]

    def test_restore_skips_malformed_records(self, registry, clock):
        contact = registry.add("A", "+1 555 0100")
        records = registry.export() + [{"contact": {"name": "broken"}}, {"oops": 1}]

        restored = ContactRegistry(clock)
        assert restored.restore(records) == 1
        assert contact.id in restored

    def test_restored_ids_are_not_reissued(self, registry, clock, mocker):
        contact = registry.add("A", "+1 555 0100")
        restored = ContactRegistry(clock)
        restored.restore(registry.export())

        hex_id = contact.id[len("ctc_"):]
        fake = mocker.patch("services.user_management.contacts.uuid.uuid4")
        fake.side_effect = [
            mocker.Mock(hex=hex_id + "0" * 20),
            mocker.Mock(hex="abcdefabcdef" + "0" * 20),
        ]

        assert restored.add("B", "+1 555 0101").id == "ctc_abcdefabcdef"
