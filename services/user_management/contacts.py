"""
Emergency contact registry.

Owns contacts, their verification state, per-contact permissions and the
matching access grants. Contact ids are generated here and never reused,
even after the contact is removed.
"""

import logging
import re
import uuid
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from common.clock import Clock, utc_now
from common.constants import EMERGENCY_SERVICES_NUMBER
from common.enums import AccessLevel, Permission
from common.errors import NotFound, ValidationError
from libs.audit_logger import AuditTrail
from models.contact import AccessGrant, Contact, ContactPermissions

logger = logging.getLogger(__name__)

RevocationListener = Callable[[str], Any]

_DIGIT = re.compile(r"\d")


def _normalize_phone(phone: str) -> str:
    return re.sub(r"[^\d+]", "", phone or "")


class ContactRegistry:
    def __init__(
        self,
        clock: Clock = utc_now,
        audit: Optional[AuditTrail] = None,
        emergency_number: str = EMERGENCY_SERVICES_NUMBER,
    ) -> None:
        self._clock = clock
        self._audit = audit
        self._emergency_number = emergency_number
        self._contacts: Dict[str, Contact] = {}
        self._grants: Dict[str, AccessGrant] = {}
        self._issued_ids: set = set()
        self._revocation_listeners: List[RevocationListener] = []

    # ========= Queries =========

    def get(self, contact_id: str) -> Contact:
        contact = self._contacts.get(contact_id)
        if contact is None:
            raise NotFound("Contact", contact_id)
        return contact

    def grant_for(self, contact_id: str) -> AccessGrant:
        grant = self._grants.get(contact_id)
        if grant is None:
            raise NotFound("AccessGrant", contact_id)
        return grant

    def list(self) -> List[Contact]:
        return list(self._contacts.values())

    def __contains__(self, contact_id: str) -> bool:
        return contact_id in self._contacts

    def __len__(self) -> int:
        return len(self._contacts)

    def is_emergency_services(self, contact: Contact) -> bool:
        return _normalize_phone(contact.phone) == _normalize_phone(self._emergency_number)

    def notifiable(self) -> List[Contact]:
        """Contacts that receive emergency messages and session links."""
        return [
            c
            for c in self._contacts.values()
            if c.verified
            and self._grants[c.id].granted
            and c.permissions.emergency_alerts
            and not self.is_emergency_services(c)
        ]

    # ========= Mutations =========

    def _new_id(self) -> str:
        while True:
            contact_id = f"ctc_{uuid.uuid4().hex[:12]}"
            if contact_id not in self._issued_ids:
                self._issued_ids.add(contact_id)
                return contact_id

    def add(self, name: str, phone: str, relation: Optional[str] = None) -> Contact:
        name = (name or "").strip()
        phone = (phone or "").strip()
        if not name:
            raise ValidationError("Contact name is required", details={"field": "name"})
        if not phone:
            raise ValidationError("Contact phone is required", details={"field": "phone"})
        if not _DIGIT.search(phone):
            raise ValidationError(
                "Contact phone must contain digits", details={"field": "phone", "value": phone}
            )

        now = self._clock()
        contact = Contact(
            id=self._new_id(),
            name=name,
            phone=phone,
            relation=relation,
            created_at=now,
        )
        self._contacts[contact.id] = contact
        self._grants[contact.id] = AccessGrant(contact_id=contact.id, granted=True, granted_at=now)
        self._write_audit(f"Contact {contact.name} added", contact.id)
        return contact

    def verify(self, contact_id: str) -> Contact:
        """Mark a contact verified; repeated calls keep the first timestamp."""
        contact = self.get(contact_id)
        if contact.verified:
            return contact

        contact.verified = True
        contact.verified_at = self._clock()
        self._write_audit(f"Contact {contact.name} verified", contact.id)
        return contact

    def remove(self, contact_id: str) -> None:
        """Delete a contact and its grant; a no-op for unknown ids."""
        contact = self._contacts.pop(contact_id, None)
        self._grants.pop(contact_id, None)
        if contact is not None:
            self._write_audit(f"Contact {contact.name} removed", contact_id)

    def set_permissions(self, contact_id: str, partial: Mapping[Any, bool]) -> Contact:
        """Merge ``partial`` into the contact's permission set."""
        contact = self.get(contact_id)

        update: Dict[str, bool] = {}
        for key, value in (partial or {}).items():
            try:
                permission = Permission(key)
            except ValueError:
                raise ValidationError(
                    f"Unknown permission '{key}'", details={"permission": str(key)}
                ) from None
            if not isinstance(value, bool):
                raise ValidationError(
                    f"Permission '{permission.value}' must be a boolean",
                    details={"permission": permission.value},
                )
            update[permission.value] = value

        try:
            merged = ContactPermissions.model_validate(
                {**contact.permissions.model_dump(), **update}
            )
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid permissions",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e

        contact.permissions = merged
        self._write_audit(f"Permissions updated: {sorted(update)}", contact_id)
        return contact

    def set_access_level(self, contact_id: str, level: AccessLevel) -> Contact:
        contact = self.get(contact_id)
        try:
            contact.access_level = AccessLevel(level)
        except ValueError:
            raise ValidationError(
                f"Unknown access level '{level}'", details={"access_level": str(level)}
            ) from None
        return contact

    def on_revoke(self, listener: RevocationListener) -> None:
        self._revocation_listeners.append(listener)

    def revoke(self, contact_id: str) -> AccessGrant:
        """Revoke a contact's access and deactivate sessions scoped to them."""
        self.get(contact_id)
        grant = self._grants[contact_id]
        if grant.granted:
            grant.granted = False
            grant.revoked_at = self._clock()
            self._write_audit("Access revoked", contact_id)

        for listener in self._revocation_listeners:
            listener(contact_id)
        return grant

    def record_access(self, contact_id: str) -> None:
        contact = self.get(contact_id)
        contact.last_access_at = self._clock()
        contact.total_accesses += 1

    # ========= Persistence =========

    def export(self) -> List[dict]:
        return [
            {
                "contact": contact.model_dump(mode="json"),
                "grant": self._grants[contact_id].model_dump(mode="json"),
            }
            for contact_id, contact in self._contacts.items()
        ]

    def restore(self, records: Iterable[Mapping[str, Any]]) -> int:
        """Load persisted contacts; malformed records are skipped."""
        self._contacts.clear()
        self._grants.clear()
        for record in records or []:
            try:
                contact = Contact.model_validate(record["contact"])
                grant = AccessGrant.model_validate(record["grant"])
            except (KeyError, TypeError, PydanticValidationError) as e:
                logger.warning("Skipping persisted contact record: %s", e)
                continue
            if grant.contact_id != contact.id:
                logger.warning("Skipping contact %s with mismatched grant", contact.id)
                continue
            self._contacts[contact.id] = contact
            self._grants[contact.id] = grant
            self._issued_ids.add(contact.id)
        return len(self._contacts)

    def _write_audit(self, message: str, contact_id: str) -> None:
        if self._audit is not None:
            self._audit.write("contact", message, contact_id=contact_id, event_id=contact_id)
