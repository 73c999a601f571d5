"""
Emergency session broker.

On any emergency trigger the broker snapshots current state into an
immutable data package, mints a time-boxed access session for the contacts
allowed to receive alerts, and hands the alert message to the notifier.

Session lifecycle:
- Sessions expire 24 hours after creation; expiry is checked lazily on
  every access, there is no background sweep
- Deactivation (explicit, or cascaded from a contact revocation) is
  irreversible
- Only the most recent MAX_SESSIONS sessions are retained
"""

import logging
import threading
import uuid
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from common.clock import Clock, utc_now
from common.constants import ACCESS_URL_BASE, MAX_SESSIONS, SESSION_TTL
from common.errors import Expired, NotFound
from libs.audit_logger import AuditTrail
from models.emergency import EmergencySession, TriggerResult
from services.notification.manager import NotificationManager
from services.notification.templates import build_alert_message
from services.sos.snapshot import SnapshotInputs, compose_snapshot, filter_package
from services.user_management.contacts import ContactRegistry

logger = logging.getLogger(__name__)


class SessionBroker:
    def __init__(
        self,
        contacts: ContactRegistry,
        clock: Clock = utc_now,
        access_url_base: str = ACCESS_URL_BASE,
        notifier: Optional[NotificationManager] = None,
        audit: Optional[AuditTrail] = None,
        max_sessions: int = MAX_SESSIONS,
        ttl_seconds: int = SESSION_TTL,
    ) -> None:
        self._contacts = contacts
        self._clock = clock
        self._access_url_base = access_url_base.rstrip("/")
        self._notifier = notifier
        self._audit = audit
        self._max_sessions = max_sessions
        self._ttl = timedelta(seconds=ttl_seconds)
        self._sessions: List[EmergencySession] = []
        # Serializes the check-and-increment in resolve()
        self._lock = threading.Lock()

    # ========= Queries =========

    def sessions(self) -> List[EmergencySession]:
        return list(self._sessions)

    def get(self, session_id: str) -> EmergencySession:
        for session in self._sessions:
            if session.id == session_id:
                return session
        raise NotFound("EmergencySession", session_id)

    def access_url(self, session_id: str) -> str:
        return f"{self._access_url_base}/{session_id}"

    # ========= Lifecycle =========

    def trigger(self, reason: str, inputs: Optional[SnapshotInputs] = None) -> TriggerResult:
        """
        Open an emergency session and alert the notifiable contacts.

        Never fails on data-composition errors: missing inputs become
        "unknown" placeholders in the snapshot.
        """
        now = self._clock()
        reason = (reason or "").strip() or "Emergency alert"
        audience = tuple(c.id for c in self._contacts.notifiable())

        session = EmergencySession(
            id=f"emg_{uuid.uuid4().hex}",
            reason=reason,
            created_at=now,
            expires_at=now + self._ttl,
            audience=audience,
            data_snapshot=compose_snapshot(inputs, now),
        )

        with self._lock:
            self._sessions.append(session)
            evicted = len(self._sessions) - self._max_sessions
            if evicted > 0:
                del self._sessions[:evicted]

        url = self.access_url(session.id)
        logger.warning(
            "Emergency session %s opened (%s) for %d contact(s)", session.id, reason, len(audience)
        )
        self._write_audit("emergency", f"Session opened: {reason}", event_id=session.id)

        notified = 0
        if self._notifier is not None:
            current = inputs.current_location if inputs else None
            try:
                message = build_alert_message(reason, current, url, now)
                notified = self._notifier.broadcast(self._contacts.notifiable(), message)
            except Exception:
                # The session stands even when no message could be composed
                logger.exception("Alert dispatch failed for session %s", session.id)
            self._write_audit(
                "notification", f"Alert handed over for {notified} contact(s)", event_id=session.id
            )

        return TriggerResult(session=session, access_url=url, notified=notified)

    def resolve(self, session_id: str, requester_contact_id: str) -> Dict[str, Any]:
        """
        Return the session package filtered for the requesting contact.

        Raises:
            NotFound: unknown session, unknown contact, or a contact outside
                the session audience
            Expired: session past its TTL, deactivated, or the requester's
                access grant has been revoked
        """
        with self._lock:
            session = self.get(session_id)
            now = self._clock()
            if not session.is_resolvable(now):
                self._write_audit(
                    "access",
                    "Rejected access to expired or inactive session",
                    contact_id=requester_contact_id,
                    event_id=session_id,
                )
                raise Expired(
                    f"Emergency session {session_id} is no longer available",
                    details={"active": session.active, "expires_at": session.expires_at.isoformat()},
                )

            contact = self._contacts.get(requester_contact_id)
            if not self._contacts.grant_for(contact.id).granted:
                raise Expired(
                    f"Access for contact {contact.id} has been revoked",
                    details={"contact_id": contact.id},
                )
            if contact.id not in session.audience:
                raise NotFound("EmergencySession", session_id)

            package = filter_package(session.data_snapshot, contact)
            session.access_count += 1
            session.last_accessed_at = now
            self._contacts.record_access(contact.id)

        self._write_audit(
            "access",
            f"Session resolved (access #{session.access_count})",
            contact_id=contact.id,
            event_id=session_id,
        )
        return package

    def deactivate(self, session_id: str) -> EmergencySession:
        with self._lock:
            session = self.get(session_id)
            if session.active:
                session.active = False
                self._write_audit("emergency", "Session deactivated", event_id=session_id)
        return session

    def deactivate_all_for(self, contact_id: str) -> int:
        """Deactivate every active session whose audience includes the contact."""
        count = 0
        with self._lock:
            for session in self._sessions:
                if session.active and contact_id in session.audience:
                    session.active = False
                    count += 1
        if count:
            logger.info("Deactivated %d session(s) for revoked contact %s", count, contact_id)
            self._write_audit(
                "emergency",
                f"Deactivated {count} session(s) after revocation",
                contact_id=contact_id,
            )
        return count

    # ========= Persistence =========

    def export(self) -> List[dict]:
        return [s.model_dump(mode="json") for s in self._sessions]

    def restore(self, records: Iterable[Mapping[str, Any]]) -> int:
        """Load persisted sessions; malformed records are skipped."""
        sessions: List[EmergencySession] = []
        for record in records or []:
            try:
                sessions.append(EmergencySession.model_validate(record))
            except (TypeError, PydanticValidationError) as e:
                logger.warning("Skipping persisted session record: %s", e)
        sessions.sort(key=lambda s: s.created_at)
        with self._lock:
            self._sessions = sessions[-self._max_sessions:]
        return len(self._sessions)

    def _write_audit(
        self,
        event_type: str,
        message: str,
        contact_id: Optional[str] = None,
        event_id: Optional[str] = None,
    ) -> None:
        if self._audit is not None:
            self._audit.write(event_type, message, contact_id=contact_id, event_id=event_id)
