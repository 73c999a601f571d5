# libs/audit_logger.py
from __future__ import annotations

import logging
from collections import deque
from datetime import datetime
from typing import Deque, List, Optional

from common.clock import Clock, utc_now
from common.constants import AUDIT_TRAIL_LIMIT

logger = logging.getLogger(__name__)

ALLOWED_EVENT_TYPES = {
    "emergency",
    "access",
    "contact",
    "timer",
    "notification",
}


def _normalize_event_type(event_type: str) -> str:
    et = (event_type or "").strip()
    if len(et) > 50:
        et = et[:50]
    return et


class AuditTrail:
    """
    Bounded in-memory audit trail of safety events.

    Every record is also emitted on the module logger, so a deployment can
    ship the trail with its normal log pipeline.
    """

    def __init__(self, clock: Clock = utc_now, limit: int = AUDIT_TRAIL_LIMIT) -> None:
        self._clock = clock
        self._records: Deque[dict] = deque(maxlen=limit)

    def write(
        self,
        event_type: str,
        message: str,
        *,
        contact_id: Optional[str] = None,
        event_id: Optional[str] = None,
    ) -> dict:
        """
        Write an audit record.

        Args:
            event_type: emergency / access / contact / timer / notification
            message: human-readable message
            contact_id: contact involved in the event (nullable)
            event_id: affected entity id (session id, contact id, ...)

        Returns:
            The stored record
        """
        et = _normalize_event_type(event_type)
        if et not in ALLOWED_EVENT_TYPES:
            logger.warning("Unknown audit event_type '%s', still logging.", et)

        msg = (message or "").strip() or "(no message)"
        created_at: datetime = self._clock()
        record = {
            "event_type": et,
            "contact_id": contact_id,
            "event_id": event_id,
            "message": msg,
            "created_at": created_at.isoformat(),
        }
        self._records.append(record)
        logger.info(
            "audit event_type=%s contact_id=%s event_id=%s message=%s",
            et,
            contact_id,
            event_id,
            msg,
        )
        return record

    def records(self, event_type: Optional[str] = None) -> List[dict]:
        if event_type is None:
            return list(self._records)
        return [r for r in self._records if r["event_type"] == event_type]

    def __len__(self) -> int:
        return len(self._records)
