from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from common.enums import AccessLevel, Permission


class ContactPermissions(BaseModel):
    """Per-contact data access flags; all enabled for a new contact."""

    realtime_location: bool = True
    location_history: bool = True
    recordings: bool = True
    medical_info: bool = True
    device_status: bool = True
    emergency_alerts: bool = True

    def allows(self, permission: Permission) -> bool:
        return bool(getattr(self, permission.value))

    def enabled(self) -> set:
        return {p for p in Permission if self.allows(p)}


class Contact(BaseModel):
    id: str = Field(frozen=True)
    name: str
    phone: str
    relation: Optional[str] = None
    verified: bool = False
    verified_at: Optional[datetime] = None
    access_level: AccessLevel = AccessLevel.FULL
    permissions: ContactPermissions = Field(default_factory=ContactPermissions)
    created_at: datetime
    last_access_at: Optional[datetime] = None
    total_accesses: int = 0


class AccessGrant(BaseModel):
    contact_id: str = Field(frozen=True)
    granted: bool = True
    granted_at: datetime
    revoked_at: Optional[datetime] = None
