"""
Configuration module for loading environment variables and user settings
"""

import os
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from common.constants import ACCESS_URL_BASE

# Load environment variables from .env file
load_dotenv()


class Config:
    """Application configuration"""

    # Where resolve links point; the session id is appended
    ACCESS_URL_BASE: str = ACCESS_URL_BASE

    # Storage backend: "memory" or "redis"
    STORAGE_BACKEND: str = os.getenv("SAFEGUARD_STORAGE_BACKEND", "memory")

    # Notification sender: "log" or "sms"
    NOTIFICATION_SENDER: str = os.getenv("NOTIFICATION_SENDER", "log")

    # Twilio Configuration
    TWILIO_ACCOUNT_SID: Optional[str] = os.getenv("TWILIO_ACCOUNT_SID")
    TWILIO_AUTH_TOKEN: Optional[str] = os.getenv("TWILIO_AUTH_TOKEN")
    TWILIO_PHONE_NUMBER: Optional[str] = os.getenv("TWILIO_PHONE_NUMBER")
    TWILIO_SEND_WORKERS: int = int(os.getenv("TWILIO_SEND_WORKERS", "4"))

    @classmethod
    def validate_twilio_config(cls) -> bool:
        """Check if Twilio configuration is complete"""
        return all(
            [cls.TWILIO_ACCOUNT_SID, cls.TWILIO_AUTH_TOKEN, cls.TWILIO_PHONE_NUMBER]
        )


config = Config()


class SafetySettings(BaseModel):
    """
    User-facing configuration surface.

    Persisted under the ``settings`` key; a missing record means defaults.
    """

    model_config = ConfigDict(extra="ignore")

    auto_start_tracking: bool = False
    silent_mode: bool = True
    background_location: bool = True
    # Gates ThreatAnalyzer invocation
    ai_monitoring: bool = True
    # Gates automatic recording start on trigger
    auto_record: bool = True
    # Default safety timer duration
    emergency_timeout_seconds: int = Field(default=1800, gt=0)
    # IANA zone used to judge the hour of day for threat scoring
    timezone: str = "UTC"

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value

    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)
