from datetime import datetime
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from common.enums import ThreatLevel


class ThreatAssessment(BaseModel):
    """Derived low/medium/high classification; only the latest is retained."""

    model_config = ConfigDict(frozen=True)

    level: ThreatLevel = ThreatLevel.LOW
    confidence: float = Field(ge=0.0, le=1.0)
    suggestions: Tuple[str, ...] = ()
    assessed_at: Optional[datetime] = None
