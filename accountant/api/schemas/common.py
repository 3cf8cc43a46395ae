"""
Common Pydantic schemas for API responses.
"""

from datetime import datetime, timezone
from typing import Dict

from pydantic import BaseModel, Field


SUCCESS_MARKER = "✅"
FAILURE_MARKER = "❌"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthCheckResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    timestamp: datetime = Field(default_factory=_utcnow)
    version: str = "0.1.0"
    services: Dict[str, str] = Field(default_factory=dict)
