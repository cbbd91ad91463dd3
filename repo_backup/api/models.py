"""Pydantic models for API responses."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ErrorResponse(BaseModel):
    detail: str
    error: str
    stage: Optional[str] = None
    report: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class HealthStatus(BaseModel):
    status: str  # "healthy", "unhealthy"
    backup_dir: str
    writable: bool
    in_flight: int
    available: int
    max_connections: int
    timestamp: datetime = Field(default_factory=_utcnow)
