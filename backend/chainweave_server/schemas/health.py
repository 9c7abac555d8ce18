from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class HealthStatus(str, Enum):
    OK = "ok"
    WARN = "warn"
    ERROR = "error"


class HealthComponent(BaseModel):
    status: HealthStatus = Field(..., description="Component health state")
    message: str = Field(..., description="Primary user-facing summary")
    details: Dict[str, Any] | None = Field(
        default=None, description="Additional metadata to help with troubleshooting"
    )
    latency_ms: float | None = Field(
        default=None, description="Check execution time in milliseconds"
    )


class SystemHealthSnapshot(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    status: HealthStatus = Field(..., description="Overall health derived from components")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="UTC timestamp when snapshot was generated",
    )
    database: HealthComponent
    chain: HealthComponent
    listener: HealthComponent
    backend_version: Optional[str] = Field(
        default=None,
        description="Backend package version string reported by the server",
    )
    db_alembic_head: Optional[str] = Field(
        default=None,
        description="Latest Alembic migration revision applied to the backend database",
    )
    parked_events: int = Field(
        default=0,
        description="Chain events waiting for their request to appear in the store",
    )
