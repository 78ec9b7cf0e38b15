from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str


class ReadyResponse(BaseModel):
    status: str
    checks: dict[str, str] = Field(default_factory=dict)


class StatusResponse(BaseModel):
    status: str
    environment: str
    version: str | None = None
    uptime_seconds: float | None = None
