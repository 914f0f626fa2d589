from __future__ import annotations

from pydantic import BaseModel, Field


class HealthReport(BaseModel):
    status: str = Field("healthy", description="Liveness classification")


class VersionReport(BaseModel):
    app: str = Field(..., description="Application pool name, e.g. blue or green")
    release: str = Field(..., description="Opaque release identifier")
    timestamp: str = Field(..., description="UTC response time, ISO-8601 with milliseconds")


class ChaosStarted(BaseModel):
    status: str = "chaos started"
    mode: str


class ChaosStopped(BaseModel):
    status: str = "chaos stopped"


class ErrorReport(BaseModel):
    error: str
