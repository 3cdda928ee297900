"""
Catalog Backend — Regional Request/Response Schemas
===================================================

What:  Pydantic models for the regional API contract and the upstream payload.
Why:   Strict validation of what the upstream sends, and a stable JSON shape
       for what the backend returns, independent of the ORM model.

Contracts:
    ExternalRegionalPayload  ← one element of the upstream JSON array
    RegionalResponse         → GET /api/v1/regionais, GET /api/v1/regionais/all
    SyncSummary              → POST /api/v1/regionais/sync (and every reconciliation)
    HealthResponse           → GET /health
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr

from catalog_api.models.regional import NAME_MAX_LENGTH


# ══════════════════════════════════════════════════════════════════════════
# Upstream Payload: what the external endpoint sends
# ══════════════════════════════════════════════════════════════════════════


class ExternalRegionalPayload(BaseModel):
    """
    One regional as published upstream: {"id": 1, "nome": "Sul", ...}.

    Why strict types:
        "1", 1.0 and true would all coerce to an int in lax mode. A key that
        is not a real integer means the contract changed; the snapshot is
        rejected instead of guessing.
    Unknown fields are ignored (pydantic's default `extra="ignore"`).
    """

    id: StrictInt
    nome: StrictStr = Field(max_length=NAME_MAX_LENGTH)


# ══════════════════════════════════════════════════════════════════════════
# Response Models: what the API returns to clients
# ══════════════════════════════════════════════════════════════════════════


class RegionalResponse(BaseModel):
    """Full representation of one regional row (active or historical)."""

    id: int = Field(description="Local surrogate key")
    external_id: int = Field(description="Identifier in the upstream system")
    name: str = Field(description="Regional name")
    active: bool = Field(description="Whether this is the effective version")
    created_at: datetime = Field(description="When this version was inserted (UTC)")
    updated_at: datetime = Field(description="Last mutation of this row (UTC)")

    model_config = ConfigDict(from_attributes=True)


class SyncOutcome(str, Enum):
    """Machine-readable tag of how a reconciliation ended."""

    COMPLETED = "completed"
    EMPTY_SNAPSHOT = "empty_snapshot"
    TRANSPORT_FAILURE = "transport_failure"
    DECODE_FAILURE = "decode_failure"
    BUSY = "busy"
    APPLY_FAILURE = "apply_failure"


class SyncSummary(BaseModel):
    """
    Result of one reconciliation, successful or not.

    Failures are data: every safety stop and error is reported here with
    zeroed counters and a descriptive message, and the HTTP status stays 200.
    A Replace (rename) counts once, under `updated`.
    """

    inserted: int = Field(default=0, ge=0, description="New active rows for new upstream keys")
    inactivated: int = Field(default=0, ge=0, description="Rows inactivated because their key disappeared")
    updated: int = Field(default=0, ge=0, description="Renames recorded as inactivate + insert")
    message: str = Field(description="Human-readable outcome")
    outcome: SyncOutcome = Field(
        default=SyncOutcome.COMPLETED,
        description="Machine-readable outcome tag",
    )

    @property
    def succeeded(self) -> bool:
        return self.outcome is SyncOutcome.COMPLETED

    @classmethod
    def failure(cls, outcome: SyncOutcome, message: str) -> "SyncSummary":
        return cls(outcome=outcome, message=message)


# ══════════════════════════════════════════════════════════════════════════
# Error & Health Models
# ══════════════════════════════════════════════════════════════════════════


class ErrorResponse(BaseModel):
    """Standardized error body produced by the global exception handlers."""

    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class SyncStatus(BaseModel):
    """Snapshot of the reconciliation scheduler, reported by the health check."""

    scheduler: str = Field(description="running, stopped or disabled")
    in_progress: bool = Field(description="Whether a reconciliation is running now")
    last_outcome: Optional[SyncOutcome] = Field(default=None)
    last_message: Optional[str] = Field(default=None)
    last_finished_at: Optional[datetime] = Field(default=None)


class HealthResponse(BaseModel):
    """Health check response showing service and dependency status."""

    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    sync: SyncStatus = Field(description="Regional reconciliation status")
    uptime_seconds: float = Field(description="Seconds since service started")
