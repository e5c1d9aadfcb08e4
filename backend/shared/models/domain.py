"""
Pydantic v2 domain models shared across the reconciliation services.
These are the canonical wire/internal representations, not ORM models.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.models.enums import (
    DetectionOperation,
    MatchStatus,
    ProviderName,
    ResolutionPath,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ── Provider identity ───────────────────────────────────────────────────
class ProviderRef(DomainModel):
    """One (provider, providerEventId) pair contributing to a canonical match."""
    model_config = ConfigDict(frozen=True)

    provider: ProviderName
    event_id: str


# ── Normalized provider match (transient) ───────────────────────────────
class NormalizedProviderMatch(DomainModel):
    """Common shape every provider payload is normalized into at the boundary."""
    provider: ProviderName
    provider_event_id: str
    home_team: str
    away_team: str
    home_team_provider_id: Optional[str] = None
    away_team_provider_id: Optional[str] = None
    league_id: Optional[int] = None
    league_name: str = ""
    sport_id: int
    start_time: Optional[datetime] = None
    is_live: bool = False
    cancelled: bool = False
    home_score: int = 0
    away_score: int = 0
    clock: Optional[str] = None
    period: Optional[str] = None
    has_open_markets: bool = False
    last_updated: datetime = Field(default_factory=utcnow)

    @property
    def ref(self) -> ProviderRef:
        return ProviderRef(provider=self.provider, event_id=self.provider_event_id)


# ── Canonical match ─────────────────────────────────────────────────────
class CanonicalMatch(DomainModel):
    """The reconciled truth for one real-world event."""
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    identity_key: str
    providers: list[ProviderRef] = Field(default_factory=list)
    sport_id: int
    league_id: Optional[int] = None
    league_name: str = ""
    home_team_id: Optional[uuid.UUID] = None
    away_team_id: Optional[uuid.UUID] = None
    home_team_name: str
    away_team_name: str
    # Provider whose raw names were adopted for display; team resolution uses it.
    name_provider: Optional[ProviderName] = None
    home_team_provider_id: Optional[str] = None
    away_team_provider_id: Optional[str] = None
    scheduled_time: Optional[datetime] = None
    status: MatchStatus = MatchStatus.SCHEDULED
    status_reason: Optional[str] = None
    home_score: int = 0
    away_score: int = 0
    clock: Optional[str] = None
    period: Optional[str] = None
    has_open_markets: bool = False
    live_signal: bool = False
    live_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    cancelled: bool = False
    last_updated: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return not self.status.is_terminal

    def event_ids_for(self, provider: ProviderName) -> list[str]:
        return [ref.event_id for ref in self.providers if ref.provider == provider]


# ── Teams ───────────────────────────────────────────────────────────────
class TeamEntity(DomainModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    sport_id: int
    league_id: Optional[int] = None
    name: str
    normalized_name: str = ""
    mapping_confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class ProviderTeamMapping(DomainModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    team_id: uuid.UUID
    provider_name: ProviderName
    provider_team_id: Optional[str] = None
    provider_team_name: str
    normalized_name: str = ""
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    is_primary: bool = False


class TeamResolution(DomainModel):
    team_id: uuid.UUID
    confidence: float = Field(ge=0.0, le=1.0)
    created: bool = False
    path: ResolutionPath


# ── Cache reads ─────────────────────────────────────────────────────────
class CacheRead(DomainModel):
    matches: list[CanonicalMatch] = Field(default_factory=list)
    stale: bool = False
    key: Optional[str] = None


# ── Batch outcome ───────────────────────────────────────────────────────
class BatchOutcome(DomainModel):
    """Accumulating record of what a reconciliation pass did."""
    normalized: int = 0
    skipped: int = 0
    provider_errors: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    errored: int = 0
    transitions_rejected: int = 0
    overrides: int = 0
    chunks_processed: int = 0
    chunks_skipped: int = 0
    enrichment_skipped: int = 0

    def merge(self, other: "BatchOutcome") -> "BatchOutcome":
        return BatchOutcome(**{
            name: getattr(self, name) + getattr(other, name)
            for name in BatchOutcome.model_fields
        })


# ── Finished-match detection ────────────────────────────────────────────
class LayerResult(DomainModel):
    layer: DetectionOperation
    checked: int = 0
    retired: int = 0
    soft_finished: int = 0
    cancelled: int = 0
    skipped: bool = False
    failed: bool = False

    @property
    def total(self) -> int:
        return self.retired + self.soft_finished + self.cancelled


class DetectionReport(DomainModel):
    operation: DetectionOperation
    sport_id: int
    aggressive: bool = False
    layers: list[LayerResult] = Field(default_factory=list)

    @property
    def total_retired(self) -> int:
        return sum(layer.total for layer in self.layers)
