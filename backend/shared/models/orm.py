"""
SQLAlchemy 2.0 ORM models for the reconciliation store.
Canonical matches, teams and provider team mappings, plus the sport/league reference tables.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class SportORM(Base):
    __tablename__ = "sports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    leagues: Mapped[list["LeagueORM"]] = relationship(back_populates="sport")


class LeagueORM(Base):
    __tablename__ = "leagues"
    __table_args__ = (
        CheckConstraint("coverage_tier IN ('major', 'minor')", name="chk_coverage_tier"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sport_id: Mapped[int] = mapped_column(Integer, ForeignKey("sports.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    coverage_tier: Mapped[str] = mapped_column(String(10), nullable=False, default="minor")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    sport: Mapped["SportORM"] = relationship(back_populates="leagues")


class TeamORM(Base):
    __tablename__ = "teams"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    sport_id: Mapped[int] = mapped_column(Integer, ForeignKey("sports.id"), nullable=False, index=True)
    league_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("leagues.id"), index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    normalized_name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    mapping_confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    mappings: Mapped[list["TeamProviderMappingORM"]] = relationship(back_populates="team")


class TeamProviderMappingORM(Base):
    __tablename__ = "team_provider_mappings"
    __table_args__ = (
        UniqueConstraint("provider_name", "provider_team_id", name="uq_mapping_provider_team_id"),
        Index("ix_mapping_provider_name", "provider_name", "provider_team_name"),
        Index("ix_mapping_normalized", "provider_name", "normalized_name"),
        # At most one primary mapping per (team, provider)
        Index(
            "uq_mapping_primary",
            "team_id",
            "provider_name",
            unique=True,
            postgresql_where=text("is_primary"),
        ),
        CheckConstraint("confidence_score >= 0 AND confidence_score <= 1", name="chk_confidence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    team_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("teams.id"), nullable=False)
    provider_name: Mapped[str] = mapped_column(String(50), nullable=False)
    provider_team_id: Mapped[Optional[str]] = mapped_column(String(100))
    provider_team_name: Mapped[str] = mapped_column(String(200), nullable=False)
    normalized_name: Mapped[str] = mapped_column(String(200), nullable=False)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    team: Mapped["TeamORM"] = relationship(back_populates="mappings")


class CanonicalMatchORM(Base):
    __tablename__ = "canonical_matches"
    __table_args__ = (
        CheckConstraint(
            "status IN ('scheduled', 'live', 'finished', 'soft_finished', 'cancelled')",
            name="chk_match_status",
        ),
        CheckConstraint("live_confidence >= 0 AND live_confidence <= 1", name="chk_live_confidence"),
        Index("ix_canonical_sport_status", "sport_id", "status"),
        Index("ix_canonical_providers", "providers", postgresql_using="gin"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    identity_key: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    providers: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, nullable=False, default=list)
    sport_id: Mapped[int] = mapped_column(Integer, ForeignKey("sports.id"), nullable=False)
    league_id: Mapped[Optional[int]] = mapped_column(Integer)
    league_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    home_team_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("teams.id"))
    away_team_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("teams.id"))
    home_team_name: Mapped[str] = mapped_column(String(200), nullable=False)
    away_team_name: Mapped[str] = mapped_column(String(200), nullable=False)
    name_provider: Mapped[Optional[str]] = mapped_column(String(50))
    home_team_provider_id: Mapped[Optional[str]] = mapped_column(String(100))
    away_team_provider_id: Mapped[Optional[str]] = mapped_column(String(100))
    scheduled_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled")
    status_reason: Mapped[Optional[str]] = mapped_column(String(100))
    home_score: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    away_score: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    clock: Mapped[Optional[str]] = mapped_column(String(20))
    period: Mapped[Optional[str]] = mapped_column(String(50))
    has_open_markets: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    live_signal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    live_confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    cancelled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
