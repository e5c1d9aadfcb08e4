"""
Canonical match persistence.
Upsert-by-identity so retried or resumed passes never create duplicates.
"""
from __future__ import annotations

import uuid
from typing import Iterable, Optional, Protocol

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert

from shared.models.domain import CanonicalMatch, ProviderRef
from shared.models.enums import CoverageTier, MatchStatus
from shared.models.orm import CanonicalMatchORM, LeagueORM
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger

logger = get_logger(__name__)

_TERMINAL = [s.value for s in MatchStatus if s.is_terminal]


class MatchRepository(Protocol):
    async def find_existing(
        self, identity_key: str, refs: list[ProviderRef]
    ) -> Optional[CanonicalMatch]: ...

    async def upsert(self, match: CanonicalMatch) -> None: ...

    async def list_active(self, sport_id: Optional[int] = None) -> list[CanonicalMatch]: ...

    async def set_status(
        self, match_id: uuid.UUID, status: MatchStatus, reason: str
    ) -> None: ...

    async def delete(self, match_id: uuid.UUID) -> None: ...

    async def coverage_tiers(self, league_ids: Iterable[int]) -> dict[int, CoverageTier]: ...


def _to_domain(row: CanonicalMatchORM) -> CanonicalMatch:
    return CanonicalMatch(
        id=row.id,
        identity_key=row.identity_key,
        providers=[ProviderRef(**p) for p in row.providers or []],
        sport_id=row.sport_id,
        league_id=row.league_id,
        league_name=row.league_name or "",
        home_team_id=row.home_team_id,
        away_team_id=row.away_team_id,
        home_team_name=row.home_team_name,
        away_team_name=row.away_team_name,
        name_provider=row.name_provider,
        home_team_provider_id=row.home_team_provider_id,
        away_team_provider_id=row.away_team_provider_id,
        scheduled_time=row.scheduled_time,
        status=MatchStatus(row.status),
        status_reason=row.status_reason,
        home_score=row.home_score,
        away_score=row.away_score,
        clock=row.clock,
        period=row.period,
        has_open_markets=row.has_open_markets,
        live_signal=row.live_signal,
        live_confidence=row.live_confidence,
        cancelled=row.cancelled,
        last_updated=row.last_updated,
    )


def _row_values(match: CanonicalMatch) -> dict:
    return {
        "id": match.id,
        "identity_key": match.identity_key,
        "providers": [ref.model_dump(mode="json") for ref in match.providers],
        "sport_id": match.sport_id,
        "league_id": match.league_id,
        "league_name": match.league_name,
        "home_team_id": match.home_team_id,
        "away_team_id": match.away_team_id,
        "home_team_name": match.home_team_name,
        "away_team_name": match.away_team_name,
        "name_provider": match.name_provider.value if match.name_provider else None,
        "home_team_provider_id": match.home_team_provider_id,
        "away_team_provider_id": match.away_team_provider_id,
        "scheduled_time": match.scheduled_time,
        "status": match.status.value,
        "status_reason": match.status_reason,
        "home_score": match.home_score,
        "away_score": match.away_score,
        "clock": match.clock,
        "period": match.period,
        "has_open_markets": match.has_open_markets,
        "live_signal": match.live_signal,
        "live_confidence": match.live_confidence,
        "cancelled": match.cancelled,
        "last_updated": match.last_updated,
    }


class SqlMatchRepository:
    """PostgreSQL-backed MatchRepository."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def find_existing(
        self, identity_key: str, refs: list[ProviderRef]
    ) -> Optional[CanonicalMatch]:
        """Look up by identity key, else by any contributing (provider, event id) pair."""
        async with self._db.read_session() as session:
            row = (
                await session.execute(
                    select(CanonicalMatchORM).where(CanonicalMatchORM.identity_key == identity_key)
                )
            ).scalar_one_or_none()
            if row is None and refs:
                clauses = [
                    CanonicalMatchORM.providers.contains([ref.model_dump(mode="json")])
                    for ref in refs
                ]
                row = (
                    await session.execute(
                        select(CanonicalMatchORM)
                        .where(or_(*clauses))
                        .order_by(CanonicalMatchORM.last_updated.desc())
                        .limit(1)
                    )
                ).scalar_one_or_none()
            return _to_domain(row) if row else None

    async def upsert(self, match: CanonicalMatch) -> None:
        values = _row_values(match)
        update_cols = {k: v for k, v in values.items() if k not in ("id", "identity_key")}
        update_cols["last_updated"] = func.greatest(
            CanonicalMatchORM.last_updated, values["last_updated"]
        )
        stmt = (
            pg_insert(CanonicalMatchORM)
            .values(**values)
            .on_conflict_do_update(index_elements=["identity_key"], set_=update_cols)
        )
        async with self._db.write_session() as session:
            await session.execute(stmt)

    async def list_active(self, sport_id: Optional[int] = None) -> list[CanonicalMatch]:
        stmt = select(CanonicalMatchORM).where(CanonicalMatchORM.status.not_in(_TERMINAL))
        if sport_id is not None:
            stmt = stmt.where(CanonicalMatchORM.sport_id == sport_id)
        async with self._db.read_session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_to_domain(r) for r in rows]

    async def set_status(self, match_id: uuid.UUID, status: MatchStatus, reason: str) -> None:
        async with self._db.write_session() as session:
            await session.execute(
                update(CanonicalMatchORM)
                .where(CanonicalMatchORM.id == match_id)
                .values(status=status.value, status_reason=reason)
            )

    async def delete(self, match_id: uuid.UUID) -> None:
        async with self._db.write_session() as session:
            await session.execute(delete(CanonicalMatchORM).where(CanonicalMatchORM.id == match_id))

    async def coverage_tiers(self, league_ids: Iterable[int]) -> dict[int, CoverageTier]:
        ids = [i for i in set(league_ids) if i is not None]
        if not ids:
            return {}
        async with self._db.read_session() as session:
            rows = (
                await session.execute(
                    select(LeagueORM.id, LeagueORM.coverage_tier).where(LeagueORM.id.in_(ids))
                )
            ).all()
        return {league_id: CoverageTier(tier) for league_id, tier in rows}
