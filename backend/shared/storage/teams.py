"""
Team and provider-team-mapping persistence.
The mapping table is the source of truth for team resolution; confidence only ever rises.
"""
from __future__ import annotations

import uuid
from typing import Optional, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert

from shared.models.domain import ProviderTeamMapping, TeamEntity
from shared.models.enums import ProviderName
from shared.models.orm import TeamORM, TeamProviderMappingORM
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger

logger = get_logger(__name__)


class TeamRepository(Protocol):
    async def mapping_by_provider_id(
        self, provider: ProviderName, provider_team_id: str
    ) -> Optional[ProviderTeamMapping]: ...

    async def mapping_by_provider_name(
        self, provider: ProviderName, provider_team_name: str
    ) -> Optional[ProviderTeamMapping]: ...

    async def mapping_by_normalized_name(
        self, provider: ProviderName, normalized_name: str, sport_id: int
    ) -> Optional[ProviderTeamMapping]: ...

    async def list_teams(
        self, sport_id: int, league_id: Optional[int] = None, limit: int = 5000
    ) -> list[TeamEntity]: ...

    async def create_team(self, team: TeamEntity) -> TeamEntity: ...

    async def add_mapping(self, mapping: ProviderTeamMapping) -> ProviderTeamMapping: ...

    async def raise_confidence(self, mapping_id: uuid.UUID, confidence: float) -> None: ...


def _mapping(row: TeamProviderMappingORM) -> ProviderTeamMapping:
    return ProviderTeamMapping.model_validate(row)


def _team(row: TeamORM) -> TeamEntity:
    return TeamEntity.model_validate(row)


class SqlTeamRepository:
    """PostgreSQL-backed TeamRepository."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def _one_mapping(self, *where) -> Optional[ProviderTeamMapping]:
        stmt = (
            select(TeamProviderMappingORM)
            .where(*where)
            .order_by(
                TeamProviderMappingORM.is_primary.desc(),
                TeamProviderMappingORM.confidence_score.desc(),
            )
            .limit(1)
        )
        async with self._db.read_session() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return _mapping(row) if row else None

    async def mapping_by_provider_id(
        self, provider: ProviderName, provider_team_id: str
    ) -> Optional[ProviderTeamMapping]:
        return await self._one_mapping(
            TeamProviderMappingORM.provider_name == provider.value,
            TeamProviderMappingORM.provider_team_id == provider_team_id,
        )

    async def mapping_by_provider_name(
        self, provider: ProviderName, provider_team_name: str
    ) -> Optional[ProviderTeamMapping]:
        return await self._one_mapping(
            TeamProviderMappingORM.provider_name == provider.value,
            TeamProviderMappingORM.provider_team_name == provider_team_name,
        )

    async def mapping_by_normalized_name(
        self, provider: ProviderName, normalized_name: str, sport_id: int
    ) -> Optional[ProviderTeamMapping]:
        return await self._one_mapping(
            TeamProviderMappingORM.provider_name == provider.value,
            TeamProviderMappingORM.normalized_name == normalized_name,
            TeamProviderMappingORM.team_id.in_(
                select(TeamORM.id).where(TeamORM.sport_id == sport_id)
            ),
        )

    async def list_teams(
        self, sport_id: int, league_id: Optional[int] = None, limit: int = 5000
    ) -> list[TeamEntity]:
        stmt = select(TeamORM).where(TeamORM.sport_id == sport_id)
        if league_id is not None:
            stmt = stmt.where(TeamORM.league_id == league_id)
        stmt = stmt.order_by(TeamORM.mapping_confidence.desc()).limit(limit)
        async with self._db.read_session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_team(r) for r in rows]

    async def create_team(self, team: TeamEntity) -> TeamEntity:
        async with self._db.write_session() as session:
            session.add(
                TeamORM(
                    id=team.id,
                    sport_id=team.sport_id,
                    league_id=team.league_id,
                    name=team.name,
                    normalized_name=team.normalized_name,
                    mapping_confidence=team.mapping_confidence,
                )
            )
        return team

    async def add_mapping(self, mapping: ProviderTeamMapping) -> ProviderTeamMapping:
        """
        Idempotently record a mapping.

        An existing mapping for the same (provider, provider team id) keeps its team and
        only has its confidence raised. A second primary for the same (team, provider)
        is demoted to non-primary.
        """
        async with self._db.write_session() as session:
            is_primary = mapping.is_primary
            if is_primary:
                existing_primary = (
                    await session.execute(
                        select(TeamProviderMappingORM.id).where(
                            TeamProviderMappingORM.team_id == mapping.team_id,
                            TeamProviderMappingORM.provider_name == mapping.provider_name.value,
                            TeamProviderMappingORM.is_primary.is_(True),
                        )
                    )
                ).scalar_one_or_none()
                is_primary = existing_primary is None

            stmt = pg_insert(TeamProviderMappingORM).values(
                id=mapping.id,
                team_id=mapping.team_id,
                provider_name=mapping.provider_name.value,
                provider_team_id=mapping.provider_team_id,
                provider_team_name=mapping.provider_team_name,
                normalized_name=mapping.normalized_name,
                confidence_score=mapping.confidence_score,
                is_primary=is_primary,
            )
            if mapping.provider_team_id is not None:
                stmt = stmt.on_conflict_do_update(
                    constraint="uq_mapping_provider_team_id",
                    set_={
                        "confidence_score": func.greatest(
                            TeamProviderMappingORM.confidence_score, mapping.confidence_score
                        )
                    },
                )
            await session.execute(stmt)
        return mapping.model_copy(update={"is_primary": is_primary})

    async def raise_confidence(self, mapping_id: uuid.UUID, confidence: float) -> None:
        async with self._db.write_session() as session:
            await session.execute(
                update(TeamProviderMappingORM)
                .where(
                    TeamProviderMappingORM.id == mapping_id,
                    TeamProviderMappingORM.confidence_score < confidence,
                )
                .values(confidence_score=confidence)
            )
