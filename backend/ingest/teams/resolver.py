"""
Team identity resolution across providers.

Maps (provider, raw team name, raw team id) to a canonical team. The mapping
table is the source of truth; the key-value cache is a read-through shortcut.

Resolution order:
  1. mapping by (provider, provider team id)
  2. mapping by (provider, provider team name)
  3. mapping by (provider, normalized name) within the sport
  4. authoritative provider: create the team with confidence 1.0 and a primary mapping
  5. fuzzy match: same league (0.85), then same sport (0.90)
  6. create a team attributed to the secondary provider
"""
from __future__ import annotations

import hashlib
import json
import uuid
from typing import Optional, Union

from shared.config import Settings, get_settings
from shared.errors import ValidationError
from shared.models.domain import ProviderTeamMapping, TeamEntity, TeamResolution
from shared.models.enums import ProviderName, ResolutionPath
from shared.storage.teams import TeamRepository
from shared.utils.logging import get_logger
from shared.utils.metrics import TEAM_RESOLUTIONS
from shared.utils.redis_manager import TEAM_RESOLUTION_KEY, KeyValueStore, fmt_key

from ingest.normalization.names import normalize_team_name, similarity
from ingest.teams.confidence import ConfidenceSignals, calculate_confidence

logger = get_logger(__name__)

NORMALIZED_EQUALITY_SIMILARITY = 0.9
MIN_NAME_LENGTH = 2


class TeamResolver:
    """Resolves provider team references to canonical team ids."""

    def __init__(
        self,
        teams: TeamRepository,
        cache: KeyValueStore,
        settings: Settings | None = None,
    ) -> None:
        self._teams = teams
        self._cache = cache
        self._settings = settings or get_settings()
        self._authoritative = self._settings.authoritative_provider
        self._known = set(self._settings.known_providers)

    # ── Validation ──────────────────────────────────────────────────────

    def _validate(
        self,
        provider: Union[ProviderName, str],
        raw_name: str,
        sport_id: Optional[int],
    ) -> ProviderName:
        try:
            name = ProviderName(provider)
        except ValueError:
            raise ValidationError(f"unknown provider: {provider!r}") from None
        if name not in self._known:
            raise ValidationError(f"provider not enabled: {name.value}")
        if not raw_name or len(raw_name.strip()) < MIN_NAME_LENGTH:
            raise ValidationError(f"team name too short: {raw_name!r}")
        if sport_id is None or sport_id <= 0:
            raise ValidationError(f"invalid sport id: {sport_id!r}")
        return name

    # ── Cache ───────────────────────────────────────────────────────────

    def cache_key(
        self, provider: ProviderName, raw_name: str, raw_id: Optional[str], sport_id: int
    ) -> str:
        digest = hashlib.md5(f"{raw_name}|{raw_id or ''}|{sport_id}".encode()).hexdigest()
        return fmt_key(TEAM_RESOLUTION_KEY, provider=provider.value, digest=digest)

    async def _cached(self, key: str) -> Optional[TeamResolution]:
        raw = await self._cache.get(key)
        if not raw:
            return None
        data = json.loads(raw)
        return TeamResolution(
            team_id=uuid.UUID(data["team_id"]),
            confidence=data["confidence"],
            created=False,
            path=ResolutionPath.CACHE,
        )

    async def _remember(self, key: str, resolution: TeamResolution) -> None:
        payload = json.dumps({"team_id": str(resolution.team_id), "confidence": resolution.confidence})
        await self._cache.put(key, payload, self._settings.team_resolution_cache_ttl_s)

    # ── Public API ──────────────────────────────────────────────────────

    async def resolve(
        self,
        provider: Union[ProviderName, str],
        raw_name: str,
        raw_id: Optional[str] = None,
        sport_id: Optional[int] = None,
        league_id: Optional[int] = None,
    ) -> TeamResolution:
        """
        Resolve a provider team reference.

        Raises:
            ValidationError: unknown provider, name shorter than 2 chars, or missing sport id.
        """
        name = self._validate(provider, raw_name, sport_id)
        raw_name = raw_name.strip()

        key = self.cache_key(name, raw_name, raw_id, sport_id)
        cached = await self._cached(key)
        if cached is not None:
            TEAM_RESOLUTIONS.labels(provider=name.value, path=ResolutionPath.CACHE.value).inc()
            return cached

        resolution = await self._resolve_uncached(name, raw_name, raw_id, sport_id, league_id)
        await self._remember(key, resolution)
        TEAM_RESOLUTIONS.labels(provider=name.value, path=resolution.path.value).inc()
        logger.debug(
            "team_resolved",
            provider=name.value,
            team_name=raw_name,
            team_id=str(resolution.team_id),
            confidence=resolution.confidence,
            path=resolution.path.value,
            created=resolution.created,
        )
        return resolution

    async def resolve_or_none(
        self,
        provider: Union[ProviderName, str],
        raw_name: str,
        raw_id: Optional[str] = None,
        sport_id: Optional[int] = None,
        league_id: Optional[int] = None,
    ) -> Optional[uuid.UUID]:
        """Resolve, degrading to None on any failure; a later pass retries."""
        try:
            resolution = await self.resolve(provider, raw_name, raw_id, sport_id, league_id)
        except Exception as exc:
            logger.warning(
                "team_resolution_failed",
                provider=str(getattr(provider, "value", provider)),
                team_name=raw_name,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None
        return resolution.team_id

    # ── Resolution steps ────────────────────────────────────────────────

    async def _resolve_uncached(
        self,
        provider: ProviderName,
        raw_name: str,
        raw_id: Optional[str],
        sport_id: int,
        league_id: Optional[int],
    ) -> TeamResolution:
        normalized = normalize_team_name(raw_name)
        authoritative = provider == self._authoritative

        if raw_id:
            mapping = await self._teams.mapping_by_provider_id(provider, raw_id)
            if mapping is not None:
                signals = ConfidenceSignals(
                    has_provider_id=True,
                    exact_name_match=mapping.provider_team_name == raw_name,
                    normalized_name_match=mapping.normalized_name == normalized,
                    authoritative=authoritative,
                )
                return await self._existing(mapping, signals, ResolutionPath.PROVIDER_ID)

        mapping = await self._teams.mapping_by_provider_name(provider, raw_name)
        if mapping is not None:
            signals = ConfidenceSignals(
                has_provider_id=bool(raw_id),
                exact_name_match=True,
                normalized_name_match=True,
                authoritative=authoritative,
            )
            return await self._existing(mapping, signals, ResolutionPath.PROVIDER_NAME)

        mapping = await self._teams.mapping_by_normalized_name(provider, normalized, sport_id)
        if mapping is not None:
            confidence = calculate_confidence(
                ConfidenceSignals(
                    has_provider_id=bool(raw_id),
                    normalized_name_match=True,
                    authoritative=authoritative,
                )
            )
            await self._add_mapping(mapping.team_id, provider, raw_name, raw_id, normalized, confidence)
            return TeamResolution(
                team_id=mapping.team_id, confidence=confidence, path=ResolutionPath.NORMALIZED_NAME
            )

        if authoritative:
            return await self._create_authoritative(provider, raw_name, raw_id, normalized, sport_id, league_id)

        fuzzy = await self._fuzzy_match(normalized, sport_id, league_id)
        if fuzzy is not None:
            team_id, score = fuzzy
            confidence = calculate_confidence(
                ConfidenceSignals(has_provider_id=bool(raw_id), normalized_name_match=True),
                similarity=score,
            )
            await self._add_mapping(team_id, provider, raw_name, raw_id, normalized, confidence)
            logger.info(
                "team_fuzzy_matched",
                provider=provider.value,
                team_name=raw_name,
                team_id=str(team_id),
                similarity=score,
                confidence=confidence,
            )
            return TeamResolution(team_id=team_id, confidence=confidence, path=ResolutionPath.FUZZY)

        return await self._create_secondary(provider, raw_name, raw_id, normalized, sport_id, league_id)

    async def _existing(
        self,
        mapping: ProviderTeamMapping,
        signals: ConfidenceSignals,
        path: ResolutionPath,
    ) -> TeamResolution:
        confidence = max(mapping.confidence_score, calculate_confidence(signals))
        if confidence > mapping.confidence_score:
            await self._teams.raise_confidence(mapping.id, confidence)
        return TeamResolution(team_id=mapping.team_id, confidence=confidence, path=path)

    async def _add_mapping(
        self,
        team_id: uuid.UUID,
        provider: ProviderName,
        raw_name: str,
        raw_id: Optional[str],
        normalized: str,
        confidence: float,
        primary: bool = False,
    ) -> ProviderTeamMapping:
        return await self._teams.add_mapping(
            ProviderTeamMapping(
                team_id=team_id,
                provider_name=provider,
                provider_team_id=raw_id,
                provider_team_name=raw_name,
                normalized_name=normalized,
                confidence_score=confidence,
                is_primary=primary,
            )
        )

    async def _create_authoritative(
        self,
        provider: ProviderName,
        raw_name: str,
        raw_id: Optional[str],
        normalized: str,
        sport_id: int,
        league_id: Optional[int],
    ) -> TeamResolution:
        team = await self._teams.create_team(
            TeamEntity(
                sport_id=sport_id,
                league_id=league_id,
                name=raw_name,
                normalized_name=normalized,
                mapping_confidence=1.0,
            )
        )
        mapping_confidence = calculate_confidence(
            ConfidenceSignals(
                has_provider_id=bool(raw_id),
                exact_name_match=True,
                normalized_name_match=True,
                authoritative=True,
            )
        )
        await self._add_mapping(team.id, provider, raw_name, raw_id, normalized, mapping_confidence, primary=True)
        logger.info("team_created", provider=provider.value, team_name=raw_name, team_id=str(team.id), authoritative=True)
        return TeamResolution(
            team_id=team.id, confidence=1.0, created=True, path=ResolutionPath.AUTHORITATIVE_CREATE
        )

    async def _create_secondary(
        self,
        provider: ProviderName,
        raw_name: str,
        raw_id: Optional[str],
        normalized: str,
        sport_id: int,
        league_id: Optional[int],
    ) -> TeamResolution:
        confidence = calculate_confidence(ConfidenceSignals(has_provider_id=bool(raw_id)))
        team = await self._teams.create_team(
            TeamEntity(
                sport_id=sport_id,
                league_id=league_id,
                name=raw_name,
                normalized_name=normalized,
                mapping_confidence=confidence,
            )
        )
        await self._add_mapping(team.id, provider, raw_name, raw_id, normalized, confidence, primary=True)
        logger.info(
            "team_created",
            provider=provider.value,
            team_name=raw_name,
            team_id=str(team.id),
            authoritative=False,
            confidence=confidence,
        )
        return TeamResolution(
            team_id=team.id, confidence=confidence, created=True, path=ResolutionPath.SECONDARY_CREATE
        )

    async def _fuzzy_match(
        self,
        normalized: str,
        sport_id: int,
        league_id: Optional[int],
    ) -> Optional[tuple[uuid.UUID, float]]:
        """League-scoped candidates first, then sport-wide with the stricter threshold."""
        limit = self._settings.fuzzy_candidate_limit
        scopes: list[tuple[Optional[int], float]] = []
        if league_id is not None:
            scopes.append((league_id, self._settings.fuzzy_league_threshold))
        scopes.append((None, self._settings.fuzzy_sport_threshold))

        for scope_league, threshold in scopes:
            candidates = await self._teams.list_teams(sport_id, scope_league, limit)
            for team in candidates:
                if (team.normalized_name or normalize_team_name(team.name)) == normalized:
                    return team.id, NORMALIZED_EQUALITY_SIMILARITY

            best: Optional[tuple[uuid.UUID, float]] = None
            for team in candidates:
                score = similarity(normalized, team.normalized_name or normalize_team_name(team.name))
                if score >= threshold and (best is None or score > best[1]):
                    best = (team.id, score)
            if best is not None:
                return best
        return None
