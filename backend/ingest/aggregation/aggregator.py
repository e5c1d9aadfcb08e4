"""
Cross-provider deduplication and merge.

Normalized provider matches are grouped by identity key and folded into one
CanonicalMatch per key. The fold depends only on the set of contributors, never
on batch or arrival order, so aggregating the same input twice is identical.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from shared.config import Settings, get_settings
from shared.models.domain import CanonicalMatch, NormalizedProviderMatch, utcnow
from shared.utils.logging import get_logger

from ingest.normalization.names import normalize_league_name, normalize_team_name
from lifecycle.state_machine import initial_status

logger = get_logger(__name__)

UNKNOWN_BUCKET = "unknown"

AUTHORITATIVE_LIVE_CONFIDENCE = 1.0
SECONDARY_LIVE_CONFIDENCE = 0.5

# Canonical ids derive from the identity key so repeated aggregation is identical.
MATCH_NAMESPACE = uuid.UUID("6f1c1f5e-3a52-4d8e-9a57-0b8f4f3c2d11")


def time_bucket(start: Optional[datetime], bucket_s: int = 300) -> str:
    """Floor a start time to its bucket, rendered YYYY-MM-DDTHH:MM in UTC."""
    if start is None:
        return UNKNOWN_BUCKET
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    epoch = int(start.timestamp())
    floored = datetime.fromtimestamp(epoch - epoch % bucket_s, tz=timezone.utc)
    return floored.strftime("%Y-%m-%dT%H:%M")


def identity_key(
    home: str,
    away: str,
    league: str,
    start: Optional[datetime],
    bucket_s: int = 300,
) -> str:
    """Order-invariant key: the lexicographically smaller of the two side orderings."""
    h = normalize_team_name(home)
    a = normalize_team_name(away)
    lg = normalize_league_name(league)
    tb = time_bucket(start, bucket_s)
    return min(f"{h}|{a}|{lg}|{tb}", f"{a}|{h}|{lg}|{tb}")


def _order(m: NormalizedProviderMatch) -> tuple[str, str]:
    return (m.provider.value, m.provider_event_id)


class MatchAggregator:
    """Deduplicates normalized provider matches into canonical records."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._authoritative = self._settings.authoritative_provider
        self._bucket_s = self._settings.time_bucket_s

    def key_for(self, match: NormalizedProviderMatch) -> str:
        return identity_key(
            match.home_team, match.away_team, match.league_name, match.start_time, self._bucket_s
        )

    def aggregate(
        self,
        *batches: Iterable[NormalizedProviderMatch],
        now: Optional[datetime] = None,
    ) -> list[CanonicalMatch]:
        now = now or utcnow()
        groups: dict[str, list[NormalizedProviderMatch]] = {}
        seen = 0
        for batch in batches:
            for match in batch:
                seen += 1
                groups.setdefault(self.key_for(match), []).append(match)

        merged = [self._merge(key, contributors, now) for key, contributors in sorted(groups.items())]
        logger.info(
            "match_aggregation_completed",
            input_matches=seen,
            canonical_matches=len(merged),
            duplicates_merged=seen - len(merged),
        )
        return merged

    def _seed(self, contributors: Sequence[NormalizedProviderMatch]) -> NormalizedProviderMatch:
        authoritative = [c for c in contributors if c.provider == self._authoritative]
        return min(authoritative or contributors, key=_order)

    def _merge(
        self,
        key: str,
        contributors: list[NormalizedProviderMatch],
        now: datetime,
    ) -> CanonicalMatch:
        contributors = sorted(contributors, key=_order)
        seed = self._seed(contributors)
        seed_home = normalize_team_name(seed.home_team)

        def oriented(m: NormalizedProviderMatch) -> tuple[int, int]:
            if normalize_team_name(m.home_team) != seed_home and normalize_team_name(m.away_team) == seed_home:
                return m.away_score, m.home_score
            return m.home_score, m.away_score

        # Non-zero scores beat zero placeholders, then the most recent update wins.
        score_src = max(
            contributors,
            key=lambda m: ((m.home_score + m.away_score) > 0, m.last_updated, *_order(m)),
        )
        clock_src = max(
            contributors,
            key=lambda m: (m.clock is not None or m.period is not None, m.last_updated, *_order(m)),
        )
        home_score, away_score = oriented(score_src)

        scheduled = seed.start_time
        if scheduled is None:
            known = sorted(c.start_time for c in contributors if c.start_time is not None)
            scheduled = known[0] if known else None

        live_signal = any(c.is_live for c in contributors)
        if any(c.is_live and c.provider == self._authoritative for c in contributors):
            live_confidence = AUTHORITATIVE_LIVE_CONFIDENCE
        elif live_signal:
            live_confidence = SECONDARY_LIVE_CONFIDENCE
        else:
            live_confidence = 0.0

        refs = sorted({c.ref for c in contributors}, key=lambda r: (r.provider.value, r.event_id))

        match = CanonicalMatch(
            id=uuid.uuid5(MATCH_NAMESPACE, key),
            identity_key=key,
            providers=refs,
            sport_id=seed.sport_id,
            league_id=seed.league_id if seed.league_id is not None else _first_league_id(contributors),
            league_name=seed.league_name,
            home_team_name=seed.home_team,
            away_team_name=seed.away_team,
            name_provider=seed.provider,
            home_team_provider_id=seed.home_team_provider_id,
            away_team_provider_id=seed.away_team_provider_id,
            scheduled_time=scheduled,
            home_score=home_score,
            away_score=away_score,
            clock=clock_src.clock,
            period=clock_src.period,
            has_open_markets=any(c.has_open_markets for c in contributors),
            live_signal=live_signal,
            live_confidence=live_confidence,
            cancelled=any(c.cancelled for c in contributors),
            last_updated=max(c.last_updated for c in contributors),
        )
        match.status = initial_status(match, now)
        return match


def _first_league_id(contributors: Sequence[NormalizedProviderMatch]) -> Optional[int]:
    for c in contributors:
        if c.league_id is not None:
            return c.league_id
    return None
