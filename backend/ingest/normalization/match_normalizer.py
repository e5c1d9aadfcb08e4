"""
Match normalization at the provider boundary.

Each provider's raw payload is parsed into an explicit pydantic model and
converted immediately into NormalizedProviderMatch. Nothing past this module
sees an untyped provider dict.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Iterable, Optional, Union

from pydantic import (
    AliasChoices,
    AliasPath,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
)

from shared.errors import DataIntegrityAnomaly, RecordResult
from shared.models.domain import BatchOutcome, NormalizedProviderMatch, utcnow
from shared.models.enums import ErrorKind, ProviderName
from shared.utils.logging import get_logger
from shared.utils.metrics import RECORDS_NORMALIZED, RECORDS_SKIPPED

logger = get_logger(__name__)

# Status tokens that mean "in play", across every encoding providers use.
LIVE_TOKENS = frozenset({
    "1h", "2h", "ht", "et", "bt", "p", "live", "int",
    "in_play", "in-play", "in play", "inplay", "in-progress", "in_progress", "in progress",
    "first half", "second half", "halftime", "half time", "extra time", "penalty",
    "penalty in progress", "break time",
})

CANCELLED_TOKENS = frozenset({
    "canc", "pst", "abd", "cancelled", "canceled", "postponed", "abandoned",
    "match cancelled", "match postponed", "match abandoned",
})


def is_live_token(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value > 0
    return str(value).strip().lower() in LIVE_TOKENS


def is_cancelled_token(value: Any) -> bool:
    if value is None or isinstance(value, bool):
        return False
    return str(value).strip().lower() in CANCELLED_TOKENS


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Accept datetimes, epoch seconds (or milliseconds) and ISO-8601 strings."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 10**11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    text = str(value).strip()
    if text.isdigit():
        return parse_timestamp(int(text))
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(text))


class RawModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def _to_str(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(int(value))
    return value


IdStr = Annotated[str, BeforeValidator(_to_str)]


# ── Pinnacle (authoritative) ────────────────────────────────────────────

class PinnacleRawEvent(RawModel):
    event_id: IdStr = Field(validation_alias=AliasChoices("event_id", "id"))
    home: str
    away: str
    league_id: Optional[int] = None
    league_name: str = ""
    sport_id: Optional[int] = None
    starts: Optional[datetime] = None
    live_status_id: int = 0
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    clock: Optional[str] = None
    period: Optional[str] = None
    is_have_open_markets: bool = False
    last: Optional[int] = None
    status: Optional[str] = None

    def to_normalized(self, sport_id: Optional[int]) -> NormalizedProviderMatch:
        return NormalizedProviderMatch(
            provider=ProviderName.PINNACLE,
            provider_event_id=self.event_id,
            home_team=self.home,
            away_team=self.away,
            league_id=self.league_id,
            league_name=self.league_name,
            sport_id=_require_sport(self.sport_id, sport_id),
            start_time=as_utc(self.starts),
            # live_status_id: 0 = no live betting, 1 = live, 2 = will go live
            is_live=self.live_status_id == 1,
            cancelled=is_cancelled_token(self.status),
            home_score=self.home_score or 0,
            away_score=self.away_score or 0,
            clock=self.clock,
            period=self.period,
            has_open_markets=self.is_have_open_markets,
            last_updated=parse_timestamp(self.last) or utcnow(),
        )


# ── Generic odds feed (secondary) ───────────────────────────────────────

class OddsFeedRawMatch(RawModel):
    event_id: IdStr = Field(validation_alias=AliasChoices("id", "match_id", "event_id"))
    home_team: str = Field(validation_alias=AliasChoices("home_team", "home", "homeTeam"))
    away_team: str = Field(validation_alias=AliasChoices("away_team", "away", "awayTeam"))
    league_name: str = Field(default="", validation_alias=AliasChoices("league", "league_name", "competition"))
    league_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("league_id", "leagueId"))
    sport_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("sport_id", "sportId"))
    start_time: Optional[Union[datetime, int, str]] = Field(
        default=None, validation_alias=AliasChoices("start_time", "starts", "scheduled_time")
    )
    status: Optional[Union[str, int, bool]] = Field(
        default=None, validation_alias=AliasChoices("status", "live_status")
    )
    is_live: Optional[bool] = None
    home_score: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("home_score", "score_home", AliasPath("goals", "home"))
    )
    away_score: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("away_score", "score_away", AliasPath("goals", "away"))
    )
    clock: Optional[IdStr] = Field(default=None, validation_alias=AliasChoices("clock", "minute", "elapsed"))
    period: Optional[str] = None
    has_open_markets: bool = Field(default=False, validation_alias=AliasChoices("has_open_markets", "markets_open"))
    updated_at: Optional[Union[datetime, int, str]] = Field(
        default=None, validation_alias=AliasChoices("updated_at", "last_updated")
    )

    def to_normalized(self, sport_id: Optional[int]) -> NormalizedProviderMatch:
        live = self.is_live if self.is_live is not None else is_live_token(self.status)
        return NormalizedProviderMatch(
            provider=ProviderName.ODDS_FEED,
            provider_event_id=self.event_id,
            home_team=self.home_team,
            away_team=self.away_team,
            league_id=self.league_id,
            league_name=self.league_name,
            sport_id=_require_sport(self.sport_id, sport_id),
            start_time=parse_timestamp(self.start_time),
            is_live=live,
            cancelled=is_cancelled_token(self.status),
            home_score=self.home_score or 0,
            away_score=self.away_score or 0,
            clock=self.clock,
            period=self.period,
            has_open_markets=self.has_open_markets,
            last_updated=parse_timestamp(self.updated_at) or utcnow(),
        )


# ── API-Football (statistics) ──────────────────────────────────────────

class _FixtureStatus(RawModel):
    short: Optional[str] = None
    long: Optional[str] = None
    elapsed: Optional[int] = None


class _Fixture(RawModel):
    id: int
    date: Optional[datetime] = None
    timestamp: Optional[int] = None
    status: _FixtureStatus = Field(default_factory=_FixtureStatus)


class _League(RawModel):
    id: Optional[int] = None
    name: str = ""


class _Side(RawModel):
    id: Optional[int] = None
    name: str


class _Teams(RawModel):
    home: _Side
    away: _Side


class _Goals(RawModel):
    home: Optional[int] = None
    away: Optional[int] = None


class ApiFootballRawFixture(RawModel):
    fixture: _Fixture
    league: _League = Field(default_factory=_League)
    teams: _Teams
    goals: _Goals = Field(default_factory=_Goals)

    def to_normalized(self, sport_id: Optional[int]) -> NormalizedProviderMatch:
        status = self.fixture.status
        start = as_utc(self.fixture.date) or parse_timestamp(self.fixture.timestamp)
        return NormalizedProviderMatch(
            provider=ProviderName.API_FOOTBALL,
            provider_event_id=str(self.fixture.id),
            home_team=self.teams.home.name,
            away_team=self.teams.away.name,
            home_team_provider_id=_to_str(self.teams.home.id),
            away_team_provider_id=_to_str(self.teams.away.id),
            league_id=self.league.id,
            league_name=self.league.name,
            sport_id=_require_sport(None, sport_id),
            start_time=start,
            is_live=is_live_token(status.short) or is_live_token(status.long),
            cancelled=is_cancelled_token(status.short) or is_cancelled_token(status.long),
            home_score=self.goals.home or 0,
            away_score=self.goals.away or 0,
            clock=f"{status.elapsed}'" if status.elapsed is not None else None,
            period=status.short,
            last_updated=utcnow(),
        )


RAW_MODELS: dict[ProviderName, type[RawModel]] = {
    ProviderName.PINNACLE: PinnacleRawEvent,
    ProviderName.ODDS_FEED: OddsFeedRawMatch,
    ProviderName.API_FOOTBALL: ApiFootballRawFixture,
}


def _require_sport(own: Optional[int], default: Optional[int]) -> int:
    sport_id = own if own is not None else default
    if sport_id is None:
        raise DataIntegrityAnomaly("record carries no sport id")
    return sport_id


def normalize_record(
    provider: ProviderName,
    payload: Any,
    sport_id: Optional[int] = None,
) -> RecordResult[NormalizedProviderMatch]:
    """Parse one raw payload; malformed records come back as DATA_INTEGRITY failures."""
    model = RAW_MODELS.get(provider)
    if model is None:
        return RecordResult.failure(ErrorKind.DATA_INTEGRITY, f"no raw model for provider {provider}")
    try:
        raw = payload if isinstance(payload, model) else model.model_validate(payload)
        match = raw.to_normalized(sport_id)
    except (ValidationError, DataIntegrityAnomaly, ValueError, TypeError) as exc:
        return RecordResult.failure(ErrorKind.DATA_INTEGRITY, str(exc))

    if not match.provider_event_id.strip():
        return RecordResult.failure(ErrorKind.DATA_INTEGRITY, "missing provider event id")
    if not match.home_team.strip() or not match.away_team.strip():
        return RecordResult.failure(ErrorKind.DATA_INTEGRITY, "missing team name")
    return RecordResult.success(match)


def normalize_batch(
    provider: ProviderName,
    payloads: Iterable[Any],
    sport_id: Optional[int] = None,
) -> tuple[list[NormalizedProviderMatch], BatchOutcome]:
    """Normalize a provider batch; bad records are skipped and counted, never raised."""
    matches: list[NormalizedProviderMatch] = []
    outcome = BatchOutcome()
    for index, payload in enumerate(payloads):
        result = normalize_record(provider, payload, sport_id)
        if result.ok and result.value is not None:
            matches.append(result.value)
            outcome.normalized += 1
            continue
        outcome.skipped += 1
        RECORDS_SKIPPED.labels(provider=provider.value, kind=(result.kind or ErrorKind.DATA_INTEGRITY).value).inc()
        logger.warning(
            "provider_record_skipped",
            provider=provider.value,
            index=index,
            kind=result.kind.value if result.kind else None,
            error=result.error,
        )
    if matches:
        RECORDS_NORMALIZED.labels(provider=provider.value).inc(len(matches))
    return matches, outcome
