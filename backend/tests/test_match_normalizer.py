"""
Unit tests for provider payload normalization.

Run: pytest backend/tests/test_match_normalizer.py -v
"""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from shared.models.enums import ErrorKind, ProviderName

from ingest.normalization.match_normalizer import (
    is_cancelled_token,
    is_live_token,
    normalize_batch,
    normalize_record,
    parse_timestamp,
)


# ── Liveness / cancellation encodings ───────────────────────────────────

@pytest.mark.parametrize("value", [True, "1H", "2H", "HT", "live", "In_Play", "in-progress", "Second Half"])
def test_live_tokens(value) -> None:
    assert is_live_token(value)


@pytest.mark.parametrize("value", [False, None, "NS", "FT", "scheduled"])
def test_not_live_tokens(value) -> None:
    assert not is_live_token(value)


@pytest.mark.parametrize("value", ["CANC", "PST", "abd", "Postponed", "cancelled"])
def test_cancelled_tokens(value: str) -> None:
    assert is_cancelled_token(value)


# ── Timestamps ──────────────────────────────────────────────────────────

def test_parse_timestamp_variants() -> None:
    expected = datetime(2026, 3, 14, 15, 0, tzinfo=timezone.utc)
    assert parse_timestamp("2026-03-14T15:00:00Z") == expected
    assert parse_timestamp("2026-03-14T15:00:00") == expected
    assert parse_timestamp(int(expected.timestamp())) == expected
    assert parse_timestamp(int(expected.timestamp()) * 1000) == expected
    assert parse_timestamp(None) is None


# ── Provider shapes ─────────────────────────────────────────────────────

def test_pinnacle_event() -> None:
    result = normalize_record(
        ProviderName.PINNACLE,
        {
            "id": 1601234,
            "home": "Arsenal",
            "away": "Chelsea",
            "league_id": 1980,
            "league_name": "England - Premier League",
            "starts": "2026-03-14T15:00:00Z",
            "live_status_id": 1,
            "home_score": 1,
            "away_score": 0,
            "is_have_open_markets": True,
            "last": 1773500400,
        },
        sport_id=1,
    )
    assert result.ok
    match = result.value
    assert match.provider_event_id == "1601234"
    assert match.is_live is True
    assert match.has_open_markets is True
    assert match.start_time.tzinfo is not None


def test_pinnacle_will_go_live_is_not_live() -> None:
    result = normalize_record(
        ProviderName.PINNACLE,
        {"id": 1, "home": "Arsenal", "away": "Chelsea", "live_status_id": 2},
        sport_id=1,
    )
    assert result.ok
    assert result.value.is_live is False


def test_odds_feed_aliases() -> None:
    result = normalize_record(
        ProviderName.ODDS_FEED,
        {
            "match_id": "of-77",
            "homeTeam": "Arsenal FC",
            "awayTeam": "Chelsea FC",
            "competition": "Premier League",
            "sportId": 1,
            "starts": 1773500400,
            "status": "in_play",
            "goals": {"home": 2, "away": 1},
        },
    )
    assert result.ok
    match = result.value
    assert match.home_team == "Arsenal FC"
    assert match.is_live is True
    assert (match.home_score, match.away_score) == (2, 1)


def test_api_football_fixture() -> None:
    result = normalize_record(
        ProviderName.API_FOOTBALL,
        {
            "fixture": {"id": 868, "date": "2026-03-14T15:00:00+00:00", "status": {"short": "PST", "elapsed": None}},
            "league": {"id": 39, "name": "Premier League"},
            "teams": {"home": {"id": 42, "name": "Arsenal"}, "away": {"id": 49, "name": "Chelsea"}},
            "goals": {"home": None, "away": None},
        },
        sport_id=1,
    )
    assert result.ok
    match = result.value
    assert match.cancelled is True
    assert match.is_live is False
    assert match.home_team_provider_id == "42"


# ── Malformed records ───────────────────────────────────────────────────

def test_missing_team_name_is_data_integrity_failure() -> None:
    result = normalize_record(ProviderName.PINNACLE, {"id": 5, "home": "", "away": "Chelsea"}, sport_id=1)
    assert not result.ok
    assert result.kind == ErrorKind.DATA_INTEGRITY


def test_missing_sport_is_data_integrity_failure() -> None:
    result = normalize_record(ProviderName.PINNACLE, {"id": 5, "home": "Arsenal", "away": "Chelsea"})
    assert not result.ok
    assert result.kind == ErrorKind.DATA_INTEGRITY


def test_batch_skips_bad_records_and_continues() -> None:
    payloads = [
        {"id": 1, "home": "Arsenal", "away": "Chelsea"},
        "not a record",
        {"id": 2, "home": "Fulham"},
        {"id": 3, "home": "Everton", "away": "Burnley"},
    ]
    matches, outcome = normalize_batch(ProviderName.PINNACLE, payloads, sport_id=1)
    assert [m.provider_event_id for m in matches] == ["1", "3"]
    assert outcome.normalized == 2
    assert outcome.skipped == 2
