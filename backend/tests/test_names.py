"""
Unit tests for team and league name normalization.

Run: pytest backend/tests/test_names.py -v
"""
from __future__ import annotations

import pytest

from ingest.normalization.names import (
    normalize_league_name,
    normalize_team_name,
    same_team_pair,
    similarity,
)


# ── normalize_team_name ─────────────────────────────────────────────────

@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Arsenal FC", "arsenal"),
        ("Chelsea FC", "chelsea"),
        ("Chelsea U19 (Women)", "chelsea"),
        ("Man Utd", "manchester united"),
        ("Manchester United", "manchester united"),
        ("Man City", "manchester city"),
        ("Spurs", "tottenham hotspur"),
        ("Leeds United", "leeds"),
        ("  Real   Madrid  ", "real madrid"),
    ],
)
def test_normalize_team_name(raw: str, expected: str) -> None:
    assert normalize_team_name(raw) == expected


def test_manchester_clubs_stay_distinct() -> None:
    assert normalize_team_name("Manchester United") != normalize_team_name("Manchester City")
    assert normalize_team_name("Man Utd") != normalize_team_name("Man City")


def test_descriptive_only_name_is_not_emptied() -> None:
    assert normalize_team_name("City") == "city"


def test_empty_name() -> None:
    assert normalize_team_name("") == ""


# ── normalize_league_name ───────────────────────────────────────────────

def test_normalize_league_name_strips_generic_tokens() -> None:
    assert normalize_league_name("English Premier League") == "english"
    assert normalize_league_name("Premier League") == normalize_league_name("premier league")


# ── similarity ──────────────────────────────────────────────────────────

def test_similarity_identical_is_one() -> None:
    assert similarity("arsenal", "arsenal") == 1.0


def test_similarity_empty_is_zero() -> None:
    assert similarity("", "arsenal") == 0.0


def test_similarity_is_symmetric_and_bounded() -> None:
    a, b = "tottenham hotspur", "tottenham hotspurs"
    assert similarity(a, b) == similarity(b, a)
    assert 0.9 < similarity(a, b) < 1.0


# ── same_team_pair ──────────────────────────────────────────────────────

def test_same_team_pair_ignores_orientation() -> None:
    assert same_team_pair("Arsenal FC", "Chelsea", "Chelsea FC", "Arsenal")


def test_same_team_pair_rejects_different_teams() -> None:
    assert not same_team_pair("Arsenal", "Chelsea", "Arsenal", "Fulham")
