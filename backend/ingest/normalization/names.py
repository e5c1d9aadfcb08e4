"""
Team and league name canonicalization.

Pure functions, no I/O. The identity key, the team resolver's fuzzy matching
and the finished-fixture matching all compare names through these.
"""
from __future__ import annotations

import re

from rapidfuzz.distance import Levenshtein

_PARENS = re.compile(r"\([^)]*\)|\[[^\]]*\]")
_AGE_GROUP = re.compile(r"\bu\s?-?\d{2}\b")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WS = re.compile(r"\s+")

# Club-type tokens that never distinguish two teams.
_GENERIC_TOKENS = re.compile(r"\b(?:football club|fc|ac|cf|sc|club)\b")

# Descriptive tokens stripped after short forms have been expanded.
_DESCRIPTIVE_TOKENS = re.compile(
    r"\b(?:united|city|town|athletic|wanderers|rovers|hotspur|albion|villa|villans)\b"
)

# Short forms are expanded before descriptive tokens are stripped; the
# expanded names below are kept whole so Manchester United and Manchester
# City never collapse onto the same key.
SHORT_FORMS: dict[str, str] = {
    "man utd": "manchester united",
    "man united": "manchester united",
    "man u": "manchester united",
    "man city": "manchester city",
    "spurs": "tottenham hotspur",
    "tottenham": "tottenham hotspur",
    "wolves": "wolverhampton wanderers",
    "brighton": "brighton hove albion",
    "brighton and hove albion": "brighton hove albion",
    "west brom": "west bromwich albion",
    "sheff utd": "sheffield united",
    "sheffield utd": "sheffield united",
    "sheff wed": "sheffield wednesday",
    "newcastle utd": "newcastle united",
    "newcastle": "newcastle united",
    "nottm forest": "nottingham forest",
    "psg": "paris saint germain",
    "paris sg": "paris saint germain",
    "inter": "inter milan",
    "internazionale": "inter milan",
    "atletico": "atletico madrid",
    "atl madrid": "atletico madrid",
    "bayern": "bayern munich",
    "bayern munchen": "bayern munich",
}

_PROTECTED = frozenset(SHORT_FORMS.values())

_LEAGUE_TOKENS = re.compile(
    r"\b(?:la liga|bundesliga|championship|premier|division|league|serie|liga)\b"
)


def _collapse(value: str) -> str:
    return _WS.sub(" ", value).strip()


def normalize_team_name(name: str) -> str:
    """
    Canonicalize a raw team name for comparison.

    "Arsenal FC" -> "arsenal", "Man Utd" -> "manchester united",
    "Chelsea U19 (Women)" -> "chelsea".
    """
    if not name:
        return ""
    value = _PARENS.sub(" ", name).lower()
    value = _AGE_GROUP.sub(" ", value)
    value = _NON_ALNUM.sub(" ", value)
    value = _collapse(_GENERIC_TOKENS.sub(" ", value))

    value = SHORT_FORMS.get(value, value)
    if value in _PROTECTED:
        return value

    stripped = _collapse(_DESCRIPTIVE_TOKENS.sub(" ", value))
    # "Villa" alone, "City" alone: keep rather than return empty
    return stripped or value


def normalize_league_name(name: str) -> str:
    """Strip generic league-type tokens: "English Premier League" -> "english", "Serie A" -> "a"."""
    if not name:
        return ""
    value = _PARENS.sub(" ", name).lower()
    value = _LEAGUE_TOKENS.sub(" ", value)
    value = _NON_ALNUM.sub(" ", value)
    return _collapse(value)


def similarity(a: str, b: str) -> float:
    """1 - levenshtein(a, b) / max(len(a), len(b)); symmetric, 1.0 for identical strings."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    longest = max(len(a), len(b))
    return 1.0 - Levenshtein.distance(a, b) / longest


def same_team_pair(home_a: str, away_a: str, home_b: str, away_b: str) -> bool:
    """True when both pairs name the same two teams, in either orientation."""
    pair_a = {normalize_team_name(home_a), normalize_team_name(away_a)}
    pair_b = {normalize_team_name(home_b), normalize_team_name(away_b)}
    return len(pair_a) == 2 and pair_a == pair_b
