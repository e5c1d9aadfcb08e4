"""
Team mapping confidence scoring.
Weighted data-quality signals plus a provider-trust bonus, capped at 1.0.
"""
from __future__ import annotations

from dataclasses import dataclass

HAS_PROVIDER_ID = 0.3
EXACT_NAME_MATCH = 0.4
NORMALIZED_NAME_MATCH = 0.2
SPORT_CONTEXT_MATCH = 0.1

AUTHORITATIVE_BONUS = 0.4
SECONDARY_BONUS = 0.2


@dataclass(frozen=True)
class ConfidenceSignals:
    has_provider_id: bool = False
    exact_name_match: bool = False
    normalized_name_match: bool = False
    sport_context_match: bool = True
    authoritative: bool = False


def calculate_confidence(signals: ConfidenceSignals, similarity: float = 1.0) -> float:
    """Score in [0, 1]; a fuzzy-matched mapping is scaled by its similarity."""
    score = 0.0
    if signals.has_provider_id:
        score += HAS_PROVIDER_ID
    if signals.exact_name_match:
        score += EXACT_NAME_MATCH
    if signals.normalized_name_match:
        score += NORMALIZED_NAME_MATCH
    if signals.sport_context_match:
        score += SPORT_CONTEXT_MATCH
    score += AUTHORITATIVE_BONUS if signals.authoritative else SECONDARY_BONUS
    score = min(score, 1.0) * max(0.0, min(similarity, 1.0))
    return round(score, 4)
