"""
Time-based finished-match confidence (detection layer 3).

Indicators accumulate points. Records still reported live only score on
the live-specific indicators. At or above the threshold the match is retired,
Finished for major-coverage leagues and SoftFinished otherwise. A live match
older than 48h forces Finished regardless of coverage.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from shared.models.domain import CanonicalMatch
from shared.models.enums import CoverageTier, MatchStatus

from lifecycle.config import LifecycleSettings


@dataclass
class FinishedScore:
    confidence: int = 0
    indicators: list[str] = field(default_factory=list)
    forced: bool = False

    def add(self, indicator: str, weight: int) -> None:
        self.confidence += weight
        self.indicators.append(indicator)


def score_match(match: CanonicalMatch, now: datetime, settings: LifecycleSettings) -> FinishedScore:
    s = settings
    score = FinishedScore()
    live = match.status == MatchStatus.LIVE
    since_start: Optional[timedelta] = now - match.scheduled_time if match.scheduled_time else None
    since_update = now - match.last_updated

    if not live:
        if since_start is not None and since_start > timedelta(hours=s.past_scheduled_h):
            score.add("past_scheduled_time", s.past_scheduled_weight)
        if since_update > timedelta(hours=s.stale_update_h):
            score.add("stale_update", s.stale_update_weight)
        if match.has_open_markets:
            score.add("available_but_not_live", s.available_not_live_weight)
        return score

    if (
        since_start is not None
        and since_start > timedelta(hours=s.live_elapsed_h)
        and since_update > timedelta(hours=s.live_silent_h)
    ):
        score.add("live_but_stale_and_old", s.live_stale_weight)
    if since_start is not None and since_start > timedelta(hours=s.live_ancient_h):
        score.add("live_and_older_than_48h", s.live_ancient_weight)
        score.forced = True
    return score


def decide_finished(
    score: FinishedScore,
    coverage: CoverageTier,
    settings: LifecycleSettings,
    aggressive: bool = False,
) -> Optional[MatchStatus]:
    """Terminal status for a scored match, or None to leave it alone."""
    if score.forced:
        return MatchStatus.FINISHED
    threshold = settings.aggressive_finish_threshold if aggressive else settings.finish_threshold
    if score.confidence < threshold:
        return None
    return MatchStatus.FINISHED if coverage == CoverageTier.MAJOR else MatchStatus.SOFT_FINISHED
