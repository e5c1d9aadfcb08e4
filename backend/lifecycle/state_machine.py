"""
Match lifecycle state machine.

    Scheduled -> Live                 merged live signal AND scheduled time reached (or unknown)
    Live -> Scheduled                 forbidden
    Scheduled/Live -> Finished/Soft   detection layers only
    Terminal -> Live                  forbidden, except the aggregation override
    any -> Cancelled                  provider reports cancellation/postponement

Routine reconciliation passes go through decide(); detection layers go through can_retire().
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from shared.models.domain import CanonicalMatch
from shared.models.enums import MatchStatus
from shared.utils.logging import get_logger
from shared.utils.metrics import LIFECYCLE_OVERRIDES, TRANSITIONS_REJECTED

logger = get_logger(__name__)

FULL_CONFIDENCE = 1.0

_RETIREMENT_TARGETS = frozenset({MatchStatus.FINISHED, MatchStatus.SOFT_FINISHED, MatchStatus.CANCELLED})


@dataclass(frozen=True)
class TransitionDecision:
    status: MatchStatus
    accepted: bool
    override: bool = False
    reason: Optional[str] = None

    @property
    def rejected(self) -> bool:
        return not self.accepted


def has_started(scheduled_time: Optional[datetime], now: datetime) -> bool:
    """An unknown start time counts as started."""
    return scheduled_time is None or scheduled_time <= now


def initial_status(match: CanonicalMatch, now: datetime) -> MatchStatus:
    """
    Status a freshly aggregated record would have with no history.

    A live signal before the scheduled start means live betting is open, not
    that the match has kicked off, so the record stays Scheduled.
    """
    if match.cancelled:
        return MatchStatus.CANCELLED
    if match.live_signal and has_started(match.scheduled_time, now):
        return MatchStatus.LIVE
    return MatchStatus.SCHEDULED


def decide(
    current: MatchStatus,
    incoming: CanonicalMatch,
    now: datetime,
    override_enabled: bool = True,
) -> TransitionDecision:
    """Decide the persisted status after a routine pass merged `incoming` onto a record in `current`."""
    proposed = initial_status(incoming, now)

    if proposed == current:
        return TransitionDecision(status=current, accepted=True)

    if proposed == MatchStatus.CANCELLED:
        return TransitionDecision(status=proposed, accepted=True, reason="provider_cancelled")

    if current.is_terminal:
        if (
            proposed == MatchStatus.LIVE
            and override_enabled
            and incoming.live_confidence >= FULL_CONFIDENCE
        ):
            LIFECYCLE_OVERRIDES.inc()
            logger.warning(
                "lifecycle_aggregation_override",
                match_id=str(incoming.id),
                identity_key=incoming.identity_key,
                from_status=current.value,
                to_status=proposed.value,
                live_confidence=incoming.live_confidence,
            )
            return TransitionDecision(
                status=MatchStatus.LIVE, accepted=True, override=True, reason="aggregation_override"
            )
        return _reject(current, proposed, incoming)

    if current == MatchStatus.LIVE and proposed == MatchStatus.SCHEDULED:
        return _reject(current, proposed, incoming)

    if current == MatchStatus.SCHEDULED and proposed == MatchStatus.LIVE:
        return TransitionDecision(status=MatchStatus.LIVE, accepted=True, reason="live_confirmed")

    return _reject(current, proposed, incoming)


def _reject(current: MatchStatus, proposed: MatchStatus, incoming: CanonicalMatch) -> TransitionDecision:
    TRANSITIONS_REJECTED.labels(from_status=current.value, to_status=proposed.value).inc()
    logger.debug(
        "lifecycle_transition_rejected",
        match_id=str(incoming.id),
        from_status=current.value,
        to_status=proposed.value,
    )
    return TransitionDecision(status=current, accepted=False, reason="transition_forbidden")


def can_retire(current: MatchStatus, target: MatchStatus) -> bool:
    """Detection layers may only move non-terminal records into a terminal state."""
    return not current.is_terminal and target in _RETIREMENT_TARGETS
