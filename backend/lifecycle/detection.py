"""
Multi-layer finished-match detection.

Runs over persisted non-terminal matches. Layers run in order of decreasing
precision and each one is fail-soft: an exception is logged, the layer is
marked failed and the remaining layers still execute.

  L1 authoritative_filter   statistics provider's finished fixtures, matched by team names
  L2 feed_verification      authoritative event feed: absent event or no open market
  L3 time_based_cleanup     indicator scoring, Finished or SoftFinished by league coverage
  L4 staleness_purge        non-live records not updated within the rolling threshold
"""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Union

from shared.config import Settings, get_settings
from shared.errors import CircuitOpen
from shared.models.domain import CanonicalMatch, DetectionReport, LayerResult, utcnow
from shared.models.enums import CoverageTier, DetectionOperation, MatchStatus
from shared.storage.matches import MatchRepository
from shared.utils.circuit_breaker import CircuitBreaker
from shared.utils.logging import bind_task, get_logger
from shared.utils.metrics import DETECTION_DURATION, MATCHES_RETIRED, atrack_latency

from ingest.cache.match_cache import MatchCache
from ingest.normalization.names import same_team_pair
from lifecycle.config import LifecycleSettings, get_lifecycle_settings
from lifecycle.scoring import decide_finished, score_match
from lifecycle.sources.base import EventFeedSource, FinishedFixture, FinishedFixturesSource
from lifecycle.state_machine import can_retire

logger = get_logger(__name__)

Layer = Callable[[int, datetime, bool, LayerResult], Awaitable[None]]

LAYER_ORDER = (
    DetectionOperation.AUTHORITATIVE_FILTER,
    DetectionOperation.FEED_VERIFICATION,
    DetectionOperation.TIME_BASED_CLEANUP,
    DetectionOperation.STALENESS_PURGE,
)

# A fixture matches a record scheduled at most this many days from its kickoff date.
FIXTURE_DAY_TOLERANCE = 1


class FinishedMatchDetector:
    """Retires matches that are over but were never reported as such by a reconciliation pass."""

    def __init__(
        self,
        matches: MatchRepository,
        cache: MatchCache,
        fixtures_source: FinishedFixturesSource,
        event_feed: EventFeedSource,
        breaker: CircuitBreaker,
        settings: Settings | None = None,
        lifecycle_settings: LifecycleSettings | None = None,
    ) -> None:
        self._matches = matches
        self._cache = cache
        self._fixtures = fixtures_source
        self._feed = event_feed
        self._breaker = breaker
        self._settings = settings or get_settings()
        self._lifecycle = lifecycle_settings or get_lifecycle_settings()
        self._layers: dict[DetectionOperation, Layer] = {
            DetectionOperation.AUTHORITATIVE_FILTER: self.authoritative_filter,
            DetectionOperation.FEED_VERIFICATION: self.feed_verification,
            DetectionOperation.TIME_BASED_CLEANUP: self.time_based_cleanup,
            DetectionOperation.STALENESS_PURGE: self.staleness_purge,
        }

    async def run(
        self,
        operation: Union[DetectionOperation, str],
        sport_id: Optional[int] = None,
        aggressive: bool = False,
        now: Optional[datetime] = None,
    ) -> DetectionReport:
        """
        Run one trigger.

        Raises:
            ValueError: unknown operation name.
        """
        op = DetectionOperation(operation)
        sport_id = sport_id or self._lifecycle.default_sport_id
        now = now or utcnow()
        bind_task(f"detection:{op.value}", sport_id)

        layers = LAYER_ORDER if op == DetectionOperation.COMPREHENSIVE else (op,)
        report = DetectionReport(operation=op, sport_id=sport_id, aggressive=aggressive)
        async with atrack_latency(DETECTION_DURATION, operation=op.value):
            for layer in layers:
                report.layers.append(await self._run_layer(layer, sport_id, now, aggressive))

        logger.info(
            "finished_detection_completed",
            operation=op.value,
            sport_id=sport_id,
            aggressive=aggressive,
            total_retired=report.total_retired,
            layers={r.layer.value: r.total for r in report.layers},
            failed=[r.layer.value for r in report.layers if r.failed],
        )
        return report

    async def _run_layer(
        self, layer: DetectionOperation, sport_id: int, now: datetime, aggressive: bool
    ) -> LayerResult:
        result = LayerResult(layer=layer)
        try:
            await self._layers[layer](sport_id, now, aggressive, result)
        except Exception as exc:
            result.failed = True
            logger.warning(
                "finished_detection_layer_failed",
                layer=layer.value,
                sport_id=sport_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
        return result

    # ── L1: authoritative status feed ───────────────────────────────────

    async def authoritative_filter(
        self, sport_id: int, now: datetime, aggressive: bool, result: LayerResult
    ) -> None:
        lifecycle = self._lifecycle
        days = [(now - timedelta(days=offset)).date() for offset in range(lifecycle.finished_lookback_days)]
        fixtures: list[FinishedFixture] = []
        for day in days:
            for fixture in await self._fixtures.fetch_finished(sport_id, day):
                fixtures.append(fixture if fixture.day else replace(fixture, day=day))
        result.checked = len(fixtures)
        if not fixtures:
            return

        cancelled_codes = {c.upper() for c in lifecycle.cancelled_status_codes}
        accepted_codes = {c.upper() for c in lifecycle.finished_status_codes} | cancelled_codes
        active = await self._matches.list_active(sport_id)
        retired_ids = set()
        for fixture in fixtures:
            code = fixture.status_code.upper()
            if code not in accepted_codes:
                continue
            target = MatchStatus.CANCELLED if code in cancelled_codes else MatchStatus.FINISHED
            for match in active:
                if match.id in retired_ids or not self._fixture_matches(fixture, match):
                    continue
                if await self._retire(match, target, result, reason=f"{self._fixtures.source_name}_{code}"):
                    retired_ids.add(match.id)

    @staticmethod
    def _fixture_matches(fixture: FinishedFixture, match: CanonicalMatch) -> bool:
        if not same_team_pair(match.home_team_name, match.away_team_name, fixture.home_team, fixture.away_team):
            return False
        if match.scheduled_time is None:
            return True
        scheduled = match.scheduled_time.date()
        return fixture.day is None or abs((scheduled - fixture.day).days) <= FIXTURE_DAY_TOLERANCE

    # ── L2: feed absence / market availability ──────────────────────────

    async def feed_verification(
        self, sport_id: int, now: datetime, aggressive: bool, result: LayerResult
    ) -> None:
        lifecycle = self._lifecycle
        window = timedelta(hours=lifecycle.feed_window_h)
        provider = self._settings.authoritative_provider
        candidates = sorted(
            (
                m
                for m in await self._matches.list_active(sport_id)
                if m.status != MatchStatus.LIVE
                and m.has_open_markets
                and now - m.last_updated <= window
                and m.event_ids_for(provider)
            ),
            key=lambda m: m.last_updated,
            reverse=True,
        )[: lifecycle.feed_batch_limit]
        if not candidates:
            return

        try:
            events = await self._breaker.call(self._feed.fetch_current_events, sport_id)
        except CircuitOpen as exc:
            result.skipped = True
            logger.info(
                "finished_detection_layer_skipped",
                layer=result.layer.value,
                breaker=exc.name,
                retry_after=exc.retry_after,
            )
            return

        for match in candidates:
            result.checked += 1
            event_ids = match.event_ids_for(provider)
            present = [events[e] for e in event_ids if e in events]
            if not present:
                await self._retire(match, MatchStatus.FINISHED, result, reason="absent_from_feed")
            elif not any(present):
                await self._retire(match, MatchStatus.FINISHED, result, reason="no_open_markets")

    # ── L3: time-based confidence scoring ───────────────────────────────

    async def time_based_cleanup(
        self, sport_id: int, now: datetime, aggressive: bool, result: LayerResult
    ) -> None:
        active = await self._matches.list_active(sport_id)
        if not active:
            return
        tiers = await self._matches.coverage_tiers(m.league_id for m in active if m.league_id is not None)
        for match in active:
            result.checked += 1
            score = score_match(match, now, self._lifecycle)
            coverage = tiers.get(match.league_id, CoverageTier.MINOR)
            target = decide_finished(score, coverage, self._lifecycle, aggressive=aggressive)
            if target is None:
                continue
            logger.debug(
                "finished_match_scored",
                match_id=str(match.id),
                confidence=score.confidence,
                indicators=score.indicators,
                forced=score.forced,
                coverage=coverage.value,
            )
            await self._retire(match, target, result, reason="time_based:" + ",".join(score.indicators))

    # ── L4: staleness safety net ────────────────────────────────────────

    async def staleness_purge(
        self, sport_id: int, now: datetime, aggressive: bool, result: LayerResult
    ) -> None:
        lifecycle = self._lifecycle
        hours = lifecycle.aggressive_staleness_h if aggressive else lifecycle.staleness_h
        threshold = now - timedelta(hours=hours)
        for match in await self._matches.list_active(sport_id):
            if match.status == MatchStatus.LIVE:
                continue
            result.checked += 1
            if match.last_updated < threshold:
                await self._retire(match, MatchStatus.FINISHED, result, reason=f"stale_{hours:g}h")

    # ── Retirement ──────────────────────────────────────────────────────

    async def _retire(
        self, match: CanonicalMatch, target: MatchStatus, result: LayerResult, reason: str
    ) -> bool:
        if not can_retire(match.status, target):
            return False
        if self._lifecycle.delete_finished:
            await self._matches.delete(match.id)
        else:
            await self._matches.set_status(match.id, target, reason)
        await self._cache.evict(match.sport_id, match.league_id, [match.id])

        if target == MatchStatus.CANCELLED:
            result.cancelled += 1
        elif target == MatchStatus.SOFT_FINISHED:
            result.soft_finished += 1
        else:
            result.retired += 1
        MATCHES_RETIRED.labels(layer=result.layer.value, status=target.value).inc()
        logger.info(
            "finished_match_retired",
            match_id=str(match.id),
            identity_key=match.identity_key,
            layer=result.layer.value,
            status=target.value,
            reason=reason,
            deleted=self._lifecycle.delete_finished,
        )
        return True
