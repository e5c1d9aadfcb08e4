"""
Reconciliation pass.

One pass normalizes every provider batch, aggregates them into canonical
matches, resolves team ids, applies the lifecycle guard against the persisted
record, upserts, and refreshes the cache tier. Large batches are processed in
chunks with a checkpoint in the key-value store so an interrupted pass resumes
at the next unprocessed chunk.
"""
from __future__ import annotations

import asyncio
import hashlib
from collections import defaultdict
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from shared.config import Settings, get_settings
from shared.errors import CircuitOpen, DataIntegrityAnomaly, TransientProviderError
from shared.models.domain import BatchOutcome, CanonicalMatch, utcnow
from shared.models.enums import MatchStatus, ProviderName
from shared.storage.matches import MatchRepository
from shared.utils.circuit_breaker import CircuitBreaker
from shared.utils.logging import bind_task, get_logger
from shared.utils.metrics import (
    CANONICAL_UPSERTS,
    LIVE_MATCHES,
    PROVIDER_FETCH_ERRORS,
    RECONCILE_DURATION,
    atrack_latency,
)

from ingest.aggregation.aggregator import MatchAggregator
from ingest.cache.match_cache import PREMATCH, MatchCache
from ingest.normalization.names import normalize_team_name
from ingest.normalization.match_normalizer import normalize_batch
from ingest.teams.resolver import TeamResolver
from lifecycle.state_machine import decide

logger = get_logger(__name__)

ProviderFeed = Callable[[int], Awaitable[list[Any]]]
Enricher = Callable[[CanonicalMatch], Awaitable[CanonicalMatch]]

FETCH_ERRORS = (TransientProviderError, httpx.HTTPError, asyncio.TimeoutError)


def batch_fingerprint(matches: Iterable[CanonicalMatch]) -> str:
    digest = hashlib.sha1()
    for match in matches:
        digest.update(match.identity_key.encode())
        digest.update(b"\n")
    return digest.hexdigest()


def chunked(items: list[CanonicalMatch], size: int) -> list[list[CanonicalMatch]]:
    size = max(size, 1)
    return [items[i : i + size] for i in range(0, len(items), size)]


def merge_with_existing(
    existing: CanonicalMatch,
    incoming: CanonicalMatch,
    authoritative: Optional[ProviderName] = None,
) -> CanonicalMatch:
    """
    Fold a freshly aggregated record onto its persisted counterpart.

    The persisted id and identity key are kept, providers are unioned and
    last_updated never moves backwards. Display fields stay with the persisted
    record when only it was seeded by the authoritative provider. Status is
    left to the state machine.
    """
    refs = sorted(
        {*existing.providers, *incoming.providers},
        key=lambda r: (r.provider.value, r.event_id),
    )
    keep_display = (
        authoritative is not None
        and existing.name_provider == authoritative
        and incoming.name_provider != authoritative
    )
    display, other = (existing, incoming) if keep_display else (incoming, existing)

    def score_rank(m: CanonicalMatch) -> tuple[bool, datetime]:
        return (m.home_score + m.away_score) > 0, m.last_updated

    score_src = max((existing, incoming), key=score_rank)
    home_score, away_score = score_src.home_score, score_src.away_score
    display_home = normalize_team_name(display.home_team_name)
    if (
        normalize_team_name(score_src.home_team_name) != display_home
        and normalize_team_name(score_src.away_team_name) == display_home
    ):
        home_score, away_score = away_score, home_score
    clock_src = incoming if incoming.last_updated >= existing.last_updated else existing

    return incoming.model_copy(
        update={
            "id": existing.id,
            "identity_key": existing.identity_key,
            "providers": refs,
            "home_team_name": display.home_team_name,
            "away_team_name": display.away_team_name,
            "name_provider": display.name_provider,
            "home_team_provider_id": display.home_team_provider_id,
            "away_team_provider_id": display.away_team_provider_id,
            "home_team_id": display.home_team_id or other.home_team_id,
            "away_team_id": display.away_team_id or other.away_team_id,
            "scheduled_time": display.scheduled_time or other.scheduled_time,
            "league_id": display.league_id if display.league_id is not None else other.league_id,
            "league_name": display.league_name or other.league_name,
            "home_score": home_score,
            "away_score": away_score,
            "clock": clock_src.clock if clock_src.clock is not None else existing.clock,
            "period": clock_src.period if clock_src.period is not None else existing.period,
            "status": existing.status,
            "status_reason": existing.status_reason,
            "last_updated": max(existing.last_updated, incoming.last_updated),
        }
    )


class ReconciliationService:
    """
    Runs reconciliation passes for one logical task at a time.

    ``enricher`` is an optional injection point for the caller: an async
    ``CanonicalMatch -> CanonicalMatch`` applied after team resolution, guarded
    by ``enrichment_breaker`` when one is given. ``ingest.main`` runs passes
    without enrichment; a scheduler that owns an enrichment source passes it here.
    """

    def __init__(
        self,
        matches: MatchRepository,
        resolver: TeamResolver,
        cache: MatchCache,
        settings: Settings | None = None,
        enricher: Optional[Enricher] = None,
        enrichment_breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        self._matches = matches
        self._resolver = resolver
        self._cache = cache
        self._settings = settings or get_settings()
        self._aggregator = MatchAggregator(self._settings)
        self._enricher = enricher
        self._breaker = enrichment_breaker

    # ── Entry points ────────────────────────────────────────────────────

    async def run(
        self,
        task: str,
        sport_id: int,
        feeds: Mapping[ProviderName, ProviderFeed],
        now: Optional[datetime] = None,
    ) -> BatchOutcome:
        """Fetch every provider feed, then reconcile. A failing provider contributes nothing."""
        batches: dict[ProviderName, list[Any]] = {}
        fetch_errors = 0
        for provider, feed in feeds.items():
            try:
                batches[provider] = await feed(sport_id)
            except FETCH_ERRORS as exc:
                fetch_errors += 1
                batches[provider] = []
                PROVIDER_FETCH_ERRORS.labels(provider=provider.value).inc()
                logger.warning(
                    "provider_fetch_failed",
                    provider=provider.value,
                    sport_id=sport_id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
        outcome = await self.reconcile(task, sport_id, batches, now=now)
        outcome.provider_errors += fetch_errors
        return outcome

    async def reconcile(
        self,
        task: str,
        sport_id: int,
        batches: Mapping[ProviderName, Iterable[Any]],
        now: Optional[datetime] = None,
    ) -> BatchOutcome:
        now = now or utcnow()
        bind_task(task, sport_id)
        async with atrack_latency(RECONCILE_DURATION, task=task):
            outcome = BatchOutcome()
            normalized = []
            for provider, payloads in batches.items():
                provider_matches, provider_outcome = normalize_batch(provider, payloads, sport_id)
                normalized.append(provider_matches)
                outcome = outcome.merge(provider_outcome)

            canonical = self._aggregator.aggregate(*normalized, now=now)
            final = await self._process_chunks(task, sport_id, canonical, outcome, now)
            await self._refresh_cache(sport_id, final)

        logger.info("reconciliation_pass_completed", task=task, sport_id=sport_id, **outcome.model_dump())
        return outcome

    # ── Chunked persistence ─────────────────────────────────────────────

    async def _process_chunks(
        self,
        task: str,
        sport_id: int,
        canonical: list[CanonicalMatch],
        outcome: BatchOutcome,
        now: datetime,
    ) -> list[CanonicalMatch]:
        fingerprint = batch_fingerprint(canonical)
        chunks = chunked(canonical, self._settings.chunk_size)

        start = 0
        checkpoint = await self._cache.get_checkpoint(task, sport_id)
        if checkpoint and checkpoint.get("fingerprint") == fingerprint:
            start = min(int(checkpoint.get("next_chunk", 0)), len(chunks))
            if start:
                logger.info("reconciliation_resumed", task=task, sport_id=sport_id, next_chunk=start, chunks=len(chunks))

        final: list[CanonicalMatch] = []
        for index, chunk in enumerate(chunks):
            if index < start:
                outcome.chunks_skipped += 1
                final.extend(await self._persisted_view(chunk))
                continue
            for match in chunk:
                record = await self._process_match(match, outcome, now)
                if record is not None:
                    final.append(record)
            outcome.chunks_processed += 1
            await self._cache.save_checkpoint(task, sport_id, fingerprint, index + 1)

        await self._cache.clear_checkpoint(task, sport_id)
        return final

    async def _persisted_view(self, chunk: list[CanonicalMatch]) -> list[CanonicalMatch]:
        """Records from an already-processed chunk, as persisted, for the cache refresh."""
        view = []
        for match in chunk:
            existing = await self._matches.find_existing(match.identity_key, match.providers)
            view.append(existing or match)
        return view

    async def _process_match(
        self, match: CanonicalMatch, outcome: BatchOutcome, now: datetime
    ) -> Optional[CanonicalMatch]:
        try:
            match = await self._resolve_teams(match)
            match = await self._enrich(match, outcome)
        except (DataIntegrityAnomaly, PydanticValidationError) as exc:
            outcome.errored += 1
            CANONICAL_UPSERTS.labels(outcome="errored").inc()
            logger.warning("canonical_match_errored", identity_key=match.identity_key, error=str(exc))
            return None

        existing = await self._matches.find_existing(match.identity_key, match.providers)
        if existing is None:
            await self._matches.upsert(match)
            outcome.created += 1
            CANONICAL_UPSERTS.labels(outcome="created").inc()
            return match

        merged = merge_with_existing(existing, match, self._settings.authoritative_provider)
        decision = decide(
            existing.status, merged, now, override_enabled=self._settings.aggregation_override_enabled
        )
        if decision.rejected:
            outcome.transitions_rejected += 1
        if decision.override:
            outcome.overrides += 1
        if decision.status != existing.status:
            merged = merged.model_copy(update={"status": decision.status, "status_reason": decision.reason})

        if merged == existing:
            outcome.unchanged += 1
            CANONICAL_UPSERTS.labels(outcome="unchanged").inc()
            return existing

        await self._matches.upsert(merged)
        outcome.updated += 1
        CANONICAL_UPSERTS.labels(outcome="updated").inc()
        return merged

    async def _resolve_teams(self, match: CanonicalMatch) -> CanonicalMatch:
        provider = match.name_provider or self._settings.authoritative_provider
        home_id = await self._resolver.resolve_or_none(
            provider, match.home_team_name, match.home_team_provider_id, match.sport_id, match.league_id
        )
        away_id = await self._resolver.resolve_or_none(
            provider, match.away_team_name, match.away_team_provider_id, match.sport_id, match.league_id
        )
        return match.model_copy(update={"home_team_id": home_id, "away_team_id": away_id})

    async def _enrich(self, match: CanonicalMatch, outcome: BatchOutcome) -> CanonicalMatch:
        if self._enricher is None:
            return match
        if self._breaker is None:
            return await self._enricher(match)
        try:
            return await self._breaker.call(self._enricher, match)
        except CircuitOpen:
            outcome.enrichment_skipped += 1
            return match
        except FETCH_ERRORS as exc:
            logger.warning("enrichment_failed", identity_key=match.identity_key, error=str(exc))
            return match

    # ── Cache tier ──────────────────────────────────────────────────────

    async def _refresh_cache(self, sport_id: int, records: list[CanonicalMatch]) -> None:
        groups: dict[Optional[int], list[CanonicalMatch]] = defaultdict(list)
        for record in records:
            groups[record.league_id].append(record)

        live_total = 0
        for league_id, group in groups.items():
            live = [m for m in group if m.status == MatchStatus.LIVE]
            scheduled = [m for m in group if m.status == MatchStatus.SCHEDULED]
            await self._cache.store_live(sport_id, league_id, live)
            if scheduled:
                await self._cache.merge_prematch(sport_id, league_id, scheduled)
            if live:
                await self._cache.evict(sport_id, league_id, [m.id for m in live], kinds=(PREMATCH,))
            terminal = [m.id for m in group if m.status.is_terminal]
            if terminal:
                await self._cache.evict(sport_id, league_id, terminal)
            live_total += len(live)
        LIVE_MATCHES.labels(sport=str(sport_id)).set(live_total)
