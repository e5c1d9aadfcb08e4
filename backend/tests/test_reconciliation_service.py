"""
Unit tests for the reconciliation pass.

Run: pytest backend/tests/test_reconciliation_service.py -v
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest

from shared.config import Settings
from shared.errors import TransientProviderError
from shared.models.domain import CanonicalMatch, ProviderRef
from shared.models.enums import MatchStatus, ProviderName
from shared.utils.circuit_breaker import CircuitBreaker

from ingest.cache.match_cache import MatchCache
from ingest.service import ReconciliationService, batch_fingerprint, chunked, merge_with_existing
from ingest.teams.resolver import TeamResolver

from conftest import T0, FakeClock, FakeKeyValueStore, InMemoryMatchRepository, InMemoryTeamRepository, make_match

SPORT = 1
LEAGUE = 39
KICKED_OFF = T0 + timedelta(minutes=10)


def pinnacle(event_id: int, home: str, away: str, live: int = 0, start: datetime = T0, **extra: Any) -> dict:
    return {
        "id": event_id,
        "home": home,
        "away": away,
        "league_id": LEAGUE,
        "league_name": "Premier League",
        "starts": start.isoformat(),
        "live_status_id": live,
        "last": int(T0.timestamp()),
        **extra,
    }


FIVE_FIXTURES = [
    pinnacle(1001, "Arsenal", "Chelsea"),
    pinnacle(1002, "Fulham", "Everton"),
    pinnacle(1003, "Brentford", "Burnley"),
    pinnacle(1004, "Liverpool", "Wolves"),
    pinnacle(1005, "Leeds", "Luton"),
]


@pytest.fixture
def cache(kv: FakeKeyValueStore, settings: Settings) -> MatchCache:
    return MatchCache(kv, settings)


@pytest.fixture
def resolver(team_repo: InMemoryTeamRepository, kv: FakeKeyValueStore, settings: Settings) -> TeamResolver:
    return TeamResolver(team_repo, kv, settings)


@pytest.fixture
def service(
    match_repo: InMemoryMatchRepository, resolver: TeamResolver, cache: MatchCache, settings: Settings
) -> ReconciliationService:
    return ReconciliationService(match_repo, resolver, cache, settings)


class FlakyMatchRepository(InMemoryMatchRepository):
    """Fails the n-th upsert once, like a database connection dropping mid-pass."""

    def __init__(self, fail_on: int) -> None:
        super().__init__()
        self.fail_on = fail_on

    async def upsert(self, match: CanonicalMatch) -> None:
        if self.upserts + 1 == self.fail_on:
            self.fail_on = -1
            raise ConnectionError("connection reset")
        await super().upsert(match)


# ── Helpers ─────────────────────────────────────────────────────────────

def test_chunked_bounds() -> None:
    items = [make_match(identity_key=f"k{i}") for i in range(5)]
    assert [len(c) for c in chunked(items, 2)] == [2, 2, 1]
    assert [len(c) for c in chunked(items, 0)] == [1, 1, 1, 1, 1]


def test_fingerprint_depends_on_identity_keys() -> None:
    a = [make_match(identity_key="k1"), make_match(identity_key="k2")]
    b = [make_match(identity_key="k1"), make_match(identity_key="k3")]
    assert batch_fingerprint(a) == batch_fingerprint(list(a))
    assert batch_fingerprint(a) != batch_fingerprint(b)


def test_merge_with_existing_keeps_identity_and_unions_providers() -> None:
    existing = make_match(
        identity_key="old",
        providers=[ProviderRef(provider=ProviderName.PINNACLE, event_id="1")],
        home_score=1,
        status=MatchStatus.LIVE,
        last_updated=T0 + timedelta(minutes=5),
    )
    incoming = make_match(
        identity_key="new",
        providers=[ProviderRef(provider=ProviderName.ODDS_FEED, event_id="9")],
        last_updated=T0,
    )

    merged = merge_with_existing(existing, incoming)

    assert merged.id == existing.id
    assert merged.identity_key == "old"
    assert len(merged.providers) == 2
    assert merged.home_score == 1
    assert merged.status == MatchStatus.LIVE
    assert merged.last_updated == existing.last_updated


def test_merge_keeps_authoritative_display_and_reorients_scores() -> None:
    existing = make_match("Arsenal", "Chelsea", name_provider=ProviderName.PINNACLE, scheduled_time=T0)
    incoming = make_match(
        "Chelsea FC", "Arsenal FC",
        name_provider=ProviderName.ODDS_FEED,
        scheduled_time=T0 + timedelta(minutes=3),
        home_score=2,
        away_score=1,
        last_updated=T0 + timedelta(minutes=1),
    )

    merged = merge_with_existing(existing, incoming, ProviderName.PINNACLE)

    assert (merged.home_team_name, merged.away_team_name) == ("Arsenal", "Chelsea")
    assert merged.scheduled_time == T0
    assert (merged.home_score, merged.away_score) == (1, 2)


# ── Persistence ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_first_pass_creates_and_resolves_teams(
    service: ReconciliationService, match_repo: InMemoryMatchRepository
) -> None:
    outcome = await service.reconcile("prematch_sync", SPORT, {ProviderName.PINNACLE: FIVE_FIXTURES[:2]}, now=T0)

    assert outcome.normalized == 2
    assert outcome.created == 2
    assert len(match_repo.rows) == 2
    assert all(m.home_team_id and m.away_team_id for m in match_repo.rows.values())


@pytest.mark.asyncio
async def test_repeated_pass_is_idempotent(
    service: ReconciliationService, match_repo: InMemoryMatchRepository
) -> None:
    batches = {ProviderName.PINNACLE: FIVE_FIXTURES[:2]}
    await service.reconcile("prematch_sync", SPORT, batches, now=T0)
    before = dict(match_repo.rows)
    upserts = match_repo.upserts

    outcome = await service.reconcile("prematch_sync", SPORT, batches, now=T0)

    assert outcome.unchanged == 2
    assert match_repo.upserts == upserts
    assert match_repo.rows == before


@pytest.mark.asyncio
async def test_secondary_provider_merges_into_existing_record(
    service: ReconciliationService, match_repo: InMemoryMatchRepository
) -> None:
    await service.reconcile("prematch_sync", SPORT, {ProviderName.PINNACLE: FIVE_FIXTURES[:1]}, now=T0)
    odds = [{"id": "of-1", "home": "Arsenal FC", "away": "Chelsea FC", "league": "Premier League",
             "start_time": (T0 + timedelta(minutes=3)).isoformat()}]

    outcome = await service.reconcile("prematch_sync", SPORT, {ProviderName.ODDS_FEED: odds}, now=T0)

    assert outcome.updated == 1
    [match] = match_repo.rows.values()
    assert {r.provider for r in match.providers} == {ProviderName.PINNACLE, ProviderName.ODDS_FEED}


@pytest.mark.asyncio
async def test_record_found_by_provider_ref_keeps_its_identity(
    service: ReconciliationService, match_repo: InMemoryMatchRepository
) -> None:
    existing = match_repo.add(
        make_match(identity_key="arsenal|chelsea|english|2026-03-14T14:00",
                   providers=[ProviderRef(provider=ProviderName.PINNACLE, event_id="1001")])
    )

    await service.reconcile("prematch_sync", SPORT, {ProviderName.PINNACLE: FIVE_FIXTURES[:1]}, now=T0)

    assert list(match_repo.rows) == [existing.identity_key]
    assert match_repo.rows[existing.identity_key].id == existing.id


@pytest.mark.asyncio
async def test_malformed_record_skipped_pass_continues(service: ReconciliationService) -> None:
    batch = [FIVE_FIXTURES[0], {"id": 9, "home": "Nobody"}]
    outcome = await service.reconcile("prematch_sync", SPORT, {ProviderName.PINNACLE: batch}, now=T0)
    assert outcome.skipped == 1
    assert outcome.created == 1


# ── Lifecycle guard ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_live_match_not_regressed(
    service: ReconciliationService, match_repo: InMemoryMatchRepository
) -> None:
    live = [pinnacle(1001, "Arsenal", "Chelsea", live=1)]
    await service.reconcile("live_sync", SPORT, {ProviderName.PINNACLE: live}, now=KICKED_OFF)

    outcome = await service.reconcile(
        "live_sync", SPORT, {ProviderName.PINNACLE: FIVE_FIXTURES[:1]}, now=KICKED_OFF
    )

    assert outcome.transitions_rejected == 1
    [match] = match_repo.rows.values()
    assert match.status == MatchStatus.LIVE


@pytest.mark.asyncio
async def test_finished_match_returns_live_only_through_override(
    service: ReconciliationService, match_repo: InMemoryMatchRepository
) -> None:
    live = [pinnacle(1001, "Arsenal", "Chelsea", live=1)]
    await service.reconcile("live_sync", SPORT, {ProviderName.PINNACLE: live}, now=KICKED_OFF)
    [match] = match_repo.rows.values()
    await match_repo.set_status(match.id, MatchStatus.FINISHED, "stale_24h")

    outcome = await service.reconcile("live_sync", SPORT, {ProviderName.PINNACLE: live}, now=KICKED_OFF)

    assert outcome.overrides == 1
    assert match_repo.by_id(match.id).status == MatchStatus.LIVE
    assert match_repo.by_id(match.id).status_reason == "aggregation_override"


@pytest.mark.asyncio
async def test_override_disabled_keeps_terminal(
    match_repo: InMemoryMatchRepository, resolver: TeamResolver, cache: MatchCache, settings: Settings
) -> None:
    strict = settings.model_copy(update={"aggregation_override_enabled": False})
    service = ReconciliationService(match_repo, resolver, cache, strict)
    live = [pinnacle(1001, "Arsenal", "Chelsea", live=1)]
    await service.reconcile("live_sync", SPORT, {ProviderName.PINNACLE: live}, now=KICKED_OFF)
    [match] = match_repo.rows.values()
    await match_repo.set_status(match.id, MatchStatus.FINISHED, "stale_24h")

    outcome = await service.reconcile("live_sync", SPORT, {ProviderName.PINNACLE: live}, now=KICKED_OFF)

    assert outcome.transitions_rejected == 1
    assert match_repo.by_id(match.id).status == MatchStatus.FINISHED


# ── Chunking / resume ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_interrupted_pass_resumes_at_next_chunk(
    resolver: TeamResolver, cache: MatchCache, settings: Settings
) -> None:
    repo = FlakyMatchRepository(fail_on=3)
    service = ReconciliationService(repo, resolver, cache, settings)
    batches = {ProviderName.PINNACLE: FIVE_FIXTURES}

    with pytest.raises(ConnectionError):
        await service.reconcile("prematch_sync", SPORT, batches, now=T0)
    checkpoint = await cache.get_checkpoint("prematch_sync", SPORT)
    assert checkpoint["next_chunk"] == 1

    outcome = await service.reconcile("prematch_sync", SPORT, batches, now=T0)

    assert outcome.chunks_skipped == 1
    assert outcome.chunks_processed == 2
    assert outcome.created == 3
    assert len(repo.rows) == 5
    assert await cache.get_checkpoint("prematch_sync", SPORT) is None
    assert len((await cache.read_prematch(SPORT, LEAGUE)).matches) == 5


@pytest.mark.asyncio
async def test_checkpoint_for_different_batch_is_ignored(
    service: ReconciliationService, cache: MatchCache
) -> None:
    await cache.save_checkpoint("prematch_sync", SPORT, "some-other-batch", 2)

    outcome = await service.reconcile("prematch_sync", SPORT, {ProviderName.PINNACLE: FIVE_FIXTURES}, now=T0)

    assert outcome.chunks_skipped == 0
    assert outcome.chunks_processed == 3
    assert outcome.created == 5


# ── Provider degradation ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_failing_provider_degrades_to_empty(
    service: ReconciliationService, match_repo: InMemoryMatchRepository
) -> None:
    feeds = {
        ProviderName.PINNACLE: AsyncMock(return_value=FIVE_FIXTURES[:2]),
        ProviderName.ODDS_FEED: AsyncMock(side_effect=TransientProviderError("odds_feed", "timeout")),
    }

    outcome = await service.run("prematch_sync", SPORT, feeds, now=T0)

    assert outcome.provider_errors == 1
    assert outcome.created == 2
    feeds[ProviderName.PINNACLE].assert_awaited_once_with(SPORT)


# ── Enrichment ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_enricher_applied_through_breaker(
    match_repo: InMemoryMatchRepository,
    resolver: TeamResolver,
    cache: MatchCache,
    settings: Settings,
    kv: FakeKeyValueStore,
    clock: FakeClock,
) -> None:
    enricher = AsyncMock(side_effect=lambda m: m.model_copy(update={"has_open_markets": True}))
    breaker = CircuitBreaker("enrichment", kv, settings, clock=clock)
    service = ReconciliationService(match_repo, resolver, cache, settings, enricher=enricher, enrichment_breaker=breaker)

    await service.reconcile("prematch_sync", SPORT, {ProviderName.PINNACLE: FIVE_FIXTURES[:2]}, now=T0)

    assert enricher.await_count == 2
    assert all(m.has_open_markets for m in match_repo.rows.values())


@pytest.mark.asyncio
async def test_open_breaker_skips_enrichment(
    match_repo: InMemoryMatchRepository,
    resolver: TeamResolver,
    cache: MatchCache,
    settings: Settings,
    kv: FakeKeyValueStore,
    clock: FakeClock,
) -> None:
    enricher = AsyncMock()
    breaker = CircuitBreaker("enrichment", kv, settings, clock=clock)
    for _ in range(5):
        await breaker.record_failure("upstream 503")
    service = ReconciliationService(match_repo, resolver, cache, settings, enricher=enricher, enrichment_breaker=breaker)

    outcome = await service.reconcile("prematch_sync", SPORT, {ProviderName.PINNACLE: FIVE_FIXTURES[:2]}, now=T0)

    enricher.assert_not_awaited()
    assert outcome.enrichment_skipped == 2
    assert outcome.created == 2


# ── Cache refresh ───────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_cache_lists_follow_status(service: ReconciliationService, cache: MatchCache) -> None:
    await service.reconcile("prematch_sync", SPORT, {ProviderName.PINNACLE: FIVE_FIXTURES[:2]}, now=T0)
    assert len((await cache.read_prematch(SPORT, LEAGUE)).matches) == 2
    assert (await cache.read_live(SPORT, LEAGUE)).matches == []

    live = [pinnacle(1001, "Arsenal", "Chelsea", live=1), FIVE_FIXTURES[1]]
    await service.reconcile("live_sync", SPORT, {ProviderName.PINNACLE: live}, now=KICKED_OFF)

    live_read = await cache.read_live(SPORT, LEAGUE)
    prematch_read = await cache.read_prematch(SPORT, LEAGUE)
    assert [m.home_team_name for m in live_read.matches] == ["Arsenal"]
    assert [m.home_team_name for m in prematch_read.matches] == ["Fulham"]


@pytest.mark.asyncio
async def test_cancelled_match_leaves_prematch_cache(
    service: ReconciliationService, cache: MatchCache, match_repo: InMemoryMatchRepository
) -> None:
    await service.reconcile("prematch_sync", SPORT, {ProviderName.PINNACLE: FIVE_FIXTURES[:2]}, now=T0)

    called_off = [pinnacle(1001, "Arsenal", "Chelsea", status="cancelled"), FIVE_FIXTURES[1]]
    await service.reconcile("prematch_sync", SPORT, {ProviderName.PINNACLE: called_off}, now=T0)

    statuses = {m.home_team_name: m.status for m in match_repo.rows.values()}
    assert statuses == {"Arsenal": MatchStatus.CANCELLED, "Fulham": MatchStatus.SCHEDULED}
    prematch = await cache.read_prematch(SPORT, LEAGUE)
    assert [m.home_team_name for m in prematch.matches] == ["Fulham"]
    assert (await cache.read_live(SPORT, LEAGUE)).matches == []
