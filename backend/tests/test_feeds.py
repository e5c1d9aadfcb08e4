"""
Tests for the provider feeds and the Pinnacle current-event source, against
httpx.MockTransport.
"""
from __future__ import annotations

from datetime import date
from typing import Any, Callable

import httpx
import pytest

from shared.config import Settings
from shared.errors import TransientProviderError
from shared.models.enums import ProviderName
from shared.utils.http_client import ProviderHTTPClient

from ingest.feeds import ApiFootballFeed, OddsFeed, PinnacleFeed, build_feeds
from ingest.normalization.match_normalizer import normalize_batch
from lifecycle.sources import ApiFootballFinishedSource, PinnacleEventFeed

FIXTURES = {
    "sport_id": 29,
    "last": 1773500000,
    "league": [
        {
            "id": 1980,
            "name": "England - Premier League",
            "events": [
                {"id": 1001, "starts": "2026-03-14T15:00:00Z", "home": "Arsenal", "away": "Chelsea", "liveStatus": 1, "status": "I"},
                {"id": 1002, "starts": "2026-03-14T17:30:00Z", "home": "Fulham", "away": "Everton", "liveStatus": 2, "status": "O"},
            ],
        }
    ],
}

ODDS = {
    "leagues": [
        {
            "id": 1980,
            "events": [
                {"id": 1001, "periods": [{"number": 0, "status": 1}]},
                {"id": 1002, "periods": [{"number": 0, "status": 2}]},
            ],
        }
    ]
}


def client_for(handler: Callable[[httpx.Request], httpx.Response], name: str = "test") -> ProviderHTTPClient:
    return ProviderHTTPClient(name, "https://provider.test", timeout_s=1.0, transport=httpx.MockTransport(handler))


def pinnacle_handler(request: httpx.Request) -> httpx.Response:
    payload: Any = FIXTURES if request.url.path == "/v1/fixtures" else ODDS
    return httpx.Response(200, json=payload)


@pytest.mark.asyncio
async def test_pinnacle_feed_flattens_leagues_and_normalizes() -> None:
    feed = PinnacleFeed(client=client_for(pinnacle_handler))
    await feed.start()
    try:
        records = await feed(1)
    finally:
        await feed.close()

    assert [r["id"] for r in records] == [1001, 1002]
    assert records[0]["league_name"] == "England - Premier League"
    assert records[0]["is_have_open_markets"] is True
    assert records[1]["is_have_open_markets"] is False

    matches, outcome = normalize_batch(ProviderName.PINNACLE, records)
    assert outcome.skipped == 0
    assert [m.is_live for m in matches] == [True, False]
    assert matches[0].league_id == 1980


@pytest.mark.asyncio
async def test_pinnacle_event_source_reports_open_markets() -> None:
    source = PinnacleEventFeed(client=client_for(pinnacle_handler))
    await source.start()
    try:
        events = await source.fetch_current_events(1)
    finally:
        await source.close()

    assert events == {"1001": True, "1002": False}


@pytest.mark.asyncio
async def test_odds_feed_unwraps_envelope_and_fills_sport() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["sport_id"] == "1"
        return httpx.Response(200, json={"matches": [{"id": "of-1", "home": "Arsenal FC", "away": "Chelsea FC"}]})

    feed = OddsFeed(client=client_for(handler))
    await feed.start()
    try:
        records = await feed(1)
    finally:
        await feed.close()

    assert records == [{"id": "of-1", "home": "Arsenal FC", "away": "Chelsea FC", "sport_id": 1}]


@pytest.mark.asyncio
async def test_api_football_feed_returns_response_items() -> None:
    item = {"fixture": {"id": 7, "status": {"short": "NS"}}, "teams": {"home": {"name": "A"}, "away": {"name": "B"}}}

    def handler(request: httpx.Request) -> httpx.Response:
        assert "date" in request.url.params
        return httpx.Response(200, json={"response": [item]})

    feed = ApiFootballFeed(client=client_for(handler))
    await feed.start()
    try:
        assert await feed(1) == [item]
    finally:
        await feed.close()


@pytest.mark.asyncio
async def test_server_errors_surface_as_transient_provider_error() -> None:
    feed = OddsFeed(client=client_for(lambda request: httpx.Response(503)))
    await feed.start()
    try:
        with pytest.raises(TransientProviderError):
            await feed(1)
    finally:
        await feed.close()


def test_build_feeds_skips_providers_without_base_url(settings: Settings) -> None:
    feeds = build_feeds(settings.model_copy(update={"odds_feed_base_url": ""}))
    assert set(feeds) == {ProviderName.PINNACLE, ProviderName.API_FOOTBALL}


@pytest.mark.asyncio
async def test_finished_source_carries_kickoff_date() -> None:
    item = {
        "fixture": {"id": 7, "date": "2026-03-13T23:30:00-02:00", "status": {"short": "FT"}},
        "league": {"id": 39, "name": "Premier League"},
        "teams": {"home": {"id": 1, "name": "Arsenal"}, "away": {"id": 2, "name": "Chelsea"}},
    }

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["status"] == "FT-AET-PEN-AWD-CANC-PST"
        return httpx.Response(200, json={"response": [item, {"fixture": "broken"}]})

    source = ApiFootballFinishedSource(client=client_for(handler))
    await source.start()
    try:
        [fixture] = await source.fetch_finished(1, date(2026, 3, 14))
    finally:
        await source.close()

    assert (fixture.home_team, fixture.status_code, fixture.fixture_id) == ("Arsenal", "FT", "7")
    assert fixture.day == date(2026, 3, 14)
