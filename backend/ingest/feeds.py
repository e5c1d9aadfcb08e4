"""
Provider feeds for the reconciliation pass.

Each feed is an async callable ``feed(sport_id) -> list[dict]`` returning raw
records in the shape its match normalizer model accepts. Fetch errors are
raised as-is; ReconciliationService.run degrades them to an empty batch.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from shared.config import Settings, get_settings
from shared.models.enums import ProviderName
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# Pinnacle period status: 1 = open, 2 = offline
OPEN_PERIOD_STATUS = 1


def league_events(payload: Any, leagues_field: str) -> Iterator[tuple[dict[str, Any], dict[str, Any]]]:
    """Yield (league, event) pairs from a Pinnacle league-grouped payload."""
    for league in (payload or {}).get(leagues_field) or []:
        for event in league.get("events") or []:
            yield league, event


def open_market_event_ids(odds: Any) -> set[str]:
    return {
        str(event.get("id"))
        for _, event in league_events(odds, "leagues")
        if any(p.get("status") == OPEN_PERIOD_STATUS for p in event.get("periods") or [])
    }


def pinnacle_client(settings: Settings) -> ProviderHTTPClient:
    headers = {"Accept": "application/json"}
    if settings.pinnacle_api_key:
        headers["Authorization"] = f"Basic {settings.pinnacle_api_key}"
    return ProviderHTTPClient(
        ProviderName.PINNACLE.value,
        settings.pinnacle_base_url,
        api_key=settings.pinnacle_api_key,
        headers=headers,
        timeout_s=settings.provider_request_timeout_s,
    )


class ProviderFeedClient(ABC):
    """Owns one provider HTTP client; calling the instance fetches a raw batch."""

    provider: ProviderName

    def __init__(self, client: ProviderHTTPClient) -> None:
        self._client = client

    async def start(self) -> None:
        await self._client.start()

    async def close(self) -> None:
        await self._client.close()

    async def __call__(self, sport_id: int) -> list[dict[str, Any]]:
        records = await self.fetch(sport_id)
        logger.debug("provider_batch_fetched", provider=self.provider.value, sport_id=sport_id, records=len(records))
        return records

    @abstractmethod
    async def fetch(self, sport_id: int) -> list[dict[str, Any]]:
        ...


class PinnacleFeed(ProviderFeedClient):
    """
    Authoritative feed. Fixtures are flattened out of their league groups and
    joined with the odds snapshot for the open-market flag.
    """

    provider = ProviderName.PINNACLE

    def __init__(self, settings: Settings | None = None, client: Optional[ProviderHTTPClient] = None) -> None:
        super().__init__(client or pinnacle_client(settings or get_settings()))

    async def fetch(self, sport_id: int) -> list[dict[str, Any]]:
        fixtures = await self._client.get_json("/v1/fixtures", params={"sportId": sport_id})
        odds = await self._client.get_json("/v1/odds", params={"sportId": sport_id, "oddsFormat": "Decimal"})
        open_markets = open_market_event_ids(odds)
        last = (fixtures or {}).get("last")

        records = []
        for league, event in league_events(fixtures, "league"):
            event_id = event.get("id")
            records.append(
                {
                    "id": event_id,
                    "home": event.get("home"),
                    "away": event.get("away"),
                    "league_id": league.get("id"),
                    "league_name": league.get("name") or "",
                    "sport_id": sport_id,
                    "starts": event.get("starts"),
                    "live_status_id": event.get("liveStatus", 0),
                    "status": event.get("status"),
                    "is_have_open_markets": str(event_id) in open_markets,
                    "last": last,
                }
            )
        return records


class OddsFeed(ProviderFeedClient):
    """Secondary odds aggregator. Accepts a bare list or a ``matches``/``data`` envelope."""

    provider = ProviderName.ODDS_FEED

    def __init__(self, settings: Settings | None = None, client: Optional[ProviderHTTPClient] = None) -> None:
        s = settings or get_settings()
        super().__init__(
            client
            or ProviderHTTPClient(
                ProviderName.ODDS_FEED.value,
                s.odds_feed_base_url,
                api_key=s.odds_feed_api_key,
                headers={"X-Api-Key": s.odds_feed_api_key} if s.odds_feed_api_key else {},
                timeout_s=s.provider_request_timeout_s,
            )
        )

    async def fetch(self, sport_id: int) -> list[dict[str, Any]]:
        data = await self._client.get_json("/matches", params={"sport_id": sport_id})
        if isinstance(data, dict):
            data = data.get("matches") or data.get("data") or []
        return [{**item, "sport_id": item.get("sport_id", sport_id)} for item in data or []]


class ApiFootballFeed(ProviderFeedClient):
    """Statistics provider: today's fixtures (UTC), used for enrichment and team ids."""

    provider = ProviderName.API_FOOTBALL

    def __init__(self, settings: Settings | None = None, client: Optional[ProviderHTTPClient] = None) -> None:
        s = settings or get_settings()
        super().__init__(
            client
            or ProviderHTTPClient(
                ProviderName.API_FOOTBALL.value,
                s.api_football_base_url,
                api_key=s.api_football_api_key,
                headers={"x-apisports-key": s.api_football_api_key},
                timeout_s=s.provider_request_timeout_s,
            )
        )

    async def fetch(self, sport_id: int) -> list[dict[str, Any]]:
        today = datetime.now(timezone.utc).date().isoformat()
        data = await self._client.get_json("/fixtures", params={"date": today})
        return list((data or {}).get("response") or [])


def build_feeds(settings: Settings | None = None) -> dict[ProviderName, ProviderFeedClient]:
    """Feeds for every known provider that has a base URL configured."""
    s = settings or get_settings()
    available = {
        ProviderName.PINNACLE: (s.pinnacle_base_url, PinnacleFeed),
        ProviderName.ODDS_FEED: (s.odds_feed_base_url, OddsFeed),
        ProviderName.API_FOOTBALL: (s.api_football_base_url, ApiFootballFeed),
    }
    feeds: dict[ProviderName, ProviderFeedClient] = {}
    for provider in s.known_providers:
        base_url, feed_cls = available[provider]
        if not base_url:
            logger.info("provider_feed_disabled", provider=provider.value, reason="no_base_url")
            continue
        feeds[provider] = feed_cls(s)
    return feeds
