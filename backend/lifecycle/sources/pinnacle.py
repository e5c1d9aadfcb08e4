"""
Pinnacle current-event feed.

/v1/fixtures lists the events still offered for a sport; /v1/odds carries the
periods that tell whether a market is still open. An event missing from the
fixtures feed is no longer offered at all.
"""
from __future__ import annotations

from typing import Optional

from shared.config import Settings, get_settings
from shared.models.enums import ProviderName
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger

from ingest.feeds import league_events, open_market_event_ids, pinnacle_client
from lifecycle.sources.base import EventFeedSource

logger = get_logger(__name__)


class PinnacleEventFeed(EventFeedSource):
    def __init__(
        self,
        settings: Settings | None = None,
        client: Optional[ProviderHTTPClient] = None,
    ) -> None:
        self._client = client or pinnacle_client(settings or get_settings())

    @property
    def source_name(self) -> str:
        return ProviderName.PINNACLE.value

    async def start(self) -> None:
        await self._client.start()

    async def close(self) -> None:
        await self._client.close()

    async def fetch_current_events(self, sport_id: int) -> dict[str, bool]:
        fixtures = await self._client.get_json("/v1/fixtures", params={"sportId": sport_id})
        odds = await self._client.get_json("/v1/odds", params={"sportId": sport_id, "oddsFormat": "Decimal"})

        open_markets = open_market_event_ids(odds)
        current = {
            str(event["id"]): str(event["id"]) in open_markets
            for _, event in league_events(fixtures, "league")
            if event.get("id") is not None
        }
        logger.debug(
            "pinnacle_events_fetched",
            sport_id=sport_id,
            events=len(current),
            open_markets=sum(current.values()),
        )
        return current
