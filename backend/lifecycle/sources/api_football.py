"""
API-Football finished fixtures feed.
GET /fixtures?date=YYYY-MM-DD&status=FT-AET-PEN-AWD-CANC-PST
"""
from __future__ import annotations

from datetime import date
from typing import Any, Optional

from pydantic import ValidationError

from shared.config import Settings, get_settings
from shared.models.enums import ProviderName
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger

from ingest.normalization.match_normalizer import ApiFootballRawFixture, as_utc
from lifecycle.sources.base import FinishedFixture, FinishedFixturesSource

logger = get_logger(__name__)

FINISHED_STATUS_FILTER = "FT-AET-PEN-AWD-CANC-PST"


class ApiFootballFinishedSource(FinishedFixturesSource):
    def __init__(
        self,
        settings: Settings | None = None,
        client: Optional[ProviderHTTPClient] = None,
    ) -> None:
        s = settings or get_settings()
        self._client = client or ProviderHTTPClient(
            ProviderName.API_FOOTBALL.value,
            s.api_football_base_url,
            api_key=s.api_football_api_key,
            headers={"x-apisports-key": s.api_football_api_key},
            timeout_s=s.provider_request_timeout_s,
        )

    @property
    def source_name(self) -> str:
        return ProviderName.API_FOOTBALL.value

    async def start(self) -> None:
        await self._client.start()

    async def close(self) -> None:
        await self._client.close()

    async def fetch_finished(self, sport_id: int, day: date) -> list[FinishedFixture]:
        data = await self._client.get_json(
            "/fixtures",
            params={"date": day.isoformat(), "status": FINISHED_STATUS_FILTER},
        )
        fixtures: list[FinishedFixture] = []
        for item in (data or {}).get("response") or []:
            fixture = self._parse(item)
            if fixture is not None:
                fixtures.append(fixture)
        logger.debug("finished_fixtures_fetched", day=day.isoformat(), fixtures=len(fixtures))
        return fixtures

    def _parse(self, item: Any) -> Optional[FinishedFixture]:
        try:
            raw = ApiFootballRawFixture.model_validate(item)
        except ValidationError as exc:
            logger.debug("finished_fixture_unparsable", error=str(exc))
            return None
        code = (raw.fixture.status.short or "").upper()
        if not code or not raw.teams.home.name or not raw.teams.away.name:
            return None
        return FinishedFixture(
            home_team=raw.teams.home.name,
            away_team=raw.teams.away.name,
            status_code=code,
            league_id=raw.league.id,
            fixture_id=str(raw.fixture.id),
            day=as_utc(raw.fixture.date).date() if raw.fixture.date else None,
        )
