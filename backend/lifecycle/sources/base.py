"""
Status-feed source interfaces used by the finished-match detection layers.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class FinishedFixture:
    """A fixture the statistics provider reports as over (or called off)."""
    home_team: str
    away_team: str
    status_code: str
    league_id: Optional[int] = None
    fixture_id: str = ""
    # UTC kickoff date; the detector falls back to the day the fixture was fetched for
    day: Optional[date] = None


class FinishedFixturesSource(ABC):
    """Authoritative status feed for detection layer 1."""

    @property
    @abstractmethod
    def source_name(self) -> str:
        pass

    @abstractmethod
    async def fetch_finished(self, sport_id: int, day: date) -> list[FinishedFixture]:
        """
        Fixtures for one calendar day whose status is finished, cancelled or postponed.
        Transport failures propagate; the calling layer is fail-soft.
        """
        pass


class EventFeedSource(ABC):
    """Current event feed of the authoritative provider, for detection layer 2."""

    @property
    @abstractmethod
    def source_name(self) -> str:
        pass

    @abstractmethod
    async def fetch_current_events(self, sport_id: int) -> dict[str, bool]:
        """Map of provider event id to whether any market is still open."""
        pass
