from lifecycle.sources.api_football import ApiFootballFinishedSource
from lifecycle.sources.base import EventFeedSource, FinishedFixture, FinishedFixturesSource
from lifecycle.sources.pinnacle import PinnacleEventFeed

__all__ = [
    "ApiFootballFinishedSource",
    "EventFeedSource",
    "FinishedFixture",
    "FinishedFixturesSource",
    "PinnacleEventFeed",
]
