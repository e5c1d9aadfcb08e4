"""Domain enumerations for the match reconciliation engine."""
from __future__ import annotations

from enum import Enum


class MatchStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    FINISHED = "finished"
    SOFT_FINISHED = "soft_finished"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            MatchStatus.FINISHED,
            MatchStatus.SOFT_FINISHED,
            MatchStatus.CANCELLED,
        )


class ProviderName(str, Enum):
    PINNACLE = "pinnacle"
    ODDS_FEED = "odds_feed"
    API_FOOTBALL = "api_football"


class CoverageTier(str, Enum):
    """League coverage; decides Finished vs SoftFinished for time-based detections."""
    MAJOR = "major"
    MINOR = "minor"


class DetectionOperation(str, Enum):
    AUTHORITATIVE_FILTER = "authoritative_filter"
    FEED_VERIFICATION = "feed_verification"
    TIME_BASED_CLEANUP = "time_based_cleanup"
    STALENESS_PURGE = "staleness_purge"
    COMPREHENSIVE = "comprehensive"


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    TRANSIENT_PROVIDER = "transient_provider"
    DATA_INTEGRITY = "data_integrity"
    CIRCUIT_OPEN = "circuit_open"


class ResolutionPath(str, Enum):
    """How a team resolution was reached (for metrics and logs)."""
    PROVIDER_ID = "provider_id"
    PROVIDER_NAME = "provider_name"
    NORMALIZED_NAME = "normalized_name"
    AUTHORITATIVE_CREATE = "authoritative_create"
    FUZZY = "fuzzy"
    SECONDARY_CREATE = "secondary_create"
    CACHE = "cache"
