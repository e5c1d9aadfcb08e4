"""
Finished-match detection configuration.
Uses MR_LIFECYCLE_ prefix; Redis/DB and provider settings come from get_settings().
"""
from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LifecycleSettings(BaseSettings):
    """Detection-layer thresholds; use get_settings() for Redis/DB."""

    model_config = SettingsConfigDict(
        env_prefix="MR_LIFECYCLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    default_sport_id: int = Field(default=1, description="Sport checked when a trigger names none")
    delete_finished: bool = Field(
        default=False, description="Hard-delete retired matches instead of keeping them as terminal records"
    )

    # L1: authoritative status feed
    finished_lookback_days: int = Field(default=4, description="Days of finished fixtures to pull")
    finished_status_codes: list[str] = Field(default=["FT", "AET", "PEN", "AWD"])
    cancelled_status_codes: list[str] = Field(default=["CANC", "PST"])

    # L2: feed absence / market availability
    feed_window_h: float = Field(default=48.0, description="Only records updated within this window are checked")
    feed_batch_limit: int = Field(default=100, description="Max records checked per run")

    # L3: time-based confidence scoring
    past_scheduled_h: float = 2.0
    past_scheduled_weight: int = 20
    stale_update_h: float = 6.0
    stale_update_weight: int = 15
    available_not_live_weight: int = 10
    live_elapsed_h: float = 3.0
    live_silent_h: float = 2.0
    live_stale_weight: int = 30
    live_ancient_h: float = 48.0
    live_ancient_weight: int = 50
    finish_threshold: int = Field(default=30, description="Confidence at or above which a match is retired")
    aggressive_finish_threshold: int = 15

    # L4: staleness safety net
    staleness_h: float = 24.0
    aggressive_staleness_h: float = 12.0


def get_lifecycle_settings() -> LifecycleSettings:
    return LifecycleSettings()
