"""
Live/prematch match-list cache with stale-shadow fallback, plus pass checkpoints.

Before every overwrite the previous value is copied to a longer-lived stale
key, so a reader falls back to slightly older data instead of an empty list
when a refresh cycle fails outright.
"""
from __future__ import annotations

import json
import uuid
from typing import Any, Iterable, Optional

from pydantic import TypeAdapter, ValidationError

from shared.config import Settings, get_settings
from shared.models.domain import CacheRead, CanonicalMatch
from shared.utils.logging import get_logger
from shared.utils.metrics import STALE_CACHE_READS
from shared.utils.redis_manager import (
    LIVE_MATCHES_KEY,
    LIVE_MATCHES_STALE_KEY,
    PREMATCH_MATCHES_KEY,
    PREMATCH_MATCHES_STALE_KEY,
    PROGRESS_KEY,
    KeyValueStore,
    fmt_key,
)

logger = get_logger(__name__)

_MATCH_LIST = TypeAdapter(list[CanonicalMatch])

LIVE = "live"
PREMATCH = "prematch"


def dedupe_latest(matches: Iterable[CanonicalMatch]) -> list[CanonicalMatch]:
    """One entry per identity key, keeping the most recently updated."""
    latest: dict[str, CanonicalMatch] = {}
    for match in matches:
        current = latest.get(match.identity_key)
        if current is None or match.last_updated > current.last_updated:
            latest[match.identity_key] = match
    return [latest[k] for k in sorted(latest)]


class MatchCache:
    """Cache tier over the shared key-value store."""

    def __init__(self, store: KeyValueStore, settings: Settings | None = None) -> None:
        self._store = store
        self._settings = settings or get_settings()
        s = self._settings
        self._kinds: dict[str, tuple[str, str, int, int]] = {
            LIVE: (LIVE_MATCHES_KEY, LIVE_MATCHES_STALE_KEY, s.live_cache_ttl_s, s.live_stale_ttl_s),
            PREMATCH: (
                PREMATCH_MATCHES_KEY,
                PREMATCH_MATCHES_STALE_KEY,
                s.prematch_cache_ttl_s,
                s.prematch_stale_ttl_s,
            ),
        }

    def keys(self, kind: str, sport_id: int, league_id: Optional[int]) -> tuple[str, str]:
        fresh, stale, _, _ = self._kinds[kind]
        return (
            fmt_key(fresh, sport=sport_id, league=league_id),
            fmt_key(stale, sport=sport_id, league=league_id),
        )

    async def _load(self, key: str) -> Optional[list[CanonicalMatch]]:
        raw = await self._store.get(key)
        if raw is None:
            return None
        try:
            return _MATCH_LIST.validate_json(raw)
        except ValidationError as exc:
            logger.warning("cache_payload_invalid", key=key, error=str(exc))
            return None

    async def _write(self, kind: str, sport_id: int, league_id: Optional[int], matches: list[CanonicalMatch]) -> None:
        _, _, ttl, stale_ttl = self._kinds[kind]
        key, stale_key = self.keys(kind, sport_id, league_id)
        previous = await self._store.get(key)
        if previous is not None:
            await self._store.put(stale_key, previous, stale_ttl)
        await self._store.put(key, _MATCH_LIST.dump_json(matches).decode(), ttl)

    async def _read(self, kind: str, sport_id: int, league_id: Optional[int]) -> CacheRead:
        key, stale_key = self.keys(kind, sport_id, league_id)
        fresh = await self._load(key)
        if fresh is not None:
            return CacheRead(matches=fresh, stale=False, key=key)
        stale = await self._load(stale_key)
        if stale is not None:
            STALE_CACHE_READS.labels(kind=kind).inc()
            logger.info("cache_stale_fallback", kind=kind, key=stale_key, matches=len(stale))
            return CacheRead(matches=stale, stale=True, key=stale_key)
        return CacheRead(matches=[], stale=False, key=None)

    # ── Live ────────────────────────────────────────────────────────────

    async def store_live(self, sport_id: int, league_id: Optional[int], matches: list[CanonicalMatch]) -> None:
        """Replace the live list for (sport, league)."""
        await self._write(LIVE, sport_id, league_id, dedupe_latest(matches))

    async def read_live(self, sport_id: int, league_id: Optional[int]) -> CacheRead:
        return await self._read(LIVE, sport_id, league_id)

    # ── Prematch ────────────────────────────────────────────────────────

    async def merge_prematch(
        self, sport_id: int, league_id: Optional[int], matches: list[CanonicalMatch]
    ) -> list[CanonicalMatch]:
        """Incremental refresh: new batch union cached entries, latest per identity key wins."""
        key, stale_key = self.keys(PREMATCH, sport_id, league_id)
        existing = await self._load(key)
        if existing is None:
            existing = await self._load(stale_key) or []
        merged = dedupe_latest([*existing, *matches])
        await self._write(PREMATCH, sport_id, league_id, merged)
        return merged

    async def read_prematch(self, sport_id: int, league_id: Optional[int]) -> CacheRead:
        return await self._read(PREMATCH, sport_id, league_id)

    # ── Eviction ────────────────────────────────────────────────────────

    async def evict(
        self,
        sport_id: int,
        league_id: Optional[int],
        match_ids: Iterable[uuid.UUID],
        kinds: Iterable[str] = (LIVE, PREMATCH),
    ) -> int:
        """Drop matches from the given lists (fresh and stale) for (sport, league)."""
        ids = set(match_ids)
        if not ids:
            return 0
        removed = 0
        for kind in kinds:
            _, _, ttl, stale_ttl = self._kinds[kind]
            for key, key_ttl in zip(self.keys(kind, sport_id, league_id), (ttl, stale_ttl)):
                current = await self._load(key)
                if not current:
                    continue
                kept = [m for m in current if m.id not in ids]
                if len(kept) != len(current):
                    removed += len(current) - len(kept)
                    await self._store.put(key, _MATCH_LIST.dump_json(kept).decode(), key_ttl)
        return removed

    # ── Progress checkpoints ────────────────────────────────────────────

    def _progress_key(self, task: str, sport_id: int) -> str:
        return fmt_key(PROGRESS_KEY, task=task, sport=sport_id)

    async def get_checkpoint(self, task: str, sport_id: int) -> Optional[dict[str, Any]]:
        raw = await self._store.get(self._progress_key(task, sport_id))
        return json.loads(raw) if raw else None

    async def save_checkpoint(self, task: str, sport_id: int, fingerprint: str, next_chunk: int) -> None:
        payload = json.dumps({"fingerprint": fingerprint, "next_chunk": next_chunk})
        await self._store.put(self._progress_key(task, sport_id), payload, self._settings.checkpoint_ttl_s)

    async def clear_checkpoint(self, task: str, sport_id: int) -> None:
        await self._store.forget(self._progress_key(task, sport_id))
