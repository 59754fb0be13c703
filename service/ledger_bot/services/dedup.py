"""
Update De-duplication Service

Telegram re-delivers a webhook update when it does not get a timely 200,
and several instances may receive the same update. Every update_id is
marked as seen before it is processed; a second delivery inside the TTL
is dropped.

Backed by the Supabase table:

    create table telegram_updates_seen (
        update_id bigint primary key,
        seen_at   timestamptz not null default now()
    );
"""

import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from ..config import get_settings
from ..supabase_client import get_supabase_admin, supabase_configured
from ..telegram_bot.logging_config import bot_logger as logger

TABLE = "telegram_updates_seen"


class SeenUpdates(Protocol):
    async def mark_seen(self, update_id: int) -> bool: ...

    async def purge_expired(self) -> int: ...


class SupabaseSeenUpdates:
    """Seen-before set shared by every instance through Supabase."""

    def __init__(self, ttl_seconds: int, client=None, clock: Callable[[], datetime] = None):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.supabase = client or get_supabase_admin()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def mark_seen(self, update_id: int) -> bool:
        """
        Claim an update id.

        The claim is one insert against the update_id primary key, so of
        several instances receiving the same update only one gets the row.

        Returns:
            True if this is the first delivery within the TTL (process it),
            False if it was already seen (drop it).
        """
        now = self.clock()

        # An expired claim no longer blocks the id
        self.supabase.table(TABLE).delete().eq("update_id", update_id).lt(
            "seen_at", (now - self.ttl).isoformat()
        ).execute()

        result = self.supabase.table(TABLE).upsert(
            {"update_id": update_id, "seen_at": now.isoformat()},
            on_conflict="update_id",
            ignore_duplicates=True,
        ).execute()
        return bool(result.data)

    async def purge_expired(self) -> int:
        cutoff = self.clock() - self.ttl
        result = self.supabase.table(TABLE).delete().lt("seen_at", cutoff.isoformat()).execute()
        return len(result.data) if result.data else 0


class InMemorySeenUpdates:
    """Process-local fallback for development; not shared between instances."""

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl_seconds
        self.clock = clock
        self._seen: dict[int, float] = {}

    async def mark_seen(self, update_id: int) -> bool:
        now = self.clock()
        seen_at = self._seen.get(update_id)
        if seen_at is not None and now - seen_at < self.ttl:
            return False
        self._seen[update_id] = now
        return True

    async def purge_expired(self) -> int:
        now = self.clock()
        expired = [uid for uid, seen_at in self._seen.items() if now - seen_at >= self.ttl]
        for uid in expired:
            del self._seen[uid]
        return len(expired)


# Singleton instance
_seen_updates: Optional[SeenUpdates] = None


def get_seen_updates() -> SeenUpdates:
    global _seen_updates
    if _seen_updates is None:
        settings = get_settings()
        if supabase_configured():
            _seen_updates = SupabaseSeenUpdates(settings.dedup_ttl_seconds)
        else:
            logger.warning("Supabase is not configured, update de-duplication is process-local")
            _seen_updates = InMemorySeenUpdates(settings.dedup_ttl_seconds)
    return _seen_updates
