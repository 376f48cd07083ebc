"""
posts/cleanup.py -- RetentionSweeper: batched deletion of expired posts.

A post is expired when its created_at is older than now - retention_days.
The sweep never runs one unbounded DELETE: it selects up to batch_size ids,
deletes exactly those, pauses, and repeats. A crash mid-sweep leaves partial
progress; re-running picks up whatever is still expired.

Invariants:
  - The cutoff is computed once per sweep. Posts created while the sweep runs
    are never candidates, so constant write load cannot keep it looping.
  - retention_days <= 0 is rejected. It would otherwise delete everything.
  - batch_size <= 0 falls back to DEFAULT_BATCH_SIZE.
  - The pause between batches waits on stop_event, so a shutdown interrupts
    the sweep between batches but never inside one.

Used by the `main.py cleanup` CLI and by the API lifespan's background task.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable

from core.errors import ErrorCode, ServiceError
from posts.models import Post
from posts.store import PostRepository, format_timestamp

logger = logging.getLogger("markpost.cleanup")

DEFAULT_BATCH_SIZE = 100
DEFAULT_PREVIEW_LIMIT = 10
DEFAULT_PAUSE_SECONDS = 0.1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RetentionSweeper:
    def __init__(
        self,
        posts: PostRepository,
        pause_seconds: float = DEFAULT_PAUSE_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.posts = posts
        self.pause_seconds = pause_seconds
        self.clock = clock

    def _cutoff(self, retention_days: int) -> str:
        if retention_days <= 0:
            raise ServiceError(ErrorCode.VALIDATION, "retention days must be positive")
        return format_timestamp(self.clock() - timedelta(days=retention_days))

    def count_expired(self, retention_days: int) -> int:
        return self.posts.count_created_before(self._cutoff(retention_days))

    def preview_expired(self, retention_days: int, limit: int = DEFAULT_PREVIEW_LIMIT) -> list[Post]:
        """Return up to limit expired posts, oldest first. Read-only."""
        cutoff = self._cutoff(retention_days)
        if limit <= 0:
            limit = DEFAULT_PREVIEW_LIMIT
        return self.posts.list_created_before(cutoff, limit)

    def cleanup_expired(
        self,
        retention_days: int,
        batch_size: int = DEFAULT_BATCH_SIZE,
        stop_event: threading.Event | None = None,
    ) -> int:
        """Delete expired posts in batches. Returns the number deleted."""
        cutoff = self._cutoff(retention_days)
        if batch_size <= 0:
            batch_size = DEFAULT_BATCH_SIZE
        stop_event = stop_event or threading.Event()

        logger.info("Cleanup started: retention=%d days, cutoff=%s, batch_size=%d", retention_days, cutoff, batch_size)
        total = 0
        batch = 0
        while not stop_event.is_set():
            ids = self.posts.select_ids_created_before(cutoff, batch_size)
            if not ids:
                break
            deleted = self.posts.delete_by_ids(ids)
            total += deleted
            batch += 1
            logger.info("Cleanup batch %d: deleted %d posts (total %d)", batch, deleted, total)
            if deleted < batch_size:
                break
            if stop_event.wait(self.pause_seconds):
                logger.info("Cleanup interrupted after %d batches", batch)
                break

        logger.info("Cleanup finished: %d posts deleted", total)
        return total
