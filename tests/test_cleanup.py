"""Unit tests for posts/cleanup.py -- RetentionSweeper.

Covers:
- batch size 1 against two expired posts and one fresh post leaves the fresh one
- preview returns the oldest posts first and honours the limit
- retention_days <= 0 is a validation error for every operation
- batch_size <= 0 falls back to the default
- the cutoff is captured once, so posts aging past it mid-sweep are kept
- a set stop_event ends the sweep between batches
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from auth.models import User
from auth.store import UserStore
from auth.tokens import generate_post_key, hash_password
from core.errors import ErrorCode, ServiceError
from posts.cleanup import DEFAULT_PREVIEW_LIMIT, RetentionSweeper
from posts.models import Post
from posts.store import PostStore, format_timestamp, new_post_id

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def owner(user_store: UserStore) -> User:
    return user_store.create_user(
        User(username="owner", post_key=generate_post_key(), hashed_password=hash_password("pw123456"))
    )


def _seed(post_store: PostStore, owner: User, age: timedelta, title: str = "t") -> Post:
    return post_store.create_post(
        Post(id=new_post_id(), title=title, body="b", user_id=owner.id, created_at=format_timestamp(NOW - age))
    )


def _sweeper(post_store: PostStore, clock=lambda: NOW) -> RetentionSweeper:
    return RetentionSweeper(post_store, pause_seconds=0, clock=clock)


class TestCleanupExpired:
    def test_batch_size_one_leaves_only_newer_post(self, post_store: PostStore, owner: User) -> None:
        _seed(post_store, owner, timedelta(days=8))
        _seed(post_store, owner, timedelta(days=9))
        fresh = _seed(post_store, owner, timedelta(days=1))

        deleted = _sweeper(post_store).cleanup_expired(retention_days=7, batch_size=1)

        assert deleted == 2
        remaining = post_store.list_by_user(owner.id, offset=0, limit=10)
        assert [p.id for p in remaining] == [fresh.id]

    def test_nothing_expired(self, post_store: PostStore, owner: User) -> None:
        _seed(post_store, owner, timedelta(hours=1))
        assert _sweeper(post_store).cleanup_expired(7, 10) == 0
        assert post_store.count_by_user(owner.id) == 1

    def test_zero_batch_size_uses_default(self, post_store: PostStore, owner: User) -> None:
        for _ in range(3):
            _seed(post_store, owner, timedelta(days=30))
        assert _sweeper(post_store).cleanup_expired(7, 0) == 3

    def test_cutoff_captured_once(self, post_store: PostStore, owner: User) -> None:
        # Post is 6.5 days old at sweep start. A clock that jumps a day per call
        # would make it expire mid-sweep if the cutoff were recomputed.
        _seed(post_store, owner, timedelta(days=8))
        _seed(post_store, owner, timedelta(days=8))
        survivor = _seed(post_store, owner, timedelta(days=6, hours=12))
        ticks = iter(NOW + timedelta(days=i) for i in range(100))

        deleted = _sweeper(post_store, clock=lambda: next(ticks)).cleanup_expired(7, batch_size=1)

        assert deleted == 2
        assert post_store.get_by_id(survivor.id) is not None

    def test_stop_event_interrupts_between_batches(self, post_store: PostStore, owner: User) -> None:
        for _ in range(5):
            _seed(post_store, owner, timedelta(days=30))
        stop = threading.Event()
        stop.set()
        assert _sweeper(post_store).cleanup_expired(7, 1, stop_event=stop) == 0
        assert post_store.count_by_user(owner.id) == 5


class TestPreviewAndCount:
    def test_preview_returns_oldest_first(self, post_store: PostStore, owner: User) -> None:
        for days in (10, 30, 20, 40):
            _seed(post_store, owner, timedelta(days=days), title=f"{days}d")

        preview = _sweeper(post_store).preview_expired(retention_days=7, limit=2)

        assert [p.title for p in preview] == ["40d", "30d"]

    def test_preview_non_positive_limit_uses_default(self, post_store: PostStore, owner: User) -> None:
        for _ in range(DEFAULT_PREVIEW_LIMIT + 2):
            _seed(post_store, owner, timedelta(days=30))
        assert len(_sweeper(post_store).preview_expired(7, 0)) == DEFAULT_PREVIEW_LIMIT

    def test_count_is_read_only(self, post_store: PostStore, owner: User) -> None:
        _seed(post_store, owner, timedelta(days=30))
        _seed(post_store, owner, timedelta(days=1))
        sweeper = _sweeper(post_store)
        assert sweeper.count_expired(7) == 1
        assert sweeper.count_expired(7) == 1
        assert post_store.count_by_user(owner.id) == 2


class TestValidation:
    @pytest.mark.parametrize("days", [0, -1])
    def test_non_positive_retention_rejected(self, post_store: PostStore, days: int) -> None:
        sweeper = _sweeper(post_store)
        for call in (
            lambda: sweeper.count_expired(days),
            lambda: sweeper.preview_expired(days, 5),
            lambda: sweeper.cleanup_expired(days, 5),
        ):
            with pytest.raises(ServiceError) as exc_info:
                call()
            assert exc_info.value.code == ErrorCode.VALIDATION
