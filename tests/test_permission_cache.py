"""
tests/test_permission_cache.py -- Unit tests for PermissionCache TTL behaviour.

A fake clock drives expiry so nothing sleeps.
"""

from __future__ import annotations

import pytest

from cache.store import PermissionCache
from core.models import UserPermissions


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _perms(user_id: str = "u1", level: int = 5) -> UserPermissions:
    return UserPermissions(user_id, "r1", "District Administrator", level, frozenset({"export.view"}))


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def cache(clock: FakeClock) -> PermissionCache:
    return PermissionCache(ttl=300, clock=clock)


class TestExpiry:
    def test_miss_on_empty(self, cache: PermissionCache) -> None:
        assert cache.get("u1") is None

    def test_hit_before_ttl(self, cache: PermissionCache, clock: FakeClock) -> None:
        cache.set("u1", _perms())
        clock.now += 299.9
        assert cache.get("u1") == _perms()

    def test_miss_at_ttl(self, cache: PermissionCache, clock: FakeClock) -> None:
        """An entry set at t is served strictly before t + ttl and never at or after it."""
        cache.set("u1", _perms())
        clock.now += 300
        assert cache.get("u1") is None

    def test_expired_entry_is_dropped_on_read(self, cache: PermissionCache, clock: FakeClock) -> None:
        cache.set("u1", _perms())
        clock.now += 301
        cache.get("u1")
        clock.now -= 301  # even if the clock went backwards, the entry is gone
        assert cache.get("u1") is None

    def test_set_replaces_and_restarts_ttl(self, cache: PermissionCache, clock: FakeClock) -> None:
        cache.set("u1", _perms(level=5))
        clock.now += 200
        cache.set("u1", _perms(level=7))
        clock.now += 200
        assert cache.get("u1").role_level == 7

    def test_default_ttl_is_five_minutes(self) -> None:
        assert PermissionCache().ttl == 300

    @pytest.mark.parametrize("ttl", [0, -1])
    def test_rejects_non_positive_ttl(self, ttl: int) -> None:
        with pytest.raises(ValueError):
            PermissionCache(ttl=ttl)


class TestInvalidation:
    def test_invalidate_one(self, cache: PermissionCache) -> None:
        cache.set("u1", _perms("u1"))
        cache.set("u2", _perms("u2"))
        cache.invalidate("u1")
        assert cache.get("u1") is None
        assert cache.get("u2") is not None

    def test_invalidate_unknown_is_noop(self, cache: PermissionCache) -> None:
        cache.invalidate("nobody")
        assert len(cache) == 0

    def test_invalidate_all(self, cache: PermissionCache) -> None:
        cache.set("u1", _perms("u1"))
        cache.set("u2", _perms("u2"))
        cache.invalidate_all()
        assert cache.get("u1") is None
        assert cache.get("u2") is None


class TestPurge:
    def test_purge_counts_only_expired(self, cache: PermissionCache, clock: FakeClock) -> None:
        cache.set("old", _perms("old"))
        clock.now += 200
        cache.set("new", _perms("new"))
        clock.now += 150
        assert cache.purge_expired() == 1
        assert cache.get("new") is not None

    def test_len_counts_live_entries(self, cache: PermissionCache, clock: FakeClock) -> None:
        cache.set("u1", _perms("u1"))
        cache.set("u2", _perms("u2"))
        assert len(cache) == 2
        clock.now += 300
        assert len(cache) == 0
