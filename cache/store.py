"""
cache/store.py -- In-process TTL cache for resolved user permissions.

Avoids a user -> role -> permissions round-trip on every guarded request by
holding each resolved UserPermissions for a fixed TTL (default 5 minutes).
The cache is an ordinary object owned by whoever composes the resolver, so
tests get a fresh instance and the API keeps one on app.state.

Entries expire on their own; role changes must call invalidate() or
invalidate_all() to become visible before then. Both take effect for the
very next get().

No locking: concurrent resolutions for the same user write the same value,
and a dict assignment is atomic under the GIL.

Usage:
    cache = PermissionCache(ttl=300)
    perms = cache.get("auth-id")      # returns UserPermissions or None
    cache.set("auth-id", perms)
    cache.invalidate("auth-id")       # after a role change
    cache.purge_expired()             # call periodically to trim old entries
"""

import time
from collections.abc import Callable
from typing import Optional

from core.models import UserPermissions

_DEFAULT_TTL = 5 * 60  # 5 minutes in seconds


class PermissionCache:
    def __init__(self, ttl: int = _DEFAULT_TTL, clock: Callable[[], float] = time.time) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, tuple[UserPermissions, float]] = {}

    def get(self, user_id: str) -> Optional[UserPermissions]:
        """Return cached permissions for user_id if present and not yet expired."""
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        perms, expiry = entry
        if self._clock() >= expiry:
            self._entries.pop(user_id, None)
            return None
        return perms

    def set(self, user_id: str, perms: UserPermissions) -> None:
        """Store perms for user_id, replacing any existing entry."""
        self._entries[user_id] = (perms, self._clock() + self.ttl)

    def invalidate(self, user_id: str) -> None:
        self._entries.pop(user_id, None)

    def invalidate_all(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        """Delete all expired entries. Returns number of entries removed."""
        now = self._clock()
        expired = [uid for uid, (_, expiry) in list(self._entries.items()) if now >= expiry]
        for uid in expired:
            self._entries.pop(uid, None)
        return len(expired)

    def __len__(self) -> int:
        now = self._clock()
        return sum(1 for _, expiry in list(self._entries.values()) if now < expiry)
