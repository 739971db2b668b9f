"""Thread-safe in-memory dual-tier cache."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import Any

STALE_SUFFIX = "_stale"


class Tier(str, Enum):
    FRESH = "fresh"
    STALE = "stale"


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A stored value. Stale entries have no expiry."""

    key: str
    value: Any
    tier: Tier
    expires_at: float | None = None

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


def stale_key(resource: str) -> str:
    return f"{resource}{STALE_SUFFIX}"


def _resource_of(key: str) -> str:
    return key.removesuffix(STALE_SUFFIX)


@dataclass(slots=True)
class _ResourceLock:
    lock: Lock = field(default_factory=Lock)
    users: int = 0


class DualTierCache:
    """Key/value store with a short-lived Fresh tier and a never-expiring Stale tier.

    The Fresh entry of a resource lives under ``<resource>`` and its Stale
    backup under ``<resource>_stale``. Both keys of one resource share a lock,
    so a ``store()`` is atomic for every reader while unrelated resources
    never wait on each other.

    Expiry is lazy: an expired entry reads as absent and is dropped on read.
    ``sweep()`` removes expired entries eagerly but is never required.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._locks: dict[str, _ResourceLock] = {}
        self._registry_lock = Lock()

    @contextmanager
    def _locked(self, key: str) -> Iterator[None]:
        # Locks exist only while someone holds or waits on them, so the
        # registry never outgrows the set of resources in use right now.
        resource = _resource_of(key)
        with self._registry_lock:
            slot = self._locks.get(resource)
            if slot is None:
                slot = self._locks[resource] = _ResourceLock()
            slot.users += 1
        try:
            with slot.lock:
                yield
        finally:
            with self._registry_lock:
                slot.users -= 1
                if slot.users == 0:
                    del self._locks[resource]

    def _read(self, key: str) -> Any | None:
        # Caller holds the resource lock
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expired(self._clock()):
            del self._entries[key]
            return None
        return entry.value

    def get(self, key: str) -> Any | None:
        """Value for `key`, or None if absent or expired."""
        with self._locked(key):
            return self._read(key)

    def set(self, key: str, value: Any, ttl: float = 0) -> None:
        """Store `value`. ``ttl == 0`` means never expire."""
        if ttl < 0:
            raise ValueError(f"ttl must be >= 0, got {ttl}")
        tier = Tier.STALE if key.endswith(STALE_SUFFIX) else Tier.FRESH
        expires_at = self._clock() + ttl if ttl else None
        with self._locked(key):
            self._entries[key] = CacheEntry(key=key, value=value, tier=tier, expires_at=expires_at)

    def store(self, resource: str, value: Any, ttl: float) -> None:
        """Write `value` into both tiers of `resource` in one step."""
        if ttl <= 0:
            raise ValueError(f"fresh ttl must be > 0, got {ttl}")
        with self._locked(resource):
            self._entries[resource] = CacheEntry(
                key=resource, value=value, tier=Tier.FRESH, expires_at=self._clock() + ttl
            )
            backup = stale_key(resource)
            self._entries[backup] = CacheEntry(key=backup, value=value, tier=Tier.STALE)

    def fresh(self, resource: str) -> Any | None:
        return self.get(resource)

    def stale(self, resource: str) -> Any | None:
        return self.get(stale_key(resource))

    def entry(self, key: str) -> CacheEntry | None:
        """The live CacheEntry for `key` (metadata included), or None."""
        with self._locked(key):
            if self._read(key) is None:
                return None
            return self._entries[key]

    def delete(self, key: str) -> None:
        """Remove a single key. No-op if absent."""
        with self._locked(key):
            self._entries.pop(key, None)

    def expire(self, resource: str) -> None:
        """Drop the Fresh tier of `resource`, keeping its Stale backup."""
        self.delete(resource)

    def sweep(self) -> int:
        """Remove every expired entry. Returns how many were dropped."""
        now = self._clock()
        dropped = 0
        for key in self.keys(include_expired=True):
            with self._locked(key):
                entry = self._entries.get(key)
                if entry is not None and entry.expired(now):
                    del self._entries[key]
                    dropped += 1
        return dropped

    def keys(self, include_expired: bool = False) -> list[str]:
        snapshot = list(self._entries.items())
        now = self._clock()
        return [k for k, e in snapshot if include_expired or not e.expired(now)]

    def __len__(self) -> int:
        return len(self.keys())

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
