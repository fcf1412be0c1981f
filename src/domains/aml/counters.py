"""TTL-bound counters backing the velocity and network rules.

Counters are tumbling windows: the TTL is set on the first increment only, so a
key counts every observation until it expires and the next write starts a new
bucket. Sets behave differently: their TTL is refreshed on every add.
"""

import time
from abc import ABC, abstractmethod
from collections.abc import Callable

KEY_PREFIX = "aml"


def counter_key(purpose: str, subject: str, *dimensions: str) -> str:
    """Build a namespaced key, e.g. ``aml:txncount:phone:98000:campaign:c1``."""
    parts = [KEY_PREFIX, purpose, subject, *dimensions]
    return ":".join(str(p) for p in parts)


class CounterStore(ABC):
    """Key-value store with atomic increments, sets and per-key expiry."""

    @abstractmethod
    async def increment_with_window(self, key: str, window_seconds: int) -> int:
        """Increment ``key`` and start its window on the first increment."""
        ...

    @abstractmethod
    async def add_to_set(self, key: str, member: str, window_seconds: int) -> int:
        """Add ``member`` to the set at ``key``, refresh its TTL, return cardinality."""
        ...


class RedisCounterStore(CounterStore):
    """Counter store over a ``redis.asyncio`` client."""

    def __init__(self, client) -> None:
        self._client = client

    async def increment_with_window(self, key: str, window_seconds: int) -> int:
        # EXPIRE NX only applies to a key without a TTL (Redis 7+)
        pipe = self._client.pipeline(transaction=True)
        pipe.incr(key)
        pipe.expire(key, window_seconds, nx=True)
        count, _ = await pipe.execute()
        return int(count)

    async def add_to_set(self, key: str, member: str, window_seconds: int) -> int:
        pipe = self._client.pipeline(transaction=False)
        pipe.sadd(key, member)
        pipe.expire(key, window_seconds)
        pipe.scard(key)
        results = await pipe.execute()
        return int(results[2])


class InMemoryCounterStore(CounterStore):
    """Process-local counter store with the same window semantics as Redis.

    Used by the ``memory`` backend and by tests. ``clock`` returns seconds and
    can be replaced to move time forward deterministically.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._counters: dict[str, int] = {}
        self._sets: dict[str, set[str]] = {}
        self._expiry: dict[str, float] = {}

    def _evict_if_expired(self, key: str) -> None:
        deadline = self._expiry.get(key)
        if deadline is not None and self._clock() >= deadline:
            self._counters.pop(key, None)
            self._sets.pop(key, None)
            self._expiry.pop(key, None)

    async def increment_with_window(self, key: str, window_seconds: int) -> int:
        self._evict_if_expired(key)
        count = self._counters.get(key, 0) + 1
        self._counters[key] = count
        if count == 1:
            self._expiry[key] = self._clock() + window_seconds
        return count

    async def add_to_set(self, key: str, member: str, window_seconds: int) -> int:
        self._evict_if_expired(key)
        members = self._sets.setdefault(key, set())
        members.add(member)
        self._expiry[key] = self._clock() + window_seconds
        return len(members)

    def ttl(self, key: str) -> float | None:
        """Remaining lifetime of ``key`` in seconds, or None if absent."""
        self._evict_if_expired(key)
        deadline = self._expiry.get(key)
        if deadline is None:
            return None
        return deadline - self._clock()

    def reset(self) -> None:
        self._counters.clear()
        self._sets.clear()
        self._expiry.clear()
