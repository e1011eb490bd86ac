# backend/app/core/session_store.py

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Generic, Iterable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

EvictHook = Callable[[str, Any], Awaitable[None]]


@dataclass
class _Entry(Generic[T]):
    value: T
    expires_at: float


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class SessionStore(Generic[T]):
    """
    Process-local keyed cache of upstream sessions/connections.

    - Every entry carries an explicit expiry; expired entries are dropped on read
      or by ``sweep`` and handed to the optional ``on_evict`` hook.
    - Writers for the same key (login/logout) serialize on a per-key lock that
      exists only while someone holds or waits on it.
      Readers never take the lock.
    """

    def __init__(
        self,
        ttl_seconds: float,
        on_evict: Optional[EvictHook] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._on_evict = on_evict
        self._clock = clock
        self._entries: Dict[str, _Entry[T]] = {}
        self._locks: Dict[str, _KeyLock] = {}

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        """Holds the writer lock for ``key``."""
        key_lock = self._locks.get(key)
        if key_lock is None:
            key_lock = self._locks[key] = _KeyLock()
        key_lock.users += 1
        try:
            async with key_lock.lock:
                yield
        finally:
            key_lock.users -= 1
            if key_lock.users == 0 and self._locks.get(key) is key_lock:
                del self._locks[key]

    async def get(self, key: str) -> Optional[T]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        if entry.expires_at <= self._clock():
            # Only drop it if nobody replaced it meanwhile
            if self._entries.get(key) is entry:
                del self._entries[key]
            logger.info(f"Session for '{key}' expired; evicting.")
            await self._evict(key, entry.value)
            return None

        return entry.value

    async def put(self, key: str, value: T) -> Optional[T]:
        """Stores ``value`` and returns the live entry it replaced, if any."""
        previous = self._entries.get(key)
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + self.ttl_seconds)

        if previous is None:
            return None
        if previous.expires_at <= self._clock():
            await self._evict(key, previous.value)
            return None
        return previous.value

    async def pop(self, key: str) -> Optional[T]:
        entry = self._entries.pop(key, None)
        return entry.value if entry else None

    async def sweep(self) -> int:
        """Drops and evicts every expired entry. Returns how many were dropped."""
        now = self._clock()
        expired = [(k, e) for k, e in self._entries.items() if e.expires_at <= now]
        for key, entry in expired:
            if self._entries.get(key) is entry:
                del self._entries[key]
            await self._evict(key, entry.value)
        if expired:
            logger.info(f"Swept {len(expired)} expired session(s).")
        return len(expired)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.expires_at > self._clock()

    def keys(self) -> List[str]:
        return list(self._entries)

    def __len__(self) -> int:
        now = self._clock()
        return sum(1 for e in self._entries.values() if e.expires_at > now)

    async def _evict(self, key: str, value: T) -> None:
        if not self._on_evict:
            return
        try:
            await self._on_evict(key, value)
        except Exception as e:
            # Eviction is cleanup of a session we already dropped
            logger.warning(f"Eviction hook failed for '{key}': {e}")


async def sweep_periodically(stores: Iterable[SessionStore], interval_seconds: float) -> None:
    """Sweeps ``stores`` every ``interval_seconds`` until cancelled."""
    stores = list(stores)
    while True:
        await asyncio.sleep(interval_seconds)
        for store in stores:
            await store.sweep()
