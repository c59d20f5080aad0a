"""Key-value store abstraction with per-key expiry.

``InMemoryKeyValueStore`` is process-local and suits a single instance or
tests; ``RedisKeyValueStore`` (see ``redis_service``) is shared across
instances.
"""

import time
from typing import Callable, Optional, Protocol

import structlog

logger = structlog.get_logger(__name__)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: int) -> None: ...

    async def delete(self, key: str) -> bool:
        """Remove ``key``; True only for the caller that actually removed it."""
        ...

    async def delete_if(self, key: str, expected: str) -> bool:
        """Remove ``key`` only while it still holds ``expected``."""
        ...


class InMemoryKeyValueStore:
    """Dict-backed store; expired entries are dropped on read and swept on insert."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() > expires_at:
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._entries[key] = (value, self._clock() + ttl)
        self._sweep()

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def delete_if(self, key: str, expected: str) -> bool:
        if await self.get(key) != expected:
            return False
        del self._entries[key]
        return True

    def _sweep(self) -> None:
        now = self._clock()
        expired = [k for k, (_, expires_at) in self._entries.items() if now > expires_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("kv_store_swept", removed=len(expired))
