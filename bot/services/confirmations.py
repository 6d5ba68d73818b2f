from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Protocol

import redis.asyncio as redis

from core.config import RedisConfig
from core.errors import ConfirmationExpiredError, InitiatorMismatchError

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class CloseRequestKey:
    channel_id: int
    initiator_id: int

    def as_string(self) -> str:
        return f"close:{self.channel_id}:{self.initiator_id}"


class CloseRequestStore(Protocol):
    async def add(self, key: CloseRequestKey, ttl: int | None = None) -> None: ...
    async def contains(self, key: CloseRequestKey) -> bool: ...
    async def discard(self, key: CloseRequestKey) -> None: ...
    async def pop(self, key: CloseRequestKey) -> bool: ...
    async def close(self) -> None: ...


class MemoryCloseRequestStore(CloseRequestStore):
    """Process-local pending close requests. Cleared on restart."""

    def __init__(self) -> None:
        self._pending: dict[CloseRequestKey, float | None] = {}
        self._lock = asyncio.Lock()

    async def add(self, key: CloseRequestKey, ttl: int | None = None) -> None:
        async with self._lock:
            self._pending[key] = time.monotonic() + ttl if ttl else None

    async def contains(self, key: CloseRequestKey) -> bool:
        async with self._lock:
            if key not in self._pending:
                return False
            expires_at = self._pending[key]
            if expires_at is not None and time.monotonic() >= expires_at:
                del self._pending[key]
                return False
            return True

    async def discard(self, key: CloseRequestKey) -> None:
        async with self._lock:
            self._pending.pop(key, None)

    async def pop(self, key: CloseRequestKey) -> bool:
        async with self._lock:
            if key not in self._pending:
                return False
            expires_at = self._pending.pop(key)
            return expires_at is None or time.monotonic() < expires_at

    async def close(self) -> None:
        self._pending.clear()

    def __len__(self) -> int:
        return len(self._pending)


class RedisCloseRequestStore(CloseRequestStore):
    """Pending close requests shared between bot instances through Redis."""

    def __init__(self, url: str, key_prefix: str = "middleman") -> None:
        self._client = redis.from_url(url, decode_responses=True)
        self._prefix = key_prefix

    def _redis_key(self, key: CloseRequestKey) -> str:
        return f"{self._prefix}:{key.as_string()}"

    async def add(self, key: CloseRequestKey, ttl: int | None = None) -> None:
        if ttl:
            await self._client.set(self._redis_key(key), "1", ex=ttl)
        else:
            await self._client.set(self._redis_key(key), "1")

    async def contains(self, key: CloseRequestKey) -> bool:
        return bool(await self._client.exists(self._redis_key(key)))

    async def discard(self, key: CloseRequestKey) -> None:
        await self._client.delete(self._redis_key(key))

    async def pop(self, key: CloseRequestKey) -> bool:
        return bool(await self._client.delete(self._redis_key(key)))

    async def close(self) -> None:
        await self._client.aclose()


def build_close_request_store(config: RedisConfig) -> CloseRequestStore:
    if config.enabled:
        LOGGER.info("Close confirmations stored in Redis")
        return RedisCloseRequestStore(config.url, config.key_prefix)
    return MemoryCloseRequestStore()


class CloseConfirmationTracker:
    """Two-step close guard keyed by (channel, initiator).

    A request is pending from ``request`` until ``consume`` or ``release``. ``verify`` never
    changes the pending set, so a rejected confirmation leaves the initiator's
    request usable.
    """

    def __init__(self, store: CloseRequestStore, ttl_seconds: int | None = None) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds

    async def request(self, channel_id: int, user_id: int) -> CloseRequestKey:
        key = CloseRequestKey(channel_id=channel_id, initiator_id=user_id)
        await self.store.add(key, ttl=self.ttl_seconds)
        return key

    async def verify(self, channel_id: int, initiator_id: int, confirming_user_id: int) -> CloseRequestKey:
        if confirming_user_id != initiator_id:
            raise InitiatorMismatchError()
        key = CloseRequestKey(channel_id=channel_id, initiator_id=initiator_id)
        if not await self.store.contains(key):
            raise ConfirmationExpiredError()
        return key

    async def consume(self, key: CloseRequestKey) -> bool:
        """Take the pending request. Only one of several concurrent callers gets True."""
        return await self.store.pop(key)

    async def restore(self, key: CloseRequestKey) -> None:
        await self.store.add(key, ttl=self.ttl_seconds)

    async def release(self, key: CloseRequestKey) -> None:
        await self.store.discard(key)

    async def is_pending(self, channel_id: int, user_id: int) -> bool:
        return await self.store.contains(CloseRequestKey(channel_id=channel_id, initiator_id=user_id))
