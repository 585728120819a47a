"""Short-lived conversation sessions keyed by ``session:{business}:{user}``.

Two backends share one small async interface:

* ``InMemorySessionStore`` — process-local, backed by the TTL-aware LRU
  cache.  Used by the CLI, the tests, and the server when no Redis is
  configured.
* ``RedisSessionStore`` — JSON-serialised sessions with a Redis ``EX``
  expiry, so sessions survive restarts and are shared between workers.

Both raise on backend failures; the turn coordinator decides how to degrade.
There is no locking around read-modify-write: two concurrent turns for the
same user race and the last writer wins.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from receptionist.config import REDIS_URL, SESSION_TTL_SECONDS
from receptionist.engine.models import Session
from receptionist.services.cache import LRUCache

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    async def get(self, key: str) -> Session | None: ...

    async def set(self, key: str, session: Session, ttl: int = SESSION_TTL_SECONDS) -> None: ...


class InMemorySessionStore:
    """Sessions kept as JSON-compatible dicts in an ``LRUCache``."""

    def __init__(self, cache: LRUCache | None = None) -> None:
        self._cache = cache or LRUCache()

    async def get(self, key: str) -> Session | None:
        data = self._cache.get(key)
        if data is None:
            return None
        return Session.model_validate(data)

    async def set(self, key: str, session: Session, ttl: int = SESSION_TTL_SECONDS) -> None:
        self._cache.put(key, session.model_dump(mode="json"), ttl=ttl)


class RedisSessionStore:
    """Sessions stored in Redis as JSON strings."""

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisSessionStore:
        import redis.asyncio as redis

        return cls(redis.from_url(url, decode_responses=True, socket_connect_timeout=2, socket_timeout=2))

    async def get(self, key: str) -> Session | None:
        raw = await self._client.get(key)
        if raw is None:
            return None
        return Session.model_validate_json(raw)

    async def set(self, key: str, session: Session, ttl: int = SESSION_TTL_SECONDS) -> None:
        await self._client.set(key, session.model_dump_json(), ex=ttl)

    async def aclose(self) -> None:
        await self._client.aclose()


def create_session_store(redis_url: str | None = None) -> SessionStore:
    """Redis when a URL is configured, otherwise process memory."""
    url = REDIS_URL if redis_url is None else redis_url
    if url:
        logger.info("Using Redis session store")
        return RedisSessionStore.from_url(url)
    logger.info("REDIS_URL not set, sessions are kept in process memory")
    return InMemorySessionStore()
