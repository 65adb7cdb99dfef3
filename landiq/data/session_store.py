import json
from typing import Optional

from cachetools import TTLCache
from redis import asyncio as aioredis

from ..core.config import settings
from .base import SessionStore, Transcript

class MemorySessionStore(SessionStore):
    """
    In-process transcripts. Sessions expire after `ttl` seconds without a
    write; beyond `maxsize` the least recently used session is dropped.
    No locking: two concurrent turns on one session id can race.
    """
    def __init__(self, maxsize: int | None = None, ttl: int | None = None):
        self._sessions: TTLCache = TTLCache(
            maxsize=maxsize or settings.SESSION_MAX_COUNT,
            ttl=ttl or settings.SESSION_TTL_SECONDS,
        )

    async def get(self, session_id: str) -> Optional[Transcript]:
        messages = self._sessions.get(session_id)
        return list(messages) if messages is not None else None

    async def put(self, session_id: str, messages: Transcript) -> None:
        self._sessions[session_id] = list(messages)

    async def evict(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._sessions)

class RedisSessionStore(SessionStore):
    """
    Transcripts as JSON strings under `agent:session:<id>`, refreshed with
    SETEX on every write so idle sessions expire.
    """
    def __init__(self, url: str, ttl: int | None = None):
        self.backend = aioredis.Redis.from_url(url, decode_responses=True)
        self.ttl = ttl or settings.SESSION_TTL_SECONDS

    @staticmethod
    def _key(session_id: str) -> str:
        return f"agent:session:{session_id}"

    async def get(self, session_id: str) -> Optional[Transcript]:
        raw = await self.backend.get(self._key(session_id))
        return json.loads(raw) if raw else None

    async def put(self, session_id: str, messages: Transcript) -> None:
        await self.backend.setex(self._key(session_id), self.ttl, json.dumps(messages))

    async def evict(self, session_id: str) -> None:
        await self.backend.delete(self._key(session_id))

def session_store() -> SessionStore:
    """
    Factory picks redis or in-memory based on env flags.
    """
    if settings.USE_REDIS:
        return RedisSessionStore(settings.REDIS_URL)
    return MemorySessionStore()
