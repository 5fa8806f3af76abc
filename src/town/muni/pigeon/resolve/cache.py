"""DID document caching.

Resolved DID documents are cached for up to ``max_ttl`` seconds. Entries older than ``stale_ttl`` are still
returned but flagged stale so the resolver refreshes them.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from time import time
from typing import Any, Dict, Optional, Tuple

from redis import asyncio as redis

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheResult:
    did: str
    document: Dict[str, Any]
    updated_at: float
    stale: bool


class DidCache(ABC):
    def __init__(self, stale_ttl: int = 3600, max_ttl: int = 86400) -> None:
        self.stale_ttl = stale_ttl
        self.max_ttl = max_ttl

    @abstractmethod
    async def cache_did(self, did: str, document: Dict[str, Any]) -> None: ...

    @abstractmethod
    async def check_cache(self, did: str) -> Optional[CacheResult]: ...

    @abstractmethod
    async def clear_entry(self, did: str) -> None: ...

    def _result(
        self, did: str, document: Dict[str, Any], updated_at: float
    ) -> Optional[CacheResult]:
        age = time() - updated_at
        if age > self.max_ttl:
            return None
        return CacheResult(
            did=did,
            document=document,
            updated_at=updated_at,
            stale=age > self.stale_ttl,
        )


class RedisDidCache(DidCache):
    """DID document cache shared by every worker through Redis."""

    def __init__(
        self,
        redis_client: redis.Redis,
        stale_ttl: int = 3600,
        max_ttl: int = 86400,
        key_prefix: str = "did_doc",
    ) -> None:
        super().__init__(stale_ttl, max_ttl)
        self.redis_client = redis_client
        self.key_prefix = key_prefix

    def cache_key(self, did: str) -> str:
        return f"{self.key_prefix}:{did}"

    async def cache_did(self, did: str, document: Dict[str, Any]) -> None:
        value = json.dumps({"document": document, "updated_at": time()})
        await self.redis_client.set(self.cache_key(did), value, ex=self.max_ttl)

    async def check_cache(self, did: str) -> Optional[CacheResult]:
        value = await self.redis_client.get(self.cache_key(did))
        if value is None:
            return None
        try:
            entry = json.loads(value)
            return self._result(did, entry["document"], float(entry["updated_at"]))
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding malformed DID cache entry for %s", did)
            await self.clear_entry(did)
            return None

    async def clear_entry(self, did: str) -> None:
        await self.redis_client.delete(self.cache_key(did))


class MemoryDidCache(DidCache):
    """Process-local DID document cache."""

    def __init__(self, stale_ttl: int = 3600, max_ttl: int = 86400) -> None:
        super().__init__(stale_ttl, max_ttl)
        self._entries: Dict[str, Tuple[Dict[str, Any], float]] = {}

    async def cache_did(self, did: str, document: Dict[str, Any]) -> None:
        self._entries[did] = (document, time())

    async def check_cache(self, did: str) -> Optional[CacheResult]:
        entry = self._entries.get(did)
        if entry is None:
            return None
        result = self._result(did, entry[0], entry[1])
        if result is None:
            del self._entries[did]
        return result

    async def clear_entry(self, did: str) -> None:
        self._entries.pop(did, None)
