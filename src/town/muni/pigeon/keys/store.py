"""Durable DID to keypair storage.

Each DID owns exactly one keypair for the lifetime of its store entry. The get-or-create sequence is
serialized per DID so that concurrent first requests converge on a single canonical keypair and every
caller in the race receives that same keypair.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, Optional

from redis import asyncio as redis

from town.muni.pigeon.app.metrics import MetricsClient, NoOpMetricsClient
from town.muni.pigeon.model.keypair import Keypair, generate_keypair

logger = logging.getLogger(__name__)


class KeypairStoreError(Exception):
    pass


class KeypairStore(ABC):
    """Get-or-create mapping from DID to keypair."""

    def __init__(self, metrics_client: Optional[MetricsClient] = None) -> None:
        self.metrics_client = metrics_client or NoOpMetricsClient()

    @abstractmethod
    async def get(self, did: str) -> Optional[Keypair]:
        """Return the stored keypair for a DID, or None if it has none."""

    @abstractmethod
    async def get_or_create(self, did: str) -> Keypair:
        """Return the stored keypair for a DID, generating and storing one if absent."""

    def _record_created(self, did: str) -> None:
        logger.info("Created keypair for %s", did)
        self.metrics_client.increment("keypair.created", 1)


class RedisKeypairStore(KeypairStore):
    """
    Redis-backed keypair store.

    Creation uses ``SET key value NX`` so that the write only lands when no entry exists. A caller that
    loses the race discards its generated keypair and reads the winner's entry. Entries are written in a
    single command, so readers see either no entry or a complete one.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        key_prefix: str = "keys",
        metrics_client: Optional[MetricsClient] = None,
    ) -> None:
        super().__init__(metrics_client)
        self.redis_client = redis_client
        self.key_prefix = key_prefix

    def storage_key(self, did: str) -> str:
        return f"{self.key_prefix}:{did}"

    async def get(self, did: str) -> Optional[Keypair]:
        value = await self.redis_client.get(self.storage_key(did))
        if value is None:
            return None
        return Keypair.load(value)

    async def get_or_create(self, did: str) -> Keypair:
        existing = await self.get(did)
        if existing is not None:
            return existing

        keypair = generate_keypair()
        created = await self.redis_client.set(
            self.storage_key(did), keypair.dump(), nx=True
        )
        if created:
            self._record_created(did)
            return keypair

        logger.debug("Lost keypair creation race for %s, using stored keypair", did)
        stored = await self.get(did)
        if stored is None:
            raise KeypairStoreError(f"keypair for {did} vanished after creation race")
        return stored


class MemoryKeypairStore(KeypairStore):
    """
    Process-local keypair store for development and tests.

    A lock per DID serializes the get-or-create sequence. The lock is discarded once the keypair exists.
    Lookups of existing entries never lock.
    """

    def __init__(self, metrics_client: Optional[MetricsClient] = None) -> None:
        super().__init__(metrics_client)
        self._entries: Dict[str, Keypair] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get(self, did: str) -> Optional[Keypair]:
        return self._entries.get(did)

    async def get_or_create(self, did: str) -> Keypair:
        existing = self._entries.get(did)
        if existing is not None:
            return existing

        async with self._locks[did]:
            existing = self._entries.get(did)
            if existing is not None:
                return existing
            keypair = generate_keypair()
            self._entries[did] = keypair
            self._locks.pop(did, None)
            self._record_created(did)
            return keypair

    def __len__(self) -> int:
        return len(self._entries)
