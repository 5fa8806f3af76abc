"""
Shared test configuration and fixtures for keyserver tests.

Provides fake Redis clients, issuer signing keys and in-memory collaborators used across the test files.
"""

import pytest
import pytest_asyncio
import fakeredis.aioredis

from tests.test_helpers import (
    ALICE_DID,
    BOB_DID,
    FakeSigningKeyResolver,
    generate_issuer_key,
)


@pytest_asyncio.fixture
async def fake_redis_client():
    """Provide fake Redis client for unit tests."""
    client = fakeredis.aioredis.FakeRedis(decode_responses=False)
    yield client
    await client.flushall()
    await client.aclose()


@pytest_asyncio.fixture
async def fake_redis_text_client():
    """Provide fake Redis client that decodes responses, like the default REDIS_DSN."""
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def alice_key():
    return generate_issuer_key("ES256")


@pytest.fixture
def bob_key():
    return generate_issuer_key("ES256K")


@pytest.fixture
def signing_key_resolver(alice_key, bob_key):
    return FakeSigningKeyResolver(
        {
            ALICE_DID: alice_key.did_key,
            BOB_DID: bob_key.did_key,
        }
    )
