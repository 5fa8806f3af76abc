"""
Unit tests for DID resolution in town.muni.pigeon.resolve.resolver

HTTP is mocked at the ClientSession level, so no requests leave the test process.
"""

import asyncio
from time import time
from unittest.mock import AsyncMock, Mock, patch

import aiohttp
import pytest
from aiohttp import ClientSession

from town.muni.pigeon.atproto.did_key import format_multikey
from town.muni.pigeon.resolve.cache import MemoryDidCache
from town.muni.pigeon.resolve.did import (
    DidNotFoundError,
    DidResolutionError,
    PoorlyFormattedDidDocumentError,
    UnsupportedDidMethodError,
)
from town.muni.pigeon.resolve.resolver import IdResolver, did_web_url

from tests.test_helpers import ALICE_DID, did_document, generate_issuer_key

WEB_DID = "did:web:alice.example.com"


def atproto_document(did, issuer_key):
    return did_document(
        did,
        {
            "id": f"{did}#atproto",
            "type": "Multikey",
            "controller": did,
            "publicKeyMultibase": format_multikey(issuer_key.alg, issuer_key.compressed),
        },
    )


def mock_session_returning(*responses):
    """Build a session whose successive GETs return the given (status, body) pairs."""
    mock_session = AsyncMock(spec=ClientSession)
    contexts = []
    for status, body in responses:
        mock_response = AsyncMock()
        mock_response.status = status
        mock_response.json = AsyncMock(return_value=body)
        context = AsyncMock()
        context.__aenter__.return_value = mock_response
        contexts.append(context)
    mock_session.get = Mock(side_effect=contexts)
    return mock_session


class TestDidWebUrl:
    def test_host(self):
        assert did_web_url(WEB_DID) == "https://alice.example.com/.well-known/did.json"

    def test_localhost_with_port(self):
        assert did_web_url("did:web:localhost%3A8080") == "http://localhost:8080/.well-known/did.json"

    def test_paths_are_rejected(self):
        with pytest.raises(UnsupportedDidMethodError):
            did_web_url("did:web:example.com:user:alice")


class TestResolveNoCache:
    """Test suite for uncached resolution."""

    @pytest.mark.asyncio
    async def test_plc(self):
        key = generate_issuer_key("ES256K")
        document = atproto_document(ALICE_DID, key)
        session = mock_session_returning((200, document))

        resolver = IdResolver(session, plc_hostname="plc.example.com")
        assert await resolver.resolve_no_cache(ALICE_DID) == document

        url = session.get.call_args.args[0]
        assert url == "https://plc.example.com/did:plc:alice"
        assert isinstance(session.get.call_args.kwargs["timeout"], aiohttp.ClientTimeout)

    @pytest.mark.asyncio
    async def test_web(self):
        key = generate_issuer_key("ES256")
        document = atproto_document(WEB_DID, key)
        session = mock_session_returning((200, document))

        resolver = IdResolver(session)
        assert await resolver.resolve_no_cache(WEB_DID) == document
        assert session.get.call_args.args[0] == "https://alice.example.com/.well-known/did.json"

    @pytest.mark.asyncio
    async def test_not_found(self):
        resolver = IdResolver(mock_session_returning((404, None)))
        with pytest.raises(DidNotFoundError):
            await resolver.resolve_no_cache(ALICE_DID)

    @pytest.mark.asyncio
    async def test_tombstoned(self):
        resolver = IdResolver(mock_session_returning((410, None)))
        with pytest.raises(DidNotFoundError):
            await resolver.resolve_no_cache(ALICE_DID)

    @pytest.mark.asyncio
    async def test_server_error(self):
        resolver = IdResolver(mock_session_returning((500, None)))
        with pytest.raises(DidResolutionError):
            await resolver.resolve_no_cache(ALICE_DID)

    @pytest.mark.asyncio
    async def test_network_error(self):
        session = AsyncMock(spec=ClientSession)
        session.get = Mock(side_effect=aiohttp.ClientConnectionError("boom"))
        with pytest.raises(DidResolutionError):
            await IdResolver(session).resolve_no_cache(ALICE_DID)

    @pytest.mark.asyncio
    async def test_timeout(self):
        session = AsyncMock(spec=ClientSession)
        session.get = Mock(side_effect=asyncio.TimeoutError())
        with pytest.raises(DidResolutionError):
            await IdResolver(session).resolve_no_cache(ALICE_DID)

    @pytest.mark.asyncio
    async def test_non_object_body(self):
        resolver = IdResolver(mock_session_returning((200, ["not", "a", "document"])))
        with pytest.raises(PoorlyFormattedDidDocumentError):
            await resolver.resolve_no_cache(ALICE_DID)

    @pytest.mark.asyncio
    async def test_document_for_another_did(self):
        document = atproto_document("did:plc:mallory", generate_issuer_key("ES256"))
        resolver = IdResolver(mock_session_returning((200, document)))
        with pytest.raises(PoorlyFormattedDidDocumentError):
            await resolver.resolve_no_cache(ALICE_DID)

    @pytest.mark.asyncio
    async def test_unsupported_method(self):
        session = AsyncMock(spec=ClientSession)
        with pytest.raises(UnsupportedDidMethodError):
            await IdResolver(session).resolve_no_cache("did:example:abc")
        with pytest.raises(UnsupportedDidMethodError):
            await IdResolver(session).resolve_no_cache("not-a-did")


class TestCachedResolution:
    """Test suite for resolution through the DID cache."""

    @pytest.mark.asyncio
    async def test_cache_hit_skips_network(self):
        key = generate_issuer_key("ES256")
        document = atproto_document(ALICE_DID, key)
        session = mock_session_returning((200, document))
        resolver = IdResolver(session, cache=MemoryDidCache())

        assert await resolver.resolve_signing_key(ALICE_DID) == key.did_key
        assert await resolver.resolve_signing_key(ALICE_DID) == key.did_key
        assert session.get.call_count == 1

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_cache(self):
        old_key = generate_issuer_key("ES256")
        new_key = generate_issuer_key("ES256")
        session = mock_session_returning(
            (200, atproto_document(ALICE_DID, old_key)),
            (200, atproto_document(ALICE_DID, new_key)),
        )
        resolver = IdResolver(session, cache=MemoryDidCache())

        assert await resolver.resolve_signing_key(ALICE_DID) == old_key.did_key
        assert await resolver.resolve_signing_key(ALICE_DID, True) == new_key.did_key
        assert await resolver.resolve_signing_key(ALICE_DID) == new_key.did_key
        assert session.get.call_count == 2

    @pytest.mark.asyncio
    async def test_stale_entry_is_refreshed(self):
        old_key = generate_issuer_key("ES256")
        new_key = generate_issuer_key("ES256")
        cache = MemoryDidCache(stale_ttl=60, max_ttl=600)
        await cache.cache_did(ALICE_DID, atproto_document(ALICE_DID, old_key))
        session = mock_session_returning((200, atproto_document(ALICE_DID, new_key)))
        resolver = IdResolver(session, cache=cache)

        with patch("town.muni.pigeon.resolve.cache.time", return_value=time() + 120):
            assert await resolver.resolve_signing_key(ALICE_DID) == new_key.did_key

    @pytest.mark.asyncio
    async def test_stale_entry_survives_failed_refresh(self):
        old_key = generate_issuer_key("ES256")
        cache = MemoryDidCache(stale_ttl=60, max_ttl=600)
        await cache.cache_did(ALICE_DID, atproto_document(ALICE_DID, old_key))
        resolver = IdResolver(mock_session_returning((503, None)), cache=cache)

        with patch("town.muni.pigeon.resolve.cache.time", return_value=time() + 120):
            assert await resolver.resolve_signing_key(ALICE_DID) == old_key.did_key

    @pytest.mark.asyncio
    async def test_not_found_clears_cache(self):
        key = generate_issuer_key("ES256")
        cache = MemoryDidCache()
        await cache.cache_did(ALICE_DID, atproto_document(ALICE_DID, key))
        resolver = IdResolver(mock_session_returning((404, None)), cache=cache)

        with pytest.raises(DidNotFoundError):
            await resolver.resolve_signing_key(ALICE_DID, True)
        assert await cache.check_cache(ALICE_DID) is None
