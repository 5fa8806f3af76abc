"""DID document resolution for did:plc and did:web.

The resolver is the key source for service-auth verification: given an issuer DID it returns the signing
key published in that DID's document, optionally bypassing the cache.
"""

import asyncio
import logging
from typing import Any, Dict, Optional
from urllib.parse import unquote

import aiohttp
from aiohttp import ClientSession

from town.muni.pigeon.resolve.cache import DidCache
from town.muni.pigeon.resolve.did import (
    DID_METHOD_PLC,
    DID_METHOD_WEB,
    DidNotFoundError,
    DidResolutionError,
    PoorlyFormattedDidDocumentError,
    UnsupportedDidMethodError,
    extract_did_method,
    get_signing_key,
    is_did,
)

logger = logging.getLogger(__name__)


def did_web_url(did: str) -> str:
    """Build the did.json URL for a host-level did:web.

    did:web identifiers with paths are not supported by AT Protocol and are rejected.
    """
    identifier = did.removeprefix("did:web:")
    if ":" in identifier:
        raise UnsupportedDidMethodError(f"Unsupported did:web path: {did}")
    host = unquote(identifier)
    scheme = "http" if host == "localhost" or host.startswith("localhost:") else "https"
    return f"{scheme}://{host}/.well-known/did.json"


class IdResolver:
    """
    Resolve DIDs to DID documents and AT Protocol signing keys.

    Args:
        session: Shared HTTP client session
        plc_hostname: PLC directory hostname for did:plc resolution
        cache: Optional DID document cache
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        session: ClientSession,
        plc_hostname: str = "plc.directory",
        cache: Optional[DidCache] = None,
        timeout: float = 3.0,
    ) -> None:
        self.session = session
        self.plc_hostname = plc_hostname
        self.cache = cache
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def _fetch_json(self, did: str, url: str) -> Dict[str, Any]:
        try:
            async with self.session.get(url, timeout=self.timeout) as resp:
                if resp.status == 404 or resp.status == 410:
                    raise DidNotFoundError(f"DID not found: {did}")
                if resp.status != 200:
                    raise DidResolutionError(
                        f"Unexpected status {resp.status} resolving {did}"
                    )
                body = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise DidResolutionError(f"Error resolving {did}: {e!r}") from e

        if not isinstance(body, dict):
            raise PoorlyFormattedDidDocumentError(f"DID document for {did} is not an object")
        return body

    async def resolve_did_method_plc(self, did: str) -> Dict[str, Any]:
        return await self._fetch_json(did, f"https://{self.plc_hostname}/{did}")

    async def resolve_did_method_web(self, did: str) -> Dict[str, Any]:
        return await self._fetch_json(did, did_web_url(did))

    async def resolve_no_cache(self, did: str) -> Dict[str, Any]:
        if not is_did(did):
            raise UnsupportedDidMethodError(f"Not a DID: {did}")
        method = extract_did_method(did)
        if method == DID_METHOD_PLC:
            document = await self.resolve_did_method_plc(did)
        elif method == DID_METHOD_WEB:
            document = await self.resolve_did_method_web(did)
        else:
            raise UnsupportedDidMethodError(f"Unsupported DID method: {did}")

        if document.get("id") != did:
            raise PoorlyFormattedDidDocumentError(
                f"DID document id does not match {did}"
            )
        return document

    async def resolve_did_document(
        self, did: str, force_refresh: bool = False
    ) -> Dict[str, Any]:
        """Resolve a DID document, consulting the cache unless force_refresh is set.

        Stale cache entries are refreshed, falling back to the stale document if the refresh fails.
        """
        if self.cache is not None and not force_refresh:
            cached = await self.cache.check_cache(did)
            if cached is not None and not cached.stale:
                return cached.document
            if cached is not None:
                try:
                    return await self._resolve_and_cache(did)
                except DidNotFoundError:
                    raise
                except DidResolutionError as e:
                    logger.warning(
                        "Refreshing stale DID document for %s failed, using cached copy: %s",
                        did,
                        e,
                    )
                    return cached.document

        return await self._resolve_and_cache(did)

    async def _resolve_and_cache(self, did: str) -> Dict[str, Any]:
        try:
            document = await self.resolve_no_cache(did)
        except DidNotFoundError:
            if self.cache is not None:
                await self.cache.clear_entry(did)
            raise
        if self.cache is not None:
            await self.cache.cache_did(did, document)
        return document

    async def resolve_signing_key(self, did: str, force_refresh: bool = False) -> str:
        """Return the did:key form of the DID's #atproto signing key."""
        document = await self.resolve_did_document(did, force_refresh)
        return get_signing_key(did, document)
