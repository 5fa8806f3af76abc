"""
AT Protocol service-auth JWT verification.

Service-auth tokens are short-lived JWTs minted by a user's PDS and signed with the key published in the
user's DID document. A token is only valid for the service named in ``aud`` and, when the verifier asks for
one, the XRPC method named in ``lxm``.

Verification never trusts key material from the token itself: the issuer's signing key is looked up
through a caller-supplied callback. If the signature does not verify against the (possibly cached) key, the
key is resolved again with the cache bypassed and the check is retried once.
"""

import base64
import json
from time import time
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union

from jwcrypto import jws
from pydantic import BaseModel, ConfigDict, StrictFloat, StrictInt, ValidationError

from town.muni.pigeon.atproto.did_key import DidKeyError, parse_did_key, public_jwk

SUPPORTED_JWT_ALGS = ("ES256K", "ES256")

DISALLOWED_JWT_TYPES = frozenset({"at+jwt", "refresh+jwt", "dpop+jwt"})
"""Token types that are never valid as service-auth tokens."""

GetSigningKey = Callable[[str, bool], Awaitable[str]]


class SigningKeyResolver(Protocol):
    """Key source for service-auth verification."""

    async def resolve_signing_key(self, did: str, force_refresh: bool) -> str:
        """Return the did:key form of the DID's current signing key."""
        ...


class ServiceJwtPayload(BaseModel):
    """Validated service-auth claims."""

    model_config = ConfigDict(extra="allow")

    iss: str
    aud: str
    exp: Union[StrictInt, StrictFloat]
    lxm: Optional[str] = None
    iat: Optional[Union[StrictInt, StrictFloat]] = None
    jti: Optional[str] = None


class ServiceJwtError(Exception):
    """
    Exception raised when a service-auth JWT is rejected.

    Messages are intended for server-side logs, not for callers.
    """

    @staticmethod
    def poorly_formatted(msg: str = "") -> "ServiceJwtError":
        return ServiceJwtError(f"error-service-auth-1000 Poorly formatted JWT {msg}".strip())

    @staticmethod
    def bad_type(typ: str) -> "ServiceJwtError":
        return ServiceJwtError(f"error-service-auth-1001 Invalid JWT type: {typ}")

    @staticmethod
    def unsupported_alg(alg: Any) -> "ServiceJwtError":
        return ServiceJwtError(f"error-service-auth-1002 Unsupported JWT algorithm: {alg}")

    @staticmethod
    def expired() -> "ServiceJwtError":
        return ServiceJwtError("error-service-auth-1003 JWT expired")

    @staticmethod
    def bad_audience(aud: str) -> "ServiceJwtError":
        return ServiceJwtError(
            f"error-service-auth-1004 JWT audience does not match service DID: {aud}"
        )

    @staticmethod
    def missing_lxm() -> "ServiceJwtError":
        return ServiceJwtError("error-service-auth-1005 JWT missing lexicon method")

    @staticmethod
    def bad_lxm(lxm: str) -> "ServiceJwtError":
        return ServiceJwtError(
            f"error-service-auth-1006 JWT lexicon method does not match: {lxm}"
        )

    @staticmethod
    def bad_signature() -> "ServiceJwtError":
        return ServiceJwtError(
            "error-service-auth-1007 JWT signature does not match JWT issuer"
        )


def _decode_segment(segment: str) -> Dict[str, Any]:
    padding = "=" * (-len(segment) % 4)
    try:
        value = json.loads(base64.urlsafe_b64decode(segment + padding))
    except ValueError as e:
        raise ServiceJwtError.poorly_formatted(str(e)) from e
    if not isinstance(value, dict):
        raise ServiceJwtError.poorly_formatted("segment is not an object")
    return value


def verify_signature(token: str, alg: str, did_key: str) -> bool:
    """Check a compact JWS against a did:key. Returns False for any mismatch or unusable key."""
    try:
        parsed = parse_did_key(did_key)
    except DidKeyError:
        return False
    if parsed.jwt_alg != alg:
        return False

    jws_token = jws.JWS()
    jws_token.allowed_algs = [alg]
    try:
        jws_token.deserialize(token)
        jws_token.verify(public_jwk(parsed))
    except (jws.InvalidJWSObject, jws.InvalidJWSSignature, jws.InvalidJWSOperation):
        return False
    return True


async def verify_service_jwt(
    token: str,
    own_did: Optional[str],
    lxm: Optional[str],
    get_signing_key: GetSigningKey,
) -> ServiceJwtPayload:
    """
    Verify a service-auth JWT.

    Args:
        token: Compact serialized JWT
        own_did: Expected audience, or None to accept any audience
        lxm: Expected lexicon method, or None to skip the check
        get_signing_key: Callback taking (issuer DID, force_refresh) and returning a did:key

    Returns:
        ServiceJwtPayload: The validated claims

    Raises:
        ServiceJwtError: If the token is malformed, expired, mis-scoped or badly signed
        Exception: Whatever get_signing_key raises is propagated unchanged
    """
    parts = token.split(".")
    if len(parts) != 3:
        raise ServiceJwtError.poorly_formatted()

    header = _decode_segment(parts[0])
    typ = header.get("typ")
    if isinstance(typ, str) and typ in DISALLOWED_JWT_TYPES:
        raise ServiceJwtError.bad_type(typ)

    alg = header.get("alg")
    if alg not in SUPPORTED_JWT_ALGS:
        raise ServiceJwtError.unsupported_alg(alg)

    try:
        payload = ServiceJwtPayload.model_validate(_decode_segment(parts[1]))
    except ValidationError as e:
        raise ServiceJwtError.poorly_formatted(str(e)) from e

    if time() > payload.exp:
        raise ServiceJwtError.expired()

    if own_did is not None and payload.aud != own_did:
        raise ServiceJwtError.bad_audience(payload.aud)

    if lxm is not None:
        if payload.lxm is None:
            raise ServiceJwtError.missing_lxm()
        if payload.lxm != lxm:
            raise ServiceJwtError.bad_lxm(payload.lxm)

    signing_key = await get_signing_key(payload.iss, False)
    if verify_signature(token, alg, signing_key):
        return payload

    fresh_signing_key = await get_signing_key(payload.iss, True)
    if fresh_signing_key != signing_key and verify_signature(
        token, alg, fresh_signing_key
    ):
        return payload

    raise ServiceJwtError.bad_signature()
