"""DID syntax validation and DID document inspection.

Only did:plc and did:web identifiers are accepted by the keyserver. Validation errors carry messages that
are safe to return to callers as-is.
"""

import re
from typing import Any, Dict, Optional

from town.muni.pigeon.atproto.did_key import (
    DidKeyError,
    P256_JWT_ALG,
    SECP256K1_JWT_ALG,
    compress_key,
    decode_multibase,
    format_did_key,
    parse_multikey,
)

DID_MAX_LENGTH = 2048

DID_METHOD_PLC = "plc"
DID_METHOD_WEB = "web"
SUPPORTED_DID_METHODS = frozenset({DID_METHOD_PLC, DID_METHOD_WEB})

ATPROTO_VERIFICATION_METHOD = "#atproto"

_DID_PATTERN = re.compile(
    r"^did:[a-z0-9]+:(?:[A-Za-z0-9._-]|%[0-9A-Fa-f]{2}|:)*(?:[A-Za-z0-9._-]|%[0-9A-Fa-f]{2})$"
)

_LEGACY_KEY_TYPES = {
    "EcdsaSecp256r1VerificationKey2019": P256_JWT_ALG,
    "EcdsaSecp256k1VerificationKey2019": SECP256K1_JWT_ALG,
}


class InvalidDidError(ValueError):
    """A caller-supplied DID is malformed or uses an unsupported method."""

    @staticmethod
    def malformed() -> "InvalidDidError":
        return InvalidDidError("Invalid DID")

    @staticmethod
    def unsupported_method(did: str) -> "InvalidDidError":
        return InvalidDidError(
            f"Invalid DID method: '{did}'. Expected either 'web' or 'plc'"
        )


class DidResolutionError(Exception):
    """The signing key for a DID could not be determined."""


class DidNotFoundError(DidResolutionError):
    pass


class UnsupportedDidMethodError(DidResolutionError):
    pass


class PoorlyFormattedDidDocumentError(DidResolutionError):
    pass


def is_did(value: Optional[str]) -> bool:
    """Check that a value matches the generic DID syntax."""
    if not value or len(value) > DID_MAX_LENGTH:
        return False
    return _DID_PATTERN.match(value) is not None


def extract_did_method(did: str) -> str:
    return did.split(":", 2)[1]


def ensure_supported_did(did: str) -> str:
    """Validate that a DID is well-formed and uses did:plc or did:web.

    Returns:
        The DID's method name

    Raises:
        InvalidDidError: With a message naming the violated constraint
    """
    if not is_did(did):
        raise InvalidDidError.malformed()
    method = extract_did_method(did)
    if method not in SUPPORTED_DID_METHODS:
        raise InvalidDidError.unsupported_method(did)
    return method


def _is_atproto_method(did: str, method: Dict[str, Any]) -> bool:
    method_id = method.get("id")
    return method_id in (ATPROTO_VERIFICATION_METHOD, f"{did}{ATPROTO_VERIFICATION_METHOD}")


def get_signing_key(did: str, document: Dict[str, Any]) -> str:
    """Extract the AT Protocol signing key from a DID document as a did:key string.

    Raises:
        PoorlyFormattedDidDocumentError: If the document has no usable #atproto verification method
    """
    methods = document.get("verificationMethod")
    if not isinstance(methods, list):
        raise PoorlyFormattedDidDocumentError(f"{did} has no verification methods")

    method = next(
        (m for m in methods if isinstance(m, dict) and _is_atproto_method(did, m)),
        None,
    )
    if method is None:
        raise PoorlyFormattedDidDocumentError(f"{did} has no atproto signing key")

    multibase = method.get("publicKeyMultibase")
    if not isinstance(multibase, str):
        raise PoorlyFormattedDidDocumentError(f"{did} signing key is not multibase encoded")

    method_type = method.get("type")
    try:
        if method_type == "Multikey":
            parsed = parse_multikey(multibase)
            return format_did_key(parsed.jwt_alg, parsed.key_bytes)
        jwt_alg = _LEGACY_KEY_TYPES.get(method_type)
        if jwt_alg is None:
            raise PoorlyFormattedDidDocumentError(
                f"{did} signing key has unsupported type '{method_type}'"
            )
        key_bytes = compress_key(jwt_alg, decode_multibase(multibase))
        return format_did_key(jwt_alg, key_bytes)
    except DidKeyError as e:
        raise PoorlyFormattedDidDocumentError(f"{did} signing key is invalid: {e}") from e
