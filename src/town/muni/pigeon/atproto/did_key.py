"""did:key and Multikey handling for AT Protocol signing keys.

AT Protocol signing keys are either P-256 or secp256k1 keys, published in DID documents as multibase
strings and exchanged between components as ``did:key`` strings. This module converts between those
forms and the jwcrypto keys used to verify service-auth JWTs.
"""

from dataclasses import dataclass

import base58
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from jwcrypto import jwk

DID_KEY_PREFIX = "did:key:"
BASE58BTC_PREFIX = "z"

P256_JWT_ALG = "ES256"
SECP256K1_JWT_ALG = "ES256K"

# Varint-encoded multicodec prefixes: p256-pub (0x1200) and secp256k1-pub (0xe7).
P256_MULTICODEC = b"\x80\x24"
SECP256K1_MULTICODEC = b"\xe7\x01"

_PREFIX_BY_ALG = {
    P256_JWT_ALG: P256_MULTICODEC,
    SECP256K1_JWT_ALG: SECP256K1_MULTICODEC,
}

_CURVE_BY_ALG = {
    P256_JWT_ALG: ec.SECP256R1,
    SECP256K1_JWT_ALG: ec.SECP256K1,
}


class DidKeyError(ValueError):
    pass


@dataclass(frozen=True)
class ParsedKey:
    """A signing key identified by its JWT algorithm.

    Attributes:
        jwt_alg: ES256 for P-256 keys, ES256K for secp256k1 keys
        key_bytes: SEC1 encoded public point, compressed
    """

    jwt_alg: str
    key_bytes: bytes


def _load_point(jwt_alg: str, key_bytes: bytes) -> ec.EllipticCurvePublicKey:
    curve = _CURVE_BY_ALG.get(jwt_alg)
    if curve is None:
        raise DidKeyError(f"unsupported key algorithm: {jwt_alg}")
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(curve(), key_bytes)
    except ValueError as e:
        raise DidKeyError(f"invalid {jwt_alg} public key: {e}") from e


def compress_key(jwt_alg: str, key_bytes: bytes) -> bytes:
    """Return the compressed SEC1 form of a compressed or uncompressed public point."""
    public_key = _load_point(jwt_alg, key_bytes)
    return public_key.public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.CompressedPoint,
    )


def decode_multibase(value: str) -> bytes:
    if not value.startswith(BASE58BTC_PREFIX):
        raise DidKeyError("only base58btc multibase strings are supported")
    try:
        return base58.b58decode(value[len(BASE58BTC_PREFIX):])
    except ValueError as e:
        raise DidKeyError(f"invalid base58btc encoding: {e}") from e


def parse_multikey(multikey: str) -> ParsedKey:
    """Parse a multibase, multicodec-prefixed public key."""
    decoded = decode_multibase(multikey)
    for jwt_alg, prefix in _PREFIX_BY_ALG.items():
        if decoded.startswith(prefix):
            key_bytes = compress_key(jwt_alg, decoded[len(prefix):])
            return ParsedKey(jwt_alg=jwt_alg, key_bytes=key_bytes)
    raise DidKeyError("unsupported multicodec key type")


def format_multikey(jwt_alg: str, key_bytes: bytes) -> str:
    prefix = _PREFIX_BY_ALG.get(jwt_alg)
    if prefix is None:
        raise DidKeyError(f"unsupported key algorithm: {jwt_alg}")
    encoded = base58.b58encode(prefix + compress_key(jwt_alg, key_bytes))
    return BASE58BTC_PREFIX + encoded.decode("ascii")


def parse_did_key(did_key: str) -> ParsedKey:
    if not did_key.startswith(DID_KEY_PREFIX):
        raise DidKeyError(f"not a did:key: '{did_key}'")
    return parse_multikey(did_key[len(DID_KEY_PREFIX):])


def format_did_key(jwt_alg: str, key_bytes: bytes) -> str:
    return DID_KEY_PREFIX + format_multikey(jwt_alg, key_bytes)


def public_jwk(parsed: ParsedKey) -> jwk.JWK:
    """Build a jwcrypto public key suitable for JWS verification."""
    return jwk.JWK.from_pyca(_load_point(parsed.jwt_alg, parsed.key_bytes))
