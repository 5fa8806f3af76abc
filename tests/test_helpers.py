"""
Common testing utilities for keyserver tests.

Provides issuer key generation, service-auth JWT minting and a fake signing key resolver.
"""

import base64
import json
from dataclasses import dataclass
from time import time
from typing import Any, Dict, List, Optional, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from jwcrypto import jwk, jws

from town.muni.pigeon.atproto.did_key import format_did_key
from town.muni.pigeon.resolve.did import DidNotFoundError

SERVICE_DID = "did:web:keys.example.com"
ALICE_DID = "did:plc:alice"
BOB_DID = "did:plc:bob"
OWN_KEYPAIR_LXM = "key.pigeon.muni.town"


@dataclass
class IssuerKey:
    """Signing key of a simulated token issuer."""

    alg: str
    key: jwk.JWK
    did_key: str
    compressed: bytes
    uncompressed: bytes


def generate_issuer_key(alg: str = "ES256") -> IssuerKey:
    curve = ec.SECP256R1() if alg == "ES256" else ec.SECP256K1()
    private_key = ec.generate_private_key(curve)
    public_key = private_key.public_key()
    compressed = public_key.public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.CompressedPoint
    )
    uncompressed = public_key.public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
    )
    return IssuerKey(
        alg=alg,
        key=jwk.JWK.from_pyca(private_key),
        did_key=format_did_key(alg, compressed),
        compressed=compressed,
        uncompressed=uncompressed,
    )


def make_service_jwt(
    issuer_key: IssuerKey,
    iss: str = ALICE_DID,
    aud: str = SERVICE_DID,
    lxm: Optional[str] = OWN_KEYPAIR_LXM,
    expires_in: int = 60,
    header: Optional[Dict[str, Any]] = None,
    claims: Optional[Dict[str, Any]] = None,
) -> str:
    """Mint a compact service-auth JWT signed by issuer_key."""
    token_claims: Dict[str, Any] = {
        "iss": iss,
        "aud": aud,
        "exp": int(time()) + expires_in,
        "iat": int(time()),
    }
    if lxm is not None:
        token_claims["lxm"] = lxm
    token_claims.update(claims or {})

    token_header: Dict[str, Any] = {"alg": issuer_key.alg, "typ": "JWT"}
    token_header.update(header or {})

    token = jws.JWS(json.dumps(token_claims).encode("utf-8"))
    token.allowed_algs = [issuer_key.alg]
    token.add_signature(
        issuer_key.key, alg=issuer_key.alg, protected=json.dumps(token_header)
    )
    return token.serialize(compact=True)


def b64url_json(value: Any) -> str:
    return base64.urlsafe_b64encode(json.dumps(value).encode("utf-8")).decode("ascii").rstrip("=")


def replace_claims(token: str, claims: Dict[str, Any]) -> str:
    """Swap the payload of a signed token, keeping the original header and signature."""
    header, _, signature = token.split(".")
    return ".".join([header, b64url_json(claims), signature])


class FakeSigningKeyResolver:
    """In-memory signing key source recording every lookup."""

    def __init__(self, keys: Dict[str, str], fresh_keys: Optional[Dict[str, str]] = None) -> None:
        self.keys = dict(keys)
        self.fresh_keys = dict(fresh_keys or {})
        self.calls: List[Tuple[str, bool]] = []

    async def resolve_signing_key(self, did: str, force_refresh: bool = False) -> str:
        self.calls.append((did, force_refresh))
        if force_refresh and did in self.fresh_keys:
            return self.fresh_keys[did]
        if did not in self.keys:
            raise DidNotFoundError(f"DID not found: {did}")
        return self.keys[did]


def did_document(did: str, verification_method: Dict[str, Any]) -> Dict[str, Any]:
    """Build a minimal AT Protocol DID document."""
    return {
        "@context": ["https://www.w3.org/ns/did/v1"],
        "id": did,
        "alsoKnownAs": ["at://alice.example.com"],
        "verificationMethod": [verification_method],
        "service": [
            {
                "id": "#atproto_pds",
                "type": "AtprotoPersonalDataServer",
                "serviceEndpoint": "https://pds.example.com",
            }
        ],
    }
