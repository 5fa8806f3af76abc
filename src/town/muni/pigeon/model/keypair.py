"""Ed25519 keypair model.

A keypair is generated once per DID and stored unchanged for the lifetime of the store entry.
"""

import base64
import json
from dataclasses import dataclass
from typing import Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

PUBLIC_KEY_LENGTH = 32
SECRET_KEY_LENGTH = 32


@dataclass(frozen=True)
class Keypair:
    """Raw Ed25519 key material.

    Attributes:
        public_key: 32-byte Ed25519 public key
        secret_key: 32-byte Ed25519 private seed
    """

    public_key: bytes
    secret_key: bytes

    def __post_init__(self) -> None:
        if len(self.public_key) != PUBLIC_KEY_LENGTH:
            raise ValueError(
                f"public key must be {PUBLIC_KEY_LENGTH} bytes, got {len(self.public_key)}"
            )
        if len(self.secret_key) != SECRET_KEY_LENGTH:
            raise ValueError(
                f"secret key must be {SECRET_KEY_LENGTH} bytes, got {len(self.secret_key)}"
            )

    def dump(self) -> str:
        """Serialize the keypair for storage."""
        return json.dumps(
            {
                "publicKey": base64.b64encode(self.public_key).decode("ascii"),
                "secretKey": base64.b64encode(self.secret_key).decode("ascii"),
            }
        )

    @classmethod
    def load(cls, value: Union[str, bytes]) -> "Keypair":
        """Deserialize a keypair written by dump()."""
        data = json.loads(value)
        return cls(
            public_key=base64.b64decode(data["publicKey"]),
            secret_key=base64.b64decode(data["secretKey"]),
        )


def generate_keypair() -> Keypair:
    """Generate a fresh Ed25519 keypair from secure random material."""
    private_key = Ed25519PrivateKey.generate()
    secret_key = private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_key = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return Keypair(public_key=public_key, secret_key=secret_key)
