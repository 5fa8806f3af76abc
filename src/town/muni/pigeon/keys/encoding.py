"""Textual encodings for keypair material.

Public keys are published as identity tags (``@auth.b...``) so consumers can tell them apart from other key
types without out-of-band context. Secret keys use the bare base32 form. Both formats are a compatibility
boundary with the clients that consume these keys and must not change.
"""

import base64
import re
from typing import Tuple

BASE32_PREFIX = "b"
"""Multibase prefix for lowercase, unpadded RFC 4648 base32."""

KEYPAIR_SHORTNAME = "auth"
"""Shortname embedded in every public key tag issued by this service."""

_SHORTNAME_PATTERN = re.compile(r"^[a-z][a-z0-9]{3}$")
_BASE32_BODY_PATTERN = re.compile(r"^[a-z2-7]*$")


class KeyEncodingError(ValueError):
    pass


def encode_base32(data: bytes) -> str:
    """Encode bytes as ``b`` followed by lowercase base32 without padding."""
    body = base64.b32encode(data).decode("ascii").rstrip("=").lower()
    return f"{BASE32_PREFIX}{body}"


def decode_base32(value: str) -> bytes:
    """Decode a string produced by encode_base32.

    Raises:
        KeyEncodingError: If the prefix is missing or the body is not valid base32
    """
    if not value.startswith(BASE32_PREFIX):
        raise KeyEncodingError(f"base32 string must start with '{BASE32_PREFIX}'")
    body = value[len(BASE32_PREFIX):]
    if _BASE32_BODY_PATTERN.match(body) is None:
        raise KeyEncodingError("base32 string contains invalid characters")
    padding = "=" * (-len(body) % 8)
    try:
        return base64.b32decode(body.upper() + padding)
    except ValueError as e:
        raise KeyEncodingError(f"invalid base32 string: {e}") from e


def is_valid_shortname(shortname: str) -> bool:
    return _SHORTNAME_PATTERN.match(shortname) is not None


def encode_public_tag(public_key: bytes, shortname: str = KEYPAIR_SHORTNAME) -> str:
    """Encode a public key as ``@<shortname>.<base32>``."""
    if not is_valid_shortname(shortname):
        raise KeyEncodingError(f"invalid shortname: '{shortname}'")
    return f"@{shortname}.{encode_base32(public_key)}"


def decode_public_tag(tag: str) -> Tuple[str, bytes]:
    """Split a public key tag into its shortname and raw key bytes."""
    if not tag.startswith("@"):
        raise KeyEncodingError("public key tag must start with '@'")
    shortname, separator, encoded = tag[1:].partition(".")
    if separator == "" or not is_valid_shortname(shortname):
        raise KeyEncodingError(f"invalid public key tag: '{tag}'")
    return shortname, decode_base32(encoded)


def encode_secret(secret_key: bytes) -> str:
    return encode_base32(secret_key)


def decode_secret(value: str) -> bytes:
    return decode_base32(value)
