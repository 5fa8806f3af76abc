"""
Unit tests for DID validation and DID document inspection in town.muni.pigeon.resolve.did
"""

import base58
import pytest

from town.muni.pigeon.atproto.did_key import format_multikey
from town.muni.pigeon.resolve.did import (
    InvalidDidError,
    PoorlyFormattedDidDocumentError,
    ensure_supported_did,
    extract_did_method,
    get_signing_key,
    is_did,
)

from tests.test_helpers import ALICE_DID, did_document, generate_issuer_key


class TestIsDid:
    """Test suite for generic DID syntax."""

    @pytest.mark.parametrize(
        "value",
        [
            "did:plc:abc123",
            "did:web:example.com",
            "did:web:localhost%3A8080",
            "did:example:abc",
            "did:key:zDnaerDaTF5BXEavCrfRZEk316dpbLsfPDZ3WJ5hRTPFU2169",
        ],
    )
    def test_valid(self, value):
        assert is_did(value) is True

    @pytest.mark.parametrize(
        "value",
        [
            None,
            "",
            "not-a-did",
            "did:",
            "did:plc",
            "did:plc:",
            "did:PLC:abc",
            "did:plc:abc:",
            "did:plc:abc%zz",
            "did:plc:a b",
            "did:plc:" + "a" * 2048,
        ],
    )
    def test_invalid(self, value):
        assert is_did(value) is False

    def test_extract_method(self):
        assert extract_did_method("did:plc:abc123") == "plc"
        assert extract_did_method("did:web:example.com") == "web"


class TestEnsureSupportedDid:
    def test_supported(self):
        assert ensure_supported_did("did:plc:abc123") == "plc"
        assert ensure_supported_did("did:web:example.com") == "web"

    def test_malformed(self):
        with pytest.raises(InvalidDidError) as exc_info:
            ensure_supported_did("not-a-did")
        assert str(exc_info.value) == "Invalid DID"

    def test_unsupported_method(self):
        with pytest.raises(InvalidDidError) as exc_info:
            ensure_supported_did("did:example:abc")
        assert str(exc_info.value) == (
            "Invalid DID method: 'did:example:abc'. Expected either 'web' or 'plc'"
        )


class TestGetSigningKey:
    """Test suite for extracting the #atproto signing key."""

    @pytest.mark.parametrize("alg", ["ES256", "ES256K"])
    def test_multikey(self, alg):
        key = generate_issuer_key(alg)
        document = did_document(
            ALICE_DID,
            {
                "id": f"{ALICE_DID}#atproto",
                "type": "Multikey",
                "controller": ALICE_DID,
                "publicKeyMultibase": format_multikey(alg, key.compressed),
            },
        )
        assert get_signing_key(ALICE_DID, document) == key.did_key

    def test_relative_method_id(self):
        key = generate_issuer_key("ES256K")
        document = did_document(
            ALICE_DID,
            {
                "id": "#atproto",
                "type": "Multikey",
                "controller": ALICE_DID,
                "publicKeyMultibase": format_multikey("ES256K", key.compressed),
            },
        )
        assert get_signing_key(ALICE_DID, document) == key.did_key

    @pytest.mark.parametrize(
        "method_type,alg",
        [
            ("EcdsaSecp256r1VerificationKey2019", "ES256"),
            ("EcdsaSecp256k1VerificationKey2019", "ES256K"),
        ],
    )
    def test_legacy_types(self, method_type, alg):
        """Legacy verification methods carry the raw, uncompressed point without a codec prefix."""
        key = generate_issuer_key(alg)
        document = did_document(
            ALICE_DID,
            {
                "id": "#atproto",
                "type": method_type,
                "controller": ALICE_DID,
                "publicKeyMultibase": "z" + base58.b58encode(key.uncompressed).decode("ascii"),
            },
        )
        assert get_signing_key(ALICE_DID, document) == key.did_key

    def test_other_methods_are_ignored(self):
        key = generate_issuer_key("ES256")
        document = did_document(
            ALICE_DID,
            {
                "id": "#atproto_label",
                "type": "Multikey",
                "publicKeyMultibase": format_multikey("ES256", key.compressed),
            },
        )
        with pytest.raises(PoorlyFormattedDidDocumentError):
            get_signing_key(ALICE_DID, document)

    def test_missing_verification_methods(self):
        with pytest.raises(PoorlyFormattedDidDocumentError):
            get_signing_key(ALICE_DID, {"id": ALICE_DID})

    def test_unsupported_type(self):
        document = did_document(
            ALICE_DID,
            {"id": "#atproto", "type": "Ed25519VerificationKey2020", "publicKeyMultibase": "z1"},
        )
        with pytest.raises(PoorlyFormattedDidDocumentError):
            get_signing_key(ALICE_DID, document)

    def test_invalid_key_material(self):
        document = did_document(
            ALICE_DID,
            {"id": "#atproto", "type": "Multikey", "publicKeyMultibase": "zabc"},
        )
        with pytest.raises(PoorlyFormattedDidDocumentError):
            get_signing_key(ALICE_DID, document)
