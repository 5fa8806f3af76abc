"""
AT Protocol Integration

This package implements the parts of the AT Protocol the keyserver relies on to authenticate callers.

Key Components:
- service_auth.py: Verification of service-auth JWTs (audience, lexicon method, expiry, signature)
- did_key.py: Conversion between did:key / Multikey strings and verification keys

Verification flow:
1. Decode the JWT header and claims and check their shape
2. Check expiry, audience (this service's DID) and lexicon method (the XRPC method being called)
3. Resolve the issuer's signing key through a caller-supplied callback
4. Verify the signature, re-resolving the key once with the cache bypassed on mismatch
"""
