"""
Identity Resolution

This package validates DIDs supplied by callers and resolves the signing keys of token issuers.

Key Components:
- did.py: DID syntax checks and DID document inspection
- resolver.py: did:plc and did:web document resolution
- cache.py: Redis-backed and in-memory DID document caches
- __main__.py: CLI interface for resolution

Resolution Types:
1. did:plc resolution via the PLC directory (https://{plc_hostname}/{did})
2. did:web resolution via well-known endpoints (https://{host}/.well-known/did.json)

The signing key is taken from the document's #atproto verification method and returned as a did:key
string, which is what service-auth JWT verification consumes.
"""
