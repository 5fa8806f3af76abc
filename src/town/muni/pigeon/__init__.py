"""
Pigeon Keyserver

This module implements a small identity-bound keyserver for the AT Protocol ecosystem. Callers are
identified by their DID, authenticate with service-auth JWTs signed by the key published in their DID
document, and receive a durable Ed25519 keypair that is created for them on first use.

Key Components:
- app: Web application layer with request handlers and server configuration
- atproto: AT Protocol service-auth JWT verification and did:key handling
- keys: Keypair storage and textual key encodings
- model: Data models for keypairs and service health
- resolve: DID syntax validation and DID document resolution

Architecture Overview:
1. Public lookups:
   - Anyone may fetch the public half of a DID's keypair
   - The keypair is materialized on first lookup

2. Authenticated lookups:
   - Requests under /xrpc/ carry a bearer JWT whose audience is this service
   - The issuer's signing key is resolved from its DID document
   - The owner receives both halves of its own keypair

3. Storage:
   - Redis-backed keypair store with atomic create-if-absent semantics
   - Redis-backed DID document cache
"""
