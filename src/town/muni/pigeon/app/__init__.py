"""
Keyserver Application Layer

This package implements the HTTP surface of the keyserver using the aiohttp framework.

Key Components:
- cli.py: Entry point for running the application
- server.py: Web server configuration, middleware and route setup
- config.py: Configuration management using Pydantic settings
- auth.py: Service-auth bearer token authentication
- handlers/: Request handlers for the DID document, key lookups and health probes
- tasks.py: Background health gauge task
- cors.py: CORS headers for cross-origin requests
- metrics.py: Metrics client abstraction

The application uses several middleware layers, outermost first:
- CORS middleware answering preflight requests and decorating responses
- Statsd middleware for metrics collection
- Sentry middleware for error reporting
- Auth wall middleware gating /xrpc/ methods
- JSON error middleware rendering HTTP errors as {"status": ..., "error": ...}

It provides the following endpoints:
- GET /.well-known/did.json: this service's DID document
- GET /xrpc/public.key.pigeon.muni.town?did=...: public key of any DID (unauthenticated)
- GET /xrpc/key.pigeon.muni.town: the caller's own keypair (service-auth required)
- GET /internal/alive, GET /internal/ready: health probes
"""
