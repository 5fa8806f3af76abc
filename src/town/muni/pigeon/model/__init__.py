"""
Data Models

This package contains the plain data types shared across the keyserver.

Key Components:
- keypair.py: The per-DID Ed25519 keypair and its storage serialization
- health.py: In-process health gauge used by readiness probes
"""
