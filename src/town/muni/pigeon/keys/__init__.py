"""
Keypair Management

Key Components:
- store.py: Get-or-create keypair storage (Redis and in-memory backends)
- encoding.py: Public key tags and secret key encodings returned to clients
"""
