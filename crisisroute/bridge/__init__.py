"""Bridge layer between the routing engine and the outside world.

Modules
-------
encryption
    Hybrid RSA-OAEP + AES-GCM encryption of outbound payloads (``cryptography``).
signing
    Ed25519 request signing for webhook deliveries (PyNaCl).
delivery
    ``DeliveryClient``: webhook POST with timeouts, retries and backoff (httpx).
audit_sink
    Best-effort, write-only admin audit destination.

Nothing in this package touches family-facing data.
"""
