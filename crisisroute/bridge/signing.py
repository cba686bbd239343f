"""Ed25519 request signing via PyNaCl.

Outbound webhook requests are signed with the instance signing key so a
partner can verify that a delivery came from this deployment. The signature
covers ``"<timestamp>.<body>"`` to bind the body to the send time.

Key material is hex-encoded throughout: a 32-byte seed for the private key
and a 32-byte verify key for the public key.
"""

from __future__ import annotations

import hashlib
import logging

import nacl.signing
from nacl.exceptions import BadSignatureError

logger = logging.getLogger(__name__)


def generate_signing_keypair() -> tuple[str, str]:
    """Generate an Ed25519 signing key-pair.

    Returns
    -------
    tuple[str, str]
        ``(private_key_hex, public_key_hex)``
    """
    sk = nacl.signing.SigningKey.generate()
    return sk.encode().hex(), sk.verify_key.encode().hex()


def public_key_for(private_key: str) -> str:
    """Derive the hex verify key from a hex seed."""
    sk = nacl.signing.SigningKey(bytes.fromhex(private_key))
    return sk.verify_key.encode().hex()


def signing_message(timestamp: str, body: bytes) -> bytes:
    """The exact bytes that are signed for a webhook request."""
    return timestamp.encode("ascii") + b"." + body


def sign_data(data: bytes, private_key: str) -> str:
    """Sign *data* with *private_key* and return the hex-encoded signature.

    Parameters
    ----------
    data:
        Raw bytes to sign.
    private_key:
        Hex-encoded seed returned by ``generate_signing_keypair()``.

    Returns
    -------
    str
        Hex-encoded signature (128 hex chars = 64 bytes for Ed25519).
    """
    sk = nacl.signing.SigningKey(bytes.fromhex(private_key))
    return sk.sign(data).signature.hex()


def verify_data(data: bytes, signature: str, public_key: str) -> bool:
    """Return ``True`` if *signature* is valid for *data* under *public_key*.

    Fails closed: malformed hex, wrong key length or a bad signature all
    return ``False``.
    """
    if not signature:
        return False
    try:
        vk = nacl.signing.VerifyKey(bytes.fromhex(public_key))
        vk.verify(data, bytes.fromhex(signature))
        return True
    except (BadSignatureError, ValueError, TypeError):
        return False


def key_fingerprint(public_key: str) -> str:
    """First 16 hex characters of SHA-256(public_key).

    Lets operators confirm which signing key is configured without printing it.
    """
    if not public_key:
        return ""
    return hashlib.sha256(public_key.encode("utf-8")).hexdigest()[:16]
