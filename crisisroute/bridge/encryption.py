"""Hybrid encryption of outbound payloads for a specific partner key.

Scheme
------
1. A fresh 256-bit AES key is generated per payload.
2. The canonical JSON bytes of the payload are sealed with AES-GCM under that
   key and a random 96-bit nonce.
3. The AES key is wrapped with the partner's RSA public key using RSA-OAEP
   (MGF1 + SHA-256).
4. ``publicKeyHash`` is the SHA-256 of the partner's PEM text, so the partner
   can detect that the sender used a rotated-out key.

Neither the plaintext payload nor the AES key ever leaves this module; the
returned package is transient and is not persisted.
"""

from __future__ import annotations

import base64
import logging
import os

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from crisisroute.core.errors import EncryptionError
from crisisroute.core.hasher import canonical_json_bytes, sha256_hex
from crisisroute.models.partners import CrisisPartnerConfig
from crisisroute.models.payload import EncryptedSignalPackage, ExternalSignalPayload

logger = logging.getLogger(__name__)

AES_KEY_BITS = 256
GCM_NONCE_BYTES = 12
RSA_KEY_BITS = 2048

_OAEP = padding.OAEP(
    mgf=padding.MGF1(algorithm=hashes.SHA256()),
    algorithm=hashes.SHA256(),
    label=None,
)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def public_key_hash(public_key_pem: str) -> str:
    """SHA-256 hex digest of a PEM public key's text."""
    return sha256_hex(public_key_pem.encode("utf-8"))


def payload_bytes(payload: ExternalSignalPayload) -> bytes:
    """The exact plaintext bytes that get encrypted for a payload."""
    return canonical_json_bytes(payload.to_wire())


def _load_public_key(public_key_pem: str) -> rsa.RSAPublicKey:
    try:
        key = serialization.load_pem_public_key(public_key_pem.encode("utf-8"))
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise EncryptionError(f"Partner public key is not a valid PEM key: {exc}") from exc
    if not isinstance(key, rsa.RSAPublicKey):
        raise EncryptionError("Partner public key must be an RSA key")
    return key


def encrypt_payload_for_partner(
    payload: ExternalSignalPayload,
    partner: CrisisPartnerConfig,
) -> EncryptedSignalPackage:
    """Hybrid-encrypt *payload* for *partner*'s public key.

    Raises
    ------
    EncryptionError
        If the partner key cannot be loaded or is not RSA.
    """
    rsa_key = _load_public_key(partner.public_key)

    aes_key = AESGCM.generate_key(bit_length=AES_KEY_BITS)
    nonce = os.urandom(GCM_NONCE_BYTES)
    ciphertext = AESGCM(aes_key).encrypt(nonce, payload_bytes(payload), None)
    wrapped_key = rsa_key.encrypt(aes_key, _OAEP)

    logger.debug("Encrypted payload for partner %s", partner.partner_id)
    return EncryptedSignalPackage(
        encrypted_key=_b64(wrapped_key),
        encrypted_payload=_b64(ciphertext),
        iv=_b64(nonce),
        partner_id=partner.partner_id,
        public_key_hash=public_key_hash(partner.public_key),
    )


def decrypt_package(package: EncryptedSignalPackage, private_key_pem: str) -> bytes:
    """Partner-side decryption: recover the exact plaintext payload bytes.

    Raises
    ------
    EncryptionError
        If the private key does not match or the ciphertext was tampered with.
    """
    try:
        private_key = serialization.load_pem_private_key(
            private_key_pem.encode("utf-8"), password=None
        )
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise EncryptionError(f"Private key is not a valid PEM key: {exc}") from exc
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise EncryptionError("Private key must be an RSA key")

    try:
        aes_key = private_key.decrypt(base64.b64decode(package.encrypted_key), _OAEP)
        return AESGCM(aes_key).decrypt(
            base64.b64decode(package.iv),
            base64.b64decode(package.encrypted_payload),
            None,
        )
    except (ValueError, InvalidTag) as exc:
        raise EncryptionError("Package could not be decrypted with this key") from exc


def decrypt_payload(
    package: EncryptedSignalPackage, private_key_pem: str
) -> ExternalSignalPayload:
    """Decrypt and parse a package back into an ``ExternalSignalPayload``."""
    return ExternalSignalPayload.model_validate_json(
        decrypt_package(package, private_key_pem)
    )


def generate_partner_keypair(key_bits: int = RSA_KEY_BITS) -> tuple[str, str]:
    """Generate an RSA key pair for partner onboarding.

    Returns
    -------
    tuple[str, str]
        ``(private_key_pem, public_key_pem)``
    """
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_bits)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")
    return private_pem, public_pem
