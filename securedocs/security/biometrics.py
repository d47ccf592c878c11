"""
Secure Document Pipeline - Biometric Encryption

Biometric payloads are encrypted on their own, under a long-lived master
key that is distinct from the per-document envelope key. Opening an
envelope therefore yields only the encrypted blob; decrypting it needs the
master key as a separate grant.

Blob format (no length header):
    IV (16 bytes) || GCM tag (16 bytes) || ciphertext
"""

import logging
import secrets
from typing import Callable

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import BiometricDecryptionError, SealingError, ValidationError

logger = logging.getLogger(__name__)

MASTER_KEY_SIZE = 32
IV_SIZE = 16
TAG_SIZE = 16
BIOMETRIC_AAD = b"securedocs:biometric:v1"


def _check_master_key(master_key: bytes) -> None:
    if not isinstance(master_key, (bytes, bytearray)) or len(master_key) != MASTER_KEY_SIZE:
        raise ValidationError(f"Biometric master key must be {MASTER_KEY_SIZE} bytes")


def encrypt_biometrics(
    raw_biometrics: bytes,
    master_key: bytes,
    random_source: Callable[[int], bytes] = secrets.token_bytes,
) -> bytes:
    """Encrypt a biometric payload with AES-256-GCM under the master key."""
    _check_master_key(master_key)
    if not raw_biometrics:
        raise ValidationError("Biometric payload is empty")

    iv = random_source(IV_SIZE)
    if not isinstance(iv, (bytes, bytearray)) or len(iv) != IV_SIZE:
        raise SealingError("Random source returned an invalid biometric IV")

    sealed = AESGCM(bytes(master_key)).encrypt(bytes(iv), bytes(raw_biometrics), BIOMETRIC_AAD)
    ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
    return bytes(iv) + tag + ciphertext


def decrypt_biometrics(blob: bytes, master_key: bytes) -> bytes:
    """
    Reverse encrypt_biometrics().

    Raises:
        ValidationError: master key has the wrong size
        BiometricDecryptionError: blob too short, wrong key or tampered data
    """
    _check_master_key(master_key)
    if len(blob) < IV_SIZE + TAG_SIZE:
        raise BiometricDecryptionError("Biometric blob is truncated")

    iv = blob[:IV_SIZE]
    tag = blob[IV_SIZE:IV_SIZE + TAG_SIZE]
    ciphertext = blob[IV_SIZE + TAG_SIZE:]

    try:
        return AESGCM(bytes(master_key)).decrypt(iv, ciphertext + tag, BIOMETRIC_AAD)
    except InvalidTag:
        logger.warning("Biometric attachment failed authentication")
        raise BiometricDecryptionError("Biometric attachment could not be decrypted")
