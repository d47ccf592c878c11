"""
Biometric encryption tests.

Usage:
    python -m pytest tests/test_biometrics.py -v
"""

import secrets

import pytest

from securedocs.security.biometrics import IV_SIZE, TAG_SIZE, decrypt_biometrics, encrypt_biometrics
from securedocs.security.errors import BiometricDecryptionError, SealingError, ValidationError

TEMPLATE = b"FMR\x00 20\x00" + bytes(range(200))


def test_encrypt_decrypt_round_trip():
    """Blob decrypts back to the template under the same master key."""
    master_key = secrets.token_bytes(32)
    blob = encrypt_biometrics(TEMPLATE, master_key)

    assert len(blob) == IV_SIZE + TAG_SIZE + len(TEMPLATE)
    assert TEMPLATE not in blob
    assert decrypt_biometrics(blob, master_key) == TEMPLATE


def test_fresh_iv_per_encryption():
    master_key = secrets.token_bytes(32)
    assert encrypt_biometrics(TEMPLATE, master_key) != encrypt_biometrics(TEMPLATE, master_key)


def test_wrong_master_key_fails():
    blob = encrypt_biometrics(TEMPLATE, secrets.token_bytes(32))

    with pytest.raises(BiometricDecryptionError):
        decrypt_biometrics(blob, secrets.token_bytes(32))


def test_tampered_blob_fails():
    master_key = secrets.token_bytes(32)
    blob = bytearray(encrypt_biometrics(TEMPLATE, master_key))
    blob[-1] ^= 0x80

    with pytest.raises(BiometricDecryptionError):
        decrypt_biometrics(bytes(blob), master_key)


def test_truncated_blob_fails():
    with pytest.raises(BiometricDecryptionError):
        decrypt_biometrics(b"\x00" * (IV_SIZE + TAG_SIZE - 1), secrets.token_bytes(32))


@pytest.mark.parametrize("master_key", [b"", b"\x00" * 16, b"\x00" * 33, "0" * 32])
def test_master_key_must_be_32_bytes(master_key):
    with pytest.raises(ValidationError):
        encrypt_biometrics(TEMPLATE, master_key)


def test_empty_payload_rejected():
    with pytest.raises(ValidationError):
        encrypt_biometrics(b"", secrets.token_bytes(32))


def test_bad_random_source_is_sealing_error():
    with pytest.raises(SealingError):
        encrypt_biometrics(TEMPLATE, secrets.token_bytes(32), random_source=lambda n: b"\x00" * 12)
