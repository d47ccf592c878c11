"""
Key custody and configuration tests.

Usage:
    python -m pytest tests/test_key_custody.py -v
"""

import asyncio
import base64
import re
import secrets

import pytest
from cryptography.hazmat.primitives import serialization
from nacl.encoding import Base64Encoder
from nacl.public import PrivateKey
from nacl.signing import SigningKey

from securedocs.config import build_anchor_backend, load_security_config
from securedocs.document_service import DocumentService
from securedocs.security.anchor import AnchorService, HttpAnchorBackend, UnavailableAnchorBackend
from securedocs.security.key_custody import (
    BIOMETRIC_MASTER_FILE,
    RECIPIENT_PRIVATE_FILE,
    RECIPIENT_PUBLIC_FILE,
    SIGNING_KEY_FILE,
    VERIFY_KEY_FILE,
    FileKeyCustody,
    InMemoryKeyCustody,
    calculate_fingerprint,
    encode_public_key,
)
from securedocs.security.models import DocumentRequest, DocumentType

from conftest import fixed_clock, sample_subject

FINGERPRINT_PATTERN = re.compile(r"^([0-9a-f]{2}:){7}[0-9a-f]{2}$")


def write_nacl_custody(security_dir):
    signing_key = SigningKey.generate()
    recipient_key = PrivateKey.generate()
    (security_dir / SIGNING_KEY_FILE).write_text(signing_key.encode(encoder=Base64Encoder).decode())
    (security_dir / VERIFY_KEY_FILE).write_text(encode_public_key(signing_key.verify_key))
    (security_dir / RECIPIENT_PRIVATE_FILE).write_text(recipient_key.encode(encoder=Base64Encoder).decode())
    (security_dir / RECIPIENT_PUBLIC_FILE).write_text(encode_public_key(recipient_key.public_key))
    (security_dir / BIOMETRIC_MASTER_FILE).write_text(base64.b64encode(secrets.token_bytes(32)).decode())
    return signing_key


# =============================================================================
# Test: File custody
# =============================================================================

def test_file_custody_issue_and_verify(tmp_path):
    """A provisioned custody directory drives the full pipeline."""
    signing_key = write_nacl_custody(tmp_path)
    custody = FileKeyCustody(str(tmp_path))

    assert custody.issuer_public_key() == signing_key.verify_key
    assert custody.has_biometric_key()

    service = DocumentService(
        key_custody=custody,
        anchor_service=AnchorService(UnavailableAnchorBackend(), clock=fixed_clock),
        clock=fixed_clock,
    )
    issued = asyncio.run(service.generate_secure_document(
        DocumentRequest(document_type=DocumentType.ID_CARD, subject_data=sample_subject(), biometrics=b"template")
    ))
    result = service.verify_document(issued.envelope)

    assert result.verified
    assert service.decrypt_biometrics(result) == b"template"


def test_file_custody_reads_rotated_keys(tmp_path):
    """Keys are read on every access, so rotation takes effect immediately."""
    write_nacl_custody(tmp_path)
    custody = FileKeyCustody(str(tmp_path))
    before = custody.fingerprint()

    rotated = write_nacl_custody(tmp_path)

    assert custody.fingerprint() != before
    assert custody.issuer_public_key() == rotated.verify_key


def test_file_custody_pem_keys(tmp_path, rsa_keys):
    """RSA keys are loaded from PEM files."""
    signing_key, recipient_key = rsa_keys
    pkcs8 = dict(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    (tmp_path / SIGNING_KEY_FILE).write_bytes(signing_key.private_bytes(**pkcs8))
    (tmp_path / VERIFY_KEY_FILE).write_text(encode_public_key(signing_key.public_key()))
    (tmp_path / RECIPIENT_PRIVATE_FILE).write_bytes(recipient_key.private_bytes(**pkcs8))
    (tmp_path / RECIPIENT_PUBLIC_FILE).write_text(encode_public_key(recipient_key.public_key()))

    custody = FileKeyCustody(str(tmp_path))
    service = DocumentService(
        key_custody=custody,
        anchor_service=AnchorService(UnavailableAnchorBackend(), clock=fixed_clock),
        clock=fixed_clock,
        render_qr=False,
    )
    issued = asyncio.run(service.generate_secure_document(
        DocumentRequest(document_type=DocumentType.ID_CARD, subject_data=sample_subject())
    ))

    assert issued.envelope.wrap_algorithm == "RSA-OAEP-SHA256"
    assert service.verify_document(issued.envelope).verified
    assert not custody.has_biometric_key()


def test_missing_key_file_raises(tmp_path):
    custody = FileKeyCustody(str(tmp_path))

    with pytest.raises(FileNotFoundError):
        custody.issuer_public_key()
    with pytest.raises(FileNotFoundError):
        with custody.signing_key():
            pass


def test_in_memory_custody_derives_public_keys(rsa_keys):
    """Public keys default to those of the held private keys, for each key family."""
    signing_key, recipient_key = SigningKey.generate(), PrivateKey.generate()
    custody = InMemoryKeyCustody(signing_key=signing_key, recipient_private_key=recipient_key)

    assert custody.issuer_public_key() == signing_key.verify_key
    assert custody.recipient_public_key() == recipient_key.public_key

    rsa_signing, rsa_recipient = rsa_keys
    rsa_custody = InMemoryKeyCustody(signing_key=rsa_signing, recipient_private_key=rsa_recipient)
    assert rsa_custody.fingerprint() == calculate_fingerprint(rsa_signing.public_key())
    assert encode_public_key(rsa_custody.recipient_public_key()) == encode_public_key(rsa_recipient.public_key())


def test_fingerprint_format(rsa_keys):
    """Fingerprints are 8 colon-separated hex pairs for both key families."""
    assert FINGERPRINT_PATTERN.match(calculate_fingerprint(SigningKey.generate().verify_key))
    assert FINGERPRINT_PATTERN.match(calculate_fingerprint(rsa_keys[0].public_key()))


# =============================================================================
# Test: Configuration
# =============================================================================

def test_load_security_config_disables_listed_features():
    config = load_security_config("uv, RFID ,biometric")

    assert config.uv_features is False
    assert config.rfid_chip is False
    assert config.biometric_data is False
    assert config.watermark and config.hologram and config.microprint


def test_load_security_config_ignores_unknown_names():
    assert load_security_config("laser_engraving,") == load_security_config("")


def test_build_anchor_backend():
    assert isinstance(build_anchor_backend(url=""), UnavailableAnchorBackend)

    backend = build_anchor_backend(url="https://anchor.example.test", timeout=2.5)
    assert isinstance(backend, HttpAnchorBackend)
    assert backend.timeout == 2.5
