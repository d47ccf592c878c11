"""
Shared fixtures for the secure document tests.

Keys are generated per test (RSA once per session, it is slow). Randomness
and time are injected so feature lists and envelopes are reproducible
where a test needs them to be.
"""

import hashlib
import secrets
from datetime import datetime, timezone

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from nacl.public import PrivateKey
from nacl.signing import SigningKey

from securedocs.document_service import DocumentService
from securedocs.security.anchor import AnchorService, InMemoryAnchorBackend
from securedocs.security.key_custody import InMemoryKeyCustody
from securedocs.security.models import DocumentSecurityConfig

FIXED_TIME = datetime(2024, 3, 1, 9, 30, 0, tzinfo=timezone.utc)

SAMPLE_ID = "8001015009087"


def fixed_clock() -> datetime:
    return FIXED_TIME


class DeterministicRandom:
    """Counter-mode SHA-256 byte stream. Same seed, same bytes."""

    def __init__(self, seed: bytes = b"securedocs-test"):
        self._seed = seed
        self._counter = 0

    def __call__(self, size: int) -> bytes:
        out = b""
        while len(out) < size:
            out += hashlib.sha256(self._seed + self._counter.to_bytes(8, "big")).digest()
            self._counter += 1
        return out[:size]


def sample_subject(**overrides) -> dict:
    subject = {
        "idNumber": SAMPLE_ID,
        "documentType": "id_card",
        "fullName": "Thandiwe Nkosi",
        "dateOfBirth": "1980-01-01",
        "nationality": "ZAF",
    }
    subject.update(overrides)
    return subject


def make_custody(with_biometric_key: bool = True) -> InMemoryKeyCustody:
    return InMemoryKeyCustody(
        signing_key=SigningKey.generate(),
        recipient_private_key=PrivateKey.generate(),
        biometric_master_key=secrets.token_bytes(32) if with_biometric_key else None,
    )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def custody():
    return make_custody()


@pytest.fixture(scope="session")
def rsa_keys():
    """(signing private key, recipient private key), 2048-bit."""
    return (
        rsa.generate_private_key(public_exponent=65537, key_size=2048),
        rsa.generate_private_key(public_exponent=65537, key_size=2048),
    )


@pytest.fixture
def rsa_custody(rsa_keys):
    signing_key, recipient_key = rsa_keys
    return InMemoryKeyCustody(
        signing_key=signing_key,
        recipient_private_key=recipient_key,
        biometric_master_key=secrets.token_bytes(32),
    )


@pytest.fixture
def anchor_backend():
    return InMemoryAnchorBackend(clock=fixed_clock)


@pytest.fixture
def service(custody, anchor_backend):
    return DocumentService(
        key_custody=custody,
        anchor_service=AnchorService(anchor_backend, timeout=1.0, clock=fixed_clock),
        security_config=DocumentSecurityConfig(),
        issuer="DHA Digital Services",
        clock=fixed_clock,
    )
