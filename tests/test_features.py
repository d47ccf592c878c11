"""
Security feature generation and canonicalization tests.

Usage:
    python -m pytest tests/test_features.py -v
"""

import hashlib

import pytest

from securedocs.security.canonical import canonical_bytes, document_digest
from securedocs.security.errors import SealingError, ValidationError
from securedocs.security.features import (
    SecurityFeature,
    generate_features,
    generate_microprint,
    generate_rfid_payload,
    generate_watermark,
)
from securedocs.security.models import DocumentSecurityConfig, FeatureKind, VerificationMethod

from conftest import FIXED_TIME, SAMPLE_ID, DeterministicRandom, fixed_clock, sample_subject

ISSUER = "DHA Digital Services"


# =============================================================================
# Test: Feature generators
# =============================================================================

def test_default_config_feature_order():
    """Default config yields the five standard features in generation order."""
    features = generate_features(
        sample_subject(), DocumentSecurityConfig(), issuer=ISSUER,
        random_source=DeterministicRandom(), clock=fixed_clock,
    )

    kinds = [f.kind for f in features]
    assert kinds == [
        FeatureKind.WATERMARK,
        FeatureKind.HOLOGRAM,
        FeatureKind.MICROPRINT,
        FeatureKind.UV,
        FeatureKind.RFID,
    ], f"Unexpected feature order: {kinds}"


def test_disabled_features_are_omitted():
    """Disabled features are left out, not replaced by placeholders."""
    config = DocumentSecurityConfig(hologram=False, uv_features=False, rfid_chip=False, security_thread=True)
    features = generate_features(
        sample_subject(), config, issuer=ISSUER,
        random_source=DeterministicRandom(), clock=fixed_clock,
    )

    kinds = [f.kind for f in features]
    assert kinds == [FeatureKind.WATERMARK, FeatureKind.MICROPRINT, FeatureKind.SECURITY_THREAD]
    assert len(features[-1].payload) == 48


def test_watermark_text():
    """Watermark carries issuer, type, id and issue time."""
    feature = generate_watermark(sample_subject(), FIXED_TIME, ISSUER)

    assert feature.verification_method == VerificationMethod.OPTICAL
    assert feature.payload.decode() == (
        f"DHA Digital Services ID_CARD {SAMPLE_ID} SECURED 2024-03-01T09:30:00.000+00:00"
    )


def test_microprint_contains_id_and_epoch_ms():
    """Microprint changes with the issue time."""
    feature = generate_microprint(sample_subject(), FIXED_TIME)
    epoch_ms = int(FIXED_TIME.timestamp() * 1000)

    assert feature.payload.decode() == f"RSA DHA {SAMPLE_ID} {epoch_ms}"
    assert feature.verification_method == VerificationMethod.MICROSCOPE


def test_rfid_payload_binds_subject():
    """RFID payload is 16-byte UID followed by a 16-byte subject binding."""
    feature = generate_rfid_payload(sample_subject(), DeterministicRandom())
    binding = hashlib.sha256(f"id_card|{SAMPLE_ID}".encode()).digest()[:16]

    assert len(feature.payload) == 32
    assert feature.payload[16:] == binding


def test_nonce_sizes():
    """Hologram and UV nonces have their documented sizes."""
    features = generate_features(
        sample_subject(), DocumentSecurityConfig(), issuer=ISSUER,
        random_source=DeterministicRandom(), clock=fixed_clock,
    )
    by_kind = {f.kind: f for f in features}

    assert len(by_kind[FeatureKind.HOLOGRAM].payload) == 32
    assert len(by_kind[FeatureKind.UV].payload) == 64


def test_same_inputs_same_features():
    """Features are reproducible with a fixed random source and clock."""
    first = generate_features(sample_subject(), DocumentSecurityConfig(), issuer=ISSUER,
                              random_source=DeterministicRandom(), clock=fixed_clock)
    second = generate_features(sample_subject(), DocumentSecurityConfig(), issuer=ISSUER,
                               random_source=DeterministicRandom(), clock=fixed_clock)

    assert first == second


@pytest.mark.parametrize("subject", [
    {"documentType": "id_card"},
    {"idNumber": "", "documentType": "id_card"},
    {"idNumber": SAMPLE_ID},
    {"idNumber": SAMPLE_ID, "documentType": "drivers_licence"},
])
def test_invalid_subject_rejected(subject):
    """Missing/empty idNumber or documentType, or unknown type, is a ValidationError."""
    with pytest.raises(ValidationError):
        generate_features(subject, DocumentSecurityConfig(), issuer=ISSUER, clock=fixed_clock)


def test_short_random_output_is_sealing_error():
    """A random source that returns too few bytes aborts issuance."""
    with pytest.raises(SealingError):
        generate_features(
            sample_subject(), DocumentSecurityConfig(), issuer=ISSUER,
            random_source=lambda n: b"\x00" * (n - 1), clock=fixed_clock,
        )


# =============================================================================
# Test: Canonicalization
# =============================================================================

def test_canonical_bytes_deterministic():
    """Same subject and nonces give identical canonical bytes and digest."""
    subject = sample_subject()
    features_a = generate_features(subject, DocumentSecurityConfig(), issuer=ISSUER,
                                   random_source=DeterministicRandom(), clock=fixed_clock)
    features_b = generate_features(subject, DocumentSecurityConfig(), issuer=ISSUER,
                                   random_source=DeterministicRandom(), clock=fixed_clock)

    canonical_a = canonical_bytes(subject, features_a)
    canonical_b = canonical_bytes(dict(reversed(list(subject.items()))), features_b)

    assert canonical_a == canonical_b, "Canonical form must not depend on key order"
    assert document_digest(canonical_a) == document_digest(canonical_b)
    assert len(document_digest(canonical_a)) == 32


def test_canonical_bytes_carry_digests_not_payloads():
    """Feature payloads enter the canonical form only as digests."""
    feature = SecurityFeature(FeatureKind.HOLOGRAM, b"\xff" * 32, VerificationMethod.SCANNER)
    canonical = canonical_bytes(sample_subject(), [feature])

    assert feature.digest().encode() in canonical
    assert b" " not in canonical.replace(b"Thandiwe Nkosi", b"")


def test_canonical_bytes_sensitive_to_changes():
    """A one-character subject change or payload change alters the bytes."""
    feature = SecurityFeature(FeatureKind.UV, b"\x01" * 64, VerificationMethod.UV_LIGHT)
    base = canonical_bytes(sample_subject(), [feature])

    changed_subject = canonical_bytes(sample_subject(idNumber="8001015009088"), [feature])
    changed_payload = canonical_bytes(
        sample_subject(),
        [SecurityFeature(FeatureKind.UV, b"\x01" * 63 + b"\x02", VerificationMethod.UV_LIGHT)],
    )

    assert base != changed_subject
    assert base != changed_payload


@pytest.mark.parametrize("value", [{"nested": 1}, [1, 2], b"raw", float("nan")])
def test_canonical_rejects_non_scalar_values(value):
    """Subject values must be finite JSON scalars."""
    with pytest.raises(ValidationError):
        canonical_bytes(sample_subject(extra=value), [])


@pytest.mark.parametrize("subject", [
    sample_subject(fullName="\ud800abc"),
    sample_subject(idNumber="80010150\udfff87"),
    {**sample_subject(), "\udc80note": "x"},
])
def test_non_utf8_subject_text_is_validation_error(subject):
    """Lone surrogates in names or values are rejected as bad input."""
    with pytest.raises(ValidationError):
        canonical_bytes(subject, [])
    with pytest.raises(ValidationError):
        generate_features(subject, DocumentSecurityConfig(), issuer=ISSUER, clock=fixed_clock)
