"""
Secure Document Pipeline - Security Feature Generator

Produces the payload of each physical/electronic security feature:
- watermark       (optical)            issuer + type + id + issue time
- hologram        (scanner)            32-byte nonce
- microprint      (microscope)         id number + epoch-ms timestamp
- uv              (uv_light)           64-byte nonce
- rfid            (rfid_scanner)       16-byte chip UID + 16-byte subject binding
- security_thread (optical)            48-byte nonce
- biometric       (biometric_scanner)  encrypted biometric blob

Every generator is pure given its inputs. Nonces come from the explicit
random_source argument and the issue time from the explicit clock, so a
feature list is reproducible when both are fixed.
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional

from .errors import SealingError, ValidationError
from .models import (
    DocumentSecurityConfig,
    DocumentType,
    FeatureKind,
    VerificationMethod,
    format_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

RandomSource = Callable[[int], bytes]
Clock = Callable[[], datetime]

HOLOGRAM_NONCE_SIZE = 32
UV_NONCE_SIZE = 64
RFID_UID_SIZE = 16
RFID_BINDING_SIZE = 16
SECURITY_THREAD_SIZE = 48

MICROPRINT_PREFIX = "RSA DHA"


@dataclass(frozen=True)
class SecurityFeature:
    """One security feature attached to a document."""
    kind: FeatureKind
    payload: bytes
    verification_method: VerificationMethod

    def digest(self) -> str:
        """Hex SHA-256 of the payload (what the canonical form carries)."""
        return hashlib.sha256(self.payload).hexdigest()


def draw_nonce(random_source: RandomSource, size: int) -> bytes:
    """Draw exactly `size` bytes or fail the issuance."""
    nonce = random_source(size)
    if not isinstance(nonce, (bytes, bytearray)) or len(nonce) != size:
        raise SealingError(f"Random source returned an invalid nonce (wanted {size} bytes)")
    return bytes(nonce)


def check_utf8_text(subject_data: Mapping[str, Any]) -> None:
    """Field names and string values must be encodable as UTF-8 (no lone surrogates)."""
    for key, value in subject_data.items():
        for text in (key, value):
            if not isinstance(text, str):
                continue
            try:
                text.encode("utf-8")
            except UnicodeEncodeError:
                raise ValidationError(f"Subject field {ascii(key)} is not valid UTF-8 text")


def validate_subject(subject_data: Mapping[str, Any]) -> DocumentType:
    """
    Check the fields every document needs.

    Returns the parsed document type.
    """
    check_utf8_text(subject_data)

    id_number = subject_data.get("idNumber")
    if not isinstance(id_number, str) or not id_number.strip():
        raise ValidationError("Invalid ID number")

    document_type = subject_data.get("documentType")
    if not document_type:
        raise ValidationError("Invalid document type")
    try:
        return DocumentType(document_type)
    except ValueError:
        raise ValidationError(f"Unsupported document type: {document_type}")


# =============================================================================
# Individual generators
# =============================================================================

def generate_watermark(
    subject_data: Mapping[str, Any],
    issued_at: datetime,
    issuer: str,
) -> SecurityFeature:
    document_type = str(subject_data["documentType"]).upper()
    text = f"{issuer} {document_type} {subject_data['idNumber']} SECURED {format_timestamp(issued_at)}"
    return SecurityFeature(FeatureKind.WATERMARK, text.encode("utf-8"), VerificationMethod.OPTICAL)


def generate_hologram(random_source: RandomSource) -> SecurityFeature:
    pattern = draw_nonce(random_source, HOLOGRAM_NONCE_SIZE)
    return SecurityFeature(FeatureKind.HOLOGRAM, pattern, VerificationMethod.SCANNER)


def generate_microprint(subject_data: Mapping[str, Any], issued_at: datetime) -> SecurityFeature:
    """
    Microprint line with the identity number and the issue time in epoch ms.

    Two documents for the same subject issued at different times never
    share a microprint.
    """
    epoch_ms = int(issued_at.timestamp() * 1000)
    text = f"{MICROPRINT_PREFIX} {subject_data['idNumber']} {epoch_ms}"
    return SecurityFeature(FeatureKind.MICROPRINT, text.encode("utf-8"), VerificationMethod.MICROSCOPE)


def generate_uv_marker(random_source: RandomSource) -> SecurityFeature:
    marker = draw_nonce(random_source, UV_NONCE_SIZE)
    return SecurityFeature(FeatureKind.UV, marker, VerificationMethod.UV_LIGHT)


def generate_rfid_payload(
    subject_data: Mapping[str, Any],
    random_source: RandomSource,
) -> SecurityFeature:
    """Chip UID followed by a truncated hash binding the chip to the subject."""
    chip_uid = draw_nonce(random_source, RFID_UID_SIZE)
    binding = hashlib.sha256(
        f"{subject_data['documentType']}|{subject_data['idNumber']}".encode("utf-8")
    ).digest()[:RFID_BINDING_SIZE]
    return SecurityFeature(FeatureKind.RFID, chip_uid + binding, VerificationMethod.RFID_SCANNER)


def generate_security_thread(random_source: RandomSource) -> SecurityFeature:
    pattern = draw_nonce(random_source, SECURITY_THREAD_SIZE)
    return SecurityFeature(FeatureKind.SECURITY_THREAD, pattern, VerificationMethod.OPTICAL)


def biometric_feature(encrypted_biometrics: bytes) -> SecurityFeature:
    """Wrap an already-encrypted biometric blob as a feature."""
    return SecurityFeature(
        FeatureKind.BIOMETRIC,
        bytes(encrypted_biometrics),
        VerificationMethod.BIOMETRIC_SCANNER,
    )


# =============================================================================
# Feature set
# =============================================================================

def generate_features(
    subject_data: Mapping[str, Any],
    config: DocumentSecurityConfig,
    *,
    issuer: str,
    random_source: RandomSource = secrets.token_bytes,
    clock: Clock = utc_now,
    issued_at: Optional[datetime] = None,
) -> List[SecurityFeature]:
    """
    Generate the enabled security features in a fixed order.

    Disabled features are omitted, not generated as placeholders.

    Raises:
        ValidationError: idNumber or documentType missing/invalid
        SealingError: random source misbehaved
    """
    validate_subject(subject_data)
    if issued_at is None:
        issued_at = clock()

    features: List[SecurityFeature] = []

    if config.watermark:
        features.append(generate_watermark(subject_data, issued_at, issuer))

    if config.hologram:
        features.append(generate_hologram(random_source))

    if config.microprint:
        features.append(generate_microprint(subject_data, issued_at))

    if config.uv_features:
        features.append(generate_uv_marker(random_source))

    if config.rfid_chip:
        features.append(generate_rfid_payload(subject_data, random_source))

    if config.security_thread:
        features.append(generate_security_thread(random_source))

    logger.debug(f"Generated {len(features)} security features: {[f.kind.value for f in features]}")
    return features
