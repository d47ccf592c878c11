"""
Secure Document Pipeline - Pydantic Models
Defines the request schema and the strict wire schema for sealed envelopes.
"""

import base64
import binascii
import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DocumentType(str, Enum):
    """Identity documents the portal issues."""
    PASSPORT = "passport"
    ID_CARD = "id_card"
    BIRTH_CERTIFICATE = "birth_certificate"


class FeatureKind(str, Enum):
    WATERMARK = "watermark"
    HOLOGRAM = "hologram"
    MICROPRINT = "microprint"
    UV = "uv"
    RFID = "rfid"
    SECURITY_THREAD = "security_thread"
    BIOMETRIC = "biometric"


class VerificationMethod(str, Enum):
    OPTICAL = "optical"
    SCANNER = "scanner"
    MICROSCOPE = "microscope"
    UV_LIGHT = "uv_light"
    RFID_SCANNER = "rfid_scanner"
    BIOMETRIC_SCANNER = "biometric_scanner"


class AnchorStatus(str, Enum):
    ANCHORED = "anchored"
    PENDING = "anchor-pending"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """ISO 8601 with millisecond precision, always UTC."""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")


_B64URL_PATTERN = re.compile(r'^[A-Za-z0-9_-]*={0,2}$')


def encode_b64(data: bytes) -> str:
    """Base64URL encode bytes for the wire format."""
    return base64.urlsafe_b64encode(data).decode("ascii")


def decode_b64(value: str) -> bytes:
    """Strict Base64URL decode. Raises ValueError on bad input."""
    if not isinstance(value, str) or not _B64URL_PATTERN.fullmatch(value):
        raise ValueError("Invalid Base64URL value: characters outside the URL-safe alphabet")
    try:
        return base64.b64decode(value, altchars=b"-_", validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid Base64URL value: {e}")


# =============================================================================
# Request / Configuration
# =============================================================================

class DocumentRequest(BaseModel):
    """
    Input from the intake service. Never persisted as-is.

    subject_data must carry a unique identity number under "idNumber".
    """
    model_config = ConfigDict(frozen=True)

    document_type: DocumentType
    subject_data: Dict[str, Any] = Field(..., description="Field -> JSON scalar value")
    biometrics: Optional[bytes] = Field(None, description="Opaque biometric blob")


class DocumentSecurityConfig(BaseModel):
    """Which security features are attached to issued documents."""
    watermark: bool = True
    hologram: bool = True
    microprint: bool = True
    uv_features: bool = True
    rfid_chip: bool = True
    security_thread: bool = False
    biometric_data: bool = True

    def enabled_features(self) -> List[str]:
        return [name for name, enabled in self.model_dump().items() if enabled]


# =============================================================================
# Envelope (wire format)
# =============================================================================

class EnvelopeMetadata(BaseModel):
    """Plaintext, non-sensitive metadata. Authenticated as AES-GCM associated data."""
    issued_at: str = Field(..., description="ISO 8601 UTC issue time")
    issuer: str
    document_type: DocumentType
    anchor_status: AnchorStatus
    verification_endpoint: str


class SealedEnvelope(BaseModel):
    """
    Sealed document package.

    Security properties:
    - Confidentiality: AES-256-GCM under a fresh per-document key
    - Key custody: that key is only stored wrapped under the recipient key
    - Integrity: GCM tag over ciphertext + metadata, signature inside
    """
    envelope_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique envelope identifier (UUID v4)"
    )
    version: str = Field(default="1.0", description="Envelope format version")
    cipher: str = Field(default="AES-256-GCM")
    wrap_algorithm: str = Field(..., description="X25519-SealedBox or RSA-OAEP-SHA256")
    ciphertext: str = Field(..., description="Base64URL encoded ciphertext")
    wrapped_key: str = Field(..., description="Base64URL encoded wrapped symmetric key")
    iv: str = Field(..., description="Base64URL encoded 16-byte IV")
    auth_tag: str = Field(..., description="Base64URL encoded 16-byte GCM tag")
    metadata: EnvelopeMetadata

    @field_validator('envelope_id')
    @classmethod
    def validate_uuid(cls, v: str) -> str:
        """Validate envelope_id is a valid UUID."""
        try:
            uuid.UUID(v)
        except ValueError:
            raise ValueError(f"envelope_id must be a valid UUID. Got: {v}")
        return v


# =============================================================================
# Sealed payload (plaintext inside the envelope)
# =============================================================================

class SealedFeature(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: FeatureKind
    verification_method: VerificationMethod
    payload: str = Field(..., description="Base64URL encoded feature payload")


class SealedSignature(BaseModel):
    model_config = ConfigDict(extra="forbid")

    algorithm: str
    value: str = Field(..., description="Base64URL encoded signature bytes")


class SealedAnchor(BaseModel):
    model_config = ConfigDict(extra="forbid")

    hash: str = Field(..., description="Hex SHA-256 of the canonical bytes")
    reference: Optional[str] = None
    timestamp: str
    status: AnchorStatus

    @field_validator('hash')
    @classmethod
    def validate_hash(cls, v: str) -> str:
        if not re.match(r'^[0-9a-f]{64}$', v):
            raise ValueError("anchor hash must be 64 lowercase hex characters")
        return v


class VerificationPayload(BaseModel):
    """QR-encodable payload for offline field verification."""
    model_config = ConfigDict(extra="forbid")

    docType: DocumentType
    id: str
    hash: str


class SealedPayload(BaseModel):
    """Everything the envelope protects."""
    model_config = ConfigDict(extra="forbid")

    schema_version: str = Field(default="1.0")
    document: Dict[str, Any]
    signature: SealedSignature
    features: List[SealedFeature]
    anchor: SealedAnchor
    verification: VerificationPayload
    metadata: EnvelopeMetadata
