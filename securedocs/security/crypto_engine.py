"""
Secure Document Pipeline - Envelope Sealer
Packages a signed document into an encrypted, recipient-bound envelope.

Security Architecture:
- Encryption: AES-256-GCM under a fresh random key and IV per envelope
- Associated data: the plaintext metadata, so it cannot be edited
- Key wrap: NaCl SealedBox (X25519) or RSA-OAEP-SHA256, chosen by the
  recipient key type
- The symmetric key only ever exists wrapped outside seal()/open()
"""

import json
import logging
import secrets
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Sequence

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from nacl.public import PrivateKey, PublicKey, SealedBox

from .anchor import AnchorRecord
from .errors import SealingError
from .features import SecurityFeature
from .models import (
    DocumentType,
    EnvelopeMetadata,
    SealedAnchor,
    SealedEnvelope,
    SealedFeature,
    SealedPayload,
    SealedSignature,
    VerificationPayload,
    encode_b64,
    format_timestamp,
    utc_now,
)
from .signer import Signature

logger = logging.getLogger(__name__)

CIPHER = "AES-256-GCM"
KEY_SIZE = 32
IV_SIZE = 16
TAG_SIZE = 16

WRAP_X25519 = "X25519-SealedBox"
WRAP_RSA_OAEP = "RSA-OAEP-SHA256"

ENVELOPE_EXTENSION = ".sdoc"
DEFAULT_VERIFICATION_ENDPOINT = "/api/documents/verify"


def _oaep_padding() -> padding.OAEP:
    return padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()), algorithm=hashes.SHA256(), label=None)


def canonical_json(data: Mapping[str, Any]) -> bytes:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def metadata_aad(metadata: EnvelopeMetadata) -> bytes:
    """Associated data binding the plaintext metadata to the ciphertext."""
    return canonical_json(metadata.model_dump(mode="json"))


# =============================================================================
# Key wrapping
# =============================================================================

def wrap_key(symmetric_key: bytes, recipient_public_key) -> tuple:
    """
    Wrap the envelope key for the recipient.

    Returns:
        (wrap_algorithm, wrapped_key_bytes)
    """
    if isinstance(recipient_public_key, PublicKey):
        return WRAP_X25519, SealedBox(recipient_public_key).encrypt(symmetric_key)

    if isinstance(recipient_public_key, rsa.RSAPublicKey):
        return WRAP_RSA_OAEP, recipient_public_key.encrypt(symmetric_key, _oaep_padding())

    raise TypeError(f"Unsupported recipient key type: {type(recipient_public_key).__name__}")


def unwrap_key(wrapped_key: bytes, wrap_algorithm: str, recipient_private_key) -> bytes:
    """
    Recover the envelope key.

    Raises whatever the underlying library raises (CryptoError, ValueError,
    TypeError); the opener classifies all of them as KeyUnwrapFailed.
    """
    if wrap_algorithm == WRAP_X25519:
        if not isinstance(recipient_private_key, PrivateKey):
            raise TypeError("X25519 envelope needs an X25519 private key")
        key = SealedBox(recipient_private_key).decrypt(wrapped_key)

    elif wrap_algorithm == WRAP_RSA_OAEP:
        if not isinstance(recipient_private_key, rsa.RSAPrivateKey):
            raise TypeError("RSA-OAEP envelope needs an RSA private key")
        key = recipient_private_key.decrypt(wrapped_key, _oaep_padding())

    else:
        raise ValueError(f"Unknown wrap algorithm: {wrap_algorithm!r}")

    if len(key) != KEY_SIZE:
        raise ValueError("Unwrapped key has the wrong length")
    return key


# =============================================================================
# Sealer
# =============================================================================

class EnvelopeSealer:
    """
    Builds sealed envelopes.

    Workflow:
    1. Serialize document, signature, features, anchor, QR payload, metadata
    2. Draw a fresh 256-bit key and 128-bit IV
    3. AES-256-GCM encrypt with the metadata as associated data
    4. Wrap the key under the recipient public key
    5. Package into SealedEnvelope
    """

    def __init__(
        self,
        issuer: str,
        random_source: Callable[[int], bytes] = secrets.token_bytes,
        clock: Callable[[], datetime] = utc_now,
        verification_endpoint: str = DEFAULT_VERIFICATION_ENDPOINT,
    ):
        self.issuer = issuer
        self.verification_endpoint = verification_endpoint
        self._random_source = random_source
        self._clock = clock

    def seal(
        self,
        document: Mapping[str, Any],
        signature: Signature,
        features: Sequence[SecurityFeature],
        anchor_record: AnchorRecord,
        recipient_public_key,
        verification: Optional[VerificationPayload] = None,
        issued_at: Optional[datetime] = None,
    ) -> SealedEnvelope:
        """
        Seal a signed document for one recipient.

        Raises:
            SealingError: nothing is returned if any step fails
        """
        try:
            return self._seal(
                document, signature, features, anchor_record,
                recipient_public_key, verification, issued_at,
            )
        except SealingError:
            raise
        except Exception as e:
            logger.error(f"Envelope sealing failed: {type(e).__name__}")
            raise SealingError(f"Envelope sealing failed: {e}") from e

    def _seal(
        self,
        document,
        signature,
        features,
        anchor_record,
        recipient_public_key,
        verification,
        issued_at,
    ) -> SealedEnvelope:
        document_type = DocumentType(document["documentType"])
        metadata = EnvelopeMetadata(
            issued_at=format_timestamp(issued_at or self._clock()),
            issuer=self.issuer,
            document_type=document_type,
            anchor_status=anchor_record.status,
            verification_endpoint=self.verification_endpoint,
        )

        if verification is None:
            verification = VerificationPayload(
                docType=document_type,
                id=str(document["idNumber"]),
                hash=anchor_record.hex_digest,
            )

        payload = SealedPayload(
            document=dict(document),
            signature=SealedSignature(**signature.to_dict()),
            features=[
                SealedFeature(
                    kind=feature.kind,
                    verification_method=feature.verification_method,
                    payload=encode_b64(feature.payload),
                )
                for feature in features
            ],
            anchor=SealedAnchor(
                hash=anchor_record.hex_digest,
                reference=anchor_record.reference,
                timestamp=format_timestamp(anchor_record.timestamp),
                status=anchor_record.status,
            ),
            verification=verification,
            metadata=metadata,
        )
        plaintext = canonical_json(payload.model_dump(mode="json"))

        symmetric_key = self._draw(KEY_SIZE, "envelope key")
        iv = self._draw(IV_SIZE, "IV")

        sealed = AESGCM(symmetric_key).encrypt(iv, plaintext, metadata_aad(metadata))
        ciphertext, auth_tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]

        wrap_algorithm, wrapped_key = wrap_key(symmetric_key, recipient_public_key)

        envelope = SealedEnvelope(
            cipher=CIPHER,
            wrap_algorithm=wrap_algorithm,
            ciphertext=encode_b64(ciphertext),
            wrapped_key=encode_b64(wrapped_key),
            iv=encode_b64(iv),
            auth_tag=encode_b64(auth_tag),
            metadata=metadata,
        )
        logger.info(
            f"Sealed envelope {envelope.envelope_id} "
            f"({document_type.value}, {wrap_algorithm}, {len(ciphertext)} bytes)"
        )
        return envelope

    def _draw(self, size: int, label: str) -> bytes:
        value = self._random_source(size)
        if not isinstance(value, (bytes, bytearray)) or len(value) != size:
            raise SealingError(f"Random source returned an invalid {label}")
        return bytes(value)

    # =========================================================================
    # Persistence helpers (callers decide whether to persist)
    # =========================================================================

    @staticmethod
    def envelope_to_file(envelope: SealedEnvelope, output_path: str) -> str:
        """
        Write envelope to a .sdoc file.

        Returns:
            The actual file path written
        """
        if not output_path.endswith(ENVELOPE_EXTENSION):
            output_path = f"{output_path}{ENVELOPE_EXTENSION}"

        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(envelope.model_dump_json(indent=2))

        return str(path)

    @staticmethod
    def envelope_from_file(file_path: str) -> SealedEnvelope:
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Envelope file not found: {file_path}")

        return SealedEnvelope.model_validate_json(path.read_text())
