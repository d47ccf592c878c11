"""
Secure Document Pipeline - Offline Verification QR

The QR code printed on a document carries {docType, id, hash}, where hash is
the hex SHA-256 of the canonical document bytes. A field officer can check
it against the anchoring ledger without decrypting the envelope.
"""

import hmac
import json
from io import BytesIO
from typing import Any, Mapping

import qrcode

from .canonical import document_digest
from .models import VerificationPayload


def build_verification_payload(subject_data: Mapping[str, Any], digest: bytes) -> VerificationPayload:
    return VerificationPayload(
        docType=subject_data["documentType"],
        id=str(subject_data["idNumber"]),
        hash=digest.hex(),
    )


def payload_text(payload: VerificationPayload) -> str:
    """Compact JSON string that is encoded into the QR symbol."""
    return json.dumps(payload.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))


def parse_payload_text(text: str) -> VerificationPayload:
    return VerificationPayload.model_validate(json.loads(text))


def payload_matches(payload: VerificationPayload, canonical: bytes) -> bool:
    """True when the QR hash is the digest of `canonical`."""
    return hmac.compare_digest(payload.hash, document_digest(canonical).hex())


def render_qr_png(payload: VerificationPayload) -> bytes:
    """Render the verification payload as a PNG QR code."""
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_H,
        box_size=10,
        border=4,
    )
    qr.add_data(payload_text(payload))
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    img_io = BytesIO()
    img.save(img_io, 'PNG')
    return img_io.getvalue()
