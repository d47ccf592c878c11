"""
Secure Document Service

Issues and verifies secured identity documents.

Issuance pipeline (generate_secure_document):
1. Validate the request (idNumber, documentType)
2. Generate the enabled security features
3. Encrypt biometrics under the master key and attach them as a feature
4. Canonicalize {subject data, feature digests}
5. Anchor the digest (non-fatal when the backend is down)
6. Sign the same canonical bytes
7. Seal for the recipient and render the verification QR

Each call is self-contained: fresh nonces, fresh envelope key, keys taken
from custody only for the step that needs them.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .config import ISSUER_NAME, VERIFICATION_ENDPOINT
from .security import biometrics
from .security.anchor import AnchorRecord, AnchorService
from .security.canonical import canonical_bytes
from .security.crypto_engine import EnvelopeSealer
from .security.envelope_verifier import EnvelopeOpener, OpenResult
from .security.errors import (
    BiometricDecryptionError,
    DocumentSecurityError,
    SealingError,
    ValidationError,
)
from .security.features import biometric_feature, generate_features, validate_subject
from .security.key_custody import KeyCustody
from .security.models import (
    DocumentRequest,
    DocumentSecurityConfig,
    SealedEnvelope,
    VerificationPayload,
    utc_now,
)
from .security.signer import sign
from .security.verification import build_verification_payload, render_qr_png

logger = logging.getLogger(__name__)


@dataclass
class IssuedDocument:
    """Everything returned to the caller of generate_secure_document()."""
    envelope: SealedEnvelope
    verification: VerificationPayload
    anchor: AnchorRecord
    qr_png: Optional[bytes] = None

    @property
    def anchor_pending(self) -> bool:
        return self.anchor.pending


class DocumentService:
    """Orchestrates feature generation, anchoring, signing and sealing."""

    def __init__(
        self,
        key_custody: KeyCustody,
        anchor_service: AnchorService,
        security_config: Optional[DocumentSecurityConfig] = None,
        issuer: str = ISSUER_NAME,
        random_source: Callable[[int], bytes] = secrets.token_bytes,
        clock: Callable[[], datetime] = utc_now,
        render_qr: bool = True,
    ):
        self.key_custody = key_custody
        self.anchor_service = anchor_service
        self.security_config = security_config or DocumentSecurityConfig()
        self.issuer = issuer
        self.render_qr = render_qr
        self._random_source = random_source
        self._clock = clock
        self._sealer = EnvelopeSealer(
            issuer=issuer,
            random_source=random_source,
            clock=clock,
            verification_endpoint=VERIFICATION_ENDPOINT,
        )

    # =========================================================================
    # Issuance
    # =========================================================================

    async def generate_secure_document(
        self,
        request: DocumentRequest,
        anchor_timeout: Optional[float] = None,
    ) -> IssuedDocument:
        """
        Issue one sealed document.

        Raises:
            ValidationError: request is missing required fields
            SealingError: any other failure; no envelope is returned
        """
        try:
            return await self._generate(request, anchor_timeout)
        except ValidationError as e:
            logger.warning(f"Rejected {request.document_type.value} request: {e}")
            raise
        except DocumentSecurityError:
            logger.exception(f"Issuance of {request.document_type.value} failed")
            raise
        except Exception as e:
            logger.exception(f"Issuance of {request.document_type.value} failed")
            raise SealingError(f"Document issuance failed: {type(e).__name__}") from e

    async def _generate(self, request: DocumentRequest, anchor_timeout: Optional[float]) -> IssuedDocument:
        subject = self._subject_from(request)
        validate_subject(subject)

        issued_at = self._clock()
        features = generate_features(
            subject,
            self.security_config,
            issuer=self.issuer,
            random_source=self._random_source,
            issued_at=issued_at,
        )

        if request.biometrics:
            if self.security_config.biometric_data:
                with self.key_custody.biometric_master_key() as master_key:
                    blob = biometrics.encrypt_biometrics(request.biometrics, master_key, self._random_source)
                features.append(biometric_feature(blob))
            else:
                logger.info("Biometric attachment disabled; biometrics not included")

        canonical = canonical_bytes(subject, features)
        anchor = await self.anchor_service.anchor(canonical, timeout=anchor_timeout)

        with self.key_custody.signing_key() as signing_key:
            signature = sign(canonical, signing_key)

        verification = build_verification_payload(subject, anchor.hash)

        envelope = self._sealer.seal(
            subject,
            signature,
            features,
            anchor,
            self.key_custody.recipient_public_key(),
            verification=verification,
            issued_at=issued_at,
        )

        qr_png = render_qr_png(verification) if self.render_qr else None

        logger.info(
            f"Issued {subject['documentType']} envelope {envelope.envelope_id} "
            f"with {len(features)} features (anchor: {anchor.status.value})"
        )
        return IssuedDocument(envelope=envelope, verification=verification, anchor=anchor, qr_png=qr_png)

    @staticmethod
    def _subject_from(request: DocumentRequest) -> Dict[str, Any]:
        subject = dict(request.subject_data)
        declared = subject.get("documentType")
        if declared is None:
            subject["documentType"] = request.document_type.value
        elif declared != request.document_type.value:
            raise ValidationError(
                f"documentType '{declared}' does not match request type '{request.document_type.value}'"
            )
        return subject

    # =========================================================================
    # Verification
    # =========================================================================

    def verify_document(self, envelope: SealedEnvelope) -> OpenResult:
        """Open and verify an envelope with the recipient key held in custody."""
        opener = EnvelopeOpener(self.key_custody.issuer_public_key())
        with self.key_custody.recipient_private_key() as private_key:
            return opener.open(envelope, private_key)

    def decrypt_biometrics(self, result: OpenResult) -> bytes:
        """
        Decrypt the biometric attachment of a verified document.

        Needs the biometric master key, which is granted separately from
        envelope access.
        """
        if not result.verified:
            raise BiometricDecryptionError("Envelope did not verify")
        if result.biometrics is None:
            raise BiometricDecryptionError("Document has no biometric attachment")

        with self.key_custody.biometric_master_key() as master_key:
            return biometrics.decrypt_biometrics(result.biometrics, master_key)
