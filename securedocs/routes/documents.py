"""
Secure Document Service - FastAPI Routes
Provides REST API endpoints for issuing and verifying secured documents.

Endpoints:
- POST /api/documents/issue   - Issue a sealed document
- POST /api/documents/verify  - Verify and open a sealed envelope
- GET  /api/documents/keys    - Issuer public keys and fingerprint
- GET  /api/documents/status  - Enabled features and anchoring backend
"""

import base64
import binascii
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pydantic import ValidationError as SchemaError

from .. import __version__
from ..config import ISSUER_NAME, SECURITY_DIR, build_anchor_service, load_security_config
from ..document_service import DocumentService
from ..security.envelope_verifier import PUBLIC_ERROR
from ..security.errors import SealingError, ValidationError
from ..security.key_custody import FileKeyCustody, encode_public_key
from ..security.models import DocumentRequest, DocumentType, SealedEnvelope

logger = logging.getLogger(__name__)

# Initialize document service (lazy loading)
_document_service: Optional[DocumentService] = None


def get_document_service() -> DocumentService:
    """Get or create the document service instance."""
    global _document_service
    if _document_service is None:
        _document_service = DocumentService(
            key_custody=FileKeyCustody(SECURITY_DIR),
            anchor_service=build_anchor_service(),
            security_config=load_security_config(),
            issuer=ISSUER_NAME,
        )
    return _document_service


def set_document_service(service: Optional[DocumentService]) -> None:
    """Replace the document service (app init, tests)."""
    global _document_service
    _document_service = service


KEYS_MISSING = "Keys not provisioned. Run scripts/provision_keys.py first."


# ============================================================================
# Request/Response Models
# ============================================================================

class IssueRequest(BaseModel):
    """Request to issue a secured document."""
    document_type: DocumentType = Field(..., description="passport, id_card or birth_certificate")
    subject_data: Dict[str, Any] = Field(..., description="Subject fields, must include idNumber")
    biometrics: Optional[str] = Field(None, description="Base64 encoded biometric template")


class IssueResponse(BaseModel):
    """Response after sealing a document."""
    success: bool
    envelope_id: str
    document_type: str
    anchor_status: str
    envelope: Dict[str, Any]
    verification: Dict[str, Any]
    qr_png: Optional[str] = Field(None, description="Base64 encoded PNG")
    message: str


class IssuerKeysResponse(BaseModel):
    """Public keys relying parties need to check documents."""
    issuer: str
    issuer_public_key: str
    recipient_public_key: str
    fingerprint: str
    share_instructions: str


# ============================================================================
# Router
# ============================================================================

router = APIRouter(prefix="/api/documents", tags=["Secure Documents"])


@router.post("/issue", response_model=IssueResponse)
async def issue_document(request: IssueRequest):
    """
    Issue a secured document.

    The document is:
    1. Given the enabled security features
    2. Anchored (pending if the anchoring backend is down)
    3. Signed with the issuer key
    4. Sealed for the recipient key

    Returns the sealed envelope and the offline verification QR.
    """
    service = get_document_service()

    # Check keys are provisioned
    try:
        service.key_custody.issuer_public_key()
    except FileNotFoundError:
        raise HTTPException(status_code=503, detail=KEYS_MISSING)

    biometrics = None
    if request.biometrics:
        try:
            biometrics = base64.b64decode(request.biometrics, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(status_code=400, detail="biometrics must be Base64 encoded")

    try:
        document_request = DocumentRequest(
            document_type=request.document_type,
            subject_data=request.subject_data,
            biometrics=biometrics,
        )
        issued = await service.generate_secure_document(document_request)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SealingError:
        raise HTTPException(status_code=500, detail="Document issuance failed")

    envelope = issued.envelope
    return IssueResponse(
        success=True,
        envelope_id=envelope.envelope_id,
        document_type=envelope.metadata.document_type.value,
        anchor_status=envelope.metadata.anchor_status.value,
        envelope=envelope.model_dump(mode="json"),
        verification=issued.verification.model_dump(mode="json"),
        qr_png=base64.b64encode(issued.qr_png).decode("ascii") if issued.qr_png else None,
        message="Document sealed successfully."
    )


@router.post("/verify")
async def verify_document(envelope: Any = Body(...)):
    """
    Verify and open a sealed envelope.

    Failures are reported with one generic message whatever the cause.
    """
    service = get_document_service()

    try:
        sealed = SealedEnvelope.model_validate(envelope)
    except SchemaError:
        logger.warning("Rejected envelope with invalid structure")
        return JSONResponse(status_code=403, content={"verified": False, "error": PUBLIC_ERROR})

    try:
        result = service.verify_document(sealed)
    except FileNotFoundError:
        raise HTTPException(status_code=503, detail=KEYS_MISSING)

    if not result.verified:
        return JSONResponse(status_code=403, content=result.to_response())
    return result.to_response()


@router.get("/keys", response_model=IssuerKeysResponse)
async def get_issuer_keys():
    """
    Get the issuer public keys.

    Verifiers should compare the fingerprint out of band before trusting.
    """
    service = get_document_service()
    custody = service.key_custody

    try:
        return IssuerKeysResponse(
            issuer=service.issuer,
            issuer_public_key=encode_public_key(custody.issuer_public_key()),
            recipient_public_key=encode_public_key(custody.recipient_public_key()),
            fingerprint=custody.fingerprint(),
            share_instructions=(
                "Distribute the issuer public key to verifying stations. "
                "They should check the fingerprint before trusting it."
            )
        )
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail=KEYS_MISSING)


@router.get("/status")
async def get_status():
    """Report the active configuration (no key material)."""
    service = get_document_service()
    custody = service.key_custody

    try:
        custody.issuer_public_key()
        keys_provisioned = True
    except FileNotFoundError:
        keys_provisioned = False

    return {
        "version": __version__,
        "issuer": service.issuer,
        "enabled_features": service.security_config.enabled_features(),
        "anchor_backend": service.anchor_service.backend.name,
        "anchor_timeout": service.anchor_service.timeout,
        "keys_provisioned": keys_provisioned,
        "biometric_key": custody.has_biometric_key(),
    }
