"""
Secure Document Pipeline - Envelope Opener
Verifies and unseals envelopes produced by EnvelopeSealer.

State machine (no retries within one open() call):

    SEALED --unwrap--> KEY_UNWRAPPED --decrypt--> DECRYPTED
           --parse + signature--> SIGNATURE_CHECKED --> VALID

Any failed transition goes straight to INVALID with one internal reason:
- KeyUnwrapFailed     wrong/corrupted wrapped key, wrong key type
- TamperedCiphertext  GCM tag mismatch (ciphertext, tag, IV or metadata)
- MalformedEnvelope   undecodable fields or payload structure
- SignatureMismatch   signature or digest does not match the content

Callers only ever see verified true/false; the reason is logged and kept
on the result for internal use.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from nacl.exceptions import CryptoError
from pydantic import ValidationError as SchemaError

from .anchor import AnchorRecord
from .canonical import canonical_bytes, document_digest
from .crypto_engine import IV_SIZE, TAG_SIZE, metadata_aad, unwrap_key
from .errors import FailureReason, ValidationError, VerificationFailed
from .features import SecurityFeature
from .models import (
    AnchorStatus,
    FeatureKind,
    SealedEnvelope,
    SealedPayload,
    decode_b64,
)
from .signer import Signature, verify

logger = logging.getLogger(__name__)

PUBLIC_ERROR = "Document verification failed"


class OpenState(str, Enum):
    SEALED = "sealed"
    KEY_UNWRAPPED = "key_unwrapped"
    DECRYPTED = "decrypted"
    SIGNATURE_CHECKED = "signature_checked"
    VALID = "valid"
    INVALID = "invalid"


TERMINAL_STATES = (OpenState.VALID, OpenState.INVALID)


@dataclass
class OpenResult:
    """Outcome of EnvelopeOpener.open()."""
    state: OpenState
    envelope_id: str
    document: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    features: List[SecurityFeature] = field(default_factory=list)
    anchor: Optional[AnchorRecord] = None
    biometrics: Optional[bytes] = None
    reason: Optional[FailureReason] = None
    transitions: List[OpenState] = field(default_factory=list)

    @property
    def verified(self) -> bool:
        return self.state == OpenState.VALID

    def to_response(self) -> Dict[str, Any]:
        """External shape. Never includes the failure reason."""
        if not self.verified:
            return {"verified": False, "error": PUBLIC_ERROR}
        return {
            "verified": True,
            "document": self.document,
            "metadata": self.metadata,
        }

    def raise_for_status(self) -> "OpenResult":
        if not self.verified:
            raise VerificationFailed(PUBLIC_ERROR)
        return self


@dataclass
class _OpenContext:
    """Per-call working state. Discarded when open() returns."""
    envelope: SealedEnvelope
    symmetric_key: Optional[bytes] = None
    plaintext: Optional[bytes] = None
    payload: Optional[SealedPayload] = None
    features: List[SecurityFeature] = field(default_factory=list)
    reason: Optional[FailureReason] = None


class EnvelopeOpener:
    """
    Opens sealed envelopes for the holder of the recipient private key.

    The issuer public key is the trust anchor for the embedded signature;
    it is never taken from the envelope itself.
    """

    def __init__(self, issuer_public_key):
        self.issuer_public_key = issuer_public_key
        self._transitions: Dict[OpenState, Callable[[_OpenContext, Any], OpenState]] = {
            OpenState.SEALED: self._unwrap,
            OpenState.KEY_UNWRAPPED: self._decrypt,
            OpenState.DECRYPTED: self._check_signature,
            OpenState.SIGNATURE_CHECKED: self._release,
        }

    def open(self, envelope: SealedEnvelope, recipient_private_key) -> OpenResult:
        ctx = _OpenContext(envelope=envelope)
        state = OpenState.SEALED
        trail = [state]

        while state not in TERMINAL_STATES:
            state = self._transitions[state](ctx, recipient_private_key)
            trail.append(state)

        if state == OpenState.INVALID:
            logger.warning(
                f"Envelope {envelope.envelope_id} rejected after {trail[-2].value}: {ctx.reason.value}"
            )
            return OpenResult(
                state=state,
                envelope_id=envelope.envelope_id,
                reason=ctx.reason,
                transitions=trail,
            )

        payload = ctx.payload
        anchor = payload.anchor
        biometric = next((f for f in ctx.features if f.kind == FeatureKind.BIOMETRIC), None)

        logger.info(f"Envelope {envelope.envelope_id} verified ({envelope.metadata.document_type.value})")
        return OpenResult(
            state=state,
            envelope_id=envelope.envelope_id,
            document=dict(payload.document),
            metadata=envelope.metadata.model_dump(mode="json"),
            features=list(ctx.features),
            anchor=AnchorRecord(
                hash=bytes.fromhex(anchor.hash),
                reference=anchor.reference,
                timestamp=datetime.fromisoformat(anchor.timestamp),
                status=AnchorStatus(anchor.status),
            ),
            biometrics=biometric.payload if biometric else None,
            transitions=trail,
        )

    def open_or_raise(self, envelope: SealedEnvelope, recipient_private_key) -> OpenResult:
        return self.open(envelope, recipient_private_key).raise_for_status()

    # =========================================================================
    # Transitions
    # =========================================================================

    def _fail(self, ctx: _OpenContext, reason: FailureReason) -> OpenState:
        ctx.reason = reason
        ctx.symmetric_key = None
        ctx.plaintext = None
        return OpenState.INVALID

    def _unwrap(self, ctx: _OpenContext, recipient_private_key) -> OpenState:
        try:
            wrapped = decode_b64(ctx.envelope.wrapped_key)
            ctx.symmetric_key = unwrap_key(wrapped, ctx.envelope.wrap_algorithm, recipient_private_key)
        except (CryptoError, ValueError, TypeError) as e:
            logger.debug(f"Key unwrap failed: {type(e).__name__}")
            return self._fail(ctx, FailureReason.KEY_UNWRAP_FAILED)
        return OpenState.KEY_UNWRAPPED

    def _decrypt(self, ctx: _OpenContext, _recipient_private_key) -> OpenState:
        envelope = ctx.envelope
        try:
            iv = decode_b64(envelope.iv)
            auth_tag = decode_b64(envelope.auth_tag)
            ciphertext = decode_b64(envelope.ciphertext)
        except ValueError:
            return self._fail(ctx, FailureReason.MALFORMED_ENVELOPE)

        if len(iv) != IV_SIZE or len(auth_tag) != TAG_SIZE:
            return self._fail(ctx, FailureReason.MALFORMED_ENVELOPE)

        try:
            ctx.plaintext = AESGCM(ctx.symmetric_key).decrypt(
                iv, ciphertext + auth_tag, metadata_aad(envelope.metadata)
            )
        except InvalidTag:
            return self._fail(ctx, FailureReason.TAMPERED_CIPHERTEXT)
        finally:
            ctx.symmetric_key = None

        return OpenState.DECRYPTED

    def _check_signature(self, ctx: _OpenContext, _recipient_private_key) -> OpenState:
        parsed = self._parse(ctx)
        if parsed is None:
            return self._fail(ctx, FailureReason.MALFORMED_ENVELOPE)
        payload, signature = parsed

        try:
            canonical = canonical_bytes(payload.document, ctx.features)
        except ValidationError:
            return self._fail(ctx, FailureReason.MALFORMED_ENVELOPE)

        if not verify(canonical, signature, self.issuer_public_key):
            return self._fail(ctx, FailureReason.SIGNATURE_MISMATCH)

        digest = document_digest(canonical).hex()
        if payload.anchor.hash != digest or payload.verification.hash != digest:
            return self._fail(ctx, FailureReason.SIGNATURE_MISMATCH)

        return OpenState.SIGNATURE_CHECKED

    def _parse(self, ctx: _OpenContext) -> Optional[Tuple[SealedPayload, Signature]]:
        try:
            payload = SealedPayload.model_validate(json.loads(ctx.plaintext.decode("utf-8")))
            signature = Signature(
                algorithm=payload.signature.algorithm,
                value=decode_b64(payload.signature.value),
            )
            features = [
                SecurityFeature(
                    kind=sealed.kind,
                    payload=decode_b64(sealed.payload),
                    verification_method=sealed.verification_method,
                )
                for sealed in payload.features
            ]
            datetime.fromisoformat(payload.anchor.timestamp)
        except (SchemaError, ValueError, UnicodeDecodeError) as e:
            logger.debug(f"Sealed payload could not be parsed: {type(e).__name__}")
            return None
        finally:
            ctx.plaintext = None

        if payload.metadata != ctx.envelope.metadata:
            return None

        ctx.payload = payload
        ctx.features = features
        return payload, signature

    def _release(self, ctx: _OpenContext, _recipient_private_key) -> OpenState:
        return OpenState.VALID
