"""
Secure Document Pipeline
Feature generation, hash anchoring, signing and envelope sealing for
issued identity documents.

Security Model: AES-256-GCM envelopes + wrapped per-document keys + detached signatures
Libraries: PyNaCl (Ed25519, X25519 SealedBox), cryptography (AES-GCM, RSA)
"""

from .anchor import AnchorRecord, AnchorService, HttpAnchorBackend, InMemoryAnchorBackend, UnavailableAnchorBackend
from .biometrics import decrypt_biometrics, encrypt_biometrics
from .canonical import canonical_bytes, document_digest
from .crypto_engine import EnvelopeSealer
from .envelope_verifier import EnvelopeOpener, OpenResult, OpenState
from .errors import (
    AnchorUnavailable,
    BiometricDecryptionError,
    DocumentSecurityError,
    FailureReason,
    SealingError,
    ValidationError,
    VerificationFailed,
)
from .features import SecurityFeature, generate_features
from .key_custody import FileKeyCustody, InMemoryKeyCustody, KeyCustody
from .models import DocumentRequest, DocumentSecurityConfig, DocumentType, SealedEnvelope
from .signer import Signature, sign, verify

__all__ = [
    'AnchorRecord',
    'AnchorService',
    'HttpAnchorBackend',
    'InMemoryAnchorBackend',
    'UnavailableAnchorBackend',
    'encrypt_biometrics',
    'decrypt_biometrics',
    'canonical_bytes',
    'document_digest',
    'EnvelopeSealer',
    'EnvelopeOpener',
    'OpenResult',
    'OpenState',
    'AnchorUnavailable',
    'BiometricDecryptionError',
    'DocumentSecurityError',
    'FailureReason',
    'SealingError',
    'ValidationError',
    'VerificationFailed',
    'SecurityFeature',
    'generate_features',
    'FileKeyCustody',
    'InMemoryKeyCustody',
    'KeyCustody',
    'DocumentRequest',
    'DocumentSecurityConfig',
    'DocumentType',
    'SealedEnvelope',
    'Signature',
    'sign',
    'verify',
]
