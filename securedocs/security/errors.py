"""
Secure Document Pipeline - Exceptions

Error taxonomy:
- ValidationError: bad caller input, surfaced immediately
- AnchorUnavailable: anchoring backend down (non-fatal, anchor goes pending)
- SealingError: issuance aborted, no envelope is returned
- VerificationFailed: the only verification failure callers ever see
"""

from enum import Enum


class DocumentSecurityError(Exception):
    """Base exception for the secure document pipeline."""
    pass


class ValidationError(DocumentSecurityError):
    """Raised when a document request is missing or has malformed fields."""
    pass


class AnchorUnavailable(DocumentSecurityError):
    """Raised by anchoring backends that cannot record a digest right now."""
    pass


class SealingError(DocumentSecurityError):
    """Raised when an envelope cannot be sealed."""
    pass


class BiometricDecryptionError(DocumentSecurityError):
    """Raised when a biometric attachment cannot be decrypted."""
    pass


class VerificationFailed(DocumentSecurityError):
    """
    Raised when a sealed envelope does not verify.

    The message never varies. The internal FailureReason is kept on the
    OpenResult and in the logs only.
    """

    def __init__(self, message: str = "Document verification failed"):
        super().__init__(message)


class FailureReason(str, Enum):
    """Internal reasons an envelope ends in the INVALID state."""
    KEY_UNWRAP_FAILED = "KeyUnwrapFailed"
    TAMPERED_CIPHERTEXT = "TamperedCiphertext"
    MALFORMED_ENVELOPE = "MalformedEnvelope"
    SIGNATURE_MISMATCH = "SignatureMismatch"
