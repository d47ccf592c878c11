"""
Secure Document Pipeline - Signer

Detached signatures over canonical document bytes.

Algorithms:
- Ed25519         (nacl.signing SigningKey / VerifyKey)
- RSA-PSS-SHA256  (cryptography RSAPrivateKey / RSAPublicKey)

The algorithm tag travels with the signature so verification picks the
scheme without outside knowledge. verify() never raises.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from nacl.exceptions import CryptoError
from nacl.signing import SigningKey, VerifyKey

from .models import decode_b64, encode_b64

logger = logging.getLogger(__name__)

ED25519 = "Ed25519"
RSA_PSS_SHA256 = "RSA-PSS-SHA256"


def _pss_padding() -> padding.PSS:
    return padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.MAX_LENGTH)


@dataclass(frozen=True)
class Signature:
    algorithm: str
    value: bytes

    def to_dict(self) -> Dict[str, str]:
        return {"algorithm": self.algorithm, "value": encode_b64(self.value)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Signature":
        return cls(algorithm=data["algorithm"], value=decode_b64(data["value"]))


def sign(canonical: bytes, private_key) -> Signature:
    """
    Sign canonical bytes.

    Args:
        canonical: Output of canonical.canonical_bytes()
        private_key: nacl SigningKey or cryptography RSAPrivateKey

    Raises:
        TypeError: unsupported key type
    """
    if isinstance(private_key, SigningKey):
        return Signature(ED25519, private_key.sign(canonical).signature)

    if isinstance(private_key, rsa.RSAPrivateKey):
        value = private_key.sign(canonical, _pss_padding(), hashes.SHA256())
        return Signature(RSA_PSS_SHA256, value)

    raise TypeError(f"Unsupported signing key type: {type(private_key).__name__}")


def verify(canonical: bytes, signature: Signature, public_key) -> bool:
    """Return True only if `signature` is valid for `canonical` under `public_key`."""
    try:
        if signature.algorithm == ED25519:
            if not isinstance(public_key, VerifyKey):
                return False
            public_key.verify(canonical, signature.value)
            return True

        if signature.algorithm == RSA_PSS_SHA256:
            if not isinstance(public_key, rsa.RSAPublicKey):
                return False
            public_key.verify(signature.value, canonical, _pss_padding(), hashes.SHA256())
            return True

        logger.debug(f"Unknown signature algorithm: {signature.algorithm!r}")
        return False

    except (CryptoError, InvalidSignature, ValueError, TypeError, AttributeError) as e:
        logger.debug(f"Signature rejected: {type(e).__name__}")
        return False
