"""
Secure Document Pipeline - Key Custody Adapters

Long-term keys are owned by an external custody component. These adapters
hand key material out for the duration of one sign/decrypt call only:
private keys and the biometric master key are exposed through context
managers and are never cached on the adapter.

Key files (FileKeyCustody):
- issuer.signing.key        Ed25519 signing key (Base64) or RSA private key (PEM)
- issuer.verify.key         Ed25519 verify key (Base64) or RSA public key (PEM)
- recipient.encrypt.private X25519 private key (Base64) or RSA private key (PEM)
- recipient.encrypt.public  X25519 public key (Base64) or RSA public key (PEM)
- biometric.master.key      32-byte AES key (Base64)
"""

import base64
import hashlib
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from nacl.encoding import Base64Encoder
from nacl.public import PrivateKey, PublicKey
from nacl.signing import SigningKey, VerifyKey

logger = logging.getLogger(__name__)

SIGNING_KEY_FILE = "issuer.signing.key"
VERIFY_KEY_FILE = "issuer.verify.key"
RECIPIENT_PRIVATE_FILE = "recipient.encrypt.private"
RECIPIENT_PUBLIC_FILE = "recipient.encrypt.public"
BIOMETRIC_MASTER_FILE = "biometric.master.key"

PEM_MARKER = "-----BEGIN"


def calculate_fingerprint(public_key) -> str:
    """SHA256 fingerprint of a public key, as 8 colon-separated hex pairs."""
    if isinstance(public_key, (VerifyKey, PublicKey)):
        key_bytes = bytes(public_key)
    else:
        key_bytes = public_key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    digest = hashlib.sha256(key_bytes).hexdigest()
    return ':'.join(digest[i:i+2] for i in range(0, 16, 2))


def encode_public_key(public_key) -> str:
    """Shareable text form (Base64 for NaCl keys, PEM for RSA)."""
    if isinstance(public_key, (VerifyKey, PublicKey)):
        return public_key.encode(encoder=Base64Encoder).decode()
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()


class KeyCustody:
    """Interface every custody adapter implements."""

    def signing_key(self):
        """Context manager yielding the issuer signing key."""
        raise NotImplementedError

    def issuer_public_key(self):
        raise NotImplementedError

    def recipient_public_key(self):
        raise NotImplementedError

    def recipient_private_key(self):
        """Context manager yielding the recipient private key."""
        raise NotImplementedError

    def biometric_master_key(self):
        """Context manager yielding the 32-byte biometric master key."""
        raise NotImplementedError

    def has_biometric_key(self) -> bool:
        return False

    def fingerprint(self) -> str:
        return calculate_fingerprint(self.issuer_public_key())


class InMemoryKeyCustody(KeyCustody):
    """Custody over keys the caller already holds (tests, embedding)."""

    def __init__(
        self,
        signing_key,
        recipient_private_key,
        biometric_master_key: Optional[bytes] = None,
        issuer_public_key=None,
        recipient_public_key=None,
    ):
        self._signing_key = signing_key
        self._recipient_private_key = recipient_private_key
        self._biometric_master_key = biometric_master_key
        self._issuer_public_key = issuer_public_key if issuer_public_key is not None else _public_of(signing_key)
        self._recipient_public_key = (
            recipient_public_key if recipient_public_key is not None else _public_of(recipient_private_key)
        )

    @contextmanager
    def signing_key(self):
        yield self._signing_key

    def issuer_public_key(self):
        return self._issuer_public_key

    def recipient_public_key(self):
        return self._recipient_public_key

    @contextmanager
    def recipient_private_key(self):
        yield self._recipient_private_key

    @contextmanager
    def biometric_master_key(self):
        if self._biometric_master_key is None:
            raise FileNotFoundError("No biometric master key in custody")
        yield self._biometric_master_key

    def has_biometric_key(self) -> bool:
        return self._biometric_master_key is not None


def _public_of(private_key):
    if isinstance(private_key, SigningKey):
        return private_key.verify_key
    if isinstance(private_key, PrivateKey):
        return private_key.public_key
    if isinstance(private_key, rsa.RSAPrivateKey):
        return private_key.public_key()
    raise TypeError(f"Unsupported private key type: {type(private_key).__name__}")


class FileKeyCustody(KeyCustody):
    """
    Reads keys from a custody directory on every access.

    Nothing is cached, so a rotated key file takes effect on the next call.
    """

    def __init__(self, security_dir: str = "data/security"):
        self.security_dir = Path(security_dir)

        self.signing_private_path = self.security_dir / SIGNING_KEY_FILE
        self.signing_public_path = self.security_dir / VERIFY_KEY_FILE
        self.recipient_private_path = self.security_dir / RECIPIENT_PRIVATE_FILE
        self.recipient_public_path = self.security_dir / RECIPIENT_PUBLIC_FILE
        self.biometric_master_path = self.security_dir / BIOMETRIC_MASTER_FILE

    def _read(self, path: Path) -> str:
        if not path.exists():
            raise FileNotFoundError(
                f"Key file not found at {path}. "
                "Provision the custody directory first (scripts/provision_keys.py)."
            )
        logger.debug(f"Reading key file {path.name}")
        return path.read_text().strip()

    @contextmanager
    def signing_key(self):
        content = self._read(self.signing_private_path)
        if content.startswith(PEM_MARKER):
            yield serialization.load_pem_private_key(content.encode(), password=None)
        else:
            yield SigningKey(content, encoder=Base64Encoder)

    def issuer_public_key(self):
        content = self._read(self.signing_public_path)
        if content.startswith(PEM_MARKER):
            return serialization.load_pem_public_key(content.encode())
        return VerifyKey(content, encoder=Base64Encoder)

    def recipient_public_key(self):
        content = self._read(self.recipient_public_path)
        if content.startswith(PEM_MARKER):
            return serialization.load_pem_public_key(content.encode())
        return PublicKey(content, encoder=Base64Encoder)

    @contextmanager
    def recipient_private_key(self):
        content = self._read(self.recipient_private_path)
        if content.startswith(PEM_MARKER):
            yield serialization.load_pem_private_key(content.encode(), password=None)
        else:
            yield PrivateKey(content, encoder=Base64Encoder)

    @contextmanager
    def biometric_master_key(self):
        yield base64.b64decode(self._read(self.biometric_master_path))

    def has_biometric_key(self) -> bool:
        return self.biometric_master_path.exists()
