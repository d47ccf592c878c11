#!/usr/bin/env python3
"""
Secure Document Key Provisioning Script
Writes a key custody directory for development and single-host deployments.
Production deployments receive their keys from the external custody service.

Creates:
- issuer.signing.key / issuer.verify.key            Ed25519 (or RSA with --rsa)
- recipient.encrypt.private / recipient.encrypt.public  X25519 (or RSA with --rsa)
- biometric.master.key                              32-byte AES key

Usage:
    python scripts/provision_keys.py
    python scripts/provision_keys.py --dir data/security --force
    python scripts/provision_keys.py --rsa --rsa-bits 3072
"""

import argparse
import base64
import os
import secrets
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from nacl.encoding import Base64Encoder
from nacl.public import PrivateKey
from nacl.signing import SigningKey

from securedocs.config import SECURITY_DIR
from securedocs.security.biometrics import MASTER_KEY_SIZE
from securedocs.security.key_custody import (
    BIOMETRIC_MASTER_FILE,
    RECIPIENT_PRIVATE_FILE,
    RECIPIENT_PUBLIC_FILE,
    SIGNING_KEY_FILE,
    VERIFY_KEY_FILE,
    FileKeyCustody,
    calculate_fingerprint,
    encode_public_key,
)


def write_key_file(path: Path, content: str) -> None:
    """Write a key file with restrictive permissions (owner read/write only)."""
    path.write_text(content)
    os.chmod(path, 0o600)


def rsa_private_pem(private_key) -> str:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


def provision(security_dir: Path, use_rsa: bool = False, rsa_bits: int = 3072) -> dict:
    """
    Generate and write all custody keys.
    WARNING: This overwrites existing keys!

    Returns dict with public key info for sharing.
    """
    security_dir.mkdir(parents=True, exist_ok=True)

    if use_rsa:
        signing_key = rsa.generate_private_key(public_exponent=65537, key_size=rsa_bits)
        recipient_key = rsa.generate_private_key(public_exponent=65537, key_size=rsa_bits)
        write_key_file(security_dir / SIGNING_KEY_FILE, rsa_private_pem(signing_key))
        write_key_file(security_dir / RECIPIENT_PRIVATE_FILE, rsa_private_pem(recipient_key))
        verify_key = signing_key.public_key()
        recipient_public = recipient_key.public_key()
    else:
        signing_key = SigningKey.generate()
        recipient_key = PrivateKey.generate()
        write_key_file(security_dir / SIGNING_KEY_FILE, signing_key.encode(encoder=Base64Encoder).decode())
        write_key_file(security_dir / RECIPIENT_PRIVATE_FILE, recipient_key.encode(encoder=Base64Encoder).decode())
        verify_key = signing_key.verify_key
        recipient_public = recipient_key.public_key

    # Public keys
    (security_dir / VERIFY_KEY_FILE).write_text(encode_public_key(verify_key))
    (security_dir / RECIPIENT_PUBLIC_FILE).write_text(encode_public_key(recipient_public))

    write_key_file(
        security_dir / BIOMETRIC_MASTER_FILE,
        base64.b64encode(secrets.token_bytes(MASTER_KEY_SIZE)).decode()
    )

    return {
        "issuer_public_key": encode_public_key(verify_key),
        "recipient_public_key": encode_public_key(recipient_public),
        "fingerprint": calculate_fingerprint(verify_key),
    }


def main():
    parser = argparse.ArgumentParser(description="Provision secure document custody keys")
    parser.add_argument("--dir", "-d", default=SECURITY_DIR, help=f"Custody directory (default: {SECURITY_DIR})")
    parser.add_argument("--rsa", action="store_true", help="Use RSA-PSS signing and RSA-OAEP key wrapping")
    parser.add_argument("--rsa-bits", type=int, default=3072, help="RSA modulus size (default: 3072)")
    parser.add_argument("--force", "-f", action="store_true", help="Overwrite existing keys (DANGEROUS!)")
    args = parser.parse_args()

    security_dir = Path(args.dir)

    print(f"Secure Document Key Provisioning")
    print(f"=" * 50)
    print(f"Directory: {security_dir}")

    if (security_dir / SIGNING_KEY_FILE).exists() and not args.force:
        print(f"\n❌ Keys already exist. Use --force to overwrite.")
        return 1

    try:
        info = provision(security_dir, use_rsa=args.rsa, rsa_bits=args.rsa_bits)
    except (OSError, ValueError) as e:
        print(f"\n❌ Provisioning failed: {e}")
        return 1

    # Read back through the adapter the service uses
    custody = FileKeyCustody(str(security_dir))
    if custody.fingerprint() != info["fingerprint"]:
        print(f"\n❌ Written keys could not be read back")
        return 1

    print(f"\n✅ Keys written ({'RSA' if args.rsa else 'Ed25519 / X25519'})")
    print(f"   Fingerprint: {info['fingerprint']}")
    print(f"\nIssuer public key:\n{info['issuer_public_key']}")
    print(f"\nShare the issuer public key with verifying stations;")
    print(f"they should check the fingerprint before trusting it.")
    return 0


if __name__ == "__main__":
    exit(main())
