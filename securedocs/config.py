"""
Secure Document Service - Configuration

All settings come from environment variables, read once at import.
"""

import logging
import os

from .security.anchor import (
    DEFAULT_ANCHOR_TIMEOUT,
    AnchorBackend,
    AnchorService,
    HttpAnchorBackend,
    UnavailableAnchorBackend,
)
from .security.models import DocumentSecurityConfig

logger = logging.getLogger(__name__)

# =============================================================================
# Configuration
# =============================================================================

SECURITY_DIR = os.environ.get("SECUREDOCS_SECURITY_DIR", "data/security")
ISSUER_NAME = os.environ.get("SECUREDOCS_ISSUER", "DHA Digital Services")

# Anchoring backend (empty URL = offline, every anchor is pending)
ANCHOR_URL = os.environ.get("SECUREDOCS_ANCHOR_URL", "")
ANCHOR_TIMEOUT = float(os.environ.get("SECUREDOCS_ANCHOR_TIMEOUT", str(DEFAULT_ANCHOR_TIMEOUT)))

# Comma separated feature names, e.g. "uv,rfid"
DISABLED_FEATURES = os.environ.get("SECUREDOCS_DISABLED_FEATURES", "")

LOG_FILE = os.environ.get("SECUREDOCS_LOG_FILE", "")

VERIFICATION_ENDPOINT = "/api/documents/verify"

# Short names accepted in SECUREDOCS_DISABLED_FEATURES
FEATURE_ALIASES = {
    "watermark": "watermark",
    "hologram": "hologram",
    "microprint": "microprint",
    "uv": "uv_features",
    "uv_features": "uv_features",
    "rfid": "rfid_chip",
    "rfid_chip": "rfid_chip",
    "security_thread": "security_thread",
    "biometric": "biometric_data",
    "biometric_data": "biometric_data",
}


def load_security_config(disabled: str = None) -> DocumentSecurityConfig:
    """Build the feature configuration, switching off the listed features."""
    if disabled is None:
        disabled = DISABLED_FEATURES

    settings = {}
    for name in (part.strip().lower() for part in disabled.split(",")):
        if not name:
            continue
        field_name = FEATURE_ALIASES.get(name)
        if field_name is None:
            logger.warning(f"Ignoring unknown feature in SECUREDOCS_DISABLED_FEATURES: {name}")
            continue
        settings[field_name] = False

    return DocumentSecurityConfig(**settings)


def build_anchor_backend(url: str = None, timeout: float = None) -> AnchorBackend:
    url = ANCHOR_URL if url is None else url
    if not url:
        return UnavailableAnchorBackend()
    return HttpAnchorBackend(url, timeout=ANCHOR_TIMEOUT if timeout is None else timeout)


def build_anchor_service() -> AnchorService:
    return AnchorService(build_anchor_backend(), timeout=ANCHOR_TIMEOUT)
