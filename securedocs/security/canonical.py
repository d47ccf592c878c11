"""
Secure Document Pipeline - Canonicalization

One routine produces the bytes that are both signed and anchored:
- Sorted keys, UTF-8, no insignificant whitespace
- Features contribute kind, verification method and payload digest only,
  so the canonical form does not depend on feature binary formats
- Feature order is preserved (generation order)
"""

import hashlib
import json
import math
from typing import Any, Mapping, Sequence

from .errors import ValidationError
from .features import SecurityFeature, check_utf8_text

_SCALAR_TYPES = (str, int, float, bool, type(None))


def _check_subject(subject_data: Mapping[str, Any]) -> None:
    check_utf8_text(subject_data)
    for key, value in subject_data.items():
        if not isinstance(key, str):
            raise ValidationError(f"Subject field names must be strings, got {type(key).__name__}")
        if not isinstance(value, _SCALAR_TYPES):
            raise ValidationError(
                f"Subject field '{key}' must be a JSON scalar, got {type(value).__name__}"
            )
        if isinstance(value, float) and not math.isfinite(value):
            raise ValidationError(f"Subject field '{key}' must be a finite number")


def canonical_bytes(
    subject_data: Mapping[str, Any],
    features: Sequence[SecurityFeature],
) -> bytes:
    """
    Canonical serialization of {subject data, feature digests}.

    Any byte-level change to a subject value or a feature payload changes
    the output.
    """
    _check_subject(subject_data)
    document = {
        "subject": dict(subject_data),
        "features": [
            {
                "kind": feature.kind.value,
                "verificationMethod": feature.verification_method.value,
                "digest": feature.digest(),
            }
            for feature in features
        ],
    }
    return json.dumps(
        document,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


def document_digest(canonical: bytes) -> bytes:
    """SHA-256 over canonical bytes (32 bytes)."""
    return hashlib.sha256(canonical).digest()
