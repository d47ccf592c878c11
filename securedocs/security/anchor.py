"""
Secure Document Pipeline - Hash Anchoring

Records the document digest with an external anchoring backend so issued
documents can be audited later. The backend is never required for
correctness: when it is unreachable or slow, the anchor degrades to
"anchor-pending" with a locally recorded timestamp and issuance continues.
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

import httpx

from .canonical import document_digest
from .errors import AnchorUnavailable
from .models import AnchorStatus, utc_now

logger = logging.getLogger(__name__)

DEFAULT_ANCHOR_TIMEOUT = 5.0  # seconds


@dataclass(frozen=True)
class AnchorReceipt:
    """What a backend returns for a recorded digest."""
    reference: str
    timestamp: datetime


@dataclass(frozen=True)
class AnchorRecord:
    """Digest of a document and where (if anywhere) it was anchored."""
    hash: bytes
    reference: Optional[str]
    timestamp: datetime
    status: AnchorStatus

    @property
    def hex_digest(self) -> str:
        return self.hash.hex()

    @property
    def pending(self) -> bool:
        return self.status == AnchorStatus.PENDING


# =============================================================================
# Backends
# =============================================================================

class AnchorBackend:
    """Interface for anchoring backends."""

    name = "abstract"

    async def submit(self, digest: bytes) -> AnchorReceipt:
        """Record a digest. Raise AnchorUnavailable when that is not possible."""
        raise NotImplementedError


class UnavailableAnchorBackend(AnchorBackend):
    """Offline mode: every document is issued with a pending anchor."""

    name = "unavailable"

    async def submit(self, digest: bytes) -> AnchorReceipt:
        raise AnchorUnavailable("No anchoring backend configured")


class InMemoryAnchorBackend(AnchorBackend):
    """
    Hash-chained ledger kept in memory (development and tests).

    Each reference is SHA-256(previous reference || digest), so entries
    cannot be reordered without changing every later reference.
    """

    name = "memory"

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self._entries: List[Tuple[bytes, str]] = []

    async def submit(self, digest: bytes) -> AnchorReceipt:
        previous = self._entries[-1][1].encode("ascii") if self._entries else b""
        reference = "anchor_" + hashlib.sha256(previous + digest).hexdigest()
        self._entries.append((digest, reference))
        return AnchorReceipt(reference=reference, timestamp=self._clock())

    def lookup(self, digest: bytes) -> Optional[str]:
        for entry_digest, reference in self._entries:
            if entry_digest == digest:
                return reference
        return None

    def __len__(self) -> int:
        return len(self._entries)


class HttpAnchorBackend(AnchorBackend):
    """
    Anchoring service reached over HTTP.

    POST {base_url}/anchors  {"hash": "<hex>", "algorithm": "sha256"}
    -> 2xx {"reference": "...", "timestamp": "<ISO 8601>"}
    """

    name = "http"

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_ANCHOR_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def submit(self, digest: bytes) -> AnchorReceipt:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/anchors",
                    json={"hash": digest.hex(), "algorithm": "sha256"},
                )
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException:
            raise AnchorUnavailable("Anchoring backend timeout")
        except httpx.ConnectError:
            raise AnchorUnavailable("Anchoring backend not reachable")
        except httpx.HTTPStatusError as e:
            raise AnchorUnavailable(f"Anchoring backend returned {e.response.status_code}")
        except (httpx.HTTPError, ValueError) as e:
            raise AnchorUnavailable(f"Anchoring backend error: {e}")

        reference = data.get("reference") if isinstance(data, dict) else None
        if not isinstance(reference, str) or not reference:
            raise AnchorUnavailable("Anchoring backend response has no reference")

        try:
            timestamp = datetime.fromisoformat(data["timestamp"])
        except (KeyError, TypeError, ValueError):
            timestamp = utc_now()
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        return AnchorReceipt(reference=reference, timestamp=timestamp)


# =============================================================================
# Service
# =============================================================================

class AnchorService:
    """Digest + submit, with the degrade-to-pending policy."""

    def __init__(
        self,
        backend: AnchorBackend,
        timeout: float = DEFAULT_ANCHOR_TIMEOUT,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.backend = backend
        self.timeout = timeout
        self._clock = clock

    async def anchor(self, canonical: bytes, timeout: Optional[float] = None) -> AnchorRecord:
        """
        Anchor the digest of `canonical`.

        Never raises for backend problems; returns a pending record instead.
        The submit call is cancelled once the timeout expires.
        """
        digest = document_digest(canonical)
        limit = self.timeout if timeout is None else timeout

        try:
            receipt = await asyncio.wait_for(self.backend.submit(digest), timeout=limit)
        except AnchorUnavailable as e:
            logger.warning(f"Anchor pending ({self.backend.name}): {e}")
            return self._pending(digest)
        except asyncio.TimeoutError:
            logger.warning(f"Anchor pending ({self.backend.name}): no answer within {limit}s")
            return self._pending(digest)

        logger.info(f"Digest {digest.hex()[:16]}... anchored as {receipt.reference}")
        return AnchorRecord(
            hash=digest,
            reference=receipt.reference,
            timestamp=receipt.timestamp,
            status=AnchorStatus.ANCHORED,
        )

    def _pending(self, digest: bytes) -> AnchorRecord:
        return AnchorRecord(
            hash=digest,
            reference=None,
            timestamp=self._clock(),
            status=AnchorStatus.PENDING,
        )
