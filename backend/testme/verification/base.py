# testme/verification/base.py
"""
Base class for domain ownership verifiers.

Each verifier implements one challenge-response protocol:

    DnsTxtVerifier    TXT record on the domain equals the token
    HtmlFileVerifier  /.well-known/testme-verify.txt equals the token
    MetaTagVerifier   homepage <meta name="testme-verify" content="TOKEN">

All verifiers are read-only probes. A verifier never trusts transport
success alone: the token must be compared explicitly. Failures carry a
human-actionable diagnostic instead of a bare boolean.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

USER_AGENT = "TestMe-Security-Verifier/1.0"
DEFAULT_TIMEOUT = 10


def read_capped(resp, limit: int) -> str:
    """Read at most `limit` bytes of a streamed response and decode them."""
    chunks: List[bytes] = []
    size = 0
    for chunk in resp.iter_content(chunk_size=4096):
        if not chunk:
            continue
        chunks.append(chunk)
        size += len(chunk)
        if size >= limit:
            break
    raw = b"".join(chunks)[:limit]
    try:
        return raw.decode(resp.encoding or "utf-8", errors="replace")
    except LookupError:
        return raw.decode("utf-8", errors="replace")


@dataclass
class VerificationResult:
    """
    Outcome of a single verification attempt.

    Fields:
        method:     dns_txt, html_file, meta_tag
        verified:   True only if the token matched exactly
        diagnostic: Why it failed, phrased so the domain owner can act on it
        details:    Evidence (records seen, HTTP status, ...) for the attempt log
    """
    method: str
    verified: bool
    diagnostic: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @classmethod
    def ok(cls, method: str, **details: Any) -> "VerificationResult":
        return cls(method=method, verified=True, details=details)

    @classmethod
    def failed(cls, method: str, diagnostic: str, **details: Any) -> "VerificationResult":
        return cls(method=method, verified=False, diagnostic=diagnostic, details=details)


class BaseVerifier(ABC):
    """
    Abstract base for ownership verification protocols.

    Subclasses implement `attempt()`. Callers use `run()`, which adds timing
    and turns any unexpected exception into a failed result so a broken
    probe never aborts the verify request.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = timeout

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def instructions(self, domain: str, token: str) -> Dict[str, str]:
        """What the owner has to publish for this method."""
        ...

    @abstractmethod
    def attempt(self, domain: str, token: str) -> VerificationResult:
        ...

    def run(self, domain: str, token: str) -> VerificationResult:
        start = time.monotonic()
        try:
            result = self.attempt(domain, token)
        except Exception as e:
            logger.exception(f"Verifier '{self.name}' failed for {domain}")
            result = VerificationResult.failed(
                self.name,
                f"Verification could not be completed: {type(e).__name__}: {e}",
            )
        result.duration_seconds = round(time.monotonic() - start, 2)

        logger.info(
            f"Verification '{self.name}' for {domain}: "
            f"{'verified' if result.verified else 'failed'} in {result.duration_seconds}s"
        )
        return result
