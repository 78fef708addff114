# testme/verification/__init__.py
"""
Domain ownership verification.

Registry of the available verifiers keyed by method name. The service layer
looks verifiers up here; tests replace entries with fakes.
"""

from __future__ import annotations

from typing import Dict, Optional, Sequence, Type

from testme.verification.base import BaseVerifier, VerificationResult
from testme.verification.dns_txt import DnsTxtVerifier
from testme.verification.html_file import HtmlFileVerifier
from testme.verification.meta_tag import MetaTagVerifier

ALL_VERIFIERS: Dict[str, Type[BaseVerifier]] = {
    "dns_txt": DnsTxtVerifier,
    "html_file": HtmlFileVerifier,
    "meta_tag": MetaTagVerifier,
}


def get_verifier(
    method: str,
    timeout: float = 10,
    nameservers: Optional[Sequence[str]] = None,
) -> Optional[BaseVerifier]:
    cls = ALL_VERIFIERS.get(method)
    if cls is None:
        return None
    if cls is DnsTxtVerifier:
        return DnsTxtVerifier(timeout=timeout, nameservers=nameservers)
    return cls(timeout=timeout)


__all__ = [
    "ALL_VERIFIERS",
    "BaseVerifier",
    "VerificationResult",
    "DnsTxtVerifier",
    "HtmlFileVerifier",
    "MetaTagVerifier",
    "get_verifier",
]
