# testme/scanner/catalog.py
"""
The check catalog: a fixed, ordered list of steps, one category each.

A scan's current_step_index points into SCAN_STEPS. The order is part of the
persisted state of running scans, so append new steps at the end.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence


@dataclass(frozen=True)
class CheckStep:
    index: int
    name: str
    category: str
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "name": self.name,
            "category": self.category,
            "description": self.description,
        }


SCAN_STEPS: List[CheckStep] = [
    CheckStep(0, "Transport security", "transport",
              "HTTPS availability, certificate validity, legacy TLS, HTTP to HTTPS redirect, mixed content"),
    CheckStep(1, "Security headers", "headers",
              "HSTS, Content-Security-Policy, X-Frame-Options, X-Content-Type-Options, Referrer-Policy, Permissions-Policy"),
    CheckStep(2, "Cookie security", "cookies",
              "Secure, HttpOnly and SameSite attributes"),
    CheckStep(3, "Information disclosure", "information_disclosure",
              "Version banners, verbose errors, directory listings, secrets in crawled pages and scripts"),
    CheckStep(4, "Sensitive files", "sensitive_files",
              "Publicly reachable VCS metadata, environment files, keys and dumps"),
    CheckStep(5, "Forms and input", "forms",
              "Insecure form targets, credential handling, CSRF tokens on crawled pages"),
    CheckStep(6, "CORS policy", "cors",
              "Origin reflection, wildcard and null origins"),
    CheckStep(7, "Email and DNS security", "email",
              "SPF and DMARC records, nameserver redundancy, DNSSEC, CAA"),
    CheckStep(8, "Client-side libraries", "js_libraries",
              "Outdated or vulnerable JavaScript libraries (jQuery, Bootstrap, AngularJS, ...)"),
]


def steps_to_ui(steps: Optional[Sequence[CheckStep]] = None) -> List[Dict[str, Any]]:
    steps = SCAN_STEPS if steps is None else steps
    return [s.to_dict() for s in steps]
