# testme/scanner/checks/headers.py
"""
HTTP security headers check.

Reads the homepage response and checks for missing or misconfigured
security headers.

Checks performed:
    HIGH:
        - Missing Strict-Transport-Security (HTTPS sites only)
    MEDIUM:
        - HSTS max-age below 6 months
        - Missing Content-Security-Policy, or only Report-Only
        - Weak CSP (unsafe-inline, unsafe-eval, wildcard or data: sources)
        - Missing X-Frame-Options (unless CSP frame-ancestors is set)
        - Missing X-Content-Type-Options: nosniff
    LOW:
        - HSTS without includeSubDomains
        - Invalid X-Frame-Options value
        - Missing or leaky Referrer-Policy
        - Missing Permissions-Policy
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional

from testme.scanner.base import BaseCheck, FindingDraft, ScanContext

logger = logging.getLogger(__name__)

# 6 months
HSTS_MIN_MAX_AGE = 15768000

LEAKY_REFERRER_POLICIES = ("unsafe-url", "no-referrer-when-downgrade")

# Headers whose absence is a plain "missing" finding
SECURITY_HEADERS: Dict[str, Dict[str, str]] = {
    "X-Content-Type-Options": {
        "severity": "medium",
        "description": (
            "The X-Content-Type-Options header is missing or not set to nosniff. "
            "Browsers may MIME-sniff responses and execute non-script files as scripts."
        ),
        "recommendation": "Add the header: X-Content-Type-Options: nosniff",
        "cwe": "CWE-16",
    },
    "Referrer-Policy": {
        "severity": "low",
        "description": (
            "The Referrer-Policy header is missing. Depending on the browser, full URLs "
            "including query parameters may leak to third parties via the Referer header."
        ),
        "recommendation": "Add the header: Referrer-Policy: strict-origin-when-cross-origin",
        "cwe": "CWE-200",
    },
    "Permissions-Policy": {
        "severity": "low",
        "description": (
            "The Permissions-Policy header is missing. It restricts which browser features "
            "(camera, microphone, geolocation, ...) the page and embedded content may use."
        ),
        "recommendation": "Add a Permissions-Policy disabling unused features: camera=(), microphone=(), geolocation=()",
        "cwe": "CWE-16",
    },
}


def parse_csp(value: str) -> Dict[str, List[str]]:
    directives: Dict[str, List[str]] = {}
    for part in (value or "").split(";"):
        tokens = part.strip().split()
        if tokens:
            directives[tokens[0].lower()] = [t.lower() for t in tokens[1:]]
    return directives


def csp_weaknesses(value: str) -> List[str]:
    d = parse_csp(value)
    issues: List[str] = []
    script_src = d.get("script-src", d.get("default-src", []))

    if "'unsafe-inline'" in script_src and not any(
        s.startswith("'nonce-") or s.startswith("'sha") for s in script_src
    ):
        issues.append("'unsafe-inline' allows inline scripts")
    if "'unsafe-eval'" in script_src:
        issues.append("'unsafe-eval' allows eval()")
    if "*" in script_src or "https:" in script_src or "http:" in script_src:
        issues.append("script sources include a wildcard or a whole scheme")
    if "data:" in script_src:
        issues.append("data: URIs are allowed as script sources")
    if "default-src" not in d and "script-src" not in d:
        issues.append("no default-src or script-src directive")
    return issues


def hsts_max_age(value: str) -> Optional[int]:
    m = re.search(r"max-age\s*=\s*\"?(\d+)", value or "", re.IGNORECASE)
    return int(m.group(1)) if m else None


class HeadersCheck(BaseCheck):

    @property
    def name(self) -> str:
        return "Security headers"

    @property
    def category(self) -> str:
        return "headers"

    def execute(self, ctx: ScanContext) -> List[FindingDraft]:
        resp = ctx.homepage()
        url = resp.url
        drafts: List[FindingDraft] = []

        # --- HSTS (ignored by browsers on plain HTTP) ---
        if resp.is_https:
            hsts = resp.header("strict-transport-security")
            if not hsts:
                drafts.append(FindingDraft(
                    template_id="hsts-missing",
                    title="Missing Strict-Transport-Security header",
                    severity="high",
                    description=(
                        "HSTS is not set. Users can be downgraded from HTTPS to HTTP by a "
                        "man-in-the-middle on their first or any later plain-HTTP request."
                    ),
                    recommendation="Add: Strict-Transport-Security: max-age=31536000; includeSubDomains",
                    affected_url=url,
                    cwe="CWE-319",
                ))
            else:
                max_age = hsts_max_age(hsts)
                if max_age is None or max_age < HSTS_MIN_MAX_AGE:
                    drafts.append(FindingDraft(
                        template_id="hsts-short-max-age",
                        title="HSTS max-age too short",
                        severity="medium",
                        description=f"HSTS max-age is {max_age}; at least {HSTS_MIN_MAX_AGE} (6 months) is recommended.",
                        recommendation="Raise max-age to 31536000 (1 year).",
                        affected_url=url,
                        cwe="CWE-319",
                        details={"value": hsts},
                    ))
                if "includesubdomains" not in hsts.lower():
                    drafts.append(FindingDraft(
                        template_id="hsts-no-subdomains",
                        title="HSTS does not include subdomains",
                        severity="low",
                        description="The HSTS policy does not cover subdomains (includeSubDomains is missing).",
                        recommendation="Add includeSubDomains once every subdomain serves HTTPS.",
                        affected_url=url,
                        cwe="CWE-319",
                        details={"value": hsts},
                    ))

        # --- CSP ---
        csp = resp.header("content-security-policy")
        csp_ro = resp.header("content-security-policy-report-only")
        if not csp:
            drafts.append(FindingDraft(
                template_id="csp-missing" if not csp_ro else "csp-report-only",
                title="Missing Content-Security-Policy" if not csp_ro else "Content-Security-Policy is report-only",
                severity="medium",
                description=(
                    "No enforcing Content-Security-Policy is set. CSP limits which scripts and "
                    "resources may load and is the main browser-side defence against XSS."
                    + (" A Report-Only policy exists but is not enforced." if csp_ro else "")
                ),
                recommendation="Deploy an enforcing policy, e.g. default-src 'self'; object-src 'none'; frame-ancestors 'self'.",
                affected_url=url,
                cwe="CWE-79",
                details={"report_only": csp_ro} if csp_ro else {},
            ))
        else:
            issues = csp_weaknesses(csp)
            if issues:
                drafts.append(FindingDraft(
                    template_id="csp-weak",
                    title="Weak Content-Security-Policy",
                    severity="medium",
                    description="The CSP weakens XSS protection: " + "; ".join(issues) + ".",
                    recommendation="Remove 'unsafe-inline' and 'unsafe-eval', use nonces or hashes, and list explicit script origins.",
                    affected_url=url,
                    cwe="CWE-79",
                    details={"value": csp, "issues": issues},
                ))

        # --- Clickjacking ---
        xfo = resp.header("x-frame-options")
        has_frame_ancestors = "frame-ancestors" in parse_csp(csp or "")
        if not xfo and not has_frame_ancestors:
            drafts.append(FindingDraft(
                template_id="xfo-missing",
                title="Missing X-Frame-Options header",
                severity="medium",
                description=(
                    "Neither X-Frame-Options nor CSP frame-ancestors is set. The page can be "
                    "embedded in a frame on another site (clickjacking)."
                ),
                recommendation="Add: X-Frame-Options: DENY (or SAMEORIGIN), or CSP frame-ancestors 'self'.",
                affected_url=url,
                cwe="CWE-1021",
            ))
        elif xfo and xfo.strip().upper() not in ("DENY", "SAMEORIGIN"):
            drafts.append(FindingDraft(
                template_id="xfo-invalid",
                title="Invalid X-Frame-Options value",
                severity="low",
                description=f"X-Frame-Options is set to '{xfo}', which modern browsers ignore.",
                recommendation="Use DENY or SAMEORIGIN, or CSP frame-ancestors.",
                affected_url=url,
                cwe="CWE-1021",
                details={"value": xfo},
            ))

        # --- Simple presence headers ---
        for header, meta in SECURITY_HEADERS.items():
            value = resp.header(header)
            if header == "X-Content-Type-Options" and value and value.strip().lower() == "nosniff":
                continue
            if header == "Referrer-Policy" and value:
                if value.strip().lower() in LEAKY_REFERRER_POLICIES:
                    drafts.append(FindingDraft(
                        template_id="referrer-policy-leaky",
                        title="Leaky Referrer-Policy",
                        severity="low",
                        description=f"Referrer-Policy '{value}' sends full URLs to other origins.",
                        recommendation=meta["recommendation"],
                        affected_url=url,
                        cwe=meta["cwe"],
                        details={"value": value},
                    ))
                continue
            if header != "X-Content-Type-Options" and value:
                continue

            drafts.append(FindingDraft(
                template_id=f"{header.lower()}-missing",
                title=f"Missing {header} header",
                severity=meta["severity"],
                description=meta["description"],
                recommendation=meta["recommendation"],
                affected_url=url,
                cwe=meta["cwe"],
                details={"value": value} if value else {},
            ))

        return drafts
