# testme/scanner/checks/transport.py
"""
Transport security check.

Checks performed:
    CRITICAL:
        - Certificate expired
    HIGH:
        - HTTPS not available at all
        - Certificate hostname mismatch / self-signed / untrusted issuer
    MEDIUM:
        - Legacy TLS 1.0 / 1.1 accepted
        - Plain HTTP does not redirect to HTTPS
        - Mixed content (http:// subresources on the HTTPS homepage)
        - Certificate expires within 14 days
    LOW:
        - Certificate expires within 30 days
"""

from __future__ import annotations

import logging
import re
from typing import List

from testme.scanner.base import PROBE_ERRORS, BaseCheck, FindingDraft, ScanContext
from testme.scanner.engines.ssl_engine import legacy_versions_accepted

logger = logging.getLogger(__name__)

# src/href of subresources loaded over plain http
MIXED_CONTENT_RE = re.compile(
    r"<(?:script|img|iframe|link|audio|video|source|embed|object)\b[^>]*?"
    r"(?:src|href|data)\s*=\s*[\"'](http://[^\"'\s>]+)",
    re.IGNORECASE,
)


class TransportCheck(BaseCheck):

    @property
    def name(self) -> str:
        return "Transport security"

    @property
    def category(self) -> str:
        return "transport"

    def execute(self, ctx: ScanContext) -> List[FindingDraft]:
        drafts: List[FindingDraft] = []
        host = ctx.domain

        # --- HTTPS and certificate ---
        try:
            cert = ctx.tls.inspect(host, 443)
        except PROBE_ERRORS as e:
            drafts.append(FindingDraft(
                template_id="https-unavailable",
                title="HTTPS is not available",
                severity="high",
                description=(
                    f"No TLS connection could be established to {host}:443 "
                    f"({type(e).__name__}). Visitors can only reach the site over "
                    f"unencrypted HTTP."
                ),
                recommendation="Serve the site over HTTPS with a certificate from a trusted CA (e.g. Let's Encrypt).",
                affected_url=f"https://{host}/",
                cwe="CWE-319",
                details={"error": f"{type(e).__name__}: {e}"},
            ))
            cert = None

        if cert is not None:
            drafts.extend(self._certificate_findings(host, cert))
            if not ctx.budget_exhausted(self.probe_reserve_seconds):
                protocols = ctx.tls.probe_protocols(host, 443, versions=("TLSv1.0", "TLSv1.1"))
                legacy = legacy_versions_accepted(protocols)
                if legacy:
                    drafts.append(FindingDraft(
                        template_id="tls-legacy-protocol",
                        title=f"Legacy TLS accepted ({', '.join(legacy)})",
                        severity="medium",
                        description=(
                            f"The server still negotiates {', '.join(legacy)}. These protocol "
                            f"versions are deprecated (RFC 8996) and have known weaknesses."
                        ),
                        recommendation="Disable TLS 1.0 and 1.1; allow only TLS 1.2 and 1.3.",
                        affected_url=f"https://{host}/",
                        cwe="CWE-326",
                        details={"protocols": protocols},
                    ))

        # --- HTTP → HTTPS redirect ---
        if not ctx.budget_exhausted(self.probe_reserve_seconds):
            try:
                plain = ctx.http.get(f"http://{host}/", read_body=False)
                if not plain.is_https:
                    drafts.append(FindingDraft(
                        template_id="http-no-redirect",
                        title="HTTP does not redirect to HTTPS",
                        severity="medium",
                        description=(
                            f"http://{host}/ is served without redirecting to HTTPS "
                            f"(final URL {plain.url}, status {plain.status})."
                        ),
                        recommendation="Redirect all plain HTTP requests to HTTPS with a 301 and enable HSTS.",
                        affected_url=f"http://{host}/",
                        cwe="CWE-319",
                        details={
                            "final_url": plain.url,
                            "status": plain.status,
                            "redirect_chain": plain.redirect_chain,
                        },
                    ))
            except PROBE_ERRORS as e:
                # port 80 closed is fine
                logger.debug(f"Plain HTTP probe failed for {host}: {e}")

        # --- Mixed content ---
        if cert is not None and not ctx.budget_exhausted(self.probe_reserve_seconds):
            try:
                home = ctx.homepage()
            except PROBE_ERRORS as e:
                drafts.append(self.probe_failed(ctx, e, f"https://{host}/"))
                home = None
            if home is not None and home.is_https:
                insecure = sorted(set(MIXED_CONTENT_RE.findall(home.body)))
                if insecure:
                    drafts.append(FindingDraft(
                        template_id="mixed-content",
                        title="Mixed content on HTTPS page",
                        severity="medium",
                        description=(
                            f"The HTTPS homepage loads {len(insecure)} resource(s) over plain HTTP. "
                            f"Active mixed content can be tampered with in transit."
                        ),
                        recommendation="Load every subresource over HTTPS or use protocol-relative URLs.",
                        affected_url=home.url,
                        cwe="CWE-311",
                        details={"resources": insecure[:20]},
                    ))

        return drafts

    def _certificate_findings(self, host: str, cert: dict) -> List[FindingDraft]:
        drafts: List[FindingDraft] = []
        url = f"https://{host}/"
        evidence = {k: cert.get(k) for k in (
            "verify_error", "verify_code", "subject", "issuer", "not_after", "protocol_version",
        )}

        if cert.get("is_expired"):
            drafts.append(FindingDraft(
                template_id="tls-cert-expired",
                title="TLS certificate expired",
                severity="critical",
                description="The certificate presented on port 443 has expired. Browsers show a full-page warning.",
                recommendation="Renew the certificate and automate renewal (e.g. certbot / ACME).",
                affected_url=url,
                cwe="CWE-298",
                details=evidence,
            ))
        elif not cert.get("hostname_match", True):
            drafts.append(FindingDraft(
                template_id="tls-cert-hostname-mismatch",
                title="TLS certificate does not match the domain",
                severity="high",
                description=f"The certificate is not valid for {host}: {cert.get('verify_error')}.",
                recommendation=f"Install a certificate whose SAN list includes {host}.",
                affected_url=url,
                cwe="CWE-297",
                details=evidence,
            ))
        elif cert.get("is_self_signed"):
            drafts.append(FindingDraft(
                template_id="tls-cert-self-signed",
                title="Self-signed TLS certificate",
                severity="high",
                description="The certificate is self-signed and not trusted by browsers.",
                recommendation="Use a certificate issued by a publicly trusted CA.",
                affected_url=url,
                cwe="CWE-295",
                details=evidence,
            ))
        elif not cert.get("verified"):
            drafts.append(FindingDraft(
                template_id="tls-cert-untrusted",
                title="TLS certificate could not be verified",
                severity="high",
                description=f"Certificate verification failed: {cert.get('verify_error')}.",
                recommendation="Serve the complete certificate chain from a publicly trusted CA.",
                affected_url=url,
                cwe="CWE-295",
                details=evidence,
            ))
        else:
            days = cert.get("days_until_expiry")
            if days is not None and days <= 30:
                drafts.append(FindingDraft(
                    template_id="tls-cert-expiring",
                    title=f"TLS certificate expires in {days} day(s)",
                    severity="medium" if days <= 14 else "low",
                    description=f"The certificate expires on {cert.get('not_after')}.",
                    recommendation="Renew the certificate soon and automate renewal.",
                    affected_url=url,
                    cwe="CWE-298",
                    details=evidence,
                ))
        return drafts
