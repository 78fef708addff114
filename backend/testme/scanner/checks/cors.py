# testme/scanner/checks/cors.py
"""
CORS policy check.

Sends plain GET requests with a foreign and a "null" Origin header and reads
the Access-Control-Allow-* response headers. No preflight, no credentials.
"""

from __future__ import annotations

import logging
from typing import List

from testme.scanner.base import PROBE_ERRORS, BaseCheck, FindingDraft, ScanContext

logger = logging.getLogger(__name__)

PROBE_ORIGIN = "https://cors-probe.testme-scanner.invalid"


class CorsCheck(BaseCheck):

    @property
    def name(self) -> str:
        return "CORS policy"

    @property
    def category(self) -> str:
        return "cors"

    def execute(self, ctx: ScanContext) -> List[FindingDraft]:
        home = ctx.homepage()
        url = home.url
        drafts: List[FindingDraft] = []

        resp = ctx.http.get(url, headers={"Origin": PROBE_ORIGIN}, read_body=False)
        acao = (resp.header("access-control-allow-origin") or "").strip()
        creds = (resp.header("access-control-allow-credentials") or "").strip().lower() == "true"
        evidence = {"origin": PROBE_ORIGIN, "allow_origin": acao, "allow_credentials": creds}

        if acao == PROBE_ORIGIN:
            drafts.append(FindingDraft(
                template_id="cors-origin-reflected",
                title="CORS reflects arbitrary origins" + (" with credentials" if creds else ""),
                severity="high" if creds else "medium",
                description=(
                    "The server echoes any Origin in Access-Control-Allow-Origin"
                    + (" and allows credentials. Any website can read authenticated responses on behalf of a logged-in visitor."
                       if creds else ". Any website can read the responses.")
                ),
                recommendation="Validate Origin against an explicit allow-list; never reflect it unchecked.",
                affected_url=url,
                cwe="CWE-942",
                details=evidence,
            ))
        elif acao == "*":
            drafts.append(FindingDraft(
                template_id="cors-wildcard",
                title="CORS allows any origin (*)",
                severity="low",
                description="Access-Control-Allow-Origin: * lets every website read these responses. Fine for public assets, not for user data.",
                recommendation="Restrict Access-Control-Allow-Origin to the origins that need access.",
                affected_url=url,
                cwe="CWE-942",
                details=evidence,
            ))

        if ctx.budget_exhausted(self.probe_reserve_seconds):
            return drafts

        try:
            null_resp = ctx.http.get(url, headers={"Origin": "null"}, read_body=False)
        except PROBE_ERRORS as e:
            drafts.append(self.probe_failed(ctx, e, url))
            return drafts

        if (null_resp.header("access-control-allow-origin") or "").strip().lower() == "null":
            drafts.append(FindingDraft(
                template_id="cors-null-origin",
                title="CORS trusts the 'null' origin",
                severity="medium",
                description="Access-Control-Allow-Origin: null is returned. Sandboxed iframes and local files send Origin: null, so any attacker page can obtain it.",
                recommendation="Never allow-list the null origin.",
                affected_url=url,
                cwe="CWE-942",
                details={"origin": "null"},
            ))

        return drafts
