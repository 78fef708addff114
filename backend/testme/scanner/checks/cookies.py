# testme/scanner/checks/cookies.py
"""
Cookie security check.

Parses every Set-Cookie line of the homepage response. One finding per
cookie and missing attribute, so the report names the exact cookie to fix.
"""

from __future__ import annotations

import logging
import re
from typing import List

from testme.scanner.base import BaseCheck, FindingDraft, ScanContext
from testme.scanner.engines.http_engine import parse_set_cookie

logger = logging.getLogger(__name__)

# Names that usually carry a session or auth token
SESSION_COOKIE_RE = re.compile(
    r"sess|sid|auth|token|jwt|login|remember|phpsessid|jsessionid|asp\.net_sessionid|connect\.sid|csrf|xsrf",
    re.IGNORECASE,
)


def is_session_cookie(name: str) -> bool:
    return bool(SESSION_COOKIE_RE.search(name or ""))


class CookiesCheck(BaseCheck):

    @property
    def name(self) -> str:
        return "Cookie security"

    @property
    def category(self) -> str:
        return "cookies"

    def execute(self, ctx: ScanContext) -> List[FindingDraft]:
        resp = ctx.homepage()
        drafts: List[FindingDraft] = []

        for line in resp.set_cookies:
            cookie = parse_set_cookie(line)
            if not cookie:
                continue
            name = cookie["name"]
            session_like = is_session_cookie(name)
            evidence = {"cookie": name, "attributes": {k: v for k, v in cookie.items() if k != "name"}}

            if not cookie["secure"]:
                drafts.append(FindingDraft(
                    template_id="cookie-no-secure",
                    title=f"Cookie '{name}' without Secure flag",
                    severity="medium",
                    description=f"The cookie '{name}' may be sent over unencrypted HTTP connections.",
                    recommendation="Set the Secure attribute on every cookie served by an HTTPS site.",
                    affected_url=resp.url,
                    cwe="CWE-614",
                    details=evidence,
                ))

            if not cookie["httponly"]:
                drafts.append(FindingDraft(
                    template_id="cookie-no-httponly",
                    title=f"Cookie '{name}' without HttpOnly flag",
                    severity="medium" if session_like else "low",
                    description=(
                        f"The cookie '{name}' is readable from JavaScript. "
                        + ("It looks like a session cookie, so an XSS bug could steal sessions."
                           if session_like else "Any XSS bug can read it.")
                    ),
                    recommendation="Set HttpOnly on cookies that scripts do not need to read.",
                    affected_url=resp.url,
                    cwe="CWE-1004",
                    details=evidence,
                ))

            samesite = cookie["samesite"]
            if not samesite:
                drafts.append(FindingDraft(
                    template_id="cookie-no-samesite",
                    title=f"Cookie '{name}' without SameSite attribute",
                    severity="low",
                    description=f"The cookie '{name}' does not declare SameSite and relies on browser defaults for CSRF protection.",
                    recommendation="Set SameSite=Lax (or Strict for session cookies).",
                    affected_url=resp.url,
                    cwe="CWE-1275",
                    details=evidence,
                ))
            elif samesite == "None" and not cookie["secure"]:
                drafts.append(FindingDraft(
                    template_id="cookie-samesite-none-insecure",
                    title=f"Cookie '{name}' uses SameSite=None without Secure",
                    severity="medium",
                    description=(
                        f"The cookie '{name}' is sent on all cross-site requests and is not "
                        f"restricted to HTTPS. Browsers reject this combination or send it in clear text."
                    ),
                    recommendation="Add Secure, or use SameSite=Lax if cross-site delivery is not needed.",
                    affected_url=resp.url,
                    cwe="CWE-1275",
                    details=evidence,
                ))

        return drafts
