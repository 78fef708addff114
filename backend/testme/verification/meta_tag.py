# testme/verification/meta_tag.py
"""
Meta tag ownership verification.

Fetches the homepage and looks for <meta name="testme-verify" content="TOKEN">.
Any meta name containing "verify" is accepted and attribute order does not
matter; the content must equal the token exactly.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional

import requests

from testme.verification.base import USER_AGENT, BaseVerifier, VerificationResult, read_capped

logger = logging.getLogger(__name__)

META_NAME = "testme-verify"

# Only the <head> matters; cap what we scan
MAX_BODY_READ = 262144

META_TAG_RE = re.compile(r"<meta\b[^>]*>", re.IGNORECASE)
ATTR_RE = re.compile(r"""([a-zA-Z_:][-a-zA-Z0-9_:.]*)\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'>]+))""")


def extract_verify_contents(html: str) -> List[str]:
    """content= values of all <meta> tags whose name contains 'verify'."""
    contents: List[str] = []
    for tag in META_TAG_RE.findall(html):
        attrs = {}
        for m in ATTR_RE.finditer(tag):
            attrs[m.group(1).lower()] = next(g for g in m.groups()[1:] if g is not None)
        name = attrs.get("name", "").lower()
        if "verify" in name and "content" in attrs:
            contents.append(attrs["content"].strip())
    return contents


class MetaTagVerifier(BaseVerifier):

    def __init__(self, timeout: float = 10, session: Optional[requests.Session] = None):
        super().__init__(timeout=timeout)
        self.session = session or requests.Session()

    @property
    def name(self) -> str:
        return "meta_tag"

    def instructions(self, domain: str, token: str) -> Dict[str, str]:
        return {
            "url": f"https://{domain}/",
            "tag": f'<meta name="{META_NAME}" content="{token}">',
            "hint": "Place the tag inside <head> of the homepage.",
        }

    def attempt(self, domain: str, token: str) -> VerificationResult:
        url = f"https://{domain}/"
        try:
            resp = self.session.get(
                url,
                timeout=self.timeout,
                headers={"User-Agent": USER_AGENT, "Accept": "text/html"},
                allow_redirects=True,
                stream=True,
            )
        except requests.Timeout:
            return VerificationResult.failed(self.name, f"Request to {url} timed out.", url=url)
        except requests.RequestException as e:
            return VerificationResult.failed(
                self.name, f"Could not connect to {url}: {type(e).__name__}.", url=url,
            )

        try:
            if resp.status_code != 200:
                return VerificationResult.failed(
                    self.name, f"Homepage returned HTTP {resp.status_code}.", url=url, status=resp.status_code,
                )
            try:
                body = read_capped(resp, MAX_BODY_READ)
            except requests.RequestException as e:
                return VerificationResult.failed(
                    self.name, f"Reading {url} failed: {type(e).__name__}.", url=url,
                )
        finally:
            resp.close()

        contents = extract_verify_contents(body)
        if not contents:
            return VerificationResult.failed(
                self.name,
                f'No <meta name="{META_NAME}"> tag found on the homepage. If the page is rendered '
                f"client-side, the tag must be present in the server-sent HTML.",
                url=url,
            )

        if token in contents:
            return VerificationResult.ok(self.name, url=url)

        return VerificationResult.failed(
            self.name,
            "A verification meta tag was found but its content does not match the token.",
            url=url, found=[c[:80] for c in contents],
        )
