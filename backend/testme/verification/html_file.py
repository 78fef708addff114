# testme/verification/html_file.py
"""
Well-known file ownership verification.

Fetches https://{domain}/.well-known/testme-verify.txt and compares the
normalized body with the token. A body that looks like an HTML document is
reported separately: it almost always means an SPA router or middleware is
answering the well-known path instead of the static file.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Optional

import requests

from testme.verification.base import USER_AGENT, BaseVerifier, VerificationResult, read_capped

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/testme-verify.txt"

# Max body to read (the token is well below 1KB)
MAX_BODY_READ = 16384

HTML_MARKERS_RE = re.compile(r"<!doctype\s+html|<html[\s>]|<head[\s>]|<body[\s>]", re.IGNORECASE)


def normalize_token_text(value: str) -> str:
    """Strip BOM and surrounding whitespace, drop every line break."""
    v = (value or "").replace("\ufeff", "")
    v = re.sub(r"[\r\n]+", "", v)
    return v.strip()


def looks_like_html(body: str) -> bool:
    return bool(HTML_MARKERS_RE.search(body[:4096]))


class HtmlFileVerifier(BaseVerifier):

    def __init__(self, timeout: float = 10, session: Optional[requests.Session] = None):
        super().__init__(timeout=timeout)
        self.session = session or requests.Session()

    @property
    def name(self) -> str:
        return "html_file"

    def instructions(self, domain: str, token: str) -> Dict[str, str]:
        return {
            "url": f"https://{domain}{WELL_KNOWN_PATH}",
            "content": token,
            "hint": "Serve a plain-text file containing only the token. "
                    "Make sure your framework's router does not rewrite /.well-known/ paths.",
        }

    def attempt(self, domain: str, token: str) -> VerificationResult:
        url = f"https://{domain}{WELL_KNOWN_PATH}"
        try:
            resp = self.session.get(
                url,
                timeout=self.timeout,
                headers={"User-Agent": USER_AGENT, "Accept": "text/plain"},
                allow_redirects=True,
                stream=True,
            )
        except requests.Timeout:
            return VerificationResult.failed(
                self.name, f"Request to {url} timed out. Make sure the file is publicly reachable.", url=url,
            )
        except requests.RequestException as e:
            return VerificationResult.failed(
                self.name, f"Could not connect to {url}: {type(e).__name__}.", url=url,
            )

        try:
            if resp.status_code != 200:
                return VerificationResult.failed(
                    self.name,
                    f"File not accessible (HTTP {resp.status_code}). Upload it to {WELL_KNOWN_PATH} "
                    f"and make sure it is publicly readable.",
                    url=url, status=resp.status_code,
                )
            try:
                body = read_capped(resp, MAX_BODY_READ)
            except requests.RequestException as e:
                return VerificationResult.failed(
                    self.name, f"Reading {url} failed: {type(e).__name__}.", url=url,
                )
        finally:
            resp.close()

        if looks_like_html(body):
            return VerificationResult.failed(
                self.name,
                "The server returned an HTML page instead of the verification file. A routing "
                "or middleware layer (e.g. an SPA fallback route) is intercepting the "
                "/.well-known/ path rather than serving the literal file. Exclude "
                "/.well-known/ from the rewrite or serve the file statically.",
                url=url, status=resp.status_code, intercepted=True,
                content_type=resp.headers.get("Content-Type"),
            )

        found = normalize_token_text(body)
        if found == normalize_token_text(token):
            return VerificationResult.ok(self.name, url=url)

        return VerificationResult.failed(
            self.name,
            "The verification file was found but its content does not match the token. "
            "The file must contain only the token.",
            url=url, status=resp.status_code, content_preview=found[:80],
        )
