# testme/scanner/engines/http_engine.py
"""
HTTP probe engine.

Issues read-only GET/HEAD requests against the target and returns the raw
facts as ProbeResponse objects: status, lowercased headers, every Set-Cookie
line, a capped body and the redirect chain.

What this engine does NOT do:
    - Classify severity (that's the checks' job)
    - Submit forms or send payloads

Certificates are not verified here: a broken certificate is a transport
finding, not a reason to stop looking at headers and cookies.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import requests

from testme.scanner.base import ProbeError

logger = logging.getLogger(__name__)

USER_AGENT = "TestMe-Security-Scanner/1.0"

# Max response body to read (64KB)
MAX_BODY_READ = 65536

MAX_REDIRECTS = 5

# Unverified HTTPS is intentional for probes
warnings.filterwarnings("ignore", message="Unverified HTTPS request")


@dataclass
class ProbeResponse:
    url: str
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    set_cookies: List[str] = field(default_factory=list)
    body: str = ""
    redirect_chain: List[str] = field(default_factory=list)

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)

    @property
    def scheme(self) -> str:
        return self.url.split("://", 1)[0].lower() if "://" in self.url else ""

    @property
    def is_https(self) -> bool:
        return self.scheme == "https"


def parse_set_cookie(header_value: str) -> Optional[Dict[str, object]]:
    """Parse a Set-Cookie header value into name + flags."""
    if not header_value:
        return None

    parts = [p.strip() for p in header_value.split(";")]
    name_val = parts[0]
    if not name_val:
        return None
    name = name_val.split("=", 1)[0].strip()

    attrs = {}
    for p in parts[1:]:
        if "=" in p:
            k, v = p.split("=", 1)
            attrs[k.strip().lower()] = v.strip()
        elif p:
            attrs[p.lower()] = ""

    samesite = attrs.get("samesite")
    return {
        "name": name,
        "secure": "secure" in attrs,
        "httponly": "httponly" in attrs,
        "samesite": samesite.capitalize() if samesite else None,
        "domain": attrs.get("domain"),
        "path": attrs.get("path"),
        "expires": attrs.get("expires"),
        "max_age": attrs.get("max-age"),
    }


class HttpClient:
    """
    Thin requests wrapper used by every HTTP-based check.

    All failures are raised as ProbeError so checks only ever handle one
    family of HTTP errors.
    """

    def __init__(
        self,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
        user_agent: str = USER_AGENT,
        max_body: int = MAX_BODY_READ,
    ):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.max_redirects = MAX_REDIRECTS
        self.user_agent = user_agent
        self.max_body = max_body

    def get(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        allow_redirects: bool = True,
        read_body: bool = True,
    ) -> ProbeResponse:
        req_headers = {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,*/*;q=0.8",
        }
        if headers:
            req_headers.update(headers)

        try:
            resp = self.session.get(
                url,
                headers=req_headers,
                timeout=self.timeout,
                allow_redirects=allow_redirects,
                verify=False,
                stream=True,
            )
        except requests.RequestException as e:
            raise ProbeError(f"GET {url} failed: {type(e).__name__}") from e

        try:
            body = self._read_body(resp) if read_body else ""
        except requests.RequestException as e:
            raise ProbeError(f"Reading {url} failed: {type(e).__name__}") from e
        finally:
            resp.close()

        return ProbeResponse(
            url=resp.url or url,
            status=resp.status_code,
            headers={k.lower(): v for k, v in resp.headers.items()},
            set_cookies=self._set_cookie_lines(resp),
            body=body,
            redirect_chain=[r.url for r in resp.history] + ([resp.url] if resp.history else []),
        )

    def fetch_site(
        self,
        domain: str,
        path: str = "/",
        schemes: Sequence[str] = ("https", "http"),
        headers: Optional[Dict[str, str]] = None,
    ) -> ProbeResponse:
        """GET path on the domain, falling back through schemes in order."""
        last_error: Optional[ProbeError] = None
        for scheme in schemes:
            try:
                return self.get(f"{scheme}://{domain}{path}", headers=headers)
            except ProbeError as e:
                last_error = e
                logger.debug(f"{scheme}://{domain}{path} failed: {e}")
        raise last_error or ProbeError(f"No scheme answered for {domain}{path}")

    def _read_body(self, resp: requests.Response) -> str:
        chunks: List[bytes] = []
        size = 0
        for chunk in resp.iter_content(chunk_size=8192):
            if not chunk:
                continue
            chunks.append(chunk)
            size += len(chunk)
            if size >= self.max_body:
                break
        raw = b"".join(chunks)[: self.max_body]
        try:
            return raw.decode(resp.encoding or "utf-8", errors="replace")
        except LookupError:
            # unknown charset label in Content-Type
            return raw.decode("utf-8", errors="replace")

    def _set_cookie_lines(self, resp: requests.Response) -> List[str]:
        # requests folds repeated headers; the urllib3 header dict keeps them apart
        raw_headers = getattr(resp.raw, "headers", None)
        if raw_headers is not None and hasattr(raw_headers, "getlist"):
            return list(raw_headers.getlist("Set-Cookie"))
        value = resp.headers.get("Set-Cookie")
        return [value] if value else []
