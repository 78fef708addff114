"""
Offline fakes for checks, verifiers and probe clients.

Checks get their HTTP/TLS/DNS clients from the ScanContext, so these fakes
let the whole catalog run without touching the network.
"""
from __future__ import annotations

from typing import List, Optional

from testme.scanner.base import BaseCheck, FindingDraft, ProbeError, ScanContext
from testme.scanner.catalog import CheckStep
from testme.scanner.engines.http_engine import ProbeResponse
from testme.verification.base import BaseVerifier, VerificationResult

OWNER = "owner-1"
OTHER_OWNER = "owner-2"


# ---- Check fakes ----

class StaticCheck(BaseCheck):
    """
    Catalog check that returns canned drafts.

    `hook(ctx)` runs before the drafts are produced, which lets a test change
    persisted state while the step is "in flight". `exc` is raised instead of
    returning drafts.
    """

    def __init__(self, category: str, severities: Optional[List[str]] = None, exc: Optional[BaseException] = None, hook=None):
        self._category = category
        self.severities = severities or []
        self.exc = exc
        self.hook = hook
        self.calls = 0

    @property
    def name(self) -> str:
        return f"Static {self._category}"

    @property
    def category(self) -> str:
        return self._category

    def execute(self, ctx: ScanContext) -> List[FindingDraft]:
        self.calls += 1
        if self.hook:
            self.hook(ctx)
        if self.exc is not None:
            raise self.exc
        return [
            FindingDraft(
                template_id=f"{self._category}-{i}",
                title=f"{sev} issue in {self._category}",
                severity=sev,
                description="canned",
                affected_url=f"https://{ctx.domain}/",
            )
            for i, sev in enumerate(self.severities)
        ]


def make_steps(n: int) -> List[CheckStep]:
    return [CheckStep(i, f"Step {i}", f"cat{i}") for i in range(n)]


def offline_context(domain: str, scan_id=None, step_index=None) -> ScanContext:
    return ScanContext(domain=domain, scan_id=scan_id, step_index=step_index)


# ---- Verification fakes ----

class ScriptedVerifier(BaseVerifier):
    """Verifier with a fixed outcome that counts its attempts."""

    def __init__(self, verified=True, diagnostic="Token not found"):
        super().__init__()
        self.verified = verified
        self.diagnostic = diagnostic
        self.calls = 0

    @property
    def name(self):
        return "dns_txt"

    def instructions(self, domain, token):
        return {}

    def attempt(self, domain, token):
        self.calls += 1
        if self.verified:
            return VerificationResult.ok(self.name)
        return VerificationResult.failed(self.name, self.diagnostic)


# ---- Probe client fakes ----

class FakeHttp:
    """
    Stand-in for HttpClient.

    `pages` maps URL → ProbeResponse, an exception to raise, or a callable
    (url, headers) → ProbeResponse. Unknown URLs answer 404.
    """

    def __init__(self, pages=None):
        self.pages = dict(pages or {})
        self.calls: List[tuple] = []

    def get(self, url, headers=None, allow_redirects=True, read_body=True):
        self.calls.append((url, dict(headers or {})))
        page = self.pages.get(url)
        if isinstance(page, BaseException):
            raise page
        if callable(page):
            return page(url, headers or {})
        if page is None:
            return ProbeResponse(url=url, status=404, body="<html><body>Not found</body></html>")
        return page

    def fetch_site(self, domain, path="/", schemes=("https", "http"), headers=None):
        last_error = None
        for scheme in schemes:
            try:
                return self.get(f"{scheme}://{domain}{path}", headers=headers)
            except ProbeError as e:
                last_error = e
        raise last_error or ProbeError(f"No scheme answered for {domain}{path}")


class FakeTls:
    def __init__(self, cert=None, exc=None, protocols=None):
        self.cert = cert
        self.exc = exc
        self.protocols = protocols or {"TLSv1.0": False, "TLSv1.1": False}

    def inspect(self, host, port=443):
        if self.exc is not None:
            raise self.exc
        return dict(self.cert)

    def probe_protocols(self, host, port=443, versions=()):
        return {v: self.protocols.get(v, False) for v in versions}


class FakeDns:
    """
    `records` maps name → list of TXT strings, or an exception to raise.
    `zone` does the same for other types, keyed by (rdtype, name).
    """

    def __init__(self, records=None, zone=None):
        self.records = dict(records or {})
        self.zone = dict(zone or {})
        self.lookups: List[tuple] = []

    def txt(self, name):
        value = self.records.get(name, [])
        if isinstance(value, BaseException):
            raise value
        return list(value)

    def lookup(self, name, rdtype):
        self.lookups.append((rdtype, name))
        if rdtype == "TXT":
            return self.txt(name)
        value = self.zone.get((rdtype, name), [])
        if isinstance(value, BaseException):
            raise value
        return list(value)


def healthy_zone(apex="example.com"):
    return {
        ("NS", apex): ["ns1.dns-host.net.", "ns2.dns-host.net."],
        ("DNSKEY", apex): ["257 3 13 mdsswUyr3DPW132mOi8V9xESWE8jTo0d"],
        ("CAA", apex): ['0 issue "letsencrypt.org"'],
    }


def good_cert(**overrides):
    cert = {
        "host": "example.com",
        "port": 443,
        "verified": True,
        "verify_error": None,
        "verify_code": None,
        "subject": {"CN": "example.com"},
        "issuer": {"CN": "R3", "O": "Let's Encrypt"},
        "not_after": "2030-01-01T00:00:00+00:00",
        "days_until_expiry": 200,
        "is_expired": False,
        "is_self_signed": False,
        "hostname_match": True,
        "protocol_version": "TLSv1.3",
    }
    cert.update(overrides)
    return cert


def page(url, status=200, headers=None, body="", set_cookies=None):
    return ProbeResponse(
        url=url,
        status=status,
        headers={k.lower(): v for k, v in (headers or {}).items()},
        set_cookies=list(set_cookies or []),
        body=body,
    )

