# testme/scanner/checks/disclosure.py
"""
Information disclosure check.

Looks at what the site volunteers about itself: version banners in headers,
generator meta tags, verbose error pages and directory listings on the
homepage. Secrets and debug switches are searched in every crawled page and
in the same-site JavaScript files those pages load.
"""

from __future__ import annotations

import logging
import re
import secrets
from typing import Dict, List, Optional, Tuple

from testme.scanner.base import PROBE_ERRORS, BaseCheck, FindingDraft, ScanContext
from testme.scanner.crawler import (
    MAX_CRAWL_PAGES,
    crawl_site,
    extract_script_urls,
    fetch_scripts,
    is_same_site,
)

logger = logging.getLogger(__name__)

VERSION_RE = re.compile(r"\d+(?:\.\d+)+")

GENERATOR_RE = re.compile(
    r"<meta\b[^>]*name\s*=\s*[\"']generator[\"'][^>]*content\s*=\s*[\"']([^\"']+)[\"']"
    r"|<meta\b[^>]*content\s*=\s*[\"']([^\"']+)[\"'][^>]*name\s*=\s*[\"']generator[\"']",
    re.IGNORECASE,
)

DIRECTORY_LISTING_RE = re.compile(r"<title>\s*Index of /|<h1>\s*Index of /|Directory listing for /", re.IGNORECASE)

# (pattern, framework) pairs that only show up in unhandled error output
STACK_TRACE_PATTERNS = [
    (re.compile(r"Traceback \(most recent call last\)"), "Python"),
    (re.compile(r"Werkzeug Debugger|django\.core\.exceptions|You're seeing this error because you have DEBUG = True"), "Python web framework"),
    (re.compile(r"at [\w.$]+\([\w]+\.java:\d+\)"), "Java"),
    (re.compile(r"System\.[\w.]+Exception|Server Error in '/' Application"), "ASP.NET"),
    (re.compile(r"(?:Fatal error|Warning|Parse error)</b>:.+ on line <b>\d+", re.IGNORECASE), "PHP"),
    (re.compile(r"Whoops! There was an error|Illuminate\\"), "Laravel"),
    (re.compile(r"at [\w.<>]+ \((?:/|[A-Z]:\\)[^)]+\.js:\d+:\d+\)"), "Node.js"),
    (re.compile(r"ActionController::RoutingError|ActiveRecord::"), "Ruby on Rails"),
]

SCRIPT_RE = re.compile(r"<script\b[^>]*>(.*?)</script>", re.IGNORECASE | re.DOTALL)

SECRET_PATTERNS = [
    (re.compile(r"AKIA[0-9A-Z]{16}"), "AWS access key", "critical"),
    (re.compile(r"AIza[0-9A-Za-z_-]{35}"), "Google API key", "high"),
    (re.compile(r"\b(?:ghp|gho|ghu|ghs|ghr)_[A-Za-z0-9]{36,}"), "GitHub token", "critical"),
    (re.compile(r"-----BEGIN (?:RSA |EC |OPENSSH )?PRIVATE KEY-----"), "Private key", "critical"),
    (re.compile(r"(?:api[_-]?key|apikey)\s*[:=]\s*['\"]([^'\"]{20,})['\"]", re.IGNORECASE), "API key", "high"),
    (re.compile(r"(?:secret|password|passwd)\s*[:=]\s*['\"]([^'\"]{10,})['\"]", re.IGNORECASE), "Secret", "high"),
]

MAX_SCRIPT_FETCHES = 10

PLACEHOLDER_MARKERS = ("your-", "your_", "example", "placeholder", "xxxx", "changeme")

DEBUG_PATTERNS = [
    (re.compile(r"APP_DEBUG\s*[:=]\s*true", re.IGNORECASE), "Laravel debug mode"),
    (re.compile(r"NODE_ENV\s*[:=]\s*['\"]development['\"]"), "Development build"),
    (re.compile(r"[\"']?debug[\"']?\s*[:=]\s*true\b", re.IGNORECASE), "Debug flag"),
]


def _versioned(value: Optional[str]) -> bool:
    return bool(value and VERSION_RE.search(value))


def generator_meta(body: str) -> Optional[str]:
    m = GENERATOR_RE.search(body or "")
    if not m:
        return None
    return (m.group(1) or m.group(2) or "").strip() or None


def find_stack_trace(body: str) -> Optional[str]:
    for pattern, framework in STACK_TRACE_PATTERNS:
        if pattern.search(body or ""):
            return framework
    return None


def find_secrets(text: str) -> List[dict]:
    hits = []
    for pattern, kind, severity in SECRET_PATTERNS:
        for m in pattern.finditer(text or ""):
            value = m.group(m.lastindex or 0)
            if any(p in value.lower() for p in PLACEHOLDER_MARKERS):
                continue
            hits.append({"kind": kind, "severity": severity, "preview": m.group(0)[:12] + "…"})
    return hits


def find_inline_secrets(body: str) -> List[dict]:
    hits = []
    for script in SCRIPT_RE.findall(body or ""):
        hits.extend(find_secrets(script))
    return hits


class DisclosureCheck(BaseCheck):

    @property
    def name(self) -> str:
        return "Information disclosure"

    @property
    def category(self) -> str:
        return "information_disclosure"

    def execute(self, ctx: ScanContext) -> List[FindingDraft]:
        crawl = crawl_site(ctx, reserve=self.probe_reserve_seconds * 2)
        home = crawl.pages[0]
        url = home.url
        drafts: List[FindingDraft] = []

        # --- Version banners ---
        server = home.header("server")
        if _versioned(server):
            drafts.append(FindingDraft(
                template_id="server-version-disclosed",
                title="Server header reveals version",
                severity="low",
                description=f"The Server header discloses software and version: '{server}'. This helps attackers pick known exploits.",
                recommendation="Remove the version from the Server header (e.g. nginx server_tokens off; Apache ServerTokens Prod).",
                affected_url=url,
                cwe="CWE-200",
                details={"server": server},
            ))

        powered_by = home.header("x-powered-by")
        if powered_by:
            drafts.append(FindingDraft(
                template_id="x-powered-by-disclosed",
                title="X-Powered-By header reveals technology",
                severity="low",
                description=f"X-Powered-By discloses the application stack: '{powered_by}'.",
                recommendation="Remove the X-Powered-By header (e.g. expose_php = Off, app.disable('x-powered-by')).",
                affected_url=url,
                cwe="CWE-200",
                details={"x_powered_by": powered_by},
            ))

        for header in ("x-aspnet-version", "x-aspnetmvc-version"):
            value = home.header(header)
            if value:
                drafts.append(FindingDraft(
                    template_id=f"{header}-disclosed",
                    title=f"{header} header reveals framework version",
                    severity="low",
                    description=f"The {header} header discloses '{value}'.",
                    recommendation="Disable version headers in web.config (enableVersionHeader=false) and MvcHandler.DisableMvcResponseHeader.",
                    affected_url=url,
                    cwe="CWE-200",
                    details={header: value},
                ))

        generator = generator_meta(home.body)
        if generator:
            drafts.append(FindingDraft(
                template_id="generator-meta-disclosed",
                title="Generator meta tag reveals CMS",
                severity="low" if _versioned(generator) else "info",
                description=f"The page declares its generator: '{generator}'.",
                recommendation="Remove the generator meta tag, in particular the version number.",
                affected_url=url,
                cwe="CWE-200",
                details={"generator": generator},
            ))

        # --- Directory listing on the root ---
        if DIRECTORY_LISTING_RE.search(home.body):
            drafts.append(self._directory_listing(url))

        # --- Secrets and debug switches across crawled pages and same-site scripts ---
        found: Dict[Tuple[str, str], FindingDraft] = {}
        for p in crawl.pages:
            for hit in find_inline_secrets(p.body):
                self._record_secret(found, hit, p.url, "an inline script")

        script_urls: List[str] = []
        for p in crawl.pages:
            for src in extract_script_urls(p.body, p.url):
                if is_same_site(src, ctx.domain) and src not in script_urls:
                    script_urls.append(src)
        for src, body in fetch_scripts(ctx, script_urls, MAX_SCRIPT_FETCHES, reserve=self.probe_reserve_seconds * 2):
            for hit in find_secrets(body):
                self._record_secret(found, hit, src, "a JavaScript file")
        drafts.extend(found.values())

        debug_labels = set()
        for p in crawl.pages:
            for pattern, label in DEBUG_PATTERNS:
                if label not in debug_labels and pattern.search(p.body):
                    debug_labels.add(label)
                    drafts.append(FindingDraft(
                        template_id="debug-flag",
                        title=f"{label} enabled",
                        severity="medium",
                        description=f"The page source indicates that {label.lower()} is enabled in production.",
                        recommendation="Disable debug mode in production builds.",
                        affected_url=p.url,
                        cwe="CWE-489",
                        details={"pattern": pattern.pattern},
                    ))
                    break

        if crawl.budget_exhausted:
            drafts.append(self.budget_exhausted_finding(ctx, len(crawl.pages), MAX_CRAWL_PAGES))

        # --- Verbose errors on a path that cannot exist ---
        if not ctx.budget_exhausted(self.probe_reserve_seconds):
            probe_path = f"/testme-{secrets.token_hex(6)}.php"
            try:
                err = ctx.http.fetch_site(ctx.domain, probe_path, schemes=(home.scheme or "https",))
            except PROBE_ERRORS as e:
                drafts.append(self.probe_failed(ctx, e, f"{ctx.domain}{probe_path}"))
                err = None

            if err is not None:
                framework = find_stack_trace(err.body)
                if framework:
                    drafts.append(FindingDraft(
                        template_id="verbose-error-page",
                        title="Verbose error page exposes stack trace",
                        severity="medium",
                        description=(
                            f"Requesting a non-existent path returned a {framework} stack trace "
                            f"(HTTP {err.status}). Stack traces leak file paths, library versions "
                            f"and code structure."
                        ),
                        recommendation="Disable debug output and serve generic error pages in production.",
                        affected_url=err.url,
                        cwe="CWE-209",
                        details={"status": err.status, "framework": framework},
                    ))
                if DIRECTORY_LISTING_RE.search(err.body):
                    drafts.append(self._directory_listing(err.url))

        return drafts

    def _record_secret(self, found: Dict[Tuple[str, str], FindingDraft], hit: dict, url: str, where: str) -> None:
        key = (hit["kind"], hit["preview"])
        if key in found:
            urls = found[key].details["urls"]
            if url not in urls:
                urls.append(url)
            return
        found[key] = FindingDraft(
            template_id="exposed-secret",
            title=f"{hit['kind']} exposed in client-side code",
            severity=hit["severity"],
            description=f"A value that looks like a {hit['kind'].lower()} is embedded in {where} served by {url}.",
            recommendation="Remove secrets from client-side code, rotate the exposed credential and keep it server-side.",
            affected_url=url,
            cwe="CWE-798",
            details={"preview": hit["preview"], "urls": [url]},
        )

    def _directory_listing(self, url: str) -> FindingDraft:
        return FindingDraft(
            template_id="directory-listing",
            title="Directory listing enabled",
            severity="medium",
            description="The server returns an auto-generated directory index, exposing file names.",
            recommendation="Disable auto-indexing (nginx autoindex off; Apache Options -Indexes).",
            affected_url=url,
            cwe="CWE-548",
        )
