# testme/scanner/checks/js_libraries.py
"""
Client-side library check.

Collects the <script src> URLs of every crawled page and reads library
versions from them (CDN paths like /jquery/3.4.1/ or npm@version, file names
like jquery-1.12.4.min.js). Same-site scripts are also fetched, since
self-hosted copies usually only carry their version in the license banner.

Detected versions are compared against a short advisory table. A version is
affected when introduced <= version < fixed.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Tuple
from urllib.parse import urlsplit

from testme.scanner.base import BaseCheck, FindingDraft, ScanContext
from testme.scanner.crawler import (
    MAX_CRAWL_PAGES,
    crawl_site,
    extract_script_urls,
    fetch_scripts,
    is_same_site,
)

logger = logging.getLogger(__name__)

MAX_SCRIPT_FETCHES = 10

VERSION = r"v?(\d+\.\d+\.\d+)"


def _url_pattern(name: str) -> re.Pattern:
    return re.compile(rf"(?:^|[/@._-]){name}(?:\.js)?(?:\.min)?[/@.-]{VERSION}", re.IGNORECASE)


# introduced / fixed are inclusive / exclusive bounds
LIBRARIES: List[Dict[str, Any]] = [
    {"name": "jQuery", "url": _url_pattern("jquery"),
     "banner": re.compile(r"jQuery (?:JavaScript Library )?" + VERSION),
     "advisories": [
         {"introduced": "1.0.0", "fixed": "3.5.0", "severity": "medium", "id": "CVE-2020-11022 / CVE-2020-11023",
          "summary": "Cross-site scripting when untrusted HTML is passed to DOM manipulation methods (htmlPrefilter)."},
     ]},
    {"name": "Bootstrap", "url": _url_pattern("bootstrap"),
     "banner": re.compile(r"Bootstrap " + VERSION),
     "advisories": [
         {"introduced": "3.0.0", "fixed": "3.4.1", "severity": "medium", "id": "CVE-2019-8331",
          "summary": "Cross-site scripting through the tooltip and popover data-template attribute."},
         {"introduced": "4.0.0", "fixed": "4.3.1", "severity": "medium", "id": "CVE-2019-8331",
          "summary": "Cross-site scripting through the tooltip and popover data-template attribute."},
     ]},
    {"name": "AngularJS", "url": _url_pattern("angular(?:js)?"),
     "banner": re.compile(r"AngularJS " + VERSION),
     "advisories": [
         {"introduced": "1.0.0", "fixed": "2.0.0", "severity": "high", "id": "End-of-life",
          "summary": "AngularJS 1.x reached end of life in December 2021 and receives no security fixes, "
                     "including for its known sandbox-bypass XSS issues."},
     ]},
    {"name": "Lodash", "url": _url_pattern("lodash"),
     "banner": None,
     "advisories": [
         {"introduced": "0.0.0", "fixed": "4.17.21", "severity": "high", "id": "CVE-2021-23337",
          "summary": "Command injection through the template function."},
     ]},
    {"name": "Handlebars", "url": _url_pattern("handlebars"),
     "banner": re.compile(r"handlebars " + VERSION, re.IGNORECASE),
     "advisories": [
         {"introduced": "0.0.0", "fixed": "4.7.7", "severity": "critical", "id": "CVE-2021-23369",
          "summary": "Remote code execution when compiling templates from untrusted sources."},
     ]},
    {"name": "Underscore.js", "url": _url_pattern("underscore"),
     "banner": re.compile(r"Underscore\.js " + VERSION),
     "advisories": [
         {"introduced": "1.3.2", "fixed": "1.12.1", "severity": "high", "id": "CVE-2021-23358",
          "summary": "Arbitrary code execution through the template function."},
     ]},
    {"name": "Moment.js", "url": _url_pattern("moment"),
     "banner": re.compile(r"//! version : " + VERSION),
     "advisories": [
         {"introduced": "2.18.0", "fixed": "2.29.4", "severity": "high", "id": "CVE-2022-31129",
          "summary": "Regular expression denial of service when parsing user-supplied RFC 2822 dates."},
     ]},
]


def parse_version(value: str) -> Tuple[int, ...]:
    return tuple(int(p) for p in value.split("."))


def affected(version: str, advisory: Dict[str, str]) -> bool:
    v = parse_version(version)
    return parse_version(advisory["introduced"]) <= v < parse_version(advisory["fixed"])


def versions_in_url(url: str) -> List[Tuple[str, str]]:
    """(library, version) pairs readable from a script URL's path."""
    path = urlsplit(url).path
    hits = []
    for lib in LIBRARIES:
        m = lib["url"].search(path)
        if m:
            hits.append((lib["name"], m.group(1)))
    return hits


def versions_in_banner(body: str) -> List[Tuple[str, str]]:
    """(library, version) pairs from license banners in a script body."""
    hits = []
    for lib in LIBRARIES:
        if lib["banner"] is None:
            continue
        m = lib["banner"].search(body or "")
        if m:
            hits.append((lib["name"], m.group(1)))
    return hits


def _advisories(name: str) -> List[Dict[str, str]]:
    for lib in LIBRARIES:
        if lib["name"] == name:
            return lib["advisories"]
    return []


class JsLibrariesCheck(BaseCheck):

    @property
    def name(self) -> str:
        return "Client-side libraries"

    @property
    def category(self) -> str:
        return "js_libraries"

    def execute(self, ctx: ScanContext) -> List[FindingDraft]:
        crawl = crawl_site(ctx, reserve=self.probe_reserve_seconds * 2)

        script_urls: List[str] = []
        for page in crawl.pages:
            for src in extract_script_urls(page.body, page.url):
                if src not in script_urls:
                    script_urls.append(src)

        # (library, version) -> first script URL it was seen in
        detected: Dict[Tuple[str, str], str] = {}
        for src in script_urls:
            for hit in versions_in_url(src):
                detected.setdefault(hit, src)

        same_site = [u for u in script_urls if is_same_site(u, ctx.domain)]
        for src, body in fetch_scripts(ctx, same_site, MAX_SCRIPT_FETCHES, reserve=self.probe_reserve_seconds):
            for hit in versions_in_banner(body):
                detected.setdefault(hit, src)

        drafts: List[FindingDraft] = []
        for (name, version), src in detected.items():
            for advisory in _advisories(name):
                if affected(version, advisory):
                    drafts.append(self._vulnerable(name, version, src, advisory))

        if detected:
            drafts.append(FindingDraft(
                template_id="js-library-inventory",
                title="Client-side libraries identified",
                severity="info",
                description="Versions read from script URLs and license banners: "
                            + ", ".join(f"{n} {v}" for n, v in sorted(detected)) + ".",
                recommendation="Keep third-party scripts on supported releases and track them in dependency updates.",
                affected_url=crawl.pages[0].url,
                details={
                    "libraries": [{"name": n, "version": v, "source": s} for (n, v), s in sorted(detected.items())],
                    "pages": crawl.urls,
                    "scripts": len(script_urls),
                },
            ))

        if crawl.budget_exhausted:
            drafts.append(self.budget_exhausted_finding(ctx, len(crawl.pages), MAX_CRAWL_PAGES))

        logger.debug(f"{ctx.domain}: {len(script_urls)} script(s), {len(detected)} versioned library hit(s)")
        return drafts

    def _vulnerable(self, name: str, version: str, src: str, advisory: Dict[str, str]) -> FindingDraft:
        eol = advisory["id"] == "End-of-life"
        return FindingDraft(
            template_id="js-library-eol" if eol else "js-library-vulnerable",
            title=f"{name} {version} is {'end-of-life' if eol else 'outdated and vulnerable'}",
            severity=advisory["severity"],
            description=f"{name} {version} is loaded from {src}. {advisory['id']}: {advisory['summary']}",
            recommendation=(
                f"Migrate away from {name}; it no longer receives security fixes." if eol
                else f"Upgrade {name} to {advisory['fixed']} or later."
            ),
            affected_url=src,
            cwe="CWE-1104" if eol else "CWE-1395",
            details={"library": name, "version": version, "advisory": advisory["id"], "fixed": advisory["fixed"]},
        )
