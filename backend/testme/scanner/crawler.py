# testme/scanner/crawler.py
"""
Bounded same-site crawler.

Starts from the homepage fetched through the ScanContext and follows <a href>
links breadth-first, staying on the scanned domain (and its www. twin).
Only HTML pages that answered below 400 are returned. The crawl stops at
max_pages, or earlier when the step budget runs low, so the calling check
keeps time for its own probes.

Used by the information disclosure, forms and client-side library checks.
"""

from __future__ import annotations

import logging
import re
from collections import deque
from dataclasses import dataclass, field
from typing import List, Set, Tuple
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit

from testme.scanner.base import PROBE_ERRORS, ScanContext
from testme.scanner.engines.http_engine import ProbeResponse

logger = logging.getLogger(__name__)

MAX_CRAWL_PAGES = 15

LINK_RE = re.compile(r"<a\b[^>]*?\bhref\s*=\s*[\"']([^\"']+)[\"']", re.IGNORECASE)
SCRIPT_SRC_RE = re.compile(r"<script\b[^>]*?\bsrc\s*=\s*[\"']([^\"']+)[\"']", re.IGNORECASE)

SKIP_EXTENSIONS = {
    "pdf", "jpg", "jpeg", "png", "gif", "svg", "webp", "ico", "css", "js",
    "zip", "gz", "mp3", "mp4", "woff", "woff2", "xml", "json",
}


@dataclass
class CrawlResult:
    pages: List[ProbeResponse] = field(default_factory=list)
    failed: int = 0
    budget_exhausted: bool = False

    @property
    def urls(self) -> List[str]:
        return [p.url for p in self.pages]


def site_hosts(domain: str) -> Set[str]:
    domain = domain.lower()
    bare = domain[4:] if domain.startswith("www.") else domain
    return {bare, f"www.{bare}"}


def normalize_url(url: str) -> str:
    """Scheme-less, fragment-less, trailing-slash-less key with sorted query."""
    parts = urlsplit(url)
    path = parts.path.rstrip("/")
    key = f"{(parts.hostname or '').lower()}{path}"
    if parts.query:
        key += "?" + urlencode(sorted(parse_qsl(parts.query, keep_blank_values=True)))
    return key


def _crawlable(url: str, hosts: Set[str]) -> bool:
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https"):
        return False
    if (parts.hostname or "").lower() not in hosts:
        return False
    last = parts.path.rsplit("/", 1)[-1]
    ext = last.rsplit(".", 1)[-1].lower() if "." in last else ""
    return ext not in SKIP_EXTENSIONS


def extract_links(html: str, page_url: str, hosts: Set[str]) -> List[str]:
    links: List[str] = []
    for href in LINK_RE.findall(html or ""):
        href = href.strip()
        if not href or href.startswith(("#", "mailto:", "tel:", "javascript:")):
            continue
        absolute = urljoin(page_url, href).split("#", 1)[0]
        if _crawlable(absolute, hosts):
            links.append(absolute)
    return links


def extract_script_urls(html: str, page_url: str) -> List[str]:
    """Absolute URLs of every <script src>, in document order, deduplicated."""
    seen: Set[str] = set()
    urls: List[str] = []
    for src in SCRIPT_SRC_RE.findall(html or ""):
        absolute = urljoin(page_url, src.strip())
        if absolute not in seen:
            seen.add(absolute)
            urls.append(absolute)
    return urls


def is_same_site(url: str, domain: str) -> bool:
    return (urlsplit(url).hostname or "").lower() in site_hosts(domain)


def _is_html(resp) -> bool:
    content_type = (resp.header("content-type") or "").lower()
    return not content_type or "html" in content_type


def crawl_site(ctx: ScanContext, max_pages: int = MAX_CRAWL_PAGES, reserve: float = 2.0) -> CrawlResult:
    """
    Crawl the scanned site. The homepage is always the first page; a failing
    homepage raises the probe error like ScanContext.homepage() does.
    """
    home = ctx.homepage()
    hosts = site_hosts(ctx.domain)
    result = CrawlResult(pages=[home])

    seen = {normalize_url(home.url), normalize_url(ctx.https_url)}
    queue = deque()
    for link in extract_links(home.body, home.url, hosts):
        key = normalize_url(link)
        if key not in seen:
            seen.add(key)
            queue.append(link)

    while queue and len(result.pages) < max_pages:
        if ctx.budget_exhausted(reserve):
            result.budget_exhausted = True
            logger.info(f"Crawl of {ctx.domain} stopped by step budget after {len(result.pages)} page(s)")
            break

        url = queue.popleft()
        try:
            resp = ctx.http.get(url)
        except PROBE_ERRORS as e:
            result.failed += 1
            logger.debug(f"Crawl: {url} failed: {e}")
            continue

        if resp.status >= 400 or not _is_html(resp):
            continue
        if not is_same_site(resp.url, ctx.domain):
            # redirected off-site
            continue

        result.pages.append(resp)
        for link in extract_links(resp.body, resp.url, hosts):
            key = normalize_url(link)
            if key not in seen:
                seen.add(key)
                queue.append(link)

    logger.debug(f"Crawl of {ctx.domain}: {len(result.pages)} page(s), {result.failed} failed")
    return result


def fetch_scripts(
    ctx: ScanContext,
    urls: List[str],
    limit: int,
    reserve: float = 2.0,
) -> List[Tuple[str, str]]:
    """
    GET up to `limit` script URLs; returns (url, body) pairs for 200 answers.
    Probe failures are skipped.
    """
    fetched: List[Tuple[str, str]] = []
    for url in urls[:limit]:
        if ctx.budget_exhausted(reserve):
            break
        try:
            resp = ctx.http.get(url, headers={"Accept": "*/*"})
        except PROBE_ERRORS as e:
            logger.debug(f"Script fetch failed: {url}: {e}")
            continue
        if resp.status == 200 and resp.body:
            fetched.append((url, resp.body))
    return fetched
