# testme/scanner/checks/forms.py
"""
Forms and input exposure check.

Parses the forms on every crawled page. A form shared by several pages (a
layout newsletter box, a header login) is reported once, on the first page
it was seen. Nothing is ever submitted.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List
from urllib.parse import urljoin

from testme.scanner.base import BaseCheck, FindingDraft, ScanContext
from testme.scanner.crawler import MAX_CRAWL_PAGES, crawl_site

logger = logging.getLogger(__name__)

FORM_RE = re.compile(r"<form\b([^>]*)>(.*?)</form\s*>", re.IGNORECASE | re.DOTALL)
INPUT_RE = re.compile(r"<input\b([^>]*)>", re.IGNORECASE)
ATTR_RE = re.compile(r"""([a-zA-Z_:][-a-zA-Z0-9_:.]*)\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'>]+))""")

CSRF_FIELD_RE = re.compile(r"csrf|xsrf|_token|authenticity_token|__requestverificationtoken|nonce", re.IGNORECASE)


def parse_attrs(fragment: str) -> Dict[str, str]:
    attrs: Dict[str, str] = {}
    for m in ATTR_RE.finditer(fragment or ""):
        attrs[m.group(1).lower()] = next(g for g in m.groups()[1:] if g is not None)
    return attrs


@dataclass
class ParsedForm:
    action: str
    method: str
    inputs: List[Dict[str, str]] = field(default_factory=list)

    @property
    def has_password(self) -> bool:
        return any(i.get("type", "").lower() == "password" for i in self.inputs)

    @property
    def has_csrf_token(self) -> bool:
        return any(
            i.get("type", "").lower() == "hidden" and CSRF_FIELD_RE.search(i.get("name", ""))
            for i in self.inputs
        )

    @property
    def signature(self) -> tuple:
        names = tuple(sorted(i.get("name", "") for i in self.inputs))
        return (self.action, self.method, names)


def parse_forms(html: str, page_url: str) -> List[ParsedForm]:
    forms: List[ParsedForm] = []
    for form_attrs, inner in FORM_RE.findall(html or ""):
        attrs = parse_attrs(form_attrs)
        action = urljoin(page_url, attrs.get("action") or page_url)
        forms.append(ParsedForm(
            action=action,
            method=(attrs.get("method") or "get").strip().lower(),
            inputs=[parse_attrs(i) for i in INPUT_RE.findall(inner)],
        ))
    return forms


class FormsCheck(BaseCheck):

    @property
    def name(self) -> str:
        return "Forms and input"

    @property
    def category(self) -> str:
        return "forms"

    def execute(self, ctx: ScanContext) -> List[FindingDraft]:
        crawl = crawl_site(ctx, reserve=self.probe_reserve_seconds)
        drafts: List[FindingDraft] = []
        seen = set()

        for page in crawl.pages:
            for idx, form in enumerate(parse_forms(page.body, page.url)):
                if form.signature in seen:
                    continue
                seen.add(form.signature)
                drafts.extend(self._evaluate(page, idx, form))

        if crawl.budget_exhausted:
            drafts.append(self.budget_exhausted_finding(ctx, len(crawl.pages), MAX_CRAWL_PAGES))
        return drafts

    def _evaluate(self, page, idx: int, form: ParsedForm) -> List[FindingDraft]:
        drafts: List[FindingDraft] = []
        evidence = {"form": idx, "action": form.action, "method": form.method, "page": page.url}

        if form.action.lower().startswith("http://"):
            drafts.append(FindingDraft(
                template_id="form-insecure-action",
                title="Form submits over unencrypted HTTP",
                severity="high",
                description=f"A form posts its data to {form.action} in clear text.",
                recommendation="Point form actions at HTTPS URLs.",
                affected_url=page.url,
                cwe="CWE-319",
                details=evidence,
            ))

        if form.has_password and not page.is_https:
            drafts.append(FindingDraft(
                template_id="password-on-http-page",
                title="Password field on a non-HTTPS page",
                severity="high",
                description="A login form is served over plain HTTP; credentials can be intercepted or the form tampered with.",
                recommendation="Serve every page with credential inputs over HTTPS only.",
                affected_url=page.url,
                cwe="CWE-523",
                details=evidence,
            ))

        if form.has_password and form.method == "get":
            drafts.append(FindingDraft(
                template_id="password-via-get",
                title="Credentials submitted with GET",
                severity="medium",
                description="A form with a password field uses method GET, so the password ends up in URLs, logs and browser history.",
                recommendation="Use method=\"post\" for forms carrying credentials.",
                affected_url=page.url,
                cwe="CWE-598",
                details=evidence,
            ))

        if form.method == "post" and not form.has_csrf_token:
            drafts.append(FindingDraft(
                template_id="form-no-csrf-token",
                title="POST form without anti-CSRF token",
                severity="medium",
                description=f"The POST form targeting {form.action} has no hidden anti-CSRF token field.",
                recommendation="Add a per-session CSRF token to state-changing forms and validate it server-side; SameSite cookies help as a second layer.",
                affected_url=page.url,
                cwe="CWE-352",
                details=evidence,
            ))

        for inp in form.inputs:
            if inp.get("type", "").lower() == "password" and "autocomplete" not in inp:
                drafts.append(FindingDraft(
                    template_id="password-no-autocomplete",
                    title="Password field without autocomplete hint",
                    severity="low",
                    description=(
                        "A password input does not declare autocomplete (current-password / "
                        "new-password), which hampers password managers and can lead to credentials "
                        "being cached in unexpected places."
                    ),
                    recommendation="Set autocomplete=\"current-password\" or \"new-password\" on password inputs.",
                    affected_url=page.url,
                    cwe="CWE-522",
                    details={**evidence, "input": inp.get("name")},
                ))

        return drafts
