# testme/scanner/base.py
"""
Base classes for the step-wise check pipeline.

Architecture:
    StepExecutor → CheckCatalog entry → Check.run(ctx) → FindingDrafts → Finding rows

Engines (scanner/engines/) collect raw facts: HTTP responses, TLS handshakes,
DNS records. They never classify severity.

Checks (scanner/checks/) call engines through the ScanContext, interpret the
result and emit FindingDrafts with severity and remediation guidance. One
check covers exactly one catalog category.

Error classes:
  - Probe errors (PROBE_ERRORS: timeouts, refused connections, DNS failures,
    TLS handshake errors, ProbeError) are recovered inside the check and
    recorded as an info finding. The scan continues.
  - Anything else escapes Check.run() and is treated by the executor as a
    fatal step error that fails the scan.
"""

from __future__ import annotations

import logging
import ssl
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import dns.exception
import requests

logger = logging.getLogger(__name__)


class ProbeError(Exception):
    """A single network probe failed (timeout, refused, malformed response)."""


# Failures a check may recover from locally
PROBE_ERRORS = (
    ProbeError,
    requests.RequestException,
    dns.exception.DNSException,
    ssl.SSLError,
    OSError,
)


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class FindingDraft:
    """
    A finding produced by a check, ready to be persisted.

    Fields:
        template_id:    Stable key for the kind of issue, e.g. "hsts-missing".
        title:          Human-readable title shown in the report.
        severity:       One of: critical, high, medium, low, info.
        description:    What was found.
        recommendation: How to fix it.
        category:       Catalog category. Filled in by Check.run() if empty.
        affected_url:   URL the evidence was observed on.
        cwe:            Optional CWE reference (e.g., "CWE-319").
        details:        Evidence dict, stored as Finding.details_json.
    """
    template_id: str
    title: str
    severity: str
    description: str
    recommendation: str = ""
    category: str = ""
    affected_url: Optional[str] = None
    cwe: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CheckResult:
    """Output of one check run. `partial` is set when the step budget ran out."""
    check_name: str
    category: str
    findings: List[FindingDraft] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    partial: bool = False
    duration_seconds: float = 0.0


@dataclass
class ScanContext:
    """
    Everything a check needs for one step.

    Built fresh by the executor on every invocation; nothing on it survives
    between steps. Probe clients are injected so checks never construct
    network clients themselves.
    """
    domain: str
    scan_id: Optional[int] = None
    step_index: Optional[int] = None

    # probe clients (scanner/engines/)
    http: Any = None
    tls: Any = None
    dns: Any = None

    # wall-clock budget for the whole step
    budget_seconds: float = 45.0
    started_at: float = field(default_factory=time.monotonic)

    # per-step memo for the homepage fetch; several checks only need "/"
    _homepage: Any = field(default=None, repr=False)

    @property
    def https_url(self) -> str:
        return f"https://{self.domain}/"

    def elapsed(self) -> float:
        return time.monotonic() - self.started_at

    def budget_left(self) -> float:
        return max(0.0, self.budget_seconds - self.elapsed())

    def budget_exhausted(self, reserve: float = 0.0) -> bool:
        return self.budget_left() <= reserve

    def homepage(self):
        """
        Fetch the site root once per step (https, falling back to http).
        Raises a probe error if neither scheme answers.
        """
        if self._homepage is None:
            self._homepage = self.http.fetch_site(self.domain, "/")
        return self._homepage


# ---------------------------------------------------------------------------
# Abstract base class
# ---------------------------------------------------------------------------

class BaseCheck(ABC):
    """
    Abstract base for catalog checks.

    To create a new check:
        1. Subclass BaseCheck
        2. Set `name` and `category`
        3. Implement `execute(ctx) -> List[FindingDraft]`
        4. Register it in scanner/checks/__init__.py and add a catalog step

    The base class handles automatically:
        - Timing (duration_seconds)
        - Probe error recovery (becomes an info finding)
        - Tagging drafts with the check's category
    """

    # time kept in reserve when deciding whether to issue one more probe
    probe_reserve_seconds: float = 2.0

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def category(self) -> str:
        ...

    def run(self, ctx: ScanContext) -> CheckResult:
        """
        Execute the check with timing and probe error recovery.

        DO NOT OVERRIDE THIS METHOD. Override `execute()` instead.
        Unclassified exceptions propagate to the caller.
        """
        result = CheckResult(check_name=self.name, category=self.category)
        start = time.monotonic()

        try:
            drafts = self.execute(ctx)
        except PROBE_ERRORS as e:
            logger.warning(f"Check '{self.name}' probe failed for {ctx.domain}: {type(e).__name__}: {e}")
            result.errors.append(f"{type(e).__name__}: {e}")
            drafts = [self.probe_failed(ctx, e)]
        finally:
            result.duration_seconds = round(time.monotonic() - start, 2)

        for d in drafts:
            if not d.category:
                d.category = self.category
            if d.template_id == "step-budget-exhausted":
                result.partial = True
        result.findings = drafts
        return result

    @abstractmethod
    def execute(self, ctx: ScanContext) -> List[FindingDraft]:
        """
        Run the category's probes and return finding drafts.

        Multi-probe checks should catch PROBE_ERRORS per probe and keep
        going, and stop issuing probes once ctx.budget_exhausted().
        """
        ...

    # -------------------------------------------------------------------
    # Helpers for subclasses
    # -------------------------------------------------------------------

    def probe_failed(self, ctx: ScanContext, exc: BaseException, what: str = "") -> FindingDraft:
        target = what or ctx.domain
        return FindingDraft(
            template_id=f"{self.category}-probe-failed",
            title=f"{self.name} could not be fully assessed",
            severity="info",
            description=(
                f"A network probe against {target} failed ({type(exc).__name__}: {exc}). "
                f"Results for this category may be incomplete."
            ),
            recommendation="Make sure the site is reachable from the internet and re-run the scan.",
            category=self.category,
            details={"error": f"{type(exc).__name__}: {exc}", "target": target},
        )

    def budget_exhausted_finding(self, ctx: ScanContext, checked: int, total: int) -> FindingDraft:
        return FindingDraft(
            template_id="step-budget-exhausted",
            title=f"{self.name}: partial coverage",
            severity="info",
            description=(
                f"The time budget for this step ran out after {checked} of {total} probes. "
                f"The remaining probes were skipped."
            ),
            recommendation="Slow responses limit coverage. Re-run the scan when the site responds faster.",
            category=self.category,
            details={"checked": checked, "total": total, "budget_seconds": ctx.budget_seconds},
        )
