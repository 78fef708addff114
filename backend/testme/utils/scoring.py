# File: testme/utils/scoring.py
# =============================================================================
# Security Score Calculator
# =============================================================================
# Single source of truth for score calculation. Used by the scan summary
# endpoint and the scan queue's completion log line.
#
# Scale (higher is better):
#   100     = no penalizing findings
#   90–99   = excellent
#   80–89   = good, some improvements possible
#   60–79   = several issues to fix
#   40–59   = significant weaknesses
#   < 40    = critical posture, needs immediate action
#
# Penalties: critical 20, high 10, medium 5, low 2, info 0. Clamped to 0–100.
# The same formula scores each catalog category on its own findings.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

SEVERITY_PENALTIES = {
    "critical": 20,
    "high": 10,
    "medium": 5,
    "low": 2,
    "info": 0,
}

SEVERITY_ORDER = ("critical", "high", "medium", "low", "info")


def _get(finding: Any, key: str) -> Any:
    """Findings arrive as ORM rows, FindingDrafts or plain dicts."""
    if isinstance(finding, dict):
        return finding.get(key)
    return getattr(finding, key, None)


def calc_security_score(
    critical: int = 0,
    high: int = 0,
    medium: int = 0,
    low: int = 0,
    info: int = 0,
) -> int:
    """
    clamp(100 − 20·critical − 10·high − 5·medium − 2·low, 0, 100).

    Info findings are accepted for call-site symmetry and never penalize.
    """
    penalty = (
        SEVERITY_PENALTIES["critical"] * max(critical, 0)
        + SEVERITY_PENALTIES["high"] * max(high, 0)
        + SEVERITY_PENALTIES["medium"] * max(medium, 0)
        + SEVERITY_PENALTIES["low"] * max(low, 0)
    )
    return max(0, min(100, 100 - penalty))


def count_by_severity(findings: Iterable[Any]) -> Dict[str, int]:
    counts = {sev: 0 for sev in SEVERITY_ORDER}
    for f in findings:
        sev = (_get(f, "severity") or "info").lower()
        if sev not in counts:
            sev = "info"
        counts[sev] += 1
    return counts


def security_grade(score: int) -> tuple[str, str]:
    """
    Convert a numeric security score to a letter grade and description.
    Returns: (grade, description)
    """
    if score >= 90:
        return "A", "Excellent security configuration"
    elif score >= 80:
        return "B", "Good, with some room for improvement"
    elif score >= 60:
        return "C", "Several issues that should be fixed"
    elif score >= 40:
        return "D", "Significant weaknesses, fix urgently"
    else:
        return "F", "Critical vulnerabilities, immediate remediation required"


@dataclass
class CategoryScore:
    category: str
    name: str
    assessed: bool
    score: Optional[int]
    findings: int = 0
    counts: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "name": self.name,
            "assessed": self.assessed,
            "score": self.score,
            "findings": self.findings,
            "counts": dict(self.counts),
        }


@dataclass
class ScoreSummary:
    total_findings: int
    counts_by_severity: Dict[str, int]
    category_scores: List[CategoryScore]
    overall_score: int
    grade: str
    grade_description: str
    complete: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalFindings": self.total_findings,
            "countsBySeverity": dict(self.counts_by_severity),
            "categoryScores": [c.to_dict() for c in self.category_scores],
            "overallScore": self.overall_score,
            "grade": self.grade,
            "gradeDescription": self.grade_description,
            "complete": self.complete,
            "summary": summarize(self),
        }


def score_findings(
    findings: Sequence[Any],
    steps: Optional[Sequence[Any]] = None,
    assessed: Optional[Iterable[str]] = None,
) -> ScoreSummary:
    """
    Reduce a finding set to per-category and overall scores.

    Pure and deterministic; safe on partial finding sets.

    Args:
        findings: anything with `severity` and `category`.
        steps:    catalog entries (`category`, `name`). Defaults to SCAN_STEPS.
        assessed: categories whose step has run. Categories outside this set
                  are reported with assessed=False and score=None instead of
                  a misleading 100. None means every category was assessed.
    """
    if steps is None:
        from testme.scanner.catalog import SCAN_STEPS
        steps = SCAN_STEPS

    assessed_set = None if assessed is None else set(assessed)

    counts = count_by_severity(findings)
    overall = calc_security_score(**counts)

    category_scores: List[CategoryScore] = []
    for step in steps:
        cat = _get(step, "category")
        cat_findings = [f for f in findings if _get(f, "category") == cat]
        cat_counts = count_by_severity(cat_findings)
        is_assessed = assessed_set is None or cat in assessed_set
        category_scores.append(CategoryScore(
            category=cat,
            name=_get(step, "name") or cat,
            assessed=is_assessed,
            score=calc_security_score(**cat_counts) if is_assessed else None,
            findings=len(cat_findings),
            counts=cat_counts,
        ))

    grade, grade_desc = security_grade(overall)
    complete = assessed_set is None or all(c.assessed for c in category_scores)

    return ScoreSummary(
        total_findings=len(findings),
        counts_by_severity=counts,
        category_scores=category_scores,
        overall_score=overall,
        grade=grade,
        grade_description=grade_desc,
        complete=complete,
    )


def summarize(summary: ScoreSummary) -> str:
    """Plain-language summary paragraph for reports and the scan detail view."""
    counts = summary.counts_by_severity
    score = summary.overall_score
    parts: List[str] = []

    if score >= 90:
        parts.append("The website shows an excellent security configuration.")
    elif score >= 80:
        parts.append("The website has a good security configuration with some room for improvement.")
    elif score >= 60:
        parts.append("The website has several security issues that should be fixed.")
    elif score >= 40:
        parts.append("The website has significant security weaknesses that need urgent attention.")
    else:
        parts.append("The website has critical security gaps that must be fixed immediately.")

    issues = [f"{counts[sev]} {sev}" for sev in SEVERITY_ORDER[:4] if counts.get(sev)]
    if issues:
        parts.append(f"Found {', '.join(issues)} severity issue(s).")
    else:
        parts.append("No notable issues were found.")

    if counts.get("info"):
        parts.append(f"There are {counts['info']} additional informational notes.")

    if counts.get("critical"):
        parts.append("Critical findings require immediate attention.")
    elif counts.get("high"):
        parts.append("High severity issues should be fixed soon.")

    if not summary.complete:
        parts.append("The scan has not finished; unassessed categories are not scored yet.")

    return " ".join(parts)
