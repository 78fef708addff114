"""ScoringEngine: penalty formula, clamping, category profiles, grades."""
import itertools

import pytest

from testme.scanner.catalog import SCAN_STEPS
from testme.utils.scoring import (
    calc_security_score,
    count_by_severity,
    score_findings,
    security_grade,
)


def _findings(**counts):
    out = []
    for sev, n in counts.items():
        out.extend({"severity": sev, "category": "headers"} for _ in range(n))
    return out


def test_empty_finding_set_scores_100():
    summary = score_findings([])
    assert summary.overall_score == 100
    assert summary.total_findings == 0
    assert all(c.score == 100 for c in summary.category_scores)


def test_critical_and_high_example():
    summary = score_findings(_findings(critical=1, high=2))
    assert summary.overall_score == 60
    assert summary.counts_by_severity["critical"] == 1
    assert summary.counts_by_severity["high"] == 2


def test_score_never_negative():
    assert calc_security_score(critical=10) == 0
    assert score_findings(_findings(critical=3, high=5, medium=4)).overall_score == 0


def test_info_findings_never_change_the_score():
    base = score_findings(_findings(medium=2, low=1)).overall_score
    with_info = score_findings(_findings(medium=2, low=1, info=7)).overall_score
    assert base == with_info == 88


@pytest.mark.parametrize("c,h,m,l", list(itertools.product(range(3), repeat=4)))
def test_formula_is_clamped_and_monotonic(c, h, m, l):
    score = calc_security_score(critical=c, high=h, medium=m, low=l)
    assert score == max(0, min(100, 100 - 20 * c - 10 * h - 5 * m - 2 * l))
    assert 0 <= score <= 100
    assert calc_security_score(critical=c + 1, high=h, medium=m, low=l) <= score
    assert calc_security_score(critical=c, high=h + 1, medium=m, low=l) <= score
    assert calc_security_score(critical=c, high=h, medium=m + 1, low=l) <= score
    assert calc_security_score(critical=c, high=h, medium=m, low=l + 1) <= score


def test_unknown_severity_is_counted_as_info():
    counts = count_by_severity([{"severity": "weird"}, {"severity": None}])
    assert counts["info"] == 2


def test_category_scores_follow_catalog_order():
    findings = [
        {"severity": "high", "category": "transport"},
        {"severity": "low", "category": "cookies"},
        {"severity": "low", "category": "cookies"},
    ]
    summary = score_findings(findings)
    cats = [c.category for c in summary.category_scores]
    assert cats == [s.category for s in SCAN_STEPS]

    by_cat = {c.category: c for c in summary.category_scores}
    assert by_cat["transport"].score == 90
    assert by_cat["cookies"].score == 96
    assert by_cat["cookies"].findings == 2
    assert by_cat["headers"].score == 100


def test_unassessed_categories_are_not_scored_100():
    summary = score_findings(
        [{"severity": "medium", "category": "transport"}],
        assessed=["transport", "headers"],
    )
    by_cat = {c.category: c for c in summary.category_scores}
    assert by_cat["transport"].assessed is True
    assert by_cat["transport"].score == 95
    assert by_cat["headers"].score == 100
    assert by_cat["email"].assessed is False
    assert by_cat["email"].score is None
    assert summary.complete is False


def test_summary_dict_is_camel_case():
    data = score_findings(_findings(high=1)).to_dict()
    assert data["overallScore"] == 90
    assert data["grade"] == "A"
    assert data["countsBySeverity"]["high"] == 1
    assert isinstance(data["summary"], str) and data["summary"]
    assert {"category", "name", "score", "assessed", "findings", "counts"} <= set(data["categoryScores"][0])


@pytest.mark.parametrize("score,grade", [
    (100, "A"), (90, "A"), (89, "B"), (80, "B"), (79, "C"), (60, "C"), (59, "D"), (40, "D"), (39, "F"), (0, "F"),
])
def test_grade_boundaries(score, grade):
    assert security_grade(score)[0] == grade
