"""Overall verdict from dimension ratings."""
from __future__ import annotations

from typing import Iterable

from .types import DimensionScore, Finding, Severity, Verdict


def decide_verdict(scores: Iterable[DimensionScore]) -> Verdict:
    ratings = [score.rating for score in scores]
    if any(rating is Severity.fail for rating in ratings):
        return Verdict.needs_revision
    if any(rating is Severity.warn for rating in ratings):
        return Verdict.approved_with_changes
    return Verdict.approved


def requires_full_revision(verdict: Verdict) -> bool:
    return verdict is Verdict.needs_revision


def surgical_changes(findings: Iterable[Finding]) -> tuple[Finding, ...]:
    """WARN findings that carry a mechanical edit, in report order."""
    return tuple(finding for finding in findings if finding.severity is Severity.warn and finding.is_surgical)


__all__ = ["decide_verdict", "requires_full_revision", "surgical_changes"]
