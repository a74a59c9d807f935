from services.plan_verifier.app.domain.types import (
    Dimension,
    DimensionScore,
    Finding,
    Location,
    Severity,
    Verdict,
)
from services.plan_verifier.app.domain.verdict import decide_verdict, requires_full_revision, surgical_changes


def _scores(*ratings: Severity) -> list[DimensionScore]:
    return [DimensionScore(dimension, rating, 1) for dimension, rating in zip(Dimension, ratings)]


def test_verdict_follows_worst_rating():
    assert decide_verdict(_scores(Severity.ok, Severity.ok, Severity.ok)) is Verdict.approved
    assert decide_verdict(_scores(Severity.ok, Severity.warn, Severity.ok)) is Verdict.approved_with_changes
    assert decide_verdict(_scores(Severity.warn, Severity.fail, Severity.ok)) is Verdict.needs_revision


def test_only_needs_revision_requires_full_revision():
    assert requires_full_revision(Verdict.needs_revision)
    assert not requires_full_revision(Verdict.approved_with_changes)


def test_surgical_changes_are_warnings_with_an_edit():
    location = Location(task_ordinal=1, step_ordinal=1, line=5)
    editable = Finding(Dimension.execution_risk, Severity.warn, location, "variant", "reference-variant",
                       span="getUser", replacement="get_user")
    failing = Finding(Dimension.pattern_alignment, Severity.fail, location, "bad name", "naming-contradiction",
                      span="UserAuth.ts", replacement="user-auth.ts")
    no_edit = Finding(Dimension.completeness, Severity.warn, Location(task_ordinal=1), "missing", "no-verification")

    assert surgical_changes([editable, failing, no_edit]) == (editable,)
