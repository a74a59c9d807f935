import dataclasses

import pytest

from services.plan_verifier.app.domain.indexer import CodebaseIndex, build_index
from services.plan_verifier.app.domain.matcher import EvidenceMatcher, introduced_names
from services.plan_verifier.app.domain.naming import classify_style, split_words
from services.plan_verifier.app.domain.plan_parser import parse_plan
from services.plan_verifier.app.domain.types import (
    Claim,
    ClaimKind,
    Dimension,
    Evidence,
    Severity,
    SymbolKind,
)


def _evidence(*names: str) -> tuple[Evidence, ...]:
    return tuple(
        Evidence(path=f"src/mod_{n}.ts", snippet=name, style=classify_style(name), words=split_words(name), line=1)
        for n, name in enumerate(names)
    )


def _naming_claim(text: str, **overrides) -> Claim:
    values = dict(kind=ClaimKind.naming, text=text, task_ordinal=1, line=3, step_ordinal=1, to_be_created=True,
                  symbol_kind=SymbolKind.function)
    values.update(overrides)
    return Claim(**values)


@pytest.fixture
def empty_matcher() -> EvidenceMatcher:
    return EvidenceMatcher(CodebaseIndex(root="/empty", files=()))


def test_three_agreeing_precedents_pass(empty_matcher):
    finding = empty_matcher.judge(_naming_claim("formatDate"), _evidence("parseDate", "loadUser", "sendMail"))

    assert finding.severity is Severity.ok
    assert finding.code == "naming-consistent"
    assert finding.dimension is Dimension.pattern_alignment
    assert len(finding.evidence) == 3


def test_fewer_than_three_agreeing_precedents_warn(empty_matcher):
    finding = empty_matcher.judge(_naming_claim("formatDate"), _evidence("parseDate", "loadUser"))

    assert finding.severity is Severity.warn
    assert finding.code == "insufficient-precedent"


def test_no_precedent_warns(empty_matcher):
    finding = empty_matcher.judge(_naming_claim("formatDate"), ())

    assert finding.severity is Severity.warn
    assert finding.code == "insufficient-precedent"


def test_even_split_never_passes(empty_matcher):
    finding = empty_matcher.judge(
        _naming_claim("formatDate"), _evidence("parseDate", "loadUser", "send_mail", "load_order")
    )

    assert finding.severity is Severity.warn
    assert finding.code == "naming-tie"


def test_contradicting_majority_fails_with_restyled_name(empty_matcher):
    finding = empty_matcher.judge(
        _naming_claim("formatDate"), _evidence("parse_date", "send_mail", "load_order", "loadUser")
    )

    assert finding.severity is Severity.fail
    assert finding.code == "naming-contradiction"
    assert finding.recommendation == "use snake_case, e.g. `format_date`"
    assert (finding.span, finding.replacement) == ("formatDate", "format_date")


def test_mixed_style_evidence_is_ignored(empty_matcher):
    finding = empty_matcher.judge(
        _naming_claim("formatDate"), _evidence("parseDate", "loadUser", "sendMail", "Bad_name", "Other_Name")
    )

    assert finding.severity is Severity.ok


def test_kebab_file_name_contradiction(services_codebase):
    index = build_index(services_codebase)
    claim = Claim(kind=ClaimKind.path, text="services/UserAuth.service.ts", task_ordinal=1, line=5, step_ordinal=1,
                  to_be_created=True)

    finding = EvidenceMatcher(index).review(claim)

    assert finding.severity is Severity.fail
    assert finding.code == "naming-contradiction"
    assert finding.recommendation == "use kebab-case, e.g. `user-auth.service.ts`"
    assert finding.replacement == "services/user-auth.service.ts"
    assert {item.path for item in finding.evidence} == {
        "services/user.service.ts",
        "services/payment.service.ts",
        "services/notification.service.ts",
    }


def test_missing_path_fails_even_with_agreeing_precedent(make_tree):
    index = build_index(
        make_tree("widgets", {f"src/widgets/{name}.py": "" for name in ("chart", "grid", "legend", "axis", "tooltip")})
    )
    claim = Claim(kind=ClaimKind.path, text="src/widgets/table.py", task_ordinal=1, line=4)

    finding = EvidenceMatcher(index).review(claim)

    assert len(finding.evidence) == 5
    assert finding.severity is Severity.fail
    assert finding.code == "missing-path"


def test_existing_path_passes(python_codebase):
    claim = Claim(kind=ClaimKind.path, text="src/user_store.py", task_ordinal=1, line=4)

    finding = EvidenceMatcher(build_index(python_codebase)).review(claim)

    assert finding.severity is Severity.ok
    assert finding.code == "path-exists"
    assert [item.path for item in finding.evidence] == ["src/user_store.py"]


def test_existing_path_passes_whatever_the_evidence(python_codebase):
    claim = Claim(kind=ClaimKind.path, text="src/user_store.py", task_ordinal=1, line=4)
    split = (
        Evidence(path="src/user_store.py", snippet="user_store.py", style=classify_style("user_store"), words=("user", "store")),
        Evidence(path="src/OrderStore.py", snippet="OrderStore.py", style=classify_style("OrderStore"), words=("order", "store")),
    )

    finding = EvidenceMatcher(build_index(python_codebase)).judge(claim, split)

    assert finding.severity is Severity.ok
    assert finding.code == "path-exists"


def test_missing_path_suggests_existing_spelling(python_codebase):
    claim = Claim(kind=ClaimKind.path, text="src/userStore.py", task_ordinal=1, line=4)

    finding = EvidenceMatcher(build_index(python_codebase)).review(claim)

    assert finding.severity is Severity.fail
    assert finding.recommendation == "did you mean `src/user_store.py`?"
    assert finding.replacement == "src/user_store.py"


def test_partial_index_downgrades_passes(python_codebase):
    index = dataclasses.replace(build_index(python_codebase), partial=True)
    claim = Claim(kind=ClaimKind.path, text="src/user_store.py", task_ordinal=1, line=4)

    finding = EvidenceMatcher(index).review(claim)

    assert finding.severity is Severity.warn
    assert finding.issue.endswith("(codebase index is partial)")


def test_reference_variant_offers_surgical_edit(python_codebase):
    claim = Claim(kind=ClaimKind.reference, text="getUser", task_ordinal=1, line=5, step_ordinal=1)

    finding = EvidenceMatcher(build_index(python_codebase)).review(claim)

    assert finding.severity is Severity.warn
    assert finding.code == "reference-variant"
    assert finding.dimension is Dimension.execution_risk
    assert (finding.span, finding.replacement) == ("getUser", "get_user")
    assert finding.is_surgical


def test_exact_reference_passes(python_codebase):
    claim = Claim(kind=ClaimKind.reference, text="UserStore.get_user()", task_ordinal=1, line=5)

    finding = EvidenceMatcher(build_index(python_codebase)).review(claim)

    assert finding.severity is Severity.ok
    assert finding.code == "reference-found"


def test_unknown_reference_warns(python_codebase):
    claim = Claim(kind=ClaimKind.reference, text="renderInvoice", task_ordinal=1, line=5)

    finding = EvidenceMatcher(build_index(python_codebase)).review(claim)

    assert finding.severity is Severity.warn
    assert finding.code == "unresolved-reference"


def test_references_to_names_the_plan_introduces():
    plan = parse_plan(
        "## Task 1: Use it\n- Call `formatDate` from the view\n\n"
        "## Task 2: Helper\n- Create `src/date.ts` with a helper named `formatDate`\n- Call `formatDate` in tests\n"
    )
    introduced = introduced_names(plan)
    assert introduced["formatDate"] == (2,)
    assert introduced["date.ts"] == (2,)

    matcher = EvidenceMatcher(CodebaseIndex(root="/empty", files=()), introduced=introduced,
                              task_names={1: "Task 1", 2: "Task 2"})
    early, late = [matcher.review(claim) for claim in plan.claims if claim.kind is ClaimKind.reference]

    assert early.severity is Severity.fail
    assert early.code == "used-before-introduced"
    assert early.dimension is Dimension.dependency_ordering
    assert late.severity is Severity.ok
    assert late.code == "introduced-by-plan"


def test_existing_config_key_passes(python_codebase):
    claim = Claim(kind=ClaimKind.structural, text="cache.ttl", task_ordinal=1, line=6, symbol_kind=SymbolKind.config_key)

    finding = EvidenceMatcher(build_index(python_codebase)).review(claim)

    assert finding.severity is Severity.ok
    assert finding.code == "config-key-found"


def test_manual_review_claims_warn(empty_matcher):
    claim = Claim(kind=ClaimKind.structural, text="Depends on: the auth work", task_ordinal=2, line=9,
                  needs_manual_review=True)

    finding = empty_matcher.review(claim)

    assert finding.severity is Severity.warn
    assert finding.code == "manual-review"
    assert finding.dimension is Dimension.execution_risk
