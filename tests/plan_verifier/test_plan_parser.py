import pytest

from services.plan_verifier.app.domain.plan_parser import load_plan, parse_plan
from services.plan_verifier.app.domain.types import ClaimKind, SymbolKind
from services.plan_verifier.app.errors import PlanParseError

SUPERPOWERS_PLAN = """\
# Login Implementation Plan

### Task 1: Login endpoint

**Files:**
- Create: `src/auth/login.py`
- Modify: `src/app.py:10-20`
- Test: `tests/auth/test_login.py`

**Step 1: Write the failing test**

```python
def test_login_rejects_bad_password():
    assert False
```

**Step 2: Run test to verify it fails**

Run: `pytest tests/auth/test_login.py -v`
Expected: FAIL

### Task 2: Verification

**Step 1: Run the whole suite**

```bash
pytest -q
```
"""


def _claims(plan, kind):
    return [claim for claim in plan.claims if claim.kind is kind]


def test_task_headings_steps_and_verification(kebab_plan):
    plan = parse_plan(kebab_plan, source_path="plan.md")

    assert plan.title == "Auth plan"
    assert [task.title for task in plan.tasks] == ["Add auth service", "Final verification"]
    assert [task.display_name for task in plan.tasks] == ["Task 1", "Task 2"]
    first = plan.tasks[0]
    assert [step.text for step in first.steps] == [
        "Create `services/UserAuth.service.ts` with the login flow",
        "Run `npm test` to verify",
    ]
    assert first.steps[0].line == 5
    assert first.steps[1].verification == "npm test"

    (path,) = _claims(plan, ClaimKind.path)
    assert path.text == "services/UserAuth.service.ts"
    assert path.to_be_created
    assert (path.task_ordinal, path.step_ordinal, path.line) == (1, 1, 5)


def test_digest_is_stable(kebab_plan):
    assert parse_plan(kebab_plan).digest == parse_plan(kebab_plan).digest
    assert parse_plan(kebab_plan).digest != parse_plan(kebab_plan + "\n- Extra step\n").digest


def test_files_block_bold_steps_and_fences():
    plan = parse_plan(SUPERPOWERS_PLAN)

    assert plan.title == "Login Implementation Plan"
    first, second = plan.tasks
    assert [step.text for step in first.steps] == ["Write the failing test", "Run test to verify it fails"]
    assert first.steps[1].verification == "pytest tests/auth/test_login.py -v"
    assert second.steps[0].verification == "pytest -q"

    paths = {claim.text: claim.to_be_created for claim in _claims(plan, ClaimKind.path)}
    assert paths == {
        "src/auth/login.py": True,
        "src/app.py": False,
        "tests/auth/test_login.py": True,
    }

    (declared,) = _claims(plan, ClaimKind.naming)
    assert declared.text == "test_login_rejects_bad_password"
    assert declared.symbol_kind is SymbolKind.function
    assert declared.to_be_created
    assert declared.scope == "src/auth/login.py"


def test_step_headings_nested_in_tasks_are_steps():
    plan = parse_plan(
        "# Plan\n\n## Task 1: Schema\n\n### Step 1: Add the column\n\n### Step 2: Backfill rows\n\n## Task 2: Verify\n\n- Run `pytest`\n"
    )

    assert len(plan.tasks) == 2
    assert [step.text for step in plan.tasks[0].steps] == ["Add the column", "Backfill rows"]


def test_shallowest_heading_level_without_task_labels():
    plan = parse_plan("# Migration\n\n## Prepare schema\n- Add column\n\n## Backfill\n- Copy data\n")

    assert plan.title == "Migration"
    assert [task.title for task in plan.tasks] == ["Prepare schema", "Backfill"]
    assert [task.label for task in plan.tasks] == [None, None]


def test_list_without_headings_is_one_implicit_task():
    plan = parse_plan("- Add the route\n- Run `pytest`\n")

    (task,) = plan.tasks
    assert task.title == "General"
    assert [step.text for step in task.steps] == ["Add the route", "Run `pytest`"]
    assert plan.title is None


@pytest.mark.parametrize("text", ["", "Just a paragraph of prose.\nAnd another line.\n"])
def test_unstructured_text_is_rejected(text):
    with pytest.raises(PlanParseError):
        parse_plan(text)


def test_unreadable_plan_is_rejected(tmp_path):
    with pytest.raises(PlanParseError):
        load_plan(tmp_path / "missing.md")


def test_dependencies_are_parsed_or_flagged():
    plan = parse_plan(
        "## Task 1: A\n- Add a\n\n## Task 2: B\nDepends on: Task 1 and Task 3\n- Add b\n\n"
        "## Task 3: C\n**Depends on:** none\n- Add c\n\n## Task 4: D\nDepends on: the auth refactor\n- Add d\n"
    )

    assert [task.dependencies for task in plan.tasks] == [(), (1, 3), (), ()]
    (flagged,) = [claim for claim in plan.claims if claim.needs_manual_review]
    assert flagged.task_ordinal == 4
    assert "auth refactor" in flagged.text


def test_unbalanced_backticks_are_flagged_for_manual_review():
    plan = parse_plan("## Task 1: A\n- Edit the `config file\nThen update `other\n")

    flagged = [claim for claim in plan.claims if claim.needs_manual_review]
    assert [claim.line for claim in flagged] == [2, 3]
    assert all(claim.kind is ClaimKind.structural for claim in flagged)


def test_unclosed_fence_keeps_later_tasks_and_is_flagged():
    plan = parse_plan(
        "## Task 1: A\n- Add `a.py`\n```bash\nnpm test\n\n"
        "## Task 2: B\n- Add `b.py`\n\n"
        "## Task 3: Verify\n- Run `pytest`\n"
    )

    assert [task.title for task in plan.tasks] == ["A", "B", "Verify"]
    (flagged,) = [claim for claim in plan.claims if claim.needs_manual_review]
    assert (flagged.task_ordinal, flagged.line, flagged.text) == (1, 3, "```bash")
    assert [claim.text for claim in plan.tasks[1].claims] == ["b.py"]
    assert plan.tasks[2].steps[0].verification == "pytest"


def test_closed_fences_still_hide_their_contents():
    plan = parse_plan("## Task 1: A\n- Add `a.py`\n```\n## Not a task\n```\n\n## Task 2: B\n- Add `b.py`\n")

    assert [task.title for task in plan.tasks] == ["A", "B"]
    assert not any(claim.needs_manual_review for claim in plan.claims)


def test_claim_kinds_from_code_spans():
    plan = parse_plan(
        "## Task 1: Dates\n"
        "- Add a helper named `formatDate` in `src/utils/date.ts`\n"
        "- Call `loadConfig()` from the bootstrap code\n"
        "- Set `retry_limit` in the settings file\n"
        "- Add `cache.ttl: 300` to `config/app.yaml`\n"
        "- Update `src/legacy.py` (new)\n"
    )

    naming = _claims(plan, ClaimKind.naming)
    assert [(claim.text, claim.symbol_kind, claim.to_be_created) for claim in naming] == [
        ("formatDate", SymbolKind.function, True)
    ]
    assert naming[0].scope == "src/utils/date.ts"

    references = _claims(plan, ClaimKind.reference)
    assert [claim.text for claim in references] == ["loadConfig"]

    structural = _claims(plan, ClaimKind.structural)
    assert [(claim.text, claim.to_be_created) for claim in structural] == [("retry_limit", False), ("cache.ttl", True)]

    paths = {claim.text: claim.to_be_created for claim in _claims(plan, ClaimKind.path)}
    assert paths == {"src/utils/date.ts": False, "config/app.yaml": False, "src/legacy.py": True}


def test_bare_paths_in_prose_are_claims():
    plan = parse_plan("## Task 1: Docs\n- Update docs/setup.md with the new flag\n- Create scripts/seed.sh\n")

    paths = {claim.text: claim.to_be_created for claim in _claims(plan, ClaimKind.path)}
    assert paths == {"docs/setup.md": False, "scripts/seed.sh": True}


def test_commands_are_not_claims():
    plan = parse_plan("## Task 1: Build\n- Run `npm run build` and `git status`\n")

    assert plan.claims == ()
