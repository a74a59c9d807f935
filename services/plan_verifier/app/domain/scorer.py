"""Dimension scoring: claim findings plus direct structural checks."""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Iterable, Sequence

from ..config import ReviewTuning
from .indexer import normalize_path
from .naming import split_file_name, split_words
from .types import (
    DIMENSION_ORDER,
    ClaimKind,
    Dimension,
    DimensionScore,
    Finding,
    Location,
    Plan,
    Severity,
    Step,
    Task,
)

IMPERATIVE_VERBS = {
    "add", "append", "build", "bump", "cache", "call", "change", "check", "commit", "configure", "connect",
    "copy", "create", "define", "delete", "deploy", "disable", "document", "edit", "emit", "enable", "ensure",
    "export", "expose", "extract", "fetch", "fix", "generate", "handle", "hook", "implement", "import",
    "initialize", "inject", "insert", "install", "introduce", "load", "log", "merge", "migrate", "modify",
    "mount", "move", "parse", "persist", "push", "refactor", "register", "remove", "rename", "render",
    "replace", "return", "run", "save", "scaffold", "seed", "send", "serialize", "set", "split", "store",
    "test", "update", "validate", "verify", "wire", "write",
}
GENERIC_WORDS = {
    "app", "component", "components", "config", "controller", "helper", "helpers", "index", "init", "lib",
    "main", "model", "models", "module", "service", "services", "spec", "src", "test", "tests", "types",
    "util", "utils",
}
# Directories too generic to tie the files inside them to one concern.
SOURCE_ROOTS = GENERIC_WORDS | {"apps", "internal", "packages", "pkg", "source", "sources"}
DESTRUCTIVE_PATTERNS = (
    re.compile(r"\brm\s+-(?:[a-z]*r[a-z]*f|[a-z]*f[a-z]*r)[a-z]*\b", re.IGNORECASE),
    re.compile(r"\bgit\s+push\b[^\n]*\s(?:-f\b|--force\b)", re.IGNORECASE),
    re.compile(r"\bgit\s+reset\s+--hard\b", re.IGNORECASE),
    re.compile(r"\bgit\s+clean\s+-[a-z]*f", re.IGNORECASE),
    re.compile(r"\bdrop\s+(?:table|database|schema)\b", re.IGNORECASE),
    re.compile(r"\btruncate\s+table\b", re.IGNORECASE),
    re.compile(r"--no-verify\b"),
    re.compile(r"\bchmod\s+-R\s+777\b"),
)
FINAL_TASK_RE = re.compile(
    r"\b(?:verif\w*|validat\w*|test\w*|qa|check\w*|smoke|final|acceptance|e2e|end-to-end)\b", re.IGNORECASE
)
_LIST_PREFIX_RE = re.compile(r"^(\s*(?:[-*+]|\d+[.)])\s+(?:\[[ xX]\]\s+)?)(.*?)(\s*)$")
_SEGMENT_SPLIT_RE = re.compile(r"(,\s*(?:and\s+|then\s+)?|;\s*|\s+and\s+(?:then\s+)?|\s+then\s+)", re.IGNORECASE)
_CODE_SPAN_RE = re.compile(r"`[^`\n]*`")
_WORD_RE = re.compile(r"[A-Za-z][\w'-]*")


@dataclass(frozen=True)
class ScoringResult:
    findings: tuple[Finding, ...]
    scores: tuple[DimensionScore, ...]


def score_plan(plan: Plan, claim_findings: Iterable[Finding], tuning: ReviewTuning | None = None) -> ScoringResult:
    tuning = tuning or ReviewTuning()
    findings = list(claim_findings)
    for task in plan.tasks:
        findings.extend(check_atomicity(task, tuning.max_files_per_task))
        findings.extend(check_granularity(task, tuning.max_step_words))
        findings.extend(check_verification(task))
    findings.extend(check_dependencies(plan))
    findings.extend(check_final_verification(plan))
    findings.extend(check_destructive_commands(plan))
    ordered = tuple(sorted(findings, key=_finding_sort_key))
    return ScoringResult(findings=ordered, scores=aggregate(ordered))


def aggregate(findings: Iterable[Finding]) -> tuple[DimensionScore, ...]:
    """One score per dimension in fixed order; rating is the worst severity."""
    by_dimension: dict[Dimension, list[Finding]] = {dimension: [] for dimension in DIMENSION_ORDER}
    for finding in findings:
        by_dimension[finding.dimension].append(finding)
    scores = []
    for dimension in DIMENSION_ORDER:
        members = by_dimension[dimension]
        rating = max((finding.severity for finding in members), key=lambda severity: severity.rank, default=Severity.ok)
        scores.append(DimensionScore(dimension=dimension, rating=rating, finding_count=len(members)))
    return tuple(scores)


def check_atomicity(task: Task, max_files: int) -> list[Finding]:
    location = Location(task_ordinal=task.ordinal, line=task.line)
    if not task.steps:
        return [
            Finding(
                dimension=Dimension.task_atomicity,
                severity=Severity.warn,
                location=location,
                issue=f"{task.display_name} has no steps",
                code="empty-task",
                recommendation="list the concrete steps for this task or merge it into a neighbour",
            )
        ]
    files = _task_files(task)
    groups = concern_groups(files)
    if len(groups) <= max_files:
        return []
    severity = Severity.fail if len(groups) > 2 * max_files else Severity.warn
    listing = "; ".join(", ".join(f"`{path}`" for path in group) for group in groups)
    return [
        Finding(
            dimension=Dimension.task_atomicity,
            severity=severity,
            location=location,
            issue=f"{task.display_name} touches {len(groups)} unrelated groups of files (limit {max_files}): {listing}",
            code="too-many-concerns",
            recommendation=f"split {task.display_name} into {len(groups)} sub-tasks, one per group of related files",
        )
    ]


def concern_groups(paths: Sequence[str]) -> list[tuple[str, ...]]:
    """Group files that share a non-generic directory or a non-generic name word."""
    parent = list(range(len(paths)))

    def find(item: int) -> int:
        while parent[item] != item:
            parent[item] = parent[parent[item]]
            item = parent[item]
        return item

    def union(left: int, right: int) -> None:
        root_left, root_right = find(left), find(right)
        if root_left != root_right:
            parent[max(root_left, root_right)] = min(root_left, root_right)

    directories = [str(PurePosixPath(path).parent) for path in paths]
    words = [_concern_words(path) for path in paths]
    for left in range(len(paths)):
        for right in range(left + 1, len(paths)):
            same_directory = directories[left] == directories[right] and not _is_source_root(directories[left])
            if same_directory or words[left] & words[right]:
                union(left, right)

    grouped: dict[int, list[str]] = {}
    for position, path in enumerate(paths):
        grouped.setdefault(find(position), []).append(path)
    return [tuple(members) for _, members in sorted(grouped.items())]


def check_granularity(task: Task, max_words: int) -> list[Finding]:
    findings: list[Finding] = []
    for step in task.steps:
        location = Location(task_ordinal=task.ordinal, step_ordinal=step.ordinal, line=step.line)
        actions = [] if step.verification else split_actions(step.text)
        if sum(1 for action in actions if _starts_with_verb(action)) > 1:
            span, replacement = _split_list_item(step.raw_line)
            findings.append(
                Finding(
                    dimension=Dimension.step_granularity,
                    severity=Severity.warn,
                    location=location,
                    issue=f"step combines {len(actions)} actions: " + " / ".join(actions),
                    code="multi-action-step",
                    recommendation="split the step into one list item per action",
                    span=span,
                    replacement=replacement,
                )
            )
        word_count = len(_WORD_RE.findall(_CODE_SPAN_RE.sub("x", step.text)))
        if word_count > max_words:
            findings.append(
                Finding(
                    dimension=Dimension.step_granularity,
                    severity=Severity.warn,
                    location=location,
                    issue=f"step is {word_count} words long (limit {max_words})",
                    code="long-step",
                    recommendation="shorten the step or break it into smaller steps",
                )
            )
    return findings


def split_actions(text: str) -> list[str]:
    """Split step text before each clause that opens with an imperative verb."""
    masked = _mask_code(text)
    actions: list[str] = []
    start = 0
    for match in _SEGMENT_SPLIT_RE.finditer(masked):
        if _starts_with_verb(masked[match.end() :]):
            actions.append(text[start : match.start()])
            start = match.end()
    actions.append(text[start:])
    return [action.strip() for action in actions if action.strip()]


def check_dependencies(plan: Plan) -> list[Finding]:
    findings: list[Finding] = []
    lookup: dict[int, int] = {}
    for task in plan.tasks:
        lookup.setdefault(task.label if task.label is not None else task.ordinal, task.ordinal)

    edges: dict[int, list[int]] = {task.ordinal: [] for task in plan.tasks}
    for task in plan.tasks:
        location = Location(task_ordinal=task.ordinal, line=task.line)
        for declared in task.dependencies:
            target = lookup.get(declared)
            if target is None:
                findings.append(
                    _ordering_failure(location, f"{task.display_name} depends on Task {declared}, which does not exist", "unknown-dependency",
                                      f"remove the dependency or add Task {declared}")
                )
                continue
            edges[task.ordinal].append(target)
            if target == task.ordinal:
                findings.append(
                    _ordering_failure(location, f"{task.display_name} depends on itself", "self-dependency", "remove the self-reference")
                )
            elif target > task.ordinal:
                other = plan.task(target).display_name
                findings.append(
                    _ordering_failure(
                        location,
                        f"{task.display_name} depends on {other}, which comes later in the plan",
                        "forward-dependency",
                        f"move {other} before {task.display_name} or drop the dependency",
                    )
                )

    for cycle in find_cycles(edges):
        names = " -> ".join(plan.task(ordinal).display_name for ordinal in cycle + (cycle[0],))
        first = plan.task(min(cycle))
        findings.append(
            _ordering_failure(
                Location(task_ordinal=first.ordinal, line=first.line),
                f"dependency cycle: {names}",
                "dependency-cycle",
                "break the cycle so every task depends only on earlier tasks",
            )
        )
    return findings


def find_cycles(edges: dict[int, list[int]]) -> list[tuple[int, ...]]:
    """Distinct cycles (length > 1) reachable in the dependency graph, each rotated to start at its minimum."""
    found: set[tuple[int, ...]] = set()
    state: dict[int, int] = {}
    stack: list[int] = []

    def visit(node: int) -> None:
        state[node] = 1
        stack.append(node)
        for target in edges.get(node, ()):
            if target == node:
                continue
            if state.get(target) == 1:
                cycle = stack[stack.index(target) :]
                pivot = cycle.index(min(cycle))
                found.add(tuple(cycle[pivot:] + cycle[:pivot]))
            elif target not in state:
                visit(target)
        stack.pop()
        state[node] = 2

    for node in sorted(edges):
        if node not in state:
            visit(node)
    return sorted(found)


def check_verification(task: Task) -> list[Finding]:
    if task.verification_steps or not task.steps:
        return []
    return [
        Finding(
            dimension=Dimension.completeness,
            severity=Severity.warn,
            location=Location(task_ordinal=task.ordinal, line=task.line),
            issue=f"{task.display_name} has no verification step",
            code="no-verification",
            recommendation="add a step that runs the relevant tests, e.g. `Run: pytest path/to/test.py`",
        )
    ]


def check_final_verification(plan: Plan) -> list[Finding]:
    last = plan.tasks[-1]
    if FINAL_TASK_RE.search(last.title):
        return []
    return [
        Finding(
            dimension=Dimension.completeness,
            severity=Severity.warn,
            location=Location(),
            issue="the plan does not end with a verification task",
            code="no-final-verification",
            recommendation="add a final task that runs the full test suite and checks the result end to end",
        )
    ]


def check_destructive_commands(plan: Plan) -> list[Finding]:
    findings: list[Finding] = []
    for line_no, line in enumerate(plan.raw_text.splitlines(), start=1):
        pattern = next((pattern for pattern in DESTRUCTIVE_PATTERNS if pattern.search(line)), None)
        if pattern is None:
            continue
        task, step = _owner(plan, line_no)
        if task is None:
            continue
        findings.append(
            Finding(
                dimension=Dimension.execution_risk,
                severity=Severity.warn,
                location=Location(task_ordinal=task.ordinal, step_ordinal=step.ordinal if step else None, line=line_no),
                issue=f"destructive command: {pattern.search(line).group(0)}",
                code="destructive-command",
                recommendation="confirm the command is intended and scope it as narrowly as possible",
            )
        )
    return findings


def _owner(plan: Plan, line_no: int) -> tuple[Task | None, Step | None]:
    owner = None
    for task in plan.tasks:
        if task.line <= line_no:
            owner = task
    if owner is None:
        return None, None
    step = None
    for candidate in owner.steps:
        if candidate.line <= line_no:
            step = candidate
    return owner, step


def _task_files(task: Task) -> list[str]:
    seen: list[str] = []
    for claim in task.claims:
        if claim.kind is not ClaimKind.path or claim.needs_manual_review:
            continue
        path = normalize_path(claim.text)
        if os.path.splitext(path)[1] and path not in seen:
            seen.append(path)
    return seen


def _is_source_root(directory: str) -> bool:
    return all(part.lower() in SOURCE_ROOTS for part in PurePosixPath(directory).parts if part != ".")


def _concern_words(path: str) -> set[str]:
    stem, _ = split_file_name(PurePosixPath(path).name)
    return {word for word in split_words(stem) if word not in GENERIC_WORDS and len(word) > 1}


def _mask_code(text: str) -> str:
    return _CODE_SPAN_RE.sub(lambda match: "`" + "x" * (len(match.group(0)) - 2) + "`", text)


def _starts_with_verb(segment: str) -> bool:
    words = _WORD_RE.findall(segment)
    return bool(words) and words[0].lower() in IMPERATIVE_VERBS


def _split_list_item(raw_line: str) -> tuple[str | None, str | None]:
    match = _LIST_PREFIX_RE.match(raw_line)
    if not match:
        return None, None
    prefix, content, _ = match.groups()
    actions = split_actions(content)
    if sum(1 for action in actions if _starts_with_verb(action)) < 2:
        return None, None
    items = [prefix + _capitalize(action.rstrip(",;")) for action in actions]
    return raw_line.rstrip(), "\n".join(items)


def _capitalize(text: str) -> str:
    return text[:1].upper() + text[1:] if text[:1].islower() else text


def _ordering_failure(location: Location, issue: str, code: str, recommendation: str) -> Finding:
    return Finding(
        dimension=Dimension.dependency_ordering,
        severity=Severity.fail,
        location=location,
        issue=issue,
        code=code,
        recommendation=recommendation,
    )


def _finding_sort_key(finding: Finding) -> tuple:
    location = finding.location
    return (
        location.task_ordinal is None,
        location.task_ordinal or 0,
        location.line or 0,
        DIMENSION_ORDER.index(finding.dimension),
        -finding.severity.rank,
        finding.code,
        finding.issue,
    )


__all__ = [
    "ScoringResult",
    "aggregate",
    "check_atomicity",
    "check_dependencies",
    "check_destructive_commands",
    "check_final_verification",
    "check_granularity",
    "check_verification",
    "concern_groups",
    "find_cycles",
    "score_plan",
    "split_actions",
]
