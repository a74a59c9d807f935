"""Domain-level dataclasses for plan reviews."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field


class ClaimKind(enum.Enum):
    path = "PathClaim"
    naming = "NamingClaim"
    reference = "ReferenceClaim"
    structural = "StructuralClaim"


class SymbolKind(enum.Enum):
    file = "file"
    type = "type"
    function = "function"
    config_key = "config_key"


class CaseStyle(enum.Enum):
    snake = "snake_case"
    kebab = "kebab-case"
    pascal = "PascalCase"
    camel = "camelCase"
    upper_snake = "UPPER_SNAKE_CASE"
    flat = "lowercase"
    mixed = "mixed"


class Severity(enum.Enum):
    ok = "PASS"
    warn = "WARN"
    fail = "FAIL"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.ok: 0, Severity.warn: 1, Severity.fail: 2}


class Dimension(enum.Enum):
    pattern_alignment = "Pattern Alignment"
    task_atomicity = "Task Atomicity & Boundaries"
    step_granularity = "Step Granularity"
    dependency_ordering = "Dependency & Ordering"
    execution_risk = "Execution Risk"
    completeness = "Completeness"


DIMENSION_ORDER: tuple[Dimension, ...] = tuple(Dimension)


class Verdict(enum.Enum):
    approved = "APPROVED"
    approved_with_changes = "APPROVED_WITH_CHANGES"
    needs_revision = "NEEDS_REVISION"


@dataclass(frozen=True)
class Claim:
    kind: ClaimKind
    text: str
    task_ordinal: int
    line: int
    step_ordinal: int | None = None
    to_be_created: bool = False
    symbol_kind: SymbolKind | None = None
    needs_manual_review: bool = False
    scope: str | None = None


@dataclass(frozen=True)
class Step:
    ordinal: int
    text: str
    line: int
    raw_line: str
    verification: str | None = None


@dataclass(frozen=True)
class Task:
    ordinal: int
    title: str
    line: int
    label: int | None = None
    steps: tuple[Step, ...] = ()
    dependencies: tuple[int, ...] = ()
    claims: tuple[Claim, ...] = ()

    @property
    def display_name(self) -> str:
        return f"Task {self.label if self.label is not None else self.ordinal}"

    @property
    def verification_steps(self) -> tuple[Step, ...]:
        return tuple(step for step in self.steps if step.verification)


@dataclass(frozen=True)
class Plan:
    source_path: str
    raw_text: str
    digest: str
    title: str | None
    tasks: tuple[Task, ...]

    @property
    def claims(self) -> tuple[Claim, ...]:
        return tuple(claim for task in self.tasks for claim in task.claims)

    def task(self, ordinal: int) -> Task:
        return self.tasks[ordinal - 1]


@dataclass(frozen=True)
class Evidence:
    path: str
    snippet: str
    style: CaseStyle
    words: tuple[str, ...]
    line: int | None = None


@dataclass(frozen=True)
class Location:
    task_ordinal: int | None = None
    step_ordinal: int | None = None
    line: int | None = None

    def describe(self, task_names: dict[int, str] | None = None) -> str:
        if self.task_ordinal is None:
            label = "Plan"
        else:
            label = (task_names or {}).get(self.task_ordinal, f"Task {self.task_ordinal}")
        if self.step_ordinal is not None:
            label += f", Step {self.step_ordinal}"
        if self.line is not None:
            label += f" (line {self.line})"
        return label


@dataclass(frozen=True)
class Finding:
    dimension: Dimension
    severity: Severity
    location: Location
    issue: str
    code: str
    evidence: tuple[Evidence, ...] = ()
    recommendation: str | None = None
    span: str | None = None
    replacement: str | None = None

    @property
    def is_surgical(self) -> bool:
        return (
            self.span is not None
            and self.replacement is not None
            and self.location.line is not None
            and self.span != self.replacement
        )


@dataclass(frozen=True)
class DimensionScore:
    dimension: Dimension
    rating: Severity
    finding_count: int


@dataclass(frozen=True)
class ReviewReport:
    plan_path: str
    plan_digest: str
    plan_title: str | None
    codebase_root: str
    indexed_files: int
    partial_index: bool
    scores: tuple[DimensionScore, ...]
    findings: tuple[Finding, ...]
    verdict: Verdict
    task_names: dict[int, str] = field(default_factory=dict)


__all__ = [
    "CaseStyle",
    "Claim",
    "ClaimKind",
    "DIMENSION_ORDER",
    "Dimension",
    "DimensionScore",
    "Evidence",
    "Finding",
    "Location",
    "Plan",
    "ReviewReport",
    "Severity",
    "Step",
    "SymbolKind",
    "Task",
    "Verdict",
]
