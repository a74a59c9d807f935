"""Judges plan claims against codebase precedent (the 3-example rule)."""
from __future__ import annotations

import os
from collections import defaultdict
from pathlib import PurePosixPath
from typing import Callable, Iterable, Mapping

import structlog

from .conventions import ConventionExtractor, file_evidence
from .indexer import CodebaseIndex, normalize_path
from .naming import (
    classify_style,
    default_file_style,
    dominant_style,
    is_compatible,
    render,
    restyle_file_name,
    split_file_name,
    split_words,
)
from .types import (
    CaseStyle,
    Claim,
    ClaimKind,
    Dimension,
    Evidence,
    Finding,
    Location,
    Plan,
    Severity,
    SymbolKind,
)

logger = structlog.get_logger(__name__)

_SNAKE_LANGUAGES = {".py", ".pyi", ".rb", ".rs", ".ex", ".exs"}


def introduced_names(plan: Plan) -> dict[str, tuple[int, ...]]:
    """Map names the plan itself creates to the ordinals of the tasks creating them."""
    found: dict[str, set[int]] = defaultdict(set)
    for claim in plan.claims:
        if not claim.to_be_created or claim.needs_manual_review:
            continue
        if claim.kind is ClaimKind.path:
            name = PurePosixPath(normalize_path(claim.text)).name
            if name:
                found[name].add(claim.task_ordinal)
                found[split_file_name(name)[0]].add(claim.task_ordinal)
        elif claim.kind in (ClaimKind.naming, ClaimKind.structural):
            found[_bare_name(claim.text)].add(claim.task_ordinal)
    return {name: tuple(sorted(ordinals)) for name, ordinals in found.items()}


class EvidenceMatcher:
    """Turns each claim plus its precedents into exactly one Finding.

    Outcomes are always findings; nothing here raises for a bad claim.
    """

    def __init__(
        self,
        index: CodebaseIndex,
        extractor: ConventionExtractor | None = None,
        minimum: int = 3,
        introduced: Mapping[str, tuple[int, ...]] | None = None,
        task_names: Mapping[int, str] | None = None,
    ) -> None:
        self._index = index
        self._extractor = extractor or ConventionExtractor(index, minimum=minimum)
        self._minimum = minimum
        self._introduced = dict(introduced or {})
        self._task_names = dict(task_names or {})

    def evidence_for(self, claim: Claim) -> tuple[Evidence, ...]:
        if claim.needs_manual_review:
            return ()
        if claim.kind is ClaimKind.path:
            existing = self._index.get(claim.text)
            if existing is not None:
                return (file_evidence(existing),)
            if self._index.has_directory(claim.text):
                return ()
            return self._extractor.find_precedents(ClaimKind.naming, claim.text, symbol_kind=SymbolKind.file)
        if claim.kind is ClaimKind.naming:
            return self._extractor.find_precedents(
                ClaimKind.naming,
                _bare_name(claim.text),
                near=claim.scope,
                symbol_kind=claim.symbol_kind,
            )
        if claim.kind is ClaimKind.reference:
            return self._extractor.find_precedents(claim.kind, _bare_name(claim.text), near=claim.scope)
        return self._extractor.find_precedents(claim.kind, claim.text, near=claim.scope)

    def review(self, claim: Claim) -> Finding:
        return self.judge(claim, self.evidence_for(claim))

    def review_all(self, claims: Iterable[Claim]) -> tuple[Finding, ...]:
        return tuple(self.review(claim) for claim in claims)

    def judge(self, claim: Claim, evidence: Iterable[Evidence]) -> Finding:
        evidence = tuple(evidence)
        if claim.needs_manual_review:
            finding = self._manual_review(claim)
        elif claim.kind is ClaimKind.path:
            finding = self._judge_path(claim, evidence)
        elif claim.kind is ClaimKind.reference:
            finding = self._judge_reference(claim, evidence)
        elif claim.kind is ClaimKind.structural:
            finding = self._judge_config(claim, evidence)
        else:
            finding = self._judge_name(claim, evidence)
        if self._index.partial and finding.severity is Severity.ok and finding.code != "introduced-by-plan":
            finding = _downgrade_partial(finding)
        logger.debug(
            "matcher.judged",
            claim=claim.text,
            kind=claim.kind.value,
            severity=finding.severity.value,
            code=finding.code,
            evidence=len(evidence),
        )
        return finding

    def _judge_path(self, claim: Claim, evidence: tuple[Evidence, ...]) -> Finding:
        path = normalize_path(claim.text)
        if self._index.has_path(path):
            return self._finding(
                claim, Dimension.pattern_alignment, Severity.ok, f"`{claim.text}` exists in the codebase", "path-exists", evidence
            )

        naming = self._judge_file_name(claim, path, evidence)
        if claim.to_be_created:
            return naming

        suggestion = self._similar_path(path)
        if suggestion is not None:
            return self._finding(
                claim,
                Dimension.pattern_alignment,
                Severity.fail,
                f"`{claim.text}` does not exist and is not marked as new",
                "missing-path",
                evidence,
                recommendation=f"did you mean `{suggestion}`?",
                span=claim.text,
                replacement=suggestion,
            )
        if naming.code == "naming-contradiction":
            return self._finding(
                claim,
                Dimension.pattern_alignment,
                Severity.fail,
                f"`{claim.text}` does not exist and its name contradicts neighbouring files",
                "naming-contradiction",
                evidence,
                recommendation=naming.recommendation,
                span=naming.span,
                replacement=naming.replacement,
            )
        return self._finding(
            claim,
            Dimension.pattern_alignment,
            Severity.fail,
            f"`{claim.text}` does not exist and is not marked as new",
            "missing-path",
            evidence,
            recommendation="correct the path or state that the file is to be created",
        )

    def _judge_file_name(self, claim: Claim, path: str, evidence: tuple[Evidence, ...]) -> Finding:
        name = PurePosixPath(path).name
        stem, _ = split_file_name(name)
        claimed = classify_style(stem.lstrip("._"))
        extension = os.path.splitext(name)[1].lower()

        def example(style: CaseStyle) -> tuple[str, str]:
            restyled = restyle_file_name(name, style)
            directory = str(PurePosixPath(path).parent)
            full = restyled if directory == "." else f"{directory}/{restyled}"
            return restyled, full

        def fallback() -> CaseStyle:
            observed = dominant_style(item.style for item in self._index.files if item.extension == extension)
            return observed or default_file_style(extension)

        return self._naming_rule(claim, claimed, evidence, example, fallback, subject=f"file name `{name}`")

    def _judge_name(self, claim: Claim, evidence: tuple[Evidence, ...]) -> Finding:
        name = _bare_name(claim.text)
        claimed = classify_style(name)
        words = split_words(name)

        def example(style: CaseStyle) -> tuple[str, str]:
            restyled = render(words, style)
            return restyled, claim.text.replace(name, restyled)

        def fallback() -> CaseStyle:
            kind = claim.symbol_kind or SymbolKind.function
            observed = dominant_style(classify_style(symbol.name) for symbol in self._index.symbols(kind))
            if observed is not None:
                return observed
            if kind is SymbolKind.type:
                return CaseStyle.pascal
            if kind is SymbolKind.config_key:
                return CaseStyle.snake
            extension = os.path.splitext(claim.scope or "")[1].lower()
            return CaseStyle.snake if extension in _SNAKE_LANGUAGES else CaseStyle.camel

        return self._naming_rule(claim, claimed, evidence, example, fallback, subject=f"`{name}`")

    def _naming_rule(
        self,
        claim: Claim,
        claimed: CaseStyle,
        evidence: tuple[Evidence, ...],
        example: Callable[[CaseStyle], tuple[str, str]],
        fallback: Callable[[], CaseStyle],
        *,
        subject: str,
    ) -> Finding:
        dimension = Dimension.pattern_alignment
        considered = [item for item in evidence if item.style is not CaseStyle.mixed]
        agreeing = [item for item in considered if is_compatible(claimed, item.style)]
        contradicting = [item for item in considered if not is_compatible(claimed, item.style)]
        agree, contradict = len(agreeing), len(contradicting)

        if contradict > agree:
            majority = dominant_style(item.style for item in contradicting) or fallback()
            short, full = example(majority)
            return self._finding(
                claim,
                dimension,
                Severity.fail,
                f"{subject} is {claimed.value} but {contradict} of {agree + contradict} precedents disagree",
                "naming-contradiction",
                evidence,
                recommendation=f"use {majority.value}, e.g. `{short}`",
                span=claim.text,
                replacement=full,
            )
        if agree == contradict:
            if agree == 0:
                return self._finding(
                    claim,
                    dimension,
                    Severity.warn,
                    f"no precedent found for {subject}",
                    "insufficient-precedent",
                    evidence,
                    recommendation="confirm the naming convention manually",
                )
            return self._finding(
                claim,
                dimension,
                Severity.warn,
                f"precedent for {subject} is evenly split ({agree} agree, {contradict} disagree)",
                "naming-tie",
                evidence,
                recommendation="pick one convention and note it in the plan",
            )
        if agree >= self._minimum:
            return self._finding(
                claim, dimension, Severity.ok, f"{subject} matches {agree} precedents", "naming-consistent", evidence
            )
        return self._finding(
            claim,
            dimension,
            Severity.warn,
            f"only {agree} precedent(s) support {subject}",
            "insufficient-precedent",
            evidence,
            recommendation=f"confirm the convention; fewer than {self._minimum} examples were found",
        )

    def _judge_reference(self, claim: Claim, evidence: tuple[Evidence, ...]) -> Finding:
        name = _bare_name(claim.text)
        exact = [item for item in evidence if _evidence_name(item) == name]
        variants = [item for item in evidence if _evidence_name(item) != name]
        dimension = Dimension.execution_risk

        if exact:
            if len(exact) == len(variants):
                return self._finding(
                    claim,
                    dimension,
                    Severity.warn,
                    f"`{name}` is defined, but so are as many differently-spelled variants",
                    "ambiguous-reference",
                    evidence,
                    recommendation="confirm which definition the step means",
                )
            return self._finding(claim, dimension, Severity.ok, f"`{name}` is defined in `{exact[0].path}`", "reference-found", evidence)

        introduced = self._introduced.get(name, ())
        if introduced:
            if min(introduced) <= claim.task_ordinal:
                return self._finding(
                    claim,
                    dimension,
                    Severity.ok,
                    f"`{name}` is introduced by {self._task_name(min(introduced))} of this plan",
                    "introduced-by-plan",
                    evidence,
                )
            later = self._task_name(min(introduced))
            return self._finding(
                claim,
                Dimension.dependency_ordering,
                Severity.fail,
                f"`{name}` is used before {later} introduces it",
                "used-before-introduced",
                evidence,
                recommendation=f"move this work after {later} or introduce `{name}` earlier",
            )

        if variants:
            actual = _evidence_name(variants[0])
            return self._finding(
                claim,
                dimension,
                Severity.warn,
                f"`{name}` is not defined; the codebase spells it `{actual}`",
                "reference-variant",
                evidence,
                recommendation=f"use `{actual}` (defined in `{variants[0].path}`)",
                span=claim.text,
                replacement=claim.text.replace(name, actual),
            )
        return self._finding(
            claim,
            dimension,
            Severity.warn,
            f"`{name}` is not defined in the codebase or introduced by the plan",
            "unresolved-reference",
            evidence,
            recommendation=f"confirm where `{name}` comes from or add a step that creates it",
        )

    def _judge_config(self, claim: Claim, evidence: tuple[Evidence, ...]) -> Finding:
        name = claim.text
        if self._config_key_exists(name):
            return self._finding(
                claim, Dimension.pattern_alignment, Severity.ok, f"config key `{name}` exists", "config-key-found", evidence
            )
        # Unknown keys are judged like new names against the keys already in use.
        return self._judge_name(claim, evidence)

    def _manual_review(self, claim: Claim) -> Finding:
        return self._finding(
            claim,
            Dimension.execution_risk,
            Severity.warn,
            f"could not interpret: {claim.text}",
            "manual-review",
            (),
            recommendation="rewrite the fragment so it can be checked, or review it by hand",
        )

    def _config_key_exists(self, name: str) -> bool:
        candidates = {name, name.rsplit(".", 1)[-1], name.split(".", 1)[0]}
        return any(
            symbol.kind is SymbolKind.config_key
            for candidate in candidates
            for symbol in self._index.symbols_named(candidate)
        )

    def _similar_path(self, path: str) -> str | None:
        """An indexed path with the same words but a different spelling."""
        target = PurePosixPath(path)
        target_words = split_words(str(target.with_suffix("")) if target.suffix else path)
        extension = target.suffix.lower()
        for item in self._index.files:
            if item.extension != extension:
                continue
            candidate = PurePosixPath(item.path)
            if split_words(str(candidate.with_suffix(""))) == target_words:
                return item.path
        for directory in sorted(self._index.directories):
            if split_words(directory) == split_words(path):
                return directory
        return None

    def _task_name(self, ordinal: int) -> str:
        return self._task_names.get(ordinal, f"Task {ordinal}")

    def _finding(
        self,
        claim: Claim,
        dimension: Dimension,
        severity: Severity,
        issue: str,
        code: str,
        evidence: tuple[Evidence, ...],
        *,
        recommendation: str | None = None,
        span: str | None = None,
        replacement: str | None = None,
    ) -> Finding:
        return Finding(
            dimension=dimension,
            severity=severity,
            location=Location(task_ordinal=claim.task_ordinal, step_ordinal=claim.step_ordinal, line=claim.line),
            issue=issue,
            code=code,
            evidence=evidence,
            recommendation=recommendation,
            span=span,
            replacement=replacement,
        )


def _bare_name(text: str) -> str:
    name = text.strip().strip("`")
    if name.endswith("()"):
        name = name[:-2]
    return name.rsplit(".", 1)[-1]


def _evidence_name(item: Evidence) -> str:
    if item.line is not None:
        return item.snippet
    stem, _ = split_file_name(item.snippet)
    return stem


def _downgrade_partial(finding: Finding) -> Finding:
    return Finding(
        dimension=finding.dimension,
        severity=Severity.warn,
        location=finding.location,
        issue=f"{finding.issue} (codebase index is partial)",
        code=finding.code,
        evidence=finding.evidence,
        recommendation="rerun the review once the whole codebase can be indexed",
    )


__all__ = ["EvidenceMatcher", "introduced_names"]
