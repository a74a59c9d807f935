"""Review report rendering and application of surgical changes."""
from __future__ import annotations

import hashlib
import json
import os
import re
from pathlib import Path
from typing import Any

import structlog

from ..errors import ApplyChangesError
from .types import (
    CaseStyle,
    Dimension,
    DimensionScore,
    Evidence,
    Finding,
    Location,
    ReviewReport,
    Severity,
    Verdict,
)
from .verdict import requires_full_revision, surgical_changes

logger = structlog.get_logger(__name__)

_MARKDOWN_EVIDENCE_LIMIT = 3
_CODE_SPAN_RE = re.compile(r"`([^`\n]+)`")


def render_markdown(report: ReviewReport) -> str:
    lines = [f"# Plan Review: {report.plan_title or report.plan_path}", ""]
    lines.append(f"- Plan: `{report.plan_path}`")
    lines.append(f"- Digest: `{report.plan_digest}`")
    index_note = f"{report.indexed_files} files indexed"
    if report.partial_index:
        index_note += ", partial index"
    lines.append(f"- Codebase: `{report.codebase_root}` ({index_note})")
    lines += ["", "## Dimensions", "", "| Dimension | Rating | Findings |", "|---|---|---|"]
    for score in report.scores:
        lines.append(f"| {score.dimension.value} | {score.rating.value} | {score.finding_count} |")

    lines += ["", "## Findings", ""]
    if not report.findings:
        lines.append("No findings.")
    for number, finding in enumerate(report.findings, start=1):
        where = finding.location.describe(report.task_names)
        lines.append(
            f"{number}. [{finding.severity.value}] {finding.dimension.value} - {where}: {finding.issue}"
        )
        if finding.evidence:
            shown = ", ".join(_evidence_label(item) for item in finding.evidence[:_MARKDOWN_EVIDENCE_LIMIT])
            extra = len(finding.evidence) - _MARKDOWN_EVIDENCE_LIMIT
            if extra > 0:
                shown += f" and {extra} more"
            lines.append(f"   - Evidence: {shown}")
        if finding.recommendation:
            lines.append(f"   - Recommendation: {finding.recommendation}")

    recommendations = _recommendations(report)
    lines += ["", "## Recommendations", ""]
    lines += [f"- {item}" for item in recommendations] or ["None."]
    lines += ["", f"**Verdict: {report.verdict.value}**", ""]
    return "\n".join(lines)


def report_to_dict(report: ReviewReport) -> dict[str, Any]:
    return {
        "plan": {"path": report.plan_path, "digest": report.plan_digest, "title": report.plan_title},
        "codebase": {"root": report.codebase_root, "indexedFiles": report.indexed_files},
        "partialIndex": report.partial_index,
        "dimensions": [
            {
                "dimension": score.dimension.value,
                "rating": score.rating.value,
                "findingCount": score.finding_count,
            }
            for score in report.scores
        ],
        "findings": [_finding_to_dict(finding, report.task_names) for finding in report.findings],
        "verdict": report.verdict.value,
        "requiresFullRevision": requires_full_revision(report.verdict),
        "surgicalChanges": len(surgical_changes(report.findings)),
        "taskNames": {str(ordinal): name for ordinal, name in sorted(report.task_names.items())},
    }


def report_to_json(report: ReviewReport) -> str:
    return json.dumps(report_to_dict(report), indent=2, sort_keys=True, ensure_ascii=False) + "\n"


def report_from_dict(data: dict[str, Any]) -> ReviewReport:
    """Rebuild a report from :func:`report_to_dict` output."""
    return ReviewReport(
        plan_path=data["plan"]["path"],
        plan_digest=data["plan"]["digest"],
        plan_title=data["plan"].get("title"),
        codebase_root=data["codebase"]["root"],
        indexed_files=data["codebase"]["indexedFiles"],
        partial_index=data["partialIndex"],
        scores=tuple(
            DimensionScore(
                dimension=Dimension(item["dimension"]),
                rating=Severity(item["rating"]),
                finding_count=item["findingCount"],
            )
            for item in data["dimensions"]
        ),
        findings=tuple(_finding_from_dict(item) for item in data["findings"]),
        verdict=Verdict(data["verdict"]),
        task_names={int(key): value for key, value in data.get("taskNames", {}).items()},
    )


def apply_changes(
    report: ReviewReport,
    plan_path: str | os.PathLike[str],
    output_path: str | os.PathLike[str] | None = None,
) -> Path:
    """Write a revised copy of the plan with each surgical change applied.

    The original file is never written. Raises :class:`ApplyChangesError`
    unless the review verdict is APPROVED_WITH_CHANGES and the plan on disk
    still matches the reviewed digest.
    """
    if report.verdict is not Verdict.approved_with_changes:
        raise ApplyChangesError(f"Changes can only be applied to APPROVED_WITH_CHANGES reviews, not {report.verdict.value}")

    source = Path(plan_path)
    try:
        with source.open(encoding="utf-8", newline="") as handle:
            raw = handle.read()
    except (OSError, UnicodeDecodeError) as exc:
        raise ApplyChangesError(f"Plan file is not readable: {source}") from exc

    normalized = raw.replace("\r\n", "\n").replace("\r", "\n")
    if hashlib.sha256(normalized.encode("utf-8")).hexdigest() != report.plan_digest:
        raise ApplyChangesError(f"Plan {source} changed since it was reviewed; run the review again")

    target = Path(output_path) if output_path is not None else _revised_path(source)
    if target.resolve() == source.resolve():
        raise ApplyChangesError("Refusing to overwrite the original plan")

    lines = raw.splitlines(keepends=True)
    applied = 0
    for line_no, changes in _changes_by_line(report.findings).items():
        if line_no > len(lines):
            logger.warning("report.change_skipped", line=line_no, reason="line out of range")
            continue
        content = lines[line_no - 1]
        body = content.rstrip("\r\n")
        ending = content[len(body) :]
        for span, replacement in changes:
            offset = _span_offset(body, span)
            if offset is None:
                logger.warning("report.change_skipped", line=line_no, span=span, reason="span not found")
                continue
            newline = ending or "\n"
            body = body[:offset] + replacement.replace("\n", newline) + body[offset + len(span) :]
            applied += 1
        lines[line_no - 1] = body + ending

    target.parent.mkdir(parents=True, exist_ok=True)
    try:
        with target.open("x", encoding="utf-8", newline="") as handle:
            handle.write("".join(lines))
    except FileExistsError as exc:
        raise ApplyChangesError(f"Refusing to overwrite existing file {target}") from exc
    logger.info("report.changes_applied", plan=str(source), output=str(target), changes=applied)
    return target


def _changes_by_line(findings: tuple[Finding, ...]) -> dict[int, list[tuple[str, str]]]:
    grouped: dict[int, list[tuple[str, str]]] = {}
    for finding in surgical_changes(findings):
        change = (finding.span, finding.replacement)
        bucket = grouped.setdefault(finding.location.line, [])
        if change not in bucket:
            bucket.append(change)
    # Whole-line rewrites go first so narrower spans still find their text afterwards.
    for bucket in grouped.values():
        bucket.sort(key=lambda change: "\n" not in change[1])
    return dict(sorted(grouped.items()))


def _span_offset(body: str, span: str) -> int | None:
    """Offset of the occurrence of ``span`` a finding refers to, or None.

    Only whole-token occurrences count. An inline code span holding exactly
    ``span`` wins over a code span that merely contains it, which wins over prose.
    """
    code_spans = [(match.start(1), match.end(1)) for match in _CODE_SPAN_RE.finditer(body)]
    best: tuple[int, int] | None = None
    for match in re.finditer(rf"(?<![\w$]){re.escape(span)}(?![\w$])", body):
        start, end = match.span()
        rank = 2
        for opening, closing in code_spans:
            if opening <= start and end <= closing:
                inner = body[opening:closing].strip()
                rank = 0 if inner in (span, f"./{span}", f"{span}()") else 1
                break
        if best is None or rank < best[0]:
            best = (rank, start)
    return best[1] if best else None


def _revised_path(source: Path) -> Path:
    candidate = source.with_name(f"{source.stem}.revised{source.suffix}")
    counter = 2
    while candidate.exists():
        candidate = source.with_name(f"{source.stem}.revised-{counter}{source.suffix}")
        counter += 1
    return candidate


def _recommendations(report: ReviewReport) -> list[str]:
    seen: list[str] = []
    for finding in report.findings:
        if finding.severity is Severity.ok or not finding.recommendation:
            continue
        item = f"{finding.location.describe(report.task_names)}: {finding.recommendation}"
        if item not in seen:
            seen.append(item)
    return seen


def _evidence_label(item: Evidence) -> str:
    if item.line is not None:
        return f"`{item.snippet}` ({item.path}:{item.line})"
    return f"`{item.path}`"


def _finding_to_dict(finding: Finding, task_names: dict[int, str]) -> dict[str, Any]:
    location = finding.location
    return {
        "dimension": finding.dimension.value,
        "severity": finding.severity.value,
        "code": finding.code,
        "location": {
            "task": location.task_ordinal,
            "taskName": task_names.get(location.task_ordinal) if location.task_ordinal is not None else None,
            "step": location.step_ordinal,
            "line": location.line,
        },
        "issue": finding.issue,
        "evidence": [
            {
                "path": item.path,
                "snippet": item.snippet,
                "line": item.line,
                "style": item.style.value,
                "words": list(item.words),
            }
            for item in finding.evidence
        ],
        "recommendation": finding.recommendation,
        "edit": {"span": finding.span, "replacement": finding.replacement} if finding.is_surgical else None,
    }


def _finding_from_dict(data: dict[str, Any]) -> Finding:
    location = data["location"]
    edit = data.get("edit") or {}
    return Finding(
        dimension=Dimension(data["dimension"]),
        severity=Severity(data["severity"]),
        location=Location(task_ordinal=location.get("task"), step_ordinal=location.get("step"), line=location.get("line")),
        issue=data["issue"],
        code=data["code"],
        evidence=tuple(
            Evidence(
                path=item["path"],
                snippet=item["snippet"],
                style=CaseStyle(item["style"]),
                words=tuple(item.get("words", ())),
                line=item.get("line"),
            )
            for item in data.get("evidence", ())
        ),
        recommendation=data.get("recommendation"),
        span=edit.get("span"),
        replacement=edit.get("replacement"),
    )


__all__ = ["apply_changes", "render_markdown", "report_from_dict", "report_to_dict", "report_to_json"]
