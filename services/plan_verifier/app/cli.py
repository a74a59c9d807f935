"""Command line entrypoint: ``plan-verifier verify|apply PLAN ROOT``."""
from __future__ import annotations

import enum
from pathlib import Path
from typing import List, Optional

import typer

from .config import ReviewTuning, get_settings, tuning_with_overrides
from .domain.report import apply_changes, render_markdown, report_to_json
from .domain.types import ReviewReport, Verdict
from .domain.verifier_service import verify
from .errors import PlanVerifierError
from .observability.logging_config import configure_logging

app = typer.Typer(add_completion=False, help="Check implementation plans against codebase conventions.")

EXIT_OK = 0
EXIT_NEEDS_REVISION = 1
EXIT_FATAL = 2


class OutputFormat(str, enum.Enum):
    markdown = "markdown"
    json = "json"


def _tuning(
    exclude_dirs: List[str] | None,
    max_files_per_task: int | None,
    evidence_cap: int | None,
    timeout_ms: int | None,
    precedent_minimum: int | None,
    max_step_words: int | None,
) -> ReviewTuning:
    base = get_settings().review
    overrides = {
        "max_files_per_task": max_files_per_task,
        "evidence_cap": evidence_cap,
        "timeout_ms": timeout_ms,
        "precedent_minimum": precedent_minimum,
        "max_step_words": max_step_words,
        "exclude_dirs": exclude_dirs or None,
    }
    return tuning_with_overrides(base, overrides)


def _fatal(exc: Exception) -> typer.Exit:
    typer.echo(f"error: {exc}", err=True)
    if isinstance(exc, PlanVerifierError):
        typer.echo(f"hint: {exc.remediation}", err=True)
    return typer.Exit(code=EXIT_FATAL)


def _run(plan: Path, root: Path, tuning: ReviewTuning) -> ReviewReport:
    try:
        return verify(plan, root, tuning)
    except (PlanVerifierError, OSError) as exc:
        raise _fatal(exc) from exc


def _emit(text: str, output: Path | None) -> None:
    if output is None:
        typer.echo(text, nl=False)
        return
    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise _fatal(exc) from exc
    typer.echo(f"Wrote review report: {output}", err=True)


def _exit_code(verdict: Verdict) -> int:
    return EXIT_NEEDS_REVISION if verdict is Verdict.needs_revision else EXIT_OK


@app.command("verify")
def verify_command(
    plan: Path = typer.Argument(..., help="Markdown plan to review."),
    root: Path = typer.Argument(..., help="Root directory of the target codebase."),
    output_format: OutputFormat = typer.Option(OutputFormat.markdown, "--format", "-f"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the report here instead of stdout."),
    exclude_dir: Optional[List[str]] = typer.Option(None, "--exclude-dir", help="Extra directory to skip (repeatable)."),
    max_files_per_task: Optional[int] = typer.Option(None, "--max-files-per-task", min=1),
    evidence_cap: Optional[int] = typer.Option(None, "--evidence-cap", min=1),
    timeout_ms: Optional[int] = typer.Option(None, "--timeout-ms", min=0),
    precedent_minimum: Optional[int] = typer.Option(None, "--precedent-minimum", min=1),
    max_step_words: Optional[int] = typer.Option(None, "--max-step-words", min=1),
    log_level: Optional[str] = typer.Option(None, "--log-level"),
) -> None:
    """Review PLAN against the codebase at ROOT and print the report."""
    configure_logging(log_level)
    tuning = _tuning(exclude_dir, max_files_per_task, evidence_cap, timeout_ms, precedent_minimum, max_step_words)
    report = _run(plan, root, tuning)
    text = report_to_json(report) if output_format is OutputFormat.json else render_markdown(report)
    _emit(text, output)
    raise typer.Exit(code=_exit_code(report.verdict))


@app.command("apply")
def apply_command(
    plan: Path = typer.Argument(..., help="Markdown plan to review and revise."),
    root: Path = typer.Argument(..., help="Root directory of the target codebase."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Where to write the revised plan."),
    exclude_dir: Optional[List[str]] = typer.Option(None, "--exclude-dir"),
    max_files_per_task: Optional[int] = typer.Option(None, "--max-files-per-task", min=1),
    evidence_cap: Optional[int] = typer.Option(None, "--evidence-cap", min=1),
    timeout_ms: Optional[int] = typer.Option(None, "--timeout-ms", min=0),
    precedent_minimum: Optional[int] = typer.Option(None, "--precedent-minimum", min=1),
    max_step_words: Optional[int] = typer.Option(None, "--max-step-words", min=1),
    log_level: Optional[str] = typer.Option(None, "--log-level"),
) -> None:
    """Review PLAN and write a revised copy with the surgical changes applied."""
    configure_logging(log_level)
    tuning = _tuning(exclude_dir, max_files_per_task, evidence_cap, timeout_ms, precedent_minimum, max_step_words)
    report = _run(plan, root, tuning)
    if report.verdict is Verdict.approved:
        typer.echo("Plan approved; no changes to apply.")
        raise typer.Exit(code=EXIT_OK)
    if report.verdict is Verdict.needs_revision:
        typer.echo(render_markdown(report), nl=False)
        typer.echo("Plan needs revision; surgical changes are not applied.", err=True)
        raise typer.Exit(code=EXIT_NEEDS_REVISION)
    try:
        revised = apply_changes(report, plan, output)
    except (PlanVerifierError, OSError) as exc:
        raise _fatal(exc) from exc
    typer.echo(f"Wrote revised plan: {revised}")


def main() -> None:
    app(prog_name="plan-verifier")


if __name__ == "__main__":  # pragma: no cover
    main()


__all__ = ["app", "main"]
