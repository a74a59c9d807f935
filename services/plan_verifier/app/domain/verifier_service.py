"""Review orchestration: the verify pipeline and persisted review runs."""
from __future__ import annotations

import asyncio
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import ReviewTuning, get_settings, tuning_with_overrides
from ..errors import ApplyChangesError
from ..persistence.models import AuditLog, ReviewFindingRow, ReviewRun
from ..persistence.storage import ArtifactStorage
from .conventions import ConventionExtractor
from .indexer import CodebaseIndex, build_index
from .matcher import EvidenceMatcher, introduced_names
from .plan_parser import load_plan
from .report import apply_changes, render_markdown, report_from_dict, report_to_dict
from .scorer import score_plan
from .types import Plan, ReviewReport
from .verdict import decide_verdict

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)


def verify(
    plan_path: str | os.PathLike[str],
    codebase_root: str | os.PathLike[str],
    tuning: ReviewTuning | None = None,
    *,
    cancel_event: threading.Event | None = None,
) -> ReviewReport:
    """Review the plan at ``plan_path`` against the codebase at ``codebase_root``.

    Raises ``PlanParseError``, ``CodebaseIndexError`` or ``IndexCancelled``;
    every convention judgment ends up in the report instead.
    """
    tuning = tuning or get_settings().review
    with tracer.start_as_current_span("plan_verifier.verify") as span:
        span.set_attribute("plan_verifier.plan_path", str(plan_path))
        span.set_attribute("plan_verifier.codebase_root", str(codebase_root))
        with tracer.start_as_current_span("plan_verifier.parse"):
            plan = load_plan(plan_path)
        with tracer.start_as_current_span("plan_verifier.index") as index_span:
            index = build_index(
                codebase_root,
                tuning.exclude_dirs,
                workers=tuning.index_workers,
                timeout_ms=tuning.timeout_ms,
                cancel_event=cancel_event,
                max_file_bytes=tuning.max_file_bytes,
            )
            index_span.set_attribute("plan_verifier.indexed_files", len(index.files))
            index_span.set_attribute("plan_verifier.partial_index", index.partial)
        report = review_plan(plan, index, tuning)
        span.set_attribute("plan_verifier.verdict", report.verdict.value)
    return report


def review_plan(plan: Plan, index: CodebaseIndex, tuning: ReviewTuning | None = None) -> ReviewReport:
    """Judge, score and decide on an already parsed plan and built index."""
    tuning = tuning or ReviewTuning()
    task_names = {task.ordinal: task.display_name for task in plan.tasks}
    extractor = ConventionExtractor(index, evidence_cap=tuning.evidence_cap, minimum=tuning.precedent_minimum)
    matcher = EvidenceMatcher(
        index,
        extractor,
        minimum=tuning.precedent_minimum,
        introduced=introduced_names(plan),
        task_names=task_names,
    )
    with tracer.start_as_current_span("plan_verifier.match"):
        claim_findings = matcher.review_all(plan.claims)
    with tracer.start_as_current_span("plan_verifier.score"):
        scoring = score_plan(plan, claim_findings, tuning)
    verdict = decide_verdict(scoring.scores)
    logger.info(
        "verifier.completed",
        plan=plan.source_path,
        tasks=len(plan.tasks),
        claims=len(plan.claims),
        findings=len(scoring.findings),
        verdict=verdict.value,
        partial_index=index.partial,
    )
    return ReviewReport(
        plan_path=plan.source_path,
        plan_digest=plan.digest,
        plan_title=plan.title,
        codebase_root=index.root,
        indexed_files=len(index.files),
        partial_index=index.partial,
        scores=scoring.scores,
        findings=scoring.findings,
        verdict=verdict,
        task_names=task_names,
    )


@dataclass
class ReviewCreateParams:
    plan_path: str
    codebase_root: str
    principal: str = "system"
    correlation_id: str = "system"
    options: dict[str, Any] | None = None
    previous_run_id: str | None = None


class ReviewOrchestrator:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._storage = ArtifactStorage()
        self._settings = get_settings()

    async def create_review(self, params: ReviewCreateParams) -> ReviewRun:
        tuning = tuning_with_overrides(self._settings.review, params.options)
        start = time.perf_counter()
        report = await asyncio.to_thread(verify, params.plan_path, params.codebase_root, tuning)

        run = ReviewRun(
            plan_path=report.plan_path,
            codebase_root=params.codebase_root,
            plan_digest=report.plan_digest,
            verdict=report.verdict,
            partial_index=report.partial_index,
            indexed_files=report.indexed_files,
            wall_time_ms=int((time.perf_counter() - start) * 1000),
            params={"options": params.options or {}},
            scores=[
                {"dimension": score.dimension.value, "rating": score.rating.value, "findingCount": score.finding_count}
                for score in report.scores
            ],
            previous_run_id=params.previous_run_id,
        )
        self._session.add(run)
        await self._session.flush()

        self._persist_findings(run, report)
        run.report_ref = await self._storage.put_json(report_to_dict(report))
        run.markdown_ref = await self._storage.put_text(render_markdown(report), suffix=".md")
        self._audit(
            params.principal,
            "review.rerun" if params.previous_run_id else "review.created",
            params.correlation_id,
            new_val={"reviewId": run.id, "verdict": report.verdict.value},
            old_val={"reviewId": params.previous_run_id} if params.previous_run_id else None,
        )
        logger.info("review.persisted", review_id=run.id, verdict=report.verdict.value, report_ref=run.report_ref)
        return run

    async def rerun(self, previous: ReviewRun, principal: str = "system", correlation_id: str = "system") -> ReviewRun:
        return await self.create_review(
            ReviewCreateParams(
                plan_path=previous.plan_path,
                codebase_root=previous.codebase_root,
                principal=principal,
                correlation_id=correlation_id,
                options=(previous.params or {}).get("options"),
                previous_run_id=previous.id,
            )
        )

    async def load_report(self, run: ReviewRun) -> dict[str, Any]:
        if not run.report_ref:
            raise LookupError(f"Review {run.id} has no stored report")
        return await self._storage.get_json(run.report_ref)

    async def load_markdown(self, run: ReviewRun) -> str:
        if not run.markdown_ref:
            raise LookupError(f"Review {run.id} has no stored Markdown report")
        return await self._storage.get_text(run.markdown_ref)

    async def apply(
        self,
        run: ReviewRun,
        output_path: str | None = None,
        principal: str = "system",
        correlation_id: str = "system",
    ) -> Path:
        report = report_from_dict(await self.load_report(run))
        if output_path is not None:
            output_path = self._confined_output(run, output_path)
        revised = await asyncio.to_thread(apply_changes, report, run.plan_path, output_path)
        run.revised_plan_path = str(revised)
        self._audit(
            principal,
            "review.applied",
            correlation_id,
            new_val={"reviewId": run.id, "revisedPlanPath": str(revised)},
        )
        return revised

    def _confined_output(self, run: ReviewRun, output_path: str) -> str:
        """Resolve a requested output path, relative to the plan; it must stay under the plan or artifact directory."""
        plan_dir = Path(run.plan_path).resolve().parent
        target = (plan_dir / output_path).resolve()
        allowed = (plan_dir, Path(self._settings.storage.artifact_dir).resolve())
        if not any(target.is_relative_to(root) for root in allowed):
            raise ApplyChangesError(f"Output path {output_path} is outside the plan and artifact directories")
        return str(target)

    def _persist_findings(self, run: ReviewRun, report: ReviewReport) -> None:
        for position, item in enumerate(report_to_dict(report)["findings"]):
            location = item["location"]
            self._session.add(
                ReviewFindingRow(
                    review_id=run.id,
                    position=position,
                    dimension=item["dimension"],
                    severity=item["severity"],
                    code=item["code"],
                    task_ordinal=location["task"],
                    step_ordinal=location["step"],
                    line=location["line"],
                    issue=item["issue"],
                    recommendation=item["recommendation"],
                    evidence=item["evidence"],
                    edit=item["edit"],
                )
            )

    def _audit(
        self,
        principal: str,
        action: str,
        correlation_id: str,
        new_val: dict[str, Any] | None = None,
        old_val: dict[str, Any] | None = None,
    ) -> None:
        self._session.add(
            AuditLog(
                principal=principal,
                action=action,
                old_val=old_val,
                new_val=new_val,
                correlation_id=correlation_id,
            )
        )


__all__ = ["ReviewCreateParams", "ReviewOrchestrator", "review_plan", "verify"]
