"""Plan review API."""
from __future__ import annotations

from typing import Any, List

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.verifier_service import ReviewCreateParams, ReviewOrchestrator
from ..persistence.models import ReviewFindingRow, ReviewRun
from .deps import get_correlation_id, get_db_session

router = APIRouter(prefix="/reviews", tags=["reviews"])


class ReviewOptions(BaseModel):
    exclude_dirs: List[str] | None = Field(default=None, alias="excludeDirs")
    max_files_per_task: int | None = Field(default=None, ge=1, alias="maxFilesPerTask")
    evidence_cap: int | None = Field(default=None, ge=1, alias="evidenceCap")
    timeout_ms: int | None = Field(default=None, ge=0, alias="timeoutMs")
    precedent_minimum: int | None = Field(default=None, ge=1, alias="precedentMinimum")
    max_step_words: int | None = Field(default=None, ge=1, alias="maxStepWords")

    model_config = ConfigDict(populate_by_name=True)


class ReviewCreateRequest(BaseModel):
    plan_path: str = Field(alias="planPath")
    codebase_root: str = Field(alias="codebaseRoot")
    options: ReviewOptions | None = None

    model_config = ConfigDict(populate_by_name=True)


class ApplyRequest(BaseModel):
    output_path: str | None = Field(default=None, alias="outputPath")

    model_config = ConfigDict(populate_by_name=True)


class ReviewSummaryResponse(BaseModel):
    id: str
    plan_path: str = Field(alias="planPath")
    codebase_root: str = Field(alias="codebaseRoot")
    plan_digest: str = Field(alias="planDigest")
    verdict: str
    partial_index: bool = Field(alias="partialIndex")
    indexed_files: int = Field(alias="indexedFiles")
    dimensions: List[dict[str, Any]]
    report_ref: str | None = Field(alias="reportRef")
    markdown_ref: str | None = Field(alias="markdownRef")
    revised_plan_path: str | None = Field(alias="revisedPlanPath")
    previous_run_id: str | None = Field(alias="previousRunId")
    created_at: str | None = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True)


class FindingResponse(BaseModel):
    position: int
    dimension: str
    severity: str
    code: str
    task: int | None
    step: int | None
    line: int | None
    issue: str
    recommendation: str | None
    evidence: List[dict[str, Any]] = Field(default_factory=list)
    edit: dict[str, Any] | None = None


class ApplyResponse(BaseModel):
    id: str
    revised_plan_path: str = Field(alias="revisedPlanPath")

    model_config = ConfigDict(populate_by_name=True)


def _review_not_found(review_id: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Review {review_id} not found")


async def _require_review(session: AsyncSession, review_id: str) -> ReviewRun:
    run = await session.get(ReviewRun, review_id)
    if not run:
        raise _review_not_found(review_id)
    return run


def _summary(run: ReviewRun) -> ReviewSummaryResponse:
    return ReviewSummaryResponse(
        id=run.id,
        planPath=run.plan_path,
        codebaseRoot=run.codebase_root,
        planDigest=run.plan_digest,
        verdict=run.verdict.value,
        partialIndex=run.partial_index,
        indexedFiles=run.indexed_files,
        dimensions=run.scores or [],
        reportRef=run.report_ref,
        markdownRef=run.markdown_ref,
        revisedPlanPath=run.revised_plan_path,
        previousRunId=run.previous_run_id,
        createdAt=run.created_at.isoformat() if run.created_at else None,
    )


@router.post("", response_model=ReviewSummaryResponse, response_model_by_alias=True, status_code=status.HTTP_201_CREATED)
async def create_review(
    request: ReviewCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    correlation_id: str = Depends(get_correlation_id),
):
    orchestrator = ReviewOrchestrator(session)
    run = await orchestrator.create_review(
        ReviewCreateParams(
            plan_path=request.plan_path,
            codebase_root=request.codebase_root,
            principal="api",
            correlation_id=correlation_id,
            options=request.options.model_dump(exclude_none=True) if request.options else None,
        )
    )
    return _summary(run)


@router.get("/{review_id}", response_model=ReviewSummaryResponse, response_model_by_alias=True)
async def get_review(review_id: str, session: AsyncSession = Depends(get_db_session)):
    return _summary(await _require_review(session, review_id))


@router.get("/{review_id}/findings", response_model=List[FindingResponse])
async def get_findings(review_id: str, session: AsyncSession = Depends(get_db_session)):
    await _require_review(session, review_id)
    result = await session.execute(
        select(ReviewFindingRow).where(ReviewFindingRow.review_id == review_id).order_by(ReviewFindingRow.position)
    )
    return [
        FindingResponse(
            position=row.position,
            dimension=row.dimension,
            severity=row.severity,
            code=row.code,
            task=row.task_ordinal,
            step=row.step_ordinal,
            line=row.line,
            issue=row.issue,
            recommendation=row.recommendation,
            evidence=row.evidence or [],
            edit=row.edit,
        )
        for row in result.scalars()
    ]


@router.get("/{review_id}/report")
async def get_report(review_id: str, session: AsyncSession = Depends(get_db_session)):
    run = await _require_review(session, review_id)
    try:
        report = await ReviewOrchestrator(session).load_report(run)
    except LookupError as exc:
        raise _review_not_found(review_id) from exc
    return JSONResponse(content=report)


@router.get("/{review_id}/report.md", response_class=PlainTextResponse)
async def get_markdown_report(review_id: str, session: AsyncSession = Depends(get_db_session)):
    run = await _require_review(session, review_id)
    try:
        markdown = await ReviewOrchestrator(session).load_markdown(run)
    except LookupError as exc:
        raise _review_not_found(review_id) from exc
    return PlainTextResponse(markdown, media_type="text/markdown")


@router.post(
    "/{review_id}/rerun",
    response_model=ReviewSummaryResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def rerun_review(
    review_id: str,
    session: AsyncSession = Depends(get_db_session),
    correlation_id: str = Depends(get_correlation_id),
):
    previous = await _require_review(session, review_id)
    run = await ReviewOrchestrator(session).rerun(previous, principal="api", correlation_id=correlation_id)
    return _summary(run)


@router.post("/{review_id}/apply", response_model=ApplyResponse, response_model_by_alias=True)
async def apply_review(
    review_id: str,
    request: ApplyRequest | None = None,
    session: AsyncSession = Depends(get_db_session),
    correlation_id: str = Depends(get_correlation_id),
):
    run = await _require_review(session, review_id)
    revised = await ReviewOrchestrator(session).apply(
        run,
        output_path=request.output_path if request else None,
        principal="api",
        correlation_id=correlation_id,
    )
    return ApplyResponse(id=run.id, revisedPlanPath=str(revised))


__all__ = ["router"]
