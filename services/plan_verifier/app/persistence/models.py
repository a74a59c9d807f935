"""SQLAlchemy models for the plan verifier service."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from ..domain.types import Verdict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class ReviewRun(Base):
    __tablename__ = "review_run"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    plan_path: Mapped[str] = mapped_column(String, nullable=False)
    codebase_root: Mapped[str] = mapped_column(String, nullable=False)
    plan_digest: Mapped[str] = mapped_column(String, nullable=False)
    verdict: Mapped[Verdict] = mapped_column(Enum(Verdict), nullable=False)
    partial_index: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    indexed_files: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    wall_time_ms: Mapped[int | None] = mapped_column(Integer)
    params: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    scores: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    report_ref: Mapped[str | None] = mapped_column(String)
    markdown_ref: Mapped[str | None] = mapped_column(String)
    revised_plan_path: Mapped[str | None] = mapped_column(String)
    previous_run_id: Mapped[str | None] = mapped_column(ForeignKey("review_run.id"))
    created_at: Mapped[datetime] = mapped_column(default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=_utcnow, onupdate=_utcnow)

    findings: Mapped[list["ReviewFindingRow"]] = relationship(
        back_populates="review",
        cascade="all, delete-orphan",
        order_by="ReviewFindingRow.position",
    )


class ReviewFindingRow(Base):
    __tablename__ = "review_finding"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    review_id: Mapped[str] = mapped_column(ForeignKey("review_run.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    dimension: Mapped[str] = mapped_column(String, nullable=False)
    severity: Mapped[str] = mapped_column(String, nullable=False)
    code: Mapped[str] = mapped_column(String, nullable=False)
    task_ordinal: Mapped[int | None] = mapped_column(Integer)
    step_ordinal: Mapped[int | None] = mapped_column(Integer)
    line: Mapped[int | None] = mapped_column(Integer)
    issue: Mapped[str] = mapped_column(Text, nullable=False)
    recommendation: Mapped[str | None] = mapped_column(Text)
    evidence: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    edit: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    review: Mapped[ReviewRun] = relationship(back_populates="findings")

    __table_args__ = (UniqueConstraint("review_id", "position", name="uq_finding_review_position"),)


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    principal: Mapped[str] = mapped_column(String, nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    old_val: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    new_val: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    correlation_id: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow)


__all__ = ["AuditLog", "Base", "ReviewFindingRow", "ReviewRun"]
