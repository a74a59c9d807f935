"""Application configuration using Pydantic settings."""
from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_EXCLUDE_DIRS = frozenset(
    {
        ".git",
        ".hg",
        ".svn",
        ".idea",
        ".vscode",
        ".venv",
        "venv",
        "env",
        "node_modules",
        "__pycache__",
        ".mypy_cache",
        ".pytest_cache",
        ".ruff_cache",
        ".tox",
        ".nox",
        ".next",
        ".cache",
        "dist",
        "build",
        "target",
        "coverage",
        ".artifacts",
    }
)


class ReviewTuning(BaseModel):
    exclude_dirs: set[str] = Field(default_factory=lambda: set(DEFAULT_EXCLUDE_DIRS), alias="excludeDirs")
    max_files_per_task: int = Field(default=3, ge=1, alias="maxFilesPerTask")
    evidence_cap: int = Field(default=10, ge=1, alias="evidenceCap")
    timeout_ms: int = Field(default=0, ge=0, alias="timeoutMs")
    precedent_minimum: int = Field(default=3, ge=1, alias="precedentMinimum")
    max_step_words: int = Field(default=40, ge=1, alias="maxStepWords")
    max_file_bytes: int = Field(default=512_000, ge=0, alias="maxFileBytes")
    index_workers: int | None = Field(default=None, ge=1, alias="indexWorkers")

    model_config = ConfigDict(populate_by_name=True)


class ObservabilitySettings(BaseModel):
    otel_service_name: str = "plan-verifier"
    otel_exporter_otlp_endpoint: str | None = None
    log_level: str = "INFO"


class StorageSettings(BaseModel):
    database_url: str = Field(
        default="sqlite+aiosqlite:///./plan_verifier.db",
        description="SQLAlchemy async database URL (Postgres 15 in production)",
    )
    artifact_dir: str = Field(default="./.artifacts", description="Local report store used when no bucket is set")
    s3_endpoint: str | None = None
    s3_region: str | None = None
    s3_bucket: str | None = None


class VerifierSettings(BaseSettings):
    review: ReviewTuning = ReviewTuning()
    observability: ObservabilitySettings = ObservabilitySettings()
    storage: StorageSettings = StorageSettings()
    environment: Literal["dev", "qa", "prod"] | str = "dev"

    model_config = SettingsConfigDict(env_nested_delimiter="__", env_prefix="PLAN_VERIFIER_", case_sensitive=False)


@lru_cache(maxsize=1)
def get_settings(**kwargs: Any) -> VerifierSettings:
    """Return cached settings instance."""
    return VerifierSettings(**kwargs)


def tuning_with_overrides(base: ReviewTuning, overrides: dict[str, Any] | None) -> ReviewTuning:
    """Return a copy of ``base`` with non-null overrides applied and validated.

    ``exclude_dirs`` overrides extend the base exclusions rather than replace them.
    """
    updates = {key: value for key, value in (overrides or {}).items() if value is not None}
    if not updates:
        return base
    merged = base.model_dump()
    if "exclude_dirs" in updates:
        updates["exclude_dirs"] = set(base.exclude_dirs) | set(updates["exclude_dirs"])
    merged.update(updates)
    return ReviewTuning.model_validate(merged)


__all__ = [
    "DEFAULT_EXCLUDE_DIRS",
    "ReviewTuning",
    "VerifierSettings",
    "get_settings",
    "tuning_with_overrides",
]
