"""Error taxonomy for the plan verifier.

Only problems with the inputs themselves are raised. Convention judgments
(missing precedent, contradicted naming) are reported as findings.
"""
from __future__ import annotations


class PlanVerifierError(Exception):
    """Base class for fatal verifier errors."""

    remediation = "Check the plan path and codebase root, then rerun the review."


class CodebaseIndexError(PlanVerifierError):
    """The codebase root does not exist or cannot be read."""

    remediation = "Point the review at an existing, readable codebase directory."


class IndexCancelled(PlanVerifierError):
    """Indexing was abandoned by the caller; no partial index is returned."""

    remediation = "Rerun the review without cancelling the indexing pass."


class PlanParseError(PlanVerifierError):
    """The plan document is unreadable or has no task structure."""

    remediation = "Structure the plan with task headings and list-item steps."


class ApplyChangesError(PlanVerifierError):
    """Surgical changes cannot be applied to the plan."""

    remediation = "Only APPROVED_WITH_CHANGES reviews of an unchanged plan can be applied."


class PermissionWarning(UserWarning):
    """A subtree of the codebase could not be read and was skipped."""


__all__ = [
    "ApplyChangesError",
    "CodebaseIndexError",
    "IndexCancelled",
    "PermissionWarning",
    "PlanParseError",
    "PlanVerifierError",
]
