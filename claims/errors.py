"""Exceptions raised at collaborator boundaries.

The pipeline converts these into ``claims.results.Fault`` values; none of them
reaches the caller of ``DecisionPipeline.validate_claim``.
"""

from __future__ import annotations

from typing import Optional


class ClaimPipelineError(Exception):
    """Base class for claim pipeline failures."""


class EvidenceUnavailable(ClaimPipelineError):
    """Transport failure from the evidence gateway (not 'no results')."""


class GenerationFailure(ClaimPipelineError):
    """Timeout or transport error from the decision generator."""


class GenerationParseFailure(ClaimPipelineError):
    """The decision generator answered, but not with a valid decision."""

    def __init__(self, message: str, raw_output: Optional[str] = None) -> None:
        super().__init__(message)
        self.raw_output = raw_output


class DocumentUnavailable(ClaimPipelineError):
    """Text for a supporting document could not be extracted."""


class PersistenceFailure(ClaimPipelineError):
    """The audit sink could not store a record."""


class MonotonicityViolation(ClaimPipelineError):
    """A stage tried to loosen a decision's status."""

    def __init__(self, stage: str, before, after) -> None:
        super().__init__(
            f"Stage {stage!r} moved status from {before.value} to {after.value}"
        )
        self.stage = stage
        self.before = before
        self.after = after
