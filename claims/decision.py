"""
The Decision value threaded through the validation pipeline.

Status may only move towards stricter review:

    Covered / NotCovered  <  ManualReview  <  Error

``Decision.escalate`` is the single place a status changes, so every stage
inherits the monotonic-downgrade guarantee instead of re-implementing it.
"""

from __future__ import annotations

import logging
from typing import Iterable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from claims.errors import MonotonicityViolation
from claims.models import (
    CandidateDecision,
    DecisionStatus,
    Finding,
    RoutingTag,
    Severity,
)

logger = logging.getLogger(__name__)

NO_EVIDENCE_EXPLANATION = "no relevant evidence retrieved"


class AffirmativeVerdict(BaseModel):
    """Covered / NotCovered: always backed by at least one citation."""

    model_config = ConfigDict(frozen=True)

    status: Literal[DecisionStatus.COVERED, DecisionStatus.NOT_COVERED]
    citations: tuple[str, ...] = Field(min_length=1)
    routing_tags: tuple[RoutingTag, ...] = ()


class ReferralVerdict(BaseModel):
    """ManualReview / Error: carries the reason instead of citations."""

    model_config = ConfigDict(frozen=True)

    status: Literal[DecisionStatus.MANUAL_REVIEW, DecisionStatus.ERROR]
    reason: str


Verdict = Union[AffirmativeVerdict, ReferralVerdict]


class Decision(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: DecisionStatus
    explanation: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    citations: tuple[str, ...] = ()
    required_documents: tuple[str, ...] = ()
    findings: tuple[Finding, ...] = ()
    warnings: tuple[str, ...] = ()
    routing_tags: tuple[RoutingTag, ...] = ()
    candidate: Optional[CandidateDecision] = None

    # ------------------------------------------------------------------
    # constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_candidate(cls, candidate: CandidateDecision) -> "Decision":
        return cls(
            status=candidate.status,
            explanation=candidate.explanation,
            confidence=candidate.confidence,
            citations=candidate.citations,
            required_documents=candidate.required_documents,
            candidate=candidate,
        )

    @classmethod
    def referral(
        cls,
        status: DecisionStatus,
        explanation: str,
        required_documents: Iterable[str] = (),
        confidence: float = 0.0,
    ) -> "Decision":
        if status.is_affirmative:
            raise ValueError("referral decisions must be ManualReview or Error")
        return cls(
            status=status,
            explanation=explanation,
            confidence=confidence,
            required_documents=tuple(required_documents),
        )

    @classmethod
    def no_evidence(cls) -> "Decision":
        return cls.referral(
            DecisionStatus.MANUAL_REVIEW,
            NO_EVIDENCE_EXPLANATION,
            required_documents=("Policy Document", "Claim Evidence"),
        )

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------

    def escalate(self, target: DecisionStatus, reason: str) -> "Decision":
        """Move to ``target`` if it is stricter than the current status.

        Equal, looser or lateral targets leave the decision untouched.
        """
        if target.strictness <= self.status.strictness:
            if target is not self.status:
                logger.debug(
                    "escalate: ignoring %s -> %s (%s)", self.status.value, target.value, reason
                )
            return self
        explanation = f"{reason} {self.explanation}".strip() if reason else self.explanation
        return self.model_copy(
            update={
                "status": target,
                "explanation": explanation,
                "warnings": _append_unique(self.warnings, [reason] if reason else []),
                "routing_tags": (),
            }
        )

    def with_findings(self, findings: Iterable[Finding]) -> "Decision":
        """Record findings and apply the fixed severity-to-action mapping.

        Critical forces ManualReview, Critical and High add a warning,
        Medium and Low are informational.
        """
        findings = [f for f in findings if f not in self.findings]
        if not findings:
            return self
        warnings = [
            f.summary() for f in findings if f.severity in (Severity.CRITICAL, Severity.HIGH)
        ]
        updated = self.model_copy(
            update={
                "findings": self.findings + tuple(findings),
                "warnings": _append_unique(self.warnings, warnings),
            }
        )
        critical = [f for f in findings if f.severity is Severity.CRITICAL]
        if critical:
            updated = updated.escalate(
                DecisionStatus.MANUAL_REVIEW,
                f"Critical guardrail finding ({critical[0].check}): {critical[0].description}.",
            )
        return updated

    def with_warning(self, warning: str) -> "Decision":
        return self.model_copy(update={"warnings": _append_unique(self.warnings, [warning])})

    def with_tag(self, tag: RoutingTag) -> "Decision":
        if not self.status.is_affirmative:
            raise ValueError(f"routing tag {tag.value} requires an affirmative status")
        if tag in self.routing_tags:
            return self
        return self.model_copy(update={"routing_tags": self.routing_tags + (tag,)})

    def absorb(self, earlier: "Decision") -> "Decision":
        """Join with a decision from an earlier pass: stricter status wins."""
        merged = self.model_copy(
            update={
                "findings": earlier.findings
                + tuple(f for f in self.findings if f not in earlier.findings),
                "warnings": _append_unique(earlier.warnings, self.warnings),
            }
        )
        if earlier.status.is_affirmative and merged.status.is_affirmative and (
            earlier.status is not merged.status
        ):
            return merged.escalate(
                DecisionStatus.MANUAL_REVIEW,
                f"Validation passes disagree ({earlier.status.value} vs {merged.status.value}).",
            )
        return merged.escalate(
            earlier.status,
            f"Earlier validation pass concluded {earlier.status.value}.",
        )

    # ------------------------------------------------------------------
    # views
    # ------------------------------------------------------------------

    @property
    def asserted_status(self) -> DecisionStatus:
        """Status the model asserted, before any guardrail escalated it."""
        return self.candidate.status if self.candidate is not None else self.status

    @property
    def has_critical(self) -> bool:
        return any(f.severity is Severity.CRITICAL for f in self.findings)

    @property
    def verdict(self) -> Verdict:
        if self.status.is_affirmative:
            return AffirmativeVerdict(
                status=self.status, citations=self.citations, routing_tags=self.routing_tags
            )
        return ReferralVerdict(status=self.status, reason=self.explanation)


def check_monotonic(stage: str, before: Decision, after: Decision) -> None:
    """Raise if ``after`` is looser than ``before`` or changed laterally."""
    if after.status.strictness < before.status.strictness or (
        after.status.strictness == before.status.strictness and after.status is not before.status
    ):
        raise MonotonicityViolation(stage, before.status, after.status)


def _append_unique(existing: tuple[str, ...], new: Iterable[str]) -> tuple[str, ...]:
    out = list(existing)
    for item in new:
        if item and item not in out:
            out.append(item)
    return tuple(out)
