"""
Audit record for one validation run.

Created exactly once, after the pipeline reaches its terminal stage. The only
later change is a human override, which appends an ``AuditEntry`` and never
rewrites what was recorded before.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from claims.decision import Decision, Verdict
from claims.models import ClaimRequest, DecisionStatus, EvidenceItem, Finding
from claims.results import Fault, FaultKind


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EvidenceSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    evidence_id: str
    score: float


class StageTransition(BaseModel):
    model_config = ConfigDict(frozen=True)

    stage: str
    status_before: Optional[DecisionStatus] = None
    status_after: DecisionStatus


class AuditEntry(BaseModel):
    """A human override appended to an existing record."""

    model_config = ConfigDict(frozen=True)

    reviewer_id: str = Field(min_length=1)
    note: str = ""
    previous_status: DecisionStatus
    new_status: DecisionStatus
    reviewed_at: datetime = Field(default_factory=_utcnow)


class AuditRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    claim_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = Field(default_factory=_utcnow)
    claim: ClaimRequest
    evidence: tuple[EvidenceSnapshot, ...] = ()
    decision: Decision
    # Affirmative verdicts cannot be built without citations.
    verdict: Verdict
    findings: tuple[Finding, ...] = ()
    supporting_document_ids: tuple[str, ...] = ()
    stage_trace: tuple[StageTransition, ...] = ()
    fault_kind: Optional[FaultKind] = None
    raw_output: Optional[str] = None
    entries: tuple[AuditEntry, ...] = ()

    @property
    def current_status(self) -> DecisionStatus:
        """Status after any human overrides."""
        if self.entries:
            return self.entries[-1].new_status
        return self.decision.status

    def with_override(
        self,
        reviewer_id: str,
        note: str,
        new_status: DecisionStatus,
        reviewed_at: Optional[datetime] = None,
    ) -> "AuditRecord":
        entry = AuditEntry(
            reviewer_id=reviewer_id,
            note=note,
            previous_status=self.current_status,
            new_status=new_status,
            reviewed_at=reviewed_at or _utcnow(),
        )
        return self.model_copy(update={"entries": self.entries + (entry,)})


def build_audit_record(
    claim: ClaimRequest,
    evidence: Iterable[EvidenceItem],
    decision: Decision,
    stage_trace: Iterable[StageTransition] = (),
    fault: Optional[Fault] = None,
    claim_id: Optional[str] = None,
    supporting_document_ids: Optional[Iterable[str]] = None,
) -> AuditRecord:
    kwargs = {"claim_id": claim_id} if claim_id else {}
    if supporting_document_ids is None:
        supporting_document_ids = claim.supporting_document_ids
    return AuditRecord(
        claim=claim,
        evidence=tuple(EvidenceSnapshot(evidence_id=e.evidence_id, score=e.score) for e in evidence),
        decision=decision,
        verdict=decision.verdict,
        findings=decision.findings,
        supporting_document_ids=tuple(supporting_document_ids),
        stage_trace=tuple(stage_trace),
        fault_kind=fault.kind if fault else None,
        raw_output=fault.raw_output if fault else None,
        **kwargs,
    )
