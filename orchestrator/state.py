"""Pipeline state for the claim decision LangGraph workflow."""

from typing import Optional, TypedDict

from claims.audit import AuditRecord, StageTransition
from claims.decision import Decision
from claims.models import ClaimRequest, EvidenceItem, SupportingDocument
from claims.results import Fault


class PipelineState(TypedDict, total=False):
    """State passed between nodes of one validation run."""

    claim: ClaimRequest
    supporting_document_ids: tuple[str, ...]

    # retrieve_evidence output
    evidence: tuple[EvidenceItem, ...]

    # current decision; absent until generation or a short-circuit sets it
    decision: Decision
    fault: Optional[Fault]
    terminal: bool  # short-circuited or faulted; remaining transforms are skipped
    stage_trace: list[StageTransition]

    # supporting_document_pass output
    supporting_documents: list[SupportingDocument]

    # build_audit_record / persist output
    audit_record: AuditRecord
    persisted: bool
