"""
DecisionPipeline: validates one claim decision end to end.

Stages (see orchestrator/graph.py for the edges):
  1. retrieve_evidence         EvidenceGateway, one retry on EvidenceUnavailable
  2. evidence_guardrail        no evidence → ManualReview, generator never called
  3. screen_input              prompt-injection screening of the description
  4. generate                  DecisionGenerator with bounded retries and backoff
  5. validate_citations        ┐
  6. detect_contradictions     ├ the transform table in orchestrator/stages.py
  7. apply_business_rules      ┘
  8. supporting_document_pass  optional second pass joined with the first
  9. build_audit_record        exactly once, after the run terminates
 10. persist                   AuditSink; failures go to the retry queue

``validate_claim`` never raises for pipeline failures: collaborator faults
become ManualReview or Error decisions and unexpected exceptions become Error.
"""

from __future__ import annotations

import functools
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, NamedTuple, Optional, Protocol, Sequence

from claims.audit import AuditRecord, StageTransition
from claims.audit import build_audit_record as make_audit_record
from claims.config import PipelineConfig
from claims.decision import Decision, check_monotonic
from claims.errors import EvidenceUnavailable, GenerationFailure, GenerationParseFailure
from claims.models import (
    CandidateDecision,
    ClaimRequest,
    DecisionStatus,
    EvidenceItem,
    SupportingDocument,
)
from claims.results import Fault, FaultKind, GenerationOutcome, Generated, RetrievalOutcome, Retrieved
from agents.document_agent import collect_supporting_documents, documents_as_context
from guardrails.screening import injection_finding, scan_for_injection
from orchestrator.graph import build_graph
from orchestrator.router import AUDIT_NODE
from orchestrator.stages import STAGE_NAMES, apply_stage, run_stages, validation_stages
from orchestrator.state import PipelineState

logger = logging.getLogger(__name__)

DOCUMENT_PASS_PREFIX = "supporting_document_pass."


# ---------------------------------------------------------------------------
# Collaborator contracts
# ---------------------------------------------------------------------------


class EvidenceGateway(Protocol):
    def retrieve(self, query_text: str, category: str) -> list[EvidenceItem]: ...


class DecisionGenerator(Protocol):
    def generate(
        self,
        claim: ClaimRequest,
        evidence: Sequence[EvidenceItem],
        extra_context: Optional[str] = None,
    ) -> CandidateDecision: ...


class DocumentExtractor(Protocol):
    def extract(self, document_id: str) -> str: ...


class AuditSink(Protocol):
    def persist(self, record: AuditRecord) -> str: ...


class RetryQueue(Protocol):
    def submit(self, record: AuditRecord) -> None: ...


class ValidationOutcome(NamedTuple):
    decision: Decision
    audit_id: Optional[str]


# ---------------------------------------------------------------------------
# Node wrapper
# ---------------------------------------------------------------------------


def _node(name: str):
    """Turn an unexpected exception inside a node into a terminal Error decision."""

    def decorator(method: Callable[["DecisionPipeline", PipelineState], PipelineState]):
        @functools.wraps(method)
        def wrapper(self: "DecisionPipeline", state: PipelineState) -> PipelineState:
            try:
                return method(self, state)
            except Exception as e:
                logger.exception("pipeline: stage %s failed unexpectedly", name)
                previous = state.get("decision")
                error = Decision.referral(
                    DecisionStatus.ERROR, f"Stage {name} failed: {type(e).__name__}: {e}"
                )
                if previous is not None:
                    error = error.model_copy(
                        update={"findings": previous.findings, "warnings": previous.warnings}
                    )
                return {
                    **state,
                    "decision": error,
                    "terminal": True,
                    "stage_trace": _trace(
                        state, name, previous.status if previous else None, error.status
                    ),
                }

        return wrapper

    return decorator


def _trace(
    state: PipelineState,
    stage: str,
    before: Optional[DecisionStatus],
    after: DecisionStatus,
) -> list[StageTransition]:
    transition = StageTransition(stage=stage, status_before=before, status_after=after)
    return list(state.get("stage_trace") or []) + [transition]


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class DecisionPipeline:
    def __init__(
        self,
        config: PipelineConfig,
        evidence_gateway: EvidenceGateway,
        decision_generator: DecisionGenerator,
        audit_sink: AuditSink,
        document_extractor: Optional[DocumentExtractor] = None,
        retry_queue: Optional[RetryQueue] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self._evidence = evidence_gateway
        self._generator = decision_generator
        self._sink = audit_sink
        self._extractor = document_extractor
        self._retry_queue = retry_queue
        self._sleep = sleep
        self._graph = build_graph(self).compile()

    # ---- public API --------------------------------------------------

    def validate_claim(
        self,
        claim: ClaimRequest,
        supporting_document_ids: Optional[Iterable[str]] = None,
    ) -> ValidationOutcome:
        ids = (
            tuple(supporting_document_ids)
            if supporting_document_ids is not None
            else claim.supporting_document_ids
        )
        logger.info(
            "pipeline: validating claim policy=%s category=%s amount=%.2f (%d document(s))",
            claim.policy_number,
            claim.category,
            claim.amount,
            len(ids),
        )
        initial: PipelineState = {
            "claim": claim,
            "supporting_document_ids": ids,
            "evidence": (),
            "fault": None,
            "terminal": False,
            "stage_trace": [],
            "supporting_documents": [],
            "persisted": False,
        }
        try:
            final = self._graph.invoke(initial)
        except Exception as e:
            logger.exception("pipeline: run aborted")
            return ValidationOutcome(
                Decision.referral(
                    DecisionStatus.ERROR, f"Pipeline failed: {type(e).__name__}: {e}"
                ),
                None,
            )

        decision: Decision = final["decision"]
        record = final.get("audit_record")
        logger.info(
            "pipeline: final status=%s confidence=%.2f findings=%d",
            decision.status.value,
            decision.confidence,
            len(decision.findings),
        )
        return ValidationOutcome(decision, record.claim_id if record is not None else None)

    def validate_claims(
        self, claims: Iterable[ClaimRequest], max_workers: int = 4
    ) -> list[ValidationOutcome]:
        """Validate independent claims concurrently; results keep input order."""
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="claim") as pool:
            return list(pool.map(self.validate_claim, claims))

    # ---- collaborator calls -----------------------------------------

    def _retrieve(self, claim: ClaimRequest) -> RetrievalOutcome:
        attempts = self.config.evidence_max_attempts
        last: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                evidence = self._evidence.retrieve(claim.description, claim.category)
                return Retrieved(evidence=tuple(evidence))
            except EvidenceUnavailable as e:
                last = e
                logger.warning("retrieve_evidence: attempt %d/%d failed: %s", attempt, attempts, e)
        return Fault(
            kind=FaultKind.EVIDENCE_UNAVAILABLE,
            detail=f"EvidenceUnavailable after {attempts} attempt(s): {last}",
        )

    def _generate(
        self,
        claim: ClaimRequest,
        evidence: Sequence[EvidenceItem],
        extra_context: Optional[str] = None,
    ) -> GenerationOutcome:
        attempts = self.config.generation_max_attempts
        last: Optional[Exception] = None
        for attempt in range(attempts):
            try:
                candidate = self._generator.generate(claim, evidence, extra_context)
                return Generated(candidate=candidate, attempts=attempt + 1)
            except GenerationParseFailure as e:
                logger.warning("generate: unparseable model output: %s", e)
                return Fault(
                    kind=FaultKind.GENERATION_PARSE_FAILURE, detail=str(e), raw_output=e.raw_output
                )
            except GenerationFailure as e:
                last = e
                logger.warning("generate: attempt %d/%d failed: %s", attempt + 1, attempts, e)
                if attempt + 1 < attempts:
                    self._sleep(self.config.generation_backoff_seconds * 2**attempt)
        return Fault(
            kind=FaultKind.GENERATION_FAILURE,
            detail=f"GenerationFailure after {attempts} attempt(s): {last}",
        )

    @staticmethod
    def _fault_decision(fault: Fault) -> Decision:
        if fault.kind is FaultKind.GENERATION_PARSE_FAILURE:
            return Decision.referral(
                DecisionStatus.ERROR,
                f"Decision generator returned unparseable output: {fault.detail}",
            )
        return Decision.referral(
            DecisionStatus.ERROR, f"Decision generation failed: {fault.detail}"
        )

    def _collect_documents(self, ids: Sequence[str]) -> list[SupportingDocument]:
        if self._extractor is None:
            logger.warning("supporting_document_pass: no document extractor configured")
            return [SupportingDocument.unavailable(i) for i in ids]
        return collect_supporting_documents(self._extractor, ids)

    # ---- nodes -------------------------------------------------------

    @_node("retrieve_evidence")
    def retrieve_evidence(self, state: PipelineState) -> PipelineState:
        outcome = self._retrieve(state["claim"])
        if isinstance(outcome, Fault):
            decision = Decision.referral(
                DecisionStatus.MANUAL_REVIEW, f"Evidence retrieval failed: {outcome.detail}"
            )
            logger.warning("retrieve_evidence: giving up, escalating to manual review")
            return {
                **state,
                "fault": outcome,
                "decision": decision,
                "terminal": True,
                "stage_trace": _trace(state, "retrieve_evidence", None, decision.status),
            }
        logger.info("retrieve_evidence: %d item(s)", len(outcome.evidence))
        return {**state, "evidence": outcome.evidence}

    @_node("evidence_guardrail")
    def evidence_guardrail(self, state: PipelineState) -> PipelineState:
        if state.get("terminal") or state.get("evidence"):
            return state
        decision = Decision.no_evidence()
        logger.info("evidence_guardrail: no evidence, skipping generation")
        return {
            **state,
            "decision": decision,
            "terminal": True,
            "stage_trace": _trace(state, "evidence_guardrail", None, decision.status),
        }

    @_node("screen_input")
    def screen_input(self, state: PipelineState) -> PipelineState:
        if not self.config.screen_prompt_injection:
            return state
        threats = scan_for_injection(state["claim"].description)
        if not threats:
            return state
        logger.warning("screen_input: %d threat(s) detected, skipping generation", len(threats))
        decision = Decision.referral(
            DecisionStatus.MANUAL_REVIEW, "Claim description failed input screening."
        ).with_findings([injection_finding(threats)])
        return {
            **state,
            "decision": decision,
            "terminal": True,
            "stage_trace": _trace(state, "screen_input", None, decision.status),
        }

    @_node("generate")
    def generate(self, state: PipelineState) -> PipelineState:
        outcome = self._generate(state["claim"], state["evidence"])
        if isinstance(outcome, Fault):
            decision = self._fault_decision(outcome)
            return {
                **state,
                "fault": outcome,
                "decision": decision,
                "terminal": True,
                "stage_trace": _trace(state, "generate", None, decision.status),
            }
        decision = Decision.from_candidate(outcome.candidate)
        logger.info(
            "generate: candidate %s after %d attempt(s)", decision.status.value, outcome.attempts
        )
        return {
            **state,
            "decision": decision,
            "stage_trace": _trace(state, "generate", None, decision.status),
        }

    def _transform(self, state: PipelineState, name: str) -> PipelineState:
        if state.get("terminal"):
            return state
        stages = validation_stages(state["claim"], state["evidence"], self.config.thresholds)
        stage = stages[STAGE_NAMES.index(name)]
        decision, transition = apply_stage(stage, state["decision"])
        return {
            **state,
            "decision": decision,
            "stage_trace": list(state.get("stage_trace") or []) + [transition],
        }

    @_node("validate_citations")
    def validate_citations(self, state: PipelineState) -> PipelineState:
        return self._transform(state, "validate_citations")

    @_node("detect_contradictions")
    def detect_contradictions(self, state: PipelineState) -> PipelineState:
        return self._transform(state, "detect_contradictions")

    @_node("apply_business_rules")
    def apply_business_rules(self, state: PipelineState) -> PipelineState:
        return self._transform(state, "apply_business_rules")

    @_node("supporting_document_pass")
    def supporting_document_pass(self, state: PipelineState) -> PipelineState:
        claim, evidence = state["claim"], state["evidence"]
        first: Decision = state["decision"]
        documents = self._collect_documents(state["supporting_document_ids"])
        trace = list(state.get("stage_trace") or [])

        outcome = self._generate(claim, evidence, documents_as_context(documents))
        fault = None
        if isinstance(outcome, Fault):
            fault = outcome
            second = self._fault_decision(outcome)
            trace.append(
                StageTransition(
                    stage=f"{DOCUMENT_PASS_PREFIX}generate", status_after=second.status
                )
            )
        else:
            second = Decision.from_candidate(outcome.candidate)
            trace.append(
                StageTransition(
                    stage=f"{DOCUMENT_PASS_PREFIX}generate", status_after=second.status
                )
            )
            stages = validation_stages(claim, evidence, self.config.thresholds, documents)
            second, stage_trace = run_stages(second, stages, prefix=DOCUMENT_PASS_PREFIX)
            trace.extend(stage_trace)

        merged = second.absorb(first)
        check_monotonic("supporting_document_pass", first, merged)
        trace.append(
            StageTransition(
                stage="supporting_document_pass",
                status_before=first.status,
                status_after=merged.status,
            )
        )
        logger.info(
            "supporting_document_pass: %s + %s -> %s",
            first.status.value,
            second.status.value,
            merged.status.value,
        )
        return {
            **state,
            "decision": merged,
            "fault": fault,
            "terminal": fault is not None,
            "supporting_documents": documents,
            "stage_trace": trace,
        }

    @_node("build_audit_record")
    def build_audit_record(self, state: PipelineState) -> PipelineState:
        decision: Decision = state["decision"]
        stage_trace = state.get("stage_trace") or []
        if decision.status.is_affirmative and not decision.citations:
            escalated = decision.escalate(
                DecisionStatus.MANUAL_REVIEW, "Affirmative decision has no citations."
            )
            stage_trace = _trace(state, AUDIT_NODE, decision.status, escalated.status)
            decision = escalated
        record = make_audit_record(
            claim=state["claim"],
            evidence=state.get("evidence") or (),
            decision=decision,
            stage_trace=stage_trace,
            fault=state.get("fault"),
            supporting_document_ids=state.get("supporting_document_ids") or (),
        )
        logger.info(
            "build_audit_record: %s verdict for %s", type(record.verdict).__name__, record.claim_id
        )
        return {**state, "decision": decision, "stage_trace": stage_trace, "audit_record": record}

    def persist(self, state: PipelineState) -> PipelineState:
        record: Optional[AuditRecord] = state.get("audit_record")
        if record is None:
            return state
        try:
            self._sink.persist(record)
        except Exception as e:
            logger.warning("persist: audit write for %s failed: %s", record.claim_id, e)
            if self._retry_queue is not None:
                self._retry_queue.submit(record)
            return {**state, "persisted": False}
        return {**state, "persisted": True}


def build_pipeline(config: Optional[PipelineConfig] = None) -> DecisionPipeline:
    """Wire the concrete collaborators named by ``config`` (``from_env`` if omitted)."""
    from agents.decision_agent import LlmDecisionGenerator
    from agents.document_agent import DocumentTextExtractor
    from db.audit_sink import SqlAuditSink
    from db.retry import PersistenceRetryQueue
    from knowledge_base.evidence import ChromaEvidenceGateway

    config = config or PipelineConfig.from_env()
    sink = SqlAuditSink.from_url(config.database_url)
    return DecisionPipeline(
        config=config,
        evidence_gateway=ChromaEvidenceGateway.from_config(config),
        decision_generator=LlmDecisionGenerator.from_config(config),
        audit_sink=sink,
        document_extractor=DocumentTextExtractor(config.documents_dir),
        retry_queue=PersistenceRetryQueue(
            sink,
            max_attempts=config.persist_max_attempts,
            backoff_seconds=config.persist_backoff_seconds,
        ),
    )
