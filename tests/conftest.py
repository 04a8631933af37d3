"""
Pytest configuration and shared fixtures for the claim decision pipeline tests.

The collaborators (evidence gateway, decision generator, document extractor,
audit sink) are replaced by small in-memory fakes that count their calls.
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import Optional, Sequence

import pytest

from claims.config import PipelineConfig
from claims.decision import Decision
from claims.errors import DocumentUnavailable, EvidenceUnavailable, PersistenceFailure
from claims.models import CandidateDecision, ClaimRequest, EvidenceItem
from db.audit_sink import SqlAuditSink
from db.database import make_session_factory
from orchestrator.pipeline import DecisionPipeline

# --- Test constants ---
POLICY_NUMBER = "POL-1001"
CATEGORY = "health"


# --- Fakes ---
class FakeEvidenceGateway:
    def __init__(self, evidence: Sequence[EvidenceItem], failures: int = 0) -> None:
        self._evidence = list(evidence)
        self._failures = failures
        self.calls = 0

    def retrieve(self, query_text: str, category: str) -> list[EvidenceItem]:
        self.calls += 1
        if self.calls <= self._failures:
            raise EvidenceUnavailable("vector store timed out")
        return list(self._evidence)


class FakeDecisionGenerator:
    """Returns (or raises) the scripted responses in order; the last one repeats."""

    def __init__(self, responses: Sequence) -> None:
        self._responses = list(responses)
        self.calls = 0
        self.extra_contexts: list[Optional[str]] = []

    def generate(self, claim, evidence, extra_context=None) -> CandidateDecision:
        self.calls += 1
        self.extra_contexts.append(extra_context)
        if not self._responses:
            raise AssertionError("decision generator should not have been called")
        response = self._responses[min(self.calls, len(self._responses)) - 1]
        if isinstance(response, Exception):
            raise response
        return response


class FakeDocumentExtractor:
    def __init__(self, texts: Optional[dict[str, str]] = None) -> None:
        self._texts = texts or {}
        self.calls: list[str] = []

    def extract(self, document_id: str) -> str:
        self.calls.append(document_id)
        if document_id not in self._texts:
            raise DocumentUnavailable(f"document {document_id!r} not found")
        return self._texts[document_id]


class FakeAuditSink:
    def __init__(self, failures: int = 0) -> None:
        self._failures = failures
        self.calls = 0
        self.records: dict[str, object] = {}

    def persist(self, record) -> str:
        self.calls += 1
        if self.calls <= self._failures:
            raise PersistenceFailure("database is locked")
        self.records.setdefault(record.claim_id, record)
        return record.claim_id


# --- Domain fixtures ---
@pytest.fixture
def evidence_items() -> list[EvidenceItem]:
    """Five health clauses X-001..X-005; X-003 is an exclusion, X-002/X-005 are limits."""
    return [
        EvidenceItem(
            evidence_id="X-001",
            category=CATEGORY,
            text="Outpatient consultations and prescribed treatment are covered.",
            score=0.91,
            tags=("coverage",),
        ),
        EvidenceItem(
            evidence_id="X-002",
            category=CATEGORY,
            text="Inpatient hospital stays are covered. Benefits are subject to a limit of $10,000 per policy year.",
            score=0.84,
            tags=("coverage", "limitation"),
        ),
        EvidenceItem(
            evidence_id="X-003",
            category=CATEGORY,
            text="Cosmetic and elective procedures are excluded from cover.",
            score=0.77,
            tags=("exclusion",),
        ),
        EvidenceItem(
            evidence_id="X-004",
            category=CATEGORY,
            text="Claims must be submitted within 90 days of treatment.",
            score=0.65,
            tags=("procedure",),
        ),
        EvidenceItem(
            evidence_id="X-005",
            category=CATEGORY,
            text="Emergency ambulance transport is reimbursed up to $2,000 per incident.",
            score=0.58,
            tags=("limitation",),
        ),
    ]


def make_claim(amount: float = 300.0, description: str = "Outpatient consultation for a sprained ankle.", **kwargs) -> ClaimRequest:
    return ClaimRequest(
        policy_number=kwargs.pop("policy_number", POLICY_NUMBER),
        category=kwargs.pop("category", CATEGORY),
        amount=amount,
        description=description,
        **kwargs,
    )


def make_candidate(
    status: str = "Covered",
    confidence: float = 0.97,
    citations: Sequence[str] = ("X-001",),
    explanation: str = "Outpatient treatment is covered under [X-001].",
    **kwargs,
) -> CandidateDecision:
    return CandidateDecision(
        status=status,
        explanation=explanation,
        citations=tuple(citations),
        confidence=confidence,
        **kwargs,
    )


def make_decision(**kwargs) -> Decision:
    return Decision.from_candidate(make_candidate(**kwargs))


@pytest.fixture
def claim_factory():
    return make_claim


@pytest.fixture
def candidate_factory():
    return make_candidate


@pytest.fixture
def decision_factory():
    return make_decision


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig()


# --- Pipeline fixtures ---
@pytest.fixture
def make_pipeline(config, evidence_items):
    """Build a DecisionPipeline over fakes; returns the pipeline and its collaborators."""

    def _make(
        responses: Sequence = (),
        evidence: Optional[Sequence[EvidenceItem]] = None,
        evidence_failures: int = 0,
        documents: Optional[dict[str, str]] = None,
        sink=None,
        retry_queue=None,
        pipeline_config: Optional[PipelineConfig] = None,
    ) -> SimpleNamespace:
        gateway = FakeEvidenceGateway(
            evidence_items if evidence is None else evidence, failures=evidence_failures
        )
        generator = FakeDecisionGenerator(responses)
        extractor = FakeDocumentExtractor(documents)
        sink = sink if sink is not None else FakeAuditSink()
        sleeps: list[float] = []
        pipeline = DecisionPipeline(
            pipeline_config or config,
            evidence_gateway=gateway,
            decision_generator=generator,
            audit_sink=sink,
            document_extractor=extractor,
            retry_queue=retry_queue,
            sleep=sleeps.append,
        )
        return SimpleNamespace(
            pipeline=pipeline,
            gateway=gateway,
            generator=generator,
            extractor=extractor,
            sink=sink,
            sleeps=sleeps,
        )

    return _make


@pytest.fixture
def fake_sink_factory():
    return FakeAuditSink


# --- Database fixtures ---
@pytest.fixture
def sql_sink(tmp_path) -> SqlAuditSink:
    """SqlAuditSink over a throwaway SQLite file."""
    return SqlAuditSink(make_session_factory(f"sqlite:///{tmp_path / 'audit.db'}"))
