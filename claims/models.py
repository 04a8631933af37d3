"""
Core claim-validation values: request, evidence, candidate decision, findings.

All models are frozen pydantic models. A value produced by one stage is only
ever read by the next one; stages build new values instead of mutating.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DecisionStatus(str, Enum):
    COVERED = "Covered"
    NOT_COVERED = "NotCovered"
    MANUAL_REVIEW = "ManualReview"
    ERROR = "Error"

    @property
    def strictness(self) -> int:
        return _STRICTNESS[self]

    @property
    def is_affirmative(self) -> bool:
        return self in (DecisionStatus.COVERED, DecisionStatus.NOT_COVERED)

    @classmethod
    def parse(cls, value: str) -> "DecisionStatus":
        """Map a model-produced status string onto a DecisionStatus."""
        key = "".join(ch for ch in str(value).lower() if ch.isalpha())
        try:
            return _STATUS_ALIASES[key]
        except KeyError:
            raise ValueError(f"Unknown decision status: {value!r}") from None


# Covered/NotCovered < ManualReview < Error
_STRICTNESS = {
    DecisionStatus.COVERED: 0,
    DecisionStatus.NOT_COVERED: 0,
    DecisionStatus.MANUAL_REVIEW: 1,
    DecisionStatus.ERROR: 2,
}

_STATUS_ALIASES = {
    "covered": DecisionStatus.COVERED,
    "approved": DecisionStatus.COVERED,
    "notcovered": DecisionStatus.NOT_COVERED,
    "denied": DecisionStatus.NOT_COVERED,
    "manualreview": DecisionStatus.MANUAL_REVIEW,
    "needsmanualreview": DecisionStatus.MANUAL_REVIEW,
    "error": DecisionStatus.ERROR,
}


class Severity(str, Enum):
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @property
    def rank(self) -> int:
        return {"Critical": 4, "High": 3, "Medium": 2, "Low": 1}[self.value]


class RoutingTag(str, Enum):
    AUTO_APPROVED = "auto-approved"
    REDUCED_REVIEW = "reduced-review"


class ClaimRequest(BaseModel):
    """The claim under review. Immutable once submitted."""

    model_config = ConfigDict(frozen=True)

    policy_number: str = Field(min_length=1)
    category: str = Field(min_length=1)  # health | motor | life | ...
    amount: float = Field(gt=0)
    description: str
    supporting_document_ids: tuple[str, ...] = ()
    incident_date: Optional[date] = None


class EvidenceItem(BaseModel):
    """One retrieved policy clause."""

    model_config = ConfigDict(frozen=True)

    evidence_id: str = Field(min_length=1)
    category: str = ""
    text: str = ""
    score: float = Field(ge=0.0, le=1.0)
    tags: tuple[str, ...] = ()

    @property
    def is_exclusion(self) -> bool:
        return _marked(self, ("exclusion",), _EXCLUSION_PHRASES)

    @property
    def is_limitation(self) -> bool:
        return _marked(self, ("limitation", "limit"), _LIMITATION_PHRASES)


# Clause wording that marks a clause when the store carries no type metadata.
_EXCLUSION_PHRASES = ("exclusion", "excluded", "not covered")
_LIMITATION_PHRASES = ("limitation", "limit of", "limited to", "maximum", "up to", "not exceed", "capped")


def _marked(item: EvidenceItem, labels: tuple[str, ...], phrases: tuple[str, ...]) -> bool:
    tags = [t.lower() for t in item.tags] + [item.category.lower()]
    if any(label in tag for label in labels for tag in tags):
        return True
    evidence_id = item.evidence_id.lower()
    if any(label in evidence_id for label in labels):
        return True
    text = item.text.lower()
    return any(phrase in text for phrase in phrases)


class CandidateDecision(BaseModel):
    """Decision as produced by the language model, before any guardrail."""

    model_config = ConfigDict(frozen=True)

    status: DecisionStatus
    explanation: str = ""
    citations: tuple[str, ...] = ()
    confidence: float = Field(ge=0.0, le=1.0)
    required_documents: tuple[str, ...] = ()

    @field_validator("status", mode="before")
    @classmethod
    def _normalise_status(cls, value):
        if isinstance(value, DecisionStatus):
            return value
        return DecisionStatus.parse(value)

    @field_validator("citations", "required_documents", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return () if value is None else value


class Finding(BaseModel):
    """Output of one guardrail check."""

    model_config = ConfigDict(frozen=True)

    check: str
    severity: Severity
    description: str
    sources: tuple[str, ...] = ()

    def summary(self) -> str:
        conflict = " vs ".join(self.sources)
        return f"[{self.severity.value}] {self.description}" + (f": {conflict}" if conflict else "")


UNAVAILABLE_TEXT = "[unavailable]"


class SupportingDocument(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_id: str
    text: str
    available: bool = True

    @classmethod
    def unavailable(cls, document_id: str) -> "SupportingDocument":
        return cls(document_id=document_id, text=UNAVAILABLE_TEXT, available=False)
