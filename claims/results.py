"""Result values for the pipeline's external calls.

"No evidence" and "unparseable model output" are expected outcomes, so they
travel as values (``Retrieved`` with an empty tuple, ``Fault``) rather than as
exceptions.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict

from claims.models import CandidateDecision, EvidenceItem


class FaultKind(str, Enum):
    EVIDENCE_UNAVAILABLE = "EvidenceUnavailable"
    GENERATION_FAILURE = "GenerationFailure"
    GENERATION_PARSE_FAILURE = "GenerationParseFailure"
    PERSISTENCE_FAILURE = "PersistenceFailure"


class Fault(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: FaultKind
    detail: str
    raw_output: Optional[str] = None


class Retrieved(BaseModel):
    model_config = ConfigDict(frozen=True)

    evidence: tuple[EvidenceItem, ...] = ()


class Generated(BaseModel):
    model_config = ConfigDict(frozen=True)

    candidate: CandidateDecision
    attempts: int = 1


RetrievalOutcome = Union[Retrieved, Fault]
GenerationOutcome = Union[Generated, Fault]
