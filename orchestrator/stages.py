"""
The post-generation transform stages, as a named table.

Each stage is a pure ``Decision -> Decision`` function. None of them may loosen
a status; ``apply_stage`` checks every transition against the strictness
ordering and records it for the audit trace.

  validate_citations     may escalate to ManualReview; never loosens
  detect_contradictions  may escalate to ManualReview; never loosens
  apply_business_rules   may escalate to ManualReview; may tag an affirmative status
"""

from __future__ import annotations

from functools import partial
from typing import Callable, NamedTuple, Sequence

from claims.audit import StageTransition
from claims.config import BusinessRuleThresholds
from claims.decision import Decision, check_monotonic
from claims.models import ClaimRequest, EvidenceItem, SupportingDocument
from guardrails.business_rules import apply_business_rules
from guardrails.citations import validate_citations
from guardrails.contradictions import detect_contradictions


class Stage(NamedTuple):
    name: str
    direction: str
    apply: Callable[[Decision], Decision]


STAGE_NAMES = ("validate_citations", "detect_contradictions", "apply_business_rules")


def validation_stages(
    claim: ClaimRequest,
    evidence: Sequence[EvidenceItem],
    thresholds: BusinessRuleThresholds,
    supporting_documents: Sequence[SupportingDocument] = (),
) -> list[Stage]:
    """The stage table bound to one run's claim, evidence and documents."""
    has_documents = any(d.available for d in supporting_documents)
    return [
        Stage(
            "validate_citations",
            "escalate only",
            partial(validate_citations, evidence=evidence),
        ),
        Stage(
            "detect_contradictions",
            "escalate only",
            partial(
                detect_contradictions,
                claim=claim,
                evidence=evidence,
                supporting_documents=supporting_documents,
            ),
        ),
        Stage(
            "apply_business_rules",
            "escalate or tag",
            partial(
                apply_business_rules,
                claim=claim,
                has_supporting_documents=has_documents,
                thresholds=thresholds,
            ),
        ),
    ]


def apply_stage(
    stage: Stage, decision: Decision, prefix: str = ""
) -> tuple[Decision, StageTransition]:
    name = f"{prefix}{stage.name}"
    after = stage.apply(decision)
    check_monotonic(name, decision, after)
    return after, StageTransition(
        stage=name, status_before=decision.status, status_after=after.status
    )


def run_stages(
    decision: Decision, stages: Sequence[Stage], prefix: str = ""
) -> tuple[Decision, list[StageTransition]]:
    trace: list[StageTransition] = []
    for stage in stages:
        decision, transition = apply_stage(stage, decision, prefix)
        trace.append(transition)
    return decision, trace
