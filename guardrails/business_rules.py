"""
Business Rule Engine: amount tiers and confidence thresholds.

A deterministic decision table evaluated in a fixed order:

  0. any Critical finding          → ManualReview, remaining rules skipped
  1. confidence < 0.85             → ManualReview
  2. amount > 5,000 and Covered    → ManualReview (regardless of confidence)
  3. amount < 500, confidence ≥ 0.95, Covered, documents present
                                   → Covered, tagged auto-approved
  4. 500 ≤ amount ≤ 5,000, confidence ≥ 0.85, affirmative status
                                   → status kept, tagged reduced-review

Allowed direction: may escalate status to ManualReview; may tag an
affirmative status. Boundaries come from ``BusinessRuleThresholds``.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from claims.config import BusinessRuleThresholds
from claims.decision import Decision
from claims.models import ClaimRequest, DecisionStatus, RoutingTag

logger = logging.getLogger(__name__)

Rule = Callable[[Decision, ClaimRequest, bool, BusinessRuleThresholds], Decision]


def _fmt(value: float) -> str:
    return f"${value:,.2f}"


def rule_low_confidence(
    decision: Decision, claim: ClaimRequest, has_docs: bool, t: BusinessRuleThresholds
) -> Decision:
    if decision.confidence < t.confidence_threshold:
        return decision.escalate(
            DecisionStatus.MANUAL_REVIEW,
            f"Confidence below threshold ({decision.confidence:.2f} < {t.confidence_threshold:.2f}).",
        )
    return decision


def rule_high_value(
    decision: Decision, claim: ClaimRequest, has_docs: bool, t: BusinessRuleThresholds
) -> Decision:
    if claim.amount > t.high_value_threshold and decision.status is DecisionStatus.COVERED:
        return decision.escalate(
            DecisionStatus.MANUAL_REVIEW,
            f"Amount {_fmt(claim.amount)} exceeds auto-approval limit {_fmt(t.high_value_threshold)}.",
        )
    return decision


def rule_auto_approve(
    decision: Decision, claim: ClaimRequest, has_docs: bool, t: BusinessRuleThresholds
) -> Decision:
    if (
        claim.amount < t.low_value_threshold
        and decision.confidence >= t.auto_approve_confidence
        and decision.status is DecisionStatus.COVERED
        and has_docs
    ):
        return decision.with_tag(RoutingTag.AUTO_APPROVED)
    return decision


def rule_reduced_review(
    decision: Decision, claim: ClaimRequest, has_docs: bool, t: BusinessRuleThresholds
) -> Decision:
    if (
        t.low_value_threshold <= claim.amount <= t.high_value_threshold
        and decision.confidence >= t.confidence_threshold
        and decision.status.is_affirmative
    ):
        return decision.with_tag(RoutingTag.REDUCED_REVIEW)
    return decision


RULES: tuple[tuple[str, Rule], ...] = (
    ("low_confidence", rule_low_confidence),
    ("high_value", rule_high_value),
    ("auto_approve", rule_auto_approve),
    ("reduced_review", rule_reduced_review),
)


def apply_business_rules(
    decision: Decision,
    claim: ClaimRequest,
    has_supporting_documents: bool,
    thresholds: Optional[BusinessRuleThresholds] = None,
) -> Decision:
    t = thresholds or BusinessRuleThresholds()

    if decision.has_critical:
        logger.info("apply_business_rules: critical finding present, skipping rule table")
        return decision.escalate(
            DecisionStatus.MANUAL_REVIEW, "Critical guardrail finding requires manual review."
        )

    for name, rule in RULES:
        before = decision.status
        decision = rule(decision, claim, has_supporting_documents, t)
        if decision.status is not before:
            logger.info("apply_business_rules: %s -> %s", name, decision.status.value)

    logger.info(
        "apply_business_rules: status=%s tags=%s",
        decision.status.value,
        [tag.value for tag in decision.routing_tags],
    )
    return decision
