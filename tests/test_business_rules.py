"""Tests for the Business Rule Engine decision table."""

from __future__ import annotations

import pytest

from claims.config import BusinessRuleThresholds
from claims.models import DecisionStatus, Finding, RoutingTag, Severity
from guardrails.business_rules import apply_business_rules


class TestBusinessRules:
    def test_auto_approve_low_value_high_confidence_with_documents(
        self, decision_factory, claim_factory
    ):
        decision = apply_business_rules(
            decision_factory(confidence=0.97), claim_factory(amount=300), has_supporting_documents=True
        )
        assert decision.status is DecisionStatus.COVERED
        assert decision.routing_tags == (RoutingTag.AUTO_APPROVED,)

    def test_no_auto_approve_without_documents(self, decision_factory, claim_factory):
        decision = apply_business_rules(
            decision_factory(confidence=0.97), claim_factory(amount=300), has_supporting_documents=False
        )
        assert decision.status is DecisionStatus.COVERED
        assert decision.routing_tags == ()

    def test_high_value_forces_review_despite_confidence(self, decision_factory, claim_factory):
        decision = apply_business_rules(
            decision_factory(confidence=0.99), claim_factory(amount=7000), has_supporting_documents=True
        )
        assert decision.status is DecisionStatus.MANUAL_REVIEW

    def test_high_value_boundary_is_exclusive(self, decision_factory, claim_factory):
        decision = apply_business_rules(
            decision_factory(confidence=0.9), claim_factory(amount=5000), has_supporting_documents=False
        )
        assert decision.status is DecisionStatus.COVERED
        assert decision.routing_tags == (RoutingTag.REDUCED_REVIEW,)

    def test_high_value_denial_kept(self, decision_factory, claim_factory):
        decision = apply_business_rules(
            decision_factory(status="NotCovered", confidence=0.9, citations=("X-003",)),
            claim_factory(amount=7000),
            has_supporting_documents=False,
        )
        assert decision.status is DecisionStatus.NOT_COVERED

    def test_low_confidence_forces_review(self, decision_factory, claim_factory):
        decision = apply_business_rules(
            decision_factory(confidence=0.8), claim_factory(amount=1000), has_supporting_documents=True
        )
        assert decision.status is DecisionStatus.MANUAL_REVIEW
        assert decision.routing_tags == ()

    def test_mid_band_reduced_review_for_denial(self, decision_factory, claim_factory):
        decision = apply_business_rules(
            decision_factory(status="NotCovered", confidence=0.9, citations=("X-003",)),
            claim_factory(amount=1200),
            has_supporting_documents=False,
        )
        assert decision.status is DecisionStatus.NOT_COVERED
        assert decision.routing_tags == (RoutingTag.REDUCED_REVIEW,)

    def test_critical_finding_short_circuits(self, decision_factory, claim_factory):
        critical = Finding(check="exclusion_conflict", severity=Severity.CRITICAL, description="x")
        decision = decision_factory().model_copy(update={"findings": (critical,)})
        result = apply_business_rules(decision, claim_factory(amount=300), has_supporting_documents=True)
        assert result.status is DecisionStatus.MANUAL_REVIEW
        assert result.routing_tags == ()

    def test_referral_is_never_tagged(self, claim_factory):
        from claims.decision import Decision

        decision = Decision.referral(DecisionStatus.MANUAL_REVIEW, "review", confidence=0.99)
        result = apply_business_rules(decision, claim_factory(amount=1000), has_supporting_documents=True)
        assert result.status is DecisionStatus.MANUAL_REVIEW
        assert result.routing_tags == ()

    def test_custom_thresholds(self, decision_factory, claim_factory):
        thresholds = BusinessRuleThresholds(high_value_threshold=1000, low_value_threshold=100)
        decision = apply_business_rules(
            decision_factory(confidence=0.99),
            claim_factory(amount=1500),
            has_supporting_documents=True,
            thresholds=thresholds,
        )
        assert decision.status is DecisionStatus.MANUAL_REVIEW

    def test_thresholds_must_be_ordered(self):
        with pytest.raises(ValueError):
            BusinessRuleThresholds(high_value_threshold=100, low_value_threshold=500)

    @pytest.mark.parametrize(
        "amount,confidence,has_docs",
        [(300, 0.97, True), (1200, 0.9, False), (7000, 0.99, True), (450, 0.6, False)],
    )
    def test_deterministic(self, decision_factory, claim_factory, amount, confidence, has_docs):
        decision = decision_factory(confidence=confidence)
        claim = claim_factory(amount=amount)
        results = [apply_business_rules(decision, claim, has_docs) for _ in range(5)]
        assert all(r == results[0] for r in results)
