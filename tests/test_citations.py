"""Tests for the Citation Validator."""

from __future__ import annotations

from claims.decision import Decision
from claims.models import DecisionStatus, Finding, Severity
from guardrails.citations import (
    check_explanation_references,
    check_fabricated_citations,
    check_hedged_overcitation,
    check_uncited_affirmative,
    hedge_phrases,
    missing_citations,
    summarize_findings,
    validate_citations,
)


class TestMissingCitations:
    def test_reports_unknown_ids_in_order(self, evidence_items):
        assert missing_citations(["X-001", "X-999", "X-777", "X-999"], evidence_items) == [
            "X-999",
            "X-777",
        ]

    def test_all_known(self, evidence_items):
        assert missing_citations(["X-001", "X-005"], evidence_items) == []


class TestFabricatedCitations:
    def test_one_critical_finding_per_unknown_id(self, evidence_items, decision_factory):
        decision = decision_factory(citations=("X-001", "X-999"))
        findings = check_fabricated_citations(decision, evidence_items)
        assert len(findings) == 1
        assert findings[0].severity is Severity.CRITICAL
        assert "X-999" in findings[0].description

    def test_validate_escalates_and_names_invalid_id(self, evidence_items, decision_factory):
        decision = validate_citations(decision_factory(citations=("X-999",)), evidence_items)
        assert decision.status is DecisionStatus.MANUAL_REVIEW
        assert any("X-999" in w for w in decision.warnings)


class TestUncitedAffirmative:
    def test_covered_without_citations_is_critical(self, decision_factory):
        finding = check_uncited_affirmative(decision_factory(citations=()))
        assert finding is not None
        assert finding.severity is Severity.CRITICAL

    def test_referral_without_citations_is_fine(self):
        assert check_uncited_affirmative(Decision.no_evidence()) is None


class TestHedgedOvercitation:
    def test_hedge_phrases_detected(self):
        assert hedge_phrases("This is PROBABLY covered, I think.") == ["i think", "probably"]

    def test_medium_finding_for_hedged_low_confidence_overcitation(self, decision_factory):
        decision = decision_factory(
            confidence=0.4,
            citations=("X-001", "X-002", "X-003", "X-004", "X-005", "X-006"),
            explanation="It is probably covered under [X-001].",
        )
        finding = check_hedged_overcitation(decision)
        assert finding is not None
        assert finding.severity is Severity.MEDIUM

    def test_no_finding_with_few_citations(self, decision_factory):
        decision = decision_factory(confidence=0.4, explanation="Probably covered [X-001].")
        assert check_hedged_overcitation(decision) is None


class TestExplanationReferences:
    def test_low_finding_when_explanation_ignores_citations(self, decision_factory):
        finding = check_explanation_references(
            decision_factory(explanation="Looks fine to me.")
        )
        assert finding is not None
        assert finding.severity is Severity.LOW

    def test_bracketed_reference_satisfies_check(self, decision_factory):
        assert check_explanation_references(decision_factory()) is None


class TestValidateCitations:
    def test_sound_decision_passes_untouched(self, evidence_items, decision_factory):
        decision = decision_factory()
        assert validate_citations(decision, evidence_items) == decision

    def test_informational_findings_keep_status(self, evidence_items, decision_factory):
        decision = validate_citations(
            decision_factory(explanation="Looks fine to me."), evidence_items
        )
        assert decision.status is DecisionStatus.COVERED
        assert [f.check for f in decision.findings] == ["unreferenced_citations"]


def test_summarize_findings_orders_by_severity():
    findings = [
        Finding(check="a", severity=Severity.LOW, description="low"),
        Finding(check="b", severity=Severity.CRITICAL, description="critical"),
        Finding(check="c", severity=Severity.HIGH, description="high"),
    ]
    assert summarize_findings(findings) == ["[Critical] critical", "[High] high", "[Low] low"]
