"""Tests for the LLM decision generator (chat model mocked)."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from agents.decision_agent import LlmDecisionGenerator, parse_candidate
from claims.errors import GenerationFailure, GenerationParseFailure
from claims.models import DecisionStatus


def _mock_llm(content: str) -> MagicMock:
    llm = MagicMock()
    llm.invoke.return_value = AIMessage(content=content)
    return llm


VALID_ANSWER = json.dumps(
    {
        "status": "Covered",
        "explanation": "Outpatient care is covered under [X-001].",
        "citations": ["X-001"],
        "required_documents": ["Invoice"],
        "confidence": 0.92,
    }
)


class TestParseCandidate:
    def test_plain_json(self):
        candidate = parse_candidate(VALID_ANSWER)
        assert candidate.status is DecisionStatus.COVERED
        assert candidate.citations == ("X-001",)
        assert candidate.required_documents == ("Invoice",)

    def test_markdown_fences_stripped(self):
        candidate = parse_candidate(f"```json\n{VALID_ANSWER}\n```")
        assert candidate.confidence == pytest.approx(0.92)

    def test_key_aliases(self):
        candidate = parse_candidate(
            json.dumps(
                {
                    "decision": "Needs Manual Review",
                    "reasoning": "Unclear.",
                    "clauseReferences": "X-002",
                    "confidenceScore": 0.4,
                }
            )
        )
        assert candidate.status is DecisionStatus.MANUAL_REVIEW
        assert candidate.citations == ("X-002",)
        assert candidate.explanation == "Unclear."

    def test_invalid_json_keeps_raw_output(self):
        with pytest.raises(GenerationParseFailure) as exc:
            parse_candidate("The claim is covered.")
        assert exc.value.raw_output == "The claim is covered."

    def test_off_schema_json(self):
        with pytest.raises(GenerationParseFailure):
            parse_candidate(json.dumps({"status": "Covered", "confidence": 1.7}))

    def test_non_object_json(self):
        with pytest.raises(GenerationParseFailure):
            parse_candidate("[1, 2, 3]")


class TestLlmDecisionGenerator:
    def test_generate_returns_candidate(self, claim_factory, evidence_items):
        llm = _mock_llm(VALID_ANSWER)
        candidate = LlmDecisionGenerator(llm).generate(claim_factory(), evidence_items)
        assert candidate.status is DecisionStatus.COVERED
        llm.invoke.assert_called_once()

    def test_messages_list_clauses_and_claim(self, claim_factory, evidence_items):
        generator = LlmDecisionGenerator(_mock_llm(VALID_ANSWER))
        system, human = generator.build_messages(claim_factory(amount=1234.5), evidence_items)
        assert isinstance(system, SystemMessage)
        assert isinstance(human, HumanMessage)
        assert "[X-003]" in human.content
        assert "$1,234.50" in human.content
        assert "Supporting Documents" not in human.content

    def test_supporting_documents_appended(self, claim_factory, evidence_items):
        generator = LlmDecisionGenerator(_mock_llm(VALID_ANSWER))
        _, human = generator.build_messages(
            claim_factory(), evidence_items, extra_context="Invoice total $300.00"
        )
        assert "Supporting Documents" in human.content
        assert "Invoice total $300.00" in human.content

    def test_pii_masked_in_prompt(self, claim_factory, evidence_items):
        generator = LlmDecisionGenerator(_mock_llm(VALID_ANSWER))
        claim = claim_factory(description="Patient SSN 123-45-6789 sprained an ankle.")
        _, human = generator.build_messages(claim, evidence_items)
        assert "123-45-6789" not in human.content

    def test_pii_masking_can_be_disabled(self, claim_factory, evidence_items):
        generator = LlmDecisionGenerator(_mock_llm(VALID_ANSWER), mask_pii_in_prompts=False)
        claim = claim_factory(description="Patient SSN 123-45-6789 sprained an ankle.")
        _, human = generator.build_messages(claim, evidence_items)
        assert "123-45-6789" in human.content

    def test_transport_error_becomes_generation_failure(self, claim_factory, evidence_items):
        llm = MagicMock()
        llm.invoke.side_effect = TimeoutError("request timed out")
        with pytest.raises(GenerationFailure):
            LlmDecisionGenerator(llm).generate(claim_factory(), evidence_items)

    def test_unparseable_answer_raises_parse_failure(self, claim_factory, evidence_items):
        with pytest.raises(GenerationParseFailure):
            LlmDecisionGenerator(_mock_llm("not json")).generate(claim_factory(), evidence_items)
