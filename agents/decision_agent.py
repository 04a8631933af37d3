"""
Decision Agent: LLM decision generator.

Given a claim and the retrieved policy clauses, asks the chat model for a
candidate decision (status, explanation, cited clause ids, confidence,
required documents) and validates the answer into a ``CandidateDecision``.

Failure contract:
  - transport errors / timeouts  → GenerationFailure       (caller may retry)
  - malformed or off-schema JSON → GenerationParseFailure  (raw output kept)
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional, Sequence

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import AzureChatOpenAI, ChatOpenAI
from langsmith import traceable
from pydantic import ValidationError

from claims.config import LlmProvider, PipelineConfig
from claims.errors import GenerationFailure, GenerationParseFailure
from claims.models import CandidateDecision, ClaimRequest, EvidenceItem
from guardrails.screening import mask_pii

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = """\
You are an insurance claims validation assistant.
You MUST:
- Use ONLY the provided policy clauses (and supporting documents, when given)
- Cite clause ids exactly as they appear in square brackets
- Never cite a clause that is not listed
- If unsure, answer "ManualReview"
- Respond in valid JSON only"""

_USER_TEMPLATE = """\
Claim:
Policy Number: {policy_number}
Policy Type: {category}
Claim Amount: ${amount:,.2f}
Description: {description}

Policy Clauses:
{clauses_text}
{extra_context}
Respond in JSON:
{{
  "status": "Covered" | "NotCovered" | "ManualReview",
  "explanation": "<explanation referencing clause ids>",
  "citations": ["<clause_id>"],
  "required_documents": ["<document>"],
  "confidence": 0.0-1.0
}}

JSON only, no markdown:"""

_SUPPORTING_TEMPLATE = """
Supporting Documents:
{documents}

Check that the claim details match the supporting documents and mention any discrepancy.
"""

# Field spellings seen in model output, mapped onto CandidateDecision fields
_KEY_ALIASES = {
    "status": "status",
    "decision": "status",
    "explanation": "explanation",
    "reasoning": "explanation",
    "citations": "citations",
    "clausereferences": "citations",
    "clause_references": "citations",
    "confidence": "confidence",
    "confidencescore": "confidence",
    "confidence_score": "confidence",
    "required_documents": "required_documents",
    "requireddocuments": "required_documents",
}


def build_chat_model(config: PipelineConfig) -> BaseChatModel:
    """Chat model for the configured provider. Retries are done by the pipeline."""
    if config.llm_provider is LlmProvider.AZURE:
        return AzureChatOpenAI(
            azure_deployment=config.azure_deployment or config.llm_model,
            api_version=config.azure_api_version,
            temperature=0,
            timeout=config.llm_timeout_seconds,
            max_retries=0,
        )
    return ChatOpenAI(
        model=config.llm_model,
        temperature=0,
        timeout=config.llm_timeout_seconds,
        max_retries=0,
    )


def _clauses_to_text(evidence: Sequence[EvidenceItem]) -> str:
    return "\n\n".join(f"[{e.evidence_id}] {e.category}: {e.text}" for e in evidence) or "(none)"


def _strip_fences(content: str) -> str:
    content = content.strip()
    if content.startswith("```"):
        content = re.sub(r"^```\w*\n?", "", content)
        content = re.sub(r"\n?```\s*$", "", content)
    return content.strip()


def parse_candidate(content: str) -> CandidateDecision:
    """Parse a model answer into a CandidateDecision or raise GenerationParseFailure."""
    cleaned = _strip_fences(content or "")
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise GenerationParseFailure(f"model returned invalid JSON: {e}", raw_output=content) from e
    if not isinstance(payload, dict):
        raise GenerationParseFailure("model returned JSON that is not an object", raw_output=content)

    fields: dict[str, Any] = {}
    for key, value in payload.items():
        target = _KEY_ALIASES.get(str(key).lower())
        if target and target not in fields:
            fields[target] = value
    for key in ("citations", "required_documents"):
        if isinstance(fields.get(key), str):
            fields[key] = [fields[key]]

    try:
        return CandidateDecision.model_validate(fields)
    except ValidationError as e:
        raise GenerationParseFailure(
            f"model output does not match the decision schema: {e.error_count()} error(s)",
            raw_output=content,
        ) from e


class LlmDecisionGenerator:
    """DecisionGenerator backed by a LangChain chat model."""

    def __init__(self, llm: BaseChatModel, mask_pii_in_prompts: bool = True) -> None:
        self._llm = llm
        self._mask = mask_pii_in_prompts

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "LlmDecisionGenerator":
        return cls(build_chat_model(config), mask_pii_in_prompts=config.mask_pii_in_prompts)

    def _prepare(self, text: str) -> str:
        return mask_pii(text) if self._mask else text

    def build_messages(
        self,
        claim: ClaimRequest,
        evidence: Sequence[EvidenceItem],
        extra_context: Optional[str] = None,
    ) -> list:
        extra = ""
        if extra_context:
            extra = _SUPPORTING_TEMPLATE.format(documents=self._prepare(extra_context))
        user_content = _USER_TEMPLATE.format(
            policy_number=claim.policy_number,
            category=claim.category,
            amount=claim.amount,
            description=self._prepare(claim.description),
            clauses_text=_clauses_to_text(evidence),
            extra_context=extra,
        )
        return [SystemMessage(content=_SYSTEM_PROMPT), HumanMessage(content=user_content)]

    @traceable(name="decision_agent_generate")
    def generate(
        self,
        claim: ClaimRequest,
        evidence: Sequence[EvidenceItem],
        extra_context: Optional[str] = None,
    ) -> CandidateDecision:
        messages = self.build_messages(claim, evidence, extra_context)
        try:
            response = self._llm.invoke(messages)
        except Exception as e:
            logger.warning("decision_agent: model call failed: %s", e)
            raise GenerationFailure(f"{type(e).__name__}: {e}") from e

        content = response.content if hasattr(response, "content") else str(response)
        if not isinstance(content, str):
            content = json.dumps(content)
        candidate = parse_candidate(content)
        logger.info(
            "decision_agent: %s (confidence=%.2f, %d citation(s))",
            candidate.status.value,
            candidate.confidence,
            len(candidate.citations),
        )
        return candidate
