"""
Conditional edge functions for the claim decision LangGraph workflow.
"""

from __future__ import annotations

from orchestrator.state import PipelineState

AUDIT_NODE = "build_audit_record"


def route_after_guardrail(state: PipelineState) -> str:
    """
    - retrieval faulted or no evidence → 'build_audit_record'
    - otherwise                         → 'screen_input'
    """
    if state.get("terminal"):
        return AUDIT_NODE
    return "screen_input"


def route_after_screening(state: PipelineState) -> str:
    if state.get("terminal"):
        return AUDIT_NODE
    return "generate"


def route_after_generation(state: PipelineState) -> str:
    if state.get("terminal"):
        return AUDIT_NODE
    return "validate_citations"


def route_after_business_rules(state: PipelineState) -> str:
    """
    Re-run the pipeline with supporting documents only when ids were supplied
    and the first pass neither short-circuited nor faulted.
    """
    if state.get("supporting_document_ids") and not state.get("terminal"):
        return "supporting_document_pass"
    return AUDIT_NODE
