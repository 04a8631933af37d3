"""
LangGraph StateGraph definition for the claim decision validation pipeline.

Flow:
  retrieve_evidence → evidence_guardrail ─(fault / no evidence)──────┐
                      └→ screen_input ─(injection)───────────────────┤
                         └→ generate ─(fault)────────────────────────┤
                            └→ validate_citations                    │
                               → detect_contradictions               │
                               → apply_business_rules                │
                               ─(documents)→ supporting_document_pass┤
                                                                     ↓
                                           build_audit_record → persist → END
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from langgraph.graph import END, StateGraph

from orchestrator.router import (
    route_after_business_rules,
    route_after_generation,
    route_after_guardrail,
    route_after_screening,
)
from orchestrator.state import PipelineState

if TYPE_CHECKING:
    from orchestrator.pipeline import DecisionPipeline


def build_graph(pipeline: "DecisionPipeline") -> StateGraph:
    """Build the (uncompiled) StateGraph whose nodes are ``pipeline``'s stage methods."""
    workflow = StateGraph(PipelineState)

    # ---- nodes -------------------------------------------------------
    workflow.add_node("retrieve_evidence",        pipeline.retrieve_evidence)
    workflow.add_node("evidence_guardrail",       pipeline.evidence_guardrail)
    workflow.add_node("screen_input",             pipeline.screen_input)
    workflow.add_node("generate",                 pipeline.generate)
    workflow.add_node("validate_citations",       pipeline.validate_citations)
    workflow.add_node("detect_contradictions",    pipeline.detect_contradictions)
    workflow.add_node("apply_business_rules",     pipeline.apply_business_rules)
    workflow.add_node("supporting_document_pass", pipeline.supporting_document_pass)
    workflow.add_node("build_audit_record",       pipeline.build_audit_record)
    workflow.add_node("persist",                  pipeline.persist)

    # ---- entry point -------------------------------------------------
    workflow.set_entry_point("retrieve_evidence")

    # ---- linear edges ------------------------------------------------
    workflow.add_edge("retrieve_evidence",        "evidence_guardrail")
    workflow.add_edge("validate_citations",       "detect_contradictions")
    workflow.add_edge("detect_contradictions",    "apply_business_rules")
    workflow.add_edge("supporting_document_pass", "build_audit_record")
    workflow.add_edge("build_audit_record",       "persist")
    workflow.add_edge("persist",                  END)

    # ---- short-circuit edges -----------------------------------------
    workflow.add_conditional_edges(
        "evidence_guardrail",
        route_after_guardrail,
        {"screen_input": "screen_input", "build_audit_record": "build_audit_record"},
    )
    workflow.add_conditional_edges(
        "screen_input",
        route_after_screening,
        {"generate": "generate", "build_audit_record": "build_audit_record"},
    )
    workflow.add_conditional_edges(
        "generate",
        route_after_generation,
        {"validate_citations": "validate_citations", "build_audit_record": "build_audit_record"},
    )
    workflow.add_conditional_edges(
        "apply_business_rules",
        route_after_business_rules,
        {
            "supporting_document_pass": "supporting_document_pass",
            "build_audit_record":       "build_audit_record",
        },
    )

    return workflow
