"""
Citation Validator.

Checks that a decision only cites evidence that was actually retrieved for
this run, and that affirmative decisions cite something at all.

Allowed direction: may escalate status to ManualReview (via Critical findings).
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional, Sequence

from claims.decision import Decision
from claims.models import EvidenceItem, Finding, Severity

logger = logging.getLogger(__name__)

HEDGE_CONFIDENCE_CEILING = 0.5
HEDGE_CITATION_FLOOR = 5

HEDGE_PHRASES = (
    "i think",
    "i believe",
    "probably",
    "maybe",
    "possibly",
    "it seems",
    "appears to be",
    "likely",
    "might be",
    "could be",
    "generally",
    "typically",
    "usually",
    "in most cases",
)

_CLAUSE_REFERENCE = re.compile(r"\[[^\]]+\]|\bclause\b|\bsection\s*\d", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def missing_citations(citations: Iterable[str], evidence: Sequence[EvidenceItem]) -> list[str]:
    """Cited ids that are not in the evidence set, in citation order."""
    known = {e.evidence_id for e in evidence}
    out: list[str] = []
    for cid in citations:
        if cid not in known and cid not in out:
            out.append(cid)
    return out


def hedge_phrases(explanation: str) -> list[str]:
    normalized = (explanation or "").lower()
    return [p for p in HEDGE_PHRASES if p in normalized]


def summarize_findings(findings: Iterable[Finding]) -> list[str]:
    """One line per finding, most severe first."""
    ordered = sorted(findings, key=lambda f: f.severity.rank, reverse=True)
    return [f.summary() for f in ordered]


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------


def check_fabricated_citations(decision: Decision, evidence: Sequence[EvidenceItem]) -> list[Finding]:
    return [
        Finding(
            check="fabricated_citation",
            severity=Severity.CRITICAL,
            description=f"Cited evidence '{cid}' was not among the retrieved evidence",
            sources=(f"citation {cid}", "retrieved evidence"),
        )
        for cid in missing_citations(decision.citations, evidence)
    ]


def check_uncited_affirmative(decision: Decision) -> Optional[Finding]:
    if decision.asserted_status.is_affirmative and not decision.citations:
        return Finding(
            check="uncited_decision",
            severity=Severity.CRITICAL,
            description=f"'{decision.asserted_status.value}' decision cites no evidence",
            sources=("status", "citations"),
        )
    return None


def check_hedged_overcitation(decision: Decision) -> Optional[Finding]:
    """Hedging language + low confidence + many citations: possible overcompensation."""
    phrases = hedge_phrases(decision.explanation)
    if (
        phrases
        and decision.confidence < HEDGE_CONFIDENCE_CEILING
        and len(decision.citations) > HEDGE_CITATION_FLOOR
    ):
        return Finding(
            check="hedged_overcitation",
            severity=Severity.MEDIUM,
            description=(
                f"Hedging language ({', '.join(repr(p) for p in phrases)}) with low confidence "
                f"({decision.confidence:.2f}) and {len(decision.citations)} citations"
            ),
            sources=("explanation", "confidence", "citations"),
        )
    return None


def check_explanation_references(decision: Decision) -> Optional[Finding]:
    if not decision.citations:
        return None
    text = decision.explanation or ""
    if _CLAUSE_REFERENCE.search(text) or any(cid in text for cid in decision.citations):
        return None
    return Finding(
        check="unreferenced_citations",
        severity=Severity.LOW,
        description="Explanation does not reference the cited clauses",
        sources=("explanation", "citations"),
    )


# ---------------------------------------------------------------------------
# Stage
# ---------------------------------------------------------------------------


def validate_citations(decision: Decision, evidence: Sequence[EvidenceItem]) -> Decision:
    findings: list[Finding] = []
    findings.extend(check_fabricated_citations(decision, evidence))
    for check in (check_uncited_affirmative, check_hedged_overcitation, check_explanation_references):
        finding = check(decision)
        if finding is not None:
            findings.append(finding)

    logger.info("validate_citations: %d finding(s)", len(findings))
    return decision.with_findings(findings)
