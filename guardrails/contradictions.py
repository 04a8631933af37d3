"""
Contradiction Detector: five independent consistency checks.

1. status_citation_coherence      (Critical)
2. exclusion_conflict             (Critical)
3. confidence_status_mismatch     (High)
4. amount_vs_limit                (High)
5. supporting_document_consistency (High, only with supporting documents)

Each check yields zero or one Finding and reads nothing but its arguments, so
the checks can run in any order. Cited ids that are not in the evidence set are
ignored here; the Citation Validator reports them.

Allowed direction: may escalate status to ManualReview (Critical findings only).
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime
from typing import Optional, Sequence

from claims.decision import Decision
from claims.models import (
    ClaimRequest,
    DecisionStatus,
    EvidenceItem,
    Finding,
    Severity,
    SupportingDocument,
)

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_COVERED = 0.5
HIGH_CONFIDENCE_DENIAL = 0.9
MIN_DENIAL_CITATIONS = 2
DOCUMENT_AMOUNT_TOLERANCE = 0.10

_AMOUNT_PATTERN = r"\$\s?(\d{1,3}(?:,\d{3})+|\d+)(?:\.(\d{1,2}))?"
_AMOUNT = re.compile(_AMOUNT_PATTERN)
# The amount must follow its limit phrase within the same clause.
_LIMIT_AMOUNT = re.compile(
    r"\b(?:limit|maximum|up to|not exceed|capped)[^$.;\n]{0,40}?" + _AMOUNT_PATTERN,
    re.IGNORECASE,
)
_ISO_DATE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_US_DATE = re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4})\b")
_POLICY_NUMBER = re.compile(
    r"\bpolicy\s*(?:no\b\.?|number\b|#)\s*[:#]?\s*([A-Z0-9][A-Z0-9-]{3,})", re.IGNORECASE
)


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def _to_amount(whole: str, cents: str) -> float:
    value = float(whole.replace(",", ""))
    if cents:
        value += float(f"0.{cents}")
    return value


def extract_amounts(text: str) -> list[float]:
    return [_to_amount(whole, cents) for whole, cents in _AMOUNT.findall(text or "")]


def extract_limits(text: str) -> list[float]:
    """Dollar amounts that directly follow a limit phrase ("up to $2,000")."""
    return [_to_amount(whole, cents) for whole, cents in _LIMIT_AMOUNT.findall(text or "")]


def extract_dates(text: str) -> list[date]:
    found: list[date] = []
    for y, m, d in _ISO_DATE.findall(text or ""):
        parsed = _safe_date(int(y), int(m), int(d))
        if parsed:
            found.append(parsed)
    for m, d, y in _US_DATE.findall(text or ""):
        parsed = _safe_date(int(y), int(m), int(d))
        if parsed:
            found.append(parsed)
    return found


def extract_policy_numbers(text: str) -> list[str]:
    return [m.upper() for m in _POLICY_NUMBER.findall(text or "") if any(ch.isdigit() for ch in m)]


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return datetime(year, month, day).date()
    except ValueError:
        return None


def _cited(decision: Decision, evidence: Sequence[EvidenceItem]) -> list[EvidenceItem]:
    cited = set(decision.citations)
    return [e for e in evidence if e.evidence_id in cited]


def _fmt_money(value: float) -> str:
    return f"${value:,.2f}"


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------


def check_status_citation_coherence(
    decision: Decision, evidence: Sequence[EvidenceItem]
) -> Optional[Finding]:
    cited = _cited(decision, evidence)

    if decision.asserted_status is DecisionStatus.NOT_COVERED:
        if not any(e.is_exclusion or e.is_limitation for e in cited):
            return Finding(
                check="status_citation_coherence",
                severity=Severity.CRITICAL,
                description="Claim denied but no exclusion or limitation clause is cited",
                sources=("status NotCovered", "cited evidence"),
            )

    if decision.asserted_status is DecisionStatus.COVERED:
        exclusions = [e.evidence_id for e in cited if e.is_exclusion]
        if exclusions:
            return Finding(
                check="status_citation_coherence",
                severity=Severity.CRITICAL,
                description="Claim covered but its citations include exclusion clauses",
                sources=("status Covered",) + tuple(f"citation {cid}" for cid in exclusions),
            )
    return None


def check_exclusion_conflict(
    decision: Decision, evidence: Sequence[EvidenceItem]
) -> Optional[Finding]:
    if decision.asserted_status is not DecisionStatus.COVERED:
        return None
    exclusions = [e.evidence_id for e in _cited(decision, evidence) if e.is_exclusion]
    if not exclusions:
        return None
    return Finding(
        check="exclusion_conflict",
        severity=Severity.CRITICAL,
        description=f"Approval relies on exclusion clause(s) {', '.join(exclusions)}",
        sources=("status Covered",) + tuple(f"exclusion {cid}" for cid in exclusions),
    )


def check_confidence_status_mismatch(decision: Decision) -> Optional[Finding]:
    status = decision.asserted_status
    if status is DecisionStatus.COVERED and decision.confidence < LOW_CONFIDENCE_COVERED:
        return Finding(
            check="confidence_status_mismatch",
            severity=Severity.HIGH,
            description=f"Claim covered with low confidence ({decision.confidence:.2f})",
            sources=("status Covered", f"confidence {decision.confidence:.2f}"),
        )
    if (
        status is DecisionStatus.NOT_COVERED
        and decision.confidence > HIGH_CONFIDENCE_DENIAL
        and len(decision.citations) < MIN_DENIAL_CITATIONS
    ):
        return Finding(
            check="confidence_status_mismatch",
            severity=Severity.HIGH,
            description=(
                f"Denial with very high confidence ({decision.confidence:.2f}) "
                f"backed by {len(decision.citations)} citation(s)"
            ),
            sources=("status NotCovered", f"confidence {decision.confidence:.2f}", "citations"),
        )
    return None


def check_amount_vs_limit(
    decision: Decision, claim: ClaimRequest, evidence: Sequence[EvidenceItem]
) -> Optional[Finding]:
    if decision.asserted_status is not DecisionStatus.COVERED:
        return None
    exceeded: list[tuple[float, str]] = []
    for item in _cited(decision, evidence):
        for limit in extract_limits(item.text):
            if claim.amount > limit:
                exceeded.append((limit, item.evidence_id))
    if not exceeded:
        return None
    limit, evidence_id = min(exceeded)
    return Finding(
        check="amount_vs_limit",
        severity=Severity.HIGH,
        description=(
            f"Claim amount exceeds the policy limit in {evidence_id} "
            f"by {_fmt_money(claim.amount - limit)}"
        ),
        sources=(
            f"claim amount {_fmt_money(claim.amount)}",
            f"limit {_fmt_money(limit)} in {evidence_id}",
        ),
    )


def check_supporting_document_consistency(
    claim: ClaimRequest, documents: Sequence[SupportingDocument]
) -> Optional[Finding]:
    available = [d for d in documents if d.available]
    if not available:
        return None

    conflicts: list[str] = []
    sources: list[str] = []

    amounts = [a for d in available for a in extract_amounts(d.text)]
    tolerance = claim.amount * DOCUMENT_AMOUNT_TOLERANCE
    if amounts and not any(abs(a - claim.amount) <= tolerance for a in amounts):
        closest = min(amounts, key=lambda a: abs(a - claim.amount))
        conflicts.append(
            f"documents state {_fmt_money(closest)} against a claimed {_fmt_money(claim.amount)}"
        )
        sources.append(f"document amount {_fmt_money(closest)}")

    if claim.incident_date is not None:
        dates = [dt for d in available for dt in extract_dates(d.text)]
        if dates and claim.incident_date not in dates:
            conflicts.append(
                f"document dates {', '.join(sorted({dt.isoformat() for dt in dates}))} "
                f"do not include the incident date {claim.incident_date.isoformat()}"
            )
            sources.append("document dates")

    policy_numbers = {p for d in available for p in extract_policy_numbers(d.text)}
    foreign = sorted(p for p in policy_numbers if p != claim.policy_number.upper())
    if foreign:
        conflicts.append(f"documents reference policy {', '.join(foreign)}")
        sources.append("document policy number")

    if not conflicts:
        return None
    return Finding(
        check="supporting_document_consistency",
        severity=Severity.HIGH,
        description="Supporting documents conflict with the claim: " + "; ".join(conflicts),
        sources=("claim",) + tuple(sources),
    )


# ---------------------------------------------------------------------------
# Stage
# ---------------------------------------------------------------------------


def detect_contradictions(
    decision: Decision,
    claim: ClaimRequest,
    evidence: Sequence[EvidenceItem],
    supporting_documents: Sequence[SupportingDocument] = (),
) -> Decision:
    candidates = [
        check_status_citation_coherence(decision, evidence),
        check_exclusion_conflict(decision, evidence),
        check_confidence_status_mismatch(decision),
        check_amount_vs_limit(decision, claim, evidence),
        check_supporting_document_consistency(claim, supporting_documents),
    ]
    findings = [f for f in candidates if f is not None]

    logger.info(
        "detect_contradictions: %d finding(s) (%d critical)",
        len(findings),
        sum(1 for f in findings if f.severity is Severity.CRITICAL),
    )
    return decision.with_findings(findings)
