"""
Input screening applied before any text reaches the language model.

- scan_for_injection(): prompt-injection / obfuscation heuristics
- mask_pii():           redact SSNs, card numbers, e-mails and phone numbers
"""

from __future__ import annotations

import logging
import re

from claims.models import Finding, Severity

logger = logging.getLogger(__name__)

MAX_INPUT_LENGTH = 10_000

_DANGEROUS_PATTERNS = (
    "ignore previous instructions",
    "ignore all previous",
    "disregard all",
    "forget everything",
    "forget all previous",
    "you are now",
    "new instructions:",
    "new role:",
    "system prompt",
    "admin mode",
    "developer mode",
    "jailbreak",
    "sudo mode",
    "<script>",
    "__import__",
)

_ROLE_CHANGES = (
    "you are a",
    "act as",
    "pretend to be",
    "roleplay as",
    "imagine you are",
)

_SQL_PATTERNS = ("drop table", "delete from", "insert into", "'; --", "union select")

_HIDDEN_UNICODE = re.compile("[\u200B-\u200D\uFEFF\u2060-\u2069]")
_EXCESSIVE_REPEAT = re.compile(r"(.)\1{20,}")

_SSN = re.compile(r"\b\d{3}-\d{2}-\d{4}\b")
_CARD = re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b")
_EMAIL = re.compile(r"\b[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}\b")
_PHONE = re.compile(r"\b\d{3}[-.]\d{3}[-.]\d{4}\b")


def scan_for_injection(text: str) -> list[str]:
    """Return the threats found in ``text``; an empty list means clean."""
    if not text:
        return []
    threats: list[str] = []
    normalized = text.lower()

    for pattern in _DANGEROUS_PATTERNS:
        if pattern in normalized:
            threats.append(f"suspicious instruction pattern '{pattern}'")

    if "ignore" in normalized:
        for pattern in _ROLE_CHANGES:
            if pattern in normalized:
                threats.append(f"role manipulation attempt '{pattern}'")

    for pattern in _SQL_PATTERNS:
        if pattern in normalized:
            threats.append(f"SQL-like fragment '{pattern}'")

    if _HIDDEN_UNICODE.search(text):
        threats.append("hidden unicode characters")
    if _EXCESSIVE_REPEAT.search(text):
        threats.append("excessive character repetition")
    if len(text) > MAX_INPUT_LENGTH:
        threats.append(f"input length {len(text)} exceeds {MAX_INPUT_LENGTH}")

    return threats


def injection_finding(threats: list[str]) -> Finding:
    return Finding(
        check="prompt_injection",
        severity=Severity.CRITICAL,
        description="Claim description contains potentially malicious content: " + "; ".join(threats),
        sources=("claim description",),
    )


def mask_pii(text: str) -> str:
    if not text:
        return text
    masked = _SSN.sub("***-**-****", text)
    masked = _CARD.sub("****-****-****-****", masked)
    masked = _EMAIL.sub("[EMAIL]", masked)
    masked = _PHONE.sub("***-***-****", masked)
    if masked != text:
        logger.debug("mask_pii: redacted personal data before prompting")
    return masked
