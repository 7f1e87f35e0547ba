"""Turn the reasoning engine's freeform reply into a structured verdict.

Expected shape::

    DECISION: ALLOW|BLOCK
    CONFIDENCE: HIGH|MEDIUM|LOW     (optional)

    <feedback>

The marker lines are often decorated with markdown (``## DECISION:``,
``**DECISION:** BLOCK``, ``> DECISION:``) or wrapped in a code fence. An
unrecognised verdict is treated as BLOCK.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from vigil.logging_setup import get_logger

DECISION_MARKER = "DECISION:"
CONFIDENCE_MARKER = "CONFIDENCE:"
CONFIDENCE_LOOKAHEAD = 3
MARKDOWN_PREFIX_CHARS = "#>* \t"
CODE_FENCE = "```"
LEGACY_NO_CONCERNS = {"no concerns.", "no concerns"}

logger = get_logger(__name__)


class Confidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


@dataclass(frozen=True)
class ParsedVerdict:
    blocks: bool
    feedback: str
    confidence: Confidence | None = None


def strip_markdown_prefix(line: str) -> str:
    return line.strip().lstrip(MARKDOWN_PREFIX_CHARS).strip()


def _parse_confidence(line: str) -> Confidence | None:
    stripped = strip_markdown_prefix(line)
    if not stripped.startswith(CONFIDENCE_MARKER):
        return None
    value = stripped[len(CONFIDENCE_MARKER) :].strip("* \t").upper()
    try:
        return Confidence(value)
    except ValueError:
        return None


def _feedback_body(lines: list[str]) -> str:
    start = 0
    while start < len(lines) and not lines[start].strip():
        start += 1
    body = "\n".join(lines[start:]).strip()
    while body.endswith(CODE_FENCE):
        body = body[: -len(CODE_FENCE)].strip()
    return body


def parse_decision_response(response: str) -> ParsedVerdict:
    lines = response.splitlines()

    for idx, line in enumerate(lines):
        stripped = strip_markdown_prefix(line)
        if not stripped.startswith(DECISION_MARKER):
            continue

        verdict = stripped[len(DECISION_MARKER) :].strip("* \t").upper()

        confidence: Confidence | None = None
        body_start = idx + 1
        for offset in range(1, CONFIDENCE_LOOKAHEAD + 1):
            if idx + offset >= len(lines):
                break
            candidate = lines[idx + offset]
            if not candidate.strip():
                continue
            confidence = _parse_confidence(candidate)
            if confidence is not None:
                body_start = idx + offset + 1
            break

        feedback = _feedback_body(lines[body_start:])
        if verdict == "ALLOW":
            return ParsedVerdict(blocks=False, feedback=feedback, confidence=confidence)
        if verdict != "BLOCK":
            logger.warning("Unknown decision '%s', defaulting to BLOCK", verdict)
        return ParsedVerdict(blocks=True, feedback=feedback, confidence=confidence)

    # Replies that predate the DECISION: convention.
    blocks = response.strip().lower() not in LEGACY_NO_CONCERNS
    return ParsedVerdict(blocks=blocks, feedback=response, confidence=None)
