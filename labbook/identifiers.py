"""
Identifier scheme for labbook entities.

Every owned entity uses PREFIX-{token}-{3-digit sequence}:

    A-RS20251230-001    Assumption   (legacy bare form: A7)
    X-RS20251230-001    Anomaly
    C-RS20251230-001    Critique
    RP-CELL-FATE-001    Research program (token is a slug, not a session)
    INT-RS20251230-001  Operator intervention (legacy bare form: INT7)

Hypotheses (H-...) and tests (T-..., legacy T7) are only referenced here.

Sequence generation takes max(existing) + 1 for the token; gaps are never
reused. Computing the next sequence from a snapshot is only correct while the
caller holds exclusive access to that id space.
"""

from __future__ import annotations

import re
from enum import Enum
from types import MappingProxyType
from typing import Iterable

from .domain import InvalidIdentifierError, SequenceOverflowError


# =============================================================================
# CONFIGURATION CONSTANTS
# =============================================================================

MAX_SEQUENCE = 999


class IdKind(Enum):
    """Identifier families, valued by their prefix."""
    ASSUMPTION = "A"
    HYPOTHESIS = "H"
    TEST = "T"
    ANOMALY = "X"
    CRITIQUE = "C"
    PROGRAM = "RP"
    INTERVENTION = "INT"


ID_PATTERNS = MappingProxyType({
    IdKind.ASSUMPTION: re.compile(r"^A-[A-Za-z0-9][\w-]*-\d{3}$|^A\d+$", re.ASCII),
    IdKind.HYPOTHESIS: re.compile(r"^H-[A-Za-z0-9][\w-]*-\d{3}$", re.ASCII),
    IdKind.TEST: re.compile(r"^T-[A-Za-z0-9][\w-]*-\d{3}$|^T\d+$", re.ASCII),
    IdKind.ANOMALY: re.compile(r"^X-[A-Za-z0-9][\w-]*-\d{3}$", re.ASCII),
    IdKind.CRITIQUE: re.compile(r"^C-[A-Za-z0-9][\w-]*-\d{3}$", re.ASCII),
    IdKind.PROGRAM: re.compile(r"^RP-[A-Za-z0-9][\w-]*-\d{3}$", re.ASCII),
    IdKind.INTERVENTION: re.compile(r"^INT-[A-Za-z0-9][\w.-]*-\d{3}$|^INT\d+$", re.ASCII),
})

SESSION_ID_PATTERN = re.compile(r"^RS[A-Za-z0-9-][\w-]*$", re.ASCII)
ANCHOR_PATTERN = re.compile(r"^§\d+(-\d+)?$", re.ASCII)

# Human-readable shapes used in error messages
ID_FORMATS = MappingProxyType({
    IdKind.ASSUMPTION: "A-{session}-{seq} or A{n}",
    IdKind.HYPOTHESIS: "H-{session}-{seq}",
    IdKind.TEST: "T-{session}-{seq} or T{n}",
    IdKind.ANOMALY: "X-{session}-{seq}",
    IdKind.CRITIQUE: "C-{session}-{seq}",
    IdKind.PROGRAM: "RP-{slug}-{seq}",
    IdKind.INTERVENTION: "INT-{session}-{seq}",
})

_SEQUENCE_SUFFIX = re.compile(r"\d{3}", re.ASCII)


# =============================================================================
# PREDICATES
# =============================================================================

def matches_kind(value: object, kind: IdKind) -> bool:
    """True when value is a string in the given id family."""
    return isinstance(value, str) and ID_PATTERNS[kind].fullmatch(value) is not None


def is_valid_assumption_id(value: str) -> bool:
    return matches_kind(value, IdKind.ASSUMPTION)


def is_valid_hypothesis_id(value: str) -> bool:
    return matches_kind(value, IdKind.HYPOTHESIS)


def is_valid_test_id(value: str) -> bool:
    return matches_kind(value, IdKind.TEST)


def is_valid_anomaly_id(value: str) -> bool:
    return matches_kind(value, IdKind.ANOMALY)


def is_valid_critique_id(value: str) -> bool:
    return matches_kind(value, IdKind.CRITIQUE)


def is_valid_program_id(value: str) -> bool:
    return matches_kind(value, IdKind.PROGRAM)


def is_valid_intervention_id(value: str) -> bool:
    return matches_kind(value, IdKind.INTERVENTION)


def is_valid_session_id(value: str) -> bool:
    return isinstance(value, str) and SESSION_ID_PATTERN.fullmatch(value) is not None


def is_valid_anchor(value: str) -> bool:
    """Transcript anchor: §n or §n-m."""
    return isinstance(value, str) and ANCHOR_PATTERN.fullmatch(value) is not None


def require_id(value: object, kind: IdKind, role: str = "id") -> str:
    """
    Return value unchanged if it is a well-formed id of the given kind.

    Raises:
        InvalidIdentifierError: If the id is malformed
    """
    if not matches_kind(value, kind):
        raise InvalidIdentifierError(
            f"Invalid {role} '{value}' (expected {ID_FORMATS[kind]})"
        )
    return value  # type: ignore[return-value]


# =============================================================================
# SEQUENCE GENERATION
# =============================================================================

def next_sequence_id(kind: IdKind, token: str, existing_ids: Iterable[str]) -> str:
    """
    Generate the next id for a token (session id or program slug).

    Only ids of the exact form {prefix}-{token}-{NNN} count toward the
    sequence; ids of other tokens and legacy bare ids are ignored.

    Raises:
        InvalidIdentifierError: If the token cannot form a valid id
        SequenceOverflowError: If the next sequence would exceed 999
    """
    prefix = f"{kind.value}-{token}-"
    highest = 0
    for existing in existing_ids:
        if not existing.startswith(prefix):
            continue
        suffix = existing[len(prefix):]
        if _SEQUENCE_SUFFIX.fullmatch(suffix):
            highest = max(highest, int(suffix))

    next_seq = highest + 1
    if next_seq > MAX_SEQUENCE:
        raise SequenceOverflowError(
            f"{kind.name.title()} sequence overflow for '{token}': "
            f"maximum {MAX_SEQUENCE} per session exceeded"
        )

    candidate = f"{prefix}{next_seq:03d}"
    if not matches_kind(candidate, kind):
        raise InvalidIdentifierError(
            f"Cannot build a {kind.name.lower()} id from token '{token}'"
        )
    return candidate


def generate_assumption_id(session_id: str, existing_ids: Iterable[str]) -> str:
    return next_sequence_id(IdKind.ASSUMPTION, session_id, existing_ids)


def generate_anomaly_id(session_id: str, existing_ids: Iterable[str]) -> str:
    return next_sequence_id(IdKind.ANOMALY, session_id, existing_ids)


def generate_critique_id(session_id: str, existing_ids: Iterable[str]) -> str:
    return next_sequence_id(IdKind.CRITIQUE, session_id, existing_ids)


def generate_intervention_id(session_id: str, existing_ids: Iterable[str]) -> str:
    return next_sequence_id(IdKind.INTERVENTION, session_id, existing_ids)


def sanitize_slug(slug: str) -> str:
    """
    Normalize a program slug: upper-case, [A-Z0-9-] only, no edge dashes.

    Example:
        "cell fate/v2" -> "CELL-FATE-V2"
    """
    cleaned = re.sub(r"[^A-Z0-9-]", "-", slug.upper())
    cleaned = re.sub(r"-+", "-", cleaned)
    return cleaned.strip("-")


def generate_program_id(slug: str, existing_ids: Iterable[str]) -> str:
    """
    Generate a research program id from a free-form slug.

    Raises:
        InvalidIdentifierError: If the slug has no alphanumeric content
        SequenceOverflowError: If the slug already holds sequence 999
    """
    sanitized = sanitize_slug(slug)
    if not sanitized:
        raise InvalidIdentifierError(
            "Slug must contain at least one alphanumeric character"
        )
    return next_sequence_id(IdKind.PROGRAM, sanitized, existing_ids)
