"""
Core Domain Objects for the labbook research registry.

Everything in this module is shared by the registries and the scorers:

    DomainError         — Base class for illegal operations on valid entities
    Timestamps          — UTC helpers used for createdAt/updatedAt stamping
    HypothesisRecord    — A hypothesis as seen from this layer (referenced by id)
    TestRecord          — A discriminative test as seen from this layer
    HypothesisTransition — One entry in a session's hypothesis-transition log

Hypotheses and tests are owned elsewhere. The records here carry only the
fields the dashboard and the session scorer read.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional


# =============================================================================
# DOMAIN ERRORS
# =============================================================================

class DomainError(Exception):
    """Raised when an operation is illegal for an otherwise valid entity."""


class IllegalTransitionError(DomainError):
    """
    Raised when a lifecycle transition is requested from the wrong state.

    The message always names the entity id and its actual status so that
    callers can surface it without further formatting.
    """

    def __init__(
        self,
        entity_id: str,
        current_status: str,
        action: str,
        expected: Iterable[str] = (),
    ):
        self.entity_id = entity_id
        self.current_status = current_status
        self.action = action
        self.expected = tuple(expected)

        message = f"Cannot {action} {entity_id}: current status is {current_status}"
        if self.expected:
            allowed = ", ".join(f"'{s}'" for s in self.expected)
            message += f", expected {allowed}"
        super().__init__(message)


class MembershipError(DomainError):
    """Raised when a session is added twice or removed when absent."""


class SequenceOverflowError(DomainError):
    """Raised when a session has exhausted its 3-digit id sequence."""


class InvalidIdentifierError(DomainError):
    """Raised when an id handed to a generator or transition is malformed."""


# =============================================================================
# TIMESTAMPS
# =============================================================================

def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """ISO-8601 with an explicit offset."""
    return ensure_utc(value).isoformat()


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp.

    Accepts the trailing "Z" form produced by other clients.

    Raises:
        ValueError: If the string is not ISO-8601
    """
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def append_note(notes: Optional[str], entry: str) -> str:
    """Append one line to a free-text notes field."""
    return f"{notes}\n{entry}" if notes else entry


def is_blank(value: Optional[str]) -> bool:
    """None, empty and whitespace-only strings are all blank."""
    return value is None or not value.strip()


# =============================================================================
# REFERENCED HYPOTHESES
# =============================================================================

class HypothesisState(Enum):
    """Lifecycle states a hypothesis can be in (owned by the hypothesis layer)."""
    PROPOSED = "proposed"
    ACTIVE = "active"
    UNDER_ATTACK = "under_attack"
    ASSUMPTION_UNDERMINED = "assumption_undermined"
    KILLED = "killed"
    VALIDATED = "validated"
    DORMANT = "dormant"
    REFINED = "refined"


class HypothesisOrigin(Enum):
    """Where a hypothesis came from."""
    ORIGINAL = "original"
    THIRD_ALTERNATIVE = "third_alternative"
    ANOMALY_SPAWNED = "anomaly_spawned"


# Transition-log states that count as a kill
KILL_STATES = frozenset({"killed", "refuted", "falsified", "abandoned"})


@dataclass(frozen=True)
class HypothesisRecord:
    """
    A hypothesis summary read by the program dashboard.

    Identity and state only; the claim text lives with the hypothesis layer.
    """
    id: str
    session_id: str
    state: HypothesisState = HypothesisState.PROPOSED
    origin: HypothesisOrigin = HypothesisOrigin.ORIGINAL
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_killed(self) -> bool:
        return self.state == HypothesisState.KILLED


@dataclass(frozen=True)
class HypothesisTransition:
    """One entry of a hypothesis-transition log."""
    hypothesis_id: str
    from_state: str
    to_state: str
    timestamp: datetime
    triggered_by: Optional[str] = None
    reason: Optional[str] = None

    @property
    def is_kill(self) -> bool:
        return self.to_state.lower() in KILL_STATES


# =============================================================================
# REFERENCED TESTS
# =============================================================================

class TestStage(Enum):
    """Execution stage of a discriminative test."""

    DESIGNED = "designed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


# Evidence-per-week score range (four dimensions scored 0-3)
MAX_EVIDENCE_SCORE = 12.0


@dataclass(frozen=True)
class TestRecord:
    """
    A discriminative test summary read by the program dashboard.

    evidence_score is the optional 0-12 evidence-per-week score.
    """

    id: str
    session_id: str
    stage: TestStage = TestStage.DESIGNED
    has_potency_check: bool = False
    evidence_score: Optional[float] = None
    executed_at: Optional[datetime] = None
