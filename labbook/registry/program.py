"""
Research Programs — ordered groups of sessions under one research goal.

Lifecycle:
    active ⇄ paused
    active | paused → completed | abandoned (terminal, stamps closed_at)

Abandoning requires a reason of at least 10 characters. The first session
in `sessions` is the origin session; membership is unique.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from ..domain import (
    IllegalTransitionError,
    InvalidIdentifierError,
    MembershipError,
    append_note,
    format_timestamp,
    is_blank,
    utc_now,
)
from ..identifiers import IdKind, is_valid_session_id
from ..validation import (
    IssueCollector,
    RawReader,
    ValidationResult,
    freeze_fields,
    join_path,
    normalize_timestamps,
    run_validation,
)

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION CONSTANTS
# =============================================================================

NAME_MIN_LENGTH = 3
DESCRIPTION_MIN_LENGTH = 10
ABANDON_REASON_MIN_LENGTH = 10


class ProgramStatus(Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


PROGRAM_TRANSITIONS = MappingProxyType({
    ProgramStatus.ACTIVE: frozenset({
        ProgramStatus.PAUSED,
        ProgramStatus.COMPLETED,
        ProgramStatus.ABANDONED,
    }),
    ProgramStatus.PAUSED: frozenset({
        ProgramStatus.ACTIVE,
        ProgramStatus.COMPLETED,
        ProgramStatus.ABANDONED,
    }),
    ProgramStatus.COMPLETED: frozenset(),
    ProgramStatus.ABANDONED: frozenset(),
})

TERMINAL_STATUSES = frozenset({ProgramStatus.COMPLETED, ProgramStatus.ABANDONED})


# =============================================================================
# RESEARCH PROGRAM
# =============================================================================

@dataclass(frozen=True)
class ResearchProgram:
    id: str
    name: str
    description: str
    sessions: tuple[str, ...] = ()
    status: ProgramStatus = ProgramStatus.ACTIVE
    notes: Optional[str] = None
    closed_at: Optional[datetime] = None
    abandoned_reason: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        freeze_fields(self, "sessions")
        normalize_timestamps(self, "closed_at", "created_at", "updated_at")
        self._validate()

    def _validate(self) -> None:
        issues = IssueCollector()
        issues.identifier("id", self.id, IdKind.PROGRAM)
        issues.text("name", self.name, NAME_MIN_LENGTH)
        issues.text("description", self.description, DESCRIPTION_MIN_LENGTH)
        issues.member("status", self.status, ProgramStatus)
        issues.timestamp("createdAt", self.created_at)
        issues.timestamp("updatedAt", self.updated_at)
        issues.timestamp("closedAt", self.closed_at, required=False)

        seen = set()
        for index, session_id in enumerate(self.sessions):
            issues.session(join_path("sessions", index), session_id)
            if session_id in seen:
                issues.add(join_path("sessions", index), f"Duplicate session {session_id}")
            seen.add(session_id)

        if self.status == ProgramStatus.ABANDONED:
            reason = self.abandoned_reason
            if is_blank(reason) or len(reason.strip()) < ABANDON_REASON_MIN_LENGTH:
                issues.add(
                    "abandonedReason",
                    f"Abandonment reason must be at least {ABANDON_REASON_MIN_LENGTH} characters",
                )

        issues.raise_if_any()

    @property
    def is_closed(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def origin_session(self) -> Optional[str]:
        return self.sessions[0] if self.sessions else None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "sessions": list(self.sessions),
            "status": self.status.value,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }
        if self.notes is not None:
            data["notes"] = self.notes
        if self.closed_at is not None:
            data["closedAt"] = format_timestamp(self.closed_at)
        if self.abandoned_reason is not None:
            data["abandonedReason"] = self.abandoned_reason
        return data


def create_research_program(
    id: str,
    name: str,
    description: str,
    sessions: Iterable[str] = (),
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ResearchProgram:
    """
    Create a validated, active research program.

    Raises:
        ValidationError: If any field violates its constraints
    """
    stamp = now or utc_now()
    return ResearchProgram(
        id=id,
        name=name,
        description=description,
        sessions=tuple(sessions),
        notes=notes,
        created_at=stamp,
        updated_at=stamp,
    )


# =============================================================================
# MEMBERSHIP
# =============================================================================

def add_session_to_program(
    program: ResearchProgram,
    session_id: str,
    now: Optional[datetime] = None,
) -> ResearchProgram:
    """
    Append a session to the program.

    Raises:
        InvalidIdentifierError: If session_id is not an RS... id
        MembershipError: If the session is already in the program
    """
    if not is_valid_session_id(session_id):
        raise InvalidIdentifierError(f"Invalid session id format: {session_id}")
    if session_id in program.sessions:
        raise MembershipError(f"Session {session_id} is already in program {program.id}")
    logger.debug("Program %s: added session %s", program.id, session_id)
    return replace(program, sessions=program.sessions + (session_id,), updated_at=now or utc_now())


def remove_session_from_program(
    program: ResearchProgram,
    session_id: str,
    now: Optional[datetime] = None,
) -> ResearchProgram:
    """
    Raises:
        MembershipError: If the session is not in the program
    """
    if session_id not in program.sessions:
        raise MembershipError(f"Session {session_id} is not in program {program.id}")
    remaining = tuple(s for s in program.sessions if s != session_id)
    logger.debug("Program %s: removed session %s", program.id, session_id)
    return replace(program, sessions=remaining, updated_at=now or utc_now())


# =============================================================================
# TRANSITIONS
# =============================================================================

def _transition(
    program: ResearchProgram,
    target: ProgramStatus,
    action: str,
    now: Optional[datetime],
    **changes,
) -> ResearchProgram:
    if target not in PROGRAM_TRANSITIONS[program.status]:
        sources = [s.value for s, targets in PROGRAM_TRANSITIONS.items() if target in targets]
        raise IllegalTransitionError(program.id, program.status.value, action, sources)

    stamp = now or utc_now()
    if target in TERMINAL_STATUSES:
        changes["closed_at"] = stamp
    updated = replace(program, status=target, updated_at=stamp, **changes)
    logger.debug("Program %s: %s -> %s", program.id, program.status.value, target.value)
    return updated


def pause_program(
    program: ResearchProgram,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ResearchProgram:
    """
    Raises:
        IllegalTransitionError: If the program is not active
    """
    notes = append_note(program.notes, f"Paused: {reason}") if reason else program.notes
    return _transition(program, ProgramStatus.PAUSED, "pause", now, notes=notes)


def resume_program(program: ResearchProgram, now: Optional[datetime] = None) -> ResearchProgram:
    """
    Raises:
        IllegalTransitionError: If the program is not paused
    """
    return _transition(program, ProgramStatus.ACTIVE, "resume", now)


def complete_program(
    program: ResearchProgram,
    summary: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ResearchProgram:
    """
    Raises:
        IllegalTransitionError: If the program is already completed or abandoned
    """
    notes = append_note(program.notes, f"Completed: {summary}") if summary else program.notes
    return _transition(program, ProgramStatus.COMPLETED, "complete", now, notes=notes)


def abandon_program(
    program: ResearchProgram,
    reason: str,
    now: Optional[datetime] = None,
) -> ResearchProgram:
    """
    Raises:
        IllegalTransitionError: If the program is already completed or abandoned
        ValidationError: If the reason is shorter than 10 characters
    """
    return _transition(program, ProgramStatus.ABANDONED, "abandon", now, abandoned_reason=reason)


# =============================================================================
# PERSISTED FORM
# =============================================================================

def _parse_program(reader: RawReader) -> ResearchProgram:
    kwargs = dict(
        id=reader.string("id"),
        name=reader.string("name"),
        description=reader.string("description"),
        sessions=reader.string_list("sessions"),
        status=reader.choice("status", ProgramStatus),
        notes=reader.string("notes", required=False),
        closed_at=reader.timestamp("closedAt", required=False),
        abandoned_reason=reader.string("abandonedReason", required=False),
        created_at=reader.timestamp("createdAt"),
        updated_at=reader.timestamp("updatedAt"),
    )
    reader.collector.raise_if_any()
    return ResearchProgram(**kwargs)


def validate_research_program(raw: Mapping[str, Any]) -> ValidationResult:
    """Validate a persisted research program record without raising."""
    return run_validation(raw, _parse_program)


def research_program_from_dict(raw: Mapping[str, Any]) -> ResearchProgram:
    """
    Raises:
        ValidationError: If the record is malformed
    """
    return validate_research_program(raw).unwrap()
