"""
Operator Interventions — audit trail of human edits to an agent session.

Every time an operator edits an artifact, injects or excludes a delta,
overrides a decision, controls the session or reassigns a role, one
OperatorIntervention is recorded. Severity is derived from the type and
target; aggregate_interventions summarizes a session's trail, and a session
with no major or critical interventions is "clean".

Unlike the research registries, interventions persist with snake_case keys.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from ..domain import IllegalTransitionError, format_timestamp, utc_now
from ..identifiers import IdKind
from ..validation import (
    IssueCollector,
    RawReader,
    ValidationResult,
    freeze_fields,
    normalize_timestamps,
    run_validation,
)

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION CONSTANTS
# =============================================================================

RATIONALE_MIN_LENGTH = 10


class InterventionType(Enum):
    ARTIFACT_EDIT = "artifact_edit"
    DELTA_EXCLUSION = "delta_exclusion"
    DELTA_INJECTION = "delta_injection"
    DECISION_OVERRIDE = "decision_override"
    SESSION_CONTROL = "session_control"
    ROLE_REASSIGNMENT = "role_reassignment"


class InterventionSeverity(Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"
    CRITICAL = "critical"


class SessionControlAction(Enum):
    TERMINATE_EARLY = "terminate_early"
    FORCE_RERUN = "force_rerun"
    FORK_SESSION = "fork_session"
    RESET_TO_CHECKPOINT = "reset_to_checkpoint"
    PAUSE = "pause"
    RESUME = "resume"


class TargetItemType(Enum):
    HYPOTHESIS = "hypothesis"
    TEST = "test"
    PREDICTION = "prediction"
    ASSUMPTION = "assumption"
    ANOMALY = "anomaly"
    CRITIQUE = "critique"
    RESEARCH_THREAD = "research_thread"


MAJOR_SEVERITIES = frozenset({InterventionSeverity.MAJOR, InterventionSeverity.CRITICAL})


# =============================================================================
# VALUE TYPES
# =============================================================================

@dataclass(frozen=True)
class InterventionTarget:
    """What the operator touched. All fields optional."""
    message_id: Optional[int] = None
    artifact_version: Optional[int] = None
    item_id: Optional[str] = None
    item_type: Optional[TargetItemType] = None
    agent_name: Optional[str] = None
    role: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "message_id": self.message_id,
            "artifact_version": self.artifact_version,
            "item_id": self.item_id,
            "item_type": self.item_type.value if self.item_type else None,
            "agent_name": self.agent_name,
            "role": self.role,
        }
        return {k: v for k, v in data.items() if v is not None}


@dataclass(frozen=True)
class StateChange:
    before: Optional[str] = None
    after: Optional[str] = None
    before_hash: Optional[str] = None
    after_hash: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "before": self.before,
            "after": self.after,
            "before_hash": self.before_hash,
            "after_hash": self.after_hash,
        }
        return {k: v for k, v in data.items() if v is not None}


@dataclass(frozen=True)
class OperatorIntervention:
    id: str
    session_id: str
    timestamp: datetime
    operator_id: str
    type: InterventionType
    severity: InterventionSeverity
    target: InterventionTarget
    rationale: str
    state_change: Optional[StateChange] = None
    session_control_action: Optional[SessionControlAction] = None
    reversible: bool = True
    reversed_at: Optional[datetime] = None
    reversed_by: Optional[str] = None
    tags: tuple[str, ...] = ()
    notes: Optional[str] = None

    def __post_init__(self):
        freeze_fields(self, "tags")
        normalize_timestamps(self, "timestamp", "reversed_at")
        self._validate()

    def _validate(self) -> None:
        issues = IssueCollector()
        issues.identifier("id", self.id, IdKind.INTERVENTION)
        issues.text("session_id", self.session_id, min_length=1)
        issues.timestamp("timestamp", self.timestamp)
        issues.text("operator_id", self.operator_id, min_length=1)
        issues.member("type", self.type, InterventionType)
        issues.member("severity", self.severity, InterventionSeverity)
        issues.text("rationale", self.rationale, RATIONALE_MIN_LENGTH)
        issues.timestamp("reversed_at", self.reversed_at, required=False)

        if not isinstance(self.target, InterventionTarget):
            issues.add("target", "Expected InterventionTarget")
        else:
            target = self.target
            if target.message_id is not None and (not isinstance(target.message_id, int) or target.message_id < 1):
                issues.add("target.message_id", "Must be a positive integer")
            if target.artifact_version is not None and (
                not isinstance(target.artifact_version, int) or target.artifact_version < 0
            ):
                issues.add("target.artifact_version", "Must be a non-negative integer")
            if target.item_type is not None:
                issues.member("target.item_type", target.item_type, TargetItemType)

        if self.session_control_action is not None:
            issues.member("session_control_action", self.session_control_action, SessionControlAction)

        issues.raise_if_any()

    @property
    def is_reversed(self) -> bool:
        return self.reversed_at is not None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "session_id": self.session_id,
            "timestamp": format_timestamp(self.timestamp),
            "operator_id": self.operator_id,
            "type": self.type.value,
            "severity": self.severity.value,
            "target": self.target.to_dict(),
            "rationale": self.rationale,
            "reversible": self.reversible,
            "tags": list(self.tags),
        }
        if self.state_change is not None:
            data["state_change"] = self.state_change.to_dict()
        if self.session_control_action is not None:
            data["session_control_action"] = self.session_control_action.value
        if self.reversed_at is not None:
            data["reversed_at"] = format_timestamp(self.reversed_at)
        if self.reversed_by is not None:
            data["reversed_by"] = self.reversed_by
        if self.notes is not None:
            data["notes"] = self.notes
        return data


# =============================================================================
# FACTORIES
# =============================================================================

def create_intervention_id(session_id: str, sequence: int) -> str:
    """Format an intervention id from an explicit sequence number."""
    return f"INT-{session_id}-{sequence:03d}"


def determine_intervention_severity(
    type: InterventionType,
    target: InterventionTarget,
) -> InterventionSeverity:
    """
    Derive severity from what was done and to what.

    critical: session control
    major:    role reassignment, decision override, hypothesis edit/injection
    moderate: delta exclusion, edits to any other registry item
    minor:    everything else (formatting, typos)
    """
    if type == InterventionType.SESSION_CONTROL:
        return InterventionSeverity.CRITICAL

    touches_hypothesis = target.item_type == TargetItemType.HYPOTHESIS
    if type in (InterventionType.ROLE_REASSIGNMENT, InterventionType.DECISION_OVERRIDE):
        return InterventionSeverity.MAJOR
    if type in (InterventionType.ARTIFACT_EDIT, InterventionType.DELTA_INJECTION) and touches_hypothesis:
        return InterventionSeverity.MAJOR

    if type == InterventionType.DELTA_EXCLUSION:
        return InterventionSeverity.MODERATE
    if type == InterventionType.ARTIFACT_EDIT and target.item_type is not None:
        return InterventionSeverity.MODERATE

    return InterventionSeverity.MINOR


def create_intervention(
    id: str,
    session_id: str,
    operator_id: str,
    type: InterventionType,
    target: InterventionTarget,
    rationale: str,
    severity: Optional[InterventionSeverity] = None,
    state_change: Optional[StateChange] = None,
    session_control_action: Optional[SessionControlAction] = None,
    reversible: bool = True,
    tags: Iterable[str] = (),
    notes: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> OperatorIntervention:
    """
    Record an intervention. Severity is derived unless given explicitly.

    Raises:
        ValidationError: If any field violates its constraints
    """
    return OperatorIntervention(
        id=id,
        session_id=session_id,
        timestamp=timestamp or utc_now(),
        operator_id=operator_id,
        type=type,
        severity=severity or determine_intervention_severity(type, target),
        target=target,
        rationale=rationale,
        state_change=state_change,
        session_control_action=session_control_action,
        reversible=reversible,
        tags=tuple(tags),
        notes=notes,
    )


def reverse_intervention(
    intervention: OperatorIntervention,
    reversed_by: str,
    now: Optional[datetime] = None,
) -> OperatorIntervention:
    """
    Mark a reversible intervention as undone.

    Raises:
        IllegalTransitionError: If it is irreversible or already reversed
    """
    if not intervention.reversible:
        raise IllegalTransitionError(intervention.id, "irreversible", "reverse")
    if intervention.is_reversed:
        raise IllegalTransitionError(intervention.id, "reversed", "reverse")
    logger.debug("Intervention %s reversed by %s", intervention.id, reversed_by)
    return replace(intervention, reversed_at=now or utc_now(), reversed_by=reversed_by)


# =============================================================================
# AGGREGATION
# =============================================================================

@dataclass(frozen=True)
class InterventionSummary:
    total_count: int = 0
    by_severity: Mapping[str, int] = field(
        default_factory=lambda: MappingProxyType({s.value: 0 for s in InterventionSeverity})
    )
    by_type: Mapping[str, int] = field(
        default_factory=lambda: MappingProxyType({t.value: 0 for t in InterventionType})
    )
    has_major_interventions: bool = False
    operators: tuple[str, ...] = ()
    first_intervention_at: Optional[datetime] = None
    last_intervention_at: Optional[datetime] = None


def aggregate_interventions(interventions: Iterable[OperatorIntervention]) -> InterventionSummary:
    """Summarize a session's intervention trail."""
    by_severity = {s.value: 0 for s in InterventionSeverity}
    by_type = {t.value: 0 for t in InterventionType}
    operators = set()
    first = last = None
    total = 0
    has_major = False

    for intervention in interventions:
        total += 1
        by_severity[intervention.severity.value] += 1
        by_type[intervention.type.value] += 1
        operators.add(intervention.operator_id)
        if first is None or intervention.timestamp < first:
            first = intervention.timestamp
        if last is None or intervention.timestamp > last:
            last = intervention.timestamp
        if intervention.severity in MAJOR_SEVERITIES:
            has_major = True

    logger.debug("Aggregated %d interventions from %d operators", total, len(operators))
    return InterventionSummary(
        total_count=total,
        by_severity=MappingProxyType(by_severity),
        by_type=MappingProxyType(by_type),
        has_major_interventions=has_major,
        operators=tuple(sorted(operators)),
        first_intervention_at=first,
        last_intervention_at=last,
    )


def is_clean_session(summary: InterventionSummary) -> bool:
    """A session is clean when no major or critical intervention was recorded."""
    return not summary.has_major_interventions


# =============================================================================
# PERSISTED FORM
# =============================================================================

def _parse_intervention(reader: RawReader) -> OperatorIntervention:
    target = None
    target_reader = reader.child("target")
    if target_reader is not None:
        item_type = None
        if target_reader.raw.get("item_type") is not None:
            item_type = target_reader.choice("item_type", TargetItemType)
        target = InterventionTarget(
            message_id=target_reader.integer("message_id"),
            artifact_version=target_reader.integer("artifact_version"),
            item_id=target_reader.string("item_id", required=False),
            item_type=item_type,
            agent_name=target_reader.string("agent_name", required=False),
            role=target_reader.string("role", required=False),
        )

    state_change = None
    change_reader = reader.child("state_change", required=False)
    if change_reader is not None:
        state_change = StateChange(
            before=change_reader.string("before", required=False),
            after=change_reader.string("after", required=False),
            before_hash=change_reader.string("before_hash", required=False),
            after_hash=change_reader.string("after_hash", required=False),
        )

    control_action = None
    if reader.raw.get("session_control_action") is not None:
        control_action = reader.choice("session_control_action", SessionControlAction)

    kwargs = dict(
        id=reader.string("id"),
        session_id=reader.string("session_id"),
        timestamp=reader.timestamp("timestamp"),
        operator_id=reader.string("operator_id"),
        type=reader.choice("type", InterventionType),
        severity=reader.choice("severity", InterventionSeverity),
        target=target,
        state_change=state_change,
        rationale=reader.string("rationale"),
        session_control_action=control_action,
        reversible=reader.boolean("reversible", default=True),
        reversed_at=reader.timestamp("reversed_at", required=False),
        reversed_by=reader.string("reversed_by", required=False),
        tags=reader.string_list("tags"),
        notes=reader.string("notes", required=False),
    )
    reader.collector.raise_if_any()
    return OperatorIntervention(**kwargs)


def validate_intervention(raw: Mapping[str, Any]) -> ValidationResult:
    """Validate a persisted intervention record without raising."""
    return run_validation(raw, _parse_intervention)


def intervention_from_dict(raw: Mapping[str, Any]) -> OperatorIntervention:
    """
    Raises:
        ValidationError: If the record is malformed
    """
    return validate_intervention(raw).unwrap()
