"""
Anomaly Register — observations that do not fit the current hypothesis set.

Anomalies are quarantined: neither hidden nor allowed to destroy an
otherwise coherent framework.

Lifecycle:
    active   → resolved | deferred | paradigm_shifting
    deferred → active (reactivate only)
    resolved, paradigm_shifting: terminal in this layer

Resolving requires the id of the explaining hypothesis and stamps
resolved_at. spawned_hypotheses only grows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from ..domain import IllegalTransitionError, append_note, format_timestamp, utc_now
from ..identifiers import IdKind, require_id
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

OBSERVATION_MIN_LENGTH = 10
CONFLICT_DESCRIPTION_MIN_LENGTH = 10
NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 100
NOTES_MAX_LENGTH = 2000
MIN_SEVERITY = 1
MAX_SEVERITY = 5

# Quarantine discipline thresholds
SUBSTANTIVE_OBSERVATION_LENGTH = 20
DOCUMENTED_CONFLICT_LENGTH = 20


class QuarantineStatus(Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"
    DEFERRED = "deferred"
    PARADIGM_SHIFTING = "paradigm_shifting"


class AnomalySourceType(Enum):
    EXPERIMENT = "experiment"
    LITERATURE = "literature"
    DISCUSSION = "discussion"
    CALCULATION = "calculation"


QUARANTINE_TRANSITIONS = MappingProxyType({
    QuarantineStatus.ACTIVE: frozenset({
        QuarantineStatus.RESOLVED,
        QuarantineStatus.DEFERRED,
        QuarantineStatus.PARADIGM_SHIFTING,
    }),
    QuarantineStatus.DEFERRED: frozenset({QuarantineStatus.ACTIVE}),
    QuarantineStatus.RESOLVED: frozenset(),
    QuarantineStatus.PARADIGM_SHIFTING: frozenset(),
})


# =============================================================================
# VALUE TYPES
# =============================================================================

@dataclass(frozen=True)
class AnomalySource:
    type: AnomalySourceType
    reference: Optional[str] = None
    anchors: tuple[str, ...] = ()
    citation: Optional[str] = None

    def __post_init__(self):
        freeze_fields(self, "anchors")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type.value}
        if self.reference is not None:
            data["reference"] = self.reference
        if self.anchors:
            data["anchors"] = list(self.anchors)
        if self.citation is not None:
            data["citation"] = self.citation
        return data


@dataclass(frozen=True)
class AnomalyConflict:
    """Which hypotheses and assumptions the observation contradicts, and how."""
    description: str
    hypotheses: tuple[str, ...] = ()
    assumptions: tuple[str, ...] = ()

    def __post_init__(self):
        freeze_fields(self, "hypotheses", "assumptions")

    def to_dict(self) -> dict[str, Any]:
        return {
            "hypotheses": list(self.hypotheses),
            "assumptions": list(self.assumptions),
            "description": self.description,
        }


@dataclass(frozen=True)
class Anomaly:
    """
    A quarantined anomaly recorded in one session.

    Invariants:
    - id is X-{session}-{seq}
    - observation >= 10 characters, conflict description >= 10 characters
    - a resolved anomaly names its resolving hypothesis
    """
    id: str
    observation: str
    source: AnomalySource
    conflicts_with: AnomalyConflict
    session_id: str
    quarantine_status: QuarantineStatus = QuarantineStatus.ACTIVE
    name: Optional[str] = None
    resolution_plan: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    spawned_hypotheses: tuple[str, ...] = ()
    recorded_by: Optional[str] = None
    is_inference: bool = False
    tags: tuple[str, ...] = ()
    notes: Optional[str] = None
    severity: Optional[int] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        freeze_fields(self, "spawned_hypotheses", "tags")
        normalize_timestamps(self, "resolved_at", "created_at", "updated_at")
        self._validate()

    def _validate(self) -> None:
        issues = IssueCollector()
        issues.identifier("id", self.id, IdKind.ANOMALY)
        issues.text("name", self.name, NAME_MIN_LENGTH, NAME_MAX_LENGTH, required=False)
        issues.text("observation", self.observation, OBSERVATION_MIN_LENGTH)
        issues.member("quarantineStatus", self.quarantine_status, QuarantineStatus)
        issues.identifier("resolvedBy", self.resolved_by, IdKind.HYPOTHESIS, required=False)
        issues.timestamp("resolvedAt", self.resolved_at, required=False)
        issues.identifiers("spawnedHypotheses", self.spawned_hypotheses, IdKind.HYPOTHESIS)
        issues.text("sessionId", self.session_id, min_length=1)
        issues.text("notes", self.notes, max_length=NOTES_MAX_LENGTH, required=False)
        issues.timestamp("createdAt", self.created_at)
        issues.timestamp("updatedAt", self.updated_at)

        if not isinstance(self.source, AnomalySource):
            issues.add("source", "Expected AnomalySource")
        else:
            issues.member("source.type", self.source.type, AnomalySourceType)
            issues.anchors("source.anchors", self.source.anchors)

        if not isinstance(self.conflicts_with, AnomalyConflict):
            issues.add("conflictsWith", "Expected AnomalyConflict")
        else:
            issues.identifiers("conflictsWith.hypotheses", self.conflicts_with.hypotheses, IdKind.HYPOTHESIS)
            issues.identifiers("conflictsWith.assumptions", self.conflicts_with.assumptions, IdKind.ASSUMPTION)
            issues.text(
                "conflictsWith.description",
                self.conflicts_with.description,
                CONFLICT_DESCRIPTION_MIN_LENGTH,
            )

        if self.severity is not None:
            if isinstance(self.severity, bool) or not isinstance(self.severity, int):
                issues.add("severity", "Expected an integer")
            elif not (MIN_SEVERITY <= self.severity <= MAX_SEVERITY):
                issues.add("severity", f"Must be between {MIN_SEVERITY} and {MAX_SEVERITY}")

        if self.quarantine_status == QuarantineStatus.RESOLVED and self.resolved_by is None:
            issues.add("resolvedBy", "A resolved anomaly must name its resolving hypothesis")

        issues.raise_if_any()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "observation": self.observation,
            "source": self.source.to_dict(),
            "conflictsWith": self.conflicts_with.to_dict(),
            "quarantineStatus": self.quarantine_status.value,
            "spawnedHypotheses": list(self.spawned_hypotheses),
            "sessionId": self.session_id,
            "isInference": self.is_inference,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }
        optional = {
            "name": self.name,
            "resolutionPlan": self.resolution_plan,
            "resolvedBy": self.resolved_by,
            "recordedBy": self.recorded_by,
            "notes": self.notes,
            "severity": self.severity,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        if self.resolved_at is not None:
            data["resolvedAt"] = format_timestamp(self.resolved_at)
        if self.tags:
            data["tags"] = list(self.tags)
        return data


# =============================================================================
# FACTORIES
# =============================================================================

def create_anomaly(
    id: str,
    observation: str,
    source: AnomalySource,
    conflicts_with: AnomalyConflict,
    session_id: str,
    name: Optional[str] = None,
    recorded_by: Optional[str] = None,
    resolution_plan: Optional[str] = None,
    severity: Optional[int] = None,
    tags: Iterable[str] = (),
    is_inference: bool = False,
    now: Optional[datetime] = None,
) -> Anomaly:
    """
    Create a validated, active anomaly.

    Raises:
        ValidationError: If any field violates its constraints
    """
    stamp = now or utc_now()
    return Anomaly(
        id=id,
        observation=observation,
        source=source,
        conflicts_with=conflicts_with,
        session_id=session_id,
        name=name,
        recorded_by=recorded_by,
        resolution_plan=resolution_plan,
        severity=severity,
        tags=tuple(tags),
        is_inference=is_inference,
        created_at=stamp,
        updated_at=stamp,
    )


def create_experimental_anomaly(
    id: str,
    observation: str,
    test_reference: str,
    conflicts_with_hypotheses: Iterable[str],
    conflict_description: str,
    session_id: str,
    recorded_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Anomaly:
    """Anomaly observed in an experiment; test_reference names the test."""
    return create_anomaly(
        id=id,
        observation=observation,
        source=AnomalySource(type=AnomalySourceType.EXPERIMENT, reference=test_reference),
        conflicts_with=AnomalyConflict(
            description=conflict_description,
            hypotheses=tuple(conflicts_with_hypotheses),
        ),
        session_id=session_id,
        recorded_by=recorded_by,
        now=now,
    )


def create_literature_anomaly(
    id: str,
    observation: str,
    citation: str,
    conflicts_with_hypotheses: Iterable[str],
    conflict_description: str,
    session_id: str,
    conflicts_with_assumptions: Iterable[str] = (),
    recorded_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Anomaly:
    """Anomaly reported in the literature."""
    return create_anomaly(
        id=id,
        observation=observation,
        source=AnomalySource(type=AnomalySourceType.LITERATURE, citation=citation),
        conflicts_with=AnomalyConflict(
            description=conflict_description,
            hypotheses=tuple(conflicts_with_hypotheses),
            assumptions=tuple(conflicts_with_assumptions),
        ),
        session_id=session_id,
        recorded_by=recorded_by,
        now=now,
    )


# =============================================================================
# TRANSITIONS
# =============================================================================

def _check_transition(anomaly: Anomaly, target: QuarantineStatus, action: str) -> None:
    if target not in QUARANTINE_TRANSITIONS[anomaly.quarantine_status]:
        sources = [s.value for s, targets in QUARANTINE_TRANSITIONS.items() if target in targets]
        raise IllegalTransitionError(anomaly.id, anomaly.quarantine_status.value, action, sources)


def _moved(anomaly: Anomaly, updated: Anomaly) -> Anomaly:
    logger.debug(
        "Anomaly %s: %s -> %s",
        anomaly.id,
        anomaly.quarantine_status.value,
        updated.quarantine_status.value,
    )
    return updated


def resolve_anomaly(
    anomaly: Anomaly,
    resolved_by: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Anomaly:
    """
    Resolve an active anomaly with the hypothesis that explains it.

    Raises:
        InvalidIdentifierError: If resolved_by is not a hypothesis id
        IllegalTransitionError: If the anomaly is not active
    """
    require_id(resolved_by, IdKind.HYPOTHESIS, "resolving hypothesis id")
    _check_transition(anomaly, QuarantineStatus.RESOLVED, "resolve")
    stamp = now or utc_now()
    return _moved(anomaly, replace(
        anomaly,
        quarantine_status=QuarantineStatus.RESOLVED,
        resolved_by=resolved_by,
        resolved_at=stamp,
        notes=append_note(anomaly.notes, notes) if notes else anomaly.notes,
        updated_at=stamp,
    ))


def defer_anomaly(
    anomaly: Anomaly,
    reason: str,
    now: Optional[datetime] = None,
) -> Anomaly:
    """
    Park an active anomaly. The reason becomes its resolution plan.

    Raises:
        IllegalTransitionError: If the anomaly is not active
    """
    _check_transition(anomaly, QuarantineStatus.DEFERRED, "defer")
    return _moved(anomaly, replace(
        anomaly,
        quarantine_status=QuarantineStatus.DEFERRED,
        resolution_plan=reason,
        updated_at=now or utc_now(),
    ))


def mark_paradigm_shifting(
    anomaly: Anomaly,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Anomaly:
    """
    Raises:
        IllegalTransitionError: If the anomaly is not active
    """
    _check_transition(anomaly, QuarantineStatus.PARADIGM_SHIFTING, "mark paradigm-shifting")
    return _moved(anomaly, replace(
        anomaly,
        quarantine_status=QuarantineStatus.PARADIGM_SHIFTING,
        notes=append_note(anomaly.notes, notes) if notes else anomaly.notes,
        updated_at=now or utc_now(),
    ))


def reactivate_anomaly(anomaly: Anomaly, now: Optional[datetime] = None) -> Anomaly:
    """
    Raises:
        IllegalTransitionError: If the anomaly is not deferred
    """
    _check_transition(anomaly, QuarantineStatus.ACTIVE, "reactivate")
    return _moved(anomaly, replace(
        anomaly,
        quarantine_status=QuarantineStatus.ACTIVE,
        updated_at=now or utc_now(),
    ))


def link_spawned_hypothesis(
    anomaly: Anomaly,
    hypothesis_id: str,
    now: Optional[datetime] = None,
) -> Anomaly:
    """
    Record a hypothesis this anomaly motivated. Linking twice is a no-op.

    Raises:
        InvalidIdentifierError: If hypothesis_id is not a hypothesis id
    """
    require_id(hypothesis_id, IdKind.HYPOTHESIS, "hypothesis id")
    if hypothesis_id in anomaly.spawned_hypotheses:
        return anomaly
    return replace(
        anomaly,
        spawned_hypotheses=anomaly.spawned_hypotheses + (hypothesis_id,),
        updated_at=now or utc_now(),
    )


# =============================================================================
# ADVISORY CHECKS
# =============================================================================

@dataclass(frozen=True)
class QuarantineAssessment:
    score: int
    issues: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()


def validate_quarantine_discipline(anomaly: Anomaly) -> QuarantineAssessment:
    """
    Score how well an anomaly is quarantined (0-3).

    0: observation too brief to act on
    1: recorded
    2: formally tracked (non-active status, or a documented conflict)
    3: resolution plan, conflicting hypotheses and a traceable source

    A deferred anomaly with no plan is flagged as Occam's broom.
    """
    if len(anomaly.observation) < SUBSTANTIVE_OBSERVATION_LENGTH:
        return QuarantineAssessment(
            score=0,
            issues=("Observation is too brief - anomalies should be well-documented",),
        )

    issues = []
    suggestions = []
    score = 1

    status = anomaly.quarantine_status
    if status != QuarantineStatus.ACTIVE or len(anomaly.conflicts_with.description) >= DOCUMENTED_CONFLICT_LENGTH:
        score = 2

    if status == QuarantineStatus.ACTIVE and not anomaly.resolution_plan:
        suggestions.append("Consider adding a resolution plan for this active anomaly")

    traceable = bool(anomaly.source.reference) or bool(anomaly.source.anchors)
    if anomaly.resolution_plan and anomaly.conflicts_with.hypotheses and traceable:
        score = 3

    if status == QuarantineStatus.DEFERRED and not anomaly.resolution_plan:
        issues.append("Deferred anomaly without resolution plan - potential Occam's broom violation")

    return QuarantineAssessment(score=score, issues=tuple(issues), suggestions=tuple(suggestions))


@dataclass(frozen=True)
class SpawnAdvice:
    can_spawn: bool
    reason: str


def can_spawn_hypothesis(anomaly: Anomaly) -> SpawnAdvice:
    """Advisory check whether an anomaly is a good seed for a new hypothesis."""
    status = anomaly.quarantine_status

    if anomaly.spawned_hypotheses:
        count = len(anomaly.spawned_hypotheses)
        return SpawnAdvice(True, f"Already spawned {count} hypothesis(es)")

    if status == QuarantineStatus.RESOLVED:
        return SpawnAdvice(False, "Anomaly is resolved - no need to spawn new hypotheses")

    if status == QuarantineStatus.PARADIGM_SHIFTING:
        return SpawnAdvice(True, "Paradigm-shifting anomaly - strong candidate for a new research thread")

    if status == QuarantineStatus.ACTIVE and anomaly.conflicts_with.hypotheses:
        return SpawnAdvice(True, "Active anomaly challenging hypotheses - can spawn third alternative")

    if status == QuarantineStatus.DEFERRED:
        return SpawnAdvice(False, "Deferred - consider reactivating before spawning hypotheses")

    return SpawnAdvice(False, "Anomaly does not have sufficient conflict context for spawning")


# =============================================================================
# PERSISTED FORM
# =============================================================================

def _parse_anomaly(reader: RawReader) -> Anomaly:
    source = None
    source_reader = reader.child("source")
    if source_reader is not None:
        source = AnomalySource(
            type=source_reader.choice("type", AnomalySourceType),
            reference=source_reader.string("reference", required=False),
            anchors=source_reader.string_list("anchors"),
            citation=source_reader.string("citation", required=False),
        )

    conflicts = None
    conflict_reader = reader.child("conflictsWith")
    if conflict_reader is not None:
        conflicts = AnomalyConflict(
            description=conflict_reader.string("description"),
            hypotheses=conflict_reader.string_list("hypotheses"),
            assumptions=conflict_reader.string_list("assumptions"),
        )

    kwargs = dict(
        id=reader.string("id"),
        name=reader.string("name", required=False),
        observation=reader.string("observation"),
        source=source,
        conflicts_with=conflicts,
        quarantine_status=reader.choice("quarantineStatus", QuarantineStatus),
        resolution_plan=reader.string("resolutionPlan", required=False),
        resolved_by=reader.string("resolvedBy", required=False),
        resolved_at=reader.timestamp("resolvedAt", required=False),
        spawned_hypotheses=reader.string_list("spawnedHypotheses"),
        session_id=reader.string("sessionId"),
        recorded_by=reader.string("recordedBy", required=False),
        is_inference=reader.boolean("isInference"),
        tags=reader.string_list("tags"),
        notes=reader.string("notes", required=False),
        severity=reader.integer("severity"),
        created_at=reader.timestamp("createdAt"),
        updated_at=reader.timestamp("updatedAt"),
    )
    reader.collector.raise_if_any()
    return Anomaly(**kwargs)


def validate_anomaly(raw: Mapping[str, Any]) -> ValidationResult:
    """Validate a persisted anomaly record without raising."""
    return run_validation(raw, _parse_anomaly)


def anomaly_from_dict(raw: Mapping[str, Any]) -> Anomaly:
    """
    Raises:
        ValidationError: If the record is malformed
    """
    return validate_anomaly(raw).unwrap()
