"""
Program Dashboard Aggregator.

Read-only projection of every entity recorded across a research program's
sessions: hypothesis funnel, per-registry health, test execution summary,
health warnings and a timeline of recent events.

Entities whose session is not in the program are ignored. Nothing here
mutates an entity or raises on incomplete input; the dashboard can be
recomputed at any time from the same collections.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from statistics import mean
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from .domain import (
    MAX_EVIDENCE_SCORE,
    HypothesisOrigin,
    HypothesisRecord,
    HypothesisState,
    TestRecord,
    TestStage,
    ensure_utc,
    is_blank,
    utc_now,
)
from .registry.anomaly import Anomaly, QuarantineStatus
from .registry.assumption import (
    Assumption,
    AssumptionCriticality,
    AssumptionStatus,
    AssumptionType,
    evaluate_scale_rigor,
)
from .registry.critique import Critique, CritiqueStatus, requires_response
from .registry.program import ProgramStatus, ResearchProgram

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION CONSTANTS
# =============================================================================

DEFAULT_EVENT_LIMIT = 20

LOW_POTENCY_COVERAGE = 0.5          # fraction of tests with a potency check
LOW_SCALE_RIGOR = 2                 # rigor below this is flagged
MIN_HYPOTHESES_FOR_ALTERNATIVE = 2  # slate size that should include a third alternative
MIN_HYPOTHESES_FOR_KILL = 3         # slate size that should have produced a kill


class WarningSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class EventType(Enum):
    SESSION_STARTED = "session_started"
    HYPOTHESIS_PROPOSED = "hypothesis_proposed"
    HYPOTHESIS_KILLED = "hypothesis_killed"
    HYPOTHESIS_VALIDATED = "hypothesis_validated"
    TEST_EXECUTED = "test_executed"
    ASSUMPTION_VERIFIED = "assumption_verified"
    ASSUMPTION_FALSIFIED = "assumption_falsified"
    ANOMALY_RECORDED = "anomaly_recorded"
    ANOMALY_RESOLVED = "anomaly_resolved"
    CRITIQUE_RAISED = "critique_raised"
    CRITIQUE_ADDRESSED = "critique_addressed"
    PROGRAM_STATUS_CHANGED = "program_status_changed"


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class HypothesisFunnel:
    by_state: Mapping[HypothesisState, int]
    by_origin: Mapping[HypothesisOrigin, int]

    @property
    def total(self) -> int:
        return sum(self.by_state.values())


@dataclass(frozen=True)
class RegistryHealth:
    """Totals and status counts for one registry; metrics are registry-specific."""
    total: int
    by_status: Mapping[str, int]
    metrics: Mapping[str, float | int | bool] = field(default_factory=dict)


@dataclass(frozen=True)
class TestExecutionSummary:
    designed: int
    in_progress: int
    completed: int
    blocked: int
    potency_coverage: float
    avg_evidence_score: Optional[float] = None


@dataclass(frozen=True)
class HealthWarning:
    code: str
    severity: WarningSeverity
    message: str
    related_ids: tuple[str, ...] = ()
    suggestion: Optional[str] = None


@dataclass(frozen=True)
class TimelineEvent:
    timestamp: datetime
    event_type: EventType
    description: str
    entity_id: Optional[str] = None
    session_id: Optional[str] = None


@dataclass(frozen=True)
class ProgramDashboard:
    program_id: str
    generated_at: datetime
    hypothesis_funnel: HypothesisFunnel
    registry_health: Mapping[str, RegistryHealth]
    test_execution: TestExecutionSummary
    warnings: tuple[HealthWarning, ...]
    recent_events: tuple[TimelineEvent, ...]


# =============================================================================
# FUNNEL / HEALTH / TESTS
# =============================================================================

def compute_hypothesis_funnel(hypotheses: Iterable[HypothesisRecord]) -> HypothesisFunnel:
    by_state = {state: 0 for state in HypothesisState}
    by_origin = {origin: 0 for origin in HypothesisOrigin}
    for hypothesis in hypotheses:
        by_state[hypothesis.state] += 1
        by_origin[hypothesis.origin] += 1
    return HypothesisFunnel(
        by_state=MappingProxyType(by_state),
        by_origin=MappingProxyType(by_origin),
    )


def _status_counts(statuses: Iterable[Enum]) -> Mapping[str, int]:
    return MappingProxyType(dict(Counter(status.value for status in statuses)))


def hypothesis_health(hypotheses: list[HypothesisRecord]) -> RegistryHealth:
    return RegistryHealth(
        total=len(hypotheses),
        by_status=_status_counts(h.state for h in hypotheses),
        metrics=MappingProxyType({
            "killed": sum(1 for h in hypotheses if h.is_killed),
            "thirdAlternatives": sum(1 for h in hypotheses if h.origin == HypothesisOrigin.THIRD_ALTERNATIVE),
            "anomalySpawned": sum(1 for h in hypotheses if h.origin == HypothesisOrigin.ANOMALY_SPAWNED),
        }),
    )


def assumption_health(assumptions: list[Assumption]) -> RegistryHealth:
    scale = [a for a in assumptions if a.type == AssumptionType.SCALE_PHYSICS]
    return RegistryHealth(
        total=len(assumptions),
        by_status=_status_counts(a.status for a in assumptions),
        metrics=MappingProxyType({
            "scalePhysics": len(scale),
            "maxScaleRigor": max((evaluate_scale_rigor(a.calculation) for a in scale), default=0),
            "foundational": sum(1 for a in assumptions if a.criticality == AssumptionCriticality.FOUNDATIONAL),
        }),
    )


def anomaly_health(anomalies: list[Anomaly]) -> RegistryHealth:
    open_statuses = {QuarantineStatus.ACTIVE, QuarantineStatus.DEFERRED}
    return RegistryHealth(
        total=len(anomalies),
        by_status=_status_counts(a.quarantine_status for a in anomalies),
        metrics=MappingProxyType({
            "unresolved": sum(1 for a in anomalies if a.quarantine_status in open_statuses),
            "spawnedHypotheses": sum(len(a.spawned_hypotheses) for a in anomalies),
        }),
    )


def critique_health(critiques: list[Critique]) -> RegistryHealth:
    return RegistryHealth(
        total=len(critiques),
        by_status=_status_counts(c.status for c in critiques),
        metrics=MappingProxyType({
            "unaddressedSerious": sum(1 for c in critiques if requires_response(c)),
            "withAlternative": sum(1 for c in critiques if c.proposed_alternative is not None),
        }),
    )


def summarize_tests(tests: Iterable[TestRecord]) -> TestExecutionSummary:
    tests = list(tests)
    stages = Counter(t.stage for t in tests)
    potency = sum(1 for t in tests if t.has_potency_check)
    scores = [
        min(max(t.evidence_score, 0.0), MAX_EVIDENCE_SCORE)
        for t in tests if t.evidence_score is not None
    ]
    return TestExecutionSummary(
        designed=stages[TestStage.DESIGNED],
        in_progress=stages[TestStage.IN_PROGRESS],
        completed=stages[TestStage.COMPLETED],
        blocked=stages[TestStage.BLOCKED],
        potency_coverage=round(potency / len(tests), 3) if tests else 0.0,
        avg_evidence_score=round(mean(scores), 2) if scores else None,
    )


# =============================================================================
# HEALTH WARNINGS
# =============================================================================

def compute_health_warnings(
    hypotheses: list[HypothesisRecord],
    assumptions: list[Assumption],
    anomalies: list[Anomaly],
    critiques: list[Critique],
    tests: list[TestRecord],
) -> tuple[HealthWarning, ...]:
    warnings = []

    scale = [a for a in assumptions if a.type == AssumptionType.SCALE_PHYSICS]
    if not scale:
        warnings.append(HealthWarning(
            code="NO_SCALE_PHYSICS",
            severity=WarningSeverity.WARNING,
            message="No scale_physics assumption recorded in this program",
            suggestion="Add an order-of-magnitude check that could rule hypotheses out",
        ))
    else:
        uncalculated = [a.id for a in scale if a.calculation is None]
        if uncalculated:
            warnings.append(HealthWarning(
                code="MISSING_SCALE_CALCULATION",
                severity=WarningSeverity.WARNING,
                message=f"{len(uncalculated)} scale_physics assumptions have no calculation",
                related_ids=tuple(uncalculated),
                suggestion="Record quantities, result, units and implication",
            ))
        weak = [
            a.id for a in scale
            if a.calculation is not None and evaluate_scale_rigor(a.calculation) < LOW_SCALE_RIGOR
        ]
        if weak:
            warnings.append(HealthWarning(
                code="LOW_SCALE_RIGOR",
                severity=WarningSeverity.INFO,
                message=f"{len(weak)} scale calculations lack units or implication",
                related_ids=tuple(weak),
                suggestion="State the units and what the result implies",
            ))

    live_hypotheses = {h.id for h in hypotheses if not h.is_killed}
    for assumption in assumptions:
        if assumption.status != AssumptionStatus.FALSIFIED:
            continue
        exposed = tuple(h for h in assumption.load.affected_hypotheses if h in live_hypotheses)
        if exposed:
            warnings.append(HealthWarning(
                code="FALSIFIED_ASSUMPTION_IMPACT",
                severity=WarningSeverity.CRITICAL,
                message=f"Assumption {assumption.id} is falsified but {len(exposed)} dependent hypotheses are still live",
                related_ids=(assumption.id,) + exposed,
                suggestion="Re-examine or kill the hypotheses that rest on it",
            ))

    serious = [c.id for c in critiques if requires_response(c)]
    if serious:
        warnings.append(HealthWarning(
            code="UNRESOLVED_SERIOUS_CRITIQUES",
            severity=WarningSeverity.WARNING,
            message=f"{len(serious)} serious or critical critiques await a response",
            related_ids=tuple(serious),
            suggestion="Address, accept or dismiss each with a reason",
        ))

    unplanned = [
        a.id for a in anomalies
        if a.quarantine_status == QuarantineStatus.DEFERRED and is_blank(a.resolution_plan)
    ]
    if unplanned:
        warnings.append(HealthWarning(
            code="DEFERRED_WITHOUT_PLAN",
            severity=WarningSeverity.INFO,
            message=f"{len(unplanned)} deferred anomalies have no resolution plan",
            related_ids=tuple(unplanned),
        ))

    shifting = [a.id for a in anomalies if a.quarantine_status == QuarantineStatus.PARADIGM_SHIFTING]
    if shifting:
        warnings.append(HealthWarning(
            code="PARADIGM_SHIFTING_ANOMALY",
            severity=WarningSeverity.CRITICAL,
            message=f"{len(shifting)} anomalies are marked paradigm-shifting",
            related_ids=tuple(shifting),
            suggestion="Revisit the framing before adding hypotheses",
        ))

    if tests:
        covered = sum(1 for t in tests if t.has_potency_check)
        if covered / len(tests) < LOW_POTENCY_COVERAGE:
            warnings.append(HealthWarning(
                code="LOW_POTENCY_COVERAGE",
                severity=WarningSeverity.WARNING,
                message=f"Only {covered}/{len(tests)} tests have a potency check",
                related_ids=tuple(t.id for t in tests if not t.has_potency_check),
                suggestion="Add a positive control so a null result is informative",
            ))

    if len(hypotheses) >= MIN_HYPOTHESES_FOR_ALTERNATIVE and not any(
        h.origin == HypothesisOrigin.THIRD_ALTERNATIVE for h in hypotheses
    ):
        warnings.append(HealthWarning(
            code="NO_THIRD_ALTERNATIVE",
            severity=WarningSeverity.INFO,
            message="No third-alternative hypothesis in the slate",
            suggestion="Ask whether both leading hypotheses could be wrong",
        ))

    if len(hypotheses) >= MIN_HYPOTHESES_FOR_KILL and not any(h.is_killed for h in hypotheses):
        warnings.append(HealthWarning(
            code="NO_KILLS",
            severity=WarningSeverity.WARNING,
            message=f"{len(hypotheses)} hypotheses and none killed",
            suggestion="Design a discriminative test that can eliminate one",
        ))

    return tuple(warnings)


# =============================================================================
# TIMELINE
# =============================================================================

def build_timeline(
    program: ResearchProgram,
    hypotheses: list[HypothesisRecord],
    assumptions: list[Assumption],
    anomalies: list[Anomaly],
    critiques: list[Critique],
    tests: list[TestRecord],
    limit: int = DEFAULT_EVENT_LIMIT,
) -> tuple[TimelineEvent, ...]:
    """Chronological events, truncated to the most recent `limit`."""
    events: list[TimelineEvent] = []

    def add(timestamp, event_type, description, entity_id=None, session_id=None):
        if timestamp is not None:
            events.append(TimelineEvent(ensure_utc(timestamp), event_type, description, entity_id, session_id))

    for h in hypotheses:
        add(h.created_at, EventType.HYPOTHESIS_PROPOSED, f"Hypothesis {h.id} proposed", h.id, h.session_id)
        if h.state == HypothesisState.KILLED:
            add(h.updated_at, EventType.HYPOTHESIS_KILLED, f"Hypothesis {h.id} killed", h.id, h.session_id)
        elif h.state == HypothesisState.VALIDATED:
            add(h.updated_at, EventType.HYPOTHESIS_VALIDATED, f"Hypothesis {h.id} validated", h.id, h.session_id)

    for t in tests:
        add(t.executed_at, EventType.TEST_EXECUTED, f"Test {t.id} executed", t.id, t.session_id)

    for a in assumptions:
        if a.status == AssumptionStatus.VERIFIED:
            add(a.updated_at, EventType.ASSUMPTION_VERIFIED, f"Assumption {a.id} verified", a.id, a.session_id)
        elif a.status == AssumptionStatus.FALSIFIED:
            add(a.updated_at, EventType.ASSUMPTION_FALSIFIED, f"Assumption {a.id} falsified", a.id, a.session_id)

    for x in anomalies:
        add(x.created_at, EventType.ANOMALY_RECORDED, f"Anomaly {x.id} recorded", x.id, x.session_id)
        if x.quarantine_status == QuarantineStatus.RESOLVED:
            add(x.resolved_at, EventType.ANOMALY_RESOLVED,
                f"Anomaly {x.id} resolved by {x.resolved_by}", x.id, x.session_id)

    for c in critiques:
        add(c.created_at, EventType.CRITIQUE_RAISED, f"Critique {c.id} raised", c.id, c.session_id)
        if c.status != CritiqueStatus.ACTIVE and c.response is not None:
            add(c.response.responded_at, EventType.CRITIQUE_ADDRESSED,
                f"Critique {c.id} {c.status.value}", c.id, c.session_id)

    # A session starts with its earliest recorded event
    first_seen: dict[str, datetime] = {}
    for event in events:
        if event.session_id and (
            event.session_id not in first_seen or event.timestamp < first_seen[event.session_id]
        ):
            first_seen[event.session_id] = event.timestamp
    for session_id in program.sessions:
        if session_id in first_seen:
            add(first_seen[session_id], EventType.SESSION_STARTED,
                f"Session {session_id} started", session_id=session_id)

    if program.status != ProgramStatus.ACTIVE:
        add(program.closed_at or program.updated_at, EventType.PROGRAM_STATUS_CHANGED,
            f"Program {program.id} {program.status.value}", program.id)

    events.sort(key=lambda e: e.timestamp)
    if limit <= 0:
        return ()
    return tuple(events[-limit:])


# =============================================================================
# DASHBOARD
# =============================================================================

def compute_program_dashboard(
    program: ResearchProgram,
    hypotheses: Iterable[HypothesisRecord] = (),
    assumptions: Iterable[Assumption] = (),
    anomalies: Iterable[Anomaly] = (),
    critiques: Iterable[Critique] = (),
    tests: Iterable[TestRecord] = (),
    generated_at: Optional[datetime] = None,
    event_limit: int = DEFAULT_EVENT_LIMIT,
) -> ProgramDashboard:
    """
    Build the dashboard for one program.

    Each collection may span any number of sessions; only entities whose
    session_id belongs to the program are counted.
    """
    sessions = set(program.sessions)
    hypotheses = [h for h in hypotheses if h.session_id in sessions]
    assumptions = [a for a in assumptions if a.session_id in sessions]
    anomalies = [x for x in anomalies if x.session_id in sessions]
    critiques = [c for c in critiques if c.session_id in sessions]
    tests = [t for t in tests if t.session_id in sessions]

    dashboard = ProgramDashboard(
        program_id=program.id,
        generated_at=ensure_utc(generated_at) if generated_at else utc_now(),
        hypothesis_funnel=compute_hypothesis_funnel(hypotheses),
        registry_health=MappingProxyType({
            "hypotheses": hypothesis_health(hypotheses),
            "assumptions": assumption_health(assumptions),
            "anomalies": anomaly_health(anomalies),
            "critiques": critique_health(critiques),
        }),
        test_execution=summarize_tests(tests),
        warnings=compute_health_warnings(hypotheses, assumptions, anomalies, critiques, tests),
        recent_events=build_timeline(
            program, hypotheses, assumptions, anomalies, critiques, tests, event_limit,
        ),
    )
    logger.debug(
        "Dashboard %s: %d hypotheses, %d warnings, %d events",
        program.id, len(hypotheses), len(dashboard.warnings), len(dashboard.recent_events),
    )
    return dashboard
