"""
Assumption Registry — load-bearing beliefs a hypothesis set depends on.

Lifecycle:
    unchecked  → challenged | verified | falsified
    challenged → verified | falsified
    verified, falsified: terminal in this layer

An assumption's `load` is the only place its blast radius is declared.
Falsifying an assumption never touches the hypotheses or tests it carries;
get_affected_by_falsification (and registry.links for transitive impact)
report them for the caller to act on.

scale_physics assumptions encode dimensional plausibility checks. Every
research program should carry at least one; this is reported by
validate_scale_assumption_presence, never enforced at construction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from ..domain import IllegalTransitionError, append_note, format_timestamp, is_blank, utc_now
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

STATEMENT_MIN_LENGTH = 10
STATEMENT_MAX_LENGTH = 500
TEST_METHOD_MAX_LENGTH = 1000
NOTES_MAX_LENGTH = 2000


class AssumptionType(Enum):
    BACKGROUND = "background"
    METHODOLOGICAL = "methodological"
    BOUNDARY = "boundary"
    SCALE_PHYSICS = "scale_physics"


class AssumptionStatus(Enum):
    UNCHECKED = "unchecked"
    CHALLENGED = "challenged"
    VERIFIED = "verified"
    FALSIFIED = "falsified"


class AssumptionCriticality(Enum):
    FOUNDATIONAL = "foundational"
    IMPORTANT = "important"
    MINOR = "minor"


ASSUMPTION_TRANSITIONS = MappingProxyType({
    AssumptionStatus.UNCHECKED: frozenset({
        AssumptionStatus.CHALLENGED,
        AssumptionStatus.VERIFIED,
        AssumptionStatus.FALSIFIED,
    }),
    AssumptionStatus.CHALLENGED: frozenset({
        AssumptionStatus.VERIFIED,
        AssumptionStatus.FALSIFIED,
    }),
    AssumptionStatus.VERIFIED: frozenset(),
    AssumptionStatus.FALSIFIED: frozenset(),
})


# =============================================================================
# VALUE TYPES
# =============================================================================

@dataclass(frozen=True)
class AssumptionLoad:
    """What breaks if the assumption is wrong. Empty id lists are valid."""
    description: str
    affected_hypotheses: tuple[str, ...] = ()
    affected_tests: tuple[str, ...] = ()

    def __post_init__(self):
        freeze_fields(self, "affected_hypotheses", "affected_tests")

    def to_dict(self) -> dict[str, Any]:
        return {
            "affectedHypotheses": list(self.affected_hypotheses),
            "affectedTests": list(self.affected_tests),
            "description": self.description,
        }


@dataclass(frozen=True)
class ScaleCalculation:
    """
    The arithmetic behind a scale_physics assumption.

    Fields may be blank; evaluate_scale_rigor grades how complete it is.
    """
    quantities: str = ""
    result: str = ""
    units: str = ""
    implication: str = ""
    what_it_rules_out: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "quantities": self.quantities,
            "result": self.result,
            "units": self.units,
            "implication": self.implication,
        }
        if self.what_it_rules_out is not None:
            data["whatItRulesOut"] = self.what_it_rules_out
        return data


@dataclass(frozen=True)
class Assumption:
    """
    A load-bearing assumption recorded in one session.

    Invariants (enforced at construction and after every transition):
    - id is A-{session}-{seq} or legacy A{n}
    - statement is 10-500 characters
    - load ids are well-formed hypothesis / test ids
    - depends_on ids are well-formed assumption ids
    - anchors are §n or §n-m
    """
    id: str
    statement: str
    type: AssumptionType
    session_id: str
    load: AssumptionLoad
    status: AssumptionStatus = AssumptionStatus.UNCHECKED
    criticality: AssumptionCriticality = AssumptionCriticality.IMPORTANT
    depends_on: tuple[str, ...] = ()
    test_method: Optional[str] = None
    calculation: Optional[ScaleCalculation] = None
    anchors: tuple[str, ...] = ()
    recorded_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        freeze_fields(self, "depends_on", "anchors")
        normalize_timestamps(self, "created_at", "updated_at")
        self._validate()

    def _validate(self) -> None:
        issues = IssueCollector()
        issues.identifier("id", self.id, IdKind.ASSUMPTION)
        issues.text("statement", self.statement, STATEMENT_MIN_LENGTH, STATEMENT_MAX_LENGTH)
        issues.member("type", self.type, AssumptionType)
        issues.member("status", self.status, AssumptionStatus)
        issues.member("criticality", self.criticality, AssumptionCriticality)
        issues.text("sessionId", self.session_id, min_length=1)
        issues.identifiers("dependsOn", self.depends_on, IdKind.ASSUMPTION)
        issues.text("testMethod", self.test_method, max_length=TEST_METHOD_MAX_LENGTH, required=False)
        issues.anchors("anchors", self.anchors)
        issues.text("notes", self.notes, max_length=NOTES_MAX_LENGTH, required=False)
        issues.timestamp("createdAt", self.created_at)
        issues.timestamp("updatedAt", self.updated_at)

        if not isinstance(self.load, AssumptionLoad):
            issues.add("load", "Expected AssumptionLoad")
        else:
            issues.text("load.description", self.load.description, min_length=1)
            issues.identifiers("load.affectedHypotheses", self.load.affected_hypotheses, IdKind.HYPOTHESIS)
            issues.identifiers("load.affectedTests", self.load.affected_tests, IdKind.TEST)

        if self.calculation is not None:
            if not isinstance(self.calculation, ScaleCalculation):
                issues.add("calculation", "Expected ScaleCalculation")
            else:
                for name in ("quantities", "result", "units", "implication"):
                    issues.text(f"calculation.{name}", getattr(self.calculation, name))

        issues.raise_if_any()

    @property
    def is_terminal(self) -> bool:
        return not ASSUMPTION_TRANSITIONS[self.status]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "statement": self.statement,
            "type": self.type.value,
            "criticality": self.criticality.value,
            "status": self.status.value,
            "dependsOn": list(self.depends_on),
            "load": self.load.to_dict(),
            "sessionId": self.session_id,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }
        if self.test_method is not None:
            data["testMethod"] = self.test_method
        if self.calculation is not None:
            data["calculation"] = self.calculation.to_dict()
        if self.anchors:
            data["anchors"] = list(self.anchors)
        if self.recorded_by is not None:
            data["recordedBy"] = self.recorded_by
        if self.notes is not None:
            data["notes"] = self.notes
        return data


# =============================================================================
# FACTORIES
# =============================================================================

def create_assumption(
    id: str,
    statement: str,
    type: AssumptionType,
    session_id: str,
    load: AssumptionLoad,
    criticality: AssumptionCriticality = AssumptionCriticality.IMPORTANT,
    status: AssumptionStatus = AssumptionStatus.UNCHECKED,
    depends_on: Iterable[str] = (),
    test_method: Optional[str] = None,
    calculation: Optional[ScaleCalculation] = None,
    anchors: Iterable[str] = (),
    recorded_by: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Assumption:
    """
    Create a validated assumption stamped with matching created/updated times.

    Raises:
        ValidationError: If any field violates its constraints
    """
    stamp = now or utc_now()
    return Assumption(
        id=id,
        statement=statement,
        type=type,
        session_id=session_id,
        load=load,
        status=status,
        criticality=criticality,
        depends_on=tuple(depends_on),
        test_method=test_method,
        calculation=calculation,
        anchors=tuple(anchors),
        recorded_by=recorded_by,
        notes=notes,
        created_at=stamp,
        updated_at=stamp,
    )


def create_scale_assumption(
    id: str,
    statement: str,
    session_id: str,
    load: AssumptionLoad,
    calculation: ScaleCalculation,
    **kwargs,
) -> Assumption:
    """Convenience factory for an unchecked scale_physics assumption."""
    kwargs.pop("status", None)
    return create_assumption(
        id=id,
        statement=statement,
        type=AssumptionType.SCALE_PHYSICS,
        session_id=session_id,
        load=load,
        calculation=calculation,
        **kwargs,
    )


# =============================================================================
# TRANSITIONS
# =============================================================================

def _transition(
    assumption: Assumption,
    target: AssumptionStatus,
    action: str,
    note: Optional[str],
    now: Optional[datetime],
) -> Assumption:
    allowed = ASSUMPTION_TRANSITIONS[assumption.status]
    if target not in allowed:
        sources = [s.value for s, targets in ASSUMPTION_TRANSITIONS.items() if target in targets]
        raise IllegalTransitionError(assumption.id, assumption.status.value, action, sources)

    notes = append_note(assumption.notes, note) if note else assumption.notes
    updated = replace(assumption, status=target, notes=notes, updated_at=now or utc_now())
    logger.debug("Assumption %s: %s -> %s", assumption.id, assumption.status.value, target.value)
    return updated


def challenge_assumption(
    assumption: Assumption,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Assumption:
    """
    Mark an unchecked assumption as under challenge.

    Raises:
        IllegalTransitionError: If the assumption is not unchecked
    """
    note = f"Challenged: {reason}" if reason else None
    return _transition(assumption, AssumptionStatus.CHALLENGED, "challenge", note, now)


def verify_assumption(
    assumption: Assumption,
    evidence: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Assumption:
    """
    Raises:
        IllegalTransitionError: If the assumption is already verified or falsified
    """
    note = f"Verified: {evidence}" if evidence else None
    return _transition(assumption, AssumptionStatus.VERIFIED, "verify", note, now)


def falsify_assumption(
    assumption: Assumption,
    evidence: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Assumption:
    """
    Mark an assumption falsified. Terminal in this layer.

    Dependent hypotheses and tests are not modified; use
    get_affected_by_falsification to find them.

    Raises:
        IllegalTransitionError: If the assumption is already verified or falsified
    """
    note = f"Falsified: {evidence}" if evidence else None
    return _transition(assumption, AssumptionStatus.FALSIFIED, "falsify", note, now)


# =============================================================================
# RIGOR AND PRESENCE CHECKS
# =============================================================================

def evaluate_scale_rigor(calculation: Optional[ScaleCalculation]) -> int:
    """
    Grade a scale calculation 0-3 by which fields are non-blank.

    0: absent
    1: present, but units or quantities/result blank
    2: quantities + result + units, no implication
    3: quantities + result + units + implication

    what_it_rules_out never counts.
    """
    if calculation is None:
        return 0
    if is_blank(calculation.quantities) or is_blank(calculation.result) or is_blank(calculation.units):
        return 1
    if is_blank(calculation.implication):
        return 2
    return 3


def warn_missing_calculation(assumption: Assumption) -> Optional[str]:
    """Advisory message for a scale_physics assumption with no calculation."""
    if assumption.type == AssumptionType.SCALE_PHYSICS and assumption.calculation is None:
        return (
            f"Assumption {assumption.id}: scale_physics assumptions should "
            f"include a calculation for full rigor"
        )
    return None


@dataclass(frozen=True)
class ScalePresenceReport:
    present: bool
    count: int
    rigor_levels: tuple[int, ...]
    message: str

    @property
    def max_rigor(self) -> int:
        return max(self.rigor_levels, default=0)


def validate_scale_assumption_presence(assumptions: Iterable[Assumption]) -> ScalePresenceReport:
    """Report whether a collection holds any scale_physics assumption, and how rigorous."""
    scale = [a for a in assumptions if a.type == AssumptionType.SCALE_PHYSICS]
    if not scale:
        return ScalePresenceReport(
            present=False,
            count=0,
            rigor_levels=(),
            message="No scale_physics assumption found. Every research program should have at least one.",
        )

    levels = tuple(evaluate_scale_rigor(a.calculation) for a in scale)
    best = max(levels)
    if best == 3:
        message = "Scale_physics assumptions present with full rigor."
    else:
        message = (
            f"Scale_physics assumptions present but max rigor is {best}/3. "
            f"Consider adding full calculations."
        )
    return ScalePresenceReport(present=True, count=len(scale), rigor_levels=levels, message=message)


@dataclass(frozen=True)
class AffectedItems:
    hypotheses: tuple[str, ...] = ()
    tests: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.hypotheses and not self.tests


def get_affected_by_falsification(assumption: Assumption) -> AffectedItems:
    """Direct load of one assumption. See links.compute_falsification_impact for the transitive view."""
    return AffectedItems(
        hypotheses=assumption.load.affected_hypotheses,
        tests=assumption.load.affected_tests,
    )


# =============================================================================
# PERSISTED FORM
# =============================================================================

def _parse_load(reader: Optional[RawReader]) -> Optional[AssumptionLoad]:
    if reader is None:
        return None
    return AssumptionLoad(
        description=reader.string("description"),
        affected_hypotheses=reader.string_list("affectedHypotheses"),
        affected_tests=reader.string_list("affectedTests"),
    )


def _parse_calculation(reader: Optional[RawReader]) -> Optional[ScaleCalculation]:
    if reader is None:
        return None
    return ScaleCalculation(
        quantities=reader.string("quantities"),
        result=reader.string("result"),
        units=reader.string("units"),
        implication=reader.string("implication"),
        what_it_rules_out=reader.string("whatItRulesOut", required=False),
    )


def _parse_assumption(reader: RawReader) -> Assumption:
    kwargs = dict(
        id=reader.string("id"),
        statement=reader.string("statement"),
        type=reader.choice("type", AssumptionType),
        criticality=reader.choice("criticality", AssumptionCriticality, AssumptionCriticality.IMPORTANT),
        status=reader.choice("status", AssumptionStatus),
        depends_on=reader.string_list("dependsOn"),
        load=_parse_load(reader.child("load")),
        test_method=reader.string("testMethod", required=False),
        calculation=_parse_calculation(reader.child("calculation", required=False)),
        anchors=reader.string_list("anchors"),
        session_id=reader.string("sessionId"),
        recorded_by=reader.string("recordedBy", required=False),
        notes=reader.string("notes", required=False),
        created_at=reader.timestamp("createdAt"),
        updated_at=reader.timestamp("updatedAt"),
    )
    reader.collector.raise_if_any()
    return Assumption(**kwargs)


def validate_assumption(raw: Mapping[str, Any]) -> ValidationResult:
    """Validate a persisted assumption record without raising."""
    return run_validation(raw, _parse_assumption)


def assumption_from_dict(raw: Mapping[str, Any]) -> Assumption:
    """
    Strict parse of a persisted assumption.

    Raises:
        ValidationError: If the record is malformed
    """
    return validate_assumption(raw).unwrap()
