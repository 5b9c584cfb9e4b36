"""
Critique Registry — structured attacks on hypotheses, tests, assumptions,
or the research framing itself.

Lifecycle:
    active → addressed | dismissed | accepted
    addressed | dismissed | accepted → active (reopen_critique)

Every other move is illegal; in particular a closed critique cannot be
closed again. Reopening an active critique returns it unchanged.

Targeting rule:
    hypothesis / test / assumption  targetId required, matching that entity's id
    framing / methodology           targetId must be absent
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from ..domain import IllegalTransitionError, append_note, format_timestamp, is_blank, utc_now
from ..identifiers import ID_FORMATS, IdKind, matches_kind
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

ATTACK_MIN_LENGTH = 20
EVIDENCE_MIN_LENGTH = 10
ALTERNATIVE_MIN_LENGTH = 10
RESPONSE_MIN_LENGTH = 10
NOTES_MAX_LENGTH = 2000

# Kill justification thresholds
BRIEF_ATTACK_LENGTH = 50
BRIEF_EVIDENCE_LENGTH = 30
THOROUGH_ATTACK_LENGTH = 100
THOROUGH_EVIDENCE_LENGTH = 50


class CritiqueTargetType(Enum):
    HYPOTHESIS = "hypothesis"
    TEST = "test"
    ASSUMPTION = "assumption"
    FRAMING = "framing"
    METHODOLOGY = "methodology"


class CritiqueStatus(Enum):
    ACTIVE = "active"
    ADDRESSED = "addressed"
    DISMISSED = "dismissed"
    ACCEPTED = "accepted"


class CritiqueSeverity(Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    SERIOUS = "serious"
    CRITICAL = "critical"


class CritiqueAction(Enum):
    NONE = "none"
    MODIFIED = "modified"
    KILLED = "killed"
    NEW_TEST = "new_test"


# Target types that name a concrete entity, and the id family they must match
TARGET_ID_KINDS = MappingProxyType({
    CritiqueTargetType.HYPOTHESIS: IdKind.HYPOTHESIS,
    CritiqueTargetType.TEST: IdKind.TEST,
    CritiqueTargetType.ASSUMPTION: IdKind.ASSUMPTION,
})

CLOSED_STATUSES = frozenset({
    CritiqueStatus.ADDRESSED,
    CritiqueStatus.DISMISSED,
    CritiqueStatus.ACCEPTED,
})

RESPONSE_REQUIRED_SEVERITIES = frozenset({CritiqueSeverity.SERIOUS, CritiqueSeverity.CRITICAL})


# =============================================================================
# VALUE TYPES
# =============================================================================

@dataclass(frozen=True)
class ProposedAlternative:
    """A constructive alternative offered alongside the attack."""
    description: str
    testable: bool = False
    mechanism: Optional[str] = None
    predictions: tuple[str, ...] = ()

    def __post_init__(self):
        freeze_fields(self, "predictions")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"description": self.description, "testable": self.testable}
        if self.mechanism is not None:
            data["mechanism"] = self.mechanism
        if self.predictions:
            data["predictions"] = list(self.predictions)
        return data


@dataclass(frozen=True)
class CritiqueResponse:
    text: str
    responded_at: datetime
    action_taken: CritiqueAction = CritiqueAction.NONE
    responded_by: Optional[str] = None
    new_test_id: Optional[str] = None

    def __post_init__(self):
        normalize_timestamps(self, "responded_at")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "text": self.text,
            "actionTaken": self.action_taken.value,
            "respondedAt": format_timestamp(self.responded_at),
        }
        if self.responded_by is not None:
            data["respondedBy"] = self.responded_by
        if self.new_test_id is not None:
            data["newTestId"] = self.new_test_id
        return data


@dataclass(frozen=True)
class Critique:
    """
    One critique recorded in a session.

    Invariants:
    - id is C-{session}-{seq}
    - targetId presence and format follow the target type
    - attack >= 20 characters, evidence_to_confirm >= 10 characters
    """
    id: str
    target_type: CritiqueTargetType
    attack: str
    evidence_to_confirm: str
    session_id: str
    target_id: Optional[str] = None
    status: CritiqueStatus = CritiqueStatus.ACTIVE
    severity: CritiqueSeverity = CritiqueSeverity.MODERATE
    proposed_alternative: Optional[ProposedAlternative] = None
    response: Optional[CritiqueResponse] = None
    dismissal_reason: Optional[str] = None
    raised_by: Optional[str] = None
    anchors: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        freeze_fields(self, "anchors", "tags")
        normalize_timestamps(self, "created_at", "updated_at")
        self._validate()

    def _validate(self) -> None:
        issues = IssueCollector()
        issues.identifier("id", self.id, IdKind.CRITIQUE)
        issues.member("targetType", self.target_type, CritiqueTargetType)
        issues.text("attack", self.attack, ATTACK_MIN_LENGTH)
        issues.text("evidenceToConfirm", self.evidence_to_confirm, EVIDENCE_MIN_LENGTH)
        issues.member("status", self.status, CritiqueStatus)
        issues.member("severity", self.severity, CritiqueSeverity)
        issues.text("sessionId", self.session_id, min_length=1)
        issues.anchors("anchors", self.anchors)
        issues.text("notes", self.notes, max_length=NOTES_MAX_LENGTH, required=False)
        issues.timestamp("createdAt", self.created_at)
        issues.timestamp("updatedAt", self.updated_at)

        kind = TARGET_ID_KINDS.get(self.target_type)
        if kind is not None:
            if not matches_kind(self.target_id, kind):
                issues.add(
                    "targetId",
                    f"targetId is required and must match the format {ID_FORMATS[kind]} "
                    f"for targetType '{self.target_type.value}'",
                )
        elif isinstance(self.target_type, CritiqueTargetType) and self.target_id is not None:
            issues.add(
                "targetId",
                f"targetId must be absent for targetType '{self.target_type.value}'",
            )

        alternative = self.proposed_alternative
        if alternative is not None:
            issues.text("proposedAlternative.description", alternative.description, ALTERNATIVE_MIN_LENGTH)

        response = self.response
        if response is not None:
            issues.text("response.text", response.text, RESPONSE_MIN_LENGTH)
            issues.member("response.actionTaken", response.action_taken, CritiqueAction)
            issues.timestamp("response.respondedAt", response.responded_at)
            issues.identifier("response.newTestId", response.new_test_id, IdKind.TEST, required=False)

        issues.raise_if_any()

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_STATUSES

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "targetType": self.target_type.value,
            "attack": self.attack,
            "evidenceToConfirm": self.evidence_to_confirm,
            "status": self.status.value,
            "severity": self.severity.value,
            "sessionId": self.session_id,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }
        if self.target_id is not None:
            data["targetId"] = self.target_id
        if self.proposed_alternative is not None:
            data["proposedAlternative"] = self.proposed_alternative.to_dict()
        if self.response is not None:
            data["response"] = self.response.to_dict()
        if self.dismissal_reason is not None:
            data["dismissalReason"] = self.dismissal_reason
        if self.raised_by is not None:
            data["raisedBy"] = self.raised_by
        if self.anchors:
            data["anchors"] = list(self.anchors)
        if self.tags:
            data["tags"] = list(self.tags)
        if self.notes is not None:
            data["notes"] = self.notes
        return data


# =============================================================================
# FACTORIES
# =============================================================================

def create_critique(
    id: str,
    target_type: CritiqueTargetType,
    attack: str,
    evidence_to_confirm: str,
    session_id: str,
    target_id: Optional[str] = None,
    severity: CritiqueSeverity = CritiqueSeverity.MODERATE,
    proposed_alternative: Optional[ProposedAlternative] = None,
    raised_by: Optional[str] = None,
    anchors: Iterable[str] = (),
    tags: Iterable[str] = (),
    now: Optional[datetime] = None,
) -> Critique:
    """
    Create a validated, active critique.

    Raises:
        ValidationError: If any field violates its constraints
    """
    stamp = now or utc_now()
    return Critique(
        id=id,
        target_type=target_type,
        target_id=target_id,
        attack=attack,
        evidence_to_confirm=evidence_to_confirm,
        session_id=session_id,
        severity=severity,
        proposed_alternative=proposed_alternative,
        raised_by=raised_by,
        anchors=tuple(anchors),
        tags=tuple(tags),
        created_at=stamp,
        updated_at=stamp,
    )


def create_hypothesis_critique(id: str, hypothesis_id: str, attack: str,
                               evidence_to_confirm: str, session_id: str, **kwargs) -> Critique:
    return create_critique(id, CritiqueTargetType.HYPOTHESIS, attack, evidence_to_confirm,
                           session_id, target_id=hypothesis_id, **kwargs)


def create_test_critique(id: str, test_id: str, attack: str,
                         evidence_to_confirm: str, session_id: str, **kwargs) -> Critique:
    return create_critique(id, CritiqueTargetType.TEST, attack, evidence_to_confirm,
                           session_id, target_id=test_id, **kwargs)


def create_assumption_critique(id: str, assumption_id: str, attack: str,
                               evidence_to_confirm: str, session_id: str, **kwargs) -> Critique:
    return create_critique(id, CritiqueTargetType.ASSUMPTION, attack, evidence_to_confirm,
                           session_id, target_id=assumption_id, **kwargs)


def create_framing_critique(id: str, attack: str, evidence_to_confirm: str,
                            session_id: str, **kwargs) -> Critique:
    """Critique of the research question itself; carries no target id."""
    return create_critique(id, CritiqueTargetType.FRAMING, attack, evidence_to_confirm,
                           session_id, **kwargs)


def create_methodology_critique(id: str, attack: str, evidence_to_confirm: str,
                                session_id: str, **kwargs) -> Critique:
    return create_critique(id, CritiqueTargetType.METHODOLOGY, attack, evidence_to_confirm,
                           session_id, **kwargs)


# =============================================================================
# TRANSITIONS
# =============================================================================

def _require_active(critique: Critique, action: str) -> None:
    if critique.status != CritiqueStatus.ACTIVE:
        raise IllegalTransitionError(
            critique.id, critique.status.value, action, [CritiqueStatus.ACTIVE.value]
        )


def _close(critique: Critique, status: CritiqueStatus, stamp: datetime, **changes) -> Critique:
    updated = replace(critique, status=status, updated_at=stamp, **changes)
    logger.debug("Critique %s: %s -> %s", critique.id, critique.status.value, status.value)
    return updated


def address_critique(
    critique: Critique,
    text: str,
    action_taken: CritiqueAction = CritiqueAction.NONE,
    responded_by: Optional[str] = None,
    new_test_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Critique:
    """
    Record a response to an active critique.

    Raises:
        IllegalTransitionError: If the critique is not active
        ValidationError: If the response is malformed
    """
    _require_active(critique, "address")
    stamp = now or utc_now()
    response = CritiqueResponse(
        text=text,
        responded_at=stamp,
        action_taken=action_taken,
        responded_by=responded_by,
        new_test_id=new_test_id,
    )
    return _close(critique, CritiqueStatus.ADDRESSED, stamp, response=response)


def dismiss_critique(
    critique: Critique,
    reason: str,
    responded_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Critique:
    """
    Dismiss an active critique. The reason doubles as the response text.

    Raises:
        IllegalTransitionError: If the critique is not active
    """
    _require_active(critique, "dismiss")
    stamp = now or utc_now()
    response = CritiqueResponse(
        text=reason,
        responded_at=stamp,
        action_taken=CritiqueAction.NONE,
        responded_by=responded_by,
    )
    return _close(critique, CritiqueStatus.DISMISSED, stamp, response=response, dismissal_reason=reason)


def accept_critique(
    critique: Critique,
    action_taken: CritiqueAction,
    text: str,
    responded_by: Optional[str] = None,
    new_test_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Critique:
    """
    Accept an active critique and record what was done about it.

    Raises:
        IllegalTransitionError: If the critique is not active
    """
    _require_active(critique, "accept")
    stamp = now or utc_now()
    response = CritiqueResponse(
        text=text,
        responded_at=stamp,
        action_taken=action_taken,
        responded_by=responded_by,
        new_test_id=new_test_id,
    )
    return _close(critique, CritiqueStatus.ACCEPTED, stamp, response=response)


def reopen_critique(
    critique: Critique,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Critique:
    """
    Return a closed critique to active. The previous response is kept.

    Reopening an active critique returns the same object.
    """
    if critique.status == CritiqueStatus.ACTIVE:
        return critique
    entry = f"Reopened: {reason}" if reason else "Reopened"
    updated = replace(
        critique,
        status=CritiqueStatus.ACTIVE,
        notes=append_note(critique.notes, entry),
        updated_at=now or utc_now(),
    )
    logger.debug("Critique %s: %s -> active", critique.id, critique.status.value)
    return updated


# =============================================================================
# EVALUATION HELPERS
# =============================================================================

@dataclass(frozen=True)
class KillJustification:
    score: int
    issues: tuple[str, ...] = ()


def evaluate_kill_justification(critique: Critique) -> KillJustification:
    """
    Score how well a critique would justify killing its target (0-3).

    1: meets the structural minimums
    2: thorough attack (>= 100 chars) and evidence (>= 50 chars)
    3: thorough, plus transcript anchors or a proposed alternative
    """
    issues = []
    if len(critique.attack) < BRIEF_ATTACK_LENGTH:
        issues.append("Attack is brief - a kill should be argued in detail")
    if len(critique.evidence_to_confirm) < BRIEF_EVIDENCE_LENGTH:
        issues.append("Evidence to confirm is thin - name the observation that would settle it")

    score = 1
    thorough = (
        len(critique.attack) >= THOROUGH_ATTACK_LENGTH
        and len(critique.evidence_to_confirm) >= THOROUGH_EVIDENCE_LENGTH
    )
    if thorough:
        score = 2
        if critique.anchors or critique.proposed_alternative is not None:
            score = 3
    return KillJustification(score=score, issues=tuple(issues))


@dataclass(frozen=True)
class ThirdAlternativeAssessment:
    score: int
    explanation: str


def evaluate_third_alternative(critique: Critique) -> ThirdAlternativeAssessment:
    """
    Score the specificity of a critique's proposed alternative (0-3).

    0: none proposed
    1: vague description only
    2: testable, but missing mechanism or predictions
    3: testable with mechanism and predictions
    """
    alternative = critique.proposed_alternative
    if alternative is None:
        return ThirdAlternativeAssessment(0, "Pure skepticism - no alternative proposed")
    if alternative.testable and not is_blank(alternative.mechanism) and alternative.predictions:
        return ThirdAlternativeAssessment(
            3, "Concrete alternative with mechanism and testable predictions"
        )
    if alternative.testable:
        return ThirdAlternativeAssessment(
            2, "Specific, testable alternative but missing mechanism or predictions"
        )
    return ThirdAlternativeAssessment(1, "Vague alternative - not yet testable")


def requires_response(critique: Critique) -> bool:
    """Active serious or critical critiques must be answered."""
    return critique.status == CritiqueStatus.ACTIVE and critique.severity in RESPONSE_REQUIRED_SEVERITIES


def count_unaddressed_critiques(
    critiques: Iterable[Critique],
    target_type: CritiqueTargetType,
    target_id: Optional[str] = None,
) -> int:
    return sum(
        1 for c in critiques
        if c.status == CritiqueStatus.ACTIVE
        and c.target_type == target_type
        and (target_id is None or c.target_id == target_id)
    )


# =============================================================================
# PERSISTED FORM
# =============================================================================

def _parse_critique(reader: RawReader) -> Critique:
    alternative = None
    alt_reader = reader.child("proposedAlternative", required=False)
    if alt_reader is not None:
        alternative = ProposedAlternative(
            description=alt_reader.string("description"),
            testable=alt_reader.boolean("testable"),
            mechanism=alt_reader.string("mechanism", required=False),
            predictions=alt_reader.string_list("predictions"),
        )

    response = None
    response_reader = reader.child("response", required=False)
    if response_reader is not None:
        response = CritiqueResponse(
            text=response_reader.string("text"),
            responded_at=response_reader.timestamp("respondedAt"),
            action_taken=response_reader.choice("actionTaken", CritiqueAction, CritiqueAction.NONE),
            responded_by=response_reader.string("respondedBy", required=False),
            new_test_id=response_reader.string("newTestId", required=False),
        )

    kwargs = dict(
        id=reader.string("id"),
        target_type=reader.choice("targetType", CritiqueTargetType),
        target_id=reader.string("targetId", required=False),
        attack=reader.string("attack"),
        evidence_to_confirm=reader.string("evidenceToConfirm"),
        status=reader.choice("status", CritiqueStatus),
        severity=reader.choice("severity", CritiqueSeverity, CritiqueSeverity.MODERATE),
        proposed_alternative=alternative,
        response=response,
        dismissal_reason=reader.string("dismissalReason", required=False),
        raised_by=reader.string("raisedBy", required=False),
        anchors=reader.string_list("anchors"),
        tags=reader.string_list("tags"),
        session_id=reader.string("sessionId"),
        notes=reader.string("notes", required=False),
        created_at=reader.timestamp("createdAt"),
        updated_at=reader.timestamp("updatedAt"),
    )
    reader.collector.raise_if_any()
    return Critique(**kwargs)


def validate_critique(raw: Mapping[str, Any]) -> ValidationResult:
    """Validate a persisted critique record without raising."""
    return run_validation(raw, _parse_critique)


def critique_from_dict(raw: Mapping[str, Any]) -> Critique:
    """
    Raises:
        ValidationError: If the record is malformed
    """
    return validate_critique(raw).unwrap()
