"""
Session Dimension Scorer.

A session is graded on seven heuristic dimensions read from its compiled
artifact (plus an optional hypothesis-transition log):

    paradoxGrounding            20
    hypothesisKillRate          20
    testDiscriminability        20
    assumptionTracking          15
    thirdAlternativeDiscovery   15
    experimentalFeasibility     10
    adversarialPressure         20
                               ---
                               120

Each dimension checks a fixed list of boolean signals and awards
max_points * found / total. A dimension never raises; anything missing or
malformed in the artifact reads as an absent signal, so an empty session
scores 0 everywhere.

Hypothesis kill rate is penalized when hypotheses exist but none ever
moved: a static session is worse than a small one.

Artifact items may be mappings or objects, with snake_case or camelCase
field names.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from ..domain import KILL_STATES

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION CONSTANTS
# =============================================================================

class SessionDimension(Enum):
    PARADOX_GROUNDING = "paradoxGrounding"
    HYPOTHESIS_KILL_RATE = "hypothesisKillRate"
    TEST_DISCRIMINABILITY = "testDiscriminability"
    ASSUMPTION_TRACKING = "assumptionTracking"
    THIRD_ALTERNATIVE_DISCOVERY = "thirdAlternativeDiscovery"
    EXPERIMENTAL_FEASIBILITY = "experimentalFeasibility"
    ADVERSARIAL_PRESSURE = "adversarialPressure"


DIMENSION_MAX_POINTS = MappingProxyType({
    SessionDimension.PARADOX_GROUNDING: 20,
    SessionDimension.HYPOTHESIS_KILL_RATE: 20,
    SessionDimension.TEST_DISCRIMINABILITY: 20,
    SessionDimension.ASSUMPTION_TRACKING: 15,
    SessionDimension.THIRD_ALTERNATIVE_DISCOVERY: 15,
    SessionDimension.EXPERIMENTAL_FEASIBILITY: 10,
    SessionDimension.ADVERSARIAL_PRESSURE: 20,
})

SESSION_MAX_POINTS = sum(DIMENSION_MAX_POINTS.values())

STATIC_SESSION_PENALTY = 5.0

GRADE_BREAKPOINTS = (
    (90.0, "A"),
    (80.0, "B"),
    (70.0, "C"),
    (60.0, "D"),
)

PARADOX_TERMS = (
    "paradox", "puzzle", "surprising", "unexpected", "contradict",
    "anomal", "mystery", "despite", "how can",
)
CHALLENGE_TERMS = (
    "challenge", "assumption", "dogma", "paradigm", "overturn",
    "conventional", "contrary",
)
OBSERVABLE_TERMS = (
    "measure", "quantify", "observe", "count", "assay",
    "detect", "image", "sequence", "blot",
)
CAUSAL_TERMS = ("causes", "via", "through", "mechanism", "leads to", "drives", "because")
EXECUTED_STATUSES = frozenset({
    "passed", "failed", "completed", "executed", "in_progress", "running", "inconclusive",
})
CHALLENGED_ASSUMPTION_STATUSES = frozenset({"challenged", "falsified"})

MIN_KILL_REASON_LENGTH = 10
MIN_CRITIQUE_EVIDENCE_LENGTH = 20
MIN_SLATE_SIZE = 3

# T-{session}-{seq}, T-3 or T3
TEST_REFERENCE = re.compile(r"\bT-[A-Za-z0-9][\w-]*-\d{3}\b|\bT-?\d+\b", re.ASCII)

# Artifact section names (snake_case, camelCase and short aliases)
SECTION_ALIASES = MappingProxyType({
    "hypotheses": ("hypothesis_slate", "hypothesisSlate", "hypotheses"),
    "predictions": ("predictions_table", "predictionsTable", "predictions"),
    "tests": ("discriminative_tests", "discriminativeTests", "tests"),
    "assumptions": ("assumption_ledger", "assumptionLedger", "assumptions"),
    "anomalies": ("anomaly_register", "anomalyRegister", "anomalies"),
    "critiques": ("adversarial_critique", "adversarialCritique", "critiques"),
})


# =============================================================================
# SESSION SNAPSHOT
# =============================================================================

@dataclass(frozen=True)
class SessionData:
    """
    What the dimension scorers read.

    artifact is the compiled artifact: a mapping with a "sections" mapping
    (or the sections at top level). hypothesis_transitions is the optional
    transition log; entries are HypothesisTransition objects or mappings.
    """
    session_id: str
    artifact: Mapping[str, Any] = field(default_factory=dict)
    research_question: Optional[str] = None
    hypothesis_transitions: Sequence[Any] = ()


def _value(item: Any, *names: str) -> Any:
    """First present field among names, from a mapping or an object."""
    for name in names:
        if isinstance(item, Mapping):
            value = item.get(name)
        else:
            value = getattr(item, name, None)
        if value is not None:
            return value.value if isinstance(value, Enum) else value
    return None


def _text(item: Any, *names: str) -> str:
    value = _value(item, *names)
    return value if isinstance(value, str) else ""


def _list(value: Any) -> list:
    if isinstance(value, (list, tuple)):
        return list(value)
    return []


def _sections(artifact: Any) -> Mapping[str, Any]:
    if not isinstance(artifact, Mapping):
        return {}
    sections = artifact.get("sections")
    return sections if isinstance(sections, Mapping) else artifact


def _section(data: SessionData, key: str) -> list:
    sections = _sections(data.artifact)
    for alias in SECTION_ALIASES[key]:
        items = sections.get(alias)
        if items is not None:
            return _list(items)
    return []


def _research_question(data: SessionData) -> str:
    if data.research_question:
        return data.research_question
    sections = _sections(data.artifact)
    thread = sections.get("research_thread") or sections.get("researchThread")
    if isinstance(thread, str):
        return thread
    return " ".join(
        part for part in (
            _text(thread, "statement"),
            _text(thread, "context"),
            _text(thread, "why_it_matters", "whyItMatters"),
        ) if part
    )


def _mentions(text: str, terms: Iterable[str]) -> bool:
    lowered = text.lower()
    return any(term in lowered for term in terms)


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class DimensionSignal:
    """One boolean observation. Penalty signals subtract when present."""
    name: str
    present: bool
    evidence: Optional[str] = None
    penalty: bool = False


@dataclass(frozen=True)
class DimensionScore:
    dimension: SessionDimension
    points: float
    max_points: float
    percentage: float
    signals: tuple[DimensionSignal, ...] = ()


@dataclass(frozen=True)
class SessionDimensionScore:
    session_id: str
    total_score: float
    max_score: float
    percentage: float
    grade: str
    dimensions: Mapping[SessionDimension, DimensionScore]


def compute_grade(points: float, max_points: float) -> str:
    """Letter grade from the percentage; 0/0 is an F."""
    if max_points <= 0:
        return "F"
    percentage = points / max_points * 100
    for threshold, letter in GRADE_BREAKPOINTS:
        if percentage >= threshold:
            return letter
    return "F"


def _build(
    dimension: SessionDimension,
    signals: Sequence[DimensionSignal],
    penalty_points: float = 0.0,
) -> DimensionScore:
    max_points = DIMENSION_MAX_POINTS[dimension]
    scored = [s for s in signals if not s.penalty]
    found = sum(1 for s in scored if s.present)
    points = round(max_points * found / len(scored), 1) if scored else 0.0
    if any(s.present for s in signals if s.penalty):
        points -= penalty_points
    return DimensionScore(
        dimension=dimension,
        points=points,
        max_points=max_points,
        percentage=round(points / max_points * 100, 1),
        signals=tuple(signals),
    )


# =============================================================================
# DIMENSIONS
# =============================================================================

def score_paradox_grounding(data: SessionData) -> DimensionScore:
    question = _research_question(data)
    anomalies = _section(data, "anomalies")
    questioned = [
        a for a in _section(data, "assumptions")
        if _text(a, "status").lower() in CHALLENGED_ASSUMPTION_STATUSES
    ]
    signals = [
        DimensionSignal(
            "Research question uses paradox/puzzle language",
            _mentions(question, PARADOX_TERMS),
        ),
        DimensionSignal(
            "Challenges existing paradigm or assumption",
            _mentions(question, CHALLENGE_TERMS),
        ),
        DimensionSignal(
            "Anomalies recorded as surprising observations",
            bool(anomalies),
            f"{len(anomalies)} anomalies recorded" if anomalies else None,
        ),
        DimensionSignal(
            "Assumptions questioned",
            bool(questioned),
            f"{len(questioned)} assumptions challenged or falsified" if questioned else None,
        ),
    ]
    return _build(SessionDimension.PARADOX_GROUNDING, signals)


def _is_test_triggered(*texts: str) -> bool:
    return any(TEST_REFERENCE.search(t) or "test" in t.lower() for t in texts if t)


def score_hypothesis_kill_rate(data: SessionData) -> DimensionScore:
    hypotheses = _section(data, "hypotheses")
    transitions = _list(data.hypothesis_transitions)
    kill_transitions = [
        t for t in transitions
        if _text(t, "to_state", "toState", "to").lower() in KILL_STATES
    ]
    killed_items = [
        h for h in hypotheses
        if _value(h, "killed") is True
        or _text(h, "state", "status").lower() in KILL_STATES
    ]

    killed_ids = {_text(h, "id") for h in killed_items}
    killed_ids.update(_text(t, "hypothesis_id", "hypothesisId") for t in kill_transitions)
    killed_ids.discard("")
    kill_count = max(len(killed_ids), len(killed_items), len(kill_transitions))

    test_triggered = any(
        _is_test_triggered(_text(t, "triggered_by", "triggeredBy"), _text(t, "reason"))
        for t in kill_transitions
    ) or any(
        _is_test_triggered(_text(h, "killed_by", "killedBy"), _text(h, "kill_reason", "killReason"))
        for h in killed_items
    )

    reasons = [_text(t, "reason") for t in kill_transitions]
    reasons += [_text(h, "kill_reason", "killReason") for h in killed_items]
    documented = any(len(r.strip()) >= MIN_KILL_REASON_LENGTH for r in reasons)

    static = bool(hypotheses) and not transitions and kill_count == 0

    signals = [
        DimensionSignal(
            "Hypotheses killed in session",
            kill_count > 0,
            f"{kill_count} hypotheses killed" if kill_count else None,
        ),
        DimensionSignal("Kills triggered by test result", test_triggered),
        DimensionSignal("Kill reasoning documented", documented),
        DimensionSignal(
            "Static session: hypotheses never transitioned or killed",
            static,
            f"{len(hypotheses)} hypotheses, no transitions" if static else None,
            penalty=True,
        ),
    ]
    return _build(SessionDimension.HYPOTHESIS_KILL_RATE, signals, STATIC_SESSION_PENALTY)


def _expected_outcomes(test: Any) -> list[str]:
    raw = _value(test, "expected_outcomes", "expectedOutcomes", "predictions")
    if isinstance(raw, Mapping):
        values = list(raw.values())
    else:
        values = _list(raw)
    outcomes = []
    for value in values:
        if isinstance(value, str):
            outcomes.append(value)
        else:
            outcomes.append(_text(value, "outcome", "prediction", "expected"))
    return [o.strip().lower() for o in outcomes if o and o.strip()]


def score_test_discriminability(data: SessionData) -> DimensionScore:
    tests = _section(data, "tests")
    discriminating = [t for t in tests if len(set(_expected_outcomes(t))) >= 2]
    observable = [
        t for t in tests
        if _mentions(
            " ".join([_text(t, "name"), _text(t, "procedure")] + _expected_outcomes(t)),
            OBSERVABLE_TERMS,
        )
    ]
    potency = [t for t in tests if _text(t, "potency_check", "potencyCheck").strip()]
    signals = [
        DimensionSignal(
            "Discriminative tests designed",
            bool(tests),
            f"{len(tests)} tests" if tests else None,
        ),
        DimensionSignal("Tests predict different outcomes per hypothesis", bool(discriminating)),
        DimensionSignal("Outcomes are observable", bool(observable)),
        DimensionSignal(
            "Potency checks on all tests",
            bool(tests) and len(potency) == len(tests),
            f"{len(potency)}/{len(tests)} tests with potency checks" if tests else None,
        ),
    ]
    return _build(SessionDimension.TEST_DISCRIMINABILITY, signals)


def _linked_hypotheses(assumption: Any) -> list:
    load = _value(assumption, "load")
    # Artifact ledgers write the load as free text, e.g. "H1, H2"
    if isinstance(load, str):
        return [load] if load.strip() else []
    linked = _list(_value(load, "affected_hypotheses", "affectedHypotheses")) if load is not None else []
    return linked or _list(_value(assumption, "linked_hypotheses", "linkedHypotheses", "affects"))


def score_assumption_tracking(data: SessionData) -> DimensionScore:
    assumptions = _section(data, "assumptions")
    linked = [a for a in assumptions if _linked_hypotheses(a)]
    scale = [
        a for a in assumptions
        if _text(a, "type") == "scale_physics"
        or _value(a, "scale_check", "scaleCheck")
        or _value(a, "calculation")
    ]
    signals = [
        DimensionSignal(
            "Assumptions recorded",
            bool(assumptions),
            f"{len(assumptions)} assumptions" if assumptions else None,
        ),
        DimensionSignal("Assumptions linked to hypotheses", bool(linked)),
        DimensionSignal("Scale/physics checks present", bool(scale)),
    ]
    return _build(SessionDimension.ASSUMPTION_TRACKING, signals)


def _critique_alternative(critique: Any) -> Any:
    return _value(critique, "real_third_alternative", "realThirdAlternative",
                  "proposed_alternative", "proposedAlternative")


def score_third_alternative_discovery(data: SessionData) -> DimensionScore:
    hypotheses = _section(data, "hypotheses")
    alternatives = [
        h for h in hypotheses
        if _text(h, "origin") == "third_alternative"
        or _value(h, "third_alternative", "thirdAlternative", "is_third_alternative") is True
    ]
    alternatives += [a for a in (_critique_alternative(c) for c in _section(data, "critiques")) if a]

    causal = [
        a for a in alternatives
        if _mentions(_text(a, "mechanism") or (a if isinstance(a, str) else ""), CAUSAL_TERMS)
    ]
    signals = [
        DimensionSignal(
            "Third alternatives proposed",
            bool(alternatives),
            f"{len(alternatives)} alternatives" if alternatives else None,
        ),
        DimensionSignal("Alternatives have distinct causal structure", bool(causal)),
        DimensionSignal(
            "At least 3 hypotheses in slate",
            len(hypotheses) >= MIN_SLATE_SIZE,
            f"{len(hypotheses)} hypotheses" if hypotheses else None,
        ),
    ]
    return _build(SessionDimension.THIRD_ALTERNATIVE_DISCOVERY, signals)


def score_experimental_feasibility(data: SessionData) -> DimensionScore:
    tests = _section(data, "tests")
    assessed = [t for t in tests if _text(t, "feasibility").strip()]
    executed = [t for t in tests if _text(t, "status").lower() in EXECUTED_STATUSES]
    signals = [
        DimensionSignal("Tests include feasibility assessment", bool(assessed)),
        DimensionSignal(
            "Tests executed",
            bool(executed),
            f"{len(executed)} tests executed" if executed else None,
        ),
    ]
    return _build(SessionDimension.EXPERIMENTAL_FEASIBILITY, signals)


def score_adversarial_pressure(data: SessionData) -> DimensionScore:
    critiques = _section(data, "critiques")
    backed = [
        c for c in critiques
        if len(_text(c, "evidence", "evidence_to_confirm", "evidenceToConfirm").strip())
        >= MIN_CRITIQUE_EVIDENCE_LENGTH
    ]
    alternatives = [c for c in critiques if _critique_alternative(c)]
    responded = [
        c for c in critiques
        if _text(c, "status", "current_status", "currentStatus") not in ("", "active") or _value(c, "response")
    ]
    signals = [
        DimensionSignal(
            "Critiques logged",
            bool(critiques),
            f"{len(critiques)} critiques" if critiques else None,
        ),
        DimensionSignal("Critiques carry evidence backing", bool(backed)),
        DimensionSignal("Real third alternatives offered", bool(alternatives)),
        DimensionSignal("Critiques responded to", bool(responded)),
    ]
    return _build(SessionDimension.ADVERSARIAL_PRESSURE, signals)


DIMENSION_SCORERS: Mapping[SessionDimension, Callable[[SessionData], DimensionScore]] = MappingProxyType({
    SessionDimension.PARADOX_GROUNDING: score_paradox_grounding,
    SessionDimension.HYPOTHESIS_KILL_RATE: score_hypothesis_kill_rate,
    SessionDimension.TEST_DISCRIMINABILITY: score_test_discriminability,
    SessionDimension.ASSUMPTION_TRACKING: score_assumption_tracking,
    SessionDimension.THIRD_ALTERNATIVE_DISCOVERY: score_third_alternative_discovery,
    SessionDimension.EXPERIMENTAL_FEASIBILITY: score_experimental_feasibility,
    SessionDimension.ADVERSARIAL_PRESSURE: score_adversarial_pressure,
})


def score_session(data: SessionData) -> SessionDimensionScore:
    """Score all seven dimensions and grade the total out of 120."""
    dimensions = {dimension: scorer(data) for dimension, scorer in DIMENSION_SCORERS.items()}
    total = round(sum(d.points for d in dimensions.values()), 1)
    logger.debug("Session %s dimension total %.1f/%d", data.session_id, total, SESSION_MAX_POINTS)
    return SessionDimensionScore(
        session_id=data.session_id,
        total_score=total,
        max_score=SESSION_MAX_POINTS,
        percentage=round(total / SESSION_MAX_POINTS * 100, 1),
        grade=compute_grade(total, SESSION_MAX_POINTS),
        dimensions=MappingProxyType(dimensions),
    )
