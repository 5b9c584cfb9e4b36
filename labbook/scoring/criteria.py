"""
Rubric criteria: the records a reviewer fills in for one contribution.

Every criterion carries a 0-3 score (0-2 for the conditional criteria:
paradox exploitation, object transposition, score calibration honesty)
plus the observations that justify it. Ranges are checked at construction.

Universal criteria (all roles):
    structuralCorrectness ×1.0, citationCompliance ×1.0, rationaleQuality ×0.5

Role-specific criteria:
    hypothesis generator  levelSeparation ×1.5, thirdAlternativePresence ×2.0,
                          paradoxExploitation ×0.5 (conditional)
    test designer         discriminativePower ×2.0, potencyCheckSufficiency ×2.0,
                          objectTransposition ×0.5 (conditional),
                          scoreCalibrationHonesty ×0.5 (conditional)
    adversarial critic    scaleCheckRigor, anomalyQuarantineDiscipline,
                          theoryKillJustification (conditional),
                          realThirdAlternative, all ×1.5
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import ClassVar, Iterable, Optional

from ..domain import is_blank
from ..registry.anomaly import Anomaly, QuarantineStatus, validate_quarantine_discipline
from ..registry.assumption import Assumption, AssumptionType, evaluate_scale_rigor
from ..registry.critique import Critique, evaluate_kill_justification, evaluate_third_alternative
from ..validation import ValidationError, ValidationIssue


# =============================================================================
# CONFIGURATION CONSTANTS
# =============================================================================

class Role(Enum):
    HYPOTHESIS_GENERATOR = "hypothesis_generator"
    TEST_DESIGNER = "test_designer"
    ADVERSARIAL_CRITIC = "adversarial_critic"


SCORE_WEIGHTS = MappingProxyType({
    # Universal
    "structuralCorrectness": 1.0,
    "citationCompliance": 1.0,
    "rationaleQuality": 0.5,
    # Hypothesis generator
    "levelSeparation": 1.5,
    "thirdAlternativePresence": 2.0,
    "paradoxExploitation": 0.5,
    # Test designer
    "discriminativePower": 2.0,
    "potencyCheckSufficiency": 2.0,
    "objectTransposition": 0.5,
    "scoreCalibrationHonesty": 0.5,
    # Adversarial critic
    "scaleCheckRigor": 1.5,
    "anomalyQuarantineDiscipline": 1.5,
    "theoryKillJustification": 1.5,
    "realThirdAlternative": 1.5,
})

STANDARD_MAX_SCORE = 3
CONDITIONAL_MAX_SCORE = 2

MAX_SCORES = MappingProxyType({
    name: CONDITIONAL_MAX_SCORE
    if name in ("paradoxExploitation", "objectTransposition", "scoreCalibrationHonesty")
    else STANDARD_MAX_SCORE
    for name in SCORE_WEIGHTS
})

MAX_ROLE_SCORES = MappingProxyType({
    "hypothesis_generator": 19.0,
    "test_designer": 21.5,
    "adversarial_critic_with_kill": 25.5,
    "adversarial_critic_no_kill": 21.0,
})

# Coaching quotations keyed by criterion name
BRENNER_QUOTES = MappingProxyType({
    "levelSeparation": "Programs don't have wants. Interpreters do. (§58)",
    "thirdAlternativePresence": "Both could be wrong. (§103)",
    "scaleCheckRigor": "The imprisoned imagination — scale constraints are load-bearing. (§58)",
    "anomalyQuarantineDiscipline": "Neither hidden nor allowed to destroy coherent framework.",
    "theoryKillJustification": "When they go ugly, kill them. Get rid of them. (§229)",
    "discriminativePower": "Exclusion is always a tremendously good thing. (§147)",
})


def weighted_max(name: str) -> float:
    """Largest weighted contribution a single criterion can make."""
    return MAX_SCORES[name] * SCORE_WEIGHTS[name]


# =============================================================================
# CRITERION BASE
# =============================================================================

class _Criterion:
    """Shared range check for frozen criterion dataclasses."""
    NAME: ClassVar[str] = ""
    MAX_SCORE: ClassVar[int] = STANDARD_MAX_SCORE

    def __post_init__(self):
        score = self.score
        if isinstance(score, bool) or not isinstance(score, int) or not (0 <= score <= self.MAX_SCORE):
            raise ValidationError([
                ValidationIssue(f"{self.NAME}.score", f"Score must be an integer 0-{self.MAX_SCORE}, got {score!r}")
            ])

    @property
    def weighted(self) -> float:
        return self.score * SCORE_WEIGHTS[self.NAME]


# =============================================================================
# UNIVERSAL CRITERIA
# =============================================================================

@dataclass(frozen=True)
class StructuralCorrectness(_Criterion):
    NAME: ClassVar[str] = "structuralCorrectness"

    score: int
    valid_json: bool = False
    has_required_fields: bool = False
    section_operation_match: bool = False
    notes: Optional[str] = None


@dataclass(frozen=True)
class CitationCompliance(_Criterion):
    NAME: ClassVar[str] = "citationCompliance"

    score: int
    anchor_count: int = 0
    valid_anchors: int = 0
    has_inference_markers: bool = False
    fake_anchor_detected: bool = False
    notes: Optional[str] = None


@dataclass(frozen=True)
class RationaleQuality(_Criterion):
    NAME: ClassVar[str] = "rationaleQuality"

    score: int
    has_rationale: bool = False
    mentions_operators: bool = False
    explains_why: bool = False
    notes: Optional[str] = None


@dataclass(frozen=True)
class UniversalCriteria:
    structural_correctness: StructuralCorrectness
    citation_compliance: CitationCompliance
    rationale_quality: RationaleQuality


def create_empty_structural_correctness() -> StructuralCorrectness:
    return StructuralCorrectness(score=0)


def create_empty_citation_compliance() -> CitationCompliance:
    return CitationCompliance(score=0)


def create_empty_rationale_quality() -> RationaleQuality:
    return RationaleQuality(score=0)


def create_empty_universal_criteria() -> UniversalCriteria:
    return UniversalCriteria(
        structural_correctness=create_empty_structural_correctness(),
        citation_compliance=create_empty_citation_compliance(),
        rationale_quality=create_empty_rationale_quality(),
    )


# =============================================================================
# HYPOTHESIS GENERATOR CRITERIA
# =============================================================================

@dataclass(frozen=True)
class LevelSeparation(_Criterion):
    """Program vs. interpreter: are mechanism levels kept apart?"""
    NAME: ClassVar[str] = "levelSeparation"

    score: int
    conflation_detected: bool = False
    mechanism_typed: bool = False
    conflation_patterns: tuple[str, ...] = ()
    notes: Optional[str] = None


@dataclass(frozen=True)
class ThirdAlternativePresence(_Criterion):
    NAME: ClassVar[str] = "thirdAlternativePresence"

    score: int
    has_third_alternative: bool = False
    is_genuinely_orthogonal: bool = False
    # "both could be wrong" without specifics
    is_placeholder: bool = False
    notes: Optional[str] = None


@dataclass(frozen=True)
class ParadoxExploitation(_Criterion):
    NAME: ClassVar[str] = "paradoxExploitation"
    MAX_SCORE: ClassVar[int] = CONDITIONAL_MAX_SCORE

    score: int
    applicable: bool = True
    paradox_identified: bool = False
    hypothesis_derived_from_paradox: bool = False
    notes: Optional[str] = None


@dataclass(frozen=True)
class HypothesisGeneratorCriteria:
    level_separation: LevelSeparation
    third_alternative_presence: ThirdAlternativePresence
    paradox_exploitation: ParadoxExploitation


# =============================================================================
# TEST DESIGNER CRITERIA
# =============================================================================

@dataclass(frozen=True)
class DiscriminativePower(_Criterion):
    NAME: ClassVar[str] = "discriminativePower"

    score: int
    hypotheses_discriminated: int = 0
    outcomes_are_different: bool = False
    outcomes_are_observable: bool = False
    likelihood_ratio_estimate: Optional[str] = None  # e.g. ">100:1"
    notes: Optional[str] = None


@dataclass(frozen=True)
class PotencyCheckSufficiency(_Criterion):
    NAME: ClassVar[str] = "potencyCheckSufficiency"

    score: int
    has_potency_check: bool = False
    has_positive_control: bool = False
    has_sensitivity_verification: bool = False
    has_timing_validation: bool = False
    notes: Optional[str] = None


@dataclass(frozen=True)
class ObjectTransposition(_Criterion):
    NAME: ClassVar[str] = "objectTransposition"
    MAX_SCORE: ClassVar[int] = CONDITIONAL_MAX_SCORE

    score: int
    applicable: bool = True
    alternatives_considered: bool = False
    cost_benefit_provided: bool = False
    notes: Optional[str] = None


@dataclass(frozen=True)
class ScoreCalibrationHonesty(_Criterion):
    """Only counted when the contribution carries an evidence score."""
    NAME: ClassVar[str] = "scoreCalibrationHonesty"
    MAX_SCORE: ClassVar[int] = CONDITIONAL_MAX_SCORE

    score: int
    has_evidence_score: bool = True
    # all 3s is suspicious
    is_inflated: bool = False
    is_conservative: bool = False
    notes: Optional[str] = None


@dataclass(frozen=True)
class TestDesignerCriteria:
    discriminative_power: DiscriminativePower
    potency_check_sufficiency: PotencyCheckSufficiency
    object_transposition: ObjectTransposition
    score_calibration_honesty: ScoreCalibrationHonesty


# =============================================================================
# ADVERSARIAL CRITIC CRITERIA
# =============================================================================

@dataclass(frozen=True)
class ScaleCheckRigor(_Criterion):
    NAME: ClassVar[str] = "scaleCheckRigor"

    score: int
    has_scale_check: bool = False
    has_calculation: bool = False
    has_units: bool = False
    has_conclusion: bool = False
    notes: Optional[str] = None


@dataclass(frozen=True)
class AnomalyQuarantineDiscipline(_Criterion):
    NAME: ClassVar[str] = "anomalyQuarantineDiscipline"

    score: int
    anomaly_count: int = 0
    quarantined_count: int = 0
    has_resolution_plans: bool = False
    prematurely_destroys: bool = False
    notes: Optional[str] = None


@dataclass(frozen=True)
class TheoryKillJustification(_Criterion):
    """Only counted for contributions that perform a KILL."""
    NAME: ClassVar[str] = "theoryKillJustification"

    score: int
    applicable: bool = True
    has_evidence: bool = False
    evidence_is_decisive: bool = False
    rescue_moves_considered: bool = False
    unjustified_pattern_detected: bool = False
    notes: Optional[str] = None


@dataclass(frozen=True)
class RealThirdAlternative(_Criterion):
    NAME: ClassVar[str] = "realThirdAlternative"

    score: int
    has_alternative: bool = False
    is_specific: bool = False
    has_mechanism: bool = False
    has_testable_predictions: bool = False
    notes: Optional[str] = None


@dataclass(frozen=True)
class AdversarialCriticCriteria:
    scale_check_rigor: ScaleCheckRigor
    anomaly_quarantine_discipline: AnomalyQuarantineDiscipline
    theory_kill_justification: TheoryKillJustification
    real_third_alternative: RealThirdAlternative


# =============================================================================
# DERIVATION FROM REGISTRY ENTITIES
# =============================================================================

def scale_check_rigor_from_assumptions(assumptions: Iterable[Assumption]) -> ScaleCheckRigor:
    """Best scale_physics calculation in the collection."""
    scale = [a for a in assumptions if a.type == AssumptionType.SCALE_PHYSICS]
    calculations = [a.calculation for a in scale if a.calculation is not None]
    return ScaleCheckRigor(
        score=max((evaluate_scale_rigor(c) for c in calculations), default=0),
        has_scale_check=bool(scale),
        has_calculation=bool(calculations),
        has_units=any(not is_blank(c.units) for c in calculations),
        has_conclusion=any(not is_blank(c.implication) for c in calculations),
    )


def quarantine_discipline_from_anomalies(anomalies: Iterable[Anomaly]) -> AnomalyQuarantineDiscipline:
    """
    Weakest-link quarantine score across a collection.

    One poorly kept anomaly is enough to pull the criterion down.
    """
    anomalies = list(anomalies)
    if not anomalies:
        return AnomalyQuarantineDiscipline(score=0)

    assessments = [validate_quarantine_discipline(a) for a in anomalies]
    quarantined = [
        a for a in anomalies
        if a.quarantine_status != QuarantineStatus.ACTIVE or a.resolution_plan
    ]
    return AnomalyQuarantineDiscipline(
        score=min(a.score for a in assessments),
        anomaly_count=len(anomalies),
        quarantined_count=len(quarantined),
        has_resolution_plans=any(a.resolution_plan for a in anomalies),
        prematurely_destroys=any(a.issues for a in assessments),
    )


def kill_justification_from_critique(critique: Critique, applicable: bool = True) -> TheoryKillJustification:
    result = evaluate_kill_justification(critique)
    return TheoryKillJustification(
        score=result.score,
        applicable=applicable,
        has_evidence=not is_blank(critique.evidence_to_confirm),
        evidence_is_decisive=result.score >= 2,
        rescue_moves_considered=critique.proposed_alternative is not None,
        unjustified_pattern_detected=bool(result.issues),
        notes="; ".join(result.issues) or None,
    )


def real_third_alternative_from_critique(critique: Critique) -> RealThirdAlternative:
    result = evaluate_third_alternative(critique)
    alternative = critique.proposed_alternative
    return RealThirdAlternative(
        score=result.score,
        has_alternative=alternative is not None,
        is_specific=result.score >= 2,
        has_mechanism=alternative is not None and not is_blank(alternative.mechanism),
        has_testable_predictions=alternative is not None and alternative.testable and bool(alternative.predictions),
        notes=result.explanation,
    )
