"""
Contribution Scorer for the labbook rubric.

Core principle:
    Every composite is the plain weighted sum of its criteria. When a
    conditional criterion does not apply, its weighted maximum is removed
    from the role ceiling instead of being scored as zero, so percentages
    stay comparable across contributions.

Gates and warnings:
    Pass/fail gates fail a contribution outright, whatever its percentage.
    Warnings are advisory. Neither is ever raised as an exception; every
    function in this module returns a value for any input it is given.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from statistics import mean
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Sequence, Union

from ..domain import utc_now
from .criteria import (
    BRENNER_QUOTES,
    MAX_ROLE_SCORES,
    AdversarialCriticCriteria,
    HypothesisGeneratorCriteria,
    Role,
    TestDesignerCriteria,
    UniversalCriteria,
    weighted_max,
)

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION CONSTANTS
# =============================================================================

LOW_QUALITY_PERCENTAGE = 50.0
WEAK_POTENCY_SCORE = 2
SPRAWL_ADD_LIMIT = 3
LOW_CONVERGENCE_MIN_CONTRIBUTIONS = 5
LOW_OPERATOR_COVERAGE = 50.0
PROGRESSION_DELTA = 5.0

# Σ Level Split, ⊘ Exclusion Test, ⊙ Scale Check, ⟳ Object Transpose, ⊕ Cross-domain
DEFAULT_OPERATORS = ("Σ", "⊘", "⊙", "⟳", "⊕")


class Gate(Enum):
    INVALID_JSON = "invalidJson"
    MISSING_REQUIRED_FIELDS = "missingRequiredFields"
    MISSING_POTENCY_CHECK = "missingPotencyCheck"
    FAKE_ANCHOR = "fakeAnchor"
    KILL_WITHOUT_RATIONALE = "killWithoutRationale"


GATE_MESSAGES = MappingProxyType({
    Gate.INVALID_JSON: "Invalid JSON in delta block",
    Gate.MISSING_REQUIRED_FIELDS: "Missing required fields in delta",
    Gate.MISSING_POTENCY_CHECK: "Missing potency check in test design",
    Gate.FAKE_ANCHOR: "Fake transcript anchor detected (§n that doesn't exist)",
    Gate.KILL_WITHOUT_RATIONALE: "KILL operation without evidence/rationale",
})


class Progression(Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"
    UNKNOWN = "unknown"


RoleCriteria = Union[HypothesisGeneratorCriteria, TestDesignerCriteria, AdversarialCriticCriteria]


# =============================================================================
# ROLE SCORES
# =============================================================================

@dataclass(frozen=True)
class RoleScore:
    score: float
    max_score: float


def calculate_universal_score(universal: UniversalCriteria) -> float:
    return (
        universal.structural_correctness.weighted
        + universal.citation_compliance.weighted
        + universal.rationale_quality.weighted
    )


def calculate_hypothesis_generator_score(
    universal: UniversalCriteria,
    specific: HypothesisGeneratorCriteria,
) -> RoleScore:
    """
    Universal + level separation + third alternative (+ paradox exploitation).

    Ceiling 19, or 18 when there is no paradox to exploit.
    """
    score = (
        calculate_universal_score(universal)
        + specific.level_separation.weighted
        + specific.third_alternative_presence.weighted
    )
    max_score = MAX_ROLE_SCORES["hypothesis_generator"]

    if specific.paradox_exploitation.applicable:
        score += specific.paradox_exploitation.weighted
    else:
        max_score -= weighted_max("paradoxExploitation")

    return RoleScore(score=score, max_score=max_score)


def calculate_test_designer_score(
    universal: UniversalCriteria,
    specific: TestDesignerCriteria,
) -> RoleScore:
    """
    Universal + discriminative power + potency check
    (+ object transposition) (+ score calibration honesty).

    Ceiling 21.5, reduced by 1.0 for each conditional criterion that does not apply.
    """
    score = (
        calculate_universal_score(universal)
        + specific.discriminative_power.weighted
        + specific.potency_check_sufficiency.weighted
    )
    max_score = MAX_ROLE_SCORES["test_designer"]

    if specific.object_transposition.applicable:
        score += specific.object_transposition.weighted
    else:
        max_score -= weighted_max("objectTransposition")

    if specific.score_calibration_honesty.has_evidence_score:
        score += specific.score_calibration_honesty.weighted
    else:
        max_score -= weighted_max("scoreCalibrationHonesty")

    return RoleScore(score=score, max_score=max_score)


def calculate_adversarial_critic_score(
    universal: UniversalCriteria,
    specific: AdversarialCriticCriteria,
) -> RoleScore:
    """
    Universal + scale check + quarantine + real third alternative (+ kill justification).

    Ceiling 25.5 with a KILL, 21 without.
    """
    score = (
        calculate_universal_score(universal)
        + specific.scale_check_rigor.weighted
        + specific.anomaly_quarantine_discipline.weighted
        + specific.real_third_alternative.weighted
    )

    if specific.theory_kill_justification.applicable:
        score += specific.theory_kill_justification.weighted
        max_score = MAX_ROLE_SCORES["adversarial_critic_with_kill"]
    else:
        max_score = MAX_ROLE_SCORES["adversarial_critic_no_kill"]

    return RoleScore(score=score, max_score=max_score)


def calculate_role_score(
    role: Role,
    universal: UniversalCriteria,
    specific: Optional[RoleCriteria],
) -> RoleScore:
    """
    Dispatch to the role scorer.

    Criteria that do not belong to the role count as zero against the
    role's full ceiling.
    """
    if role == Role.HYPOTHESIS_GENERATOR and isinstance(specific, HypothesisGeneratorCriteria):
        return calculate_hypothesis_generator_score(universal, specific)
    if role == Role.TEST_DESIGNER and isinstance(specific, TestDesignerCriteria):
        return calculate_test_designer_score(universal, specific)
    if role == Role.ADVERSARIAL_CRITIC and isinstance(specific, AdversarialCriticCriteria):
        return calculate_adversarial_critic_score(universal, specific)

    ceiling = {
        Role.HYPOTHESIS_GENERATOR: MAX_ROLE_SCORES["hypothesis_generator"],
        Role.TEST_DESIGNER: MAX_ROLE_SCORES["test_designer"],
        Role.ADVERSARIAL_CRITIC: MAX_ROLE_SCORES["adversarial_critic_with_kill"],
    }[role]
    return RoleScore(score=calculate_universal_score(universal), max_score=ceiling)


def compute_percentage(score: float, max_score: float) -> float:
    if max_score <= 0:
        return 0.0
    return round(score / max_score * 100, 1)


# =============================================================================
# CONTRIBUTION SCORE
# =============================================================================

@dataclass(frozen=True)
class GateFailure:
    gate: Gate
    reason: str


@dataclass(frozen=True)
class GateResult:
    passed: bool
    failures: tuple[GateFailure, ...] = ()


@dataclass(frozen=True)
class ScoreWarning:
    """Advisory finding. criterion names the rubric criterion (or "composite")."""
    code: str
    criterion: str
    message: str
    suggestion: Optional[str] = None
    brenner_quote: Optional[str] = None


@dataclass(frozen=True)
class ContributionScore:
    """Rubric result for one delta. Derived, never persisted as authoritative state."""
    contribution_id: str
    session_id: str
    role: Role
    universal: UniversalCriteria
    hypothesis_generator: Optional[HypothesisGeneratorCriteria] = None
    test_designer: Optional[TestDesignerCriteria] = None
    adversarial_critic: Optional[AdversarialCriticCriteria] = None
    composite_score: float = 0.0
    max_score: float = 0.0
    percentage: float = 0.0
    pass_fail_gates: GateResult = GateResult(passed=True)
    warnings: tuple[ScoreWarning, ...] = ()
    scored_at: datetime = field(default_factory=utc_now)

    @property
    def passed(self) -> bool:
        return self.pass_fail_gates.passed


def check_pass_fail_gates(score: ContributionScore) -> GateResult:
    """
    Evaluate the five gates.

    Role-specific gates only apply to their role; a missing role section
    does not fail a gate on its own.
    """
    structural = score.universal.structural_correctness
    citation = score.universal.citation_compliance
    failed = []

    if not structural.valid_json:
        failed.append(Gate.INVALID_JSON)
    if not structural.has_required_fields:
        failed.append(Gate.MISSING_REQUIRED_FIELDS)

    if score.role == Role.TEST_DESIGNER and score.test_designer is not None:
        if not score.test_designer.potency_check_sufficiency.has_potency_check:
            failed.append(Gate.MISSING_POTENCY_CHECK)

    if citation.fake_anchor_detected:
        failed.append(Gate.FAKE_ANCHOR)

    if score.role == Role.ADVERSARIAL_CRITIC and score.adversarial_critic is not None:
        kill = score.adversarial_critic.theory_kill_justification
        if kill.applicable and not kill.has_evidence:
            failed.append(Gate.KILL_WITHOUT_RATIONALE)

    failures = tuple(GateFailure(gate, GATE_MESSAGES[gate]) for gate in failed)
    return GateResult(passed=not failures, failures=failures)


def generate_warnings(score: ContributionScore) -> tuple[ScoreWarning, ...]:
    warnings = []

    if score.percentage < LOW_QUALITY_PERCENTAGE:
        warnings.append(ScoreWarning(
            code="lowQualityContribution",
            criterion="composite",
            message="Low-quality contribution (< 50% of max score)",
        ))

    if score.role == Role.ADVERSARIAL_CRITIC:
        scale = score.adversarial_critic.scale_check_rigor.score if score.adversarial_critic else 0
        if scale == 0:
            warnings.append(ScoreWarning(
                code="missingScaleCheck",
                criterion="scaleCheckRigor",
                message="Scale check missing for mechanism claim",
                suggestion="Work the numbers: quantities, result, units and what they rule out",
                brenner_quote=BRENNER_QUOTES.get("scaleCheckRigor"),
            ))

    if score.role == Role.TEST_DESIGNER:
        potency = score.test_designer.potency_check_sufficiency.score if score.test_designer else 0
        if potency < WEAK_POTENCY_SCORE:
            warnings.append(ScoreWarning(
                code="weakPotency",
                criterion="potencyCheckSufficiency",
                message="Weak assay design (potency score < 2)",
                suggestion="Add a positive control that shows a negative result is not an assay failure",
                brenner_quote=BRENNER_QUOTES.get("potencyCheckSufficiency"),
            ))

    return tuple(warnings)


def score_contribution(
    contribution_id: str,
    session_id: str,
    role: Role,
    universal: UniversalCriteria,
    specific: Optional[RoleCriteria] = None,
    now: Optional[datetime] = None,
) -> ContributionScore:
    """Score one contribution and attach its gates and warnings."""
    role_score = calculate_role_score(role, universal, specific)
    score = ContributionScore(
        contribution_id=contribution_id,
        session_id=session_id,
        role=role,
        universal=universal,
        hypothesis_generator=specific if isinstance(specific, HypothesisGeneratorCriteria) else None,
        test_designer=specific if isinstance(specific, TestDesignerCriteria) else None,
        adversarial_critic=specific if isinstance(specific, AdversarialCriticCriteria) else None,
        composite_score=role_score.score,
        max_score=role_score.max_score,
        percentage=compute_percentage(role_score.score, role_score.max_score),
        scored_at=now or utc_now(),
    )
    score = replace(score, pass_fail_gates=check_pass_fail_gates(score))
    score = replace(score, warnings=generate_warnings(score))
    logger.debug(
        "Scored %s (%s): %.1f/%.1f, %d gate failures",
        contribution_id,
        role.value,
        score.composite_score,
        score.max_score,
        len(score.pass_fail_gates.failures),
    )
    return score


# =============================================================================
# SESSION AGGREGATION
# =============================================================================

@dataclass(frozen=True)
class RoleAggregation:
    count: int
    mean_score: float
    mean_percentage: float


@dataclass(frozen=True)
class Convergence:
    add_count: int
    kill_count: int
    converging: bool


@dataclass(frozen=True)
class OperatorCoverage:
    used: tuple[str, ...]
    missing: tuple[str, ...]
    coverage_percentage: float


@dataclass(frozen=True)
class SessionMetrics:
    total_contributions: int
    progression: Progression
    convergence: Convergence
    operator_coverage: OperatorCoverage


@dataclass(frozen=True)
class SessionScore:
    session_id: str
    contributions: tuple[ContributionScore, ...]
    role_aggregations: Mapping[Role, RoleAggregation]
    session_metrics: SessionMetrics
    overall_score: float
    overall_percentage: float
    scored_at: datetime = field(default_factory=utc_now)


def compute_progression(contributions: Sequence[ContributionScore]) -> Progression:
    """
    Compare mean percentage of the later half against the earlier half.

    More than 5 points up is improving, more than 5 down is declining.
    """
    if len(contributions) < 2:
        return Progression.UNKNOWN
    middle = len(contributions) // 2
    earlier = mean(c.percentage for c in contributions[:middle])
    later = mean(c.percentage for c in contributions[middle:])
    delta = later - earlier
    if delta > PROGRESSION_DELTA:
        return Progression.IMPROVING
    if delta < -PROGRESSION_DELTA:
        return Progression.DECLINING
    return Progression.STABLE


def compute_operator_coverage(
    used: Iterable[str],
    all_operators: Sequence[str] = DEFAULT_OPERATORS,
) -> OperatorCoverage:
    used_set = set(used)
    used_known = tuple(op for op in all_operators if op in used_set)
    missing = tuple(op for op in all_operators if op not in used_set)
    percentage = compute_percentage(len(used_known), len(all_operators))
    return OperatorCoverage(used=used_known, missing=missing, coverage_percentage=percentage)


def aggregate_session_score(
    session_id: str,
    contributions: Iterable[ContributionScore],
    add_count: int = 0,
    kill_count: int = 0,
    operators_used: Iterable[str] = (),
    all_operators: Sequence[str] = DEFAULT_OPERATORS,
    now: Optional[datetime] = None,
) -> SessionScore:
    """
    Roll contribution scores up into a session score.

    add_count / kill_count are the session's hypothesis ADD and KILL
    operations; operators_used are the operator symbols applied.
    """
    ordered = tuple(contributions)

    aggregations = {}
    for role in Role:
        scores = [c for c in ordered if c.role == role]
        if scores:
            aggregations[role] = RoleAggregation(
                count=len(scores),
                mean_score=round(mean(c.composite_score for c in scores), 2),
                mean_percentage=round(mean(c.percentage for c in scores), 1),
            )

    total = sum(c.composite_score for c in ordered)
    ceiling = sum(c.max_score for c in ordered)

    metrics = SessionMetrics(
        total_contributions=len(ordered),
        progression=compute_progression(ordered),
        convergence=Convergence(
            add_count=add_count,
            kill_count=kill_count,
            converging=kill_count >= add_count,
        ),
        operator_coverage=compute_operator_coverage(operators_used, all_operators),
    )
    logger.debug("Session %s: %d contributions, %.1f/%.1f", session_id, len(ordered), total, ceiling)
    return SessionScore(
        session_id=session_id,
        contributions=ordered,
        role_aggregations=MappingProxyType(aggregations),
        session_metrics=metrics,
        overall_score=total,
        overall_percentage=compute_percentage(total, ceiling),
        scored_at=now or utc_now(),
    )


def generate_session_warnings(session: SessionScore) -> tuple[ScoreWarning, ...]:
    metrics = session.session_metrics
    convergence = metrics.convergence
    warnings = []

    if convergence.add_count > SPRAWL_ADD_LIMIT and convergence.kill_count == 0:
        warnings.append(ScoreWarning(
            code="hypothesisSprawl",
            criterion="session",
            message="> 3 ADDs without KILL indicates possible hypothesis sprawl",
            suggestion="Design a test that can eliminate at least one hypothesis",
            brenner_quote=BRENNER_QUOTES.get("theoryKillJustification"),
        ))

    if metrics.total_contributions >= LOW_CONVERGENCE_MIN_CONTRIBUTIONS and not convergence.converging:
        warnings.append(ScoreWarning(
            code="lowConvergence",
            criterion="convergence",
            message="Session is adding hypotheses faster than it eliminates them",
            brenner_quote=BRENNER_QUOTES.get("discriminativePower"),
        ))

    if metrics.operator_coverage.coverage_percentage < LOW_OPERATOR_COVERAGE:
        missing = ", ".join(metrics.operator_coverage.missing)
        warnings.append(ScoreWarning(
            code="lowOperatorCoverage",
            criterion="operatorCoverage",
            message="Fewer than half of the operators were applied",
            suggestion=f"Try the unused operators: {missing}" if missing else None,
        ))

    if metrics.progression == Progression.DECLINING:
        warnings.append(ScoreWarning(
            code="decliningQuality",
            criterion="progression",
            message="Contribution quality is declining over the session",
        ))

    return tuple(warnings)
