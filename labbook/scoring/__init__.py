# labbook Scoring
# Contribution rubric and session dimension scores

"""
Two scoring layers:

- criteria + rubric: per-contribution, role-specific weighted criteria with
  pass/fail gates, warnings and session aggregation.
- dimensions: a 120-point, seven-dimension grade of a whole session read
  from its compiled artifact.
"""

from .criteria import (
    MAX_ROLE_SCORES,
    SCORE_WEIGHTS,
    AdversarialCriticCriteria,
    AnomalyQuarantineDiscipline,
    CitationCompliance,
    DiscriminativePower,
    HypothesisGeneratorCriteria,
    LevelSeparation,
    ObjectTransposition,
    ParadoxExploitation,
    PotencyCheckSufficiency,
    RationaleQuality,
    RealThirdAlternative,
    Role,
    ScaleCheckRigor,
    ScoreCalibrationHonesty,
    StructuralCorrectness,
    TestDesignerCriteria,
    TheoryKillJustification,
    ThirdAlternativePresence,
    UniversalCriteria,
    create_empty_universal_criteria,
    kill_justification_from_critique,
    quarantine_discipline_from_anomalies,
    real_third_alternative_from_critique,
    scale_check_rigor_from_assumptions,
)
from .rubric import (
    ContributionScore,
    Gate,
    GateResult,
    Progression,
    ScoreWarning,
    SessionScore,
    aggregate_session_score,
    calculate_role_score,
    check_pass_fail_gates,
    compute_percentage,
    generate_session_warnings,
    generate_warnings,
    score_contribution,
)
from .dimensions import (
    DimensionScore,
    DimensionSignal,
    SessionData,
    SessionDimension,
    SessionDimensionScore,
    compute_grade,
    score_session,
)
