# labbook Research Registry
# Assumptions, anomalies, critiques, programs and operator interventions

from .assumption import (
    Assumption,
    AssumptionCriticality,
    AssumptionLoad,
    AssumptionStatus,
    AssumptionType,
    ScaleCalculation,
    assumption_from_dict,
    challenge_assumption,
    create_assumption,
    create_scale_assumption,
    evaluate_scale_rigor,
    falsify_assumption,
    get_affected_by_falsification,
    validate_assumption,
    validate_scale_assumption_presence,
    verify_assumption,
    warn_missing_calculation,
)
from .anomaly import (
    Anomaly,
    AnomalyConflict,
    AnomalySource,
    AnomalySourceType,
    QuarantineStatus,
    anomaly_from_dict,
    can_spawn_hypothesis,
    create_anomaly,
    create_experimental_anomaly,
    create_literature_anomaly,
    defer_anomaly,
    link_spawned_hypothesis,
    mark_paradigm_shifting,
    reactivate_anomaly,
    resolve_anomaly,
    validate_anomaly,
    validate_quarantine_discipline,
)
from .critique import (
    Critique,
    CritiqueAction,
    CritiqueResponse,
    CritiqueSeverity,
    CritiqueStatus,
    CritiqueTargetType,
    ProposedAlternative,
    accept_critique,
    address_critique,
    count_unaddressed_critiques,
    create_assumption_critique,
    create_critique,
    create_framing_critique,
    create_hypothesis_critique,
    create_methodology_critique,
    create_test_critique,
    critique_from_dict,
    dismiss_critique,
    evaluate_kill_justification,
    evaluate_third_alternative,
    reopen_critique,
    requires_response,
    validate_critique,
)
from .program import (
    ProgramStatus,
    ResearchProgram,
    abandon_program,
    add_session_to_program,
    complete_program,
    create_research_program,
    pause_program,
    remove_session_from_program,
    research_program_from_dict,
    resume_program,
    validate_research_program,
)
from .intervention import (
    InterventionSeverity,
    InterventionSummary,
    InterventionTarget,
    InterventionType,
    OperatorIntervention,
    SessionControlAction,
    StateChange,
    TargetItemType,
    aggregate_interventions,
    create_intervention,
    create_intervention_id,
    determine_intervention_severity,
    intervention_from_dict,
    is_clean_session,
    reverse_intervention,
    validate_intervention,
)
from .links import (
    FalsificationImpact,
    anomalies_conflicting_with,
    compute_falsification_impact,
    critiques_targeting,
    find_dependent_assumptions,
)
