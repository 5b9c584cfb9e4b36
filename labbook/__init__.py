# labbook Research Engine
# Core: research registries, rubric scoring and program dashboards

"""
Core invariant: entities are immutable values. Every change goes through a
transition function that checks the current status, stamps updatedAt and
re-validates the whole record before returning a new one.

Scoring and dashboard functions are read-only projections over entities
and never raise on incomplete input.
"""

from .domain import (
    DomainError,
    HypothesisOrigin,
    HypothesisRecord,
    HypothesisState,
    HypothesisTransition,
    IllegalTransitionError,
    InvalidIdentifierError,
    MembershipError,
    SequenceOverflowError,
    TestRecord,
    TestStage,
)
from .identifiers import (
    generate_anomaly_id,
    generate_assumption_id,
    generate_critique_id,
    generate_intervention_id,
    generate_program_id,
)
from .validation import ValidationError, ValidationIssue, ValidationResult
from .dashboard import ProgramDashboard, compute_program_dashboard

__version__ = "0.1.0"
