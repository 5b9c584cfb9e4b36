"""
Tests for Phase 2: Assumption Ledger.

These tests verify:
1. Construction validates every field and reports paths
2. The status state machine (unchecked -> challenged -> verified/falsified)
3. Scale rigor is a pure function of which fields are non-blank
4. Persisted records round-trip through validate_assumption
5. Falsification blast radius, direct and transitive
"""

import pytest
from datetime import datetime, timezone

from labbook.domain import IllegalTransitionError
from labbook.validation import ValidationError
from labbook.registry.assumption import (
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
from labbook.registry.links import compute_falsification_impact, find_dependent_assumptions


SESSION = "RS20251230"
T0 = datetime(2025, 12, 30, 9, 0, tzinfo=timezone.utc)
T1 = datetime(2025, 12, 30, 11, 0, tzinfo=timezone.utc)


# =============================================================================
# TEST FIXTURES
# =============================================================================

def make_load(hypotheses=("H-RS20251230-001",), tests=()) -> AssumptionLoad:
    return AssumptionLoad(
        description="Both mechanisms collapse if this is wrong",
        affected_hypotheses=list(hypotheses),
        affected_tests=list(tests),
    )


def make_calculation(**overrides) -> ScaleCalculation:
    fields = dict(
        quantities="Diffusion coefficient D ~ 10 um^2/s, distance L ~ 100 um",
        result="t = L^2/D ~ 1000 s",
        units="seconds",
        implication="Diffusion alone is too slow for the 60 s response",
    )
    fields.update(overrides)
    return ScaleCalculation(**fields)


def make_assumption(id: str = "A-RS20251230-001", **overrides):
    fields = dict(
        id=id,
        statement="Morphogen gradients are established by passive diffusion",
        type=AssumptionType.BACKGROUND,
        session_id=SESSION,
        load=make_load(),
        now=T0,
    )
    fields.update(overrides)
    return create_assumption(**fields)


# =============================================================================
# CONSTRUCTION TESTS
# =============================================================================

class TestAssumptionConstruction:

    def test_defaults(self):
        a = make_assumption()
        assert a.status == AssumptionStatus.UNCHECKED
        assert a.criticality == AssumptionCriticality.IMPORTANT
        assert a.created_at == a.updated_at == T0

    def test_legacy_id_accepted(self):
        assert make_assumption(id="A3").id == "A3"

    def test_lists_frozen(self):
        a = make_assumption(depends_on=["A-RS20251230-002"])
        assert a.depends_on == ("A-RS20251230-002",)
        assert isinstance(a.load.affected_hypotheses, tuple)

    def test_short_statement_rejected(self):
        with pytest.raises(ValidationError, match="statement: Must be at least 10 characters"):
            make_assumption(statement="too short")

    def test_all_problems_reported(self):
        with pytest.raises(ValidationError) as exc_info:
            make_assumption(
                id="assumption-1",
                load=make_load(hypotheses=["H1"], tests=["T-RS20251230-001", "bad"]),
                anchors=["§3", "three"],
            )
        paths = {issue.path for issue in exc_info.value.issues}
        assert paths == {"id", "load.affectedHypotheses.0", "load.affectedTests.1", "anchors.1"}

    def test_empty_load_lists_valid(self):
        a = make_assumption(load=make_load(hypotheses=(), tests=()))
        assert get_affected_by_falsification(a).is_empty


# =============================================================================
# STATE MACHINE TESTS
# =============================================================================

class TestAssumptionTransitions:

    def test_challenge_then_verify(self):
        a = challenge_assumption(make_assumption(), reason="Active transport observed", now=T1)
        assert a.status == AssumptionStatus.CHALLENGED
        assert a.updated_at == T1
        assert a.created_at == T0
        assert "Challenged: Active transport observed" in a.notes

        verified = verify_assumption(a, evidence="FRAP recovery matches diffusion")
        assert verified.status == AssumptionStatus.VERIFIED
        assert verified.is_terminal

    def test_direct_falsify_from_unchecked(self):
        a = falsify_assumption(make_assumption(), evidence="Gradient forms in 5 s")
        assert a.status == AssumptionStatus.FALSIFIED

    def test_input_not_mutated(self):
        original = make_assumption()
        challenge_assumption(original)
        assert original.status == AssumptionStatus.UNCHECKED

    def test_falsified_is_terminal(self):
        a = falsify_assumption(make_assumption())
        with pytest.raises(IllegalTransitionError, match="current status is falsified"):
            verify_assumption(a)

    def test_cannot_challenge_twice(self):
        a = challenge_assumption(make_assumption())
        with pytest.raises(IllegalTransitionError, match="A-RS20251230-001"):
            challenge_assumption(a)

    def test_notes_accumulate(self):
        a = challenge_assumption(make_assumption(notes="Initial note"), reason="doubt")
        a = falsify_assumption(a, evidence="counterexample")
        assert a.notes.splitlines() == ["Initial note", "Challenged: doubt", "Falsified: counterexample"]


# =============================================================================
# SCALE RIGOR TESTS
# =============================================================================

class TestScaleRigor:

    def test_absent_is_zero(self):
        assert evaluate_scale_rigor(None) == 0

    def test_levels(self):
        assert evaluate_scale_rigor(make_calculation()) == 3
        assert evaluate_scale_rigor(make_calculation(implication="")) == 2
        assert evaluate_scale_rigor(make_calculation(units="", implication="")) == 1
        assert evaluate_scale_rigor(make_calculation(result="")) == 1

    def test_whitespace_counts_as_blank(self):
        assert evaluate_scale_rigor(make_calculation(implication="   ")) == 2
        assert evaluate_scale_rigor(make_calculation(units="\t", implication="\n")) == 1
        assert evaluate_scale_rigor(make_calculation(quantities=" ")) == 1

    def test_rules_out_never_required(self):
        calc = make_calculation(what_it_rules_out="Rules out passive diffusion")
        assert evaluate_scale_rigor(calc) == 3
        assert evaluate_scale_rigor(make_calculation(what_it_rules_out=None)) == 3

    def test_present_but_incomplete_is_one(self):
        assert evaluate_scale_rigor(make_calculation(result="  ", implication="")) == 1
        quantities_only = ScaleCalculation(quantities="D ~ 10 um^2/s")
        assert evaluate_scale_rigor(quantities_only) == 1
        assert evaluate_scale_rigor(ScaleCalculation()) == 1


class TestScalePresence:

    def test_missing_scale_assumption_reported(self):
        report = validate_scale_assumption_presence([make_assumption()])
        assert not report.present
        assert report.max_rigor == 0
        assert "No scale_physics" in report.message

    def test_presence_with_rigor(self):
        scale = create_scale_assumption(
            "A-RS20251230-002",
            "Diffusion is fast enough over tissue scale",
            SESSION,
            make_load(),
            make_calculation(implication=""),
        )
        report = validate_scale_assumption_presence([make_assumption(), scale])
        assert report.present
        assert report.count == 1
        assert report.rigor_levels == (2,)
        assert "max rigor is 2/3" in report.message

    def test_warn_missing_calculation(self):
        bare = make_assumption(type=AssumptionType.SCALE_PHYSICS)
        assert "should include a calculation" in warn_missing_calculation(bare)
        assert warn_missing_calculation(make_assumption()) is None


# =============================================================================
# PERSISTENCE TESTS
# =============================================================================

class TestAssumptionPersistence:

    def test_round_trip(self):
        a = make_assumption(
            type=AssumptionType.SCALE_PHYSICS,
            calculation=make_calculation(what_it_rules_out="Passive diffusion"),
            depends_on=["A-RS20251230-009"],
            anchors=["§12-14"],
            recorded_by="Opus",
            test_method="FRAP on the gradient",
        )
        record = a.to_dict()
        assert record["sessionId"] == SESSION
        assert record["load"]["affectedHypotheses"] == ["H-RS20251230-001"]

        result = validate_assumption(record)
        assert result.valid, result.errors
        assert result.data == a

    def test_invalid_record_not_raised(self):
        record = make_assumption().to_dict()
        record["type"] = "vibes"
        record["load"]["affectedHypotheses"] = ["H1"]

        result = validate_assumption(record)
        assert not result.valid
        paths = {e.path for e in result.errors}
        assert "type" in paths

    def test_strict_parse_raises(self):
        with pytest.raises(ValidationError):
            assumption_from_dict({"id": "A-RS20251230-001"})


# =============================================================================
# FALSIFICATION IMPACT TESTS
# =============================================================================

class TestFalsificationImpact:

    def test_transitive_dependents_cycle_safe(self):
        # a1 -> a2 -> a3 -> a4 -> a1
        a1 = make_assumption("A-RS20251230-001", depends_on=["A-RS20251230-004"])
        a2 = make_assumption("A-RS20251230-002", depends_on=["A-RS20251230-001"])
        a3 = make_assumption("A-RS20251230-003", depends_on=["A-RS20251230-002", "A-RS20251230-001"])
        a4 = make_assumption("A-RS20251230-004", depends_on=["A-RS20251230-003"])

        dependents = find_dependent_assumptions(a1.id, [a1, a2, a3, a4])
        assert dependents == ("A-RS20251230-002", "A-RS20251230-003", "A-RS20251230-004")

    def test_impact_unions_loads(self):
        root = make_assumption(
            "A-RS20251230-001",
            load=make_load(hypotheses=["H-RS20251230-001"], tests=["T-RS20251230-001"]),
        )
        child = make_assumption(
            "A-RS20251230-002",
            depends_on=["A-RS20251230-001"],
            load=make_load(hypotheses=["H-RS20251230-001", "H-RS20251230-002"]),
        )
        unrelated = make_assumption(
            "A-RS20251230-003",
            load=make_load(hypotheses=["H-RS20251230-009"]),
        )

        impact = compute_falsification_impact(root, [root, child, unrelated])
        assert impact.dependent_assumptions == ("A-RS20251230-002",)
        assert impact.hypotheses == ("H-RS20251230-001", "H-RS20251230-002")
        assert impact.tests == ("T-RS20251230-001",)
        assert impact.total_affected == 4


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
