"""
Tests for Phase 7: Program Dashboard.

These tests verify:
1. Only entities from the program's sessions are counted
2. Hypothesis funnel and per-registry health counts
3. Test execution summary (potency coverage, clamped evidence average)
4. Health warnings fire on their conditions
5. Timeline ordering, session starts, and the event limit
"""

import pytest
from datetime import datetime, timedelta, timezone

from labbook.domain import HypothesisOrigin, HypothesisRecord, HypothesisState
from labbook.domain import TestRecord as RecordedTest, TestStage as Stage
from labbook.registry.anomaly import (
    AnomalyConflict,
    AnomalySource,
    AnomalySourceType,
    create_anomaly,
    defer_anomaly,
    mark_paradigm_shifting,
    resolve_anomaly,
)
from labbook.registry.assumption import (
    AssumptionLoad,
    AssumptionType,
    ScaleCalculation,
    create_assumption,
    falsify_assumption,
)
from labbook.registry.critique import CritiqueSeverity, address_critique, create_hypothesis_critique
from labbook.registry.program import complete_program, create_research_program
from labbook.dashboard import (
    EventType,
    WarningSeverity,
    build_timeline,
    compute_health_warnings,
    compute_hypothesis_funnel,
    compute_program_dashboard,
    summarize_tests,
)


S1 = "RS20251230"
S2 = "RS20251231"
OUTSIDER = "RS20260105"

T0 = datetime(2025, 12, 30, 9, 0, tzinfo=timezone.utc)
T1 = T0 + timedelta(hours=1)
T2 = T0 + timedelta(hours=2)
T3 = T0 + timedelta(hours=3)
T4 = T0 + timedelta(hours=4)
T5 = T0 + timedelta(hours=5)


# =============================================================================
# TEST FIXTURES
# =============================================================================

def make_program(sessions=(S1, S2)):
    return create_research_program(
        id="RP-CELL-FATE-001",
        name="Cell fate",
        description="How do boundary cells choose between two fates?",
        sessions=sessions,
        now=T0,
    )


def make_hypotheses():
    return [
        HypothesisRecord("H-RS20251230-001", S1, HypothesisState.KILLED, HypothesisOrigin.ORIGINAL, T0, T3),
        HypothesisRecord("H-RS20251230-002", S1, HypothesisState.ACTIVE, HypothesisOrigin.THIRD_ALTERNATIVE, T1),
        HypothesisRecord("H-RS20251231-001", S2, HypothesisState.PROPOSED, HypothesisOrigin.ANOMALY_SPAWNED, T2),
        HypothesisRecord("H-RS20260105-001", OUTSIDER, HypothesisState.ACTIVE, created_at=T1),
    ]


def make_original(count: int, state: HypothesisState = HypothesisState.ACTIVE):
    return [HypothesisRecord(f"H-RS20251230-00{i + 1}", S1, state) for i in range(count)]


def make_assumption(id: str = "A-RS20251230-001", type=AssumptionType.SCALE_PHYSICS,
                    affected=("H-RS20251230-002",), **overrides):
    fields = dict(
        id=id,
        statement="Morphogen gradients are established by passive diffusion",
        type=type,
        session_id=S1,
        load=AssumptionLoad(description="Both mechanisms collapse", affected_hypotheses=list(affected)),
        now=T0,
    )
    fields.update(overrides)
    return create_assumption(**fields)


def make_anomaly(id: str = "X-RS20251230-001", session_id: str = S1, **overrides):
    fields = dict(
        id=id,
        observation="Cells at the boundary adopt both fates simultaneously",
        source=AnomalySource(type=AnomalySourceType.EXPERIMENT, reference="T-RS20251230-001"),
        conflicts_with=AnomalyConflict(description="Both hypotheses predict exclusive fate choice"),
        session_id=session_id,
        now=T1,
    )
    fields.update(overrides)
    return create_anomaly(**fields)


def make_critique(id: str = "C-RS20251230-001", severity=CritiqueSeverity.SERIOUS, **overrides):
    fields = dict(
        hypothesis_id="H-RS20251230-002",
        attack="The knockdown efficiency was never measured, so a null result means nothing",
        evidence_to_confirm="Western blot of the target protein after knockdown",
        session_id=S1,
        severity=severity,
        now=T1,
    )
    fields.update(overrides)
    return create_hypothesis_critique(id, **fields)


FULL_CALCULATION = ScaleCalculation(
    quantities="D ~ 10 um^2/s, L ~ 100 um",
    result="t ~ 1000 s",
    units="seconds",
    implication="Diffusion alone is too slow",
)


def codes(warnings):
    return [w.code for w in warnings]


# =============================================================================
# FUNNEL AND HEALTH TESTS
# =============================================================================

class TestFunnel:

    def test_counts_every_state_and_origin(self):
        funnel = compute_hypothesis_funnel(make_hypotheses()[:3])
        assert funnel.total == 3
        assert funnel.by_state[HypothesisState.KILLED] == 1
        assert funnel.by_state[HypothesisState.DORMANT] == 0
        assert funnel.by_origin[HypothesisOrigin.THIRD_ALTERNATIVE] == 1
        assert funnel.by_origin[HypothesisOrigin.ANOMALY_SPAWNED] == 1

    def test_empty(self):
        funnel = compute_hypothesis_funnel([])
        assert funnel.total == 0
        assert set(funnel.by_state) == set(HypothesisState)


class TestTestSummary:

    def test_stages_and_coverage(self):
        summary = summarize_tests([
            RecordedTest("T-RS20251230-001", S1, Stage.COMPLETED, True, 9.0, T2),
            RecordedTest("T-RS20251230-002", S1, Stage.DESIGNED),
            RecordedTest("T-RS20251230-003", S1, Stage.IN_PROGRESS, True, 15.0),
        ])
        assert (summary.designed, summary.in_progress, summary.completed, summary.blocked) == (1, 1, 1, 0)
        assert summary.potency_coverage == 0.667
        # 15 is clamped to 12
        assert summary.avg_evidence_score == 10.5

    def test_empty(self):
        summary = summarize_tests([])
        assert summary.potency_coverage == 0.0
        assert summary.avg_evidence_score is None


# =============================================================================
# WARNING TESTS
# =============================================================================

class TestHealthWarnings:

    def test_empty_program_only_lacks_scale_physics(self):
        warnings = compute_health_warnings([], [], [], [], [])
        assert codes(warnings) == ["NO_SCALE_PHYSICS"]
        assert warnings[0].severity == WarningSeverity.WARNING

    def test_missing_and_weak_calculations(self):
        uncalculated = make_assumption("A-RS20251230-001")
        weak = make_assumption(
            "A-RS20251230-002",
            calculation=ScaleCalculation(quantities="D, L", result="1000 s"),
        )
        warnings = compute_health_warnings([], [uncalculated, weak], [], [], [])
        assert codes(warnings) == ["MISSING_SCALE_CALCULATION", "LOW_SCALE_RIGOR"]
        assert warnings[0].related_ids == ("A-RS20251230-001",)
        assert warnings[1].severity == WarningSeverity.INFO

    def test_full_calculation_is_quiet(self):
        assumption = make_assumption(calculation=FULL_CALCULATION)
        assert compute_health_warnings([], [assumption], [], [], []) == ()

    def test_falsified_assumption_with_live_dependents(self):
        hypotheses = make_hypotheses()[:2]
        falsified = falsify_assumption(make_assumption(
            type=AssumptionType.BACKGROUND,
            affected=("H-RS20251230-001", "H-RS20251230-002"),
        ))
        warnings = compute_health_warnings(hypotheses, [falsified], [], [], [])
        impact = next(w for w in warnings if w.code == "FALSIFIED_ASSUMPTION_IMPACT")
        assert impact.severity == WarningSeverity.CRITICAL
        # the killed hypothesis is not exposed
        assert impact.related_ids == ("A-RS20251230-001", "H-RS20251230-002")

    def test_serious_critiques(self):
        critiques = [
            make_critique("C-RS20251230-001"),
            make_critique("C-RS20251230-002", severity=CritiqueSeverity.MINOR),
            address_critique(make_critique("C-RS20251230-003"), "Added a control arm to the design"),
        ]
        warnings = compute_health_warnings([], [make_assumption(calculation=FULL_CALCULATION)], [], critiques, [])
        assert codes(warnings) == ["UNRESOLVED_SERIOUS_CRITIQUES"]
        assert warnings[0].related_ids == ("C-RS20251230-001",)

    def test_anomaly_warnings(self):
        anomalies = [
            defer_anomaly(make_anomaly("X-RS20251230-001"), ""),
            defer_anomaly(make_anomaly("X-RS20251230-002"), "Needs the live-imaging rig"),
            mark_paradigm_shifting(make_anomaly("X-RS20251230-003")),
        ]
        warnings = compute_health_warnings([], [make_assumption(calculation=FULL_CALCULATION)], anomalies, [], [])
        assert codes(warnings) == ["DEFERRED_WITHOUT_PLAN", "PARADIGM_SHIFTING_ANOMALY"]
        assert warnings[0].related_ids == ("X-RS20251230-001",)
        assert warnings[1].severity == WarningSeverity.CRITICAL

    def test_low_potency_coverage(self):
        tests = [
            RecordedTest("T-RS20251230-001", S1, has_potency_check=True),
            RecordedTest("T-RS20251230-002", S1),
            RecordedTest("T-RS20251230-003", S1),
        ]
        warnings = compute_health_warnings([], [make_assumption(calculation=FULL_CALCULATION)], [], [], tests)
        assert codes(warnings) == ["LOW_POTENCY_COVERAGE"]
        assert warnings[0].related_ids == ("T-RS20251230-002", "T-RS20251230-003")

    def test_half_potency_coverage_is_enough(self):
        tests = [RecordedTest("T-RS20251230-001", S1, has_potency_check=True), RecordedTest("T-RS20251230-002", S1)]
        assert compute_health_warnings([], [make_assumption(calculation=FULL_CALCULATION)], [], [], tests) == ()

    def test_slate_warnings(self):
        scale = [make_assumption(calculation=FULL_CALCULATION)]
        assert codes(compute_health_warnings(make_original(1), scale, [], [], [])) == []
        assert codes(compute_health_warnings(make_original(2), scale, [], [], [])) == ["NO_THIRD_ALTERNATIVE"]
        assert codes(compute_health_warnings(make_original(3), scale, [], [], [])) == [
            "NO_THIRD_ALTERNATIVE", "NO_KILLS",
        ]

        slate = make_original(2) + [HypothesisRecord("H-RS20251230-009", S1, state=HypothesisState.KILLED)]
        assert codes(compute_health_warnings(slate, scale, [], [], [])) == ["NO_THIRD_ALTERNATIVE"]


# =============================================================================
# TIMELINE TESTS
# =============================================================================

class TestTimeline:

    def make_timeline(self, program=None, limit=20):
        tests = [RecordedTest("T-RS20251230-001", S1, Stage.COMPLETED, True, 9.0, T4)]
        return build_timeline(
            program or make_program(), make_hypotheses()[:3], [], [], [], tests, limit,
        )

    def test_chronological(self):
        events = self.make_timeline()
        timestamps = [e.timestamp for e in events]
        assert timestamps == sorted(timestamps)
        assert events[0].event_type == EventType.HYPOTHESIS_PROPOSED
        assert events[-1].event_type == EventType.TEST_EXECUTED
        assert len(events) == 7

    def test_session_started_at_first_event(self):
        started = [e for e in self.make_timeline() if e.event_type == EventType.SESSION_STARTED]
        assert [(e.session_id, e.timestamp) for e in started] == [(S1, T0), (S2, T2)]

    def test_limit_keeps_most_recent(self):
        events = self.make_timeline(limit=3)
        assert [e.event_type for e in events] == [
            EventType.SESSION_STARTED,
            EventType.HYPOTHESIS_KILLED,
            EventType.TEST_EXECUTED,
        ]

    def test_non_positive_limit(self):
        assert self.make_timeline(limit=0) == ()

    def test_untimed_entities_skipped(self):
        events = build_timeline(make_program(), make_original(2), [], [], [], [], 20)
        assert events == ()

    def test_program_status_change(self):
        program = complete_program(make_program(), summary="Mechanism settled", now=T5)
        events = self.make_timeline(program=program)
        assert events[-1].event_type == EventType.PROGRAM_STATUS_CHANGED
        assert events[-1].entity_id == "RP-CELL-FATE-001"
        assert events[-1].timestamp == T5

    def test_registry_events(self):
        assumption = falsify_assumption(make_assumption(), now=T3)
        anomaly = resolve_anomaly(make_anomaly(), "H-RS20251230-002", now=T4)
        critique = address_critique(make_critique(), "Added a control arm to the design", now=T5)
        events = build_timeline(make_program(), [], [assumption], [anomaly], [critique], [], 20)
        kinds = [e.event_type for e in events]
        assert EventType.ASSUMPTION_FALSIFIED in kinds
        assert EventType.ANOMALY_RESOLVED in kinds
        assert kinds[-1] == EventType.CRITIQUE_ADDRESSED
        assert events[-1].description == "Critique C-RS20251230-001 addressed"


# =============================================================================
# DASHBOARD TESTS
# =============================================================================

class TestProgramDashboard:

    def test_filters_to_program_sessions(self):
        dashboard = compute_program_dashboard(
            make_program(),
            hypotheses=make_hypotheses(),
            anomalies=[make_anomaly(), make_anomaly("X-RS20260105-001", session_id=OUTSIDER)],
            generated_at=T5,
        )
        assert dashboard.program_id == "RP-CELL-FATE-001"
        assert dashboard.generated_at == T5
        assert dashboard.hypothesis_funnel.total == 3
        assert dashboard.registry_health["anomalies"].total == 1
        assert all(e.session_id != OUTSIDER for e in dashboard.recent_events)

    def test_registry_health(self):
        dashboard = compute_program_dashboard(
            make_program(),
            hypotheses=make_hypotheses(),
            assumptions=[make_assumption(calculation=FULL_CALCULATION)],
            critiques=[make_critique()],
            generated_at=T5,
        )
        health = dashboard.registry_health
        assert set(health) == {"hypotheses", "assumptions", "anomalies", "critiques"}
        assert health["hypotheses"].by_status == {"killed": 1, "active": 1, "proposed": 1}
        assert health["hypotheses"].metrics["killed"] == 1
        assert health["assumptions"].metrics["maxScaleRigor"] == 3
        assert health["critiques"].metrics["unaddressedSerious"] == 1
        assert codes(dashboard.warnings) == ["UNRESOLVED_SERIOUS_CRITIQUES"]

    def test_empty_program(self):
        dashboard = compute_program_dashboard(make_program(sessions=()), hypotheses=make_hypotheses())
        assert dashboard.hypothesis_funnel.total == 0
        assert dashboard.recent_events == ()
        assert codes(dashboard.warnings) == ["NO_SCALE_PHYSICS"]

    def test_event_limit(self):
        dashboard = compute_program_dashboard(make_program(), hypotheses=make_hypotheses(), event_limit=2)
        assert len(dashboard.recent_events) == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
