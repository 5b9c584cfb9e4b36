"""
Tests for Phase 4: Adversarial Critiques.

These tests verify:
1. targetId rules per targetType (required + patterned, or absent)
2. Hard minimums on attack and evidence
3. The status state machine and idempotent reopen
4. Kill-justification and third-alternative evaluation
"""

import pytest
from datetime import datetime, timezone

from labbook.domain import IllegalTransitionError
from labbook.validation import ValidationError
from labbook.registry.critique import (
    Critique,
    CritiqueAction,
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


SESSION = "RS20251230"
T0 = datetime(2025, 12, 30, 9, 0, tzinfo=timezone.utc)
T1 = datetime(2025, 12, 30, 16, 0, tzinfo=timezone.utc)

ATTACK = "The knockdown efficiency was never measured, so a null result means nothing"
EVIDENCE = "Western blot of the target protein after knockdown"


# =============================================================================
# TEST FIXTURES
# =============================================================================

def make_critique(id: str = "C-RS20251230-001", **overrides) -> Critique:
    fields = dict(
        hypothesis_id="H-RS20251230-001",
        attack=ATTACK,
        evidence_to_confirm=EVIDENCE,
        session_id=SESSION,
        now=T0,
    )
    fields.update(overrides)
    return create_hypothesis_critique(id, **fields)


def make_alternative(**overrides) -> ProposedAlternative:
    fields = dict(
        description="Fate is set by cell cycle phase at the time of signalling",
        testable=True,
        mechanism="Cyclin levels gate receptor competence via phosphorylation",
        predictions=["Synchronized cells respond uniformly"],
    )
    fields.update(overrides)
    return ProposedAlternative(**fields)


def raw_critique(**overrides) -> dict:
    record = make_critique().to_dict()
    record.update(overrides)
    return record


# =============================================================================
# TARGET RULES
# =============================================================================

class TestTargetRules:

    def test_entity_targets_require_matching_id(self):
        assert create_test_critique("C-RS20251230-002", "T-RS20251230-001", ATTACK, EVIDENCE, SESSION).target_id
        assert create_assumption_critique("C-RS20251230-003", "A4", ATTACK, EVIDENCE, SESSION).target_id == "A4"

    @pytest.mark.parametrize("target_type, target_id", [
        ("hypothesis", None),
        ("hypothesis", "T-RS20251230-001"),
        ("test", "H-RS20251230-001"),
        ("assumption", "assumption one"),
    ])
    def test_missing_or_wrong_target_id_rejected(self, target_type, target_id):
        record = raw_critique(targetType=target_type)
        record.pop("targetId")
        if target_id is not None:
            record["targetId"] = target_id

        result = validate_critique(record)
        assert not result.valid
        assert [e.path for e in result.errors] == ["targetId"]
        assert "is required and must match" in result.errors[0].message

    @pytest.mark.parametrize("target_type", ["framing", "methodology"])
    def test_framing_targets_must_not_have_id(self, target_type):
        result = validate_critique(raw_critique(targetType=target_type))
        assert not result.valid
        assert "must be absent" in result.errors[0].message

        record = raw_critique(targetType=target_type)
        record.pop("targetId")
        assert validate_critique(record).valid

    def test_framing_and_methodology_factories(self):
        framing = create_framing_critique("C-RS20251230-004", ATTACK, EVIDENCE, SESSION)
        method = create_methodology_critique("C-RS20251230-005", ATTACK, EVIDENCE, SESSION)
        assert framing.target_id is None
        assert method.target_type == CritiqueTargetType.METHODOLOGY


class TestMinimums:

    def test_attack_minimum(self):
        with pytest.raises(ValidationError, match="attack: Must be at least 20 characters"):
            make_critique(attack="This is wrong")

    def test_evidence_minimum(self):
        with pytest.raises(ValidationError, match="evidenceToConfirm"):
            make_critique(evidence_to_confirm="A blot")

    def test_alternative_description_minimum(self):
        with pytest.raises(ValidationError, match="proposedAlternative.description"):
            make_critique(proposed_alternative=ProposedAlternative(description="other"))


# =============================================================================
# STATE MACHINE TESTS
# =============================================================================

class TestCritiqueTransitions:

    def test_address(self):
        c = address_critique(
            make_critique(),
            "Added a knockdown efficiency check to the protocol",
            action_taken=CritiqueAction.NEW_TEST,
            new_test_id="T-RS20251230-005",
            now=T1,
        )
        assert c.status == CritiqueStatus.ADDRESSED
        assert c.response.action_taken == CritiqueAction.NEW_TEST
        assert c.response.responded_at == T1
        assert c.updated_at == T1

    def test_address_requires_real_response(self):
        with pytest.raises(ValidationError, match="response.text"):
            address_critique(make_critique(), "ok")

    def test_dismiss_sets_reason(self):
        c = dismiss_critique(make_critique(), "Efficiency was measured in the pilot run")
        assert c.status == CritiqueStatus.DISMISSED
        assert c.dismissal_reason == "Efficiency was measured in the pilot run"
        assert c.response.text == c.dismissal_reason

    def test_accept(self):
        c = accept_critique(make_critique(), CritiqueAction.KILLED, "Hypothesis killed on review")
        assert c.status == CritiqueStatus.ACCEPTED
        assert c.response.action_taken == CritiqueAction.KILLED

    def test_dismiss_non_active_names_status(self):
        c = dismiss_critique(make_critique(), "Efficiency was measured in the pilot run")
        with pytest.raises(IllegalTransitionError, match="current status is dismissed") as exc_info:
            dismiss_critique(c, "Still not convinced by this one")
        assert exc_info.value.entity_id == "C-RS20251230-001"
        assert exc_info.value.current_status == "dismissed"

    @pytest.mark.parametrize("close", [
        lambda c: address_critique(c, "Added a control arm to the design"),
        lambda c: accept_critique(c, CritiqueAction.MODIFIED, "Reworded the hypothesis"),
    ])
    def test_closed_to_closed_illegal(self, close):
        closed = close(make_critique())
        with pytest.raises(IllegalTransitionError):
            accept_critique(closed, CritiqueAction.NONE, "Accepting after the fact")
        with pytest.raises(IllegalTransitionError):
            address_critique(closed, "A second response to the same critique")

    def test_reopen_active_is_noop(self):
        c = make_critique()
        assert reopen_critique(c) is c
        assert reopen_critique(c, reason="again") == c

    def test_reopen_closed(self):
        closed = address_critique(make_critique(), "Added a control arm to the design")
        reopened = reopen_critique(closed, reason="Control arm was underpowered", now=T1)
        assert reopened.status == CritiqueStatus.ACTIVE
        assert reopened.response == closed.response
        assert "Reopened: Control arm was underpowered" in reopened.notes
        assert reopened.updated_at == T1

        # and it can be closed again
        assert dismiss_critique(reopened, "Power analysis shows n is enough").status == CritiqueStatus.DISMISSED


# =============================================================================
# EVALUATION TESTS
# =============================================================================

class TestKillJustification:

    def test_brief_critique(self):
        result = evaluate_kill_justification(make_critique(
            attack="Control missing for this experiment",
            evidence_to_confirm="Run control",
        ))
        assert result.score == 1
        assert len(result.issues) == 2
        assert result.issues[0].startswith("Attack is brief")

    def test_thorough_critique(self):
        c = make_critique(attack=ATTACK * 2, evidence_to_confirm=EVIDENCE + " and qPCR of the transcript")
        assert evaluate_kill_justification(c).score == 2

    def test_thorough_with_anchors(self):
        c = make_critique(
            attack=ATTACK * 2,
            evidence_to_confirm=EVIDENCE + " and qPCR of the transcript",
            anchors=["§40-42"],
        )
        assert evaluate_kill_justification(c).score == 3


class TestThirdAlternative:

    def test_levels(self):
        assert evaluate_third_alternative(make_critique()).score == 0
        assert evaluate_third_alternative(make_critique(
            proposed_alternative=make_alternative(testable=False),
        )).score == 1
        assert evaluate_third_alternative(make_critique(
            proposed_alternative=make_alternative(mechanism=None),
        )).score == 2
        assert evaluate_third_alternative(make_critique(
            proposed_alternative=make_alternative(),
        )).score == 3

    @pytest.mark.parametrize("mechanism", ["", "   ", "\n\t"])
    def test_blank_mechanism_is_missing(self, mechanism):
        assessment = evaluate_third_alternative(make_critique(
            proposed_alternative=make_alternative(mechanism=mechanism),
        ))
        assert assessment.score == 2

    def test_skepticism_explanation(self):
        assert "Pure skepticism" in evaluate_third_alternative(make_critique()).explanation


class TestQueries:

    def test_requires_response(self):
        assert requires_response(make_critique(severity=CritiqueSeverity.SERIOUS))
        assert not requires_response(make_critique(severity=CritiqueSeverity.MINOR))
        serious = make_critique(severity=CritiqueSeverity.CRITICAL)
        assert not requires_response(address_critique(serious, "Added a control arm to the design"))

    def test_count_unaddressed(self):
        critiques = [
            make_critique("C-RS20251230-001"),
            make_critique("C-RS20251230-002", hypothesis_id="H-RS20251230-002"),
            address_critique(make_critique("C-RS20251230-003"), "Added a control arm to the design"),
            create_framing_critique("C-RS20251230-004", ATTACK, EVIDENCE, SESSION),
        ]
        assert count_unaddressed_critiques(critiques, CritiqueTargetType.HYPOTHESIS) == 2
        assert count_unaddressed_critiques(critiques, CritiqueTargetType.HYPOTHESIS, "H-RS20251230-001") == 1
        assert count_unaddressed_critiques(critiques, CritiqueTargetType.FRAMING) == 1


# =============================================================================
# PERSISTENCE TESTS
# =============================================================================

class TestCritiquePersistence:

    def test_round_trip(self):
        c = address_critique(
            make_critique(
                proposed_alternative=make_alternative(),
                severity=CritiqueSeverity.SERIOUS,
                anchors=["§40"],
                raised_by="GPT",
            ),
            "Added a knockdown efficiency check to the protocol",
            action_taken=CritiqueAction.NEW_TEST,
            new_test_id="T-RS20251230-005",
            now=T1,
        )
        record = c.to_dict()
        assert record["response"]["actionTaken"] == "new_test"

        result = validate_critique(record)
        assert result.valid, result.errors
        assert result.data == c

    def test_generic_factory(self):
        c = create_critique(
            "C-RS20251230-009",
            CritiqueTargetType.TEST,
            ATTACK,
            EVIDENCE,
            SESSION,
            target_id="T3",
        )
        assert critique_from_dict(c.to_dict()) == c


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
