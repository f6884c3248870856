"""Unit tests for intake normalization and completeness rules."""
import pytest

from models.schema import IntakeState
from workflow.intake import (INTAKE_QUESTIONS, REQUIRED_INTAKE_FIELDS,
                             create_empty_runtime_state, intake_progress,
                             is_intake_complete, merge_intake,
                             missing_fields_to_questions,
                             missing_intake_fields, normalize_intake,
                             normalize_runtime_state, normalize_string_list)


class TestNormalizeStringList:
    """Tests for normalize_string_list."""

    def test_trims_and_drops_empty(self):
        assert normalize_string_list(["  a  ", "", "   ", "b"]) == ["a", "b"]

    def test_dedupes_case_insensitively_keeping_first(self):
        result = normalize_string_list(["Budget", "budget", "BUDGET ", "Weight"])
        assert result == ["Budget", "Weight"]

    def test_caps_length(self):
        values = [f"item {i}" for i in range(20)]
        assert len(normalize_string_list(values)) == 14
        assert normalize_string_list(values, limit=3) == ["item 0", "item 1", "item 2"]

    def test_skips_non_strings(self):
        assert normalize_string_list(["a", None, 3, "b"]) == ["a", "b"]


class TestNormalizeIntake:
    """Tests for normalize_intake."""

    def test_blank_fields_become_none(self):
        intake = normalize_intake(IntakeState(goal="  ", timeline=" soon "))
        assert intake.goal is None
        assert intake.timeline == "soon"

    def test_fallback_goal_used_when_goal_missing(self):
        intake = normalize_intake(IntakeState(), fallback_goal=" Buy a car ")
        assert intake.goal == "Buy a car"

    def test_fallback_goal_ignored_when_goal_present(self):
        intake = normalize_intake(IntakeState(goal="Lease a car"), fallback_goal="Buy")
        assert intake.goal == "Lease a car"

    def test_none_yields_empty_intake(self):
        intake = normalize_intake(None)
        assert intake.goal is None
        assert intake.constraints == []

    def test_does_not_modify_input(self):
        original = IntakeState(goal=" x goal ", constraints=["a", "A"])
        normalize_intake(original)
        assert original.goal == " x goal "
        assert original.constraints == ["a", "A"]


class TestMergeIntake:
    """Tests for merge_intake."""

    def test_constraints_are_additive(self):
        current = IntakeState(constraints=["Budget under $1500"])
        patch = IntakeState(constraints=["budget under $1500", "Must run Linux"])
        merged = merge_intake(current, patch)
        assert merged.constraints == ["Budget under $1500", "Must run Linux"]

    def test_scalar_overrides_only_when_non_empty(self):
        current = IntakeState(goal="Pick a laptop", timeline="two weeks")
        patch = IntakeState(goal="  ", timeline="one month", risk_tolerance="low")
        merged = merge_intake(current, patch)
        assert merged.goal == "Pick a laptop"
        assert merged.timeline == "one month"
        assert merged.risk_tolerance == "low"

    def test_empty_patch_keeps_current(self, complete_intake):
        merged = merge_intake(complete_intake, IntakeState())
        assert merged == normalize_intake(complete_intake)

    def test_successive_merges_match_single_normalization(self):
        current = IntakeState(
            goal="Pick a laptop", constraints=[f"current {i}" for i in range(8)]
        )
        first = IntakeState(
            timeline="two weeks",
            constraints=["CURRENT 0"] + [f"first {i}" for i in range(7)],
        )
        second = IntakeState(
            timeline="one month", constraints=[f"second {i}" for i in range(4)]
        )

        merged = merge_intake(merge_intake(current, first), second)

        expected = normalize_intake(
            IntakeState(
                goal="Pick a laptop",
                timeline="one month",
                constraints=current.constraints + first.constraints + second.constraints,
            )
        )
        assert merged == expected
        assert len(merged.constraints) == 14
        assert merged.constraints[-1] == "first 5"


class TestCompleteness:
    """Tests for missing fields, progress and completeness."""

    def test_empty_intake_misses_everything_in_order(self):
        assert missing_intake_fields(IntakeState()) == list(REQUIRED_INTAKE_FIELDS)
        assert intake_progress(IntakeState()) == 0.0
        assert not is_intake_complete(IntakeState())

    def test_single_character_counts_as_missing(self):
        intake = IntakeState(goal="x")
        assert "goal" in missing_intake_fields(intake)

    @pytest.mark.parametrize("field", REQUIRED_INTAKE_FIELDS)
    def test_any_empty_required_field_blocks_completion(self, complete_intake, field):
        empty = [] if field == "constraints" else ""
        intake = complete_intake.model_copy(update={field: empty})

        assert not is_intake_complete(intake)
        assert missing_intake_fields(intake) == [field]

    def test_must_avoid_is_not_required(self, complete_intake):
        assert complete_intake.must_avoid is None
        assert is_intake_complete(complete_intake)
        assert intake_progress(complete_intake) == 1.0

    def test_partial_progress(self):
        intake = IntakeState(goal="Pick a laptop", timeline="two weeks", constraints=["cheap"])
        assert intake_progress(intake) == pytest.approx(0.5)

    def test_questions_follow_canonical_order_and_cap(self):
        questions = missing_fields_to_questions(
            ["success_criteria", "goal", "timeline", "constraints", "risk_tolerance"]
        )
        assert questions == [
            INTAKE_QUESTIONS["goal"],
            INTAKE_QUESTIONS["constraints"],
            INTAKE_QUESTIONS["timeline"],
            INTAKE_QUESTIONS["risk_tolerance"],
        ]

    def test_no_questions_when_nothing_missing(self):
        assert missing_fields_to_questions([]) == []


class TestRuntimeState:
    """Tests for runtime state creation and normalization."""

    def test_empty_state_starts_in_intake(self):
        state = create_empty_runtime_state("Should I switch jobs?")
        assert state.stage == "intake"
        assert state.intake.goal == "Should I switch jobs?"
        assert state.recommendation is None

    def test_short_goal_is_dropped(self):
        assert create_empty_runtime_state("hi").intake.goal is None
        assert create_empty_runtime_state("help").intake.goal is None

    def test_none_raw_creates_empty_state(self):
        state = normalize_runtime_state(None, "Choose a new phone")
        assert state.stage == "intake"
        assert state.intake.goal == "Choose a new phone"

    def test_unknown_stage_becomes_intake(self):
        state = normalize_runtime_state({"stage": "brainstorm"})
        assert state.stage == "intake"

    def test_partial_recommendation_gets_defaults(self):
        raw = {
            "stage": "recommendation",
            "recommendation": {"recommended_option": "  ", "confidence": "very high"},
        }
        state = normalize_runtime_state(raw)
        assert state.stage == "recommendation"
        assert state.recommendation.recommended_option == "Unknown"
        assert state.recommendation.confidence == "medium"
        assert state.recommendation.rationale == "No rationale provided."
        assert state.recommendation.updated_at

    def test_intake_and_research_are_cleaned(self):
        raw = {
            "stage": "research",
            "intake": {"goal": " Pick a laptop ", "constraints": ["a", "A", " "]},
            "research": {"queries": ["q1", "q1", ""], "last_research_at": " "},
        }
        state = normalize_runtime_state(raw)
        assert state.intake.goal == "Pick a laptop"
        assert state.intake.constraints == ["a"]
        assert state.research.queries == ["q1"]
        assert state.research.last_research_at is None
