"""Unit tests for completeness scoring and the stop-condition evaluator."""

import pytest

from clinical_core.extraction.completeness import (
    MAX_FOLLOW_UP_QUESTIONS,
    StopAction,
    confirmation_prompt,
    evaluate_stop_condition,
    generate_follow_up_questions,
    is_compliant,
    score,
    score_breakdown,
)
from clinical_core.extraction.models import ExtractionRecord
from tests.fakes.records import chest_pain_record, make_record


class TestScore:
    def test_empty_record_scores_zero(self):
        assert score(ExtractionRecord()) == 0

    def test_fully_populated_record_scores_hundred(self):
        record = chest_pain_record(
            pain=7,
            pain_characteristics=["sharp"],
            aggravating=["exertion"],
        )
        record.symptom_characteristics.relieving_factors = ["rest"]
        record.symptom_characteristics.temporal_pattern = "intermittent"

        assert score(record) == 100

    def test_weights(self):
        breakdown = score_breakdown(chest_pain_record())

        assert breakdown.demographic_score == 40
        assert breakdown.clinical_score == 30
        assert breakdown.context_score == 5
        assert breakdown.total_score == 75

    def test_partial_context_rounds(self):
        # 4 of 6 indicators -> 20 points
        record = make_record(duration="3 days", pain=5, pain_characteristics=["dull"], aggravating=["walking"])
        assert score(record) == 20

    def test_score_is_deterministic(self):
        record = chest_pain_record(pain=4)
        assert {score(record) for _ in range(5)} == {80}

    def test_empty_symptom_list_does_not_count(self):
        assert score(make_record(symptoms=[])) == 0


class TestCompliance:
    @pytest.mark.parametrize("overrides, expected", [
        ({}, True),
        ({"age": "unknown"}, False),
        ({"gender": "unknown"}, False),
        ({"complaint": "unknown"}, False),
        ({"complaint": "   "}, False),
    ])
    def test_compliance_requires_three_fields(self, overrides, expected):
        assert is_compliant(chest_pain_record(**overrides)) is expected

    def test_zero_age_is_known(self):
        assert is_compliant(chest_pain_record(age=0)) is True


class TestStopCondition:
    def test_max_iterations_means_manual_review(self):
        """Unknown age/gender/complaint after the last iteration goes to manual review."""
        record = make_record()

        decision = evaluate_stop_condition(record, iteration=5, max_iterations=5)

        assert decision.action == StopAction.MANUAL_REVIEW
        assert "Maximum iterations" in decision.reason

    def test_max_iterations_wins_over_ready(self):
        record = chest_pain_record(pain=7)
        decision = evaluate_stop_condition(record, iteration=5, max_iterations=5)
        assert decision.action == StopAction.MANUAL_REVIEW

    def test_ready_and_compliant_proceeds(self):
        decision = evaluate_stop_condition(chest_pain_record(pain=7), iteration=1)

        assert decision.action == StopAction.PROCEED_TO_NEXT_STAGE
        assert decision.score == 80
        assert decision.compliant is True

    def test_critical_issue_blocks_escalation(self):
        record = chest_pain_record(pain=7, contradictions=["pain location inconsistent"])
        decision = evaluate_stop_condition(record, iteration=1)
        assert decision.action == StopAction.USER_CONFIRMATION

    def test_blocking_issue_holds_back_ready_record(self):
        decision = evaluate_stop_condition(chest_pain_record(pain=7), iteration=1, blocking_issue=True)
        assert decision.action == StopAction.USER_CONFIRMATION

    def test_blocking_issue_false_keeps_record_issues(self):
        record = chest_pain_record(pain=7, contradictions=["pain location inconsistent"])
        decision = evaluate_stop_condition(record, iteration=1, blocking_issue=False)
        assert decision.action == StopAction.USER_CONFIRMATION

    def test_borderline_compliant_asks_confirmation(self):
        decision = evaluate_stop_condition(chest_pain_record(), iteration=1)

        assert decision.action == StopAction.USER_CONFIRMATION
        assert decision.score == 75

    def test_missing_compliance_fields_continue(self):
        record = chest_pain_record(gender="unknown")

        decision = evaluate_stop_condition(record, iteration=1)

        assert decision.action == StopAction.CONTINUE_EXTRACTION
        assert "patient_gender" in decision.reason

    def test_low_score_compliant_continues(self):
        record = make_record(age=42, gender="male", complaint="chest pain")

        decision = evaluate_stop_condition(record, iteration=1)

        assert decision.action == StopAction.CONTINUE_EXTRACTION
        assert "below threshold" in decision.reason

    def test_configurable_thresholds(self):
        decision = evaluate_stop_condition(chest_pain_record(), iteration=1, ready_threshold=70)
        assert decision.action == StopAction.PROCEED_TO_NEXT_STAGE


class TestFollowUps:
    def test_compliance_questions_first_and_capped(self):
        questions = generate_follow_up_questions(ExtractionRecord())

        assert len(questions) == MAX_FOLLOW_UP_QUESTIONS
        assert questions[0] == "How old is the patient?"
        assert "male or female" in questions[1]

    def test_no_questions_when_complete(self):
        record = chest_pain_record(pain=7)
        assert generate_follow_up_questions(record) == []

    def test_confirmation_prompt_summarises_record(self):
        prompt = confirmation_prompt(chest_pain_record())
        assert "42-year-old male" in prompt
        assert "chest pain" in prompt
        assert "75%" in prompt
