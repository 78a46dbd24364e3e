"""
Unit Tests for Progress Aggregator

Tests average scoring, smoothing, feedback list merging and the
swallowed-persistence-failure behaviour on completion.
"""

import pytest

from socratic_assessment.errors import DatastoreError
from socratic_assessment.proficiency_manager import ProficiencyManager, ProficiencyRecord
from socratic_assessment.progress_aggregator import (
    ProgressAggregator,
    average_score,
    merge_feedback_list,
    merge_proficiency,
    smooth,
)
from socratic_assessment.session_reviewer import SessionReview
from socratic_assessment.session_state import AnswerRecord, AssessmentSession

from conftest import ARTICLE_ID, USER_ID


def _completed_session(scores, path):
    session = AssessmentSession(id="s1", article_id=ARTICLE_ID, user_id=USER_ID)
    session.asked_questions = [f"Q{i}" for i in range(1, len(scores) + 1)]
    for i, (score, difficulty) in enumerate(zip(scores, path), 1):
        session.set_answer(i, AnswerRecord("a", score, score > 0, difficulty))
    session.is_completed = True
    return session


def _review(**overrides):
    values = dict(
        comprehension_score=80.0,
        critical_thinking_score=60.0,
        quality_score=70.0,
        strengths=["Clear structure"],
        weaknesses=["Few citations"],
        recommendations=["Quote the results section"],
        summary_text="Solid work.",
    )
    values.update(overrides)
    return SessionReview(**values)


class TestAverageScore:

    def test_scenario_average(self):
        assert average_score([80, 0, 50, 0, 90]) == 44.0

    def test_missing_slots_count_as_zero(self):
        assert average_score([100, 100]) == 40.0
        assert average_score([]) == 0.0

    def test_two_decimal_half_up_rounding(self):
        # 333 / 5 = 66.6 exactly; 1 / 5 = 0.2
        assert average_score([67, 67, 67, 66, 66]) == 66.6
        assert average_score([1, 0, 0, 0, 0]) == 0.2

    def test_non_numeric_scores_count_as_zero(self):
        assert average_score([None, "x", 50, float("nan"), 50]) == 20.0


class TestSmoothing:

    def test_first_value_taken_as_is(self):
        assert smooth(None, 75) == 75

    def test_weighted_update(self):
        assert smooth(50, 100) == pytest.approx(70.0)


class TestMergeFeedbackList:

    def test_incoming_first_and_deduplicated(self):
        merged = merge_feedback_list(["b", "c"], ["a", "B", "d"])
        assert merged == ["b", "c", "a", "d"]

    def test_capped_at_five_preferring_incoming(self):
        merged = merge_feedback_list(["n1", "n2", "n3", "n4"], ["o1", "o2", "o3"])
        assert merged == ["n1", "n2", "n3", "n4", "o1"]

    def test_blank_entries_dropped(self):
        assert merge_feedback_list(["", "  ", "x"], []) == ["x"]


class TestMergeProficiency:

    def test_creates_record_on_first_session(self):
        record = merge_proficiency(None, USER_ID, _review())
        assert record.comprehension_score == 80.0
        assert record.sessions_completed == 1
        assert record.strengths == ["Clear structure"]

    def test_smooths_existing_record(self):
        existing = ProficiencyRecord(
            user_id=USER_ID,
            comprehension_score=50.0,
            critical_thinking_score=50.0,
            quality_score=50.0,
            strengths=["Clear structure", "Good pacing"],
            sessions_completed=2,
        )
        record = merge_proficiency(existing, USER_ID, _review())

        assert record.comprehension_score == pytest.approx(62.0)
        assert record.critical_thinking_score == pytest.approx(54.0)
        assert record.quality_score == pytest.approx(58.0)
        assert record.strengths == ["Clear structure", "Good pacing"]
        assert record.sessions_completed == 3


class _BrokenProgressStore(ProficiencyManager):
    async def record_session_result(self, result):
        raise DatastoreError("Failed to record session result", details="insert failed")


class TestProgressAggregator:

    @pytest.mark.asyncio
    async def test_complete_session_persists_and_returns_summary(self):
        store = ProficiencyManager()
        session = _completed_session([80, 0, 50, 0, 90], [3, 4, 3, 4, 3])

        feedback = await ProgressAggregator().complete_session(session, _review(), store)

        assert feedback["averageScore"] == 44.0
        assert feedback["scores"] == [80, 0, 50, 0, 90]
        assert feedback["difficultyPath"] == [3, 4, 3, 4, 3]
        assert feedback["summaryText"] == "Session complete. Final average score: 44.0/100. Solid work."

        record = await store.get_proficiency(USER_ID)
        assert record.comprehension_score == 80.0
        assert len(store._in_memory_results) == 1
        assert store._in_memory_results[0].final_average_score == 44.0

    @pytest.mark.asyncio
    async def test_persistence_failure_is_swallowed(self):
        store = _BrokenProgressStore()
        session = _completed_session([100, 100, 100, 100, 100], [3, 4, 5, 5, 5])

        feedback = await ProgressAggregator().complete_session(session, _review(), store)

        assert feedback["averageScore"] == 100.0
        assert await store.get_proficiency(USER_ID) is None

    @pytest.mark.asyncio
    async def test_consecutive_sessions_accumulate(self):
        store = ProficiencyManager()
        aggregator = ProgressAggregator()
        session = _completed_session([50] * 5, [3] * 5)

        await aggregator.complete_session(session, _review(comprehension_score=50.0), store)
        await aggregator.complete_session(session, _review(comprehension_score=100.0), store)

        record = await store.get_proficiency(USER_ID)
        assert record.comprehension_score == pytest.approx(70.0)
        assert record.sessions_completed == 2

    @pytest.mark.asyncio
    async def test_user_lock_released_after_merge(self):
        aggregator = ProgressAggregator()
        session = _completed_session([50] * 5, [3] * 5)

        await aggregator.complete_session(session, _review(), ProficiencyManager())
        await aggregator.complete_session(session, _review(), _BrokenProgressStore())

        assert len(aggregator._user_locks) == 0
