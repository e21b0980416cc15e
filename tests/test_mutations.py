"""Tests for profile updater functions."""

from datetime import datetime

import pytest

from adaptive_learning_hub.generation.schemas import (
    AssessmentAnalysis,
    PersonaDraft,
    PersonaUpdate,
    PlanTaskDraft,
    WordCard,
)
from adaptive_learning_hub.models.profile import QuizResult, UserLevel, default_profile
from adaptive_learning_hub.sync import mutations


@pytest.fixture
def profile():
    return default_profile("alice")


class TestQuizAverage:
    def test_empty_history(self):
        assert mutations.quiz_average([]) == 0

    def test_rounds_half_up(self):
        history = [
            QuizResult(topic="a", score=1, total=8),
            QuizResult(topic="b", score=0, total=1),
        ]
        # (0.125 + 0) / 2 = 6.25% -> 6
        assert mutations.quiz_average(history) == 6
        history.append(QuizResult(topic="c", score=1, total=1))
        # (0.125 + 0 + 1) / 3 = 37.5% -> 38
        assert mutations.quiz_average(history) == 38


class TestRecordQuizResult:
    def test_three_of_five(self, profile):
        mutations.record_quiz_result(profile, "Space", 3, 5)

        assert len(profile.quiz_history) == 1
        entry = profile.quiz_history[0]
        assert (entry.topic, entry.score, entry.total) == ("Space", 3, 5)
        assert profile.stats.quizzes_completed == 1
        assert profile.stats.quiz_average_score == 60
        assert profile.profile.persona.interests == ["Space"]

    def test_average_across_history(self, profile):
        mutations.record_quiz_result(profile, "Space", 3, 5)
        mutations.record_quiz_result(profile, "Space", 5, 5)

        assert profile.stats.quizzes_completed == 2
        assert profile.stats.quiz_average_score == 80
        assert profile.profile.persona.interests == ["Space"]

    def test_interest_can_be_skipped(self, profile):
        mutations.record_quiz_result(profile, "Contextual reading", 2, 3, add_interest=False)
        assert profile.profile.persona.interests == []


class TestVocabulary:
    def test_add_learned_word_once(self, profile):
        card = WordCard(word="Ubiquitous", definition="everywhere", example="Phones are ubiquitous.")

        mutations.add_learned_word(profile, card)
        mutations.add_learned_word(profile, card.model_copy(update={"word": "ubiquitous"}))

        assert [v.word for v in profile.vocabulary] == ["Ubiquitous"]
        assert profile.stats.words_learned == 1

    def test_suggested_queue_is_fifo(self, profile):
        cards = [WordCard(word=w, definition="d", example="e") for w in ("one", "two")]
        mutations.queue_suggested_words(profile, cards)
        mutations.drop_first_suggested(profile)

        assert [v.word for v in profile.suggested_vocabulary] == ["two"]

    def test_remove_suggested_by_value(self, profile):
        cards = [WordCard(word=w, definition="d", example="e") for w in ("one", "two", "three")]
        mutations.queue_suggested_words(profile, cards)
        mutations.remove_suggested_word(profile, "two")

        assert [v.word for v in profile.suggested_vocabulary] == ["one", "three"]


class TestGrammarDrill:
    def test_accumulates(self, profile):
        mutations.apply_grammar_drill(profile, 3, 2)
        mutations.apply_grammar_drill(profile, 2, 2)

        ability = profile.stats.learning_ability
        assert ability.total_mistakes == 5
        assert ability.corrected_mistakes == 4

    def test_corrected_cannot_exceed_attempted(self, profile):
        with pytest.raises(ValueError):
            mutations.apply_grammar_drill(profile, 1, 2)


class TestAssessmentAndCoaching:
    def test_record_assessment_sets_level(self, profile):
        analysis = AssessmentAnalysis(
            level=UserLevel.ADVANCED,
            strengths=["reading"],
            weaknesses=["articles"],
            recommendations=["Read more."],
        )
        mutations.record_assessment(profile, analysis)

        assert profile.profile.level == UserLevel.ADVANCED
        assert profile.assessment_history[-1].weaknesses == ["articles"]

    def test_persona_update_replaces_recommendations(self, profile):
        update = PersonaUpdate(
            persona=PersonaDraft(interests=["space"], summary="Loves astronomy."),
            recommendations=["Take a quiz on planets."],
        )
        mutations.apply_persona_update(profile, update)

        assert profile.profile.persona.summary == "Loves astronomy."
        assert profile.recommendations == ["Take a quiz on planets."]

    def test_learning_plan_complete_task(self, profile):
        drafts = [
            PlanTaskDraft(type="quiz", title="Planets", description="Quiz about planets"),
            PlanTaskDraft(type="spelling", title="orbit", description="a curved path"),
        ]
        mutations.replace_learning_plan(profile, drafts)
        task_id = profile.learning_plan[1].id
        mutations.complete_plan_task(profile, task_id)

        assert [t.completed for t in profile.learning_plan] == [False, True]
        assert len({t.id for t in profile.learning_plan}) == 2


class TestRecordLogin:
    def test_same_day_keeps_streak(self, profile):
        mutations.record_login(profile, datetime(2026, 3, 1, 8))
        mutations.record_login(profile, datetime(2026, 3, 1, 22))
        assert profile.profile.learning_streak == 1

    def test_gap_resets_streak(self, profile):
        mutations.record_login(profile, datetime(2026, 3, 1))
        mutations.record_login(profile, datetime(2026, 3, 2))
        mutations.record_login(profile, datetime(2026, 3, 5))
        assert profile.profile.learning_streak == 1
        assert profile.profile.last_login == datetime(2026, 3, 5)
