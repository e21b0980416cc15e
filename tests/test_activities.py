"""Tests for the activity state machine and its four drills."""

import asyncio

import pytest

from adaptive_learning_hub.activities.assessment import AssessmentActivity
from adaptive_learning_hub.activities.machine import ActivityState, ScoringMode
from adaptive_learning_hub.activities.memory_cards import MemoryCardActivity
from adaptive_learning_hub.activities.quiz import QuizActivity
from adaptive_learning_hub.activities.spelling import SpellingActivity, mask_example
from adaptive_learning_hub.conversation.coach import Coach
from adaptive_learning_hub.generation.client import GenerationError
from adaptive_learning_hub.generation.schemas import (
    AssessmentAnalysis,
    Correction,
    MemoryCard,
    PersonaDraft,
    PersonaUpdate,
    WordCard,
)
from adaptive_learning_hub.models.profile import UserLevel
from adaptive_learning_hub.sync import mutations
from adaptive_learning_hub.sync.synchronizer import ProfileSynchronizer


def _count_mutations(sync):
    calls = []
    original = sync.mutate

    def counting(updater):
        calls.append(updater)
        return original(updater)

    sync.mutate = counting
    return calls


async def _answer_all(machine, answers):
    for value in answers:
        machine.answer(value)
        await machine.settle()


@pytest.fixture
def quiz(sync, generator, notifier):
    generator.persona_update.return_value = PersonaUpdate(
        persona=PersonaDraft(interests=["Space"], summary="Curious about space."),
        recommendations=["Try a quiz about planets."],
    )
    coach = Coach(sync, generator, notifier)
    return QuizActivity(sync, generator, notifier, feedback_seconds=0, coach=coach)


@pytest.fixture
def assessment(sync, generator, notifier):
    return AssessmentActivity(sync, generator, notifier, feedback_seconds=0)


class TestQuiz:
    async def test_three_of_five(self, quiz, sync, generator, questions):
        generator.quiz.return_value = questions(5)
        shown = []
        quiz.subscribe(lambda s: shown.append(s))
        calls = _count_mutations(sync)

        assert await quiz.start(topic="Space")
        await _answer_all(quiz, ["right", "wrong", "right", "other", "right"])

        assert quiz.state == ActivityState.RESULTS
        assert quiz.snapshot().result == {"topic": "Space", "score": 3, "total": 5}
        history = sync.profile.quiz_history
        assert [(q.topic, q.score, q.total) for q in history] == [("Space", 3, 5)]
        assert sync.profile.stats.quizzes_completed == 1
        assert sync.profile.stats.quiz_average_score == 60
        # one completion mutation, then the background persona refresh
        assert len(calls) == 2
        assert sync.profile.recommendations == ["Try a quiz about planets."]

        questions_shown = [s for s in shown if s.state == ActivityState.IN_PROGRESS and not s.answered]
        assert len(questions_shown) == 5

    async def test_empty_topic_rejected(self, quiz, generator, notifications):
        assert not await quiz.start(topic="   ")

        assert quiz.state == ActivityState.IDLE
        assert notifications[-1].type == "error"
        generator.quiz.assert_not_called()

    async def test_generation_error_returns_to_idle(self, quiz, generator, notifications):
        generator.quiz.side_effect = GenerationError("The AI returned an invalid quiz reply.")

        assert not await quiz.start(topic="Space")

        assert quiz.state == ActivityState.IDLE
        assert notifications[-1].message == "The AI returned an invalid quiz reply."

    async def test_answer_is_single_shot(self, sync, generator, notifier, questions):
        generator.quiz.return_value = questions(2)
        machine = QuizActivity(sync, generator, notifier, feedback_seconds=None)
        await machine.start(topic="Space")

        assert machine.answer("wrong") is False
        assert machine.answer("right") is None
        assert machine.session.answers == {0: "wrong"}

    @pytest.mark.parametrize("blank", ["", "   ", "\t\n"])
    async def test_blank_answer_is_ignored(self, sync, generator, notifier, questions, blank):
        generator.quiz.return_value = questions(2)
        machine = QuizActivity(sync, generator, notifier, feedback_seconds=None)
        await machine.start(topic="Space")

        assert machine.answer(blank) is None
        assert not machine.session.answered
        assert machine.answer("right") is True

    async def test_correct_answer_hidden_until_answered(self, sync, generator, notifier, questions):
        generator.quiz.return_value = questions(2)
        machine = QuizActivity(sync, generator, notifier, feedback_seconds=None)
        await machine.start(topic="Space")

        assert "correct_answer" not in machine.snapshot().item
        machine.answer("right")
        assert machine.snapshot().item["correct_answer"] == "right"

    async def test_stale_result_after_cancel_is_dropped(self, quiz, generator, questions):
        gate = asyncio.Event()

        async def slow_quiz(topic):
            await gate.wait()
            return questions(5)

        generator.quiz.side_effect = slow_quiz
        task = asyncio.create_task(quiz.start(topic="Space"))
        await asyncio.sleep(0)
        assert quiz.state == ActivityState.FETCHING

        quiz.cancel()
        gate.set()

        assert not await task
        assert quiz.state == ActivityState.IDLE
        assert quiz.session is None

    async def test_done_clears_session(self, quiz, generator, questions):
        generator.quiz.return_value = questions(1)
        await quiz.start(topic="Space")
        await _answer_all(quiz, ["right"])

        quiz.done()

        assert quiz.state == ActivityState.IDLE
        assert quiz.session is None

    async def test_requires_ready_profile(self, store, generator, notifier, notifications):
        machine = QuizActivity(ProfileSynchronizer(store, notifier), generator, notifier)

        assert not await machine.start(topic="Space")
        assert machine.state == ActivityState.IDLE
        assert notifications[-1].type == "error"


class TestAssessment:
    async def test_no_questions_returns_to_idle(self, assessment, generator, notifications):
        generator.assessment_questions.return_value = []

        assert not await assessment.start()

        assert assessment.state == ActivityState.IDLE
        assert notifications[-1].type == "error"

    async def test_general_assessment_is_analyzed(self, assessment, sync, generator, questions):
        generator.assessment_questions.return_value = questions(8)
        generator.analyze_assessment.return_value = AssessmentAnalysis(
            level=UserLevel.ADVANCED,
            strengths=["vocabulary"],
            weaknesses=["articles"],
            recommendations=["Read news articles."],
        )
        calls = _count_mutations(sync)

        await assessment.start()
        assert assessment.session.mode == ScoringMode.ANALYZED
        await _answer_all(assessment, ["right"] * 8)

        assert assessment.state == ActivityState.RESULTS
        assert sync.profile.profile.level == UserLevel.ADVANCED
        assert len(sync.profile.assessment_history) == 1
        assert len(calls) == 1
        assert assessment.snapshot().result["level"] == "Advanced"

    async def test_analysis_failure_keeps_answers(self, assessment, sync, generator, questions, notifications):
        generator.assessment_questions.return_value = questions(6)
        generator.analyze_assessment.side_effect = GenerationError("boom")

        await assessment.start()
        await _answer_all(assessment, ["right"] * 6)

        assert assessment.state == ActivityState.IN_PROGRESS
        assert len(assessment.session.answers) == 6
        assert notifications[-1].type == "error"
        assert sync.profile.assessment_history == []

        generator.analyze_assessment.side_effect = None
        generator.analyze_assessment.return_value = AssessmentAnalysis(
            level=UserLevel.INTERMEDIATE, strengths=[], weaknesses=[], recommendations=[]
        )
        await assessment.next()

        assert assessment.state == ActivityState.RESULTS
        assert len(sync.profile.assessment_history) == 1

    async def test_context_assessment_queues_vocabulary(
        self, assessment, sync, generator, questions, notifications
    ):
        generator.context_questions.return_value = questions(3)
        generator.context_vocabulary.return_value = [
            WordCard(word="orbit", definition="a curved path", example="The moon's orbit."),
            WordCard(word="crater", definition="a hole", example="A huge crater."),
        ]

        assert assessment.enter_context()
        assert await assessment.start(context="The moon orbits the Earth.")

        assert [v.word for v in sync.profile.suggested_vocabulary] == ["orbit", "crater"]
        assert any(n.type == "success" for n in notifications)
        assert assessment.session.mode == ScoringMode.LOCAL

        await _answer_all(assessment, ["right", "wrong", "right"])

        assert assessment.state == ActivityState.RESULTS
        entry = sync.profile.quiz_history[-1]
        assert (entry.topic, entry.score, entry.total) == ("Contextual reading", 2, 3)
        assert assessment.snapshot().result == {"contextual": True, "score": 2, "total": 3}

    async def test_context_failure_returns_to_context_entry(self, assessment, generator):
        generator.context_questions.return_value = []
        generator.context_vocabulary.return_value = []

        assessment.enter_context()
        assert not await assessment.start(context="Some text.")

        assert assessment.state == ActivityState.CONTEXT_ENTRY

    async def test_image_text_is_extracted(self, assessment, generator, questions):
        generator.extract_text.return_value = "A short story."
        generator.context_questions.return_value = questions(2)
        generator.context_vocabulary.return_value = []

        assessment.enter_context()
        assert await assessment.start(image=b"png-bytes", mime_type="image/png")

        generator.extract_text.assert_awaited_once_with(b"png-bytes", "image/png")
        generator.context_questions.assert_awaited_once()
        assert generator.context_questions.await_args.args[0] == "A short story."


class TestSpelling:
    @pytest.fixture
    async def spelling(self, sync, generator, notifier):
        sync.update_settings(spelling_auto_advance_seconds=0)
        return SpellingActivity(sync, generator, notifier)

    async def test_word_added_only_once(self, spelling, sync, generator):
        generator.spelling_word.return_value = WordCard(
            word="Orbit", definition="a curved path", example="The orbit of the moon."
        )

        await spelling.start()
        assert spelling.answer("  orbit ") is True
        await spelling.settle()

        # auto-advanced to the next word
        assert spelling.state == ActivityState.IN_PROGRESS
        assert spelling.answer("ORBIT") is True
        await spelling.settle()

        assert [v.word for v in sync.profile.vocabulary] == ["Orbit"]
        assert sync.profile.stats.words_learned == 1

    async def test_suggested_words_are_used_first(self, spelling, sync, generator):
        sync.mutate(
            lambda p: mutations.queue_suggested_words(
                p, [WordCard(word="crater", definition="a hole", example="A crater formed.")]
            )
        )

        await spelling.start()

        assert sync.profile.suggested_vocabulary == []
        assert spelling.snapshot().item["masked_example"] == "A ***** formed."
        assert "word" not in spelling.snapshot().item
        generator.spelling_word.assert_not_called()

    async def test_wrong_answer_waits_for_next(self, spelling, sync, generator):
        generator.spelling_word.return_value = WordCard(
            word="orbit", definition="a curved path", example="An orbit."
        )
        await spelling.start()

        assert spelling.answer("orbet") is False
        await spelling.settle()
        assert spelling.snapshot().answered
        assert spelling.snapshot().item["word"] == "orbit"

        await spelling.next()
        await spelling.settle()

        assert sync.profile.vocabulary == []
        assert spelling.state == ActivityState.IN_PROGRESS
        assert not spelling.snapshot().answered

    def test_mask_example(self):
        assert mask_example("run", "I run. Running is fun, RUN!") == "I *****. Running is fun, *****!"


class TestMemoryCards:
    @pytest.fixture
    def cards(self, sync, generator, notifier):
        return MemoryCardActivity(sync, generator, notifier)

    async def test_unavailable_without_data(self, cards, generator, notifications):
        assert not await cards.start()

        assert cards.state == ActivityState.IDLE
        assert notifications[-1].type == "info"
        generator.memory_cards.assert_not_called()

    async def test_grammar_outcomes_recorded_once(self, cards, sync, generator):
        sync.mutate(
            lambda p: mutations.append_chat_exchange(
                p, "She go.", "Where?", [Correction(error="go", correction="goes", explanation="Third person.")]
            )
        )
        generator.memory_cards.return_value = [
            MemoryCard(category="Grammar", challenge="She ___ home.", answer="goes", hint="verb"),
            MemoryCard(category="Grammar", challenge="I ___ there.", answer="went", hint="past"),
            MemoryCard(category="Vocabulary", challenge="The ___ of the moon.", answer="orbit", hint="path"),
            MemoryCard(category="Grammar", challenge="He ___ it.", answer="did", hint="past"),
        ]
        calls = _count_mutations(sync)

        await cards.start()
        for value in [" GOES ", "goed", "orbit", "did"]:
            cards.answer(value)
            await cards.next()

        assert cards.state == ActivityState.RESULTS
        ability = sync.profile.stats.learning_ability
        assert ability.total_mistakes == 3
        assert ability.corrected_mistakes == 2
        assert len(calls) == 1
        assert ability.corrected_mistakes <= ability.total_mistakes

    async def test_manual_advance_only(self, cards, sync, generator):
        sync.mutate(
            lambda p: mutations.add_learned_word(p, WordCard(word="orbit", definition="d", example="e"))
        )
        generator.memory_cards.return_value = [
            MemoryCard(category="Vocabulary", challenge="___", answer="orbit", hint="d"),
            MemoryCard(category="Vocabulary", challenge="___", answer="orbit", hint="d"),
        ]
        await cards.start()

        cards.answer("orbit")
        await cards.settle()

        assert cards.session.index == 0
        assert "answer" in cards.snapshot().item
