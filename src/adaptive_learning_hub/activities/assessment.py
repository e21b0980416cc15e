"""Level assessment: general test or a quiz seeded from the learner's own text."""

import asyncio
from typing import Any

import structlog

from ..generation.client import GenerationError
from ..generation.schemas import AssessmentAnalysis, Question, WordCard
from ..models.profile import UserLevel
from ..sync.mutations import queue_suggested_words, record_assessment, record_quiz_result
from .machine import ActivityInputError, ActivitySession, MultipleChoiceActivity, ScoringMode

logger = structlog.get_logger()

# Longer question sets are general assessments and get analyzed remotely.
LOCAL_SCORING_MAX_QUESTIONS = 5

CONTEXT_QUIZ_TOPIC = "Contextual reading"
GENERAL_QUIZ_TOPIC = "General assessment"


class AssessmentActivity(MultipleChoiceActivity):
    """General and context-seeded assessments.

    Start parameters (all optional): ``context`` with pasted text, or
    ``image`` bytes plus ``mime_type`` to read the text from a picture.
    Without either, a general test is generated from the assessment history.
    """

    name = "assessment"
    empty_message = "Failed to fetch questions. Please try again."

    def validate(self, params: dict[str, Any]) -> None:
        context = params.get("context")
        if context is not None and not context.strip():
            raise ActivityInputError("Please paste some text to build a quiz from.")

    async def fetch_items(self, params: dict[str, Any]) -> list[Question]:
        profile = self.sync.profile
        image = params.get("image")
        if image is not None:
            text = await self.generator.extract_text(image, params.get("mime_type", "image/png"))
            if not text:
                raise ActivityInputError("Could not extract any text from the image.")
            params["context"] = text

        context = params.get("context")
        if context is None:
            return await self.generator.assessment_questions(profile.assessment_history)

        level = profile.profile.level
        questions, words = await asyncio.gather(
            self.generator.context_questions(context, level),
            self._context_vocabulary(context, level),
        )
        params["vocabulary"] = words
        return questions

    async def _context_vocabulary(self, context: str, level: UserLevel) -> list[WordCard]:
        try:
            return await self.generator.context_vocabulary(context, level)
        except GenerationError:
            logger.warning("context_vocabulary_failed", exc_info=True)
            return []

    def on_fetched(self, session: ActivitySession) -> None:
        words = session.params.get("vocabulary") or []
        if not words:
            return
        self.sync.mutate(lambda p: queue_suggested_words(p, words))
        self.notifier.show(f"Extracted {len(words)} new words for the Spelling Game!", "success")

    def scoring_mode(self, items: list[Any], params: dict[str, Any]) -> ScoringMode:
        if len(items) > LOCAL_SCORING_MAX_QUESTIONS:
            return ScoringMode.ANALYZED
        return ScoringMode.LOCAL

    async def analyze(self, session: ActivitySession) -> AssessmentAnalysis:
        return await self.generator.analyze_assessment(session.items, session.answers)

    def complete(self, session: ActivitySession) -> None:
        if session.mode == ScoringMode.ANALYZED:
            analysis: AssessmentAnalysis = session.result
            self.sync.mutate(lambda p: record_assessment(p, analysis))
            return
        topic = CONTEXT_QUIZ_TOPIC if session.params.get("context") else GENERAL_QUIZ_TOPIC
        self.sync.mutate(
            lambda p: record_quiz_result(p, topic, session.score, session.total, add_interest=False)
        )

    def present_result(self, session: ActivitySession) -> dict[str, Any] | None:
        if session.mode == ScoringMode.ANALYZED:
            return super().present_result(session)
        return {
            "contextual": bool(session.params.get("context")),
            "score": session.score,
            "total": session.total,
        }
