"""Topic quizzes."""

from typing import Any

from ..conversation.coach import Coach
from ..generation.schemas import Question
from ..sync.mutations import record_quiz_result
from .machine import ActivityInputError, ActivitySession, MultipleChoiceActivity


class QuizActivity(MultipleChoiceActivity):
    """Five questions about a learner-chosen ``topic``.

    A finished quiz is recorded in the quiz history and, when a coach is
    attached, triggers a background persona refresh.
    """

    name = "quiz"
    empty_message = "Failed to generate a quiz for this topic. Please try another one."

    def __init__(self, *args, coach: Coach | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.coach = coach

    def validate(self, params: dict[str, Any]) -> None:
        topic = (params.get("topic") or "").strip()
        if not topic:
            raise ActivityInputError("Please enter a topic to start a quiz.")
        params["topic"] = topic

    async def fetch_items(self, params: dict[str, Any]) -> list[Question]:
        return await self.generator.quiz(params["topic"])

    def complete(self, session: ActivitySession) -> None:
        topic = session.params["topic"]
        self.sync.mutate(lambda p: record_quiz_result(p, topic, session.score, session.total))

    def after_complete(self, session: ActivitySession) -> None:
        if self.coach is not None:
            self._spawn(self.coach.refresh_recommendations())

    def present_result(self, session: ActivitySession) -> dict[str, Any] | None:
        return {"topic": session.params["topic"], "score": session.score, "total": session.total}
