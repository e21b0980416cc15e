"""Memory-card drill built from recent mistakes and learned words."""

from typing import Any

from ..generation.schemas import MemoryCard
from ..sync.mutations import apply_grammar_drill
from .machine import ActivityInputError, ActivityMachine, ActivitySession


class MemoryCardActivity(ActivityMachine):
    """Fill-in-the-blank cards, advanced manually with next().

    Grammar cards count as revisited mistakes: completing a deck adds the
    number of grammar cards to the mistake total and the grammar cards
    answered correctly to the corrected count, in one mutation.
    """

    name = "memory_cards"
    empty_message = "An error occurred while generating cards."

    def __init__(self, *args, **kwargs):
        kwargs.setdefault("feedback_seconds", None)
        super().__init__(*args, **kwargs)

    def validate(self, params: dict[str, Any]) -> None:
        profile = self.sync.profile
        if not profile.grammar_errors and not profile.vocabulary:
            raise ActivityInputError("Not enough data to generate cards. Practice more!", "info")

    async def fetch_items(self, params: dict[str, Any]) -> list[MemoryCard]:
        profile = self.sync.profile
        return await self.generator.memory_cards(profile.grammar_errors, profile.vocabulary)

    def expected_answer(self, item: MemoryCard) -> str:
        return item.answer

    def matches(self, value: str, expected: str) -> bool:
        return value.strip().lower() == expected.strip().lower()

    @staticmethod
    def grammar_outcome(session: ActivitySession) -> tuple[int, int]:
        """(attempted, corrected) over the deck's grammar cards."""
        grammar = [i for i, card in enumerate(session.items) if card.category == "Grammar"]
        corrected = sum(1 for i in grammar if session.correct.get(i))
        return len(grammar), corrected

    def complete(self, session: ActivitySession) -> None:
        attempted, corrected = self.grammar_outcome(session)
        self.sync.mutate(lambda p: apply_grammar_drill(p, attempted, corrected))

    def present(self, item: MemoryCard, answered: bool) -> dict[str, Any]:
        if answered:
            return item.model_dump()
        return item.model_dump(exclude={"answer"})

    def present_result(self, session: ActivitySession) -> dict[str, Any] | None:
        attempted, corrected = self.grammar_outcome(session)
        return {
            "score": session.score,
            "total": session.total,
            "grammar_attempted": attempted,
            "grammar_corrected": corrected,
        }
