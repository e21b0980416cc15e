"""Spelling drill: one word per session, queued words first."""

import re
from typing import Any

from ..generation.schemas import WordCard
from ..sync.mutations import add_learned_word, drop_first_suggested, remove_suggested_word
from .machine import ActivityMachine, ActivitySession, ActivityState

MASK = "*****"


def mask_example(word: str, example: str) -> str:
    """Hide every whole-word occurrence of `word` in the example sentence."""
    return re.sub(rf"\b{re.escape(word)}\b", MASK, example, flags=re.IGNORECASE)


class SpellingActivity(ActivityMachine):
    """Spell the word from its definition and masked example.

    A correct answer adds the word to the vocabulary (once) and moves on to
    the next word after the learner's auto-advance setting; a wrong answer
    waits for next().
    """

    name = "spelling"
    empty_message = "Failed to fetch a new word."

    async def fetch_items(self, params: dict[str, Any]) -> list[WordCard]:
        profile = self.sync.profile
        if profile.suggested_vocabulary:
            head = profile.suggested_vocabulary[0]
            self.sync.mutate(drop_first_suggested)
            params["source"] = "user"
            return [WordCard(word=head.word, definition=head.definition, example=head.example)]
        params["source"] = "ai"
        return [await self.generator.spelling_word(profile.profile.level)]

    def expected_answer(self, item: WordCard) -> str:
        return item.word

    def matches(self, value: str, expected: str) -> bool:
        return value.strip().lower() == expected.lower()

    def feedback_delay(self, correct: bool) -> float | None:
        if not correct:
            return None
        return self.sync.profile.settings.spelling_auto_advance_seconds

    def complete(self, session: ActivitySession) -> None:
        card: WordCard = session.items[0]
        if session.correct.get(0):
            self.sync.mutate(lambda p: add_learned_word(p, card))
        else:
            self.sync.mutate(lambda p: p)

    def after_complete(self, session: ActivitySession) -> None:
        self._spawn(self._next_word(session.token))

    async def _next_word(self, token: str) -> None:
        session = self.session
        if self.state != ActivityState.RESULTS or session is None or session.token != token:
            return
        self.done()
        await self.start()

    def present(self, item: WordCard, answered: bool) -> dict[str, Any]:
        view = {
            "definition": item.definition,
            "masked_example": mask_example(item.word, item.example),
            "source": self.session.params.get("source") if self.session else None,
        }
        if answered:
            view["word"] = item.word
        return view

    def present_result(self, session: ActivitySession) -> dict[str, Any] | None:
        return {"word": session.items[0].word, "correct": bool(session.correct.get(0))}

    def remove_suggested(self, word: str) -> None:
        self.sync.mutate(lambda p: remove_suggested_word(p, word))
