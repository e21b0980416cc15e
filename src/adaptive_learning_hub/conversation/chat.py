"""Tutor chat session mirrored into the learner's chat history."""

import asyncio
from collections.abc import Callable
from typing import Literal

import structlog
from pydantic import BaseModel

from ..generation.client import GenerationClient, GenerationError
from ..generation.schemas import Correction
from ..models.profile import ChatTurn
from ..sync.mutations import append_chat_exchange
from ..sync.synchronizer import ProfileNotReadyError, ProfileSynchronizer
from .coach import Coach

logger = structlog.get_logger()

APOLOGY = "Sorry, I encountered an error. Please try again."


class ChatMessage(BaseModel):
    """A transcript line as shown to the learner."""

    role: Literal["user", "model"]
    text: str
    corrections: list[Correction] = []
    local_only: bool = False


MessageListener = Callable[[ChatMessage], None]


class ConversationSession:
    """Sends learner messages to the tutor and records the exchange.

    Each successful exchange is one profile mutation. After every
    `persona_refresh_interval`-th user turn a persona refresh runs in the
    background; it never blocks the next message and its failures are
    only logged.

    Args:
        sync: Profile synchronizer.
        generator: Generation client.
        coach: Coach used for the background persona refresh.
        persona_refresh_interval: User turns between persona refreshes.
    """

    def __init__(
        self,
        sync: ProfileSynchronizer,
        generator: GenerationClient,
        coach: Coach,
        persona_refresh_interval: int = 5,
    ):
        self.sync = sync
        self.generator = generator
        self.coach = coach
        self.persona_refresh_interval = persona_refresh_interval
        self.transcript: list[ChatMessage] = []
        self._listeners: list[MessageListener] = []
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, listener: MessageListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: MessageListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def load(self) -> list[ChatMessage]:
        """Rebuild the transcript from the persisted chat history."""
        self.transcript = [
            ChatMessage(role=turn.role, text=turn.text) for turn in self.sync.profile.chat_history
        ]
        return self.transcript

    async def send_message(self, text: str) -> ChatMessage | None:
        """Send one learner message. Blank messages are ignored."""
        if not text.strip():
            return None
        try:
            profile = self.sync.profile
        except ProfileNotReadyError:
            logger.warning("chat_message_without_profile")
            return None
        identity = profile.identity
        self._append(ChatMessage(role="user", text=text))

        history = [*profile.chat_history, ChatTurn(role="user", text=text)]
        try:
            reply = await self.generator.chat_reply(history, profile)
        except GenerationError:
            logger.warning("chat_reply_failed", identity=identity, exc_info=True)
            return self._append(ChatMessage(role="model", text=APOLOGY, local_only=True))

        if not self.sync.ready or self.sync.identity != identity:
            logger.info("chat_reply_dropped", identity=identity)
            return None
        message = self._append(
            ChatMessage(role="model", text=reply.response, corrections=reply.corrections)
        )
        updated = self.sync.mutate(
            lambda p: append_chat_exchange(p, text, reply.response, reply.corrections)
        )

        turns = updated.user_turn_count
        if turns > 0 and turns % self.persona_refresh_interval == 0:
            logger.info("persona_refresh_scheduled", identity=identity, user_turns=turns)
            task = asyncio.create_task(self.coach.refresh_recommendations())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return message

    async def settle(self) -> None:
        """Wait for background persona refreshes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _append(self, message: ChatMessage) -> ChatMessage:
        self.transcript.append(message)
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception:
                logger.exception("chat_listener_error")
        return message
