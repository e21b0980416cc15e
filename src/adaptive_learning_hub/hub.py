"""Per-learner composition of profile sync, activities, chat and coaching."""

import asyncio
from datetime import datetime

import structlog

from .activities.assessment import AssessmentActivity
from .activities.machine import ActivityMachine
from .activities.memory_cards import MemoryCardActivity
from .activities.quiz import QuizActivity
from .activities.spelling import SpellingActivity
from .config import Settings
from .conversation.chat import ConversationSession
from .conversation.coach import Coach
from .generation.client import GenerationClient
from .notifications import NotificationService
from .speech.adapter import SpeechAdapter
from .storage.base import ProfileStore
from .storage.json_file import JsonFileProfileStore
from .storage.supabase import SupabaseProfileStore
from .sync.synchronizer import ProfileSynchronizer

logger = structlog.get_logger()


def create_profile_store(settings: Settings) -> ProfileStore:
    if settings.profile_store == "supabase":
        if not settings.supabase_url or not settings.supabase_key:
            raise ValueError("Supabase store requires SUPABASE_URL and SUPABASE_KEY")
        return SupabaseProfileStore(settings.supabase_url, settings.supabase_key)
    return JsonFileProfileStore(settings.profiles_dir)


def create_generation_client(settings: Settings) -> GenerationClient:
    return GenerationClient(
        api_key=settings.openai_api_key,
        model=settings.generation_model,
        vision_model=settings.vision_model,
    )


class LearnerHub:
    """Everything one signed-in learner interacts with.

    Args:
        settings: Application settings.
        store: Profile store shared by all hubs.
        generator: Generation client shared by all hubs.
        speech: Optional speech adapter.
    """

    def __init__(
        self,
        settings: Settings,
        store: ProfileStore,
        generator: GenerationClient,
        speech: SpeechAdapter | None = None,
    ):
        self.settings = settings
        self.generator = generator
        self.speech = speech
        self.notifier = NotificationService(ttl_seconds=settings.notification_ttl_seconds)
        self.sync = ProfileSynchronizer(
            store, self.notifier, debounce_seconds=settings.save_debounce_seconds
        )
        self.coach = Coach(self.sync, generator, self.notifier)
        self.chat = ConversationSession(
            self.sync,
            generator,
            self.coach,
            persona_refresh_interval=settings.persona_refresh_interval,
        )
        feedback = settings.feedback_display_seconds
        self.activities: dict[str, ActivityMachine] = {
            "assessment": AssessmentActivity(self.sync, generator, self.notifier, feedback_seconds=feedback),
            "quiz": QuizActivity(
                self.sync, generator, self.notifier, feedback_seconds=feedback, coach=self.coach
            ),
            "spelling": SpellingActivity(self.sync, generator, self.notifier),
            "memory_cards": MemoryCardActivity(self.sync, generator, self.notifier),
        }

    @property
    def identity(self) -> str | None:
        return self.sync.identity

    def activity(self, name: str) -> ActivityMachine:
        try:
            return self.activities[name]
        except KeyError:
            raise ValueError(f"Unknown activity: {name}") from None

    async def login(self, identity: str, now: datetime | None = None) -> bool:
        """Load the learner's profile and record the visit."""
        if not await self.sync.initialize(identity):
            return False
        self.sync.record_login(now)
        self.chat.load()
        logger.info("learner_logged_in", identity=identity)
        return True

    async def logout(self) -> None:
        """Drop every session, flush pending changes, forget the profile."""
        identity = self.sync.identity
        for machine in self.activities.values():
            machine.cancel()
        if self.speech is not None:
            self.speech.stop_speaking()
        await self.settle()
        await self.sync.teardown()
        self.chat.transcript = []
        self.notifier.clear()
        logger.info("learner_logged_out", identity=identity)

    async def settle(self) -> None:
        """Wait for background work: timers, follow-ups and pending writes."""
        await asyncio.gather(
            *(machine.settle() for machine in self.activities.values()),
            self.chat.settle(),
        )
        await self.sync.wait_idle()


class HubRegistry:
    """One hub per identity, shared by REST requests and WebSocket connections.

    Every `acquire` that returns a hub must be paired with a `release`; the
    hub is flushed and logged out when its last holder releases it.
    """

    def __init__(
        self,
        settings: Settings,
        store: ProfileStore,
        generator: GenerationClient,
        speech: SpeechAdapter | None = None,
    ):
        self.settings = settings
        self.store = store
        self.generator = generator
        self.speech = speech
        self._hubs: dict[str, LearnerHub] = {}
        self._holders: dict[str, int] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def holders(self, identity: str) -> int:
        return self._holders.get(identity, 0)

    async def acquire(self, identity: str) -> LearnerHub | None:
        """Return the signed-in hub for `identity`, logging in on first use."""
        async with self._lock_for(identity):
            hub = self._hubs.get(identity)
            if hub is None or not hub.sync.ready:
                hub = LearnerHub(self.settings, self.store, self.generator, self.speech)
                if not await hub.login(identity):
                    return None
                self._hubs[identity] = hub
                self._holders[identity] = 0
            self._holders[identity] += 1
            return hub

    async def release(self, identity: str) -> None:
        async with self._lock_for(identity):
            if identity not in self._hubs:
                return
            self._holders[identity] -= 1
            if self._holders[identity] > 0:
                return
            hub = self._hubs.pop(identity)
            del self._holders[identity]
            await hub.logout()

    async def aclose(self) -> None:
        for identity in list(self._hubs):
            async with self._lock_for(identity):
                hub = self._hubs.pop(identity, None)
                self._holders.pop(identity, None)
                if hub is not None:
                    await hub.logout()
        if isinstance(self.store, SupabaseProfileStore):
            await self.store.aclose()

    def _lock_for(self, identity: str) -> asyncio.Lock:
        return self._locks.setdefault(identity, asyncio.Lock())
