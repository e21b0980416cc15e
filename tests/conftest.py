"""Shared fixtures: an in-memory profile store, a mocked generator, a ready synchronizer."""

import asyncio
from unittest.mock import MagicMock

import pytest

from adaptive_learning_hub.generation.client import GenerationClient
from adaptive_learning_hub.generation.schemas import Question
from adaptive_learning_hub.models.profile import LearningProfile
from adaptive_learning_hub.notifications import NotificationService
from adaptive_learning_hub.storage.base import ProfileNotFoundError, ProfileStoreError
from adaptive_learning_hub.sync.synchronizer import ProfileSynchronizer


class FakeProfileStore:
    """Profile store kept in a dict, with switches for failures and slow writes."""

    def __init__(self):
        self.documents: dict[str, dict] = {}
        self.writes: list[LearningProfile] = []
        self.creates: list[str] = []
        self.fetches = 0
        self.fail_fetch = False
        self.fail_writes = False
        self.write_gate: asyncio.Event | None = None

    async def fetch(self, identity: str) -> LearningProfile:
        self.fetches += 1
        if self.fail_fetch:
            raise ProfileStoreError("fetch failed")
        if identity not in self.documents:
            raise ProfileNotFoundError(identity)
        return LearningProfile.from_document(self.documents[identity])

    async def write(self, identity: str, profile: LearningProfile) -> None:
        await self._save(identity, profile, create=False)

    async def create(self, identity: str, profile: LearningProfile) -> None:
        await self._save(identity, profile, create=True)

    async def _save(self, identity: str, profile: LearningProfile, create: bool) -> None:
        if self.write_gate is not None:
            await self.write_gate.wait()
        if self.fail_writes:
            raise ProfileStoreError("write failed")
        # Updates only touch existing rows, like the hosted store.
        if not create and identity not in self.documents:
            raise ProfileNotFoundError(identity)
        if create:
            self.creates.append(identity)
        self.writes.append(profile)
        self.documents[identity] = profile.to_document()


def make_questions(count: int, topic: str = "Space") -> list[Question]:
    return [
        Question(
            question=f"{topic} question {i}?",
            options=["right", "wrong", "other"],
            correct_answer="right",
        )
        for i in range(count)
    ]


@pytest.fixture
def store():
    return FakeProfileStore()


@pytest.fixture
def notifier():
    return NotificationService()


@pytest.fixture
def notifications(notifier):
    """Every notification shown, in order."""
    shown = []
    notifier.subscribe(shown.append)
    return shown


@pytest.fixture
def generator():
    gen = MagicMock(spec=GenerationClient)
    gen.configured = True
    return gen


@pytest.fixture
async def sync(store, notifier):
    synchronizer = ProfileSynchronizer(store, notifier, debounce_seconds=0.01)
    assert await synchronizer.initialize("alice")
    yield synchronizer
    await synchronizer.wait_idle()


@pytest.fixture
def questions():
    return make_questions
