"""Generic question/answer activity state machine shared by all drills."""

import asyncio
import uuid
from collections.abc import Callable
from enum import StrEnum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from ..generation.client import GenerationClient, GenerationError
from ..notifications import NotificationService, NotificationType
from ..sync.synchronizer import ProfileNotReadyError, ProfileSynchronizer

logger = structlog.get_logger()


class ActivityState(StrEnum):
    """Activity lifecycle states."""

    IDLE = "idle"
    CONTEXT_ENTRY = "context_entry"
    FETCHING = "fetching"
    IN_PROGRESS = "in_progress"
    ANALYZING = "analyzing"
    RESULTS = "results"


class ScoringMode(StrEnum):
    """How a finished session is scored."""

    LOCAL = "local"
    ANALYZED = "analyzed"


class ActivityInputError(ValueError):
    """A start request was rejected before anything was generated."""

    def __init__(self, message: str, type: NotificationType = "error"):
        super().__init__(message)
        self.type = type


class ActivitySession(BaseModel):
    """Session-local state of one activity run. Never persisted."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    token: str
    items: list[Any]
    mode: ScoringMode = ScoringMode.LOCAL
    params: dict[str, Any] = Field(default_factory=dict)
    index: int = 0
    answers: dict[int, str] = Field(default_factory=dict)
    correct: dict[int, bool] = Field(default_factory=dict)
    result: Any = None

    @property
    def current(self) -> Any:
        return self.items[self.index]

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def answered(self) -> bool:
        return self.index in self.answers

    @property
    def score(self) -> int:
        return sum(1 for ok in self.correct.values() if ok)

    @property
    def is_last(self) -> bool:
        return self.index >= len(self.items) - 1


class ActivitySnapshot(BaseModel):
    """What the UI shell needs to render an activity."""

    activity: str
    state: ActivityState
    index: int = 0
    total: int = 0
    item: dict[str, Any] | None = None
    answered: bool = False
    answer: str | None = None
    correct: bool | None = None
    score: int = 0
    result: dict[str, Any] | None = None


ActivityListener = Callable[[ActivitySnapshot], None]


class ActivityMachine:
    """idle -> (context_entry) -> fetching -> in_progress -> (analyzing) -> results -> idle.

    Subclasses supply the generation hook, the expected answer and matcher,
    and the completion mutation. The machine guarantees that a completed
    session issues exactly one completion call, and that results arriving
    for a session that is no longer current are dropped.

    Args:
        sync: Profile synchronizer.
        generator: Generation client.
        notifier: Notification service.
        feedback_seconds: Feedback display time before auto-advancing.
            None waits for an explicit next().
    """

    name = "activity"
    empty_message = "Failed to generate content. Please try again."

    def __init__(
        self,
        sync: ProfileSynchronizer,
        generator: GenerationClient,
        notifier: NotificationService,
        feedback_seconds: float | None = 1.5,
    ):
        self.sync = sync
        self.generator = generator
        self.notifier = notifier
        self.feedback_seconds = feedback_seconds

        self._state = ActivityState.IDLE
        self._session: ActivitySession | None = None
        self._token: str | None = None
        self._listeners: list[ActivityListener] = []
        self._tasks: set[asyncio.Task] = set()

    @property
    def state(self) -> ActivityState:
        return self._state

    @property
    def session(self) -> ActivitySession | None:
        return self._session

    def subscribe(self, listener: ActivityListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: ActivityListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # Hooks

    def validate(self, params: dict[str, Any]) -> None:
        """Reject a start request before fetching. Raises ActivityInputError."""

    async def fetch_items(self, params: dict[str, Any]) -> list[Any]:
        raise NotImplementedError

    def on_fetched(self, session: ActivitySession) -> None:
        """Called once the fetched items are accepted for the current session."""

    def scoring_mode(self, items: list[Any], params: dict[str, Any]) -> ScoringMode:
        return ScoringMode.LOCAL

    def expected_answer(self, item: Any) -> str:
        raise NotImplementedError

    def matches(self, value: str, expected: str) -> bool:
        return value == expected

    def feedback_delay(self, correct: bool) -> float | None:
        return self.feedback_seconds

    async def analyze(self, session: ActivitySession) -> Any:
        raise NotImplementedError

    def complete(self, session: ActivitySession) -> None:
        raise NotImplementedError

    def after_complete(self, session: ActivitySession) -> None:
        """Runs after the results state is entered (background follow-ups)."""

    def present(self, item: Any, answered: bool) -> dict[str, Any]:
        return item.model_dump()

    def present_result(self, session: ActivitySession) -> dict[str, Any] | None:
        if isinstance(session.result, BaseModel):
            return session.result.model_dump(mode="json")
        return None

    # Transitions

    def enter_context(self) -> bool:
        if self._state != ActivityState.IDLE:
            return False
        self._set_state(ActivityState.CONTEXT_ENTRY)
        return True

    async def start(self, **params: Any) -> bool:
        """Generate a session's items and show the first one.

        Allowed from idle and context_entry; a failed start goes back to
        the state it came from.
        """
        origin = self._state
        if origin not in (ActivityState.IDLE, ActivityState.CONTEXT_ENTRY):
            logger.warning("activity_start_ignored", activity=self.name, state=origin.value)
            return False
        try:
            self.sync.profile
        except ProfileNotReadyError:
            self.notifier.show("Please sign in to start this activity.", "error")
            return False
        try:
            self.validate(params)
        except ActivityInputError as e:
            self.notifier.show(str(e), e.type)
            return False

        token = uuid.uuid4().hex
        self._token = token
        self._set_state(ActivityState.FETCHING)
        try:
            items = await self.fetch_items(params)
        except (GenerationError, ActivityInputError) as e:
            if self._token != token:
                return False
            logger.warning("activity_fetch_failed", activity=self.name, error=str(e))
            self.notifier.show(str(e), getattr(e, "type", "error"))
            self._fall_back(origin)
            return False

        if self._token != token:
            logger.info("activity_result_dropped", activity=self.name, stage="fetch")
            return False
        if not items:
            self.notifier.show(self.empty_message, "error")
            self._fall_back(origin)
            return False

        session = ActivitySession(
            token=token,
            items=list(items),
            mode=self.scoring_mode(items, params),
            params=params,
        )
        self._session = session
        self.on_fetched(session)
        logger.info("activity_started", activity=self.name, items=session.total, mode=session.mode.value)
        self._set_state(ActivityState.IN_PROGRESS)
        return True

    def answer(self, value: str) -> bool | None:
        """Answer the current item once. Returns correctness, or None if ignored."""
        session = self._session
        if self._state != ActivityState.IN_PROGRESS or session is None or session.answered:
            return None
        if not value.strip():
            return None
        correct = self.matches(value, self.expected_answer(session.current))
        session.answers[session.index] = value
        session.correct[session.index] = correct
        self._emit()

        delay = self.feedback_delay(correct)
        if delay is not None:
            self._spawn(self._auto_advance(session.token, session.index, delay))
        return correct

    async def next(self) -> None:
        """Advance past an answered item, or retry a failed analysis."""
        session = self._session
        if self._state != ActivityState.IN_PROGRESS or session is None or not session.answered:
            return
        await self._advance(session)

    def cancel(self) -> None:
        """Abandon the current session; pending results will be dropped."""
        if self._state == ActivityState.IDLE:
            return
        logger.info("activity_cancelled", activity=self.name, state=self._state.value)
        self._clear()

    def done(self) -> None:
        if self._state == ActivityState.RESULTS:
            self._clear()

    async def settle(self) -> None:
        """Wait for pending feedback timers and background follow-ups."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def snapshot(self) -> ActivitySnapshot:
        session = self._session
        if session is None or self._state not in (
            ActivityState.IN_PROGRESS,
            ActivityState.ANALYZING,
            ActivityState.RESULTS,
        ):
            return ActivitySnapshot(activity=self.name, state=self._state)
        return ActivitySnapshot(
            activity=self.name,
            state=self._state,
            index=session.index,
            total=session.total,
            item=self.present(session.current, session.answered),
            answered=session.answered,
            answer=session.answers.get(session.index),
            correct=session.correct.get(session.index),
            score=session.score,
            result=self.present_result(session) if self._state == ActivityState.RESULTS else None,
        )

    # Internals

    async def _auto_advance(self, token: str, index: int, delay: float) -> None:
        await asyncio.sleep(delay)
        session = self._session
        if (
            session is None
            or session.token != token
            or session.index != index
            or self._state != ActivityState.IN_PROGRESS
        ):
            return
        await self._advance(session)

    async def _advance(self, session: ActivitySession) -> None:
        if not session.is_last:
            session.index += 1
            self._emit()
            return
        await self._finish(session)

    async def _finish(self, session: ActivitySession) -> None:
        if session.mode == ScoringMode.ANALYZED:
            self._set_state(ActivityState.ANALYZING)
            try:
                result = await self.analyze(session)
            except GenerationError as e:
                if self._token != session.token:
                    return
                logger.warning("activity_analysis_failed", activity=self.name, error=str(e))
                self.notifier.show("An error occurred while analyzing your results.", "error")
                self._set_state(ActivityState.IN_PROGRESS)
                return
            if self._token != session.token:
                logger.info("activity_result_dropped", activity=self.name, stage="analysis")
                return
            session.result = result

        self.complete(session)
        logger.info(
            "activity_completed",
            activity=self.name,
            score=session.score,
            total=session.total,
        )
        self._set_state(ActivityState.RESULTS)
        self.after_complete(session)

    def _fall_back(self, origin: ActivityState) -> None:
        self._token = None
        self._session = None
        self._set_state(origin)

    def _clear(self) -> None:
        self._token = None
        self._session = None
        self._set_state(ActivityState.IDLE)

    def _set_state(self, state: ActivityState) -> None:
        self._state = state
        logger.debug("activity_state_changed", activity=self.name, state=state.value)
        self._emit()

    def _emit(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("activity_listener_error", activity=self.name)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task


class MultipleChoiceActivity(ActivityMachine):
    """Activities whose items are generated multiple-choice questions."""

    def expected_answer(self, item: Any) -> str:
        return item.correct_answer

    def present(self, item: Any, answered: bool) -> dict[str, Any]:
        if answered:
            return item.model_dump()
        return item.model_dump(exclude={"correct_answer"})
