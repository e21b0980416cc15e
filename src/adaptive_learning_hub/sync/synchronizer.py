"""Owner of the in-memory learning profile and its persistence.

Every feature reads the profile from here and changes it only through
`mutate`. Changes are applied immediately and written to the profile store
after a quiet period, so bursts of mutations become a single write.
"""

import asyncio
import json
from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog
from pydantic import ValidationError

from ..models.profile import LearningProfile, default_profile, new_record_id
from ..notifications import NotificationService
from ..storage.base import ProfileNotFoundError, ProfileStore, ProfileStoreError
from . import mutations

logger = structlog.get_logger()

Updater = Callable[[LearningProfile], LearningProfile]
ChangeListener = Callable[[LearningProfile], None]

REQUIRED_IMPORT_KEYS = ("profile", "stats", "vocabulary")


class ProfileNotReadyError(RuntimeError):
    """The profile has not been loaded for a signed-in learner."""


class ProfileImportError(ValueError):
    """An imported document was rejected."""


class ProfileSynchronizer:
    """Keeps one learner's profile and persists it with debouncing.

    Persistence rules:
    - each mutation re-arms a single timer; only the timer's fire writes,
      always with the document current at that moment;
    - one write in flight at a time; a later fire waits for it;
    - a failed write keeps the local document and is retried on the next
      mutation's timer;
    - reset writes immediately and rolls back by re-fetching on failure;
    - a learner with no stored record gets one created by the first write.

    Args:
        store: Profile store backend.
        notifier: Notification service for user-facing failures.
        debounce_seconds: Quiet period before a write.
    """

    def __init__(
        self,
        store: ProfileStore,
        notifier: NotificationService,
        debounce_seconds: float = 1.0,
    ):
        self.store = store
        self.notifier = notifier
        self.debounce_seconds = debounce_seconds

        self._identity: str | None = None
        self._profile: LearningProfile | None = None
        self._ready = False
        self._epoch = 0
        self._version = 0
        self._persisted_version = 0
        self._needs_create = False
        self._write_lock = asyncio.Lock()
        self._timer: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[ChangeListener] = []

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def identity(self) -> str | None:
        return self._identity

    @property
    def profile(self) -> LearningProfile:
        if not self._ready or self._profile is None:
            raise ProfileNotReadyError("Learning profile is not loaded")
        return self._profile

    @property
    def has_pending_changes(self) -> bool:
        return self._version != self._persisted_version

    def subscribe(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def initialize(self, identity: str) -> bool:
        """Load the learner's profile once per session.

        A missing record yields the default document, which is not written
        until the first mutation. Any other failure leaves the synchronizer
        not ready.
        """
        if self._identity == identity and self._ready:
            return True
        if self._identity is not None:
            await self.teardown()

        self._identity = identity
        self._epoch += 1
        epoch = self._epoch
        needs_create = False
        try:
            profile = await self.store.fetch(identity)
        except ProfileNotFoundError:
            logger.info("profile_not_found_using_defaults", identity=identity)
            profile = default_profile(identity)
            needs_create = True
        except ProfileStoreError:
            logger.exception("profile_fetch_failed", identity=identity)
            if epoch == self._epoch:
                self.notifier.show("Could not load your learning data. Please try again.", "error")
            return False

        if epoch != self._epoch:
            logger.info("profile_fetch_dropped", identity=identity)
            return False
        self._profile = profile
        self._ready = True
        self._version = 0
        self._persisted_version = 0
        self._needs_create = needs_create
        logger.info("profile_ready", identity=identity)
        self._emit_change(profile)
        return True

    def mutate(self, updater: Updater) -> LearningProfile:
        """Apply `updater` to a copy of the profile and schedule a write.

        The new document is visible immediately. An updater that changes
        nothing schedules no write.
        """
        current = self.profile
        updated = updater(current.model_copy(deep=True))
        if not isinstance(updated, LearningProfile):
            raise TypeError("Profile updaters must return a LearningProfile")
        if updated.identity != current.identity:
            raise ValueError("Profile identity cannot change")
        if updated.model_dump() == current.model_dump():
            return current

        self._replace(updated)
        self._schedule_persist()
        return updated

    async def flush(self) -> bool:
        """Write pending changes now instead of waiting for the timer."""
        self._cancel_timer()
        return await self._persist()

    async def wait_idle(self) -> None:
        """Wait until no timer is armed and no write is in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def reset(self) -> bool:
        """Replace the profile with defaults and persist immediately."""
        previous = self.profile
        identity = previous.identity
        epoch = self._epoch
        self._cancel_timer()
        defaults = default_profile(identity)
        self._replace(defaults)
        version = self._version

        async with self._write_lock:
            try:
                await self._write(identity, defaults)
            except ProfileStoreError:
                logger.exception("profile_reset_failed", identity=identity)
                self.notifier.show("Failed to reset your data. Your previous data was restored.", "error")
                await self._rollback(identity, previous, epoch)
                return False
            if epoch == self._epoch:
                self._persisted_version = max(self._persisted_version, version)

        logger.info("profile_reset", identity=identity)
        self.notifier.show("Your data has been reset.", "info")
        return True

    async def teardown(self) -> None:
        """Flush and drop the profile, e.g. when the learner signs out."""
        if self._identity is None:
            return
        identity = self._identity
        if self._ready and self.has_pending_changes:
            await self.flush()
        self._cancel_timer()
        self._epoch += 1
        self._identity = None
        self._profile = None
        self._ready = False
        self._version = 0
        self._persisted_version = 0
        self._needs_create = False
        logger.info("profile_torn_down", identity=identity)

    def record_login(self, now: datetime | None = None) -> LearningProfile:
        """Stamp the login time and advance the daily streak."""
        return self.mutate(lambda p: mutations.record_login(p, now or datetime.now()))

    def update_profile_fields(
        self,
        *,
        name: str | None = None,
        age: int | None = None,
        country: str | None = None,
    ) -> LearningProfile:
        return self.mutate(lambda p: mutations.update_details(p, name=name, age=age, country=country))

    def update_settings(self, *, spelling_auto_advance_seconds: float) -> LearningProfile:
        return self.mutate(
            lambda p: mutations.update_settings(
                p, spelling_auto_advance_seconds=spelling_auto_advance_seconds
            )
        )

    def export_json(self) -> str:
        return json.dumps(self.profile.to_document(), indent=2, ensure_ascii=False)

    def import_json(self, text: str) -> LearningProfile:
        """Replace the profile with an exported document.

        The whole document is validated first; a malformed one is rejected
        without touching the current profile.
        """
        current = self.profile
        try:
            imported = self._parse_import(text, current.identity)
        except ProfileImportError:
            logger.warning("profile_import_rejected", identity=current.identity)
            self.notifier.show("Failed to import data. Please check the file format.", "error")
            raise
        updated = self.mutate(lambda _: imported)
        self.notifier.show("Data imported successfully!", "success")
        return updated

    @staticmethod
    def _parse_import(text: str, identity: str) -> LearningProfile:
        try:
            data: Any = json.loads(text)
        except json.JSONDecodeError as e:
            raise ProfileImportError("Imported file is not valid JSON") from e
        if not isinstance(data, dict) or any(key not in data for key in REQUIRED_IMPORT_KEYS):
            raise ProfileImportError("Imported file is not a learning profile")
        data["identity"] = identity
        try:
            profile = LearningProfile.from_document(data)
        except ValidationError as e:
            raise ProfileImportError("Imported profile is malformed") from e

        seen: set[str] = set()
        errors = []
        for error in profile.grammar_errors:
            if error.id in seen:
                error = error.model_copy(update={"id": new_record_id("err")})
            seen.add(error.id)
            errors.append(error)
        profile.grammar_errors = errors
        return profile

    def _replace(self, profile: LearningProfile) -> None:
        self._profile = profile
        self._version += 1
        self._emit_change(profile)

    def _emit_change(self, profile: LearningProfile) -> None:
        for listener in list(self._listeners):
            try:
                listener(profile)
            except Exception:
                logger.exception("profile_listener_error")

    def _schedule_persist(self) -> None:
        self._cancel_timer()
        task = asyncio.create_task(self._debounced_persist())
        self._timer = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _debounced_persist(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        # Fired: from here on the write must not be cancelled by a new mutation.
        if self._timer is asyncio.current_task():
            self._timer = None
        await self._persist()

    async def _persist(self) -> bool:
        async with self._write_lock:
            profile, version, epoch = self._profile, self._version, self._epoch
            if profile is None or not self._ready or version == self._persisted_version:
                return True
            try:
                await self._write(profile.identity, profile)
            except ProfileStoreError:
                logger.exception("profile_persist_failed", identity=profile.identity, version=version)
                if epoch == self._epoch:
                    self.notifier.show("Failed to save your progress. It will be retried.", "error")
                return False
            if epoch == self._epoch:
                self._persisted_version = max(self._persisted_version, version)
            logger.info("profile_persisted", identity=profile.identity, version=version)
            return True

    async def _write(self, identity: str, profile: LearningProfile) -> None:
        """Update the stored record, creating it when it does not exist yet."""
        if not self._needs_create:
            try:
                await self.store.write(identity, profile)
                return
            except ProfileNotFoundError:
                logger.warning("profile_row_missing", identity=identity)
        await self.store.create(identity, profile)
        if self._identity == identity:
            self._needs_create = False
        logger.info("profile_created", identity=identity)

    async def _rollback(self, identity: str, previous: LearningProfile, epoch: int) -> None:
        try:
            restored = await self.store.fetch(identity)
            from_store = True
        except ProfileStoreError:
            logger.exception("profile_rollback_fetch_failed", identity=identity)
            restored, from_store = previous, False
        if epoch != self._epoch:
            return
        self._replace(restored)
        if from_store:
            self._persisted_version = self._version
