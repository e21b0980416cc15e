"""Dashboard coaching: persona/recommendation refresh and the learning plan."""

import structlog

from ..generation.client import GenerationClient, GenerationError
from ..notifications import NotificationService
from ..sync.mutations import apply_persona_update, complete_plan_task, replace_learning_plan
from ..sync.synchronizer import ProfileNotReadyError, ProfileSynchronizer

logger = structlog.get_logger()

STARTER_RECOMMENDATION_COUNT = 3


class Coach:
    """Refreshes the learner persona and manages the learning plan.

    Args:
        sync: Profile synchronizer.
        generator: Generation client.
        notifier: Notification service.
    """

    def __init__(
        self,
        sync: ProfileSynchronizer,
        generator: GenerationClient,
        notifier: NotificationService,
    ):
        self.sync = sync
        self.generator = generator
        self.notifier = notifier

    async def refresh_recommendations(self) -> bool:
        """Regenerate persona and recommendations from the current profile.

        Used as a background follow-up, so failures are only logged. A
        result that resolves after the learner signed out is dropped.
        """
        try:
            profile = self.sync.profile
        except ProfileNotReadyError:
            return False
        identity = profile.identity
        try:
            update = await self.generator.persona_update(profile)
        except GenerationError:
            logger.warning("persona_refresh_failed", identity=identity, exc_info=True)
            return False
        if not self.sync.ready or self.sync.identity != identity:
            logger.info("persona_refresh_dropped", identity=identity)
            return False
        self.sync.mutate(lambda p: apply_persona_update(p, update))
        logger.info("persona_refreshed", identity=identity, interests=len(update.persona.interests))
        return True

    async def refresh_if_starter(self) -> bool:
        """Refresh on dashboard load while only starter recommendations exist."""
        try:
            recommendations = self.sync.profile.recommendations
        except ProfileNotReadyError:
            return False
        if len(recommendations) > STARTER_RECOMMENDATION_COUNT or not self.generator.configured:
            return False
        return await self.refresh_recommendations()

    async def generate_learning_plan(self) -> bool:
        try:
            profile = self.sync.profile
        except ProfileNotReadyError:
            self.notifier.show("Please sign in to create a learning plan.", "error")
            return False
        identity = profile.identity
        try:
            tasks = await self.generator.learning_plan(profile)
        except GenerationError as e:
            logger.warning("learning_plan_failed", identity=identity, error=str(e))
            self.notifier.show("Failed to generate a learning plan. Please try again.", "error")
            return False
        if not tasks:
            self.notifier.show("Failed to generate a learning plan. Please try again.", "error")
            return False
        if not self.sync.ready or self.sync.identity != identity:
            return False
        self.sync.mutate(lambda p: replace_learning_plan(p, tasks))
        self.notifier.show("Your new learning plan is ready!", "success")
        return True

    def complete_task(self, task_id: str) -> bool:
        """Mark a plan task as done. Unknown ids change nothing."""
        profile = self.sync.profile
        if not any(t.id == task_id and not t.completed for t in profile.learning_plan):
            return False
        self.sync.mutate(lambda p: complete_plan_task(p, task_id))
        return True
