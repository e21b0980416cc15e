"""Profile store contract shared by every backend."""

from typing import Protocol

from ..models.profile import LearningProfile


class ProfileStoreError(Exception):
    """Any failure talking to the profile store."""


class ProfileNotFoundError(ProfileStoreError):
    """No profile record exists for the identity."""


class ProfileStore(Protocol):
    """Read-one/update-one access to learning profiles keyed by identity.

    Authorization is row-scoped: a store only ever touches the record that
    belongs to the identity it is called with.
    """

    async def fetch(self, identity: str) -> LearningProfile: ...

    async def write(self, identity: str, profile: LearningProfile) -> None: ...

    async def create(self, identity: str, profile: LearningProfile) -> None: ...
