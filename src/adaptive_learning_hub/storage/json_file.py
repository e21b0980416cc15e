"""Local profile store (JSON + fcntl.flock + atomic write)."""

import asyncio
import fcntl
import json
import os
import re
import tempfile
from pathlib import Path

from pydantic import ValidationError

from ..models.profile import LearningProfile
from .base import ProfileNotFoundError, ProfileStoreError

_IDENTITY_PATTERN = re.compile(r"^[A-Za-z0-9_.@-]{1,128}$")


class JsonFileProfileStore:
    """Stores one `<identity>.json` document per learner.

    Args:
        profiles_dir: Directory holding the profile files.
    """

    def __init__(self, profiles_dir: Path):
        self.profiles_dir = profiles_dir

    def get_profile_path(self, identity: str) -> Path:
        if not _IDENTITY_PATTERN.match(identity) or identity.startswith("."):
            raise ProfileStoreError(f"Invalid identity: {identity!r}")
        self.profiles_dir.mkdir(parents=True, exist_ok=True)
        return self.profiles_dir / f"{identity}.json"

    async def fetch(self, identity: str) -> LearningProfile:
        return await asyncio.to_thread(self._load, identity)

    async def write(self, identity: str, profile: LearningProfile) -> None:
        await asyncio.to_thread(self._save, identity, profile)

    async def create(self, identity: str, profile: LearningProfile) -> None:
        path = self.get_profile_path(identity)
        if path.exists():
            raise ProfileStoreError(f"Profile already exists: {identity}")
        await self.write(identity, profile)

    def _load(self, identity: str) -> LearningProfile:
        path = self.get_profile_path(identity)
        if not path.exists():
            raise ProfileNotFoundError(identity)
        try:
            with open(path, encoding="utf-8") as f:
                fcntl.flock(f, fcntl.LOCK_SH)
                data = json.load(f)
                fcntl.flock(f, fcntl.LOCK_UN)
            return LearningProfile.from_document(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise ProfileStoreError(f"Could not read profile {identity}") from e

    def _save(self, identity: str, profile: LearningProfile) -> None:
        path = self.get_profile_path(identity)
        try:
            with tempfile.NamedTemporaryFile(
                "w", dir=path.parent, delete=False, suffix=".json", encoding="utf-8"
            ) as tmp:
                json.dump(profile.to_document(), tmp)
            os.replace(tmp.name, path)
        except OSError as e:
            raise ProfileStoreError(f"Could not write profile {identity}") from e
