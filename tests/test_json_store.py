"""Tests for the local JSON profile store."""

import json

import pytest

from adaptive_learning_hub.models.profile import default_profile
from adaptive_learning_hub.storage.base import ProfileNotFoundError, ProfileStoreError
from adaptive_learning_hub.storage.json_file import JsonFileProfileStore


@pytest.fixture
def json_store(tmp_path):
    return JsonFileProfileStore(tmp_path / "profiles")


class TestJsonFileProfileStore:
    async def test_missing_profile(self, json_store):
        with pytest.raises(ProfileNotFoundError):
            await json_store.fetch("alice")

    async def test_create_then_fetch(self, json_store):
        profile = default_profile("alice")
        profile.profile.name = "Alice"

        await json_store.create("alice", profile)
        loaded = await json_store.fetch("alice")

        assert loaded.profile.name == "Alice"
        assert loaded.identity == "alice"

    async def test_create_refuses_existing(self, json_store):
        await json_store.create("alice", default_profile("alice"))

        with pytest.raises(ProfileStoreError):
            await json_store.create("alice", default_profile("alice"))

    async def test_write_uses_camel_case(self, json_store):
        await json_store.write("alice", default_profile("alice"))

        data = json.loads(json_store.get_profile_path("alice").read_text(encoding="utf-8"))
        assert "suggestedVocabulary" in data
        assert data["stats"]["wordsLearned"] == 0

    async def test_corrupt_file(self, json_store):
        json_store.get_profile_path("alice").write_text("{not json", encoding="utf-8")

        with pytest.raises(ProfileStoreError):
            await json_store.fetch("alice")

    @pytest.mark.parametrize("identity", ["../escape", ".hidden", "", "a b"])
    def test_rejects_unsafe_identity(self, json_store, identity):
        with pytest.raises(ProfileStoreError):
            json_store.get_profile_path(identity)
