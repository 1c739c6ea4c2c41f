"""Tests for flag store adapters."""

import asyncio
import fnmatch
import json
import os

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from flagservice.core.errors import FlagConfigurationError, FlagStoreError
from flagservice.core.feature_management import (
    Feature,
    FileFeaturesRepository,
    InMemoryFeaturesRepository,
    RedisFeaturesRepository,
    SubjectKind,
    create_features_repository,
    get_features_repository,
    seed_features,
)


class FakeRedis:
    """Minimal async stand-in for the redis hash/scan commands the store uses."""

    def __init__(self):
        self.data = {}

    async def hget(self, key, field):
        return self.data.get(key, {}).get(field)

    async def hset(self, key, field, value):
        self.data.setdefault(key, {})[field] = value
        return 1

    async def hgetall(self, key):
        return dict(self.data.get(key, {}))

    async def scan_iter(self, match=None):
        for key in list(self.data):
            if match is None or fnmatch.fnmatch(key, match):
                yield key

    async def ping(self):
        return True


class BrokenRedis(FakeRedis):
    async def hget(self, key, field):
        raise RedisConnectionError("connection refused")

    async def hgetall(self, key):
        raise RedisConnectionError("connection refused")

    async def ping(self):
        raise RedisConnectionError("connection refused")


@pytest.fixture(params=["memory", "file", "redis"])
def repository(request, tmp_path):
    if request.param == "memory":
        return InMemoryFeaturesRepository()
    if request.param == "file":
        return FileFeaturesRepository(str(tmp_path / "flags.json"))
    return RedisFeaturesRepository(FakeRedis(), prefix="test")


class TestRepositoryContract:
    """Behaviour shared by every adapter."""

    @pytest.mark.asyncio
    async def test_features_round_trip(self, repository):
        await repository.save_feature(Feature(slug="a-feature", enabled=True, description="A"))
        await repository.save_feature(Feature(slug="b-feature", enabled=False))

        features = await repository.get_all_features()
        assert [f.slug for f in features] == ["a-feature", "b-feature"]
        assert (await repository.get_feature("a-feature")).description == "A"
        assert await repository.get_feature("missing") is None

    @pytest.mark.asyncio
    async def test_global_switch(self, repository):
        await repository.save_feature(Feature(slug="on", enabled=True))
        await repository.save_feature(Feature(slug="off", enabled=False))

        assert await repository.check_if_feature_is_enabled_globally("on") is True
        assert await repository.check_if_feature_is_enabled_globally("off") is False
        assert await repository.check_if_feature_is_enabled_globally("missing") is False

    @pytest.mark.asyncio
    async def test_override_upsert(self, repository):
        await repository.set_user_feature_enabled(1, "a-feature", True, "user:1")
        first = await repository.get_user_feature(1, "a-feature")

        await repository.set_user_feature_enabled(1, "a-feature", False, "user:2")
        second = await repository.get_user_feature(1, "a-feature")

        assert second.enabled is False
        assert second.assigned_by == "user:2"
        assert second.created_at == first.created_at
        assert len(await repository.get_overrides(SubjectKind.USER, 1)) == 1

    @pytest.mark.asyncio
    async def test_joined_views_only_include_known_features(self, repository):
        await repository.save_feature(Feature(slug="known", enabled=True))
        await repository.set_user_feature_enabled(3, "known", True, "user:3")
        await repository.set_user_feature_enabled(3, "unknown", True, "user:3")
        await repository.set_team_feature_enabled(3, "known", False, "user:3")

        user_view = await repository.get_user_features(3)
        team_view = await repository.get_team_features_with_details(3)

        assert [(a.feature.slug, a.enabled) for a in user_view] == [("known", True)]
        assert [(a.feature.slug, a.enabled) for a in team_view] == [("known", False)]
        assert await repository.get_user_feature(3, "unknown") is not None

    @pytest.mark.asyncio
    async def test_user_and_team_spaces_are_separate(self, repository):
        await repository.set_user_feature_enabled(10, "x", True, "user:10")

        assert await repository.get_team_feature(10, "x") is None
        assert await repository.check_if_team_has_feature(10, "x") is False
        assert await repository.check_if_user_has_feature_non_hierarchical(10, "x") is True

    @pytest.mark.asyncio
    async def test_organization_overrides_land_in_team_space(self, repository):
        await repository.set_override(SubjectKind.ORGANIZATION, 4, "x", True, "user:1")

        override = await repository.get_team_feature(4, "x")
        assert override is not None
        assert override.subject_kind is SubjectKind.TEAM

    @pytest.mark.asyncio
    async def test_teams_with_feature_enabled(self, repository):
        await repository.set_team_feature_enabled(5, "x", True, "user:1")
        await repository.set_team_feature_enabled(2, "x", True, "user:1")
        await repository.set_team_feature_enabled(3, "x", False, "user:1")
        await repository.set_team_feature_enabled(4, "y", True, "user:1")
        await repository.set_user_feature_enabled(6, "x", True, "user:6")

        assert await repository.get_teams_with_feature_enabled("x") == [2, 5]

    @pytest.mark.asyncio
    async def test_concurrent_writes_leave_one_override(self, repository):
        writers = {f"user:{i}": i % 2 == 0 for i in range(1, 9)}

        await asyncio.gather(
            *(
                repository.set_user_feature_enabled(1, "x", enabled, assigned_by)
                for assigned_by, enabled in writers.items()
            )
        )

        overrides = await repository.get_overrides(SubjectKind.USER, 1)
        assert len(overrides) == 1
        winner = overrides[0]
        assert winner.assigned_by in writers
        assert winner.enabled is writers[winner.assigned_by]

    @pytest.mark.asyncio
    async def test_ping(self, repository):
        assert await repository.ping() is True


class TestFileRepository:

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "nested" / "flags.json")
        repo = FileFeaturesRepository(path)
        await repo.save_feature(Feature(slug="bookings-v3", enabled=True))
        await repo.set_user_feature_enabled(42, "bookings-v3", True, "user:42")

        reopened = FileFeaturesRepository(path)
        assert (await reopened.get_feature("bookings-v3")).enabled is True
        assert await reopened.check_if_user_has_feature_non_hierarchical(42, "bookings-v3") is True

    @pytest.mark.asyncio
    async def test_corrupt_file_raises_store_error(self, tmp_path):
        path = tmp_path / "flags.json"
        path.write_text("{not json")
        repo = FileFeaturesRepository(str(path))

        with pytest.raises(FlagStoreError):
            await repo.get_all_features()

    @pytest.mark.asyncio
    async def test_non_boolean_enabled_raises_store_error(self, tmp_path):
        path = tmp_path / "flags.json"
        path.write_text(json.dumps({"features": [{"slug": "x", "enabled": "false"}]}))
        repo = FileFeaturesRepository(str(path))

        with pytest.raises(FlagStoreError):
            await repo.get_feature("x")

    @pytest.mark.asyncio
    async def test_failed_override_write_is_not_applied(self, tmp_path, monkeypatch):
        path = str(tmp_path / "flags.json")
        repo = FileFeaturesRepository(path)
        await repo.save_feature(Feature(slug="bookings-v3", enabled=True))

        def _disk_full(features, overrides):
            raise FlagStoreError("Feature flag file is not writable", path=path)

        monkeypatch.setattr(repo, "_save_to_file", _disk_full)
        with pytest.raises(FlagStoreError):
            await repo.set_user_feature_enabled(42, "bookings-v3", True, "user:42")

        assert await repo.get_user_feature(42, "bookings-v3") is None
        assert await repo.get_user_features(42) == []
        assert await FileFeaturesRepository(path).get_user_feature(42, "bookings-v3") is None

    @pytest.mark.asyncio
    async def test_failed_feature_write_is_not_applied(self, tmp_path, monkeypatch):
        path = str(tmp_path / "flags.json")
        repo = FileFeaturesRepository(path)
        await repo.save_feature(Feature(slug="bookings-v3", enabled=False))

        def _disk_full(features, overrides):
            raise FlagStoreError("Feature flag file is not writable", path=path)

        monkeypatch.setattr(repo, "_save_to_file", _disk_full)
        with pytest.raises(FlagStoreError):
            await repo.save_feature(Feature(slug="bookings-v3", enabled=True))
        with pytest.raises(FlagStoreError):
            await repo.save_feature(Feature(slug="insights", enabled=True))

        assert (await repo.get_feature("bookings-v3")).enabled is False
        assert await repo.get_feature("insights") is None

    @pytest.mark.asyncio
    async def test_write_replaces_file_without_leftovers(self, tmp_path):
        repo = FileFeaturesRepository(str(tmp_path / "flags.json"))
        await repo.save_feature(Feature(slug="bookings-v3", enabled=True))
        await repo.set_team_feature_enabled(7, "bookings-v3", True, "user:1")

        assert [p.name for p in tmp_path.iterdir()] == ["flags.json"]
        data = json.loads((tmp_path / "flags.json").read_text())
        assert [o["subject_id"] for o in data["overrides"]] == [7]


class TestRedisRepository:

    @pytest.mark.asyncio
    async def test_key_layout(self):
        client = FakeRedis()
        repo = RedisFeaturesRepository(client, prefix="ff")
        await repo.save_feature(Feature(slug="bookings-v3", enabled=True))
        await repo.set_team_feature_enabled(7, "bookings-v3", True, "user:1")

        assert "bookings-v3" in client.data["ff:features"]
        stored = json.loads(client.data["ff:overrides:team:7"]["bookings-v3"])
        assert stored["enabled"] is True
        assert stored["assigned_by"] == "user:1"

    @pytest.mark.asyncio
    async def test_features_enumerated_by_slug(self):
        repo = RedisFeaturesRepository(FakeRedis())
        await repo.save_feature(Feature(slug="zeta", enabled=True))
        await repo.save_feature(Feature(slug="alpha", enabled=True))

        assert [f.slug for f in await repo.get_all_features()] == ["alpha", "zeta"]

    @pytest.mark.asyncio
    async def test_connection_errors_propagate_as_store_error(self):
        repo = RedisFeaturesRepository(BrokenRedis())

        with pytest.raises(FlagStoreError) as exc_info:
            await repo.get_all_features()
        assert isinstance(exc_info.value.__cause__, RedisConnectionError)

        with pytest.raises(FlagStoreError):
            await repo.get_user_feature(1, "x")

    @pytest.mark.asyncio
    async def test_unreadable_records_raise_store_error(self):
        client = FakeRedis()
        client.data["test:features"] = {"broken": "{not json"}
        client.data["test:overrides:user:1"] = {"x": json.dumps({"feature_slug": "x"})}
        client.data["test:overrides:team:2"] = {"x": "[true]"}
        repo = RedisFeaturesRepository(client, prefix="test")

        with pytest.raises(FlagStoreError) as exc_info:
            await repo.get_all_features()
        assert isinstance(exc_info.value.__cause__, ValueError)
        with pytest.raises(FlagStoreError):
            await repo.get_feature("broken")
        with pytest.raises(FlagStoreError):
            await repo.get_user_feature(1, "x")
        with pytest.raises(FlagStoreError):
            await repo.get_overrides(SubjectKind.USER, 1)
        with pytest.raises(FlagStoreError):
            await repo.get_teams_with_feature_enabled("x")


class TestRepositoryFactory:

    def test_backend_from_settings(self, tmp_path):
        os.environ["FLAG_STORE_BACKEND"] = "file"
        os.environ["FLAG_STORE_PATH"] = str(tmp_path / "flags.json")

        repo = get_features_repository()

        assert isinstance(repo, FileFeaturesRepository)
        assert get_features_repository() is repo

    def test_default_is_memory(self):
        assert isinstance(get_features_repository(), InMemoryFeaturesRepository)

    def test_unknown_backend(self):
        with pytest.raises(FlagConfigurationError):
            create_features_repository("postgres")


class TestSeedFeatures:

    @pytest.mark.asyncio
    async def test_creates_only_missing(self, tmp_path):
        repo = InMemoryFeaturesRepository()
        await repo.save_feature(Feature(slug="bookings-v3", enabled=False))
        path = tmp_path / "seed.json"
        path.write_text(
            json.dumps(
                [
                    {"slug": "bookings-v3", "enabled": True},
                    {"slug": "insights", "enabled": True, "type": "EXPERIMENT"},
                ]
            )
        )

        created = await seed_features(repo, str(path))

        assert created == 1
        assert (await repo.get_feature("bookings-v3")).enabled is False
        assert (await repo.get_feature("insights")).type.value == "EXPERIMENT"

    @pytest.mark.asyncio
    async def test_string_enabled_rejected(self, tmp_path):
        repo = InMemoryFeaturesRepository()
        path = tmp_path / "seed.json"
        path.write_text(json.dumps([{"slug": "insights", "enabled": "false"}]))

        with pytest.raises(FlagConfigurationError):
            await seed_features(repo, str(path))
        assert await repo.get_feature("insights") is None

    @pytest.mark.asyncio
    async def test_missing_seed_file(self, tmp_path):
        with pytest.raises(FlagConfigurationError):
            await seed_features(InMemoryFeaturesRepository(), str(tmp_path / "none.json"))
