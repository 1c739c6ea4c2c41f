"""Feature Flag Store.

Provides the storage contract the resolution engine depends on and its adapters:
- In-memory store
- File-based store
- Redis store
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from flagservice.core.config import get_settings
from flagservice.core.errors import FlagConfigurationError, FlagStoreError
from flagservice.core.feature_management.models import (
    Feature,
    FeatureAssignment,
    SubjectKind,
    SubjectOverride,
    utcnow,
)

logger = logging.getLogger(__name__)

OverrideKey = Tuple[SubjectKind, int, str]


class FeaturesRepository(ABC):
    """Abstract base class for feature flag storage.

    Adapters implement the storage primitives; the user/team contract used by
    the engine is built on top of them here. Overrides are keyed by
    (subject kind, subject id, feature slug) with upsert semantics. The
    organization kind is folded into the team kind before reaching storage.
    """

    # Storage primitives

    @abstractmethod
    async def get_all_features(self) -> List[Feature]:
        """Get all features in storage-defined order."""
        pass

    @abstractmethod
    async def get_feature(self, slug: str) -> Optional[Feature]:
        """Get a feature by slug."""
        pass

    @abstractmethod
    async def save_feature(self, feature: Feature) -> None:
        """Create or replace a feature record."""
        pass

    @abstractmethod
    async def get_override(
        self, kind: SubjectKind, subject_id: int, slug: str
    ) -> Optional[SubjectOverride]:
        """Get the override of one subject for one feature."""
        pass

    @abstractmethod
    async def get_overrides(self, kind: SubjectKind, subject_id: int) -> List[SubjectOverride]:
        """Get every override of one subject, known features or not."""
        pass

    @abstractmethod
    async def set_override(
        self,
        kind: SubjectKind,
        subject_id: int,
        slug: str,
        enabled: bool,
        assigned_by: str,
    ) -> None:
        """Upsert the override of one subject for one feature."""
        pass

    @abstractmethod
    async def get_subject_ids_with_feature_enabled(
        self, kind: SubjectKind, slug: str
    ) -> List[int]:
        """Ids of subjects holding an enabled override for a feature."""
        pass

    async def ping(self) -> bool:
        return True

    # Engine contract

    async def check_if_feature_is_enabled_globally(self, slug: str) -> bool:
        feature = await self.get_feature(slug)
        return bool(feature and feature.enabled)

    async def get_user_features(self, user_id: int) -> List[FeatureAssignment]:
        return await self._joined(SubjectKind.USER, user_id)

    async def get_team_features_with_details(self, team_id: int) -> List[FeatureAssignment]:
        return await self._joined(SubjectKind.TEAM, team_id)

    async def get_user_feature(self, user_id: int, slug: str) -> Optional[SubjectOverride]:
        return await self.get_override(SubjectKind.USER, user_id, slug)

    async def get_team_feature(self, team_id: int, slug: str) -> Optional[SubjectOverride]:
        return await self.get_override(SubjectKind.TEAM, team_id, slug)

    async def check_if_user_has_feature_non_hierarchical(self, user_id: int, slug: str) -> bool:
        override = await self.get_user_feature(user_id, slug)
        return override is not None and override.enabled is True

    async def check_if_team_has_feature(self, team_id: int, slug: str) -> bool:
        override = await self.get_team_feature(team_id, slug)
        return override is not None and override.enabled is True

    async def get_teams_with_feature_enabled(self, slug: str) -> List[int]:
        return sorted(await self.get_subject_ids_with_feature_enabled(SubjectKind.TEAM, slug))

    async def set_user_feature_enabled(
        self, user_id: int, slug: str, enabled: bool, assigned_by: str
    ) -> None:
        await self.set_override(SubjectKind.USER, user_id, slug, enabled, assigned_by)

    async def set_team_feature_enabled(
        self, team_id: int, slug: str, enabled: bool, assigned_by: str
    ) -> None:
        await self.set_override(SubjectKind.TEAM, team_id, slug, enabled, assigned_by)

    async def _joined(self, kind: SubjectKind, subject_id: int) -> List[FeatureAssignment]:
        overrides = await self.get_overrides(kind, subject_id)
        features = {f.slug: f for f in await self.get_all_features()}
        return [
            FeatureAssignment(feature=features[o.feature_slug], enabled=o.enabled)
            for o in overrides
            if o.feature_slug in features
        ]


def _override_key(kind: SubjectKind, subject_id: int, slug: str) -> OverrideKey:
    return (kind.override_kind, subject_id, slug)


class InMemoryFeaturesRepository(FeaturesRepository):
    """In-memory feature storage."""

    def __init__(self):
        self._features: Dict[str, Feature] = {}
        self._overrides: Dict[OverrideKey, SubjectOverride] = {}
        self._lock: Optional[asyncio.Lock] = None

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def get_all_features(self) -> List[Feature]:
        async with self._get_lock():
            return list(self._features.values())

    async def get_feature(self, slug: str) -> Optional[Feature]:
        async with self._get_lock():
            return self._features.get(slug)

    async def save_feature(self, feature: Feature) -> None:
        async with self._get_lock():
            feature.updated_at = utcnow()
            self._features[feature.slug] = feature

    async def get_override(
        self, kind: SubjectKind, subject_id: int, slug: str
    ) -> Optional[SubjectOverride]:
        async with self._get_lock():
            return self._overrides.get(_override_key(kind, subject_id, slug))

    async def get_overrides(self, kind: SubjectKind, subject_id: int) -> List[SubjectOverride]:
        kind = kind.override_kind
        async with self._get_lock():
            return [
                o for (k, sid, _), o in self._overrides.items()
                if k is kind and sid == subject_id
            ]

    async def set_override(
        self,
        kind: SubjectKind,
        subject_id: int,
        slug: str,
        enabled: bool,
        assigned_by: str,
    ) -> None:
        key = _override_key(kind, subject_id, slug)
        async with self._get_lock():
            self._overrides[key] = _upserted(self._overrides.get(key), key, enabled, assigned_by)

    async def get_subject_ids_with_feature_enabled(
        self, kind: SubjectKind, slug: str
    ) -> List[int]:
        kind = kind.override_kind
        async with self._get_lock():
            return [
                sid for (k, sid, s), o in self._overrides.items()
                if k is kind and s == slug and o.enabled is True
            ]


def _upserted(
    previous: Optional[SubjectOverride],
    key: OverrideKey,
    enabled: bool,
    assigned_by: str,
) -> SubjectOverride:
    kind, subject_id, slug = key
    now = utcnow()
    return SubjectOverride(
        subject_kind=kind,
        subject_id=subject_id,
        feature_slug=slug,
        enabled=enabled,
        assigned_by=assigned_by,
        created_at=previous.created_at if previous else now,
        updated_at=now,
    )


class FileFeaturesRepository(InMemoryFeaturesRepository):
    """File-based feature storage.

    The whole document is loaded on first access and rewritten after each
    write, under the same lock that guards reads.
    """

    def __init__(self, file_path: str):
        super().__init__()
        self.file_path = Path(file_path)
        self._loaded = False

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        if self.file_path.exists():
            try:
                data = json.loads(self.file_path.read_text())
                for item in data.get("features", []):
                    feature = Feature.from_dict(item)
                    self._features[feature.slug] = feature
                for item in data.get("overrides", []):
                    override = SubjectOverride.from_dict(item)
                    key = _override_key(
                        override.subject_kind, override.subject_id, override.feature_slug
                    )
                    self._overrides[key] = override
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.error(f"Failed to load feature flags from {self.file_path}: {e}")
                raise FlagStoreError(
                    "Feature flag file is unreadable", path=str(self.file_path)
                ) from e
        self._loaded = True

    def _save_to_file(
        self,
        features: Dict[str, Feature],
        overrides: Dict[OverrideKey, SubjectOverride],
    ) -> None:
        """Write the given state, replacing the file only once fully written."""
        data = {
            "features": [f.to_dict() for f in features.values()],
            "overrides": [o.to_dict() for o in overrides.values()],
            "updated_at": utcnow().isoformat(),
        }
        tmp_path = self.file_path.with_name(self.file_path.name + ".tmp")
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(data, indent=2))
            os.replace(tmp_path, self.file_path)
        except OSError as e:
            logger.error(f"Failed to write feature flags to {self.file_path}: {e}")
            raise FlagStoreError(
                "Feature flag file is not writable", path=str(self.file_path)
            ) from e

    async def get_all_features(self) -> List[Feature]:
        async with self._get_lock():
            self._ensure_loaded()
            return list(self._features.values())

    async def get_feature(self, slug: str) -> Optional[Feature]:
        async with self._get_lock():
            self._ensure_loaded()
            return self._features.get(slug)

    async def save_feature(self, feature: Feature) -> None:
        async with self._get_lock():
            self._ensure_loaded()
            feature.updated_at = utcnow()
            features = dict(self._features)
            features[feature.slug] = feature
            # memory follows the file only after the write succeeded
            self._save_to_file(features, self._overrides)
            self._features = features

    async def get_override(
        self, kind: SubjectKind, subject_id: int, slug: str
    ) -> Optional[SubjectOverride]:
        async with self._get_lock():
            self._ensure_loaded()
        return await super().get_override(kind, subject_id, slug)

    async def get_overrides(self, kind: SubjectKind, subject_id: int) -> List[SubjectOverride]:
        async with self._get_lock():
            self._ensure_loaded()
        return await super().get_overrides(kind, subject_id)

    async def set_override(
        self,
        kind: SubjectKind,
        subject_id: int,
        slug: str,
        enabled: bool,
        assigned_by: str,
    ) -> None:
        key = _override_key(kind, subject_id, slug)
        async with self._get_lock():
            self._ensure_loaded()
            overrides = dict(self._overrides)
            overrides[key] = _upserted(overrides.get(key), key, enabled, assigned_by)
            self._save_to_file(self._features, overrides)
            self._overrides = overrides

    async def get_subject_ids_with_feature_enabled(
        self, kind: SubjectKind, slug: str
    ) -> List[int]:
        async with self._get_lock():
            self._ensure_loaded()
        return await super().get_subject_ids_with_feature_enabled(kind, slug)

    async def ping(self) -> bool:
        async with self._get_lock():
            self._ensure_loaded()
        return True


@contextmanager
def _redis_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except RedisError as e:
        logger.error(f"Redis {operation} failed: {e}", extra={"backend": "redis"})
        raise FlagStoreError("Feature flag store unavailable", operation=operation) from e


@contextmanager
def _decoding(operation: str) -> Iterator[None]:
    try:
        yield
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        logger.error(
            f"Redis {operation} returned an unreadable record: {e}", extra={"backend": "redis"}
        )
        raise FlagStoreError(
            "Feature flag store holds an unreadable record", operation=operation
        ) from e


class RedisFeaturesRepository(FeaturesRepository):
    """Redis feature storage.

    Layout (``p`` is the key prefix):
    - ``p:features`` hash, slug -> feature JSON; enumerated by slug
    - ``p:overrides:<kind>:<id>`` hash, slug -> override JSON

    A single HSET per override write gives last-writer-wins per key.
    """

    def __init__(self, client: Any, prefix: str = "ff"):
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "ff") -> "RedisFeaturesRepository":
        return cls(redis.from_url(url, decode_responses=True), prefix=prefix)

    @property
    def _features_key(self) -> str:
        return f"{self.prefix}:features"

    def _overrides_key(self, kind: SubjectKind, subject_id: int) -> str:
        return f"{self.prefix}:overrides:{kind.override_kind.value}:{subject_id}"

    async def get_all_features(self) -> List[Feature]:
        with _redis_errors("get_all_features"):
            raw = await self.client.hgetall(self._features_key)
        with _decoding("get_all_features"):
            return [Feature.from_dict(json.loads(raw[slug])) for slug in sorted(raw)]

    async def get_feature(self, slug: str) -> Optional[Feature]:
        with _redis_errors("get_feature"):
            raw = await self.client.hget(self._features_key, slug)
        with _decoding("get_feature"):
            return Feature.from_dict(json.loads(raw)) if raw else None

    async def save_feature(self, feature: Feature) -> None:
        feature.updated_at = utcnow()
        with _redis_errors("save_feature"):
            await self.client.hset(self._features_key, feature.slug, json.dumps(feature.to_dict()))

    async def get_override(
        self, kind: SubjectKind, subject_id: int, slug: str
    ) -> Optional[SubjectOverride]:
        with _redis_errors("get_override"):
            raw = await self.client.hget(self._overrides_key(kind, subject_id), slug)
        with _decoding("get_override"):
            return SubjectOverride.from_dict(json.loads(raw)) if raw else None

    async def get_overrides(self, kind: SubjectKind, subject_id: int) -> List[SubjectOverride]:
        with _redis_errors("get_overrides"):
            raw = await self.client.hgetall(self._overrides_key(kind, subject_id))
        with _decoding("get_overrides"):
            return [SubjectOverride.from_dict(json.loads(v)) for v in raw.values()]

    async def set_override(
        self,
        kind: SubjectKind,
        subject_id: int,
        slug: str,
        enabled: bool,
        assigned_by: str,
    ) -> None:
        key = _override_key(kind, subject_id, slug)
        # created_at is carried over best-effort; the HSET itself is the upsert
        previous = await self.get_override(kind, subject_id, slug)
        override = _upserted(previous, key, enabled, assigned_by)
        with _redis_errors("set_override"):
            await self.client.hset(
                self._overrides_key(kind, subject_id), slug, json.dumps(override.to_dict())
            )

    async def get_subject_ids_with_feature_enabled(
        self, kind: SubjectKind, slug: str
    ) -> List[int]:
        pattern = f"{self.prefix}:overrides:{kind.override_kind.value}:*"
        ids: List[int] = []
        with _redis_errors("get_subject_ids_with_feature_enabled"):
            async for key in self.client.scan_iter(match=pattern):
                raw = await self.client.hget(key, slug)
                if not raw:
                    continue
                with _decoding("get_subject_ids_with_feature_enabled"):
                    if json.loads(raw).get("enabled") is True:
                        ids.append(int(key.rsplit(":", 1)[1]))
        return ids

    async def ping(self) -> bool:
        with _redis_errors("ping"):
            return bool(await self.client.ping())


_repository: Optional[FeaturesRepository] = None


def create_features_repository(backend: str) -> FeaturesRepository:
    settings = get_settings()
    if backend == "memory":
        return InMemoryFeaturesRepository()
    if backend == "file":
        return FileFeaturesRepository(settings.FLAG_STORE_PATH)
    if backend == "redis":
        return RedisFeaturesRepository.from_url(settings.REDIS_URL, prefix=settings.REDIS_KEY_PREFIX)
    raise FlagConfigurationError("Unknown flag store backend", backend=backend)


def get_features_repository() -> FeaturesRepository:
    """Process-wide repository bound from FLAG_STORE_BACKEND."""
    global _repository
    if _repository is None:
        backend = get_settings().FLAG_STORE_BACKEND
        _repository = create_features_repository(backend)
        logger.info(f"Feature flag store initialized: {backend}", extra={"backend": backend})
    return _repository


def reset_features_repository() -> None:
    global _repository
    _repository = None


async def seed_features(repository: FeaturesRepository, path: str) -> int:
    """Create features listed in a JSON file that do not exist yet.

    Existing features are left untouched. Returns the number created.
    """
    try:
        data = json.loads(Path(path).read_text())
    except (OSError, ValueError) as e:
        raise FlagConfigurationError(
            "Failed to read feature seed file", path=path, reason=str(e)
        ) from e
    if not isinstance(data, list):
        raise FlagConfigurationError("Feature seed file must be a JSON list", path=path)

    created = 0
    for item in data:
        try:
            feature = Feature.from_dict(item)
        except (KeyError, ValueError, TypeError) as e:
            raise FlagConfigurationError(
                "Invalid feature seed entry", path=path, reason=str(e)
            ) from e
        if await repository.get_feature(feature.slug) is None:
            await repository.save_feature(feature)
            created += 1
    logger.info(f"Seeded {created} features from {path}")
    return created
