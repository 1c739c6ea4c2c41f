"""Feature Management Data Model.

Provides:
- Persisted records (Feature, SubjectOverride)
- Joined store views (FeatureAssignment)
- Derived engine results (FeatureWithStatus, EligibleOptInFeature)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FeatureType(str, Enum):
    """Category tag of a feature."""
    RELEASE = "RELEASE"
    EXPERIMENT = "EXPERIMENT"
    OPERATIONAL = "OPERATIONAL"
    KILL_SWITCH = "KILL_SWITCH"
    PERMISSION = "PERMISSION"


class SubjectKind(str, Enum):
    """Who an override applies to."""
    USER = "user"
    TEAM = "team"
    ORGANIZATION = "organization"

    @property
    def override_kind(self) -> "SubjectKind":
        """Organizations are teams with an organization marker and share
        the team identifier space, so their overrides are team overrides."""
        if self is SubjectKind.ORGANIZATION:
            return SubjectKind.TEAM
        return self


@dataclass
class Feature:
    """A globally togglable capability."""
    slug: str
    enabled: bool = False
    description: Optional[str] = None
    type: FeatureType = FeatureType.RELEASE
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slug": self.slug,
            "enabled": self.enabled,
            "description": self.description,
            "type": self.type.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Feature":
        now = utcnow()
        return cls(
            slug=data["slug"],
            enabled=_parse_bool(data.get("enabled", False), "enabled"),
            description=data.get("description"),
            type=FeatureType(data.get("type", FeatureType.RELEASE.value)),
            created_at=_parse_ts(data.get("created_at"), now),
            updated_at=_parse_ts(data.get("updated_at"), now),
        )


@dataclass
class SubjectOverride:
    """Explicit enabled/disabled choice of one subject for one feature.

    At most one exists per (subject_kind, subject_id, feature_slug).
    """
    subject_kind: SubjectKind
    subject_id: int
    feature_slug: str
    enabled: bool
    assigned_by: str
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_kind": self.subject_kind.value,
            "subject_id": self.subject_id,
            "feature_slug": self.feature_slug,
            "enabled": self.enabled,
            "assigned_by": self.assigned_by,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubjectOverride":
        now = utcnow()
        return cls(
            subject_kind=SubjectKind(data["subject_kind"]),
            subject_id=int(data["subject_id"]),
            feature_slug=data["feature_slug"],
            enabled=_parse_bool(data["enabled"], "enabled"),
            assigned_by=data.get("assigned_by", ""),
            created_at=_parse_ts(data.get("created_at"), now),
            updated_at=_parse_ts(data.get("updated_at"), now),
        )


@dataclass
class FeatureAssignment:
    """Joined view of an override together with its feature."""
    feature: Feature
    enabled: bool


@dataclass
class FeatureWithStatus:
    """Effective status of one feature for one subject."""
    slug: str
    enabled: bool
    globally_enabled: bool
    description: Optional[str]
    type: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slug": self.slug,
            "enabled": self.enabled,
            "globally_enabled": self.globally_enabled,
            "description": self.description,
            "type": self.type,
        }


@dataclass
class EligibleOptInFeature:
    """A feature that may currently be offered to a user via the opt-in prompt."""
    slug: str
    title_i18n_key: str
    description_i18n_key: str
    learn_more_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slug": self.slug,
            "title_i18n_key": self.title_i18n_key,
            "description_i18n_key": self.description_i18n_key,
            "learn_more_url": self.learn_more_url,
        }


def _parse_ts(value: Optional[str], default: datetime) -> datetime:
    if not value:
        return default
    return datetime.fromisoformat(value)


def _parse_bool(value: Any, name: str) -> bool:
    # "false" must not read as truthy
    if not isinstance(value, bool):
        raise TypeError(f"{name} must be a JSON boolean, got {value!r}")
    return value
