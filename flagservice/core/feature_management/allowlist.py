"""Opt-In Allowlist Config.

Static, process-wide table of the features that may be offered to users
through the opt-in prompt. The table is built once at process start and is
read-only afterwards; changing it means shipping a new table (or a new
``OPT_IN_FEATURES_PATH`` file), not calling into the service.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, Optional, Tuple

from flagservice.core.config import get_settings
from flagservice.core.errors import FlagConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OptInFeatureConfig:
    """Rollout metadata for one allowlisted feature."""
    slug: str
    title_i18n_key: str
    description_i18n_key: str
    learn_more_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OptInFeatureConfig":
        if not isinstance(data, dict):
            raise FlagConfigurationError("Opt-in feature entry must be an object")
        missing = [
            k for k in ("slug", "title_i18n_key", "description_i18n_key")
            if not data.get(k)
        ]
        if missing:
            raise FlagConfigurationError(
                "Opt-in feature entry is missing required keys",
                missing=missing,
            )
        return cls(
            slug=data["slug"],
            title_i18n_key=data["title_i18n_key"],
            description_i18n_key=data["description_i18n_key"],
            learn_more_url=data.get("learn_more_url") or None,
        )


OPT_IN_FEATURES: Tuple[OptInFeatureConfig, ...] = (
    OptInFeatureConfig(
        slug="bookings-v3",
        title_i18n_key="bookings_v3_opt_in_title",
        description_i18n_key="bookings_v3_opt_in_description",
    ),
)


class OptInAllowlist:
    """Immutable, ordered slug -> OptInFeatureConfig table."""

    def __init__(self, configs: Iterable[OptInFeatureConfig]):
        table: Dict[str, OptInFeatureConfig] = {}
        for config in configs:
            if config.slug in table:
                raise FlagConfigurationError(
                    "Duplicate slug in opt-in allowlist", slug=config.slug
                )
            table[config.slug] = config
        self._table = MappingProxyType(table)
        self._slugs = tuple(table)

    @classmethod
    def from_file(cls, path: str) -> "OptInAllowlist":
        """Load an allowlist from a JSON list; file order is enumeration order."""
        try:
            data = json.loads(Path(path).read_text())
        except (OSError, ValueError) as e:
            raise FlagConfigurationError(
                "Failed to read opt-in allowlist", path=path, reason=str(e)
            ) from e
        if not isinstance(data, list):
            raise FlagConfigurationError(
                "Opt-in allowlist must be a JSON list", path=path
            )
        return cls(OptInFeatureConfig.from_dict(item) for item in data)

    def get(self, slug: str) -> Optional[OptInFeatureConfig]:
        return self._table.get(slug)

    def slugs(self) -> Tuple[str, ...]:
        return self._slugs

    def contains(self, slug: str) -> bool:
        return slug in self._table

    def __contains__(self, slug: object) -> bool:
        return slug in self._table

    def __iter__(self) -> Iterator[OptInFeatureConfig]:
        return iter(self._table.values())

    def __len__(self) -> int:
        return len(self._table)


_allowlist: Optional[OptInAllowlist] = None


def get_opt_in_allowlist() -> OptInAllowlist:
    """Process-wide allowlist, built on first use from settings."""
    global _allowlist
    if _allowlist is None:
        path = get_settings().OPT_IN_FEATURES_PATH
        if path:
            _allowlist = OptInAllowlist.from_file(path)
            logger.info(f"Loaded opt-in allowlist from {path} ({len(_allowlist)} features)")
        else:
            _allowlist = OptInAllowlist(OPT_IN_FEATURES)
    return _allowlist


def reset_opt_in_allowlist() -> None:
    global _allowlist
    _allowlist = None


def get_opt_in_feature_config(slug: str) -> Optional[OptInFeatureConfig]:
    return get_opt_in_allowlist().get(slug)


def get_opt_in_feature_slugs() -> Tuple[str, ...]:
    return get_opt_in_allowlist().slugs()


def is_feature_in_opt_in_allowlist(slug: str) -> bool:
    return get_opt_in_allowlist().contains(slug)
