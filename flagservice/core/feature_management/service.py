"""Feature Resolution Engine.

Computes per-subject effective feature status and the set of allowlisted
features that may currently be offered to a user through the opt-in prompt.
Holds no state of its own: every call re-reads the flag store.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Union

from flagservice.core.errors import FeatureNotInAllowlistError
from flagservice.core.feature_management.allowlist import (
    OptInAllowlist,
    OptInFeatureConfig,
    get_opt_in_allowlist,
)
from flagservice.core.feature_management.models import (
    EligibleOptInFeature,
    FeatureAssignment,
    FeatureWithStatus,
    SubjectKind,
)
from flagservice.core.feature_management.store import FeaturesRepository
from flagservice.utils.metrics import (
    feature_opt_in_total,
    feature_override_writes_total,
    feature_store_latency_seconds,
)

logger = logging.getLogger(__name__)


class FeatureManagementService:
    """Feature opt-in/opt-out business logic over a FeaturesRepository."""

    def __init__(
        self,
        repository: FeaturesRepository,
        allowlist: Optional[OptInAllowlist] = None,
    ):
        self.repository = repository
        self.allowlist = allowlist if allowlist is not None else get_opt_in_allowlist()

    # Effective status

    async def list_effective_status(
        self,
        subject_kind: Union[SubjectKind, str],
        subject_id: int,
    ) -> List[FeatureWithStatus]:
        """One entry per known feature, in store order.

        ``enabled`` is the subject's override, or False when there is none;
        the global switch is reported separately and never folded in.
        """
        kind = SubjectKind(subject_kind).override_kind
        with feature_store_latency_seconds.labels(operation="list_effective_status").time():
            if kind is SubjectKind.USER:
                assignments = await self.repository.get_user_features(subject_id)
            else:
                assignments = await self.repository.get_team_features_with_details(subject_id)
            features = await self.repository.get_all_features()

        overrides = _overrides_by_slug(assignments)
        return [
            FeatureWithStatus(
                slug=feature.slug,
                enabled=overrides.get(feature.slug, False),
                globally_enabled=feature.enabled,
                description=feature.description,
                type=feature.type.value,
            )
            for feature in features
        ]

    async def list_features_for_user(self, user_id: int) -> List[FeatureWithStatus]:
        return await self.list_effective_status(SubjectKind.USER, user_id)

    async def list_features_for_team(self, team_id: int) -> List[FeatureWithStatus]:
        return await self.list_effective_status(SubjectKind.TEAM, team_id)

    async def list_features_for_organization(self, organization_id: int) -> List[FeatureWithStatus]:
        # Organizations are teams; same identifier space, same lookup.
        return await self.list_effective_status(SubjectKind.ORGANIZATION, organization_id)

    # Overrides

    async def set_subject_feature_enabled(
        self,
        subject_kind: Union[SubjectKind, str],
        subject_id: int,
        feature_slug: str,
        enabled: bool,
        assigned_by: str,
    ) -> None:
        """Upsert the subject's override. The feature record is never touched
        and the slug is not checked against known features."""
        requested = SubjectKind(subject_kind)
        kind = requested.override_kind
        with feature_store_latency_seconds.labels(operation="set_subject_feature_enabled").time():
            if kind is SubjectKind.USER:
                await self.repository.set_user_feature_enabled(
                    subject_id, feature_slug, enabled, assigned_by
                )
            else:
                await self.repository.set_team_feature_enabled(
                    subject_id, feature_slug, enabled, assigned_by
                )

        feature_override_writes_total.labels(
            subject_kind=requested.value, enabled=str(enabled).lower()
        ).inc()
        logger.info(
            f"Feature '{feature_slug}' set to {enabled} for {requested.value} {subject_id}",
            extra={
                "subject_kind": requested.value,
                "subject_id": subject_id,
                "feature_slug": feature_slug,
                "enabled": enabled,
                "assigned_by": assigned_by,
            },
        )

    async def set_user_feature_enabled(
        self, user_id: int, feature_slug: str, enabled: bool, assigned_by: str
    ) -> None:
        await self.set_subject_feature_enabled(
            SubjectKind.USER, user_id, feature_slug, enabled, assigned_by
        )

    async def set_team_feature_enabled(
        self, team_id: int, feature_slug: str, enabled: bool, assigned_by: str
    ) -> None:
        await self.set_subject_feature_enabled(
            SubjectKind.TEAM, team_id, feature_slug, enabled, assigned_by
        )

    async def set_organization_feature_enabled(
        self, organization_id: int, feature_slug: str, enabled: bool, assigned_by: str
    ) -> None:
        await self.set_subject_feature_enabled(
            SubjectKind.ORGANIZATION, organization_id, feature_slug, enabled, assigned_by
        )

    # Opt-in

    async def get_eligible_opt_in_features(self, user_id: int) -> List[EligibleOptInFeature]:
        """Allowlisted features to offer this user, in allowlist order.

        A feature is eligible when it is allowlisted, globally enabled, and the
        user has no override that is exactly True. An explicit opt-out (False
        override) keeps the feature eligible.
        """
        eligible: List[EligibleOptInFeature] = []
        with feature_store_latency_seconds.labels(operation="get_eligible_opt_in_features").time():
            for slug in self.allowlist.slugs():
                config = self.allowlist.get(slug)
                if config is None:
                    continue

                override = await self.repository.get_user_feature(user_id, slug)
                if override is not None and override.enabled is True:
                    continue

                if not await self.repository.check_if_feature_is_enabled_globally(slug):
                    continue

                eligible.append(
                    EligibleOptInFeature(
                        slug=config.slug,
                        title_i18n_key=config.title_i18n_key,
                        description_i18n_key=config.description_i18n_key,
                        learn_more_url=config.learn_more_url,
                    )
                )

        logger.debug(
            f"{len(eligible)} opt-in features eligible for user {user_id}",
            extra={"subject_id": user_id, "eligible_count": len(eligible)},
        )
        return eligible

    async def has_user_opted_in(self, user_id: int, feature_slug: str) -> bool:
        override = await self.repository.get_user_feature(user_id, feature_slug)
        return override is not None and override.enabled is True

    def is_feature_in_opt_in_allowlist(self, slug: str) -> bool:
        return self.allowlist.contains(slug)

    def get_opt_in_feature_config(self, slug: str) -> Optional[OptInFeatureConfig]:
        return self.allowlist.get(slug)

    async def opt_in_to_feature(self, user_id: int, feature_slug: str) -> None:
        """Enable an allowlisted feature for the user on their own behalf.

        Raises:
            FeatureNotInAllowlistError: the slug is not offered for opt-in;
                nothing is written.
        """
        if not self.is_feature_in_opt_in_allowlist(feature_slug):
            feature_opt_in_total.labels(status="rejected").inc()
            logger.warning(
                f"Rejected opt-in to '{feature_slug}': not in allowlist",
                extra={
                    "subject_id": user_id,
                    "feature_slug": feature_slug,
                    "error_code": FeatureNotInAllowlistError.code.value,
                },
            )
            raise FeatureNotInAllowlistError(feature_slug)

        await self.set_user_feature_enabled(user_id, feature_slug, True, f"user:{user_id}")
        feature_opt_in_total.labels(status="ok").inc()


def _overrides_by_slug(assignments: List[FeatureAssignment]) -> Dict[str, bool]:
    return {a.feature.slug: a.enabled for a in assignments}
