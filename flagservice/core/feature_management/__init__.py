"""Feature Management Module.

Provides per-subject feature resolution and opt-in rollout:
- Effective status for users, teams and organizations
- Subject overrides on top of a global switch
- Opt-in allowlist and eligibility
- Multiple storage backends
"""

from flagservice.core.feature_management.models import (
    EligibleOptInFeature,
    Feature,
    FeatureAssignment,
    FeatureType,
    FeatureWithStatus,
    SubjectKind,
    SubjectOverride,
)
from flagservice.core.feature_management.allowlist import (
    OPT_IN_FEATURES,
    OptInAllowlist,
    OptInFeatureConfig,
    get_opt_in_allowlist,
    get_opt_in_feature_config,
    get_opt_in_feature_slugs,
    is_feature_in_opt_in_allowlist,
    reset_opt_in_allowlist,
)
from flagservice.core.feature_management.store import (
    FeaturesRepository,
    FileFeaturesRepository,
    InMemoryFeaturesRepository,
    RedisFeaturesRepository,
    create_features_repository,
    get_features_repository,
    reset_features_repository,
    seed_features,
)
from flagservice.core.feature_management.service import FeatureManagementService

__all__ = [
    # Models
    "EligibleOptInFeature",
    "Feature",
    "FeatureAssignment",
    "FeatureType",
    "FeatureWithStatus",
    "SubjectKind",
    "SubjectOverride",
    # Allowlist
    "OPT_IN_FEATURES",
    "OptInAllowlist",
    "OptInFeatureConfig",
    "get_opt_in_allowlist",
    "get_opt_in_feature_config",
    "get_opt_in_feature_slugs",
    "is_feature_in_opt_in_allowlist",
    "reset_opt_in_allowlist",
    # Store
    "FeaturesRepository",
    "FileFeaturesRepository",
    "InMemoryFeaturesRepository",
    "RedisFeaturesRepository",
    "create_features_repository",
    "get_features_repository",
    "reset_features_repository",
    "seed_features",
    # Service
    "FeatureManagementService",
]
