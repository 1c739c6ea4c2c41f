import os
import pytest


# Environment variables that tests may modify
_ENV_VARS_TO_ISOLATE = [
    "FLAG_STORE_BACKEND",
    "FLAG_STORE_PATH",
    "REDIS_URL",
    "REDIS_KEY_PREFIX",
    "OPT_IN_FEATURES_PATH",
    "FEATURE_SEED_PATH",
    "USER_ID_HEADER",
]


@pytest.fixture(autouse=True)
def env_isolation():
    """Isolate environment variables between tests."""
    backup = {k: os.environ.get(k) for k in _ENV_VARS_TO_ISOLATE}
    try:
        yield
    finally:
        for k, v in backup.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v


@pytest.fixture(autouse=True)
def process_cache_isolation():
    """Reset process-wide settings, repository and allowlist between tests."""
    from flagservice.core.config import reset_settings
    from flagservice.core.feature_management import (
        reset_features_repository,
        reset_opt_in_allowlist,
    )

    reset_settings()
    reset_features_repository()
    reset_opt_in_allowlist()
    try:
        yield
    finally:
        reset_settings()
        reset_features_repository()
        reset_opt_in_allowlist()
