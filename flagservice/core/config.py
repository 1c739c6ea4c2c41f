"""Runtime settings for the feature management service."""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # Flag store backend (memory|file|redis)
    FLAG_STORE_BACKEND: str = "memory"
    FLAG_STORE_PATH: str = "data/feature_flags.json"
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_KEY_PREFIX: str = "ff"

    # Opt-in allowlist / startup seed (JSON files, empty = built-in defaults)
    OPT_IN_FEATURES_PATH: str = ""
    FEATURE_SEED_PATH: str = ""

    # Web settings
    CORS_ORIGINS: list[str] = ["*"]
    USER_ID_HEADER: str = "x-user-id"
    METRICS_ENABLED: bool = True

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
    }


_settings_cache: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings()
    return _settings_cache


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings_cache
    _settings_cache = None
