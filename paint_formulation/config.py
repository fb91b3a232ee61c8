"""Runtime settings, read from the environment with local defaults."""

import os

# Mapping of setting names to the environment variables that override them
_ENV_VARS = {
    "database_url": "DATABASE_URL",
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "seed_catalog": "SEED_CATALOG",
}

_DEFAULTS = {
    "database_url": "sqlite:///./formulations.db",
    "log_level": "INFO",
    "log_file": "formulation.log",
    "seed_catalog": "1",
}


def get_setting(name: str) -> str:
    """Return a setting from its environment variable, else the default."""
    value = os.getenv(_ENV_VARS[name])
    return _DEFAULTS[name] if value is None else value


def database_url() -> str:
    return get_setting("database_url")


def seed_catalog_enabled() -> bool:
    return get_setting("seed_catalog").strip().lower() not in {"0", "false", "no", ""}
