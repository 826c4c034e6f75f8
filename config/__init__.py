import os


def get_settings_module() -> str:
    # APP_ENV selects the settings module; default is development.
    env = os.getenv("APP_ENV", "development").lower()
    if env in {"prod", "production"}:
        return "config.production"
    if env in {"test", "testing"}:
        return "config.testing"
    return "config.development"


def db_config_from_env(*, database: str, user: str = "root") -> dict:
    """DB_* environment variables, with per-environment defaults."""

    return {
        "host": os.getenv("DB_HOST", "localhost"),
        "port": int(os.getenv("DB_PORT", "3306")),
        "user": os.getenv("DB_USER", user),
        "password": os.getenv("DB_PASSWORD", ""),
        "database": os.getenv("DB_NAME", database),
    }


def env_flag(name: str, default: bool) -> bool:
    return bool(int(os.getenv(name, "1" if default else "0")))
