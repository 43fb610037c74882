import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _default_sqlite_uri() -> str:
    instance_path = BASE_DIR / "instance"
    instance_path.mkdir(exist_ok=True)
    return f"sqlite:///{instance_path / 'deepstory.db'}"


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


class Config:
    """Base configuration shared across environments."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", _default_sqlite_uri())
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Defaults for requests that do not carry their own provider settings.
    DEEPSTORY_PROVIDER = os.environ.get("DEEPSTORY_PROVIDER", "")
    DEEPSTORY_BASE_URL = os.environ.get("DEEPSTORY_BASE_URL", "")
    DEEPSTORY_API_KEY = os.environ.get("DEEPSTORY_API_KEY", "")
    DEEPSTORY_MODEL = os.environ.get("DEEPSTORY_MODEL", "")
    DEEPSTORY_FALLBACK_MODEL = os.environ.get("DEEPSTORY_FALLBACK_MODEL", "")
    DEEPSTORY_MAX_ATTEMPTS = _int_env("DEEPSTORY_MAX_ATTEMPTS", 3)


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    DEEPSTORY_PROVIDER = ""
    DEEPSTORY_BASE_URL = ""
    DEEPSTORY_API_KEY = ""
    DEEPSTORY_MODEL = ""
    DEEPSTORY_FALLBACK_MODEL = ""
