import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _default_sqlite_uri() -> str:
    instance_path = BASE_DIR / "instance"
    instance_path.mkdir(exist_ok=True)
    return f"sqlite:///{instance_path / 'bookgen.db'}"


class Config:
    """Base configuration shared across environments."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", _default_sqlite_uri())
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_TIME_LIMIT = None

    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
    LLM_MODEL = os.environ.get("LLM_MODEL", "gpt-4o-mini")
    PROMPT_CONFIG_PATH = os.environ.get("PROMPT_CONFIG_PATH", str(BASE_DIR / "prompt_config.json"))
    SUMMARY_CHAR_LIMIT = int(os.environ.get("SUMMARY_CHAR_LIMIT", "500"))
    MAX_ACTIVE_RUNS = int(os.environ.get("MAX_ACTIVE_RUNS", "32"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    WTF_CSRF_ENABLED = False
    OPENAI_API_KEY = "test-key"
