from __future__ import annotations

from pathlib import Path

from flask import Flask
from dotenv import load_dotenv

from .config import Config
from .extensions import csrf, db, migrate
from .db_utils import ensure_database_schema


BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


def create_app(config_class: type[Config] = Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)
    app.config.setdefault("PROMPT_CONFIG_PATH", str(BASE_DIR / "prompt_config.json"))

    register_extensions(app)
    register_blueprints(app)

    with app.app_context():
        ensure_database_schema()

    return app


def register_extensions(app: Flask) -> None:
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)


def register_blueprints(app: Flask) -> None:
    from .api import bp as api_bp

    # The JSON/SSE API is consumed by fetch() calls, not by rendered forms.
    csrf.exempt(api_bp)
    app.register_blueprint(api_bp)


__all__ = ["create_app", "db"]
