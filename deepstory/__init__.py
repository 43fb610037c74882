from __future__ import annotations

from pathlib import Path

from flask import Flask
from dotenv import load_dotenv

from .config import Config
from .extensions import db
from .db_utils import ensure_database_schema


BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")


def create_app(config_class: type[Config] = Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)
    app.json.ensure_ascii = False

    register_extensions(app)
    register_blueprints(app)

    with app.app_context():
        ensure_database_schema()

    return app


def register_extensions(app: Flask) -> None:
    db.init_app(app)
    # One orchestrator per project key, created on first use.
    app.extensions["deepstory_orchestrators"] = {}


def register_blueprints(app: Flask) -> None:
    from .projects import bp as projects_bp

    app.register_blueprint(projects_bp)


__all__ = ["create_app", "db"]
