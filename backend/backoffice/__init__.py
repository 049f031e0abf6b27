# backend/backoffice/__init__.py
from __future__ import annotations

from flask import Flask, request

from .config import Config
from .extensions import db, migrate, events


def _engine_options(app: Flask) -> dict:
    """Statement timeout per backend: PostgreSQL statement_timeout, SQLite busy timeout."""
    options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
    connect_args = dict(options.get("connect_args") or {})
    uri = app.config["SQLALCHEMY_DATABASE_URI"]
    timeout_ms = app.config["DB_STATEMENT_TIMEOUT_MS"]

    if uri.startswith("sqlite"):
        connect_args.setdefault("timeout", timeout_ms / 1000)
    elif uri.startswith("postgresql"):
        connect_args.setdefault("options", f"-c statement_timeout={timeout_ms}")

    options["connect_args"] = connect_args
    return options


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = _engine_options(app)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    events.init_app(app)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.audit_service import register_default_handlers
    register_default_handlers(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.stock import stock_bp
    from .routes.transfers import transfers_bp
    from .routes.transactions import transactions_bp
    from .routes.returns import returns_bp
    from .routes.sync import sync_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(transfers_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(returns_bp)
    app.register_blueprint(sync_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "X-User-Id, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
