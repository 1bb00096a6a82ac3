# backend/pinauth/__init__.py
from flask import Flask

from .config import Config, engine_options_for, validate_config
from .extensions import db, migrate, rate_limiter


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    validate_config(app.config)

    # Every wait on the store is bounded by STORE_TIMEOUT_SECONDS
    app.config.setdefault(
        "SQLALCHEMY_ENGINE_OPTIONS",
        engine_options_for(app.config["SQLALCHEMY_DATABASE_URI"], app.config["STORE_TIMEOUT_SECONDS"]),
    )

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    rate_limiter.init_app(app)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.admin import admin_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)

    from .decorators import attach_csrf_header
    from .security_headers import register_security_headers

    app.after_request(attach_csrf_header)
    register_security_headers(app)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
