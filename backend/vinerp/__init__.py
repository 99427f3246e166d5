# backend/vinerp/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    """Build the VinERP API. `config_overrides` is applied on top of Config (tests use it)."""
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Models must be imported before Flask-Migrate autogenerates
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.catalog import catalog_bp
    from .routes.checkout import checkout_bp
    from .routes.invoices import invoices_bp
    from .routes.transfers import transfers_bp
    from .routes.ledger import ledger_bp
    from .routes.accounts import accounts_bp
    from .routes.fiscal import fiscal_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(transfers_bp)
    app.register_blueprint(ledger_bp)
    app.register_blueprint(accounts_bp)
    app.register_blueprint(fiscal_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin and origin in app.config["CORS_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "X-User-Id, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
