# backend/retail/__init__.py
from flask import Flask, jsonify

from .config import Config
from .errors import InternalError, RetailError
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(str(app.config.get("LOG_LEVEL", "INFO")).upper())

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.products import products_bp
    from .routes.stock import stock_bp
    from .routes.sales import sales_bp
    from .routes.subscription import subscription_bp
    from .routes.invoices import invoices_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(subscription_bp)
    app.register_blueprint(invoices_bp)

    @app.errorhandler(RetailError)
    def handle_retail_error(exc: RetailError):
        if isinstance(exc, InternalError):
            app.logger.error("Internal error: %s (cause: %r)", exc.message, exc.cause)
        return jsonify(exc.to_dict()), exc.http_status

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
