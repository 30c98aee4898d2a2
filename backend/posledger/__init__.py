# backend/posledger/__init__.py
import logging

from flask import Flask
from sqlalchemy import event

from .config import Config
from .extensions import db, migrate


def _configure_sqlite(app: Flask) -> None:
    """Set connection pragmas on every new SQLite connection."""
    if not app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        return

    busy_timeout_ms = int(app.config.get("SQLITE_BUSY_TIMEOUT_MS", 5000))
    in_memory = ":memory:" in app.config["SQLALCHEMY_DATABASE_URI"]

    @event.listens_for(db.engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={busy_timeout_ms}")
        cursor.close()


def create_app(config_object=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    with app.app_context():
        _configure_sqlite(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.sales import sales_bp
    from .routes.inventory import inventory_bp
    from .routes.purchases import purchases_bp
    from .routes.shifts import shifts_bp
    from .routes.settings import settings_bp
    from .routes.reports import reports_bp
    from .routes.products import products_bp
    from .routes.suppliers import suppliers_bp
    from .routes.branches import branches_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(purchases_bp)
    app.register_blueprint(shifts_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(suppliers_bp)
    app.register_blueprint(branches_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
