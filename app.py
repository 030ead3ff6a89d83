import os
from flask import Flask, jsonify
from flask_login import current_user
from werkzeug.exceptions import HTTPException
from sqlalchemy import text

from config import Config
from extensions import db, login_manager, init_extensions
from logger import configure_app_logging
from models import User
from commission.exceptions import CommissionError


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    if not app.debug and not app.testing:
        app.config.update(
            SESSION_COOKIE_SECURE=True,
            SESSION_COOKIE_HTTPONLY=True,
            REMEMBER_COOKIE_SECURE=True,
            REMEMBER_COOKIE_HTTPONLY=True,
        )

    # ------------------------------------------------------------------------------------------
    # LOGGING
    # ------------------------------------------------------------------------------------------
    configure_app_logging(app)

    # --------------------------------------------------------------------------------------------------------------------------
    # Initialize extensions
    # ----------------------------------------------------------------------------------------------------------------------------
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///"):
        os.makedirs(os.path.join(os.path.dirname(os.path.abspath(__file__)), "instance"), exist_ok=True)
    init_extensions(app)

    # ------------------------------------------------------------------------------------------------------------------------
    # Register blueprints
    # -----------------------------------------------------------------------------------------------------------------------
    register_blueprints(app)
    register_error_handlers(app)

    from cli import register_commands
    register_commands(app)

    # ------------------------------------------------------------------------------------------------------------------------
    # Flask-Login
    # ------------------------------------------------------------------------------------------------------------------------
    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Unauthorized"}), 401

    # ----------------------
    # Basic routes
    # ----------------------
    @app.route("/healthz")
    def healthz():
        db.session.execute(text("SELECT 1"))
        return {"status": "ok"}, 200

    return app


def register_blueprints(app):
    from blueprints.auth import bp as auth_bp
    from blueprints.user import bp as user_bp
    from blueprints.commissions import bp as commissions_bp
    from blueprints.purchases import bp as purchases_bp
    from blueprints.withdrawals import bp as withdrawals_bp
    from blueprints.admin import admin_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(commissions_bp)
    app.register_blueprint(purchases_bp)
    app.register_blueprint(withdrawals_bp)
    app.register_blueprint(admin_bp)


def register_error_handlers(app):
    """Domain errors become JSON with their status; anything unexpected is a logged 500."""

    @app.errorhandler(CommissionError)
    def handle_commission_error(error):
        db.session.rollback()
        app.logger.warning(f"{type(error).__name__} on user {_actor()}: {error.message}")
        return jsonify({"error": error.message}), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({"error": error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        db.session.rollback()
        app.logger.exception(f"Unhandled error on user {_actor()}: {error}")
        return jsonify({"error": "Internal server error"}), 500


def _actor():
    return current_user.id if current_user and current_user.is_authenticated else None
