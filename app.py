import os
from flask import Flask, session, g, jsonify
from werkzeug.exceptions import HTTPException
from config import Config
from models import User
from extensions import db, login_manager, init_extensions
from exceptions import LendingException
from logger import setup_logging
from blueprints.notification_services import notification_service


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    if not app.debug and not app.testing:
        app.config.update(
            SESSION_COOKIE_SECURE=True,
            REMEMBER_COOKIE_SECURE=True,
            REMEMBER_COOKIE_HTTPONLY=True,
        )

    os.makedirs(app.instance_path, exist_ok=True)
    setup_logging(app)

    # --------------------------------------------------------------------------------------------------------------------------
    # Initialize extensions
    # ----------------------------------------------------------------------------------------------------------------------------
    init_extensions(app)
    notification_service.init_app(app)

    register_blueprints(app)
    register_error_handlers(app)

    # ------------------------------------------------------------------------------------------------------------------------
    # Flask-Login user_loader
    # ------------------------------------------------------------------------------------------------------------------------
    @login_manager.user_loader
    def load_user(user_id):
        return User.query.get(int(user_id))

    # ----------------------
    # Global before_request
    # ----------------------
    @app.before_request
    def load_logged_in_user():
        g.user = None
        user_id = session.get("user_id")
        if user_id:
            g.user = User.query.get(user_id)

    @app.route("/healthz")
    def healthz():
        return {"status": "ok"}, 200

    return app


def register_blueprints(app):
    from blueprints.auth import bp as auth_bp
    from blueprints.password_reset import password_bp
    from blueprints.profile import bp as profile_bp
    from blueprints.legal import bp as legal_bp
    from blueprints.loans import bp as loans_bp
    from blueprints.settings import settings_bp
    from blueprints.payments import bp as payments_bp
    from blueprints.payment_webhooks import bp as webhooks_bp
    from blueprints.disbursements import bp as disbursements_bp
    from blueprints.receipts import bp as receipts_bp
    from blueprints.referrals import referrals_bp
    from blueprints.notifications import bp as notifications_bp
    from blueprints.support import bp as support_bp
    from blueprints.live_chat import bp as live_chat_bp
    from blueprints.ai_chat import bp as ai_chat_bp
    from blueprints.analytics import bp as analytics_bp
    from blueprints.audit import audit_bp
    from blueprints.admin import admin_bp
    from blueprints.admin_utils import admin_utils_bp

    for blueprint in (auth_bp, password_bp, profile_bp, legal_bp, loans_bp, settings_bp,
                      payments_bp, webhooks_bp, disbursements_bp, receipts_bp, referrals_bp,
                      notifications_bp, support_bp, live_chat_bp, ai_chat_bp, analytics_bp,
                      audit_bp, admin_bp, admin_utils_bp):
        app.register_blueprint(blueprint)


def register_error_handlers(app):

    @app.errorhandler(LendingException)
    def handle_lending_exception(e):
        db.session.rollback()
        if e.status_code >= 500:
            app.logger.error(f"{type(e).__name__}: {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        db.session.rollback()
        app.logger.error(f"Unhandled error: {e}", exc_info=True)
        return jsonify({"error": "Internal server error"}), 500
