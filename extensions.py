# Shared extension instances; bound to the app in init_extensions()
from flask import jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_migrate import Migrate
from flask_mail import Mail


db = SQLAlchemy()
login_manager = LoginManager()
migrate = Migrate()
mail = Mail()


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "Please login (10001)"}), 401


def init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db, directory="migrations", render_as_batch=True)
    mail.init_app(app)
    login_manager.init_app(app)

    app.logger.info(f"Extensions ready (mail suppressed: {app.config.get('MAIL_SUPPRESS_SEND')})")
    return app
