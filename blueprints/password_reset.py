import secrets
import logging
from datetime import datetime
from flask import Blueprint, jsonify, current_app
from models import db, User, PasswordResetToken
from utils import get_json_body, validate_password_strength
from exceptions import ValidationError
from blueprints.notification_services import notification_service, password_reset_email
from blueprints.security_middleware import security_middleware, AUTH_LIMIT

logger = logging.getLogger(__name__)

password_bp = Blueprint('password', __name__, url_prefix='/api/auth/password')

RESET_TOKEN_TTL_SECONDS = 3600


@password_bp.route('/forgot', methods=['POST'])
@security_middleware.rate_limit(*AUTH_LIMIT)
def request_password_reset():
    """
    Step 1: Request a reset link by email.
    Always answers with success so the endpoint cannot be used to discover which emails have accounts.
    """
    data = get_json_body()
    email = (data.get('email') or '').strip().lower()
    response = jsonify({
        'success': True,
        'message': 'If an account exists for that email, a reset link has been sent.'
    })

    user = User.query.filter_by(email=email).first() if email else None
    if not user:
        logger.warning(f"Password reset attempt for unknown email: {email}")
        return response, 200

    token = PasswordResetToken(
        user_id=user.id,
        token=secrets.token_hex(32),
        expires_at=PasswordResetToken.make_expires(RESET_TOKEN_TTL_SECONDS),
    )
    db.session.add(token)
    db.session.commit()

    reset_url = f"{current_app.config.get('APP_BASE_URL')}/reset-password?token={token.token}"
    subject, body = password_reset_email(user, reset_url)
    notification_service.notify_email(user.email, subject, body, user_id=user.id)
    logger.info(f"Password reset link issued for user {user.id}")
    return response, 200


@password_bp.route('/reset', methods=['POST'])
@security_middleware.rate_limit(*AUTH_LIMIT)
def reset_password():
    """
    Step 2: Verify the token and register the new password
    """
    data = get_json_body()
    token_value = (data.get('token') or '').strip()
    new_password = data.get('newPassword') or ''

    if not token_value:
        raise ValidationError("Reset token is required")

    ok, error = validate_password_strength(new_password)
    if not ok:
        raise ValidationError(error)

    token = PasswordResetToken.query.filter_by(token=token_value).first()
    if not token:
        raise ValidationError("Invalid reset link")
    if token.used_at:
        raise ValidationError("This reset link has already been used")
    if datetime.utcnow() > token.expires_at:
        raise ValidationError("This reset link has expired. Please request a new one")

    user = User.query.get(token.user_id)
    if not user:
        raise ValidationError("Invalid reset link")

    user.set_password(new_password)
    token.used_at = datetime.utcnow()
    db.session.commit()

    logger.info(f"Password successfully reset for user {user.id}")
    return jsonify({
        'success': True,
        'message': 'Password has been reset successfully. You can now login with your new password.'
    }), 200
