import logging
from flask import Blueprint, jsonify, g, current_app
from extensions import db
from models import User
from utils import login_required, get_json_body, validate_email, validate_phone, format_phone
from exceptions import ValidationError, AuthenticationError
from blueprints.notification_services import notification_service, profile_updated_email

logger = logging.getLogger(__name__)

bp = Blueprint("profile", __name__, url_prefix="/api/profile")


@bp.route("", methods=["GET"])
@login_required
def get_profile():
    return jsonify({"user": g.user.to_dict()}), 200


@bp.route("", methods=["PUT"])
@login_required
def update_profile():
    data = get_json_body()
    user = g.user
    changes = []

    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Name cannot be empty")
        if name != user.name:
            changes.append(("Name", user.name, name))
            user.name = name

    if "email" in data:
        email = (data.get("email") or "").strip().lower()
        if not validate_email(email):
            raise ValidationError("A valid email is required")
        if email != user.email:
            if User.query.filter(User.email == email, User.id != user.id).first():
                raise ValidationError("Email already in use")
            changes.append(("Email", user.email, email))
            user.email = email
            user.email_verified = False

    if "phoneNumber" in data:
        phone = (data.get("phoneNumber") or "").strip()
        if phone and not validate_phone(phone):
            raise ValidationError("Invalid phone number")
        phone = format_phone(phone) if phone else None
        if phone != user.phone_number:
            if phone and User.query.filter(User.phone_number == phone, User.id != user.id).first():
                raise ValidationError("Phone number already in use")
            changes.append(("Phone", user.phone_number, phone))
            user.phone_number = phone
            user.phone_verified = False

    db.session.commit()

    if changes and user.email:
        subject, body = profile_updated_email(user, changes)
        notification_service.notify_email(user.email, subject, body, user_id=user.id)

    current_app.logger.info(f"Profile updated for user {user.id}: {[c[0] for c in changes]}")
    return jsonify({"success": True, "user": user.to_dict()}), 200


@bp.route("/password", methods=["POST"])
@login_required
def change_password():
    data = get_json_body()
    current_password = data.get("currentPassword") or ""
    new_password = data.get("newPassword") or ""

    if not g.user.check_password(current_password):
        raise AuthenticationError("Current password is incorrect")
    if len(new_password) < 8:
        raise ValidationError("New password must be at least 8 characters")

    g.user.set_password(new_password)
    db.session.commit()
    logger.info(f"Password changed for user {g.user.id}")
    return jsonify({"success": True}), 200
