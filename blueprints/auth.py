from datetime import datetime
import logging
from flask import jsonify, session, Blueprint, current_app, g
from flask_login import login_user, logout_user
from extensions import db
from models import User, OtpPurpose
from utils import (validate_email, normalize_phone, validate_password_strength,
                   get_json_body, generate_referral_code)
from exceptions import ValidationError, ConflictError, AuthenticationError, NotFoundError
from blueprints.otp_services import otp_service
from blueprints.referrals import record_referral
from blueprints.security_middleware import security_middleware, AUTH_LIMIT, OTP_LIMIT


logger = logging.getLogger(__name__)
#==================================================================================================================

bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def start_session(user):
    """Log the user in on this client."""
    session.clear()
    session["user_id"] = user.id
    session.permanent = True
    login_user(user)
    user.last_signed_in = datetime.utcnow()
    g.user = user


def _display_name(first_name, last_name, fallback):
    name = f"{(first_name or '').strip()} {(last_name or '').strip()}".strip()
    return name or fallback


#===========================================================================
#      SIGN UP ROUTE.
#==============================================================================
@bp.route("/signup", methods=["POST"])
@security_middleware.rate_limit(*AUTH_LIMIT)
def signup():
    """
    Create a password account.
    Expected JSON:
    {
        "email": "", "password": "",
        "firstName": "", "lastName": "", "phoneNumber": "", "referralCode": ""
    }
    """
    data = get_json_body()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    phone = (data.get("phoneNumber") or "").strip()
    referral_code = (data.get("referralCode") or "").strip().upper()

    # -----------------------------------------
    #  BASIC VALIDATION
    # -----------------------------------------
    if not validate_email(email):
        raise ValidationError("A valid email is required")

    ok, error = validate_password_strength(password)
    if not ok:
        raise ValidationError(error)

    if phone:
        phone = normalize_phone(phone)
        if not phone:
            raise ValidationError("Invalid phone number")
    else:
        phone = None

    if User.query.filter_by(email=email).first():
        raise ConflictError("An account with this email already exists")
    if phone and User.query.filter_by(phone_number=phone).first():
        raise ConflictError("An account with this phone number already exists")

    try:
        new_user = User(
            name=_display_name(data.get("firstName"), data.get("lastName"), email.split("@")[0]),
            email=email,
            phone_number=phone,
            login_method="password",
            referral_code=generate_referral_code(),
        )
        new_user.set_password(password)
        db.session.add(new_user)
        db.session.flush()

        if referral_code:
            record_referral(new_user, referral_code)

        start_session(new_user)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Signup failed for {email}: {e}", exc_info=True)
        return jsonify({"error": "Signup failed. Please try again."}), 500

    current_app.logger.info(f"New account {new_user.id} registered")
    return jsonify({"success": True, "user": new_user.to_dict()}), 201


 # --------------------------------------------------
 #      Login / logout
 # --------------------------------------------------
@bp.route("/login", methods=["POST"])
@security_middleware.rate_limit(*AUTH_LIMIT)
def login():
    data = get_json_body()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    if not email or not password:
        raise ValidationError("Email and password are required")

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password):
        raise AuthenticationError("Invalid email or password")

    start_session(user)
    db.session.commit()
    return jsonify({"success": True, "user": user.to_dict()}), 200


@bp.route("/logout", methods=["POST"])
def logout():
    """
    Destroy User session
    """
    logout_user()
    session.clear()
    return jsonify({"success": True}), 200


@bp.route("/me", methods=["GET"])
def me():
    """Returns current logged-in user data if authenticated"""
    user = g.get("user")
    return jsonify({"user": user.to_dict() if user else None}), 200


# --------------------------------------------------
#      Email one-time codes
# --------------------------------------------------
@bp.route("/otp/request", methods=["POST"])
@security_middleware.rate_limit(*OTP_LIMIT)
def request_email_otp():
    data = get_json_body()
    email = (data.get("email") or "").strip().lower()
    purpose = otp_service.check_purpose(data.get("purpose"))
    if not validate_email(email):
        raise ValidationError("A valid email is required")

    if purpose == OtpPurpose.LOGIN.value and not User.query.filter_by(email=email).first():
        raise NotFoundError("No account found with this email")

    sent = otp_service.send_email_code(email, purpose)
    if not sent:
        return jsonify({"error": "Could not send verification code"}), 502
    return jsonify({"success": True}), 200


@bp.route("/otp/verify", methods=["POST"])
@security_middleware.rate_limit(*AUTH_LIMIT)
def verify_email_otp():
    data = get_json_body()
    email = (data.get("email") or "").strip().lower()
    purpose = otp_service.check_purpose(data.get("purpose"))

    ok, error = otp_service.verify(data.get("code"), purpose, email=email)
    if not ok:
        raise ValidationError(error)

    if purpose == OtpPurpose.LOAN_APPLICATION.value:
        return jsonify({"success": True, "verified": True}), 200

    user = User.query.filter_by(email=email).first()
    if purpose == OtpPurpose.LOGIN.value and not user:
        raise NotFoundError("No account found with this email")

    if not user:
        user = User(
            name=_display_name(data.get("firstName"), data.get("lastName"), email.split("@")[0]),
            email=email,
            login_method="email_otp",
            referral_code=generate_referral_code(),
        )
        db.session.add(user)
        db.session.flush()
        referral_code = (data.get("referralCode") or "").strip().upper()
        if referral_code:
            record_referral(user, referral_code)

    user.email_verified = True
    start_session(user)
    db.session.commit()
    return jsonify({"success": True, "verified": True, "user": user.to_dict()}), 200


# --------------------------------------------------
#      Phone (SMS) one-time codes
# --------------------------------------------------
def _phone_from(data):
    phone = normalize_phone((data.get("phoneNumber") or "").strip())
    if not phone:
        raise ValidationError("A valid US phone number is required")
    return phone


def _send_phone_code():
    data = get_json_body()
    phone = _phone_from(data)
    purpose = otp_service.check_purpose(data.get("purpose"))

    if purpose == OtpPurpose.LOGIN.value and not User.query.filter_by(phone_number=phone).first():
        raise NotFoundError("No account found with this phone number")

    sent = otp_service.send_phone_code(phone, purpose)
    if not sent:
        return jsonify({"error": "Could not send verification code"}), 502
    return jsonify({"success": True, "phoneNumber": phone}), 200


@bp.route("/phone/request", methods=["POST"])
@security_middleware.rate_limit(*OTP_LIMIT)
def request_phone_otp():
    return _send_phone_code()


@bp.route("/phone/resend", methods=["POST"])
@security_middleware.rate_limit(*OTP_LIMIT)
def resend_phone_otp():
    return _send_phone_code()


@bp.route("/phone/verify", methods=["POST"])
@security_middleware.rate_limit(*AUTH_LIMIT)
def verify_phone_otp():
    data = get_json_body()
    phone = _phone_from(data)
    purpose = otp_service.check_purpose(data.get("purpose"))

    ok, error = otp_service.verify(data.get("code"), purpose, phone=phone)
    if not ok:
        raise ValidationError(error)

    if purpose == OtpPurpose.LOAN_APPLICATION.value:
        return jsonify({"success": True, "verified": True}), 200

    user = User.query.filter_by(phone_number=phone).first()
    if purpose == OtpPurpose.LOGIN.value and not user:
        raise NotFoundError("No account found with this phone number")

    if not user:
        user = User(
            name=_display_name(data.get("firstName"), data.get("lastName"), f"User{phone[-4:]}"),
            phone_number=phone,
            login_method="phone_otp",
            referral_code=generate_referral_code(),
        )
        db.session.add(user)
        db.session.flush()
        referral_code = (data.get("referralCode") or "").strip().upper()
        if referral_code:
            record_referral(user, referral_code)

    user.phone_verified = True
    start_session(user)
    db.session.commit()
    return jsonify({"success": True, "verified": True, "user": user.to_dict()}), 200
