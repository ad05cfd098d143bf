#======================================================================================
#
# ADMIN: dashboard, search and user management
#
#=======================================================================================
from datetime import datetime
import logging
from flask import jsonify, request, Blueprint, g
from sqlalchemy import or_
from extensions import db
from models import (User, LoanApplication, Payment, PaymentStatus, UserRole,
                    UserNotification, PasswordResetToken, LegalAcceptance, enum_values)
from utils import admin_required, get_json_body, validate_email, validate_phone, format_phone, parse_pagination
from exceptions import ValidationError, NotFoundError
from blueprints.audit import record_audit
from blueprints.loan_helpers import loan_stats
from blueprints.notification_services import notification_service, profile_updated_email

logger = logging.getLogger(__name__)

admin_bp = Blueprint('admin', __name__, url_prefix='')

SEARCH_LIMIT = 50


def _get_user(user_id):
    user = User.query.get(user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


@admin_bp.route("/admin/dashboard", methods=["GET"])
@admin_required
def admin_dashboard():
    month_start = datetime.utcnow().replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    total_users = User.query.count()
    new_users = User.query.filter(User.created_at >= month_start).count()
    total_payments = Payment.query.count()
    pending_payments = Payment.query.filter(
        Payment.status.in_([PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value])).count()
    succeeded_payments = Payment.query.filter_by(status=PaymentStatus.SUCCEEDED.value).count()

    return jsonify({
        "users": {"total": total_users, "newThisMonth": new_users},
        "loans": loan_stats(),
        "payments": {
            "total": total_payments,
            "pending": pending_payments,
            "succeeded": succeeded_payments,
        },
    }), 200


#============================================================================================================
#
#     ----------------------------ADMIN SEARCH FUNCTIONALITY-------------------------------------------
#-----------------------------------USERS, LOANS AND PAYMENTS-----------------------------------------
#
#============================================================================================================

@admin_bp.route('/admin/search', methods=['GET'])
@admin_required
def admin_search():
    """Admin search across users, loan applications and payments"""
    query = request.args.get('q', '').strip()
    if not query:
        raise ValidationError('Please provide a search query')

    users = search_users(query)
    loans = search_loans(query)
    payments = search_payments(query)

    return jsonify({
        'users': users,
        'loans': loans,
        'payments': payments,
        'totalResults': len(users) + len(loans) + len(payments)
    }), 200


def search_users(query):
    """Search users by name, email, phone, referral code, or ID"""
    like = f'%{query}%'
    filters = [
        User.name.ilike(like),
        User.email.ilike(like),
        User.phone_number.ilike(like),
        User.referral_code.ilike(like),
    ]
    if query.isdigit():
        filters.append(User.id == int(query))
    users = User.query.filter(or_(*filters)).limit(SEARCH_LIMIT).all()
    return [dict(user.to_dict(), type='user') for user in users]


def search_loans(query):
    """Search applications by reference number, applicant name or email"""
    like = f'%{query}%'
    filters = [
        LoanApplication.reference_number.ilike(like),
        LoanApplication.full_name.ilike(like),
        LoanApplication.email.ilike(like),
    ]
    if query.isdigit():
        filters.append(LoanApplication.id == int(query))
    loans = LoanApplication.query.filter(or_(*filters)).limit(SEARCH_LIMIT).all()
    return [dict(loan.to_dict(), type='loan') for loan in loans]


def search_payments(query):
    """Search payments by gateway transaction id, crypto tx hash or loan reference"""
    like = f'%{query}%'
    filters = [
        Payment.transaction_id.ilike(like),
        Payment.crypto_tx_hash.ilike(like),
        Payment.payment_intent_id.ilike(like),
        LoanApplication.reference_number.ilike(like),
    ]
    if query.isdigit():
        filters.append(Payment.id == int(query))
    payments = (Payment.query
                .join(LoanApplication, Payment.loan_application_id == LoanApplication.id)
                .filter(or_(*filters))
                .limit(SEARCH_LIMIT).all())
    return [dict(payment.to_dict(), type='payment',
                 referenceNumber=payment.loan_application.reference_number) for payment in payments]


#=======================================================================
#   USER MANAGEMENT
#=======================================================================

@admin_bp.route("/admin/users", methods=["GET"])
@admin_required
def admin_list_users():
    limit, offset = parse_pagination(default_limit=100, max_limit=500)
    query = User.query
    role = request.args.get("role")
    if role:
        query = query.filter_by(role=role)
    total = query.count()
    users = query.order_by(User.created_at.desc(), User.id.desc()).offset(offset).limit(limit).all()
    return jsonify({"users": [u.to_dict() for u in users], "total": total}), 200


@admin_bp.route("/admin/users/stats", methods=["GET"])
@admin_required
def admin_user_stats():
    month_start = datetime.utcnow().replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    total_users = User.query.count()
    admin_users = User.query.filter_by(role=UserRole.ADMIN.value).count()
    users_with_loans = db.session.query(db.func.count(db.distinct(LoanApplication.user_id))).scalar() or 0

    return jsonify({
        "totalUsers": total_users,
        "adminUsers": admin_users,
        "regularUsers": total_users - admin_users,
        "newThisMonth": User.query.filter(User.created_at >= month_start).count(),
        "usersWithLoans": users_with_loans,
    }), 200


@admin_bp.route("/admin/users/<int:user_id>", methods=["GET"])
@admin_required
def admin_get_user(user_id):
    user = _get_user(user_id)
    loans = user.loan_applications.order_by(LoanApplication.created_at.desc()).all()
    return jsonify({"user": user.to_dict(), "loans": [loan.to_dict() for loan in loans]}), 200


@admin_bp.route("/admin/users/<int:user_id>", methods=["PUT"])
@admin_required
def admin_update_user(user_id):
    data = get_json_body()
    user = _get_user(user_id)
    changes = []

    def apply(field, label, value):
        old = getattr(user, field)
        if value != old:
            changes.append((label, old, value))
            setattr(user, field, value)

    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Name cannot be empty")
        apply("name", "Name", name)

    if "email" in data:
        email = (data.get("email") or "").strip().lower()
        if not validate_email(email):
            raise ValidationError("A valid email is required")
        if User.query.filter(User.email == email, User.id != user.id).first():
            raise ValidationError("Email already in use")
        apply("email", "Email", email)

    if "phoneNumber" in data:
        phone = (data.get("phoneNumber") or "").strip()
        if phone and not validate_phone(phone):
            raise ValidationError("Invalid phone number")
        phone = format_phone(phone) if phone else None
        if phone and User.query.filter(User.phone_number == phone, User.id != user.id).first():
            raise ValidationError("Phone number already in use")
        apply("phone_number", "Phone", phone)

    if "role" in data:
        role = data.get("role")
        if role not in enum_values(UserRole):
            raise ValidationError("Role must be user or admin")
        apply("role", "Role", role)

    for key, field, label in (("street", "street", "Street"), ("city", "city", "City"),
                              ("state", "state", "State"), ("zipCode", "zip_code", "ZIP Code")):
        if key in data:
            apply(field, label, (data.get(key) or "").strip() or None)

    if changes:
        record_audit("user_updated", "user", user.id,
                     metadata={"fields": [c[0] for c in changes]})
    db.session.commit()

    email_sent = False
    if changes and user.email:
        subject, body = profile_updated_email(user, changes, updated_by=g.user.name or g.user.email)
        email_sent = notification_service.notify_email(user.email, subject, body, user_id=user.id)

    logger.info(f"Admin {g.user.id} updated user {user.id}: {[c[0] for c in changes]}")
    return jsonify({"success": True, "user": user.to_dict(), "emailSent": email_sent}), 200


@admin_bp.route("/admin/users/<int:user_id>", methods=["DELETE"])
@admin_required
def admin_delete_user(user_id):
    user = _get_user(user_id)
    if user.id == g.user.id:
        raise ValidationError("You cannot delete your own account")
    if user.loan_applications.count() > 0:
        raise ValidationError("Cannot delete user with existing loan applications")

    for model in (UserNotification, PasswordResetToken, LegalAcceptance):
        model.query.filter_by(user_id=user.id).delete(synchronize_session=False)
    record_audit("user_deleted", "user", user.id, old_value=user.email)
    db.session.delete(user)
    db.session.commit()
    logger.warning(f"Admin {g.user.id} deleted user {user_id}")
    return jsonify({"success": True}), 200


@admin_bp.route("/admin/users/<int:user_id>/reset-password", methods=["POST"])
@admin_required
def admin_reset_password(user_id):
    data = get_json_body()
    new_password = data.get("newPassword") or ""
    if len(new_password) < 8:
        raise ValidationError("Password must be at least 8 characters")

    user = _get_user(user_id)
    user.set_password(new_password)
    record_audit("user_password_reset", "user", user.id)
    db.session.commit()
    return jsonify({"success": True}), 200
