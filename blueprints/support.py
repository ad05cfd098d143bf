#======================================================================================
#
# CONTACT / SUPPORT MESSAGES
#
#=======================================================================================
from datetime import datetime
import logging
from flask import Blueprint, jsonify, request, g, current_app
from extensions import db
from models import SupportMessage, SupportCategory, SupportStatus, SupportPriority, enum_values
from utils import admin_required, get_json_body, require_string, validate_email, parse_pagination
from exceptions import ValidationError, NotFoundError, ConfigurationError
from blueprints.notification_services import notification_service, support_admin_email, support_reply_email
from blueprints.audit import record_audit

logger = logging.getLogger(__name__)

bp = Blueprint("support", __name__, url_prefix="")


def _get_message(message_id):
    message = SupportMessage.query.get(message_id)
    if not message:
        raise NotFoundError("Support message not found")
    return message


@bp.route("/api/support", methods=["POST"])
def send_support_message():
    data = get_json_body()
    sender_name = require_string(data, "senderName", max_length=150, label="Name")
    sender_email = (data.get("senderEmail") or "").strip().lower()
    if not validate_email(sender_email):
        raise ValidationError("A valid email is required")
    subject = require_string(data, "subject", max_length=500, label="Subject")
    body = require_string(data, "message", min_length=10, max_length=5000, label="Message")
    category = data.get("category") or SupportCategory.GENERAL.value
    if category not in enum_values(SupportCategory):
        raise ValidationError("Unknown category")

    admin_email = current_app.config.get("ADMIN_EMAIL")
    if not admin_email:
        logger.error("ADMIN_EMAIL not configured, cannot route support messages")
        raise ConfigurationError("Support is temporarily unavailable")

    user = g.get("user")
    message = SupportMessage(
        user_id=user.id if user else None,
        sender_name=sender_name,
        sender_email=sender_email,
        sender_phone=(data.get("senderPhone") or "").strip() or None,
        subject=subject,
        message=body,
        category=category,
        status=SupportStatus.NEW.value,
        priority=SupportPriority.MEDIUM.value,
    )
    db.session.add(message)
    db.session.commit()

    mail_subject, mail_body = support_admin_email(message)
    notification_service.notify_email(admin_email, mail_subject, mail_body)
    return jsonify({"success": True, "id": message.id}), 201


@bp.route("/admin/support", methods=["GET"])
@admin_required
def admin_list_support():
    limit, offset = parse_pagination(default_limit=50, max_limit=100)
    query = SupportMessage.query
    status = request.args.get("status")
    if status:
        query = query.filter_by(status=status)
    total = query.count()
    messages = (query.order_by(SupportMessage.created_at.desc(), SupportMessage.id.desc())
                .offset(offset).limit(limit).all())
    return jsonify({
        "messages": [m.to_dict() for m in messages],
        "total": total,
        "hasMore": offset + len(messages) < total,
    }), 200


@bp.route("/admin/support/<int:message_id>", methods=["GET"])
@admin_required
def admin_get_support(message_id):
    return jsonify({"message": _get_message(message_id).to_dict()}), 200


@bp.route("/admin/support/<int:message_id>/status", methods=["POST"])
@admin_required
def admin_update_support_status(message_id):
    data = get_json_body()
    status = data.get("status")
    if status not in enum_values(SupportStatus):
        raise ValidationError("Unknown status")
    priority = data.get("priority")
    if priority is not None and priority not in enum_values(SupportPriority):
        raise ValidationError("Unknown priority")

    message = _get_message(message_id)
    old = message.status
    message.status = status
    if priority:
        message.priority = priority
    record_audit("support_status_changed", "support_message", message.id, old, status)
    db.session.commit()
    return jsonify({"success": True, "message": message.to_dict()}), 200


@bp.route("/admin/support/<int:message_id>/respond", methods=["POST"])
@admin_required
def admin_respond_support(message_id):
    data = get_json_body()
    response_text = require_string(data, "response", label="Response")
    send_email = data.get("sendEmail", True)

    message = _get_message(message_id)
    message.admin_response = response_text
    message.responded_by = g.user.id
    message.responded_at = datetime.utcnow()
    message.status = SupportStatus.RESOLVED.value
    record_audit("support_responded", "support_message", message.id)
    db.session.commit()

    email_sent = False
    if send_email:
        subject, body = support_reply_email(message)
        email_sent = notification_service.notify_email(message.sender_email, subject, body,
                                                       user_id=message.user_id)
    return jsonify({"success": True, "emailSent": email_sent}), 200


@bp.route("/admin/support/<int:message_id>", methods=["DELETE"])
@admin_required
def admin_delete_support(message_id):
    message = _get_message(message_id)
    record_audit("support_deleted", "support_message", message.id)
    db.session.delete(message)
    db.session.commit()
    return jsonify({"success": True}), 200
