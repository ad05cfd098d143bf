from flask import Blueprint, jsonify, request, g
from extensions import db
from models import User, UserNotification, UserNotificationType, enum_values
from utils import login_required, admin_required
from exceptions import ValidationError, NotFoundError
from blueprints.notification_services import mark_read

bp = Blueprint("notifications", __name__, url_prefix="")


def _own_notification(notification_id):
    item = UserNotification.query.filter_by(id=notification_id, user_id=g.user.id).first()
    if not item:
        raise NotFoundError("Notification not found")
    return item


@bp.route("/api/notifications", methods=["GET"])
@login_required
def my_notifications():
    limit = request.args.get("limit", 20, type=int)
    if limit < 1 or limit > 100:
        raise ValidationError("limit must be between 1 and 100")
    query = UserNotification.query.filter_by(user_id=g.user.id)
    if request.args.get("unreadOnly", "").lower() in ("1", "true"):
        query = query.filter_by(is_read=False)
    items = query.order_by(UserNotification.created_at.desc(), UserNotification.id.desc()).limit(limit).all()
    return jsonify({"notifications": [n.to_dict() for n in items]}), 200


@bp.route("/api/notifications/unread-count", methods=["GET"])
@login_required
def unread_count():
    count = UserNotification.query.filter_by(user_id=g.user.id, is_read=False).count()
    return jsonify({"count": count}), 200


@bp.route("/api/notifications/<int:notification_id>/read", methods=["POST"])
@login_required
def mark_as_read(notification_id):
    mark_read(_own_notification(notification_id))
    db.session.commit()
    return jsonify({"success": True}), 200


@bp.route("/api/notifications/read-all", methods=["POST"])
@login_required
def mark_all_as_read():
    items = UserNotification.query.filter_by(user_id=g.user.id, is_read=False).all()
    for item in items:
        mark_read(item)
    db.session.commit()
    return jsonify({"success": True, "updated": len(items)}), 200


@bp.route("/api/notifications/<int:notification_id>", methods=["DELETE"])
@login_required
def delete_notification(notification_id):
    db.session.delete(_own_notification(notification_id))
    db.session.commit()
    return jsonify({"success": True}), 200


@bp.route("/admin/notifications", methods=["GET"])
@admin_required
def admin_all_notifications():
    limit = request.args.get("limit", 100, type=int)
    query = db.session.query(UserNotification, User).join(User, UserNotification.user_id == User.id)
    user_id = request.args.get("userId", type=int)
    if user_id:
        query = query.filter(UserNotification.user_id == user_id)
    notification_type = request.args.get("type")
    if notification_type:
        if notification_type not in enum_values(UserNotificationType):
            raise ValidationError("Unknown notification type")
        query = query.filter(UserNotification.type == notification_type)

    rows = query.order_by(UserNotification.created_at.desc(), UserNotification.id.desc()).limit(limit).all()
    result = []
    for item, user in rows:
        entry = item.to_dict()
        entry["userId"] = user.id
        entry["userName"] = user.name
        entry["userEmail"] = user.email
        result.append(entry)
    return jsonify({"notifications": result}), 200
