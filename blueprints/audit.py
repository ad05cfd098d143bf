#======================================================================================
#
# AUDIT TRAIL
#
#=======================================================================================
import json
import logging
from flask import Blueprint, jsonify, request, g
from extensions import db
from models import AuditLog
from utils import admin_required, get_json_body, get_client_ip, require_string, parse_pagination

logger = logging.getLogger(__name__)

audit_bp = Blueprint('audit', __name__, url_prefix='/admin/audit-logs')


def _serialize(value):
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def record_audit(action, entity_type=None, entity_id=None, old_value=None, new_value=None, metadata=None):
    """Add an AuditLog row for the current request. The caller commits."""
    user = g.get("user")
    entry = AuditLog(
        user_id=user.id if user else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        old_value=_serialize(old_value),
        new_value=_serialize(new_value),
        ip_address=get_client_ip(),
        user_agent=(request.headers.get('User-Agent') or '')[:255],
        details=metadata,
    )
    db.session.add(entry)
    logger.info(f"Audit: {action} on {entity_type}:{entity_id} by {entry.user_id or 'system'}")
    return entry


def _page(query):
    limit, offset = parse_pagination(default_limit=100, max_limit=100)
    logs = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(offset).limit(limit).all()
    return jsonify({"logs": [log.to_dict() for log in logs]}), 200


@audit_bp.route('', methods=['GET'])
@admin_required
def list_audit_logs():
    return _page(AuditLog.query)


@audit_bp.route('/action/<action>', methods=['GET'])
@admin_required
def audit_logs_by_action(action):
    return _page(AuditLog.query.filter_by(action=action))


@audit_bp.route('/user/<int:user_id>', methods=['GET'])
@admin_required
def audit_logs_by_user(user_id):
    return _page(AuditLog.query.filter_by(user_id=user_id))


@audit_bp.route('', methods=['POST'])
@admin_required
def create_audit_log():
    data = get_json_body()
    action = require_string(data, 'action', max_length=100)
    entity_id = data.get('entityId')
    if entity_id is not None and not isinstance(entity_id, int):
        return jsonify({"error": "entityId must be an integer"}), 400

    entry = record_audit(
        action,
        entity_type=data.get('entityType'),
        entity_id=entity_id,
        old_value=data.get('oldValue'),
        new_value=data.get('newValue'),
        metadata=data.get('metadata'),
    )
    db.session.commit()
    return jsonify({"success": True, "id": entry.id}), 201
