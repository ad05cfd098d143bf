#======================================================================================
#
# ADMIN UTILITIES: test email, JSON backup/restore check, stored file links
#
#=======================================================================================
import json
import logging
from datetime import datetime
from flask import Blueprint, jsonify, request, g
from models import (User, LoanApplication, Payment, Disbursement, SupportMessage,
                    SystemSetting, Referral)
from utils import admin_required, get_json_body, validate_email
from exceptions import ValidationError, PermissionDeniedError, NotFoundError, ExternalServiceError
from extensions import db
from blueprints.audit import record_audit
from blueprints.notification_services import notification_service

logger = logging.getLogger(__name__)

admin_utils_bp = Blueprint('admin_utils', __name__, url_prefix='/admin')

BACKUP_VERSION = "1.0"
DEFAULT_TEST_SUBJECT = "Test Email - AmeriLend System"

# backup key -> model; order is the order tables appear in the file
BACKUP_TABLES = (
    ("users", User),
    ("loanApplications", LoanApplication),
    ("payments", Payment),
    ("disbursements", Disbursement),
    ("supportMessages", SupportMessage),
    ("systemSettings", SystemSetting),
    ("referrals", Referral),
)


@admin_utils_bp.route('/utils/test-email', methods=['POST'])
@admin_required
def send_test_email():
    data = get_json_body()
    recipient = (data.get('recipient') or '').strip()
    if not validate_email(recipient):
        raise ValidationError("A valid recipient email is required")
    subject = (data.get('subject') or '').strip() or DEFAULT_TEST_SUBJECT

    body = (
        "Email Configuration Working!\n\n"
        "This is a test email from your AmeriLend admin dashboard. If you are reading it, "
        "outgoing email is configured correctly.\n\n"
        f"Recipient: {recipient}\n"
        f"Sent by: {g.user.name or g.user.email}\n"
        f"Timestamp: {datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S')} UTC\n"
    )
    if not notification_service.notify_email(recipient, subject, body, user_id=g.user.id):
        raise ExternalServiceError("Failed to send test email")

    record_audit("test_email_sent", "system", new_value=recipient, metadata={"subject": subject})
    db.session.commit()
    logger.info(f"Admin {g.user.id} sent a test email to {recipient}")
    return jsonify({"success": True, "message": f"Test email sent successfully to {recipient}"}), 200


def _backup_rows(model):
    rows = [row.to_dict() for row in model.query.order_by(model.id).all()]
    if model is User:
        for row in rows:
            row["password"] = "[REDACTED]"
    return rows


@admin_utils_bp.route('/utils/backup', methods=['POST'])
@admin_required
def create_backup():
    """
    Snapshot the business tables as one JSON document.

    Password hashes never leave the database; every user row carries a
    redacted placeholder instead.
    """
    now = datetime.utcnow()
    data = {key: _backup_rows(model) for key, model in BACKUP_TABLES}
    statistics = {
        "total_users": len(data["users"]),
        "total_loans": len(data["loanApplications"]),
        "total_payments": len(data["payments"]),
        "total_disbursements": len(data["disbursements"]),
        "total_support_messages": len(data["supportMessages"]),
        "total_settings": len(data["systemSettings"]),
        "total_referrals": len(data["referrals"]),
    }
    backup = {
        "metadata": {
            "created_at": now.isoformat() + "Z",
            "created_by": g.user.email,
            "version": BACKUP_VERSION,
            "database": "amerilend",
            "tables": [key for key, _ in BACKUP_TABLES],
        },
        "data": data,
        "statistics": statistics,
    }

    record_audit("database_backup_created", "system",
                 metadata={"tables": len(BACKUP_TABLES), "total_records": sum(statistics.values())})
    db.session.commit()
    logger.info(f"Admin {g.user.id} created a backup ({sum(statistics.values())} records)")

    return jsonify({
        "success": True,
        "backup": json.dumps(backup, indent=2, default=str),
        "filename": f"amerilend-backup-{now.strftime('%Y-%m-%d')}.json",
        "statistics": statistics,
    }), 200


@admin_utils_bp.route('/utils/restore', methods=['POST'])
@admin_required
def restore_backup():
    """Validate an uploaded backup. Data is never written back automatically."""
    data = get_json_body()
    confirm_email = (data.get('confirmEmail') or '').strip().lower()
    if confirm_email != (g.user.email or '').lower():
        raise PermissionDeniedError("Email confirmation does not match. Restore cancelled for security.")

    raw = data.get('backupData')
    if not isinstance(raw, str):
        raise ValidationError("backupData is required")
    try:
        backup = json.loads(raw)
    except ValueError:
        raise ValidationError("Invalid backup file format. Unable to parse JSON.")

    metadata = backup.get("metadata") if isinstance(backup, dict) else None
    if not isinstance(metadata, dict) or not isinstance(backup.get("data"), dict) or not metadata.get("version"):
        raise ValidationError("Invalid backup structure. Missing required fields.")

    record_audit("database_restore_attempted", "system", new_value=metadata.get("created_at"),
                 metadata={"backup_date": metadata.get("created_at"),
                           "backup_creator": metadata.get("created_by"),
                           "confirmed_by": confirm_email})
    db.session.commit()
    logger.warning(f"Admin {g.user.id} validated a backup from {metadata.get('created_at')}")

    return jsonify({
        "success": True,
        "message": "Backup validated successfully. Manual restore required for safety.",
        "warning": "Automatic restore is disabled for data safety. "
                   "Please contact the database administrator for a manual restore.",
        "backupInfo": {
            "created": metadata.get("created_at"),
            "createdBy": metadata.get("created_by"),
            "tables": metadata.get("tables"),
            "statistics": backup.get("statistics"),
        },
    }), 200


@admin_utils_bp.route('/files/download-url', methods=['GET'])
@admin_required
def file_download_url():
    # documents are stored inline as data URLs; there is no object store behind other keys
    key = (request.args.get('key') or '').strip()
    if not key:
        raise ValidationError("key is required")
    if not key.startswith("data:"):
        raise NotFoundError("File not found")
    return jsonify({"url": key}), 200
