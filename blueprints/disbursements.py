#============================================================================================================
#
#     ---------------------------- LOAN DISBURSEMENTS -------------------------------------------
#
#============================================================================================================
from datetime import datetime
import logging
from flask import Blueprint, jsonify, request, g
from extensions import db
from models import (Disbursement, DisbursementStatus, LoanStatus, NotificationType,
                    UserNotificationType, enum_values)
from utils import login_required, admin_required, get_json_body, require_string
from exceptions import ValidationError, NotFoundError, ConflictError
from logger import loans_logger
from blueprints.loan_helpers import transition, get_loan_or_404, get_owned_loan
from blueprints.notification_services import notification_service, disbursement_email
from blueprints.audit import record_audit

logger = logging.getLogger(__name__)

bp = Blueprint("disbursements", __name__, url_prefix="")


@bp.route("/admin/disbursements", methods=["POST"])
@admin_required
def initiate_disbursement():
    data = get_json_body()
    loan_id = data.get("loanApplicationId")
    if not isinstance(loan_id, int) or isinstance(loan_id, bool):
        raise ValidationError("loanApplicationId is required")
    holder = require_string(data, "accountHolderName", label="Account holder name")
    account_number = require_string(data, "accountNumber", min_length=4, label="Account number")
    routing_number = require_string(data, "routingNumber", min_length=9, label="Routing number")

    loan = get_loan_or_404(loan_id)
    if loan.status != LoanStatus.FEE_PAID.value:
        raise ValidationError("Processing fee must be paid before disbursement")
    if Disbursement.query.filter_by(loan_application_id=loan.id).first():
        raise ConflictError("A disbursement already exists for this loan")

    disbursement = Disbursement(
        loan_application_id=loan.id,
        user_id=loan.user_id,
        amount=loan.approved_amount,
        account_holder_name=holder,
        account_number=account_number,
        routing_number=routing_number,
        status=DisbursementStatus.PENDING.value,
        admin_notes=data.get("adminNotes"),
        initiated_by=g.user.id,
    )
    db.session.add(disbursement)
    old = transition(loan, LoanStatus.DISBURSED)
    loan.disbursed_at = datetime.utcnow()
    notification_service.push(loan.user_id, "Funds on the way",
                              f"Disbursement of your loan {loan.reference_number} was initiated.",
                              UserNotificationType.DISBURSEMENT)
    record_audit("disbursement_initiated", "loan_application", loan.id, old, loan.status,
                 {"amount": loan.approved_amount, "accountLast4": account_number[-4:]})
    db.session.commit()
    loans_logger.info(f"Disbursement {disbursement.id} of {disbursement.amount} initiated for "
                      f"{loan.reference_number} by admin {g.user.id}")

    subject, body = disbursement_email(loan, disbursement)
    email_sent = notification_service.notify_email(loan.email, subject, body, NotificationType.LOAN_DISBURSED,
                                                   user_id=loan.user_id, loan_application_id=loan.id)
    return jsonify({"success": True, "disbursementId": disbursement.id, "emailSent": email_sent}), 201


@bp.route("/api/disbursements/loan/<int:loan_id>", methods=["GET"])
@login_required
def disbursement_for_loan(loan_id):
    loan = get_owned_loan(loan_id, g.user, allow_admin=True)
    disbursement = loan.disbursement
    return jsonify({"disbursement": disbursement.to_dict() if disbursement else None}), 200


@bp.route("/admin/disbursements", methods=["GET"])
@admin_required
def list_disbursements():
    query = Disbursement.query
    status = request.args.get("status")
    if status:
        query = query.filter_by(status=status)
    items = query.order_by(Disbursement.created_at.desc(), Disbursement.id.desc()).all()
    return jsonify({"disbursements": [d.to_dict() for d in items]}), 200


@bp.route("/admin/disbursements/<int:disbursement_id>/status", methods=["POST"])
@admin_required
def update_disbursement_status(disbursement_id):
    data = get_json_body()
    status = data.get("status")
    allowed = [s for s in enum_values(DisbursementStatus) if s != DisbursementStatus.PENDING.value]
    if status not in allowed:
        raise ValidationError("status must be one of: " + ", ".join(allowed))

    disbursement = Disbursement.query.get(disbursement_id)
    if not disbursement:
        raise NotFoundError("Disbursement not found")
    if disbursement.status in (DisbursementStatus.COMPLETED.value, DisbursementStatus.FAILED.value):
        raise ValidationError(f"Disbursement is already {disbursement.status}")

    failure_reason = None
    if status == DisbursementStatus.FAILED.value:
        failure_reason = require_string(data, "failureReason", label="Failure reason")

    old = disbursement.status
    disbursement.status = status
    if data.get("transactionId"):
        disbursement.transaction_id = data["transactionId"]
    if failure_reason:
        disbursement.failure_reason = failure_reason
    if status == DisbursementStatus.COMPLETED.value:
        disbursement.completed_at = datetime.utcnow()
    record_audit("disbursement_status_changed", "disbursement", disbursement.id, old, status)
    db.session.commit()
    return jsonify({"success": True, "disbursement": disbursement.to_dict()}), 200
