#============================================================================================================
#
#     ---------------------------- LOAN APPLICATIONS -------------------------------------------
#     submit / track / documents / drafts for applicants, review actions for admins
#
#============================================================================================================
from datetime import datetime
import logging
from flask import Blueprint, jsonify, request, g, current_app
from extensions import db
from models import (User, LoanApplication, LoanStatus, IdVerificationStatus, DraftApplication,
                    NotificationType, UserNotificationType)
from utils import (login_required, admin_required, get_json_body, get_client_ip, require_string,
                   require_positive_int, validate_email, validate_dob, generate_referral_code, normalize_phone)
from exceptions import ValidationError, NotFoundError, PreconditionFailedError
from logger import loans_logger
from blueprints.loan_helpers import (FeeConfig, transition, APPROVABLE_STATUSES, FEE_REVIEWABLE_STATUSES,
                                     get_loan_or_404, get_owned_loan,
                                     generate_reference_number, normalize_reference, applicant_initials,
                                     as_data_url, validate_application, loan_stats)
from blueprints.notification_services import (notification_service, loan_submitted_email,
                                              loan_approved_email, loan_rejected_email,
                                              id_verification_approved_email, id_verification_rejected_email)
from blueprints.security_middleware import security_middleware, LOAN_APPLICATION_LIMIT
from blueprints.audit import record_audit

logger = logging.getLogger(__name__)

bp = Blueprint("loans", __name__, url_prefix="")


def _find_or_create_applicant(validated):
    user = User.query.filter_by(email=validated["email"]).first()
    if not user:
        user = User(
            name=validated["full_name"],
            email=validated["email"],
            login_method="application",
            referral_code=generate_referral_code(),
        )
        db.session.add(user)
        loans_logger.info(f"Created applicant account for {validated['email']}")

    account_phone = normalize_phone(validated["phone"])
    if account_phone and not user.phone_number:
        if not User.query.filter_by(phone_number=account_phone).first():
            user.phone_number = account_phone

    user.street = validated["street"]
    user.city = validated["city"]
    user.state = validated["state"]
    user.zip_code = validated["zip_code"]
    user.date_of_birth = validated["date_of_birth"]
    user.ssn = validated["ssn"]
    db.session.flush()
    return user


#===========================================================================
#      SUBMIT APPLICATION (public)
#==============================================================================
@bp.route("/api/loans", methods=["POST"])
@security_middleware.rate_limit(*LOAN_APPLICATION_LIMIT)
def submit_application():
    validated, error = validate_application(request.get_json(silent=True))
    if error:
        return jsonify({"error": error}), 400

    try:
        user = _find_or_create_applicant(validated)

        loan = LoanApplication(
            user_id=user.id,
            reference_number=generate_reference_number(),
            status=LoanStatus.PENDING.value,
            id_verification_status=IdVerificationStatus.PENDING.value,
            ip_address=get_client_ip(),
            **validated
        )
        db.session.add(loan)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        loans_logger.error(f"Loan submission failed for {validated['email']}: {e}", exc_info=True)
        return jsonify({"error": "Could not submit application. Please try again."}), 500

    loans_logger.info(f"Application {loan.reference_number} submitted by user {user.id} from {loan.ip_address}")

    subject, body = loan_submitted_email(loan)
    notification_service.notify_email(loan.email, subject, body, NotificationType.LOAN_SUBMITTED,
                                      user_id=user.id, loan_application_id=loan.id)
    notification_service.push(user.id, "Application received",
                              f"Application {loan.reference_number} was submitted and is pending review.",
                              UserNotificationType.LOAN_STATUS)
    db.session.commit()

    return jsonify({
        "success": True,
        "id": loan.id,
        "referenceNumber": loan.reference_number,
    }), 201


@bp.route("/api/loans/mine", methods=["GET"])
@login_required
def my_applications():
    loans = (LoanApplication.query
             .filter_by(user_id=g.user.id)
             .order_by(LoanApplication.created_at.desc(), LoanApplication.id.desc())
             .all())
    return jsonify({"applications": [loan.to_dict() for loan in loans]}), 200


@bp.route("/api/loans/<int:loan_id>", methods=["GET"])
@login_required
def get_application(loan_id):
    loan = get_owned_loan(loan_id, g.user, allow_admin=True)
    return jsonify({"application": loan.to_dict(include_documents=True)}), 200


@bp.route("/api/loans/<int:loan_id>/documents", methods=["POST"])
@login_required
def upload_id_documents(loan_id):
    loan = get_owned_loan(loan_id, g.user)
    data = get_json_body()

    front = data.get("idFrontImage")
    back = data.get("idBackImage")
    selfie = data.get("selfieImage")
    if not front or not back or not selfie:
        raise ValidationError("Front, back and selfie images are all required")

    loan.id_front_image = as_data_url(front)
    loan.id_back_image = as_data_url(back)
    loan.selfie_image = as_data_url(selfie)
    loan.id_verification_status = IdVerificationStatus.PENDING.value
    loan.id_verification_notes = None
    db.session.commit()

    loans_logger.info(f"New ID documents uploaded for {loan.reference_number}")
    return jsonify({"success": True, "idVerificationStatus": loan.id_verification_status}), 200


@bp.route("/api/loans/check-existing", methods=["POST"])
def check_existing():
    """Has this person (date of birth + SSN) applied before?"""
    data = get_json_body()
    dob = (data.get("dateOfBirth") or "").strip()
    ssn = (data.get("ssn") or "").strip()
    if not validate_dob(dob):
        raise ValidationError("Date of birth must be in YYYY-MM-DD format")
    if len(ssn) < 11:
        raise ValidationError("SSN must be in XXX-XX-XXXX format")

    loan = (LoanApplication.query
            .filter_by(date_of_birth=dob, ssn=ssn)
            .order_by(LoanApplication.created_at.desc(), LoanApplication.id.desc())
            .first())
    if not loan:
        return jsonify({"exists": False, "application": None}), 200

    return jsonify({
        "exists": True,
        "application": {
            "referenceNumber": loan.reference_number,
            "status": loan.status,
            "createdAt": loan.created_at.isoformat() if loan.created_at else None,
            "loanAmount": loan.requested_amount,
            "email": loan.email,
        }
    }), 200


@bp.route("/api/loans/track/<path:reference>", methods=["GET"])
def track_by_reference(reference):
    reference = normalize_reference(reference)
    if not reference:
        raise ValidationError("Reference number is required")

    loan = LoanApplication.query.filter_by(reference_number=reference).first()
    if not loan:
        raise NotFoundError("No application found with that reference number")

    return jsonify({
        "referenceNumber": loan.reference_number,
        "status": loan.status,
        "loanType": loan.loan_type,
        "requestedAmount": loan.requested_amount,
        "approvedAmount": loan.approved_amount,
        "idVerificationStatus": loan.id_verification_status,
        "applicantInitials": applicant_initials(loan.full_name),
        "createdAt": loan.created_at.isoformat() if loan.created_at else None,
        "updatedAt": loan.updated_at.isoformat() if loan.updated_at else None,
    }), 200


# --------------------------------------------------
#  Drafts
# --------------------------------------------------
def _draft_email():
    email = (request.args.get("email") or "").strip().lower()
    if not validate_email(email):
        raise ValidationError("A valid email is required")
    return email


@bp.route("/api/loans/drafts", methods=["POST"])
def save_draft():
    data = get_json_body()
    email = (data.get("email") or "").strip().lower()
    draft_data = data.get("draftData")
    current_step = data.get("currentStep")

    if not validate_email(email):
        raise ValidationError("A valid email is required")
    if not isinstance(draft_data, dict):
        raise ValidationError("draftData must be an object")
    if isinstance(current_step, bool) or not isinstance(current_step, int) or not 1 <= current_step <= 5:
        raise ValidationError("currentStep must be between 1 and 5")

    draft = DraftApplication.query.filter_by(email=email).first()
    if draft:
        draft.draft_data = draft_data
        draft.current_step = current_step
        draft.expires_at = DraftApplication.make_expires()
    else:
        draft = DraftApplication(email=email, draft_data=draft_data, current_step=current_step,
                                 expires_at=DraftApplication.make_expires())
        db.session.add(draft)
    db.session.commit()
    return jsonify({"success": True, "expiresAt": draft.expires_at.isoformat()}), 200


@bp.route("/api/loans/drafts", methods=["GET"])
def load_draft():
    email = _draft_email()
    draft = DraftApplication.query.filter_by(email=email).first()
    if not draft:
        return jsonify({"draft": None}), 200
    if draft.expires_at < datetime.utcnow():
        db.session.delete(draft)
        db.session.commit()
        return jsonify({"draft": None}), 200
    return jsonify({"draft": draft.to_dict()}), 200


@bp.route("/api/loans/drafts", methods=["DELETE"])
def delete_draft():
    email = _draft_email()
    DraftApplication.query.filter_by(email=email).delete()
    db.session.commit()
    return jsonify({"success": True}), 200


#============================================================================================================
#     ADMIN REVIEW
#============================================================================================================
@bp.route("/admin/loans", methods=["GET"])
@admin_required
def admin_list_applications():
    query = LoanApplication.query
    status = request.args.get("status")
    if status:
        query = query.filter_by(status=status)
    loans = query.order_by(LoanApplication.created_at.desc(), LoanApplication.id.desc()).all()
    return jsonify({"applications": [loan.to_dict() for loan in loans]}), 200


@bp.route("/admin/loans/stats", methods=["GET"])
@admin_required
def admin_loan_stats():
    return jsonify(loan_stats()), 200


@bp.route("/admin/loans/<int:loan_id>/review", methods=["POST"])
@admin_required
def admin_start_review(loan_id):
    loan = get_loan_or_404(loan_id)
    old = transition(loan, LoanStatus.UNDER_REVIEW)
    record_audit("loan_review_started", "loan_application", loan.id, old, loan.status)
    db.session.commit()
    return jsonify({"success": True, "status": loan.status}), 200


@bp.route("/admin/loans/<int:loan_id>/approve", methods=["POST"])
@admin_required
def admin_approve(loan_id):
    data = get_json_body()
    approved_amount = require_positive_int(data, "approvedAmount")
    loan = get_loan_or_404(loan_id)

    old = transition(loan, LoanStatus.APPROVED, allowed_from=APPROVABLE_STATUSES,
                     message=f"Only pending or under review applications can be approved (status: {loan.status})")
    loan.approved_amount = approved_amount
    loan.processing_fee_amount = FeeConfig.calculate_fee(approved_amount)
    loan.admin_notes = data.get("adminNotes")
    loan.approved_at = datetime.utcnow()
    record_audit("loan_approved", "loan_application", loan.id, old, loan.status,
                 {"approvedAmount": approved_amount, "processingFeeAmount": loan.processing_fee_amount})
    db.session.commit()
    loans_logger.info(f"Application {loan.reference_number} approved for {approved_amount} "
                      f"(fee {loan.processing_fee_amount}) by admin {g.user.id}")

    subject, body = loan_approved_email(loan)
    email_sent = notification_service.notify_email(loan.email, subject, body, NotificationType.LOAN_APPROVED,
                                                   user_id=loan.user_id, loan_application_id=loan.id)
    notification_service.push(loan.user_id, "Loan approved",
                              f"Application {loan.reference_number} was approved. Pay the processing fee to continue.",
                              UserNotificationType.LOAN_STATUS, link="/dashboard")
    db.session.commit()

    response = {
        "success": True,
        "processingFeeAmount": loan.processing_fee_amount,
        "emailSent": email_sent,
    }
    if not email_sent:
        response["warning"] = "Loan approved but the notification email could not be sent"
    return jsonify(response), 200


@bp.route("/admin/loans/<int:loan_id>/reject", methods=["POST"])
@admin_required
def admin_reject(loan_id):
    data = get_json_body()
    reason = require_string(data, "rejectionReason", label="Rejection reason")
    loan = get_loan_or_404(loan_id)

    old = transition(loan, LoanStatus.REJECTED)
    loan.rejection_reason = reason
    record_audit("loan_rejected", "loan_application", loan.id, old, loan.status, {"reason": reason})
    db.session.commit()

    subject, body = loan_rejected_email(loan)
    email_sent = notification_service.notify_email(loan.email, subject, body, NotificationType.LOAN_REJECTED,
                                                   user_id=loan.user_id, loan_application_id=loan.id)
    notification_service.push(loan.user_id, "Application update",
                              f"Application {loan.reference_number} was not approved.",
                              UserNotificationType.LOAN_STATUS)
    db.session.commit()
    return jsonify({"success": True, "emailSent": email_sent}), 200


@bp.route("/admin/loans/<int:loan_id>/id-verification/approve", methods=["POST"])
@admin_required
def admin_approve_id_verification(loan_id):
    data = request.get_json(silent=True) or {}
    loan = get_loan_or_404(loan_id)

    loan.id_verification_status = IdVerificationStatus.VERIFIED.value
    loan.id_verification_notes = data.get("notes")
    record_audit("id_verification_approved", "loan_application", loan.id)
    db.session.commit()

    subject, body = id_verification_approved_email(loan)
    email_sent = notification_service.notify_email(loan.email, subject, body,
                                                   user_id=loan.user_id, loan_application_id=loan.id)
    response = {"success": True, "emailSent": email_sent}
    if not email_sent:
        response["warning"] = "Verification saved but the email could not be sent"
    return jsonify(response), 200


@bp.route("/admin/loans/<int:loan_id>/id-verification/reject", methods=["POST"])
@admin_required
def admin_reject_id_verification(loan_id):
    data = get_json_body()
    reason = require_string(data, "reason", label="Reason")
    loan = get_loan_or_404(loan_id)

    loan.id_verification_status = IdVerificationStatus.REJECTED.value
    loan.id_verification_notes = reason
    record_audit("id_verification_rejected", "loan_application", loan.id, metadata={"reason": reason})
    db.session.commit()

    subject, body = id_verification_rejected_email(loan)
    email_sent = notification_service.notify_email(loan.email, subject, body,
                                                   user_id=loan.user_id, loan_application_id=loan.id)
    response = {"success": True, "emailSent": email_sent}
    if not email_sent:
        response["warning"] = "Verification saved but the email could not be sent"
    return jsonify(response), 200


@bp.route("/admin/loans/<int:loan_id>/payment/verify", methods=["POST"])
@admin_required
def admin_verify_payment(loan_id):
    data = request.get_json(silent=True) or {}
    loan = get_loan_or_404(loan_id)
    if not loan.processing_fee_paid:
        raise PreconditionFailedError("Processing fee has not been paid for this application")

    transition(loan, LoanStatus.FEE_PAID)
    loan.payment_verified = True
    loan.payment_verified_by = g.user.id
    loan.payment_verified_at = datetime.utcnow()
    loan.payment_verification_notes = data.get("notes")
    notification_service.push(loan.user_id, "Payment verified",
                              f"Your processing fee for {loan.reference_number} was verified.",
                              UserNotificationType.PAYMENT_RECEIVED)
    record_audit("payment_verified", "loan_application", loan.id)
    db.session.commit()
    return jsonify({"success": True}), 200


@bp.route("/admin/loans/<int:loan_id>/payment/reject", methods=["POST"])
@admin_required
def admin_reject_payment_verification(loan_id):
    data = get_json_body()
    reason = require_string(data, "reason", label="Reason")
    loan = get_loan_or_404(loan_id)

    transition(loan, LoanStatus.APPROVED, allowed_from=FEE_REVIEWABLE_STATUSES,
               message=f"No processing fee payment to reject (status: {loan.status})")
    loan.payment_verified = False
    loan.processing_fee_paid = False
    loan.payment_verified_by = g.user.id
    loan.payment_verified_at = datetime.utcnow()
    loan.payment_verification_notes = reason
    notification_service.push(loan.user_id, "Payment could not be verified",
                              f"Your processing fee for {loan.reference_number} could not be verified: {reason}",
                              UserNotificationType.PAYMENT_REMINDER)
    record_audit("payment_verification_rejected", "loan_application", loan.id, metadata={"reason": reason})
    db.session.commit()
    current_app.logger.info(f"Payment verification rejected for {loan.reference_number}")
    return jsonify({"success": True}), 200
