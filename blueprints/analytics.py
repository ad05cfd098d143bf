#======================================================================================
#
# ADMIN ANALYTICS
#
#=======================================================================================
from datetime import datetime
from flask import Blueprint, jsonify
from sqlalchemy import or_
from extensions import db
from models import (User, LoanApplication, Payment, SupportMessage, LoanStatus, PaymentStatus,
                    IdVerificationStatus, SupportStatus)
from utils import admin_required

bp = Blueprint("analytics", __name__, url_prefix="/admin/analytics")

S = LoanStatus
ACTIVE_STATUSES = (S.APPROVED.value, S.FEE_PAID.value, S.DISBURSED.value)


def month_starts(count, now=None):
    """First day of each of the last `count` months, oldest first, current month included."""
    now = now or datetime.utcnow()
    year, month = now.year, now.month
    starts = []
    for _ in range(count):
        starts.append(datetime(year, month, 1))
        month -= 1
        if month == 0:
            month = 12
            year -= 1
    return list(reversed(starts))


def bucket_by_month(timestamps, starts):
    counts = {(s.year, s.month): 0 for s in starts}
    for ts in timestamps:
        if ts is None:
            continue
        key = (ts.year, ts.month)
        if key in counts:
            counts[key] += 1
    return [counts[(s.year, s.month)] for s in starts]


def percent(part, whole):
    return round(part / whole * 100) if whole else 0


def _status_count(*statuses):
    return LoanApplication.query.filter(LoanApplication.status.in_(statuses)).count()


def _succeeded_total():
    return int(db.session.query(db.func.coalesce(db.func.sum(Payment.amount), 0))
               .filter(Payment.status == PaymentStatus.SUCCEEDED.value).scalar() or 0)


@bp.route("/overview", methods=["GET"])
@admin_required
def overview():
    total_apps = LoanApplication.query.count()
    approved = _status_count(*ACTIVE_STATUSES)
    rejected = _status_count(S.REJECTED.value)

    approval_rate = approved / total_apps * 100 if total_apps else 0
    default_rate = rejected / (approved + rejected) * 100 if approved else 0

    return jsonify({
        "totalRevenue": _succeeded_total(),
        "activeLoans": approved,
        "approvalRate": round(approval_rate, 1),
        "defaultRate": round(default_rate, 1),
    }), 200


@bp.route("/loan-trend", methods=["GET"])
@admin_required
def loan_trend():
    starts = month_starts(6)
    created = [row[0] for row in db.session.query(LoanApplication.created_at)
               .filter(LoanApplication.created_at >= starts[0]).all()]
    counts = bucket_by_month(created, starts)
    return jsonify([{"month": s.strftime("%b"), "value": c} for s, c in zip(starts, counts)]), 200


@bp.route("/revenue", methods=["GET"])
@admin_required
def revenue():
    # Every collected payment is a processing (origination) fee; interest and
    # principal stay at zero until repayments are tracked.
    fees = _succeeded_total()
    interest = 0
    principal = 0
    total = interest + fees + principal

    return jsonify({
        "interestIncome": {"amount": interest, "percentage": percent(interest, total)},
        "originationFees": {"amount": fees, "percentage": percent(fees, total)},
        "principalPayments": {"amount": principal, "percentage": percent(principal, total)},
        "totalRevenue": fees,
    }), 200


@bp.route("/status-distribution", methods=["GET"])
@admin_required
def status_distribution():
    total = LoanApplication.query.count()
    counts = {
        "pending": _status_count(S.PENDING.value),
        "underReview": _status_count(S.UNDER_REVIEW.value),
        "approved": _status_count(S.APPROVED.value, S.FEE_PAID.value),
        "disbursed": _status_count(S.DISBURSED.value),
        "rejected": _status_count(S.REJECTED.value),
    }
    return jsonify({k: {"count": v, "percentage": percent(v, total)} for k, v in counts.items()}), 200


@bp.route("/user-growth", methods=["GET"])
@admin_required
def user_growth():
    starts = month_starts(12)
    created = [row[0] for row in db.session.query(User.created_at)
               .filter(User.created_at >= starts[0]).all()]
    counts = bucket_by_month(created, starts)
    return jsonify([{"month": s.strftime("%Y-%m"), "value": c} for s, c in zip(starts, counts)]), 200


def rate(part, whole, empty=0):
    """Percentage rounded to one decimal, `empty` when there is nothing to divide by."""
    return round(part / whole * 100, 1) if whole else empty


@bp.route("/automation", methods=["GET"])
@admin_required
def automation_stats():
    """
    Support, document review and payment health figures for the automation panel.

    fraudDetectionRate is the share of applications not flagged (rejected, or
    with a rejected ID), 100 when there are no applications yet.
    """
    tickets = SupportMessage.query.with_entities(
        SupportMessage.status, SupportMessage.created_at, SupportMessage.responded_at).all()
    resolved = sum(1 for t in tickets if t.status in (SupportStatus.RESOLVED.value, SupportStatus.CLOSED.value))
    response_times = [(t.responded_at - t.created_at).total_seconds()
                      for t in tickets if t.responded_at and t.created_at]
    avg_response_minutes = round(sum(response_times) / len(response_times) / 60) if response_times else 0

    total_apps = LoanApplication.query.count()
    id_filter = LoanApplication.id_verification_status
    with_documents = LoanApplication.query.filter(
        or_(LoanApplication.id_front_image.isnot(None), LoanApplication.id_back_image.isnot(None))).count()
    approved_ids = LoanApplication.query.filter(id_filter == IdVerificationStatus.VERIFIED.value).count()
    rejected_ids = LoanApplication.query.filter(id_filter == IdVerificationStatus.REJECTED.value).count()
    pending_ids = LoanApplication.query.filter(id_filter == IdVerificationStatus.PENDING.value).count()
    flagged = LoanApplication.query.filter(or_(
        LoanApplication.status == S.REJECTED.value,
        id_filter == IdVerificationStatus.REJECTED.value)).count()

    approved = _status_count(*ACTIVE_STATUSES)
    processed = approved + _status_count(S.REJECTED.value)

    total_payments = Payment.query.count()
    succeeded = Payment.query.filter_by(status=PaymentStatus.SUCCEEDED.value).count()
    failed = Payment.query.filter_by(status=PaymentStatus.FAILED.value).count()

    return jsonify({
        "totalConversations": len(tickets),
        "resolutionRate": rate(resolved, len(tickets)),
        "avgResponseTimeMinutes": avg_response_minutes,
        "creditRiskAccuracy": rate(approved, processed),
        "fraudDetectionRate": rate(total_apps - flagged, total_apps, empty=100),
        "idVerificationAccuracy": rate(approved_ids, with_documents),
        "paymentSuccessRate": rate(succeeded, total_payments),
        "totalIDVerifications": with_documents,
        "approvedIDs": approved_ids,
        "rejectedIDs": rejected_ids,
        "pendingIDs": pending_ids,
        "workflows": {
            "autoApproval": _status_count(S.APPROVED.value) > 0,
            "paymentReminders": True,
            "creditCheck": total_apps > 0,
            "documentVerification": with_documents > 0,
            "fraudDetection": total_apps > 0,
        },
        "totalPayments": total_payments,
        "successfulPayments": succeeded,
        "failedPayments": failed,
    }), 200
