from datetime import datetime
from flask import Blueprint, jsonify, g, render_template, current_app
from models import Payment, PaymentStatus
from utils import login_required
from exceptions import NotFoundError
from blueprints.loan_helpers import get_owned_loan
from blueprints.notification_services import format_cents

bp = Blueprint("receipts", __name__, url_prefix="/api/receipts")


def _context(loan):
    return {
        "loan": loan,
        "support_phone": current_app.config.get("SUPPORT_PHONE"),
        "generated_at": datetime.utcnow(),
        "format_cents": format_cents,
    }


@bp.route("/payment/<int:loan_id>", methods=["GET"])
@login_required
def payment_receipt(loan_id):
    loan = get_owned_loan(loan_id, g.user)
    payment = (Payment.query
               .filter_by(loan_application_id=loan.id, status=PaymentStatus.SUCCEEDED.value)
               .order_by(Payment.completed_at.desc(), Payment.id.desc())
               .first())
    if not payment:
        raise NotFoundError("No completed payment found for this application")

    html = render_template("receipts/payment.html", payment=payment, **_context(loan))
    return jsonify({"html": html}), 200


@bp.route("/disbursement/<int:loan_id>", methods=["GET"])
@login_required
def disbursement_receipt(loan_id):
    loan = get_owned_loan(loan_id, g.user)
    if not loan.disbursement:
        raise NotFoundError("No disbursement found for this application")

    html = render_template("receipts/disbursement.html", disbursement=loan.disbursement, **_context(loan))
    return jsonify({"html": html}), 200
