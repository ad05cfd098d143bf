#============================================================================================================
#
#     ---------------------------- PROCESSING FEE PAYMENTS -------------------------------------------
#     card (Authorize.Net Accept.js nonce) and crypto (BTC / ETH / USDT / USDC)
#
#============================================================================================================
import uuid
import logging
from flask import Blueprint, jsonify, request, g, current_app
from extensions import db
from models import (Payment, PaymentStatus, PaymentMethod, PaymentProvider, LoanStatus,
                    NotificationType, enum_values)
from utils import login_required, admin_required, get_json_body, require_string, parse_pagination
from exceptions import ValidationError, NotFoundError, PaymentDeclinedError
from logger import payments_logger
from blueprints.loan_helpers import transition, get_owned_loan
from blueprints.payments_helpers import (get_payable_loan, get_payment_for_user, create_payment_record,
                                         mark_payment_succeeded, charge_card)
from blueprints.crypto_helpers import (supported_cryptos, convert_usd_to_crypto, create_crypto_charge,
                                       normalize_currency)
from blueprints.payment_monitor import check_payment_by_id
from blueprints.notification_services import notification_service, payment_declined_email
from blueprints.security_middleware import security_middleware, PAYMENT_LIMIT
from blueprints.audit import record_audit

logger = logging.getLogger(__name__)

bp = Blueprint("payments", __name__, url_prefix="")


def _get_payment_or_404(payment_id):
    payment = Payment.query.get(payment_id)
    if not payment:
        raise NotFoundError("Payment not found")
    return payment


def _start_crypto_payment(loan, currency):
    charge = create_crypto_charge(loan.processing_fee_amount, currency,
                                  f"Processing fee for {loan.reference_number}")
    payment = create_payment_record(
        loan, PaymentMethod.CRYPTO, PaymentProvider.CRYPTO,
        provider_payment_id=charge["charge_id"],
        crypto_currency=charge["currency"],
        crypto_address=charge["address"],
        crypto_amount=charge["crypto_amount"],
        expires_at=charge["expires_at"],
    )
    transition(loan, LoanStatus.FEE_PENDING)
    db.session.commit()
    return payment, charge


def _crypto_response(payment, charge):
    return {
        "success": True,
        "paymentId": payment.id,
        "chargeId": charge["charge_id"],
        "cryptoCurrency": charge["currency"],
        "cryptoAddress": charge["address"],
        "cryptoAmount": charge["crypto_amount"],
        "paymentUri": charge["payment_uri"],
        "qrCode": charge["qr_code"],
        "expiresAt": charge["expires_at"].isoformat(),
        "amount": payment.amount,
    }


# --------------------------------------------------
#  Public / user
# --------------------------------------------------
@bp.route("/api/payments/authorizenet-config", methods=["GET"])
@login_required
def authorizenet_config():
    return jsonify({
        "apiLoginId": current_app.config.get("AUTHORIZENET_API_LOGIN_ID"),
        "clientKey": current_app.config.get("AUTHORIZENET_CLIENT_KEY"),
        "environment": current_app.config.get("AUTHORIZENET_ENVIRONMENT", "sandbox"),
    }), 200


@bp.route("/api/payments/cryptos", methods=["GET"])
def get_supported_cryptos():
    return jsonify({"cryptos": supported_cryptos()}), 200


@bp.route("/api/payments/convert", methods=["GET"])
def convert_to_crypto():
    try:
        usd_cents = int(request.args.get("usdCents", ""))
    except ValueError:
        raise ValidationError("usdCents must be an integer")
    if usd_cents <= 0:
        raise ValidationError("usdCents must be positive")
    currency = normalize_currency(request.args.get("currency"))
    return jsonify({
        "currency": currency,
        "usdCents": usd_cents,
        "cryptoAmount": convert_usd_to_crypto(usd_cents, currency),
    }), 200


@bp.route("/api/payments/intent", methods=["POST"])
@login_required
@security_middleware.rate_limit(*PAYMENT_LIMIT)
def create_payment_intent():
    data = get_json_body()
    method = data.get("paymentMethod")
    if method not in enum_values(PaymentMethod):
        raise ValidationError("paymentMethod must be card or crypto")
    loan = get_payable_loan(data.get("loanApplicationId"), g.user)

    if method == PaymentMethod.CRYPTO.value:
        payment, charge = _start_crypto_payment(loan, data.get("cryptoCurrency"))
        payments_logger.info(f"Crypto intent {payment.id} for loan {loan.reference_number}")
        return jsonify(_crypto_response(payment, charge)), 201

    provider = data.get("paymentProvider", PaymentProvider.AUTHORIZENET.value)
    if provider != PaymentProvider.AUTHORIZENET.value:
        raise ValidationError("Unsupported card payment provider")
    payment = create_payment_record(loan, PaymentMethod.CARD, PaymentProvider(provider),
                                    payment_intent_id=f"pi_{uuid.uuid4().hex}")
    transition(loan, LoanStatus.FEE_PENDING)
    db.session.commit()
    payments_logger.info(f"Card intent {payment.id} for loan {loan.reference_number}")
    return jsonify({
        "success": True,
        "paymentId": payment.id,
        "paymentIntentId": payment.payment_intent_id,
        "amount": payment.amount,
    }), 201


@bp.route("/api/payments/card", methods=["POST"])
@login_required
@security_middleware.rate_limit(*PAYMENT_LIMIT)
def process_card_payment():
    data = get_json_body()
    opaque_data = data.get("opaqueData")
    if (not isinstance(opaque_data, dict) or not opaque_data.get("dataDescriptor")
            or not opaque_data.get("dataValue")):
        raise ValidationError("opaqueData with dataDescriptor and dataValue is required")
    cardholder_name = require_string(data, "cardholderName", label="Cardholder name")
    loan = get_payable_loan(data.get("loanApplicationId"), g.user)

    result = charge_card(loan.processing_fee_amount, opaque_data, cardholder_name,
                         invoice_number=loan.reference_number,
                         description=f"Processing fee for {loan.reference_number}")

    if not result["success"] and result["status"] != PaymentStatus.PROCESSING:
        create_payment_record(
            loan, PaymentMethod.CARD, PaymentProvider.AUTHORIZENET, status=PaymentStatus.FAILED,
            transaction_id=result["transaction_id"], card_last4=result["card_last4"],
            card_brand=result["card_brand"], failure_reason=result["error"], raw_response=result["raw"],
        )
        db.session.commit()
        payments_logger.warning(f"Card declined for loan {loan.reference_number}: {result['error']}")

        subject, body = payment_declined_email(loan, loan.processing_fee_amount, result["error"])
        notification_service.notify_email(loan.email, subject, body, NotificationType.GENERAL,
                                          user_id=loan.user_id, loan_application_id=loan.id)
        raise PaymentDeclinedError(result["error"])

    if result["status"] == PaymentStatus.PROCESSING:
        # held for review by the gateway, the webhook settles it
        payment = create_payment_record(
            loan, PaymentMethod.CARD, PaymentProvider.AUTHORIZENET, status=PaymentStatus.PROCESSING,
            transaction_id=result["transaction_id"], card_last4=result["card_last4"],
            card_brand=result["card_brand"], raw_response=result["raw"],
        )
        transition(loan, LoanStatus.FEE_PENDING)
        db.session.commit()
        return jsonify({"success": True, "status": payment.status,
                        "transactionId": payment.transaction_id, "paymentId": payment.id}), 202

    payment = create_payment_record(
        loan, PaymentMethod.CARD, PaymentProvider.AUTHORIZENET, status=PaymentStatus.PENDING,
        card_last4=result["card_last4"], card_brand=result["card_brand"], raw_response=result["raw"],
    )
    mark_payment_succeeded(payment, transaction_id=result["transaction_id"])
    return jsonify({
        "success": True,
        "status": payment.status,
        "transactionId": payment.transaction_id,
        "paymentId": payment.id,
    }), 200


@bp.route("/api/payments/crypto", methods=["POST"])
@login_required
@security_middleware.rate_limit(*PAYMENT_LIMIT)
def process_crypto_payment():
    data = get_json_body()
    loan = get_payable_loan(data.get("loanApplicationId"), g.user)
    payment, charge = _start_crypto_payment(loan, data.get("cryptoCurrency"))
    payments_logger.info(f"Crypto payment {payment.id} started for loan {loan.reference_number}")
    return jsonify(_crypto_response(payment, charge)), 201


@bp.route("/api/payments/<int:payment_id>/confirm", methods=["POST"])
@login_required
def confirm_payment(payment_id):
    payment = get_payment_for_user(_get_payment_or_404(payment_id), g.user)
    if payment.status == PaymentStatus.SUCCEEDED.value:
        return jsonify({"success": True, "status": payment.status}), 200
    if payment.status not in (PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value):
        raise ValidationError(f"Payment is {payment.status} and cannot be confirmed")

    email_sent = mark_payment_succeeded(payment)
    return jsonify({"success": True, "status": payment.status, "emailSent": email_sent}), 200


@bp.route("/api/payments/loan/<int:loan_id>", methods=["GET"])
@login_required
def payments_for_loan(loan_id):
    loan = get_owned_loan(loan_id, g.user, allow_admin=True)
    payments = loan.payments.order_by(Payment.created_at.desc(), Payment.id.desc()).all()
    return jsonify({"payments": [p.to_dict() for p in payments]}), 200


# --------------------------------------------------
#  Admin
# --------------------------------------------------
@bp.route("/admin/payments/<int:payment_id>/verify-crypto", methods=["POST"])
@admin_required
def admin_verify_crypto_payment(payment_id):
    result = check_payment_by_id(payment_id)
    if not result.get("success"):
        raise ValidationError(result.get("message"))
    record_audit("crypto_payment_checked", "payment", payment_id, new_value=result.get("message"))
    db.session.commit()
    return jsonify(result), 200


@bp.route("/admin/payments", methods=["GET"])
@admin_required
def admin_list_payments():
    limit, offset = parse_pagination(default_limit=50, max_limit=100)
    query = Payment.query
    status = request.args.get("status")
    if status:
        query = query.filter_by(status=status)
    method = request.args.get("paymentMethod")
    if method:
        query = query.filter_by(payment_method=method)

    total = query.count()
    payments = (query.order_by(Payment.created_at.desc(), Payment.id.desc())
                .offset(offset).limit(limit).all())
    return jsonify({
        "payments": [p.to_dict() for p in payments],
        "total": total,
        "hasMore": offset + len(payments) < total,
    }), 200


@bp.route("/admin/payments/stats", methods=["GET"])
@admin_required
def admin_payment_stats():
    def count(status=None):
        query = Payment.query
        if status:
            query = query.filter_by(status=status.value)
        return query.count()

    def amount(status=None):
        query = db.session.query(db.func.coalesce(db.func.sum(Payment.amount), 0))
        if status:
            query = query.filter(Payment.status == status.value)
        return int(query.scalar() or 0)

    return jsonify({
        "total": count(),
        "succeeded": count(PaymentStatus.SUCCEEDED),
        "pending": count(PaymentStatus.PENDING),
        "failed": count(PaymentStatus.FAILED),
        "totalAmount": amount(),
        "succeededAmount": amount(PaymentStatus.SUCCEEDED),
    }), 200
