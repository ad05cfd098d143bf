from datetime import datetime
from flask import request, jsonify, current_app, Blueprint
from extensions import db
from models import Payment, PaymentStatus, PaymentMethod, WebhookEvent
from exceptions import LendingException, ConflictError
from blueprints.payments_helpers import mark_payment_succeeded, tx_hash_claimed
from blueprints.security_middleware import security_middleware

bp = Blueprint('payment_webhooks', __name__)

CAPTURE_EVENTS = {
    'net.authorize.payment.authcapture.created',
    'net.authorize.payment.capture.created',
    'net.authorize.payment.fraud.approved',
}
REFUND_EVENT = 'net.authorize.payment.refund.created'
VOID_EVENTS = {'net.authorize.payment.void.created', 'net.authorize.payment.fraud.declined'}


@bp.route('/webhooks/authorizenet', methods=['POST'])
@security_middleware.validate_anet_signature
def authorizenet_webhook():
    """
    Authorize.Net webhook handler. Always acknowledges with 200 once the
    signature is valid so the gateway does not keep retrying.
    """
    webhook_data = request.get_json(silent=True)
    if not webhook_data:
        current_app.logger.error("Webhook: No JSON data received")
        return jsonify({"status": "acknowledged"}), 200

    event_id = webhook_data.get('notificationId')
    event_type = webhook_data.get('eventType')
    payload = webhook_data.get('payload') or {}
    trans_id = payload.get('id')

    if not all([event_id, event_type, trans_id]):
        current_app.logger.error(f"Webhook: Missing required fields - notificationId: {event_id}, "
                                 f"eventType: {event_type}, transaction: {trans_id}")
        return jsonify({"status": "acknowledged"}), 200

    if WebhookEvent.query.filter_by(event_id=event_id).first():
        current_app.logger.info(f"Webhook: Already processed {event_id}")
        return jsonify({"status": "acknowledged", "duplicate": True}), 200

    event = WebhookEvent(provider="authorizenet", event_id=event_id, event_type=event_type, payload=webhook_data)
    db.session.add(event)
    db.session.commit()
    current_app.logger.info(f"Webhook processing: {event_type} for transaction {trans_id}")

    payment = Payment.query.filter_by(transaction_id=str(trans_id)).first()
    if not payment:
        current_app.logger.warning(f"Webhook: Unknown transaction {trans_id}")
        event.mark_processed(False, "Unknown transaction")
        db.session.commit()
        return jsonify({"status": "acknowledged"}), 200

    try:
        if event_type in CAPTURE_EVENTS:
            remarks = handle_successful_payment(payment)
        elif event_type == REFUND_EVENT:
            remarks = handle_closed_payment(payment, PaymentStatus.REFUNDED)
        elif event_type in VOID_EVENTS:
            remarks = handle_closed_payment(payment, PaymentStatus.CANCELLED)
        else:
            remarks = f"Unhandled event {event_type}"
            current_app.logger.info(f"Webhook: {remarks} for {trans_id}")
        event.mark_processed(True, remarks)
        db.session.commit()

    except LendingException as e:
        db.session.rollback()
        current_app.logger.error(f"Webhook {event_id} rejected for payment {payment.id}: {e.message}")
        event.mark_processed(False, e.message)
        db.session.commit()

    return jsonify({"status": "acknowledged"}), 200


def handle_successful_payment(payment):
    if payment.status == PaymentStatus.SUCCEEDED.value:
        return "Payment already succeeded"
    mark_payment_succeeded(payment)
    current_app.logger.info(f"Payment {payment.id} settled by webhook")
    return "Payment succeeded"


def handle_closed_payment(payment, status):
    payment.status = status.value
    payment.failure_reason = f"{status.value} at gateway on {datetime.utcnow():%Y-%m-%d}"
    current_app.logger.warning(f"Payment {payment.id} marked as {status.value}")
    return f"Payment {status.value}"


# =========================
# COINBASE COMMERCE (CRYPTO)
# =========================
CHARGE_CONFIRMED = 'charge:confirmed'
CHARGE_FAILED = 'charge:failed'
CHARGE_PENDING = 'charge:pending'
OPEN_STATUSES = {PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value}


@bp.route('/webhooks/crypto', methods=['POST'])
@security_middleware.validate_coinbase_signature
def crypto_webhook():
    """Coinbase Commerce charge events for crypto processing fee payments."""
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        current_app.logger.error("Crypto webhook: No JSON data received")
        return jsonify({"error": "Webhook processing failed"}), 400

    event_data = body.get('event') if isinstance(body.get('event'), dict) else body
    event_id = event_data.get('id') or body.get('id')
    event_type = event_data.get('type')
    charge = event_data.get('data') or {}
    charge_id = charge.get('id')

    if not all([event_id, event_type, charge_id]):
        current_app.logger.error(f"Crypto webhook: Missing required fields - id: {event_id}, "
                                 f"type: {event_type}, charge: {charge_id}")
        return jsonify({"error": "Webhook processing failed"}), 400

    if WebhookEvent.query.filter_by(event_id=str(event_id)).first():
        current_app.logger.info(f"Crypto webhook: Already processed {event_id}")
        return jsonify({"received": True, "duplicate": True}), 200

    event = WebhookEvent(provider="coinbase", event_id=str(event_id), event_type=event_type, payload=body)
    db.session.add(event)
    db.session.commit()
    current_app.logger.info(f"Crypto webhook processing: {event_type} for charge {charge_id}")

    payment = Payment.query.filter_by(provider_payment_id=str(charge_id),
                                      payment_method=PaymentMethod.CRYPTO.value).first()
    if not payment:
        current_app.logger.warning(f"Crypto webhook: Unknown charge {charge_id}")
        event.mark_processed(False, "Unknown charge")
        db.session.commit()
        return jsonify({"received": True}), 200

    try:
        if event_type == CHARGE_CONFIRMED:
            remarks = handle_confirmed_charge(payment, charge)
        elif event_type == CHARGE_FAILED:
            remarks = handle_open_charge(payment, PaymentStatus.FAILED)
        elif event_type == CHARGE_PENDING:
            remarks = handle_open_charge(payment, PaymentStatus.PROCESSING)
        else:
            remarks = f"Unhandled event {event_type}"
            current_app.logger.info(f"Crypto webhook: {remarks} for {charge_id}")
        event.mark_processed(True, remarks)
        db.session.commit()

    except LendingException as e:
        db.session.rollback()
        current_app.logger.error(f"Crypto webhook {event_id} rejected for payment {payment.id}: {e.message}")
        event.mark_processed(False, e.message)
        db.session.commit()

    return jsonify({"received": True}), 200


def handle_confirmed_charge(payment, charge):
    if payment.status == PaymentStatus.SUCCEEDED.value:
        return "Payment already succeeded"

    tx_hash = ((charge.get('payments') or [{}])[0] or {}).get('transaction_id')
    if tx_hash_claimed(tx_hash, payment.id):
        raise ConflictError(f"Transaction {tx_hash} already credited to another payment")

    if tx_hash:
        payment.crypto_tx_hash = tx_hash
    mark_payment_succeeded(payment, transaction_id=tx_hash)
    current_app.logger.info(f"Crypto payment {payment.id} settled by webhook: {tx_hash}")
    return "Payment succeeded"


def handle_open_charge(payment, status):
    """Failed and pending charge events only touch payments that are still open."""
    if payment.status not in OPEN_STATUSES:
        return f"Payment already {payment.status}"
    payment.status = status.value
    if status == PaymentStatus.FAILED:
        payment.failure_reason = f"Charge failed at Coinbase Commerce on {datetime.utcnow():%Y-%m-%d}"
        current_app.logger.warning(f"Crypto payment {payment.id} marked as failed")
    return f"Payment {status.value}"
