"""
Background verification of pending crypto payments.

Every PAYMENT_MONITOR_INTERVAL seconds each pending crypto payment is looked
up on chain; once it has enough confirmations the payment is settled and
the loan moves to fee_paid.
"""
import logging
import gevent
from extensions import db
from models import Payment, PaymentStatus, PaymentMethod
from logger import payments_logger
from blueprints.blockchain import verify_crypto_transfer, not_found, BlockchainError, MIN_CONFIRMATIONS
from blueprints.payments_helpers import mark_payment_succeeded, tx_hash_claimed

logger = logging.getLogger(__name__)


def verify_crypto_payment(payment):
    """Check one pending crypto payment on chain and settle it when confirmed.

    Only transfers made after the payment was created count, and a transaction
    already credited to another payment is never matched again.
    """
    currency = payment.crypto_currency
    try:
        result = verify_crypto_transfer(currency, payment.crypto_address, payment.crypto_amount,
                                        since=payment.created_at,
                                        skip=lambda tx_hash: tx_hash_claimed(tx_hash, payment.id))
    except BlockchainError as e:
        payments_logger.error(f"Chain lookup failed for payment {payment.id}: {e}")
        return {"success": False, "confirmed": False, "confirmations": 0, "txHash": None,
                "message": "Blockchain lookup failed, try again later"}

    if result["found"] and tx_hash_claimed(result["tx_hash"], payment.id):
        payments_logger.warning(f"Payment {payment.id}: transaction {result['tx_hash']} "
                                f"already credited to another payment")
        result = not_found("Transaction already credited to another payment")

    if not result["found"]:
        return {"success": True, "confirmed": False, "confirmations": 0, "txHash": None,
                "message": result["message"]}

    required = MIN_CONFIRMATIONS.get(currency, 12)
    payment.crypto_tx_hash = result["tx_hash"]
    if result["confirmations"] < required:
        db.session.commit()
        return {"success": True, "confirmed": False, "confirmations": result["confirmations"],
                "txHash": result["tx_hash"],
                "message": f"Waiting for confirmations ({result['confirmations']}/{required})"}

    mark_payment_succeeded(payment, transaction_id=result["tx_hash"])
    payments_logger.info(f"Crypto payment {payment.id} confirmed on chain: {result['tx_hash']}")
    return {"success": True, "confirmed": True, "confirmations": result["confirmations"],
            "txHash": result["tx_hash"], "message": "Payment confirmed"}


def check_payment_by_id(payment_id):
    payment = Payment.query.get(payment_id)
    if not payment:
        return {"success": False, "confirmed": False, "message": "Payment not found"}
    if payment.payment_method != PaymentMethod.CRYPTO.value:
        return {"success": False, "confirmed": False, "message": "Not a crypto payment"}
    if payment.status != PaymentStatus.PENDING.value:
        return {"success": False, "confirmed": False, "message": f"Payment is already {payment.status}"}
    return verify_crypto_payment(payment)


def run_monitor_cycle():
    """One pass over all pending crypto payments. Returns the number confirmed."""
    pending = Payment.query.filter_by(
        payment_method=PaymentMethod.CRYPTO.value,
        status=PaymentStatus.PENDING.value,
    ).all()
    confirmed = 0
    for payment in pending:
        if not payment.crypto_address or not payment.crypto_amount:
            continue
        try:
            if verify_crypto_payment(payment).get("confirmed"):
                confirmed += 1
        except Exception as e:
            db.session.rollback()
            logger.error(f"Monitor failed on payment {payment.id}: {e}", exc_info=True)
    if pending:
        payments_logger.info(f"Payment monitor: {confirmed}/{len(pending)} pending crypto payments confirmed")
    return confirmed


def _monitor_loop(app, interval):
    while True:
        with app.app_context():
            try:
                run_monitor_cycle()
            except Exception as e:
                logger.error(f"Payment monitor cycle failed: {e}", exc_info=True)
        gevent.sleep(interval)


def start_payment_monitor(app):
    interval = app.config.get("PAYMENT_MONITOR_INTERVAL", 120)
    app.logger.info(f"Starting crypto payment monitor (every {interval}s)")
    return gevent.spawn(_monitor_loop, app, interval)
