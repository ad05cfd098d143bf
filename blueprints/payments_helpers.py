import json
import uuid
import logging
from datetime import datetime
from flask import current_app
import requests
from sqlalchemy import or_
from models import (db, Payment, PaymentStatus, LoanStatus,
                    NotificationType, UserNotificationType)
from utils import build_retry_session, request_timeout
from exceptions import ValidationError, PermissionDeniedError, ConfigurationError, ExternalServiceError
from logger import payments_logger
from blueprints.loan_helpers import transition, get_owned_loan, PAYABLE_STATUSES
from blueprints.notification_services import notification_service, payment_confirmed_email

logger = logging.getLogger(__name__)

ANET_ENDPOINTS = {
    "sandbox": "https://apitest.authorize.net/xml/v1/request.api",
    "production": "https://api.authorize.net/xml/v1/request.api",
}
ANET_APPROVED = "1"
ANET_STATUS_MAP = {
    "1": PaymentStatus.SUCCEEDED,
    "2": PaymentStatus.FAILED,     # declined
    "3": PaymentStatus.FAILED,     # error
    "4": PaymentStatus.PROCESSING, # held for review
}


# =========================
# PAYABLE LOAN CHECK
# =========================
def get_payable_loan(loan_id, user):
    """Loan owned by user, approved or awaiting its fee, with a computed fee."""
    if not isinstance(loan_id, int) or isinstance(loan_id, bool):
        raise ValidationError("loanApplicationId is required")
    loan = get_owned_loan(loan_id, user)
    if loan.status not in PAYABLE_STATUSES:
        raise ValidationError("Loan must be approved before paying the processing fee")
    if not loan.processing_fee_amount:
        raise ValidationError("Processing fee has not been calculated for this loan")
    return loan


def get_payment_for_user(payment, user):
    if payment.user_id != user.id and not user.is_admin:
        raise PermissionDeniedError("You do not have access to this payment")
    return payment


# =========================
# CREATE PAYMENT RECORD
# =========================
def create_payment_record(loan, method, provider, status=PaymentStatus.PENDING, **fields):
    """Create a new Payment row for the loan's processing fee. Flushed, not committed."""
    payment = Payment(
        loan_application_id=loan.id,
        user_id=loan.user_id,
        amount=loan.processing_fee_amount,
        currency="USD",
        payment_method=method.value,
        payment_provider=provider.value,
        status=status.value,
        **fields
    )
    db.session.add(payment)
    db.session.flush()
    payments_logger.info(f"Payment {payment.id} created: {method.value}/{provider.value} "
                         f"{payment.amount} for loan {loan.reference_number}")
    return payment


def tx_hash_claimed(tx_hash, payment_id=None):
    """True when another payment already holds tx_hash as its chain hash or transaction id."""
    if not tx_hash:
        return False
    query = Payment.query.filter(or_(Payment.crypto_tx_hash == tx_hash,
                                     Payment.transaction_id == tx_hash))
    if payment_id is not None:
        query = query.filter(Payment.id != payment_id)
    return db.session.query(query.exists()).scalar()


def mark_payment_succeeded(payment, transaction_id=None, notify=True):
    """Settle a payment and move its loan to fee_paid. Commits."""
    loan = payment.loan_application
    payment.status = PaymentStatus.SUCCEEDED.value
    payment.completed_at = datetime.utcnow()
    if transaction_id:
        payment.transaction_id = transaction_id

    transition(loan, LoanStatus.FEE_PAID)
    loan.processing_fee_paid = True
    loan.processing_fee_payment_id = payment.id
    notification_service.push(loan.user_id, "Processing fee received",
                              f"We received your processing fee for {loan.reference_number}.",
                              UserNotificationType.PAYMENT_RECEIVED)
    db.session.commit()
    payments_logger.info(f"Payment {payment.id} succeeded, loan {loan.reference_number} fee_paid")

    email_sent = False
    if notify:
        subject, body = payment_confirmed_email(loan, payment)
        email_sent = notification_service.notify_email(loan.email, subject, body,
                                                       NotificationType.PAYMENT_CONFIRMED,
                                                       user_id=loan.user_id, loan_application_id=loan.id)
    return email_sent


# =========================
# AUTHORIZE.NET
# =========================
def anet_endpoint():
    environment = current_app.config.get("AUTHORIZENET_ENVIRONMENT", "sandbox")
    return ANET_ENDPOINTS.get(environment, ANET_ENDPOINTS["sandbox"])


def anet_credentials():
    login_id = current_app.config.get("AUTHORIZENET_API_LOGIN_ID")
    transaction_key = current_app.config.get("AUTHORIZENET_TRANSACTION_KEY")
    if not login_id or not transaction_key:
        logger.error("Authorize.Net credentials not set")
        raise ConfigurationError("Card payments are not configured")
    return {"name": login_id, "transactionKey": transaction_key}


def charge_card(amount_cents, opaque_data, cardholder_name, invoice_number, description):
    """
    Charge an Accept.js payment nonce through Authorize.Net createTransactionRequest.

    Returns a dict: success, transaction_id, card_last4, card_brand, status, error, raw.
    """
    first_name, _, last_name = (cardholder_name or "").strip().partition(" ")
    payload = {
        "createTransactionRequest": {
            "merchantAuthentication": anet_credentials(),
            "refId": uuid.uuid4().hex[:20],
            "transactionRequest": {
                "transactionType": "authCaptureTransaction",
                "amount": f"{amount_cents / 100:.2f}",
                "payment": {
                    "opaqueData": {
                        "dataDescriptor": opaque_data["dataDescriptor"],
                        "dataValue": opaque_data["dataValue"],
                    }
                },
                "order": {
                    "invoiceNumber": invoice_number[:20],
                    "description": description[:255],
                },
                "billTo": {
                    "firstName": first_name[:50],
                    "lastName": last_name[:50],
                },
            },
        }
    }

    try:
        http = build_retry_session()
        resp = http.post(anet_endpoint(), json=payload, timeout=request_timeout(),
                         headers={"Content-Type": "application/json"})
        resp.raise_for_status()
        # Authorize.Net prefixes its JSON with a UTF-8 BOM
        body = json.loads(resp.content.decode("utf-8-sig"))
    except requests.exceptions.Timeout:
        payments_logger.error("Authorize.Net request timed out")
        raise ExternalServiceError("Payment gateway timed out, please try again")
    except (requests.exceptions.RequestException, ValueError) as e:
        payments_logger.error(f"Authorize.Net request failed: {e}")
        raise ExternalServiceError("Payment gateway is unavailable, please try again")

    return parse_anet_response(body)


def parse_anet_response(body):
    transaction = body.get("transactionResponse") or {}
    response_code = str(transaction.get("responseCode", ""))
    status = ANET_STATUS_MAP.get(response_code, PaymentStatus.FAILED)

    error = None
    if response_code != ANET_APPROVED:
        errors = transaction.get("errors") or []
        if errors:
            error = errors[0].get("errorText")
        else:
            messages = (body.get("messages") or {}).get("message") or []
            error = messages[0].get("text") if messages else None
        error = error or "The transaction was declined"

    account_number = transaction.get("accountNumber") or ""
    return {
        "success": response_code == ANET_APPROVED,
        "status": status,
        "transaction_id": transaction.get("transId"),
        "card_last4": account_number[-4:] if account_number else None,
        "card_brand": transaction.get("accountType"),
        "error": error,
        "raw": json.dumps(body)[:4000],
    }
