# =============================================================================
# tests/test_payments.py - Processing fee payments (card + crypto)
# =============================================================================

from decimal import Decimal
from unittest.mock import patch

import pytest

from extensions import db
from models import Payment, UserNotification
from blueprints.payments_helpers import parse_anet_response, get_payable_loan
from exceptions import ValidationError
from models import PaymentStatus

OPAQUE = {"dataDescriptor": "COMMON.ACCEPT.INAPP.PAYMENT", "dataValue": "nonce-123"}
LIVE_PRICES = {"BTC": Decimal("50000"), "ETH": Decimal("2500"), "USDT": Decimal("1"), "USDC": Decimal("1")}


def anet_result(success=True, status=PaymentStatus.SUCCEEDED, error=None, trans_id="60012345678"):
    return {
        "success": success,
        "status": status,
        "transaction_id": trans_id,
        "card_last4": "1111",
        "card_brand": "Visa",
        "error": error,
        "raw": "{}",
    }


@pytest.fixture(autouse=True)
def live_prices():
    with patch("blueprints.crypto_helpers.fetch_usd_prices", return_value=LIVE_PRICES) as mock:
        yield mock


class TestParseAnetResponse:
    """Authorize.Net createTransactionResponse decoding."""

    def test_approved(self):
        result = parse_anet_response({
            "transactionResponse": {"responseCode": "1", "transId": "123", "accountNumber": "XXXX4242",
                                    "accountType": "Visa"},
            "messages": {"resultCode": "Ok"},
        })
        assert result["success"] is True
        assert result["status"] is PaymentStatus.SUCCEEDED
        assert result["card_last4"] == "4242"
        assert result["error"] is None

    def test_declined_uses_error_text(self):
        result = parse_anet_response({
            "transactionResponse": {"responseCode": "2", "transId": "0",
                                    "errors": [{"errorCode": "2", "errorText": "This transaction has been declined."}]},
        })
        assert result["success"] is False
        assert result["status"] is PaymentStatus.FAILED
        assert result["error"] == "This transaction has been declined."

    def test_held_for_review(self):
        result = parse_anet_response({"transactionResponse": {"responseCode": "4", "transId": "9"}})
        assert result["status"] is PaymentStatus.PROCESSING

    def test_top_level_error_message(self):
        result = parse_anet_response({
            "messages": {"resultCode": "Error", "message": [{"code": "E00007", "text": "User authentication failed"}]},
        })
        assert result["status"] is PaymentStatus.FAILED
        assert result["error"] == "User authentication failed"


class TestPayableLoan:

    def test_requires_integer_id(self, app, user):
        with pytest.raises(ValidationError):
            get_payable_loan("1", user)

    def test_pending_loan_not_payable(self, app, user, make_loan):
        loan = make_loan(user, processing_fee_amount=100)
        with pytest.raises(ValidationError) as exc:
            get_payable_loan(loan.id, user)
        assert exc.value.message == "Loan must be approved before paying the processing fee"

    def test_approved_loan_payable(self, app, user, approved_loan):
        assert get_payable_loan(approved_loan.id, user) is approved_loan


class TestPaymentIntent:

    def test_card_intent_moves_loan_to_fee_pending(self, login, user, approved_loan):
        response = login(user).post("/api/payments/intent", json={
            "paymentMethod": "card", "loanApplicationId": approved_loan.id})

        assert response.status_code == 201
        body = response.get_json()
        assert body["paymentIntentId"].startswith("pi_")
        assert body["amount"] == 10000
        assert approved_loan.status == "fee_pending"

    def test_crypto_intent_quotes_amount(self, login, user, approved_loan):
        response = login(user).post("/api/payments/intent", json={
            "paymentMethod": "crypto", "loanApplicationId": approved_loan.id, "cryptoCurrency": "eth"})

        assert response.status_code == 201
        body = response.get_json()
        assert body["cryptoCurrency"] == "ETH"
        assert body["cryptoAmount"] == "0.040000"
        assert body["cryptoAddress"] == "0x1111111111111111111111111111111111111111"
        assert body["paymentUri"].startswith("ethereum:0x1111")
        assert body["qrCode"].startswith("data:image/png;base64,")
        payment = db.session.get(Payment, body["paymentId"])
        assert payment.status == "pending"
        assert payment.payment_provider == "crypto"

    def test_only_authorizenet_takes_cards(self, login, user, approved_loan):
        response = login(user).post("/api/payments/intent", json={
            "paymentMethod": "card", "paymentProvider": "stripe", "loanApplicationId": approved_loan.id})

        assert response.status_code == 400
        assert response.get_json()["error"] == "Unsupported card payment provider"
        assert approved_loan.status == "approved"
        assert Payment.query.count() == 0

    def test_unknown_method(self, login, user, approved_loan):
        response = login(user).post("/api/payments/intent", json={
            "paymentMethod": "cash", "loanApplicationId": approved_loan.id})
        assert response.status_code == 400

    def test_other_users_loan(self, login, make_user, approved_loan):
        response = login(make_user()).post("/api/payments/intent", json={
            "paymentMethod": "card", "loanApplicationId": approved_loan.id})
        assert response.status_code == 403


class TestCardPayment:

    def _pay(self, client, loan):
        return client.post("/api/payments/card", json={
            "opaqueData": OPAQUE, "cardholderName": "Jane Doe", "loanApplicationId": loan.id})

    def test_success_settles_fee(self, login, user, approved_loan):
        with patch("blueprints.payments.charge_card", return_value=anet_result()) as charge:
            response = self._pay(login(user), approved_loan)

        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "succeeded"
        assert body["transactionId"] == "60012345678"
        assert charge.call_args[0][0] == 10000

        assert approved_loan.status == "fee_paid"
        assert approved_loan.processing_fee_paid is True
        assert approved_loan.processing_fee_payment_id == body["paymentId"]
        assert UserNotification.query.filter_by(type="payment_received").count() == 1

    def test_decline_records_failed_payment(self, login, user, approved_loan):
        declined = anet_result(success=False, status=PaymentStatus.FAILED,
                               error="This transaction has been declined.", trans_id="0")
        with patch("blueprints.payments.charge_card", return_value=declined):
            response = self._pay(login(user), approved_loan)

        assert response.status_code == 400
        assert response.get_json()["error"] == "This transaction has been declined."
        payment = Payment.query.one()
        assert payment.status == "failed"
        assert payment.failure_reason == "This transaction has been declined."
        assert approved_loan.status == "approved"

    def test_held_for_review(self, login, user, approved_loan):
        held = anet_result(success=False, status=PaymentStatus.PROCESSING)
        with patch("blueprints.payments.charge_card", return_value=held):
            response = self._pay(login(user), approved_loan)

        assert response.status_code == 202
        assert response.get_json()["status"] == "processing"
        assert approved_loan.status == "fee_pending"

    def test_missing_opaque_data(self, login, user, approved_loan):
        response = login(user).post("/api/payments/card", json={
            "cardholderName": "Jane Doe", "loanApplicationId": approved_loan.id})
        assert response.status_code == 400


class TestCryptoPaymentFlow:

    def test_start_and_confirm(self, login, user, approved_loan):
        client = login(user)
        body = client.post("/api/payments/crypto", json={
            "loanApplicationId": approved_loan.id, "cryptoCurrency": "BTC"}).get_json()
        assert body["cryptoAmount"] == "0.00200000"

        response = client.post(f"/api/payments/{body['paymentId']}/confirm")
        assert response.status_code == 200
        assert response.get_json()["status"] == "succeeded"
        assert approved_loan.status == "fee_paid"

    def test_confirm_failed_payment_rejected(self, login, user, approved_loan):
        payment = Payment(loan_application_id=approved_loan.id, user_id=user.id, amount=10000,
                          payment_provider="authorizenet", payment_method="card", status="failed")
        db.session.add(payment)
        db.session.commit()

        response = login(user).post(f"/api/payments/{payment.id}/confirm")
        assert response.status_code == 400

    def test_missing_wallet_is_configuration_error(self, app, login, user, approved_loan):
        app.config["WALLET_ADDRESS_USDC"] = None
        response = login(user).post("/api/payments/crypto", json={
            "loanApplicationId": approved_loan.id, "cryptoCurrency": "USDC"})
        assert response.status_code == 500
        assert response.get_json()["error"] == "USDC payments are not configured"


class TestPaymentQueries:

    def test_cryptos_and_convert(self, client):
        cryptos = client.get("/api/payments/cryptos").get_json()["cryptos"]
        assert [c["symbol"] for c in cryptos] == ["BTC", "ETH", "USDT", "USDC"]

        body = client.get("/api/payments/convert?usdCents=2550&currency=usdt").get_json()
        assert body == {"currency": "USDT", "usdCents": 2550, "cryptoAmount": "25.50"}

    def test_convert_rejects_bad_amount(self, client):
        assert client.get("/api/payments/convert?usdCents=abc&currency=BTC").status_code == 400

    def test_loan_payments_and_admin_listing(self, login, user, admin, approved_loan):
        for status in ("failed", "succeeded"):
            db.session.add(Payment(loan_application_id=approved_loan.id, user_id=user.id, amount=10000,
                                   payment_provider="authorizenet", payment_method="card", status=status))
        db.session.commit()

        assert len(login(user).get(f"/api/payments/loan/{approved_loan.id}").get_json()["payments"]) == 2

        client = login(admin)
        listing = client.get("/admin/payments?status=succeeded").get_json()
        assert listing["total"] == 1
        assert listing["hasMore"] is False

        stats = client.get("/admin/payments/stats").get_json()
        assert stats["total"] == 2
        assert stats["failed"] == 1
        assert stats["succeededAmount"] == 10000
