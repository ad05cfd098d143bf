# =============================================================================
# tests/test_webhooks.py - Gateway webhooks and request rate limiting
# =============================================================================

import json
from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from extensions import db
from models import Payment, WebhookEvent
from blueprints.security_middleware import (
    security_middleware, compute_anet_signature, compute_coinbase_signature,
)

SIGNATURE_KEY = "ABCDEF0123456789"


def post_webhook(client, payload, signature=None):
    body = json.dumps(payload).encode()
    if signature is None:
        signature = "sha512=" + compute_anet_signature(SIGNATURE_KEY, body)
    return client.post("/webhooks/authorizenet", data=body, content_type="application/json",
                       headers={"X-ANET-Signature": signature})


def event(event_type, trans_id="60099", notification_id="n-1"):
    return {"notificationId": notification_id, "eventType": event_type, "payload": {"id": trans_id}}


@pytest.fixture
def processing_payment(user, make_loan):
    loan = make_loan(user, status="fee_pending", approved_amount=500000, processing_fee_amount=10000)
    payment = Payment(loan_application_id=loan.id, user_id=user.id, amount=10000,
                      payment_provider="authorizenet", payment_method="card", status="processing",
                      transaction_id="60099")
    db.session.add(payment)
    db.session.commit()
    return payment


class TestSignature:
    """X-ANET-Signature validation."""

    def test_missing_header(self, client):
        response = client.post("/webhooks/authorizenet", json=event("x"))
        assert response.status_code == 401
        assert response.get_json()["error"] == "Missing security headers"

    def test_wrong_signature(self, client):
        response = post_webhook(client, event("x"), signature="sha512=" + "0" * 128)
        assert response.status_code == 401

    def test_lowercase_hex_accepted(self, client):
        body = json.dumps(event("net.authorize.customer.created")).encode()
        signature = "sha512=" + compute_anet_signature(SIGNATURE_KEY, body).lower()
        response = client.post("/webhooks/authorizenet", data=body, content_type="application/json",
                               headers={"X-ANET-Signature": signature})
        assert response.status_code == 200

    def test_unconfigured_key(self, app, client):
        app.config["AUTHORIZENET_SIGNATURE_KEY"] = None
        assert post_webhook(client, event("x")).status_code == 500


class TestWebhookEvents:

    def test_capture_settles_payment(self, client, processing_payment):
        response = post_webhook(client, event("net.authorize.payment.authcapture.created"))

        assert response.status_code == 200
        assert processing_payment.status == "succeeded"
        assert processing_payment.loan_application.status == "fee_paid"
        logged = WebhookEvent.query.filter_by(event_id="n-1").one()
        assert logged.processed is True

    def test_duplicate_event_ignored(self, client, processing_payment):
        post_webhook(client, event("net.authorize.payment.authcapture.created"))
        response = post_webhook(client, event("net.authorize.payment.authcapture.created"))

        assert response.get_json()["duplicate"] is True
        assert WebhookEvent.query.count() == 1

    def test_refund(self, client, processing_payment):
        post_webhook(client, event("net.authorize.payment.refund.created"))
        assert processing_payment.status == "refunded"
        assert processing_payment.failure_reason.startswith("refunded at gateway")

    def test_void(self, client, processing_payment):
        post_webhook(client, event("net.authorize.payment.void.created"))
        assert processing_payment.status == "cancelled"

    def test_unknown_transaction_acknowledged(self, client):
        response = post_webhook(client, event("net.authorize.payment.authcapture.created", trans_id="nope"))

        assert response.status_code == 200
        logged = WebhookEvent.query.one()
        assert logged.success is False
        assert logged.remarks == "Unknown transaction"

    def test_missing_fields_acknowledged(self, client):
        response = post_webhook(client, {"eventType": "net.authorize.payment.authcapture.created"})
        assert response.status_code == 200
        assert WebhookEvent.query.count() == 0


COINBASE_SECRET = "test-coinbase-secret"


def post_crypto_webhook(client, payload, signature=None):
    body = json.dumps(payload).encode()
    if signature is None:
        signature = compute_coinbase_signature(COINBASE_SECRET, body)
    return client.post("/webhooks/crypto", data=body, content_type="application/json",
                       headers={"X-CC-Webhook-Signature": signature})


def charge_event(event_type, charge_id="charge_1700000000000_ab12", event_id="evt-1", tx_hash="0xfeedbeef"):
    charge = {"id": charge_id}
    if tx_hash:
        charge["payments"] = [{"transaction_id": tx_hash, "network": "ethereum"}]
    return {"id": 1, "event": {"id": event_id, "type": event_type, "data": charge}}


@pytest.fixture
def crypto_payment(user, make_loan):
    loan = make_loan(user, status="fee_pending", approved_amount=500000, processing_fee_amount=10000)
    payment = Payment(loan_application_id=loan.id, user_id=user.id, amount=10000,
                      payment_provider="crypto", payment_method="crypto", status="pending",
                      provider_payment_id="charge_1700000000000_ab12", crypto_currency="ETH",
                      crypto_address="0x1111111111111111111111111111111111111111", crypto_amount="0.040000")
    db.session.add(payment)
    db.session.commit()
    return payment


class TestCryptoWebhook:
    """Coinbase Commerce charge events."""

    def test_unconfigured_secret(self, app, client):
        app.config["COINBASE_COMMERCE_WEBHOOK_SECRET"] = None
        assert post_crypto_webhook(client, charge_event("charge:confirmed")).status_code == 500

    def test_wrong_signature(self, client, crypto_payment):
        response = post_crypto_webhook(client, charge_event("charge:confirmed"), signature="0" * 64)
        assert response.status_code == 401
        assert crypto_payment.status == "pending"

    def test_confirmed_settles_payment(self, client, crypto_payment):
        response = post_crypto_webhook(client, charge_event("charge:confirmed"))

        assert response.status_code == 200
        assert response.get_json() == {"received": True}
        assert crypto_payment.status == "succeeded"
        assert crypto_payment.crypto_tx_hash == "0xfeedbeef"
        assert crypto_payment.transaction_id == "0xfeedbeef"
        assert crypto_payment.loan_application.status == "fee_paid"
        assert WebhookEvent.query.filter_by(event_id="evt-1").one().provider == "coinbase"

    def test_confirmed_with_reused_transaction(self, client, user, make_loan, crypto_payment):
        other_loan = make_loan(user, status="fee_paid", approved_amount=500000, processing_fee_amount=10000)
        db.session.add(Payment(loan_application_id=other_loan.id, user_id=user.id, amount=10000,
                               payment_provider="crypto", payment_method="crypto", status="succeeded",
                               crypto_tx_hash="0xfeedbeef", transaction_id="0xfeedbeef"))
        db.session.commit()

        response = post_crypto_webhook(client, charge_event("charge:confirmed"))

        assert response.status_code == 200
        assert crypto_payment.status == "pending"
        assert crypto_payment.loan_application.status == "fee_pending"
        logged = WebhookEvent.query.filter_by(event_id="evt-1").one()
        assert logged.success is False
        assert "already credited" in logged.remarks

    def test_failed_and_pending(self, client, crypto_payment):
        post_crypto_webhook(client, charge_event("charge:pending", event_id="evt-p", tx_hash=None))
        assert crypto_payment.status == "processing"

        post_crypto_webhook(client, charge_event("charge:failed", event_id="evt-f", tx_hash=None))
        assert crypto_payment.status == "failed"
        assert crypto_payment.failure_reason.startswith("Charge failed at Coinbase Commerce")

    def test_late_failure_does_not_reopen_settled_payment(self, client, crypto_payment):
        post_crypto_webhook(client, charge_event("charge:confirmed"))
        post_crypto_webhook(client, charge_event("charge:failed", event_id="evt-2", tx_hash=None))
        assert crypto_payment.status == "succeeded"

    def test_duplicate_event_ignored(self, client, crypto_payment):
        post_crypto_webhook(client, charge_event("charge:confirmed"))
        response = post_crypto_webhook(client, charge_event("charge:confirmed"))
        assert response.get_json()["duplicate"] is True
        assert WebhookEvent.query.count() == 1

    def test_unknown_charge_acknowledged(self, client):
        response = post_crypto_webhook(client, charge_event("charge:confirmed", charge_id="charge_nope"))

        assert response.status_code == 200
        assert WebhookEvent.query.one().remarks == "Unknown charge"

    def test_missing_fields(self, client):
        response = post_crypto_webhook(client, {"event": {"type": "charge:confirmed"}})
        assert response.status_code == 400
        assert WebhookEvent.query.count() == 0


class TestRateLimit:
    """Redis-backed per-IP limits."""

    @pytest.fixture
    def redis_pipeline(self, app):
        app.config["RATELIMIT_ENABLED"] = True
        pipeline = MagicMock()
        fake_redis = MagicMock()
        fake_redis.pipeline.return_value = pipeline
        security_middleware._redis = fake_redis
        security_middleware._redis_url = app.config["REDIS_URL"]
        yield pipeline
        security_middleware._redis = None
        security_middleware._redis_url = None

    def test_under_limit(self, client, redis_pipeline):
        redis_pipeline.execute.return_value = [1, True]
        response = client.post("/api/auth/login", json={"email": "x@example.com", "password": "nope"})
        assert response.status_code == 401
        redis_pipeline.expire.assert_called_once_with("rate_limit:127.0.0.1:auth.login", 900)

    def test_over_limit(self, client, redis_pipeline):
        redis_pipeline.execute.return_value = [6, True]
        response = client.post("/api/auth/login", json={"email": "x@example.com", "password": "nope"})
        assert response.status_code == 429
        assert response.get_json()["retry_after"] == 900

    def test_redis_down_fails_open(self, client, redis_pipeline):
        redis_pipeline.execute.side_effect = RedisConnectionError("refused")
        response = client.post("/api/auth/login", json={"email": "x@example.com", "password": "nope"})
        assert response.status_code == 401
