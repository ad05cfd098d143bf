# =============================================================================
# tests/test_app.py - App factory, error handling, notification delivery
# =============================================================================

from unittest.mock import patch

from flask import Flask

from models import Notification
from exceptions import NotFoundError, RateLimitExceededError
from blueprints.notification_services import NotificationService, notification_service, format_cents


class TestAppFactory:

    def test_healthz(self, client):
        assert client.get("/healthz").get_json() == {"status": "ok"}

    def test_unknown_route_is_json(self, client):
        response = client.get("/api/nope")
        assert response.status_code == 404
        assert "error" in response.get_json()

    def test_lending_exception_payload(self):
        error = RateLimitExceededError("Slow down", payload={"retry_after": 60})
        assert error.status_code == 429
        assert error.to_dict() == {"error": "Slow down", "retry_after": 60}
        assert NotFoundError().message == "Not found"

    def test_unexpected_error_is_500(self, app, client):
        @app.route("/boom")
        def boom():
            raise RuntimeError("kaboom")

        response = client.get("/boom")
        assert response.status_code == 500
        assert response.get_json() == {"error": "Internal server error"}


class TestNotificationDelivery:

    def test_format_cents(self):
        assert format_cents(123456) == "$1,234.56"
        assert format_cents(None) == "$0.00"

    def test_sms_with_credentials(self):
        app = Flask(__name__)
        app.config.update(AT_USERNAME="sandbox", AT_API_KEY="key", AT_SENDER_ID="AMERILEND")
        with patch("blueprints.notification_services.africastalking") as at:
            service = NotificationService(app)
            with app.app_context():
                sent, error = service.send_sms("+15551234567", "code 123456")

        at.initialize.assert_called_once_with("sandbox", "key")
        at.SMS.send.assert_called_once_with("code 123456", ["+15551234567"], "AMERILEND")
        assert (sent, error) == (True, None)

    def test_sms_without_credentials(self, app):
        assert notification_service.send_sms("+15551234567", "hi") == (False, "SMS service not configured")

    def test_notify_sms_logs_failure(self, app):
        notification_service.notify_sms("+15551234567", "hi")
        logged = Notification.query.one()
        assert logged.channel == "sms"
        assert logged.status == "failed"
        assert logged.error_message == "SMS service not configured"

    def test_notify_email_logs_delivery(self, app):
        assert notification_service.notify_email("someone@example.com", "Subject", "Body") is True
        logged = Notification.query.one()
        assert logged.status == "sent"
        assert logged.sent_at is not None

    def test_email_failure_returns_false(self, app):
        with patch("blueprints.notification_services.mail") as mail:
            mail.send.side_effect = ConnectionRefusedError("smtp down")
            assert notification_service.notify_email("someone@example.com", "Subject", "Body") is False
        assert Notification.query.one().status == "failed"
