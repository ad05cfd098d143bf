# =============================================================================
# tests/test_admin.py - Admin dashboard, search, users, analytics, settings, audit, utilities
# =============================================================================

import json
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from extensions import db
from models import (User, Payment, FeeConfiguration, SystemSetting, AuditLog, UserNotification,
                    SupportMessage, Notification)
from blueprints.analytics import month_starts, bucket_by_month, percent


def add_payment(loan, status="succeeded", amount=10000, **fields):
    payment = Payment(loan_application_id=loan.id, user_id=loan.user_id, amount=amount,
                      payment_provider="authorizenet", payment_method="card", status=status, **fields)
    db.session.add(payment)
    db.session.commit()
    return payment


class TestDashboardAndSearch:

    def test_dashboard(self, login, admin, user, make_loan):
        loan = make_loan(user, status="fee_paid", approved_amount=200000)
        add_payment(loan)
        add_payment(loan, status="processing")

        body = login(admin).get("/admin/dashboard").get_json()
        assert body["users"]["total"] == 2
        assert body["payments"] == {"total": 2, "pending": 1, "succeeded": 1}
        assert body["loans"]["totalFeesPaid"] == 10000
        assert body["loans"]["totalFeesProcessing"] == 10000

    def test_search_across_entities(self, login, admin, user, make_loan):
        loan = make_loan(user)
        add_payment(loan, transaction_id="TXN-778899")
        client = login(admin)

        body = client.get("/admin/search?q=jane").get_json()
        assert {u["email"] for u in body["users"]} == {"jane@example.com"}
        assert len(body["loans"]) == 1

        body = client.get("/admin/search?q=778899").get_json()
        assert body["payments"][0]["referenceNumber"] == loan.reference_number
        assert body["totalResults"] == 1

    def test_search_requires_query(self, login, admin):
        assert login(admin).get("/admin/search?q=%20").status_code == 400


class TestUserManagement:

    def test_list_and_stats(self, login, admin, user, make_loan):
        make_loan(user)
        client = login(admin)

        listing = client.get("/admin/users?role=user").get_json()
        assert listing["total"] == 1

        stats = client.get("/admin/users/stats").get_json()
        assert stats["totalUsers"] == 2
        assert stats["adminUsers"] == 1
        assert stats["regularUsers"] == 1
        assert stats["usersWithLoans"] == 1

    def test_get_user_with_loans(self, login, admin, user, make_loan):
        make_loan(user)
        body = login(admin).get(f"/admin/users/{user.id}").get_json()
        assert body["user"]["email"] == user.email
        assert len(body["loans"]) == 1

    def test_update_user(self, login, admin, user):
        response = login(admin).put(f"/admin/users/{user.id}", json={
            "name": "Janet Doe", "role": "admin", "state": "CA", "zipCode": "90210"})

        assert response.status_code == 200
        assert response.get_json()["emailSent"] is True
        assert user.name == "Janet Doe"
        assert user.is_admin
        assert user.zip_code == "90210"
        audit = AuditLog.query.filter_by(action="user_updated").one()
        assert audit.details["fields"] == ["Name", "Role", "State", "ZIP Code"]

    def test_update_rejects_bad_role_and_duplicate_email(self, login, admin, user):
        client = login(admin)
        assert client.put(f"/admin/users/{user.id}", json={"role": "owner"}).status_code == 400
        response = client.put(f"/admin/users/{user.id}", json={"email": admin.email})
        assert response.get_json()["error"] == "Email already in use"

    def test_delete_user(self, login, admin, user):
        db.session.add(UserNotification(user_id=user.id, type="system", title="Hi", message="Hello"))
        db.session.commit()
        user_id = user.id

        assert login(admin).delete(f"/admin/users/{user_id}").status_code == 200
        assert db.session.get(User, user_id) is None
        assert UserNotification.query.count() == 0

    def test_cannot_delete_self_or_applicants(self, login, admin, user, make_loan):
        make_loan(user)
        client = login(admin)
        assert client.delete(f"/admin/users/{admin.id}").status_code == 400
        response = client.delete(f"/admin/users/{user.id}")
        assert response.get_json()["error"] == "Cannot delete user with existing loan applications"

    def test_reset_password(self, login, admin, user):
        client = login(admin)
        assert client.post(f"/admin/users/{user.id}/reset-password", json={"newPassword": "short"}).status_code == 400
        assert client.post(f"/admin/users/{user.id}/reset-password",
                           json={"newPassword": "temporary-pass"}).status_code == 200
        assert user.check_password("temporary-pass")

    def test_missing_user(self, login, admin):
        assert login(admin).get("/admin/users/9999").status_code == 404


class TestAnalyticsHelpers:

    def test_month_starts_cross_year(self):
        starts = month_starts(3, now=datetime(2026, 2, 10))
        assert starts == [datetime(2025, 12, 1), datetime(2026, 1, 1), datetime(2026, 2, 1)]

    def test_bucket_by_month(self):
        starts = month_starts(2, now=datetime(2026, 5, 3))
        stamps = [datetime(2026, 4, 2), datetime(2026, 5, 1), datetime(2026, 5, 30), None,
                  datetime(2025, 1, 1)]
        assert bucket_by_month(stamps, starts) == [1, 2]

    def test_percent(self):
        assert percent(1, 3) == 33
        assert percent(5, 0) == 0


class TestAnalyticsRoutes:

    @pytest.fixture
    def portfolio(self, user, make_loan):
        make_loan(user)
        make_loan(user, status="under_review")
        make_loan(user, status="approved", approved_amount=100000)
        paid = make_loan(user, status="fee_paid", approved_amount=100000)
        make_loan(user, status="rejected")
        add_payment(paid, amount=3600)
        add_payment(paid, status="failed", amount=3600)

    def test_overview(self, login, admin, portfolio):
        body = login(admin).get("/admin/analytics/overview").get_json()
        assert body["totalRevenue"] == 3600
        assert body["activeLoans"] == 2
        assert body["approvalRate"] == 40.0
        assert body["defaultRate"] == 33.3

    def test_revenue(self, login, admin, portfolio):
        body = login(admin).get("/admin/analytics/revenue").get_json()
        assert body["originationFees"] == {"amount": 3600, "percentage": 100}
        assert body["interestIncome"]["amount"] == 0
        assert body["totalRevenue"] == 3600

    def test_status_distribution(self, login, admin, portfolio):
        body = login(admin).get("/admin/analytics/status-distribution").get_json()
        assert body["approved"] == {"count": 2, "percentage": 40}
        assert body["underReview"]["count"] == 1
        assert body["disbursed"]["count"] == 0

    def test_trends(self, login, admin, portfolio):
        client = login(admin)
        trend = client.get("/admin/analytics/loan-trend").get_json()
        assert len(trend) == 6
        assert trend[-1]["value"] == 5

        growth = client.get("/admin/analytics/user-growth").get_json()
        assert len(growth) == 12
        assert growth[-1] == {"month": datetime.utcnow().strftime("%Y-%m"), "value": 2}

    def test_empty_overview(self, login, admin):
        body = login(admin).get("/admin/analytics/overview").get_json()
        assert body == {"totalRevenue": 0, "activeLoans": 0, "approvalRate": 0, "defaultRate": 0}


    def test_automation_stats(self, login, admin, portfolio):
        opened = datetime(2026, 5, 4, 9, 0, 0)
        db.session.add_all([
            SupportMessage(sender_name="Pat", sender_email="pat@example.com", subject="Fee",
                           message="Where is my fee receipt?", status="resolved",
                           created_at=opened, responded_at=opened + timedelta(minutes=30)),
            SupportMessage(sender_name="Lee", sender_email="lee@example.com", subject="Status",
                           message="Any update on my loan?", status="new", created_at=opened),
        ])
        db.session.commit()

        body = login(admin).get("/admin/analytics/automation").get_json()
        assert body["totalConversations"] == 2
        assert body["resolutionRate"] == 50.0
        assert body["avgResponseTimeMinutes"] == 30
        # two of the three decided applications were approved
        assert body["creditRiskAccuracy"] == 66.7
        assert body["fraudDetectionRate"] == 80.0
        assert body["paymentSuccessRate"] == 50.0
        assert body["pendingIDs"] == 5
        assert body["totalIDVerifications"] == 0
        assert body["workflows"]["autoApproval"] is True
        assert body["workflows"]["documentVerification"] is False
        assert (body["totalPayments"], body["successfulPayments"], body["failedPayments"]) == (2, 1, 1)

    def test_id_verification_accuracy(self, login, admin, user, make_loan):
        make_loan(user, id_front_image="data:image/png;base64,a", id_verification_status="verified")
        make_loan(user, id_back_image="data:image/png;base64,b")
        make_loan(user, status="rejected", id_verification_status="rejected")

        body = login(admin).get("/admin/analytics/automation").get_json()
        assert body["totalIDVerifications"] == 2
        assert body["idVerificationAccuracy"] == 50.0
        assert (body["approvedIDs"], body["rejectedIDs"], body["pendingIDs"]) == (1, 1, 1)
        assert body["fraudDetectionRate"] == 66.7

    def test_automation_stats_without_data(self, login, admin):
        body = login(admin).get("/admin/analytics/automation").get_json()
        assert body["fraudDetectionRate"] == 100
        assert body["creditRiskAccuracy"] == 0
        assert body["avgResponseTimeMinutes"] == 0
        assert body["workflows"]["paymentReminders"] is True


class TestFeeConfiguration:

    def test_defaults_without_row(self, client):
        assert client.get("/api/fee-config").get_json() == {
            "calculationMode": "percentage", "percentageRate": 200, "fixedFeeAmount": 200}

    def test_update_replaces_active_row(self, login, admin):
        client = login(admin)
        client.post("/admin/fee-config", json={"calculationMode": "percentage", "percentageRate": 175})
        response = client.post("/admin/fee-config", json={"calculationMode": "fixed", "fixedFeeAmount": 250})

        assert response.status_code == 200
        config = response.get_json()["config"]
        assert config["calculationMode"] == "fixed"
        assert config["percentageRate"] == 175
        assert FeeConfiguration.query.filter_by(is_active=True).count() == 1
        assert client.get("/api/fee-config").get_json()["fixedFeeAmount"] == 250

    @pytest.mark.parametrize("payload", [
        {"calculationMode": "percentage", "percentageRate": 149},
        {"calculationMode": "percentage", "percentageRate": 251},
        {"calculationMode": "fixed"},
        {"calculationMode": "tiered", "percentageRate": 200},
    ])
    def test_rejects_out_of_bounds(self, login, admin, payload):
        assert login(admin).post("/admin/fee-config", json=payload).status_code == 400


class TestSystemSettings:

    def test_put_get_search(self, login, admin):
        client = login(admin)
        client.put("/admin/settings", json={"key": "support.hours", "value": "9-5"})
        client.put("/admin/settings", json={"key": "support.phone", "value": "555", "type": "string"})
        client.put("/admin/settings", json={"key": "support.hours", "value": "8-6"})

        assert client.get("/admin/settings/support.hours").get_json()["setting"]["settingValue"] == "8-6"
        assert len(client.get("/admin/settings/search?pattern=support.%25").get_json()["settings"]) == 2
        assert SystemSetting.query.count() == 2

    def test_unknown_setting(self, login, admin):
        assert login(admin).get("/admin/settings/nope").status_code == 404

    def test_crypto_wallets(self, login, admin):
        client = login(admin)
        body = client.put("/admin/settings/crypto-wallets", json={"btc": " bc1qnew ", "eth": "0xabc"}).get_json()
        assert body["updated"] == ["btc", "eth"]

        wallets = client.get("/admin/settings/crypto-wallets").get_json()
        assert wallets["btc"] == "bc1qnew"
        assert wallets["usdt"] == ""


class TestAuditLogs:

    def test_create_and_filter(self, login, admin):
        client = login(admin)
        response = client.post("/admin/audit-logs", json={
            "action": "manual_note", "entityType": "loan_application", "entityId": 7,
            "newValue": {"note": "called applicant"}})
        assert response.status_code == 201

        logs = client.get("/admin/audit-logs/action/manual_note").get_json()["logs"]
        assert len(logs) == 1
        assert client.get(f"/admin/audit-logs/user/{admin.id}").get_json()["logs"][0]["action"] == "manual_note"

    def test_entity_id_must_be_int(self, login, admin):
        response = login(admin).post("/admin/audit-logs", json={"action": "x", "entityId": "7"})
        assert response.status_code == 400

    @pytest.mark.parametrize("query", ["limit=0", "limit=101", "limit=abc", "offset=-1"])
    def test_paging_is_bounded(self, login, admin, query):
        response = login(admin).get(f"/admin/audit-logs?{query}")
        assert response.status_code == 400


class TestAdminUtilities:
    """Test email, backup and restore check, stored file links."""

    def test_send_test_email(self, login, admin):
        response = login(admin).post("/admin/utils/test-email", json={"recipient": "ops@example.com"})

        assert response.status_code == 200
        assert response.get_json()["message"] == "Test email sent successfully to ops@example.com"
        logged = AuditLog.query.filter_by(action="test_email_sent").one()
        assert logged.new_value == "ops@example.com"
        assert Notification.query.filter_by(recipient="ops@example.com").one().subject == \
            "Test Email - AmeriLend System"

    def test_test_email_delivery_failure(self, login, admin):
        with patch("blueprints.admin_utils.notification_service.send_email",
                   return_value=(False, "SMTP refused")):
            response = login(admin).post("/admin/utils/test-email",
                                         json={"recipient": "ops@example.com", "subject": "Ping"})

        assert response.status_code == 502
        assert AuditLog.query.filter_by(action="test_email_sent").count() == 0

    def test_test_email_needs_valid_recipient(self, login, admin):
        response = login(admin).post("/admin/utils/test-email", json={"recipient": "not-an-email"})
        assert response.status_code == 400

    def test_requires_admin(self, login, user):
        assert login(user).post("/admin/utils/backup").status_code == 403

    def test_backup(self, login, admin, user, make_loan):
        user.set_password("Secret#12345")
        make_loan(user)
        db.session.commit()

        body = login(admin).post("/admin/utils/backup").get_json()

        assert body["filename"] == f"amerilend-backup-{datetime.utcnow():%Y-%m-%d}.json"
        assert body["statistics"]["total_users"] == 2
        assert body["statistics"]["total_loans"] == 1
        backup = json.loads(body["backup"])
        assert backup["metadata"]["version"] == "1.0"
        assert backup["metadata"]["created_by"] == admin.email
        assert {u["password"] for u in backup["data"]["users"]} == {"[REDACTED]"}
        assert user.password_hash not in body["backup"]
        assert AuditLog.query.filter_by(action="database_backup_created").count() == 1

    def test_restore_validates_without_writing(self, login, admin, user):
        client = login(admin)
        backup = client.post("/admin/utils/backup").get_json()["backup"]

        response = client.post("/admin/utils/restore",
                               json={"backupData": backup, "confirmEmail": admin.email.upper()})

        assert response.status_code == 200
        body = response.get_json()
        assert body["message"] == "Backup validated successfully. Manual restore required for safety."
        assert body["backupInfo"]["statistics"]["total_users"] == 2
        assert AuditLog.query.filter_by(action="database_restore_attempted").count() == 1
        assert User.query.count() == 2

    def test_restore_requires_own_email(self, login, admin, user):
        response = login(admin).post("/admin/utils/restore",
                                     json={"backupData": "{}", "confirmEmail": user.email})
        assert response.status_code == 403
        assert AuditLog.query.filter_by(action="database_restore_attempted").count() == 0

    @pytest.mark.parametrize("backup_data,error", [
        ("not json", "Invalid backup file format. Unable to parse JSON."),
        (json.dumps({"metadata": {"created_at": "2026-01-01"}, "data": {}}),
         "Invalid backup structure. Missing required fields."),
        (json.dumps(["metadata", "data"]), "Invalid backup structure. Missing required fields."),
    ])
    def test_restore_rejects_malformed_backups(self, login, admin, backup_data, error):
        response = login(admin).post("/admin/utils/restore",
                                     json={"backupData": backup_data, "confirmEmail": admin.email})
        assert response.status_code == 400
        assert response.get_json()["error"] == error

    def test_download_url_for_inline_document(self, login, admin):
        response = login(admin).get("/admin/files/download-url?key=data:image/png;base64,abc")
        assert response.status_code == 200
        assert response.get_json() == {"url": "data:image/png;base64,abc"}

    def test_download_url_for_missing_file(self, login, admin):
        response = login(admin).get("/admin/files/download-url?key=uploads/id-front.png")
        assert response.status_code == 404
        assert response.get_json()["error"] == "File not found"
