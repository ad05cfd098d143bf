# =============================================================================
# tests/test_loans.py - Application submission, tracking, drafts, admin review
# =============================================================================

from datetime import datetime, timedelta

import pytest

from extensions import db
from models import (LoanApplication, User, DraftApplication, Notification, UserNotification,
                    AuditLog)


class TestSubmitApplication:
    """POST /api/loans"""

    def test_creates_applicant_and_loan(self, client, application_payload):
        response = client.post("/api/loans", json=application_payload)

        assert response.status_code == 201
        body = response.get_json()
        assert body["success"] is True
        assert body["referenceNumber"].startswith("AL-")

        loan = db.session.get(LoanApplication, body["id"])
        assert loan.status == "pending"
        assert loan.state == "TX"
        applicant = User.query.filter_by(email="john.smith@example.com").one()
        assert loan.user_id == applicant.id
        assert applicant.city == "Austin"

    def test_sends_confirmation_and_bell_notification(self, client, application_payload):
        body = client.post("/api/loans", json=application_payload).get_json()

        logged = Notification.query.filter_by(loan_application_id=body["id"]).one()
        assert logged.channel == "email"
        assert logged.type == "loan_submitted"
        assert UserNotification.query.count() == 1

    def test_reuses_existing_account(self, client, user, application_payload):
        application_payload["email"] = user.email
        body = client.post("/api/loans", json=application_payload).get_json()

        assert db.session.get(LoanApplication, body["id"]).user_id == user.id
        assert User.query.count() == 1

    def test_validation_error(self, client, application_payload):
        application_payload["ssn"] = "12-345-6789"
        response = client.post("/api/loans", json=application_payload)

        assert response.status_code == 400
        assert response.get_json()["error"] == "SSN must be in XXX-XX-XXXX format"
        assert LoanApplication.query.count() == 0


class TestApplicantViews:

    def test_mine_requires_login(self, client):
        assert client.get("/api/loans/mine").status_code == 401

    def test_mine_lists_only_own(self, login, user, make_user, make_loan):
        make_loan(user)
        make_loan(make_user())
        client = login(user)

        applications = client.get("/api/loans/mine").get_json()["applications"]
        assert len(applications) == 1
        assert applications[0]["userId"] == user.id

    def test_get_other_users_application_forbidden(self, login, user, make_user, make_loan):
        loan = make_loan(make_user())
        response = login(user).get(f"/api/loans/{loan.id}")
        assert response.status_code == 403

    def test_admin_can_read_any_application(self, login, user, admin, make_loan):
        loan = make_loan(user)
        body = login(admin).get(f"/api/loans/{loan.id}").get_json()
        assert body["application"]["referenceNumber"] == loan.reference_number

    def test_upload_documents(self, login, user, make_loan):
        loan = make_loan(user, id_verification_status="rejected")
        response = login(user).post(f"/api/loans/{loan.id}/documents", json={
            "idFrontImage": "front64", "idBackImage": "back64", "selfieImage": "data:image/png;base64,me",
        })

        assert response.status_code == 200
        assert loan.id_front_image == "data:image/jpeg;base64,front64"
        assert loan.selfie_image == "data:image/png;base64,me"
        assert loan.id_verification_status == "pending"

    def test_upload_documents_requires_all_three(self, login, user, make_loan):
        loan = make_loan(user)
        response = login(user).post(f"/api/loans/{loan.id}/documents", json={"idFrontImage": "x"})
        assert response.status_code == 400


class TestLookupAndTracking:

    def test_check_existing_found(self, client, user, make_loan):
        loan = make_loan(user)
        body = client.post("/api/loans/check-existing",
                           json={"dateOfBirth": "1990-04-12", "ssn": "123-45-6789"}).get_json()
        assert body["exists"] is True
        assert body["application"]["referenceNumber"] == loan.reference_number

    def test_check_existing_not_found(self, client):
        body = client.post("/api/loans/check-existing",
                           json={"dateOfBirth": "1990-04-12", "ssn": "000-00-0000"}).get_json()
        assert body == {"exists": False, "application": None}

    def test_track_normalizes_reference(self, client, user, make_loan):
        loan = make_loan(user, status="under_review")
        response = client.get(f"/api/loans/track/{loan.reference_number.lower()},%20copy")

        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "under_review"
        assert body["applicantInitials"] == "JD"
        assert "ssn" not in body

    def test_track_unknown(self, client):
        response = client.get("/api/loans/track/AL-20200101-NONE")
        assert response.status_code == 404


class TestDrafts:

    def test_save_load_delete(self, client):
        saved = client.post("/api/loans/drafts", json={
            "email": "Draft@Example.com", "draftData": {"fullName": "Pat"}, "currentStep": 2})
        assert saved.status_code == 200

        draft = client.get("/api/loans/drafts?email=draft@example.com").get_json()["draft"]
        assert draft["draftData"] == {"fullName": "Pat"}
        assert draft["currentStep"] == 2

        client.post("/api/loans/drafts", json={
            "email": "draft@example.com", "draftData": {"fullName": "Pat Lee"}, "currentStep": 3})
        assert DraftApplication.query.count() == 1

        client.delete("/api/loans/drafts?email=draft@example.com")
        assert client.get("/api/loans/drafts?email=draft@example.com").get_json() == {"draft": None}

    def test_expired_draft_is_discarded(self, client):
        db.session.add(DraftApplication(email="old@example.com", draft_data={}, current_step=1,
                                        expires_at=datetime.utcnow() - timedelta(days=1)))
        db.session.commit()

        assert client.get("/api/loans/drafts?email=old@example.com").get_json() == {"draft": None}
        assert DraftApplication.query.count() == 0

    def test_step_out_of_range(self, client):
        response = client.post("/api/loans/drafts", json={
            "email": "a@example.com", "draftData": {}, "currentStep": 6})
        assert response.status_code == 400


class TestAdminReview:

    def test_requires_admin(self, login, user, make_loan):
        loan = make_loan(user)
        assert login(user).post(f"/admin/loans/{loan.id}/review").status_code == 403

    def test_requires_session(self, client):
        assert client.get("/admin/loans").status_code == 401

    def test_review_then_approve(self, login, user, admin, make_loan):
        loan = make_loan(user)
        client = login(admin)

        assert client.post(f"/admin/loans/{loan.id}/review").get_json()["status"] == "under_review"

        response = client.post(f"/admin/loans/{loan.id}/approve", json={"approvedAmount": 400000})
        assert response.status_code == 200
        body = response.get_json()
        # no fee configuration row, so the 3.60% fallback applies
        assert body["processingFeeAmount"] == 14400
        assert body["emailSent"] is True
        assert loan.status == "approved"
        assert loan.approved_at is not None
        assert AuditLog.query.filter_by(action="loan_approved").count() == 1

    def test_approve_rejected_loan_fails(self, login, user, admin, make_loan):
        loan = make_loan(user, status="rejected")
        response = login(admin).post(f"/admin/loans/{loan.id}/approve", json={"approvedAmount": 1000})
        assert response.status_code == 400
        assert loan.status == "rejected"

    def test_reject(self, login, user, admin, make_loan):
        loan = make_loan(user)
        response = login(admin).post(f"/admin/loans/{loan.id}/reject",
                                     json={"rejectionReason": "Income could not be verified"})
        assert response.status_code == 200
        assert loan.status == "rejected"
        assert loan.rejection_reason == "Income could not be verified"

    def test_reject_requires_reason(self, login, user, admin, make_loan):
        loan = make_loan(user)
        assert login(admin).post(f"/admin/loans/{loan.id}/reject", json={}).status_code == 400

    def test_id_verification(self, login, user, admin, make_loan):
        loan = make_loan(user)
        client = login(admin)

        client.post(f"/admin/loans/{loan.id}/id-verification/reject", json={"reason": "Blurry photo"})
        assert loan.id_verification_status == "rejected"
        assert loan.id_verification_notes == "Blurry photo"

        client.post(f"/admin/loans/{loan.id}/id-verification/approve", json={})
        assert loan.id_verification_status == "verified"

    def test_payment_verify_requires_paid_fee(self, login, user, admin, approved_loan):
        response = login(admin).post(f"/admin/loans/{approved_loan.id}/payment/verify", json={})
        assert response.status_code == 412

    def test_payment_verify_and_reject(self, login, user, admin, make_loan):
        loan = make_loan(user, status="fee_paid", approved_amount=500000,
                         processing_fee_amount=10000, processing_fee_paid=True)
        client = login(admin)

        assert client.post(f"/admin/loans/{loan.id}/payment/verify", json={}).status_code == 200
        assert loan.payment_verified is True
        assert loan.payment_verified_by == admin.id

        assert client.post(f"/admin/loans/{loan.id}/payment/reject",
                           json={"reason": "Chargeback"}).status_code == 200
        assert loan.status == "approved"
        assert loan.processing_fee_paid is False

    @pytest.mark.parametrize("status", ["approved", "fee_pending", "fee_paid", "disbursed"])
    def test_approve_only_from_review_states(self, login, user, admin, make_loan, status):
        loan = make_loan(user, status=status, approved_amount=500000,
                         processing_fee_amount=10000, processing_fee_paid=(status != "approved"))
        response = login(admin).post(f"/admin/loans/{loan.id}/approve", json={"approvedAmount": 900000})

        assert response.status_code == 400
        assert loan.status == status
        assert loan.approved_amount == 500000
        assert loan.processing_fee_amount == 10000

    @pytest.mark.parametrize("status", ["pending", "under_review", "approved"])
    def test_payment_reject_needs_a_fee_payment(self, login, user, admin, make_loan, status):
        loan = make_loan(user, status=status)
        response = login(admin).post(f"/admin/loans/{loan.id}/payment/reject", json={"reason": "Chargeback"})

        assert response.status_code == 400
        assert loan.status == status
        assert loan.payment_verified_by is None

    def test_payment_reject_from_fee_pending(self, login, user, admin, make_loan):
        loan = make_loan(user, status="fee_pending", approved_amount=500000, processing_fee_amount=10000)
        response = login(admin).post(f"/admin/loans/{loan.id}/payment/reject", json={"reason": "Wrong amount"})

        assert response.status_code == 200
        assert loan.status == "approved"

    def test_list_and_stats(self, login, user, admin, make_loan):
        make_loan(user)
        make_loan(user, status="approved", approved_amount=300000)
        make_loan(user, status="rejected")
        client = login(admin)

        pending = client.get("/admin/loans?status=pending").get_json()["applications"]
        assert len(pending) == 1

        stats = client.get("/admin/loans/stats").get_json()
        assert stats["totalApplications"] == 3
        assert stats["approvedLoans"] == 1
        assert stats["rejectedLoans"] == 1
        assert stats["totalApproved"] == 300000
        assert stats["approvalRate"] == 33.3

    def test_stats_amount_definitions(self, login, user, admin, make_loan):
        make_loan(user, status="approved", approved_amount=300000)
        make_loan(user, status="disbursed", approved_amount=500000)
        make_loan(user, status="fee_pending", approved_amount=200000)
        make_loan(user, id_verification_status="pending")

        stats = login(admin).get("/admin/loans/stats").get_json()
        assert stats["approvedLoans"] == 2
        assert stats["totalApproved"] == 1000000
        # average over the same loans counted in approvedLoans
        assert stats["averageLoanAmount"] == 400000
        # no uploaded images is still awaiting verification
        assert stats["pendingIdVerification"] == 4
