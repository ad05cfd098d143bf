# =============================================================================
# tests/conftest.py - Pytest Configuration
# =============================================================================
# Builds the Flask app against an in-memory SQLite database and provides
# user / admin / loan factories plus a session login helper.
# =============================================================================

import os

# =============================================================================
# Set up test environment BEFORE any imports
# =============================================================================
# config.py reads SECRET_KEY at import time

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("FLASK_ENV", "testing")

import pytest

from app import create_app
from config import TestingConfig
from extensions import db
from models import User, LoanApplication, LoanStatus, UserRole, IdVerificationStatus

STRONG_PASSWORD = "Secur3!Pass"


# =============================================================================
# App / client
# =============================================================================

@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login(client):
    """Put a user id in the session cookie."""
    def _login(user):
        with client.session_transaction() as sess:
            sess["user_id"] = user.id
        return client
    return _login


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make(email=None, name="Jane Doe", role=UserRole.USER.value, password=STRONG_PASSWORD,
              phone_number=None, referral_code=None):
        counter["n"] += 1
        user = User(
            name=name,
            email=email or f"user{counter['n']}@example.com",
            role=role,
            phone_number=phone_number,
            referral_code=referral_code or f"REF{counter['n']:03d}",
        )
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def user(make_user):
    return make_user(email="jane@example.com", name="Jane Doe")


@pytest.fixture
def admin(make_user):
    return make_user(email="admin@example.com", name="Ada Admin", role=UserRole.ADMIN.value)


@pytest.fixture
def make_loan(app):
    counter = {"n": 0}

    def _make(owner, status=LoanStatus.PENDING.value, requested_amount=500000,
              approved_amount=None, processing_fee_amount=None, **fields):
        counter["n"] += 1
        values = dict(
            user_id=owner.id,
            reference_number=f"AL-20260101-T{counter['n']:03d}",
            full_name=owner.name,
            email=owner.email,
            phone="+15551234567",
            date_of_birth="1990-04-12",
            ssn="123-45-6789",
            street="12 Main St",
            city="Dallas",
            state="TX",
            zip_code="75201",
            employment_status="employed",
            employer="Acme",
            monthly_income=450000,
            loan_type="installment",
            requested_amount=requested_amount,
            loan_purpose="Consolidate two credit cards",
            approved_amount=approved_amount,
            processing_fee_amount=processing_fee_amount,
            status=status,
            id_verification_status=IdVerificationStatus.PENDING.value,
        )
        values.update(fields)
        loan = LoanApplication(**values)
        db.session.add(loan)
        db.session.commit()
        return loan
    return _make


@pytest.fixture
def approved_loan(user, make_loan):
    return make_loan(user, status=LoanStatus.APPROVED.value,
                     approved_amount=500000, processing_fee_amount=10000)


@pytest.fixture
def application_payload():
    return {
        "fullName": "John Smith",
        "email": "john.smith@example.com",
        "phone": "+15557654321",
        "dateOfBirth": "1985-09-30",
        "ssn": "987-65-4321",
        "street": "400 Elm Ave",
        "city": "Austin",
        "state": "tx",
        "zipCode": "73301",
        "employmentStatus": "employed",
        "employer": "Initech",
        "monthlyIncome": 520000,
        "loanType": "installment",
        "requestedAmount": 1000000,
        "loanPurpose": "Home repairs after storm damage",
    }
