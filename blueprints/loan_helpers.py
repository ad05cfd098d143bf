from decimal import Decimal, ROUND_HALF_UP
from datetime import datetime
import secrets
import logging
from typing import Tuple, Dict, Optional
from models import (db, LoanApplication, LoanStatus, FeeConfiguration, FeeCalculationMode, Payment,
                    PaymentStatus, IdVerificationStatus, Disbursement,
                    EmploymentStatus, LoanType, enum_values)
from utils import validate_email, validate_ssn, validate_dob, normalize_phone
from exceptions import InvalidTransitionError, PermissionDeniedError, NotFoundError

logger = logging.getLogger(__name__)

# ==========================================================
#                  CONFIGURATION
# ==========================================================
class FeeConfig:
    DEFAULT_MODE = FeeCalculationMode.PERCENTAGE.value
    DEFAULT_PERCENTAGE_RATE = 200   # basis points, 2.00%
    DEFAULT_FIXED_FEE = 200         # cents
    FALLBACK_PERCENTAGE_RATE = 360  # used when no configuration row exists
    MIN_RATE = 150
    MAX_RATE = 250
    MIN_FIXED_FEE = 150
    MAX_FIXED_FEE = 250

    @staticmethod
    def percentage_fee(amount: int, rate_bps: int) -> int:
        """Fee in cents, rounded half up."""
        fee = (Decimal(amount) * Decimal(rate_bps)) / Decimal("10000")
        return int(fee.quantize(Decimal('1'), rounding=ROUND_HALF_UP))

    @staticmethod
    def calculate_fee(amount: int) -> int:
        config = get_active_fee_config()
        if config is None:
            return FeeConfig.percentage_fee(amount, FeeConfig.FALLBACK_PERCENTAGE_RATE)
        if config.calculation_mode == FeeCalculationMode.FIXED.value:
            return config.fixed_fee_amount
        return FeeConfig.percentage_fee(amount, config.percentage_rate)


def get_active_fee_config() -> Optional[FeeConfiguration]:
    return (FeeConfiguration.query
            .filter_by(is_active=True)
            .order_by(FeeConfiguration.id.desc())
            .first())

# ==========================================================
#                  STATUS TRANSITIONS
# ==========================================================
S = LoanStatus
ALLOWED_TRANSITIONS = {
    S.PENDING: {S.UNDER_REVIEW, S.APPROVED, S.REJECTED, S.CANCELLED},
    S.UNDER_REVIEW: {S.APPROVED, S.REJECTED, S.CANCELLED},
    S.APPROVED: {S.FEE_PENDING, S.FEE_PAID, S.REJECTED, S.CANCELLED},
    # back to APPROVED only when an admin rejects the fee payment
    S.FEE_PENDING: {S.FEE_PENDING, S.FEE_PAID, S.APPROVED, S.CANCELLED},
    S.FEE_PAID: {S.FEE_PAID, S.DISBURSED, S.APPROVED},
    S.DISBURSED: set(),
    S.REJECTED: set(),
    S.CANCELLED: set(),
}
PAYABLE_STATUSES = {S.APPROVED.value, S.FEE_PENDING.value}
# admin actions that share a target status but not a source status
APPROVABLE_STATUSES = {S.PENDING, S.UNDER_REVIEW}
FEE_REVIEWABLE_STATUSES = {S.FEE_PENDING, S.FEE_PAID}


def can_transition(current: str, target: LoanStatus) -> bool:
    try:
        return target in ALLOWED_TRANSITIONS[LoanStatus(current)]
    except ValueError:
        return False


def transition(loan: LoanApplication, target: LoanStatus, message: str = None, allowed_from=None):
    """
    Move a loan to target, or raise InvalidTransitionError.

    allowed_from narrows the table for actions that may only start from
    some of the states that can reach target.
    """
    outside_action = allowed_from is not None and loan.status not in {s.value for s in allowed_from}
    if outside_action or not can_transition(loan.status, target):
        raise InvalidTransitionError(
            message or f"Cannot change application status from {loan.status} to {target.value}")
    old = loan.status
    loan.status = target.value
    logger.info(f"Loan {loan.reference_number}: {old} -> {target.value}")
    return old

# ==========================================================
#                  LOOKUPS / ACCESS
# ==========================================================
def get_loan_or_404(loan_id) -> LoanApplication:
    loan = LoanApplication.query.get(loan_id)
    if not loan:
        raise NotFoundError("Loan application not found")
    return loan


def get_owned_loan(loan_id, user, allow_admin=False) -> LoanApplication:
    loan = get_loan_or_404(loan_id)
    if loan.user_id != user.id and not (allow_admin and user.is_admin):
        raise PermissionDeniedError("You do not have access to this loan application")
    return loan

# ==========================================================
#                  REFERENCE NUMBERS
# ==========================================================
def generate_reference_number() -> str:
    """AL-YYYYMMDD-XXXX, regenerated until unused."""
    chars = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
    date_part = datetime.utcnow().strftime("%Y%m%d")
    while True:
        suffix = ''.join(secrets.choice(chars) for _ in range(4))
        reference = f"AL-{date_part}-{suffix}"
        if not LoanApplication.query.filter_by(reference_number=reference).first():
            return reference


def normalize_reference(raw: str) -> str:
    """Keep the first token of a pasted reference number."""
    cleaned = (raw or "").strip()
    for sep in (",", " "):
        cleaned = cleaned.split(sep)[0]
    return cleaned.strip().upper()


def applicant_initials(full_name: str) -> str:
    parts = (full_name or "").split()
    return "".join(p[0].upper() for p in parts) or "?"

# ==========================================================
#                  DOCUMENT IMAGES
# ==========================================================
def as_data_url(image: Optional[str]) -> Optional[str]:
    if not image:
        return None
    if image.startswith("data:"):
        return image
    return f"data:image/jpeg;base64,{image}"

# ==========================================================
#                  APPLICATION VALIDATOR
# ==========================================================
def _int_field(data, field):
    value = data.get(field)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        return None
    return value


def validate_application(data) -> Tuple[Optional[Dict], Optional[str]]:
    """Validate a submitted application. Returns (validated, error)."""
    if not isinstance(data, dict):
        return None, "Invalid or missing JSON body"

    def text(field):
        value = data.get(field)
        return value.strip() if isinstance(value, str) else ""

    full_name = text("fullName")
    email = text("email").lower()
    phone = text("phone")
    dob = text("dateOfBirth")
    ssn = text("ssn")
    street = text("street")
    city = text("city")
    state = text("state").upper()
    zip_code = text("zipCode")
    employment_status = text("employmentStatus")
    loan_type = text("loanType")
    loan_purpose = text("loanPurpose")

    if not full_name:
        return None, "Full name is required"
    if not validate_email(email):
        return None, "A valid email is required"
    if len(phone) < 10:
        return None, "A valid phone number is required"
    if not validate_dob(dob):
        return None, "Date of birth must be in YYYY-MM-DD format"
    if not validate_ssn(ssn):
        return None, "SSN must be in XXX-XX-XXXX format"
    if not street or not city:
        return None, "Street and city are required"
    if len(state) != 2:
        return None, "State must be a 2-letter code"
    if len(zip_code) < 5:
        return None, "A valid ZIP code is required"
    if employment_status not in enum_values(EmploymentStatus):
        return None, "Invalid employment status"
    if loan_type not in enum_values(LoanType):
        return None, "Invalid loan type"

    monthly_income = _int_field(data, "monthlyIncome")
    if monthly_income is None:
        return None, "Monthly income must be a positive amount in cents"
    requested_amount = _int_field(data, "requestedAmount")
    if requested_amount is None:
        return None, "Requested amount must be a positive amount in cents"
    if len(loan_purpose) < 10:
        return None, "Please describe the loan purpose (at least 10 characters)"

    validated = {
        "full_name": full_name,
        "email": email,
        "phone": normalize_phone(phone) or phone,
        "date_of_birth": dob,
        "ssn": ssn,
        "street": street,
        "city": city,
        "state": state,
        "zip_code": zip_code,
        "employment_status": employment_status,
        "employer": text("employer") or None,
        "monthly_income": monthly_income,
        "loan_type": loan_type,
        "requested_amount": requested_amount,
        "loan_purpose": loan_purpose,
        "id_front_image": as_data_url(data.get("idFrontImage")),
        "id_back_image": as_data_url(data.get("idBackImage")),
        "selfie_image": as_data_url(data.get("selfieImage")),
    }
    return validated, None


def loan_stats() -> Dict:
    """Dashboard counters for the admin loan list."""
    def count(*statuses):
        return LoanApplication.query.filter(LoanApplication.status.in_([s.value for s in statuses])).count()

    def total(column, *statuses):
        query = db.session.query(db.func.coalesce(db.func.sum(column), 0))
        if statuses:
            query = query.filter(LoanApplication.status.in_([s.value for s in statuses]))
        return int(query.scalar() or 0)

    total_applications = LoanApplication.query.count()
    approved = count(S.APPROVED, S.FEE_PAID, S.DISBURSED)
    rejected = count(S.REJECTED)
    # every loan that was given an approved amount, whatever happened next
    total_approved = total(LoanApplication.approved_amount)
    approved_set_amount = total(LoanApplication.approved_amount, S.APPROVED, S.FEE_PAID, S.DISBURSED)

    fees_paid = db.session.query(db.func.coalesce(db.func.sum(Payment.amount), 0)).filter(
        Payment.status == PaymentStatus.SUCCEEDED.value).scalar()
    fees_processing = db.session.query(db.func.coalesce(db.func.sum(Payment.amount), 0)).filter(
        Payment.status == PaymentStatus.PROCESSING.value).scalar()
    total_disbursed = db.session.query(db.func.coalesce(db.func.sum(Disbursement.amount), 0)).scalar()

    return {
        "totalApplications": total_applications,
        "pendingApplications": count(S.PENDING, S.UNDER_REVIEW),
        "approvedLoans": approved,
        "rejectedLoans": rejected,
        "disbursedLoans": count(S.DISBURSED),
        "totalRequested": total(LoanApplication.requested_amount),
        "totalApproved": total_approved,
        "totalDisbursed": int(total_disbursed or 0),
        "totalFeesPaid": int(fees_paid or 0),
        "totalFeesProcessing": int(fees_processing or 0),
        "pendingIdVerification": LoanApplication.query.filter_by(
            id_verification_status=IdVerificationStatus.PENDING.value).count(),
        "approvalRate": round(approved / total_applications * 100, 1) if total_applications else 0,
        "averageLoanAmount": round(approved_set_amount / approved) if approved else 0,
    }
