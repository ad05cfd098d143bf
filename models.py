# models.py - Flask-SQLAlchemy models for the lending workflow
from datetime import datetime, timedelta
import enum
from sqlalchemy import Index, text
from flask_login import UserMixin
from extensions import db
from werkzeug.security import check_password_hash, generate_password_hash

# ===========================================================
# ENUM DEFINITIONS
# ===========================================================

class UserRole(enum.Enum):
    USER = "user"
    ADMIN = "admin"


class LoanStatus(enum.Enum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    FEE_PENDING = "fee_pending"
    FEE_PAID = "fee_paid"
    DISBURSED = "disbursed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class IdVerificationStatus(enum.Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class EmploymentStatus(enum.Enum):
    EMPLOYED = "employed"
    SELF_EMPLOYED = "self_employed"
    UNEMPLOYED = "unemployed"
    RETIRED = "retired"


class LoanType(enum.Enum):
    INSTALLMENT = "installment"
    SHORT_TERM = "short_term"


class FeeCalculationMode(enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class PaymentMethod(enum.Enum):
    CARD = "card"
    CRYPTO = "crypto"


class PaymentProvider(enum.Enum):
    STRIPE = "stripe"
    AUTHORIZENET = "authorizenet"
    CRYPTO = "crypto"


class PaymentStatus(enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class CryptoCurrency(enum.Enum):
    BTC = "BTC"
    ETH = "ETH"
    USDT = "USDT"
    USDC = "USDC"


class DisbursementStatus(enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ReferralStatus(enum.Enum):
    PENDING = "pending"
    QUALIFIED = "qualified"
    REWARDED = "rewarded"


class NotificationType(enum.Enum):
    LOAN_SUBMITTED = "loan_submitted"
    LOAN_APPROVED = "loan_approved"
    LOAN_REJECTED = "loan_rejected"
    PAYMENT_CONFIRMED = "payment_confirmed"
    LOAN_DISBURSED = "loan_disbursed"
    PAYMENT_REMINDER = "payment_reminder"
    GENERAL = "general"


class NotificationChannel(enum.Enum):
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


class NotificationStatus(enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    BOUNCED = "bounced"


class UserNotificationType(enum.Enum):
    LOAN_STATUS = "loan_status"
    PAYMENT_REMINDER = "payment_reminder"
    PAYMENT_RECEIVED = "payment_received"
    DISBURSEMENT = "disbursement"
    SYSTEM = "system"
    REFERRAL = "referral"


class ConversationStatus(enum.Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    RESOLVED = "resolved"
    CLOSED = "closed"


class ConversationPriority(enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class ConversationCategory(enum.Enum):
    LOAN_INQUIRY = "loan_inquiry"
    APPLICATION_STATUS = "application_status"
    PAYMENT_ISSUE = "payment_issue"
    TECHNICAL_SUPPORT = "technical_support"
    GENERAL = "general"
    OTHER = "other"


class SenderType(enum.Enum):
    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


class MessageType(enum.Enum):
    TEXT = "text"
    SYSTEM = "system"
    FILE = "file"


class SupportCategory(enum.Enum):
    GENERAL = "general"
    LOAN_INQUIRY = "loan_inquiry"
    PAYMENT_ISSUE = "payment_issue"
    TECHNICAL_SUPPORT = "technical_support"
    COMPLAINT = "complaint"
    OTHER = "other"


class SupportStatus(enum.Enum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class SupportPriority(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class SettingType(enum.Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    JSON = "json"


class OtpPurpose(enum.Enum):
    SIGNUP = "signup"
    LOGIN = "login"
    LOAN_APPLICATION = "loan_application"


class LegalDocumentType(enum.Enum):
    TERMS_OF_SERVICE = "terms_of_service"
    PRIVACY_POLICY = "privacy_policy"
    LOAN_AGREEMENT = "loan_agreement"
    ESIGN_CONSENT = "esign_consent"


def enum_values(enum_cls):
    return [member.value for member in enum_cls]


def isoformat(value):
    return value.isoformat() if value else None


# ===========================================================
# BASE MIXIN FOR COMMON FIELDS
# ===========================================================

class BaseMixin:
    """Provides created_at and updated_at timestamps to inheriting models."""
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime,
                           default=datetime.utcnow,
                           onupdate=datetime.utcnow)

# ===========================================================
# USER MODELS
# ===========================================================

class User(UserMixin, db.Model, BaseMixin):
    """Applicant or admin account. Profile and KYC fields are copied from the latest application."""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150))
    email = db.Column(db.String(320), unique=True, nullable=True)
    phone_number = db.Column(db.String(20), unique=True, nullable=True)
    password_hash = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(20), nullable=False, default=UserRole.USER.value, index=True)
    login_method = db.Column(db.String(20), default="password")
    email_verified = db.Column(db.Boolean, default=False)
    phone_verified = db.Column(db.Boolean, default=False)

    street = db.Column(db.String(255))
    city = db.Column(db.String(100))
    state = db.Column(db.String(2))
    zip_code = db.Column(db.String(10))
    date_of_birth = db.Column(db.String(10))
    ssn = db.Column(db.String(11))

    referral_code = db.Column(db.String(20), unique=True, nullable=True)
    last_signed_in = db.Column(db.DateTime)

    loan_applications = db.relationship('LoanApplication', back_populates='user', lazy='dynamic',
                                        foreign_keys='LoanApplication.user_id')

    __table_args__ = (
        Index('idx_user_referral_code', 'referral_code'),
    )

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN.value

    @property
    def initials(self):
        parts = (self.name or "").split()
        return "".join(p[0].upper() for p in parts[:2]) or "?"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phoneNumber": self.phone_number,
            "role": self.role,
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "zipCode": self.zip_code,
            "referralCode": self.referral_code,
            "emailVerified": self.email_verified,
            "phoneVerified": self.phone_verified,
            "createdAt": isoformat(self.created_at),
            "lastSignedIn": isoformat(self.last_signed_in),
        }

    def __repr__(self):
        return f'<User {self.id} {self.email}>'

# ===========================================================
# LOAN APPLICATIONS
# ===========================================================

class LoanApplication(db.Model, BaseMixin):
    """One loan request and its whole lifecycle. Money columns are integer cents."""
    __tablename__ = 'loan_applications'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    reference_number = db.Column(db.String(32), unique=True, nullable=False, index=True)

    full_name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(320), nullable=False)
    phone = db.Column(db.String(20), nullable=False)
    date_of_birth = db.Column(db.String(10), nullable=False)
    ssn = db.Column(db.String(11), nullable=False)
    street = db.Column(db.String(255), nullable=False)
    city = db.Column(db.String(100), nullable=False)
    state = db.Column(db.String(2), nullable=False)
    zip_code = db.Column(db.String(10), nullable=False)

    employment_status = db.Column(db.String(20), nullable=False)
    employer = db.Column(db.String(150))
    monthly_income = db.Column(db.Integer, nullable=False)

    loan_type = db.Column(db.String(20), nullable=False)
    requested_amount = db.Column(db.Integer, nullable=False)
    loan_purpose = db.Column(db.Text, nullable=False)
    approved_amount = db.Column(db.Integer)
    processing_fee_amount = db.Column(db.Integer)

    status = db.Column(db.String(20), nullable=False, default=LoanStatus.PENDING.value, index=True)
    admin_notes = db.Column(db.Text)
    rejection_reason = db.Column(db.Text)

    id_front_image = db.Column(db.Text)
    id_back_image = db.Column(db.Text)
    selfie_image = db.Column(db.Text)
    id_verification_status = db.Column(db.String(20), default=IdVerificationStatus.PENDING.value)
    id_verification_notes = db.Column(db.Text)

    processing_fee_paid = db.Column(db.Boolean, default=False, server_default=text("0"))
    processing_fee_payment_id = db.Column(db.Integer, nullable=True)
    payment_verified = db.Column(db.Boolean, default=False, server_default=text("0"))
    payment_verified_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    payment_verified_at = db.Column(db.DateTime)
    payment_verification_notes = db.Column(db.Text)

    ip_address = db.Column(db.String(64))
    approved_at = db.Column(db.DateTime)
    disbursed_at = db.Column(db.DateTime)

    user = db.relationship('User', back_populates='loan_applications', foreign_keys=[user_id])
    payments = db.relationship('Payment', back_populates='loan_application', lazy='dynamic')
    disbursement = db.relationship('Disbursement', back_populates='loan_application', uselist=False)

    def to_dict(self, include_documents=False):
        result = {
            "id": self.id,
            "userId": self.user_id,
            "referenceNumber": self.reference_number,
            "fullName": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "dateOfBirth": self.date_of_birth,
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "zipCode": self.zip_code,
            "employmentStatus": self.employment_status,
            "employer": self.employer,
            "monthlyIncome": self.monthly_income,
            "loanType": self.loan_type,
            "requestedAmount": self.requested_amount,
            "loanPurpose": self.loan_purpose,
            "approvedAmount": self.approved_amount,
            "processingFeeAmount": self.processing_fee_amount,
            "status": self.status,
            "adminNotes": self.admin_notes,
            "rejectionReason": self.rejection_reason,
            "idVerificationStatus": self.id_verification_status,
            "idVerificationNotes": self.id_verification_notes,
            "processingFeePaid": bool(self.processing_fee_paid),
            "paymentVerified": bool(self.payment_verified),
            "approvedAt": isoformat(self.approved_at),
            "disbursedAt": isoformat(self.disbursed_at),
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }
        if include_documents:
            result["idFrontImage"] = self.id_front_image
            result["idBackImage"] = self.id_back_image
            result["selfieImage"] = self.selfie_image
        return result

    def __repr__(self):
        return f'<LoanApplication {self.reference_number} {self.status}>'


class DraftApplication(db.Model, BaseMixin):
    """Partially filled application form, kept for 30 days."""
    __tablename__ = 'draft_applications'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(320), unique=True, nullable=False, index=True)
    draft_data = db.Column(db.JSON, nullable=False)
    current_step = db.Column(db.Integer, nullable=False, default=1)
    expires_at = db.Column(db.DateTime, nullable=False)

    @staticmethod
    def make_expires(days: int = 30):
        return datetime.utcnow() + timedelta(days=days)

    def to_dict(self):
        return {
            "email": self.email,
            "draftData": self.draft_data,
            "currentStep": self.current_step,
            "expiresAt": isoformat(self.expires_at),
            "updatedAt": isoformat(self.updated_at),
        }


class FeeConfiguration(db.Model, BaseMixin):
    __tablename__ = 'fee_configurations'

    id = db.Column(db.Integer, primary_key=True)
    calculation_mode = db.Column(db.String(20), nullable=False, default=FeeCalculationMode.PERCENTAGE.value)
    percentage_rate = db.Column(db.Integer, nullable=False, default=200)  # basis points
    fixed_fee_amount = db.Column(db.Integer, nullable=False, default=200)  # cents
    is_active = db.Column(db.Boolean, default=True, index=True)
    updated_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "calculationMode": self.calculation_mode,
            "percentageRate": self.percentage_rate,
            "fixedFeeAmount": self.fixed_fee_amount,
            "isActive": bool(self.is_active),
            "updatedBy": self.updated_by,
            "updatedAt": isoformat(self.updated_at),
        }

# ===========================================================
# PAYMENTS AND DISBURSEMENTS
# ===========================================================

class Payment(db.Model, BaseMixin):
    """Processing fee payment. Always tied to exactly one loan application."""
    __tablename__ = 'payments'

    id = db.Column(db.Integer, primary_key=True)
    loan_application_id = db.Column(db.Integer, db.ForeignKey('loan_applications.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    amount = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(8), nullable=False, default='USD')
    payment_provider = db.Column(db.String(20), nullable=False)
    payment_method = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True)

    provider_payment_id = db.Column(db.String(128), index=True)
    payment_intent_id = db.Column(db.String(128))
    transaction_id = db.Column(db.String(128), index=True)
    card_last4 = db.Column(db.String(4))
    card_brand = db.Column(db.String(30))

    crypto_currency = db.Column(db.String(10))
    crypto_address = db.Column(db.String(128))
    crypto_amount = db.Column(db.String(40))
    crypto_tx_hash = db.Column(db.String(128), unique=True)

    failure_reason = db.Column(db.Text)
    raw_response = db.Column(db.Text)
    expires_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)

    loan_application = db.relationship('LoanApplication', back_populates='payments')
    user = db.relationship('User')

    def to_dict(self):
        return {
            "id": self.id,
            "loanApplicationId": self.loan_application_id,
            "userId": self.user_id,
            "amount": self.amount,
            "currency": self.currency,
            "paymentProvider": self.payment_provider,
            "paymentMethod": self.payment_method,
            "status": self.status,
            "providerPaymentId": self.provider_payment_id,
            "transactionId": self.transaction_id,
            "cardLast4": self.card_last4,
            "cardBrand": self.card_brand,
            "cryptoCurrency": self.crypto_currency,
            "cryptoAddress": self.crypto_address,
            "cryptoAmount": self.crypto_amount,
            "cryptoTxHash": self.crypto_tx_hash,
            "failureReason": self.failure_reason,
            "expiresAt": isoformat(self.expires_at),
            "completedAt": isoformat(self.completed_at),
            "createdAt": isoformat(self.created_at),
        }

    def __repr__(self):
        return f'<Payment {self.id} {self.payment_method} {self.status}>'


class Disbursement(db.Model, BaseMixin):
    __tablename__ = 'disbursements'

    id = db.Column(db.Integer, primary_key=True)
    loan_application_id = db.Column(db.Integer, db.ForeignKey('loan_applications.id'), nullable=False, unique=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    amount = db.Column(db.Integer, nullable=False)
    account_holder_name = db.Column(db.String(150), nullable=False)
    account_number = db.Column(db.String(34), nullable=False)
    routing_number = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=DisbursementStatus.PENDING.value, index=True)
    transaction_id = db.Column(db.String(128))
    failure_reason = db.Column(db.Text)
    admin_notes = db.Column(db.Text)
    initiated_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    completed_at = db.Column(db.DateTime)

    loan_application = db.relationship('LoanApplication', back_populates='disbursement')

    @property
    def account_last4(self):
        return (self.account_number or "")[-4:]

    def to_dict(self):
        return {
            "id": self.id,
            "loanApplicationId": self.loan_application_id,
            "userId": self.user_id,
            "amount": self.amount,
            "accountHolderName": self.account_holder_name,
            "accountLast4": self.account_last4,
            "routingNumber": self.routing_number,
            "status": self.status,
            "transactionId": self.transaction_id,
            "failureReason": self.failure_reason,
            "adminNotes": self.admin_notes,
            "initiatedBy": self.initiated_by,
            "completedAt": isoformat(self.completed_at),
            "createdAt": isoformat(self.created_at),
        }

# ===========================================================
# REFERRALS
# ===========================================================

class Referral(db.Model, BaseMixin):
    __tablename__ = 'referrals'

    id = db.Column(db.Integer, primary_key=True)
    referrer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    referred_user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, unique=True)
    referral_code = db.Column(db.String(20), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=ReferralStatus.PENDING.value)
    reward_amount = db.Column(db.Integer, default=0)
    qualified_at = db.Column(db.DateTime)
    rewarded_at = db.Column(db.DateTime)

    referrer = db.relationship('User', foreign_keys=[referrer_id])
    referred_user = db.relationship('User', foreign_keys=[referred_user_id])

    def to_dict(self):
        referred = self.referred_user
        return {
            "id": self.id,
            "referralCode": self.referral_code,
            "status": self.status,
            "rewardAmount": self.reward_amount or 0,
            "referredUserName": referred.name if referred else None,
            "referredUserInitials": referred.initials if referred else "?",
            "qualifiedAt": isoformat(self.qualified_at),
            "rewardedAt": isoformat(self.rewarded_at),
            "createdAt": isoformat(self.created_at),
        }

# ===========================================================
# NOTIFICATIONS
# ===========================================================

class Notification(db.Model, BaseMixin):
    """Delivery log of every email / SMS the application sends."""
    __tablename__ = 'notifications'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    loan_application_id = db.Column(db.Integer, db.ForeignKey('loan_applications.id'), nullable=True)
    type = db.Column(db.String(30), nullable=False, default=NotificationType.GENERAL.value)
    channel = db.Column(db.String(10), nullable=False, default=NotificationChannel.EMAIL.value)
    recipient = db.Column(db.String(320), nullable=False)
    subject = db.Column(db.String(255))
    message = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=NotificationStatus.PENDING.value)
    sent_at = db.Column(db.DateTime)
    error_message = db.Column(db.Text)

    def mark_sent(self, success, error=None):
        self.status = NotificationStatus.SENT.value if success else NotificationStatus.FAILED.value
        self.sent_at = datetime.utcnow() if success else None
        self.error_message = error

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "loanApplicationId": self.loan_application_id,
            "type": self.type,
            "channel": self.channel,
            "recipient": self.recipient,
            "subject": self.subject,
            "status": self.status,
            "sentAt": isoformat(self.sent_at),
            "errorMessage": self.error_message,
            "createdAt": isoformat(self.created_at),
        }


class UserNotification(db.Model, BaseMixin):
    """In-app notification shown in the user's bell menu."""
    __tablename__ = 'user_notifications'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    type = db.Column(db.String(30), nullable=False, default=UserNotificationType.SYSTEM.value)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    link = db.Column(db.String(255))
    is_read = db.Column(db.Boolean, default=False, index=True)
    read_at = db.Column(db.DateTime)

    user = db.relationship('User')

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "link": self.link,
            "isRead": bool(self.is_read),
            "readAt": isoformat(self.read_at),
            "createdAt": isoformat(self.created_at),
        }

# ===========================================================
# SUPPORT AND LIVE CHAT
# ===========================================================

class SupportMessage(db.Model, BaseMixin):
    __tablename__ = 'support_messages'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    sender_name = db.Column(db.String(150), nullable=False)
    sender_email = db.Column(db.String(320), nullable=False)
    sender_phone = db.Column(db.String(20))
    subject = db.Column(db.String(500), nullable=False)
    message = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(30), nullable=False, default=SupportCategory.GENERAL.value)
    status = db.Column(db.String(20), nullable=False, default=SupportStatus.NEW.value, index=True)
    priority = db.Column(db.String(20), nullable=False, default=SupportPriority.MEDIUM.value)
    admin_response = db.Column(db.Text)
    responded_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    responded_at = db.Column(db.DateTime)

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "senderName": self.sender_name,
            "senderEmail": self.sender_email,
            "senderPhone": self.sender_phone,
            "subject": self.subject,
            "message": self.message,
            "category": self.category,
            "status": self.status,
            "priority": self.priority,
            "adminResponse": self.admin_response,
            "respondedBy": self.responded_by,
            "respondedAt": isoformat(self.responded_at),
            "createdAt": isoformat(self.created_at),
        }


class LiveChatConversation(db.Model, BaseMixin):
    __tablename__ = 'live_chat_conversations'

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    guest_name = db.Column(db.String(150))
    guest_email = db.Column(db.String(320))
    subject = db.Column(db.String(255))
    category = db.Column(db.String(30), default=ConversationCategory.GENERAL.value)
    status = db.Column(db.String(20), nullable=False, default=ConversationStatus.WAITING.value, index=True)
    priority = db.Column(db.String(20), nullable=False, default=ConversationPriority.NORMAL.value)
    assigned_agent_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    assigned_at = db.Column(db.DateTime)
    resolved_at = db.Column(db.DateTime)
    closed_at = db.Column(db.DateTime)
    rating = db.Column(db.Integer)
    feedback = db.Column(db.Text)

    messages = db.relationship('LiveChatMessage', back_populates='conversation',
                               order_by='LiveChatMessage.id', cascade="all,delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "userId": self.user_id,
            "guestName": self.guest_name,
            "guestEmail": self.guest_email,
            "subject": self.subject,
            "category": self.category,
            "status": self.status,
            "priority": self.priority,
            "assignedAgentId": self.assigned_agent_id,
            "assignedAt": isoformat(self.assigned_at),
            "resolvedAt": isoformat(self.resolved_at),
            "closedAt": isoformat(self.closed_at),
            "rating": self.rating,
            "feedback": self.feedback,
            "createdAt": isoformat(self.created_at),
        }


class LiveChatMessage(db.Model, BaseMixin):
    __tablename__ = 'live_chat_messages'

    id = db.Column(db.Integer, primary_key=True)
    conversation_id = db.Column(db.Integer, db.ForeignKey('live_chat_conversations.id', ondelete='CASCADE'),
                                nullable=False, index=True)
    sender_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    sender_type = db.Column(db.String(10), nullable=False, default=SenderType.USER.value)
    sender_name = db.Column(db.String(150))
    content = db.Column(db.Text, nullable=False)
    message_type = db.Column(db.String(10), nullable=False, default=MessageType.TEXT.value)
    is_read = db.Column(db.Boolean, default=False)

    conversation = db.relationship('LiveChatConversation', back_populates='messages')

    def to_dict(self):
        return {
            "id": self.id,
            "conversationId": self.conversation_id,
            "senderId": self.sender_id,
            "senderType": self.sender_type,
            "senderName": self.sender_name,
            "content": self.content,
            "messageType": self.message_type,
            "isRead": bool(self.is_read),
            "createdAt": isoformat(self.created_at),
        }

# ===========================================================
# SETTINGS, AUDIT, AUTH TOKENS
# ===========================================================

class SystemSetting(db.Model, BaseMixin):
    __tablename__ = 'system_settings'

    id = db.Column(db.Integer, primary_key=True)
    setting_key = db.Column(db.String(100), unique=True, nullable=False, index=True)
    setting_value = db.Column(db.Text, nullable=False)
    description = db.Column(db.Text)
    setting_type = db.Column(db.String(10), nullable=False, default=SettingType.STRING.value)
    updated_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "settingKey": self.setting_key,
            "settingValue": self.setting_value,
            "description": self.description,
            "settingType": self.setting_type,
            "updatedBy": self.updated_by,
            "updatedAt": isoformat(self.updated_at),
        }


class AuditLog(db.Model, BaseMixin):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True, index=True)
    action = db.Column(db.String(100), nullable=False, index=True)
    entity_type = db.Column(db.String(50))
    entity_id = db.Column(db.Integer)
    old_value = db.Column(db.Text)
    new_value = db.Column(db.Text)
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(255))
    details = db.Column(db.JSON)

    user = db.relationship('User')

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "userName": self.user.name if self.user else "System",
            "userEmail": self.user.email if self.user else None,
            "action": self.action,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "oldValue": self.old_value,
            "newValue": self.new_value,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "metadata": self.details,
            "createdAt": isoformat(self.created_at),
        }


class PasswordResetToken(db.Model, BaseMixin):
    __tablename__ = 'password_reset_tokens'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    token = db.Column(db.String(128), unique=True, nullable=False, index=True)
    expires_at = db.Column(db.DateTime, nullable=False)
    used_at = db.Column(db.DateTime)

    @staticmethod
    def make_expires(ttl_seconds: int = 3600):
        return datetime.utcnow() + timedelta(seconds=ttl_seconds)


class OtpCode(db.Model, BaseMixin):
    """One-time code sent by email or SMS. Exactly one of email / phone is set."""
    __tablename__ = 'otp_codes'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(320), index=True)
    phone = db.Column(db.String(20), index=True)
    code = db.Column(db.String(6), nullable=False)
    purpose = db.Column(db.String(20), nullable=False)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    invalidated = db.Column(db.Boolean, default=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    verified_at = db.Column(db.DateTime)

    @staticmethod
    def make_expires(ttl_seconds: int = 600):
        return datetime.utcnow() + timedelta(seconds=ttl_seconds)


class LegalAcceptance(db.Model, BaseMixin):
    __tablename__ = 'legal_acceptances'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    loan_application_id = db.Column(db.Integer, db.ForeignKey('loan_applications.id'), nullable=True)
    document_type = db.Column(db.String(30), nullable=False)
    document_version = db.Column(db.String(20), nullable=False)
    ip_address = db.Column(db.String(64))
    user_agent = db.Column(db.String(255))

    def to_dict(self):
        return {
            "id": self.id,
            "documentType": self.document_type,
            "documentVersion": self.document_version,
            "loanApplicationId": self.loan_application_id,
            "ipAddress": self.ip_address,
            "acceptedAt": isoformat(self.created_at),
        }


class WebhookEvent(db.Model, BaseMixin):
    __tablename__ = 'webhook_events'

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(30), nullable=False, default="authorizenet")
    event_id = db.Column(db.String(128), unique=True, nullable=False, index=True)
    event_type = db.Column(db.String(100), nullable=False)
    payload = db.Column(db.JSON)
    processed = db.Column(db.Boolean, default=False)
    processed_at = db.Column(db.DateTime)
    success = db.Column(db.Boolean)
    remarks = db.Column(db.Text)

    def mark_processed(self, success=True, remarks=None):
        self.processed = True
        self.processed_at = datetime.utcnow()
        self.success = success
        self.remarks = remarks
