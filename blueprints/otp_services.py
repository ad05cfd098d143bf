import secrets
import logging
from datetime import datetime, timedelta
from extensions import db
from models import OtpCode, OtpPurpose, enum_values
from exceptions import ValidationError, RateLimitExceededError
from blueprints.notification_services import notification_service, otp_email, otp_sms

logger = logging.getLogger(__name__)


class OtpService:
    """One-time codes for passwordless login, signup and loan applications.

    Codes live in the otp_codes table: 6 digits, valid 10 minutes, 5 attempts,
    at most 3 requests per identifier per hour. Requesting a new code
    invalidates older unverified ones.
    """
    CODE_TTL_SECONDS = 600
    MAX_ATTEMPTS = 5
    MAX_REQUESTS_PER_HOUR = 3

    def generate_code(self):
        """Generate a 6-digit code"""
        return f"{secrets.randbelow(900000) + 100000}"

    @staticmethod
    def check_purpose(purpose):
        if purpose not in enum_values(OtpPurpose):
            raise ValidationError("purpose must be one of: " + ", ".join(enum_values(OtpPurpose)))
        return purpose

    def _filter(self, email=None, phone=None):
        if email:
            return OtpCode.query.filter_by(email=email)
        return OtpCode.query.filter_by(phone=phone)

    def _issue(self, purpose, email=None, phone=None):
        self.check_purpose(purpose)
        one_hour_ago = datetime.utcnow() - timedelta(hours=1)
        recent = self._filter(email, phone).filter(OtpCode.created_at >= one_hour_ago).count()
        if recent >= self.MAX_REQUESTS_PER_HOUR:
            raise RateLimitExceededError("Too many code requests. Please try again later.")

        self._filter(email, phone).filter(
            OtpCode.purpose == purpose,
            OtpCode.verified_at.is_(None),
            OtpCode.invalidated.is_(False),
        ).update({"invalidated": True}, synchronize_session=False)

        otp = OtpCode(
            email=email,
            phone=phone,
            code=self.generate_code(),
            purpose=purpose,
            expires_at=OtpCode.make_expires(self.CODE_TTL_SECONDS),
        )
        db.session.add(otp)
        db.session.commit()
        return otp

    def send_email_code(self, email, purpose):
        otp = self._issue(purpose, email=email)
        subject, body = otp_email(otp.code, purpose)
        sent = notification_service.notify_email(email, subject, body)
        logger.info(f"OTP for {purpose} issued to {email} (sent={sent})")
        return sent

    def send_phone_code(self, phone, purpose):
        otp = self._issue(purpose, phone=phone)
        sent = notification_service.notify_sms(phone, otp_sms(otp.code))
        logger.info(f"OTP for {purpose} issued to {phone} (sent={sent})")
        return sent

    def verify(self, code, purpose, email=None, phone=None):
        """Validate code. Returns (ok, error) and consumes the code on success."""
        self.check_purpose(purpose)
        otp = (self._filter(email, phone)
               .filter(OtpCode.purpose == purpose,
                       OtpCode.verified_at.is_(None),
                       OtpCode.invalidated.is_(False))
               .order_by(OtpCode.id.desc())
               .first())
        if not otp:
            return False, "No verification code found. Please request a new one."

        if datetime.utcnow() > otp.expires_at:
            return False, "Verification code expired. Please request a new one."

        if otp.attempts >= self.MAX_ATTEMPTS:
            return False, "Too many failed attempts. Please request a new code."

        if not secrets.compare_digest(otp.code, str(code or "").strip()):
            otp.attempts += 1
            db.session.commit()
            remaining = self.MAX_ATTEMPTS - otp.attempts
            return False, f"Invalid verification code. {remaining} attempts remaining."

        otp.verified_at = datetime.utcnow()
        db.session.commit()
        return True, None


# Global instance
otp_service = OtpService()
