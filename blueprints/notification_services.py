from datetime import datetime
from flask import current_app
from flask_mail import Message
import africastalking
import logging
from extensions import db, mail
from models import (Notification, NotificationChannel, NotificationType, UserNotification,
                    UserNotificationType)

logger = logging.getLogger(__name__)


def format_cents(cents):
    return f"${(cents or 0) / 100:,.2f}"


class NotificationService:
    """Email (Flask-Mail) and SMS (Africa's Talking) delivery, plus the in-app bell notifications.

    Delivery never raises into the caller: a failed send is logged and
    recorded on the Notification row, and the caller gets False back.
    """

    def __init__(self, app=None):
        self.sms = None
        if app:
            self.init_app(app)

    def init_app(self, app):
        username = app.config.get('AT_USERNAME')
        api_key = app.config.get('AT_API_KEY')

        if username and api_key:
            africastalking.initialize(username, api_key)
            self.sms = africastalking.SMS
        else:
            logger.warning("Africa's Talking credentials not found")
            self.sms = None

    # ---- raw delivery ----

    def send_email(self, to, subject, body, html=None):
        """Send an email. Returns (sent, error)."""
        try:
            msg = Message(
                subject=subject,
                sender=current_app.config.get('MAIL_DEFAULT_SENDER'),
                recipients=[to],
                body=body,
                html=html,
            )
            mail.send(msg)
            logger.info(f"Email '{subject}' sent to {to}")
            return True, None

        except Exception as e:
            logger.error(f"Email sending failed to {to}: {e}")
            return False, str(e)

    def send_sms(self, phone, message):
        """Send an SMS. Returns (sent, error)."""
        try:
            if not self.sms:
                logger.error("SMS service not initialized")
                return False, "SMS service not configured"

            sender_id = current_app.config.get('AT_SENDER_ID')
            if sender_id:
                response = self.sms.send(message, [phone], sender_id)
            else:
                response = self.sms.send(message, [phone])
            logger.info(f"SMS sent to {phone}: {response}")
            return True, None

        except Exception as e:
            logger.error(f"SMS sending failed: {e}")
            return False, str(e)

    # ---- logged delivery ----

    def notify_email(self, recipient, subject, body, notification_type=NotificationType.GENERAL,
                     user_id=None, loan_application_id=None, html=None):
        """Send an email and record it in the notification log. Returns True on delivery."""
        sent, error = self.send_email(recipient, subject, body, html=html)
        self._log(NotificationChannel.EMAIL, recipient, subject, body, notification_type,
                  user_id, loan_application_id, sent, error)
        return sent

    def notify_sms(self, phone, body, notification_type=NotificationType.GENERAL,
                   user_id=None, loan_application_id=None):
        sent, error = self.send_sms(phone, body)
        self._log(NotificationChannel.SMS, phone, None, body, notification_type,
                  user_id, loan_application_id, sent, error)
        return sent

    def _log(self, channel, recipient, subject, body, notification_type, user_id,
             loan_application_id, sent, error):
        try:
            entry = Notification(
                user_id=user_id,
                loan_application_id=loan_application_id,
                type=notification_type.value,
                channel=channel.value,
                recipient=recipient,
                subject=subject,
                message=body,
            )
            entry.mark_sent(sent, error)
            db.session.add(entry)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.error(f"Failed to log {channel.value} notification for {recipient}: {e}")

    def push(self, user_id, title, message, notification_type=UserNotificationType.SYSTEM, link=None):
        """Create an in-app notification. Flushed only, the caller commits."""
        item = UserNotification(
            user_id=user_id,
            type=notification_type.value,
            title=title,
            message=message,
            link=link,
        )
        db.session.add(item)
        return item


# Global instance
notification_service = NotificationService()


#==============================================================================
#      MESSAGE BUILDERS
#==============================================================================
def _signature():
    phone = current_app.config.get('SUPPORT_PHONE')
    return f"\n\nQuestions? Call us at {phone}.\nAmeriLend Support"

def _dashboard_url():
    return f"{current_app.config.get('APP_BASE_URL')}/dashboard"


def loan_submitted_email(loan):
    subject = f"Application Received - {loan.reference_number}"
    body = (
        f"Hello {loan.full_name},\n\n"
        f"We received your {loan.loan_type.replace('_', ' ')} loan application for "
        f"{format_cents(loan.requested_amount)}.\n"
        f"Reference number: {loan.reference_number}\n\n"
        f"We will review it and email you a decision. You can track it any time at "
        f"{current_app.config.get('APP_BASE_URL')}/track?ref={loan.reference_number}"
        + _signature()
    )
    return subject, body

def loan_approved_email(loan):
    subject = f"Your loan has been approved - {loan.reference_number}"
    body = (
        f"Hello {loan.full_name},\n\n"
        f"Good news! Your loan application {loan.reference_number} was approved for "
        f"{format_cents(loan.approved_amount)}.\n"
        f"A processing fee of {format_cents(loan.processing_fee_amount)} is due before "
        f"the funds can be disbursed. Pay it from your dashboard: {_dashboard_url()}"
        + _signature()
    )
    return subject, body

def loan_rejected_email(loan):
    subject = f"Update on your loan application - {loan.reference_number}"
    body = (
        f"Hello {loan.full_name},\n\n"
        f"After careful review we are unable to approve application {loan.reference_number} at this time.\n"
        f"Reason: {loan.rejection_reason}"
        + _signature()
    )
    return subject, body

def id_verification_approved_email(loan):
    subject = "Your identity has been verified"
    body = (
        f"Hello {loan.full_name},\n\n"
        f"The identity documents for application {loan.reference_number} were verified."
        + _signature()
    )
    return subject, body

def id_verification_rejected_email(loan):
    upload_url = f"{current_app.config.get('APP_BASE_URL')}/upload-documents?loan={loan.id}"
    subject = "Action needed: identity verification"
    body = (
        f"Hello {loan.full_name},\n\n"
        f"We could not verify the identity documents for application {loan.reference_number}.\n"
        f"Reason: {loan.id_verification_notes}\n\n"
        f"Please upload new documents here: {upload_url}"
        + _signature()
    )
    return subject, body

def payment_confirmed_email(loan, payment):
    subject = f"Processing fee received - {loan.reference_number}"
    if payment.payment_method == "crypto":
        detail = f"Paid with {payment.crypto_amount} {payment.crypto_currency}"
    else:
        detail = f"Charged to {payment.card_brand or 'card'} ending in {payment.card_last4 or '****'}"
    body = (
        f"Hello {loan.full_name},\n\n"
        f"We received your processing fee payment of {format_cents(payment.amount)}.\n"
        f"{detail}\n"
        f"Transaction: {payment.transaction_id or payment.crypto_tx_hash or payment.id}\n\n"
        f"Your loan will be disbursed shortly."
        + _signature()
    )
    return subject, body

def payment_declined_email(loan, amount, reason):
    subject = "Your payment was declined"
    body = (
        f"Hello {loan.full_name},\n\n"
        f"Your processing fee payment of {format_cents(amount)} for application "
        f"{loan.reference_number} was declined.\n"
        f"Reason: {reason}\n\n"
        f"Please try another card from your dashboard: {_dashboard_url()}"
        + _signature()
    )
    return subject, body

def disbursement_email(loan, disbursement):
    subject = f"Your loan funds are on the way - {loan.reference_number}"
    body = (
        f"Hello {loan.full_name},\n\n"
        f"We initiated the disbursement of {format_cents(disbursement.amount)} to the account "
        f"ending in {disbursement.account_last4}.\n"
        f"Funds usually arrive within 1-3 business days."
        + _signature()
    )
    return subject, body

def password_reset_email(user, reset_url):
    subject = "Reset your password"
    body = (
        f"Hello {user.name or ''},\n\n"
        f"Use the link below to reset your password. It expires in 1 hour.\n{reset_url}\n\n"
        f"If you did not request this, you can ignore this email."
        + _signature()
    )
    return subject, body

def otp_email(code, purpose):
    subject = "Your verification code"
    body = (
        f"Your AmeriLend verification code for {purpose.replace('_', ' ')} is: {code}\n\n"
        f"This code will expire in 10 minutes."
    )
    return subject, body

def otp_sms(code):
    return f"Your AmeriLend verification code is: {code}. It expires in 10 minutes."

def profile_updated_email(user, changes, updated_by=None):
    lines = "\n".join(f"- {field}: {old or '(empty)'} -> {new or '(empty)'}" for field, old, new in changes)
    subject = "Your account details were updated"
    body = f"Hello {user.name or ''},\n\nThe following details on your account were changed:\n{lines}\n"
    if updated_by:
        body += f"\nUpdated By: {updated_by}\n"
    body += "\nIf you did not make this change, contact us immediately." + _signature()
    return subject, body

def support_admin_email(message):
    subject = f"[Support] {message.subject}"
    body = (
        f"New support message ({message.category}) from {message.sender_name} <{message.sender_email}>\n"
        f"Phone: {message.sender_phone or '-'}\n\n{message.message}"
    )
    return subject, body

def support_reply_email(message):
    subject = f"Re: {message.subject}"
    body = (
        f"Hello {message.sender_name},\n\n{message.admin_response}\n\n"
        f"--- Your original message ---\n{message.message}"
        + _signature()
    )
    return subject, body

def mark_read(item):
    item.is_read = True
    item.read_at = datetime.utcnow()
