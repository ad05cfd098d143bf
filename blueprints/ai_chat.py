#======================================================================================
#
# AI SUPPORT ASSISTANT
#
#=======================================================================================
import logging
from flask import Blueprint, jsonify, g, current_app
from openai import OpenAI
from models import LoanApplication, Payment, PaymentStatus, FeeCalculationMode
from utils import get_json_body, require_string
from exceptions import ValidationError
from blueprints.loan_helpers import get_active_fee_config, FeeConfig
from blueprints.notification_services import format_cents
from blueprints.security_middleware import security_middleware, GENERAL_LIMIT

logger = logging.getLogger(__name__)

bp = Blueprint("ai_chat", __name__, url_prefix="/api/chat")

MAX_HISTORY = 10
MAX_MESSAGE_LENGTH = 1000
ALLOWED_ROLES = ("user", "assistant")

_client = None


def get_openai_client():
    """Get or create the OpenAI client (lazy initialization)."""
    global _client
    if _client is None:
        api_key = current_app.config.get("OPENAI_API_KEY")
        if not api_key:
            return None
        _client = OpenAI(api_key=api_key)
    return _client


def fallback_reply():
    return ("I'm experiencing a technical issue. Please call us at "
            f"{current_app.config.get('SUPPORT_PHONE', '1-945-212-1609')} for immediate assistance.")


def describe_fee():
    config = get_active_fee_config()
    if config is None:
        return f"{FeeConfig.FALLBACK_PERCENTAGE_RATE / 100:.2f}% of the approved loan amount"
    if config.calculation_mode == FeeCalculationMode.FIXED.value:
        return f"a flat {format_cents(config.fixed_fee_amount)}"
    return f"{config.percentage_rate / 100:.2f}% of the approved loan amount"


def build_user_context(user):
    applications = (LoanApplication.query.filter_by(user_id=user.id)
                    .order_by(LoanApplication.created_at.desc(), LoanApplication.id.desc()).all())
    payments = Payment.query.filter_by(user_id=user.id).all()

    lines = [
        "",
        "CURRENT USER CONTEXT (use this to provide personalized assistance):",
        f"- User Name: {user.name}",
        f"- User Email: {user.email}",
        f"- Total Applications: {len(applications)}",
    ]
    if applications:
        recent = applications[0]
        lines += [
            "- Most Recent Application:",
            f"  * Reference Number: {recent.reference_number}",
            f"  * Status: {recent.status}",
            f"  * Loan Type: {'Installment Loan' if recent.loan_type == 'installment' else 'Short-Term Loan'}",
            f"  * Requested Amount: {format_cents(recent.requested_amount)}",
        ]
        if recent.approved_amount:
            lines.append(f"  * Approved Amount: {format_cents(recent.approved_amount)}")
        if recent.processing_fee_amount:
            lines.append(f"  * Processing Fee: {format_cents(recent.processing_fee_amount)}")
            lines.append(f"  * Processing Fee Paid: {'Yes' if recent.processing_fee_paid else 'No'}")
        lines.append(f"  * ID Verification: {recent.id_verification_status}")
        lines.append(f"  * Applied On: {recent.created_at:%Y-%m-%d}")
    if payments:
        paid = sum(p.amount for p in payments if p.status == PaymentStatus.SUCCEEDED.value)
        lines.append(f"- Total Payments Made: {len(payments)}")
        lines.append(f"- Total Amount Paid: {format_cents(paid)}")
    return "\n".join(lines)


def build_system_prompt(user_context=""):
    phone = current_app.config.get("SUPPORT_PHONE", "1-945-212-1609")
    return f"""You are a helpful customer support assistant for AmeriLend, a consumer lending platform.

LOAN PRODUCTS:
1. Installment Loans: $1,000 - $50,000, fixed monthly payments, approval in 24-48 hours.
2. Short-Term Loans: $100 - $5,000, quick approval, short repayment period.

KEY INFORMATION:
- Processing Fee: {describe_fee()} (one-time, due before disbursement)
- Payment Methods: credit/debit card, cryptocurrency (BTC, ETH, USDT, USDC)
- ID verification requires a government ID (front and back) and a selfie
- Contact Support: {phone}

APPLICATION PROCESS:
1. Create an account or log in
2. Complete the application form
3. Upload ID verification documents
4. Wait for approval
5. Pay the processing fee
6. Receive the loan disbursement

Be warm, professional and specific. When you don't know something, say so and refer the
customer to human support. Never ask for full card numbers, passwords or SSNs.{user_context}"""


def clean_history(history):
    if history is None:
        return []
    if not isinstance(history, list):
        raise ValidationError("history must be a list")
    cleaned = []
    for item in history[-MAX_HISTORY:]:
        if not isinstance(item, dict):
            continue
        role = item.get("role")
        content = item.get("content")
        if role in ALLOWED_ROLES and isinstance(content, str) and content.strip():
            cleaned.append({"role": role, "content": content})
    return cleaned


@bp.route("", methods=["POST"])
@security_middleware.rate_limit(*GENERAL_LIMIT)
def chat():
    data = get_json_body()
    message = require_string(data, "message", max_length=MAX_MESSAGE_LENGTH, label="Message")
    history = clean_history(data.get("history"))

    try:
        user_context = ""
        user = g.get("user")
        if data.get("includeUserContext") and user is not None:
            user_context = build_user_context(user)

        client = get_openai_client()
        if client is None:
            logger.warning("OPENAI_API_KEY not configured, returning fallback chat reply")
            return jsonify({"reply": fallback_reply()}), 200

        messages = [{"role": "system", "content": build_system_prompt(user_context)}]
        messages += history
        messages.append({"role": "user", "content": message})

        response = client.chat.completions.create(
            model=current_app.config.get("OPENAI_MODEL", "gpt-4o-mini"),
            messages=messages,
            temperature=0.4,
            max_tokens=600,
        )
        reply = response.choices[0].message.content
        if not reply:
            reply = fallback_reply()
    except Exception as e:
        logger.error(f"Chat AI error: {e}")
        reply = fallback_reply()

    return jsonify({"reply": reply}), 200
