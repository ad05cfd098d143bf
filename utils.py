import re
import secrets
import string
import logging
from functools import wraps
from flask import request, session, g, abort, current_app
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from exceptions import ValidationError

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')
SSN_PATTERN = re.compile(r'^\d{3}-\d{2}-\d{4}$')
DOB_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')
REFERRAL_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
PASSWORD_SPECIAL = re.compile(r'[^A-Za-z0-9]')


# =========================
# INPUT VALIDATION
# =========================
def validate_email(email):
    return bool(email) and EMAIL_PATTERN.match(email) is not None

def validate_ssn(ssn):
    return bool(ssn) and SSN_PATTERN.match(ssn) is not None

def validate_dob(dob):
    return bool(dob) and DOB_PATTERN.match(dob) is not None

def digits_only(value):
    return re.sub(r'\D', '', value or '')

def validate_phone(phone):
    """US numbers: 10 digits, or 11 digits with the leading country code 1."""
    digits = digits_only(phone)
    return len(digits) == 10 or (len(digits) == 11 and digits.startswith('1'))

def format_phone(phone):
    """Normalize to E.164."""
    digits = digits_only(phone)
    if len(digits) == 10:
        return f"+1{digits}"
    return f"+{digits}"

def normalize_phone(phone):
    """E.164 for a valid US number, else None. Account phone numbers are stored in this form."""
    return format_phone(phone) if validate_phone(phone) else None

def validate_password_strength(password):
    """Returns (ok, error)."""
    if not password or len(password) < 8:
        return False, "Password must be at least 8 characters"
    if not re.search(r'[A-Z]', password):
        return False, "Password must contain an uppercase letter"
    if not re.search(r'[a-z]', password):
        return False, "Password must contain a lowercase letter"
    if not re.search(r'\d', password):
        return False, "Password must contain a number"
    if not PASSWORD_SPECIAL.search(password):
        return False, "Password must contain a special character"
    return True, None

def get_json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Invalid or missing JSON body")
    return data

def require_string(data, field, min_length=1, max_length=None, label=None):
    """Strip and length-check a required string field."""
    label = label or field
    value = data.get(field)
    if not isinstance(value, str):
        raise ValidationError(f"{label} is required")
    value = value.strip()
    if len(value) < min_length:
        if min_length <= 1:
            raise ValidationError(f"{label} is required")
        raise ValidationError(f"{label} must be at least {min_length} characters")
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{label} must be at most {max_length} characters")
    return value

def require_positive_int(data, field, label=None):
    value = data.get(field)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{label or field} must be a positive whole number")
    return value

def require_choice(data, field, choices, default=None):
    value = data.get(field, default)
    if value not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(choices)}")
    return value

def parse_pagination(default_limit=50, max_limit=100):
    """limit/offset query args, clamped."""
    try:
        limit = int(request.args.get('limit', default_limit))
        offset = int(request.args.get('offset', 0))
    except (TypeError, ValueError):
        raise ValidationError("limit and offset must be integers")
    if limit < 1 or limit > max_limit:
        raise ValidationError(f"limit must be between 1 and {max_limit}")
    if offset < 0:
        raise ValidationError("offset must not be negative")
    return limit, offset

def get_client_ip():
    forwarded = request.headers.get('X-Forwarded-For')
    if forwarded:
        return forwarded.split(',')[0].strip()
    real_ip = request.headers.get('X-Real-IP')
    if real_ip:
        return real_ip.strip()
    return request.remote_addr or 'unknown'

def generate_referral_code(length=6):
    from models import User
    for _ in range(10):
        code = ''.join(secrets.choice(REFERRAL_ALPHABET) for _ in range(length))
        if not User.query.filter_by(referral_code=code).first():
            return code
    # fallback
    return ''.join(secrets.choice(REFERRAL_ALPHABET) for _ in range(length + 2))

def random_suffix(length=9):
    chars = string.ascii_lowercase + string.digits
    return ''.join(secrets.choice(chars) for _ in range(length))


# =========================
# OUTBOUND HTTP
# =========================
def build_retry_session():
    """requests.Session retrying transient upstream failures."""
    http = requests.Session()
    retry_strategy = Retry(
        total=3,
        backoff_factor=1,
        status_forcelist=[429, 500, 502, 503, 504],
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    http.mount("http://", adapter)
    http.mount("https://", adapter)
    return http

def request_timeout():
    return current_app.config.get("REQUEST_TIMEOUT_SECONDS", 30)


# =========================
# ACCESS DECORATORS
# =========================
def login_required(f):
    """Session based guard for JSON routes."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if "user_id" not in session or g.get("user") is None:
            abort(401)
        return f(*args, **kwargs)

    return decorated_function

def admin_required(f):
    """
    Decorator to restrict access to admin-only routes.
    - Checks that 'user_id' exists in session.
    - Uses the user loaded for this request to read the current role.
    - Aborts with 403 Forbidden if not an admin.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if "user_id" not in session:
            abort(401)

        user = g.get("user")
        if not user or not user.is_admin:
            abort(403)

        return f(*args, **kwargs)

    return decorated_function
