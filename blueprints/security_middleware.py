# security_middleware.py
from functools import wraps
from flask import request, jsonify, current_app
import hashlib
import hmac
import logging
from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

# (max requests, window seconds)
AUTH_LIMIT = (5, 15 * 60)
OTP_LIMIT = (3, 5 * 60)
PAYMENT_LIMIT = (10, 60 * 60)
LOAN_APPLICATION_LIMIT = (3, 24 * 60 * 60)
GENERAL_LIMIT = (100, 15 * 60)


class SecurityMiddleware:
    """Rate limiting and gateway signature checks for sensitive endpoints"""

    def __init__(self):
        self._redis = None
        self._redis_url = None

    @property
    def redis(self):
        url = current_app.config.get('REDIS_URL')
        if self._redis is None or url != self._redis_url:
            self._redis = Redis.from_url(url, decode_responses=True)
            self._redis_url = url
        return self._redis

    def rate_limit(self, max_requests, window):
        """Rate limiting decorator keyed by client IP and endpoint"""
        def decorator(f):
            @wraps(f)
            def decorated_function(*args, **kwargs):
                if not current_app.config.get('RATELIMIT_ENABLED', True):
                    return f(*args, **kwargs)

                key = f"rate_limit:{request.remote_addr}:{request.endpoint}"
                try:
                    pipeline = self.redis.pipeline()
                    pipeline.incr(key, 1)
                    pipeline.expire(key, window)
                    current, _ = pipeline.execute()
                except RedisError as e:
                    logger.warning(f"Rate limiter unavailable, allowing request to {request.endpoint}: {e}")
                    return f(*args, **kwargs)

                if int(current) > max_requests:
                    return jsonify({
                        "error": "Too many requests, please try again later",
                        "retry_after": window
                    }), 429

                return f(*args, **kwargs)
            return decorated_function
        return decorator

    def validate_anet_signature(self, f):
        """Validate the X-ANET-Signature header (HMAC-SHA512 of the raw body)."""
        @wraps(f)
        def decorated_function(*args, **kwargs):
            signature_key = current_app.config.get('AUTHORIZENET_SIGNATURE_KEY')
            if not signature_key:
                current_app.logger.error("AUTHORIZENET_SIGNATURE_KEY not configured")
                return jsonify({"error": "Webhook not configured"}), 500

            header = request.headers.get('X-ANET-Signature', '')
            if not header:
                return jsonify({"error": "Missing security headers"}), 401

            signature = header.split('=', 1)[1] if '=' in header else header
            expected_signature = compute_anet_signature(signature_key, request.get_data())

            if not hmac.compare_digest(signature.upper(), expected_signature):
                current_app.logger.warning(f"Invalid webhook signature from {request.remote_addr}")
                return jsonify({"error": "Invalid signature"}), 401

            return f(*args, **kwargs)
        return decorated_function

    def validate_coinbase_signature(self, f):
        """Validate the X-CC-Webhook-Signature header (HMAC-SHA256 of the raw body)."""
        @wraps(f)
        def decorated_function(*args, **kwargs):
            secret = current_app.config.get('COINBASE_COMMERCE_WEBHOOK_SECRET')
            if not secret:
                current_app.logger.error("COINBASE_COMMERCE_WEBHOOK_SECRET not configured")
                return jsonify({"error": "Webhook not configured"}), 500

            signature = request.headers.get('X-CC-Webhook-Signature', '')
            if not signature:
                return jsonify({"error": "Missing security headers"}), 401

            expected_signature = compute_coinbase_signature(secret, request.get_data())
            if not hmac.compare_digest(signature.lower(), expected_signature):
                current_app.logger.warning(f"Invalid crypto webhook signature from {request.remote_addr}")
                return jsonify({"error": "Invalid signature"}), 401

            return f(*args, **kwargs)
        return decorated_function


def compute_anet_signature(signature_key, body):
    return hmac.new(signature_key.encode(), body, hashlib.sha512).hexdigest().upper()


def compute_coinbase_signature(secret, body):
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


# Initialize middleware
security_middleware = SecurityMiddleware()
