# ==========================================================================================================
# -------------- Configuration file for the AmeriLend Flask application -----------------------------------
# ==========================================================================================================
import os
from dotenv import load_dotenv


if os.environ.get("FLASK_ENV") != "production":
    load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))


def _as_bool(value, default="False"):
    return str(value if value is not None else default).lower() in ("true", "1", "t", "yes")


class Config:

    SECRET_KEY = os.getenv("SECRET_KEY")
    if not SECRET_KEY:
        raise ValueError("SECRET_KEY must be set in production")

    FLASK_ENV = os.getenv("FLASK_ENV", "production")
    DEBUG = _as_bool(os.getenv("DEBUG"))
    TESTING = False

    _database_url = os.getenv("DATABASE_URL")
    if not _database_url:
        _database_url = f"sqlite:///{os.path.join(basedir, 'instance', 'lending.db')}"

    if _database_url.startswith("postgres://"):
        _database_url = _database_url.replace("postgres://", "postgresql+pg8000://", 1)

    SQLALCHEMY_DATABASE_URI = _database_url
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # sqlite's default pool rejects these options
    SQLALCHEMY_ENGINE_OPTIONS = {} if _database_url.startswith("sqlite") else {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    APP_BASE_URL = os.getenv("APP_BASE_URL", "https://amerilendloan.com")
    ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
    SUPPORT_PHONE = os.getenv("SUPPORT_PHONE", "1-945-212-1609")
    REQUEST_TIMEOUT_SECONDS = int(os.getenv("REQUEST_TIMEOUT_SECONDS", "30"))

    # Email (SMTP)
    MAIL_SERVER = os.getenv("MAIL_SERVER", "smtp.gmail.com")
    MAIL_PORT = int(os.getenv("MAIL_PORT", "587"))
    MAIL_USE_TLS = _as_bool(os.getenv("MAIL_USE_TLS"), "True")
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", MAIL_USERNAME or "noreply@amerilendloan.com")
    MAIL_SUPPRESS_SEND = _as_bool(os.getenv("MAIL_SUPPRESS_SEND"))

    # Africa's Talking SMS
    AT_USERNAME = os.getenv("AT_USERNAME")
    AT_API_KEY = os.getenv("AT_API_KEY")
    AT_SENDER_ID = os.getenv("AT_SENDER_ID")

    # Authorize.Net card gateway
    AUTHORIZENET_API_LOGIN_ID = os.getenv("AUTHORIZENET_API_LOGIN_ID")
    AUTHORIZENET_TRANSACTION_KEY = os.getenv("AUTHORIZENET_TRANSACTION_KEY")
    AUTHORIZENET_CLIENT_KEY = os.getenv("AUTHORIZENET_CLIENT_KEY")
    AUTHORIZENET_SIGNATURE_KEY = os.getenv("AUTHORIZENET_SIGNATURE_KEY")
    AUTHORIZENET_ENVIRONMENT = os.getenv("AUTHORIZENET_ENVIRONMENT", "sandbox")

    # Crypto
    COINGECKO_API_URL = os.getenv("COINGECKO_API_URL", "https://api.coingecko.com/api/v3")
    COINBASE_COMMERCE_WEBHOOK_SECRET = os.getenv("COINBASE_COMMERCE_WEBHOOK_SECRET")
    COINGECKO_API_KEY = os.getenv("COINGECKO_API_KEY")
    BTC_API_URL = os.getenv("BTC_API_URL", "https://blockstream.info/api")
    ETH_RPC_URL = os.getenv("ETH_RPC_URL", "https://eth.llamarpc.com")
    ETH_SCAN_BLOCKS = int(os.getenv("ETH_SCAN_BLOCKS", "1000"))
    WALLET_ADDRESS_BTC = os.getenv("WALLET_ADDRESS_BTC")
    WALLET_ADDRESS_ETH = os.getenv("WALLET_ADDRESS_ETH")
    WALLET_ADDRESS_USDT = os.getenv("WALLET_ADDRESS_USDT")
    WALLET_ADDRESS_USDC = os.getenv("WALLET_ADDRESS_USDC")
    PAYMENT_MONITOR_ENABLED = _as_bool(os.getenv("PAYMENT_MONITOR_ENABLED"))
    PAYMENT_MONITOR_INTERVAL = int(os.getenv("PAYMENT_MONITOR_INTERVAL", "120"))

    # AI chat
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
    OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

    # Security
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    RATELIMIT_ENABLED = _as_bool(os.getenv("RATELIMIT_ENABLED"), "True")


class TestingConfig(Config):
    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    MAIL_SUPPRESS_SEND = True
    MAIL_DEFAULT_SENDER = "noreply@amerilendloan.test"
    ADMIN_EMAIL = "admin@amerilendloan.test"
    APP_BASE_URL = "http://localhost:5000"
    RATELIMIT_ENABLED = False
    PAYMENT_MONITOR_ENABLED = False
    AT_USERNAME = None
    AT_API_KEY = None
    OPENAI_API_KEY = "test-openai-key"
    AUTHORIZENET_API_LOGIN_ID = "test-login"
    AUTHORIZENET_TRANSACTION_KEY = "test-transaction-key"
    AUTHORIZENET_CLIENT_KEY = "test-client-key"
    AUTHORIZENET_SIGNATURE_KEY = "ABCDEF0123456789"
    COINBASE_COMMERCE_WEBHOOK_SECRET = "test-coinbase-secret"
    WALLET_ADDRESS_BTC = "bc1qtestwalletaddress000000000000000000"
    WALLET_ADDRESS_ETH = "0x1111111111111111111111111111111111111111"
    WALLET_ADDRESS_USDT = "0x1111111111111111111111111111111111111111"
    WALLET_ADDRESS_USDC = "0x1111111111111111111111111111111111111111"
