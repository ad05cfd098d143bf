"""
Crypto price lookup (CoinGecko), wallet addresses and payment charges for the
processing fee.
"""
import base64
import io
import time
import logging
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional
import qrcode
import requests
from flask import current_app
from models import CryptoCurrency, enum_values
from utils import random_suffix, request_timeout
from exceptions import ValidationError, ConfigurationError
from blueprints.settings import get_setting_value

logger = logging.getLogger(__name__)

COINGECKO_IDS = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "USDT": "tether",
    "USDC": "usd-coin",
}

CRYPTO_NAMES = {
    "BTC": "Bitcoin",
    "ETH": "Ethereum",
    "USDT": "Tether (ERC-20)",
    "USDC": "USD Coin (ERC-20)",
}

FALLBACK_RATES = {
    "BTC": Decimal("65000"),
    "ETH": Decimal("3200"),
    "USDT": Decimal("1"),
    "USDC": Decimal("1"),
}

DECIMALS = {"BTC": 8, "ETH": 6}
STABLECOIN_DECIMALS = 2

ERC20_CONTRACTS = {
    "USDT": "0xdac17f958d2ee523a2206206994597c13d831ec7",
    "USDC": "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48",
}

CHARGE_TTL = timedelta(hours=1)


class CryptoRateError(RuntimeError):
    """Raised when the CoinGecko API fails."""


def normalize_currency(currency) -> str:
    code = (currency or "").strip().upper()
    if code not in enum_values(CryptoCurrency):
        raise ValidationError("cryptoCurrency must be one of: " + ", ".join(enum_values(CryptoCurrency)))
    return code


def fetch_usd_prices() -> Dict[str, Decimal]:
    """Spot USD prices for all supported currencies from CoinGecko."""
    base_url = current_app.config.get("COINGECKO_API_URL", "https://api.coingecko.com/api/v3")
    headers = {"Accept": "application/json"}
    api_key = current_app.config.get("COINGECKO_API_KEY")
    if api_key:
        headers["x-cg-demo-api-key"] = api_key

    params = {"ids": ",".join(COINGECKO_IDS.values()), "vs_currencies": "usd"}
    try:
        resp = requests.get(f"{base_url}/simple/price", params=params, headers=headers,
                            timeout=request_timeout())
    except requests.exceptions.RequestException as exc:
        raise CryptoRateError(f"CoinGecko request failed: {exc}") from exc

    if resp.status_code == 429:
        raise CryptoRateError("CoinGecko rate limit exceeded (HTTP 429).")
    if resp.status_code != 200:
        raise CryptoRateError(f"CoinGecko returned HTTP {resp.status_code}: {resp.text[:200]}")

    data = resp.json()
    prices = {}
    for code, coin_id in COINGECKO_IDS.items():
        usd = (data.get(coin_id) or {}).get("usd")
        if usd:
            prices[code] = Decimal(str(usd))
    return prices


def get_usd_rates() -> Dict[str, Decimal]:
    """Live prices where available, fallback rates for the rest."""
    rates = dict(FALLBACK_RATES)
    try:
        rates.update(fetch_usd_prices())
    except CryptoRateError as e:
        logger.warning(f"Using fallback crypto rates: {e}")
    return rates


def get_usd_rate(currency: str) -> Decimal:
    return get_usd_rates()[normalize_currency(currency)]


def convert_usd_to_crypto(usd_cents: int, currency: str, rate: Optional[Decimal] = None) -> str:
    """Crypto amount for a USD amount in cents, as a fixed-point string."""
    code = normalize_currency(currency)
    rate = rate if rate is not None else get_usd_rate(code)
    places = DECIMALS.get(code, STABLECOIN_DECIMALS)
    amount = (Decimal(usd_cents) / Decimal(100)) / rate
    return format(amount.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP), "f")


def get_wallet_address(currency: str) -> Optional[str]:
    """Admin-configured address, falling back to the WALLET_ADDRESS_* environment setting."""
    key = f"WALLET_ADDRESS_{normalize_currency(currency)}"
    address = get_setting_value(key)
    if address:
        return address
    return current_app.config.get(key)


def build_payment_uri(currency: str, address: str, amount: str) -> str:
    if currency == "BTC":
        return f"bitcoin:{address}?amount={amount}"
    if currency == "ETH":
        return f"ethereum:{address}?value={amount}"
    return f"ethereum:{ERC20_CONTRACTS[currency]}/transfer?address={address}&amount={amount}"


def qr_code_data_url(data: str) -> str:
    image = qrcode.make(data)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode()


def create_crypto_charge(usd_cents: int, currency: str, description: str) -> Dict:
    """Quote a crypto payment to our wallet. Nothing is sent to any chain."""
    code = normalize_currency(currency)
    address = get_wallet_address(code)
    if not address:
        logger.error(f"No wallet address configured for {code}")
        raise ConfigurationError(f"{code} payments are not configured")

    amount = convert_usd_to_crypto(usd_cents, code)
    payment_uri = build_payment_uri(code, address, amount)
    charge = {
        "charge_id": f"charge_{int(time.time() * 1000)}_{random_suffix()}",
        "currency": code,
        "address": address,
        "crypto_amount": amount,
        "payment_uri": payment_uri,
        "qr_code": qr_code_data_url(payment_uri),
        "expires_at": datetime.utcnow() + CHARGE_TTL,
        "description": description,
    }
    logger.info(f"Crypto charge {charge['charge_id']}: {amount} {code} to {address}")
    return charge


def supported_cryptos():
    rates = get_usd_rates()
    return [
        {
            "symbol": code,
            "name": CRYPTO_NAMES[code],
            "rate": float(rates[code]),
            "walletAddress": get_wallet_address(code),
            "network": "Bitcoin" if code == "BTC" else "Ethereum",
        }
        for code in COINGECKO_IDS
    ]
