"""
On-chain lookups used to confirm crypto processing fee payments.

BTC goes through the Blockstream Esplora REST API, ETH and ERC-20 tokens
through a web3 JSON-RPC provider.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Optional
import requests
from web3 import Web3
from flask import current_app
from utils import request_timeout
from blueprints.crypto_helpers import ERC20_CONTRACTS

logger = logging.getLogger(__name__)

SATOSHIS_PER_BTC = Decimal("100000000")
BTC_TOLERANCE_SATS = 10000
ETH_TOLERANCE = Decimal("0.001")
ERC20_TOLERANCE = Decimal("0.01")
ERC20_DECIMALS = 6

MIN_CONFIRMATIONS = {"BTC": 1, "ETH": 12, "USDT": 12, "USDC": 12}

# keccak("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


class BlockchainError(RuntimeError):
    """Raised when a chain API cannot be queried."""


def not_found(message="No matching transaction found"):
    return {"found": False, "tx_hash": None, "confirmations": 0, "amount": None, "message": message}


def _unix(since):
    """Naive UTC datetimes (as stored on Payment.created_at) to epoch seconds."""
    if since is None:
        return None
    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    return int(since.timestamp())


def get_web3() -> Web3:
    return Web3(Web3.HTTPProvider(current_app.config.get("ETH_RPC_URL"),
                                  request_kwargs={"timeout": request_timeout()}))


# ==========================================================
#                  BITCOIN
# ==========================================================
def _btc_get(path):
    base_url = current_app.config.get("BTC_API_URL", "https://blockstream.info/api").rstrip("/")
    try:
        resp = requests.get(f"{base_url}{path}", timeout=request_timeout())
        resp.raise_for_status()
    except requests.exceptions.RequestException as exc:
        raise BlockchainError(f"Bitcoin API request failed: {exc}") from exc
    return resp


def verify_btc_payment(address: str, expected_btc: Decimal, since: Optional[datetime] = None,
                       skip: Optional[Callable[[str], bool]] = None) -> Dict:
    """Look for a transaction paying expected_btc (within 10000 sats) to address.

    Confirmed transactions mined before since are ignored, as are hashes for
    which skip returns True. Unconfirmed transactions carry no block time and
    are always considered.
    """
    expected_sats = int(Decimal(expected_btc) * SATOSHIS_PER_BTC)
    since_ts = _unix(since)
    txs = _btc_get(f"/address/{address}/txs").json()

    for tx in txs:
        block_time = (tx.get("status") or {}).get("block_time")
        if since_ts is not None and block_time is not None and block_time < since_ts:
            continue
        if skip and skip(tx.get("txid")):
            continue
        received = sum(
            out.get("value", 0)
            for out in tx.get("vout", [])
            if out.get("scriptpubkey_address") == address
        )
        if received and abs(received - expected_sats) <= BTC_TOLERANCE_SATS:
            status = tx.get("status") or {}
            confirmations = 0
            if status.get("confirmed"):
                tip_height = int(_btc_get("/blocks/tip/height").text.strip())
                confirmations = tip_height - status.get("block_height", tip_height) + 1
            return {
                "found": True,
                "tx_hash": tx.get("txid"),
                "confirmations": confirmations,
                "amount": str(Decimal(received) / SATOSHIS_PER_BTC),
                "message": "Transaction found",
            }
    return not_found()


# ==========================================================
#                  ETHEREUM
# ==========================================================
def verify_eth_payment(address: str, expected_eth: Decimal, web3: Optional[Web3] = None,
                       since: Optional[datetime] = None,
                       skip: Optional[Callable[[str], bool]] = None) -> Dict:
    """Scan recent blocks for a plain ETH transfer to address, newest first, stopping at since."""
    w3 = web3 or get_web3()
    target = address.lower()
    expected = Decimal(expected_eth)
    max_blocks = current_app.config.get("ETH_SCAN_BLOCKS", 1000)
    since_ts = _unix(since)

    try:
        latest = w3.eth.block_number
        for number in range(latest, max(latest - max_blocks, -1), -1):
            block = w3.eth.get_block(number, full_transactions=True)
            timestamp = block.get("timestamp")
            if since_ts is not None and timestamp is not None and timestamp < since_ts:
                break
            for tx in block["transactions"]:
                to = tx.get("to")
                if not to or to.lower() != target:
                    continue
                if skip and skip(_hex(tx["hash"])):
                    continue
                value = Decimal(w3.from_wei(tx["value"], "ether"))
                if abs(value - expected) <= ETH_TOLERANCE:
                    return {
                        "found": True,
                        "tx_hash": _hex(tx["hash"]),
                        "confirmations": latest - number + 1,
                        "amount": str(value),
                        "message": "Transaction found",
                    }
    except Exception as exc:
        raise BlockchainError(f"Ethereum RPC failed: {exc}") from exc
    return not_found()


def verify_erc20_payment(address: str, expected_amount: Decimal, token: str,
                         web3: Optional[Web3] = None, since: Optional[datetime] = None,
                         skip: Optional[Callable[[str], bool]] = None) -> Dict:
    """Search Transfer logs of a 6-decimal stablecoin contract for a payment to address."""
    w3 = web3 or get_web3()
    since_ts = _unix(since)
    expected = Decimal(expected_amount)
    max_blocks = current_app.config.get("ETH_SCAN_BLOCKS", 1000)
    contract = Web3.to_checksum_address(ERC20_CONTRACTS[token])
    padded_to = "0x" + address.lower().replace("0x", "").rjust(64, "0")

    try:
        latest = w3.eth.block_number
        logs = w3.eth.get_logs({
            "fromBlock": max(latest - max_blocks, 0),
            "toBlock": latest,
            "address": contract,
            "topics": [TRANSFER_TOPIC, None, padded_to],
        })
    except Exception as exc:
        raise BlockchainError(f"Ethereum RPC failed: {exc}") from exc

    for log in logs:
        raw = _log_value(log["data"])
        value = Decimal(raw) / (Decimal(10) ** ERC20_DECIMALS)
        if abs(value - expected) > ERC20_TOLERANCE:
            continue
        tx_hash = _hex(log["transactionHash"])
        if skip and skip(tx_hash):
            continue
        if since_ts is not None:
            try:
                mined_at = w3.eth.get_block(log["blockNumber"]).get("timestamp")
            except Exception as exc:
                raise BlockchainError(f"Ethereum RPC failed: {exc}") from exc
            if mined_at is not None and mined_at < since_ts:
                continue
        return {
            "found": True,
            "tx_hash": tx_hash,
            "confirmations": latest - log["blockNumber"] + 1,
            "amount": str(value),
            "message": "Transaction found",
        }
    return not_found()


def verify_crypto_transfer(currency: str, address: str, expected_amount,
                           since: Optional[datetime] = None,
                           skip: Optional[Callable[[str], bool]] = None) -> Dict:
    if currency == "BTC":
        return verify_btc_payment(address, Decimal(expected_amount), since=since, skip=skip)
    if currency == "ETH":
        return verify_eth_payment(address, Decimal(expected_amount), since=since, skip=skip)
    if currency in ERC20_CONTRACTS:
        return verify_erc20_payment(address, Decimal(expected_amount), currency, since=since, skip=skip)
    raise ValueError(f"Unsupported currency {currency}")


def _hex(value):
    if isinstance(value, (bytes, bytearray)):
        hexed = value.hex()
        return hexed if hexed.startswith("0x") else "0x" + hexed
    return str(value)


def _log_value(data):
    if isinstance(data, (bytes, bytearray)):
        return int.from_bytes(bytes(data), "big")
    return int(data, 16)
