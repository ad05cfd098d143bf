#======================================================================================
#
# SYSTEM SETTINGS + PROCESSING FEE CONFIGURATION
#
#=======================================================================================
import logging
from flask import Blueprint, jsonify, request, g
from extensions import db
from models import SystemSetting, SettingType, FeeConfiguration, FeeCalculationMode, enum_values
from utils import admin_required, get_json_body, require_string
from exceptions import ValidationError, NotFoundError
from blueprints.loan_helpers import FeeConfig, get_active_fee_config
from blueprints.audit import record_audit

logger = logging.getLogger(__name__)

settings_bp = Blueprint('settings', __name__, url_prefix='')

WALLET_KEYS = {
    "btc": ("WALLET_ADDRESS_BTC", "Bitcoin wallet address for processing fee payments"),
    "eth": ("WALLET_ADDRESS_ETH", "Ethereum wallet address for processing fee payments"),
    "usdt": ("WALLET_ADDRESS_USDT", "USDT (ERC-20) wallet address for processing fee payments"),
    "usdc": ("WALLET_ADDRESS_USDC", "USDC (ERC-20) wallet address for processing fee payments"),
}


def get_setting_value(key, default=None):
    setting = SystemSetting.query.filter_by(setting_key=key).first()
    return setting.setting_value if setting else default


def upsert_setting(key, value, description=None, setting_type=SettingType.STRING.value):
    """Insert or update one setting. The caller commits."""
    setting = SystemSetting.query.filter_by(setting_key=key).first()
    user = g.get("user")
    if setting:
        old = setting.setting_value
        setting.setting_value = value
        if description is not None:
            setting.description = description
        setting.setting_type = setting_type
    else:
        old = None
        setting = SystemSetting(setting_key=key, setting_value=value, description=description,
                                setting_type=setting_type)
        db.session.add(setting)
    setting.updated_by = user.id if user else None
    record_audit("setting_updated", "system_setting", None, old, value, {"key": key})
    return setting


# --------------------------------------------------
#  Processing fee configuration
# --------------------------------------------------
@settings_bp.route('/api/fee-config', methods=['GET'])
def get_fee_config():
    config = get_active_fee_config()
    if not config:
        return jsonify({
            "calculationMode": FeeConfig.DEFAULT_MODE,
            "percentageRate": FeeConfig.DEFAULT_PERCENTAGE_RATE,
            "fixedFeeAmount": FeeConfig.DEFAULT_FIXED_FEE,
        }), 200
    return jsonify(config.to_dict()), 200


@settings_bp.route('/admin/fee-config', methods=['POST'])
@admin_required
def update_fee_config():
    data = get_json_body()
    mode = data.get("calculationMode")
    if mode not in enum_values(FeeCalculationMode):
        raise ValidationError("calculationMode must be percentage or fixed")

    def bounded(field, low, high):
        value = data.get(field)
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
            raise ValidationError(f"{field} must be between {low} and {high}")
        return value

    rate = bounded("percentageRate", FeeConfig.MIN_RATE, FeeConfig.MAX_RATE)
    fixed = bounded("fixedFeeAmount", FeeConfig.MIN_FIXED_FEE, FeeConfig.MAX_FIXED_FEE)

    if mode == FeeCalculationMode.PERCENTAGE.value and rate is None:
        raise ValidationError("percentageRate is required for percentage mode")
    if mode == FeeCalculationMode.FIXED.value and fixed is None:
        raise ValidationError("fixedFeeAmount is required for fixed mode")

    previous = get_active_fee_config()
    FeeConfiguration.query.filter_by(is_active=True).update({"is_active": False})
    config = FeeConfiguration(
        calculation_mode=mode,
        percentage_rate=rate if rate is not None else (previous.percentage_rate if previous else FeeConfig.DEFAULT_PERCENTAGE_RATE),
        fixed_fee_amount=fixed if fixed is not None else (previous.fixed_fee_amount if previous else FeeConfig.DEFAULT_FIXED_FEE),
        is_active=True,
        updated_by=g.user.id,
    )
    db.session.add(config)
    record_audit("fee_config_updated", "fee_configuration", None,
                 previous.to_dict() if previous else None,
                 {"calculationMode": mode, "percentageRate": rate, "fixedFeeAmount": fixed})
    db.session.commit()
    logger.info(f"Fee configuration changed to {mode} by admin {g.user.id}")
    return jsonify({"success": True, "config": config.to_dict()}), 200


# --------------------------------------------------
#  System settings
# --------------------------------------------------
@settings_bp.route('/admin/settings', methods=['GET'])
@admin_required
def list_settings():
    settings = SystemSetting.query.order_by(SystemSetting.setting_key).all()
    return jsonify({"settings": [s.to_dict() for s in settings]}), 200


@settings_bp.route('/admin/settings/search', methods=['GET'])
@admin_required
def search_settings():
    pattern = (request.args.get('pattern') or '').strip()
    if not pattern:
        raise ValidationError("pattern is required")
    settings = (SystemSetting.query
                .filter(SystemSetting.setting_key.like(pattern))
                .order_by(SystemSetting.setting_key)
                .all())
    return jsonify({"settings": [s.to_dict() for s in settings]}), 200


@settings_bp.route('/admin/settings', methods=['PUT'])
@admin_required
def put_setting():
    data = get_json_body()
    key = require_string(data, 'key', max_length=100)
    value = data.get('value')
    if value is None:
        raise ValidationError("value is required")
    setting_type = data.get('type', SettingType.STRING.value)
    if setting_type not in enum_values(SettingType):
        raise ValidationError("type must be one of: " + ", ".join(enum_values(SettingType)))

    setting = upsert_setting(key, str(value), data.get('description'), setting_type)
    db.session.commit()
    return jsonify({"success": True, "setting": setting.to_dict()}), 200


@settings_bp.route('/admin/settings/crypto-wallets', methods=['GET'])
@admin_required
def get_crypto_wallets():
    return jsonify({
        name: get_setting_value(key, "") for name, (key, _) in WALLET_KEYS.items()
    }), 200


@settings_bp.route('/admin/settings/crypto-wallets', methods=['PUT'])
@admin_required
def update_crypto_wallets():
    data = get_json_body()
    updated = []
    for name, (key, description) in WALLET_KEYS.items():
        address = data.get(name)
        if address is None:
            continue
        if not isinstance(address, str):
            raise ValidationError(f"{name} must be a string")
        upsert_setting(key, address.strip(), description)
        updated.append(name)
    db.session.commit()
    return jsonify({"success": True, "updated": updated}), 200


@settings_bp.route('/admin/settings/<key>', methods=['GET'])
@admin_required
def get_setting(key):
    setting = SystemSetting.query.filter_by(setting_key=key).first()
    if not setting:
        raise NotFoundError("Setting not found")
    return jsonify({"setting": setting.to_dict()}), 200
