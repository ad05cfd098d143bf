import logging
from flask import Blueprint, jsonify, g
from extensions import db
from models import User, Referral, ReferralStatus, UserNotificationType
from utils import login_required, generate_referral_code
from blueprints.notification_services import notification_service

logger = logging.getLogger(__name__)

referrals_bp = Blueprint("referrals", __name__, url_prefix="/api/referrals")


def record_referral(new_user, code):
    """Attribute new_user to the owner of code. Self-referrals and duplicates are ignored."""
    code = (code or "").strip().upper()
    referrer = User.query.filter_by(referral_code=code).first()
    if not referrer:
        logger.info(f"Unknown referral code {code} used by user {new_user.id}")
        return None
    if referrer.id == new_user.id:
        logger.warning(f"User {new_user.id} tried to use their own referral code")
        return None
    if Referral.query.filter_by(referred_user_id=new_user.id).first():
        return None

    referral = Referral(
        referrer_id=referrer.id,
        referred_user_id=new_user.id,
        referral_code=code,
        status=ReferralStatus.PENDING.value,
    )
    db.session.add(referral)
    notification_service.push(referrer.id, "New referral",
                              f"{new_user.name or 'Someone'} signed up with your referral code.",
                              UserNotificationType.REFERRAL)
    logger.info(f"Referral recorded: {referrer.id} -> {new_user.id}")
    return referral


@referrals_bp.route("/code", methods=["GET"])
@login_required
def my_referral_code():
    user = g.user
    if not user.referral_code:
        user.referral_code = generate_referral_code()
        db.session.commit()
    return jsonify({"referralCode": user.referral_code}), 200


@referrals_bp.route("/stats", methods=["GET"])
@login_required
def my_referral_stats():
    referrals = Referral.query.filter_by(referrer_id=g.user.id).all()

    def count(status):
        return sum(1 for r in referrals if r.status == status.value)

    earnings = sum(r.reward_amount or 0 for r in referrals if r.status == ReferralStatus.REWARDED.value)
    return jsonify({
        "totalReferrals": len(referrals),
        "pendingReferrals": count(ReferralStatus.PENDING),
        "qualifiedReferrals": count(ReferralStatus.QUALIFIED),
        "rewardedReferrals": count(ReferralStatus.REWARDED),
        "totalEarnings": earnings,
    }), 200


@referrals_bp.route("", methods=["GET"])
@login_required
def my_referrals():
    referrals = (Referral.query
                 .filter_by(referrer_id=g.user.id)
                 .order_by(Referral.created_at.desc(), Referral.id.desc())
                 .all())
    return jsonify({"referrals": [r.to_dict() for r in referrals]}), 200


@referrals_bp.route("/validate/<code>", methods=["GET"])
def validate_code(code):
    referrer = User.query.filter_by(referral_code=code.strip().upper()).first()
    if not referrer:
        return jsonify({"valid": False, "referrerName": None}), 200
    return jsonify({"valid": True, "referrerName": referrer.name}), 200
