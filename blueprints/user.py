from flask import Blueprint, jsonify, request, current_app
from flask_login import login_required, current_user

from commission.ledger import LedgerHelper
from commission.network import ReferralNetworkHelper, MAX_REFERRAL_DEPTH
from utils import parse_int, round_money


bp = Blueprint('user', __name__, url_prefix="")


@bp.route("/api/user/profile", methods=["GET"])
@login_required
def get_user_profile():
    return jsonify(current_user.to_dict()), 200


# ----------------------------------------------------------------------------------
# Wallet: aggregated balances only, no line items
# ----------------------------------------------------------------------------------
@bp.route("/api/user/wallet", methods=["GET"])
@login_required
def get_wallet():
    pending = LedgerHelper.pending_debits(current_user.id)
    balance = round_money(current_user.balance or 0)
    return jsonify({
        "currency": current_app.config.get("CURRENCY", "PKR"),
        "balance": float(balance),
        "availableBalance": float(round_money(balance - pending)),
        "pendingWithdrawals": float(pending),
        "totalEarnings": float(round_money(current_user.total_earnings or 0)),
        "referralEarnings": float(round_money(current_user.referral_earnings or 0)),
    }), 200


#=======================================================================================
#      REFERRAL NETWORK
#=======================================================================================
@bp.route("/api/user/referral-history", methods=["GET"])
@login_required
def referral_history():
    """Downline up to five levels, newest members first. ?level=N narrows to one level."""
    level = request.args.get("level")
    if level is not None:
        level = parse_int(level, "level", minimum=1, maximum=MAX_REFERRAL_DEPTH)

    members = ReferralNetworkHelper.sort_by_join_date(
        ReferralNetworkHelper.get_downline(current_user.id)
    )

    level_counts = {str(n): 0 for n in range(1, MAX_REFERRAL_DEPTH + 1)}
    for member in members:
        level_counts[str(member.level)] += 1

    if level is not None:
        members = [m for m in members if m.level == level]

    return jsonify({
        "referrals": [ReferralNetworkHelper.member_to_dict(m) for m in members],
        "levelCounts": level_counts,
        "total": sum(level_counts.values()),
    }), 200


@bp.route("/api/user/network", methods=["GET"])
@login_required
def get_user_network():
    return jsonify({
        "success": True,
        "network": ReferralNetworkHelper.network_summary(current_user.id),
    }), 200
