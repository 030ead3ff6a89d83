from flask import Blueprint, jsonify, current_app, request

from commission.rates import CommissionRateHelper
from commission.purchases import PurchaseHelper
from utils import parse_amount


bp = Blueprint('commissions', __name__, url_prefix="")


# ----------------------------------------------------------------------------------
# Public: "how commissions work" explainer data
# ----------------------------------------------------------------------------------
@bp.route("/api/commission-rates", methods=["GET"])
def commission_rates():
    return jsonify({
        "currency": current_app.config.get("CURRENCY", "PKR"),
        "levels": CommissionRateHelper.public_rate_table(),
    }), 200


@bp.route("/api/commission-rates/preview", methods=["GET"])
def commission_preview():
    """What each level would earn on ?amount=N at the current rates."""
    amount = parse_amount(request.args.get("amount"))
    breakdown = CommissionRateHelper.calculate_all_levels(amount)
    return jsonify({
        "amount": float(amount),
        "levels": [
            {"level": row["level"], "rate": float(row["rate"]), "commission": float(row["commission"])}
            for row in breakdown
        ],
        "totalCommission": float(CommissionRateHelper.total_possible_commission(amount)),
    }), 200


@bp.route("/api/membership-plans", methods=["GET"])
def membership_plans():
    return jsonify({"plans": [plan.to_dict() for plan in PurchaseHelper.active_plans()]}), 200
