from flask import Blueprint, jsonify
from flask_login import login_required, current_user

from commission.purchases import PurchaseHelper
from blueprints.helpers import json_body


bp = Blueprint('purchases', __name__, url_prefix="")


@bp.route("/api/purchases", methods=["POST"])
@login_required
def submit_purchase():
    """
    Submit a manual payment for a membership plan or product. The purchase stays
    PENDING until an admin confirms the payment.
    """
    purchase = PurchaseHelper.submit_purchase(current_user.id, json_body())
    return jsonify({
        "message": "Purchase submitted. Awaiting payment confirmation.",
        "purchase": purchase.to_dict(),
    }), 201


@bp.route("/api/purchases", methods=["GET"])
@login_required
def my_purchases():
    purchases = PurchaseHelper.list_purchases(user_id=current_user.id).all()
    return jsonify({"purchases": [p.to_dict() for p in purchases]}), 200
