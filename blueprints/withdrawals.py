from flask import Blueprint, jsonify
from flask_login import login_required, current_user

from commission.withdrawals import WithdrawalHelper
from blueprints.helpers import json_body


bp = Blueprint('withdrawals', __name__, url_prefix="")


@bp.route("/api/withdraw", methods=["POST"])
@login_required
def request_withdrawal():
    withdrawal = WithdrawalHelper.request_withdrawal(current_user.id, json_body())
    return jsonify({
        "message": "Withdrawal request submitted successfully",
        "withdrawal": withdrawal.to_dict(),
    }), 201


@bp.route("/api/withdraw", methods=["GET"])
@login_required
def withdrawal_history():
    withdrawals = WithdrawalHelper.list_user_withdrawals(current_user.id)
    return jsonify({"withdrawals": [w.to_dict() for w in withdrawals]}), 200
