#======================================================================================
#
# ADMIN API: commission settings, ledger views, escrow, purchases, withdrawals
#
#=======================================================================================

from flask import jsonify, request, Blueprint, current_app
from flask_login import current_user
from sqlalchemy import func

from extensions import db
from models import User, Transaction, TransactionType, TransactionStatus, WithdrawalStatus
from utils import pagination_args, paginate, parse_int
from commission.exceptions import ValidationError, NotFoundError
from commission.rates import CommissionRateHelper
from commission.ledger import LedgerHelper, unit_of_work
from commission.attribution import CommissionAttributionHelper
from commission.escrow import EscrowHelper
from commission.purchases import PurchaseHelper
from commission.withdrawals import WithdrawalHelper
from commission.network import ReferralNetworkHelper
from blueprints.helpers import admin_required, json_body


admin_bp = Blueprint('admin', __name__, url_prefix='')


# ==========================================================
#                  COMMISSION SETTINGS
# ==========================================================
@admin_bp.route("/admin/commission-settings", methods=["GET"])
@admin_required
def get_commission_settings():
    settings = CommissionRateHelper.all_settings()
    return jsonify({
        "settings": [s.to_dict() for s in settings],
        "totalActiveRate": float(sum((s.rate for s in settings if s.is_active), 0)),
    }), 200


@admin_bp.route("/admin/commission-settings", methods=["PUT"])
@admin_required
def update_commission_settings():
    """
    Expected JSON:
    {
        "settings": [{"level": 1, "rate": 20, "isActive": true, "description": "..."}, ...]
    }
    The whole batch is rejected if any entry is invalid.
    """
    data = json_body()
    updated = CommissionRateHelper.update_settings(data.get("settings"), current_user.id)
    return jsonify({
        "message": "Commission settings updated",
        "settings": [s.to_dict() for s in updated],
    }), 200


@admin_bp.route("/admin/commission-settings/reset", methods=["POST"])
@admin_required
def reset_commission_settings():
    settings = CommissionRateHelper.seed_defaults(actor_id=current_user.id, reset=True)
    return jsonify({
        "message": "Commission settings reset to defaults",
        "settings": [s.to_dict() for s in settings],
    }), 200


# ==========================================================
#                  LEDGER VIEWS
# ==========================================================
@admin_bp.route("/admin/commissions", methods=["GET"])
@admin_required
def list_commissions():
    page, limit = pagination_args(request.args)
    user_id = request.args.get("userId")
    if user_id is not None:
        user_id = parse_int(user_id, "userId", minimum=1)

    query = LedgerHelper.list_transactions(tx_type=TransactionType.COMMISSION.value, user_id=user_id)
    items, meta = paginate(query, page, limit)

    total = db.session.query(func.coalesce(func.sum(Transaction.amount), 0)).filter(
        Transaction.type == TransactionType.COMMISSION.value,
        Transaction.status == TransactionStatus.COMPLETED.value,
    ).scalar()

    return jsonify({
        "commissions": [tx.to_dict() for tx in items],
        "totalCommissionPaid": float(total or 0),
        "pagination": meta,
    }), 200


@admin_bp.route("/admin/transactions", methods=["GET"])
@admin_required
def list_transactions():
    page, limit = pagination_args(request.args)
    tx_type = request.args.get("type")
    status = request.args.get("status")
    user_id = request.args.get("userId")
    if user_id is not None:
        user_id = parse_int(user_id, "userId", minimum=1)

    query = LedgerHelper.list_transactions(
        tx_type=tx_type.upper() if tx_type else None,
        user_id=user_id,
        status=status.upper() if status else None,
    )
    items, meta = paginate(query, page, limit)
    return jsonify({"transactions": [tx.to_dict() for tx in items], "pagination": meta}), 200


@admin_bp.route("/admin/commissions/attribute", methods=["POST"])
@admin_required
def attribute_commissions():
    """
    Manually run an attribution pass.
    Expected JSON: {"buyerId": 1, "amount": 8000, "reference": "manual:123", "policy": "skip"}
    """
    data = json_body()
    buyer_id = parse_int(data.get("buyerId"), "buyerId", minimum=1)
    outcome = CommissionAttributionHelper.attribute_commissions(
        buyer_id, data.get("amount"), data.get("reference"), policy=data.get("policy"),
    )
    current_app.logger.info(f"[ADMIN] {current_user.id} ran attribution {outcome.get('reference')}")
    return jsonify({"outcome": outcome}), 200 if outcome.get("duplicate") else 201


# ==========================================================
#                  ESCROW
# ==========================================================
@admin_bp.route("/admin/escrow", methods=["GET"])
@admin_required
def list_escrow():
    page, limit = pagination_args(request.args)
    items, meta = paginate(EscrowHelper.list_escrow(request.args.get("status")), page, limit)
    return jsonify({"escrow": [e.to_dict() for e in items], "pagination": meta}), 200


@admin_bp.route("/admin/escrow/<int:escrow_id>/release", methods=["POST"])
@admin_required
def release_escrow(escrow_id):
    data = request.get_json(silent=True) or {}
    beneficiary_id = data.get("beneficiaryId")
    if beneficiary_id is not None:
        beneficiary_id = parse_int(beneficiary_id, "beneficiaryId", minimum=1)
    escrow = EscrowHelper.release(escrow_id, current_user.id, beneficiary_id=beneficiary_id)
    return jsonify({"message": "Escrow released", "escrow": escrow.to_dict()}), 200


@admin_bp.route("/admin/escrow/<int:escrow_id>/forfeit", methods=["POST"])
@admin_required
def forfeit_escrow(escrow_id):
    escrow = EscrowHelper.forfeit(escrow_id, current_user.id)
    return jsonify({"message": "Escrow forfeited", "escrow": escrow.to_dict()}), 200


# ==========================================================
#                  PURCHASES
# ==========================================================
@admin_bp.route("/admin/purchases", methods=["GET"])
@admin_required
def list_purchases():
    page, limit = pagination_args(request.args)
    items, meta = paginate(PurchaseHelper.list_purchases(status=request.args.get("status")), page, limit)
    return jsonify({"purchases": [p.to_dict() for p in items], "pagination": meta}), 200


@admin_bp.route("/admin/purchases/<int:purchase_id>/approve", methods=["POST"])
@admin_required
def approve_purchase(purchase_id):
    data = request.get_json(silent=True) or {}
    purchase, outcome = PurchaseHelper.approve_purchase(purchase_id, current_user.id, policy=data.get("policy"))
    return jsonify({
        "message": "Purchase approved",
        "purchase": purchase.to_dict(),
        "commissions": outcome,
    }), 200


@admin_bp.route("/admin/purchases/<int:purchase_id>/reject", methods=["POST"])
@admin_required
def reject_purchase(purchase_id):
    data = request.get_json(silent=True) or {}
    purchase = PurchaseHelper.reject_purchase(purchase_id, current_user.id, reason=data.get("reason"))
    return jsonify({"message": "Purchase rejected", "purchase": purchase.to_dict()}), 200


# ==========================================================
#                  WITHDRAWALS
# ==========================================================
@admin_bp.route("/admin/withdrawals", methods=["GET"])
@admin_required
def list_withdrawals():
    page, limit = pagination_args(request.args)
    items, meta = paginate(WithdrawalHelper.list_withdrawals(request.args.get("status")), page, limit)
    return jsonify({"withdrawals": [w.to_dict() for w in items], "pagination": meta}), 200


@admin_bp.route("/admin/withdrawals/stats", methods=["GET"])
@admin_required
def withdrawal_stats():
    return jsonify({"stats": WithdrawalHelper.stats()}), 200


@admin_bp.route("/admin/withdrawals/<int:withdrawal_id>", methods=["GET"])
@admin_required
def get_withdrawal(withdrawal_id):
    withdrawal = WithdrawalHelper.list_withdrawals().filter_by(id=withdrawal_id).first()
    if withdrawal is None:
        raise NotFoundError(f"Withdrawal request {withdrawal_id} not found")
    data = withdrawal.to_dict()
    data["user"] = withdrawal.user.to_dict() if withdrawal.user else None
    return jsonify({"withdrawal": data}), 200


@admin_bp.route("/admin/withdrawals/<int:withdrawal_id>", methods=["PATCH"])
@admin_required
def process_withdrawal(withdrawal_id):
    """
    Expected JSON:
    {
        "status": "APPROVED" | "REJECTED",
        "notes": "...",
        "rejectionReason": "..."
    }
    """
    data = json_body()
    status = (data.get("status") or "").upper()

    if status == WithdrawalStatus.APPROVED.value:
        withdrawal = WithdrawalHelper.approve_withdrawal(withdrawal_id, current_user.id, notes=data.get("notes"))
    elif status == WithdrawalStatus.REJECTED.value:
        reason = data.get("rejectionReason") or data.get("notes")
        withdrawal = WithdrawalHelper.reject_withdrawal(withdrawal_id, current_user.id, reason=reason)
    else:
        raise ValidationError("status must be APPROVED or REJECTED")

    return jsonify({
        "message": f"Withdrawal {status.lower()}",
        "withdrawal": withdrawal.to_dict(),
    }), 200


# ==========================================================
#                  BALANCE AUDIT
# ==========================================================
@admin_bp.route("/admin/balances/audit", methods=["GET"])
@admin_required
def audit_balances():
    drift = LedgerHelper.audit_balances()
    return jsonify({"drift": drift, "consistent": not drift}), 200


@admin_bp.route("/admin/balances/<int:user_id>/rebuild", methods=["POST"])
@admin_required
def rebuild_balances(user_id):
    with unit_of_work():
        sums = LedgerHelper.rebuild_cached_balances(user_id)
    current_app.logger.info(f"[ADMIN] {current_user.id} rebuilt cached balances for user {user_id}")
    return jsonify({
        "userId": user_id,
        "balances": {k: float(v) for k, v in sums.items()},
    }), 200


# ==========================================================
#                  NETWORK
# ==========================================================
@admin_bp.route("/admin/users/<int:user_id>/network", methods=["GET"])
@admin_required
def user_network(user_id):
    if db.session.get(User, user_id) is None:
        raise NotFoundError(f"User {user_id} not found")
    return jsonify({"network": ReferralNetworkHelper.network_summary(user_id)}), 200
