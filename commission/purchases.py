# commission/purchases.py
from decimal import Decimal
from typing import Dict, Any, Tuple

from extensions import db
from models import (
    User, Purchase, MembershipPlan, PurchaseKind, PurchaseStatus, utcnow,
)
from utils import parse_amount
from commission.exceptions import ValidationError, NotFoundError, InvalidTransitionError
from commission.attribution import CommissionAttributionHelper
from commission.ledger import unit_of_work
from logger import commission_logger


DEFAULT_PLANS = [
    ("BASIC", Decimal("1000"), Decimal("2000"), "Perfect for beginners - Start your MCNmart journey"),
    ("STANDARD", Decimal("3000"), Decimal("4000"), "Most popular choice - Enhanced earning potential"),
    ("PREMIUM", Decimal("8000"), Decimal("10000"), "Maximum earning potential - For serious entrepreneurs"),
]


class PurchaseHelper:
    """Manual-payment purchases: the buyer submits, an admin approves, approval pays the upline."""

    @staticmethod
    def seed_plans():
        existing = {plan.name for plan in MembershipPlan.query.all()}
        for name, price, minimum_withdrawal, description in DEFAULT_PLANS:
            if name in existing:
                continue
            db.session.add(MembershipPlan(
                name=name,
                price=price,
                minimum_withdrawal=minimum_withdrawal,
                description=description,
                is_active=True,
            ))
        db.session.commit()
        return MembershipPlan.query.order_by(MembershipPlan.price.asc()).all()

    @staticmethod
    def active_plans():
        return MembershipPlan.query.filter_by(is_active=True).order_by(MembershipPlan.price.asc()).all()

    @staticmethod
    def submit_purchase(user_id: int, data: Dict[str, Any]) -> Purchase:
        """
        Record a PENDING purchase awaiting payment confirmation.
        MEMBERSHIP purchases take their amount from the plan; PRODUCT purchases
        carry an explicit amount.
        """
        user = db.session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")

        kind = str(data.get("kind") or PurchaseKind.MEMBERSHIP.value).upper()
        if kind not in {k.value for k in PurchaseKind}:
            raise ValidationError("kind must be MEMBERSHIP or PRODUCT")

        payment_method = data.get("paymentMethod")
        if not isinstance(payment_method, str) or not payment_method.strip():
            raise ValidationError("paymentMethod is required")

        payment_details = data.get("paymentDetails") or {}
        if not isinstance(payment_details, dict):
            raise ValidationError("paymentDetails must be an object")

        plan = None
        if kind == PurchaseKind.MEMBERSHIP.value:
            plan_name = str(data.get("plan") or "").strip().upper()
            if not plan_name:
                raise ValidationError("plan is required for membership purchases")
            plan = MembershipPlan.query.filter_by(name=plan_name, is_active=True).first()
            if plan is None:
                raise ValidationError(f"Invalid membership plan {plan_name}")
            amount = Decimal(str(plan.price))
        else:
            amount = parse_amount(data.get("amount"))

        purchase = Purchase(
            user_id=user.id,
            plan_id=plan.id if plan else None,
            kind=kind,
            amount=amount,
            payment_method=payment_method.strip().lower(),
            payment_details=payment_details,
            status=PurchaseStatus.PENDING.value,
        )
        db.session.add(purchase)
        db.session.commit()
        commission_logger.info(f"Purchase #{purchase.id} submitted by user {user.id}: {kind} {amount}")
        return purchase

    @staticmethod
    def _locked_pending(purchase_id: int) -> Purchase:
        purchase = Purchase.query.filter_by(id=purchase_id).with_for_update().first()
        if purchase is None:
            raise NotFoundError(f"Purchase {purchase_id} not found")
        if purchase.status != PurchaseStatus.PENDING.value:
            raise InvalidTransitionError(f"Purchase {purchase_id} is already {purchase.status}")
        return purchase

    @staticmethod
    def approve_purchase(purchase_id: int, admin_id: int, policy: str = None) -> Tuple[Purchase, Dict[str, Any]]:
        """
        Complete the purchase and pay the upline in one transaction. If the
        purchase itself cannot be written, no commission is written either.
        """
        with unit_of_work():
            purchase = PurchaseHelper._locked_pending(purchase_id)
            purchase.status = PurchaseStatus.COMPLETED.value
            purchase.reviewed_by = admin_id
            purchase.reviewed_at = utcnow()

            if purchase.kind == PurchaseKind.MEMBERSHIP.value and purchase.plan is not None:
                purchase.buyer.membership_plan = purchase.plan.name
                purchase.buyer.membership_status = "ACTIVE"
            db.session.flush()

            outcome = CommissionAttributionHelper.attribute_commissions(
                purchase.user_id,
                purchase.amount,
                f"purchase:{purchase.id}",
                policy=policy,
                commit=False,
            )

        commission_logger.info(
            f"Purchase #{purchase_id} approved by admin {admin_id}; credited {outcome.get('creditedTotal')}"
        )
        return purchase, outcome

    @staticmethod
    def reject_purchase(purchase_id: int, admin_id: int, reason: str = None) -> Purchase:
        with unit_of_work():
            purchase = PurchaseHelper._locked_pending(purchase_id)
            purchase.status = PurchaseStatus.FAILED.value
            purchase.reviewed_by = admin_id
            purchase.reviewed_at = utcnow()
            purchase.rejection_reason = reason

        commission_logger.info(f"Purchase #{purchase_id} rejected by admin {admin_id}: {reason}")
        return purchase

    @staticmethod
    def list_purchases(status: str = None, user_id: int = None):
        query = Purchase.query
        if status:
            query = query.filter(Purchase.status == status.upper())
        if user_id:
            query = query.filter(Purchase.user_id == user_id)
        return query.order_by(Purchase.created_at.desc(), Purchase.id.desc())
