"""Tests for purchase submission and approval, which is what triggers attribution."""
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import User, Purchase, Transaction, CommissionEvent, PurchaseStatus, TransactionType
from commission.purchases import PurchaseHelper
from commission.exceptions import ValidationError, InvalidTransitionError, NotFoundError

MEMBERSHIP = {"kind": "MEMBERSHIP", "plan": "premium", "paymentMethod": "JazzCash",
              "paymentDetails": {"transactionId": "JC-123"}}


@pytest.fixture
def plans(ctx):
    return PurchaseHelper.seed_plans()


class TestSubmit:

    def test_membership_amount_comes_from_plan(self, make_user, plans):
        buyer = make_user("Buyer")
        purchase = PurchaseHelper.submit_purchase(buyer.id, MEMBERSHIP)
        assert purchase.status == PurchaseStatus.PENDING.value
        assert Decimal(str(purchase.amount)) == Decimal("8000.00")
        assert purchase.payment_method == "jazzcash"

    def test_product_needs_amount(self, make_user, plans):
        buyer = make_user("Buyer")
        with pytest.raises(ValidationError):
            PurchaseHelper.submit_purchase(buyer.id, {"kind": "PRODUCT", "paymentMethod": "bank"})
        purchase = PurchaseHelper.submit_purchase(
            buyer.id, {"kind": "PRODUCT", "amount": "1499.50", "paymentMethod": "bank"}
        )
        assert Decimal(str(purchase.amount)) == Decimal("1499.50")

    @pytest.mark.parametrize("payload", [
        {**MEMBERSHIP, "plan": "GOLD"},
        {**MEMBERSHIP, "plan": None},
        {**MEMBERSHIP, "kind": "SUBSCRIPTION"},
        {**MEMBERSHIP, "paymentMethod": ""},
        {**MEMBERSHIP, "paymentDetails": "JC-123"},
    ])
    def test_invalid_submission(self, make_user, plans, payload):
        buyer = make_user("Buyer")
        with pytest.raises(ValidationError):
            PurchaseHelper.submit_purchase(buyer.id, payload)
        assert Purchase.query.count() == 0


class TestApproval:

    def test_approval_pays_upline_and_activates_plan(self, make_chain, set_rates, plans):
        set_rates({1: "15", 2: "10"})
        u1, u2, u3 = make_chain(3, prefix="U")
        admin = make_chain(1, prefix="Admin")[0]
        purchase = PurchaseHelper.submit_purchase(u3.id, MEMBERSHIP)

        approved, outcome = PurchaseHelper.approve_purchase(purchase.id, admin.id)

        assert approved.status == PurchaseStatus.COMPLETED.value
        assert outcome["reference"] == f"purchase:{purchase.id}"
        assert outcome["creditedTotal"] == 2000.0

        db.session.expire_all()
        buyer = db.session.get(User, u3.id)
        assert buyer.membership_plan == "PREMIUM"
        assert buyer.membership_status == "ACTIVE"
        assert db.session.get(User, u2.id).balance == Decimal("1200.00")
        assert db.session.get(User, u1.id).balance == Decimal("800.00")

    def test_second_approval_refused(self, make_chain, default_rates, plans):
        u1, u2 = make_chain(2)
        purchase = PurchaseHelper.submit_purchase(u2.id, MEMBERSHIP)
        PurchaseHelper.approve_purchase(purchase.id, u1.id)

        with pytest.raises(InvalidTransitionError):
            PurchaseHelper.approve_purchase(purchase.id, u1.id)
        assert Transaction.query.filter_by(type=TransactionType.COMMISSION.value).count() == 1

    def test_rejection_pays_nobody(self, make_chain, default_rates, plans):
        u1, u2 = make_chain(2)
        purchase = PurchaseHelper.submit_purchase(u2.id, MEMBERSHIP)

        rejected = PurchaseHelper.reject_purchase(purchase.id, u1.id, reason="No payment received")

        assert rejected.status == PurchaseStatus.FAILED.value
        assert rejected.rejection_reason == "No payment received"
        assert Transaction.query.count() == 0
        with pytest.raises(InvalidTransitionError):
            PurchaseHelper.approve_purchase(purchase.id, u1.id)

    def test_failed_attribution_rolls_back_purchase(self, make_chain, default_rates, plans, monkeypatch):
        """No completed purchase without its attribution pass, and the reverse."""
        from commission.attribution import CommissionAttributionHelper
        u1, u2 = make_chain(2)
        purchase = PurchaseHelper.submit_purchase(u2.id, MEMBERSHIP)

        def broken(*args, **kwargs):
            raise ValidationError("policy misconfigured")

        monkeypatch.setattr(CommissionAttributionHelper, "resolve_policy", staticmethod(broken))
        with pytest.raises(ValidationError):
            PurchaseHelper.approve_purchase(purchase.id, u1.id)

        db.session.expire_all()
        assert db.session.get(Purchase, purchase.id).status == PurchaseStatus.PENDING.value
        assert CommissionEvent.query.count() == 0
        assert Transaction.query.count() == 0

    def test_concurrent_attribution_rolls_back_approval(self, make_chain, default_rates, plans, monkeypatch):
        """Another pass already committed purchase:{id}; this approval must not complete without it."""
        from commission.attribution import CommissionAttributionHelper
        u1, u2 = make_chain(2)
        purchase = PurchaseHelper.submit_purchase(u2.id, MEMBERSHIP)
        db.session.add(CommissionEvent(
            reference=f"purchase:{purchase.id}", buyer_id=u2.id, amount=Decimal("8000.00"), policy="skip",
        ))
        db.session.commit()
        monkeypatch.setattr(CommissionAttributionHelper, "find_event", staticmethod(lambda reference: None))

        with pytest.raises(IntegrityError):
            PurchaseHelper.approve_purchase(purchase.id, u1.id)

        db.session.expire_all()
        assert db.session.get(Purchase, purchase.id).status == PurchaseStatus.PENDING.value
        assert db.session.get(User, u2.id).membership_plan != "PREMIUM"
        assert CommissionEvent.query.count() == 1
        assert Transaction.query.count() == 0

    def test_unknown_purchase(self, ctx):
        with pytest.raises(NotFoundError):
            PurchaseHelper.approve_purchase(12345, 1)
