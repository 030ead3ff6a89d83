"""
Tests for commission attribution.

Checks the level-by-level credits, the depth cap, broken chains, idempotent
replays, per-ancestor failure isolation and the missing-ancestor policies.
"""
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from extensions import db
from models import (
    User, Transaction, CommissionEvent, CommissionEscrow, CommissionSetting, TransactionType, TransactionStatus,
)
from commission.attribution import CommissionAttributionHelper
from commission.ledger import LedgerHelper
from commission.rates import CommissionRateHelper
from commission.exceptions import ValidationError


def commissions_for(user):
    return Transaction.query.filter_by(user_id=user.id, type=TransactionType.COMMISSION.value).all()


def reload(user):
    db.session.expire_all()
    return db.session.get(User, user.id)


class TestLevelCredits:

    def test_two_level_purchase(self, make_chain, set_rates):
        """U1 refers U2, U2 refers U3, U3 buys for 8000: U2 gets 1200, U1 gets 800."""
        set_rates({1: "15", 2: "10"})
        u1, u2, u3 = make_chain(3, prefix="U")

        outcome = CommissionAttributionHelper.attribute_commissions(u3.id, Decimal("8000"), "purchase:1")

        u2_tx = commissions_for(u2)
        u1_tx = commissions_for(u1)
        assert len(u2_tx) == 1 and len(u1_tx) == 1
        assert Decimal(str(u2_tx[0].amount)) == Decimal("1200.00")
        assert Decimal(str(u1_tx[0].amount)) == Decimal("800.00")
        assert u2_tx[0].status == TransactionStatus.COMPLETED.value
        assert u2_tx[0].meta["level"] == 1 and u1_tx[0].meta["level"] == 2

        assert outcome["creditedTotal"] == 2000.0
        assert [c["level"] for c in outcome["credits"]] == [1, 2]

        assert reload(u2).balance == Decimal("1200.00")
        assert reload(u2).referral_earnings == Decimal("1200.00")
        assert reload(u1).total_earnings == Decimal("800.00")
        assert commissions_for(u3) == []

    def test_inactive_level_two(self, make_chain, set_rates):
        """Same purchase with level 2 switched off: only U2 is credited."""
        set_rates({1: "15", 2: "10"}, inactive={2})
        u1, u2, u3 = make_chain(3, prefix="U")

        outcome = CommissionAttributionHelper.attribute_commissions(u3.id, Decimal("8000"), "purchase:1")

        assert len(commissions_for(u2)) == 1
        assert commissions_for(u1) == []
        assert reload(u1).balance == Decimal("0.00")
        assert {"level": 2, "reason": "no_active_rate"} in outcome["skipped"]

    @pytest.mark.parametrize("length", [1, 2, 3, 4, 5])
    def test_chain_of_n_ancestors(self, make_chain, default_rates, length):
        chain = make_chain(length + 1)
        buyer = chain[-1]
        CommissionAttributionHelper.attribute_commissions(buyer.id, Decimal("1000"), f"purchase:{length}")

        expected = {1: "200.00", 2: "150.00", 3: "100.00", 4: "80.00", 5: "70.00"}
        assert Transaction.query.filter_by(type=TransactionType.COMMISSION.value).count() == length
        for level in range(1, length + 1):
            ancestor = chain[-1 - level]
            [tx] = commissions_for(ancestor)
            assert Decimal(str(tx.amount)) == Decimal(expected[level])

    def test_levels_beyond_five_never_paid(self, make_chain, default_rates):
        chain = make_chain(9)
        CommissionAttributionHelper.attribute_commissions(chain[-1].id, Decimal("1000"), "purchase:long")

        assert Transaction.query.filter_by(type=TransactionType.COMMISSION.value).count() == 5
        for ancestor in chain[:3]:
            assert commissions_for(ancestor) == []

    def test_buyer_without_sponsor(self, make_user, default_rates):
        buyer = make_user("Solo")
        outcome = CommissionAttributionHelper.attribute_commissions(buyer.id, Decimal("1000"), "purchase:solo")
        assert outcome["credits"] == []
        assert Transaction.query.count() == 0

    def test_unknown_buyer_is_skipped(self, ctx, default_rates):
        outcome = CommissionAttributionHelper.attribute_commissions(4242, Decimal("1000"), "purchase:x")
        assert outcome["credits"] == []
        assert outcome["skipped"][0]["reason"] == "buyer_not_found"
        assert CommissionEvent.query.count() == 0

    @pytest.mark.parametrize("amount", [None, "abc", "-10", "0", "NaN", "10000000000"])
    def test_malformed_amount_writes_nothing(self, make_chain, default_rates, amount):
        chain = make_chain(2)
        with pytest.raises(ValidationError):
            CommissionAttributionHelper.attribute_commissions(chain[-1].id, amount, "purchase:bad")
        assert Transaction.query.count() == 0
        assert CommissionEvent.query.count() == 0

    def test_reference_required(self, make_chain, default_rates):
        chain = make_chain(2)
        with pytest.raises(ValidationError):
            CommissionAttributionHelper.attribute_commissions(chain[-1].id, "100", "  ")


class TestBrokenChains:

    def test_broken_link_skips_levels_above(self, make_user, default_rates):
        """Ancestor whose sponsor code resolves to nobody: levels past the break are skipped."""
        orphan = make_user("Orphan", referred_by="GONE0001")
        mid = make_user("Mid", sponsor=orphan)
        buyer = make_user("Buyer", sponsor=mid)

        outcome = CommissionAttributionHelper.attribute_commissions(buyer.id, Decimal("1000"), "purchase:broken")

        assert [c["userId"] for c in outcome["credits"]] == [mid.id, orphan.id]
        assert outcome["skipped"][0]["level"] == 3
        assert outcome["skipped"][0]["reason"] == "sponsor_not_found"
        assert Transaction.query.count() == 2

    def test_deactivated_ancestor_still_credited(self, make_user, set_rates):
        """U1 refers U2 (deactivated), U2 refers U3, U3 buys for 8000: both ancestors are paid."""
        set_rates({1: "15", 2: "10"})
        u1 = make_user("U1")
        u2 = make_user("U2", sponsor=u1, is_active=False)
        u3 = make_user("U3", sponsor=u2)

        outcome = CommissionAttributionHelper.attribute_commissions(u3.id, Decimal("8000"), "purchase:inactive")

        assert Transaction.query.filter_by(type=TransactionType.COMMISSION.value).count() == 2
        assert Decimal(str(commissions_for(u2)[0].amount)) == Decimal("1200.00")
        assert Decimal(str(commissions_for(u1)[0].amount)) == Decimal("800.00")
        assert outcome["skipped"] == []
        assert reload(u2).balance == Decimal("1200.00")

    def test_cycle_in_chain(self, make_user, default_rates):
        x = make_user("X", referral_code="XCODE", referred_by="YCODE")
        y = make_user("Y", referral_code="YCODE", referred_by="XCODE")
        buyer = make_user("Buyer", sponsor=x)

        outcome = CommissionAttributionHelper.attribute_commissions(buyer.id, Decimal("1000"), "purchase:cycle")
        assert [c["userId"] for c in outcome["credits"]] == [x.id, y.id]


class TestIdempotence:

    def test_replay_does_not_double_credit(self, make_chain, default_rates):
        u1, u2, u3 = make_chain(3)
        first = CommissionAttributionHelper.attribute_commissions(u3.id, Decimal("1000"), "purchase:7")
        second = CommissionAttributionHelper.attribute_commissions(u3.id, Decimal("1000"), "purchase:7")

        assert second["duplicate"] is True
        assert second["credits"] == first["credits"]
        assert Transaction.query.count() == 2
        assert reload(u2).balance == Decimal("200.00")
        assert CommissionEvent.query.count() == 1

    def test_different_references_both_pay(self, make_chain, default_rates):
        u1, u2 = make_chain(2)
        CommissionAttributionHelper.attribute_commissions(u2.id, Decimal("1000"), "purchase:1")
        CommissionAttributionHelper.attribute_commissions(u2.id, Decimal("1000"), "purchase:2")
        assert reload(u1).balance == Decimal("400.00")

    def test_lost_race_returns_stored_outcome(self, make_chain, default_rates, monkeypatch):
        """A concurrent pass commits the same reference between the pre-check and the insert."""
        u1, u2 = make_chain(2)
        first = CommissionAttributionHelper.attribute_commissions(u2.id, Decimal("1000"), "purchase:race")
        find_event = CommissionAttributionHelper.find_event
        lookups = []

        def stale_precheck(reference):
            lookups.append(reference)
            return None if len(lookups) == 1 else find_event(reference)

        monkeypatch.setattr(CommissionAttributionHelper, "find_event", staticmethod(stale_precheck))
        second = CommissionAttributionHelper.attribute_commissions(u2.id, Decimal("1000"), "purchase:race")

        assert len(lookups) == 2
        assert second["duplicate"] is True
        assert second["credits"] == first["credits"]
        assert Transaction.query.count() == 1
        assert CommissionEvent.query.count() == 1
        assert reload(u1).balance == Decimal("200.00")

    def test_lost_race_inside_caller_transaction_raises(self, make_chain, default_rates, monkeypatch):
        u1, u2 = make_chain(2)
        CommissionAttributionHelper.attribute_commissions(u2.id, Decimal("1000"), "purchase:race")
        monkeypatch.setattr(CommissionAttributionHelper, "find_event", staticmethod(lambda reference: None))

        with pytest.raises(IntegrityError):
            CommissionAttributionHelper.attribute_commissions(
                u2.id, Decimal("1000"), "purchase:race", commit=False
            )

        db.session.rollback()
        assert Transaction.query.count() == 1
        assert CommissionEvent.query.count() == 1
        assert reload(u1).balance == Decimal("200.00")


class TestRateChanges:

    def test_rate_change_made_elsewhere_applies_to_next_pass(self, app, make_chain, set_rates):
        """The per-process rate cache is warm, but the table row has changed underneath it."""
        app.config["COMMISSION_CACHE_SECONDS"] = 300
        set_rates({1: "15", 2: "10"})
        u1, u2, u3 = make_chain(3, prefix="U")
        assert [entry.level for entry in CommissionRateHelper.get_active_settings()] == [1, 2]

        CommissionSetting.query.filter_by(level=2).update({"is_active": False})
        db.session.commit()
        assert [entry.level for entry in CommissionRateHelper.get_active_settings()] == [1, 2]

        outcome = CommissionAttributionHelper.attribute_commissions(u3.id, Decimal("8000"), "purchase:1")

        assert [credit["level"] for credit in outcome["credits"]] == [1]
        assert commissions_for(u1) == []
        assert {"level": 2, "reason": "no_active_rate"} in outcome["skipped"]

    def test_cache_ignored_when_disabled(self, app, set_rates):
        app.config["COMMISSION_CACHE_SECONDS"] = 300
        set_rates({1: "15"})
        CommissionRateHelper.get_active_settings()
        app.config["COMMISSION_CACHE_SECONDS"] = 0

        CommissionSetting.query.filter_by(level=1).update({"is_active": False})
        db.session.commit()
        assert CommissionRateHelper.get_active_settings() == []


class TestFailureIsolation:

    def test_one_ancestor_failure_does_not_block_others(self, make_chain, default_rates, monkeypatch):
        u1, u2, u3, buyer = make_chain(4)
        original = LedgerHelper.post_transaction

        def flaky_post(user_id, *args, **kwargs):
            if user_id == u2.id:
                raise SQLAlchemyError("simulated write failure")
            return original(user_id, *args, **kwargs)

        monkeypatch.setattr(LedgerHelper, "post_transaction", staticmethod(flaky_post))

        outcome = CommissionAttributionHelper.attribute_commissions(buyer.id, Decimal("1000"), "purchase:flaky")

        assert outcome["failed"] == [{"level": 2, "userId": u2.id}]
        assert [c["userId"] for c in outcome["credits"]] == [u3.id, u1.id]
        assert commissions_for(u2) == []
        assert reload(u2).balance == Decimal("0.00")
        assert reload(u1).balance == Decimal("100.00")


class TestMissingAncestorPolicies:

    def test_escrow_holds_commission(self, make_user, default_rates):
        buyer = make_user("Buyer", referred_by="GONE0002")

        outcome = CommissionAttributionHelper.attribute_commissions(
            buyer.id, Decimal("1000"), "purchase:escrow", policy="escrow"
        )

        assert len(outcome["escrowed"]) == 1
        escrow = db.session.get(CommissionEscrow, outcome["escrowed"][0]["escrowId"])
        assert escrow.level == 1
        assert Decimal(str(escrow.amount)) == Decimal("200.00")
        assert escrow.referral_code == "GONE0002"
        assert escrow.beneficiary_id is None
        assert escrow.status == "HELD"
        assert Transaction.query.count() == 0

    def test_escrow_policy_still_pays_existing_sponsors(self, make_user, default_rates):
        top = make_user("Top", is_active=False)
        buyer = make_user("Buyer", sponsor=top)

        outcome = CommissionAttributionHelper.attribute_commissions(
            buyer.id, Decimal("1000"), "purchase:escrow-inactive", policy="escrow"
        )
        assert outcome["escrowed"] == []
        assert len(commissions_for(top)) == 1

    def test_escrow_for_unresolved_code(self, make_user, default_rates):
        orphan = make_user("Orphan", referred_by="GONE0001")
        buyer = make_user("Buyer", sponsor=orphan)

        outcome = CommissionAttributionHelper.attribute_commissions(
            buyer.id, Decimal("1000"), "purchase:escrow-gone", policy="escrow"
        )
        [held] = outcome["escrowed"]
        assert held["level"] == 2
        assert held["referralCode"] == "GONE0001"
        assert held["reason"] == "sponsor_not_found"

    @pytest.mark.parametrize("policy", ["nope", "reattribute"])
    def test_unknown_policy_rejected(self, make_chain, default_rates, policy):
        chain = make_chain(2)
        with pytest.raises(ValidationError):
            CommissionAttributionHelper.attribute_commissions(chain[-1].id, "100", "purchase:p", policy=policy)
        assert CommissionEvent.query.count() == 0


class TestBalanceInvariant:

    def test_cached_balance_matches_ledger(self, make_chain, default_rates):
        chain = make_chain(6)
        for i in range(3):
            CommissionAttributionHelper.attribute_commissions(chain[-1].id, Decimal("999.99"), f"purchase:{i}")
            CommissionAttributionHelper.attribute_commissions(chain[-2].id, Decimal("1234.56"), f"product:{i}")

        db.session.expire_all()
        assert LedgerHelper.audit_balances() == []
        for user in chain:
            assert reload(user).balance == LedgerHelper.ledger_balance(user.id)["balance"]
