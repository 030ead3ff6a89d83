# commission/attribution.py
from decimal import Decimal
from typing import Dict, Any, List, Optional
from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from extensions import db
from models import (
    User, CommissionEvent, CommissionEscrow, TransactionType, TransactionStatus,
    EscrowStatus,
)
from utils import parse_amount, round_money
from commission.exceptions import CommissionError, ValidationError
from commission.ledger import LedgerHelper
from commission.network import ReferralNetworkHelper, ChainLink, MAX_REFERRAL_DEPTH
from commission.rates import CommissionRateHelper
from logger import commission_logger


POLICY_SKIP = "skip"
POLICY_ESCROW = "escrow"
POLICIES = (POLICY_SKIP, POLICY_ESCROW)


def _money(value) -> float:
    return float(round_money(value))


class CommissionAttributionHelper:
    """
    Turns one qualifying purchase into commission credits for the buyer's
    upline, up to five levels. One call is one attribution pass: everything
    it writes lands in the same database transaction.
    """

    @staticmethod
    def resolve_policy(policy: Optional[str] = None) -> str:
        policy = (policy or current_app.config.get("MISSING_ANCESTOR_POLICY") or POLICY_SKIP).lower()
        if policy not in POLICIES:
            raise ValidationError(f"Unknown missing-ancestor policy {policy}; expected one of {', '.join(POLICIES)}")
        return policy

    @staticmethod
    def find_event(reference: str) -> Optional[CommissionEvent]:
        return CommissionEvent.query.filter_by(reference=reference).first()

    @staticmethod
    def attribute_commissions(buyer_id: int, amount, reference: str, policy: str = None,
                              commit: bool = True) -> Dict[str, Any]:
        """
        Credit the buyer's ancestors for a purchase of `amount`.

        `reference` identifies the triggering event; a second call with the same
        reference writes nothing and returns the first outcome with duplicate=True.
        With commit=False the caller owns the transaction boundary.
        """
        amount = parse_amount(amount)
        if not isinstance(reference, str) or not reference.strip():
            raise ValidationError("reference is required")
        reference = reference.strip()
        if len(reference) > 120:
            raise ValidationError("reference must be at most 120 characters")
        policy = CommissionAttributionHelper.resolve_policy(policy)

        existing = CommissionAttributionHelper.find_event(reference)
        if existing is not None:
            commission_logger.info(f"Attribution for {reference} already processed as event {existing.id}; skipping")
            return {**(existing.outcome or {}), "duplicate": True}

        buyer = db.session.get(User, buyer_id)
        if buyer is None:
            commission_logger.warning(f"Attribution for {reference}: buyer {buyer_id} not found, nothing credited")
            return CommissionAttributionHelper._empty_outcome(reference, buyer_id, amount, policy, "buyer_not_found")

        event = CommissionEvent(reference=reference, buyer_id=buyer.id, amount=amount, policy=policy)
        db.session.add(event)
        try:
            db.session.flush()
        except IntegrityError:
            # Lost a race with a concurrent pass for the same event.
            db.session.rollback()
            if not commit:
                raise
            existing = CommissionAttributionHelper.find_event(reference)
            return {**(existing.outcome or {}), "duplicate": True} if existing else \
                CommissionAttributionHelper._empty_outcome(reference, buyer_id, amount, policy, "duplicate")

        try:
            outcome = CommissionAttributionHelper._run_pass(event, buyer, amount, policy)
            event.credited_total = Decimal(str(outcome["creditedTotal"]))
            event.outcome = outcome
            db.session.flush()
            if commit:
                db.session.commit()
        except Exception:
            if commit:
                db.session.rollback()
            raise

        commission_logger.info(
            f"Attribution {reference}: buyer={buyer.id} amount={amount} policy={policy} "
            f"credits={len(outcome['credits'])} skipped={len(outcome['skipped'])} "
            f"escrowed={len(outcome['escrowed'])} failed={len(outcome['failed'])} "
            f"total={outcome['creditedTotal']}"
        )
        return outcome

    @staticmethod
    def _empty_outcome(reference, buyer_id, amount, policy, reason) -> Dict[str, Any]:
        return {
            "eventId": None,
            "reference": reference,
            "buyerId": buyer_id,
            "amount": _money(amount),
            "policy": policy,
            "duplicate": False,
            "credits": [],
            "skipped": [{"level": None, "reason": reason}],
            "escrowed": [],
            "failed": [],
            "creditedTotal": 0.0,
        }

    @staticmethod
    def _run_pass(event: CommissionEvent, buyer: User, amount: Decimal, policy: str) -> Dict[str, Any]:
        max_level = min(current_app.config.get("COMMISSION_MAX_LEVEL", MAX_REFERRAL_DEPTH), MAX_REFERRAL_DEPTH)
        chain: List[ChainLink] = ReferralNetworkHelper.get_upline(buyer, max_level=max_level)
        rates = {entry.level: entry.rate for entry in CommissionRateHelper.get_active_settings(fresh=True)}

        outcome = {
            "eventId": event.id,
            "reference": event.reference,
            "buyerId": buyer.id,
            "amount": _money(amount),
            "policy": policy,
            "duplicate": False,
            "credits": [],
            "skipped": [],
            "escrowed": [],
            "failed": [],
            "creditedTotal": 0.0,
        }
        credited_total = Decimal("0.00")

        for link in chain:
            rate = rates.get(link.level)
            if rate is None:
                outcome["skipped"].append({"level": link.level, "reason": "no_active_rate"})
                continue

            commission = CommissionRateHelper.commission_for(amount, rate)
            if commission <= 0:
                outcome["skipped"].append({"level": link.level, "reason": "zero_amount"})
                continue

            # Account status does not matter here, only whether the sponsor still exists.
            if link.user is None:
                CommissionAttributionHelper._handle_missing(event, link, rate, commission, policy, outcome)
                continue

            credit = CommissionAttributionHelper._credit(event, link.user, link.level, rate, commission, buyer.id)
            if credit is None:
                outcome["failed"].append({"level": link.level, "userId": link.user.id})
                continue
            outcome["credits"].append(credit)
            credited_total += commission

        outcome["creditedTotal"] = _money(credited_total)
        return outcome

    @staticmethod
    def _credit(event, user, level, rate, commission, buyer_id) -> Optional[Dict[str, Any]]:
        """One ancestor's credit in its own savepoint. Returns None if it could not be written."""
        try:
            with db.session.begin_nested():
                transaction = LedgerHelper.post_transaction(
                    user.id,
                    TransactionType.COMMISSION.value,
                    commission,
                    status=TransactionStatus.COMPLETED.value,
                    reference=f"COMM-{event.id}-L{level}",
                    description=f"Level {level} referral commission ({rate}%)",
                    meta={
                        "level": level,
                        "rate": str(rate),
                        "buyerId": buyer_id,
                        "eventId": event.id,
                        "eventReference": event.reference,
                        "sourceAmount": str(event.amount),
                    },
                )
        except (SQLAlchemyError, CommissionError) as e:
            commission_logger.error(
                f"Event {event.reference}: crediting user {user.id} at level {level} failed: {e}"
            )
            return None

        commission_logger.info(
            f"💰 Event {event.reference}: level {level} -> user {user.id} {commission} ({rate}%) TXN#{transaction.id}"
        )
        return {
            "level": level,
            "userId": user.id,
            "rate": float(rate),
            "amount": _money(commission),
            "transactionId": transaction.id,
        }

    @staticmethod
    def _handle_missing(event, link, rate, commission, policy, outcome) -> None:
        """A sponsor code that resolves to nobody: hold the level's commission or record the loss."""
        reason = "sponsor_not_found"
        if policy == POLICY_ESCROW:
            try:
                with db.session.begin_nested():
                    escrow = CommissionEscrow(
                        event_id=event.id,
                        level=link.level,
                        amount=commission,
                        rate=rate,
                        referral_code=link.referral_code,
                        beneficiary_id=None,
                        reason=reason,
                        status=EscrowStatus.HELD.value,
                    )
                    db.session.add(escrow)
                    db.session.flush()
            except SQLAlchemyError as e:
                commission_logger.error(f"Event {event.reference}: escrow for level {link.level} failed: {e}")
                outcome["failed"].append({"level": link.level, "userId": None})
                return
            commission_logger.info(
                f"Event {event.reference}: level {link.level} {commission} held in escrow #{escrow.id} ({reason})"
            )
            outcome["escrowed"].append({
                "level": link.level,
                "escrowId": escrow.id,
                "amount": _money(commission),
                "reason": reason,
                "referralCode": link.referral_code,
            })
            return

        commission_logger.warning(
            f"Event {event.reference}: level {link.level} commission {commission} skipped ({reason}, "
            f"code {link.referral_code})"
        )
        outcome["skipped"].append({
            "level": link.level,
            "reason": reason,
            "referralCode": link.referral_code,
            "amount": _money(commission),
        })
