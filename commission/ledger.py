# commission/ledger.py
from contextlib import contextmanager
from decimal import Decimal
from typing import Dict, Any, List, Optional, Iterable
from sqlalchemy import func

from extensions import db
from models import (
    User, Transaction, TransactionType, TransactionStatus,
    DEBIT_TYPES, EARNING_TYPES, utcnow,
)
from utils import round_money, parse_amount
from commission.exceptions import ValidationError, NotFoundError, InvalidTransitionError
from logger import ledger_logger


ZERO = Decimal("0.00")
VALID_TYPES = {t.value for t in TransactionType}


@contextmanager
def unit_of_work():
    """
    One explicit transaction boundary: commit when the block finishes,
    roll everything back if it raises.
    """
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


class LedgerHelper:
    """
    Append-only ledger. The Transaction rows are authoritative; the money
    columns on User are a materialized view refreshed in the same database
    transaction as every COMPLETED row.
    """

    @staticmethod
    def cache_deltas(tx_type: str, amount: Decimal) -> Dict[str, Decimal]:
        """Changes a COMPLETED row of this type makes to the cached fields."""
        if tx_type in DEBIT_TYPES:
            return {"balance": -amount}
        deltas = {"balance": amount}
        if tx_type in EARNING_TYPES:
            deltas["total_earnings"] = amount
        if tx_type == TransactionType.COMMISSION.value:
            deltas["referral_earnings"] = amount
        return deltas

    @staticmethod
    def _apply_to_cache(user_id: int, tx_type: str, amount: Decimal) -> None:
        values = {
            getattr(User, field): getattr(User, field) + delta
            for field, delta in LedgerHelper.cache_deltas(tx_type, amount).items()
        }
        updated = User.query.filter(User.id == user_id).update(values, synchronize_session="fetch")
        if not updated:
            raise NotFoundError(f"User {user_id} not found")

    @staticmethod
    def post_transaction(user_id: int, tx_type: str, amount, status: str = TransactionStatus.COMPLETED.value,
                         reference: str = None, description: str = None,
                         meta: Optional[Dict[str, Any]] = None) -> Transaction:
        """
        Append a ledger row in the caller's transaction. A COMPLETED row moves
        the cached balances immediately; a PENDING one only when it completes.
        """
        if tx_type not in VALID_TYPES:
            raise ValidationError(f"Unknown transaction type {tx_type}")
        if status not in (TransactionStatus.PENDING.value, TransactionStatus.COMPLETED.value):
            raise ValidationError("New transactions must be PENDING or COMPLETED")
        amount = parse_amount(amount)

        if db.session.get(User, user_id) is None:
            raise NotFoundError(f"User {user_id} not found")

        transaction = Transaction(
            user_id=user_id,
            type=tx_type,
            amount=amount,
            status=status,
            reference=reference,
            description=description,
            meta=meta or {},
            processed_at=utcnow() if status == TransactionStatus.COMPLETED.value else None,
        )
        db.session.add(transaction)
        db.session.flush()

        if status == TransactionStatus.COMPLETED.value:
            LedgerHelper._apply_to_cache(user_id, tx_type, amount)

        ledger_logger.info(
            f"Ledger append: TXN#{transaction.id} user={user_id} type={tx_type} "
            f"amount={amount} status={status} ref={reference}"
        )
        return transaction

    @staticmethod
    def _locked_pending(tx_id: int) -> Transaction:
        transaction = Transaction.query.filter_by(id=tx_id).with_for_update().first()
        if transaction is None:
            raise NotFoundError(f"Transaction {tx_id} not found")
        if transaction.status != TransactionStatus.PENDING.value:
            raise InvalidTransitionError(
                f"Transaction {tx_id} is {transaction.status}; only PENDING transactions can change"
            )
        return transaction

    @staticmethod
    def complete_transaction(tx_id: int, actor_id: int = None) -> Transaction:
        """PENDING -> COMPLETED, applying the amount to the cached balances."""
        transaction = LedgerHelper._locked_pending(tx_id)
        transaction.status = TransactionStatus.COMPLETED.value
        transaction.processed_at = utcnow()
        transaction.meta = {**(transaction.meta or {}), "completedBy": actor_id,
                            "completedAt": transaction.processed_at.isoformat()}
        db.session.flush()
        LedgerHelper._apply_to_cache(transaction.user_id, transaction.type, Decimal(str(transaction.amount)))
        ledger_logger.info(f"TXN#{tx_id} PENDING -> COMPLETED by {actor_id}")
        return transaction

    @staticmethod
    def fail_transaction(tx_id: int, actor_id: int = None, reason: str = None) -> Transaction:
        """PENDING -> FAILED. Balances are untouched; the reason is kept in meta."""
        transaction = LedgerHelper._locked_pending(tx_id)
        transaction.status = TransactionStatus.FAILED.value
        transaction.processed_at = utcnow()
        transaction.meta = {
            **(transaction.meta or {}),
            "rejectionReason": reason,
            "rejectedAt": transaction.processed_at.isoformat(),
            "rejectedBy": actor_id,
        }
        db.session.flush()
        ledger_logger.info(f"TXN#{tx_id} PENDING -> FAILED by {actor_id}: {reason}")
        return transaction

    # -------------------------
    # Ledger sums
    # -------------------------
    @staticmethod
    def _sums_by_user(user_ids: Optional[Iterable[int]] = None) -> Dict[int, Dict[str, Decimal]]:
        query = db.session.query(
            Transaction.user_id, Transaction.type, func.coalesce(func.sum(Transaction.amount), 0)
        ).filter(Transaction.status == TransactionStatus.COMPLETED.value)
        if user_ids is not None:
            query = query.filter(Transaction.user_id.in_(list(user_ids)))

        sums: Dict[int, Dict[str, Decimal]] = {}
        for user_id, tx_type, total in query.group_by(Transaction.user_id, Transaction.type).all():
            bucket = sums.setdefault(user_id, {"balance": ZERO, "total_earnings": ZERO, "referral_earnings": ZERO})
            for field, delta in LedgerHelper.cache_deltas(tx_type, Decimal(str(total))).items():
                bucket[field] += delta
        for bucket in sums.values():
            for field in bucket:
                bucket[field] = round_money(bucket[field])
        return sums

    @staticmethod
    def ledger_balance(user_id: int) -> Dict[str, Decimal]:
        """Balance, total earnings and referral earnings recomputed from COMPLETED rows."""
        return LedgerHelper._sums_by_user([user_id]).get(
            user_id, {"balance": ZERO, "total_earnings": ZERO, "referral_earnings": ZERO}
        )

    @staticmethod
    def pending_debits(user_id: int) -> Decimal:
        total = db.session.query(func.coalesce(func.sum(Transaction.amount), 0)).filter(
            Transaction.user_id == user_id,
            Transaction.status == TransactionStatus.PENDING.value,
            Transaction.type.in_(list(DEBIT_TYPES)),
        ).scalar()
        return round_money(total or 0)

    @staticmethod
    def available_balance(user: User) -> Decimal:
        return round_money(Decimal(str(user.balance or 0)) - LedgerHelper.pending_debits(user.id))

    @staticmethod
    def audit_balances(user_ids: Optional[List[int]] = None) -> List[Dict[str, Any]]:
        """Users whose cached money fields disagree with the ledger."""
        query = User.query
        if user_ids is not None:
            query = query.filter(User.id.in_(user_ids))
        users = query.order_by(User.id.asc()).all()
        sums = LedgerHelper._sums_by_user([u.id for u in users])

        drift = []
        for user in users:
            expected = sums.get(user.id, {"balance": ZERO, "total_earnings": ZERO, "referral_earnings": ZERO})
            cached = {
                "balance": round_money(user.balance or 0),
                "total_earnings": round_money(user.total_earnings or 0),
                "referral_earnings": round_money(user.referral_earnings or 0),
            }
            if cached != expected:
                drift.append({
                    "userId": user.id,
                    "cached": {k: float(v) for k, v in cached.items()},
                    "ledger": {k: float(v) for k, v in expected.items()},
                })
        if drift:
            ledger_logger.warning(f"Balance audit found drift for {len(drift)} user(s)")
        return drift

    @staticmethod
    def rebuild_cached_balances(user_id: int) -> Dict[str, Decimal]:
        """Overwrite the cached fields with the ledger sums (caller commits)."""
        user = User.query.filter_by(id=user_id).with_for_update().first()
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        sums = LedgerHelper.ledger_balance(user_id)
        before = (user.balance, user.total_earnings, user.referral_earnings)
        user.balance = sums["balance"]
        user.total_earnings = sums["total_earnings"]
        user.referral_earnings = sums["referral_earnings"]
        db.session.flush()
        ledger_logger.info(f"Rebuilt cached balances for user {user_id}: {before} -> {tuple(sums.values())}")
        return sums

    @staticmethod
    def list_transactions(tx_type: str = None, user_id: int = None, status: str = None):
        """Newest first; the caller paginates."""
        query = Transaction.query
        if tx_type:
            query = query.filter(Transaction.type == tx_type)
        if user_id:
            query = query.filter(Transaction.user_id == user_id)
        if status:
            query = query.filter(Transaction.status == status)
        return query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
