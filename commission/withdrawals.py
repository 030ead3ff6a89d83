from decimal import Decimal
from typing import Dict, Any
from flask import current_app
from sqlalchemy import func

from extensions import db
from models import (
    User, MembershipPlan, WithdrawalRequest, WithdrawalStatus,
    TransactionType, TransactionStatus, utcnow,
)
from utils import parse_amount
from commission.exceptions import ValidationError, NotFoundError, InvalidTransitionError, InsufficientBalanceError
from commission.ledger import LedgerHelper, unit_of_work
from logger import ledger_logger


# ==========================================================
#                  CONFIGURATION
# ==========================================================
class WithdrawalConfig:

    @staticmethod
    def minimum_for(user: User) -> Decimal:
        """Plan minimum when the user has a plan that sets one, otherwise MIN_WITHDRAWAL."""
        if user.membership_plan:
            plan = MembershipPlan.query.filter_by(name=user.membership_plan).first()
            if plan is not None and plan.minimum_withdrawal:
                return Decimal(str(plan.minimum_withdrawal))
        return Decimal(str(current_app.config.get("MIN_WITHDRAWAL", "2000")))

    @staticmethod
    def methods():
        return current_app.config.get("WITHDRAWAL_METHODS") or []

# ==========================================================
#                  WITHDRAWAL HELPER
# ==========================================================
class WithdrawalHelper:
    """
    A withdrawal is a PENDING WITHDRAWAL ledger row plus its request. The
    cached balance is debited when an admin approves (row COMPLETED); a
    rejection fails the row and leaves the balance alone. Pending requests
    still reserve funds through the available balance.
    """

    @staticmethod
    def validate_request(user: User, data: Dict[str, Any]):
        amount = parse_amount(data.get("amount"))

        method = data.get("method") or data.get("paymentMethod")
        if not isinstance(method, str) or method.strip().lower() not in WithdrawalConfig.methods():
            raise ValidationError(f"method must be one of {', '.join(WithdrawalConfig.methods())}")

        account_details = data.get("accountDetails")
        if not isinstance(account_details, dict) or not account_details:
            raise ValidationError("accountDetails are required")

        if not user.is_active:
            raise ValidationError("Account is inactive")

        minimum = WithdrawalConfig.minimum_for(user)
        if amount < minimum:
            raise ValidationError(
                f"Minimum withdrawal amount is {current_app.config.get('CURRENCY', 'PKR')} {minimum:,.0f} for your plan"
            )
        return amount, method.strip().lower(), account_details

    @staticmethod
    def request_withdrawal(user_id: int, data: Dict[str, Any]) -> WithdrawalRequest:
        with unit_of_work():
            user = User.query.filter_by(id=user_id).with_for_update().first()
            if user is None:
                raise NotFoundError(f"User {user_id} not found")

            amount, method, account_details = WithdrawalHelper.validate_request(user, data)

            available = LedgerHelper.available_balance(user)
            if amount > available:
                raise InsufficientBalanceError(
                    "Insufficient balance. Note: Voucher balance cannot be withdrawn, only used for shopping."
                )

            transaction = LedgerHelper.post_transaction(
                user.id,
                TransactionType.WITHDRAWAL.value,
                amount,
                status=TransactionStatus.PENDING.value,
                description=f"Withdrawal via {method}",
                meta={"paymentMethod": method, "accountDetails": account_details},
            )
            withdrawal = WithdrawalRequest(
                user_id=user.id,
                transaction_id=transaction.id,
                amount=amount,
                payment_method=method,
                account_details=account_details,
                status=WithdrawalStatus.PENDING.value,
            )
            db.session.add(withdrawal)
            db.session.flush()
            transaction.reference = f"WD-{withdrawal.id}"

        ledger_logger.info(f"Withdrawal #{withdrawal.id} requested by user {user_id}: {amount} via {method}")
        return withdrawal

    @staticmethod
    def _locked_pending(withdrawal_id: int) -> WithdrawalRequest:
        withdrawal = WithdrawalRequest.query.filter_by(id=withdrawal_id).with_for_update().first()
        if withdrawal is None:
            raise NotFoundError(f"Withdrawal request {withdrawal_id} not found")
        if withdrawal.status != WithdrawalStatus.PENDING.value:
            raise InvalidTransitionError("Withdrawal request already processed")
        return withdrawal

    @staticmethod
    def approve_withdrawal(withdrawal_id: int, admin_id: int, notes: str = None) -> WithdrawalRequest:
        with unit_of_work():
            withdrawal = WithdrawalHelper._locked_pending(withdrawal_id)
            user = User.query.filter_by(id=withdrawal.user_id).with_for_update().first()
            if Decimal(str(user.balance or 0)) < Decimal(str(withdrawal.amount)):
                raise InsufficientBalanceError(f"User {user.id} balance no longer covers this withdrawal")

            LedgerHelper.complete_transaction(withdrawal.transaction_id, actor_id=admin_id)
            withdrawal.status = WithdrawalStatus.APPROVED.value
            withdrawal.processed_at = utcnow()
            withdrawal.processed_by = admin_id
            withdrawal.admin_notes = notes

        ledger_logger.info(f"Withdrawal #{withdrawal_id} approved by admin {admin_id}")
        return withdrawal

    @staticmethod
    def reject_withdrawal(withdrawal_id: int, admin_id: int, reason: str = None) -> WithdrawalRequest:
        with unit_of_work():
            withdrawal = WithdrawalHelper._locked_pending(withdrawal_id)
            LedgerHelper.fail_transaction(withdrawal.transaction_id, actor_id=admin_id, reason=reason)
            withdrawal.status = WithdrawalStatus.REJECTED.value
            withdrawal.processed_at = utcnow()
            withdrawal.processed_by = admin_id
            withdrawal.rejection_reason = reason

        ledger_logger.info(f"Withdrawal #{withdrawal_id} rejected by admin {admin_id}: {reason}")
        return withdrawal

    @staticmethod
    def list_user_withdrawals(user_id: int):
        return WithdrawalRequest.query.filter_by(user_id=user_id).order_by(
            WithdrawalRequest.requested_at.desc(), WithdrawalRequest.id.desc()
        ).all()

    @staticmethod
    def list_withdrawals(status: str = None):
        query = WithdrawalRequest.query
        if status:
            query = query.filter(WithdrawalRequest.status == status.upper())
        return query.order_by(WithdrawalRequest.requested_at.desc(), WithdrawalRequest.id.desc())

    @staticmethod
    def stats() -> Dict[str, Any]:
        rows = db.session.query(
            WithdrawalRequest.status,
            func.count(WithdrawalRequest.id),
            func.coalesce(func.sum(WithdrawalRequest.amount), 0),
        ).group_by(WithdrawalRequest.status).all()

        result = {status.value: {"count": 0, "amount": 0.0} for status in WithdrawalStatus}
        for status, count, total in rows:
            result[status] = {"count": count, "amount": float(total or 0)}
        return result
