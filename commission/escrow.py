# commission/escrow.py
from decimal import Decimal

from extensions import db
from models import User, CommissionEscrow, EscrowStatus, TransactionType, utcnow
from commission.exceptions import NotFoundError, InvalidTransitionError, ValidationError
from commission.ledger import LedgerHelper, unit_of_work
from logger import commission_logger


class EscrowHelper:
    """Admin resolution of commissions held under the escrow policy."""

    @staticmethod
    def list_escrow(status: str = None):
        query = CommissionEscrow.query
        if status:
            query = query.filter(CommissionEscrow.status == status.upper())
        return query.order_by(CommissionEscrow.created_at.desc(), CommissionEscrow.id.desc())

    @staticmethod
    def _locked_held(escrow_id: int) -> CommissionEscrow:
        escrow = CommissionEscrow.query.filter_by(id=escrow_id).with_for_update().first()
        if escrow is None:
            raise NotFoundError(f"Escrow entry {escrow_id} not found")
        if escrow.status != EscrowStatus.HELD.value:
            raise InvalidTransitionError(f"Escrow entry {escrow_id} is already {escrow.status}")
        return escrow

    @staticmethod
    def release(escrow_id: int, admin_id: int, beneficiary_id: int = None) -> CommissionEscrow:
        """
        Credit a held commission to `beneficiary_id`, or to the beneficiary
        already recorded on the entry.
        """
        with unit_of_work():
            escrow = EscrowHelper._locked_held(escrow_id)
            target_id = beneficiary_id or escrow.beneficiary_id
            if not target_id:
                raise ValidationError("beneficiaryId is required for escrow without a known beneficiary")
            if db.session.get(User, target_id) is None:
                raise NotFoundError(f"User {target_id} not found")

            transaction = LedgerHelper.post_transaction(
                target_id,
                TransactionType.COMMISSION.value,
                Decimal(str(escrow.amount)),
                reference=f"ESCROW-{escrow.id}",
                description=f"Level {escrow.level} referral commission released from escrow",
                meta={
                    "level": escrow.level,
                    "rate": str(escrow.rate),
                    "eventId": escrow.event_id,
                    "escrowId": escrow.id,
                    "releasedBy": admin_id,
                },
            )
            escrow.status = EscrowStatus.RELEASED.value
            escrow.beneficiary_id = target_id
            escrow.transaction_id = transaction.id
            escrow.resolved_by = admin_id
            escrow.resolved_at = utcnow()

        commission_logger.info(f"Escrow #{escrow_id} released to user {target_id} by admin {admin_id}")
        return escrow

    @staticmethod
    def forfeit(escrow_id: int, admin_id: int) -> CommissionEscrow:
        with unit_of_work():
            escrow = EscrowHelper._locked_held(escrow_id)
            escrow.status = EscrowStatus.FORFEITED.value
            escrow.resolved_by = admin_id
            escrow.resolved_at = utcnow()

        commission_logger.info(f"Escrow #{escrow_id} forfeited by admin {admin_id}")
        return escrow
