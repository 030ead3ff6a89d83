# models.py - Flask-SQLAlchemy models for the commission service
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from flask_login import UserMixin
from sqlalchemy import UniqueConstraint, Index, CheckConstraint, text
from werkzeug.security import check_password_hash, generate_password_hash
from extensions import db

# ===========================================================
# ENUM DEFINITIONS
# ===========================================================

class TransactionType(Enum):
    COMMISSION = "COMMISSION"
    BONUS = "BONUS"
    MANUAL_PAYMENT = "MANUAL_PAYMENT"
    WITHDRAWAL = "WITHDRAWAL"
    ADJUSTMENT = "ADJUSTMENT"


# Types that take money out of the balance; everything else credits it.
DEBIT_TYPES = {TransactionType.WITHDRAWAL.value}
# Types that count towards total_earnings.
EARNING_TYPES = {TransactionType.COMMISSION.value, TransactionType.BONUS.value}


class TransactionStatus(Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class WithdrawalStatus(Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class PurchaseStatus(Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PurchaseKind(Enum):
    MEMBERSHIP = "MEMBERSHIP"
    PRODUCT = "PRODUCT"


class EscrowStatus(Enum):
    HELD = "HELD"
    RELEASED = "RELEASED"
    FORFEITED = "FORFEITED"


def utcnow():
    return datetime.now(timezone.utc)


def money(value):
    return float(value) if value is not None else 0.0


# ===========================================================
# BASE MIXIN FOR COMMON FIELDS
# ===========================================================

class BaseMixin:
    """Provides created_at and updated_at timestamps to inheriting models."""
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

# ===========================================================
# USERS
# ===========================================================

class User(UserMixin, db.Model, BaseMixin):
    """A member of the network. Money fields are a cache of the ledger."""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    phone = db.Column(db.String(20), nullable=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default="user", index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    referral_code = db.Column(db.String(20), unique=True, nullable=False)  # User's own referral code
    referred_by = db.Column(db.String(20), nullable=True)  # Sponsor's referral code

    balance = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"), server_default=text("0"))
    total_earnings = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"), server_default=text("0"))
    referral_earnings = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"), server_default=text("0"))

    membership_plan = db.Column(db.String(50), nullable=True)
    membership_status = db.Column(db.String(20), nullable=False, default="INACTIVE")

    transactions = db.relationship('Transaction', back_populates='user', lazy='dynamic',
                                   foreign_keys='Transaction.user_id')
    withdrawals = db.relationship('WithdrawalRequest', back_populates='user', lazy='dynamic',
                                  foreign_keys='WithdrawalRequest.user_id')

    __table_args__ = (
        Index('idx_user_referred_by', 'referred_by'),
    )

    @property
    def is_admin(self):
        return self.role == "admin"

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role,
            "isActive": self.is_active,
            "referralCode": self.referral_code,
            "referredBy": self.referred_by,
            "membershipPlan": self.membership_plan,
            "membershipStatus": self.membership_status,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id} {self.referral_code}>"

# ===========================================================
# COMMISSION RATE TABLE
# ===========================================================

class CommissionSetting(db.Model, BaseMixin):
    """Percentage paid to the ancestor at a given level (15.00 means 15%)."""
    __tablename__ = 'commission_settings'

    id = db.Column(db.Integer, primary_key=True)
    level = db.Column(db.Integer, nullable=False, unique=True)
    rate = db.Column(db.Numeric(5, 2), nullable=False)
    description = db.Column(db.String(255))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    updated_by = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)

    __table_args__ = (
        CheckConstraint('level >= 1 AND level <= 5', name='chk_commission_level_range'),
        CheckConstraint('rate >= 0 AND rate <= 100', name='chk_commission_rate_range'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "level": self.level,
            "rate": money(self.rate),
            "description": self.description,
            "isActive": self.is_active,
            "updatedBy": self.updated_by,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

# ===========================================================
# LEDGER
# ===========================================================

class Transaction(db.Model):
    """Immutable ledger row. Only status (PENDING -> COMPLETED|FAILED) ever changes."""
    __tablename__ = 'transactions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    type = db.Column(db.String(30), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=TransactionStatus.PENDING.value)
    reference = db.Column(db.String(120), unique=True, nullable=True, index=True)
    description = db.Column(db.String(255))
    meta = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, index=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship('User', back_populates='transactions', foreign_keys=[user_id])

    __table_args__ = (
        CheckConstraint('amount > 0', name='chk_transaction_amount_positive'),
        Index('idx_transaction_user_status', 'user_id', 'status'),
    )

    @property
    def is_debit(self):
        return self.type in DEBIT_TYPES

    @property
    def signed_amount(self):
        amount = Decimal(str(self.amount))
        return -amount if self.is_debit else amount

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "type": self.type,
            "amount": money(self.amount),
            "status": self.status,
            "reference": self.reference,
            "description": self.description,
            "meta": self.meta or {},
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "processedAt": self.processed_at.isoformat() if self.processed_at else None,
        }


class WithdrawalRequest(db.Model):
    __tablename__ = 'withdrawal_requests'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey('transactions.id'), nullable=True, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    payment_method = db.Column(db.String(30), nullable=False)
    account_details = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(db.String(20), nullable=False, default=WithdrawalStatus.PENDING.value, index=True)
    requested_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processed_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    rejection_reason = db.Column(db.String(255))
    admin_notes = db.Column(db.String(255))

    user = db.relationship('User', back_populates='withdrawals', foreign_keys=[user_id])
    transaction = db.relationship('Transaction', foreign_keys=[transaction_id])

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "transactionId": self.transaction_id,
            "amount": money(self.amount),
            "paymentMethod": self.payment_method,
            "accountDetails": self.account_details or {},
            "status": self.status,
            "requestedAt": self.requested_at.isoformat() if self.requested_at else None,
            "processedAt": self.processed_at.isoformat() if self.processed_at else None,
            "processedBy": self.processed_by,
            "rejectionReason": self.rejection_reason,
            "adminNotes": self.admin_notes,
        }

# ===========================================================
# PURCHASES
# ===========================================================

class MembershipPlan(db.Model, BaseMixin):
    __tablename__ = 'membership_plans'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)
    price = db.Column(db.Numeric(12, 2), nullable=False)
    minimum_withdrawal = db.Column(db.Numeric(12, 2), nullable=True)
    description = db.Column(db.String(255))
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "price": money(self.price),
            "minimumWithdrawal": money(self.minimum_withdrawal),
            "description": self.description,
            "isActive": self.is_active,
        }


class Purchase(db.Model, BaseMixin):
    """The buyer's own purchase record; commissions hang off a COMPLETED purchase."""
    __tablename__ = 'purchases'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    plan_id = db.Column(db.Integer, db.ForeignKey('membership_plans.id'), nullable=True)
    kind = db.Column(db.String(20), nullable=False, default=PurchaseKind.MEMBERSHIP.value)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    payment_method = db.Column(db.String(30))
    payment_details = db.Column(db.JSON, nullable=False, default=dict)
    status = db.Column(db.String(20), nullable=False, default=PurchaseStatus.PENDING.value, index=True)
    reviewed_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.String(255))

    buyer = db.relationship('User', foreign_keys=[user_id])
    plan = db.relationship('MembershipPlan')

    __table_args__ = (
        CheckConstraint('amount > 0', name='chk_purchase_amount_positive'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "plan": self.plan.name if self.plan else None,
            "kind": self.kind,
            "amount": money(self.amount),
            "paymentMethod": self.payment_method,
            "paymentDetails": self.payment_details or {},
            "status": self.status,
            "reviewedBy": self.reviewed_by,
            "reviewedAt": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "rejectionReason": self.rejection_reason,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

# ===========================================================
# ATTRIBUTION BOOKKEEPING
# ===========================================================

class CommissionEvent(db.Model):
    """One attribution pass. The unique reference is the idempotency key."""
    __tablename__ = 'commission_events'

    id = db.Column(db.Integer, primary_key=True)
    reference = db.Column(db.String(120), unique=True, nullable=False, index=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    policy = db.Column(db.String(20), nullable=False)
    credited_total = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    outcome = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)


class CommissionEscrow(db.Model):
    """A level's commission held back because its ancestor could not be credited."""
    __tablename__ = 'commission_escrow'

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.Integer, db.ForeignKey('commission_events.id'), nullable=False, index=True)
    level = db.Column(db.Integer, nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    rate = db.Column(db.Numeric(5, 2), nullable=False)
    referral_code = db.Column(db.String(20), nullable=True)
    beneficiary_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    reason = db.Column(db.String(50), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=EscrowStatus.HELD.value, index=True)
    resolved_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey('transactions.id'), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    event = db.relationship('CommissionEvent')

    __table_args__ = (
        UniqueConstraint('event_id', 'level', name='uq_escrow_event_level'),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "eventId": self.event_id,
            "eventReference": self.event.reference if self.event else None,
            "level": self.level,
            "amount": money(self.amount),
            "rate": money(self.rate),
            "referralCode": self.referral_code,
            "beneficiaryId": self.beneficiary_id,
            "reason": self.reason,
            "status": self.status,
            "resolvedBy": self.resolved_by,
            "resolvedAt": self.resolved_at.isoformat() if self.resolved_at else None,
            "transactionId": self.transaction_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
