# src/settleup/models/base.py
from sqlalchemy import Column, Integer, String, Date, DateTime, Numeric, ForeignKey, Text, UniqueConstraint, CheckConstraint, Index
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func
import enum

from settleup.core.config import settings

Base = declarative_base()

class MembershipStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"

class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    memberships = relationship("GroupMembership", back_populates="user")
    created_groups = relationship("Group", back_populates="creator")

class Group(Base):
    __tablename__ = 'groups'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text)
    creator_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    creator = relationship("User", back_populates="created_groups")
    memberships = relationship("GroupMembership", back_populates="group", cascade="all, delete-orphan")
    expenses = relationship("Expense", back_populates="group", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="group", cascade="all, delete-orphan")

class GroupMembership(Base):
    __tablename__ = 'group_memberships'

    id = Column(Integer, primary_key=True)
    group_id = Column(Integer, ForeignKey('groups.id'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    status = Column(String(20), nullable=False, default=MembershipStatus.ACTIVE.value)  # 'active' or 'inactive'
    joined_at = Column(DateTime(timezone=True), nullable=False)

    # Relationships
    group = relationship("Group", back_populates="memberships")
    user = relationship("User", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint('group_id', 'user_id', name='uq_membership_group_user'),
    )

class Expense(Base):
    __tablename__ = 'expenses'

    id = Column(Integer, primary_key=True)
    group_id = Column(Integer, ForeignKey('groups.id'), nullable=False)
    payer_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    description = Column(Text, nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default=settings.DEFAULT_CURRENCY)
    expense_date = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    group = relationship("Group", back_populates="expenses")
    payer = relationship("User")
    participants = relationship(
        "ExpenseParticipant",
        back_populates="expense",
        cascade="all, delete-orphan",
        order_by="ExpenseParticipant.id"
    )

    __table_args__ = (
        CheckConstraint('total_amount > 0', name='ck_expense_total_positive'),
        Index('idx_expense_group', 'group_id'),
    )

class ExpenseParticipant(Base):
    __tablename__ = 'expense_participants'

    id = Column(Integer, primary_key=True)
    expense_id = Column(Integer, ForeignKey('expenses.id'), nullable=False)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    amount_owed = Column(Numeric(12, 2), nullable=False)

    # Relationships
    expense = relationship("Expense", back_populates="participants")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint('expense_id', 'user_id', name='uq_participant_expense_user'),
        CheckConstraint('amount_owed >= 0', name='ck_participant_amount_non_negative'),
    )

class Payment(Base):
    __tablename__ = 'payments'

    id = Column(Integer, primary_key=True)
    group_id = Column(Integer, ForeignKey('groups.id'), nullable=False)
    payer_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    receiver_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default=settings.DEFAULT_CURRENCY)
    payment_date = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    group = relationship("Group", back_populates="payments")
    payer = relationship("User", foreign_keys=[payer_id])
    receiver = relationship("User", foreign_keys=[receiver_id])

    __table_args__ = (
        CheckConstraint('amount > 0', name='ck_payment_amount_positive'),
        CheckConstraint('payer_id != receiver_id', name='ck_payment_distinct_parties'),
        Index('idx_payment_group', 'group_id'),
    )
