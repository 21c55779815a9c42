"""
Group ledger business logic: members, expenses, payments and settlements.
"""
import logging
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from settleup.core.config import settings
from settleup.core.exceptions import InvalidRecordError, NotFoundError
from settleup.core.logging import ledger_operation
from settleup.core.money import money, to_decimal
from settleup.models.base import (
    Expense, ExpenseParticipant, Group, GroupMembership, MembershipStatus, Payment, User
)
from settleup.models.records import (
    ExpenseRecord, GroupLedger, Member, PaymentRecord, SettlementReport
)
from settleup.services.settlement_service import settle_group
from settleup.services.split_rule_engine import (
    SplitMethod, SplitRuleEngine, normalize_splitting_params
)

logger = logging.getLogger(__name__)


class GroupService:
    """Service for a group's shared expenses and the settlements they produce"""

    def __init__(self, session: AsyncSession, tolerance: Optional[Decimal] = None):
        self.session = session
        self.tolerance = tolerance

    # ============= USERS & MEMBERSHIP =============

    async def create_user(self, name: str, email: str) -> User:
        """Create a new user"""
        if not name or not name.strip():
            raise InvalidRecordError("User name is required")
        if not email or '@' not in email:
            raise InvalidRecordError(f"Invalid email address: {email!r}")

        user = User(name=name.strip(), email=email.strip().lower())
        self.session.add(user)
        await self.session.commit()
        await self.session.refresh(user)

        return user

    @ledger_operation(logger)
    async def create_group(self, name: str, creator_id: int, description: Optional[str] = None) -> Group:
        """Create a group; the creator joins it as an active member"""
        if not name or not name.strip():
            raise InvalidRecordError("Group name is required")
        creator = await self._get_user(creator_id)

        group = Group(name=name.strip(), description=description, creator_id=creator.id)
        group.memberships.append(
            GroupMembership(user_id=creator.id, status=MembershipStatus.ACTIVE.value, joined_at=_now())
        )
        self.session.add(group)
        await self.session.commit()
        await self.session.refresh(group)

        logger.info(f"Created group {group.id} for creator {creator.id}")
        return group

    @ledger_operation(logger)
    async def add_member(self, group_id: int, user_id: int) -> GroupMembership:
        """Add a user to a group, re-activating a previous membership"""
        group = await self._get_group(group_id)
        user = await self._get_user(user_id)

        membership = await self._get_membership(group.id, user.id)
        if membership is None:
            membership = GroupMembership(
                group_id=group.id,
                user_id=user.id,
                status=MembershipStatus.ACTIVE.value,
                joined_at=_now()
            )
            self.session.add(membership)
        else:
            membership.status = MembershipStatus.ACTIVE.value

        await self.session.commit()
        return membership

    @ledger_operation(logger)
    async def deactivate_member(self, group_id: int, user_id: int) -> GroupMembership:
        """Mark a membership inactive; past expenses and payments are kept"""
        membership = await self._get_membership(group_id, user_id)
        if membership is None:
            raise NotFoundError(f"User {user_id} is not a member of group {group_id}")

        membership.status = MembershipStatus.INACTIVE.value
        await self.session.commit()
        return membership

    async def get_active_members(self, group_id: int) -> List[User]:
        """Active members of a group, in the order they joined"""
        result = await self.session.execute(
            select(User).join(
                GroupMembership, GroupMembership.user_id == User.id
            ).where(
                and_(
                    GroupMembership.group_id == group_id,
                    GroupMembership.status == MembershipStatus.ACTIVE.value
                )
            ).order_by(GroupMembership.joined_at, GroupMembership.id)
        )
        return list(result.scalars().all())

    # ============= EXPENSES =============

    @ledger_operation(logger)
    async def create_expense(
        self,
        group_id: int,
        payer_id: int,
        description: str,
        total_amount,
        splitting_method: Optional[str] = None,
        splitting_params: Optional[Mapping[str, Any]] = None,
        expense_date: Optional[date] = None,
        currency: Optional[str] = None
    ) -> Expense:
        """Create an expense and its participant shares in one commit"""
        group = await self._get_group(group_id)
        total = _parse_amount(total_amount, "Expense total")
        if not description or not description.strip():
            raise InvalidRecordError("Expense description is required")
        expense_date = expense_date or date.today()
        _check_not_in_future(expense_date, "Expense date")

        members = await self.get_active_members(group.id)
        if payer_id not in {member.id for member in members}:
            raise InvalidRecordError(f"Payer {payer_id} must be an active member of the group")

        shares = self._split(members, total, splitting_method, splitting_params)

        expense = Expense(
            group_id=group.id,
            payer_id=payer_id,
            description=description.strip(),
            total_amount=total,
            currency=currency or settings.DEFAULT_CURRENCY,
            expense_date=expense_date
        )
        expense.participants = [
            ExpenseParticipant(user_id=member.id, amount_owed=amount)
            for member, amount in shares.items()
        ]

        try:
            self.session.add(expense)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(f"Expense {expense.id} of {total} split over {len(shares)} participants in group {group.id}")
        return expense

    @ledger_operation(logger)
    async def update_expense_split(
        self,
        expense_id: int,
        total_amount=None,
        splitting_method: Optional[str] = None,
        splitting_params: Optional[Mapping[str, Any]] = None
    ) -> Expense:
        """Re-split an expense, replacing all of its participant shares"""
        expense = await self._get_expense(expense_id)
        total = expense.total_amount if total_amount is None else _parse_amount(total_amount, "Expense total")

        members = await self.get_active_members(expense.group_id)
        shares = self._split(members, total, splitting_method, splitting_params)

        try:
            expense.total_amount = total
            expense.participants.clear()
            await self.session.flush()
            expense.participants.extend(
                ExpenseParticipant(user_id=member.id, amount_owed=amount)
                for member, amount in shares.items()
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        return expense

    @ledger_operation(logger)
    async def settle_expense(self, expense_id: int) -> List[Payment]:
        """
        Record the payments that pay off one expense.

        Every participant other than the payer pays back their share,
        unless a payment to the payer covering it already exists.
        """
        expense = await self._get_expense(expense_id)
        payments = []

        try:
            for participant in expense.participants:
                if participant.user_id == expense.payer_id or participant.amount_owed <= 0:
                    continue

                already_settled = await self.session.execute(
                    select(Payment.id).where(
                        and_(
                            Payment.group_id == expense.group_id,
                            Payment.payer_id == participant.user_id,
                            Payment.receiver_id == expense.payer_id,
                            Payment.amount >= participant.amount_owed
                        )
                    ).limit(1)
                )
                if already_settled.scalar_one_or_none() is not None:
                    continue

                payment = Payment(
                    group_id=expense.group_id,
                    payer_id=participant.user_id,
                    receiver_id=expense.payer_id,
                    amount=participant.amount_owed,
                    currency=expense.currency,
                    payment_date=date.today()
                )
                self.session.add(payment)
                payments.append(payment)

            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        return payments

    # ============= PAYMENTS =============

    @ledger_operation(logger)
    async def record_payment(
        self,
        group_id: int,
        payer_id: int,
        receiver_id: int,
        amount,
        payment_date: Optional[date] = None,
        currency: Optional[str] = None
    ) -> Payment:
        """Record money paid by one member to another"""
        group = await self._get_group(group_id)
        value = _parse_amount(amount, "Payment amount")
        if payer_id == receiver_id:
            raise InvalidRecordError("Payment receiver cannot be the payer")
        payment_date = payment_date or date.today()
        _check_not_in_future(payment_date, "Payment date")

        member_ids = {member.id for member in await self.get_active_members(group.id)}
        if payer_id not in member_ids:
            raise InvalidRecordError(f"Payer {payer_id} must be an active member of the group")
        if receiver_id not in member_ids:
            raise InvalidRecordError(f"Receiver {receiver_id} must be an active member of the group")

        payment = Payment(
            group_id=group.id,
            payer_id=payer_id,
            receiver_id=receiver_id,
            amount=value,
            currency=currency or settings.DEFAULT_CURRENCY,
            payment_date=payment_date
        )
        self.session.add(payment)
        await self.session.commit()
        await self.session.refresh(payment)

        return payment

    # ============= BALANCES =============

    async def load_ledger(self, group_id: int) -> GroupLedger:
        """Read a group's members, expenses and payments as plain records"""
        group = await self._get_group(group_id)
        members = await self.get_active_members(group.id)

        expense_result = await self.session.execute(
            select(Expense).where(
                Expense.group_id == group.id
            ).options(
                selectinload(Expense.payer),
                selectinload(Expense.participants).selectinload(ExpenseParticipant.user)
            ).order_by(Expense.id).execution_options(populate_existing=True)
        )
        payment_result = await self.session.execute(
            select(Payment).where(
                Payment.group_id == group.id
            ).options(
                selectinload(Payment.payer),
                selectinload(Payment.receiver)
            ).order_by(Payment.id).execution_options(populate_existing=True)
        )

        expenses = tuple(
            ExpenseRecord(
                payer=_member(expense.payer),
                total_amount=money(expense.total_amount),
                participants=tuple(
                    (_member(participant.user), money(participant.amount_owed))
                    for participant in expense.participants
                ),
                currency=expense.currency
            )
            for expense in expense_result.scalars().all()
        )
        payments = tuple(
            PaymentRecord(
                payer=_member(payment.payer),
                receiver=_member(payment.receiver),
                amount=money(payment.amount),
                currency=payment.currency
            )
            for payment in payment_result.scalars().all()
        )

        return GroupLedger(
            members=tuple(_member(user) for user in members),
            expenses=expenses,
            payments=payments
        )

    async def get_balances_and_settlements(self, group_id: int) -> SettlementReport:
        """Net balances, direct debts and suggested payments for a group"""
        ledger = await self.load_ledger(group_id)
        return settle_group(ledger, tolerance=self.tolerance)

    # ============= HELPERS =============

    def _split(self, members: List[User], total: Decimal, splitting_method, splitting_params) -> Dict[Member, Decimal]:
        method = splitting_method or SplitMethod.EQUALLY
        engine = SplitRuleEngine([_member(user) for user in members], total)
        return engine.apply_split(method, normalize_splitting_params(splitting_params, method))

    async def _get_group(self, group_id: int) -> Group:
        group = await self.session.get(Group, group_id)
        if group is None:
            raise NotFoundError(f"Group {group_id} not found")
        return group

    async def _get_user(self, user_id: int) -> User:
        user = await self.session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    async def _get_membership(self, group_id: int, user_id: int) -> Optional[GroupMembership]:
        result = await self.session.execute(
            select(GroupMembership).where(
                and_(
                    GroupMembership.group_id == group_id,
                    GroupMembership.user_id == user_id
                )
            )
        )
        return result.scalar_one_or_none()

    async def _get_expense(self, expense_id: int) -> Expense:
        result = await self.session.execute(
            select(Expense).where(
                Expense.id == expense_id
            ).options(selectinload(Expense.participants)).execution_options(populate_existing=True)
        )
        expense = result.scalar_one_or_none()
        if expense is None:
            raise NotFoundError(f"Expense {expense_id} not found")
        return expense


def _member(user: User) -> Member:
    return Member(id=user.id, name=user.name)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_amount(value, label: str) -> Decimal:
    if isinstance(value, bool):
        raise InvalidRecordError(f"{label} must be a number")
    try:
        amount = to_decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidRecordError(f"{label} must be a number") from None
    if not amount.is_finite() or money(amount) <= 0:
        raise InvalidRecordError(f"{label} must be greater than zero")
    return money(amount)


def _check_not_in_future(value: date, label: str):
    if value > date.today():
        raise InvalidRecordError(f"{label} cannot be in the future")
