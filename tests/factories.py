# tests/factories.py
from decimal import Decimal

import factory

from settleup.models.records import ExpenseRecord, GroupLedger, Member, PaymentRecord


class MemberFactory(factory.Factory):
    class Meta:
        model = Member

    id = factory.Sequence(lambda n: n + 1)
    name = factory.Faker('first_name')


class ExpenseRecordFactory(factory.Factory):
    class Meta:
        model = ExpenseRecord

    payer = factory.SubFactory(MemberFactory)
    total_amount = Decimal('0.00')
    participants = ()
    currency = 'USD'


class PaymentRecordFactory(factory.Factory):
    class Meta:
        model = PaymentRecord

    payer = factory.SubFactory(MemberFactory)
    receiver = factory.SubFactory(MemberFactory)
    amount = factory.Faker('pydecimal', left_digits=3, right_digits=2, positive=True)
    currency = 'USD'


def expense(payer, *shares, total=None):
    """Expense paid by ``payer`` with (member, amount) shares; total defaults to their sum"""
    participants = tuple((member, Decimal(amount)) for member, amount in shares)
    if total is None:
        total = sum((amount for _, amount in participants), Decimal('0'))
    return ExpenseRecordFactory(payer=payer, total_amount=Decimal(total), participants=participants)


def payment(payer, receiver, amount):
    return PaymentRecordFactory(payer=payer, receiver=receiver, amount=Decimal(amount))


def ledger(members, expenses=(), payments=()):
    return GroupLedger(members=tuple(members), expenses=tuple(expenses), payments=tuple(payments))
