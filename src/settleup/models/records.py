# src/settleup/models/records.py
"""
Plain records exchanged with the settlement core.

The core never touches the database: the group service turns ORM rows into
these records, and the results come back as the structures below.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Sequence, Tuple

from settleup.core.config import settings
from settleup.core.exceptions import InvalidRecordError
from settleup.core.money import money


@dataclass(frozen=True)
class Member:
    """A user as seen by the core: identity is the id alone"""
    id: int
    name: str = field(default="", compare=False)

    def as_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'name': self.name}

    def __str__(self):
        return self.name or f"User_{self.id}"


DebtGraph = Dict[Member, Dict[Member, Decimal]]
NetBalances = Dict[Member, Decimal]


@dataclass(frozen=True)
class ExpenseRecord:
    payer: Member
    total_amount: Decimal
    participants: Tuple[Tuple[Member, Decimal], ...] = ()
    currency: str = settings.DEFAULT_CURRENCY

    @property
    def owed_total(self) -> Decimal:
        return sum((amount for _, amount in self.participants), Decimal("0"))


@dataclass(frozen=True)
class PaymentRecord:
    payer: Member
    receiver: Member
    amount: Decimal
    currency: str = settings.DEFAULT_CURRENCY

    def __post_init__(self):
        if self.payer == self.receiver:
            raise InvalidRecordError(f"Payment receiver cannot be the payer ({self.payer})")


@dataclass(frozen=True)
class SuggestedPayment:
    payer: Member
    receiver: Member
    amount: Decimal

    def as_dict(self) -> Dict[str, Any]:
        return {
            'payer': self.payer.as_dict(),
            'receiver': self.receiver.as_dict(),
            'amount': str(money(self.amount)),
        }


@dataclass(frozen=True)
class GroupLedger:
    """One consistent snapshot of a group's members, expenses and payments"""
    members: Tuple[Member, ...] = ()
    expenses: Tuple[ExpenseRecord, ...] = ()
    payments: Tuple[PaymentRecord, ...] = ()


@dataclass
class SettlementReport:
    net_balances: NetBalances
    detailed_balances: DebtGraph
    simplified_debts: DebtGraph
    payments: List[SuggestedPayment]

    def as_dict(self) -> Dict[str, Any]:
        """JSON-ready representation, amounts as 2-decimal strings"""
        return {
            'net_balances': [
                {'user': user.as_dict(), 'amount': str(money(amount))}
                for user, amount in self.net_balances.items()
            ],
            'detailed_balances': _graph_as_list(self.detailed_balances),
            'simplified_debts': _graph_as_list(self.simplified_debts),
            'optimized_payments': [payment.as_dict() for payment in self.payments],
        }


def _graph_as_list(graph: DebtGraph) -> List[Dict[str, Any]]:
    return [
        {
            'debtor': debtor.as_dict(),
            'creditors': [
                {'user': creditor.as_dict(), 'amount': str(money(amount))}
                for creditor, amount in creditors.items()
            ],
        }
        for debtor, creditors in graph.items()
    ]


def payments_to_debt_graph(payments: Sequence[SuggestedPayment]) -> DebtGraph:
    """Fold a payment list back into a debtor -> creditor -> amount graph"""
    graph: DebtGraph = {}
    for payment in payments:
        creditors = graph.setdefault(payment.payer, {})
        creditors[payment.receiver] = creditors.get(payment.receiver, Decimal("0")) + payment.amount
    return graph
