"""
Balance calculation over a group's expense and payment history.
"""
import logging
from decimal import Decimal
from typing import Dict, Optional

from settleup.core.config import settings
from settleup.core.money import ZERO, money
from settleup.models.records import DebtGraph, GroupLedger, Member, NetBalances

logger = logging.getLogger(__name__)


class BalanceCalculator:
    """
    Derives net balances and direct debts from one group snapshot.

    A positive balance means the user is owed money, a negative one that the
    user owes. Small rounding inconsistencies are corrected here, never raised.
    """

    def __init__(self, ledger: GroupLedger, tolerance: Optional[Decimal] = None):
        self.ledger = ledger
        self.members = list(ledger.members)
        self.tolerance = settings.SETTLEMENT_TOLERANCE if tolerance is None else tolerance

    def calculate_net_balances(self) -> NetBalances:
        """Net balance of every user that appears in the group's history"""
        net_balances: Dict[Member, Decimal] = {}

        for expense in self.ledger.expenses:
            # Payer advanced the full amount
            net_balances[expense.payer] = net_balances.get(expense.payer, ZERO) + expense.total_amount
            for user, amount_owed in expense.participants:
                net_balances[user] = net_balances.get(user, ZERO) - amount_owed

        for payment in self.ledger.payments:
            # Paying back reduces what the payer owes and what the receiver is owed
            net_balances[payment.payer] = net_balances.get(payment.payer, ZERO) + payment.amount
            net_balances[payment.receiver] = net_balances.get(payment.receiver, ZERO) - payment.amount

        self._ensure_total_balance_is_zero(net_balances)
        return net_balances

    def calculate_detailed_balances(self) -> DebtGraph:
        """Who owes whom, before any simplification: {debtor: {creditor: amount}}"""
        direct_debts: Dict[Member, Dict[Member, Decimal]] = {}

        for expense in self.ledger.expenses:
            for user, amount_owed in expense.participants:
                # The payer's own share is not a debt
                if user == expense.payer:
                    continue
                creditors = direct_debts.setdefault(user, {})
                creditors[expense.payer] = creditors.get(expense.payer, ZERO) + amount_owed

        for payment in self.ledger.payments:
            amount_to_settle = payment.amount

            creditors = direct_debts.get(payment.payer, {})
            debt = creditors.get(payment.receiver, ZERO)
            if debt > 0:
                if amount_to_settle >= debt:
                    del creditors[payment.receiver]
                    amount_to_settle -= debt
                else:
                    creditors[payment.receiver] = debt - amount_to_settle
                    amount_to_settle = ZERO

            # Overpayment turns into a debt in the other direction
            if amount_to_settle > 0:
                reverse = direct_debts.setdefault(payment.receiver, {})
                reverse[payment.payer] = reverse.get(payment.payer, ZERO) + amount_to_settle

        cleaned_debts: DebtGraph = {}
        for debtor, creditors in direct_debts.items():
            positive = {creditor: amount for creditor, amount in creditors.items() if amount > 0}
            if positive:
                cleaned_debts[debtor] = positive

        return cleaned_debts

    def _ensure_total_balance_is_zero(self, net_balances: NetBalances):
        total_sum = sum(net_balances.values(), ZERO)

        if abs(total_sum) > self.tolerance:
            # Left as is: the aggregator refuses to settle an unbalanced group
            logger.error(f"Balance inconsistency: group balances add up to {total_sum}, expected 0")
        elif total_sum != 0:
            target = self.members[0] if self.members else next(iter(net_balances))
            logger.warning(f"Rounding residual of {total_sum} absorbed by user {target.id}")
            net_balances[target] = net_balances.get(target, ZERO) - total_sum

        for user, amount in net_balances.items():
            net_balances[user] = money(amount)
