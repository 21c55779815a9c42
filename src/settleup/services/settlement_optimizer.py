"""
Greedy settlement: turn a debt graph into the fewest payments that zero it.
"""
import heapq
import itertools
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from settleup.core.config import settings
from settleup.core.money import ZERO, money
from settleup.models.records import DebtGraph, Member, SuggestedPayment

logger = logging.getLogger(__name__)


class SettlementOptimizer:
    """
    Matches the largest debtor with the largest creditor until nobody owes.

    Each emitted payment clears at least one side, so the result never has
    more than (debtors + creditors - 1) payments.
    """

    def __init__(self, debt_graph: DebtGraph, tolerance: Optional[Decimal] = None):
        self.debt_graph = debt_graph
        self.tolerance = settings.SETTLEMENT_TOLERANCE if tolerance is None else tolerance
        # Tie-breaker so equal amounts keep insertion order and users are never compared
        self._sequence = itertools.count()

    def generate_optimized_payments(self) -> List[SuggestedPayment]:
        balances = self._net_balances()

        # Max-heaps keyed by magnitude: (-magnitude, sequence, user)
        creditors: List[Tuple[Decimal, int, Member]] = []
        debtors: List[Tuple[Decimal, int, Member]] = []
        for user, amount in balances.items():
            if amount > self.tolerance:
                self._push(creditors, user, amount)
            elif amount < -self.tolerance:
                self._push(debtors, user, -amount)

        optimized_payments: List[SuggestedPayment] = []
        while debtors and creditors:
            debt_amount, debtor = self._pop(debtors)
            credit_amount, creditor = self._pop(creditors)

            payment_amount = min(debt_amount, credit_amount)
            if payment_amount > self.tolerance:
                optimized_payments.append(
                    SuggestedPayment(payer=debtor, receiver=creditor, amount=money(payment_amount))
                )
                debt_amount -= payment_amount
                credit_amount -= payment_amount

            # Whatever is left above tolerance goes back for another match
            if debt_amount > self.tolerance:
                self._push(debtors, debtor, debt_amount)
            if credit_amount > self.tolerance:
                self._push(creditors, creditor, credit_amount)

        logger.debug(
            f"Optimized {sum(len(edges) for edges in self.debt_graph.values())} debts "
            f"into {len(optimized_payments)} payments"
        )
        return optimized_payments

    def _net_balances(self) -> Dict[Member, Decimal]:
        balances: Dict[Member, Decimal] = {}
        for debtor, creditors in self.debt_graph.items():
            for creditor, amount in creditors.items():
                balances[debtor] = balances.get(debtor, ZERO) - amount
                balances[creditor] = balances.get(creditor, ZERO) + amount
        return balances

    def _push(self, heap, user: Member, magnitude: Decimal):
        heapq.heappush(heap, (-magnitude, next(self._sequence), user))

    @staticmethod
    def _pop(heap) -> Tuple[Decimal, Member]:
        negative_magnitude, _, user = heapq.heappop(heap)
        return -negative_magnitude, user


def generate_optimized_payments(debt_graph: DebtGraph, tolerance: Optional[Decimal] = None) -> List[SuggestedPayment]:
    return SettlementOptimizer(debt_graph, tolerance=tolerance).generate_optimized_payments()
