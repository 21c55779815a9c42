"""
Aggregation of a group's balances into a simplified debt graph.
"""
import logging
from decimal import Decimal
from typing import Dict, Optional

from settleup.core.config import settings
from settleup.core.exceptions import BalanceInconsistencyError
from settleup.core.money import ZERO, is_negligible, money
from settleup.models.records import DebtGraph, NetBalances

logger = logging.getLogger(__name__)


class BalanceAggregator:
    """
    Validates net balances and rebuilds a debtor -> creditor graph from them.

    Both inputs are copied; the caller's mappings are never modified.
    """

    def __init__(self, net_balances: NetBalances, detailed_balances: DebtGraph, tolerance: Optional[Decimal] = None):
        self.net_balances: NetBalances = dict(net_balances)
        self.detailed_balances: DebtGraph = {
            debtor: dict(creditors) for debtor, creditors in detailed_balances.items()
        }
        self.tolerance = settings.SETTLEMENT_TOLERANCE if tolerance is None else tolerance

    def aggregate_balances(self) -> DebtGraph:
        """
        Returns:
            A simplified graph with the same net effect as the balances.

        Raises:
            BalanceInconsistencyError: balances do not sum to zero within tolerance
        """
        self.validate_overall_balance()
        self.handle_rounding_discrepancies()
        return self.build_simplified_debt_graph()

    def validate_overall_balance(self):
        total_net_sum = sum(self.net_balances.values(), ZERO)

        if abs(total_net_sum) > self.tolerance:
            logger.error(f"Aggregated balance inconsistency: balances add up to {total_net_sum}, expected 0")
            raise BalanceInconsistencyError(
                f"Group net balances do not add up to zero (difference: {total_net_sum})",
                discrepancy=total_net_sum,
            )

        if total_net_sum != 0:
            logger.warning(f"Small balance inconsistency (rounding): balances add up to {total_net_sum}, adjusting")
            self._adjust_small_discrepancy(total_net_sum)

    def handle_rounding_discrepancies(self):
        """Drop direct debts too small to matter and debtors left with none"""
        for debtor in list(self.detailed_balances):
            creditors = self.detailed_balances[debtor]
            for creditor in list(creditors):
                if is_negligible(creditors[creditor], self.tolerance):
                    del creditors[creditor]
            if not creditors:
                del self.detailed_balances[debtor]

    def build_simplified_debt_graph(self) -> DebtGraph:
        """
        Match debtors to creditors from net balances alone.

        The result is a new graph, not a subset of the detailed debts: largest
        debtors are walked first, each consuming creditor capacity (largest
        creditors first) until its debt is covered.
        """
        debtors = sorted(
            ((user, amount) for user, amount in self.net_balances.items() if amount < 0),
            key=lambda item: item[1],
        )
        creditors = sorted(
            ((user, amount) for user, amount in self.net_balances.items() if amount > 0),
            key=lambda item: -item[1],
        )
        remaining_credit: Dict = dict(creditors)

        simplified_graph: DebtGraph = {}
        for debtor, balance in debtors:
            debt_amount = -balance

            for creditor, _ in creditors:
                credit_amount = remaining_credit[creditor]
                if debt_amount <= self.tolerance:
                    break
                if credit_amount <= self.tolerance or debtor == creditor:
                    continue

                payment_amount = min(debt_amount, credit_amount)
                edges = simplified_graph.setdefault(debtor, {})
                edges[creditor] = edges.get(creditor, ZERO) + payment_amount

                debt_amount -= payment_amount
                remaining_credit[creditor] = credit_amount - payment_amount

        cleaned_graph: DebtGraph = {}
        for debtor, edges in simplified_graph.items():
            significant = {creditor: money(amount) for creditor, amount in edges.items() if amount > self.tolerance}
            if significant:
                cleaned_graph[debtor] = significant

        return cleaned_graph

    def _adjust_small_discrepancy(self, discrepancy: Decimal):
        if not self.net_balances:
            logger.warning(f"No users to absorb balance discrepancy of {discrepancy}")
            return

        user_to_adjust = next(iter(self.net_balances))
        self.net_balances[user_to_adjust] -= discrepancy
        logger.info(f"Discrepancy of {discrepancy} absorbed by user {getattr(user_to_adjust, 'id', user_to_adjust)}")
