"""
End-to-end settlement of one group snapshot.
"""
import logging
from decimal import Decimal
from typing import Optional

from settleup.models.records import GroupLedger, SettlementReport
from settleup.services.balance_aggregator import BalanceAggregator
from settleup.services.balance_calculator import BalanceCalculator
from settleup.services.settlement_optimizer import SettlementOptimizer
from settleup.services.transaction_simplifier import TransactionSimplifier

logger = logging.getLogger(__name__)


def settle_group(ledger: GroupLedger, tolerance: Optional[Decimal] = None) -> SettlementReport:
    """
    Compute balances and suggested payments for a group.

    Nothing is persisted: the caller decides whether to record the
    suggested payments.

    Raises:
        BalanceInconsistencyError: the group's records do not balance
    """
    calculator = BalanceCalculator(ledger, tolerance=tolerance)
    net_balances = calculator.calculate_net_balances()
    detailed_balances = calculator.calculate_detailed_balances()

    aggregated_graph = BalanceAggregator(net_balances, detailed_balances, tolerance=tolerance).aggregate_balances()
    simplified_graph = TransactionSimplifier(aggregated_graph, tolerance=tolerance).simplify_transactions()
    payments = SettlementOptimizer(simplified_graph, tolerance=tolerance).generate_optimized_payments()

    logger.debug(
        f"Settled group of {len(ledger.members)} members: "
        f"{len(ledger.expenses)} expenses, {len(ledger.payments)} payments -> "
        f"{len(payments)} suggested payments"
    )

    return SettlementReport(
        net_balances=net_balances,
        detailed_balances=detailed_balances,
        simplified_debts=simplified_graph,
        payments=payments,
    )
