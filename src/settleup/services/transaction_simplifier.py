"""
Debt graph simplification: opposing-edge cancellation and cycle elimination.
"""
import logging
from decimal import Decimal
from typing import Iterator, List, Optional, Set, Tuple

from settleup.core.config import settings
from settleup.core.money import ZERO
from settleup.models.records import DebtGraph, Member

logger = logging.getLogger(__name__)


class TransactionSimplifier:
    """
    Reduces a debt graph without changing anybody's net position.

    Works on its own copy of the graph. Traversal follows insertion order of
    debtors and creditors, so identical input yields identical output.
    """

    def __init__(self, debt_graph: DebtGraph, tolerance: Optional[Decimal] = None):
        self.debt_graph: DebtGraph = {debtor: dict(creditors) for debtor, creditors in debt_graph.items()}
        self.tolerance = settings.SETTLEMENT_TOLERANCE if tolerance is None else tolerance

    def simplify_transactions(self) -> DebtGraph:
        self.remove_direct_opposing_debts()
        self.find_and_remove_cycles()
        self.clean_zero_debts()
        return self.debt_graph

    def remove_direct_opposing_debts(self):
        """A owes B and B owes A collapse into one edge for the difference"""
        for user1 in list(self.debt_graph):
            for user2 in list(self.debt_graph.get(user1, {})):
                if user1 == user2 or not self._has_opposing_debts(user1, user2):
                    continue

                debt1_to_2 = self.debt_graph[user1][user2]
                debt2_to_1 = self.debt_graph[user2][user1]
                if debt1_to_2 > debt2_to_1:
                    self.debt_graph[user1][user2] = debt1_to_2 - debt2_to_1
                    del self.debt_graph[user2][user1]
                else:
                    self.debt_graph[user2][user1] = debt2_to_1 - debt1_to_2
                    del self.debt_graph[user1][user2]

    def find_and_remove_cycles(self):
        """
        Depth-first search over every debtor with an explicit stack.

        When an edge u -> v reaches a node still on the current path, the
        path from v to u plus the closing edge u -> v is a cycle, and its
        smallest edge is subtracted from every edge in it.

        A single pass can miss cycles that run through nodes an earlier
        search already finished, so passes repeat until one reduces nothing.
        Every reduction zeroes at least one edge, which bounds the passes.
        """
        while True:
            visited: Set[Member] = set()
            reduced = 0
            for start_node in list(self.debt_graph):
                if start_node not in visited:
                    reduced += self._depth_first_search(start_node, visited)
            if not reduced:
                break

    def clean_zero_debts(self):
        for debtor in list(self.debt_graph):
            creditors = self.debt_graph[debtor]
            for creditor in list(creditors):
                if creditors[creditor] <= self.tolerance:
                    del creditors[creditor]
            if not creditors:
                del self.debt_graph[debtor]

    def _depth_first_search(self, start_node: Member, visited: Set[Member]) -> int:
        """Returns the number of cycles reduced"""
        path: List[Member] = []
        on_path: Set[Member] = set()
        stack: List[Tuple[Member, Iterator[Member]]] = []

        def enter(node: Member):
            visited.add(node)
            on_path.add(node)
            path.append(node)
            # Snapshot of creditors: cycle removal only changes weights, never keys
            stack.append((node, iter(list(self.debt_graph.get(node, {})))))

        reduced = 0
        enter(start_node)
        while stack:
            node, neighbours = stack[-1]
            neighbour = next(neighbours, None)

            if neighbour is None:
                stack.pop()
                path.pop()
                on_path.discard(node)
                continue

            if self.debt_graph[node].get(neighbour, ZERO) <= self.tolerance:
                continue

            if neighbour not in visited:
                enter(neighbour)
            elif neighbour in on_path and self._process_cycle(path[path.index(neighbour):]):
                reduced += 1

        return reduced

    def _process_cycle(self, cycle: List[Member]) -> bool:
        edges = self._cycle_edges(cycle)
        min_debt = min(self.debt_graph[from_node].get(to_node, ZERO) for from_node, to_node in edges)
        # An earlier reduction in this pass already broke this cycle
        if min_debt <= self.tolerance:
            return False

        for from_node, to_node in edges:
            self.debt_graph[from_node][to_node] -= min_debt

        cycle_path = " -> ".join(str(getattr(node, "id", node)) for node in cycle + cycle[:1])
        logger.info(f"Cycle removed: {cycle_path}. Amount cancelled: {min_debt}")
        return True

    @staticmethod
    def _cycle_edges(cycle: List[Member]) -> List[Tuple[Member, Member]]:
        # Consecutive path edges plus the closing edge back to the first node
        return list(zip(cycle, cycle[1:])) + [(cycle[-1], cycle[0])]

    def _has_opposing_debts(self, user1: Member, user2: Member) -> bool:
        forward = self.debt_graph.get(user1, {}).get(user2)
        backward = self.debt_graph.get(user2, {}).get(user1)
        return (
            forward is not None and backward is not None
            and forward > self.tolerance and backward > self.tolerance
        )


def simplify_transactions(debt_graph: DebtGraph, tolerance: Optional[Decimal] = None) -> DebtGraph:
    return TransactionSimplifier(debt_graph, tolerance=tolerance).simplify_transactions()
