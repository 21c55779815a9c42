# tests/test_transaction_simplifier.py
import random
from decimal import Decimal

import pytest

from factories import MemberFactory
from settleup.services.transaction_simplifier import TransactionSimplifier, simplify_transactions


def b(value) -> Decimal:
    return Decimal(value)


class TestOpposingDebts:
    def test_different_amounts_collapse_to_the_net_edge(self, alice, bob, carol):
        graph = {
            alice: {bob: b('100.00')},
            bob: {alice: b('50.00'), carol: b('10.00')},
        }

        assert simplify_transactions(graph) == {
            alice: {bob: b('50.00')},
            bob: {carol: b('10.00')},
        }

    def test_reverse_direction_wins_when_larger(self, alice, bob):
        graph = {alice: {bob: b('20.00')}, bob: {alice: b('75.00')}}

        assert simplify_transactions(graph) == {bob: {alice: b('55.00')}}

    def test_equal_amounts_cancel_out(self, alice, bob):
        graph = {alice: {bob: b('75.50')}, bob: {alice: b('75.50')}}

        assert simplify_transactions(graph) == {}


class TestCycles:
    def test_equal_three_node_cycle_disappears(self, alice, bob, carol):
        graph = {
            alice: {bob: b('10.00')},
            bob: {carol: b('10.00')},
            carol: {alice: b('10.00')},
        }

        assert simplify_transactions(graph) == {}

    def test_unequal_cycle_is_reduced_by_its_smallest_edge(self, alice, bob, carol):
        graph = {
            alice: {bob: b('20.00')},
            bob: {carol: b('10.00')},
            carol: {alice: b('10.00')},
        }

        assert simplify_transactions(graph) == {alice: {bob: b('10.00')}}

    def test_closing_edge_can_be_the_smallest(self, alice, bob, carol):
        graph = {
            alice: {bob: b('30.00')},
            bob: {carol: b('25.00')},
            carol: {alice: b('5.00')},
        }

        assert simplify_transactions(graph) == {
            alice: {bob: b('25.00')},
            bob: {carol: b('20.00')},
        }

    def test_paths_leading_into_a_cycle_are_preserved(self, alice, bob, carol, dave):
        graph = {
            dave: {alice: b('5.00')},
            alice: {bob: b('15.00')},
            bob: {carol: b('10.00')},
            carol: {alice: b('10.00')},
        }

        assert simplify_transactions(graph) == {
            dave: {alice: b('5.00')},
            alice: {bob: b('5.00')},
        }

    def test_four_node_cycle(self, alice, bob, carol, dave):
        graph = {
            alice: {bob: b('40.00')},
            bob: {carol: b('12.00')},
            carol: {dave: b('30.00')},
            dave: {alice: b('12.00')},
        }

        assert simplify_transactions(graph) == {
            alice: {bob: b('28.00')},
            carol: {dave: b('18.00')},
        }

    def test_self_debt_is_dropped(self, alice, bob):
        graph = {alice: {alice: b('3.00'), bob: b('4.00')}}

        assert simplify_transactions(graph) == {alice: {bob: b('4.00')}}

    def test_acyclic_graph_is_unchanged(self, alice, bob, carol):
        graph = {alice: {bob: b('100.00')}, bob: {carol: b('100.00')}}

        assert simplify_transactions(graph) == graph


def test_net_positions_are_preserved(alice, bob, carol, dave):
    graph = {
        alice: {bob: b('12.34'), carol: b('5.00')},
        bob: {carol: b('7.66'), alice: b('2.00')},
        carol: {alice: b('9.99'), dave: b('1.01')},
        dave: {bob: b('3.50')},
    }

    assert net_positions(simplify_transactions(graph)) == net_positions(graph)


def test_input_graph_is_not_modified(alice, bob, carol):
    graph = {
        alice: {bob: b('10.00')},
        bob: {carol: b('10.00'), alice: b('3.00')},
        carol: {alice: b('10.00')},
    }
    snapshot = {debtor: dict(creditors) for debtor, creditors in graph.items()}

    TransactionSimplifier(graph).simplify_transactions()

    assert graph == snapshot


def test_simplifying_twice_is_a_no_op(alice, bob, carol, dave):
    graph = {
        alice: {bob: b('40.00'), dave: b('1.00')},
        bob: {carol: b('12.00'), alice: b('8.00')},
        carol: {dave: b('30.00')},
        dave: {alice: b('12.00')},
    }

    once = simplify_transactions(graph)

    assert simplify_transactions(once) == once


def test_cycle_through_an_already_finished_node_is_reduced(alice, bob, carol, dave):
    # alice -> carol -> dave -> alice is only reachable once the first cycle is gone
    graph = {
        alice: {bob: b('10.00'), carol: b('10.00')},
        bob: {dave: b('10.00')},
        carol: {dave: b('10.00')},
        dave: {alice: b('15.00')},
    }

    once = simplify_transactions(graph)

    assert once == {alice: {carol: b('5.00')}, carol: {dave: b('5.00')}}
    assert simplify_transactions(once) == once


def net_positions(graph):
    balances = {}
    for debtor, creditors in graph.items():
        for creditor, amount in creditors.items():
            balances[debtor] = balances.get(debtor, 0) - amount
            balances[creditor] = balances.get(creditor, 0) + amount
    return {user: amount for user, amount in balances.items() if amount != 0}


def has_cycle(graph):
    state = {}

    def visit(node):
        state[node] = 'open'
        for creditor in graph.get(node, {}):
            if state.get(creditor) == 'open':
                return True
            if creditor not in state and visit(creditor):
                return True
        state[node] = 'done'
        return False

    return any(node not in state and visit(node) for node in list(graph))


@pytest.mark.parametrize('seed', range(30))
def test_random_graphs_simplify_to_a_fixed_point(seed):
    rng = random.Random(seed)
    users = MemberFactory.build_batch(rng.randint(2, 8))
    graph = {}
    for _ in range(rng.randint(1, 30)):
        debtor, creditor = rng.sample(users, 2)
        # Whole amounts keep every reduced edge clear of the tolerance
        amount = Decimal(rng.randint(1, 500))
        graph.setdefault(debtor, {})
        graph[debtor][creditor] = graph[debtor].get(creditor, Decimal('0')) + amount

    once = simplify_transactions(graph)

    assert simplify_transactions(once) == once
    assert not has_cycle(once)
    assert net_positions(once) == net_positions(graph)


def test_identical_construction_gives_identical_output(alice, bob, carol, dave):
    def build():
        return {
            alice: {bob: b('10.00'), carol: b('4.00')},
            bob: {carol: b('6.00'), dave: b('2.00')},
            carol: {alice: b('5.00')},
            dave: {alice: b('2.00')},
        }

    assert list(simplify_transactions(build()).items()) == list(simplify_transactions(build()).items())
