# tests/test_balance_calculator.py
import logging
import random
from decimal import Decimal

import pytest

from factories import ExpenseRecordFactory, MemberFactory, expense, ledger, payment
from settleup.services.balance_calculator import BalanceCalculator
from settleup.services.split_rule_engine import SplitRuleEngine


@pytest.fixture
def dinner(alice, bob, carol):
    # Alice pays 30.00, everyone owes 10.00
    return expense(alice, (alice, '10.00'), (bob, '10.00'), (carol, '10.00'))


class TestNetBalances:
    def test_single_expense(self, alice, bob, carol, dinner):
        result = BalanceCalculator(ledger([alice, bob, carol], [dinner])).calculate_net_balances()

        assert result == {alice: Decimal('20.00'), bob: Decimal('-10.00'), carol: Decimal('-10.00')}

    def test_payment_reduces_what_the_payer_owes(self, alice, bob, carol, dinner):
        group = ledger([alice, bob, carol], [dinner], [payment(bob, alice, '10.00')])

        result = BalanceCalculator(group).calculate_net_balances()

        assert result[alice] == Decimal('10.00')
        assert result[bob] == Decimal('0.00')
        assert result[carol] == Decimal('-10.00')

    def test_rounding_residual_is_absorbed_and_rounded(self, alice, bob, carol):
        group = ledger(
            [alice, bob, carol],
            [expense(alice, (alice, '33.3333'), (bob, '33.3333'), (carol, '33.3334'), total='100.00')]
        )

        result = BalanceCalculator(group).calculate_net_balances()

        assert abs(sum(result.values())) <= Decimal('0.01')
        assert all(amount.as_tuple().exponent == -2 for amount in result.values())

    def test_residual_within_tolerance_goes_to_first_member(self, alice, bob, carol, caplog):
        group = ledger(
            [bob, alice, carol],
            [expense(alice, (alice, '3.33'), (bob, '3.33'), (carol, '3.335'), total='10.00')]
        )

        with caplog.at_level(logging.WARNING):
            result = BalanceCalculator(group).calculate_net_balances()

        # 0.005 taken from Bob, first in member enumeration
        assert result[bob] == Decimal('-3.34')
        assert result[alice] == Decimal('6.67')
        assert result[carol] == Decimal('-3.34')
        assert 'absorbed' in caplog.text

    def test_inconsistency_beyond_tolerance_is_logged_not_raised(self, alice, bob, carol, caplog):
        broken = expense(alice, (bob, '10.00'), (carol, '10.00'), total='30.00')

        with caplog.at_level(logging.ERROR):
            result = BalanceCalculator(ledger([alice, bob, carol], [broken])).calculate_net_balances()

        assert sum(result.values()) == Decimal('10.00')
        assert 'inconsistency' in caplog.text

    def test_former_members_keep_their_balance(self, alice, bob, carol):
        group = ledger([alice, bob], [expense(alice, (alice, '5.00'), (carol, '5.00'))])

        result = BalanceCalculator(group).calculate_net_balances()

        assert result[carol] == Decimal('-5.00')

    def test_empty_group(self, alice):
        assert BalanceCalculator(ledger([alice])).calculate_net_balances() == {}

    def test_mixed_history_always_sums_to_zero(self, alice, bob, carol, dave):
        group = ledger(
            [alice, bob, carol, dave],
            [
                expense(alice, (alice, '25.01'), (bob, '25.00'), (carol, '25.00'), (dave, '25.00')),
                expense(bob, (alice, '13.37'), (carol, '6.63')),
                expense(dave, (dave, '0.01'), (bob, '99.99')),
            ],
            [payment(carol, alice, '12.50'), payment(bob, dave, '150.00'), payment(alice, bob, '0.99')]
        )

        result = BalanceCalculator(group).calculate_net_balances()

        assert abs(sum(result.values())) <= Decimal('0.01')


class TestDetailedBalances:
    def test_participants_owe_the_payer(self, alice, bob, carol, dinner):
        result = BalanceCalculator(ledger([alice, bob, carol], [dinner])).calculate_detailed_balances()

        assert result == {bob: {alice: Decimal('10.00')}, carol: {alice: Decimal('10.00')}}

    def test_debts_accumulate_across_expenses(self, alice, bob, carol, dinner):
        lunch = expense(alice, (bob, '7.50'))

        result = BalanceCalculator(ledger([alice, bob, carol], [dinner, lunch])).calculate_detailed_balances()

        assert result[bob] == {alice: Decimal('17.50')}

    def test_partial_payment_reduces_debt(self, alice, bob, carol, dinner):
        group = ledger([alice, bob, carol], [dinner], [payment(bob, alice, '4.00')])

        result = BalanceCalculator(group).calculate_detailed_balances()

        assert result[bob] == {alice: Decimal('6.00')}

    def test_exact_payment_removes_the_debtor(self, alice, bob, carol, dinner):
        group = ledger([alice, bob, carol], [dinner], [payment(bob, alice, '10.00')])

        result = BalanceCalculator(group).calculate_detailed_balances()

        assert bob not in result
        assert result == {carol: {alice: Decimal('10.00')}}

    def test_overpayment_becomes_a_reverse_debt(self, alice, bob):
        group = ledger(
            [alice, bob],
            [expense(alice, (alice, '20.00'), (bob, '20.00'))],
            [payment(bob, alice, '30.00')]
        )

        result = BalanceCalculator(group).calculate_detailed_balances()

        assert result == {alice: {bob: Decimal('10.00')}}

    def test_payment_without_debt_is_a_loan(self, alice, bob):
        result = BalanceCalculator(ledger([alice, bob], [], [payment(alice, bob, '15.00')])).calculate_detailed_balances()

        assert result == {bob: {alice: Decimal('15.00')}}


def random_ledger(rng):
    members = MemberFactory.build_batch(rng.randint(2, 8))
    expenses = []
    for _ in range(rng.randint(1, 15)):
        total = Decimal(rng.randint(1, 100000)) / 100
        participants = rng.sample(members, rng.randint(1, len(members)))
        if rng.random() < 0.5:
            shares = SplitRuleEngine(participants, total).apply_split('equally')
        else:
            weights = {member.id: rng.randint(1, 5) for member in participants}
            shares = SplitRuleEngine(participants, total).apply_split('by_weights', {'weights': weights})
        expenses.append(ExpenseRecordFactory(
            payer=rng.choice(members), total_amount=total, participants=tuple(shares.items())
        ))
    payments = []
    for _ in range(rng.randint(0, 10)):
        payer, receiver = rng.sample(members, 2)
        payments.append(payment(payer, receiver, Decimal(rng.randint(1, 50000)) / 100))
    return ledger(members, expenses, payments)


@pytest.mark.parametrize('seed', range(25))
def test_random_ledgers_balance_to_zero(seed):
    group = random_ledger(random.Random(seed))
    calculator = BalanceCalculator(group)

    net_balances = calculator.calculate_net_balances()
    detailed = calculator.calculate_detailed_balances()

    assert sum(net_balances.values()) == Decimal('0.00')
    assert all(amount.as_tuple().exponent == -2 for amount in net_balances.values())

    from_detailed = {}
    for debtor, creditors in detailed.items():
        for creditor, amount in creditors.items():
            assert amount > 0
            from_detailed[debtor] = from_detailed.get(debtor, Decimal('0')) - amount
            from_detailed[creditor] = from_detailed.get(creditor, Decimal('0')) + amount
    assert {user: amount for user, amount in from_detailed.items() if amount != 0} == {
        user: amount for user, amount in net_balances.items() if amount != 0
    }
