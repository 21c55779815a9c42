"""
Expense splitting rules for shared groups.

Turns one expense total into the amount each participant owes, using one of
four methods. Every method guarantees the shares add up to the total at two
decimal places; whatever rounding leaves over goes to the first participant.
"""
import enum
import logging
from decimal import Decimal, ROUND_DOWN
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from settleup.core.exceptions import SplitInputError, SplitIntegrityError
from settleup.core.money import ZERO, is_number, money, to_decimal

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100.00")


class SplitMethod(str, enum.Enum):
    EQUALLY = "equally"
    BY_PERCENTAGES = "by_percentages"
    BY_WEIGHTS = "by_weights"
    BY_FIXED_AMOUNTS = "by_fixed_amounts"


# Names accepted from API clients, in addition to the enum values themselves
METHOD_ALIASES = {
    "equally": SplitMethod.EQUALLY,
    "percentages": SplitMethod.BY_PERCENTAGES,
    "weights": SplitMethod.BY_WEIGHTS,
    "fixed_amounts": SplitMethod.BY_FIXED_AMOUNTS,
}

# Key inside the params mapping that each method reads
PARAM_KEYS = {
    SplitMethod.BY_PERCENTAGES: "percentages",
    SplitMethod.BY_WEIGHTS: "weights",
    SplitMethod.BY_FIXED_AMOUNTS: "amounts",
}


def resolve_split_method(method: Union[SplitMethod, str, None]) -> SplitMethod:
    """Map an enum value, engine name or API alias onto a SplitMethod"""
    if method is None or method == "":
        return SplitMethod.EQUALLY
    if isinstance(method, SplitMethod):
        return method
    name = str(method).strip().lower()
    if name in METHOD_ALIASES:
        return METHOD_ALIASES[name]
    try:
        return SplitMethod(name)
    except ValueError:
        raise SplitInputError(f"Unknown splitting method: {method}") from None


def normalize_splitting_params(params: Optional[Mapping[str, Any]], method: Union[SplitMethod, str, None]) -> Dict[str, Dict[Any, Any]]:
    """
    Prepare raw API parameters for the engine.

    String user ids become ints and numeric strings become Decimals. Values
    that cannot be read as numbers are passed through untouched so the
    engine reports them.
    """
    if not params:
        return {}

    split_method = resolve_split_method(method)
    key = PARAM_KEYS.get(split_method)
    if key is None or not params.get(key):
        return {}

    raw = params[key]
    if not isinstance(raw, Mapping):
        return {key: raw}

    normalized = {}
    for user_id, value in raw.items():
        normalized[_normalize_user_id(user_id)] = _normalize_number(value)
    return {key: normalized}


def _normalize_user_id(user_id):
    if isinstance(user_id, str) and user_id.strip().lstrip('-').isdigit():
        return int(user_id)
    return user_id


def _normalize_number(value):
    if isinstance(value, str):
        try:
            parsed = Decimal(value.strip())
        except ArithmeticError:
            return value
        return parsed if parsed.is_finite() else value
    return value


class SplitRuleEngine:
    """Splits one expense over a fixed set of participants"""

    def __init__(self, participants: Sequence[Any], total_amount):
        """
        Args:
            participants: active members of the group, in enumeration order.
                Each must expose an ``id`` attribute.
            total_amount: expense total as a Decimal (or anything Decimal accepts)
        """
        self.participants = list(participants)
        self.total_amount = to_decimal(total_amount)
        self._by_id = {participant.id: participant for participant in self.participants}

    def apply_split(self, method: Union[SplitMethod, str], params: Optional[Mapping[str, Any]] = None) -> Dict[Any, Decimal]:
        """
        Compute what each participant owes.

        Raises:
            SplitInputError: no participants, unknown method or invalid parameters
            SplitIntegrityError: the computed shares do not add up to the total
        """
        if not self.participants:
            raise SplitInputError("There are no active participants in the group to split the expense")

        split_method = resolve_split_method(method)
        params = params or {}

        if split_method is SplitMethod.EQUALLY:
            shares = self.split_equally()
        elif split_method is SplitMethod.BY_PERCENTAGES:
            shares = self.split_by_percentages(params.get("percentages"))
        elif split_method is SplitMethod.BY_WEIGHTS:
            shares = self.split_by_weights(params.get("weights"))
        else:
            shares = self.split_by_fixed_amounts(params.get("amounts"))

        logger.debug(f"Split {self.total_amount} {split_method.value} over {len(shares)} participants")
        return shares

    def split_equally(self) -> Dict[Any, Decimal]:
        exact_share = self.total_amount / len(self.participants)
        shares = self._round_shares({participant: exact_share for participant in self.participants})

        self.validate_total_match(shares)
        return shares

    def split_by_percentages(self, percentages) -> Dict[Any, Decimal]:
        if not isinstance(percentages, Mapping) or not all(
            is_number(value) and to_decimal(value) >= 0 for value in percentages.values()
        ):
            raise SplitInputError(
                "Percentages must map user ids to non-negative numeric values"
            )

        percentage_sum = money(sum((to_decimal(value) for value in percentages.values()), ZERO))
        if percentage_sum != HUNDRED:
            raise SplitInputError(f"Percentages must add up to 100% (got {percentage_sum}%)")

        exact_shares = {}
        for user_id, percentage in percentages.items():
            participant = self._participant(user_id)
            exact_shares[participant] = self.total_amount * to_decimal(percentage) / 100

        shares = self._round_shares(exact_shares)
        self.validate_total_match(shares)
        return shares

    def split_by_weights(self, weights) -> Dict[Any, Decimal]:
        if not isinstance(weights, Mapping) or not all(
            is_number(value) and to_decimal(value) > 0 for value in weights.values()
        ):
            raise SplitInputError(
                "Weights must map user ids to positive numeric values"
            )

        total_weight = sum((to_decimal(value) for value in weights.values()), ZERO)
        if total_weight <= 0:
            raise SplitInputError("Weights must add up to more than zero")

        exact_shares = {}
        for user_id, weight in weights.items():
            participant = self._participant(user_id)
            exact_shares[participant] = self.total_amount * (to_decimal(weight) / total_weight)

        shares = self._round_shares(exact_shares)
        self.validate_total_match(shares)
        return shares

    def split_by_fixed_amounts(self, amounts) -> Dict[Any, Decimal]:
        if not isinstance(amounts, Mapping) or not all(
            is_number(value) and to_decimal(value) >= 0 for value in amounts.values()
        ):
            raise SplitInputError(
                "Fixed amounts must map user ids to non-negative numeric values"
            )

        for user_id in amounts:
            self._participant(user_id)

        fixed_sum = money(sum((to_decimal(value) for value in amounts.values()), ZERO))
        if fixed_sum != money(self.total_amount):
            raise SplitInputError(
                f"Fixed amounts add up to {fixed_sum}, expense total is {money(self.total_amount)}"
            )

        shares = {self._participant(user_id): money(amount) for user_id, amount in amounts.items()}

        self.validate_total_match(shares)
        return shares

    def validate_total_match(self, shares: Mapping[Any, Decimal]):
        """Last check after every method; failing here is an engine bug, not bad input"""
        sum_of_parts = money(sum(shares.values(), ZERO))
        expected = money(self.total_amount)
        if sum_of_parts != expected:
            logger.error(f"Split shares add up to {sum_of_parts}, expected {expected}")
            raise SplitIntegrityError(
                f"Internal validation error: shares add up to {sum_of_parts}, "
                f"expense total is {expected}"
            )

    def _participant(self, user_id):
        participant = self._by_id.get(user_id)
        if participant is None:
            raise SplitInputError(f"User with id {user_id} is not an active participant of the group")
        return participant

    def _round_shares(self, exact_shares: Dict[Any, Decimal]) -> Dict[Any, Decimal]:
        """
        Round each share to cents and give the leftover to the first participant.

        Shares are rounded half up. When that overshoots the total by more
        than the first share can give back (tiny totals over many people),
        every share is rounded down instead so the leftover is never negative.
        """
        shares = {participant: money(amount) for participant, amount in exact_shares.items()}
        first = next(iter(shares))
        residual = money(self.total_amount) - sum(shares.values(), ZERO)

        if shares[first] + residual < 0:
            shares = {participant: money(amount, rounding=ROUND_DOWN) for participant, amount in exact_shares.items()}
            residual = money(self.total_amount) - sum(shares.values(), ZERO)
            logger.debug(f"Rounded shares of {self.total_amount} down, {residual} left for the first participant")

        # Rounding leftovers go to the first listed participant
        if residual != 0:
            shares[first] += residual
        return shares
