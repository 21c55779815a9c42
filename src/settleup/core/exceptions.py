"""
Error taxonomy for settlement computations.

Input errors are the caller's fault and map to a rejected request.
Internal consistency errors mean a computation bug or corrupted records
and fail the whole balance/settlement request.
"""
from decimal import Decimal
from typing import Optional


class SettleUpError(Exception):
    """Base class for every error raised by settleup"""


class SplitInputError(SettleUpError, ValueError):
    """Invalid splitting method or parameters"""


class InvalidRecordError(SettleUpError, ValueError):
    """An expense, payment or membership change rejected before it is stored"""


class NotFoundError(SettleUpError, LookupError):
    """Unknown group, user or expense"""


class InternalConsistencyError(SettleUpError, RuntimeError):
    """A computed result violates an invariant the inputs should guarantee"""


class SplitIntegrityError(InternalConsistencyError):
    """Computed shares do not add up to the expense total"""


class BalanceInconsistencyError(InternalConsistencyError):
    """Net balances of a group do not sum to zero within tolerance"""

    def __init__(self, message: str, discrepancy: Optional[Decimal] = None):
        super().__init__(message)
        self.discrepancy = discrepancy
