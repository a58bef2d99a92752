"""Authorized services for transactions and savings goals."""

from smart_input.services.base import AuthorizedService
from smart_input.services.savings import (
    InvalidGoalTransition,
    SavingsGoalError,
    SavingsGoalService,
    WithdrawalExceedsBalance,
)
from smart_input.services.transactions import CategoryTypeMismatch, TransactionService

__all__ = [
    "AuthorizedService",
    "TransactionService",
    "CategoryTypeMismatch",
    "SavingsGoalService",
    "SavingsGoalError",
    "WithdrawalExceedsBalance",
    "InvalidGoalTransition",
]
