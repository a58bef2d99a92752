"""
Transaction Service

Records income and expenses against a user's accounts.

Rules:
- The account (and category, when given) must belong to the acting user
- The category must apply to the transaction type (its own type or 'both')
- The amount must be positive and in the account's currency
- Expenses may not overdraw an account, except a credit card
- TransactionCreated is published once, after the write has committed
"""

from datetime import date
from typing import Optional
from uuid import UUID

import structlog

from smart_input.events.events import TransactionCreated
from smart_input.models.audit import AuditEventBuilder
from smart_input.models.finance import AccountType, Transaction, TransactionType, utcnow
from smart_input.models.money import CurrencyMismatch, InvalidAmount, Money
from smart_input.services.base import AuthorizedService
from smart_input.storage.interface import NotFoundError


logger = structlog.get_logger(__name__)


class CategoryTypeMismatch(ValueError):
    """Category is for the other transaction type."""

    def __init__(self, category_id: int, category_type: str, transaction_type: str):
        self.category_id = category_id
        self.category_type = category_type
        self.transaction_type = transaction_type
        super().__init__(
            f"Category {category_id} is for {category_type}, not {transaction_type}"
        )


UPDATABLE_FIELDS = {
    "account_id",
    "category_id",
    "amount",
    "type",
    "occurred_at",
    "description",
    "notes",
}


class TransactionService(AuthorizedService):
    """
    Authorized create/read/update/delete for transactions.
    """

    default_entity_type = "transaction"

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _owned_account(self, user_id: int, account_id: int):
        account = self._storage.get_account(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")
        self._authorize("update", user_id, account)
        return account

    def _owned_category(
        self,
        user_id: int,
        category_id: Optional[int],
        transaction_type: TransactionType,
    ) -> None:
        if category_id is None:
            return
        category = self._storage.get_category(category_id)
        if category is None:
            raise NotFoundError(f"Category not found: {category_id}")
        self._authorize("view", user_id, category)
        if not category.applies_to(transaction_type):
            raise CategoryTypeMismatch(category_id, category.type.value, transaction_type.value)

    @staticmethod
    def _check_amount(amount: Money, currency: str) -> None:
        if amount.amount <= 0:
            raise InvalidAmount(amount.amount, "transaction amount must be positive")
        if amount.currency != currency:
            raise CurrencyMismatch(currency, amount.currency)

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def record(
        self,
        user_id: int,
        account_id: int,
        amount: Money,
        transaction_type: TransactionType,
        occurred_at: Optional[date] = None,
        category_id: Optional[int] = None,
        description: str = "",
        notes: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Persist a transaction and update the account balance.

        Raises:
            AccessDenied: Account or category belongs to someone else
            NotFoundError: Account or category doesn't exist
            CategoryTypeMismatch: Category is for the other transaction type
            InvalidAmount / CurrencyMismatch: Bad amount
            InsufficientFundsError: Expense larger than a non-credit balance
        """
        self._authorize("create", user_id)
        account = self._owned_account(user_id, account_id)
        transaction_type = TransactionType(transaction_type)
        self._owned_category(user_id, category_id, transaction_type)
        self._check_amount(amount, account.currency)

        transaction = Transaction(
            user_id=user_id,
            account_id=account.id,
            category_id=category_id,
            amount=amount,
            type=transaction_type,
            occurred_at=occurred_at or utcnow().date(),
            description=(description or "")[:255],
            notes=notes,
        )

        saved = self._storage.create_transaction(
            transaction,
            allow_overdraft=(
                transaction_type == TransactionType.INCOME
                or account.account_type == AccountType.CREDIT_CARD
            ),
        )

        # Committed and readable from here on
        if self._dispatcher:
            self._dispatcher.publish(
                TransactionCreated(transaction=saved, correlation_id=correlation_id)
            )

        logger.info(
            "transaction_recorded",
            user_id=user_id,
            transaction_id=saved.id,
            type=saved.type.value,
        )
        return saved

    def record_income(self, user_id: int, account_id: int, amount: Money, **kwargs) -> Transaction:
        return self.record(user_id, account_id, amount, TransactionType.INCOME, **kwargs)

    def record_expense(self, user_id: int, account_id: int, amount: Money, **kwargs) -> Transaction:
        return self.record(user_id, account_id, amount, TransactionType.EXPENSE, **kwargs)

    # -------------------------------------------------------------------------
    # Read
    # -------------------------------------------------------------------------

    def _load(self, transaction_id: int) -> Transaction:
        transaction = self._storage.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        return transaction

    def get(self, user_id: int, transaction_id: int) -> Transaction:
        transaction = self._load(transaction_id)
        self._authorize("view", user_id, transaction)
        return transaction

    def list_for_user(self, user_id: int, **filters) -> list[Transaction]:
        self._authorize("view_any", user_id)
        return self._storage.list_transactions(user_id, **filters)

    # -------------------------------------------------------------------------
    # Update / delete
    # -------------------------------------------------------------------------

    def update(self, user_id: int, transaction_id: int, **changes) -> Transaction:
        """
        Change fields of an owned transaction; the balance effect moves with it.

        Overdraft is not re-checked on edits: the user is correcting a
        record, not spending money.
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        current = self._load(transaction_id)
        self._authorize("update", user_id, current)

        account_id = changes.get("account_id", current.account_id)
        account = self._owned_account(user_id, account_id)
        if "type" in changes:
            changes["type"] = TransactionType(changes["type"])

        updated = current.model_copy(update=changes)
        if "category_id" in changes or "type" in changes:
            self._owned_category(user_id, updated.category_id, updated.type)
        self._check_amount(updated.amount, account.currency)

        saved = self._storage.update_transaction(updated)
        if self._audit:
            self._audit.log(AuditEventBuilder.transaction_changed(user_id, saved.id, deleted=False))
        return saved

    def delete(self, user_id: int, transaction_id: int) -> bool:
        """Hard-delete an owned transaction and reverse its balance effect."""
        current = self._load(transaction_id)
        self._authorize("delete", user_id, current)

        deleted = self._storage.delete_transaction(transaction_id)
        if deleted and self._audit:
            self._audit.log(AuditEventBuilder.transaction_changed(user_id, transaction_id, deleted=True))
        return deleted
