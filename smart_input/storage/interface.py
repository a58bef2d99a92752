"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap the SQL backend for another store later
2. Keep business logic decoupled from storage implementation
3. Make user scoping part of every read signature

The interface is intentionally simple - we're not building a full ORM.
Just the operations the ingestion pipeline and its services need.

CRITICAL: Every list/lookup that feeds matching takes a user_id and
returns only that user's records.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Optional
from uuid import UUID

from smart_input.models.audit import AuditEvent
from smart_input.models.finance import (
    Account,
    Category,
    IngestionRecord,
    SavingsContribution,
    SavingsGoal,
    Transaction,
    TransactionType,
)


class FinanceStorageInterface(ABC):
    """
    Abstract interface for finance record storage.

    Any storage implementation must implement these methods.
    Each write is atomic on its own.
    """

    # -------------------------------------------------------------------------
    # Categories
    # -------------------------------------------------------------------------

    @abstractmethod
    def add_category(self, category: Category) -> Category:
        """Persist a category and return it with its id."""
        pass

    @abstractmethod
    def get_category(self, category_id: int) -> Optional[Category]:
        pass

    @abstractmethod
    def list_categories(
        self,
        user_id: int,
        transaction_type: Optional[TransactionType] = None,
        active_only: bool = True,
    ) -> list[Category]:
        """
        List a user's categories.

        Args:
            user_id: Owner whose categories are returned
            transaction_type: When set, only categories of that type or 'both'
            active_only: Skip deactivated categories

        Returns:
            Categories ordered by name
        """
        pass

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    @abstractmethod
    def add_account(self, account: Account) -> Account:
        pass

    @abstractmethod
    def get_account(self, account_id: int) -> Optional[Account]:
        pass

    @abstractmethod
    def list_accounts(self, user_id: int, active_only: bool = True) -> list[Account]:
        """List a user's accounts ordered by id (oldest first)."""
        pass

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    def create_transaction(
        self,
        transaction: Transaction,
        allow_overdraft: bool = True,
    ) -> Transaction:
        """
        Insert a transaction and apply its balance delta to the account.

        Both happen in one unit of work; when this returns, the
        transaction is committed and readable.

        Raises:
            NotFoundError: If the account doesn't exist
            InsufficientFundsError: If allow_overdraft is False and the
                expense exceeds the account balance
        """
        pass

    @abstractmethod
    def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        pass

    @abstractmethod
    def list_transactions(
        self,
        user_id: int,
        account_id: Optional[int] = None,
        category_id: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Transaction]:
        """List a user's transactions, newest first."""
        pass

    @abstractmethod
    def update_transaction(self, transaction: Transaction) -> Transaction:
        """
        Replace a transaction's fields, moving its balance effect.

        The old delta is reversed on the old account and the new delta
        applied on the (possibly different) new account.

        Raises:
            NotFoundError: If the transaction doesn't exist
        """
        pass

    @abstractmethod
    def delete_transaction(self, transaction_id: int) -> bool:
        """Hard-delete a transaction and reverse its balance effect."""
        pass

    @abstractmethod
    def transaction_exists(
        self,
        user_id: int,
        amount: int,
        currency: str,
        occurred_at: date,
        description: Optional[str],
    ) -> bool:
        """Check if a similar transaction already exists (duplicate detection)."""
        pass

    # -------------------------------------------------------------------------
    # Savings goals
    # -------------------------------------------------------------------------

    @abstractmethod
    def add_savings_goal(self, goal: SavingsGoal) -> SavingsGoal:
        pass

    @abstractmethod
    def get_savings_goal(self, goal_id: int) -> Optional[SavingsGoal]:
        pass

    @abstractmethod
    def list_savings_goals(self, user_id: int) -> list[SavingsGoal]:
        pass

    @abstractmethod
    def update_savings_goal(self, goal: SavingsGoal) -> SavingsGoal:
        pass

    @abstractmethod
    def add_contribution(self, contribution: SavingsContribution) -> SavingsContribution:
        pass

    @abstractmethod
    def get_contribution(self, contribution_id: int) -> Optional[SavingsContribution]:
        pass

    @abstractmethod
    def list_contributions(self, goal_id: int) -> list[SavingsContribution]:
        pass

    @abstractmethod
    def delete_contribution(self, contribution_id: int) -> bool:
        pass

    @abstractmethod
    def recalculate_goal_progress(self, goal_id: int) -> SavingsGoal:
        """Set current_amount to the (non-negative) sum of contributions."""
        pass

    @abstractmethod
    def mark_goal_completed(self, goal_id: int, completed_at: datetime) -> bool:
        """
        Transition an active goal that reached its target to completed.

        Returns True only for the call that performed the transition,
        which is what makes the completion event fire exactly once.
        """
        pass

    # -------------------------------------------------------------------------
    # Ingestion history
    # -------------------------------------------------------------------------

    @abstractmethod
    def save_ingestion(self, record: IngestionRecord) -> IngestionRecord:
        pass

    @abstractmethod
    def get_ingestion(self, ingestion_id: int) -> Optional[IngestionRecord]:
        pass

    @abstractmethod
    def list_ingestions(self, user_id: int, limit: int = 50) -> list[IngestionRecord]:
        pass

    @abstractmethod
    def claim_ingestion(self, ingestion_id: int) -> bool:
        """
        Atomically flip an unsaved ingestion to saved.

        Returns:
            True for exactly one caller; False if it was already saved
        """
        pass

    @abstractmethod
    def release_ingestion(self, ingestion_id: int) -> bool:
        """Undo a claim whose transaction was never recorded."""
        pass

    @abstractmethod
    def mark_ingestion_saved(self, ingestion_id: int, transaction_id: int) -> bool:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """All events for one ingestion flow, in chronological order."""
        pass

    @abstractmethod
    def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """All events for a specific entity, in chronological order."""
        pass

    @abstractmethod
    def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """The most recent audit events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class InsufficientFundsError(StorageError):
    """Expense larger than the balance of a non-credit account."""

    def __init__(self, account_id: int, balance: int, requested: int):
        self.account_id = account_id
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"Insufficient funds on account {account_id}: "
            f"balance {balance}, requested {requested}"
        )
