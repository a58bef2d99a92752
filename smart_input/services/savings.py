"""
Savings Goal Service

Goals track progress towards a target amount through contributions:
manual deposits, withdrawals (negative contributions) and contributions
linked to income transactions.

DESIGN DECISION: Completion is sticky.
- An active goal that reaches its target becomes completed exactly once
- SavingsGoalCompleted is published for that transition only
- A later withdrawal or unlinked contribution lowers progress but never
  reopens the goal

The active -> completed transition is a conditional UPDATE in storage,
so two concurrent contributions cannot both "complete" the same goal.
"""

from datetime import date
from typing import Callable, Optional

import structlog

from smart_input.audit.logger import AuditLogger
from smart_input.events.dispatcher import EventDispatcher
from smart_input.events.events import SavingsGoalCompleted
from smart_input.models.finance import (
    ContributionKind,
    SavingsContribution,
    SavingsGoal,
    SavingsGoalStatus,
    TransactionType,
    utcnow,
)
from smart_input.models.money import CurrencyMismatch, InvalidAmount, Money
from smart_input.services.base import AuthorizedService
from smart_input.services.transactions import TransactionService
from smart_input.storage.interface import FinanceStorageInterface, NotFoundError


logger = structlog.get_logger(__name__)


class SavingsGoalError(Exception):
    """Base exception for savings goal rules."""
    pass


class WithdrawalExceedsBalance(SavingsGoalError):
    """Withdrawal larger than what the goal currently holds."""

    def __init__(self, goal_id: int, available: int, requested: int):
        self.goal_id = goal_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Cannot withdraw {requested} from goal {goal_id}: only {available} saved"
        )


class InvalidGoalTransition(SavingsGoalError):
    """Status change not allowed from the goal's current status."""

    def __init__(self, goal_id: int, current: SavingsGoalStatus, target: SavingsGoalStatus):
        self.goal_id = goal_id
        super().__init__(f"Goal {goal_id} cannot go from {current.value} to {target.value}")


# current status -> statuses it may move to by user action
ALLOWED_TRANSITIONS = {
    SavingsGoalStatus.ACTIVE: {SavingsGoalStatus.PAUSED, SavingsGoalStatus.CANCELLED},
    SavingsGoalStatus.PAUSED: {SavingsGoalStatus.ACTIVE, SavingsGoalStatus.CANCELLED},
    SavingsGoalStatus.COMPLETED: set(),
    SavingsGoalStatus.CANCELLED: set(),
}


class SavingsGoalService(AuthorizedService):
    """
    Authorized savings goal management.
    """

    default_entity_type = "savingsgoal"

    def __init__(
        self,
        storage: FinanceStorageInterface,
        dispatcher: Optional[EventDispatcher] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable = utcnow,
        transactions: Optional[TransactionService] = None,
    ):
        super().__init__(storage, dispatcher, audit_logger)
        self._clock = clock
        self._transactions = transactions

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _load(self, goal_id: int) -> SavingsGoal:
        goal = self._storage.get_savings_goal(goal_id)
        if goal is None:
            raise NotFoundError(f"Savings goal not found: {goal_id}")
        return goal

    def _owned_goal(self, user_id: int, goal_id: int, action: str = "update") -> SavingsGoal:
        goal = self._load(goal_id)
        self._authorize(action, user_id, goal)
        return goal

    @staticmethod
    def _check_money(amount: Money, goal: SavingsGoal) -> None:
        if amount.amount <= 0:
            raise InvalidAmount(amount.amount, "amount must be positive")
        if amount.currency != goal.currency:
            raise CurrencyMismatch(goal.currency, amount.currency)

    def _today(self) -> date:
        return self._clock().date()

    # -------------------------------------------------------------------------
    # Goals
    # -------------------------------------------------------------------------

    def create_goal(
        self,
        user_id: int,
        name: str,
        target: Money,
        target_account_id: Optional[int] = None,
        target_date: Optional[date] = None,
        description: Optional[str] = None,
    ) -> SavingsGoal:
        self._authorize("create", user_id)
        if target.amount <= 0:
            raise InvalidAmount(target.amount, "target must be positive")

        if target_account_id is not None:
            account = self._storage.get_account(target_account_id)
            if account is None:
                raise NotFoundError(f"Account not found: {target_account_id}")
            self._authorize("view", user_id, account)
            if account.currency != target.currency:
                raise CurrencyMismatch(account.currency, target.currency)

        goal = self._storage.add_savings_goal(
            SavingsGoal(
                user_id=user_id,
                target_account_id=target_account_id,
                name=name,
                description=description,
                target_amount=target.amount,
                currency=target.currency,
                target_date=target_date,
            )
        )
        logger.info("savings_goal_created", user_id=user_id, goal_id=goal.id)
        return goal

    def get_goal(self, user_id: int, goal_id: int) -> SavingsGoal:
        return self._owned_goal(user_id, goal_id, action="view")

    def list_goals(self, user_id: int) -> list[SavingsGoal]:
        self._authorize("view_any", user_id)
        return self._storage.list_savings_goals(user_id)

    def update_goal(
        self,
        user_id: int,
        goal_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        target: Optional[Money] = None,
        target_date: Optional[date] = None,
    ) -> SavingsGoal:
        """Edit a goal. Lowering the target below progress completes it."""
        goal = self._owned_goal(user_id, goal_id)

        changes = {}
        if name is not None:
            changes["name"] = name
        if description is not None:
            changes["description"] = description
        if target_date is not None:
            changes["target_date"] = target_date
        if target is not None:
            self._check_money(target, goal)
            changes["target_amount"] = target.amount

        self._storage.update_savings_goal(goal.model_copy(update=changes))
        self.check_completion(goal_id)
        return self._load(goal_id)

    # -------------------------------------------------------------------------
    # Contributions
    # -------------------------------------------------------------------------

    def _contribute(
        self,
        goal: SavingsGoal,
        amount: int,
        contribution_date: Optional[date],
        notes: Optional[str],
        kind: ContributionKind,
        transaction_id: Optional[int] = None,
    ) -> SavingsGoal:
        self._storage.add_contribution(
            SavingsContribution(
                savings_goal_id=goal.id,
                transaction_id=transaction_id,
                amount=amount,
                contribution_date=contribution_date or self._today(),
                notes=notes,
                kind=kind,
            )
        )
        self._storage.recalculate_goal_progress(goal.id)
        self.check_completion(goal.id)
        return self._load(goal.id)

    def add_contribution(
        self,
        user_id: int,
        goal_id: int,
        amount: Money,
        contribution_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> SavingsGoal:
        goal = self._owned_goal(user_id, goal_id)
        self._check_money(amount, goal)
        if goal.status == SavingsGoalStatus.CANCELLED:
            raise InvalidGoalTransition(goal_id, goal.status, SavingsGoalStatus.ACTIVE)
        return self._contribute(goal, amount.amount, contribution_date, notes, ContributionKind.MANUAL)

    def withdraw_contribution(
        self,
        user_id: int,
        goal_id: int,
        amount: Money,
        contribution_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> SavingsGoal:
        """
        Take money out of a goal.

        Raises:
            WithdrawalExceedsBalance: More than the goal currently holds
        """
        goal = self._owned_goal(user_id, goal_id)
        self._check_money(amount, goal)
        if amount.amount > goal.current_amount:
            raise WithdrawalExceedsBalance(goal_id, goal.current_amount, amount.amount)
        return self._contribute(goal, -amount.amount, contribution_date, notes, ContributionKind.MANUAL)

    def link_transaction(self, user_id: int, goal_id: int, transaction_id: int) -> SavingsGoal:
        """
        Count a transaction towards a goal.

        Income adds to the goal, an expense takes from it. Both the goal
        and the transaction must belong to the acting user; a transaction
        can be linked only once (DuplicateError otherwise).
        """
        goal = self._owned_goal(user_id, goal_id)
        transaction = self._storage.get_transaction(transaction_id)
        if transaction is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        self._authorize("view", user_id, transaction)

        if transaction.amount.currency != goal.currency:
            raise CurrencyMismatch(goal.currency, transaction.amount.currency)

        amount = transaction.amount.amount
        if transaction.type == TransactionType.EXPENSE:
            amount = -amount

        return self._contribute(
            goal,
            amount,
            transaction.occurred_at,
            transaction.description or None,
            ContributionKind.LINKED,
            transaction_id=transaction.id,
        )

    def transfer_to_goal(
        self,
        user_id: int,
        goal_id: int,
        from_account_id: int,
        amount: Money,
        category_id: Optional[int] = None,
        transfer_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> SavingsGoal:
        """
        Move money from an account into a goal.

        Records an expense on `from_account_id` and links it to the goal
        as a positive contribution. The expense is removed again if the
        contribution cannot be stored.

        Raises:
            InsufficientFundsError: The account cannot cover the amount
        """
        if self._transactions is None:
            raise RuntimeError("SavingsGoalService was built without a TransactionService")

        goal = self._owned_goal(user_id, goal_id)
        self._check_money(amount, goal)
        if goal.status == SavingsGoalStatus.CANCELLED:
            raise InvalidGoalTransition(goal_id, goal.status, SavingsGoalStatus.ACTIVE)

        transaction = self._transactions.record_expense(
            user_id,
            from_account_id,
            amount,
            occurred_at=transfer_date,
            category_id=category_id,
            description=notes or f"Transfer to savings: {goal.name}",
        )
        try:
            updated = self._contribute(
                goal,
                amount.amount,
                transaction.occurred_at,
                notes or "Transfer from account",
                ContributionKind.LINKED,
                transaction_id=transaction.id,
            )
        except Exception:
            self._transactions.delete(user_id, transaction.id)
            raise

        logger.info(
            "savings_transfer",
            goal_id=goal_id,
            account_id=from_account_id,
            transaction_id=transaction.id,
        )
        return updated

    def unlink_contribution(self, user_id: int, contribution_id: int) -> SavingsGoal:
        """
        Remove a contribution from its goal.

        The linked transaction, if any, is kept. Progress is recalculated;
        a completed goal stays completed.
        """
        contribution = self._storage.get_contribution(contribution_id)
        if contribution is None:
            raise NotFoundError(f"Contribution not found: {contribution_id}")
        goal = self._owned_goal(user_id, contribution.savings_goal_id)

        self._storage.delete_contribution(contribution_id)
        self._storage.recalculate_goal_progress(goal.id)
        logger.info("savings_contribution_unlinked", goal_id=goal.id, contribution_id=contribution_id)
        return self._load(goal.id)

    def goals_for_account(self, user_id: int, account_id: int) -> list[SavingsGoal]:
        """Active goals that collect money arriving on an account."""
        return [
            goal
            for goal in self._storage.list_savings_goals(user_id)
            if goal.target_account_id == account_id and goal.status == SavingsGoalStatus.ACTIVE
        ]

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def _transition(self, user_id: int, goal_id: int, target: SavingsGoalStatus) -> SavingsGoal:
        goal = self._owned_goal(user_id, goal_id)
        if target not in ALLOWED_TRANSITIONS[goal.status]:
            raise InvalidGoalTransition(goal_id, goal.status, target)

        self._storage.update_savings_goal(goal.model_copy(update={"status": target}))
        logger.info("savings_goal_status", goal_id=goal_id, status=target.value)
        return self._load(goal_id)

    def pause_goal(self, user_id: int, goal_id: int) -> SavingsGoal:
        return self._transition(user_id, goal_id, SavingsGoalStatus.PAUSED)

    def resume_goal(self, user_id: int, goal_id: int) -> SavingsGoal:
        self._transition(user_id, goal_id, SavingsGoalStatus.ACTIVE)
        # Contributions made while paused may already cover the target
        self.check_completion(goal_id)
        return self._load(goal_id)

    def cancel_goal(self, user_id: int, goal_id: int) -> SavingsGoal:
        return self._transition(user_id, goal_id, SavingsGoalStatus.CANCELLED)

    def check_completion(self, goal_id: int) -> bool:
        """
        Complete the goal if it is active and has reached its target.

        Returns True only for the call that made the transition; that
        call publishes SavingsGoalCompleted.
        """
        goal = self._load(goal_id)
        if goal.status != SavingsGoalStatus.ACTIVE or not goal.has_reached_target():
            return False

        if not self._storage.mark_goal_completed(goal_id, self._clock()):
            return False

        completed = self._load(goal_id)
        logger.info("savings_goal_completed", goal_id=goal_id, user_id=completed.user_id)
        if self._dispatcher:
            self._dispatcher.publish(SavingsGoalCompleted(savings_goal=completed))
        return True
