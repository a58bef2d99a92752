"""
Built-in listeners.

- AuditTrailListener: writes an audit event for every created
  transaction and completed savings goal
- SavingsGoalListener: counts income that lands on a goal's target
  account towards that goal
"""

from typing import TYPE_CHECKING

import structlog

from smart_input.audit.logger import AuditLogger
from smart_input.events.dispatcher import EventDispatcher
from smart_input.events.events import SavingsGoalCompleted, TransactionCreated
from smart_input.models.audit import AuditEventBuilder
from smart_input.models.finance import TransactionType
from smart_input.storage.interface import DuplicateError

if TYPE_CHECKING:
    from smart_input.services.savings import SavingsGoalService


logger = structlog.get_logger(__name__)


class AuditTrailListener:
    """Turns domain events into audit records."""

    def __init__(self, audit_logger: AuditLogger):
        self._audit = audit_logger

    def on_transaction_created(self, event: TransactionCreated) -> None:
        transaction = event.transaction
        self._audit.log(
            AuditEventBuilder.transaction_created(
                user_id=transaction.user_id,
                transaction_id=transaction.id,
                amount=str(transaction.amount),
                correlation_id=event.correlation_id,
            )
        )

    def on_savings_goal_completed(self, event: SavingsGoalCompleted) -> None:
        goal = event.savings_goal
        self._audit.log(
            AuditEventBuilder.savings_goal_completed(
                user_id=goal.user_id,
                goal_id=goal.id,
                target=str(goal.target_money()),
            )
        )


class SavingsGoalListener:
    """Links income on a goal's target account to the goal."""

    def __init__(self, savings_service: "SavingsGoalService"):
        self._savings = savings_service

    def on_transaction_created(self, event: TransactionCreated) -> None:
        transaction = event.transaction
        if transaction.type != TransactionType.INCOME:
            return

        goals = self._savings.goals_for_account(transaction.user_id, transaction.account_id)
        for goal in goals:
            if goal.currency != transaction.amount.currency:
                continue
            try:
                self._savings.link_transaction(transaction.user_id, goal.id, transaction.id)
            except DuplicateError:
                logger.info(
                    "transaction_already_linked",
                    goal_id=goal.id,
                    transaction_id=transaction.id,
                )
                continue
            logger.info("income_linked_to_goal", goal_id=goal.id, transaction_id=transaction.id)
            # One transaction counts towards one goal
            break


def register_listeners(
    dispatcher: EventDispatcher,
    audit_logger: AuditLogger,
    savings_service: "SavingsGoalService",
) -> None:
    """Subscribe the built-in listeners."""
    audit_trail = AuditTrailListener(audit_logger)
    savings = SavingsGoalListener(savings_service)

    dispatcher.subscribe(TransactionCreated, audit_trail.on_transaction_created)
    dispatcher.subscribe(SavingsGoalCompleted, audit_trail.on_savings_goal_completed)
    dispatcher.subscribe(TransactionCreated, savings.on_transaction_created)
