"""Domain events and their in-process dispatcher."""

from smart_input.events.dispatcher import EventDispatcher
from smart_input.events.events import DomainEvent, SavingsGoalCompleted, TransactionCreated
from smart_input.events.listeners import (
    AuditTrailListener,
    SavingsGoalListener,
    register_listeners,
)

__all__ = [
    "EventDispatcher",
    "DomainEvent",
    "TransactionCreated",
    "SavingsGoalCompleted",
    "AuditTrailListener",
    "SavingsGoalListener",
    "register_listeners",
]
