"""
Domain events.

Plain immutable payloads. They are published only after the write they
describe has committed, so a listener can always read the record back.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from smart_input.models.finance import SavingsGoal, Transaction, utcnow


class DomainEvent(BaseModel):
    """Base class for everything published on the dispatcher."""

    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(default_factory=uuid4)
    occurred_at: datetime = Field(default_factory=utcnow)

    @property
    def name(self) -> str:
        return type(self).__name__


class TransactionCreated(DomainEvent):
    """A transaction was persisted and its balance change committed."""

    transaction: Transaction
    correlation_id: Optional[UUID] = None


class SavingsGoalCompleted(DomainEvent):
    """A savings goal moved from active to completed (happens once per goal)."""

    savings_goal: SavingsGoal
