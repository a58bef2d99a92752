"""
Audit Models for Smart Input

Every significant step of an ingestion is logged for audit purposes.
This provides:
1. Complete traceability from raw input to saved transaction
2. Debugging information when a parser misbehaves
3. A record of who changed which transaction

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step in the ingestion pipeline has its own event type.
    """
    # Parsing
    INPUT_REJECTED = "input_rejected"
    DRAFT_PARSED = "draft_parsed"
    PARSE_FAILED = "parse_failed"

    # Validation
    VALIDATION_FAILED = "validation_failed"

    # Matching
    HINTS_MATCHED = "hints_matched"

    # Persistence
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    ACCESS_DENIED = "access_denied"

    # Savings goals
    SAVINGS_GOAL_COMPLETED = "savings_goal_completed"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"
    LISTENER_FAILED = "listener_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Who and what
    user_id: Optional[int] = Field(
        default=None,
        description="Acting user, when there is one"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'ingestion', 'savings_goal')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one ingestion)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.draft_parsed(user_id, "text", 0.9, correlation_id)
        event = AuditEventBuilder.transaction_created(user_id, transaction_id, "$25.50", correlation_id)
    """

    @staticmethod
    def input_rejected(
        user_id: int,
        input_type: str,
        reason: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INPUT_REJECTED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="ingestion",
            correlation_id=correlation_id,
            description=f"Rejected {input_type} input",
            error_message=reason,
            details={"input_type": input_type},
            is_user_action=True,
        )

    @staticmethod
    def draft_parsed(
        user_id: int,
        input_type: str,
        confidence: float,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DRAFT_PARSED,
            user_id=user_id,
            entity_type="ingestion",
            correlation_id=correlation_id,
            description=f"Parsed {input_type} input with {confidence:.0%} confidence",
            details={"input_type": input_type, "confidence": confidence},
            is_user_action=True,
        )

    @staticmethod
    def parse_failed(
        user_id: int,
        input_type: str,
        error_type: str,
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PARSE_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="ingestion",
            correlation_id=correlation_id,
            description=f"Could not understand {input_type} input ({error_type})",
            error_message=error_message,
            details={"input_type": input_type, "error_type": error_type},
        )

    @staticmethod
    def validation_failed(
        user_id: int,
        issues: list[dict],
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="ingestion",
            correlation_id=correlation_id,
            description=f"Draft validation failed with {len(issues)} issues",
            details={"issues": issues},
        )

    @staticmethod
    def hints_matched(
        user_id: int,
        category_id: Optional[int],
        account_id: Optional[int],
        correlation_id: Optional[UUID],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.HINTS_MATCHED,
            severity=AuditSeverity.DEBUG,
            user_id=user_id,
            entity_type="ingestion",
            correlation_id=correlation_id,
            description="Resolved category/account hints",
            details={"category_id": category_id, "account_id": account_id},
        )

    @staticmethod
    def transaction_created(
        user_id: int,
        transaction_id: int,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=str(transaction_id),
            correlation_id=correlation_id,
            description=f"Transaction saved: {amount}",
            details={"amount": amount},
        )

    @staticmethod
    def transaction_changed(
        user_id: int,
        transaction_id: int,
        deleted: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.TRANSACTION_DELETED
                if deleted
                else AuditEventType.TRANSACTION_UPDATED
            ),
            user_id=user_id,
            entity_type="transaction",
            entity_id=str(transaction_id),
            description=f"Transaction {'deleted' if deleted else 'updated'}",
            is_user_action=True,
        )

    @staticmethod
    def access_denied(
        user_id: Optional[int],
        action: str,
        entity_type: str,
        entity_id: Optional[int],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCESS_DENIED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            description=f"Denied {action} on {entity_type}",
            details={"action": action},
            is_user_action=True,
        )

    @staticmethod
    def savings_goal_completed(
        user_id: int,
        goal_id: int,
        target: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVINGS_GOAL_COMPLETED,
            user_id=user_id,
            entity_type="savings_goal",
            entity_id=str(goal_id),
            description=f"Savings goal reached: {target}",
            details={"target": target},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID]
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service},
            correlation_id=correlation_id,
        )

    @staticmethod
    def listener_failed(
        event_name: str,
        listener: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LISTENER_FAILED,
            severity=AuditSeverity.ERROR,
            description=f"Listener {listener} failed on {event_name}",
            error_message=error_message,
            details={"event": event_name, "listener": listener},
        )
