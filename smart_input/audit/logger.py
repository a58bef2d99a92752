"""
Audit Logger

DESIGN DECISION: Every significant step of an ingestion is logged.
This provides:
1. Complete traceability from raw input to saved transaction
2. Debugging capability when a parser misbehaves
3. A history of who changed which transaction

The audit logger:
- Gracefully handles failures (a broken audit store doesn't break ingestion)
- Supports correlation IDs to trace related events
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from smart_input.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from smart_input.storage.interface import AuditStorageInterface, StorageError


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structlog for JSON logs through the stdlib logging tree."""
    logging.basicConfig(format="%(message)s", level=level)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when one is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("smart_input.audit")

    def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return self._storage.append_event(event)
            except StorageError as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    def log_draft_parsed(
        self,
        user_id: int,
        input_type: str,
        confidence: float,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.draft_parsed(user_id, input_type, confidence, correlation_id))

    def log_parse_failed(
        self,
        user_id: int,
        input_type: str,
        error: Exception,
        correlation_id: UUID,
    ) -> None:
        self.log(
            AuditEventBuilder.parse_failed(
                user_id=user_id,
                input_type=input_type,
                error_type=type(error).__name__,
                error_message=str(error),
                correlation_id=correlation_id,
            )
        )

    def log_input_rejected(
        self,
        user_id: int,
        input_type: str,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        self.log(AuditEventBuilder.input_rejected(user_id, input_type, reason, correlation_id))

    def log_validation_failed(
        self,
        user_id: int,
        issues: list[dict],
        correlation_id: UUID,
    ) -> None:
        """Log validation failure."""
        self.log(AuditEventBuilder.validation_failed(user_id, issues, correlation_id))

    def log_hints_matched(
        self,
        user_id: int,
        category_id: Optional[int],
        account_id: Optional[int],
        correlation_id: UUID,
    ) -> None:
        self.log(
            AuditEventBuilder.hints_matched(user_id, category_id, account_id, correlation_id)
        )

    def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        self.log(
            AuditEventBuilder.system_error(
                error_type=error_type,
                error_message=error_message,
                details=details,
                correlation_id=correlation_id,
            )
        )

    def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> None:
        """Log external service error."""
        self.log(
            AuditEventBuilder.external_service_error(
                service=service,
                error_message=error_message,
                correlation_id=correlation_id,
            )
        )


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new ingestion (voice note, receipt upload).
    Pass it through all subsequent operations.
    """
    return uuid4()
