"""Shared plumbing for services that act on behalf of a user."""

from typing import Any, Optional

from smart_input.audit.logger import AuditLogger
from smart_input.events.dispatcher import EventDispatcher
from smart_input.models.audit import AuditEventBuilder
from smart_input.policies import AccessDenied, authorize
from smart_input.storage.interface import FinanceStorageInterface


class AuthorizedService:
    """Holds storage/dispatcher/audit and audits every access denial."""

    default_entity_type = "resource"

    def __init__(
        self,
        storage: FinanceStorageInterface,
        dispatcher: Optional[EventDispatcher] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._dispatcher = dispatcher
        self._audit = audit_logger

    def _authorize(self, action: str, user_id: int, resource: Any = None) -> None:
        try:
            authorize(action, user_id, resource)
        except AccessDenied:
            if self._audit:
                entity_type = (
                    type(resource).__name__.lower()
                    if resource is not None
                    else self.default_entity_type
                )
                self._audit.log(
                    AuditEventBuilder.access_denied(
                        user_id=user_id,
                        action=action,
                        entity_type=entity_type,
                        entity_id=getattr(resource, "id", None),
                    )
                )
            raise
