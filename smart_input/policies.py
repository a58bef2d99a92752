"""
Ownership Policies

One flat rule for accounts, transactions and savings goals:
- view_any / create: any authenticated user
- view / update / delete: only the owner

No admin override, no delegation. The predicates return booleans;
`authorize` is the enforcing layer that turns False into AccessDenied,
and every service path goes through it.
"""

from typing import Optional, Protocol

import structlog


logger = structlog.get_logger(__name__)


class OwnedResource(Protocol):
    id: Optional[int]
    user_id: int


class AccessDenied(Exception):
    """Acting user may not perform this action on this resource."""

    def __init__(self, action: str, user_id: Optional[int], resource: Optional[OwnedResource]):
        self.action = action
        self.user_id = user_id
        self.resource = resource
        resource_name = type(resource).__name__ if resource is not None else "resource"
        super().__init__(f"User {user_id} may not {action} {resource_name}")


def can_view_any(user_id: Optional[int]) -> bool:
    return user_id is not None


def can_create(user_id: Optional[int]) -> bool:
    return user_id is not None


def _is_owner(user_id: Optional[int], resource: OwnedResource) -> bool:
    return user_id is not None and resource.user_id == user_id


def can_view(user_id: Optional[int], resource: OwnedResource) -> bool:
    return _is_owner(user_id, resource)


def can_update(user_id: Optional[int], resource: OwnedResource) -> bool:
    return _is_owner(user_id, resource)


def can_delete(user_id: Optional[int], resource: OwnedResource) -> bool:
    return _is_owner(user_id, resource)


POLICIES = {
    "view": can_view,
    "update": can_update,
    "delete": can_delete,
}


def is_allowed(action: str, user_id: Optional[int], resource: Optional[OwnedResource] = None) -> bool:
    """Evaluate one policy by action name."""
    if action == "view_any":
        return can_view_any(user_id)
    if action == "create":
        return can_create(user_id)
    if action not in POLICIES:
        raise ValueError(f"Unknown action: {action}")
    if resource is None:
        return False
    return POLICIES[action](user_id, resource)


def authorize(action: str, user_id: Optional[int], resource: Optional[OwnedResource] = None) -> None:
    """
    Enforce a policy.

    Raises:
        AccessDenied: The policy said no
    """
    if not is_allowed(action, user_id, resource):
        logger.warning(
            "access_denied",
            action=action,
            user_id=user_id,
            resource_type=type(resource).__name__ if resource is not None else None,
            resource_id=getattr(resource, "id", None),
        )
        raise AccessDenied(action, user_id, resource)
