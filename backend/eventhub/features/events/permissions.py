"""
Events feature: permission gate for event mutations.

Resolution order is fixed: host → co-host → platform role override. Oracle
failures surface as PermissionCheckFailedError, never as a silent allow or deny.
"""

from collections.abc import Callable
from enum import Enum

from eventhub.core.exceptions import ForbiddenError, PermissionCheckFailedError
from eventhub.features.events.collaborators import GroupPermissionOracle, RoleOracle
from eventhub.features.events.schemas import Event, Privacy


class Capability(str, Enum):
    HOST = "host"
    HOST_OR_COHOST = "host_or_cohost"
    HOST_OR_ADMIN = "host_or_admin"
    HOST_COHOST_OR_ADMIN = "host_cohost_or_admin"
    MODERATOR_OR_ABOVE = "moderator_or_above"


_COHOST_ALLOWED = {
    Capability.HOST_OR_COHOST,
    Capability.HOST_COHOST_OR_ADMIN,
    Capability.MODERATOR_OR_ABOVE,
}

_DENIED_MESSAGES = {
    Capability.HOST: "Only the event host can do this",
    Capability.HOST_OR_COHOST: "Only the event host or a co-host can do this",
    Capability.HOST_OR_ADMIN: "Only the event host or an admin can do this",
    Capability.HOST_COHOST_OR_ADMIN: "Only the event host, a co-host, or an admin can do this",
    Capability.MODERATOR_OR_ABOVE: "Only hosts, co-hosts, moderators or admins can do this",
}


def authorize(event: Event, user_id: str, capability: Capability, roles: RoleOracle) -> bool:
    """Return True if `user_id` holds `capability` on `event`."""
    if event.host_id == user_id:
        return True
    if capability == Capability.HOST:
        return False

    if capability in _COHOST_ALLOWED and user_id in event.co_hosts:
        return True
    if capability == Capability.HOST_OR_COHOST:
        return False

    if capability == Capability.MODERATOR_OR_ABOVE:
        try:
            return roles.is_admin(user_id) or roles.is_moderator(user_id)
        except Exception as e:
            raise PermissionCheckFailedError(f"role lookup failed: {e}") from e
    return is_platform_admin(user_id, roles)


def is_platform_admin(user_id: str, roles: RoleOracle) -> bool:
    try:
        return roles.is_admin(user_id)
    except Exception as e:
        raise PermissionCheckFailedError(f"role lookup failed: {e}") from e


def can_view(
    event: Event,
    user_id: str,
    roles: RoleOracle,
    is_attendee: Callable[[], bool],
) -> bool:
    """Public events are open to all. Private and invite-only events are limited to the
    host side, admins and users holding an attendee record (invitations included).
    """
    if event.privacy == Privacy.PUBLIC:
        return True
    if authorize(event, user_id, Capability.HOST_COHOST_OR_ADMIN, roles):
        return True
    return is_attendee()


def require(event: Event, user_id: str, capability: Capability, roles: RoleOracle) -> None:
    """Raise ForbiddenError unless `user_id` holds `capability` on `event`."""
    if not authorize(event, user_id, capability, roles):
        raise ForbiddenError(_DENIED_MESSAGES[capability])


def require_group_permission(
    group_id: str | None,
    user_id: str,
    groups: GroupPermissionOracle,
) -> None:
    """Group events additionally need the group's blessing. No-op for non-group events."""
    if not group_id:
        return
    try:
        allowed = groups.can_act_on_group_events(group_id, user_id)
    except Exception as e:
        raise PermissionCheckFailedError(f"group permission lookup failed: {e}") from e
    if not allowed:
        raise ForbiddenError("You don't have permission to manage events in this group")
