"""
Events feature: external collaborators consumed by the engine.

Group permissions, platform roles and notification delivery live outside this
service. The engine depends on the protocols below; the concrete classes talk to
Supabase tables and an outbound notification webhook.
"""

import logging
from typing import Protocol

import httpx
from supabase import Client

from eventhub.features.events.schemas import Event, Reminder

logger = logging.getLogger(__name__)

ADMIN_ROLES = {"admin"}
MODERATOR_ROLES = {"admin", "moderator"}
GROUP_EVENT_ROLES = {"owner", "admin", "moderator"}


class RoleOracle(Protocol):
    def is_admin(self, user_id: str) -> bool: ...

    def is_moderator(self, user_id: str) -> bool: ...


class GroupPermissionOracle(Protocol):
    def can_act_on_group_events(self, group_id: str, user_id: str) -> bool: ...


class NotificationDispatcher(Protocol):
    async def notify_cancellation(self, event_id: str, title: str) -> None: ...

    async def notify_followers(self, host_id: str, event_id: str, title: str) -> None: ...

    async def notify_event_updated(self, event_id: str, title: str, changes: list[str]) -> None: ...

    async def notify_invitation(
        self, event_id: str, title: str, invitee_id: str, inviter_id: str
    ) -> None: ...

    async def notify_rsvp(
        self, event_id: str, title: str, recipients: list[str], user_id: str, rsvp: str
    ) -> None: ...

    async def send_reminder(self, reminder: Reminder, event: Event) -> bool: ...


class SupabaseRoleOracle:
    """Reads the platform role from the users table."""

    def __init__(self, db: Client):
        self.db = db

    def _role(self, user_id: str) -> str | None:
        result = self.db.table("users").select("role").eq("id", user_id).execute()
        return result.data[0].get("role") if result.data else None

    def is_admin(self, user_id: str) -> bool:
        return self._role(user_id) in ADMIN_ROLES

    def is_moderator(self, user_id: str) -> bool:
        return self._role(user_id) in MODERATOR_ROLES


class SupabaseGroupPermissionOracle:
    """Group owners, admins and moderators may create and manage group events."""

    def __init__(self, db: Client):
        self.db = db

    def can_act_on_group_events(self, group_id: str, user_id: str) -> bool:
        result = (
            self.db.table("group_members")
            .select("role")
            .eq("group_id", group_id)
            .eq("user_id", user_id)
            .execute()
        )
        if not result.data:
            return False
        return result.data[0].get("role") in GROUP_EVENT_ROLES


class WebhookNotificationDispatcher:
    """Posts notification jobs to the delivery service webhook.

    Delivery itself (push, email, SMS) is owned by the receiving service.
    """

    def __init__(self, webhook_url: str, timeout: float = 15.0):
        self.webhook_url = webhook_url
        self.timeout = timeout

    async def _post(self, kind: str, payload: dict) -> bool:
        if not self.webhook_url:
            logger.warning(f"Notification webhook not configured, dropping '{kind}' notification")
            return False

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.webhook_url, json={"type": kind, **payload})
            response.raise_for_status()

        logger.info(f"📨 Notification '{kind}' queued for event {payload.get('event_id')}")
        return True

    async def notify_cancellation(self, event_id: str, title: str) -> None:
        await self._post("event_cancelled", {"event_id": event_id, "title": title})

    async def notify_followers(self, host_id: str, event_id: str, title: str) -> None:
        await self._post(
            "event_created",
            {"host_id": host_id, "event_id": event_id, "title": title},
        )

    async def notify_event_updated(self, event_id: str, title: str, changes: list[str]) -> None:
        await self._post(
            "event_updated",
            {"event_id": event_id, "title": title, "changes": changes},
        )

    async def notify_invitation(
        self, event_id: str, title: str, invitee_id: str, inviter_id: str
    ) -> None:
        await self._post(
            "event_invitation",
            {
                "event_id": event_id,
                "title": title,
                "user_id": invitee_id,
                "inviter_id": inviter_id,
            },
        )

    async def notify_rsvp(
        self, event_id: str, title: str, recipients: list[str], user_id: str, rsvp: str
    ) -> None:
        await self._post(
            "event_rsvp",
            {
                "event_id": event_id,
                "title": title,
                "recipients": recipients,
                "user_id": user_id,
                "rsvp": rsvp,
            },
        )

    async def send_reminder(self, reminder: Reminder, event: Event) -> bool:
        return await self._post(
            "event_reminder",
            {
                "reminder_id": reminder.id,
                "event_id": event.id,
                "user_id": reminder.user_id,
                "channel": reminder.channel.value,
                "title": event.title,
                "start_time": event.start_time.isoformat(),
            },
        )
