"""
Events feature: reminder scheduler.

Stores per-user reminders against an event and hands due ones to the notification
dispatcher. `process_due_reminders` is polled by the background scheduler.
"""

import logging
import uuid
from collections.abc import Callable
from datetime import datetime

from eventhub.core.exceptions import (
    EventStateError,
    ForbiddenError,
    InvalidTimeWindowError,
    NotFoundError,
)
from eventhub.core.timeutils import utcnow
from eventhub.features.events.collaborators import NotificationDispatcher
from eventhub.features.events.repository import EventRepository, get_live_event
from eventhub.features.events.schemas import (
    Event,
    EventStatus,
    Page,
    Reminder,
    ReminderCreate,
    ReminderStatus,
    ReminderUpdate,
    page_bounds,
)

logger = logging.getLogger(__name__)


class ReminderScheduler:
    def __init__(
        self,
        repo: EventRepository,
        notifier: NotificationDispatcher,
        clock: Callable[[], datetime] = utcnow,
        page_default_limit: int = 20,
        page_max_limit: int = 100,
        batch_size: int = 100,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.repo = repo
        self.notifier = notifier
        self.clock = clock
        self.page_default_limit = page_default_limit
        self.page_max_limit = page_max_limit
        self.batch_size = batch_size
        self.id_factory = id_factory

    def _check_trigger(self, event: Event, trigger_time: datetime) -> None:
        if trigger_time <= self.clock():
            raise InvalidTimeWindowError("Reminder time must be in the future")
        if trigger_time >= event.start_time:
            raise InvalidTimeWindowError("Reminder time must be before the event starts")

    def _owned_reminder(self, user_id: str, event_id: str, reminder_id: str) -> Reminder:
        reminder = self.repo.get_reminder(reminder_id)
        if reminder is None or reminder.event_id != event_id:
            raise NotFoundError("Reminder", reminder_id)
        if reminder.user_id != user_id:
            raise ForbiddenError("You can only manage your own reminders")
        return reminder

    async def set_reminder(self, user_id: str, event_id: str, data: ReminderCreate) -> Reminder:
        event = get_live_event(self.repo, event_id)
        if event.status == EventStatus.CANCELLED:
            raise EventStateError("Cannot set a reminder for a cancelled event")
        self._check_trigger(event, data.trigger_time)

        reminder = self.repo.insert_reminder(
            Reminder(
                id=self.id_factory(),
                event_id=event_id,
                user_id=user_id,
                trigger_time=data.trigger_time,
                channel=data.channel,
                status=ReminderStatus.PENDING,
                created_at=self.clock(),
            )
        )
        logger.info(f"⏰ Reminder {reminder.id} set for event {event_id} at {reminder.trigger_time}")
        return reminder

    async def update_reminder(
        self, user_id: str, event_id: str, reminder_id: str, data: ReminderUpdate
    ) -> Reminder:
        """Move or re-channel a reminder. A sent reminder that is moved becomes pending again."""
        reminder = self._owned_reminder(user_id, event_id, reminder_id)
        event = get_live_event(self.repo, event_id)
        if event.status == EventStatus.CANCELLED:
            raise EventStateError("Cannot update a reminder for a cancelled event")

        fields: dict = {}
        if data.channel is not None:
            fields["channel"] = data.channel
        if data.trigger_time is not None:
            self._check_trigger(event, data.trigger_time)
            fields["trigger_time"] = data.trigger_time
            fields["status"] = ReminderStatus.PENDING
            fields["sent_at"] = None
        if not fields:
            return reminder

        updated = self.repo.update_reminder(reminder_id, fields)
        if updated is None:
            raise NotFoundError("Reminder", reminder_id)
        return updated

    async def delete_reminder(self, user_id: str, event_id: str, reminder_id: str) -> None:
        """Owner-only. Works for reminders in any status."""
        self._owned_reminder(user_id, event_id, reminder_id)
        if not self.repo.delete_reminder(reminder_id):
            raise NotFoundError("Reminder", reminder_id)

    async def list_reminders(
        self,
        user_id: str,
        event_id: str,
        limit: int | None = None,
        offset: int | None = None,
    ) -> Page[Reminder]:
        """The caller's own reminders for one event, soonest first."""
        get_live_event(self.repo, event_id)
        limit, offset = page_bounds(limit, offset, self.page_default_limit, self.page_max_limit)
        items, total = self.repo.list_reminders(event_id, user_id, limit, offset)
        return Page[Reminder](items=items, total=total, limit=limit, offset=offset)

    async def list_user_reminders(
        self,
        user_id: str,
        status: ReminderStatus | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> Page[Reminder]:
        """All of the caller's reminders across events, soonest first."""
        limit, offset = page_bounds(limit, offset, self.page_default_limit, self.page_max_limit)
        items, total = self.repo.list_user_reminders(user_id, status, limit, offset)
        return Page[Reminder](items=items, total=total, limit=limit, offset=offset)

    async def process_due_reminders(self) -> int:
        """Dispatch pending reminders whose trigger time has passed. Returns how many were sent.

        Reminders for cancelled, missing or already started events are marked cancelled instead.
        A failed delivery leaves the reminder pending for the next poll.
        """
        now = self.clock()
        sent = 0
        for reminder in self.repo.list_due_reminders(now, self.batch_size):
            event = self.repo.get_event(reminder.event_id)
            if event is None or event.status in (EventStatus.CANCELLED, EventStatus.DELETED):
                self.repo.update_reminder(reminder.id, {"status": ReminderStatus.CANCELLED})
                continue
            if event.start_time <= now:
                # late poll: the event is already under way
                self.repo.update_reminder(reminder.id, {"status": ReminderStatus.CANCELLED})
                logger.info(f"Reminder {reminder.id} expired: event {event.id} already started")
                continue

            try:
                delivered = await self.notifier.send_reminder(reminder, event)
            except Exception as e:
                logger.error(f"❌ Failed to send reminder {reminder.id}: {e}", exc_info=True)
                continue
            if not delivered:
                continue

            self.repo.update_reminder(
                reminder.id, {"status": ReminderStatus.SENT, "sent_at": now}
            )
            sent += 1

        if sent:
            logger.info(f"🔔 Sent {sent} due reminder(s)")
        return sent
