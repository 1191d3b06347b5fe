"""
Events feature: service container wiring the engine components together.
"""

from dataclasses import dataclass

from supabase import Client

from eventhub.config import Settings
from eventhub.core.tasks import TaskDispatcher
from eventhub.features.events.collaborators import (
    SupabaseGroupPermissionOracle,
    SupabaseRoleOracle,
    WebhookNotificationDispatcher,
)
from eventhub.features.events.lifecycle import EventLifecycleManager
from eventhub.features.events.recurrence import RecurrenceExpander
from eventhub.features.events.reminders import ReminderScheduler
from eventhub.features.events.repository import SupabaseEventRepository
from eventhub.features.events.rsvp import RSVPEngine


@dataclass
class EventEngine:
    lifecycle: EventLifecycleManager
    rsvp: RSVPEngine
    reminders: ReminderScheduler
    dispatcher: TaskDispatcher


def build_event_engine(settings: Settings, db: Client) -> EventEngine:
    """Construct the engine against Supabase and the notification webhook."""
    repo = SupabaseEventRepository(db)
    roles = SupabaseRoleOracle(db)
    groups = SupabaseGroupPermissionOracle(db)
    notifier = WebhookNotificationDispatcher(
        settings.NOTIFICATION_WEBHOOK_URL,
        timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
    )
    dispatcher = TaskDispatcher(
        timeout_seconds=settings.TASK_TIMEOUT_SECONDS,
        failure_history=settings.TASK_FAILURE_HISTORY,
    )
    expander = RecurrenceExpander(repo, max_instances=settings.RECURRENCE_MAX_INSTANCES)

    paging = {
        "page_default_limit": settings.PAGE_DEFAULT_LIMIT,
        "page_max_limit": settings.PAGE_MAX_LIMIT,
    }
    return EventEngine(
        lifecycle=EventLifecycleManager(
            repo,
            roles,
            groups,
            notifier,
            expander,
            dispatcher,
            soft_delete=settings.SOFT_DELETE_EVENTS,
            horizon_months=settings.RECURRENCE_HORIZON_MONTHS,
            **paging,
        ),
        rsvp=RSVPEngine(repo, roles, notifier, dispatcher, **paging),
        reminders=ReminderScheduler(
            repo, notifier, batch_size=settings.REMINDER_BATCH_SIZE, **paging
        ),
        dispatcher=dispatcher,
    )
