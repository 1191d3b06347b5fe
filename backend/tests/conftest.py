"""
Shared fixtures: in-memory store, fake collaborators and a controllable clock.
"""

import itertools
import os
from datetime import datetime, timedelta, timezone

import pytest

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

from eventhub.core.tasks import TaskDispatcher  # noqa: E402
from eventhub.features.events.lifecycle import EventLifecycleManager  # noqa: E402
from eventhub.features.events.recurrence import RecurrenceExpander  # noqa: E402
from eventhub.features.events.reminders import ReminderScheduler  # noqa: E402
from eventhub.features.events.repository import tally_rsvps  # noqa: E402
from eventhub.features.events.rsvp import RSVPEngine  # noqa: E402
from eventhub.features.events.schemas import (  # noqa: E402
    Attendee,
    Event,
    EventStatus,
    Privacy,
    Reminder,
    ReminderStatus,
    RSVPCounts,
)

NOW = datetime(2023, 12, 1, 9, 0, tzinfo=timezone.utc)

HOST = "host-1"
COHOST = "cohost-1"
ADMIN = "admin-1"
MODERATOR = "mod-1"
STRANGER = "user-x"


class FixedClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class InMemoryEventRepository:
    """EventRepository over dicts. Mirrors the unique constraints and ON DELETE CASCADE."""

    def __init__(self):
        self.events: dict[str, Event] = {}
        self.attendees: dict[tuple[str, str], Attendee] = {}
        self.reminders: dict[str, Reminder] = {}
        self.fail_delete_ids: set[str] = set()
        self.fail_counts = False

    # ── Events ───────────────────────────────────────────
    def get_event(self, event_id):
        return self.events.get(event_id)

    def insert_event(self, event):
        self.events[event.id] = event
        return event

    def update_event(self, event_id, fields):
        event = self.events.get(event_id)
        if event is None:
            return None
        data = event.model_dump()
        data.update(
            {k: v.model_dump() if hasattr(v, "model_dump") else v for k, v in fields.items()}
        )
        updated = Event.model_validate(data)
        self.events[event_id] = updated
        return updated

    def delete_event(self, event_id):
        if event_id in self.fail_delete_ids:
            raise RuntimeError(f"store unavailable for {event_id}")
        if self.events.pop(event_id, None) is None:
            return False
        for key in [k for k in self.attendees if k[0] == event_id]:
            del self.attendees[key]
        for rid in [r.id for r in self.reminders.values() if r.event_id == event_id]:
            del self.reminders[rid]
        return True

    def get_events(self, event_ids):
        return [self.events[i] for i in event_ids if i in self.events]

    def list_events(self, filters, limit, offset):
        rows = [
            e for e in self.events.values()
            if (filters.host_id is None or e.host_id == filters.host_id)
            and e.display_status(filters.now) in filters.statuses
            and self._visible(e, filters)
        ]
        rows.sort(key=lambda e: e.start_time)
        return rows[offset:offset + limit], len(rows)

    @staticmethod
    def _visible(event, filters):
        viewer = filters.viewer_id
        return (
            viewer is None
            or event.privacy == Privacy.PUBLIC
            or event.host_id == viewer
            or viewer in event.co_hosts
            or event.id in filters.viewer_event_ids
        )

    def list_children(self, parent_event_id):
        children = [e for e in self.events.values() if e.parent_event_id == parent_event_id]
        return sorted(children, key=lambda e: e.recurrence_index or 0)

    def upsert_child(self, event):
        for existing in self.events.values():
            if (
                existing.parent_event_id == event.parent_event_id
                and existing.recurrence_index == event.recurrence_index
            ):
                return existing
        self.events[event.id] = event
        return event

    # ── Attendees ────────────────────────────────────────
    def get_attendee(self, event_id, user_id):
        return self.attendees.get((event_id, user_id))

    def upsert_attendee(self, attendee):
        self.attendees[(attendee.event_id, attendee.user_id)] = attendee
        return attendee

    def delete_attendee(self, event_id, user_id):
        return self.attendees.pop((event_id, user_id), None) is not None

    def list_attendees(self, event_id, rsvp, waitlisted, limit, offset):
        rows = [
            a for a in self.attendees.values()
            if a.event_id == event_id
            and (rsvp is None or a.rsvp == rsvp)
            and (waitlisted is None or a.waitlisted == waitlisted)
        ]
        return rows[offset:offset + limit], len(rows)

    def count_rsvps(self, event_id):
        if self.fail_counts:
            raise RuntimeError("count query failed")
        rows = [
            {"rsvp": a.rsvp.value, "waitlisted": a.waitlisted}
            for a in self.attendees.values()
            if a.event_id == event_id
        ]
        return tally_rsvps(rows)

    def list_user_event_ids(self, user_id):
        return [a.event_id for a in self.attendees.values() if a.user_id == user_id]

    def list_user_attendance(self, user_id, rsvp, limit, offset):
        rows = sorted(
            (
                a for a in self.attendees.values()
                if a.user_id == user_id and (rsvp is None or a.rsvp == rsvp)
            ),
            key=lambda a: a.created_at,
            reverse=True,
        )
        return rows[offset:offset + limit], len(rows)

    def list_waitlist(self, event_id, limit, offset):
        rows = sorted(
            (a for a in self.attendees.values() if a.event_id == event_id and a.waitlisted),
            key=lambda a: (a.waitlisted_at, a.created_at),
        )
        return rows[offset:offset + limit], len(rows)

    def count_waitlisted_before(self, event_id, waitlisted_at):
        return sum(
            1 for a in self.attendees.values()
            if a.event_id == event_id and a.waitlisted and a.waitlisted_at < waitlisted_at
        )

    # ── Reminders ────────────────────────────────────────
    def get_reminder(self, reminder_id):
        return self.reminders.get(reminder_id)

    def insert_reminder(self, reminder):
        self.reminders[reminder.id] = reminder
        return reminder

    def update_reminder(self, reminder_id, fields):
        reminder = self.reminders.get(reminder_id)
        if reminder is None:
            return None
        updated = reminder.model_copy(update=fields)
        self.reminders[reminder_id] = updated
        return updated

    def delete_reminder(self, reminder_id):
        return self.reminders.pop(reminder_id, None) is not None

    def list_reminders(self, event_id, user_id, limit, offset):
        rows = sorted(
            (r for r in self.reminders.values() if r.event_id == event_id and r.user_id == user_id),
            key=lambda r: r.trigger_time,
        )
        return rows[offset:offset + limit], len(rows)

    def list_user_reminders(self, user_id, status, limit, offset):
        rows = sorted(
            (
                r for r in self.reminders.values()
                if r.user_id == user_id and (status is None or r.status == status)
            ),
            key=lambda r: r.trigger_time,
        )
        return rows[offset:offset + limit], len(rows)

    def list_due_reminders(self, now, limit):
        rows = sorted(
            (
                r for r in self.reminders.values()
                if r.status == ReminderStatus.PENDING and r.trigger_time <= now
            ),
            key=lambda r: r.trigger_time,
        )
        return rows[:limit]


class FakeRoles:
    def __init__(self, admins=(ADMIN,), moderators=(MODERATOR,)):
        self.admins = set(admins)
        self.moderators = set(moderators)
        self.fail = False

    def is_admin(self, user_id):
        if self.fail:
            raise ConnectionError("role service down")
        return user_id in self.admins

    def is_moderator(self, user_id):
        if self.fail:
            raise ConnectionError("role service down")
        return user_id in self.moderators


class FakeGroups:
    def __init__(self):
        self.members: set[tuple[str, str]] = set()
        self.fail = False

    def can_act_on_group_events(self, group_id, user_id):
        if self.fail:
            raise ConnectionError("group service down")
        return (group_id, user_id) in self.members


class RecordingNotifier:
    def __init__(self):
        self.cancellations: list[str] = []
        self.follower_posts: list[str] = []
        self.updates: list[tuple[str, list[str]]] = []
        self.invitations: list[tuple[str, str]] = []
        self.rsvps: list[tuple[str, str, list[str]]] = []
        self.reminders_sent: list[str] = []
        self.deliver = True

    async def notify_cancellation(self, event_id, title):
        self.cancellations.append(event_id)

    async def notify_followers(self, host_id, event_id, title):
        self.follower_posts.append(event_id)

    async def notify_event_updated(self, event_id, title, changes):
        self.updates.append((event_id, changes))

    async def notify_invitation(self, event_id, title, invitee_id, inviter_id):
        self.invitations.append((event_id, invitee_id))

    async def notify_rsvp(self, event_id, title, recipients, user_id, rsvp):
        self.rsvps.append((user_id, rsvp, recipients))

    async def send_reminder(self, reminder, event):
        if self.deliver:
            self.reminders_sent.append(reminder.id)
        return self.deliver


def id_sequence(prefix: str):
    counter = itertools.count(1)
    return lambda: f"{prefix}-{next(counter)}"


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def repo():
    return InMemoryEventRepository()


@pytest.fixture
def roles():
    return FakeRoles()


@pytest.fixture
def groups():
    return FakeGroups()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dispatcher():
    return TaskDispatcher(timeout_seconds=2.0)


@pytest.fixture
def expander(repo, clock):
    return RecurrenceExpander(repo, max_instances=366, clock=clock, id_factory=id_sequence("inst"))


@pytest.fixture
def lifecycle(repo, roles, groups, notifier, expander, dispatcher, clock):
    return EventLifecycleManager(
        repo,
        roles,
        groups,
        notifier,
        expander,
        dispatcher,
        clock=clock,
        id_factory=id_sequence("evt"),
    )


@pytest.fixture
def rsvp_engine(repo, roles, notifier, dispatcher, clock):
    return RSVPEngine(
        repo, roles, notifier, dispatcher, clock=clock, id_factory=id_sequence("att")
    )


@pytest.fixture
def reminder_scheduler(repo, notifier, clock):
    return ReminderScheduler(repo, notifier, clock=clock, id_factory=id_sequence("rem"))


@pytest.fixture
def make_event(repo):
    """Insert an event straight into the store, bypassing create-time checks."""
    counter = itertools.count(1)

    def _make(**overrides) -> Event:
        start = overrides.pop("start_time", NOW + timedelta(days=7))
        fields = {
            "id": f"seed-{next(counter)}",
            "title": "Team offsite",
            "host_id": HOST,
            "co_hosts": [COHOST],
            "start_time": start,
            "end_time": overrides.pop("end_time", start + timedelta(hours=2)),
            "status": EventStatus.SCHEDULED,
            "rsvp_counts": RSVPCounts(),
            "created_at": NOW,
            "updated_at": NOW,
        }
        fields.update(overrides)
        return repo.insert_event(Event(**fields))

    return _make
