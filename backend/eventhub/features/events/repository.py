"""
Events feature: entity store for events, attendees and reminders.

The engine only talks to the EventRepository protocol. SupabaseEventRepository is the
production implementation; it relies on these table constraints (see supabase/schema.sql):
  - event_attendees: unique (event_id, user_id)
  - events: unique (parent_event_id, recurrence_index)
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Protocol

from supabase import Client

from eventhub.core.exceptions import NotFoundError
from eventhub.features.events.schemas import (
    Attendee,
    Event,
    EventStatus,
    Privacy,
    Reminder,
    ReminderStatus,
    RSVPCounts,
    RSVPValue,
)

EVENTS = "events"
ATTENDEES = "event_attendees"
REMINDERS = "event_reminders"


@dataclass
class EventFilter:
    """Criteria for listing events.

    `statuses` are display statuses: ACTIVE and SCHEDULED split stored scheduled rows by
    whether `now` falls inside the event window. With `viewer_id` set, non-public events
    are only matched for their host, co-hosts and the events in `viewer_event_ids`.
    """

    statuses: list[EventStatus]
    now: datetime
    host_id: str | None = None
    viewer_id: str | None = None
    viewer_event_ids: list[str] = field(default_factory=list)


class EventRepository(Protocol):
    # ── Events ───────────────────────────────────────────
    def get_event(self, event_id: str) -> Event | None: ...

    def insert_event(self, event: Event) -> Event: ...

    def update_event(self, event_id: str, fields: dict) -> Event | None: ...

    def delete_event(self, event_id: str) -> bool: ...

    def get_events(self, event_ids: list[str]) -> list[Event]: ...

    def list_events(self, filters: EventFilter, limit: int, offset: int) -> tuple[list[Event], int]: ...

    def list_children(self, parent_event_id: str) -> list[Event]: ...

    def upsert_child(self, event: Event) -> Event: ...

    # ── Attendees ────────────────────────────────────────
    def get_attendee(self, event_id: str, user_id: str) -> Attendee | None: ...

    def upsert_attendee(self, attendee: Attendee) -> Attendee: ...

    def delete_attendee(self, event_id: str, user_id: str) -> bool: ...

    def list_attendees(
        self,
        event_id: str,
        rsvp: RSVPValue | None,
        waitlisted: bool | None,
        limit: int,
        offset: int,
    ) -> tuple[list[Attendee], int]: ...

    def count_rsvps(self, event_id: str) -> RSVPCounts: ...

    def list_user_event_ids(self, user_id: str) -> list[str]: ...

    def list_user_attendance(
        self, user_id: str, rsvp: RSVPValue | None, limit: int, offset: int
    ) -> tuple[list[Attendee], int]: ...

    def list_waitlist(self, event_id: str, limit: int, offset: int) -> tuple[list[Attendee], int]: ...

    def count_waitlisted_before(self, event_id: str, waitlisted_at: datetime) -> int: ...

    # ── Reminders ────────────────────────────────────────
    def get_reminder(self, reminder_id: str) -> Reminder | None: ...

    def insert_reminder(self, reminder: Reminder) -> Reminder: ...

    def update_reminder(self, reminder_id: str, fields: dict) -> Reminder | None: ...

    def delete_reminder(self, reminder_id: str) -> bool: ...

    def list_reminders(
        self, event_id: str, user_id: str, limit: int, offset: int
    ) -> tuple[list[Reminder], int]: ...

    def list_user_reminders(
        self, user_id: str, status: ReminderStatus | None, limit: int, offset: int
    ) -> tuple[list[Reminder], int]: ...

    def list_due_reminders(self, now: datetime, limit: int) -> list[Reminder]: ...


def tally_rsvps(rows: list[dict]) -> RSVPCounts:
    """Aggregate counters from raw attendee rows (each with 'rsvp' and 'waitlisted')."""
    counts = RSVPCounts()
    for row in rows:
        rsvp = row["rsvp"]
        if rsvp == RSVPValue.GOING.value:
            counts.going += 1
        elif rsvp == RSVPValue.INTERESTED.value:
            counts.interested += 1
        elif rsvp == RSVPValue.NOT_GOING.value:
            counts.not_going += 1
        elif rsvp == RSVPValue.NO_REPLY.value:
            counts.no_reply += 1
        if row.get("waitlisted"):
            counts.waitlist += 1
    return counts


class SupabaseEventRepository:
    """EventRepository backed by Supabase (PostgREST) tables."""

    def __init__(self, db: Client):
        self.db = db

    # ── Events ───────────────────────────────────────────

    def get_event(self, event_id: str) -> Event | None:
        result = self.db.table(EVENTS).select("*").eq("id", event_id).execute()
        return Event.model_validate(result.data[0]) if result.data else None

    def insert_event(self, event: Event) -> Event:
        result = self.db.table(EVENTS).insert(event.model_dump(mode="json")).execute()
        return Event.model_validate(result.data[0])

    def update_event(self, event_id: str, fields: dict) -> Event | None:
        result = (
            self.db.table(EVENTS)
            .update(_jsonable(fields))
            .eq("id", event_id)
            .execute()
        )
        return Event.model_validate(result.data[0]) if result.data else None

    def delete_event(self, event_id: str) -> bool:
        # attendees and reminders go with the event (ON DELETE CASCADE)
        result = self.db.table(EVENTS).delete().eq("id", event_id).execute()
        return bool(result.data)

    def get_events(self, event_ids: list[str]) -> list[Event]:
        if not event_ids:
            return []
        result = self.db.table(EVENTS).select("*").in_("id", event_ids).execute()
        return [Event.model_validate(row) for row in result.data]

    def list_events(self, filters: EventFilter, limit: int, offset: int) -> tuple[list[Event], int]:
        query = self.db.table(EVENTS).select("*", count="exact")
        if filters.host_id:
            query = query.eq("host_id", filters.host_id)
        # each or_ becomes its own logic tree; PostgREST ANDs them together
        query = query.or_(_status_clause(filters.statuses, filters.now))
        if filters.viewer_id is not None:
            query = query.or_(_visibility_clause(filters))
        result = (
            query.order("start_time", desc=False)
            .range(offset, offset + limit - 1)
            .execute()
        )
        events = [Event.model_validate(row) for row in result.data]
        return events, result.count or 0

    def list_children(self, parent_event_id: str) -> list[Event]:
        result = (
            self.db.table(EVENTS)
            .select("*")
            .eq("parent_event_id", parent_event_id)
            .order("recurrence_index", desc=False)
            .execute()
        )
        return [Event.model_validate(row) for row in result.data]

    def upsert_child(self, event: Event) -> Event:
        # ignore_duplicates keeps an already-materialized period untouched
        result = (
            self.db.table(EVENTS)
            .upsert(
                event.model_dump(mode="json"),
                on_conflict="parent_event_id,recurrence_index",
                ignore_duplicates=True,
            )
            .execute()
        )
        if result.data:
            return Event.model_validate(result.data[0])
        existing = (
            self.db.table(EVENTS)
            .select("*")
            .eq("parent_event_id", event.parent_event_id)
            .eq("recurrence_index", event.recurrence_index)
            .execute()
        )
        return Event.model_validate(existing.data[0])

    # ── Attendees ────────────────────────────────────────

    def get_attendee(self, event_id: str, user_id: str) -> Attendee | None:
        result = (
            self.db.table(ATTENDEES)
            .select("*")
            .eq("event_id", event_id)
            .eq("user_id", user_id)
            .execute()
        )
        return Attendee.model_validate(result.data[0]) if result.data else None

    def upsert_attendee(self, attendee: Attendee) -> Attendee:
        result = (
            self.db.table(ATTENDEES)
            .upsert(attendee.model_dump(mode="json"), on_conflict="event_id,user_id")
            .execute()
        )
        return Attendee.model_validate(result.data[0])

    def delete_attendee(self, event_id: str, user_id: str) -> bool:
        result = (
            self.db.table(ATTENDEES)
            .delete()
            .eq("event_id", event_id)
            .eq("user_id", user_id)
            .execute()
        )
        return bool(result.data)

    def list_attendees(
        self,
        event_id: str,
        rsvp: RSVPValue | None,
        waitlisted: bool | None,
        limit: int,
        offset: int,
    ) -> tuple[list[Attendee], int]:
        query = self.db.table(ATTENDEES).select("*", count="exact").eq("event_id", event_id)
        if rsvp is not None:
            query = query.eq("rsvp", rsvp.value)
        if waitlisted is not None:
            query = query.eq("waitlisted", waitlisted)
        result = (
            query.order("created_at", desc=False)
            .range(offset, offset + limit - 1)
            .execute()
        )
        attendees = [Attendee.model_validate(row) for row in result.data]
        return attendees, result.count or 0

    def count_rsvps(self, event_id: str) -> RSVPCounts:
        # Full read of the attendee set, never an incremental counter
        result = (
            self.db.table(ATTENDEES)
            .select("rsvp, waitlisted")
            .eq("event_id", event_id)
            .execute()
        )
        return tally_rsvps(result.data)

    def list_user_event_ids(self, user_id: str) -> list[str]:
        result = self.db.table(ATTENDEES).select("event_id").eq("user_id", user_id).execute()
        return [row["event_id"] for row in result.data]

    def list_user_attendance(
        self, user_id: str, rsvp: RSVPValue | None, limit: int, offset: int
    ) -> tuple[list[Attendee], int]:
        query = self.db.table(ATTENDEES).select("*", count="exact").eq("user_id", user_id)
        if rsvp is not None:
            query = query.eq("rsvp", rsvp.value)
        result = (
            query.order("created_at", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )
        attendees = [Attendee.model_validate(row) for row in result.data]
        return attendees, result.count or 0

    def list_waitlist(self, event_id: str, limit: int, offset: int) -> tuple[list[Attendee], int]:
        result = (
            self.db.table(ATTENDEES)
            .select("*", count="exact")
            .eq("event_id", event_id)
            .eq("waitlisted", True)
            .order("waitlisted_at", desc=False)
            .order("created_at", desc=False)
            .range(offset, offset + limit - 1)
            .execute()
        )
        attendees = [Attendee.model_validate(row) for row in result.data]
        return attendees, result.count or 0

    def count_waitlisted_before(self, event_id: str, waitlisted_at: datetime) -> int:
        result = (
            self.db.table(ATTENDEES)
            .select("id", count="exact")
            .eq("event_id", event_id)
            .eq("waitlisted", True)
            .lt("waitlisted_at", waitlisted_at.isoformat())
            .execute()
        )
        return result.count or 0

    # ── Reminders ────────────────────────────────────────

    def get_reminder(self, reminder_id: str) -> Reminder | None:
        result = self.db.table(REMINDERS).select("*").eq("id", reminder_id).execute()
        return Reminder.model_validate(result.data[0]) if result.data else None

    def insert_reminder(self, reminder: Reminder) -> Reminder:
        result = self.db.table(REMINDERS).insert(reminder.model_dump(mode="json")).execute()
        return Reminder.model_validate(result.data[0])

    def update_reminder(self, reminder_id: str, fields: dict) -> Reminder | None:
        result = (
            self.db.table(REMINDERS)
            .update(_jsonable(fields))
            .eq("id", reminder_id)
            .execute()
        )
        return Reminder.model_validate(result.data[0]) if result.data else None

    def delete_reminder(self, reminder_id: str) -> bool:
        result = self.db.table(REMINDERS).delete().eq("id", reminder_id).execute()
        return bool(result.data)

    def list_reminders(
        self, event_id: str, user_id: str, limit: int, offset: int
    ) -> tuple[list[Reminder], int]:
        result = (
            self.db.table(REMINDERS)
            .select("*", count="exact")
            .eq("event_id", event_id)
            .eq("user_id", user_id)
            .order("trigger_time", desc=False)
            .range(offset, offset + limit - 1)
            .execute()
        )
        reminders = [Reminder.model_validate(row) for row in result.data]
        return reminders, result.count or 0

    def list_user_reminders(
        self, user_id: str, status: ReminderStatus | None, limit: int, offset: int
    ) -> tuple[list[Reminder], int]:
        query = self.db.table(REMINDERS).select("*", count="exact").eq("user_id", user_id)
        if status is not None:
            query = query.eq("status", status.value)
        result = (
            query.order("trigger_time", desc=False)
            .range(offset, offset + limit - 1)
            .execute()
        )
        reminders = [Reminder.model_validate(row) for row in result.data]
        return reminders, result.count or 0

    def list_due_reminders(self, now: datetime, limit: int) -> list[Reminder]:
        result = (
            self.db.table(REMINDERS)
            .select("*")
            .eq("status", ReminderStatus.PENDING.value)
            .lte("trigger_time", now.isoformat())
            .order("trigger_time", desc=False)
            .limit(limit)
            .execute()
        )
        return [Reminder.model_validate(row) for row in result.data]


def _jsonable(fields: dict) -> dict:
    """Serialize datetimes, enums and nested models for a PostgREST update body."""
    clean = {}
    for key, value in fields.items():
        if hasattr(value, "model_dump"):
            value = value.model_dump(mode="json")
        elif isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Enum):
            value = value.value
        elif isinstance(value, list):
            value = [getattr(item, "value", item) for item in value]
        clean[key] = value
    return clean


def _status_clause(statuses: list[EventStatus], now: datetime) -> str:
    """PostgREST `or` body matching events whose display status is in `statuses`."""
    moment = f'"{now.isoformat()}"'
    clauses = []
    scheduled = EventStatus.SCHEDULED in statuses
    active = EventStatus.ACTIVE in statuses
    if scheduled and active:
        clauses.append("status.eq.scheduled")
    elif active:
        clauses.append(f"and(status.eq.scheduled,start_time.lte.{moment},end_time.gt.{moment})")
    elif scheduled:
        clauses.append(
            f"and(status.eq.scheduled,or(start_time.gt.{moment},end_time.lte.{moment}))"
        )
    for status in statuses:
        if status not in (EventStatus.SCHEDULED, EventStatus.ACTIVE):
            clauses.append(f"status.eq.{status.value}")
    return ",".join(clauses)


def _visibility_clause(filters: EventFilter) -> str:
    viewer = filters.viewer_id
    clauses = [
        f"privacy.eq.{Privacy.PUBLIC.value}",
        f"host_id.eq.{viewer}",
        f"co_hosts.cs.{{{viewer}}}",
    ]
    if filters.viewer_event_ids:
        clauses.append(f"id.in.({','.join(filters.viewer_event_ids)})")
    return ",".join(clauses)


def get_live_event(repo: EventRepository, event_id: str) -> Event:
    """Fetch an event, treating soft-deleted records as missing."""
    event = repo.get_event(event_id)
    if event is None or event.status == EventStatus.DELETED:
        raise NotFoundError("Event", event_id)
    return event
