"""
Events feature: domain models and request/response schemas.
"""

from datetime import datetime
from enum import Enum
from typing import Generic, TypeVar

from pydantic import BaseModel, Field, model_validator

from eventhub.core.timeutils import UTCDateTime


class Privacy(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    INVITE_ONLY = "invite-only"


class EventType(str, Enum):
    IN_PERSON = "in-person"
    ONLINE = "online"
    HYBRID = "hybrid"


class EventStatus(str, Enum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"  # derived for display, never written by the engine
    CANCELLED = "cancelled"
    DELETED = "deleted"


class RSVPValue(str, Enum):
    GOING = "going"
    INTERESTED = "interested"
    NOT_GOING = "not_going"
    NO_REPLY = "no_reply"  # invitation placeholder, not accepted from Rsvp


class ReminderChannel(str, Enum):
    EMAIL = "email"
    PUSH = "push"
    SMS = "sms"


class ReminderStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    CANCELLED = "cancelled"


# ── Domain records ───────────────────────────────────────

class EventLocation(BaseModel):
    type: str = "physical"  # physical | online | hybrid
    name: str | None = None
    address: str | None = None
    city: str | None = None
    country: str | None = None
    online_url: str | None = None


class RSVPCounts(BaseModel):
    going: int = 0
    interested: int = 0
    not_going: int = 0
    no_reply: int = 0
    waitlist: int = 0


class Event(BaseModel):
    """A calendar event. Recurrence instances point at their parent."""

    id: str
    title: str
    description: str = ""
    host_id: str
    co_hosts: list[str] = Field(default_factory=list)
    group_id: str | None = None
    parent_event_id: str | None = None
    recurrence_index: int | None = None  # period key of a materialized instance
    start_time: UTCDateTime
    end_time: UTCDateTime
    time_zone: str = "UTC"
    location: EventLocation = Field(default_factory=EventLocation)
    event_type: EventType = EventType.IN_PERSON
    privacy: Privacy = Privacy.PUBLIC
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    url: str | None = None
    max_attendees: int = 0  # 0 = unlimited
    is_recurring: bool = False
    recurrence_rule: str | None = None
    status: EventStatus = EventStatus.SCHEDULED
    cancellation_reason: str | None = None
    rsvp_counts: RSVPCounts = Field(default_factory=RSVPCounts)
    created_at: UTCDateTime | None = None
    updated_at: UTCDateTime | None = None

    @model_validator(mode="after")
    def check_invariants(self):
        if self.end_time < self.start_time:
            raise ValueError("end_time cannot be before start_time")
        if self.parent_event_id and self.recurrence_rule:
            raise ValueError("recurrence instances cannot carry a recurrence rule")
        return self

    @property
    def is_recurrence_parent(self) -> bool:
        return self.parent_event_id is None and self.is_recurring and bool(self.recurrence_rule)

    def display_status(self, now: datetime) -> EventStatus:
        """Status as shown to clients: scheduled events in progress read as active."""
        if self.status == EventStatus.SCHEDULED and self.start_time <= now < self.end_time:
            return EventStatus.ACTIVE
        return self.status


class Attendee(BaseModel):
    """One user's RSVP to one event. Unique per (event_id, user_id)."""

    id: str
    event_id: str
    user_id: str
    rsvp: RSVPValue
    guest_count: int = 0
    note: str | None = None
    waitlisted: bool = False
    waitlisted_at: UTCDateTime | None = None  # queue order for the waitlist
    invited_by: str | None = None
    checked_in: bool = False
    check_in_time: UTCDateTime | None = None
    created_at: UTCDateTime | None = None
    updated_at: UTCDateTime | None = None


class WaitlistEntry(BaseModel):
    position: int  # 1-based
    attendee: Attendee


class Reminder(BaseModel):
    id: str
    event_id: str
    user_id: str
    trigger_time: UTCDateTime
    channel: ReminderChannel
    status: ReminderStatus = ReminderStatus.PENDING
    sent_at: UTCDateTime | None = None
    created_at: UTCDateTime | None = None


T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    items: list[T]
    total: int
    limit: int
    offset: int


def page_bounds(limit: int | None, offset: int | None, default_limit: int, max_limit: int) -> tuple[int, int]:
    """Clamp caller paging to [1, max_limit] and a non-negative offset."""
    if not limit or limit < 1:
        limit = default_limit
    return min(limit, max_limit), max(offset or 0, 0)


# ── Requests ─────────────────────────────────────────────

class EventCreate(BaseModel):
    """Request to create a new event."""
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    start_time: UTCDateTime
    end_time: UTCDateTime
    time_zone: str = "UTC"
    location: EventLocation = Field(default_factory=EventLocation)
    event_type: EventType = EventType.IN_PERSON
    privacy: Privacy = Privacy.PUBLIC
    group_id: str | None = None
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    url: str | None = None
    max_attendees: int = Field(0, ge=0)
    is_recurring: bool = False
    recurrence_rule: str | None = None
    co_hosts: list[str] = Field(default_factory=list)


class EventUpdate(BaseModel):
    """Request to update an existing event. Omitted fields are left unchanged."""
    title: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = None
    start_time: UTCDateTime | None = None
    end_time: UTCDateTime | None = None
    time_zone: str | None = None
    location: EventLocation | None = None
    event_type: EventType | None = None
    privacy: Privacy | None = None
    category: str | None = None
    tags: list[str] | None = None
    url: str | None = None
    max_attendees: int | None = Field(None, ge=0)
    co_hosts: list[str] | None = None
    propagate_to_recurrence: bool = False

    def changes(self) -> dict:
        """Field delta without the propagation flag, only what the caller set."""
        return self.model_dump(exclude_unset=True, exclude={"propagate_to_recurrence"})


class CancelRequest(BaseModel):
    reason: str | None = None


class ExpandRequest(BaseModel):
    horizon: UTCDateTime | None = None  # defaults to end_time + RECURRENCE_HORIZON_MONTHS


class RSVPRequest(BaseModel):
    rsvp: RSVPValue
    guest_count: int = 0
    note: str | None = None
    join_waitlist: bool = False


class InviteRequest(BaseModel):
    user_id: str


class GuestCountRequest(BaseModel):
    guest_count: int


class ReminderCreate(BaseModel):
    trigger_time: UTCDateTime
    channel: ReminderChannel = ReminderChannel.PUSH


class ReminderUpdate(BaseModel):
    trigger_time: UTCDateTime | None = None
    channel: ReminderChannel | None = None


# ── Results ──────────────────────────────────────────────

class CascadeWarning(BaseModel):
    operation: str
    event_id: str
    error: str


class DeleteResult(BaseModel):
    event_id: str
    deleted_instances: int = 0
    warnings: list[CascadeWarning] = Field(default_factory=list)


class ExpandResult(BaseModel):
    parent_event_id: str
    created: list[str] = Field(default_factory=list)
    skipped: int = 0  # periods already materialized
