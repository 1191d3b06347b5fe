"""
Events feature: API routes for event lifecycle, RSVPs and reminders.
"""

from fastapi import APIRouter, Depends, Query

from eventhub.core.dependencies import get_current_user_id, get_event_engine
from eventhub.features.events.schemas import (
    CancelRequest,
    EventCreate,
    EventStatus,
    EventUpdate,
    ExpandRequest,
    GuestCountRequest,
    InviteRequest,
    ReminderCreate,
    ReminderStatus,
    ReminderUpdate,
    RSVPRequest,
    RSVPValue,
)
from eventhub.features.events.service import EventEngine

router = APIRouter()


# ── Caller's own views ───────────────────────────────────
# must precede the /{event_id} routes

@router.get("/me/attending")
async def list_attending_events(
    rsvp: RSVPValue | None = RSVPValue.GOING,
    limit: int | None = None,
    offset: int | None = None,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    """Events the caller has RSVPed to (default: going)."""
    page = await engine.rsvp.get_attending_events(user_id, rsvp, limit, offset)
    return {"data": page}


@router.get("/me/reminders")
async def list_my_reminders(
    status: ReminderStatus | None = None,
    limit: int | None = None,
    offset: int | None = None,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    page = await engine.reminders.list_user_reminders(user_id, status, limit, offset)
    return {"data": page}


# ── Events ───────────────────────────────────────────────

@router.post("/")
async def create_event(
    data: EventCreate,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    """Create an event. Recurring events are expanded in the background."""
    event = await engine.lifecycle.create_event(user_id, data)
    return {"data": event}


@router.get("/")
async def list_events(
    host_id: str | None = None,
    status: list[EventStatus] | None = Query(None),
    limit: int | None = None,
    offset: int | None = None,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    """List events visible to the caller. Cancelled events are only included when asked for."""
    page = await engine.lifecycle.list_events(user_id, host_id, status, limit, offset)
    return {"data": page}


@router.get("/{event_id}")
async def get_event(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    event = await engine.lifecycle.get_event(user_id, event_id)
    return {"data": event}


@router.patch("/{event_id}")
async def update_event(
    event_id: str,
    data: EventUpdate,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    """Update an event; set propagate_to_recurrence to apply the change to its instances."""
    event = await engine.lifecycle.update_event(user_id, event_id, data)
    return {"data": event}


@router.delete("/{event_id}")
async def delete_event(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    """Delete an event. Instances that could not be removed come back as warnings."""
    result = await engine.lifecycle.delete_event(user_id, event_id)
    return {"data": result, "message": "Event deleted"}


@router.post("/{event_id}/cancel")
async def cancel_event(
    event_id: str,
    data: CancelRequest,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    event = await engine.lifecycle.cancel_event(user_id, event_id, data.reason)
    return {"data": event}


@router.post("/{event_id}/recurrence/expand")
async def expand_recurrence(
    event_id: str,
    data: ExpandRequest,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    result = await engine.lifecycle.expand_recurrence(user_id, event_id, data.horizon)
    return {"data": result}


# ── Co-hosts ─────────────────────────────────────────────

@router.post("/{event_id}/co-hosts/{co_host_id}")
async def add_co_host(
    event_id: str,
    co_host_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    event = await engine.lifecycle.add_co_host(user_id, event_id, co_host_id)
    return {"data": event}


@router.delete("/{event_id}/co-hosts/{co_host_id}")
async def remove_co_host(
    event_id: str,
    co_host_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    event = await engine.lifecycle.remove_co_host(user_id, event_id, co_host_id)
    return {"data": event}


# ── RSVPs & attendees ────────────────────────────────────

@router.post("/{event_id}/rsvp")
async def rsvp(
    event_id: str,
    data: RSVPRequest,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    attendee = await engine.rsvp.rsvp(user_id, event_id, data)
    return {"data": attendee}


@router.patch("/{event_id}/rsvp/guests")
async def update_guest_count(
    event_id: str,
    data: GuestCountRequest,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    attendee = await engine.rsvp.update_guest_count(user_id, event_id, data.guest_count)
    return {"data": attendee}


@router.get("/{event_id}/waitlist")
async def get_waitlist(
    event_id: str,
    limit: int | None = None,
    offset: int | None = None,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    page = await engine.rsvp.get_waitlist(user_id, event_id, limit, offset)
    return {"data": page}


@router.get("/{event_id}/waitlist/position")
async def get_waitlist_position(
    event_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    position = await engine.rsvp.get_waitlist_position(user_id, event_id)
    return {"data": {"position": position}}


@router.get("/{event_id}/attendees")
async def get_attendees(
    event_id: str,
    rsvp: RSVPValue | None = None,
    waitlisted: bool | None = None,
    limit: int | None = None,
    offset: int | None = None,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    page = await engine.rsvp.get_attendees(user_id, event_id, rsvp, waitlisted, limit, offset)
    return {"data": page}


@router.get("/{event_id}/attendees/{attendee_user_id}")
async def get_attendee(
    event_id: str,
    attendee_user_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    attendee = await engine.rsvp.get_attendee(user_id, event_id, attendee_user_id)
    return {"data": attendee}


@router.delete("/{event_id}/attendees/{attendee_user_id}")
async def remove_attendee(
    event_id: str,
    attendee_user_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    await engine.rsvp.remove_attendee(user_id, event_id, attendee_user_id)
    return {"message": "Attendee removed"}


@router.post("/{event_id}/attendees/{attendee_user_id}/check-in")
async def check_in(
    event_id: str,
    attendee_user_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    attendee = await engine.rsvp.check_in(user_id, event_id, attendee_user_id)
    return {"data": attendee}


@router.post("/{event_id}/invite")
async def invite(
    event_id: str,
    data: InviteRequest,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    attendee = await engine.rsvp.invite(user_id, event_id, data.user_id)
    return {"data": attendee}


# ── Reminders ────────────────────────────────────────────

@router.post("/{event_id}/reminders")
async def set_reminder(
    event_id: str,
    data: ReminderCreate,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    reminder = await engine.reminders.set_reminder(user_id, event_id, data)
    return {"data": reminder}


@router.get("/{event_id}/reminders")
async def list_reminders(
    event_id: str,
    limit: int | None = None,
    offset: int | None = None,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    """List the caller's own reminders for this event."""
    page = await engine.reminders.list_reminders(user_id, event_id, limit, offset)
    return {"data": page}


@router.patch("/{event_id}/reminders/{reminder_id}")
async def update_reminder(
    event_id: str,
    reminder_id: str,
    data: ReminderUpdate,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    reminder = await engine.reminders.update_reminder(user_id, event_id, reminder_id, data)
    return {"data": reminder}


@router.delete("/{event_id}/reminders/{reminder_id}")
async def delete_reminder(
    event_id: str,
    reminder_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: EventEngine = Depends(get_event_engine),
):
    await engine.reminders.delete_reminder(user_id, event_id, reminder_id)
    return {"message": "Reminder deleted"}
