"""
Events feature: capacity and RSVP engine.

One attendee record per (event, user), written with an upsert. Counters on the event
are always recomputed from the full attendee set after a write.
"""

import logging
import uuid
from collections.abc import Callable
from datetime import datetime

from eventhub.core.exceptions import (
    CapacityExceededError,
    CounterRecomputeError,
    EventEndedError,
    EventStateError,
    ForbiddenError,
    InvalidTimeWindowError,
    NotFoundError,
    ValidationError,
)
from eventhub.core.tasks import TaskDispatcher
from eventhub.core.timeutils import utcnow
from eventhub.features.events.collaborators import NotificationDispatcher, RoleOracle
from eventhub.features.events.permissions import Capability, can_view, require
from eventhub.features.events.repository import EventRepository, get_live_event
from eventhub.features.events.schemas import (
    Attendee,
    Event,
    EventStatus,
    Page,
    RSVPCounts,
    RSVPRequest,
    RSVPValue,
    WaitlistEntry,
    page_bounds,
)

logger = logging.getLogger(__name__)


class RSVPEngine:
    """RSVPs, capacity limits, the waitlist flag, invitations and check-in."""

    def __init__(
        self,
        repo: EventRepository,
        roles: RoleOracle,
        notifier: NotificationDispatcher,
        dispatcher: TaskDispatcher,
        clock: Callable[[], datetime] = utcnow,
        page_default_limit: int = 20,
        page_max_limit: int = 100,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.repo = repo
        self.roles = roles
        self.notifier = notifier
        self.dispatcher = dispatcher
        self.clock = clock
        self.page_default_limit = page_default_limit
        self.page_max_limit = page_max_limit
        self.id_factory = id_factory

    async def rsvp(self, user_id: str, event_id: str, data: RSVPRequest) -> Attendee:
        """Record the caller's RSVP.

        A 'going' RSVP on a full event raises CapacityExceededError. The caller can
        resubmit as 'interested' with join_waitlist to be flagged as waitlisted;
        nobody is promoted off the waitlist automatically.
        """
        if data.rsvp == RSVPValue.NO_REPLY:
            raise ValidationError("'no_reply' is reserved for invitations")
        if data.guest_count < 0:
            raise ValidationError("Guest count cannot be negative")

        event = get_live_event(self.repo, event_id)
        if event.status == EventStatus.CANCELLED:
            raise EventStateError("Cannot RSVP to a cancelled event")
        now = self.clock()
        if now > event.end_time:
            raise EventEndedError()

        existing = self.repo.get_attendee(event_id, user_id)
        waitlisted = False
        if data.rsvp == RSVPValue.GOING and event.max_attendees > 0:
            going = self._going_excluding(event, existing)
            if going >= event.max_attendees:
                raise CapacityExceededError(event.max_attendees)
        elif data.rsvp == RSVPValue.INTERESTED and data.join_waitlist:
            waitlisted = (
                event.max_attendees > 0
                and self._going_excluding(event, existing) >= event.max_attendees
            )

        if not waitlisted:
            waitlisted_at = None
        elif existing and existing.waitlisted and existing.waitlisted_at:
            # staying on the waitlist keeps the original place in the queue
            waitlisted_at = existing.waitlisted_at
        else:
            waitlisted_at = now

        fields = {
            "rsvp": data.rsvp,
            "guest_count": data.guest_count,
            "note": data.note,
            "waitlisted": waitlisted,
            "waitlisted_at": waitlisted_at,
            "updated_at": now,
        }
        if existing:
            attendee = existing.model_copy(update=fields)
        else:
            attendee = Attendee(
                id=self.id_factory(),
                event_id=event_id,
                user_id=user_id,
                created_at=now,
                **fields,
            )
        saved = self.repo.upsert_attendee(attendee)
        logger.info(
            f"🎟️ RSVP {data.rsvp.value} from {user_id} on event {event_id}"
            + (" (waitlisted)" if waitlisted else "")
        )

        await self.recompute_counts(event_id)
        if existing is None or existing.rsvp != data.rsvp:
            self._notify_rsvp(event, saved)
        return saved

    def _notify_rsvp(self, event: Event, attendee: Attendee) -> None:
        """Tell the host about a new answer; co-hosts also hear about 'going'."""
        if attendee.user_id == event.host_id:
            return
        recipients = [event.host_id]
        if attendee.rsvp == RSVPValue.GOING:
            recipients.extend(event.co_hosts)
        recipients = [r for r in recipients if r != attendee.user_id]
        if not recipients:
            return
        self.dispatcher.submit(
            "notify_rsvp",
            lambda: self.notifier.notify_rsvp(
                event.id, event.title, recipients, attendee.user_id, attendee.rsvp.value
            ),
            event_id=event.id,
        )

    def _going_excluding(self, event: Event, existing: Attendee | None) -> int:
        going = self.repo.count_rsvps(event.id).going
        if existing and existing.rsvp == RSVPValue.GOING:
            going -= 1
        return going

    async def recompute_counts(self, event_id: str) -> RSVPCounts:
        """Rebuild the event's counters from its attendee rows and persist them."""
        try:
            counts = self.repo.count_rsvps(event_id)
            self.repo.update_event(event_id, {"rsvp_counts": counts})
        except Exception as e:
            logger.warning(f"Failed to recompute RSVP counts for event {event_id}: {e}")
            raise CounterRecomputeError(event_id, str(e)) from e
        return counts

    # ── Attendee queries ─────────────────────────────────

    def _require_visible(self, event: Event, user_id: str) -> None:
        """Guest lists of private and invite-only events are for hosts and attendees."""
        visible = can_view(
            event,
            user_id,
            self.roles,
            lambda: self.repo.get_attendee(event.id, user_id) is not None,
        )
        if not visible:
            raise ForbiddenError("This event's guest list is private")

    async def get_attendee(self, user_id: str, event_id: str, attendee_user_id: str) -> Attendee:
        event = get_live_event(self.repo, event_id)
        if attendee_user_id != user_id:
            self._require_visible(event, user_id)
        attendee = self.repo.get_attendee(event_id, attendee_user_id)
        if attendee is None:
            raise NotFoundError("Attendee", attendee_user_id)
        return attendee

    async def get_attendees(
        self,
        user_id: str,
        event_id: str,
        rsvp: RSVPValue | None = None,
        waitlisted: bool | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> Page[Attendee]:
        event = get_live_event(self.repo, event_id)
        self._require_visible(event, user_id)
        limit, offset = page_bounds(limit, offset, self.page_default_limit, self.page_max_limit)
        items, total = self.repo.list_attendees(event_id, rsvp, waitlisted, limit, offset)
        return Page[Attendee](items=items, total=total, limit=limit, offset=offset)

    # ── Host-side attendee management ────────────────────

    async def remove_attendee(self, user_id: str, event_id: str, attendee_user_id: str) -> None:
        """Attendees may withdraw themselves; hosts, co-hosts and moderators may remove anyone."""
        event = get_live_event(self.repo, event_id)
        if attendee_user_id != user_id:
            require(event, user_id, Capability.MODERATOR_OR_ABOVE, self.roles)
        if not self.repo.delete_attendee(event_id, attendee_user_id):
            raise NotFoundError("Attendee", attendee_user_id)
        logger.info(f"Attendee {attendee_user_id} removed from event {event_id} by {user_id}")
        await self.recompute_counts(event_id)

    async def invite(self, user_id: str, event_id: str, invitee_id: str) -> Attendee:
        event = get_live_event(self.repo, event_id)
        require(event, user_id, Capability.HOST_OR_COHOST, self.roles)
        if event.status == EventStatus.CANCELLED:
            raise EventStateError("Cannot invite users to a cancelled event")
        now = self.clock()
        if now > event.end_time:
            raise InvalidTimeWindowError("Cannot invite users to an event that has ended")
        if self.repo.get_attendee(event_id, invitee_id) is not None:
            raise ValidationError("User already has an RSVP for this event")

        attendee = self.repo.upsert_attendee(
            Attendee(
                id=self.id_factory(),
                event_id=event_id,
                user_id=invitee_id,
                rsvp=RSVPValue.NO_REPLY,
                invited_by=user_id,
                created_at=now,
                updated_at=now,
            )
        )
        await self.recompute_counts(event_id)
        self.dispatcher.submit(
            "notify_invitation",
            lambda: self.notifier.notify_invitation(event.id, event.title, invitee_id, user_id),
            event_id=event_id,
        )
        return attendee

    async def check_in(self, user_id: str, event_id: str, attendee_user_id: str) -> Attendee:
        event = get_live_event(self.repo, event_id)
        require(event, user_id, Capability.HOST_OR_COHOST, self.roles)
        if event.status == EventStatus.CANCELLED:
            raise EventStateError("Cannot check in to a cancelled event")
        attendee = self.repo.get_attendee(event_id, attendee_user_id)
        if attendee is None:
            raise NotFoundError("Attendee", attendee_user_id)
        if attendee.rsvp != RSVPValue.GOING:
            raise ValidationError("Only attendees who are going can be checked in")
        if attendee.checked_in:
            return attendee

        now = self.clock()
        return self.repo.upsert_attendee(
            attendee.model_copy(update={"checked_in": True, "check_in_time": now, "updated_at": now})
        )

    async def update_guest_count(self, user_id: str, event_id: str, guest_count: int) -> Attendee:
        """Change how many guests the caller brings. Guests do not count toward capacity."""
        if guest_count < 0:
            raise ValidationError("Guest count cannot be negative")
        event = get_live_event(self.repo, event_id)
        if event.status == EventStatus.CANCELLED:
            raise EventStateError("Cannot change guests for a cancelled event")
        now = self.clock()
        if now > event.end_time:
            raise EventEndedError()

        attendee = self.repo.get_attendee(event_id, user_id)
        if attendee is None:
            raise NotFoundError("Attendee", user_id)
        if attendee.waitlisted:
            raise ValidationError("Cannot update guest count while on the waitlist")
        if attendee.guest_count == guest_count:
            return attendee
        return self.repo.upsert_attendee(
            attendee.model_copy(update={"guest_count": guest_count, "updated_at": now})
        )

    # ── Waitlist ─────────────────────────────────────────

    async def get_waitlist(
        self,
        user_id: str,
        event_id: str,
        limit: int | None = None,
        offset: int | None = None,
    ) -> Page[WaitlistEntry]:
        """Waitlisted attendees in the order they joined the waitlist."""
        event = get_live_event(self.repo, event_id)
        self._require_visible(event, user_id)
        limit, offset = page_bounds(limit, offset, self.page_default_limit, self.page_max_limit)
        attendees, total = self.repo.list_waitlist(event_id, limit, offset)
        items = [
            WaitlistEntry(position=offset + i + 1, attendee=attendee)
            for i, attendee in enumerate(attendees)
        ]
        return Page[WaitlistEntry](items=items, total=total, limit=limit, offset=offset)

    async def get_waitlist_position(self, user_id: str, event_id: str) -> int:
        get_live_event(self.repo, event_id)
        attendee = self.repo.get_attendee(event_id, user_id)
        if attendee is None or not attendee.waitlisted:
            raise NotFoundError("Waitlist entry", user_id)
        joined = attendee.waitlisted_at or attendee.created_at
        if joined is None:
            return 1
        return self.repo.count_waitlisted_before(event_id, joined) + 1

    # ── Per-user views ───────────────────────────────────

    async def get_attending_events(
        self,
        user_id: str,
        rsvp: RSVPValue | None = RSVPValue.GOING,
        limit: int | None = None,
        offset: int | None = None,
    ) -> Page[Event]:
        """Events the caller has answered with `rsvp` (any answer when None), newest RSVP first."""
        limit, offset = page_bounds(limit, offset, self.page_default_limit, self.page_max_limit)
        attendees, total = self.repo.list_user_attendance(user_id, rsvp, limit, offset)
        by_id = {e.id: e for e in self.repo.get_events([a.event_id for a in attendees])}

        now = self.clock()
        items = []
        for attendee in attendees:
            event = by_id.get(attendee.event_id)
            if event is None or event.status == EventStatus.DELETED:
                continue
            items.append(event.model_copy(update={"status": event.display_status(now)}))
        return Page[Event](items=items, total=total, limit=limit, offset=offset)
