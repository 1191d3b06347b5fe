"""
Events feature: event lifecycle manager.

Create, update, cancel and delete events. Every mutation passes the permission gate
first; recurrence cascades and notifications are handed to the TaskDispatcher so the
caller never waits on (or fails because of) them.
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
    ValidationError,
)
from eventhub.core.tasks import TaskDispatcher
from eventhub.core.timeutils import resolve_zone, utcnow
from eventhub.features.events.collaborators import (
    GroupPermissionOracle,
    NotificationDispatcher,
    RoleOracle,
)
from eventhub.features.events.permissions import (
    Capability,
    can_view,
    is_platform_admin,
    require,
    require_group_permission,
)
from eventhub.features.events.recurrence import RecurrenceExpander, default_horizon, validate_rule
from eventhub.features.events.repository import EventFilter, EventRepository, get_live_event
from eventhub.features.events.schemas import (
    CascadeWarning,
    DeleteResult,
    Event,
    EventCreate,
    EventStatus,
    EventUpdate,
    ExpandResult,
    Page,
    Privacy,
    RSVPCounts,
    page_bounds,
)

logger = logging.getLogger(__name__)

# Update fields that may be explicitly cleared
_NULLABLE_FIELDS = {"category", "url"}

_LISTED_BY_DEFAULT = [EventStatus.SCHEDULED, EventStatus.ACTIVE]


def check_time_window(start: datetime, end: datetime) -> None:
    if end < start:
        raise InvalidTimeWindowError("End time cannot be before start time")


def _clean_co_hosts(host_id: str, co_hosts: list[str]) -> list[str]:
    seen: list[str] = []
    for user_id in co_hosts:
        if user_id and user_id != host_id and user_id not in seen:
            seen.append(user_id)
    return seen


class EventLifecycleManager:
    """Owns event state transitions and the cascades they trigger."""

    def __init__(
        self,
        repo: EventRepository,
        roles: RoleOracle,
        groups: GroupPermissionOracle,
        notifier: NotificationDispatcher,
        expander: RecurrenceExpander,
        dispatcher: TaskDispatcher,
        clock: Callable[[], datetime] = utcnow,
        soft_delete: bool = False,
        horizon_months: int = 12,
        page_default_limit: int = 20,
        page_max_limit: int = 100,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.repo = repo
        self.roles = roles
        self.groups = groups
        self.notifier = notifier
        self.expander = expander
        self.dispatcher = dispatcher
        self.clock = clock
        self.soft_delete = soft_delete
        self.horizon_months = horizon_months
        self.page_default_limit = page_default_limit
        self.page_max_limit = page_max_limit
        self.id_factory = id_factory

    # ── Reads ────────────────────────────────────────────

    def load(self, event_id: str) -> Event:
        return get_live_event(self.repo, event_id)

    async def get_event(self, user_id: str, event_id: str) -> Event:
        """Fetch one event. Private and invite-only events are hidden from outsiders."""
        event = self.load(event_id)
        visible = can_view(
            event,
            user_id,
            self.roles,
            lambda: self.repo.get_attendee(event_id, user_id) is not None,
        )
        if not visible:
            raise ForbiddenError("This event is private")
        return event.model_copy(update={"status": event.display_status(self.clock())})

    async def list_events(
        self,
        user_id: str,
        host_id: str | None = None,
        statuses: list[EventStatus] | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> Page[Event]:
        """List events the caller may see, soonest first.

        Statuses are matched as displayed, so ACTIVE means running right now and
        SCHEDULED means not running. Cancelled events are hidden unless asked for.
        """
        limit, offset = page_bounds(limit, offset, self.page_default_limit, self.page_max_limit)
        wanted = [s for s in (statuses or _LISTED_BY_DEFAULT) if s != EventStatus.DELETED]
        wanted = list(dict.fromkeys(wanted))
        if not wanted:
            return Page[Event](items=[], total=0, limit=limit, offset=offset)

        now = self.clock()
        filters = EventFilter(statuses=wanted, now=now, host_id=host_id)
        if not is_platform_admin(user_id, self.roles):
            filters.viewer_id = user_id
            filters.viewer_event_ids = self.repo.list_user_event_ids(user_id)

        events, total = self.repo.list_events(filters, limit, offset)
        items = [e.model_copy(update={"status": e.display_status(now)}) for e in events]
        return Page[Event](items=items, total=total, limit=limit, offset=offset)

    # ── Create ───────────────────────────────────────────

    async def create_event(self, user_id: str, data: EventCreate) -> Event:
        now = self.clock()
        check_time_window(data.start_time, data.end_time)
        if data.start_time <= now:
            raise InvalidTimeWindowError("Event start time must be in the future")
        resolve_zone(data.time_zone)
        if data.is_recurring and not data.recurrence_rule:
            raise ValidationError("A recurring event needs a recurrence_rule")
        if data.recurrence_rule:
            validate_rule(data.recurrence_rule)
        require_group_permission(data.group_id, user_id, self.groups)

        fields = data.model_dump(exclude={"co_hosts"})
        event = Event(
            **fields,
            id=self.id_factory(),
            host_id=user_id,
            co_hosts=_clean_co_hosts(user_id, data.co_hosts),
            status=EventStatus.SCHEDULED,
            rsvp_counts=RSVPCounts(),
            created_at=now,
            updated_at=now,
        )
        created = self.repo.insert_event(event)
        logger.info(f"📅 Event {created.id} created by {user_id}")

        if created.is_recurrence_parent:
            horizon = default_horizon(created, self.horizon_months)
            self.dispatcher.submit(
                "expand_recurrence",
                lambda: self.expander.expand(created, horizon),
                event_id=created.id,
            )
        if created.privacy != Privacy.PRIVATE:
            self.dispatcher.submit(
                "notify_followers",
                lambda: self.notifier.notify_followers(user_id, created.id, created.title),
                event_id=created.id,
            )
        return created

    # ── Update ───────────────────────────────────────────

    async def update_event(self, user_id: str, event_id: str, data: EventUpdate) -> Event:
        event = self.load(event_id)
        require(event, user_id, Capability.HOST_COHOST_OR_ADMIN, self.roles)
        require_group_permission(event.group_id, user_id, self.groups)
        if event.status == EventStatus.CANCELLED:
            raise EventStateError("Cancelled events cannot be edited")

        changes = {
            key: value
            for key, value in data.changes().items()
            if value is not None or key in _NULLABLE_FIELDS
        }
        if not changes:
            return event

        now = self.clock()
        start = changes.get("start_time", event.start_time)
        end = changes.get("end_time", event.end_time)
        check_time_window(start, end)
        if "start_time" in changes and start != event.start_time and start <= now:
            raise InvalidTimeWindowError("Event start time must be in the future")
        if "time_zone" in changes:
            resolve_zone(changes["time_zone"])
        if "max_attendees" in changes:
            self._check_capacity_reduction(event, changes["max_attendees"])
        if "co_hosts" in changes:
            changes["co_hosts"] = _clean_co_hosts(event.host_id, changes["co_hosts"])

        updated = self.repo.update_event(event_id, {**changes, "updated_at": now})
        if updated is None:
            raise NotFoundError("Event", event_id)
        logger.info(f"✏️ Event {event_id} updated by {user_id}: {sorted(changes)}")

        self.dispatcher.submit(
            "notify_update",
            lambda: self.notifier.notify_event_updated(updated.id, updated.title, sorted(changes)),
            event_id=event_id,
        )
        if data.propagate_to_recurrence and event.is_recurrence_parent:
            self.dispatcher.submit(
                "propagate_update",
                lambda: self._propagate(event, updated, changes),
                event_id=event_id,
            )
        return updated

    def _check_capacity_reduction(self, event: Event, new_max: int) -> None:
        if new_max == 0 or new_max >= event.max_attendees > 0:
            return
        going = self.repo.count_rsvps(event.id).going
        if new_max < going:
            raise ValidationError(
                "Cannot reduce max_attendees below the current number of attendees",
                f"{going} attendees are going; new limit is {new_max}.",
            )

    async def _propagate(self, before: Event, after: Event, changes: dict) -> None:
        failures = await self.expander.propagate_update(before, after, changes)
        for failure in failures:
            self.dispatcher.failures.append(failure)

    # ── Cancel ───────────────────────────────────────────

    async def cancel_event(self, user_id: str, event_id: str, reason: str | None = None) -> Event:
        """Mark one event cancelled. Recurrence siblings and children are untouched."""
        event = self.load(event_id)
        require(event, user_id, Capability.HOST_COHOST_OR_ADMIN, self.roles)
        if event.status == EventStatus.CANCELLED:
            return event

        updated = self.repo.update_event(
            event_id,
            {
                "status": EventStatus.CANCELLED,
                "cancellation_reason": reason,
                "updated_at": self.clock(),
            },
        )
        if updated is None:
            raise NotFoundError("Event", event_id)
        logger.info(f"🚫 Event {event_id} cancelled by {user_id}")

        self.dispatcher.submit(
            "notify_cancellation",
            lambda: self.notifier.notify_cancellation(updated.id, updated.title),
            event_id=event_id,
        )
        return updated

    # ── Delete ───────────────────────────────────────────

    async def delete_event(self, user_id: str, event_id: str) -> DeleteResult:
        """Delete an event. A recurrence parent takes its children with it, best effort."""
        event = self.load(event_id)
        require(event, user_id, Capability.HOST_OR_ADMIN, self.roles)
        require_group_permission(event.group_id, user_id, self.groups)

        if self.soft_delete:
            removed = self.repo.update_event(
                event_id, {"status": EventStatus.DELETED, "updated_at": self.clock()}
            ) is not None
        else:
            removed = self.repo.delete_event(event_id)
        if not removed:
            raise NotFoundError("Event", event_id)
        logger.info(f"🗑️ Event {event_id} deleted by {user_id}")

        result = DeleteResult(event_id=event_id)
        if event.is_recurrence_parent:
            deleted, failures = await self.expander.delete_children(event_id, soft=self.soft_delete)
            result.deleted_instances = deleted
            for failure in failures:
                self.dispatcher.failures.append(failure)
                result.warnings.append(CascadeWarning(**failure.as_warning()))
            if failures:
                logger.warning(
                    f"Event {event_id} deleted with {len(failures)} instance(s) left behind"
                )

        self.dispatcher.submit(
            "notify_cancellation",
            lambda: self.notifier.notify_cancellation(event.id, event.title),
            event_id=event_id,
        )
        return result

    # ── Co-hosts ─────────────────────────────────────────

    async def add_co_host(self, user_id: str, event_id: str, co_host_id: str) -> Event:
        event = self.load(event_id)
        require(event, user_id, Capability.HOST, self.roles)
        if co_host_id == event.host_id:
            raise ValidationError("The host cannot also be a co-host")
        if co_host_id in event.co_hosts:
            return event
        updated = self.repo.update_event(
            event_id,
            {"co_hosts": [*event.co_hosts, co_host_id], "updated_at": self.clock()},
        )
        if updated is None:
            raise NotFoundError("Event", event_id)
        return updated

    async def remove_co_host(self, user_id: str, event_id: str, co_host_id: str) -> Event:
        event = self.load(event_id)
        require(event, user_id, Capability.HOST, self.roles)
        if co_host_id not in event.co_hosts:
            raise NotFoundError("Co-host", co_host_id)
        updated = self.repo.update_event(
            event_id,
            {
                "co_hosts": [c for c in event.co_hosts if c != co_host_id],
                "updated_at": self.clock(),
            },
        )
        if updated is None:
            raise NotFoundError("Event", event_id)
        return updated

    # ── Recurrence ───────────────────────────────────────

    async def expand_recurrence(
        self, user_id: str, event_id: str, horizon: datetime | None = None
    ) -> ExpandResult:
        """Materialize instances up to `horizon` (default: end + configured months)."""
        event = self.load(event_id)
        require(event, user_id, Capability.HOST_COHOST_OR_ADMIN, self.roles)
        if not event.is_recurrence_parent:
            raise ValidationError(f"Event '{event_id}' is not a recurring series parent")
        if event.status == EventStatus.CANCELLED:
            raise EventStateError("Cancelled series cannot be expanded")
        if horizon is None:
            horizon = default_horizon(event, self.horizon_months)
        elif horizon < event.start_time:
            raise InvalidTimeWindowError("Expansion horizon is before the series start")
        return await self.expander.expand(event, horizon)
