"""
Events feature: recurrence expansion.

Turns a parent event and its rule into concrete child instances up to a horizon.
Each child carries a period key (`recurrence_index`, the 1-based ordinal of the
occurrence after the parent's own), so re-running an expansion or propagating an
update matches existing children instead of minting new ones.
"""

import asyncio
import logging
import uuid
import weakref
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from dateutil.relativedelta import relativedelta
from dateutil.rrule import rrule, rrulestr

from eventhub.core.exceptions import CascadeFailure, ValidationError
from eventhub.core.timeutils import resolve_zone, utcnow
from eventhub.features.events.repository import EventRepository
from eventhub.features.events.schemas import Event, EventStatus, ExpandResult, RSVPCounts

logger = logging.getLogger(__name__)

KEYWORD_RULES = {
    "DAILY": "FREQ=DAILY",
    "WEEKLY": "FREQ=WEEKLY",
    "BIWEEKLY": "FREQ=WEEKLY;INTERVAL=2",
    "MONTHLY": "FREQ=MONTHLY",
    "YEARLY": "FREQ=YEARLY",
}

# Fields a child never takes from the parent
_INSTANCE_OWN_FIELDS = {
    "id",
    "parent_event_id",
    "recurrence_index",
    "recurrence_rule",
    "start_time",
    "end_time",
    "status",
    "cancellation_reason",
    "rsvp_counts",
    "created_at",
    "updated_at",
}

_VALIDATION_DTSTART = datetime(2000, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Occurrence:
    index: int
    start: datetime
    end: datetime


def normalize_rule(rule: str) -> str:
    """Map keyword rules to RRULE bodies and strip an optional 'RRULE:' prefix."""
    body = rule.strip()
    if body.upper().startswith("RRULE:"):
        body = body[len("RRULE:"):]
    return KEYWORD_RULES.get(body.upper(), body.upper())


def parse_rule(rule: str, dtstart: datetime) -> rrule:
    """Parse a recurrence rule anchored at `dtstart`. Raises ValidationError."""
    body = normalize_rule(rule)
    try:
        parsed = rrulestr(body, dtstart=dtstart)
    except (ValueError, TypeError, KeyError) as e:
        raise ValidationError(f"Invalid recurrence rule '{rule}'", str(e)) from e
    if not isinstance(parsed, rrule):
        raise ValidationError(f"Invalid recurrence rule '{rule}'", "expected a single RRULE")
    return parsed


def validate_rule(rule: str) -> None:
    parse_rule(rule, _VALIDATION_DTSTART)


def default_horizon(event: Event, months: int = 12) -> datetime:
    return event.end_time + relativedelta(months=months)


def compute_occurrences(parent: Event, horizon: datetime, max_instances: int) -> list[Occurrence]:
    """Occurrences after the parent's own, with start in (parent.start, horizon].

    Iteration happens in the event's time zone so wall-clock times survive DST.
    """
    zone = resolve_zone(parent.time_zone)
    local_start = parent.start_time.astimezone(zone)
    duration = parent.end_time - parent.start_time
    rule = parse_rule(parent.recurrence_rule or "", local_start)

    occurrences: list[Occurrence] = []
    index = 0
    for local in rule:
        if local > horizon:
            break
        if local <= local_start:
            continue
        index += 1
        if index > max_instances:
            logger.warning(
                f"Recurrence for event {parent.id} capped at {max_instances} instances"
            )
            break
        start = local.astimezone(timezone.utc)
        occurrences.append(Occurrence(index=index, start=start, end=start + duration))
    return occurrences


def build_instance(parent: Event, occurrence: Occurrence, instance_id: str, now: datetime) -> Event:
    """A child inherits everything but identity, times, rule, status and counters."""
    inherited = parent.model_dump(exclude=_INSTANCE_OWN_FIELDS)
    return Event(
        **inherited,
        id=instance_id,
        parent_event_id=parent.id,
        recurrence_index=occurrence.index,
        recurrence_rule=None,
        start_time=occurrence.start,
        end_time=occurrence.end,
        status=EventStatus.SCHEDULED,
        rsvp_counts=RSVPCounts(),
        created_at=now,
        updated_at=now,
    )


class RecurrenceExpander:
    """Materializes, updates and removes recurrence children of a parent event."""

    def __init__(
        self,
        repo: EventRepository,
        max_instances: int = 366,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.repo = repo
        self.max_instances = max_instances
        self.clock = clock
        self.id_factory = id_factory
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, parent_id: str) -> asyncio.Lock:
        lock = self._locks.get(parent_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[parent_id] = lock
        return lock

    def _live_parent(self, parent_id: str) -> Event | None:
        parent = self.repo.get_event(parent_id)
        if parent is None or parent.status in (EventStatus.CANCELLED, EventStatus.DELETED):
            return None
        return parent

    async def expand(self, parent: Event, horizon: datetime) -> ExpandResult:
        """Create missing children up to `horizon`. Safe to call repeatedly."""
        if not parent.is_recurrence_parent:
            raise ValidationError(f"Event '{parent.id}' is not a recurrence parent")

        result = ExpandResult(parent_event_id=parent.id)
        lock = self._lock_for(parent.id)
        async with lock:
            # the parent may have changed or gone since this expansion was queued
            current = self._live_parent(parent.id)
            if current is None:
                logger.info(f"Skipping expansion of event {parent.id}: series is no longer live")
                return result
            existing = {
                child.recurrence_index for child in self.repo.list_children(current.id)
            }
            now = self.clock()
            for occurrence in compute_occurrences(current, horizon, self.max_instances):
                if occurrence.index in existing:
                    result.skipped += 1
                    continue
                child = self.repo.upsert_child(
                    build_instance(current, occurrence, self.id_factory(), now)
                )
                result.created.append(child.id)

        logger.info(
            f"🔁 Expanded event {parent.id}: {len(result.created)} created, "
            f"{result.skipped} already materialized"
        )
        return result

    async def propagate_update(
        self, before: Event, after: Event, changes: dict
    ) -> list[CascadeFailure]:
        """Apply the parent's field delta to each live child, matched by period key.

        Start/end changes are applied as the same wall-clock shift the parent received.
        """
        failures: list[CascadeFailure] = []
        zone = resolve_zone(after.time_zone)
        start_shift = after.start_time - before.start_time
        end_shift = after.end_time - before.end_time
        plain_fields = {
            key: value
            for key, value in changes.items()
            if key not in ("start_time", "end_time")
        }

        lock = self._lock_for(after.id)
        async with lock:
            if self._live_parent(after.id) is None:
                logger.info(f"Skipping update propagation for event {after.id}: series is no longer live")
                return failures
            for child in self.repo.list_children(after.id):
                if child.status in (EventStatus.CANCELLED, EventStatus.DELETED):
                    continue
                try:
                    fields = dict(plain_fields)
                    if "start_time" in changes or "end_time" in changes:
                        new_start = (child.start_time.astimezone(zone) + start_shift).astimezone(timezone.utc)
                        new_end = (child.end_time.astimezone(zone) + end_shift).astimezone(timezone.utc)
                        if new_end < new_start:
                            raise ValidationError("shifted end_time would precede start_time")
                        fields["start_time"] = new_start
                        fields["end_time"] = new_end
                    new_max = fields.get("max_attendees")
                    if new_max and new_max < child.rsvp_counts.going:
                        raise ValidationError(
                            f"max_attendees {new_max} is below {child.rsvp_counts.going} going"
                        )
                    fields["updated_at"] = self.clock()
                    self.repo.update_event(child.id, fields)
                except Exception as e:
                    logger.error(f"❌ Failed to propagate update to instance {child.id}: {e}")
                    failures.append(CascadeFailure("propagate_update", child.id, str(e)))
        return failures

    async def delete_children(self, parent_id: str, soft: bool = False) -> tuple[int, list[CascadeFailure]]:
        """Remove every child still referencing the parent. Best effort, never stops early."""
        deleted = 0
        failures: list[CascadeFailure] = []
        lock = self._lock_for(parent_id)
        async with lock:
            for child in self.repo.list_children(parent_id):
                try:
                    if soft:
                        marked = self.repo.update_event(
                            child.id,
                            {"status": EventStatus.DELETED, "updated_at": self.clock()},
                        )
                        if marked is None:
                            raise RuntimeError("instance already gone")
                    elif not self.repo.delete_event(child.id):
                        raise RuntimeError("instance already gone")
                    deleted += 1
                except Exception as e:
                    logger.error(f"❌ Failed to delete instance {child.id} of {parent_id}: {e}")
                    failures.append(CascadeFailure("delete_instance", child.id, str(e)))
        return deleted, failures
