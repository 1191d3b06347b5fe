"""
Unit tests for recurrence rules, occurrence computation and the expander.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from eventhub.core.exceptions import ValidationError
from eventhub.features.events.recurrence import (
    build_instance,
    compute_occurrences,
    default_horizon,
    normalize_rule,
    validate_rule,
)
from eventhub.features.events.schemas import EventStatus, RSVPCounts

UTC = timezone.utc


@pytest.fixture
def weekly_parent(make_event):
    return make_event(
        id="series-1",
        start_time=datetime(2024, 1, 1, 10, 0, tzinfo=UTC),
        end_time=datetime(2024, 1, 8, 10, 0, tzinfo=UTC),
        is_recurring=True,
        recurrence_rule="WEEKLY",
        max_attendees=25,
        tags=["community"],
        rsvp_counts=RSVPCounts(going=3, interested=1),
    )


# -- rule parsing --

class TestRules:
    @pytest.mark.parametrize(
        "rule, expected",
        [
            ("weekly", "FREQ=WEEKLY"),
            ("BIWEEKLY", "FREQ=WEEKLY;INTERVAL=2"),
            ("RRULE:FREQ=MONTHLY;BYMONTHDAY=15", "FREQ=MONTHLY;BYMONTHDAY=15"),
            ("freq=weekly;byday=mo,we", "FREQ=WEEKLY;BYDAY=MO,WE"),
        ],
    )
    def test_normalize(self, rule, expected):
        assert normalize_rule(rule) == expected

    def test_valid_rules_pass(self):
        for rule in ("DAILY", "MONTHLY", "YEARLY", "FREQ=WEEKLY;BYDAY=MO,WE;COUNT=10"):
            validate_rule(rule)

    @pytest.mark.parametrize("rule", ["fortnightly", "FREQ=SOMETIMES", ""])
    def test_unknown_rule_rejected(self, rule):
        with pytest.raises(ValidationError):
            validate_rule(rule)


# -- occurrences --

class TestComputeOccurrences:
    def test_weekly_until_horizon(self, weekly_parent):
        horizon = datetime(2024, 2, 1, tzinfo=UTC)
        occurrences = compute_occurrences(weekly_parent, horizon, max_instances=366)

        assert [o.start.date().isoformat() for o in occurrences] == [
            "2024-01-08",
            "2024-01-15",
            "2024-01-22",
            "2024-01-29",
        ]
        assert [o.index for o in occurrences] == [1, 2, 3, 4]
        assert all(o.end - o.start == timedelta(days=7) for o in occurrences)

    def test_horizon_is_inclusive(self, weekly_parent):
        horizon = datetime(2024, 1, 29, 10, 0, tzinfo=UTC)
        assert len(compute_occurrences(weekly_parent, horizon, 366)) == 4

    def test_capped_by_max_instances(self, weekly_parent):
        horizon = datetime(2025, 1, 1, tzinfo=UTC)
        assert len(compute_occurrences(weekly_parent, horizon, max_instances=3)) == 3

    def test_wall_clock_stable_across_dst(self, make_event):
        # 09:00 in New York is 14:00 UTC in winter, 13:00 UTC after March 10th 2024
        parent = make_event(
            start_time=datetime(2024, 3, 4, 14, 0, tzinfo=UTC),
            time_zone="America/New_York",
            is_recurring=True,
            recurrence_rule="WEEKLY",
        )
        occurrences = compute_occurrences(parent, datetime(2024, 3, 12, tzinfo=UTC), 366)

        assert len(occurrences) == 1
        assert occurrences[0].start == datetime(2024, 3, 11, 13, 0, tzinfo=UTC)

    def test_count_limits_series(self, make_event):
        parent = make_event(
            start_time=datetime(2024, 1, 1, 10, 0, tzinfo=UTC),
            is_recurring=True,
            recurrence_rule="FREQ=DAILY;COUNT=3",
        )
        occurrences = compute_occurrences(parent, datetime(2024, 6, 1, tzinfo=UTC), 366)
        # COUNT includes the parent's own occurrence
        assert len(occurrences) == 2

    def test_default_horizon(self, weekly_parent):
        assert default_horizon(weekly_parent, 12) == datetime(2025, 1, 8, 10, 0, tzinfo=UTC)


class TestBuildInstance:
    def test_inherits_fields_with_own_identity(self, weekly_parent, clock):
        occurrence = compute_occurrences(weekly_parent, datetime(2024, 2, 1, tzinfo=UTC), 366)[0]
        child = build_instance(weekly_parent, occurrence, "inst-x", clock())

        assert child.id == "inst-x"
        assert child.parent_event_id == weekly_parent.id
        assert child.recurrence_index == 1
        assert child.recurrence_rule is None
        assert child.title == weekly_parent.title
        assert child.max_attendees == 25
        assert child.tags == ["community"]
        assert child.co_hosts == weekly_parent.co_hosts
        assert child.rsvp_counts == RSVPCounts()
        assert child.status == EventStatus.SCHEDULED


# -- expander --

class TestRecurrenceExpander:
    @pytest.mark.asyncio
    async def test_materializes_four_weekly_instances(self, expander, repo, weekly_parent):
        result = await expander.expand(weekly_parent, datetime(2024, 2, 1, tzinfo=UTC))

        children = repo.list_children(weekly_parent.id)
        assert len(result.created) == 4
        assert [c.start_time.day for c in children] == [8, 15, 22, 29]
        assert all(c.rsvp_counts == RSVPCounts() for c in children)

    @pytest.mark.asyncio
    async def test_expansion_is_idempotent(self, expander, repo, weekly_parent):
        horizon = datetime(2024, 2, 1, tzinfo=UTC)
        await expander.expand(weekly_parent, horizon)
        second = await expander.expand(weekly_parent, horizon)

        assert second.created == []
        assert second.skipped == 4
        assert len(repo.list_children(weekly_parent.id)) == 4

    @pytest.mark.asyncio
    async def test_extending_horizon_only_adds_new_periods(self, expander, repo, weekly_parent):
        await expander.expand(weekly_parent, datetime(2024, 2, 1, tzinfo=UTC))
        result = await expander.expand(weekly_parent, datetime(2024, 2, 13, tzinfo=UTC))

        assert len(result.created) == 2
        assert len(repo.list_children(weekly_parent.id)) == 6

    @pytest.mark.asyncio
    async def test_non_parent_rejected(self, expander, make_event):
        with pytest.raises(ValidationError):
            await expander.expand(make_event(), datetime(2024, 2, 1, tzinfo=UTC))

    @pytest.mark.asyncio
    async def test_propagate_shifts_children_and_copies_fields(self, expander, repo, weekly_parent):
        await expander.expand(weekly_parent, datetime(2024, 2, 1, tzinfo=UTC))
        after = weekly_parent.model_copy(
            update={
                "title": "Weekly sync",
                "start_time": weekly_parent.start_time + timedelta(hours=1),
                "end_time": weekly_parent.end_time + timedelta(hours=1),
            }
        )
        changes = {
            "title": "Weekly sync",
            "start_time": after.start_time,
            "end_time": after.end_time,
        }

        failures = await expander.propagate_update(weekly_parent, after, changes)

        children = repo.list_children(weekly_parent.id)
        assert failures == []
        assert all(c.title == "Weekly sync" for c in children)
        assert children[0].start_time == datetime(2024, 1, 8, 11, 0, tzinfo=UTC)
        assert [c.recurrence_index for c in children] == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_propagate_records_per_child_failures(self, expander, repo, weekly_parent):
        await expander.expand(weekly_parent, datetime(2024, 2, 1, tzinfo=UTC))
        crowded = repo.list_children(weekly_parent.id)[1]
        repo.update_event(crowded.id, {"rsvp_counts": RSVPCounts(going=10)})

        failures = await expander.propagate_update(
            weekly_parent, weekly_parent, {"max_attendees": 5}
        )

        assert [f.event_id for f in failures] == [crowded.id]
        limits = [c.max_attendees for c in repo.list_children(weekly_parent.id)]
        assert limits == [5, 25, 5, 5]

    @pytest.mark.asyncio
    async def test_delete_children_best_effort(self, expander, repo, weekly_parent):
        await expander.expand(weekly_parent, datetime(2024, 2, 1, tzinfo=UTC))
        stuck = repo.list_children(weekly_parent.id)[2]
        repo.fail_delete_ids.add(stuck.id)

        deleted, failures = await expander.delete_children(weekly_parent.id)

        assert deleted == 3
        assert [f.event_id for f in failures] == [stuck.id]
        assert [c.id for c in repo.list_children(weekly_parent.id)] == [stuck.id]


# -- serialization per series --

class TestExpanderSerialization:
    @pytest.mark.asyncio
    async def test_concurrent_expansions_do_not_duplicate(self, expander, repo, weekly_parent):
        horizon = datetime(2024, 2, 1, tzinfo=UTC)
        first, second = await asyncio.gather(
            expander.expand(weekly_parent, horizon),
            expander.expand(weekly_parent, horizon),
        )

        indexes = [c.recurrence_index for c in repo.list_children(weekly_parent.id)]
        assert indexes == [1, 2, 3, 4]
        assert len(first.created) + len(second.created) == 4
        assert first.skipped + second.skipped == 4

    @pytest.mark.asyncio
    async def test_expansion_waits_for_series_lock(self, expander, repo, weekly_parent):
        lock = expander._lock_for(weekly_parent.id)
        await lock.acquire()
        task = asyncio.create_task(
            expander.expand(weekly_parent, datetime(2024, 2, 1, tzinfo=UTC))
        )
        await asyncio.sleep(0)

        assert not task.done()
        assert repo.list_children(weekly_parent.id) == []

        lock.release()
        result = await task
        assert len(result.created) == 4

    @pytest.mark.asyncio
    async def test_queued_expansion_after_parent_deleted(self, expander, repo, weekly_parent):
        lock = expander._lock_for(weekly_parent.id)
        await lock.acquire()
        task = asyncio.create_task(
            expander.expand(weekly_parent, datetime(2024, 2, 1, tzinfo=UTC))
        )
        await asyncio.sleep(0)
        repo.delete_event(weekly_parent.id)
        lock.release()

        result = await task
        assert result.created == []
        assert repo.list_children(weekly_parent.id) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [EventStatus.CANCELLED, EventStatus.DELETED])
    async def test_no_expansion_for_dead_series(self, expander, repo, weekly_parent, status):
        repo.update_event(weekly_parent.id, {"status": status})

        result = await expander.expand(weekly_parent, datetime(2024, 2, 1, tzinfo=UTC))

        assert result.created == []
        assert repo.list_children(weekly_parent.id) == []

    @pytest.mark.asyncio
    async def test_propagation_skipped_once_parent_is_gone(self, expander, repo, weekly_parent):
        await expander.expand(weekly_parent, datetime(2024, 2, 1, tzinfo=UTC))
        repo.events.pop(weekly_parent.id)

        failures = await expander.propagate_update(
            weekly_parent, weekly_parent, {"title": "Too late"}
        )

        assert failures == []
        assert all(c.title == weekly_parent.title for c in repo.list_children(weekly_parent.id))

    @pytest.mark.asyncio
    async def test_soft_delete_counts_only_marked_children(self, expander, repo, weekly_parent, monkeypatch):
        await expander.expand(weekly_parent, datetime(2024, 2, 1, tzinfo=UTC))
        vanished = repo.list_children(weekly_parent.id)[1]
        update_event = repo.update_event

        def update_unless_vanished(event_id, fields):
            if event_id == vanished.id:
                return None
            return update_event(event_id, fields)

        monkeypatch.setattr(repo, "update_event", update_unless_vanished)

        deleted, failures = await expander.delete_children(weekly_parent.id, soft=True)

        assert deleted == 3
        assert [f.event_id for f in failures] == [vanished.id]
