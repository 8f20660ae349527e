"""Tests for the plan lifecycle: normalize, sweep, back-link, complete, replan."""

from datetime import datetime, timezone

import pytest

from mcp_daylog.lifecycle import (
    CompletionStatus,
    InvalidActionError,
    PlanAction,
    complete_plan,
    find_plan,
    link_earliest_active_plan,
    new_plan,
    normalize,
    plan_history,
    replan,
    sweep,
)
from mcp_daylog.models import (
    Entry,
    EntryMode,
    HourSource,
    InvalidAddressError,
    InvalidDateError,
    InvalidRangeError,
    JournalDocument,
    ListType,
    PlanLogRef,
    PlanStatus,
    RangeEntry,
    RangeSource,
    SlotKind,
    TaskContent,
    TextContent,
)

from conftest import SequentialIds

DATE = "2026-03-14"
CREATED = "2026-03-14T07:00:00.000"


def at(hour, minute=0):
    return datetime(2026, 3, 14, hour, minute)


def task_plan(task_id="task-1", plan_id="P1", status=PlanStatus.ACTIVE, created=CREATED):
    return Entry(
        content=TaskContent(task_id=task_id, list_type=ListType.HAVE_TO_DO),
        entry_mode=EntryMode.PLANNED,
        plan_id=plan_id,
        plan_status=status,
        plan_created_at=created,
        plan_updated_at=created,
    )


def text_plan(text="Write report", plan_id="T1", status=PlanStatus.ACTIVE):
    return Entry(
        content=TextContent(text=text),
        entry_mode=EntryMode.PLANNED,
        plan_id=plan_id,
        plan_status=status,
        plan_created_at=CREATED,
        plan_updated_at=CREATED,
    )


def logged_task(task_id="task-1"):
    return Entry(content=TaskContent(task_id=task_id, list_type=ListType.HAVE_TO_DO))


def doc_with(**hours):
    document = JournalDocument(date=DATE)
    for hour, entries in hours.items():
        label = hour.lstrip("_")
        if not isinstance(entries, list):
            entries = [entries]
        document.slot(label).entries.extend(entries)
    return document


def only(document, hour):
    entries = document.slot(hour).entries
    assert len(entries) == 1
    return entries[0]


class TestNormalize:
    """Tests for normalize."""

    def test_logged_entry_unchanged(self):
        """Logged entries are returned as-is."""
        entry = logged_task()
        assert normalize(entry, at(8), SequentialIds()) is entry

    def test_fills_missing_fields(self):
        """A bare planned entry gets id, active status and timestamps."""
        entry = Entry(content=TextContent(text="Gym"), entry_mode=EntryMode.PLANNED)

        normalized = normalize(entry, at(8), SequentialIds())

        assert normalized.plan_id == "P1"
        assert normalized.plan_status == PlanStatus.ACTIVE
        assert normalized.plan_created_at == "2026-03-14T08:00:00.000"
        assert normalized.plan_updated_at == "2026-03-14T08:00:00.000"

    def test_existing_values_win(self):
        """Only absent fields are filled."""
        entry = Entry(
            content=TextContent(text="Gym"),
            entry_mode=EntryMode.PLANNED,
            plan_id="keep-me",
            plan_status=PlanStatus.MISSED,
        )

        normalized = normalize(entry, at(8), SequentialIds())

        assert normalized.plan_id == "keep-me"
        assert normalized.plan_status == PlanStatus.MISSED
        assert normalized.plan_created_at == "2026-03-14T08:00:00.000"

    def test_does_not_mutate_input(self):
        """normalize returns a new entry instead of editing the old one."""
        entry = Entry(content=TextContent(text="Gym"), entry_mode=EntryMode.PLANNED)
        normalize(entry, at(8), SequentialIds())
        assert entry.plan_id is None

    def test_idempotent(self):
        """Normalizing a complete envelope again changes nothing."""
        ids = SequentialIds()
        once = normalize(Entry(content=TextContent(text="Gym"), entry_mode=EntryMode.PLANNED), at(8), ids)
        twice = normalize(once, at(12), ids)

        assert twice is once
        assert twice.to_dict() == once.to_dict()
        assert ids.counter == 2

    def test_new_plan_is_active(self):
        plan = new_plan(TextContent(text="Read"), at(8), SequentialIds())
        assert plan.is_planned
        assert plan.plan_status == PlanStatus.ACTIVE
        assert plan.plan_id == "P1"


class TestSweep:
    """Tests for sweep."""

    def test_no_plans_is_noop(self):
        """A document without plans does not change."""
        document = doc_with(_9am=logged_task())
        before = document.to_dict()

        assert sweep(document, DATE, at(23)) is False
        assert document.to_dict() == before

    def test_hour_plan_within_grace_stays_active(self):
        document = doc_with(_9am=task_plan())

        assert sweep(document, DATE, at(9, 30)) is False
        assert only(document, "9am").plan_status == PlanStatus.ACTIVE

    def test_hour_plan_at_deadline_stays_active(self):
        """The plan is only missed strictly after hour + grace."""
        document = doc_with(_9am=task_plan())

        assert sweep(document, DATE, at(10, 0)) is False
        assert only(document, "9am").plan_status == PlanStatus.ACTIVE

    def test_hour_plan_past_grace_is_missed(self):
        document = doc_with(_9am=task_plan())

        assert sweep(document, DATE, at(10, 1)) is True

        entry = only(document, "9am")
        assert entry.plan_status == PlanStatus.MISSED
        assert entry.missed_at == "2026-03-14T10:01:00.000"
        assert entry.plan_updated_at == "2026-03-14T10:01:00.000"

    def test_range_plan_uses_end_hour(self):
        """A 12pm-2pm plan stays active at 2:30pm and is missed at 3:01pm."""
        document = JournalDocument(date=DATE)
        document.ranges.append(RangeEntry(start="12pm", end="2pm", entry=text_plan()))

        assert sweep(document, DATE, at(14, 30)) is False
        assert document.ranges[0].entry.plan_status == PlanStatus.ACTIVE

        assert sweep(document, DATE, at(15, 1)) is True
        assert document.ranges[0].entry.plan_status == PlanStatus.MISSED

    def test_logged_task_anywhere_protects_plan(self):
        """A task already logged somewhere in the day is not flagged missed."""
        document = doc_with(_9am=task_plan(), _4pm=logged_task())

        assert sweep(document, DATE, at(17)) is False
        assert document.slot("9am").entries[0].plan_status == PlanStatus.ACTIVE

    def test_logged_task_in_range_protects_plan(self):
        document = doc_with(_9am=task_plan())
        document.ranges.append(RangeEntry(start="1pm", end="3pm", entry=logged_task()))

        assert sweep(document, DATE, at(17)) is False

    def test_logged_other_task_does_not_protect(self):
        document = doc_with(_9am=task_plan(), _4pm=logged_task("task-2"))

        assert sweep(document, DATE, at(17)) is True
        assert document.slot("9am").entries[0].plan_status == PlanStatus.MISSED

    def test_text_plans_are_not_protected_by_logs(self):
        document = doc_with(_9am=[text_plan(), Entry(content=TextContent(text="Write report"))])

        assert sweep(document, DATE, at(11)) is True
        assert document.slot("9am").entries[0].plan_status == PlanStatus.MISSED

    def test_multi_entry_slot(self):
        """Every plan in a multi-entry hour is swept."""
        document = doc_with(_9am=[task_plan(plan_id="P1"), text_plan(plan_id="T1")])

        sweep(document, DATE, at(11))

        assert [e.plan_status for e in document.slot("9am").entries] == [
            PlanStatus.MISSED, PlanStatus.MISSED,
        ]
        assert document.slot("9am").kind == SlotKind.MANY

    def test_non_active_plans_untouched(self):
        completed = task_plan(status=PlanStatus.COMPLETED)
        document = doc_with(_9am=completed)

        assert sweep(document, DATE, at(23)) is False
        assert only(document, "9am") is completed

    def test_normalization_counts_as_change(self):
        """A future plan missing fields is normalized and reported changed."""
        bare = Entry(content=TextContent(text="Dinner"), entry_mode=EntryMode.PLANNED)
        document = doc_with(_7pm=bare)

        assert sweep(document, DATE, at(8), SequentialIds()) is True

        entry = only(document, "7pm")
        assert entry.plan_id == "P1"
        assert entry.plan_status == PlanStatus.ACTIVE

    def test_normalized_overdue_plan_is_missed_in_same_pass(self):
        bare = Entry(content=TextContent(text="Stretch"), entry_mode=EntryMode.PLANNED)
        document = doc_with(_7am=bare)

        sweep(document, DATE, at(9, 30), SequentialIds())

        entry = only(document, "7am")
        assert entry.plan_status == PlanStatus.MISSED
        assert entry.plan_created_at == "2026-03-14T09:30:00.000"

    def test_after_midnight_hours_use_document_date(self):
        """12am..6am map to the early hours of the document's own date."""
        document = doc_with(_1am=task_plan())

        assert sweep(document, DATE, at(2, 1)) is True
        assert only(document, "1am").plan_status == PlanStatus.MISSED

    def test_timezone_aware_now(self):
        """Aware clocks get a deadline in the same timezone."""
        document = doc_with(_9am=task_plan())

        assert sweep(document, DATE, datetime(2026, 3, 14, 9, 59, tzinfo=timezone.utc)) is False
        assert sweep(document, DATE, datetime(2026, 3, 14, 10, 1, tzinfo=timezone.utc)) is True

    def test_invalid_date_raises(self):
        with pytest.raises(InvalidDateError):
            sweep(JournalDocument(date=DATE), "03/14/2026", at(8))

    def test_round_trip_then_sweep_matches(self):
        """Serializing and reloading before a sweep does not change the outcome."""
        def build():
            document = doc_with(
                _9am=[task_plan(plan_id="P1"), Entry(content=TextContent(text="Coffee"))],
                _2pm=Entry(content=TextContent(text="Call"), entry_mode=EntryMode.PLANNED),
            )
            document.ranges.append(RangeEntry(start="12pm", end="2pm", entry=text_plan()))
            return document

        direct = build()
        sweep(direct, DATE, at(15, 30), SequentialIds())

        reloaded = JournalDocument.from_json(DATE, build().to_json())
        sweep(reloaded, DATE, at(15, 30), SequentialIds())

        assert reloaded.to_json() == direct.to_json()


class TestLinkEarliestActivePlan:
    """Tests for link_earliest_active_plan."""

    def test_links_earliest_hour(self):
        """A logged occurrence closes the 9am plan and leaves the 2pm plan open."""
        document = doc_with(_9am=task_plan(plan_id="P1"), _2pm=task_plan(plan_id="P2"))
        log_ref = PlanLogRef(date=DATE, hour="4pm")

        assert link_earliest_active_plan(document, DATE, "task-1", log_ref, at(16)) is True

        morning = only(document, "9am")
        assert morning.plan_status == PlanStatus.COMPLETED
        assert morning.completed_by_log_ref == log_ref
        assert morning.plan_updated_at == "2026-03-14T16:00:00.000"
        assert only(document, "2pm").plan_status == PlanStatus.ACTIVE

    def test_ties_broken_by_creation_time(self):
        document = doc_with(_9am=[
            task_plan(plan_id="late", created="2026-03-14T07:30:00.000"),
            task_plan(plan_id="early", created="2026-03-14T07:10:00.000"),
        ])

        link_earliest_active_plan(document, DATE, "task-1", PlanLogRef(date=DATE, hour="9am"), at(9))

        statuses = {e.plan_id: e.plan_status for e in document.slot("9am").entries}
        assert statuses == {"late": PlanStatus.ACTIVE, "early": PlanStatus.COMPLETED}

    def test_range_ordered_by_start(self):
        """A range starting at 8am comes before an hour plan at 9am."""
        document = doc_with(_9am=task_plan(plan_id="P1"))
        document.ranges.append(RangeEntry(start="8am", end="11am", entry=task_plan(plan_id="R1")))

        link_earliest_active_plan(document, DATE, "task-1", PlanLogRef(date=DATE, hour="10am"), at(10))

        assert document.ranges[0].entry.plan_status == PlanStatus.COMPLETED
        assert only(document, "9am").plan_status == PlanStatus.ACTIVE

    def test_skips_non_active_plans(self):
        document = doc_with(
            _8am=task_plan(plan_id="P0", status=PlanStatus.MISSED),
            _2pm=task_plan(plan_id="P1"),
        )

        assert link_earliest_active_plan(document, DATE, "task-1", PlanLogRef(date=DATE, hour="1pm"), at(13))
        assert only(document, "8am").plan_status == PlanStatus.MISSED
        assert only(document, "2pm").plan_status == PlanStatus.COMPLETED

    def test_no_matching_plan(self):
        document = doc_with(_9am=task_plan(task_id="other"))

        assert link_earliest_active_plan(document, DATE, "task-1", PlanLogRef(date=DATE, hour="9am"), at(9)) is False
        assert only(document, "9am").plan_status == PlanStatus.ACTIVE

    def test_log_ref_gets_document_date(self):
        document = doc_with(_9am=task_plan())

        link_earliest_active_plan(document, DATE, "task-1", PlanLogRef(date="1999-01-01", hour="9am"), at(9))

        assert only(document, "9am").completed_by_log_ref.date == DATE


class TestCompletePlan:
    """Tests for complete_plan."""

    def test_completes_text_plan_once(self):
        """First call logs the plan, the second reports already-completed."""
        document = doc_with(_9am=text_plan(plan_id="T1"))
        source = HourSource(hour="9am")

        first = complete_plan(document, DATE, "T1", source, at(9, 45))
        assert first.status == CompletionStatus.COMPLETED
        assert first.logged_created is True
        assert first.entry_type == "text"

        second = complete_plan(document, DATE, "T1", source, at(9, 50))
        assert second.status == CompletionStatus.ALREADY_COMPLETED
        assert second.logged_created is False

        planned, logged = document.slot("9am").entries
        assert planned.plan_status == PlanStatus.COMPLETED
        assert planned.completed_by_log_ref == PlanLogRef(date=DATE, hour="9am")
        assert planned.plan_updated_at == "2026-03-14T09:45:00.000"
        assert logged.is_logged
        assert logged.content == TextContent(text="Write report")
        assert logged.completed_by_log_ref == PlanLogRef(date=DATE, hour="9am")
        assert logged.plan_id is None

    def test_completes_task_plan_in_range(self):
        document = JournalDocument(date=DATE)
        document.ranges.append(RangeEntry(start="1pm", end="3pm", entry=task_plan(plan_id="P1")))

        result = complete_plan(document, DATE, "P1", RangeSource(start="1pm", end="3pm"), at(15))

        assert result.status == CompletionStatus.COMPLETED
        assert result.task == TaskContent(task_id="task-1", list_type=ListType.HAVE_TO_DO)
        assert len(document.ranges) == 2
        logged = document.ranges[1]
        assert (logged.start, logged.end) == ("1pm", "3pm")
        assert logged.entry.is_logged
        assert logged.entry.task_id == "task-1"
        assert logged.entry.completed_by_log_ref.to_dict() == {
            "date": DATE, "range": {"start": "1pm", "end": "3pm"},
        }

    def test_missed_plan_can_be_completed(self):
        document = doc_with(_9am=task_plan(status=PlanStatus.MISSED))

        result = complete_plan(document, DATE, "P1", {"kind": "hour", "hour": "9am"}, at(18))

        assert result.status == CompletionStatus.COMPLETED
        assert document.slot("9am").entries[0].plan_status == PlanStatus.COMPLETED

    def test_rescheduled_plan_not_completable(self):
        document = doc_with(_9am=task_plan(status=PlanStatus.RESCHEDULED))

        result = complete_plan(document, DATE, "P1", HourSource(hour="9am"), at(9))

        assert result.status == CompletionStatus.NOT_COMPLETABLE
        assert len(document.slot("9am").entries) == 1

    def test_wrong_source_not_found(self):
        document = doc_with(_9am=text_plan(plan_id="T1"))

        result = complete_plan(document, DATE, "T1", HourSource(hour="10am"), at(9))

        assert result.status == CompletionStatus.NOT_FOUND
        assert only(document, "9am").plan_status == PlanStatus.ACTIVE

    def test_unknown_plan_not_found(self):
        document = doc_with(_9am=text_plan(plan_id="T1"))
        result = complete_plan(document, DATE, "nope", HourSource(hour="9am"), at(9))
        assert result.status == CompletionStatus.NOT_FOUND

    def test_in_progress_action_also_completes(self):
        document = doc_with(_9am=text_plan(plan_id="T1"))

        result = complete_plan(document, DATE, "T1", HourSource(hour="9am"), at(9), action="in-progress")

        assert result.status == CompletionStatus.COMPLETED
        assert document.slot("9am").entries[0].plan_status == PlanStatus.COMPLETED

    def test_result_carries_action(self):
        document = doc_with(_9am=text_plan(plan_id="T1"), _2pm=text_plan(plan_id="T2"))

        in_progress = complete_plan(document, DATE, "T1", HourSource(hour="9am"), at(9), action="in-progress")
        complete = complete_plan(document, DATE, "T2", HourSource(hour="2pm"), at(14))

        assert in_progress.action == PlanAction.IN_PROGRESS
        assert in_progress.to_dict()["action"] == "in-progress"
        assert complete.action == PlanAction.COMPLETE

    def test_task_log_matched_by_task_id(self):
        """A list type change between calls does not duplicate the logged task."""
        document = doc_with(_9am=task_plan(plan_id="P1"))
        complete_plan(document, DATE, "P1", HourSource(hour="9am"), at(9))
        planned = document.slot("9am").entries[0]
        planned.plan_status = PlanStatus.ACTIVE
        planned.content = TaskContent(task_id="task-1", list_type=ListType.WANT_TO_DO)

        result = complete_plan(document, DATE, "P1", HourSource(hour="9am"), at(10))

        assert result.logged_created is False
        assert len(document.slot("9am").entries) == 2

    def test_invalid_action_raises(self):
        document = doc_with(_9am=text_plan(plan_id="T1"))
        with pytest.raises(InvalidActionError):
            complete_plan(document, DATE, "T1", HourSource(hour="9am"), at(9), action="pause")

    def test_existing_log_is_not_duplicated(self):
        """A log already closing this address is reused if the plan is reopened."""
        document = doc_with(_9am=text_plan(plan_id="T1"))
        complete_plan(document, DATE, "T1", HourSource(hour="9am"), at(9))
        document.slot("9am").entries[0].plan_status = PlanStatus.ACTIVE

        result = complete_plan(document, DATE, "T1", HourSource(hour="9am"), at(10))

        assert result.status == CompletionStatus.COMPLETED
        assert result.logged_created is False
        assert len(document.slot("9am").entries) == 2

    def test_unrelated_log_does_not_block_materialization(self):
        """A plain log of the same text without a closing reference is not a duplicate."""
        document = doc_with(_9am=[text_plan(plan_id="T1"), Entry(content=TextContent(text="Write report"))])

        result = complete_plan(document, DATE, "T1", HourSource(hour="9am"), at(9))

        assert result.logged_created is True
        assert len(document.slot("9am").entries) == 3

    def test_malformed_source_raises(self):
        document = doc_with(_9am=text_plan(plan_id="T1"))
        with pytest.raises(InvalidAddressError):
            complete_plan(document, DATE, "T1", {"kind": "hour", "hour": "25pm"}, at(9))


class TestReplan:
    """Tests for replan."""

    def test_replan_to_hour(self):
        """The old plan is kept as rescheduled and a linked plan opens at 3pm."""
        document = doc_with(_9am=task_plan(plan_id="P1"))

        result = replan(document, "P1", {"hour": "3pm"}, at(9, 30), SequentialIds(start=2))

        assert (result.old_plan_id, result.new_plan_id) == ("P1", "P2")

        old = only(document, "9am")
        assert old.plan_status == PlanStatus.RESCHEDULED
        assert old.replanned_to_plan_id == "P2"
        assert old.plan_updated_at == "2026-03-14T09:30:00.000"

        new = only(document, "3pm")
        assert new.plan_id == "P2"
        assert new.replanned_from_plan_id == "P1"
        assert new.plan_status == PlanStatus.ACTIVE
        assert new.plan_created_at == new.plan_updated_at == "2026-03-14T09:30:00.000"
        assert new.content == old.content

    def test_replan_to_range(self):
        document = doc_with(_9am=task_plan(plan_id="P1"))

        replan(document, "P1", RangeSource(start="4pm", end="6pm"), at(9), SequentialIds(start=2))

        assert len(document.ranges) == 1
        span = document.ranges[0]
        assert (span.start, span.end) == ("4pm", "6pm")
        assert span.entry.plan_id == "P2"

    def test_replan_from_range(self):
        document = JournalDocument(date=DATE)
        document.ranges.append(RangeEntry(start="9am", end="11am", entry=task_plan(plan_id="P1")))

        replan(document, "P1", HourSource(hour="5pm"), at(9), SequentialIds(start=2))

        assert document.ranges[0].entry.plan_status == PlanStatus.RESCHEDULED
        assert only(document, "5pm").replanned_from_plan_id == "P1"

    def test_destination_keeps_existing_entries(self):
        document = doc_with(_9am=task_plan(plan_id="P1"), _3pm=logged_task("task-9"))

        replan(document, "P1", {"hour": "3pm"}, at(9), SequentialIds(start=2))

        slot = document.slot("3pm")
        assert slot.kind == SlotKind.MANY
        assert [e.task_id for e in slot.entries] == ["task-9", "task-1"]

    def test_repeated_replans_form_chain(self):
        document = doc_with(_9am=task_plan(plan_id="P1"))
        ids = SequentialIds(start=2)

        replan(document, "P1", {"hour": "11am"}, at(9), ids)
        replan(document, "P2", {"hour": "2pm"}, at(10), ids)

        chain = plan_history(document, "P2")
        assert [loc.entry.plan_id for loc in chain] == ["P1", "P2", "P3"]
        assert find_plan(document, "P3").entry.replanned_from_plan_id == "P2"
        assert find_plan(document, "P2").entry.replanned_to_plan_id == "P3"

    def test_not_found(self):
        document = doc_with(_9am=task_plan(plan_id="P1"))
        assert replan(document, "P9", {"hour": "3pm"}, at(9)) is None
        assert document.slot("3pm").kind == SlotKind.EMPTY

    def test_text_plans_cannot_be_replanned(self):
        document = doc_with(_9am=text_plan(plan_id="T1"))
        assert replan(document, "T1", {"hour": "3pm"}, at(9)) is None

    def test_only_active_plans(self):
        document = doc_with(_9am=task_plan(plan_id="P1", status=PlanStatus.RESCHEDULED))
        assert replan(document, "P1", {"hour": "3pm"}, at(9)) is None
        assert document.slot("3pm").kind == SlotKind.EMPTY

    def test_skips_closed_duplicate_of_plan_id(self):
        """An active plan is found even when a closed entry shares its id."""
        document = doc_with(
            _8am=task_plan(plan_id="P1", status=PlanStatus.COMPLETED),
            _9am=task_plan(plan_id="P1"),
        )

        result = replan(document, "P1", {"hour": "3pm"}, at(9), SequentialIds(start=2))

        assert result.new_plan_id == "P2"
        assert only(document, "8am").plan_status == PlanStatus.COMPLETED
        assert only(document, "9am").plan_status == PlanStatus.RESCHEDULED

    def test_invalid_hour_raises_before_changes(self):
        document = doc_with(_9am=task_plan(plan_id="P1"))

        with pytest.raises(InvalidAddressError):
            replan(document, "P1", {"hour": "noon"}, at(9))

        assert only(document, "9am").plan_status == PlanStatus.ACTIVE

    def test_backwards_range_raises(self):
        document = doc_with(_9am=task_plan(plan_id="P1"))
        with pytest.raises(InvalidRangeError):
            replan(document, "P1", {"start": "3pm", "end": "1pm"}, at(9))

    def test_hour_and_range_together_raise(self):
        document = doc_with(_9am=task_plan(plan_id="P1"))
        with pytest.raises(InvalidAddressError):
            replan(document, "P1", {"hour": "3pm", "start": "1pm", "end": "2pm"}, at(9))


class TestPlanHistory:
    """Tests for plan_history."""

    def test_single_plan(self):
        document = doc_with(_9am=task_plan(plan_id="P1"))
        assert [loc.entry.plan_id for loc in plan_history(document, "P1")] == ["P1"]

    def test_unknown_plan(self):
        assert plan_history(JournalDocument(date=DATE), "P1") == []

    def test_plan_action_values(self):
        assert {a.value for a in PlanAction} == {"in-progress", "complete"}
