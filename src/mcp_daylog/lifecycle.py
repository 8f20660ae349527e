"""Plan lifecycle for a single day's journal.

A planned entry starts ``active`` and ends ``missed``, ``completed`` or
``rescheduled``. Every function here takes an already-loaded
JournalDocument, mutates it in place and returns a result; persisting the
document is the caller's job. ``sweep`` must run before the other
transitions so decisions are never made on stale statuses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional, Union

from .models import (
    Entry,
    EntryLocation,
    EntryMode,
    HourSource,
    JournalDocument,
    JournalError,
    PlanLogRef,
    PlanSource,
    PlanStatus,
    RangeSource,
    TaskContent,
    append_at,
    format_timestamp,
    generate_plan_id,
    hour_deadline,
    iter_entries,
    iter_planned,
    parse_source,
    parse_timestamp,
    validate_date,
)

logger = logging.getLogger(__name__)

GRACE_PERIOD = timedelta(hours=1)

IdFactory = Callable[[], str]


class InvalidActionError(JournalError):
    """Raised when a plan action is not one of the supported values."""
    pass


class PlanAction(Enum):
    """Action requested on a plan.

    Both values currently close the plan as completed.
    """
    IN_PROGRESS = "in-progress"
    COMPLETE = "complete"


class CompletionStatus(Enum):
    """Outcome of a completion request."""
    COMPLETED = "completed"
    NOT_FOUND = "not-found"
    ALREADY_COMPLETED = "already-completed"
    NOT_COMPLETABLE = "not-completable"


@dataclass
class CompletionResult:
    """Result of closing a plan through the completion protocol."""
    status: CompletionStatus
    logged_created: bool = False
    entry_type: Optional[str] = None
    task: Optional[TaskContent] = None
    plan_status: Optional[PlanStatus] = None
    action: Optional[PlanAction] = None

    @property
    def completed(self) -> bool:
        return self.status == CompletionStatus.COMPLETED

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "status": self.status.value,
            "logged_created": self.logged_created,
        }
        if self.entry_type is not None:
            data["entry_type"] = self.entry_type
        if self.plan_status is not None:
            data["plan_status"] = self.plan_status.value
        if self.task is not None:
            data["task"] = {"task_id": self.task.task_id, "list_type": self.task.list_type.value}
        if self.action is not None:
            data["action"] = self.action.value
        return data


@dataclass
class ReplanResult:
    """Identifiers of the closed plan and its successor."""
    old_plan_id: str
    new_plan_id: str

    def to_dict(self) -> dict:
        return {"old_plan_id": self.old_plan_id, "new_plan_id": self.new_plan_id}


# ========== Normalizer ==========

def normalize(entry: Entry, now: datetime, id_factory: IdFactory = generate_plan_id) -> Entry:
    """Fill in missing plan identity, status and timestamps.

    Non-planned entries and planned entries with a complete envelope are
    returned unchanged (the same object). Existing values always win.
    """
    if not entry.is_planned:
        return entry
    if entry.plan_id and entry.plan_status and entry.plan_created_at and entry.plan_updated_at:
        return entry

    now_iso = format_timestamp(now)
    return replace(
        entry,
        plan_id=entry.plan_id or id_factory(),
        plan_status=entry.plan_status or PlanStatus.ACTIVE,
        plan_created_at=entry.plan_created_at or now_iso,
        plan_updated_at=entry.plan_updated_at or now_iso,
    )


def _normalize_at(location: EntryLocation, now: datetime, id_factory: IdFactory) -> bool:
    normalized = normalize(location.entry, now, id_factory)
    if normalized is location.entry:
        return False
    location.replace(normalized)
    return True


def normalize_document(document: JournalDocument, now: datetime, id_factory: IdFactory = generate_plan_id) -> bool:
    """Normalize every plan in the document. Returns True if any changed."""
    changed = False
    for location in list(iter_planned(document)):
        changed = _normalize_at(location, now, id_factory) or changed
    return changed


def new_plan(content: Any, now: datetime, id_factory: IdFactory = generate_plan_id) -> Entry:
    """Create a fresh active plan for the given task or text content."""
    return normalize(Entry(content=content, entry_mode=EntryMode.PLANNED), now, id_factory)


# ========== Sweeper ==========

def sweep(
    document: JournalDocument,
    date_iso: str,
    now: datetime,
    id_factory: IdFactory = generate_plan_id,
    grace: timedelta = GRACE_PERIOD,
) -> bool:
    """Normalize every plan and flag overdue active plans as missed.

    A plan is overdue once ``now`` is past its hour (or its range end) plus
    the grace window. Task plans are left alone when the task has already
    been logged anywhere in the document.

    Returns:
        True if any entry changed and the document should be persisted
    """
    validate_date(date_iso)
    now_iso = format_timestamp(now)
    logged_tasks = {
        location.entry.task_id
        for location in iter_entries(document)
        if location.entry.is_logged and location.entry.is_task
    }

    changed = False
    for location in list(iter_planned(document)):
        changed = _normalize_at(location, now, id_factory) or changed
        entry = location.entry

        if entry.plan_status != PlanStatus.ACTIVE:
            continue
        if entry.is_task and entry.task_id in logged_tasks:
            continue

        deadline = hour_deadline(date_iso, location.closing_hour, grace, now.tzinfo)
        if now <= deadline:
            continue

        location.replace(replace(
            entry,
            plan_status=PlanStatus.MISSED,
            missed_at=now_iso,
            plan_updated_at=now_iso,
        ))
        logger.debug("Plan %s on %s missed (deadline %s)", entry.plan_id, date_iso, deadline)
        changed = True

    return changed


# ========== Back-link resolver ==========

def _created_epoch(entry: Entry) -> float:
    if not entry.plan_created_at:
        return 0.0
    try:
        return parse_timestamp(entry.plan_created_at).timestamp()
    except ValueError:
        # unparseable timestamps sort first
        return 0.0


def _plan_order(location: EntryLocation) -> tuple[int, float]:
    return location.order, _created_epoch(location.entry)


def link_earliest_active_plan(
    document: JournalDocument,
    date_iso: str,
    task_id: str,
    log_ref: PlanLogRef,
    now: datetime,
    id_factory: IdFactory = generate_plan_id,
) -> bool:
    """Close the earliest active plan for a task that has just been logged.

    Candidates are ordered by hour index (range start for ranges), then by
    plan creation time.

    Returns:
        True if a plan was closed
    """
    validate_date(date_iso)
    candidates = []
    for location in list(iter_planned(document)):
        if location.entry.task_id != task_id:
            continue
        _normalize_at(location, now, id_factory)
        if location.entry.plan_status == PlanStatus.ACTIVE:
            candidates.append(location)

    if not candidates:
        return False

    target = min(candidates, key=_plan_order)
    target.replace(replace(
        target.entry,
        plan_status=PlanStatus.COMPLETED,
        completed_by_log_ref=replace(log_ref, date=date_iso),
        plan_updated_at=format_timestamp(now),
    ))
    logger.debug("Logged task %s closed plan %s on %s", task_id, target.entry.plan_id, date_iso)
    return True


# ========== Completion protocol ==========

def _coerce_action(action: Union[PlanAction, str]) -> PlanAction:
    if isinstance(action, PlanAction):
        return action
    try:
        return PlanAction(action)
    except ValueError:
        raise InvalidActionError(
            f'Invalid action {action!r}. Use "in-progress" or "complete".'
        ) from None


def _coerce_source(source: Union[PlanSource, dict]) -> PlanSource:
    if isinstance(source, (HourSource, RangeSource)):
        return source
    return parse_source(source)


def _same_subject(a: Entry, b: Entry) -> bool:
    """Task entries match on task id alone, text entries on their text."""
    if a.is_task or b.is_task:
        return a.task_id == b.task_id
    return a.content == b.content


def _materialize_log(document: JournalDocument, source: PlanSource, entry: Entry, log_ref: PlanLogRef) -> bool:
    """Append the logged counterpart of a closed plan unless it already exists."""
    for location in iter_entries(document):
        existing = location.entry
        if (location.matches(source)
                and existing.is_logged
                and _same_subject(existing, entry)
                and log_ref.matches(existing.completed_by_log_ref)):
            return False

    append_at(document, source, Entry(
        content=replace(entry.content),
        entry_mode=EntryMode.LOGGED,
        completed_by_log_ref=log_ref,
    ))
    return True


def complete_plan(
    document: JournalDocument,
    date_iso: str,
    plan_id: str,
    source: Union[PlanSource, dict],
    now: datetime,
    action: Union[PlanAction, str] = PlanAction.COMPLETE,
    id_factory: IdFactory = generate_plan_id,
) -> CompletionResult:
    """Close the plan ``plan_id`` found at ``source`` and log its occurrence.

    Works for text and task plans, in hour slots and ranges alike. Active
    and missed plans can be completed. The logged counterpart is only
    created once per plan, so repeated calls never duplicate it.

    Raises:
        InvalidActionError: If action is not "in-progress" or "complete"
        InvalidAddressError: If source is malformed
    """
    validate_date(date_iso)
    action = _coerce_action(action)
    source = _coerce_source(source)

    target = next(
        (loc for loc in iter_planned(document)
         if loc.entry.plan_id == plan_id and loc.matches(source)),
        None,
    )
    if target is None:
        return CompletionResult(status=CompletionStatus.NOT_FOUND)

    _normalize_at(target, now, id_factory)
    entry = target.entry
    if entry.plan_status == PlanStatus.COMPLETED:
        return CompletionResult(status=CompletionStatus.ALREADY_COMPLETED, entry_type=entry.entry_type)
    if entry.plan_status not in (PlanStatus.ACTIVE, PlanStatus.MISSED):
        return CompletionResult(status=CompletionStatus.NOT_COMPLETABLE, entry_type=entry.entry_type)

    target.replace(replace(
        entry,
        plan_status=PlanStatus.COMPLETED,
        plan_updated_at=format_timestamp(now),
        completed_by_log_ref=source.to_log_ref(date_iso),
    ))
    logged_created = _materialize_log(document, source, entry, source.to_log_ref(date_iso))
    logger.debug("Plan %s on %s completed (logged_created=%s)", plan_id, date_iso, logged_created)

    return CompletionResult(
        status=CompletionStatus.COMPLETED,
        logged_created=logged_created,
        entry_type=entry.entry_type,
        task=entry.content if entry.is_task else None,
        plan_status=PlanStatus.COMPLETED,
        action=action,
    )


# ========== Replanner ==========

def replan(
    document: JournalDocument,
    from_plan_id: str,
    to: Union[PlanSource, dict],
    now: datetime,
    id_factory: IdFactory = generate_plan_id,
) -> Optional[ReplanResult]:
    """Close an active task plan as rescheduled and open a successor at ``to``.

    The closed plan stays where it is. The successor always gets a freshly
    minted plan id, linked both ways through ``replanned_to_plan_id`` and
    ``replanned_from_plan_id``.

    Returns:
        The old and new plan ids, or None if no active task plan has
        ``from_plan_id``

    Raises:
        InvalidAddressError: If the destination is malformed
        InvalidRangeError: If a destination range does not start before it ends
    """
    destination = _coerce_source(to)

    match = None
    for location in list(iter_planned(document)):
        if not (location.entry.is_task and location.entry.plan_id == from_plan_id):
            continue
        _normalize_at(location, now, id_factory)
        if location.entry.plan_status == PlanStatus.ACTIVE:
            match = location
            break
    if match is None:
        return None

    now_iso = format_timestamp(now)
    new_plan_id = id_factory()
    match.replace(replace(
        match.entry,
        plan_status=PlanStatus.RESCHEDULED,
        replanned_to_plan_id=new_plan_id,
        plan_updated_at=now_iso,
    ))
    append_at(document, destination, Entry(
        content=replace(match.entry.content),
        entry_mode=EntryMode.PLANNED,
        plan_id=new_plan_id,
        plan_status=PlanStatus.ACTIVE,
        plan_created_at=now_iso,
        plan_updated_at=now_iso,
        replanned_from_plan_id=from_plan_id,
    ))
    logger.debug("Plan %s rescheduled as %s", from_plan_id, new_plan_id)
    return ReplanResult(old_plan_id=from_plan_id, new_plan_id=new_plan_id)


# ========== Lookups ==========

def find_plan(document: JournalDocument, plan_id: str) -> Optional[EntryLocation]:
    return next((loc for loc in iter_planned(document) if loc.entry.plan_id == plan_id), None)


def plan_history(document: JournalDocument, plan_id: str) -> list[EntryLocation]:
    """Follow replan links from the first plan in the chain to the last.

    Returns an empty list if ``plan_id`` is not in the document.
    """
    current = find_plan(document, plan_id)
    if current is None:
        return []

    seen = {plan_id}
    while current.entry.replanned_from_plan_id and current.entry.replanned_from_plan_id not in seen:
        previous = find_plan(document, current.entry.replanned_from_plan_id)
        if previous is None:
            break
        seen.add(previous.entry.plan_id)
        current = previous

    chain = [current]
    seen = {current.entry.plan_id}
    while current.entry.replanned_to_plan_id and current.entry.replanned_to_plan_id not in seen:
        following = find_plan(document, current.entry.replanned_to_plan_id)
        if following is None:
            break
        seen.add(following.entry.plan_id)
        chain.append(following)
        current = following
    return chain
