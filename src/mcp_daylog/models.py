"""Data models for day journals, entries, and plan references."""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass, field
from datetime import date as Date, datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Any, Iterator, Optional, Union


# A journal day starts at 7am and wraps past midnight to 6am.
HOURS = (
    "7am", "8am", "9am", "10am", "11am", "12pm",
    "1pm", "2pm", "3pm", "4pm", "5pm", "6pm",
    "7pm", "8pm", "9pm", "10pm", "11pm", "12am",
    "1am", "2am", "3am", "4am", "5am", "6am",
)

_HOUR_INDEX = {label: index for index, label in enumerate(HOURS)}
_HOUR_PATTERN = re.compile(r"^(\d+)(am|pm)$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

MAX_INDICATORS = 4


class JournalError(Exception):
    """Base exception for journal operations."""
    pass


class InvalidAddressError(JournalError):
    """Raised when an hour label or plan source is malformed."""
    pass


class InvalidRangeError(InvalidAddressError):
    """Raised when a range does not start before it ends."""
    pass


class InvalidDateError(JournalError):
    """Raised when a journal date is not a YYYY-MM-DD calendar date."""
    pass


class MalformedDocumentError(JournalError):
    """Raised when persisted journal data has an unusable shape."""
    pass


class EntryMode(Enum):
    """Whether an entry is an intention or an actual occurrence."""
    PLANNED = "planned"
    LOGGED = "logged"


class PlanStatus(Enum):
    """Lifecycle status of a planned entry."""
    ACTIVE = "active"
    MISSED = "missed"
    RESCHEDULED = "rescheduled"
    COMPLETED = "completed"
    CANCELED = "canceled"


class ListType(Enum):
    """Task list owning a referenced task."""
    HAVE_TO_DO = "have-to-do"
    WANT_TO_DO = "want-to-do"


class SlotKind(Enum):
    """Shape of an hour slot."""
    EMPTY = "empty"
    ONE = "one"
    MANY = "many"


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Format datetime as ISO 8601 with millisecond precision."""
    return dt.isoformat(timespec="milliseconds")


def parse_timestamp(s: str) -> datetime:
    """Parse ISO 8601 timestamp string, accepting a trailing Z."""
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return datetime.fromisoformat(s)


def generate_plan_id() -> str:
    """Generate a globally unique plan identifier."""
    return str(uuid.uuid4())


# ========== Hour and date addressing ==========

def hour_index(label: str) -> int:
    """Position of an hour label within the journal day."""
    try:
        return _HOUR_INDEX[label]
    except (KeyError, TypeError):
        raise InvalidAddressError(
            f"Invalid hour {label!r}. Must be one of: {', '.join(HOURS)}"
        ) from None


def hour_to_24(label: str) -> int:
    """Map an hour label to the 24-hour clock (12am -> 0, 12pm -> 12)."""
    hour_index(label)
    match = _HOUR_PATTERN.match(label)
    raw = int(match.group(1))
    if match.group(2) == "am":
        return raw % 12
    return raw % 12 + 12


def validate_range(start: str, end: str) -> tuple[int, int]:
    """Validate an hour range and return its start and end indices.

    Raises:
        InvalidAddressError: If either label is unknown
        InvalidRangeError: If start does not come before end
    """
    start_index = hour_index(start)
    end_index = hour_index(end)
    if start_index >= end_index:
        raise InvalidRangeError(f"Range start {start} must come before end {end}")
    return start_index, end_index


def validate_date(date_iso: str) -> Date:
    """Parse a YYYY-MM-DD journal date.

    Raises:
        InvalidDateError: If the value is absent or not a calendar date
    """
    if not isinstance(date_iso, str) or not DATE_PATTERN.match(date_iso):
        raise InvalidDateError(f"Invalid date {date_iso!r}. Use YYYY-MM-DD.")
    try:
        return Date.fromisoformat(date_iso)
    except ValueError:
        raise InvalidDateError(f"Invalid date {date_iso!r}. Use YYYY-MM-DD.") from None


def at_hour(date_iso: str, label: str, tz: Optional[tzinfo] = None) -> datetime:
    """Clock time of an hour label on the journal's calendar date."""
    day = validate_date(date_iso)
    return datetime(day.year, day.month, day.day, hour_to_24(label), tzinfo=tz)


def hour_deadline(date_iso: str, label: str, grace: timedelta, tz: Optional[tzinfo] = None) -> datetime:
    """Time after which a plan ending at this hour label is overdue."""
    return at_hour(date_iso, label, tz) + grace


# ========== References and sources ==========

@dataclass
class PlanLogRef:
    """Identifies exactly one logged occurrence: an hour or a range on a date."""
    date: str
    hour: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None

    def __post_init__(self) -> None:
        has_hour = self.hour is not None
        has_range = self.start is not None or self.end is not None
        if has_hour == has_range:
            raise InvalidAddressError("A log reference needs either an hour or a start/end range")
        if has_range and (self.start is None or self.end is None):
            raise InvalidAddressError("A log reference range needs both start and end")

    @property
    def is_range(self) -> bool:
        return self.hour is None

    def matches(self, other: Optional[PlanLogRef]) -> bool:
        """Whether both references point at the same hour or range on the same date."""
        if other is None or other.date != self.date:
            return False
        if self.hour is not None or other.hour is not None:
            return self.hour == other.hour
        return self.start == other.start and self.end == other.end

    def to_dict(self) -> dict:
        if self.hour is not None:
            return {"date": self.date, "hour": self.hour}
        return {"date": self.date, "range": {"start": self.start, "end": self.end}}

    @classmethod
    def from_dict(cls, data: Any) -> PlanLogRef:
        if not isinstance(data, dict) or not isinstance(data.get("date"), str):
            raise MalformedDocumentError(f"Malformed log reference: {data!r}")
        span = data.get("range")
        if isinstance(span, dict):
            return cls(date=data["date"], start=span.get("start"), end=span.get("end"))
        return cls(date=data["date"], hour=data.get("hour"))


@dataclass(frozen=True)
class HourSource:
    """A plan addressed by the hour slot it sits in."""
    hour: str

    kind = "hour"

    def __post_init__(self) -> None:
        hour_index(self.hour)

    def to_log_ref(self, date_iso: str) -> PlanLogRef:
        return PlanLogRef(date=date_iso, hour=self.hour)

    def to_dict(self) -> dict:
        return {"kind": "hour", "hour": self.hour}


@dataclass(frozen=True)
class RangeSource:
    """A plan addressed by its start/end hour range."""
    start: str
    end: str

    kind = "range"

    def __post_init__(self) -> None:
        validate_range(self.start, self.end)

    def to_log_ref(self, date_iso: str) -> PlanLogRef:
        return PlanLogRef(date=date_iso, start=self.start, end=self.end)

    def to_dict(self) -> dict:
        return {"kind": "range", "start": self.start, "end": self.end}


PlanSource = Union[HourSource, RangeSource]


def parse_source(data: Any) -> PlanSource:
    """Build a plan source from ``{kind, hour}`` / ``{kind, start, end}``.

    The ``kind`` key is optional: ``{hour}`` and ``{start, end}`` are accepted
    as well, which is the shape replan destinations use.

    Raises:
        InvalidAddressError: If the source is malformed
        InvalidRangeError: If the range does not start before it ends
    """
    if not isinstance(data, dict):
        raise InvalidAddressError(
            'Invalid source. Use {"kind": "hour", "hour"} or {"kind": "range", "start", "end"}.'
        )
    kind = data.get("kind")
    has_hour = "hour" in data
    has_range = "start" in data or "end" in data
    if kind is None:
        if has_hour == has_range:
            raise InvalidAddressError("Provide either hour or start+end.")
        kind = "hour" if has_hour else "range"

    if kind == "hour" and has_hour and not has_range:
        return HourSource(hour=data["hour"])
    if kind == "range" and has_range and not has_hour:
        return RangeSource(start=data.get("start"), end=data.get("end"))
    raise InvalidAddressError(f"Invalid source: {data!r}")


# ========== Entries ==========

@dataclass
class TaskContent:
    """Reference to an externally owned task."""
    task_id: str
    list_type: ListType


@dataclass
class TextContent:
    """Free-form entry text."""
    text: str


Content = Union[TaskContent, TextContent]

_ENVELOPE_KEYS = {
    "plan_id": "planId",
    "plan_created_at": "planCreatedAt",
    "plan_updated_at": "planUpdatedAt",
    "replanned_to_plan_id": "replannedToPlanId",
    "replanned_from_plan_id": "replannedFromPlanId",
    "missed_at": "missedAt",
}

_ENTRY_KEYS = {
    "taskId", "listType", "text", "entryMode", "isPlan", "planStatus",
    "completedByLogRef", *_ENVELOPE_KEYS.values(),
}


@dataclass
class Entry:
    """A journal entry: task reference or text, planned or logged.

    Planned entries carry the planning envelope (``plan_*`` fields and replan
    links). Logged entries only carry ``completed_by_log_ref`` when they were
    materialized as the closure of a plan.
    """
    content: Content
    entry_mode: EntryMode = EntryMode.LOGGED

    # Planning envelope
    plan_id: Optional[str] = None
    plan_status: Optional[PlanStatus] = None
    plan_created_at: Optional[str] = None
    plan_updated_at: Optional[str] = None
    replanned_to_plan_id: Optional[str] = None
    replanned_from_plan_id: Optional[str] = None
    completed_by_log_ref: Optional[PlanLogRef] = None
    missed_at: Optional[str] = None

    # Keys this model does not know about, kept for round trips
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_planned(self) -> bool:
        return self.entry_mode == EntryMode.PLANNED

    @property
    def is_logged(self) -> bool:
        return self.entry_mode == EntryMode.LOGGED

    @property
    def is_task(self) -> bool:
        return isinstance(self.content, TaskContent)

    @property
    def entry_type(self) -> str:
        return "task" if self.is_task else "text"

    @property
    def task_id(self) -> Optional[str]:
        return self.content.task_id if self.is_task else None

    def is_plan_in(self, *statuses: PlanStatus) -> bool:
        return self.is_planned and self.plan_status in statuses

    def to_dict(self) -> dict:
        """Convert entry to the persisted camelCase shape."""
        if self.is_task:
            data: dict[str, Any] = {
                "taskId": self.content.task_id,
                "listType": self.content.list_type.value,
            }
        else:
            data = {"text": self.content.text}
        data["entryMode"] = self.entry_mode.value

        if self.is_planned:
            if self.plan_id is not None:
                data["planId"] = self.plan_id
            if self.plan_status is not None:
                data["planStatus"] = self.plan_status.value
            for attr in ("plan_created_at", "plan_updated_at", "replanned_to_plan_id",
                         "replanned_from_plan_id"):
                value = getattr(self, attr)
                if value is not None:
                    data[_ENVELOPE_KEYS[attr]] = value
        if self.completed_by_log_ref is not None:
            data["completedByLogRef"] = self.completed_by_log_ref.to_dict()
        if self.is_planned and self.missed_at is not None:
            data["missedAt"] = self.missed_at

        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> Entry:
        """Build an entry from persisted data, migrating legacy shapes.

        Legacy ``isPlan`` flags become ``entryMode`` and a missing mode means
        logged. Logged entries drop any planning fields.
        """
        if isinstance(data, str):
            return cls(content=TextContent(text=data))
        if not isinstance(data, dict):
            raise MalformedDocumentError(f"Malformed journal entry: {data!r}")

        if "taskId" in data and "listType" in data:
            try:
                content: Content = TaskContent(
                    task_id=data["taskId"], list_type=ListType(data["listType"])
                )
            except ValueError:
                raise MalformedDocumentError(f"Unknown list type: {data['listType']!r}") from None
        elif "text" in data:
            content = TextContent(text=data["text"])
        else:
            raise MalformedDocumentError(f"Journal entry has neither taskId nor text: {data!r}")

        mode = data.get("entryMode")
        if mode is None:
            mode = data.get("isPlan")
        if mode in ("planned", "logged"):
            entry_mode = EntryMode(mode)
        else:
            entry_mode = EntryMode.PLANNED if mode is True else EntryMode.LOGGED

        log_ref = None
        if data.get("completedByLogRef") is not None:
            try:
                log_ref = PlanLogRef.from_dict(data["completedByLogRef"])
            except InvalidAddressError as e:
                raise MalformedDocumentError(f"Malformed log reference: {e}") from None

        entry = cls(
            content=content,
            entry_mode=entry_mode,
            completed_by_log_ref=log_ref,
            extra={k: v for k, v in data.items() if k not in _ENTRY_KEYS},
        )

        if entry_mode == EntryMode.PLANNED:
            for attr, key in _ENVELOPE_KEYS.items():
                setattr(entry, attr, data.get(key))
            if data.get("planStatus") is not None:
                try:
                    entry.plan_status = PlanStatus(data["planStatus"])
                except ValueError:
                    raise MalformedDocumentError(
                        f"Unknown plan status: {data['planStatus']!r}"
                    ) from None

        return entry


@dataclass
class RangeEntry:
    """An entry spanning an hour range instead of a single slot."""
    start: str
    end: str
    entry: Entry

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end, **self.entry.to_dict()}

    @classmethod
    def from_dict(cls, data: Any) -> RangeEntry:
        if not isinstance(data, dict):
            raise MalformedDocumentError(f"Malformed range entry: {data!r}")
        try:
            validate_range(data.get("start"), data.get("end"))
        except InvalidAddressError as e:
            raise MalformedDocumentError(f"Malformed range entry: {e}") from None
        rest = {k: v for k, v in data.items() if k not in ("start", "end")}
        return cls(start=data["start"], end=data["end"], entry=Entry.from_dict(rest))


@dataclass
class StagedEntry:
    """A task reference that has not been placed on the clock yet."""
    task_id: str
    list_type: ListType
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"taskId": self.task_id, "listType": self.list_type.value, **self.extra}

    @classmethod
    def from_dict(cls, data: Any) -> StagedEntry:
        if not isinstance(data, dict) or "taskId" not in data or "listType" not in data:
            raise MalformedDocumentError(f"Malformed staged entry: {data!r}")
        try:
            list_type = ListType(data["listType"])
        except ValueError:
            raise MalformedDocumentError(f"Unknown list type: {data['listType']!r}") from None
        extra = {k: v for k, v in data.items() if k not in ("taskId", "listType", "isPlan")}
        return cls(task_id=data["taskId"], list_type=list_type, extra=extra)


@dataclass
class Slot:
    """One hour of the journal: empty, one entry, or many entries."""
    entries: list[Entry] = field(default_factory=list)

    @property
    def kind(self) -> SlotKind:
        if not self.entries:
            return SlotKind.EMPTY
        if len(self.entries) == 1:
            return SlotKind.ONE
        return SlotKind.MANY

    def to_json(self) -> Any:
        kind = self.kind
        if kind == SlotKind.EMPTY:
            return ""
        if kind == SlotKind.ONE:
            return self.entries[0].to_dict()
        return [entry.to_dict() for entry in self.entries]

    @classmethod
    def from_json(cls, value: Any) -> Slot:
        if value is None or (isinstance(value, str) and not value.strip()):
            return cls()
        if isinstance(value, list):
            return cls(entries=[
                Entry.from_dict(item)
                for item in value
                if not (isinstance(item, str) and not item.strip())
            ])
        return cls(entries=[Entry.from_dict(value)])


def _empty_slots() -> dict[str, Slot]:
    return {hour: Slot() for hour in HOURS}


@dataclass
class JournalDocument:
    """One calendar day of the journal."""
    date: str
    slots: dict[str, Slot] = field(default_factory=_empty_slots)
    ranges: list[RangeEntry] = field(default_factory=list)
    staged: list[StagedEntry] = field(default_factory=list)
    indicators: Optional[int] = None

    # Top-level keys this model does not know about
    extra: dict[str, Any] = field(default_factory=dict)

    def slot(self, hour: str) -> Slot:
        hour_index(hour)
        return self.slots.setdefault(hour, Slot())

    def to_dict(self) -> dict:
        """Convert to the persisted JSON shape (hour labels, ranges, staged)."""
        data: dict[str, Any] = {hour: self.slot(hour).to_json() for hour in HOURS}
        data["ranges"] = [r.to_dict() for r in self.ranges]
        data["staged"] = [s.to_dict() for s in self.staged]
        if self.indicators is not None:
            data["indicators"] = self.indicators
        data.update(self.extra)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, date_iso: str, data: Any) -> JournalDocument:
        """Build a document from persisted data.

        Raises:
            InvalidDateError: If the date is malformed
            MalformedDocumentError: If the data cannot be interpreted
        """
        validate_date(date_iso)
        if not isinstance(data, dict):
            raise MalformedDocumentError(f"Journal for {date_iso} is not an object")

        ranges = data.get("ranges") or []
        staged = data.get("staged") or []
        if not isinstance(ranges, list) or not isinstance(staged, list):
            raise MalformedDocumentError(f"Journal for {date_iso} has malformed ranges or staged lists")

        indicators = data.get("indicators")
        if indicators is not None:
            if (isinstance(indicators, bool) or not isinstance(indicators, int)
                    or not 0 <= indicators <= MAX_INDICATORS):
                raise MalformedDocumentError(
                    f"Indicators must be an integer from 0 to {MAX_INDICATORS}, got {indicators!r}"
                )

        known = set(HOURS) | {"ranges", "staged", "indicators"}
        return cls(
            date=date_iso,
            slots={hour: Slot.from_json(data.get(hour)) for hour in HOURS},
            ranges=[RangeEntry.from_dict(r) for r in ranges],
            staged=[StagedEntry.from_dict(s) for s in staged],
            indicators=indicators,
            extra={k: v for k, v in data.items() if k not in known},
        )

    @classmethod
    def from_json(cls, date_iso: str, text: str) -> JournalDocument:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedDocumentError(f"Journal for {date_iso} is not valid JSON: {e}") from None
        return cls.from_dict(date_iso, data)


# ========== Entry locations ==========

@dataclass
class EntryLocation:
    """Where an entry lives in a document: an hour slot position or a range."""
    document: JournalDocument
    entry: Entry
    hour: Optional[str] = None
    slot_index: Optional[int] = None
    range_index: Optional[int] = None

    @property
    def kind(self) -> str:
        return "hour" if self.hour is not None else "range"

    @property
    def range_entry(self) -> Optional[RangeEntry]:
        if self.range_index is None:
            return None
        return self.document.ranges[self.range_index]

    @property
    def order(self) -> int:
        """Hour index of the slot, or of the range start."""
        if self.hour is not None:
            return hour_index(self.hour)
        return hour_index(self.range_entry.start)

    @property
    def closing_hour(self) -> str:
        """Hour label after which the entry's time has passed."""
        if self.hour is not None:
            return self.hour
        return self.range_entry.end

    def source(self) -> PlanSource:
        if self.hour is not None:
            return HourSource(hour=self.hour)
        span = self.range_entry
        return RangeSource(start=span.start, end=span.end)

    def matches(self, source: PlanSource) -> bool:
        if isinstance(source, HourSource):
            return self.hour == source.hour
        span = self.range_entry
        return span is not None and span.start == source.start and span.end == source.end

    def replace(self, entry: Entry) -> None:
        """Write a new entry back into the document at this location."""
        if self.hour is not None:
            self.document.slot(self.hour).entries[self.slot_index] = entry
        else:
            self.document.ranges[self.range_index].entry = entry
        self.entry = entry

    def to_dict(self) -> dict:
        data = {"kind": self.kind, **self.entry.to_dict()}
        if self.hour is not None:
            data["hour"] = self.hour
        else:
            data["start"] = self.range_entry.start
            data["end"] = self.range_entry.end
        return data


def iter_entries(document: JournalDocument) -> Iterator[EntryLocation]:
    """Yield every entry in hour order, then every range entry in list order."""
    for hour in HOURS:
        for index, entry in enumerate(document.slot(hour).entries):
            yield EntryLocation(document=document, entry=entry, hour=hour, slot_index=index)
    for index, span in enumerate(document.ranges):
        yield EntryLocation(document=document, entry=span.entry, range_index=index)


def iter_planned(document: JournalDocument) -> Iterator[EntryLocation]:
    for location in iter_entries(document):
        if location.entry.is_planned:
            yield location


def append_to_hour(document: JournalDocument, hour: str, entry: Entry) -> EntryLocation:
    """Add an entry to an hour slot, keeping what is already there."""
    slot = document.slot(hour)
    slot.entries.append(entry)
    return EntryLocation(document=document, entry=entry, hour=hour, slot_index=len(slot.entries) - 1)


def append_range(document: JournalDocument, start: str, end: str, entry: Entry) -> EntryLocation:
    """Add an entry to the ranges list."""
    validate_range(start, end)
    document.ranges.append(RangeEntry(start=start, end=end, entry=entry))
    return EntryLocation(document=document, entry=entry, range_index=len(document.ranges) - 1)


def append_at(document: JournalDocument, source: PlanSource, entry: Entry) -> EntryLocation:
    if isinstance(source, HourSource):
        return append_to_hour(document, source.hour, entry)
    return append_range(document, source.start, source.end, entry)
