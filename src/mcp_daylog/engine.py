"""Journal engine - request-scoped plan lifecycle operations over the store."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional, TypeVar, Union

from .config import DaylogConfig
from .lifecycle import (
    CompletionResult,
    CompletionStatus,
    IdFactory,
    PlanAction,
    ReplanResult,
    complete_plan,
    link_earliest_active_plan,
    new_plan,
    normalize_document,
    plan_history,
    replan,
    sweep,
)
from .models import (
    Content,
    Entry,
    EntryMode,
    JournalDocument,
    JournalError,
    PlanSource,
    PlanStatus,
    TaskContent,
    TextContent,
    append_at,
    generate_plan_id,
    iter_planned,
    parse_source,
)
from .store import DocumentExistsError, DocumentNotFoundError, JournalStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

__all__ = [
    "DaylogEngine",
    "DocumentExistsError",
    "DocumentNotFoundError",
    "JournalError",
    "PlanNotFoundError",
    "PlanStateError",
]


class PlanNotFoundError(JournalError):
    """Raised when no plan matches the requested id and address."""
    pass


class PlanStateError(JournalError):
    """Raised when a plan's status does not allow the requested transition."""

    def __init__(self, message: str, status: CompletionStatus):
        super().__init__(message)
        self.status = status


class DaylogEngine:
    """Runs lifecycle operations against stored journal documents.

    Every mutating operation holds the document's lock for the whole
    read / sweep / transform / write cycle, so overlapping requests on the
    same date are serialized instead of overwriting each other.
    """

    def __init__(
        self,
        config: DaylogConfig,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[IdFactory] = None,
    ):
        self.config = config
        self.clock = clock or config.now
        self.id_factory = id_factory or generate_plan_id
        self.store = JournalStore(config.get_journal_path(), lock_timeout=config.lock_timeout)
        self._ensure_directories()

    def _ensure_directories(self) -> None:
        self.config.get_journal_path().mkdir(parents=True, exist_ok=True)

    def _run_hook(self, name: str, *args: Any) -> None:
        hook = self.config.hooks.get(name)
        if hook is not None:
            hook(self, *args)

    def _load(self, date_iso: str) -> JournalDocument:
        document = self.store.read(date_iso)
        if document is None:
            raise DocumentNotFoundError(f"No journal exists for date {date_iso}.")
        return document

    def _mutate(
        self,
        date_iso: str,
        operation: Callable[[JournalDocument, datetime], tuple[T, bool]],
    ) -> tuple[JournalDocument, T]:
        """Sweep, apply ``operation`` and persist if anything changed.

        ``operation`` returns its result and whether it changed the document.
        """
        with self.store.lock(date_iso):
            document = self._load(date_iso)
            now = self.clock()
            swept = sweep(document, date_iso, now, self.id_factory)
            result, changed = operation(document, now)
            if swept or changed:
                self.store.write(document)
                logger.info("Saved journal %s (swept=%s, changed=%s)", date_iso, swept, changed)

        if swept:
            self._run_hook("plans_swept", date_iso, document)
        return document, result

    # ========== Documents ==========

    def create_journal(self, date_iso: str) -> JournalDocument:
        """Create an empty journal for a date.

        Raises:
            DocumentExistsError: If one already exists
        """
        return self.store.create(date_iso)

    def read_journal(self, date_iso: str) -> JournalDocument:
        """Load a journal, reconciling overdue plans first.

        Raises:
            DocumentNotFoundError: If no journal exists for the date
        """
        document, _ = self._mutate(date_iso, lambda doc, now: (None, False))
        return document

    def sweep_journal(self, date_iso: str) -> bool:
        """Flag overdue plans as missed. Returns True if the journal changed."""
        with self.store.lock(date_iso):
            document = self._load(date_iso)
            changed = sweep(document, date_iso, self.clock(), self.id_factory)
            if changed:
                self.store.write(document)
                logger.info("Swept journal %s", date_iso)
        if changed:
            self._run_hook("plans_swept", date_iso, document)
        return changed

    def delete_journal(self, date_iso: str) -> None:
        self.store.delete(date_iso)

    def list_journals(self) -> list[str]:
        return self.store.list_dates()

    # ========== Entries ==========

    def log_entry(self, date_iso: str, content: Content, source: Union[PlanSource, dict]) -> bool:
        """Record something that actually happened at an hour or range.

        A logged task closes the earliest active plan for the same task.

        Returns:
            True if a plan was closed by this entry
        """
        source = _as_source(source)
        _check_content(content)

        def operation(document: JournalDocument, now: datetime) -> tuple[bool, bool]:
            log_ref = source.to_log_ref(date_iso)
            append_at(document, source, Entry(content=content, entry_mode=EntryMode.LOGGED))
            linked = False
            if isinstance(content, TaskContent):
                linked = link_earliest_active_plan(
                    document, date_iso, content.task_id, log_ref, now, self.id_factory
                )
            return linked, True

        _, linked = self._mutate(date_iso, operation)
        return linked

    def plan_entry(self, date_iso: str, content: Content, source: Union[PlanSource, dict]) -> Entry:
        """Add a new active plan at an hour or range. Returns the planned entry."""
        source = _as_source(source)
        _check_content(content)

        def operation(document: JournalDocument, now: datetime) -> tuple[Entry, bool]:
            entry = new_plan(content, now, self.id_factory)
            append_at(document, source, entry)
            return entry, True

        _, entry = self._mutate(date_iso, operation)
        return entry

    # ========== Plans ==========

    def complete_plan(
        self,
        date_iso: str,
        plan_id: str,
        source: Union[PlanSource, dict],
        action: Union[PlanAction, str] = PlanAction.COMPLETE,
    ) -> CompletionResult:
        """Close a plan and materialize its logged entry.

        Raises:
            PlanNotFoundError: If no plan has this id at this source
            PlanStateError: If the plan is already completed or not completable
            InvalidActionError: If action is not "in-progress" or "complete"
        """
        source = _as_source(source)

        def operation(document: JournalDocument, now: datetime) -> tuple[CompletionResult, bool]:
            result = complete_plan(document, date_iso, plan_id, source, now, action, self.id_factory)
            return result, result.completed

        _, result = self._mutate(date_iso, operation)

        if result.status == CompletionStatus.NOT_FOUND:
            raise PlanNotFoundError(f"Plan {plan_id} not found at {_describe(source)} on {date_iso}.")
        if result.status == CompletionStatus.ALREADY_COMPLETED:
            raise PlanStateError(f"Plan {plan_id} is already completed.", result.status)
        if result.status == CompletionStatus.NOT_COMPLETABLE:
            raise PlanStateError(f"Plan {plan_id} is not in a completable state.", result.status)

        self._run_hook("plan_completed", date_iso, result)
        return result

    def replan(self, date_iso: str, from_plan_id: str, to: Union[PlanSource, dict]) -> ReplanResult:
        """Reschedule an active task plan to another hour or range.

        Raises:
            PlanNotFoundError: If no active task plan has ``from_plan_id``
        """
        destination = _as_source(to)

        def operation(document: JournalDocument, now: datetime) -> tuple[Optional[ReplanResult], bool]:
            result = replan(document, from_plan_id, destination, now, self.id_factory)
            return result, result is not None

        _, result = self._mutate(date_iso, operation)
        if result is None:
            raise PlanNotFoundError(f"No active task plan {from_plan_id} on {date_iso}.")

        self._run_hook("plan_replanned", date_iso, result)
        return result

    def list_plans(self, date_iso: str, status: Optional[Union[PlanStatus, str]] = None) -> list[dict]:
        """Every plan in a journal with its location, optionally filtered by status."""
        if status is not None and not isinstance(status, PlanStatus):
            try:
                status = PlanStatus(status)
            except ValueError:
                raise JournalError(f"Unknown plan status: {status!r}") from None

        document = self.read_journal(date_iso)
        return [
            location.to_dict()
            for location in iter_planned(document)
            if status is None or location.entry.plan_status == status
        ]

    def plan_history(self, date_iso: str, plan_id: str) -> list[dict]:
        """The replan chain containing ``plan_id``, oldest plan first.

        Raises:
            PlanNotFoundError: If the plan is not in the journal
        """
        document = self.read_journal(date_iso)
        chain = plan_history(document, plan_id)
        if not chain:
            raise PlanNotFoundError(f"Plan {plan_id} not found on {date_iso}.")
        return [location.to_dict() for location in chain]

    # ========== Maintenance ==========

    def migrate_journals(self, write: bool = False) -> dict[str, Any]:
        """Bring stored journals up to the current shape.

        Legacy ``isPlan`` flags and bare strings are converted and every plan
        gets its identity and timestamps. Nothing is written unless ``write``.
        """
        dates = self.store.list_dates()
        changed_dates = []
        for date_iso in dates:
            with self.store.lock(date_iso):
                raw = self.store.read_data(date_iso)
                document = JournalDocument.from_dict(date_iso, raw)
                normalize_document(document, self.clock(), self.id_factory)
                if document.to_dict() == raw:
                    continue
                changed_dates.append(date_iso)
                if write:
                    self.store.write(document)

        logger.info(
            "Migration %s: %d journals, %d changed",
            "written" if write else "checked", len(dates), len(changed_dates),
        )
        return {"files": len(dates), "changed": changed_dates, "written": write}


def _as_source(source: Union[PlanSource, dict]) -> PlanSource:
    if isinstance(source, dict):
        return parse_source(source)
    return source


def _check_content(content: Content) -> None:
    if isinstance(content, TextContent) and not content.text.strip():
        raise JournalError("Entry text cannot be empty")
    if not isinstance(content, (TaskContent, TextContent)):
        raise JournalError(f"Unsupported entry content: {content!r}")


def _describe(source: PlanSource) -> str:
    if source.kind == "hour":
        return source.hour
    return f"{source.start}-{source.end}"
