"""In-process progress tracking for sync sessions.

Workers publish into a ``SyncSession`` without blocking; observers read snapshots
or poll the bounded event buffer with a cursor.
"""

from __future__ import annotations

import threading
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING, Final

from .upsert import UpsertOutcome

if TYPE_CHECKING:
    from collections.abc import Callable

    from .entities import EntityKind

log = getLogger(__name__)

DEFAULT_ERROR_LIMIT: Final[int] = 20
DEFAULT_EVENT_CAPACITY: Final[int] = 500
DEFAULT_MAX_SESSIONS: Final[int] = 100
DEFAULT_TTL: Final[timedelta] = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SyncStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass(frozen=True, slots=True, kw_only=True)
class RecordError:
    kind: EntityKind
    external_id: str
    message: str


@dataclass(frozen=True, slots=True, kw_only=True)
class ProgressEvent:
    """One processed record; ``sequence`` increases by one per event within a session."""

    sequence: int
    session_id: str
    kind: EntityKind | None
    external_id: str | None
    current: int
    total: int
    created_count: int
    updated_count: int
    unchanged_count: int
    failed_count: int
    related_count: int
    message: str | None
    at: datetime


@dataclass(frozen=True, slots=True, kw_only=True)
class SyncProgress:
    session_id: str
    status: SyncStatus
    current: int
    total: int
    created_count: int
    updated_count: int
    unchanged_count: int
    failed_count: int
    related_count: int
    error_count: int
    errors: tuple[RecordError, ...]
    error_message: str | None
    started_at: datetime
    finished_at: datetime | None


class SyncSession:
    """Mutable state of one sync run, safe to update from worker threads."""

    def __init__(
        self,
        session_id: str,
        *,
        error_limit: int = DEFAULT_ERROR_LIMIT,
        event_capacity: int = DEFAULT_EVENT_CAPACITY,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.session_id = session_id
        self._clock = clock
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._error_limit = error_limit
        self._events: deque[ProgressEvent] = deque(maxlen=event_capacity)
        self._sequence = 0
        self.status = SyncStatus.RUNNING
        self.started_at = clock()
        self.finished_at: datetime | None = None
        self.error_message: str | None = None
        self.current = 0
        self.total = 0
        self._counts: dict[UpsertOutcome, int] = dict.fromkeys(UpsertOutcome, 0)
        self.failed_count = 0
        self.related_count = 0
        self.error_count = 0
        self._errors: list[RecordError] = []

    # Cancellation ---------------------------------------------------------

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    # Producers ------------------------------------------------------------

    def add_total(self, count: int) -> None:
        with self._lock:
            self.total += count

    def record_outcome(
        self,
        kind: EntityKind,
        external_id: str,
        outcome: UpsertOutcome | None,
    ) -> None:
        """Count one processed record; ``None`` marks it as failed."""

        with self._lock:
            self.current += 1
            if outcome is None:
                self.failed_count += 1
            else:
                self._counts[outcome] += 1
            self._emit_locked(kind=kind, external_id=external_id, message=None)

    def record_related(self) -> None:
        with self._lock:
            self.related_count += 1

    def record_error(self, kind: EntityKind, external_id: str, message: str) -> None:
        with self._lock:
            self.error_count += 1
            if len(self._errors) < self._error_limit:
                self._errors.append(
                    RecordError(kind=kind, external_id=external_id, message=message)
                )

    def note(self, message: str, *, kind: EntityKind | None = None) -> None:
        with self._lock:
            self._emit_locked(kind=kind, external_id=None, message=message)

    def finish(self, status: SyncStatus, *, error_message: str | None = None) -> None:
        with self._lock:
            if self.finished_at is not None:
                return
            self.status = status
            self.error_message = error_message
            self.finished_at = self._clock()
            self._emit_locked(kind=None, external_id=None, message=f"sync {status}")

    def _emit_locked(
        self,
        *,
        kind: EntityKind | None,
        external_id: str | None,
        message: str | None,
    ) -> None:
        self._sequence += 1
        self._events.append(
            ProgressEvent(
                sequence=self._sequence,
                session_id=self.session_id,
                kind=kind,
                external_id=external_id,
                current=self.current,
                total=self.total,
                created_count=self._counts[UpsertOutcome.CREATED],
                updated_count=self._counts[UpsertOutcome.UPDATED],
                unchanged_count=self._counts[UpsertOutcome.UNCHANGED],
                failed_count=self.failed_count,
                related_count=self.related_count,
                message=message,
                at=self._clock(),
            )
        )

    # Consumers ------------------------------------------------------------

    @property
    def is_finished(self) -> bool:
        return self.finished_at is not None

    def events_since(self, cursor: int = 0) -> list[ProgressEvent]:
        """Return buffered events with ``sequence > cursor``, oldest first."""

        with self._lock:
            return [event for event in self._events if event.sequence > cursor]

    def snapshot(self) -> SyncProgress:
        with self._lock:
            return SyncProgress(
                session_id=self.session_id,
                status=self.status,
                current=self.current,
                total=self.total,
                created_count=self._counts[UpsertOutcome.CREATED],
                updated_count=self._counts[UpsertOutcome.UPDATED],
                unchanged_count=self._counts[UpsertOutcome.UNCHANGED],
                failed_count=self.failed_count,
                related_count=self.related_count,
                error_count=self.error_count,
                errors=tuple(self._errors),
                error_message=self.error_message,
                started_at=self.started_at,
                finished_at=self.finished_at,
            )


class ProgressStore:
    """Bounded registry of sync sessions.

    Sessions older than ``ttl`` are dropped first; past ``max_sessions`` the oldest
    finished sessions go next. Running sessions are never evicted.
    """

    def __init__(
        self,
        *,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        ttl: timedelta = DEFAULT_TTL,
        event_capacity: int = DEFAULT_EVENT_CAPACITY,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._max_sessions = max_sessions
        self._ttl = ttl
        self._event_capacity = event_capacity
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: dict[str, SyncSession] = {}

    def create(self, *, error_limit: int = DEFAULT_ERROR_LIMIT) -> SyncSession:
        session = SyncSession(
            uuid.uuid4().hex,
            error_limit=error_limit,
            event_capacity=self._event_capacity,
            clock=self._clock,
        )
        with self._lock:
            self._evict_locked(reserve=1)
            self._sessions[session.session_id] = session
        return session

    def session(self, session_id: str) -> SyncSession | None:
        with self._lock:
            self._evict_locked()
            return self._sessions.get(session_id)

    def get(self, session_id: str) -> SyncProgress | None:
        session = self.session(session_id)
        return session.snapshot() if session is not None else None

    def events_since(self, session_id: str, cursor: int = 0) -> list[ProgressEvent]:
        session = self.session(session_id)
        return session.events_since(cursor) if session is not None else []

    def cancel(self, session_id: str) -> bool:
        """Request cancellation; returns ``False`` for unknown or finished sessions."""

        session = self.session(session_id)
        if session is None or session.is_finished:
            return False
        session.cancel()
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _evict_locked(self, *, reserve: int = 0) -> None:
        cutoff = self._clock() - self._ttl
        for session_id, session in list(self._sessions.items()):
            if session.finished_at is not None and session.finished_at < cutoff:
                del self._sessions[session_id]

        overflow = len(self._sessions) + reserve - self._max_sessions
        if overflow <= 0:
            return
        finished = sorted(
            (session for session in self._sessions.values() if session.is_finished),
            key=lambda session: session.started_at,
        )
        for session in finished[:overflow]:
            del self._sessions[session.session_id]
        if len(finished) < overflow:
            log.warning(
                "Progress store holds %s running sessions (limit %s)",
                len(self._sessions) + reserve,
                self._max_sessions,
            )
