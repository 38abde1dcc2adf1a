"""
Structured diagnostics for background synchronization.

The snapshot loader and the live subscriber never raise: a relay outage only
leaves the cache stale.  To keep that staleness observable, every contained
failure is logged *and* recorded here as a :class:`SyncDiagnostic` carrying a
kind and the key (or endpoint) it concerns.

The log is bounded so a long outage cannot grow memory without limit.

Usage:
    diagnostics = DiagnosticsLog()
    diagnostics.record(DiagnosticKinds.SNAPSHOT_FAILED, key="/links", detail=str(exc))

    for entry in diagnostics.entries(kind=DiagnosticKinds.SNAPSHOT_FAILED):
        print(entry.at, entry.detail)
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime

# 1,000 entries cover hours of reconnect attempts at the default delay
_MAX_ENTRIES = 1000


class DiagnosticKinds:
    """Kinds of contained synchronization failure."""

    SNAPSHOT_FAILED = "snapshot_failed"
    """The snapshot request failed or returned an undecodable payload."""

    MALFORMED_RECORD = "malformed_record"
    """One record inside an otherwise valid snapshot was skipped."""

    STREAM_FAILED = "stream_failed"
    """The live-feed connection failed or dropped."""

    MALFORMED_MESSAGE = "malformed_message"
    """One live-feed message was skipped."""

    IDENTIFIER_CONFLICT = "identifier_conflict"
    """The relay reported a second identifier for a key already in the cache."""


@dataclass(frozen=True)
class SyncDiagnostic:
    """
    One contained failure.

    Attributes:
        kind: One of :class:`DiagnosticKinds`.
        key: Cache key or relay endpoint the failure concerns.
        detail: Human-readable reason.
        at: When the failure was recorded (UTC).
    """

    kind: str
    key: str
    detail: str
    at: datetime


class DiagnosticsLog:
    """Bounded, thread-safe log of :class:`SyncDiagnostic` entries."""

    def __init__(self, max_entries: int = _MAX_ENTRIES) -> None:
        self._entries: deque[SyncDiagnostic] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def record(self, kind: str, *, key: str, detail: str) -> SyncDiagnostic:
        entry = SyncDiagnostic(kind=kind, key=key, detail=detail, at=datetime.now(UTC))
        with self._lock:
            self._entries.append(entry)
        return entry

    def entries(self, kind: str | None = None) -> list[SyncDiagnostic]:
        """Return recorded entries in order, optionally filtered by kind."""
        with self._lock:
            snapshot = list(self._entries)
        if kind is None:
            return snapshot
        return [entry for entry in snapshot if entry.kind == kind]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
