"""JSONL append-only log used by the relay server.

Overview
--------
The relay keeps two logs:

- ``minted``  - every ``LinkPosted`` event ingested from the indexer.  This is
  what ``GET /links`` and ``GET /stream`` serve.
- ``records`` - rows of ``{link, wallet, time}`` shared through the record
  push channel.

Both are instances of :class:`AppendOnlyLog`.  Rows are only ever appended;
the relay's in-memory state is a replay of the file at startup.

Storage
-------
One file per log::

    <data_dir>/<log_name>.jsonl

The directory and file are created automatically on the first write.

Envelope format
---------------
Every line is a self-contained JSON object:

.. code-block:: json

    {
      "entry_id":       "a3f91c9e2d4b5e6f...",
      "timestamp":      "2026-02-27T14:23:01.452345+00:00",
      "log":            "minted",
      "entry_type":     "LinkPosted",
      "schema_version": "1.0",
      "data":           { ... entry-specific payload ... },
      "_checksum":      "sha256:b94f3e..."
    }

``_checksum`` is computed over the JSON-serialized envelope body (all fields
**except** ``_checksum`` itself, serialized with ``sort_keys=True``).

Concurrency
-----------
``fcntl.flock(LOCK_EX)`` is acquired before every append and released after
``flush()``.  This serialises concurrent writers within a single process and
across processes on the same host.  ``fcntl`` is POSIX-only.

Failure isolation
-----------------
:exc:`RecordWriteError` is raised on filesystem failure.  The relay turns it
into a 500 response; nothing is broadcast for a row that was not persisted.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

logger = logging.getLogger(__name__)

# ── Schema version ─────────────────────────────────────────────────────────────
# Increment when the envelope format changes in a backwards-incompatible way.
_SCHEMA_VERSION = "1.0"

# ── Read-tail chunk size ───────────────────────────────────────────────────────
# Bytes read from the end of the file when verifying the last entry.  A link
# row is a few hundred bytes; 16 KiB leaves room for very long URLs.
_TAIL_CHUNK_BYTES = 16_384


# ── Exception ─────────────────────────────────────────────────────────────────


class RecordWriteError(Exception):
    """Raised when an append fails due to a filesystem or encoding error."""


# ── Result type ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class LogVerifyResult:
    """Result of an integrity check performed by :meth:`AppendOnlyLog.verify`.

    Attributes:
        status: One of:
            - ``"ok"``      - last entry is valid JSON and checksum matches.
            - ``"empty"``   - file does not exist or contains no entries.
            - ``"corrupt"`` - last line is malformed JSON or checksum mismatch.
        last_entry_id: The ``entry_id`` of the last valid entry, or ``None``.
        error_detail: Reason for a ``"corrupt"`` status, otherwise ``None``.
    """

    status: Literal["ok", "empty", "corrupt"]
    last_entry_id: str | None
    error_detail: str | None


# ── Log ───────────────────────────────────────────────────────────────────────


class AppendOnlyLog:
    """One append-only JSONL log file.

    Example::

        log = AppendOnlyLog(data_dir, "records")
        log.append("newLink", {"link": "https://example.com/", "wallet": "0xabc"})
        rows = [entry["data"] for entry in log.read_all()]
    """

    def __init__(self, root: Path, name: str) -> None:
        if not name or not name.strip():
            raise ValueError("AppendOnlyLog: name must be a non-empty string.")
        self.name = name
        self.path = Path(root) / f"{name}.jsonl"

    def append(self, entry_type: str, data: dict) -> str:
        """Append one entry and return its ``entry_id``.

        Args:
            entry_type: Entry type, e.g. ``"LinkPosted"`` or ``"newLink"``.
                        Must be non-empty.
            data:       Entry payload.  Must be JSON-serialisable.

        Returns:
            The ``entry_id`` as a 32-character lowercase hex string.

        Raises:
            ValueError:        If ``entry_type`` is empty or blank.
            RecordWriteError:  If the filesystem write fails.
        """
        if not entry_type or not entry_type.strip():
            raise ValueError("append: entry_type must be a non-empty string.")

        entry_id = uuid.uuid4().hex
        envelope_body: dict = {
            "entry_id": entry_id,
            "timestamp": datetime.now(UTC).isoformat(),
            "log": self.name,
            "entry_type": entry_type,
            "schema_version": _SCHEMA_VERSION,
            "data": data,
        }
        try:
            envelope = {**envelope_body, "_checksum": f"sha256:{_compute_checksum(envelope_body)}"}
            line = json.dumps(envelope, ensure_ascii=False, sort_keys=True)
            _append_line_locked(self.path, line)
        except (OSError, TypeError, ValueError) as exc:
            raise RecordWriteError(
                f"Failed to append entry {entry_id!r} to {self.path}: {exc}"
            ) from exc

        logger.debug("records: appended %r entry %s to %s", entry_type, entry_id, self.path.name)
        return entry_id

    def read_all(self) -> list[dict]:
        """Replay every valid envelope in append order.

        Lines that are not valid JSON or whose checksum does not match are
        skipped with a warning; a torn final write must not prevent the relay
        from starting.
        """
        if not self.path.exists():
            return []

        entries = []
        with self.path.open("r", encoding="utf-8") as fh:
            for lineno, line in enumerate(fh, start=1):
                stripped = line.strip()
                if not stripped:
                    continue
                checked = _check_envelope(stripped)
                if isinstance(checked, str):
                    logger.warning("records: skipping %s line %d: %s", self.path.name, lineno, checked)
                    continue
                entries.append(checked)
        return entries

    def verify(self) -> LogVerifyResult:
        """Verify the integrity of the most recent entry.

        Intended to be called at relay startup.  Only the last non-empty line
        is inspected.
        """
        if not self.path.exists():
            return LogVerifyResult(status="empty", last_entry_id=None, error_detail=None)

        last_line = _read_last_nonempty_line(self.path)
        if last_line is None:
            return LogVerifyResult(status="empty", last_entry_id=None, error_detail=None)

        checked = _check_envelope(last_line)
        if isinstance(checked, str):
            return LogVerifyResult(status="corrupt", last_entry_id=None, error_detail=checked)
        return LogVerifyResult(status="ok", last_entry_id=checked["entry_id"], error_detail=None)


# ── Internal helpers ──────────────────────────────────────────────────────────


def _check_envelope(line: str) -> dict | str:
    """Return the decoded envelope, or a string describing why it is invalid."""
    try:
        envelope = json.loads(line)
    except json.JSONDecodeError as exc:
        return f"not valid JSON: {exc}"

    if not isinstance(envelope, dict):
        return "deserialised to a non-dict type"

    recorded = envelope.get("_checksum")
    if not isinstance(recorded, str):
        return "missing or non-string '_checksum' field"

    # Reconstruct the body exactly as it was when the checksum was computed.
    body = {k: v for k, v in envelope.items() if k != "_checksum"}
    expected = f"sha256:{_compute_checksum(body)}"
    if recorded != expected:
        return f"checksum mismatch (recorded {recorded!r}, expected {expected!r})"

    entry_id = envelope.get("entry_id")
    if not isinstance(entry_id, str) or not entry_id:
        return "missing a valid 'entry_id' string"

    return envelope


def _compute_checksum(payload: dict) -> str:
    """SHA-256 hex digest of the canonical (``sort_keys=True``) JSON of ``payload``."""
    canonical = json.dumps(payload, ensure_ascii=False, sort_keys=True)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _append_line_locked(path: Path, line: str) -> None:
    """Append a single newline-terminated line to ``path`` under an exclusive lock.

    Creates the parent directory and the file if they do not exist.

    Raises:
        OSError: If the directory creation, file open, or write fails.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as fh:
        fcntl.flock(fh, fcntl.LOCK_EX)
        try:
            fh.write(line + "\n")
            fh.flush()
        finally:
            fcntl.flock(fh, fcntl.LOCK_UN)


def _read_last_nonempty_line(path: Path) -> str | None:
    """Return the last non-empty line from a file without reading it fully.

    Reads at most :data:`_TAIL_CHUNK_BYTES` bytes from the end of the file.
    Returns ``None`` for a blank file or on :exc:`OSError`.
    """
    try:
        with path.open("rb") as fh:
            fh.seek(0, 2)  # SEEK_END
            size = fh.tell()
            if size == 0:
                return None
            fh.seek(max(0, size - _TAIL_CHUNK_BYTES))
            chunk = fh.read()
    except OSError:
        return None

    for line in reversed(chunk.decode("utf-8", errors="replace").splitlines()):
        stripped = line.strip()
        if stripped:
            return stripped
    return None
