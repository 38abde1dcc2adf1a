"""
The resolution cache: normalized key -> identifier.

The cache mirrors the ledger's mint log, which is append-only and mints at
most one identifier per (subject, url).  It therefore has no delete operation
and an entry, once present, stays valid for the life of the process.

Ownership
---------
The cache is an ordinary object.  The client constructs one at startup and
hands the same instance to every component that reads or merges into it, so
tests can give each component a fresh cache.

Conflicts
---------
``put`` with the value already stored is a no-op.  ``put`` with a *different*
value raises :exc:`~linkledger.errors.IdentifierConflict` and keeps the
existing entry.  A stale snapshot can never overwrite an identifier taken
from a write receipt, and a ledger that breaks its one-identifier-per-key
guarantee is reported instead of silently followed.

Thread Safety
-------------
All access goes through one coarse :class:`threading.Lock`.  Write volume is
low (one entry per mint), so contention is not a concern.
"""

from __future__ import annotations

import logging
import threading

from linkledger.errors import IdentifierConflict

logger = logging.getLogger(__name__)


class ResolutionCache:
    """
    In-memory, append-only mapping from normalized key to identifier.

    Keys must already be normalized (see :mod:`linkledger.index.keys`).

    Example:
        cache = ResolutionCache()
        cache.put(normalize_key(subject, url), link_id)
        cache.get(normalize_key(subject, url))  # -> link_id
    """

    def __init__(self) -> None:
        self._entries: dict[str, str] = {}
        self._lock = threading.Lock()

    def put(self, key: str, identifier: str) -> bool:
        """
        Store ``identifier`` under ``key``.

        Returns:
            True if a new entry was added, False if the same value was already
            present.

        Raises:
            IdentifierConflict: If ``key`` already maps to another identifier.
        """
        with self._lock:
            existing = self._entries.get(key)
            if existing is None:
                self._entries[key] = identifier
                logger.debug("cache: %s -> %s", key, identifier)
                return True
        if existing == identifier:
            return False
        raise IdentifierConflict(key, existing, identifier)

    def get(self, key: str) -> str | None:
        """Return the identifier for ``key``, or None."""
        with self._lock:
            return self._entries.get(key)

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def items(self) -> list[tuple[str, str]]:
        """Return a point-in-time copy of all entries, sorted by key."""
        with self._lock:
            return sorted(self._entries.items())

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
