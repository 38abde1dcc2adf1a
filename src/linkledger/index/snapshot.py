"""
Snapshot loader: pull every known mapping from the relay into the cache.

Runs once when the client starts and again whenever the fallback reconciler
or the direct-write resolver needs a fresh view.  Loading is idempotent:
re-merging a record already in the cache is a no-op.

Failure policy
--------------
The loader never raises.  A failed request leaves the cache as it was (stale
but usable) and records a ``snapshot_failed`` diagnostic; a single malformed
record is skipped with a ``malformed_record`` diagnostic; a record whose
identifier conflicts with the cache is refused, logged at CRITICAL and
recorded as ``identifier_conflict``.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from linkledger.errors import IdentifierConflict, RelayError
from linkledger.index.cache import ResolutionCache
from linkledger.index.diagnostics import DiagnosticKinds, DiagnosticsLog
from linkledger.index.keys import normalize_key
from linkledger.types import LinkRecord

logger = logging.getLogger(__name__)

SNAPSHOT_ENDPOINT = "/links"


class SnapshotSource(Protocol):
    """The part of :class:`~linkledger.relay.client.RelayClient` the loader uses."""

    async def fetch_links(self) -> list[Any]: ...


class SnapshotLoader:
    """
    Merge the relay's full mapping set into a :class:`ResolutionCache`.

    Attributes:
        loads: Number of times :meth:`load` has been called.

    Example:
        loader = SnapshotLoader(cache, relay, diagnostics)
        merged = await loader.load()
    """

    def __init__(
        self,
        cache: ResolutionCache,
        relay: SnapshotSource,
        diagnostics: DiagnosticsLog | None = None,
    ) -> None:
        self.cache = cache
        self.relay = relay
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticsLog()
        self.loads = 0

    async def load(self) -> int:
        """
        Fetch the snapshot and merge it.

        Returns:
            Number of records newly added to the cache (0 on failure).
        """
        self.loads += 1
        try:
            payloads = await self.relay.fetch_links()
        except RelayError as exc:
            logger.warning("Snapshot load failed, keeping cached mappings: %s", exc)
            self.diagnostics.record(
                DiagnosticKinds.SNAPSHOT_FAILED, key=SNAPSHOT_ENDPOINT, detail=str(exc)
            )
            return 0

        added = 0
        for position, payload in enumerate(payloads):
            try:
                record = LinkRecord.from_wire(payload)
            except ValueError as exc:
                logger.warning("Skipping malformed snapshot record #%d: %s", position, exc)
                self.diagnostics.record(
                    DiagnosticKinds.MALFORMED_RECORD,
                    key=f"{SNAPSHOT_ENDPOINT}[{position}]",
                    detail=str(exc),
                )
                continue
            if merge_record(self.cache, record, self.diagnostics):
                added += 1

        logger.info("Snapshot merged: %d records received, %d new", len(payloads), added)
        return added


def merge_record(cache: ResolutionCache, record: LinkRecord, diagnostics: DiagnosticsLog) -> bool:
    """
    Put ``record`` into ``cache`` on behalf of a background sync path.

    Conflicts are contained here: the cached identifier is kept.

    Returns:
        True if the record added a new entry.
    """
    key = normalize_key(record.subject, record.url)
    try:
        return cache.put(key, record.link_id)
    except IdentifierConflict as exc:
        logger.critical(
            "Ledger invariant violated: %s already maps to %s, relay reported %s",
            key,
            exc.existing,
            exc.incoming,
        )
        diagnostics.record(DiagnosticKinds.IDENTIFIER_CONFLICT, key=key, detail=str(exc))
        return False
