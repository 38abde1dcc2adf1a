"""
Live event subscriber: keep the cache warm from the relay's live feed.

The relay pushes one JSON message per mint over server-sent events::

    {"type": "LinkPosted", "subject": "0xabc...", "url": "https://...", "linkId": "0x1f..."}

Each ``LinkPosted`` message is merged into the cache as soon as it arrives.
Other message types are ignored.

Lifecycle
---------
``start()`` spawns one background task that connects, consumes until the
connection ends, waits ``reconnect_delay`` seconds and connects again.
``close()`` cancels that task.  The subscriber is best-effort: delivery
guarantees belong to the fallback reconciler, so nothing here raises.

Failure policy
--------------
- Connection failure or drop: ``stream_failed`` diagnostic, reconnect.
- Any other exception escaping a connection (including one raised by
  ``on_merge``): logged with its traceback, ``stream_failed`` diagnostic,
  reconnect.  Only cancellation ends the task.
- Malformed message: ``malformed_message`` diagnostic, skip that message.
- Conflicting identifier: contained by
  :func:`~linkledger.index.snapshot.merge_record`.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any, Protocol

from linkledger.errors import RelayError
from linkledger.index.cache import ResolutionCache
from linkledger.index.diagnostics import DiagnosticKinds, DiagnosticsLog
from linkledger.index.snapshot import merge_record
from linkledger.ledger import LedgerEvents
from linkledger.types import LinkRecord

logger = logging.getLogger(__name__)

STREAM_ENDPOINT = "/stream"


class MessageSource(Protocol):
    """The part of :class:`~linkledger.relay.client.RelayClient` the subscriber uses."""

    def iter_messages(self) -> AsyncIterator[str]: ...


class LiveEventSubscriber:
    """
    Cancellable background subscription to the relay's live feed.

    Attributes:
        on_merge: Optional callback invoked with each record that added a new
            cache entry.

    Example:
        async with LiveEventSubscriber(cache, relay, diagnostics, reconnect_delay=3.0):
            ...  # cache is kept warm while inside the block
    """

    def __init__(
        self,
        cache: ResolutionCache,
        relay: MessageSource,
        diagnostics: DiagnosticsLog | None = None,
        reconnect_delay: float = 3.0,
        on_merge: Callable[[LinkRecord], None] | None = None,
    ) -> None:
        self.cache = cache
        self.relay = relay
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticsLog()
        self.reconnect_delay = reconnect_delay
        self.on_merge = on_merge
        self._task: asyncio.Task[None] | None = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background subscription; calling it again is a no-op."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="linkledger-live-subscriber")

    async def close(self) -> None:
        """Cancel the background subscription and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def __aenter__(self) -> LiveEventSubscriber:
        self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Consumption
    # -------------------------------------------------------------------------

    async def consume_once(self) -> int:
        """
        Consume one connection to the live feed until it ends.

        Returns:
            Number of mappings newly added during this connection.
        """
        added = 0
        try:
            async for raw in self.relay.iter_messages():
                if self.merge_message(raw):
                    added += 1
        except RelayError as exc:
            logger.warning("Live feed connection lost: %s", exc)
            self.diagnostics.record(
                DiagnosticKinds.STREAM_FAILED, key=STREAM_ENDPOINT, detail=str(exc)
            )
        else:
            logger.info("Live feed closed by relay")
            self.diagnostics.record(
                DiagnosticKinds.STREAM_FAILED, key=STREAM_ENDPOINT, detail="stream ended"
            )
        return added

    def merge_message(self, raw: str) -> bool:
        """
        Decode one feed message and merge it if it announces a mint.

        Returns:
            True if the message added a new cache entry.
        """
        try:
            message = json.loads(raw)
        except json.JSONDecodeError as exc:
            self._skip(raw, f"not valid JSON: {exc}")
            return False
        if not isinstance(message, dict):
            self._skip(raw, "message is not an object")
            return False
        if message.get("type") != LedgerEvents.LINK_POSTED:
            return False
        try:
            record = LinkRecord.from_wire(message)
        except ValueError as exc:
            self._skip(raw, str(exc))
            return False
        added = merge_record(self.cache, record, self.diagnostics)
        if added and self.on_merge is not None:
            self.on_merge(record)
        return added

    async def _run(self) -> None:
        while True:
            try:
                await self.consume_once()
            except Exception as exc:
                # Only cancellation ends the subscription
                logger.exception("Live feed consumer failed, reconnecting")
                self.diagnostics.record(
                    DiagnosticKinds.STREAM_FAILED,
                    key=STREAM_ENDPOINT,
                    detail=f"{type(exc).__name__}: {exc}",
                )
            await asyncio.sleep(self.reconnect_delay)

    def _skip(self, raw: str, reason: str) -> None:
        logger.warning("Skipping malformed live message: %s", reason)
        self.diagnostics.record(
            DiagnosticKinds.MALFORMED_MESSAGE, key=STREAM_ENDPOINT, detail=f"{reason}: {raw[:200]!r}"
        )
