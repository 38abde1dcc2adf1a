"""
FastAPI relay server.

The relay mirrors the ledger's ``LinkPosted`` events so clients can resolve
identifiers without querying the ledger's log, and keeps a record log of
shared links that is pushed to every connected observer.

Endpoints:
    GET  /            identity and version
    GET  /health      liveness and counts
    GET  /links       {"links": [{subject, url, linkId}, ...]} in mint order
    GET  /stream      server-sent events, one LinkPosted message per mint
    POST /events      indexer ingest of a LinkPosted event
    GET  /records     {"records": [{link, wallet, time}, ...]}
    POST /records     append a record row
    WS   /ws/records  initData on connect, newLink in both directions

Usage:
    state = RelayState.load(config.storage.absolute_path)
    app = create_app(state)
    uvicorn.run(app, host=config.server.host, port=config.server.port)
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from linkledger import __version__
from linkledger.errors import IdentifierConflict
from linkledger.index.keys import normalize_key
from linkledger.ledger import LedgerEvents
from linkledger.relay.hub import BroadcastHub, format_sse
from linkledger.relay.records import AppendOnlyLog, RecordWriteError
from linkledger.types import LinkRecord, RelayRecord

logger = logging.getLogger(__name__)

# Seconds of silence on /stream before a keepalive comment is sent
HEARTBEAT_SECONDS = 15.0


# ============================================================================
# REQUEST MODELS
# ============================================================================


class LinkPostedEvent(BaseModel):
    """Body of ``POST /events``."""

    type: str = LedgerEvents.LINK_POSTED
    subject: str = Field(min_length=1)
    url: str = Field(min_length=1)
    linkId: str = Field(min_length=1)  # noqa: N815 - wire name


class RecordRequest(BaseModel):
    """Body of ``POST /records``."""

    link: str = Field(min_length=1)
    wallet: str = Field(min_length=1)


# ============================================================================
# RELAY STATE
# ============================================================================


class RelayState:
    """
    In-memory relay state, persisted to two append-only logs.

    Attributes:
        links: Minted mappings in ingest (mint) order.
        records: Record-log rows in append order.
        link_hub: Subscribers of the live feed.
        record_hub: Subscribers of the record channel.
    """

    def __init__(self, minted_log: AppendOnlyLog, record_log: AppendOnlyLog) -> None:
        self._minted_log = minted_log
        self._record_log = record_log
        self._by_key: dict[str, str] = {}
        self.links: list[LinkRecord] = []
        self.records: list[RelayRecord] = []
        self.link_hub = BroadcastHub("links")
        self.record_hub = BroadcastHub("records")

    @classmethod
    def load(cls, data_dir: Path) -> RelayState:
        """Create the state for ``data_dir`` and replay both logs."""
        state = cls(AppendOnlyLog(data_dir, "minted"), AppendOnlyLog(data_dir, "records"))
        for log in (state._minted_log, state._record_log):
            result = log.verify()
            if result.status == "corrupt":
                logger.critical("Relay log %s is corrupt: %s", log.path, result.error_detail)

        for entry in state._minted_log.read_all():
            try:
                record = LinkRecord.from_wire(entry.get("data"))
            except ValueError as exc:
                logger.warning("Skipping unreadable minted entry %s: %s", entry["entry_id"], exc)
                continue
            key = normalize_key(record.subject, record.url)
            if key not in state._by_key:
                state._by_key[key] = record.link_id
                state.links.append(record)

        for entry in state._record_log.read_all():
            data = entry.get("data")
            try:
                row = RelayRecord(link=data["link"], wallet=data["wallet"], time=data["time"])
            except (KeyError, TypeError) as exc:
                logger.warning("Skipping unreadable record entry %s: %s", entry["entry_id"], exc)
                continue
            state.records.append(row)

        logger.info(
            "Relay state loaded from %s: %d links, %d records",
            data_dir,
            len(state.links),
            len(state.records),
        )
        return state

    def ingest(self, record: LinkRecord) -> bool:
        """
        Store and broadcast a minted mapping.

        Returns:
            True if the mapping is new, False if it was already known.

        Raises:
            IdentifierConflict: If the key is known under another identifier.
            RecordWriteError: If the mapping could not be persisted.
        """
        key = normalize_key(record.subject, record.url)
        existing = self._by_key.get(key)
        if existing == record.link_id:
            return False
        if existing is not None:
            raise IdentifierConflict(key, existing, record.link_id)

        self._minted_log.append(LedgerEvents.LINK_POSTED, record.to_wire())
        self._by_key[key] = record.link_id
        self.links.append(record)
        self.link_hub.publish({"type": LedgerEvents.LINK_POSTED, **record.to_wire()})
        return True

    def add_record(self, link: str, wallet: str) -> RelayRecord:
        """
        Append a record row and push it to every observer.

        Raises:
            RecordWriteError: If the row could not be persisted.
        """
        row = RelayRecord(link=link, wallet=wallet, time=datetime.now(UTC).isoformat())
        self._record_log.append("newLink", row.to_wire())
        self.records.append(row)
        self.record_hub.publish({"type": "newLink", **row.to_wire()})
        return row


# ============================================================================
# APPLICATION
# ============================================================================


def create_app(state: RelayState, heartbeat_seconds: float = HEARTBEAT_SECONDS) -> FastAPI:
    """
    Build the relay application around ``state``.

    Args:
        state: Relay state, usually from :meth:`RelayState.load`.
        heartbeat_seconds: Silence on ``/stream`` before a keepalive comment.
    """

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        # Ends every open /stream and /ws/records connection
        state.link_hub.close_all()
        state.record_hub.close_all()

    app = FastAPI(title="linkledger relay", version=__version__, lifespan=lifespan)
    app.state.relay = state

    # The relay is read by browser dapps served from other origins.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root():
        return {"message": "linkledger relay", "version": __version__}

    @app.get("/health")
    async def health_check():
        return {
            "status": "ok",
            "links": len(state.links),
            "records": len(state.records),
            "stream_subscribers": len(state.link_hub),
            "record_observers": len(state.record_hub),
        }

    # ------------------------------------------------------------------------
    # Minted mappings
    # ------------------------------------------------------------------------

    @app.get("/links")
    async def list_links():
        return {"links": [record.to_wire() for record in state.links]}

    @app.get("/stream")
    async def stream_links():
        # Subscribe before responding so nothing minted after connect is missed.
        queue = state.link_hub.subscribe()
        return StreamingResponse(
            sse_frames(state.link_hub, queue, heartbeat_seconds),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    @app.post("/events", status_code=201)
    async def ingest_event(event: LinkPostedEvent):
        if event.type != LedgerEvents.LINK_POSTED:
            raise HTTPException(status_code=422, detail=f"Unsupported event type {event.type!r}")
        record = LinkRecord(subject=event.subject, url=event.url, link_id=event.linkId)
        try:
            created = state.ingest(record)
        except IdentifierConflict as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except RecordWriteError as exc:
            logger.error("Failed to persist minted link: %s", exc)
            raise HTTPException(status_code=500, detail="Failed to persist event") from exc
        return {"created": created, **record.to_wire()}

    # ------------------------------------------------------------------------
    # Record log
    # ------------------------------------------------------------------------

    @app.get("/records")
    async def list_records():
        return {"records": [row.to_wire() for row in state.records]}

    @app.post("/records", status_code=201)
    async def append_record(body: RecordRequest):
        try:
            row = state.add_record(body.link, body.wallet)
        except RecordWriteError as exc:
            logger.error("Failed to persist record: %s", exc)
            raise HTTPException(status_code=500, detail="Failed to persist record") from exc
        return row.to_wire()

    @app.websocket("/ws/records")
    async def record_channel(websocket: WebSocket) -> None:
        await websocket.accept()
        queue = state.record_hub.subscribe()
        forwarder = asyncio.create_task(_forward(queue, websocket))
        try:
            await websocket.send_json(
                {"type": "initData", "records": [row.to_wire() for row in state.records]}
            )
            while True:
                error = _handle_channel_message(state, await websocket.receive_text())
                if error:
                    await websocket.send_json({"type": "error", "detail": error})
        except WebSocketDisconnect:
            logger.debug("Record observer disconnected")
        finally:
            state.record_hub.unsubscribe(queue)
            forwarder.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await forwarder

    return app


# ============================================================================
# HELPERS
# ============================================================================


async def sse_frames(
    hub: BroadcastHub,
    queue: asyncio.Queue[dict[str, Any] | None],
    heartbeat_seconds: float = HEARTBEAT_SECONDS,
) -> AsyncIterator[str]:
    """Yield SSE frames from ``queue`` until the hub closes it."""
    try:
        while True:
            try:
                message = await asyncio.wait_for(queue.get(), timeout=heartbeat_seconds)
            except TimeoutError:
                yield ": keepalive\n\n"
                continue
            if message is None:
                return
            yield format_sse(message)
    finally:
        hub.unsubscribe(queue)


async def _forward(queue: asyncio.Queue[dict[str, Any] | None], websocket: WebSocket) -> None:
    while True:
        message = await queue.get()
        if message is None:
            await websocket.close()
            return
        await websocket.send_json(message)


def _handle_channel_message(state: RelayState, raw: str) -> str | None:
    """Apply one record-channel message; return an error string or None."""
    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        return "message is not valid JSON"
    if not isinstance(message, dict) or message.get("type") != "newLink":
        return "unsupported message type"
    link, wallet = message.get("link"), message.get("wallet")
    if not isinstance(link, str) or not link or not isinstance(wallet, str) or not wallet:
        return "newLink requires non-empty 'link' and 'wallet'"
    try:
        state.add_record(link, wallet)
    except RecordWriteError as exc:
        logger.error("Failed to persist record: %s", exc)
        return "failed to persist record"
    return None
