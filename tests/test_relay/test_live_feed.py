"""End-to-end tests of the live feed against a relay served by uvicorn."""

import asyncio
import contextlib
import json
import socket
from pathlib import Path

import pytest
import uvicorn

from linkledger.config import RelaySettings
from linkledger.index.cache import ResolutionCache
from linkledger.index.diagnostics import DiagnosticKinds, DiagnosticsLog
from linkledger.index.keys import normalize_key
from linkledger.index.subscriber import LiveEventSubscriber
from linkledger.relay.client import RelayClient
from linkledger.relay.server import RelayState, create_app
from linkledger.types import LinkRecord
from tests.fakes import ALICE


async def _wait_for(condition, attempts: int = 200) -> None:
    for _ in range(attempts):
        if condition():
            return
        await asyncio.sleep(0.01)


@pytest.fixture
async def relay(tmp_path: Path):
    """Serve a fresh relay on an ephemeral port; yields (state, base_url)."""
    state = RelayState.load(tmp_path / "relay")
    # Heartbeats far apart so the feed stays silent for the whole test
    app = create_app(state, heartbeat_seconds=30.0)

    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    host, port = sock.getsockname()

    server = uvicorn.Server(uvicorn.Config(app, log_level="warning", timeout_graceful_shutdown=1))
    task = asyncio.create_task(server.serve(sockets=[sock]))
    await _wait_for(lambda: server.started)
    assert server.started

    yield state, f"http://{host}:{port}"

    server.should_exit = True
    await task
    sock.close()


@pytest.mark.integration
class TestLiveFeed:
    @pytest.mark.asyncio
    async def test_idle_feed_outlasts_the_request_timeout(self, relay):
        state, base_url = relay
        cache = ResolutionCache()
        diagnostics = DiagnosticsLog()
        # Much shorter than the silence between heartbeats
        settings = RelaySettings(base_url=base_url, timeout=0.2, reconnect_delay=0.0)
        key = normalize_key(ALICE, "https://a.test/")

        async with RelayClient(settings) as client:
            subscriber = LiveEventSubscriber(cache, client, diagnostics, reconnect_delay=0.0)
            consume = asyncio.create_task(subscriber.consume_once())
            try:
                await _wait_for(lambda: len(state.link_hub) == 1)
                await asyncio.sleep(0.6)

                state.ingest(LinkRecord(subject=ALICE, url="https://a.test/", link_id="0x1"))
                await _wait_for(lambda: cache.has(key))
            finally:
                consume.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await consume

        assert cache.get(key) == "0x1"
        assert diagnostics.entries(kind=DiagnosticKinds.STREAM_FAILED) == []

    @pytest.mark.asyncio
    async def test_messages_arrive_as_they_are_minted(self, relay):
        state, base_url = relay
        settings = RelaySettings(base_url=base_url, timeout=5.0, reconnect_delay=0.0)

        async with RelayClient(settings) as client:
            messages = client.iter_messages()
            first = asyncio.ensure_future(messages.__anext__())
            await _wait_for(lambda: len(state.link_hub) == 1)

            state.ingest(LinkRecord(subject=ALICE, url="https://a.test/", link_id="0x1"))

            raw = await asyncio.wait_for(first, timeout=5.0)
            await messages.aclose()

        assert json.loads(raw) == {
            "type": "LinkPosted",
            "subject": ALICE,
            "url": "https://a.test/",
            "linkId": "0x1",
        }
