"""Tests for the FastAPI relay server."""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from linkledger.errors import IdentifierConflict
from linkledger.relay.records import AppendOnlyLog, RecordWriteError
from linkledger.relay.server import RelayState, create_app
from linkledger.types import LinkRecord
from tests.fakes import ALICE, BOB


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "relay"


@pytest.fixture
def state(data_dir: Path) -> RelayState:
    return RelayState.load(data_dir)


@pytest.fixture
def client(state: RelayState) -> TestClient:
    return TestClient(create_app(state))


def _event(subject: str, url: str, link_id: str) -> dict:
    return {"type": "LinkPosted", "subject": subject, "url": url, "linkId": link_id}


@pytest.mark.unit
class TestRelayState:
    def test_ingest_is_idempotent(self, state: RelayState):
        record = LinkRecord(subject=ALICE, url="https://a.test/", link_id="0x1")

        assert state.ingest(record) is True
        assert state.ingest(record) is False
        assert state.links == [record]

    def test_ingest_conflict_raises(self, state: RelayState):
        state.ingest(LinkRecord(subject=ALICE, url="https://a.test/", link_id="0x1"))

        with pytest.raises(IdentifierConflict):
            state.ingest(LinkRecord(subject=ALICE.lower(), url="HTTPS://A.test", link_id="0x2"))

        assert len(state.links) == 1

    def test_reload_replays_both_logs(self, state: RelayState, data_dir: Path):
        state.ingest(LinkRecord(subject=ALICE, url="https://a.test/", link_id="0x1"))
        state.ingest(LinkRecord(subject=BOB, url="https://b.test/", link_id="0x2"))
        state.add_record("https://a.test/", ALICE)

        reloaded = RelayState.load(data_dir)

        assert [record.link_id for record in reloaded.links] == ["0x1", "0x2"]
        assert [row.wallet for row in reloaded.records] == [ALICE]
        assert reloaded.ingest(LinkRecord(subject=ALICE, url="https://a.test/", link_id="0x1")) is False

    def test_reload_skips_entries_with_unexpected_shape(self, data_dir: Path):
        minted = AppendOnlyLog(data_dir, "minted")
        minted.append("LinkPosted", {"subject": ALICE, "url": "https://a.test/"})
        minted.append("LinkPosted", {"subject": ALICE, "url": "https://a.test/", "linkId": "0x1"})
        records = AppendOnlyLog(data_dir, "records")
        records.append("newLink", {"link": "https://a.test/"})
        records.append("newLink", {"link": "https://a.test/", "wallet": ALICE, "time": 1})
        records.append("newLink", ["not", "an", "object"])

        reloaded = RelayState.load(data_dir)

        assert [record.link_id for record in reloaded.links] == ["0x1"]
        assert [(row.link, row.wallet) for row in reloaded.records] == [("https://a.test/", ALICE)]

    @pytest.mark.asyncio
    async def test_ingest_broadcasts_to_stream_subscribers(self, state: RelayState):
        queue = state.link_hub.subscribe()

        state.ingest(LinkRecord(subject=ALICE, url="https://a.test/", link_id="0x1"))

        assert queue.get_nowait() == _event(ALICE, "https://a.test/", "0x1")

    @pytest.mark.asyncio
    async def test_app_shutdown_ends_open_streams(self, state: RelayState):
        app = create_app(state)

        async with app.router.lifespan_context(app):
            links = state.link_hub.subscribe()
            records = state.record_hub.subscribe()

        assert links.get_nowait() is None
        assert records.get_nowait() is None
        assert len(state.link_hub) == 0
        assert len(state.record_hub) == 0


@pytest.mark.integration
class TestHttpEndpoints:
    def test_root_and_health(self, client: TestClient):
        assert client.get("/").json()["message"] == "linkledger relay"

        health = client.get("/health").json()
        assert health["status"] == "ok"
        assert health["links"] == 0
        assert health["records"] == 0

    def test_posted_event_appears_in_snapshot(self, client: TestClient):
        response = client.post("/events", json=_event(ALICE, "https://a.test/", "0x1"))

        assert response.status_code == 201
        assert response.json()["created"] is True
        assert client.get("/links").json() == {
            "links": [{"subject": ALICE, "url": "https://a.test/", "linkId": "0x1"}]
        }

    def test_snapshot_is_in_mint_order(self, client: TestClient):
        client.post("/events", json=_event(BOB, "https://b.test/", "0x2"))
        client.post("/events", json=_event(ALICE, "https://a.test/", "0x1"))

        ids = [link["linkId"] for link in client.get("/links").json()["links"]]

        assert ids == ["0x2", "0x1"]

    def test_duplicate_event_is_not_created(self, client: TestClient):
        client.post("/events", json=_event(ALICE, "https://a.test/", "0x1"))

        response = client.post("/events", json=_event(ALICE, "https://a.test/", "0x1"))

        assert response.status_code == 201
        assert response.json()["created"] is False
        assert len(client.get("/links").json()["links"]) == 1

    def test_conflicting_event_is_409(self, client: TestClient):
        client.post("/events", json=_event(ALICE, "https://a.test/", "0x1"))

        response = client.post("/events", json=_event(ALICE, "https://a.test/", "0x2"))

        assert response.status_code == 409

    def test_unsupported_event_type_is_422(self, client: TestClient):
        response = client.post(
            "/events", json={**_event(ALICE, "https://a.test/", "0x1"), "type": "LinkClicked"}
        )

        assert response.status_code == 422

    def test_incomplete_event_is_422(self, client: TestClient):
        response = client.post("/events", json={"subject": ALICE, "url": "", "linkId": "0x1"})

        assert response.status_code == 422

    def test_write_failure_is_500(self, client: TestClient, state: RelayState, monkeypatch):
        def fail(record):
            raise RecordWriteError("disk full")

        monkeypatch.setattr(state, "ingest", fail)

        response = client.post("/events", json=_event(ALICE, "https://a.test/", "0x1"))

        assert response.status_code == 500

    def test_records_round_trip(self, client: TestClient):
        response = client.post("/records", json={"link": "https://a.test/", "wallet": ALICE})

        assert response.status_code == 201
        row = response.json()
        assert row["link"] == "https://a.test/"
        assert client.get("/records").json() == {"records": [row]}

    def test_record_requires_fields(self, client: TestClient):
        assert client.post("/records", json={"link": "https://a.test/"}).status_code == 422


@pytest.mark.integration
class TestRecordChannel:
    def test_init_data_then_broadcast(self, client: TestClient, state: RelayState):
        state.add_record("https://first.test/", BOB)

        with client.websocket_connect("/ws/records") as ws:
            init = ws.receive_json()
            assert init["type"] == "initData"
            assert [row["link"] for row in init["records"]] == ["https://first.test/"]

            ws.send_json({"type": "newLink", "link": "https://a.test/", "wallet": ALICE})
            pushed = ws.receive_json()

        assert pushed["type"] == "newLink"
        assert pushed["link"] == "https://a.test/"
        assert pushed["wallet"] == ALICE
        assert len(state.records) == 2

    def test_bad_message_gets_error_reply(self, client: TestClient, state: RelayState):
        with client.websocket_connect("/ws/records") as ws:
            ws.receive_json()
            ws.send_text("not json")
            reply = ws.receive_json()

        assert reply == {"type": "error", "detail": "message is not valid JSON"}
        assert state.records == []

    def test_disconnect_unsubscribes(self, client: TestClient, state: RelayState):
        with client.websocket_connect("/ws/records") as ws:
            ws.receive_json()
            ws.send_json({"type": "newLink", "link": "", "wallet": ALICE})
            assert ws.receive_json()["type"] == "error"

        assert client.get("/health").json()["record_observers"] == 0
