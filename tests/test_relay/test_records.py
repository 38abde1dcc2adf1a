"""Unit tests for the relay's append-only JSONL log.

Each test writes into pytest's ``tmp_path`` so no test touches ``data/relay``.

Test organisation
-----------------
- :class:`TestAppend`    - happy path and argument validation.
- :class:`TestEnvelope`  - envelope fields and checksum.
- :class:`TestReadAll`   - replay, including torn and tampered lines.
- :class:`TestVerify`    - ok, empty and corrupt branches.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path

import pytest

from linkledger.relay.records import AppendOnlyLog, LogVerifyResult, RecordWriteError


@pytest.fixture
def log(tmp_path: Path) -> AppendOnlyLog:
    return AppendOnlyLog(tmp_path / "relay", "records")


def _lines(log: AppendOnlyLog) -> list[dict]:
    return [json.loads(line) for line in log.path.read_text(encoding="utf-8").splitlines()]


@pytest.mark.unit
class TestAppend:
    def test_creates_directory_and_file(self, log: AppendOnlyLog):
        entry_id = log.append("newLink", {"link": "https://a.test/", "wallet": "0xabc"})

        assert log.path.exists()
        assert len(entry_id) == 32
        assert int(entry_id, 16) >= 0

    def test_appends_one_line_per_entry(self, log: AppendOnlyLog):
        ids = [log.append("newLink", {"n": n}) for n in range(3)]

        assert [line["entry_id"] for line in _lines(log)] == ids

    def test_empty_name_rejected(self, tmp_path: Path):
        with pytest.raises(ValueError):
            AppendOnlyLog(tmp_path, "  ")

    def test_empty_entry_type_rejected(self, log: AppendOnlyLog):
        with pytest.raises(ValueError):
            log.append("", {"n": 1})
        assert not log.path.exists()

    def test_unserialisable_payload_raises_write_error(self, log: AppendOnlyLog):
        with pytest.raises(RecordWriteError):
            log.append("newLink", {"bad": object()})

    def test_filesystem_failure_raises_write_error(self, tmp_path: Path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")

        with pytest.raises(RecordWriteError):
            AppendOnlyLog(blocker, "records").append("newLink", {"n": 1})


@pytest.mark.unit
class TestEnvelope:
    def test_fields(self, log: AppendOnlyLog):
        log.append("LinkPosted", {"linkId": "0x1"})
        (envelope,) = _lines(log)

        assert envelope["log"] == "records"
        assert envelope["entry_type"] == "LinkPosted"
        assert envelope["schema_version"] == "1.0"
        assert envelope["data"] == {"linkId": "0x1"}
        assert envelope["timestamp"].endswith("+00:00")

    def test_checksum_covers_body(self, log: AppendOnlyLog):
        log.append("newLink", {"link": "https://a.test/"})
        (envelope,) = _lines(log)

        body = {k: v for k, v in envelope.items() if k != "_checksum"}
        canonical = json.dumps(body, ensure_ascii=False, sort_keys=True)
        expected = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
        assert envelope["_checksum"] == f"sha256:{expected}"


@pytest.mark.unit
class TestReadAll:
    def test_missing_file_is_empty(self, log: AppendOnlyLog):
        assert log.read_all() == []

    def test_replays_in_order(self, log: AppendOnlyLog):
        log.append("newLink", {"n": 1})
        log.append("newLink", {"n": 2})

        assert [entry["data"]["n"] for entry in log.read_all()] == [1, 2]

    def test_skips_torn_and_tampered_lines(self, log: AppendOnlyLog):
        log.append("newLink", {"n": 1})
        log.append("newLink", {"n": 2})
        lines = log.path.read_text(encoding="utf-8").splitlines()
        tampered = json.loads(lines[1])
        tampered["data"]["n"] = 99
        log.path.write_text(
            "\n".join([lines[0], json.dumps(tampered), "", '{"torn": ']) + "\n",
            encoding="utf-8",
        )

        assert [entry["data"]["n"] for entry in log.read_all()] == [1]


@pytest.mark.unit
class TestVerify:
    def test_empty_when_missing(self, log: AppendOnlyLog):
        assert log.verify() == LogVerifyResult(status="empty", last_entry_id=None, error_detail=None)

    def test_empty_when_blank(self, log: AppendOnlyLog):
        log.path.parent.mkdir(parents=True)
        log.path.write_text("")

        assert log.verify().status == "empty"

    def test_ok_reports_last_entry(self, log: AppendOnlyLog):
        log.append("newLink", {"n": 1})
        last = log.append("newLink", {"n": 2})

        result = log.verify()

        assert result.status == "ok"
        assert result.last_entry_id == last

    def test_corrupt_last_line(self, log: AppendOnlyLog):
        log.append("newLink", {"n": 1})
        with log.path.open("a", encoding="utf-8") as fh:
            fh.write('{"entry_id": "x", "_checksum": "sha256:0"}\n')

        result = log.verify()

        assert result.status == "corrupt"
        assert "checksum mismatch" in result.error_detail

    def test_missing_checksum(self, log: AppendOnlyLog):
        log.path.parent.mkdir(parents=True)
        log.path.write_text('{"entry_id": "x"}\n')

        result = log.verify()

        assert result.status == "corrupt"
        assert "_checksum" in result.error_detail
