"""Tests for the wire decoding of link records."""

import pytest

from linkledger.types import LinkRecord


@pytest.mark.unit
class TestLinkRecordWire:
    def test_from_wire(self):
        record = LinkRecord.from_wire(
            {"subject": "0xabc", "url": "https://a.test/", "linkId": "0x1", "extra": 1}
        )

        assert record == LinkRecord(subject="0xabc", url="https://a.test/", link_id="0x1")
        assert record.to_wire() == {"subject": "0xabc", "url": "https://a.test/", "linkId": "0x1"}

    @pytest.mark.parametrize(
        "payload",
        [
            None,
            ["0xabc", "https://a.test/", "0x1"],
            {"subject": "0xabc", "url": "https://a.test/"},
            {"subject": "0xabc", "url": "https://a.test/", "linkId": 1},
            {"subject": "", "url": "https://a.test/", "linkId": "0x1"},
        ],
    )
    def test_rejects_malformed_payloads(self, payload):
        with pytest.raises(ValueError):
            LinkRecord.from_wire(payload)
