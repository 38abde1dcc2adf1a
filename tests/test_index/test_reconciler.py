"""Tests for the fallback reconciler."""

import pytest

from linkledger.errors import RelayError, ResolutionMiss
from linkledger.index.keys import normalize_key
from linkledger.index.reconciler import FallbackReconciler
from linkledger.index.snapshot import SnapshotLoader
from tests.fakes import ALICE, FakeRelay


@pytest.mark.unit
class TestFallbackReconciler:
    @pytest.mark.asyncio
    async def test_hit_makes_no_relay_request(self, cache):
        cache.put(normalize_key(ALICE, "https://a.test/"), "0x1")
        relay = FakeRelay()
        reconciler = FallbackReconciler(cache, SnapshotLoader(cache, relay))

        assert await reconciler.resolve(ALICE, "https://a.test/") == "0x1"
        assert relay.fetch_calls == 0

    @pytest.mark.asyncio
    async def test_hit_through_formatting_variant(self, cache):
        cache.put(normalize_key(ALICE, "https://a.test/"), "0x1")
        reconciler = FallbackReconciler(cache, SnapshotLoader(cache, FakeRelay()))

        assert await reconciler.resolve(ALICE.lower(), "HTTPS://A.TEST") == "0x1"

    @pytest.mark.asyncio
    async def test_miss_triggers_exactly_one_load(self, cache):
        relay = FakeRelay([{"subject": ALICE, "url": "https://a.test/", "linkId": "0x1"}])
        reconciler = FallbackReconciler(cache, SnapshotLoader(cache, relay))

        assert await reconciler.resolve(ALICE, "https://a.test/") == "0x1"
        assert relay.fetch_calls == 1

    @pytest.mark.asyncio
    async def test_absent_after_load_raises(self, cache):
        relay = FakeRelay()
        reconciler = FallbackReconciler(cache, SnapshotLoader(cache, relay))

        with pytest.raises(ResolutionMiss) as exc_info:
            await reconciler.resolve(ALICE, "https://nowhere.test/")

        assert relay.fetch_calls == 1
        assert exc_info.value.key == normalize_key(ALICE, "https://nowhere.test/")

    @pytest.mark.asyncio
    async def test_relay_down_still_raises_miss(self, cache):
        relay = FakeRelay()
        relay.fetch_error = RelayError(message="Relay request failed")
        reconciler = FallbackReconciler(cache, SnapshotLoader(cache, relay))

        with pytest.raises(ResolutionMiss):
            await reconciler.resolve(ALICE, "https://a.test/")
