"""
Shared pytest fixtures for the linkledger test suite.

This module provides fixtures that are automatically available to all test files:
- A fresh ResolutionCache and DiagnosticsLog per test
- A FakeRelay and a FakeLedger (see tests/fakes.py)
- Relay settings pointing at a host that respx intercepts
"""

import pytest

from linkledger.config import RelaySettings
from linkledger.errors import ConfirmationFailure
from linkledger.index.cache import ResolutionCache
from linkledger.index.diagnostics import DiagnosticsLog
from tests.fakes import RELAY_URL, FakeLedger, FakeRelay

# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def cache() -> ResolutionCache:
    """A fresh, empty resolution cache."""
    return ResolutionCache()


@pytest.fixture
def diagnostics() -> DiagnosticsLog:
    return DiagnosticsLog()


@pytest.fixture
def fake_relay() -> FakeRelay:
    return FakeRelay()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def relay_settings() -> RelaySettings:
    """Relay settings aimed at the respx-mocked host, with no reconnect delay."""
    return RelaySettings(base_url=RELAY_URL, timeout=5.0, reconnect_delay=0.0)


@pytest.fixture
def rejected() -> ConfirmationFailure:
    return ConfirmationFailure("execution reverted")
