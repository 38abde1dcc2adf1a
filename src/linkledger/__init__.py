"""linkledger - link identifier resolution against an append-only ledger.

A client posts URLs to a ledger that mints one opaque identifier per
(subject, url) pair.  The identifier is only discoverable after the write is
confirmed, so this package keeps a local index (the resolution cache) warm
from a relay that mirrors the ledger's events, and reconciles misses against
the relay's snapshot.

Version Management
------------------
``__version__`` is read from the installed package metadata at import time.
The single source of truth is the ``version`` field in ``pyproject.toml``.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

# ---------------------------------------------------------------------------
# Package version - read from pyproject.toml via importlib.metadata.
#
# If the package is imported without being installed (e.g. straight from a
# source checkout), fall back to the version pinned below.
# ---------------------------------------------------------------------------
try:
    __version__: str = version("linkledger")
except PackageNotFoundError:
    __version__ = "0.3.0"
