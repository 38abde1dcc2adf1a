"""Relay package - client and server for the ledger mirror.

Public surface
--------------
- :class:`RelayClient` - async httpx client for the relay endpoints.
- :func:`create_app`   - FastAPI application serving the relay endpoints.
- :class:`RelayState`  - in-memory relay state backed by append-only logs.

Design notes
------------
- The relay mirrors ``LinkPosted`` events: a snapshot endpoint and a
  server-sent live feed, both in mint order.
- It also keeps a record log of shared links, pushed to every connected
  websocket observer.
- Both logs are append-only JSONL files; the in-memory state is replayed from
  them at startup.
"""

from linkledger.relay.client import RelayClient
from linkledger.relay.server import RelayState, create_app

__all__ = [
    "RelayClient",
    "RelayState",
    "create_app",
]
