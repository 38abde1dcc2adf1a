"""
HTTP client for the linkledger relay.

The relay mirrors the ledger's mint events for fast querying.  This client
covers both of its read surfaces plus the two write endpoints:

    GET  /links     snapshot of every known mapping
    GET  /stream    server-sent events, one JSON message per mint
    POST /events    indexer ingest of a LinkPosted event
    POST /records   append a row to the relay's record log

The client is designed to be used as an async context manager to ensure
proper resource cleanup:

    async with RelayClient(settings) as relay:
        records = await relay.fetch_links()
        async for message in relay.iter_messages():
            ...

Every failure (connection error, non-2xx, undecodable body) is raised as
:exc:`~linkledger.errors.RelayError`.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import httpx

from linkledger.config import RelaySettings
from linkledger.errors import RelayError
from linkledger.types import LinkRecord, RelayRecord


@dataclass
class RelayClient:
    """
    Async HTTP client for the relay.

    Attributes:
        settings: Relay URL, timeout and reconnect settings.

    Example:
        async with RelayClient(RelaySettings(base_url="http://localhost:3000")) as relay:
            for payload in await relay.fetch_links():
                print(payload["url"], payload["linkId"])
    """

    settings: RelaySettings

    # Private attributes for the HTTP client
    _http_client: httpx.AsyncClient | None = field(default=None, repr=False)

    # -------------------------------------------------------------------------
    # Context Manager Protocol
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> RelayClient:
        """Create the underlying httpx.AsyncClient with the configured timeout."""
        self._http_client = httpx.AsyncClient(
            base_url=self.settings.base_url,
            timeout=self.settings.timeout,
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Close the underlying HTTP client connection pool."""
        await self.aclose()

    async def aclose(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        """
        Get the HTTP client, ensuring it's been initialized.

        Raises:
            RuntimeError: If accessed outside of async context manager.
        """
        if self._http_client is None:
            raise RuntimeError(
                "RelayClient must be used as an async context manager. "
                "Use 'async with RelayClient(settings) as relay:'"
            )
        return self._http_client

    # -------------------------------------------------------------------------
    # Snapshot
    # -------------------------------------------------------------------------

    async def fetch_links(self) -> list[Any]:
        """
        Fetch the raw ``links`` array from ``GET /links``.

        Items are returned undecoded so the caller can skip malformed ones
        individually (see :meth:`LinkRecord.from_wire`).

        Raises:
            RelayError: If the request fails, the body is not JSON, or the
                body has no ``links`` array.
        """
        data = await self._request_json("GET", "/links")
        links = data.get("links") if isinstance(data, dict) else None
        if not isinstance(links, list):
            raise RelayError(
                message="Malformed snapshot",
                status_code=200,
                detail="response has no 'links' array",
            )
        return links

    # -------------------------------------------------------------------------
    # Live feed
    # -------------------------------------------------------------------------

    async def iter_messages(self) -> AsyncIterator[str]:
        """
        Stream ``GET /stream`` and yield the data of each server-sent event.

        Multi-line ``data:`` fields are joined with newlines; comments
        (heartbeats) and events with a non-default ``event:`` name are
        skipped.  The iterator ends when the server closes the stream.

        The configured timeout still bounds connecting, but reads have no
        timeout: an idle feed is silent between heartbeats for as long as
        the relay likes.

        Raises:
            RelayError: If the connection fails or the relay answers non-2xx.
        """
        try:
            async with self.http_client.stream(
                "GET",
                "/stream",
                headers={"Accept": "text/event-stream"},
                timeout=httpx.Timeout(self.settings.timeout, read=None),
            ) as response:
                if response.status_code != 200:
                    raise RelayError(
                        message="Live feed refused",
                        status_code=response.status_code,
                    )
                data_lines: list[str] = []
                event_name = ""
                async for line in response.aiter_lines():
                    if not line:
                        if data_lines and event_name in ("", "message"):
                            yield "\n".join(data_lines)
                        data_lines = []
                        event_name = ""
                        continue
                    if line.startswith(":"):
                        continue
                    name, _, value = line.partition(":")
                    if value.startswith(" "):
                        value = value[1:]
                    if name == "data":
                        data_lines.append(value)
                    elif name == "event":
                        event_name = value
                if data_lines and event_name in ("", "message"):
                    yield "\n".join(data_lines)
        except httpx.HTTPError as e:
            raise RelayError(
                message="Live feed connection failed",
                detail=f"{self.settings.base_url}/stream: {e}",
            ) from e

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def publish_event(self, record: LinkRecord) -> dict[str, Any]:
        """Report a LinkPosted event to the relay (used by indexers)."""
        return await self._request_json(
            "POST", "/events", json={"type": "LinkPosted", **record.to_wire()}
        )

    async def submit_record(self, link: str, wallet: str) -> RelayRecord:
        """Append a row to the relay's record log and return it as stored."""
        data = await self._request_json("POST", "/records", json={"link": link, "wallet": wallet})
        try:
            return RelayRecord(link=data["link"], wallet=data["wallet"], time=data["time"])
        except (KeyError, TypeError) as e:
            raise RelayError(
                message="Malformed record response",
                status_code=200,
                detail=str(e),
            ) from e

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _request_json(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self.http_client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise RelayError(
                message="Relay request failed",
                detail=f"Cannot reach relay at {self.settings.base_url}: {e}",
            ) from e

        try:
            data = response.json()
        except ValueError as e:
            raise RelayError(
                message="Relay returned invalid JSON",
                status_code=response.status_code,
                detail=f"{method} {path}",
            ) from e

        if not response.is_success:
            detail = data.get("detail", "") if isinstance(data, dict) else ""
            raise RelayError(
                message=f"{method} {path} failed",
                status_code=response.status_code,
                detail=str(detail),
            )
        return data
