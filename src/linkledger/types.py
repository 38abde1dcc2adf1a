"""
Data types shared across linkledger.

All types are frozen dataclasses: they describe facts observed on the ledger
or the relay and are never mutated after creation.

Wire format
-----------
The relay speaks JSON with camelCase identifier fields, mirroring the ledger's
event arguments::

    {"subject": "0xabc...", "url": "https://example.com/", "linkId": "0x1f..."}

:meth:`LinkRecord.from_wire` and :meth:`LinkRecord.to_wire` are the only
places that know about the wire names.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# =============================================================================
# LEDGER-MIRRORED RECORDS
# =============================================================================


@dataclass(frozen=True)
class LinkRecord:
    """
    One minted mapping: ``(subject, url) -> link_id``.

    Attributes:
        subject: Address of the account that posted the URL.
        url: The URL exactly as posted.
        link_id: Identifier minted by the ledger.
    """

    subject: str
    url: str
    link_id: str

    @classmethod
    def from_wire(cls, payload: Any) -> LinkRecord:
        """
        Build a record from a relay JSON object.

        Raises:
            ValueError: If the payload is not an object or a field is missing
                or not a non-empty string.
        """
        if not isinstance(payload, dict):
            raise ValueError(f"link record must be an object, got {type(payload).__name__}")
        values = {}
        for wire_name in ("subject", "url", "linkId"):
            value = payload.get(wire_name)
            if not isinstance(value, str) or not value:
                raise ValueError(f"link record field {wire_name!r} missing or not a string")
            values[wire_name] = value
        return cls(subject=values["subject"], url=values["url"], link_id=values["linkId"])

    def to_wire(self) -> dict[str, str]:
        """Return the relay JSON representation."""
        return {"subject": self.subject, "url": self.url, "linkId": self.link_id}


@dataclass(frozen=True)
class LedgerEvent:
    """
    An event decoded from a receipt log or a ledger subscription.

    Attributes:
        name: Event name, one of :class:`~linkledger.ledger.LedgerEvents`.
        args: Decoded event arguments keyed by parameter name.
    """

    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RelayRecord:
    """A row of the relay's record log: who shared which link, and when."""

    link: str
    wallet: str
    time: str

    def to_wire(self) -> dict[str, str]:
        return {"link": self.link, "wallet": self.wallet, "time": self.time}


# =============================================================================
# READ RESULTS
# =============================================================================


@dataclass(frozen=True)
class LinkMeta:
    """Ledger-side metadata for one identifier."""

    subject: str
    url: str
    clicks: int
    exists: bool


@dataclass(frozen=True)
class LinkStats:
    """Click statistics for a resolved link."""

    link_id: str
    clicks: int
    exists: bool


@dataclass(frozen=True)
class SubjectState:
    """Finalization state of a subject as stored on the ledger."""

    finalized: bool
    trusted: bool
    finalized_at: int


@dataclass(frozen=True)
class SubjectStats:
    """Aggregated trust statistics for a subject."""

    reports: int
    penalty_bps: int
    threshold_bps: int
    finalized: bool
    trusted: bool
    finalized_at: int


@dataclass(frozen=True)
class Baseline:
    """Ledger-wide baseline membership."""

    members: int
    frozen: bool


# =============================================================================
# LISTENER PAYLOADS
# =============================================================================


@dataclass(frozen=True)
class ClickNotice:
    """Delivered to click listeners for every ``LinkClicked`` event."""

    link_id: str
    clicker: str
    clicks: int


@dataclass(frozen=True)
class VoteNotice:
    """
    Delivered to vote listeners.

    A ``SubjectReported`` event becomes a negative vote (``support=False``)
    carrying the report totals; a ``SubjectFinalized`` event becomes a
    positive one (``support=True``) carrying the finalizing link.
    """

    voter: str | None
    target: str
    support: bool
    total_reports: int | None = None
    penalty_bps: int | None = None
    finalized_by: str | None = None
