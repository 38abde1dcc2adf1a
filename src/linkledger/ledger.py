"""
Ledger collaborator contract.

The ledger is the external, append-only system of record (a smart contract on
the reference deployment).  linkledger never talks to it directly: callers
inject an object implementing :class:`Ledger`, which owns the transport and
the signer.  This module only pins down the shape of that object.

=============================================================================
WRITES
=============================================================================

Every write returns a :class:`PendingWrite`.  Nothing about the write is
known until ``await pending.wait()`` returns a :class:`Receipt`; the receipt
carries the raw logs the write emitted.  A rejected or unconfirmed write
raises :exc:`~linkledger.errors.ConfirmationFailure` from ``wait()`` and is
never retried by linkledger.

=============================================================================
READS
=============================================================================

Reads are plain async queries with no caching.

=============================================================================
EVENTS
=============================================================================

    ledger.parse_log(log)          -> LedgerEvent, or ValueError if the log
                                      does not belong to the ledger's ABI
    ledger.on("LinkClicked", fn)   -> unsubscribe callable
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from linkledger.types import LedgerEvent, LinkMeta, SubjectState

# An unsubscribe function takes no args and returns nothing
Unsubscribe = Callable[[], None]

# Ledger event handlers receive the decoded event
LedgerEventHandler = Callable[[LedgerEvent], None]


class LedgerEvents:
    """Event names emitted by the ledger."""

    LINK_POSTED = "LinkPosted"
    """
    A new identifier was minted.

    Args: {"linkId": str, "subject": str, "url": str, "subjectPostSeq": int}
    """

    LINK_CLICKED = "LinkClicked"
    """Args: {"linkId": str, "clicker": str, "clicks": int}"""

    SUBJECT_REPORTED = "SubjectReported"
    """Args: {"reporter": str, "subject": str, "totalReports": int, "penaltyBps": int}"""

    SUBJECT_FINALIZED = "SubjectFinalized"
    """Args: {"subject": str, "linkId": str, "clicksOnLink": int, "baselineMembers": int}"""


@dataclass(frozen=True)
class Receipt:
    """
    Confirmation of a ledger write.

    Attributes:
        tx_hash: Transaction hash of the confirmed write.
        logs: Raw logs emitted by the write, in emission order.  Decode them
              with :meth:`Ledger.parse_log`.
    """

    tx_hash: str
    logs: tuple[Any, ...] = field(default_factory=tuple)


class PendingWrite(Protocol):
    """Handle for a submitted write that has not been confirmed yet."""

    async def wait(self) -> Receipt:
        """Block until the write is confirmed; raise ConfirmationFailure otherwise."""
        ...


class Ledger(Protocol):
    """The operations linkledger needs from the ledger."""

    async def signer_address(self) -> str | None:
        """Return the address of the attached signer, or ``None`` if there is none."""
        ...

    # -- writes ---------------------------------------------------------------

    async def join(self) -> PendingWrite: ...

    async def post_link(self, url: str) -> PendingWrite: ...

    async def click(self, link_id: str) -> PendingWrite: ...

    async def report(self, subject: str) -> PendingWrite: ...

    # -- reads ----------------------------------------------------------------

    async def is_trusted(self, subject: str) -> bool: ...

    async def current_threshold_bps(self, subject: str) -> int: ...

    async def penalty_bps(self, subject: str) -> int: ...

    async def subject_report_count(self, subject: str) -> int: ...

    async def baseline_members(self) -> int: ...

    async def baseline_frozen(self) -> bool: ...

    async def get_link_meta(self, link_id: str) -> LinkMeta: ...

    # -- events ---------------------------------------------------------------

    def parse_log(self, log: Any) -> LedgerEvent: ...

    def on(self, event_name: str, handler: LedgerEventHandler) -> Unsubscribe: ...


class SubjectStateReader(Protocol):
    """
    Optional extension of :class:`Ledger`.

    Not every ledger deployment exposes the subject-state read; callers check
    for it with ``hasattr`` before use.
    """

    async def get_subject_state(self, subject: str) -> SubjectState: ...
