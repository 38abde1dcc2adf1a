"""
High-level client: ledger writes and reads with identifier resolution.

:class:`LinkLedgerClient` owns the resolution cache and wires every index
component around it:

    ResolutionCache  <-  SnapshotLoader       (start, and on demand)
                     <-  LiveEventSubscriber  (background task)
                     <-  DirectWriteResolver  (post_link)
                     ->  FallbackReconciler   (click, get_link_stats)

The client must be used as an async context manager; entering starts the
initial snapshot load and the live subscription, leaving cancels the
subscription and closes the relay connection pool:

    async with LinkLedgerClient(ledger, RelayClient(settings)) as client:
        link_id = await client.post_link("https://example.com/")
        await client.click("https://example.com/", subject)

The ledger is optional so read-only tools can resolve identifiers from the
relay alone.  Ledger operations without a ledger raise
:exc:`~linkledger.errors.PreconditionFailure` before any network call.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from linkledger.errors import ConfirmationFailure, PreconditionFailure
from linkledger.index.cache import ResolutionCache
from linkledger.index.diagnostics import DiagnosticsLog
from linkledger.index.direct_write import DirectWriteResolver
from linkledger.index.reconciler import FallbackReconciler
from linkledger.index.snapshot import SnapshotLoader
from linkledger.index.subscriber import LiveEventSubscriber
from linkledger.ledger import Ledger, LedgerEvents, Unsubscribe
from linkledger.relay.client import RelayClient
from linkledger.types import (
    Baseline,
    ClickNotice,
    LedgerEvent,
    LinkStats,
    SubjectStats,
    VoteNotice,
)

logger = logging.getLogger(__name__)


class LinkLedgerClient:
    """
    Ledger client with a relay-backed identifier index.

    Attributes:
        cache: The resolution cache shared by all components.
        diagnostics: Contained background failures.
        loader, subscriber, reconciler: The index components.
    """

    def __init__(
        self,
        ledger: Ledger | None,
        relay: RelayClient,
        cache: ResolutionCache | None = None,
        diagnostics: DiagnosticsLog | None = None,
    ) -> None:
        self.ledger = ledger
        self.relay = relay
        self.cache = cache if cache is not None else ResolutionCache()
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticsLog()
        self.loader = SnapshotLoader(self.cache, relay, self.diagnostics)
        self.subscriber = LiveEventSubscriber(
            self.cache,
            relay,
            self.diagnostics,
            reconnect_delay=relay.settings.reconnect_delay,
        )
        self.reconciler = FallbackReconciler(self.cache, self.loader)
        self._listeners: list[Unsubscribe] = []

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> LinkLedgerClient:
        await self.relay.__aenter__()
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def start(self, *, live: bool = True) -> None:
        """Load the initial snapshot and, unless ``live`` is False, follow the live feed."""
        await self.loader.load()
        if live:
            self.subscriber.start()

    async def close(self) -> None:
        """Stop listeners and the live subscription, then close the relay client."""
        listeners, self._listeners = self._listeners, []
        try:
            for unsubscribe in listeners:
                unsubscribe()
        finally:
            await self.subscriber.close()
            await self.relay.aclose()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def connect_wallet(self) -> str:
        """
        Return the signer address and make sure it has joined.

        A rejected ``join`` usually means the account is already a member, so
        it is logged and the address is still returned.

        Raises:
            PreconditionFailure: If there is no ledger or no signer.
        """
        ledger = self._require_ledger()
        address = await ledger.signer_address()
        if not address:
            raise PreconditionFailure("No signer is attached to the ledger")
        logger.info("Wallet connected: %s", address)
        try:
            await self.join()
        except ConfirmationFailure as exc:
            logger.warning("join() was not confirmed for %s: %s", address, exc)
        return address

    async def join(self) -> str:
        """Join the ledger; returns the transaction hash."""
        pending = await self._require_ledger().join()
        receipt = await pending.wait()
        return receipt.tx_hash

    async def post_link(self, url: str) -> str:
        """Post ``url`` and return its newly minted identifier."""
        resolver = DirectWriteResolver(self.cache, self.loader, self._require_ledger())
        return await resolver.post_link(url)

    async def click(self, url: str, subject: str) -> str:
        """
        Click the link ``url`` posted by ``subject``; returns the transaction hash.

        Raises:
            ResolutionMiss: If the link's identifier is not visible yet.
        """
        ledger = self._require_ledger()
        link_id = await self.reconciler.resolve(subject, url)
        pending = await ledger.click(link_id)
        receipt = await pending.wait()
        return receipt.tx_hash

    async def report(self, subject: str) -> str:
        """Report ``subject``; returns the transaction hash."""
        pending = await self._require_ledger().report(subject)
        receipt = await pending.wait()
        return receipt.tx_hash

    async def vote(self, subject: str, support: bool) -> str | None:
        """
        Vote on ``subject``.

        The ledger only records negative votes (reports); a supporting vote
        is accepted and does nothing.
        """
        if support:
            return None
        return await self.report(subject)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_baseline(self) -> Baseline:
        ledger = self._require_ledger()
        members, frozen = await asyncio.gather(ledger.baseline_members(), ledger.baseline_frozen())
        return Baseline(members=int(members), frozen=bool(frozen))

    async def get_subject_stats(self, subject: str) -> SubjectStats:
        """
        Collect trust statistics for ``subject``.

        Raises:
            PreconditionFailure: If the ledger exposes no subject-state read.
        """
        ledger = self._require_ledger()
        get_subject_state = getattr(ledger, "get_subject_state", None)
        if get_subject_state is None:
            raise PreconditionFailure("The ledger does not expose get_subject_state")

        state, reports, penalty, threshold, trusted = await asyncio.gather(
            get_subject_state(subject),
            ledger.subject_report_count(subject),
            ledger.penalty_bps(subject),
            ledger.current_threshold_bps(subject),
            ledger.is_trusted(subject),
        )
        return SubjectStats(
            reports=int(reports),
            penalty_bps=int(penalty),
            threshold_bps=int(threshold),
            finalized=bool(state.finalized),
            trusted=bool(trusted),
            finalized_at=int(state.finalized_at),
        )

    async def get_link_stats(self, url: str, subject: str) -> LinkStats:
        """
        Click statistics for the link ``url`` posted by ``subject``.

        Raises:
            ResolutionMiss: If the link's identifier is not visible yet.
        """
        ledger = self._require_ledger()
        link_id = await self.reconciler.resolve(subject, url)
        meta = await ledger.get_link_meta(link_id)
        return LinkStats(link_id=link_id, clicks=int(meta.clicks), exists=bool(meta.exists))

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def listen_click_events(self, callback: Callable[[ClickNotice], None]) -> Unsubscribe:
        """Call ``callback`` for every ``LinkClicked`` event."""
        ledger = self._require_ledger()

        def on_click(event: LedgerEvent) -> None:
            args = event.args
            callback(
                ClickNotice(
                    link_id=args["linkId"], clicker=args["clicker"], clicks=int(args["clicks"])
                )
            )

        return self._track(ledger.on(LedgerEvents.LINK_CLICKED, on_click))

    def listen_vote_events(self, callback: Callable[[VoteNotice], None]) -> Unsubscribe:
        """
        Call ``callback`` for every report (negative vote) and finalization
        (positive vote).
        """
        ledger = self._require_ledger()

        def on_report(event: LedgerEvent) -> None:
            args = event.args
            callback(
                VoteNotice(
                    voter=args["reporter"],
                    target=args["subject"],
                    support=False,
                    total_reports=int(args["totalReports"]),
                    penalty_bps=int(args["penaltyBps"]),
                )
            )

        def on_finalized(event: LedgerEvent) -> None:
            args = event.args
            callback(
                VoteNotice(
                    voter=None,
                    target=args["subject"],
                    support=True,
                    finalized_by=args["linkId"],
                )
            )

        unsubscribers = [
            ledger.on(LedgerEvents.SUBJECT_REPORTED, on_report),
            ledger.on(LedgerEvents.SUBJECT_FINALIZED, on_finalized),
        ]

        def unsubscribe() -> None:
            for fn in unsubscribers:
                fn()

        return self._track(unsubscribe)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _require_ledger(self) -> Ledger:
        if self.ledger is None:
            raise PreconditionFailure("No ledger is configured; this client is read-only")
        return self.ledger

    def _track(self, unsubscribe: Unsubscribe) -> Unsubscribe:
        # Wrapped so a caller's unsubscribe and close() can both run safely.
        done = False

        def once() -> None:
            nonlocal done
            if not done:
                done = True
                unsubscribe()

        self._listeners.append(once)
        return once
