"""
Direct-write resolver: read a freshly minted identifier off the write receipt.

When the client posts a link itself, the receipt of that write already holds
the ``LinkPosted`` event with the exact identifier the ledger committed.
Reading it there avoids racing the relay's propagation delay:

1. Submit ``post_link(url)`` and wait for confirmation.
   ConfirmationFailure propagates untouched; the write is never retried.
2. Decode the receipt logs.  Logs that do not decode, and events other than
   ``LinkPosted``, are skipped.
3. Found: merge into the cache and return.  No relay request is made.
4. Not found: load the snapshot once, then look up ``(signer, url)``.  Still
   absent raises :exc:`~linkledger.errors.ResolutionMiss`.

The resolver returns the correct identifier or fails; it never guesses.
"""

from __future__ import annotations

import logging
from typing import Any

from linkledger.errors import PreconditionFailure, ResolutionMiss
from linkledger.index.cache import ResolutionCache
from linkledger.index.keys import normalize_key
from linkledger.index.snapshot import SnapshotLoader
from linkledger.ledger import Ledger, LedgerEvents, Receipt
from linkledger.types import LinkRecord

logger = logging.getLogger(__name__)


class DirectWriteResolver:
    """Post a link and resolve its identifier from the confirmation receipt."""

    def __init__(self, cache: ResolutionCache, loader: SnapshotLoader, ledger: Ledger) -> None:
        self.cache = cache
        self.loader = loader
        self.ledger = ledger

    async def post_link(self, url: str) -> str:
        """
        Post ``url`` to the ledger and return its identifier.

        Raises:
            PreconditionFailure: If the ledger has no signer.
            ConfirmationFailure: If the write is rejected or unconfirmed.
            ResolutionMiss: If neither the receipt nor a snapshot yields it.
            IdentifierConflict: If the cache holds another identifier for the
                key, which means the ledger minted twice.
        """
        signer = await self.ledger.signer_address()
        if not signer:
            raise PreconditionFailure("A signer is required to post a link")

        pending = await self.ledger.post_link(url)
        receipt = await pending.wait()

        record = self.find_minted(receipt)
        if record is not None:
            self.cache.put(normalize_key(record.subject, record.url), record.link_id)
            logger.info("Posted %s as %s (tx %s)", record.url, record.link_id, receipt.tx_hash)
            return record.link_id

        logger.warning(
            "Receipt %s carried no %s event, falling back to relay snapshot",
            receipt.tx_hash,
            LedgerEvents.LINK_POSTED,
        )
        await self.loader.load()
        key = normalize_key(signer, url)
        identifier = self.cache.get(key)
        if identifier is None:
            raise ResolutionMiss(signer, url, key)
        return identifier

    def find_minted(self, receipt: Receipt) -> LinkRecord | None:
        """Return the first ``LinkPosted`` record in ``receipt``, if any."""
        for log in receipt.logs:
            try:
                event = self.ledger.parse_log(log)
            except ValueError:
                # Logs from other contracts in the same transaction.
                continue
            if event.name != LedgerEvents.LINK_POSTED:
                continue
            record = _record_from_args(event.args)
            if record is not None:
                return record
            logger.warning("Ignoring %s event with incomplete args: %r", event.name, event.args)
        return None


def _record_from_args(args: dict[str, Any]) -> LinkRecord | None:
    link_id, subject, url = args.get("linkId"), args.get("subject"), args.get("url")
    if not all(isinstance(value, str) and value for value in (link_id, subject, url)):
        return None
    return LinkRecord(subject=subject, url=url, link_id=link_id)
