"""
Error taxonomy for linkledger.

Every failure the package can surface derives from :class:`LinkLedgerError`.
The classes map onto two propagation policies:

    Contained (background synchronization)
        RelayError           - relay unreachable, non-2xx, malformed payload.
                               Snapshot and live-feed paths log it, record a
                               diagnostic, and carry on with the cache as-is.

    Surfaced (foreground operations)
        ResolutionMiss       - identifier still unknown after one snapshot
                               reconciliation.
        ConfirmationFailure  - a ledger write was rejected or never confirmed.
                               Never retried automatically.
        PreconditionFailure  - something required is missing (e.g. a signer)
                               before any network call was attempted.
        IdentifierConflict   - two different identifiers observed for the same
                               key; the ledger mints at most one, so this is an
                               invariant violation rather than an update.

Example:
    try:
        link_id = await client.post_link("https://example.com/")
    except ResolutionMiss as exc:
        print(f"not visible yet: {exc.key}")
"""

from __future__ import annotations

from dataclasses import dataclass


class LinkLedgerError(Exception):
    """Base class for all linkledger errors."""


# =============================================================================
# TRANSPORT
# =============================================================================


@dataclass
class RelayError(LinkLedgerError):
    """
    Raised when a request to the relay fails.

    Covers connection failures, non-2xx responses and payloads that do not
    decode into the expected shape.

    Attributes:
        message: Human-readable error message.
        status_code: HTTP status code, or 0 if no response was received.
        detail: Additional detail (server message or decoding error).
    """

    message: str
    status_code: int = 0
    detail: str = ""

    def __str__(self) -> str:
        """Return a formatted error message."""
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message


# Category name for every contained transport failure
TransportFailure = RelayError


# =============================================================================
# RESOLUTION
# =============================================================================


class ResolutionMiss(LinkLedgerError):
    """
    Raised when no identifier is visible for a (subject, url) pair.

    This does not mean the mapping does not exist on the ledger, only that it
    has not been observed after one reconciliation.  Callers decide whether to
    retry.

    Attributes:
        subject: The subject address as given by the caller.
        url: The URL as given by the caller.
        key: The normalized lookup key that missed.
    """

    def __init__(self, subject: str, url: str, key: str) -> None:
        self.subject = subject
        self.url = url
        self.key = key
        super().__init__(f"No identifier visible yet for {url!r} posted by {subject!r}")


class IdentifierConflict(LinkLedgerError):
    """
    Raised when a key is already mapped to a different identifier.

    Attributes:
        key: The normalized key.
        existing: Identifier already held by the cache.
        incoming: Identifier that was refused.
    """

    def __init__(self, key: str, existing: str, incoming: str) -> None:
        self.key = key
        self.existing = existing
        self.incoming = incoming
        super().__init__(
            f"Key {key!r} already maps to {existing!r}; refusing {incoming!r}"
        )


# =============================================================================
# LEDGER
# =============================================================================


class ConfirmationFailure(LinkLedgerError):
    """Raised by a ledger write handle when the write is rejected or unconfirmed."""


class PreconditionFailure(LinkLedgerError):
    """Raised before any network interaction when a requirement is missing."""
