"""Index package - the identifier-resolution cache and what keeps it current.

Public surface
--------------
- :func:`normalize_key`          - canonical cache key for a (subject, url) pair.
- :class:`ResolutionCache`       - append-only key -> identifier mapping.
- :class:`SnapshotLoader`        - merge the relay's full snapshot.
- :class:`LiveEventSubscriber`   - merge the relay's live feed.
- :class:`DirectWriteResolver`   - resolve from a write's own receipt.
- :class:`FallbackReconciler`    - one snapshot refresh on a miss, then fail.
- :class:`DiagnosticsLog`        - contained background failures.

Design notes
------------
- Background paths (snapshot, live feed) never raise; they record a
  :class:`SyncDiagnostic` and log a warning.
- Foreground paths (direct write, reconciler) always raise on failure.
- The cache is owned by the caller and injected into every component.
"""

from linkledger.index.cache import ResolutionCache
from linkledger.index.diagnostics import DiagnosticKinds, DiagnosticsLog, SyncDiagnostic
from linkledger.index.direct_write import DirectWriteResolver
from linkledger.index.keys import normalize_key, normalize_subject, normalize_url, split_key
from linkledger.index.reconciler import FallbackReconciler
from linkledger.index.snapshot import SnapshotLoader
from linkledger.index.subscriber import LiveEventSubscriber

__all__ = [
    "DiagnosticKinds",
    "DiagnosticsLog",
    "DirectWriteResolver",
    "FallbackReconciler",
    "LiveEventSubscriber",
    "ResolutionCache",
    "SnapshotLoader",
    "SyncDiagnostic",
    "normalize_key",
    "normalize_subject",
    "normalize_url",
    "split_key",
]
