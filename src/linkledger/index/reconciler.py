"""
Fallback reconciler: resolve an identifier the caller expects to exist.

On a cache miss the reconciler triggers exactly one snapshot load and looks
again.  If the key is still absent it raises
:exc:`~linkledger.errors.ResolutionMiss`.  "Does not exist" and "not observed
yet" are deliberately not told apart, and there is no retry loop; retrying is
the caller's decision.
"""

from __future__ import annotations

import logging

from linkledger.errors import ResolutionMiss
from linkledger.index.cache import ResolutionCache
from linkledger.index.keys import normalize_key
from linkledger.index.snapshot import SnapshotLoader

logger = logging.getLogger(__name__)


class FallbackReconciler:
    """Cache lookup with a single snapshot refresh on a miss."""

    def __init__(self, cache: ResolutionCache, loader: SnapshotLoader) -> None:
        self.cache = cache
        self.loader = loader

    async def resolve(self, subject: str, url: str) -> str:
        """
        Return the identifier for ``(subject, url)``.

        Raises:
            ResolutionMiss: If the mapping is not visible after one refresh.
        """
        key = normalize_key(subject, url)
        identifier = self.cache.get(key)
        if identifier is not None:
            return identifier

        logger.debug("Cache miss for %s, reloading snapshot", key)
        await self.loader.load()

        identifier = self.cache.get(key)
        if identifier is None:
            raise ResolutionMiss(subject, url, key)
        return identifier
