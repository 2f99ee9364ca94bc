"""
Feature Cache

LRU cache in front of a feature store. The cache is an explicit object
owned by whoever builds it (normally ``RecommendationService``) and is
invalidated per track when user events arrive.
"""

import asyncio
from collections import OrderedDict
from typing import Dict, List, Optional

import structlog

from ..models.track_models import AggregatedFeatures, AudioFeatures
from .collaborators import FeatureStore

logger = structlog.get_logger(__name__)


class CachedFeatureStore(FeatureStore):
    """
    Feature store wrapper with a bounded LRU of aggregated features.

    Only full ``get`` results are cached; ``get_audio`` is answered from
    the cache when possible and passed through otherwise.
    """

    def __init__(self, inner: FeatureStore, max_size: int = 500):
        self.inner = inner
        self.max_size = max_size
        self._entries: "OrderedDict[str, AggregatedFeatures]" = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.logger = logger.bind(component="FeatureCache")

    async def get(self, track_id: str) -> AggregatedFeatures:
        cached = self._entries.get(track_id)
        if cached is not None:
            self._entries.move_to_end(track_id)
            self.hits += 1
            return cached

        self.misses += 1
        features = await self.inner.get(track_id)
        self._store(track_id, features)
        return features

    async def get_audio(self, track_id: str) -> Optional[AudioFeatures]:
        cached = self._entries.get(track_id)
        if cached is not None:
            self._entries.move_to_end(track_id)
            self.hits += 1
            return cached.audio
        return await self.inner.get_audio(track_id)

    async def prefetch(self, track_ids: List[str]) -> None:
        missing = [tid for tid in dict.fromkeys(track_ids) if tid not in self._entries]
        if not missing:
            return

        await self.inner.prefetch(missing)
        results = await asyncio.gather(
            *(self.inner.get(tid) for tid in missing),
            return_exceptions=True
        )

        failed = 0
        for track_id, result in zip(missing, results):
            if isinstance(result, Exception):
                failed += 1
                continue
            self._store(track_id, result)

        self.logger.debug("Features prefetched", requested=len(missing), failed=failed)

    def invalidate(self, track_id: str) -> bool:
        removed = self._entries.pop(track_id, None) is not None
        if removed:
            self.logger.debug("Feature cache entry invalidated", track_id=track_id)
        return removed

    def clear(self) -> None:
        self._entries.clear()
        self.logger.info("Feature cache cleared")

    def get_stats(self) -> Dict[str, int]:
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
        }

    def __contains__(self, track_id: str) -> bool:
        return track_id in self._entries

    def _store(self, track_id: str, features: AggregatedFeatures) -> None:
        self._entries[track_id] = features
        self._entries.move_to_end(track_id)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
