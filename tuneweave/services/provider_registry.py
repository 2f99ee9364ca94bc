"""
Feature Provider Registry

Providers declare a fixed set of capabilities when they register; the
registry answers "who can supply X" by capability, highest priority
first. ``RegistryFeatureStore`` turns the registry into a feature store
by asking, per feature group, each capable provider in turn until one
returns data.
"""

import asyncio
from abc import ABC
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

import structlog

from ..models.track_models import (
    AggregatedFeatures,
    AudioFeatures,
    EmotionFeatures,
    LyricsFeatures,
)
from .collaborators import FeatureStore

logger = structlog.get_logger(__name__)


class FeatureCapability(Enum):
    AUDIO_ANALYSIS = "audio_analysis"
    EMOTION_DETECTION = "emotion_detection"
    LYRICS_ANALYSIS = "lyrics_analysis"
    SIMILARITY = "similarity"


# Provider method serving each capability
CAPABILITY_METHODS: Dict[FeatureCapability, str] = {
    FeatureCapability.AUDIO_ANALYSIS: "get_audio_features",
    FeatureCapability.EMOTION_DETECTION: "get_emotion_features",
    FeatureCapability.LYRICS_ANALYSIS: "get_lyrics_features",
    FeatureCapability.SIMILARITY: "get_similar_tracks",
}


class FeatureProvider(ABC):
    """
    Base class for pre-computed feature providers.

    Subclasses set ``provider_id`` and ``capabilities`` and override the
    methods matching their capabilities.
    """

    provider_id: str = "provider"
    priority: int = 100
    capabilities: FrozenSet[FeatureCapability] = frozenset()

    async def get_audio_features(self, track_id: str) -> Optional[AudioFeatures]:
        return None

    async def get_emotion_features(self, track_id: str) -> Optional[EmotionFeatures]:
        return None

    async def get_lyrics_features(self, track_id: str) -> Optional[LyricsFeatures]:
        return None

    async def get_similar_tracks(self, track_id: str, limit: int) -> List[str]:
        return []

    async def dispose(self) -> None:
        return None


class ProviderRegistry:
    """Capability-keyed registry of feature providers."""

    def __init__(self):
        self._providers: Dict[str, FeatureProvider] = {}
        self.logger = logger.bind(component="ProviderRegistry")

    def register(self, provider: FeatureProvider) -> None:
        """Register a provider, replacing any provider with the same id."""
        self._providers[provider.provider_id] = provider
        self.logger.info(
            "Provider registered",
            provider_id=provider.provider_id,
            priority=provider.priority,
            capabilities=sorted(c.value for c in provider.capabilities)
        )

    def unregister(self, provider_id: str) -> Optional[FeatureProvider]:
        provider = self._providers.pop(provider_id, None)
        if provider is not None:
            self.logger.info("Provider unregistered", provider_id=provider_id)
        return provider

    def providers_for(self, capability: FeatureCapability) -> List[FeatureProvider]:
        """Providers declaring ``capability``, highest priority first."""
        capable = [p for p in self._providers.values() if capability in p.capabilities]
        return sorted(capable, key=lambda p: p.priority, reverse=True)

    def has_capability(self, capability: FeatureCapability) -> bool:
        return bool(self.providers_for(capability))

    @property
    def provider_ids(self) -> List[str]:
        return list(self._providers)

    async def dispose(self) -> None:
        """Dispose and drop every registered provider."""
        for provider_id in list(self._providers):
            provider = self._providers.pop(provider_id)
            try:
                await provider.dispose()
            except Exception as e:
                self.logger.warning("Provider dispose failed", provider_id=provider_id, error=str(e))


class RegistryFeatureStore(FeatureStore):
    """Feature store answering from registered providers."""

    def __init__(self, registry: ProviderRegistry):
        self.registry = registry
        self.logger = logger.bind(component="RegistryFeatureStore")

    async def get(self, track_id: str) -> AggregatedFeatures:
        audio, emotion, lyrics = await asyncio.gather(
            self._first_result(FeatureCapability.AUDIO_ANALYSIS, track_id),
            self._first_result(FeatureCapability.EMOTION_DETECTION, track_id),
            self._first_result(FeatureCapability.LYRICS_ANALYSIS, track_id),
        )
        return AggregatedFeatures(audio=audio, emotion=emotion, lyrics=lyrics)

    async def get_audio(self, track_id: str) -> Optional[AudioFeatures]:
        return await self._first_result(FeatureCapability.AUDIO_ANALYSIS, track_id)

    async def find_similar(self, track_id: str, limit: int) -> List[str]:
        for provider in self.registry.providers_for(FeatureCapability.SIMILARITY):
            try:
                similar = await provider.get_similar_tracks(track_id, limit)
            except Exception as e:
                self.logger.warning(
                    "Similarity provider failed",
                    provider_id=provider.provider_id,
                    track_id=track_id,
                    error=str(e)
                )
                continue
            if similar:
                return list(similar)[:limit]
        return []

    async def _first_result(self, capability: FeatureCapability, track_id: str):
        method_name = CAPABILITY_METHODS[capability]
        for provider in self.registry.providers_for(capability):
            try:
                result = await getattr(provider, method_name)(track_id)
            except Exception as e:
                self.logger.warning(
                    "Feature provider failed",
                    provider_id=provider.provider_id,
                    capability=capability.value,
                    track_id=track_id,
                    error=str(e)
                )
                continue
            if result is not None:
                return result
        return None
