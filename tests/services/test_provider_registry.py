"""
Tests for the capability-keyed provider registry and its feature store view.
"""

import pytest

from tuneweave.models.track_models import AudioFeatures, EmotionFeatures
from tuneweave.services.memory_stores import InMemorySimilarityProvider
from tuneweave.services.provider_registry import (
    FeatureCapability,
    FeatureProvider,
    ProviderRegistry,
    RegistryFeatureStore,
)


class AudioProvider(FeatureProvider):
    capabilities = frozenset({FeatureCapability.AUDIO_ANALYSIS})

    def __init__(self, provider_id, priority, energy):
        self.provider_id = provider_id
        self.priority = priority
        self.energy = energy
        self.disposed = False

    async def get_audio_features(self, track_id):
        if self.energy is None:
            return None
        return AudioFeatures(energy=self.energy)

    async def dispose(self):
        self.disposed = True


class BrokenProvider(FeatureProvider):
    provider_id = "broken"
    priority = 1000
    capabilities = frozenset({
        FeatureCapability.AUDIO_ANALYSIS,
        FeatureCapability.SIMILARITY,
    })

    async def get_audio_features(self, track_id):
        raise ConnectionError("analysis backend down")

    async def get_similar_tracks(self, track_id, limit):
        raise ConnectionError("similarity backend down")

    async def dispose(self):
        raise RuntimeError("already closed")


class EmotionProvider(FeatureProvider):
    provider_id = "emotion"
    capabilities = frozenset({FeatureCapability.EMOTION_DETECTION})

    async def get_emotion_features(self, track_id):
        return EmotionFeatures(valence=0.6, arousal=0.4)


@pytest.fixture
def registry():
    return ProviderRegistry()


class TestRegistry:
    """Registration and capability lookup."""

    def test_priority_order(self, registry):
        low = AudioProvider("low", 10, 0.1)
        high = AudioProvider("high", 90, 0.9)
        registry.register(low)
        registry.register(high)

        assert registry.providers_for(FeatureCapability.AUDIO_ANALYSIS) == [high, low]
        assert registry.has_capability(FeatureCapability.AUDIO_ANALYSIS)
        assert not registry.has_capability(FeatureCapability.LYRICS_ANALYSIS)

    def test_register_replaces_same_id(self, registry):
        registry.register(AudioProvider("audio", 10, 0.1))
        replacement = AudioProvider("audio", 20, 0.2)
        registry.register(replacement)

        assert registry.provider_ids == ["audio"]
        assert registry.providers_for(FeatureCapability.AUDIO_ANALYSIS) == [replacement]

    def test_unregister(self, registry):
        provider = AudioProvider("audio", 10, 0.1)
        registry.register(provider)

        assert registry.unregister("audio") is provider
        assert registry.unregister("audio") is None
        assert registry.provider_ids == []

    @pytest.mark.asyncio
    async def test_dispose_continues_past_failures(self, registry):
        audio = AudioProvider("audio", 10, 0.1)
        registry.register(BrokenProvider())
        registry.register(audio)

        await registry.dispose()

        assert audio.disposed
        assert registry.provider_ids == []


class TestRegistryFeatureStore:
    """Per-group fallback across providers."""

    @pytest.mark.asyncio
    async def test_falls_back_past_failing_and_empty_providers(self, registry):
        registry.register(BrokenProvider())
        registry.register(AudioProvider("empty", 50, None))
        registry.register(AudioProvider("fallback", 10, 0.4))
        store = RegistryFeatureStore(registry)

        audio = await store.get_audio("t1")

        assert audio.energy == 0.4

    @pytest.mark.asyncio
    async def test_groups_resolved_independently(self, registry):
        registry.register(AudioProvider("audio", 10, 0.7))
        registry.register(EmotionProvider())
        store = RegistryFeatureStore(registry)

        features = await store.get("t1")

        assert features.audio.energy == 0.7
        assert features.emotion.valence == 0.6
        assert features.lyrics is None

    @pytest.mark.asyncio
    async def test_no_providers(self, registry):
        features = await RegistryFeatureStore(registry).get("t1")

        assert features.audio is None
        assert features.emotion is None

    @pytest.mark.asyncio
    async def test_find_similar(self, registry):
        registry.register(BrokenProvider())
        registry.register(InMemorySimilarityProvider({"t1": ["t2", "t3", "t4"]}))
        store = RegistryFeatureStore(registry)

        assert await store.find_similar("t1", 2) == ["t2", "t3"]
        assert await store.find_similar("unknown", 2) == []
