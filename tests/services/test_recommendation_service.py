"""
Tests for RecommendationService.

Exercises the facade end to end on in-memory collaborators: scoring and
ranking, retraining checks, background training on startup, event
handling, similarity lookups and shutdown.
"""

import asyncio
import random
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from tuneweave.exceptions import NoRecentScoreError
from tuneweave.models.config_models import AlgorithmSettings
from tuneweave.models.track_models import (
    AggregatedFeatures,
    AudioFeatures,
    LastTrainingInfo,
    RadioSeed,
    ScoreComponents,
    ScoringContext,
    SeedType,
    Track,
    TrackScore,
    UserEvent,
    UserEventType,
)
from tuneweave.models.training_models import TrainingErrorCode
from tuneweave.scoring.preference_classifier import PreferenceClassifier
from tuneweave.services.memory_stores import (
    InMemoryFeatureStore,
    InMemorySimilarityProvider,
    InMemoryTrainingLog,
)
from tuneweave.services.provider_registry import ProviderRegistry
from tuneweave.services.recommendation_service import RecommendationService


class DisposableSimilarity(InMemorySimilarityProvider):
    def __init__(self, similar):
        super().__init__(similar)
        self.disposed = False

    async def dispose(self):
        self.disposed = True


class UnreachableFeatureStore(InMemoryFeatureStore):
    async def get(self, track_id):
        raise ConnectionError("feature service unreachable")

    async def get_audio(self, track_id):
        raise ConnectionError("feature service unreachable")


class GatedFeatureStore(InMemoryFeatureStore):
    """Feature store whose prefetch blocks until the gate opens."""

    def __init__(self, features=None):
        super().__init__(features)
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()

    async def prefetch(self, track_ids):
        self.entered.set()
        await self.gate.wait()
        await super().prefetch(track_ids)


def fixed_score(track_id, value):
    return TrackScore(track_id=track_id, final_score=value, confidence=0.5, components=ScoreComponents())


@pytest.fixture
def classifier(model_storage):
    return PreferenceClassifier(model_storage, epochs=2, seed=5)


@pytest.fixture
def service(endpoints, classifier, clock):
    return RecommendationService(endpoints, classifier=classifier, rng=random.Random(4), clock=clock)


class TestNeedsTraining:
    """Retraining thresholds."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("events, expected", [(49, False), (50, True)])
    async def test_first_training(self, service, training_log, events, expected):
        training_log.new_event_count = events

        assert await service.needs_training() is expected

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "events, age_days, expected",
        [(9, 1, False), (10, 1, True), (0, 6, False), (0, 7, True)],
    )
    async def test_retraining(self, service, training_log, now, events, age_days, expected):
        training_log.new_event_count = events
        training_log.last_training = LastTrainingInfo(version=1, timestamp=now - timedelta(days=age_days))

        assert await service.needs_training() is expected


class TestScoring:
    """Scoring, ranking and explanations through the facade."""

    @pytest.mark.asyncio
    async def test_score_fetches_features_through_cache(self, service, catalog_tracks, context):
        await service.initialize()

        score = await service.score(catalog_tracks[1], context)

        assert 0 <= score.final_score <= 100
        assert "t1" in service.feature_cache

    @pytest.mark.asyncio
    async def test_rank_orders_best_first_and_keeps_ties_stable(self, service, catalog_tracks, context):
        tracks = catalog_tracks[:4]
        service.scorer.score_batch = AsyncMock(return_value=[
            fixed_score("t0", 40.0),
            fixed_score("t1", 80.0),
            fixed_score("t2", 40.0),
            fixed_score("t3", 90.0),
        ])

        ranked = await service.rank_candidates(tracks, context)

        assert [item.track.id for item in ranked] == ["t3", "t1", "t0", "t2"]
        assert ranked[0].score.final_score == 90.0

    @pytest.mark.asyncio
    async def test_explain_recent_score(self, service, catalog_tracks, context):
        await service.initialize()
        await service.score(catalog_tracks[2], context)

        explanation = service.explain_score("t2")

        assert explanation.track_id == "t2"

    @pytest.mark.asyncio
    async def test_score_survives_feature_store_failure(self, endpoints, classifier, catalog_tracks, now):
        endpoints.features = UnreachableFeatureStore()
        service = RecommendationService(endpoints, classifier=classifier, rng=random.Random(4))
        await service.initialize()

        score = await service.score(catalog_tracks[3], ScoringContext.at(now, user_mood="happy"))

        assert 0 <= score.final_score <= 100
        assert score.components.mood_match is None
        assert service.explain_score("t3").track_id == "t3"

    @pytest.mark.asyncio
    async def test_partial_features_are_completed_from_store(self, service, catalog_tracks, now):
        await service.initialize()
        supplied = AggregatedFeatures(audio=AudioFeatures(energy=0.5))

        score = await service.score(catalog_tracks[3], ScoringContext.at(now, user_mood="happy"), supplied)

        assert score.components.mood_match is not None

    @pytest.mark.asyncio
    async def test_supplied_groups_take_precedence(self, service, catalog_tracks, catalog_features):
        supplied = AggregatedFeatures(audio=AudioFeatures(energy=0.05))

        resolved = await service._resolve_features("t3", supplied)

        assert resolved.audio.energy == 0.05
        assert resolved.emotion == catalog_features["t3"].emotion

    def test_explain_unknown_track(self, service):
        with pytest.raises(NoRecentScoreError):
            service.explain_score("never-scored")

    @pytest.mark.asyncio
    async def test_event_invalidates_cached_features(self, service, catalog_tracks, context):
        await service.initialize()
        await service.score(catalog_tracks[5], context)
        assert "t5" in service.feature_cache

        service.on_user_event(UserEvent(type=UserEventType.LIKE, track=catalog_tracks[5]))

        assert "t5" not in service.feature_cache

    @pytest.mark.asyncio
    async def test_radio_and_reset(self, service, context):
        await service.initialize()
        seed = RadioSeed(type=SeedType.TRACK, id="t0")

        batch = await service.generate_radio(seed, 5, context)

        assert len(batch) == 5
        assert service.reset_radio(seed)
        assert not service.reset_radio(seed)


class TestTraining:
    """Manual and automatic training."""

    @pytest.mark.asyncio
    async def test_manual_train_with_insufficient_data(self, service):
        await service.initialize()

        result = await service.train()

        assert not result.success
        assert result.error_code == TrainingErrorCode.INSUFFICIENT_DATA

    @pytest.mark.asyncio
    async def test_initialize_starts_background_training_when_due(
        self, endpoints, classifier, clock, make_dataset
    ):
        endpoints.training = InMemoryTrainingLog(dataset=make_dataset(), new_event_count=60)
        service = RecommendationService(endpoints, classifier=classifier, clock=clock)

        await service.initialize()

        assert service.background_training.running
        result = await service.background_training.wait()
        assert result.success
        assert service.get_training_status().last_result == result
        assert endpoints.training.completed_versions == [1]

        await service.dispose()

    @pytest.mark.asyncio
    async def test_initialize_without_auto_train(self, endpoints, classifier, clock, make_dataset):
        endpoints.training = InMemoryTrainingLog(dataset=make_dataset(), new_event_count=60)
        service = RecommendationService(
            endpoints,
            settings=AlgorithmSettings(auto_train=False),
            classifier=classifier,
            clock=clock,
        )

        await service.initialize()

        assert not service.background_training.running

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, service, classifier):
        await service.initialize()
        await service.initialize()

        assert classifier.model is not None
        assert not classifier.is_ready()


class TestSimilarity:
    """Similarity lookups through the provider registry."""

    @pytest.mark.asyncio
    async def test_without_registry(self, service):
        assert await service.find_similar("t0") == []

    @pytest.mark.asyncio
    async def test_ranked_by_provider_order(self, endpoints, classifier):
        registry = ProviderRegistry()
        registry.register(InMemorySimilarityProvider({"t0": ["t4", "missing", "t2", "t9"]}))
        service = RecommendationService(endpoints, registry=registry, classifier=classifier)

        similar = await service.find_similar("t0", limit=3)

        assert [item.track.id for item in similar] == ["t4", "t2"]
        assert [item.score.final_score for item in similar] == [100.0, 90.0]
        assert similar[0].score.confidence == 0.8
        assert similar[0].score.explanation == ["Similar to selected track"]


class TestDispose:

    @pytest.mark.asyncio
    async def test_dispose_releases_resources(self, endpoints, classifier, catalog_tracks, context):
        registry = ProviderRegistry()
        provider = DisposableSimilarity({"t0": ["t1"]})
        registry.register(provider)
        service = RecommendationService(endpoints, registry=registry, classifier=classifier)
        await service.initialize()
        await service.score(catalog_tracks[0], context)

        await service.dispose()

        assert provider.disposed
        assert registry.provider_ids == []
        assert service.feature_cache.get_stats()["size"] == 0
        assert classifier.model is None

    @pytest.mark.asyncio
    async def test_dispose_stops_manual_training(self, endpoints, classifier, make_dataset):
        features = GatedFeatureStore()
        endpoints.features = features
        endpoints.training = InMemoryTrainingLog(dataset=make_dataset())
        service = RecommendationService(endpoints, classifier=classifier)
        await service.initialize()

        run = asyncio.create_task(service.train())
        await features.entered.wait()

        disposing = asyncio.create_task(service.dispose())
        await asyncio.sleep(0)
        assert not disposing.done()

        features.gate.set()
        await disposing
        result = await run

        assert result.error_code == TrainingErrorCode.CANCELLED
        assert classifier.model is None
        assert endpoints.training.completed_versions == []
