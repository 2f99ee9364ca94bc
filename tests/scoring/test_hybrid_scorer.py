"""
Tests for HybridScorer and ScoreComponentCalculator.

Validates weight derivation, component bounds, graceful degradation when
collaborators fail, the score cache and explanations.
"""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from tuneweave.exceptions import NoRecentScoreError
from tuneweave.models.config_models import AlgorithmSettings
from tuneweave.models.track_models import (
    AggregatedFeatures,
    AudioFeatures,
    ScoreComponents,
    ScoringContext,
    Track,
    TrackScore,
    UserEvent,
    UserEventType,
)
from tuneweave.scoring.hybrid_scorer import HybridScorer, ScoreCache
from tuneweave.scoring.preference_classifier import PreferenceClassifier
from tuneweave.services.memory_stores import InMemoryFeatureStore, InMemoryUserStore


class FailingDislikeStore(InMemoryUserStore):
    async def get_disliked_tracks(self):
        raise ConnectionError("user store offline")


class PartiallyFailingFeatureStore(InMemoryFeatureStore):
    def __init__(self, features, failing):
        super().__init__(features)
        self.failing = set(failing)

    async def get(self, track_id):
        if track_id in self.failing:
            raise TimeoutError(f"no features for {track_id}")
        return await super().get(track_id)


@pytest.fixture
def classifier(model_storage):
    return PreferenceClassifier(model_storage)


@pytest.fixture
def trained_classifier():
    classifier = Mock(spec=PreferenceClassifier)
    classifier.get_ml_weight.return_value = 0.6
    classifier.is_ready.return_value = True
    classifier.predict_single.return_value = 0.8
    return classifier


@pytest.fixture
def scorer(feature_store, user_store, classifier, settings, fixed_rng, clock):
    return HybridScorer(feature_store, user_store, classifier, settings, rng=fixed_rng, clock=clock)


@pytest.fixture
def track(catalog_tracks):
    return catalog_tracks[1]


@pytest.fixture
def rich_context(now, catalog_tracks):
    return ScoringContext.at(
        now,
        session_tracks=catalog_tracks[5:8],
        session_artists=[t.artist_id for t in catalog_tracks[5:8]],
        session_genres=[t.genre for t in catalog_tracks[5:8]],
        current_track=catalog_tracks[7],
        user_mood="happy",
        activity="working",
    )


def rule_weight_total(weights):
    return sum(
        value for name, value in weights.items()
        if name not in ("ml_prediction", "recent_play_penalty", "dislike_penalty", "repetition_penalty")
    )


class TestWeights:
    """Combination weight derivation."""

    def test_untrained_classifier_has_no_weight(self, scorer):
        weights = scorer.get_weights()

        assert weights["ml_prediction"] == 0.0
        assert rule_weight_total(weights) == pytest.approx(1.0)

    def test_trained_classifier_scaled_by_setting(self, feature_store, user_store, trained_classifier):
        scorer = HybridScorer(feature_store, user_store, trained_classifier, AlgorithmSettings(ml_weight=0.5))

        weights = scorer.get_weights()

        assert weights["ml_prediction"] == pytest.approx(0.3)
        assert rule_weight_total(weights) == pytest.approx(0.7)

    def test_time_of_day_mode_shifts_temporal_share(self, feature_store, user_store, classifier):
        auto = HybridScorer(feature_store, user_store, classifier, AlgorithmSettings()).get_weights()
        strong = HybridScorer(
            feature_store, user_store, classifier, AlgorithmSettings(time_of_day_mode="strong")
        ).get_weights()
        off = HybridScorer(
            feature_store, user_store, classifier, AlgorithmSettings(time_of_day_mode="off")
        ).get_weights()

        assert strong["temporal_fit"] > auto["temporal_fit"] > off["temporal_fit"] == 0.0
        for weights in (auto, strong, off):
            assert rule_weight_total(weights) == pytest.approx(1.0)

    def test_penalty_weights_fixed(self, feature_store, user_store, trained_classifier):
        scorer = HybridScorer(feature_store, user_store, trained_classifier)
        weights = scorer.get_weights()

        assert weights["recent_play_penalty"] == 1.0
        assert weights["dislike_penalty"] == 1.5
        assert weights["repetition_penalty"] == 1.0


class TestCombination:
    """Final score and confidence."""

    def test_combine_subtracts_weighted_penalties(self, scorer):
        components = ScoreComponents(base_preference=100.0, dislike_penalty=50.0)

        expected = 100.0 * 0.25 / 0.98 - 50.0 * 1.5
        assert scorer.combine(components) == pytest.approx(expected)

    def test_confidence_without_components(self, scorer):
        assert scorer.confidence(ScoreComponents()) == 0.5

    def test_confidence_centered_values(self, scorer):
        assert scorer.confidence(ScoreComponents(base_preference=50.0)) == pytest.approx(1.0)
        assert scorer.confidence(ScoreComponents(base_preference=100.0)) == pytest.approx(0.75)

    def test_confidence_boost_when_trained(self, feature_store, user_store, trained_classifier):
        scorer = HybridScorer(feature_store, user_store, trained_classifier)

        assert scorer.confidence(ScoreComponents(base_preference=100.0)) == pytest.approx(0.95)
        assert scorer.confidence(ScoreComponents(base_preference=50.0)) == 1.0


class TestScoring:
    """End-to-end scoring of a single track."""

    @pytest.mark.asyncio
    async def test_components_within_bounds(self, scorer, track, catalog_features, rich_context):
        score = await scorer.score(track, catalog_features[track.id], rich_context)

        assert score.track_id == track.id
        assert 0.0 <= score.confidence <= 1.0
        for name, value in score.components.signals().items():
            assert 0.0 <= value <= 100.0, name
        for value in score.components.penalties().values():
            assert value >= 0.0

    @pytest.mark.asyncio
    async def test_context_dependent_components_present(self, scorer, track, catalog_features, rich_context):
        components = (await scorer.score(track, catalog_features[track.id], rich_context)).components

        assert components.audio_match is not None
        assert components.harmonic_flow is not None
        assert components.mood_match is not None
        assert components.activity_match is not None
        assert components.session_flow is not None
        assert components.ml_prediction is None

    @pytest.mark.asyncio
    async def test_missing_features_omit_components(self, scorer, track, context):
        components = (await scorer.score(track, AggregatedFeatures(), context)).components

        assert components.audio_match is None
        assert components.mood_match is None
        assert components.temporal_fit is None
        assert components.base_preference is not None
        assert components.diversity_score is not None

    @pytest.mark.asyncio
    async def test_ml_prediction_from_trained_classifier(
        self, feature_store, user_store, trained_classifier, track, catalog_features, context
    ):
        scorer = HybridScorer(feature_store, user_store, trained_classifier)

        score = await scorer.score(track, catalog_features[track.id], context)

        assert score.components.ml_prediction == pytest.approx(80.0)
        trained_classifier.predict_single.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_base_preference_from_affinities(self, scorer, track, context):
        # t1 is by a1 (affinity 0.8) in jazz (no affinity)
        components = (await scorer.score(track, AggregatedFeatures(), context)).components

        assert components.base_preference == pytest.approx((1.8 / 2 * 0.6 + 0.5 * 0.4) * 100)

    @pytest.mark.asyncio
    async def test_identical_inputs_identical_score(self, scorer, track, catalog_features, rich_context):
        first = await scorer.score(track, catalog_features[track.id], rich_context)
        second = await scorer.score(track, catalog_features[track.id], rich_context)

        assert first.final_score == second.final_score
        assert first.components == second.components

    @pytest.mark.asyncio
    async def test_user_store_failure_omits_dislike_penalty(
        self, feature_store, classifier, track, catalog_features, context, fixed_rng, clock
    ):
        scorer = HybridScorer(
            feature_store, FailingDislikeStore(), classifier, rng=fixed_rng, clock=clock
        )

        components = (await scorer.score(track, catalog_features[track.id], context)).components

        assert components.dislike_penalty is None
        assert components.recent_play_penalty is not None
        assert components.base_preference is not None

    @pytest.mark.asyncio
    async def test_recent_play_lowers_score(
        self, feature_store, classifier, track, catalog_features, context, now, fixed_rng, clock
    ):
        fresh = HybridScorer(feature_store, InMemoryUserStore(), classifier, rng=fixed_rng, clock=clock)
        played = HybridScorer(
            feature_store,
            InMemoryUserStore(last_played={track.id: now - timedelta(minutes=10)}),
            classifier,
            rng=fixed_rng,
            clock=clock
        )

        fresh_score = await fresh.score(track, catalog_features[track.id], context)
        played_score = await played.score(track, catalog_features[track.id], context)

        assert played_score.components.recent_play_penalty == 40.0
        assert played_score.final_score == pytest.approx(fresh_score.final_score - 40.0)

    @pytest.mark.asyncio
    async def test_temporal_modes(self, feature_store, user_store, classifier, track, catalog_features, context):
        off = HybridScorer(feature_store, user_store, classifier, AlgorithmSettings(time_of_day_mode="off"))
        disabled = HybridScorer(
            feature_store, user_store, classifier, AlgorithmSettings(enable_temporal_matching=False)
        )

        off_score = await off.score(track, catalog_features[track.id], context)
        disabled_score = await disabled.score(track, catalog_features[track.id], context)

        assert off_score.components.temporal_fit == 50.0
        assert disabled_score.components.temporal_fit is None

    @pytest.mark.asyncio
    async def test_session_flow_uses_session_energies(self, scorer, now):
        store_features = {
            "prev": AggregatedFeatures(audio=AudioFeatures(energy=0.6)),
        }
        scorer.features = InMemoryFeatureStore(store_features)
        scorer.calculator.features = scorer.features
        track = Track(id="next", title="Next", artist_id="x")
        context = ScoringContext.at(now, session_tracks=[Track(id="prev", title="Prev")])

        score = await scorer.score(track, AggregatedFeatures(audio=AudioFeatures(energy=0.6)), context)

        assert score.components.session_flow == pytest.approx(100.0)

    @pytest.mark.asyncio
    async def test_session_flow_disabled(self, feature_store, user_store, classifier, track, catalog_features, rich_context):
        scorer = HybridScorer(feature_store, user_store, classifier, AlgorithmSettings(enable_session_flow=False))

        score = await scorer.score(track, catalog_features[track.id], rich_context)

        assert score.components.session_flow is None


class TestBatchScoring:
    """Concurrent batch scoring."""

    @pytest.mark.asyncio
    async def test_preserves_input_order(self, scorer, catalog_tracks, context):
        tracks = list(reversed(catalog_tracks[:10]))

        scores = await scorer.score_batch(tracks, context)

        assert [s.track_id for s in scores] == [t.id for t in tracks]

    @pytest.mark.asyncio
    async def test_empty_batch(self, scorer, context):
        assert await scorer.score_batch([], context) == []

    @pytest.mark.asyncio
    async def test_failed_features_still_scored(
        self, catalog_features, user_store, classifier, catalog_tracks, context
    ):
        features = PartiallyFailingFeatureStore(catalog_features, failing=["t3"])
        scorer = HybridScorer(features, user_store, classifier)

        scores = await scorer.score_batch(catalog_tracks[:5], context)

        assert len(scores) == 5
        assert scores[3].track_id == "t3"
        assert scores[3].components.audio_match is None
        assert scores[3].components.temporal_fit is None

    @pytest.mark.asyncio
    async def test_prefetches_batch(self, scorer, feature_store, catalog_tracks, context):
        await scorer.score_batch(catalog_tracks[:4], context)

        assert feature_store.prefetched == ["t0", "t1", "t2", "t3"]


class TestPreferenceRefresh:
    """User preference snapshot caching."""

    @pytest.mark.asyncio
    async def test_snapshot_reused_within_window(self, scorer, user_store, track, context):
        await scorer.score(track, AggregatedFeatures(), context)
        await scorer.score(track, AggregatedFeatures(), context)

        assert user_store.preference_reads == 1

    @pytest.mark.asyncio
    async def test_like_forces_refresh(self, scorer, user_store, track, context):
        await scorer.score(track, AggregatedFeatures(), context)
        scorer.handle_event(UserEvent(type=UserEventType.LIKE, track=track))
        await scorer.score(track, AggregatedFeatures(), context)

        assert user_store.preference_reads == 2

    @pytest.mark.asyncio
    async def test_play_event_keeps_snapshot(self, scorer, user_store, track, context):
        await scorer.score(track, AggregatedFeatures(), context)
        scorer.handle_event(UserEvent(type=UserEventType.PLAY, track=track))
        await scorer.score(track, AggregatedFeatures(), context)

        assert user_store.preference_reads == 1

    @pytest.mark.asyncio
    async def test_snapshot_expires(self, feature_store, user_store, classifier, track, context, now):
        current = {"time": now}
        scorer = HybridScorer(feature_store, user_store, classifier, clock=lambda: current["time"])

        await scorer.score(track, AggregatedFeatures(), context)
        current["time"] = now + timedelta(minutes=6)
        await scorer.score(track, AggregatedFeatures(), context)

        assert user_store.preference_reads == 2


class TestExplanations:
    """Cached score lookups and explanations."""

    def test_explain_unknown_track(self, scorer):
        with pytest.raises(NoRecentScoreError):
            scorer.explain("never-scored")

    @pytest.mark.asyncio
    async def test_explain_after_score(self, scorer, track, catalog_features, rich_context):
        score = await scorer.score(track, catalog_features[track.id], rich_context)

        explanation = scorer.explain(track.id)

        assert explanation.track_id == track.id
        assert explanation.score is score
        assert explanation.summary
        assert {d.component for d in explanation.details} == set(score.components.present())
        assert all(d.impact in ("positive", "neutral", "negative") for d in explanation.details)

    @pytest.mark.asyncio
    async def test_explain_comparison(self, scorer, catalog_tracks, catalog_features, context):
        first = await scorer.score(catalog_tracks[1], catalog_features["t1"], context)
        second = await scorer.score(catalog_tracks[2], catalog_features["t2"], context)
        average = (first.final_score + second.final_score) / 2

        comparison = scorer.explain("t1").comparison

        assert comparison.vs_session_average == pytest.approx(first.final_score - average)
        assert comparison.vs_historical_average == pytest.approx(first.final_score - average)

    def test_historical_average_neutral_when_empty(self, scorer):
        assert scorer.historical_average == 50.0


class TestScoreCache:
    """Bounded cache of recent scores."""

    def make_score(self, track_id, value=50.0):
        return TrackScore(track_id=track_id, final_score=value, confidence=0.5, components=ScoreComponents())

    def test_evicts_oldest(self):
        cache = ScoreCache(max_size=2)
        for track_id in ("a", "b", "c"):
            cache.put(self.make_score(track_id))

        assert "a" not in cache
        assert "b" in cache and "c" in cache
        assert len(cache) == 2

    def test_rescoring_keeps_insertion_order(self):
        cache = ScoreCache(max_size=2)
        cache.put(self.make_score("a"))
        cache.put(self.make_score("b"))
        cache.put(self.make_score("a", 70.0))

        assert cache.get("a").final_score == 70.0

        cache.put(self.make_score("c"))

        assert "a" not in cache
        assert "b" in cache and "c" in cache

    def test_average(self):
        cache = ScoreCache()
        assert cache.average() == 50.0

        cache.put(self.make_score("a", 20.0))
        cache.put(self.make_score("b", 40.0))
        assert cache.average() == pytest.approx(30.0)
