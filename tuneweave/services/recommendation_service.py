"""
Recommendation Service

Host-facing facade over the scoring core. Owns the feature cache, the
preference classifier, the hybrid scorer, the trainer and its background
handle, and the radio generator, and ties their lifecycles together.
"""

import random
from datetime import datetime, timedelta
from typing import Callable, List, Optional

import structlog

from ..models.config_models import AlgorithmSettings
from ..models.track_models import (
    AggregatedFeatures,
    RadioSeed,
    ScoreComponents,
    ScoredTrack,
    ScoreExplanation,
    ScoringContext,
    Track,
    TrackScore,
    UserEvent,
)
from ..models.training_models import TrainingResult, TrainingStatus
from ..radio.radio_generator import RadioGenerator
from ..scoring.hybrid_scorer import HybridScorer
from ..scoring.preference_classifier import PreferenceClassifier
from ..training.supervisor import BackgroundTraining
from ..training.trainer import Trainer
from .collaborators import CoreEndpoints
from .feature_cache import CachedFeatureStore
from .provider_registry import FeatureCapability, ProviderRegistry, RegistryFeatureStore

logger = structlog.get_logger(__name__)

# Event thresholds for automatic retraining
FIRST_TRAINING_EVENTS = 50
RETRAINING_EVENTS = 10
RETRAINING_INTERVAL = timedelta(days=7)

SIMILAR_SCORE_START = 100.0
SIMILAR_SCORE_STEP = 5.0
SIMILAR_CONFIDENCE = 0.8


class RecommendationService:
    """
    Production recommendation core wired from collaborator endpoints.

    Call ``initialize()`` before scoring and ``dispose()`` on shutdown.
    """

    def __init__(
        self,
        endpoints: CoreEndpoints,
        settings: Optional[AlgorithmSettings] = None,
        registry: Optional[ProviderRegistry] = None,
        classifier: Optional[PreferenceClassifier] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        """
        Args:
            endpoints: Feature, user, library, training-log and storage collaborators
            settings: Algorithm settings (defaults when omitted)
            registry: Optional feature provider registry, used for similarity lookups
            classifier: Optional preconfigured classifier
            rng: Random source shared by scoring and radio
            clock: Time source for preference refresh and retraining checks
        """
        self.endpoints = endpoints
        self.settings = settings or AlgorithmSettings()
        self.registry = registry
        self.clock = clock

        self.feature_cache = CachedFeatureStore(endpoints.features, self.settings.feature_cache_size)
        self.classifier = classifier or PreferenceClassifier(endpoints.storage)
        self.scorer = HybridScorer(
            self.feature_cache,
            endpoints.user,
            self.classifier,
            self.settings,
            rng=rng,
            clock=clock
        )
        self.trainer = Trainer(self.feature_cache, endpoints.training, self.classifier)
        self.background_training = BackgroundTraining(self.trainer, endpoints.training)
        self.radio = RadioGenerator(endpoints.library, self.scorer, rng=rng)
        self.similarity = RegistryFeatureStore(registry) if registry is not None else None

        self._initialized = False
        self.logger = logger.bind(service="RecommendationService")
        self.logger.info(
            "Recommendation Service created",
            ml_weight=self.settings.ml_weight,
            exploration_level=self.settings.exploration_level,
            providers=registry.provider_ids if registry is not None else []
        )

    async def initialize(self) -> None:
        """Restore the classifier and kick off background training if it is due."""
        if self._initialized:
            return

        await self.classifier.initialize()
        self._initialized = True

        if self.settings.auto_train and await self.needs_training():
            self.background_training.start()

        self.logger.info(
            "Recommendation Service initialized",
            model_version=self.classifier.version,
            background_training=self.background_training.running
        )

    async def dispose(self) -> None:
        """Stop background work and release owned resources."""
        if self.background_training.running:
            await self.background_training.cancel()
        if self.trainer.cancel():
            await self.trainer.wait_idle()

        await self.classifier.dispose()
        self.feature_cache.clear()
        if self.registry is not None:
            await self.registry.dispose()

        self._initialized = False
        self.logger.info("Recommendation Service disposed")

    # Scoring

    async def score(
        self,
        track: Track,
        context: ScoringContext,
        features: Optional[AggregatedFeatures] = None
    ) -> TrackScore:
        """
        Score one track.

        Feature groups missing from ``features`` are filled from the
        feature store; if the store fails, the track is scored with what
        was supplied.
        """
        features = await self._resolve_features(track.id, features)
        return await self.scorer.score(track, features, context)

    async def _resolve_features(
        self,
        track_id: str,
        supplied: Optional[AggregatedFeatures]
    ) -> AggregatedFeatures:
        if supplied is not None and None not in (supplied.audio, supplied.emotion, supplied.lyrics):
            return supplied

        try:
            stored = await self.feature_cache.get(track_id)
        except Exception as e:
            self.logger.warning("Features unavailable, scoring without", track_id=track_id, error=str(e))
            stored = AggregatedFeatures()

        if supplied is None:
            return stored
        return AggregatedFeatures(
            audio=supplied.audio or stored.audio,
            emotion=supplied.emotion or stored.emotion,
            lyrics=supplied.lyrics or stored.lyrics,
        )

    async def score_batch(self, tracks: List[Track], context: ScoringContext) -> List[TrackScore]:
        return await self.scorer.score_batch(tracks, context)

    async def rank_candidates(self, tracks: List[Track], context: ScoringContext) -> List[ScoredTrack]:
        """
        Score ``tracks`` and order them by final score, best first.

        Equal scores keep their input order.
        """
        scores = await self.scorer.score_batch(tracks, context)
        ranked = [ScoredTrack(track=t, score=s) for t, s in zip(tracks, scores)]
        ranked.sort(key=lambda item: item.score.final_score, reverse=True)
        return ranked

    def explain_score(self, track_id: str) -> ScoreExplanation:
        """
        Raises:
            NoRecentScoreError: If ``track_id`` has no cached score
        """
        return self.scorer.explain(track_id)

    # Training

    async def train(self) -> TrainingResult:
        dataset = await self.endpoints.training.get_full_dataset()
        return await self.trainer.train(dataset)

    def get_training_status(self) -> TrainingStatus:
        return self.trainer.get_status()

    async def needs_training(self) -> bool:
        new_events = await self.endpoints.training.get_new_event_count()
        last = await self.endpoints.training.get_last_training_info()

        if last is None:
            return new_events >= FIRST_TRAINING_EVENTS
        if new_events >= RETRAINING_EVENTS:
            return True
        return self.clock() - last.timestamp >= RETRAINING_INTERVAL

    # Radio

    async def generate_radio(self, seed: RadioSeed, count: int, context: ScoringContext) -> List[Track]:
        return await self.radio.generate(seed, count, context)

    def reset_radio(self, seed: RadioSeed) -> bool:
        return self.radio.reset_session(seed)

    # Events and similarity

    def on_user_event(self, event: UserEvent) -> None:
        self.scorer.handle_event(event)
        if event.track is not None:
            self.feature_cache.invalidate(event.track.id)

    async def find_similar(self, track_id: str, limit: int = 10) -> List[ScoredTrack]:
        """
        Tracks similar to ``track_id`` from the similarity providers.

        Results are ranked by provider order; ids the library cannot
        resolve are skipped.
        """
        if self.similarity is None or not self.registry.has_capability(FeatureCapability.SIMILARITY):
            return []

        similar_ids = await self.similarity.find_similar(track_id, limit)

        results: List[ScoredTrack] = []
        for rank, similar_id in enumerate(similar_ids):
            track = await self.endpoints.library.get_track(similar_id)
            if track is None:
                continue
            results.append(ScoredTrack(
                track=track,
                score=TrackScore(
                    track_id=track.id,
                    final_score=SIMILAR_SCORE_START - rank * SIMILAR_SCORE_STEP,
                    confidence=SIMILAR_CONFIDENCE,
                    components=ScoreComponents(),
                    explanation=["Similar to selected track"],
                ),
            ))

        self.logger.debug("Similar tracks found", track_id=track_id, found=len(results))
        return results
