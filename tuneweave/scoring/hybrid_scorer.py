"""
Hybrid Scorer

Blends rule-based score components with the preference classifier's
prediction into one final score. The classifier's share of the blend
grows with its maturity; penalties are subtracted with fixed weights
regardless of maturity.

The scorer owns two pieces of state:
- a snapshot of user preferences and temporal patterns, refreshed when
  older than ``preference_refresh_seconds`` or after a like/dislike
- a bounded cache of recent TrackScores used by ``explain``
"""

import asyncio
import random
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

import structlog

from ..exceptions import NoRecentScoreError
from ..models.config_models import AlgorithmSettings
from ..models.track_models import (
    AggregatedFeatures,
    ScoreComparison,
    ScoreComponents,
    ScoreExplanation,
    ScoringContext,
    TemporalPatterns,
    Track,
    TrackScore,
    UserEvent,
    UserEventType,
    UserPreferences,
)
from ..services.collaborators import FeatureStore, UserStore
from .component_calculator import ScoreComponentCalculator
from .explanations import explanation_details, generate_explanation, generate_summary
from .preference_classifier import PreferenceClassifier

logger = structlog.get_logger(__name__)

# Share of the rule-based weight per component; temporal_fit comes from settings
RULE_FRACTIONS: Dict[str, float] = {
    "base_preference": 0.25,
    "audio_match": 0.10,
    "mood_match": 0.08,
    "harmonic_flow": 0.05,
    "session_flow": 0.07,
    "activity_match": 0.05,
    "exploration_bonus": 0.10,
    "serendipity_score": 0.10,
    "diversity_score": 0.10,
}

PENALTY_WEIGHTS: Dict[str, float] = {
    "recent_play_penalty": 1.0,
    "dislike_penalty": 1.5,
    "repetition_penalty": 1.0,
}

NEUTRAL_AVERAGE = 50.0
TRAINED_CONFIDENCE_BOOST = 0.2


class ScoreCache:
    """
    Most recent TrackScore per track id.

    Eviction is FIFO by first insertion; rescoring a track replaces its
    entry in place.
    """

    def __init__(self, max_size: int = 100):
        self.max_size = max_size
        self._scores: "OrderedDict[str, TrackScore]" = OrderedDict()

    def put(self, score: TrackScore) -> None:
        self._scores[score.track_id] = score
        while len(self._scores) > self.max_size:
            self._scores.popitem(last=False)

    def get(self, track_id: str) -> Optional[TrackScore]:
        return self._scores.get(track_id)

    def average(self) -> float:
        if not self._scores:
            return NEUTRAL_AVERAGE
        return sum(s.final_score for s in self._scores.values()) / len(self._scores)

    def clear(self) -> None:
        self._scores.clear()

    def __len__(self) -> int:
        return len(self._scores)

    def __contains__(self, track_id: str) -> bool:
        return track_id in self._scores


class HybridScorer:
    """Combines score components into a final score, confidence and explanation."""

    def __init__(
        self,
        features: FeatureStore,
        user: UserStore,
        classifier: PreferenceClassifier,
        settings: Optional[AlgorithmSettings] = None,
        score_cache: Optional[ScoreCache] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.features = features
        self.user = user
        self.classifier = classifier
        self.settings = settings or AlgorithmSettings()
        self.recent_scores = score_cache or ScoreCache(self.settings.score_cache_size)
        self.clock = clock

        self.calculator = ScoreComponentCalculator(
            features, user, classifier, self.settings, rng=rng, clock=clock
        )

        self._preferences = UserPreferences()
        self._patterns = TemporalPatterns()
        self._preferences_expiry: Optional[datetime] = None
        self._refresh_lock = asyncio.Lock()

        self._score_total = 0.0
        self._score_count = 0

        self.logger = logger.bind(component="HybridScorer")

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    async def score(
        self,
        track: Track,
        features: AggregatedFeatures,
        context: ScoringContext
    ) -> TrackScore:
        await self._ensure_preferences()
        return await self._score(track, features, context)

    async def score_batch(self, tracks: List[Track], context: ScoringContext) -> List[TrackScore]:
        """
        Score many tracks concurrently.

        The result list is positionally aligned with ``tracks``. A track
        whose features cannot be fetched is scored without features.
        """
        if not tracks:
            return []

        await self._ensure_preferences()

        track_ids = [t.id for t in tracks]
        try:
            await self.features.prefetch(track_ids)
        except Exception as e:
            self.logger.warning("Feature prefetch failed", tracks=len(track_ids), error=str(e))

        fetched = await asyncio.gather(
            *(self.features.get(tid) for tid in track_ids),
            return_exceptions=True
        )

        features: List[AggregatedFeatures] = []
        for track_id, result in zip(track_ids, fetched):
            if isinstance(result, Exception):
                self.logger.warning("Features unavailable, scoring without", track_id=track_id, error=str(result))
                features.append(AggregatedFeatures())
            else:
                features.append(result)

        return list(await asyncio.gather(
            *(self._score(track, f, context) for track, f in zip(tracks, features))
        ))

    async def _score(
        self,
        track: Track,
        features: AggregatedFeatures,
        context: ScoringContext
    ) -> TrackScore:
        components = await self.calculator.calculate(
            track, features, context, self._preferences, self._patterns
        )

        score = TrackScore(
            track_id=track.id,
            final_score=self.combine(components),
            confidence=self.confidence(components),
            components=components,
            explanation=generate_explanation(components),
        )

        self.recent_scores.put(score)
        self._score_total += score.final_score
        self._score_count += 1
        return score

    def get_weights(self) -> Dict[str, float]:
        """
        Combination weights for every component.

        ``ml_prediction`` receives the classifier's maturity weight scaled
        by the user's ``ml_weight`` setting; rule components share the rest
        in fixed proportions that always sum to the full rule weight.
        """
        ml_weight = self.classifier.get_ml_weight() * self.settings.ml_weight
        rule_weight = 1.0 - ml_weight

        fractions = dict(RULE_FRACTIONS)
        fractions["temporal_fit"] = self.settings.temporal_weight
        total = sum(fractions.values())

        weights = {name: fraction / total * rule_weight for name, fraction in fractions.items()}
        weights["ml_prediction"] = ml_weight
        weights.update(PENALTY_WEIGHTS)
        return weights

    def combine(self, components: ScoreComponents) -> float:
        weights = self.get_weights()
        positive = sum(value * weights[name] for name, value in components.signals().items())
        negative = sum(value * weights[name] for name, value in components.penalties().items())
        return positive - negative

    def confidence(self, components: ScoreComponents) -> float:
        """Mean centeredness of the present components, boosted once trained."""
        values = list(components.present().values())
        if not values:
            return 0.5

        base = sum(1 - abs(v / 100 - 0.5) * 0.5 for v in values) / len(values)
        boost = TRAINED_CONFIDENCE_BOOST if self.classifier.is_ready() else 0.0
        return min(1.0, base + boost)

    # ------------------------------------------------------------------
    # Explanations and events
    # ------------------------------------------------------------------

    def explain(self, track_id: str) -> ScoreExplanation:
        """
        Detailed breakdown of the most recent cached score for ``track_id``.

        Raises:
            NoRecentScoreError: The track has not been scored recently
        """
        cached = self.recent_scores.get(track_id)
        if cached is None:
            raise NoRecentScoreError(track_id)

        return ScoreExplanation(
            track_id=track_id,
            score=cached,
            summary=generate_summary(cached),
            details=explanation_details(cached.components),
            comparison=ScoreComparison(
                vs_session_average=cached.final_score - self.recent_scores.average(),
                vs_historical_average=cached.final_score - self.historical_average,
            ),
        )

    @property
    def historical_average(self) -> float:
        if self._score_count == 0:
            return NEUTRAL_AVERAGE
        return self._score_total / self._score_count

    def handle_event(self, event: UserEvent) -> None:
        """Likes and dislikes force a preference refresh on the next score."""
        if event.type in (UserEventType.LIKE, UserEventType.DISLIKE):
            self.invalidate_preferences()
            self.logger.debug(
                "Preference snapshot invalidated",
                event_type=event.type.value,
                track_id=event.track.id if event.track else None
            )

    def invalidate_preferences(self) -> None:
        self._preferences_expiry = None

    @property
    def preferences(self) -> UserPreferences:
        return self._preferences

    async def _ensure_preferences(self) -> None:
        if self._is_fresh():
            return

        async with self._refresh_lock:
            if self._is_fresh():
                return

            try:
                preferences, patterns = await asyncio.gather(
                    self.user.get_preferences(),
                    self.user.get_temporal_patterns()
                )
            except Exception as e:
                # Keep the previous snapshot and retry on the next call
                self.logger.warning("Preference refresh failed", error=str(e))
                return

            self._preferences = preferences
            self._patterns = patterns
            self._preferences_expiry = self.clock() + timedelta(
                seconds=self.settings.preference_refresh_seconds
            )
            self.logger.debug(
                "User preferences refreshed",
                top_artists=len(preferences.top_artists),
                top_genres=len(preferences.top_genres)
            )

    def _is_fresh(self) -> bool:
        return self._preferences_expiry is not None and self.clock() < self._preferences_expiry
