"""
Score Component Calculator

Computes the sparse ScoreComponents record for a (track, context) pair.
Collaborator reads are issued concurrently; a failing read omits only the
components that depend on it.
"""

import asyncio
import random
from datetime import datetime
from typing import Callable, List, Optional, Tuple

import structlog

from ..exceptions import ProviderUnavailableError
from ..models.config_models import AlgorithmSettings
from ..models.track_models import (
    AggregatedFeatures,
    AudioFeatures,
    ScoreComponents,
    ScoringContext,
    TemporalPatterns,
    Track,
    UserPreferences,
)
from ..models.training_models import UserVector
from ..services.collaborators import FeatureStore, UserStore
from . import components as calc
from .feature_vector import build_feature_vector
from .preference_classifier import PreferenceClassifier

logger = structlog.get_logger(__name__)

# Marks a collaborator read that failed (distinct from a legitimate None)
_UNAVAILABLE = object()


class ScoreComponentCalculator:
    """
    Builds ScoreComponents from features, context and user aggregates.

    Signals are returned on a 0-100 scale; penalties as non-negative
    magnitudes.
    """

    def __init__(
        self,
        features: FeatureStore,
        user: UserStore,
        classifier: PreferenceClassifier,
        settings: AlgorithmSettings,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.features = features
        self.user = user
        self.classifier = classifier
        self.settings = settings
        self.rng = rng or random.Random()
        self.clock = clock
        self.logger = logger.bind(component="ScoreComponentCalculator")

    async def calculate(
        self,
        track: Track,
        features: AggregatedFeatures,
        context: ScoringContext,
        preferences: UserPreferences,
        patterns: TemporalPatterns
    ) -> ScoreComponents:
        audio = features.audio

        results = await asyncio.gather(
            self._affinities(track),
            self._current_audio(context, audio),
            self._session_energies(context, audio),
            self._fetch("user", "get_last_played", self.user.get_last_played(track.id)),
            self._fetch("user", "get_disliked_tracks", self.user.get_disliked_tracks()),
            return_exceptions=True
        )
        affinities, current_audio, session_energies, last_played, disliked = (
            self._absorb(result, track.id) for result in results
        )

        values = {}

        # Preference and model prediction
        if affinities is not _UNAVAILABLE:
            artist_affinity, genre_affinity = affinities
            values["base_preference"] = calc.base_preference(artist_affinity, genre_affinity) * 100
        else:
            artist_affinity = genre_affinity = 0.0

        if self.classifier.is_ready() and self.settings.ml_weight > 0:
            vector = build_feature_vector(
                track,
                features,
                context,
                UserVector(artist_affinity=artist_affinity, genre_affinity=genre_affinity)
            )
            values["ml_prediction"] = await self.classifier.predict_single(vector) * 100

        # Relation to the current track
        if current_audio is not _UNAVAILABLE:
            values["audio_match"] = _scaled(calc.audio_match(audio, current_audio))
            values["harmonic_flow"] = _scaled(calc.harmonic_compatibility(audio, current_audio))

        # Listening context
        values["mood_match"] = _scaled(calc.mood_match(features.emotion, context.user_mood))
        values["temporal_fit"] = self._temporal_fit(features, context, patterns)
        if session_energies is not _UNAVAILABLE:
            values["session_flow"] = _scaled(
                calc.session_flow(audio.energy if audio else None, session_energies)
            )
        values["activity_match"] = _scaled(calc.activity_match(audio, context.activity))

        # Discovery
        is_new_artist = track.artist_id not in preferences.top_artists
        is_new_genre = track.genre not in preferences.top_genres
        values["exploration_bonus"] = calc.exploration_bonus(
            is_new_artist, is_new_genre, self.settings.exploration_epsilon, self.rng
        ) * 100
        values["serendipity_score"] = calc.serendipity(
            track, preferences.top_genres, preferences.top_artists, is_new_artist
        ) * 100
        values["diversity_score"] = calc.diversity(
            track, context.session_artists, context.session_genres
        ) * 100

        # Penalties
        if last_played is not _UNAVAILABLE:
            values["recent_play_penalty"] = calc.recent_play_penalty(last_played, self.clock())
        if disliked is not _UNAVAILABLE:
            values["dislike_penalty"] = calc.dislike_penalty(track, disliked)
        values["repetition_penalty"] = calc.repetition_penalty(track, context.session_artists)

        return ScoreComponents(**values)

    def _temporal_fit(
        self,
        features: AggregatedFeatures,
        context: ScoringContext,
        patterns: TemporalPatterns
    ) -> Optional[float]:
        if not self.settings.enable_temporal_matching:
            return None
        if self.settings.time_of_day_mode == "off":
            return 50.0

        audio = features.audio
        energy = audio.energy if audio else None
        valence = audio.valence if audio and audio.valence is not None else None
        if valence is None and features.emotion is not None:
            valence = features.emotion.valence

        return _scaled(calc.temporal_fit(
            context.hour_of_day, energy, valence, patterns.energy_by_hour
        ))

    async def _affinities(self, track: Track) -> Tuple[float, float]:
        artist, genre = 0.0, 0.0
        if track.artist_id:
            artist = await self._fetch(
                "user", "get_artist_affinity", self.user.get_artist_affinity(track.artist_id)
            )
        if track.genre:
            genre = await self._fetch(
                "user", "get_genre_affinity", self.user.get_genre_affinity(track.genre)
            )
        return artist, genre

    async def _current_audio(
        self,
        context: ScoringContext,
        audio: Optional[AudioFeatures]
    ) -> Optional[AudioFeatures]:
        if audio is None or context.current_track is None:
            return None
        return await self._fetch(
            "features", "get_audio", self.features.get_audio(context.current_track.id)
        )

    async def _session_energies(
        self,
        context: ScoringContext,
        audio: Optional[AudioFeatures]
    ) -> List[float]:
        if (
            not self.settings.enable_session_flow
            or not context.session_tracks
            or audio is None
            or audio.energy is None
        ):
            return []

        recent = context.session_tracks[-calc.SESSION_FLOW_WINDOW:]
        results = await asyncio.gather(
            *(self.features.get_audio(t.id) for t in recent),
            return_exceptions=True
        )

        energies = []
        for session_track, result in zip(recent, results):
            if isinstance(result, Exception):
                self.logger.debug(
                    "Session track audio unavailable",
                    track_id=session_track.id,
                    error=str(result)
                )
                continue
            if result is not None and result.energy is not None:
                energies.append(result.energy)
        return energies

    @staticmethod
    async def _fetch(provider: str, operation: str, awaitable):
        try:
            return await awaitable
        except Exception as e:
            raise ProviderUnavailableError(provider, operation, e) from e

    def _absorb(self, result, track_id: str):
        if isinstance(result, ProviderUnavailableError):
            self.logger.warning(
                "Collaborator unavailable, dependent components omitted",
                track_id=track_id,
                provider=result.provider,
                operation=result.operation,
                error=str(result.cause)
            )
            return _UNAVAILABLE
        if isinstance(result, BaseException):
            raise result
        return result


def _scaled(value: Optional[float]) -> Optional[float]:
    return None if value is None else value * 100
