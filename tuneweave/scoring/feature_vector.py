"""
Feature Vector Builder

Builds the structured ``FeatureVector`` consumed by the preference
classifier and flattens it to a fixed-order list of floats.

Raw provider units are normalized here (and only here):
- bpm divided by 200
- loudness shifted from dB (-60..0) into [0, 1]
- lyrics sentiment remapped from [-1, 1] to [0, 1]
- duration divided by 600 seconds

Unknown fields stay ``None`` in the structured vector; the neutral
default for each field is applied once, by ``flatten_feature_vector``.
"""

import math
from typing import Dict, List, Optional

from ..models.track_models import AggregatedFeatures, ScoringContext, Track
from ..models.training_models import (
    AudioVector,
    ContextVector,
    EmotionVector,
    FeatureVector,
    LyricsVector,
    TrackVector,
    UserVector,
)

# Neutral value used for each unknown field when flattening
FIELD_DEFAULTS: Dict[str, float] = {
    "track.duration": 0.4,
    "audio.bpm": 0.6,
    "audio.energy": 0.5,
    "audio.valence": 0.5,
    "audio.danceability": 0.5,
    "audio.acousticness": 0.5,
    "audio.instrumentalness": 0.5,
    "audio.loudness": 0.5,
    "audio.speechiness": 0.1,
    "emotion.valence": 0.5,
    "emotion.arousal": 0.5,
    "emotion.dominance": 0.5,
    "lyrics.sentiment": 0.5,
    "lyrics.intensity": 0.5,
}

FEATURE_NAMES: List[str] = [
    "track.duration",
    "audio.bpm",
    "audio.energy",
    "audio.valence",
    "audio.danceability",
    "audio.acousticness",
    "audio.instrumentalness",
    "audio.loudness",
    "audio.speechiness",
    "emotion.valence",
    "emotion.arousal",
    "emotion.dominance",
    "lyrics.sentiment",
    "lyrics.intensity",
    "context.hour_sin",
    "context.hour_cos",
    "context.day_sin",
    "context.day_cos",
    "context.is_weekend",
    "user.play_count",
    "user.skip_ratio",
    "user.completion_ratio",
    "user.artist_affinity",
    "user.genre_affinity",
]

FEATURE_VECTOR_DIMENSION = len(FEATURE_NAMES)

PLAY_COUNT_SCALE = 100.0


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def normalize_bpm(bpm: Optional[float]) -> Optional[float]:
    return None if bpm is None else _clamp(bpm / 200.0)


def normalize_loudness(loudness_db: Optional[float]) -> Optional[float]:
    return None if loudness_db is None else _clamp((loudness_db + 60.0) / 60.0)


def normalize_sentiment(sentiment: Optional[float]) -> Optional[float]:
    return None if sentiment is None else _clamp((sentiment + 1.0) / 2.0)


def normalize_duration(seconds: Optional[float]) -> Optional[float]:
    return None if seconds is None else _clamp(seconds / 600.0)


def encode_hour(hour: int) -> List[float]:
    """Cyclic (sin, cos) encoding of the hour of day."""
    angle = 2 * math.pi * (hour % 24) / 24
    return [math.sin(angle), math.cos(angle)]


def encode_day(day: int) -> List[float]:
    """Cyclic (sin, cos) encoding of the day of week (0 = Monday)."""
    angle = 2 * math.pi * (day % 7) / 7
    return [math.sin(angle), math.cos(angle)]


def audio_vector(features: AggregatedFeatures) -> AudioVector:
    audio = features.audio
    if audio is None:
        return AudioVector()
    return AudioVector(
        bpm=normalize_bpm(audio.bpm),
        energy=audio.energy,
        valence=audio.valence,
        danceability=audio.danceability,
        acousticness=audio.acousticness,
        instrumentalness=audio.instrumentalness,
        loudness=normalize_loudness(audio.loudness),
        speechiness=audio.speechiness,
    )


def emotion_vector(features: AggregatedFeatures) -> EmotionVector:
    emotion = features.emotion
    if emotion is None:
        return EmotionVector()
    return EmotionVector(
        valence=emotion.valence,
        arousal=emotion.arousal,
        dominance=emotion.dominance,
    )


def lyrics_vector(features: AggregatedFeatures) -> LyricsVector:
    lyrics = features.lyrics
    if lyrics is None:
        return LyricsVector()
    return LyricsVector(
        sentiment=normalize_sentiment(lyrics.sentiment),
        intensity=lyrics.emotional_intensity,
    )


def build_feature_vector(
    track: Track,
    features: AggregatedFeatures,
    context: ScoringContext,
    user: Optional[UserVector] = None
) -> FeatureVector:
    """Assemble a normalized FeatureVector for a (track, context) pair."""
    return FeatureVector(
        track=TrackVector(duration=normalize_duration(track.duration)),
        audio=audio_vector(features),
        emotion=emotion_vector(features),
        lyrics=lyrics_vector(features),
        context=ContextVector(
            hour_of_day=context.hour_of_day,
            day_of_week=context.day_of_week,
            is_weekend=context.is_weekend,
        ),
        user=user or UserVector(),
    )


def _or_default(value: Optional[float], name: str) -> float:
    return FIELD_DEFAULTS[name] if value is None else float(value)


def flatten_feature_vector(vector: FeatureVector) -> List[float]:
    """Flatten to ``FEATURE_VECTOR_DIMENSION`` floats in ``FEATURE_NAMES`` order."""
    audio = vector.audio
    emotion = vector.emotion
    lyrics = vector.lyrics
    context = vector.context
    user = vector.user

    flat = [
        _or_default(vector.track.duration, "track.duration"),
        _or_default(audio.bpm, "audio.bpm"),
        _or_default(audio.energy, "audio.energy"),
        _or_default(audio.valence, "audio.valence"),
        _or_default(audio.danceability, "audio.danceability"),
        _or_default(audio.acousticness, "audio.acousticness"),
        _or_default(audio.instrumentalness, "audio.instrumentalness"),
        _or_default(audio.loudness, "audio.loudness"),
        _or_default(audio.speechiness, "audio.speechiness"),
        _or_default(emotion.valence, "emotion.valence"),
        _or_default(emotion.arousal, "emotion.arousal"),
        _or_default(emotion.dominance, "emotion.dominance"),
        _or_default(lyrics.sentiment, "lyrics.sentiment"),
        _or_default(lyrics.intensity, "lyrics.intensity"),
        *encode_hour(context.hour_of_day),
        *encode_day(context.day_of_week),
        1.0 if context.is_weekend else 0.0,
        _clamp(user.play_count / PLAY_COUNT_SCALE),
        _clamp(user.skip_ratio),
        _clamp(user.completion_ratio),
        _clamp(user.artist_affinity, -1.0, 1.0),
        _clamp(user.genre_affinity, -1.0, 1.0),
    ]
    return flat
