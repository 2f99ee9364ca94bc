"""
Shared fixtures for the tuneweave test suite.

Everything is built on the in-memory collaborators so tests run without
external services.
"""

import random
from datetime import datetime

import pytest

from tuneweave.models.config_models import AlgorithmSettings
from tuneweave.models.track_models import (
    AggregatedFeatures,
    AudioFeatures,
    EmotionFeatures,
    ScoringContext,
    Track,
)
from tuneweave.models.training_models import (
    AudioVector,
    FeatureVector,
    TrainingDataset,
    TrainingSample,
)
from tuneweave.services.memory_stores import (
    InMemoryFeatureStore,
    InMemoryLibrary,
    InMemoryTrainingLog,
    InMemoryUserStore,
    MemoryModelStorage,
    create_memory_endpoints,
)


class FixedRandom(random.Random):
    """Random source whose ``random()`` always returns the same draw."""

    def __init__(self, value: float = 0.99):
        super().__init__(0)
        self.value = value

    def random(self):
        return self.value


@pytest.fixture
def now():
    """A fixed Wednesday afternoon."""
    return datetime(2024, 5, 15, 14, 30)


@pytest.fixture
def clock(now):
    return lambda: now


@pytest.fixture
def fixed_rng():
    return FixedRandom()


@pytest.fixture
def settings():
    return AlgorithmSettings()


@pytest.fixture
def context(now):
    return ScoringContext.at(now)


@pytest.fixture
def catalog_tracks():
    """30 tracks over 10 artists and 3 genres."""
    genres = ["rock", "jazz", "electronic"]
    return [
        Track(
            id=f"t{i}",
            title=f"Track {i}",
            artist_id=f"a{i % 10}",
            genre=genres[i % 3],
            duration=180 + i,
        )
        for i in range(30)
    ]


@pytest.fixture
def catalog_features(catalog_tracks):
    features = {}
    for i, track in enumerate(catalog_tracks):
        features[track.id] = AggregatedFeatures(
            audio=AudioFeatures(
                bpm=90 + i * 2,
                energy=(i % 10) / 10,
                valence=((i * 3) % 10) / 10,
                danceability=0.5,
                acousticness=0.3,
                key="C" if i % 2 else "Am",
                mode="major" if i % 2 else "minor",
            ),
            emotion=EmotionFeatures(valence=((i * 3) % 10) / 10, arousal=(i % 10) / 10),
        )
    return features


@pytest.fixture
def feature_store(catalog_features):
    return InMemoryFeatureStore(catalog_features)


@pytest.fixture
def user_store():
    return InMemoryUserStore(
        artist_affinity={"a1": 0.8, "a2": -0.5},
        genre_affinity={"rock": 0.4},
    )


@pytest.fixture
def library(catalog_tracks):
    return InMemoryLibrary(
        tracks=catalog_tracks,
        playlists={"p1": [t.id for t in catalog_tracks[:8]]},
        similar={"t0": [t.id for t in catalog_tracks[1:]]},
    )


@pytest.fixture
def training_log():
    return InMemoryTrainingLog()


@pytest.fixture
def model_storage():
    return MemoryModelStorage()


@pytest.fixture
def endpoints(feature_store, user_store, library, training_log, model_storage):
    return create_memory_endpoints(
        features=feature_store,
        user=user_store,
        library=library,
        training=training_log,
        storage=model_storage,
    )


@pytest.fixture
def make_dataset():
    """Factory for labelled datasets that a small network can separate."""

    def _make(positive: int = 30, negative: int = 30, partial: int = 0) -> TrainingDataset:
        def sample(prefix: str, index: int, energy: float, label: float) -> TrainingSample:
            return TrainingSample(
                track=Track(id=f"{prefix}-{index}", title=f"{prefix} {index}", artist_id=f"{prefix}-artist"),
                features=FeatureVector(audio=AudioVector(energy=energy, valence=energy)),
                label=label,
            )

        return TrainingDataset(
            positive=[sample("pos", i, 0.9, 1.0) for i in range(positive)],
            negative=[sample("neg", i, 0.1, 0.0) for i in range(negative)],
            partial=[sample("part", i, 0.5, 0.5) for i in range(partial)],
        )

    return _make
