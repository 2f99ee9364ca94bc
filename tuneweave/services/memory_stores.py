"""
In-Memory Collaborators

Dictionary-backed implementations of every collaborator contract. Used by
the demo host (optionally seeded from a JSON catalog) and by the tests.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from ..models.track_models import (
    AggregatedFeatures,
    AudioFeatures,
    CandidateQuery,
    CandidateSource,
    DislikedTrack,
    EmotionFeatures,
    LastTrainingInfo,
    LyricsFeatures,
    TemporalPatterns,
    Track,
    UserPreferences,
)
from ..models.training_models import TrainingDataset
from .collaborators import (
    CoreEndpoints,
    FeatureStore,
    LibraryCatalog,
    ModelStorage,
    TrainingLog,
    UserStore,
)
from .provider_registry import FeatureCapability, FeatureProvider

logger = structlog.get_logger(__name__)


class InMemoryFeatureStore(FeatureStore):

    def __init__(self, features: Optional[Dict[str, AggregatedFeatures]] = None):
        self.features: Dict[str, AggregatedFeatures] = dict(features or {})
        self.prefetched: List[str] = []

    async def get(self, track_id: str) -> AggregatedFeatures:
        return self.features.get(track_id, AggregatedFeatures())

    async def get_audio(self, track_id: str) -> Optional[AudioFeatures]:
        features = self.features.get(track_id)
        return features.audio if features else None

    async def prefetch(self, track_ids: List[str]) -> None:
        self.prefetched.extend(track_ids)


class InMemoryUserStore(UserStore):

    def __init__(
        self,
        artist_affinity: Optional[Dict[str, float]] = None,
        genre_affinity: Optional[Dict[str, float]] = None,
        preferences: Optional[UserPreferences] = None,
        temporal_patterns: Optional[TemporalPatterns] = None,
        last_played: Optional[Dict[str, datetime]] = None,
        disliked: Optional[List[DislikedTrack]] = None
    ):
        self.artist_affinity = dict(artist_affinity or {})
        self.genre_affinity = dict(genre_affinity or {})
        self.preferences = preferences or UserPreferences()
        self.temporal_patterns = temporal_patterns or TemporalPatterns()
        self.last_played = dict(last_played or {})
        self.disliked = list(disliked or [])
        self.preference_reads = 0

    async def get_artist_affinity(self, artist_id: str) -> float:
        return self.artist_affinity.get(artist_id, 0.0)

    async def get_genre_affinity(self, genre: str) -> float:
        return self.genre_affinity.get(genre, 0.0)

    async def get_preferences(self) -> UserPreferences:
        self.preference_reads += 1
        return self.preferences

    async def get_temporal_patterns(self) -> TemporalPatterns:
        return self.temporal_patterns

    async def get_last_played(self, track_id: str) -> Optional[datetime]:
        return self.last_played.get(track_id)

    async def get_disliked_tracks(self) -> List[DislikedTrack]:
        return list(self.disliked)


class InMemoryLibrary(LibraryCatalog):
    """
    Library backed by a flat track list.

    ``similar`` maps a track id to similar track ids; ``discovery`` is the
    pool returned for discovery requests (defaults to the whole library).
    """

    def __init__(
        self,
        tracks: Optional[List[Track]] = None,
        playlists: Optional[Dict[str, List[str]]] = None,
        similar: Optional[Dict[str, List[str]]] = None,
        discovery: Optional[List[str]] = None
    ):
        self.tracks: Dict[str, Track] = {t.id: t for t in (tracks or [])}
        self.playlists = dict(playlists or {})
        self.similar = dict(similar or {})
        self.discovery = list(discovery) if discovery is not None else None
        self.queries: List[CandidateQuery] = []

    async def get_track(self, track_id: str) -> Optional[Track]:
        return self.tracks.get(track_id)

    async def get_tracks_by_artist(self, artist_id: str) -> List[Track]:
        return [t for t in self.tracks.values() if t.artist_id == artist_id]

    async def get_tracks_by_genre(self, genre: str) -> List[Track]:
        return [t for t in self.tracks.values() if t.genre == genre]

    async def get_playlist_tracks(self, playlist_id: str) -> List[Track]:
        return self._resolve(self.playlists.get(playlist_id, []))

    async def get_candidates(self, query: CandidateQuery) -> List[Track]:
        self.queries.append(query)
        candidates: List[Track] = []

        for source in query.sources:
            if source == CandidateSource.SIMILAR and query.radio_seed is not None:
                candidates.extend(self._resolve(self.similar.get(query.radio_seed.id, [])))
            elif source == CandidateSource.DISCOVERY:
                pool = self.discovery if self.discovery is not None else list(self.tracks)
                candidates.extend(self._resolve(pool))
            elif source == CandidateSource.LIBRARY:
                candidates.extend(self.tracks.values())

        return candidates[:query.count]

    def _resolve(self, track_ids: List[str]) -> List[Track]:
        return [self.tracks[tid] for tid in track_ids if tid in self.tracks]


class InMemoryTrainingLog(TrainingLog):

    def __init__(
        self,
        dataset: Optional[TrainingDataset] = None,
        new_event_count: int = 0,
        last_training: Optional[LastTrainingInfo] = None
    ):
        self.dataset = dataset or TrainingDataset()
        self.new_event_count = new_event_count
        self.last_training = last_training
        self.completed_versions: List[int] = []

    async def get_new_event_count(self) -> int:
        return self.new_event_count

    async def get_last_training_info(self) -> Optional[LastTrainingInfo]:
        return self.last_training

    async def mark_training_complete(self, version: int) -> None:
        self.completed_versions.append(version)
        self.last_training = LastTrainingInfo(version=version, timestamp=datetime.now())
        self.new_event_count = 0

    async def get_full_dataset(self) -> TrainingDataset:
        return self.dataset


class MemoryModelStorage(ModelStorage):

    def __init__(self):
        self.models: Dict[str, bytes] = {}
        self.values: Dict[str, Any] = {}

    async def load(self, key: str) -> Optional[bytes]:
        return self.models.get(key)

    async def save(self, key: str, model: bytes) -> None:
        self.models[key] = model

    async def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)

    async def set(self, key: str, value: Any) -> None:
        self.values[key] = value


class InMemorySimilarityProvider(FeatureProvider):
    """Similarity provider answering from a track id -> similar ids map."""

    provider_id = "memory-similarity"
    capabilities = frozenset({FeatureCapability.SIMILARITY})

    def __init__(self, similar: Optional[Dict[str, List[str]]] = None, priority: int = 100):
        self.similar = dict(similar or {})
        self.priority = priority

    async def get_similar_tracks(self, track_id: str, limit: int) -> List[str]:
        return self.similar.get(track_id, [])[:limit]


def create_memory_endpoints(**overrides) -> CoreEndpoints:
    """Build a CoreEndpoints bundle of empty in-memory collaborators."""
    endpoints = {
        "features": InMemoryFeatureStore(),
        "user": InMemoryUserStore(),
        "library": InMemoryLibrary(),
        "training": InMemoryTrainingLog(),
        "storage": MemoryModelStorage(),
    }
    endpoints.update(overrides)
    return CoreEndpoints(**endpoints)


def load_catalog(path: str, storage: Optional[ModelStorage] = None) -> CoreEndpoints:
    """
    Seed in-memory collaborators from a JSON catalog.

    Expected layout::

        {
          "tracks": [{"id": "t1", "title": "...", "artist_id": "a1",
                      "genre": "rock", "duration": 215,
                      "audio": {...}, "emotion": {...}, "lyrics": {...}}],
          "playlists": {"p1": ["t1", "t2"]},
          "similar": {"t1": ["t2"]},
          "preferences": {"top_artists": [...], "top_genres": [...]},
          "artist_affinity": {"a1": 0.8},
          "genre_affinity": {"rock": 0.5}
        }
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))

    tracks: List[Track] = []
    features: Dict[str, AggregatedFeatures] = {}
    for entry in data.get("tracks", []):
        track = Track(
            id=str(entry["id"]),
            title=entry.get("title", ""),
            artist_id=entry.get("artist_id"),
            genre=entry.get("genre"),
            duration=entry.get("duration"),
        )
        tracks.append(track)
        features[track.id] = AggregatedFeatures(
            audio=AudioFeatures(**entry["audio"]) if entry.get("audio") else None,
            emotion=EmotionFeatures(**entry["emotion"]) if entry.get("emotion") else None,
            lyrics=LyricsFeatures(**entry["lyrics"]) if entry.get("lyrics") else None,
        )

    preferences = data.get("preferences", {})
    endpoints = create_memory_endpoints(
        features=InMemoryFeatureStore(features),
        user=InMemoryUserStore(
            artist_affinity=data.get("artist_affinity"),
            genre_affinity=data.get("genre_affinity"),
            preferences=UserPreferences(
                top_artists=preferences.get("top_artists", []),
                top_genres=preferences.get("top_genres", []),
            ),
        ),
        library=InMemoryLibrary(
            tracks=tracks,
            playlists=data.get("playlists"),
            similar=data.get("similar"),
        ),
    )
    if storage is not None:
        endpoints.storage = storage

    logger.info("Catalog loaded", path=path, tracks=len(tracks))
    return endpoints
