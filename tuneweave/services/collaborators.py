"""
Collaborator Interfaces

Abstract contracts for the external systems the scoring core reads from
and writes to: the feature store, the user store, the library/queue
catalog, the training log and model storage. Hosts supply concrete
implementations; ``memory_stores`` ships in-memory ones.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models.track_models import (
    AggregatedFeatures,
    AudioFeatures,
    CandidateQuery,
    DislikedTrack,
    LastTrainingInfo,
    TemporalPatterns,
    Track,
    UserPreferences,
)
from ..models.training_models import TrainingDataset


class FeatureStore(ABC):
    """Per-track aggregated features."""

    @abstractmethod
    async def get(self, track_id: str) -> AggregatedFeatures:
        """Return every known feature group for a track (missing groups are None)."""

    @abstractmethod
    async def get_audio(self, track_id: str) -> Optional[AudioFeatures]:
        """Return only the audio features of a track."""

    async def prefetch(self, track_ids: List[str]) -> None:
        """Warm any cache for the given tracks. Optional."""
        return None


class UserStore(ABC):
    """User-state aggregates."""

    @abstractmethod
    async def get_artist_affinity(self, artist_id: str) -> float:
        """Affinity in [-1, 1]; 0 when unknown."""

    @abstractmethod
    async def get_genre_affinity(self, genre: str) -> float:
        """Affinity in [-1, 1]; 0 when unknown."""

    @abstractmethod
    async def get_preferences(self) -> UserPreferences:
        pass

    @abstractmethod
    async def get_temporal_patterns(self) -> TemporalPatterns:
        pass

    @abstractmethod
    async def get_last_played(self, track_id: str) -> Optional[datetime]:
        pass

    @abstractmethod
    async def get_disliked_tracks(self) -> List[DislikedTrack]:
        pass


class LibraryCatalog(ABC):
    """Library and queue candidate sources."""

    @abstractmethod
    async def get_tracks_by_artist(self, artist_id: str) -> List[Track]:
        pass

    @abstractmethod
    async def get_tracks_by_genre(self, genre: str) -> List[Track]:
        pass

    @abstractmethod
    async def get_playlist_tracks(self, playlist_id: str) -> List[Track]:
        pass

    @abstractmethod
    async def get_candidates(self, query: CandidateQuery) -> List[Track]:
        pass

    async def get_track(self, track_id: str) -> Optional[Track]:
        return None


class TrainingLog(ABC):
    """Listening-event log used to build training datasets."""

    @abstractmethod
    async def get_new_event_count(self) -> int:
        """Events recorded since the last completed training."""

    @abstractmethod
    async def get_last_training_info(self) -> Optional[LastTrainingInfo]:
        pass

    @abstractmethod
    async def mark_training_complete(self, version: int) -> None:
        pass

    @abstractmethod
    async def get_full_dataset(self) -> TrainingDataset:
        pass


class ModelStorage(ABC):
    """Model blobs plus a generic key/value area for metadata."""

    @abstractmethod
    async def load(self, key: str) -> Optional[bytes]:
        pass

    @abstractmethod
    async def save(self, key: str, model: bytes) -> None:
        pass

    @abstractmethod
    async def get(self, key: str, default: Any = None) -> Any:
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        pass

    async def save_with_metadata(
        self,
        key: str,
        model: bytes,
        metadata_key: str,
        metadata: Dict[str, Any]
    ) -> None:
        """
        Persist a model and its metadata together.

        Storages that support transactions should override this so both
        writes land or neither does.
        """
        await self.save(key, model)
        await self.set(metadata_key, metadata)


@dataclass
class CoreEndpoints:
    """Bundle of collaborators handed to the scoring core."""
    features: FeatureStore
    user: UserStore
    library: LibraryCatalog
    training: TrainingLog
    storage: ModelStorage
