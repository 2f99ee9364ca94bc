"""
Training Models

Feature vectors fed to the preference classifier, labelled training
datasets, and the pydantic result/status records reported by the
classifier and the trainer.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .track_models import Track


# --- Feature vector sections -------------------------------------------------
# All scalar fields are normalized to roughly [0, 1] (affinities to [-1, 1]).
# ``None`` means unknown; neutral defaults are applied once, when flattening.

@dataclass
class TrackVector:
    duration: Optional[float] = None


@dataclass
class AudioVector:
    bpm: Optional[float] = None
    energy: Optional[float] = None
    valence: Optional[float] = None
    danceability: Optional[float] = None
    acousticness: Optional[float] = None
    instrumentalness: Optional[float] = None
    loudness: Optional[float] = None
    speechiness: Optional[float] = None


@dataclass
class EmotionVector:
    valence: Optional[float] = None
    arousal: Optional[float] = None
    dominance: Optional[float] = None


@dataclass
class LyricsVector:
    sentiment: Optional[float] = None
    intensity: Optional[float] = None


@dataclass
class ContextVector:
    hour_of_day: int = 12
    day_of_week: int = 0
    is_weekend: bool = False


@dataclass
class UserVector:
    play_count: int = 0
    skip_ratio: float = 0.0
    completion_ratio: float = 0.5
    artist_affinity: float = 0.0
    genre_affinity: float = 0.0


@dataclass
class FeatureVector:
    """Structured classifier input; see ``scoring.feature_vector`` for layout."""
    track: TrackVector = field(default_factory=TrackVector)
    audio: AudioVector = field(default_factory=AudioVector)
    emotion: EmotionVector = field(default_factory=EmotionVector)
    lyrics: LyricsVector = field(default_factory=LyricsVector)
    context: ContextVector = field(default_factory=ContextVector)
    user: UserVector = field(default_factory=UserVector)


@dataclass
class TrainingSample:
    """A labelled example. Labels are 0/1 or fractional (partial listens)."""
    track: Track
    features: FeatureVector
    label: float


@dataclass
class TrainingDataset:
    positive: List[TrainingSample] = field(default_factory=list)
    negative: List[TrainingSample] = field(default_factory=list)
    partial: List[TrainingSample] = field(default_factory=list)

    def all_samples(self) -> List[TrainingSample]:
        return [*self.positive, *self.negative, *self.partial]

    @property
    def total_samples(self) -> int:
        return len(self.positive) + len(self.negative) + len(self.partial)


# --- Results and status ------------------------------------------------------

class TrainingState(Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    TRAINING = "training"
    SAVING = "saving"
    COMPLETE = "complete"
    ERROR = "error"


class TrainingErrorCode(Enum):
    """Why a training run did not succeed."""
    CONFIGURATION = "configuration"
    CONCURRENCY_CONFLICT = "concurrency_conflict"
    INSUFFICIENT_DATA = "insufficient_data"
    CANCELLED = "cancelled"
    TRAINING_FAILED = "training_failed"
    PERSISTENCE_FAILED = "persistence_failed"


class TrainingMetrics(BaseModel):
    """Loss/accuracy of the final epoch plus per-epoch history."""
    loss: float = Field(default=0.0, description="Training loss of the last epoch")
    accuracy: float = Field(default=0.0, description="Training accuracy of the last epoch")
    val_loss: float = Field(default=0.0, description="Validation loss of the last epoch")
    val_accuracy: float = Field(default=0.0, description="Validation accuracy of the last epoch")
    epochs: int = Field(default=0, description="Number of epochs actually run")
    loss_history: List[float] = Field(default_factory=list)
    accuracy_history: List[float] = Field(default_factory=list)


class ModelInfo(BaseModel):
    """Descriptor of the classifier a result refers to."""
    version: int = 0
    parameters: int = 0
    architecture: str = ""
    input_dimension: int = 0
    output_dimension: int = 0


class TrainingResult(BaseModel):
    """Outcome of a training run. Failures are reported here, never raised."""
    success: bool
    metrics: TrainingMetrics = Field(default_factory=TrainingMetrics)
    model: ModelInfo = Field(default_factory=ModelInfo)
    duration: float = Field(default=0.0, description="Wall time in seconds")
    completed_at: datetime = Field(default_factory=datetime.now)
    error: Optional[str] = None
    error_code: Optional[TrainingErrorCode] = None


class TrainingStatus(BaseModel):
    """Observable trainer progress."""
    state: TrainingState = TrainingState.IDLE
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    current_epoch: int = 0
    total_epochs: int = 0
    last_result: Optional[TrainingResult] = None
