"""
Track and Scoring Models

Core data structures shared by the scoring, radio and training layers:
catalog tracks, per-track feature bundles, the per-request scoring context
and the score records produced by the hybrid scorer.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Union


class SeedType(Enum):
    """Anchor entity types for radio sessions."""
    TRACK = "track"
    ARTIST = "artist"
    GENRE = "genre"
    MOOD = "mood"
    PLAYLIST = "playlist"


class QueueMode(Enum):
    """How the host queue is being filled."""
    MANUAL = "manual"
    SHUFFLE = "shuffle"
    AUTO = "auto"
    RADIO = "radio"


class UserEventType(Enum):
    """Listening events reported by the host."""
    PLAY = "play"
    SKIP = "skip"
    COMPLETE = "complete"
    LIKE = "like"
    DISLIKE = "dislike"


class CandidateSource(Enum):
    """Candidate pools the queue catalog can draw from."""
    SIMILAR = "similar"
    DISCOVERY = "discovery"
    LIBRARY = "library"


@dataclass(frozen=True)
class Track:
    """A catalog track. Identity is owned by the external catalog."""
    id: str
    title: str
    artist_id: Optional[str] = None
    genre: Optional[str] = None
    duration: Optional[float] = None  # seconds


@dataclass
class AudioFeatures:
    """Pre-computed audio analysis values. Scalars are raw provider units."""
    bpm: Optional[float] = None
    energy: Optional[float] = None
    valence: Optional[float] = None
    danceability: Optional[float] = None
    acousticness: Optional[float] = None
    instrumentalness: Optional[float] = None
    speechiness: Optional[float] = None
    loudness: Optional[float] = None  # dB, typically -60..0
    key: Optional[Union[str, int]] = None  # "C#" / "Am" or pitch class 0-11
    mode: Optional[str] = None  # "major" | "minor"


@dataclass
class EmotionFeatures:
    """Valence/arousal emotion estimate, each in [0, 1]."""
    valence: float
    arousal: float
    dominance: Optional[float] = None
    mood_category: Optional[str] = None


@dataclass
class LyricsFeatures:
    """Lyrics analysis values."""
    sentiment: float  # -1..1
    emotional_intensity: Optional[float] = None
    language: Optional[str] = None


@dataclass
class AggregatedFeatures:
    """Per-track feature bundle; any part may be missing."""
    audio: Optional[AudioFeatures] = None
    emotion: Optional[EmotionFeatures] = None
    lyrics: Optional[LyricsFeatures] = None


@dataclass(frozen=True)
class RadioSeed:
    """Anchor for a radio session."""
    type: SeedType
    id: str
    name: Optional[str] = None


@dataclass(frozen=True)
class RadioSeedState:
    """A radio seed together with the drift of its session at scoring time."""
    seed: RadioSeed
    drift: int = 0


@dataclass
class ScoringContext:
    """Transient per-request listening context."""
    hour_of_day: int
    day_of_week: int
    is_weekend: bool = False
    session_tracks: List[Track] = field(default_factory=list)
    session_artists: List[str] = field(default_factory=list)
    session_genres: List[str] = field(default_factory=list)
    current_track: Optional[Track] = None
    user_mood: Optional[str] = None
    activity: Optional[str] = None
    queue_mode: QueueMode = QueueMode.MANUAL
    radio_seed: Optional[RadioSeedState] = None

    @classmethod
    def at(cls, moment: datetime, **kwargs) -> "ScoringContext":
        """Build a context whose time fields are taken from ``moment``."""
        day_of_week = moment.weekday()
        return cls(
            hour_of_day=moment.hour,
            day_of_week=day_of_week,
            is_weekend=day_of_week >= 5,
            **kwargs
        )


PENALTY_COMPONENTS = ("recent_play_penalty", "dislike_penalty", "repetition_penalty")


@dataclass(frozen=True)
class ScoreComponents:
    """
    Sparse record of named score signals.

    Signals are nominally in [0, 100]; penalties are non-negative
    magnitudes subtracted during combination. ``None`` means the signal
    could not be computed for this track and context.
    """
    base_preference: Optional[float] = None
    ml_prediction: Optional[float] = None
    audio_match: Optional[float] = None
    mood_match: Optional[float] = None
    harmonic_flow: Optional[float] = None
    temporal_fit: Optional[float] = None
    session_flow: Optional[float] = None
    activity_match: Optional[float] = None
    exploration_bonus: Optional[float] = None
    serendipity_score: Optional[float] = None
    diversity_score: Optional[float] = None
    recent_play_penalty: Optional[float] = None
    dislike_penalty: Optional[float] = None
    repetition_penalty: Optional[float] = None

    def present(self) -> Dict[str, float]:
        """Computed components in declaration order."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }

    def signals(self) -> Dict[str, float]:
        return {k: v for k, v in self.present().items() if k not in PENALTY_COMPONENTS}

    def penalties(self) -> Dict[str, float]:
        return {k: v for k, v in self.present().items() if k in PENALTY_COMPONENTS}


@dataclass(frozen=True)
class TrackScore:
    """Result of a single scoring call."""
    track_id: str
    final_score: float
    confidence: float
    components: ScoreComponents
    explanation: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ScoredTrack:
    """A track paired with its score, as returned by ranking calls."""
    track: Track
    score: TrackScore


@dataclass
class ExplanationDetail:
    """One component line of a detailed explanation."""
    component: str
    label: str
    value: float
    impact: str  # positive | neutral | negative
    reason: str


@dataclass
class ScoreComparison:
    vs_session_average: float
    vs_historical_average: float


@dataclass
class ScoreExplanation:
    """Detailed, human-readable breakdown of a cached score."""
    track_id: str
    score: TrackScore
    summary: str
    details: List[ExplanationDetail]
    comparison: ScoreComparison


@dataclass
class UserEvent:
    """A listening event reported by the host."""
    type: UserEventType
    track: Optional[Track] = None
    timestamp: datetime = field(default_factory=datetime.now)
    reason: Optional[str] = None


@dataclass
class DislikedTrack:
    """An explicit dislike record from the user store."""
    track_id: str
    artist_id: Optional[str] = None
    reason: Optional[str] = None  # e.g. "dont_like_artist"


@dataclass
class UserPreferences:
    """Aggregated user taste: ordered top artist ids and genres."""
    top_artists: List[str] = field(default_factory=list)
    top_genres: List[str] = field(default_factory=list)


@dataclass
class TemporalPatterns:
    """Learned listening energy (0-1) for each hour of the day."""
    energy_by_hour: List[float] = field(default_factory=list)


@dataclass
class LastTrainingInfo:
    version: int
    timestamp: datetime


@dataclass
class CandidateQuery:
    """Descriptor passed to the queue catalog when asking for candidates."""
    count: int
    sources: List[CandidateSource]
    radio_seed: Optional[RadioSeed] = None
    scoring_context: Optional[ScoringContext] = None
