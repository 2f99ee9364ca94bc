"""
Models Module

Data models shared across the scoring, training and radio layers.
"""

from .track_models import (
    AggregatedFeatures,
    AudioFeatures,
    CandidateQuery,
    CandidateSource,
    DislikedTrack,
    EmotionFeatures,
    ExplanationDetail,
    LastTrainingInfo,
    LyricsFeatures,
    PENALTY_COMPONENTS,
    QueueMode,
    RadioSeed,
    RadioSeedState,
    ScoreComparison,
    ScoreComponents,
    ScoredTrack,
    ScoreExplanation,
    ScoringContext,
    SeedType,
    TemporalPatterns,
    Track,
    TrackScore,
    UserEvent,
    UserEventType,
    UserPreferences,
)
from .training_models import (
    AudioVector,
    ContextVector,
    EmotionVector,
    FeatureVector,
    LyricsVector,
    ModelInfo,
    TrackVector,
    TrainingDataset,
    TrainingErrorCode,
    TrainingMetrics,
    TrainingResult,
    TrainingSample,
    TrainingState,
    TrainingStatus,
    UserVector,
)
from .config_models import AlgorithmSettings, SystemConfig, load_config

__all__ = [
    # Track and scoring models
    "AggregatedFeatures",
    "AudioFeatures",
    "CandidateQuery",
    "CandidateSource",
    "DislikedTrack",
    "EmotionFeatures",
    "ExplanationDetail",
    "LastTrainingInfo",
    "LyricsFeatures",
    "PENALTY_COMPONENTS",
    "QueueMode",
    "RadioSeed",
    "RadioSeedState",
    "ScoreComparison",
    "ScoreComponents",
    "ScoredTrack",
    "ScoreExplanation",
    "ScoringContext",
    "SeedType",
    "TemporalPatterns",
    "Track",
    "TrackScore",
    "UserEvent",
    "UserEventType",
    "UserPreferences",

    # Training models
    "AudioVector",
    "ContextVector",
    "EmotionVector",
    "FeatureVector",
    "LyricsVector",
    "ModelInfo",
    "TrackVector",
    "TrainingDataset",
    "TrainingErrorCode",
    "TrainingMetrics",
    "TrainingResult",
    "TrainingSample",
    "TrainingState",
    "TrainingStatus",
    "UserVector",

    # Configuration
    "AlgorithmSettings",
    "SystemConfig",
    "load_config",
]
