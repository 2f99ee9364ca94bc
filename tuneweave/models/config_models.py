"""
Configuration Models

Pydantic settings for the scoring core and the host process. Values can
be supplied directly or read from ``TUNEWEAVE_*`` environment variables
(a local ``.env`` file is honoured).
"""

import os
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


EXPLORATION_EPSILON = {
    "low": 0.05,
    "balanced": 0.15,
    "high": 0.25,
}

TEMPORAL_WEIGHT = {
    "auto": 0.08,
    "strong": 0.12,
    "off": 0.0,
}


class AlgorithmSettings(BaseModel):
    """User-facing knobs of the recommendation algorithm."""

    exploration_level: Literal["low", "balanced", "high"] = Field(
        default="balanced",
        description="How often to recommend new artists and genres"
    )
    ml_weight: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="How much to weight classifier predictions vs rules"
    )
    enable_session_flow: bool = Field(
        default=True,
        description="Consider energy transitions between session tracks"
    )
    enable_temporal_matching: bool = Field(
        default=True,
        description="Match music to time of day patterns"
    )
    time_of_day_mode: Literal["auto", "strong", "off"] = Field(
        default="auto",
        description="Strength of time-of-day matching"
    )
    auto_train: bool = Field(
        default=True,
        description="Retrain in the background on initialization when needed"
    )
    preference_refresh_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Maximum age of the cached user preference snapshot"
    )
    score_cache_size: int = Field(default=100, ge=1, description="Recent scores kept for explanations")
    feature_cache_size: int = Field(default=500, ge=1, description="Tracks kept in the feature LRU")

    @property
    def exploration_epsilon(self) -> float:
        return EXPLORATION_EPSILON[self.exploration_level]

    @property
    def temporal_weight(self) -> float:
        return TEMPORAL_WEIGHT[self.time_of_day_mode]


class SystemConfig(BaseModel):
    """Overall process configuration."""

    storage_dir: str = Field(default="data/models", description="diskcache directory for model storage")
    log_dir: str = Field(default="logs", description="Directory for rotating log files")
    log_level: str = Field(default="INFO", description="Root log level")
    catalog_path: Optional[str] = Field(default=None, description="Optional JSON catalog for the demo host")
    settings: AlgorithmSettings = Field(default_factory=AlgorithmSettings)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config() -> SystemConfig:
    """Build a SystemConfig from the environment."""
    load_dotenv()

    defaults = AlgorithmSettings()
    settings = AlgorithmSettings(
        exploration_level=os.getenv("TUNEWEAVE_EXPLORATION_LEVEL", defaults.exploration_level),
        ml_weight=float(os.getenv("TUNEWEAVE_ML_WEIGHT", defaults.ml_weight)),
        enable_session_flow=_env_bool("TUNEWEAVE_ENABLE_SESSION_FLOW", defaults.enable_session_flow),
        enable_temporal_matching=_env_bool(
            "TUNEWEAVE_ENABLE_TEMPORAL_MATCHING", defaults.enable_temporal_matching
        ),
        time_of_day_mode=os.getenv("TUNEWEAVE_TIME_OF_DAY_MODE", defaults.time_of_day_mode),
        auto_train=_env_bool("TUNEWEAVE_AUTO_TRAIN", defaults.auto_train),
    )

    return SystemConfig(
        storage_dir=os.getenv("TUNEWEAVE_MODEL_DIR", "data/models"),
        log_dir=os.getenv("TUNEWEAVE_LOG_DIR", "logs"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        catalog_path=os.getenv("TUNEWEAVE_CATALOG"),
        settings=settings,
    )
