"""
FastAPI Backend for Tuneweave

REST endpoints exposing the recommendation core: scoring, ranking,
explanations, radio, training and listening events.
"""

import time
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

import structlog
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from .. import __version__
from ..exceptions import NoRecentScoreError
from ..models.config_models import load_config
from ..models.track_models import (
    AggregatedFeatures,
    AudioFeatures,
    EmotionFeatures,
    LyricsFeatures,
    QueueMode,
    RadioSeed,
    ScoringContext,
    SeedType,
    Track,
    UserEvent,
    UserEventType,
)
from ..services.memory_stores import (
    InMemorySimilarityProvider,
    create_memory_endpoints,
    load_catalog,
)
from ..services.model_storage import DiskModelStorage
from ..services.provider_registry import ProviderRegistry
from ..services.recommendation_service import RecommendationService
from ..utils.logging_config import log_error, setup_logging
from .logging_middleware import LoggingMiddleware

logger = structlog.get_logger(__name__)

# Global service instance
recommendation_service: Optional[RecommendationService] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown."""
    global recommendation_service

    config = load_config()
    setup_logging(log_dir=config.log_dir, log_level=config.log_level)

    logger.info("Initializing Tuneweave recommendation service...")
    try:
        storage = DiskModelStorage(config.storage_dir)
        registry = ProviderRegistry()

        if config.catalog_path:
            endpoints = load_catalog(config.catalog_path, storage=storage)
            registry.register(InMemorySimilarityProvider(endpoints.library.similar))
        else:
            endpoints = create_memory_endpoints(storage=storage)

        recommendation_service = RecommendationService(
            endpoints,
            settings=config.settings,
            registry=registry
        )
        await recommendation_service.initialize()
        logger.info("Tuneweave recommendation service initialized successfully")
    except Exception as e:
        log_error(e, {"stage": "startup", "storage_dir": config.storage_dir})
        recommendation_service = None

    yield

    logger.info("Shutting down Tuneweave recommendation service...")
    if recommendation_service:
        await recommendation_service.dispose()
    recommendation_service = None


app = FastAPI(
    title="Tuneweave API",
    description="Hybrid music scoring and session-aware radio",
    version=__version__,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(LoggingMiddleware, exclude_paths=["/health", "/docs", "/openapi.json"])


# Request/Response Models
class TrackPayload(BaseModel):
    id: str
    title: str = ""
    artist_id: Optional[str] = None
    genre: Optional[str] = None
    duration: Optional[float] = Field(None, ge=0, description="Duration in seconds")

    def to_track(self) -> Track:
        return Track(
            id=self.id,
            title=self.title,
            artist_id=self.artist_id,
            genre=self.genre,
            duration=self.duration,
        )


class AudioPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    bpm: Optional[float] = Field(None, gt=0)
    energy: Optional[float] = Field(None, ge=0, le=1)
    valence: Optional[float] = Field(None, ge=0, le=1)
    danceability: Optional[float] = Field(None, ge=0, le=1)
    acousticness: Optional[float] = Field(None, ge=0, le=1)
    instrumentalness: Optional[float] = Field(None, ge=0, le=1)
    speechiness: Optional[float] = Field(None, ge=0, le=1)
    loudness: Optional[float] = Field(None, description="Loudness in dB")
    key: Optional[Union[int, str]] = Field(None, description="Key name or pitch class 0-11")
    mode: Optional[str] = Field(None, description="\"major\" or \"minor\"")


class EmotionPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    valence: float = Field(..., ge=0, le=1)
    arousal: float = Field(..., ge=0, le=1)
    dominance: Optional[float] = Field(None, ge=0, le=1)
    mood_category: Optional[str] = None


class LyricsPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    sentiment: float = Field(..., ge=-1, le=1)
    emotional_intensity: Optional[float] = Field(None, ge=0, le=1)
    language: Optional[str] = None


class FeaturesPayload(BaseModel):
    """Precomputed feature groups; omitted groups are fetched from the feature store."""
    model_config = ConfigDict(extra="forbid")

    audio: Optional[AudioPayload] = None
    emotion: Optional[EmotionPayload] = None
    lyrics: Optional[LyricsPayload] = None

    def to_features(self) -> AggregatedFeatures:
        return AggregatedFeatures(
            audio=AudioFeatures(**self.audio.model_dump()) if self.audio else None,
            emotion=EmotionFeatures(**self.emotion.model_dump()) if self.emotion else None,
            lyrics=LyricsFeatures(**self.lyrics.model_dump()) if self.lyrics else None,
        )


class ContextPayload(BaseModel):
    """Scoring context; time fields default to the server clock."""
    hour_of_day: Optional[int] = Field(None, ge=0, le=23)
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    session_tracks: List[TrackPayload] = Field(default_factory=list)
    session_artists: List[str] = Field(default_factory=list)
    session_genres: List[str] = Field(default_factory=list)
    current_track: Optional[TrackPayload] = None
    user_mood: Optional[str] = None
    activity: Optional[str] = None
    queue_mode: QueueMode = QueueMode.MANUAL

    def to_context(self) -> ScoringContext:
        now = datetime.now()
        day_of_week = self.day_of_week if self.day_of_week is not None else now.weekday()
        return ScoringContext(
            hour_of_day=self.hour_of_day if self.hour_of_day is not None else now.hour,
            day_of_week=day_of_week,
            is_weekend=day_of_week >= 5,
            session_tracks=[t.to_track() for t in self.session_tracks],
            session_artists=list(self.session_artists),
            session_genres=list(self.session_genres),
            current_track=self.current_track.to_track() if self.current_track else None,
            user_mood=self.user_mood,
            activity=self.activity,
            queue_mode=self.queue_mode,
        )


class ScoreRequest(BaseModel):
    track: TrackPayload
    context: ContextPayload = Field(default_factory=ContextPayload)
    features: Optional[FeaturesPayload] = None


class BatchRequest(BaseModel):
    tracks: List[TrackPayload] = Field(..., min_length=1)
    context: ContextPayload = Field(default_factory=ContextPayload)


class SeedPayload(BaseModel):
    type: SeedType
    id: str
    name: Optional[str] = None

    def to_seed(self) -> RadioSeed:
        return RadioSeed(type=self.type, id=self.id, name=self.name)


class RadioRequest(BaseModel):
    seed: SeedPayload
    count: int = Field(10, ge=1, le=100, description="Number of tracks to return")
    context: ContextPayload = Field(default_factory=ContextPayload)


class RadioResetRequest(BaseModel):
    seed: SeedPayload


class EventRequest(BaseModel):
    type: UserEventType
    track: Optional[TrackPayload] = None
    reason: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: float
    version: str
    components: Dict[str, str]


def _jsonable(value: Any) -> Any:
    """Dataclass trees to JSON-ready dicts (enums by value)."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _dump(record: Any) -> Dict[str, Any]:
    return _jsonable(asdict(record))


def _require_service() -> RecommendationService:
    if recommendation_service is None:
        raise HTTPException(status_code=503, detail="Recommendation service not available")
    return recommendation_service


# API Endpoints
@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    components = {"recommendation_service": "active" if recommendation_service else "inactive"}
    if recommendation_service:
        classifier = recommendation_service.classifier
        components["classifier"] = (
            f"trained (v{classifier.version})" if classifier.is_ready() else "untrained"
        )
        components["training"] = recommendation_service.get_training_status().state.value

    return HealthResponse(
        status="healthy",
        timestamp=time.time(),
        version=__version__,
        components=components
    )


@app.post("/score")
async def score_track(request: ScoreRequest):
    service = _require_service()
    try:
        score = await service.score(
            request.track.to_track(),
            request.context.to_context(),
            features=request.features.to_features() if request.features else None
        )
        return _dump(score)
    except Exception as e:
        logger.error("Scoring failed", track_id=request.track.id, error=str(e))
        raise HTTPException(status_code=500, detail=f"Scoring failed: {e}")


@app.post("/score/batch")
async def score_batch(request: BatchRequest):
    service = _require_service()
    try:
        scores = await service.score_batch(
            [t.to_track() for t in request.tracks],
            request.context.to_context()
        )
        return {"scores": [_dump(s) for s in scores]}
    except Exception as e:
        logger.error("Batch scoring failed", tracks=len(request.tracks), error=str(e))
        raise HTTPException(status_code=500, detail=f"Batch scoring failed: {e}")


@app.post("/rank")
async def rank_candidates(request: BatchRequest):
    service = _require_service()
    try:
        ranked = await service.rank_candidates(
            [t.to_track() for t in request.tracks],
            request.context.to_context()
        )
        return {"ranked": [_dump(item) for item in ranked]}
    except Exception as e:
        logger.error("Ranking failed", tracks=len(request.tracks), error=str(e))
        raise HTTPException(status_code=500, detail=f"Ranking failed: {e}")


@app.post("/radio")
async def generate_radio(request: RadioRequest):
    service = _require_service()
    seed = request.seed.to_seed()
    try:
        tracks = await service.generate_radio(seed, request.count, request.context.to_context())
    except Exception as e:
        logger.error("Radio generation failed", seed_type=seed.type.value, seed_id=seed.id, error=str(e))
        raise HTTPException(status_code=500, detail=f"Radio generation failed: {e}")

    session = service.radio.get_session(seed)
    return {
        "tracks": [_dump(t) for t in tracks],
        "seed_weight": session.last_seed_weight if session else None,
        "drift": session.drift if session else 0,
        "shortfall": session.last_shortfall if session else 0,
    }


@app.post("/radio/reset")
async def reset_radio(request: RadioResetRequest):
    service = _require_service()
    return {"reset": service.reset_radio(request.seed.to_seed())}


@app.get("/explain/{track_id}")
async def explain_score(track_id: str):
    service = _require_service()
    try:
        return _dump(service.explain_score(track_id))
    except NoRecentScoreError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.post("/train")
async def train_model():
    """Run a training pass; failures come back as ``success: false``."""
    service = _require_service()
    try:
        result = await service.train()
    except Exception as e:
        logger.error("Training request failed", error=str(e))
        raise HTTPException(status_code=500, detail=f"Training failed: {e}")
    return result.model_dump(mode="json")


@app.get("/training/status")
async def training_status():
    service = _require_service()
    return service.get_training_status().model_dump(mode="json")


@app.get("/training/needed")
async def training_needed():
    service = _require_service()
    try:
        return {"needs_training": await service.needs_training()}
    except Exception as e:
        logger.error("Training check failed", error=str(e))
        raise HTTPException(status_code=500, detail=f"Training check failed: {e}")


@app.post("/events")
async def record_event(request: EventRequest):
    service = _require_service()
    service.on_user_event(UserEvent(
        type=request.type,
        track=request.track.to_track() if request.track else None,
        reason=request.reason,
    ))
    return {"accepted": True}


@app.get("/similar/{track_id}")
async def similar_tracks(track_id: str, limit: int = Query(10, ge=1, le=100)):
    service = _require_service()
    try:
        similar = await service.find_similar(track_id, limit)
        return {"track_id": track_id, "similar": [_dump(item) for item in similar]}
    except Exception as e:
        logger.error("Similarity lookup failed", track_id=track_id, error=str(e))
        raise HTTPException(status_code=500, detail=f"Similarity lookup failed: {e}")
