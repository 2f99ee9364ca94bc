"""
Trainer

Orchestrates supervised retraining of the preference classifier:

    idle -> preparing -> training -> saving -> complete

with ``error`` reachable from every phase.

At most one run is active at a time; a second ``train`` call while a run
is active returns a concurrency-conflict result immediately and leaves
the active run alone. Failures never raise: they are reported on the
returned TrainingResult and on ``get_status().last_result``.
"""

import asyncio
import copy
import time
from typing import Dict, List, Optional

import structlog

from ..models.track_models import AggregatedFeatures
from ..models.training_models import (
    TrainingDataset,
    TrainingErrorCode,
    TrainingMetrics,
    TrainingResult,
    TrainingSample,
    TrainingState,
    TrainingStatus,
)
from ..scoring.feature_vector import (
    emotion_vector,
    lyrics_vector,
    normalize_bpm,
    normalize_loudness,
)
from ..scoring.preference_classifier import PreferenceClassifier
from ..services.collaborators import FeatureStore, TrainingLog
from ..utils.logging_config import log_training_event

logger = structlog.get_logger(__name__)

PREPARING_PROGRESS = 0.1
TRAINING_START_PROGRESS = 0.2
SAVING_PROGRESS = 0.9


class Trainer:
    """Training state machine around a PreferenceClassifier."""

    def __init__(
        self,
        features: FeatureStore,
        training_log: TrainingLog,
        classifier: PreferenceClassifier
    ):
        self.features = features
        self.training_log = training_log
        self.classifier = classifier

        self._status = TrainingStatus(total_epochs=classifier.epochs)
        self._active = False
        self._cancel_requested = False
        self._idle: Optional[asyncio.Event] = None

        self.logger = logger.bind(component="Trainer")

    @property
    def is_active(self) -> bool:
        return self._active

    def get_status(self) -> TrainingStatus:
        return self._status.model_copy()

    def cancel(self) -> bool:
        """Request cooperative cancellation of the active run."""
        if not self._active:
            return False
        self._cancel_requested = True
        self.logger.info("Training cancellation requested")
        return True

    async def wait_idle(self) -> None:
        """Wait until the active run, if any, has finished."""
        if self._idle is not None:
            await self._idle.wait()

    async def train(self, dataset: TrainingDataset) -> TrainingResult:
        if self._active:
            self.logger.warning("Training already in progress, request rejected")
            return self._failure(
                "Training already in progress",
                TrainingErrorCode.CONCURRENCY_CONFLICT,
                time.monotonic()
            )

        self._active = True
        self._cancel_requested = False
        self._idle = asyncio.Event()
        start = time.monotonic()

        try:
            self._status.current_epoch = 0
            self._status.total_epochs = self.classifier.epochs
            self._status.progress = 0.0
            self._enter(TrainingState.PREPARING, 0.0)

            total = dataset.total_samples
            if total < self.classifier.min_samples:
                return self._finish(self._failure(
                    f"Not enough training data: {total} samples (need {self.classifier.min_samples}+)",
                    TrainingErrorCode.INSUFFICIENT_DATA,
                    start
                ))

            self.logger.info(
                "Dataset accepted",
                total=total,
                positive=len(dataset.positive),
                negative=len(dataset.negative),
                partial=len(dataset.partial)
            )

            self._enter(TrainingState.PREPARING, PREPARING_PROGRESS)
            enriched = await self._enrich(dataset)

            if self._cancel_requested:
                return self._finish(self._failure(
                    "Training cancelled", TrainingErrorCode.CANCELLED, start
                ))

            self._enter(TrainingState.TRAINING, TRAINING_START_PROGRESS)
            result = await self.classifier.train(
                enriched,
                on_epoch_end=self._on_epoch_end,
                should_stop=lambda: self._cancel_requested
            )

            if not result.success:
                return self._finish(result)

            self._enter(TrainingState.SAVING, SAVING_PROGRESS)
            try:
                await self.training_log.mark_training_complete(result.model.version)
            except Exception as e:
                self.logger.error("Could not record training completion", error=str(e))
                return self._finish(self._failure(
                    f"Failed to record training completion: {e}",
                    TrainingErrorCode.PERSISTENCE_FAILED,
                    start,
                    result.metrics
                ))

            self._enter(TrainingState.COMPLETE, 1.0)
            self.logger.info(
                "Training complete",
                version=result.model.version,
                loss=round(result.metrics.loss, 4),
                accuracy=round(result.metrics.accuracy, 4),
                duration_seconds=round(result.duration, 2)
            )
            return self._finish(result)

        except Exception as e:
            self.logger.error("Training error", error=str(e), error_type=type(e).__name__)
            return self._finish(self._failure(str(e), TrainingErrorCode.TRAINING_FAILED, start))

        finally:
            self._active = False
            self._cancel_requested = False
            self._idle.set()

    def _enter(self, state: TrainingState, progress: float) -> None:
        self._status.state = state
        self._status.progress = max(self._status.progress, progress)
        log_training_event(state.value, self._status.progress)

    def _on_epoch_end(self, epoch: int, total_epochs: int, loss: float, accuracy: float) -> None:
        span = SAVING_PROGRESS - TRAINING_START_PROGRESS
        self._status.current_epoch = epoch
        self._status.total_epochs = total_epochs
        self._status.progress = max(
            self._status.progress,
            TRAINING_START_PROGRESS + span * epoch / total_epochs
        )
        self.logger.debug(
            "Epoch finished",
            epoch=epoch,
            total_epochs=total_epochs,
            loss=round(loss, 4),
            accuracy=round(accuracy, 4)
        )

    def _finish(self, result: TrainingResult) -> TrainingResult:
        if not result.success:
            self._status.state = TrainingState.ERROR
            log_training_event(
                TrainingState.ERROR.value,
                self._status.progress,
                error=result.error,
                error_code=result.error_code.value if result.error_code else None
            )
        self._status.last_result = result
        return result

    def _failure(
        self,
        error: str,
        code: TrainingErrorCode,
        start: float,
        metrics: TrainingMetrics = None
    ) -> TrainingResult:
        return TrainingResult(
            success=False,
            metrics=metrics or TrainingMetrics(),
            model=self.classifier.model_info(),
            duration=time.monotonic() - start,
            error=error,
            error_code=code,
        )

    async def _enrich(self, dataset: TrainingDataset) -> TrainingDataset:
        """
        Refresh sample feature vectors from the feature store.

        Works on a deep copy; the caller's dataset is not modified. Tracks
        whose features cannot be fetched keep their original vectors.
        """
        enriched = copy.deepcopy(dataset)
        samples = enriched.all_samples()
        track_ids = list(dict.fromkeys(s.track.id for s in samples))

        try:
            await self.features.prefetch(track_ids)
        except Exception as e:
            self.logger.warning("Feature prefetch failed", tracks=len(track_ids), error=str(e))

        results = await asyncio.gather(
            *(self.features.get(tid) for tid in track_ids),
            return_exceptions=True
        )

        fetched: Dict[str, AggregatedFeatures] = {}
        failed: List[str] = []
        for track_id, result in zip(track_ids, results):
            if isinstance(result, Exception):
                failed.append(track_id)
            else:
                fetched[track_id] = result

        for sample in samples:
            features = fetched.get(sample.track.id)
            if features is not None:
                _apply_features(sample, features)

        self.logger.info("Dataset enriched", tracks=len(track_ids), unavailable=len(failed))
        return enriched


def _apply_features(sample: TrainingSample, features: AggregatedFeatures) -> None:
    vector = sample.features

    audio = features.audio
    if audio is not None:
        current = vector.audio
        current.bpm = normalize_bpm(audio.bpm) if audio.bpm is not None else current.bpm
        current.loudness = (
            normalize_loudness(audio.loudness) if audio.loudness is not None else current.loudness
        )
        for name in (
            "energy",
            "valence",
            "danceability",
            "acousticness",
            "instrumentalness",
            "speechiness",
        ):
            value = getattr(audio, name)
            if value is not None:
                setattr(current, name, value)

    if features.emotion is not None:
        vector.emotion = emotion_vector(features)
        if vector.emotion.dominance is None:
            vector.emotion.dominance = 0.5

    if features.lyrics is not None:
        vector.lyrics = lyrics_vector(features)
