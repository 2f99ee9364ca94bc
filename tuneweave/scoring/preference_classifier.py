"""
Preference Classifier

Small PyTorch MLP predicting the probability that the user will like a
track from its flattened feature vector. The classifier is versioned:
version 0 means untrained, in which case every prediction is a neutral
0.5 and the classifier carries no weight in the hybrid blend.

Training works on a copy of the live network inside a worker thread, so
predictions keep using the previous weights until the new ones have been
persisted; a failed or cancelled run leaves the live model untouched.
"""

import asyncio
import copy
import io
import time
from datetime import datetime
from typing import Callable, List, Optional, Tuple

import numpy as np
import structlog
import torch
from torch import nn

from ..models.training_models import (
    FeatureVector,
    ModelInfo,
    TrainingDataset,
    TrainingErrorCode,
    TrainingMetrics,
    TrainingResult,
)
from ..services.collaborators import ModelStorage
from .feature_vector import FEATURE_VECTOR_DIMENSION, flatten_feature_vector

logger = structlog.get_logger(__name__)

MODEL_KEY = "recommendation-model"
METADATA_KEY = "model-metadata"
ARCHITECTURE = "64-128-64-32-1 MLP"

MIN_TRAINING_SAMPLES = 50
BASE_ML_WEIGHT = 0.1
MAX_ML_WEIGHT = 0.6

EpochCallback = Callable[[int, int, float, float], None]


class TrainingCancelled(Exception):
    """Raised inside the fit loop when a stop was requested."""


def create_network(input_dim: int = FEATURE_VECTOR_DIMENSION) -> nn.Sequential:
    """Dense 64-128-64-32-1 network producing a single logit."""
    return nn.Sequential(
        nn.Linear(input_dim, 64),
        nn.ReLU(),
        nn.Linear(64, 128),
        nn.ReLU(),
        nn.Dropout(0.2),
        nn.Linear(128, 64),
        nn.ReLU(),
        nn.Dropout(0.2),
        nn.Linear(64, 32),
        nn.ReLU(),
        nn.Linear(32, 1),
    )


def serialize_network(network: nn.Module) -> bytes:
    buffer = io.BytesIO()
    torch.save(network.state_dict(), buffer)
    return buffer.getvalue()


def deserialize_network(blob: bytes, input_dim: int = FEATURE_VECTOR_DIMENSION) -> nn.Sequential:
    network = create_network(input_dim)
    state = torch.load(io.BytesIO(blob), map_location="cpu", weights_only=True)
    network.load_state_dict(state)
    network.eval()
    return network


def feature_matrix(vectors: List[FeatureVector]) -> torch.Tensor:
    """Stack flattened feature vectors into an (n, dimension) float tensor."""
    matrix = np.asarray([flatten_feature_vector(v) for v in vectors], dtype=np.float32)
    return torch.from_numpy(matrix.reshape(-1, FEATURE_VECTOR_DIMENSION))


def class_weights(labels: torch.Tensor) -> torch.Tensor:
    """Per-sample weights balancing the positive and negative classes."""
    positive = labels >= 0.5
    total = labels.numel()
    n_pos = int(positive.sum())
    n_neg = total - n_pos

    weights = torch.ones_like(labels)
    if n_pos and n_neg:
        weights[positive] = total / (2.0 * n_pos)
        weights[~positive] = total / (2.0 * n_neg)
    return weights


class PreferenceClassifier:
    """Versioned, retrainable binary preference classifier."""

    def __init__(
        self,
        storage: ModelStorage,
        epochs: int = 50,
        batch_size: int = 32,
        validation_split: float = 0.2,
        learning_rate: float = 1e-3,
        min_samples: int = MIN_TRAINING_SAMPLES,
        seed: Optional[int] = None
    ):
        self.storage = storage
        self.epochs = epochs
        self.batch_size = batch_size
        self.validation_split = validation_split
        self.learning_rate = learning_rate
        self.min_samples = min_samples
        self.seed = seed

        self.model: Optional[nn.Sequential] = None
        self.version = 0
        self.last_loss = 0.0
        self.last_accuracy = 0.0
        self._training = False

        self.logger = logger.bind(component="PreferenceClassifier")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Restore weights and metadata from storage, or start untrained."""
        blob = await self.storage.load(MODEL_KEY)

        if blob is None:
            self._reset()
            self.logger.info("Created new model", architecture=ARCHITECTURE)
            return

        try:
            self.model = deserialize_network(blob)
        except Exception as e:
            self.logger.warning("Stored model unreadable, starting fresh", error=str(e))
            self._reset()
            return

        metadata = await self.storage.get(METADATA_KEY) or {}
        self.version = int(metadata.get("version", 0))
        self.last_loss = float(metadata.get("loss", 0.0))
        self.last_accuracy = float(metadata.get("accuracy", 0.0))

        self.logger.info(
            "Loaded existing model",
            version=self.version,
            accuracy=self.last_accuracy
        )

    async def dispose(self) -> None:
        self.model = None
        self.logger.info("Classifier disposed", version=self.version)

    def _reset(self) -> None:
        self.model = create_network()
        self.model.eval()
        self.version = 0
        self.last_loss = 0.0
        self.last_accuracy = 0.0

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def is_ready(self) -> bool:
        return self.model is not None and self.version > 0

    @property
    def is_training(self) -> bool:
        return self._training

    async def predict(self, vectors: List[FeatureVector]) -> List[float]:
        """Preference probabilities in [0, 1], one per input vector."""
        if not vectors:
            return []
        if not self.is_ready():
            return [0.5] * len(vectors)

        inputs = feature_matrix(vectors)
        with torch.no_grad():
            probabilities = torch.sigmoid(self.model(inputs)).squeeze(1)
        return [float(p) for p in probabilities]

    async def predict_single(self, vector: FeatureVector) -> float:
        return (await self.predict([vector]))[0]

    def get_confidence(self) -> float:
        """0 until trained; then 0.7 * last accuracy + 0.3 * min(1, version / 10)."""
        if self.version == 0:
            return 0.0
        return self.last_accuracy * 0.7 + min(1.0, self.version / 10) * 0.3

    def get_ml_weight(self) -> float:
        """Blend weight of the classifier; 0 while untrained, else in [0.1, 0.6]."""
        if not self.is_ready():
            return 0.0
        return BASE_ML_WEIGHT + (MAX_ML_WEIGHT - BASE_ML_WEIGHT) * self.get_confidence()

    def model_info(self) -> ModelInfo:
        parameters = sum(p.numel() for p in self.model.parameters()) if self.model is not None else 0
        return ModelInfo(
            version=self.version,
            parameters=parameters,
            architecture=ARCHITECTURE,
            input_dimension=FEATURE_VECTOR_DIMENSION,
            output_dimension=1,
        )

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    async def train(
        self,
        dataset: TrainingDataset,
        on_epoch_end: Optional[EpochCallback] = None,
        should_stop: Optional[Callable[[], bool]] = None
    ) -> TrainingResult:
        """
        Fit a new version of the model on ``dataset``.

        Failures are reported on the returned TrainingResult. On success
        the weights and metadata are persisted before the in-memory
        version is incremented.

        Args:
            dataset: Labelled samples (labels may be fractional)
            on_epoch_end: Called on the event loop after every epoch with
                (epoch, total_epochs, loss, accuracy)
            should_stop: Polled between epochs; True cancels the run
        """
        start = time.monotonic()

        if self.model is None:
            return self._failure("Model not initialized", TrainingErrorCode.CONFIGURATION, start)
        if self._training:
            return self._failure(
                "Training already in progress", TrainingErrorCode.CONCURRENCY_CONFLICT, start
            )

        self._training = True
        try:
            samples = dataset.all_samples()
            if len(samples) < self.min_samples:
                return self._failure(
                    f"Not enough training data: {len(samples)} samples "
                    f"(need at least {self.min_samples})",
                    TrainingErrorCode.INSUFFICIENT_DATA,
                    start
                )

            features = feature_matrix([s.features for s in samples])
            labels = torch.from_numpy(np.asarray([s.label for s in samples], dtype=np.float32))

            candidate = copy.deepcopy(self.model)
            loop = asyncio.get_running_loop()

            def report(epoch: int, loss: float, accuracy: float) -> None:
                if on_epoch_end is not None:
                    loop.call_soon_threadsafe(on_epoch_end, epoch, self.epochs, loss, accuracy)

            self.logger.info("Training started", samples=len(samples), epochs=self.epochs)

            try:
                metrics = await asyncio.to_thread(
                    self._fit, candidate, features, labels, report, should_stop
                )
            except TrainingCancelled:
                return self._failure("Training cancelled", TrainingErrorCode.CANCELLED, start)
            except Exception as e:
                self.logger.error("Training failed", error=str(e))
                return self._failure(str(e), TrainingErrorCode.TRAINING_FAILED, start)

            if self.model is None:
                return self._failure(
                    "Model disposed during training", TrainingErrorCode.CONFIGURATION, start, metrics
                )

            next_version = self.version + 1
            try:
                await self.storage.save_with_metadata(
                    MODEL_KEY,
                    serialize_network(candidate),
                    METADATA_KEY,
                    {
                        "version": next_version,
                        "loss": metrics.loss,
                        "accuracy": metrics.accuracy,
                        "trained_at": datetime.now().isoformat(),
                    }
                )
            except Exception as e:
                self.logger.error("Model persistence failed", error=str(e))
                return self._failure(
                    f"Failed to save model: {e}", TrainingErrorCode.PERSISTENCE_FAILED, start, metrics
                )

            if self.model is None:
                return self._failure(
                    "Model disposed during training", TrainingErrorCode.CONFIGURATION, start, metrics
                )

            candidate.eval()
            self.model = candidate
            self.version = next_version
            self.last_loss = metrics.loss
            self.last_accuracy = metrics.accuracy

            self.logger.info(
                "Training complete",
                version=self.version,
                loss=round(metrics.loss, 4),
                accuracy=round(metrics.accuracy, 4)
            )

            return TrainingResult(
                success=True,
                metrics=metrics,
                model=self.model_info(),
                duration=time.monotonic() - start,
            )
        finally:
            self._training = False

    def _fit(
        self,
        network: nn.Sequential,
        features: torch.Tensor,
        labels: torch.Tensor,
        report: Callable[[int, float, float], None],
        should_stop: Optional[Callable[[], bool]]
    ) -> TrainingMetrics:
        generator = torch.Generator()
        if self.seed is not None:
            generator.manual_seed(self.seed)

        order = torch.randperm(features.shape[0], generator=generator)
        features, labels = features[order], labels[order]

        n_val = max(1, int(features.shape[0] * self.validation_split))
        train_x, val_x = features[:-n_val], features[-n_val:]
        train_y, val_y = labels[:-n_val], labels[-n_val:]
        train_w = class_weights(train_y)

        optimizer = torch.optim.Adam(network.parameters(), lr=self.learning_rate)
        criterion = nn.BCEWithLogitsLoss(reduction="none")

        metrics = TrainingMetrics()
        for epoch in range(1, self.epochs + 1):
            if should_stop is not None and should_stop():
                raise TrainingCancelled()

            network.train()
            batches = torch.randperm(train_x.shape[0], generator=generator).split(self.batch_size)
            for batch in batches:
                optimizer.zero_grad()
                logits = network(train_x[batch]).squeeze(1)
                loss = (criterion(logits, train_y[batch]) * train_w[batch]).mean()
                loss.backward()
                optimizer.step()

            loss, accuracy = self._evaluate(network, train_x, train_y, criterion)
            val_loss, val_accuracy = self._evaluate(network, val_x, val_y, criterion)

            metrics.loss_history.append(loss)
            metrics.accuracy_history.append(accuracy)
            metrics.loss, metrics.accuracy = loss, accuracy
            metrics.val_loss, metrics.val_accuracy = val_loss, val_accuracy
            metrics.epochs = epoch

            report(epoch, loss, accuracy)

        return metrics

    @staticmethod
    def _evaluate(
        network: nn.Sequential,
        x: torch.Tensor,
        y: torch.Tensor,
        criterion: nn.Module
    ) -> Tuple[float, float]:
        network.eval()
        with torch.no_grad():
            logits = network(x).squeeze(1)
            loss = float(criterion(logits, y).mean())
            predicted = torch.sigmoid(logits) >= 0.5
            accuracy = float((predicted == (y >= 0.5)).float().mean())
        return loss, accuracy

    def _failure(
        self,
        error: str,
        code: TrainingErrorCode,
        start: float,
        metrics: Optional[TrainingMetrics] = None
    ) -> TrainingResult:
        self.logger.warning("Training not completed", error=error, error_code=code.value)
        return TrainingResult(
            success=False,
            metrics=metrics or TrainingMetrics(),
            model=self.model_info(),
            duration=time.monotonic() - start,
            error=error,
            error_code=code,
        )
