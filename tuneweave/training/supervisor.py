"""
Background Training

Supervised handle for a training run launched without blocking the
caller. The host can poll the trainer's status, await the result or
cancel the run.
"""

import asyncio
from typing import Optional

import structlog

from ..models.training_models import TrainingErrorCode, TrainingResult
from ..services.collaborators import TrainingLog
from .trainer import Trainer

logger = structlog.get_logger(__name__)


class BackgroundTraining:
    """Owns at most one background training task."""

    def __init__(self, trainer: Trainer, training_log: TrainingLog):
        self.trainer = trainer
        self.training_log = training_log
        self._task: Optional[asyncio.Task] = None
        self._cancel_requested = False
        self.logger = logger.bind(component="BackgroundTraining")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Launch a run on the current loop; False if one is already running."""
        if self.running:
            return False

        self._cancel_requested = False
        self._task = asyncio.create_task(self._run(), name="tuneweave-training")
        self.logger.info("Background training started")
        return True

    async def wait(self) -> Optional[TrainingResult]:
        if self._task is None:
            return None
        return await self._task

    async def cancel(self) -> Optional[TrainingResult]:
        """Stop the run cooperatively and return its final result."""
        if self._task is None:
            return None
        if self._task.done():
            return self._task.result()

        self._cancel_requested = True
        self.trainer.cancel()
        self.logger.info("Background training cancel requested")
        return await self._task

    async def _run(self) -> TrainingResult:
        try:
            dataset = await self.training_log.get_full_dataset()
        except Exception as e:
            self.logger.error("Could not load training dataset", error=str(e))
            return TrainingResult(
                success=False,
                error=f"Could not load training dataset: {e}",
                error_code=TrainingErrorCode.TRAINING_FAILED,
            )

        if self._cancel_requested:
            return TrainingResult(
                success=False,
                error="Training cancelled",
                error_code=TrainingErrorCode.CANCELLED,
            )

        result = await self.trainer.train(dataset)
        self.logger.info(
            "Background training finished",
            success=result.success,
            error=result.error,
            version=result.model.version
        )
        return result
