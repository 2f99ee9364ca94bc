"""
Model Storage

diskcache-backed persistence for classifier weights and their metadata.
Model blobs and metadata live in separate caches under one directory so
that metadata can be inspected without loading weights.
"""

import asyncio
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from diskcache import Cache

from .collaborators import ModelStorage

logger = structlog.get_logger(__name__)


class DiskModelStorage(ModelStorage):
    """
    File-based model storage.

    Handles:
    - Model blobs (serialized classifier weights)
    - Metadata and index entries (plain picklable values)
    """

    def __init__(self, storage_dir: str = "data/models"):
        """
        Initialize model storage.

        Args:
            storage_dir: Directory for the underlying diskcache stores
        """
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

        self.models = Cache(str(self.storage_dir / "models"))
        self.metadata = Cache(str(self.storage_dir / "metadata"))

        logger.info("Model storage initialized", storage_dir=str(self.storage_dir))

    async def load(self, key: str) -> Optional[bytes]:
        try:
            blob = await asyncio.to_thread(self.models.get, key)
        except Exception as e:
            logger.error("Model load failed", key=key, error=str(e))
            return None

        logger.debug("Model load", key=key, hit=blob is not None)
        return blob

    async def save(self, key: str, model: bytes) -> None:
        try:
            await asyncio.to_thread(self.models.set, key, model)
        except Exception as e:
            logger.error("Model save failed", key=key, error=str(e))
            raise
        logger.info("Model saved", key=key, size_bytes=len(model))

    async def get(self, key: str, default: Any = None) -> Any:
        try:
            return await asyncio.to_thread(self.metadata.get, key, default)
        except Exception as e:
            logger.error("Metadata get failed", key=key, error=str(e))
            return default

    async def set(self, key: str, value: Any) -> None:
        try:
            await asyncio.to_thread(self.metadata.set, key, value)
        except Exception as e:
            logger.error("Metadata set failed", key=key, error=str(e))
            raise

    async def save_with_metadata(
        self,
        key: str,
        model: bytes,
        metadata_key: str,
        metadata: Dict[str, Any]
    ) -> None:
        """Write model and metadata; on failure the previous pair is restored."""
        await asyncio.to_thread(self._write_checkpoint, key, model, metadata_key, metadata)

        logger.info(
            "Model checkpoint saved",
            key=key,
            size_bytes=len(model),
            version=metadata.get("version")
        )

    def delete(self, key: str) -> bool:
        deleted = self.models.delete(key)
        logger.info("Model deleted", key=key, deleted=deleted)
        return deleted

    def get_stats(self) -> Dict[str, Dict[str, Any]]:
        """Size and location of both stores."""
        stats = {}
        for name, cache in (("models", self.models), ("metadata", self.metadata)):
            stats[name] = {
                "size": len(cache),
                "volume": cache.volume(),
                "directory": str(cache.directory)
            }
        return stats

    def close(self) -> None:
        self.models.close()
        self.metadata.close()
        logger.info("Model storage closed")

    def _write_checkpoint(
        self,
        key: str,
        model: bytes,
        metadata_key: str,
        metadata: Dict[str, Any]
    ) -> None:
        previous_model = self.models.get(key)
        previous_metadata = self.metadata.get(metadata_key)

        try:
            with self.models.transact(), self.metadata.transact():
                self.models.set(key, model)
                self.metadata.set(metadata_key, metadata)
        except Exception as e:
            logger.error("Model checkpoint failed, restoring previous", key=key, error=str(e))
            self._restore(self.models, key, previous_model)
            self._restore(self.metadata, metadata_key, previous_metadata)
            raise

    @staticmethod
    def _restore(cache: Cache, key: str, previous: Any) -> None:
        if previous is None:
            cache.delete(key)
        else:
            cache.set(key, previous)
