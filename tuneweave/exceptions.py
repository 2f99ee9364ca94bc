"""
Exceptions raised by the scoring core.

Only caller misuse propagates; provider failures are absorbed by the
component that hit them and training failures are reported through
``TrainingResult``.
"""


class TuneweaveError(Exception):
    """Base class for tuneweave errors."""


class NoRecentScoreError(TuneweaveError, LookupError):
    """``explain`` was called for a track with no cached recent score."""

    def __init__(self, track_id: str):
        super().__init__(f"No recent score for track {track_id}")
        self.track_id = track_id


class ProviderUnavailableError(TuneweaveError):
    """A feature, user or catalog collaborator call failed."""

    def __init__(self, provider: str, operation: str, cause: Exception = None):
        message = f"{provider}.{operation} unavailable"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.provider = provider
        self.operation = operation
        self.cause = cause
