"""
API Module

FastAPI host surface for the recommendation core.
"""

from .logging_middleware import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
