"""
Radio Module

Seed candidate strategies and the session-aware radio generator.
"""

from .radio_generator import RadioGenerator, RadioSession, SessionKey, seed_weight
from .seed_strategies import BaseSeedStrategy, SeedStrategyFactory

__all__ = [
    "BaseSeedStrategy",
    "RadioGenerator",
    "RadioSession",
    "SeedStrategyFactory",
    "SessionKey",
    "seed_weight",
]
