"""
Training Module

Trainer state machine and the supervised background-training handle.
"""

from .supervisor import BackgroundTraining
from .trainer import Trainer

__all__ = [
    "BackgroundTraining",
    "Trainer",
]
