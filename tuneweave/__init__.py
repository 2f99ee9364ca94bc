"""
Tuneweave - Hybrid Music Recommendation Core

Scores catalog tracks against a listening context by blending rule-based
signals with a trainable preference classifier, and generates
session-aware radio streams from a seed track, artist, genre, mood or
playlist.
"""

__version__ = "0.1.0"
__author__ = "Tuneweave Team"
