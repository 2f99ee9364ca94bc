"""
Score Components

Lookup tables and pure functions behind each score component. Every
function returns a value in [0, 1] (penalties return non-negative
magnitudes on the 0-100 scale) or ``None`` when its inputs are missing,
in which case the component is omitted from the score.
"""

import random
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple, Union

from ..models.track_models import AudioFeatures, DislikedTrack, EmotionFeatures, Track


# Target (valence, arousal) per named mood
MOOD_TARGETS: Dict[str, Tuple[float, float]] = {
    "happy": (0.8, 0.7),
    "sad": (0.2, 0.3),
    "calm": (0.6, 0.2),
    "energetic": (0.7, 0.9),
    "tense": (0.3, 0.8),
    "melancholic": (0.3, 0.4),
    "euphoric": (0.9, 0.9),
    "peaceful": (0.7, 0.2),
}

# Target (energy, bpm) per named activity
ACTIVITY_PROFILES: Dict[str, Tuple[float, float]] = {
    "working": (0.4, 100),
    "studying": (0.3, 80),
    "relaxing": (0.2, 70),
    "exercising": (0.9, 140),
    "commuting": (0.5, 110),
    "sleeping": (0.1, 60),
    "party": (0.95, 128),
    "dining": (0.4, 90),
}

# Typical listening energy for each hour of the day (index = hour)
DEFAULT_ENERGY_CURVE: List[float] = [
    0.30, 0.25, 0.20, 0.20, 0.20, 0.25,
    0.35, 0.50, 0.60, 0.65, 0.70, 0.70,
    0.65, 0.65, 0.70, 0.75, 0.75, 0.70,
    0.65, 0.60, 0.55, 0.50, 0.40, 0.35,
]

VALENCE_BY_TIME_OF_DAY: Dict[str, float] = {
    "morning": 0.65,
    "afternoon": 0.6,
    "evening": 0.5,
    "night": 0.4,
}

AUDIO_MATCH_FIELDS = (
    "energy",
    "valence",
    "danceability",
    "acousticness",
    "instrumentalness",
    "speechiness",
)

PITCH_CLASSES = {
    "C": 0, "B#": 0,
    "C#": 1, "DB": 1,
    "D": 2,
    "D#": 3, "EB": 3,
    "E": 4, "FB": 4,
    "F": 5, "E#": 5,
    "F#": 6, "GB": 6,
    "G": 7,
    "G#": 8, "AB": 8,
    "A": 9,
    "A#": 10, "BB": 10,
    "B": 11, "CB": 11,
}

# Tiered penalty by hours since the track was last played
RECENT_PLAY_TIERS: Sequence[Tuple[float, float]] = (
    (1, 40.0),
    (6, 25.0),
    (24, 10.0),
    (72, 5.0),
)

BPM_TOLERANCE = 60.0
SESSION_FLOW_WINDOW = 5


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def time_of_day_label(hour: int) -> str:
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


def base_preference(artist_affinity: float, genre_affinity: float) -> float:
    """Artist (60%) and genre (40%) affinity, each rescaled from [-1, 1]."""
    artist = _clamp(artist_affinity, -1.0, 1.0)
    genre = _clamp(genre_affinity, -1.0, 1.0)
    return ((artist + 1) / 2 * 0.6) + ((genre + 1) / 2 * 0.4)


def mood_match(emotion: Optional[EmotionFeatures], mood: Optional[str]) -> Optional[float]:
    if emotion is None or not mood:
        return None
    target_valence, target_arousal = MOOD_TARGETS.get(mood, (0.5, 0.5))
    distance = (abs(emotion.valence - target_valence) + abs(emotion.arousal - target_arousal)) / 2
    return _clamp(1 - distance)


def activity_match(audio: Optional[AudioFeatures], activity: Optional[str]) -> Optional[float]:
    """Mean of energy and tempo fit to the activity profile, over known terms."""
    if audio is None or not activity:
        return None
    target_energy, target_bpm = ACTIVITY_PROFILES.get(activity, (0.5, 100))

    terms = []
    if audio.energy is not None:
        terms.append(1 - abs(audio.energy - target_energy))
    if audio.bpm is not None:
        terms.append(1 - min(1.0, abs(audio.bpm - target_bpm) / BPM_TOLERANCE))

    if not terms:
        return None
    return _clamp(sum(terms) / len(terms))


def audio_match(track: Optional[AudioFeatures], current: Optional[AudioFeatures]) -> Optional[float]:
    """Similarity over the audio fields both tracks share."""
    if track is None or current is None:
        return None

    similarities = []
    for name in AUDIO_MATCH_FIELDS:
        a, b = getattr(track, name), getattr(current, name)
        if a is not None and b is not None:
            similarities.append(1 - min(1.0, abs(a - b)))
    if track.bpm is not None and current.bpm is not None:
        similarities.append(1 - min(1.0, abs(track.bpm - current.bpm) / BPM_TOLERANCE))

    if not similarities:
        return None
    return _clamp(sum(similarities) / len(similarities))


def parse_key(key: Union[str, int, None], mode: Optional[str]) -> Optional[Tuple[int, str]]:
    """Return (pitch class, mode) or None when the key is unknown."""
    if key is None:
        return None

    if isinstance(key, int):
        if not 0 <= key <= 11:
            return None
        return key, (mode or "major").lower()

    name = key.strip()
    if not name:
        return None
    parsed_mode = (mode or "").lower()
    if name.endswith("m") and len(name) > 1:
        name = name[:-1]
        parsed_mode = parsed_mode or "minor"
    pitch = PITCH_CLASSES.get(name.upper())
    if pitch is None:
        return None
    return pitch, parsed_mode or "major"


def _fifths_distance(a: int, b: int) -> int:
    # Position on the circle of fifths is pitch * 7 mod 12
    steps = abs((a * 7) % 12 - (b * 7) % 12)
    return min(steps, 12 - steps)


def harmonic_compatibility(track: Optional[AudioFeatures], current: Optional[AudioFeatures]) -> Optional[float]:
    if track is None or current is None:
        return None
    a = parse_key(track.key, track.mode)
    b = parse_key(current.key, current.mode)
    if a is None or b is None:
        return None

    (pitch_a, mode_a), (pitch_b, mode_b) = a, b
    if mode_a == mode_b:
        return max(0.1, 1 - _fifths_distance(pitch_a, pitch_b) * 0.2)

    # Relative major/minor share the same notes
    major, minor = (pitch_a, pitch_b) if mode_a == "major" else (pitch_b, pitch_a)
    if (major - 3) % 12 == minor:
        return 0.9
    return max(0.1, 0.9 - _fifths_distance(pitch_a, pitch_b) * 0.2)


def temporal_fit(
    hour: int,
    energy: Optional[float],
    valence: Optional[float],
    energy_curve: Optional[Sequence[float]] = None
) -> Optional[float]:
    """
    Closeness of a track to the expected mood of the hour.

    Energy is compared with the hour's value on the energy curve (learned
    per-hour energies when a full 24-hour history is supplied, else the
    default curve); valence with a per-time-of-day target.
    """
    if energy is None and valence is None:
        return None

    curve = energy_curve if energy_curve and len(energy_curve) == 24 else DEFAULT_ENERGY_CURVE
    hour = hour % 24

    if energy is None:
        target = VALENCE_BY_TIME_OF_DAY[time_of_day_label(hour)]
        return _clamp(1 - abs(valence - target))

    energy_fit = 1 - abs(energy - curve[hour])
    if valence is None:
        return _clamp(energy_fit)

    valence_fit = 1 - abs(valence - VALENCE_BY_TIME_OF_DAY[time_of_day_label(hour)])
    return _clamp(energy_fit * 0.7 + valence_fit * 0.3)


def session_flow(track_energy: Optional[float], session_energies: Sequence[float]) -> Optional[float]:
    """
    Smoothness of the energy transition into this track.

    The reference energy is a recency-weighted mean of the session's last
    few known energies; larger jumps score lower.
    """
    if track_energy is None or not session_energies:
        return None

    recent = list(session_energies)[-SESSION_FLOW_WINDOW:]
    weights = range(1, len(recent) + 1)
    reference = sum(e * w for e, w in zip(recent, weights)) / sum(weights)
    jump = abs(track_energy - reference)
    return _clamp(1 - jump * 1.5)


def exploration_bonus(
    is_new_artist: bool,
    is_new_genre: bool,
    epsilon: float,
    rng: Optional[random.Random] = None
) -> float:
    """
    Epsilon-greedy novelty reward.

    Novelty (0.6 new artist + 0.4 new genre) contributes up to 0.7; with
    probability ``epsilon`` an extra 0.3 exploration boost is added.
    """
    novelty = (0.6 if is_new_artist else 0.0) + (0.4 if is_new_genre else 0.0)
    bonus = novelty * 0.7
    draw = (rng or random).random()
    if draw < epsilon:
        bonus += 0.3
    return _clamp(bonus)


def serendipity(
    track: Track,
    top_genres: Sequence[str],
    top_artists: Sequence[str],
    is_new_artist: bool
) -> float:
    score = 0.0
    if track.genre and track.genre not in top_genres:
        score += 0.5
    if track.artist_id and track.artist_id not in top_artists:
        score += 0.3
    if is_new_artist:
        score += 0.2
    return _clamp(score)


def diversity(track: Track, session_artists: Sequence[str], session_genres: Sequence[str]) -> float:
    """1 minus the track's artist/genre share of the current session."""
    artist_share = (
        session_artists.count(track.artist_id) / len(session_artists)
        if session_artists and track.artist_id else 0.0
    )
    genre_share = (
        session_genres.count(track.genre) / len(session_genres)
        if session_genres and track.genre else 0.0
    )
    return _clamp(1 - (artist_share * 0.6 + genre_share * 0.4))


def recent_play_penalty(last_played: Optional[datetime], now: datetime) -> float:
    if last_played is None:
        return 0.0
    hours = (now - last_played).total_seconds() / 3600
    for limit, penalty in RECENT_PLAY_TIERS:
        if hours < limit:
            return penalty
    return 0.0


def dislike_penalty(track: Track, disliked: Sequence[DislikedTrack]) -> float:
    if any(d.track_id == track.id for d in disliked):
        return 50.0
    if track.artist_id and any(
        d.artist_id == track.artist_id and d.reason == "dont_like_artist" for d in disliked
    ):
        return 30.0
    return 0.0


def repetition_penalty(track: Track, session_artists: Sequence[str]) -> float:
    if not track.artist_id:
        return 0.0
    count = session_artists.count(track.artist_id)
    return (count - 1) * 15.0 if count > 1 else 0.0
