"""
Score Explanations

Turns ScoreComponents into the short explanation list stored on every
TrackScore and into the detailed breakdown returned by ``explain``.
"""

from typing import Dict, List, Tuple

from ..models.track_models import (
    PENALTY_COMPONENTS,
    ExplanationDetail,
    ScoreComponents,
    TrackScore,
)

HIGH_THRESHOLD = 70.0
LOW_THRESHOLD = 30.0

COMPONENT_LABELS: Dict[str, str] = {
    "base_preference": "Preference Match",
    "ml_prediction": "ML Prediction",
    "audio_match": "Audio Match",
    "mood_match": "Mood Match",
    "harmonic_flow": "Harmonic Flow",
    "temporal_fit": "Time Match",
    "session_flow": "Session Flow",
    "activity_match": "Activity Match",
    "exploration_bonus": "Discovery Bonus",
    "serendipity_score": "Serendipity",
    "diversity_score": "Diversity",
    "recent_play_penalty": "Recent Play",
    "dislike_penalty": "Dislike",
    "repetition_penalty": "Repetition",
}

# (high, low, neutral) reason per signal component
SIGNAL_REASONS: Dict[str, Tuple[str, str, str]] = {
    "base_preference": (
        "Artist and genre match your taste",
        "Less familiar artist/genre",
        "Moderate match to your taste",
    ),
    "ml_prediction": (
        "ML model predicts high preference",
        "ML model predicts lower preference",
        "Neutral ML prediction",
    ),
    "audio_match": (
        "Similar audio characteristics",
        "Different sound profile",
        "Moderate audio similarity",
    ),
    "mood_match": (
        "Fits your current mood",
        "Doesn't match your mood",
        "Partially fits your mood",
    ),
    "harmonic_flow": (
        "Key blends smoothly with the current track",
        "Key clashes with the current track",
        "Related key",
    ),
    "temporal_fit": (
        "Suits this time of day",
        "Unusual for this time of day",
        "Reasonable for this time of day",
    ),
    "session_flow": (
        "Keeps the session's energy flowing",
        "Abrupt energy change",
        "Moderate energy shift",
    ),
    "activity_match": (
        "Great for your current activity",
        "Not ideal for your activity",
        "Works for your activity",
    ),
    "exploration_bonus": (
        "Something new to discover",
        "Familiar territory",
        "A little exploration",
    ),
    "serendipity_score": (
        "An unexpected pick outside your usual taste",
        "Within your usual taste",
        "Slightly outside your usual taste",
    ),
    "diversity_score": (
        "Adds variety to the session",
        "Similar to what's already playing",
        "Some variety",
    ),
}

# Reason when a penalty applies
PENALTY_REASONS: Dict[str, str] = {
    "recent_play_penalty": "Played recently",
    "dislike_penalty": "You disliked this track or artist",
    "repetition_penalty": "Artist already repeated this session",
}

# Short phrases used in the TrackScore explanation list
POSITIVE_PHRASES: Dict[str, str] = {
    "base_preference": "Matches your taste",
    "ml_prediction": "Predicted to be a favorite",
    "audio_match": "Sounds like what's playing",
    "mood_match": "Fits your mood",
    "harmonic_flow": "Harmonically compatible",
    "temporal_fit": "Right for this time of day",
    "session_flow": "Smooth energy transition",
    "activity_match": "Great for your activity",
    "exploration_bonus": "New discovery",
    "serendipity_score": "Unexpected pick",
    "diversity_score": "Adds variety",
}

NEGATIVE_PHRASES: Dict[str, str] = {
    "base_preference": "Outside your usual taste",
    "ml_prediction": "Predicted to be less liked",
    "session_flow": "Energy jump",
}


def component_label(component: str) -> str:
    return COMPONENT_LABELS.get(component, component)


def component_reason(component: str, value: float) -> str:
    if component in PENALTY_COMPONENTS:
        return PENALTY_REASONS[component] if value > 0 else ""

    reasons = SIGNAL_REASONS.get(component)
    if reasons is None:
        return ""
    high, low, neutral = reasons
    if value > HIGH_THRESHOLD:
        return high
    if value < LOW_THRESHOLD:
        return low
    return neutral


def component_impact(component: str, value: float) -> str:
    if component in PENALTY_COMPONENTS:
        return "negative" if value > 0 else "neutral"
    if value > 50:
        return "positive"
    if value < LOW_THRESHOLD:
        return "negative"
    return "neutral"


def generate_explanation(components: ScoreComponents) -> List[str]:
    """
    Ordered explanation phrases: strong positive signals (strongest
    first), then penalties and weak signals (largest first).
    """
    positives = []
    negatives = []

    for name, value in components.signals().items():
        if value >= HIGH_THRESHOLD and name in POSITIVE_PHRASES:
            positives.append((value, POSITIVE_PHRASES[name]))
        elif value < LOW_THRESHOLD and name in NEGATIVE_PHRASES:
            negatives.append((100 - value, NEGATIVE_PHRASES[name]))

    for name, value in components.penalties().items():
        if value > 0:
            negatives.append((value, PENALTY_REASONS[name]))

    positives.sort(key=lambda item: item[0], reverse=True)
    negatives.sort(key=lambda item: item[0], reverse=True)
    return [phrase for _, phrase in positives] + [phrase for _, phrase in negatives]


def explanation_details(components: ScoreComponents) -> List[ExplanationDetail]:
    return [
        ExplanationDetail(
            component=name,
            label=component_label(name),
            value=value,
            impact=component_impact(name, value),
            reason=component_reason(name, value),
        )
        for name, value in components.present().items()
    ]


def generate_summary(score: TrackScore) -> str:
    top_reasons = ", ".join(score.explanation[:2])

    if score.final_score >= 80:
        return f"Highly recommended: {top_reasons}" if top_reasons else "Highly recommended"
    if score.final_score >= 60:
        return f"Good match: {top_reasons}" if top_reasons else "Good match"
    if score.final_score >= 40:
        return "Moderate recommendation"
    return "Lower priority recommendation"
