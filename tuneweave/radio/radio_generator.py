"""
Radio Generator

Session-aware, never-ending playlist generation from a seed. Each seed
gets a session (played track ids plus a drift counter). As drift grows
the seed's pull on selection decays and selection becomes more random:

    seed_weight = max(0.3, 0.7 - drift * 0.02)

Calls for the same seed are serialized on the session's lock; different
seeds proceed independently.
"""

import asyncio
import random
import time
from dataclasses import dataclass, field, replace
from typing import Dict, List, NamedTuple, Optional, Set

import structlog

from ..models.track_models import (
    QueueMode,
    RadioSeed,
    RadioSeedState,
    ScoringContext,
    SeedType,
    Track,
)
from ..scoring.hybrid_scorer import HybridScorer
from ..services.collaborators import LibraryCatalog
from ..utils.logging_config import log_performance
from .seed_strategies import SeedStrategyFactory, dedupe

logger = structlog.get_logger(__name__)

SEED_WEIGHT_INITIAL = 0.7
SEED_WEIGHT_DECAY = 0.02
SEED_WEIGHT_MIN = 0.3

CANDIDATE_MULTIPLIER = 3
MAX_TRACKS_PER_ARTIST = 2

# Slice of the selection that gets shuffled; the head and tail keep their order
SHUFFLE_START = 0.3
SHUFFLE_END = 0.9


def seed_weight(drift: int) -> float:
    return max(SEED_WEIGHT_MIN, SEED_WEIGHT_INITIAL - drift * SEED_WEIGHT_DECAY)


class SessionKey(NamedTuple):
    seed_type: SeedType
    seed_id: str

    @classmethod
    def for_seed(cls, seed: RadioSeed) -> "SessionKey":
        return cls(seed.type, seed.id)


@dataclass
class RadioSession:
    """Per-seed radio state."""
    played_track_ids: Set[str] = field(default_factory=set)
    drift: int = 0
    last_seed_weight: float = SEED_WEIGHT_INITIAL
    last_shortfall: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def seed_weight(self) -> float:
        """Seed weight the next generate call will use."""
        return seed_weight(self.drift)


class RadioGenerator:
    """Generates radio batches from seeds using the hybrid scorer."""

    def __init__(
        self,
        library: LibraryCatalog,
        scorer: HybridScorer,
        rng: Optional[random.Random] = None,
        max_per_artist: int = MAX_TRACKS_PER_ARTIST,
        strategies: Optional[SeedStrategyFactory] = None
    ):
        self.library = library
        self.scorer = scorer
        self.rng = rng or random.Random()
        self.max_per_artist = max_per_artist
        self.strategies = strategies or SeedStrategyFactory(library)
        self.sessions: Dict[SessionKey, RadioSession] = {}
        self.logger = logger.bind(component="RadioGenerator")

    def get_session(self, seed: RadioSeed) -> Optional[RadioSession]:
        return self.sessions.get(SessionKey.for_seed(seed))

    def reset_session(self, seed: RadioSeed) -> bool:
        """Forget played tracks and drift for ``seed``."""
        removed = self.sessions.pop(SessionKey.for_seed(seed), None) is not None
        self.logger.info(
            "Radio session reset",
            seed_type=seed.type.value,
            seed_id=seed.id,
            existed=removed
        )
        return removed

    async def generate(self, seed: RadioSeed, count: int, context: ScoringContext) -> List[Track]:
        """
        Next batch of up to ``count`` tracks for ``seed``.

        Tracks already served in this seed's session are never repeated;
        when too few fresh candidates remain the batch is shorter and the
        shortfall is recorded on the session.
        """
        if count <= 0:
            return []

        start = time.monotonic()
        session = self.sessions.setdefault(SessionKey.for_seed(seed), RadioSession())

        async with session.lock:
            weight = session.seed_weight
            session.last_seed_weight = weight

            candidates = await self._candidates(seed, count * CANDIDATE_MULTIPLIER, context)
            fresh = [t for t in candidates if t.id not in session.played_track_ids]

            session.last_shortfall = max(0, count - len(fresh))
            if session.last_shortfall:
                self.logger.warning(
                    "Radio candidate shortfall",
                    seed_type=seed.type.value,
                    seed_id=seed.id,
                    requested=count,
                    available=len(fresh)
                )
            if not fresh:
                return []

            radio_context = replace(
                context,
                queue_mode=QueueMode.RADIO,
                radio_seed=RadioSeedState(seed=seed, drift=session.drift),
            )
            scores = await self.scorer.score_batch(fresh, radio_context)

            ranked = sorted(
                (
                    (track, self._perturb(score.final_score, weight))
                    for track, score in zip(fresh, scores)
                ),
                key=lambda item: item[1],
                reverse=True
            )

            selected = self._select_with_variety([track for track, _ in ranked], count)
            selected = self._biased_shuffle(selected)

            session.played_track_ids.update(t.id for t in selected)
            session.drift += len(selected)

        self.logger.info(
            "Radio batch generated",
            seed_type=seed.type.value,
            seed_id=seed.id,
            selected=len(selected),
            candidates=len(candidates),
            drift=session.drift,
            seed_weight=round(weight, 3)
        )
        log_performance("radio_generate", time.monotonic() - start, selected=len(selected))
        return selected

    async def _candidates(self, seed: RadioSeed, limit: int, context: ScoringContext) -> List[Track]:
        strategy = self.strategies.get(seed.type)
        return dedupe(await strategy.candidates(seed, limit, context))

    def _perturb(self, score: float, weight: float) -> float:
        return score * weight + score * (1 - weight) * self.rng.random()

    def _select_with_variety(self, ranked: List[Track], count: int) -> List[Track]:
        """
        Take the best tracks allowing at most ``max_per_artist`` per artist,
        then top up from the remaining ranked tracks if the cap left gaps.
        """
        selected: List[Track] = []
        chosen: Set[str] = set()
        per_artist: Dict[str, int] = {}

        for track in ranked:
            if len(selected) >= count:
                break
            artist = track.artist_id or "unknown"
            if per_artist.get(artist, 0) < self.max_per_artist:
                selected.append(track)
                chosen.add(track.id)
                per_artist[artist] = per_artist.get(artist, 0) + 1

        if len(selected) < count:
            for track in ranked:
                if len(selected) >= count:
                    break
                if track.id not in chosen:
                    selected.append(track)
                    chosen.add(track.id)

        return selected

    def _biased_shuffle(self, tracks: List[Track]) -> List[Track]:
        result = list(tracks)
        start = int(len(result) * SHUFFLE_START)
        end = int(len(result) * SHUFFLE_END)

        middle = result[start:end]
        self.rng.shuffle(middle)
        result[start:end] = middle
        return result
