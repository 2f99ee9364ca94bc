"""
Seed Candidate Strategies

One strategy per radio seed type, each pulling raw candidates from the
library/queue catalog. A failing source contributes no candidates; the
other sources of the same strategy are still used.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Awaitable, Dict, List

import structlog

from ..models.track_models import (
    CandidateQuery,
    CandidateSource,
    RadioSeed,
    ScoringContext,
    SeedType,
    Track,
)
from ..services.collaborators import LibraryCatalog

logger = structlog.get_logger(__name__)

PLAYLIST_EXPANSION_TRACKS = 5
PLAYLIST_SIMILAR_PER_TRACK = 10


class BaseSeedStrategy(ABC):
    """
    Abstract base class for seed candidate strategies.

    Each strategy knows how to turn one kind of seed into a raw candidate
    pool; scoring and selection happen in the radio generator.
    """

    seed_type: SeedType

    def __init__(self, library: LibraryCatalog):
        self.library = library
        self.logger = logger.bind(component=self.__class__.__name__)

    @abstractmethod
    async def candidates(
        self,
        seed: RadioSeed,
        limit: int,
        context: ScoringContext
    ) -> List[Track]:
        """
        Fetch raw candidates for ``seed``.

        Args:
            seed: Radio anchor
            limit: Target pool size
            context: Scoring context forwarded to the catalog

        Returns:
            Candidate tracks, possibly with duplicates
        """

    async def _source(self, name: str, seed: RadioSeed, fetch: Awaitable[List[Track]]) -> List[Track]:
        try:
            return list(await fetch)
        except Exception as e:
            self.logger.warning(
                "Candidate source failed",
                source=name,
                seed_type=seed.type.value,
                seed_id=seed.id,
                error=str(e)
            )
            return []


class TrackSeedStrategy(BaseSeedStrategy):
    """Similar tracks plus discovery picks."""

    seed_type = SeedType.TRACK

    async def candidates(self, seed, limit, context):
        query = CandidateQuery(
            count=limit,
            sources=[CandidateSource.SIMILAR, CandidateSource.DISCOVERY],
            radio_seed=seed,
            scoring_context=context,
        )
        return await self._source("similar+discovery", seed, self.library.get_candidates(query))


class ArtistSeedStrategy(BaseSeedStrategy):
    """Half the pool from the artist's catalog, half from discovery."""

    seed_type = SeedType.ARTIST

    async def candidates(self, seed, limit, context):
        artist_share = limit // 2
        query = CandidateQuery(
            count=limit - artist_share,
            sources=[CandidateSource.DISCOVERY],
            scoring_context=context,
        )
        artist_tracks, discovery = await asyncio.gather(
            self._source("artist", seed, self.library.get_tracks_by_artist(seed.id)),
            self._source("discovery", seed, self.library.get_candidates(query)),
        )
        return artist_tracks[:artist_share] + discovery


class GenreSeedStrategy(BaseSeedStrategy):
    seed_type = SeedType.GENRE

    async def candidates(self, seed, limit, context):
        tracks = await self._source("genre", seed, self.library.get_tracks_by_genre(seed.id))
        return tracks[:limit]


class MoodSeedStrategy(BaseSeedStrategy):
    """Discovery and library candidates requested under the seed mood."""

    seed_type = SeedType.MOOD

    async def candidates(self, seed, limit, context):
        query = CandidateQuery(
            count=limit,
            sources=[CandidateSource.DISCOVERY, CandidateSource.LIBRARY],
            scoring_context=replace(context, user_mood=seed.id),
        )
        return await self._source("discovery+library", seed, self.library.get_candidates(query))


class PlaylistSeedStrategy(BaseSeedStrategy):
    """Playlist tracks expanded with tracks similar to its first entries."""

    seed_type = SeedType.PLAYLIST

    async def candidates(self, seed, limit, context):
        playlist = await self._source("playlist", seed, self.library.get_playlist_tracks(seed.id))

        expansions = await asyncio.gather(*(
            self._source(
                "similar",
                seed,
                self.library.get_candidates(CandidateQuery(
                    count=PLAYLIST_SIMILAR_PER_TRACK,
                    sources=[CandidateSource.SIMILAR],
                    radio_seed=RadioSeed(type=SeedType.TRACK, id=track.id, name=track.title),
                    scoring_context=context,
                ))
            )
            for track in playlist[:PLAYLIST_EXPANSION_TRACKS]
        ))

        candidates = list(playlist)
        for similar in expansions:
            candidates.extend(similar)
        return candidates


class SeedStrategyFactory:
    """Maps each SeedType to its strategy instance."""

    def __init__(self, library: LibraryCatalog):
        self._strategies: Dict[SeedType, BaseSeedStrategy] = {
            strategy.seed_type: strategy
            for strategy in (
                TrackSeedStrategy(library),
                ArtistSeedStrategy(library),
                GenreSeedStrategy(library),
                MoodSeedStrategy(library),
                PlaylistSeedStrategy(library),
            )
        }
        logger.debug("SeedStrategyFactory initialized", strategies=len(self._strategies))

    def get(self, seed_type: SeedType) -> BaseSeedStrategy:
        """
        Raises:
            ValueError: If no strategy handles ``seed_type``
        """
        strategy = self._strategies.get(seed_type)
        if strategy is None:
            raise ValueError(f"No candidate strategy for seed type {seed_type!r}")
        return strategy

    def register(self, strategy: BaseSeedStrategy) -> None:
        self._strategies[strategy.seed_type] = strategy

    @property
    def seed_types(self) -> List[SeedType]:
        return list(self._strategies)


def dedupe(tracks: List[Track]) -> List[Track]:
    """Drop repeated track ids, keeping first occurrences in order."""
    seen = set()
    unique = []
    for track in tracks:
        if track.id not in seen:
            seen.add(track.id)
            unique.append(track)
    return unique
