"""
Candidate search tiers.

Tiers run strictly in order for one track: ISRC, precise metadata, flexible
text, artist only. Each builds its own query, scores what the catalog
returns, and tells the caller whether to stop. Tiers 2 and 3 also stop the
chain when all they found were sub-threshold alternatives; that saves the
remaining catalog calls at the cost of sometimes missing a tier-4 hit.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .catalog import CatalogClient
from .config import config
from .errors import TransferCancelled
from .matcher import ARTIST_ONLY, MatchScorer, ScoringProfile
from .metadata import normalize_search_term, string_similarity
from .models import CandidateTrack, SearchAttempt, TrackDescriptor

logger = logging.getLogger(__name__)


@dataclass
class TierResult:
    attempt: SearchAttempt
    accepted: Optional[CandidateTrack] = None
    alternatives: List[CandidateTrack] = field(default_factory=list)
    stop: bool = False
    auto_accept: bool = True


class SearchTier:
    tier = 0
    method = ""
    limit = 25
    accept_threshold = 75.0
    alternative_floor = 60.0
    # Floor for the sub-threshold list; None means the tier keeps nothing below acceptance
    low_floor: Optional[float] = None
    stop_on_alternatives = False
    auto_accept = True
    profile: Optional[ScoringProfile] = None
    max_alternatives: Optional[int] = None

    def build_query(self, track: TrackDescriptor) -> Optional[str]:
        raise NotImplementedError

    async def fetch(self, catalog: CatalogClient, query: str) -> List[Dict[str, Any]]:
        return await catalog.search(query, self.limit)

    def keep(self, source: TrackDescriptor, candidate: TrackDescriptor) -> bool:
        return True

    def _alt_limit(self) -> int:
        return self.max_alternatives or config["ALTERNATIVES_LIMIT"]

    async def run(
        self,
        catalog: CatalogClient,
        track: TrackDescriptor,
        scorer: MatchScorer,
    ) -> Optional[TierResult]:
        """Run this tier; None when the track lacks what the tier queries by."""
        query = self.build_query(track)
        if not query:
            return None
        attempt = SearchAttempt(tier=self.tier, method=self.method, query=query)
        try:
            raw = await self.fetch(catalog, query)
        except TransferCancelled:
            raise
        except Exception as e:
            attempt.error = str(e) or type(e).__name__
            logger.info("Tier %d (%s) failed for %r: %s", self.tier, self.method, track.name, attempt.error)
            return TierResult(attempt=attempt)
        attempt.results_count = len(raw)
        logger.debug("Tier %d (%s) %r -> %d results", self.tier, self.method, query, len(raw))

        ranked = self._rank(catalog, track, raw, scorer)
        result = TierResult(attempt=attempt, auto_accept=self.auto_accept)
        if not ranked:
            return result

        best = ranked[0]
        if best.score.total >= self.accept_threshold:
            result.accepted = best
            result.alternatives = [c for c in ranked[1:] if c.score.total >= self.alternative_floor][: self._alt_limit()]
            result.stop = True
        elif self.low_floor is not None:
            result.alternatives = [c for c in ranked if c.score.total >= self.low_floor][: self._alt_limit()]
            result.stop = self.stop_on_alternatives and bool(result.alternatives)
        return result

    def _rank(
        self,
        catalog: CatalogClient,
        track: TrackDescriptor,
        raw: List[Dict[str, Any]],
        scorer: MatchScorer,
    ) -> List[CandidateTrack]:
        seen = set()
        out: List[CandidateTrack] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            try:
                cand = catalog.to_track(item)
            except (TypeError, ValueError, AttributeError, KeyError) as e:
                logger.debug("Skipping unreadable %s item %r: %s", self.method, item.get("id"), e)
                continue
            cid = cand.id or item.get("id")
            if not cid or cid in seen or not self.keep(track, cand):
                continue
            seen.add(cid)
            out.append(
                CandidateTrack(
                    id=cid,
                    track=cand,
                    score=scorer.score(track, cand, self.profile),
                    match_method=self.method,
                    type=item.get("type") or "songs",
                    attributes=item.get("attributes") or item,
                )
            )
        out.sort(key=lambda c: c.score.total, reverse=True)
        return out


class IsrcTier(SearchTier):
    tier = 1
    method = "ISRC"
    limit = 25
    accept_threshold = 75.0
    alternative_floor = 60.0
    low_floor = 60.0
    max_alternatives = 5

    def build_query(self, track: TrackDescriptor) -> Optional[str]:
        return (track.isrc or "").strip().upper() or None

    async def fetch(self, catalog: CatalogClient, query: str) -> List[Dict[str, Any]]:
        return await catalog.search_isrc(query, self.limit)


class PreciseMetadataTier(SearchTier):
    tier = 2
    method = "Precise Metadata"
    limit = 15
    accept_threshold = 75.0
    alternative_floor = 60.0
    low_floor = 50.0
    stop_on_alternatives = True

    def build_query(self, track: TrackDescriptor) -> Optional[str]:
        if not track.name or not track.primary_artist:
            return None
        parts = [track.name, track.primary_artist, track.album]
        return " ".join(normalize_search_term(p) for p in parts if p)[:200].strip()


class FlexibleTier(SearchTier):
    tier = 3
    method = "Flexible Search"
    limit = 25
    accept_threshold = 70.0
    alternative_floor = 40.0
    low_floor = 40.0
    stop_on_alternatives = True
    # Candidates by a clearly different artist are dropped outright
    artist_floor = 0.8

    def build_query(self, track: TrackDescriptor) -> Optional[str]:
        if not track.name:
            return None
        parts = [track.name, track.primary_artist]
        return " ".join(normalize_search_term(p) for p in parts if p)[:150].strip()

    def keep(self, source: TrackDescriptor, candidate: TrackDescriptor) -> bool:
        if not source.primary_artist:
            return True
        return string_similarity(source.primary_artist, candidate.primary_artist) >= self.artist_floor


class ArtistOnlyTier(SearchTier):
    tier = 4
    method = "Artist Only"
    limit = 15
    accept_threshold = 60.0
    alternative_floor = 40.0
    low_floor = 40.0
    auto_accept = False
    profile = ARTIST_ONLY

    def build_query(self, track: TrackDescriptor) -> Optional[str]:
        return normalize_search_term(track.primary_artist) or None


def default_tiers() -> List[SearchTier]:
    return [IsrcTier(), PreciseMetadataTier(), FlexibleTier(), ArtistOnlyTier()]
