import logging
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .catalog import CatalogClient
from .config import config
from .executor import BatchProgress, CancellationToken, ItemProgress, process_in_batches, process_in_parallel
from .fingerprint import FingerprintMatcher
from .matcher import MatchScorer, ScoringProfile, profile_for
from .models import CandidateTrack, Confidence, ResolutionResult, SearchAttempt, TrackDescriptor
from .search import SearchTier, default_tiers

logger = logging.getLogger(__name__)


def _merge(pool: List[CandidateTrack], extra: Iterable[CandidateTrack]) -> List[CandidateTrack]:
    """Union by id keeping the better-scored copy, best first."""
    by_id: Dict[str, CandidateTrack] = {c.id: c for c in pool}
    for c in extra:
        if c.id not in by_id or c.score.total > by_id[c.id].score.total:
            by_id[c.id] = c
    return sorted(by_id.values(), key=lambda c: c.score.total, reverse=True)


class ResolutionEngine:
    """Resolve source tracks against one destination catalog."""

    def __init__(
        self,
        catalog: CatalogClient,
        profile: Optional[ScoringProfile] = None,
        source_catalog: Optional[str] = None,
        tiers: Optional[Sequence[SearchTier]] = None,
        fingerprinter: Optional[FingerprintMatcher] = None,
        alternatives_limit: Optional[int] = None,
    ):
        self.catalog = catalog
        self.profile = profile or profile_for(source_catalog, catalog.name)
        self.scorer = MatchScorer(self.profile)
        self.tiers = list(tiers) if tiers is not None else default_tiers()
        self.fingerprinter = fingerprinter
        self.alternatives_limit = alternatives_limit or config["ALTERNATIVES_LIMIT"]

    async def _run_chain(
        self,
        track: TrackDescriptor,
        attempts: List[SearchAttempt],
        cancel: Optional[CancellationToken],
    ):
        pool: List[CandidateTrack] = []
        for tier in self.tiers:
            if cancel is not None:
                cancel.raise_if_cancelled()
            outcome = await tier.run(self.catalog, track, self.scorer)
            if outcome is None:
                continue
            attempts.append(outcome.attempt)
            if outcome.accepted is not None:
                return outcome.accepted, outcome.alternatives, outcome.auto_accept
            pool = _merge(pool, outcome.alternatives)
            if outcome.stop:
                break
        return None, pool, False

    async def _fingerprint_fallback(self, track, attempts, cancel):
        try:
            found = await self.fingerprinter.identify(track)
        except Exception as e:
            logger.warning("Fingerprint lookup failed for %r: %s", track.name, e)
            return None, []
        if not found.success or found.track is None:
            logger.debug("No fingerprint for %r: %s", track.name, found.reason)
            return None, []
        logger.info("Fingerprint identified %r as %r by %s", track.name, found.track.name, found.track.artist_line)
        accepted, alternatives, _ = await self._run_chain(found.track, attempts, cancel)
        for c in [accepted, *alternatives]:
            if c is not None:
                c.match_method = f"Fingerprint/{c.match_method}"
        return accepted, alternatives

    async def resolve(self, track: TrackDescriptor, cancel: Optional[CancellationToken] = None) -> ResolutionResult:
        result = ResolutionResult(source_track=track)
        accepted, alternatives, auto = await self._run_chain(track, result.search_attempts, cancel)

        if accepted is None and not alternatives and self.fingerprinter is not None:
            # Fingerprint hits always go to a human
            accepted, alternatives = await self._fingerprint_fallback(track, result.search_attempts, cancel)
            auto = False

        limit = self.alternatives_limit
        if accepted is not None and auto and accepted.confidence == Confidence.HIGH:
            result.match = accepted
            result.alternatives = alternatives[:limit]
        elif accepted is not None:
            result.match = accepted
            result.alternatives = _merge([accepted], alternatives)[:limit]
            result.needs_review = True
        elif alternatives:
            result.alternatives = alternatives[:limit]
            result.needs_review = True
        else:
            result.unavailable = True

        logger.debug(
            "Resolved %r by %s -> %s (%s, %d attempts)",
            track.name,
            track.artist_line,
            result.outcome,
            result.match_method or "-",
            len(result.search_attempts),
        )
        return result

    async def resolve_all(
        self,
        tracks: Sequence[TrackDescriptor],
        max_concurrent: Optional[int] = None,
        on_progress: Optional[Callable[[ItemProgress], None]] = None,
        cancel: Optional[CancellationToken] = None,
        batch_size: Optional[int] = None,
        on_batch: Optional[Callable[[BatchProgress], None]] = None,
    ) -> List[ResolutionResult]:
        """Resolve a whole playlist; one result per track, in playlist order.

        With ``batch_size`` the playlist is fed in throttled chunks and
        progress is reported per batch through ``on_batch`` instead.
        """
        limit = max_concurrent or config["MAX_PARALLEL_REQUESTS"]
        if batch_size:
            async def run_batch(batch):
                return await process_in_parallel(batch, lambda t: self.resolve(t, cancel), max_concurrent=limit, cancel=cancel)

            items = await process_in_batches(
                tracks,
                run_batch,
                batch_size=batch_size,
                delay=config["BATCH_DELAY_MS"] / 1000,
                on_progress=on_batch,
                cancel=cancel,
            )
        else:
            items = await process_in_parallel(
                tracks,
                lambda t: self.resolve(t, cancel),
                max_concurrent=limit,
                on_progress=on_progress,
                cancel=cancel,
            )
        results = []
        for item in items:
            if item.success:
                results.append(item.result)
            else:
                results.append(
                    ResolutionResult(
                        source_track=item.item,
                        unavailable=True,
                        error=str(item.error) or type(item.error).__name__,
                    )
                )
        buckets = partition_results(results)
        logger.info(
            "Resolved %d tracks: %d matched, %d to review, %d unavailable",
            len(results),
            len(buckets["auto_matched"]),
            len(buckets["needs_review"]),
            len(buckets["unavailable"]),
        )
        return results


def partition_results(results: Iterable[ResolutionResult]) -> Dict[str, List[ResolutionResult]]:
    buckets: Dict[str, List[ResolutionResult]] = {"auto_matched": [], "needs_review": [], "unavailable": []}
    for r in results:
        if r.unavailable:
            buckets["unavailable"].append(r)
        elif r.needs_review:
            buckets["needs_review"].append(r)
        else:
            buckets["auto_matched"].append(r)
    return buckets
