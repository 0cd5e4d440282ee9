"""
Match scoring between a source track and a destination-catalog candidate.

One scorer, several named weight profiles. ``strict`` weighs artist as
heavily as title and vetoes candidates whose duration is too far off;
``balanced`` leans on album and spreads the duration bonus wider;
``artist_only`` is used when the search was by artist alone and the title is
only a weak signal. Totals are always clamped to [0, 100] before bucketing.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .config import config
from .metadata import normalize_score_term, normalize_string, string_similarity
from .models import Confidence, MatchScore, TrackDescriptor, VariantTag
from .variants import EDITION_DIMENSIONS, edition_flags

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VariantRule:
    both: float
    source_only: float
    candidate_only: float


@dataclass(frozen=True)
class ScoringProfile:
    name: str
    title_weight: float
    artist_weight: float
    album_weight: float = 0.0
    # (max abs difference in ms, points), tightest first
    duration_tiers: Tuple[Tuple[int, float], ...] = ()
    veto_ms: Optional[int] = None
    variant_rules: Dict[VariantTag, VariantRule] = field(default_factory=dict)
    album_exact_bonus: float = 0.0
    featured_artist_bonus: float = 0.0


STRICT = ScoringProfile(
    name="strict",
    title_weight=40,
    artist_weight=40,
    album_weight=10,
    duration_tiers=((2000, 10), (3000, 5)),
    veto_ms=3500,
    variant_rules={
        VariantTag.LIVE: VariantRule(20, -25, -20),
        VariantTag.REMASTER: VariantRule(15, -15, -10),
        VariantTag.EXPLICIT: VariantRule(15, -15, -15),
        VariantTag.INSTRUMENTAL: VariantRule(20, -25, -20),
        VariantTag.ACOUSTIC: VariantRule(15, -15, -10),
    },
    album_exact_bonus=20,
)

BALANCED = ScoringProfile(
    name="balanced",
    title_weight=40,
    artist_weight=30,
    album_weight=20,
    duration_tiers=((2000, 10), (5000, 7), (10000, 4)),
    variant_rules={dim: VariantRule(5, -10, -10) for dim in EDITION_DIMENSIONS},
    featured_artist_bonus=5,
)

ARTIST_ONLY = ScoringProfile(name="artist_only", title_weight=30, artist_weight=70)

PROFILES: Dict[str, ScoringProfile] = {p.name: p for p in (STRICT, BALANCED, ARTIST_ONLY)}

# (source catalog, destination catalog) -> profile name
PROFILE_BY_PAIR: Dict[Tuple[str, str], str] = {
    ("spotify", "apple_music"): "strict",
    ("apple_music", "spotify"): "balanced",
}


def get_profile(name: str) -> ScoringProfile:
    try:
        return PROFILES[name]
    except KeyError:
        raise ValueError(f"Unknown scoring profile {name!r}; choose from {', '.join(PROFILES)}") from None


def profile_for(source_catalog: Optional[str], destination_catalog: Optional[str]) -> ScoringProfile:
    """Pick the weight profile for a transfer direction, honoring SCORING_PROFILE."""
    configured = config.get("SCORING_PROFILE", "auto")
    if configured and configured != "auto":
        return get_profile(configured)
    return get_profile(PROFILE_BY_PAIR.get((source_catalog or "", destination_catalog or ""), "strict"))


def confidence_bucket(
    total: float,
    high: Optional[int] = None,
    medium: Optional[int] = None,
    low: Optional[int] = None,
) -> Confidence:
    high = config["THRESHOLD_HIGH"] if high is None else high
    medium = config["THRESHOLD_MEDIUM"] if medium is None else medium
    low = config["THRESHOLD_LOW"] if low is None else low
    if total >= high:
        return Confidence.HIGH
    if total >= medium:
        return Confidence.MEDIUM
    if total >= low:
        return Confidence.LOW
    return Confidence.VERY_LOW


def _scoring_form(s: str) -> str:
    # A title that is nothing but brackets still needs something to compare
    return normalize_score_term(s) or normalize_string(s)


def _artist_similarity(source: TrackDescriptor, candidate: TrackDescriptor) -> float:
    return max(
        string_similarity(source.primary_artist, candidate.primary_artist),
        string_similarity(source.artist_line, candidate.artist_line),
    )


def _duration_points(profile: ScoringProfile, diff: Optional[int]) -> float:
    if diff is None:
        return 0.0
    for limit, points in profile.duration_tiers:
        if diff <= limit:
            return float(points)
    return 0.0


def _variant_points(profile: ScoringProfile, source: TrackDescriptor, candidate: TrackDescriptor) -> float:
    if not profile.variant_rules:
        return 0.0
    src = edition_flags(source)
    cand = edition_flags(candidate)
    points = 0.0
    for dim, rule in profile.variant_rules.items():
        if src[dim] and cand[dim]:
            points += rule.both
        elif src[dim]:
            points += rule.source_only
        elif cand[dim]:
            points += rule.candidate_only
    return points


def _featured_overlap(source: TrackDescriptor, candidate: TrackDescriptor) -> bool:
    a = {normalize_string(x) for x in source.featured_artists}
    b = {normalize_string(x) for x in candidate.featured_artists}
    return bool(a & b)


def calculate_match_score(
    source: TrackDescriptor,
    candidate: TrackDescriptor,
    profile: ScoringProfile = STRICT,
) -> MatchScore:
    """Score ``candidate`` against ``source`` on a 0..100 scale."""
    breakdown: Dict[str, float] = {}
    breakdown["title"] = string_similarity(_scoring_form(source.name), _scoring_form(candidate.name)) * profile.title_weight
    breakdown["artist"] = _artist_similarity(source, candidate) * profile.artist_weight

    if profile.album_weight:
        if source.album:
            album_sim = string_similarity(_scoring_form(source.album), _scoring_form(candidate.album))
        else:
            # Nothing to disagree with
            album_sim = 1.0
        breakdown["album"] = album_sim * profile.album_weight

    diff = None
    if source.duration_ms and candidate.duration_ms:
        diff = abs(source.duration_ms - candidate.duration_ms)
    breakdown["duration"] = _duration_points(profile, diff)

    breakdown["variant"] = _variant_points(profile, source, candidate)

    if profile.album_exact_bonus and source.album and normalize_string(source.album) == normalize_string(candidate.album):
        breakdown["album_exact"] = profile.album_exact_bonus
    if profile.featured_artist_bonus and _featured_overlap(source, candidate):
        breakdown["featured"] = profile.featured_artist_bonus

    vetoed = profile.veto_ms is not None and diff is not None and diff > profile.veto_ms
    if vetoed:
        total = 0.0
    else:
        total = round(min(100.0, max(0.0, sum(breakdown.values()))), 1)
    return MatchScore(total=total, confidence=confidence_bucket(total), breakdown=breakdown, vetoed=vetoed)


class MatchScorer:
    """Scores and ranks raw candidates with a fixed profile."""

    def __init__(self, profile: ScoringProfile = STRICT):
        self.profile = profile

    def score(self, source: TrackDescriptor, candidate: TrackDescriptor, profile: Optional[ScoringProfile] = None) -> MatchScore:
        return calculate_match_score(source, candidate, profile or self.profile)

    def rank(
        self,
        source: TrackDescriptor,
        candidates: Iterable[TrackDescriptor],
        profile: Optional[ScoringProfile] = None,
    ) -> List[Tuple[TrackDescriptor, MatchScore]]:
        """Score every candidate and sort best first; ties keep catalog order."""
        scored = [(c, self.score(source, c, profile)) for c in candidates]
        scored.sort(key=lambda pair: pair[1].total, reverse=True)
        return scored
