"""Core value types shared by the resolver, the session layer and the CLI."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class VariantTag(str, Enum):
    ORIGINAL = "original"
    LIVE = "live"
    REMIX = "remix"
    ACOUSTIC = "acoustic"
    INSTRUMENTAL = "instrumental"
    RADIO_EDIT = "radio_edit"
    EXPLICIT = "explicit"
    REMASTER = "remaster"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    VERY_LOW = "very_low"


@dataclass
class TrackDescriptor:
    """A track as described by one catalog, reduced to the fields we match on."""

    name: str
    artists: List[str] = field(default_factory=list)
    album: str = ""
    duration_ms: Optional[int] = None
    isrc: Optional[str] = None
    explicit: bool = False
    id: Optional[str] = None
    catalog: Optional[str] = None

    @property
    def primary_artist(self) -> str:
        return self.artists[0] if self.artists else ""

    @property
    def featured_artists(self) -> List[str]:
        return list(self.artists[1:])

    @property
    def artist_line(self) -> str:
        return ", ".join(self.artists)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "artists": list(self.artists),
            "album": self.album,
            "duration_ms": self.duration_ms,
            "isrc": self.isrc,
            "explicit": self.explicit,
            "catalog": self.catalog,
        }


@dataclass
class MatchScore:
    total: float
    confidence: Confidence
    breakdown: Dict[str, float] = field(default_factory=dict)
    vetoed: bool = False


@dataclass
class CandidateTrack:
    """A destination-catalog candidate with the score it earned in one tier."""

    id: str
    track: TrackDescriptor
    score: MatchScore
    match_method: str
    type: str = "songs"
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def confidence(self) -> Confidence:
        return self.score.confidence

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "name": self.track.name,
            "artist": self.track.artist_line,
            "album": self.track.album,
            "duration_ms": self.track.duration_ms,
            "score": self.score.total,
            "confidence": self.score.confidence.value,
            "match_method": self.match_method,
        }


@dataclass
class SearchAttempt:
    tier: int
    method: str
    query: str
    results_count: int = 0
    error: Optional[str] = None


@dataclass
class ResolutionResult:
    source_track: TrackDescriptor
    match: Optional[CandidateTrack] = None
    alternatives: List[CandidateTrack] = field(default_factory=list)
    unavailable: bool = False
    needs_review: bool = False
    search_attempts: List[SearchAttempt] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def outcome(self) -> str:
        if self.unavailable:
            return "unavailable"
        if self.needs_review:
            return "review"
        return "auto"

    @property
    def match_method(self) -> Optional[str]:
        return self.match.match_method if self.match else None

    @property
    def confidence(self) -> Optional[Confidence]:
        return self.match.confidence if self.match else None

    @property
    def review_candidates(self) -> List[CandidateTrack]:
        """The match (if any) followed by the alternatives, as offered to a reviewer."""
        out: List[CandidateTrack] = []
        if self.match is not None:
            out.append(self.match)
        out.extend(a for a in self.alternatives if self.match is None or a.id != self.match.id)
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_track": self.source_track.to_dict(),
            "match": self.match.to_dict() if self.match else None,
            "alternatives": [a.to_dict() for a in self.alternatives],
            "unavailable": self.unavailable,
            "needs_review": self.needs_review,
            "match_method": self.match_method,
            "confidence": self.confidence.value if self.confidence else None,
            "search_attempts": [
                {
                    "tier": a.tier,
                    "method": a.method,
                    "query": a.query,
                    "results_count": a.results_count,
                    "error": a.error,
                }
                for a in self.search_attempts
            ],
            "error": self.error,
        }
