from typing import Any, Dict, List, Optional

import pytest

from songbridge.adapters import from_apple
from songbridge.errors import CatalogError
from songbridge.models import TrackDescriptor


def apple_song(
    id: str,
    name: str,
    artist: str,
    album: str = "",
    duration: Optional[int] = None,
    isrc: Optional[str] = None,
    rating: Optional[str] = None,
) -> Dict[str, Any]:
    attrs: Dict[str, Any] = {"name": name, "artistName": artist, "albumName": album}
    if duration is not None:
        attrs["durationInMillis"] = duration
    if isrc:
        attrs["isrc"] = isrc
    if rating:
        attrs["contentRating"] = rating
    return {"id": id, "type": "songs", "attributes": attrs}


class FakeCatalog:
    """In-memory catalog: ISRC and text queries map to canned Apple-shaped results."""

    name = "apple_music"

    def __init__(
        self,
        isrc: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        terms: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        fail: tuple = (),
    ):
        self.isrc_results = isrc or {}
        self.term_results = terms or {}
        self.fail = fail
        self.calls: List[tuple] = []

    async def search_isrc(self, isrc: str, limit: int = 25):
        self.calls.append(("isrc", isrc))
        if "isrc" in self.fail:
            raise CatalogError("isrc endpoint down", status=503)
        return self.isrc_results.get(isrc, [])[:limit]

    async def search(self, term: str, limit: int = 25):
        self.calls.append(("search", term))
        if "search" in self.fail:
            raise CatalogError("search endpoint down", status=503)
        return self.term_results.get(term, [])[:limit]

    def to_track(self, raw):
        return from_apple(raw)


class RecordingCommitter:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.commits: List[tuple] = []

    async def commit(self, service, playlist_name, track_ids):
        if self.fail:
            raise RuntimeError("playlist API rejected the request")
        self.commits.append((service, playlist_name, list(track_ids)))
        return {"playlist_id": "pl-1"}


@pytest.fixture
def yesterday() -> TrackDescriptor:
    return TrackDescriptor(
        name="Yesterday",
        artists=["The Beatles"],
        album="Help!",
        duration_ms=185000,
        isrc="GBAYE0601498",
        catalog="spotify",
    )
