"""Convert raw catalog payloads into TrackDescriptor instances."""
from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from .metadata import parse_artist_string
from .models import TrackDescriptor


def _int_or_none(v: Any) -> Optional[int]:
    try:
        return int(v) if v is not None and v != "" else None
    except (TypeError, ValueError):
        return None


def _name_of(v: Any) -> str:
    # Spotify nests album and artist objects; flat exports use plain strings
    if isinstance(v, dict):
        return v.get("name") or ""
    return v if isinstance(v, str) else ""


def from_apple(raw: Dict[str, Any]) -> TrackDescriptor:
    attrs = raw.get("attributes") or {}
    return TrackDescriptor(
        name=attrs.get("name") or "",
        artists=parse_artist_string(attrs.get("artistName") or ""),
        album=attrs.get("albumName") or "",
        duration_ms=_int_or_none(attrs.get("durationInMillis")),
        isrc=attrs.get("isrc") or None,
        explicit=attrs.get("contentRating") == "explicit",
        id=raw.get("id"),
        catalog="apple_music",
    )


def from_spotify(raw: Dict[str, Any]) -> TrackDescriptor:
    artists = [a["name"] for a in raw.get("artists") or [] if isinstance(a, dict) and a.get("name")]
    return TrackDescriptor(
        name=raw.get("name") or "",
        artists=artists,
        album=_name_of(raw.get("album")),
        duration_ms=_int_or_none(raw.get("duration_ms")),
        isrc=(raw.get("external_ids") or {}).get("isrc") or None,
        explicit=bool(raw.get("explicit")),
        id=raw.get("id"),
        catalog="spotify",
    )


def from_simple(raw: Dict[str, Any]) -> TrackDescriptor:
    """Loose playlist-file entry: ``title``/``name``, ``artist``/``artists``, ``album`` ..."""
    artists = raw.get("artists")
    if isinstance(artists, str):
        artists = parse_artist_string(artists)
    elif not artists:
        artists = parse_artist_string(raw.get("artist") or "")
    else:
        artists = [n for n in map(_name_of, artists) if n]
    duration = raw.get("duration_ms")
    if duration is None and raw.get("duration") is not None:
        # seconds in most exports
        secs = _int_or_none(raw.get("duration"))
        duration = secs * 1000 if secs is not None else None
    return TrackDescriptor(
        name=raw.get("title") or raw.get("name") or "",
        artists=list(artists),
        album=_name_of(raw.get("album")),
        duration_ms=_int_or_none(duration),
        isrc=raw.get("isrc") or None,
        explicit=bool(raw.get("explicit")),
        id=raw.get("id"),
        catalog=raw.get("catalog"),
    )


ADAPTERS: Dict[str, Callable[[Dict[str, Any]], TrackDescriptor]] = {
    "apple_music": from_apple,
    "spotify": from_spotify,
    "simple": from_simple,
}


def adapt(catalog: str, raw: Dict[str, Any]) -> TrackDescriptor:
    try:
        fn = ADAPTERS[catalog]
    except KeyError:
        raise ValueError(f"No adapter for catalog {catalog!r}") from None
    return fn(raw)
