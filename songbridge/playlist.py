"""Playlist files in and committed id lists out."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Tuple

import aiofiles

logger = logging.getLogger(__name__)


def parse_playlist_data(data: Any, default_name: str = "") -> Tuple[str, List[Dict[str, Any]]]:
    """Extract ``(name, raw tracks)`` from the JSON shapes playlist exports use.

    Accepts a bare list of tracks, ``{"name": ..., "tracks": [...]}``, or a
    list whose first element is such a dict.
    """
    name = default_name
    if isinstance(data, list) and data and isinstance(data[0], dict) and "tracks" in data[0]:
        data = data[0]
    if isinstance(data, dict):
        name = data.get("name") or data.get("playlist_name") or name
        data = data.get("tracks", [])
    if not isinstance(data, list):
        return name, []
    return name, [t for t in data if isinstance(t, dict)]


async def load_playlist(path: Path | str) -> Tuple[str, List[Dict[str, Any]]]:
    path = Path(path)
    async with aiofiles.open(path, "r", encoding="utf-8") as f:
        data = json.loads(await f.read())
    name, tracks = parse_playlist_data(data, default_name=path.stem)
    logger.info("Loaded %d tracks from %s", len(tracks), path)
    return name, tracks


class JsonFileCommitter:
    """Writes the committed track ids to a JSON file instead of a live catalog."""

    def __init__(self, out_path: Path | str):
        self.out_path = Path(out_path)

    async def commit(self, service: str, playlist_name: str, track_ids: List[str]) -> Dict[str, Any]:
        self.out_path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"service": service, "playlist_name": playlist_name, "track_ids": track_ids}
        async with aiofiles.open(self.out_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(payload, indent=2))
        return {"path": str(self.out_path), "count": len(track_ids)}
