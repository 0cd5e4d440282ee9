"""Edition classification for track titles.

Each tag has a keyword pattern and a flag saying whether the album title is
consulted too; a live album makes every track on it a live recording, a
remastered album a remaster. Anything that matches nothing is ``original``.
"""
from __future__ import annotations

import re
from typing import Dict, FrozenSet, Tuple

from .models import TrackDescriptor, VariantTag

_PATTERNS: Tuple[Tuple[VariantTag, "re.Pattern[str]", bool], ...] = (
    (VariantTag.LIVE, re.compile(r"\b(?:live|ao\s+vivo|en\s+vivo|concert)\b", re.I), True),
    (VariantTag.REMIX, re.compile(r"\b(?:remix|rework|bootleg|vip\s+mix|edit)\b", re.I), False),
    (VariantTag.ACOUSTIC, re.compile(r"\b(?:acoustic|unplugged|stripped)\b", re.I), False),
    (VariantTag.INSTRUMENTAL, re.compile(r"\b(?:instrumental|karaoke)\b", re.I), False),
    (VariantTag.RADIO_EDIT, re.compile(r"\b(?:radio[\s-]+edit|single\s+version|clean\s+version)\b", re.I), False),
    (VariantTag.EXPLICIT, re.compile(r"\b(?:explicit|dirty\s+version)\b", re.I), False),
    (
        VariantTag.REMASTER,
        re.compile(r"\b(?:remaster(?:ed)?|anniversary\s+edition|deluxe\s+edition|expanded\s+edition)\b", re.I),
        True,
    ),
)

# "radio edit" is its own tag; it is blanked out before the other patterns run
_RADIO_EDIT = re.compile(r"\bradio[\s-]+edit\b", re.I)

# Dimensions the scorer compares between source and candidate.
EDITION_DIMENSIONS = (
    VariantTag.LIVE,
    VariantTag.REMASTER,
    VariantTag.EXPLICIT,
    VariantTag.INSTRUMENTAL,
    VariantTag.ACOUSTIC,
)


def classify(name: str, album: str = "") -> FrozenSet[VariantTag]:
    name = name or ""
    album = album or ""
    without_radio_edit = _RADIO_EDIT.sub(" ", name)
    tags = set()
    for tag, pattern, uses_album in _PATTERNS:
        text = name if tag == VariantTag.RADIO_EDIT else without_radio_edit
        if pattern.search(text) or (uses_album and pattern.search(album)):
            tags.add(tag)
    return frozenset(tags) if tags else frozenset({VariantTag.ORIGINAL})


def edition_flags(track: TrackDescriptor) -> Dict[VariantTag, bool]:
    tags = classify(track.name, track.album)
    flags = {dim: dim in tags for dim in EDITION_DIMENSIONS}
    if track.explicit:
        flags[VariantTag.EXPLICIT] = True
    return flags
