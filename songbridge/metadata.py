from __future__ import annotations

import re
import unicodedata
from typing import Any, List

from rapidfuzz.distance import Levenshtein

_PUNCT_RE = re.compile(r"[^\w\s]")
_SPACE_RE = re.compile(r"\s+")

# Credits dropped from outbound queries; catalogs index them inconsistently.
_FEAT_PAREN_RE = re.compile(r"\s*[\(\[](?:feat\.?|ft\.?|featuring|with)\s[^\)\]]*[\)\]]", re.IGNORECASE)
_BRACKETED_RE = re.compile(r"\([^)]*\)|\[[^\]]*\]")
_QUALIFIER_RE = re.compile(
    r"\b(?:remaster(?:ed)?|deluxe|edition|version|explicit|clean|single|album|mono|stereo|"
    r"anniversary|expanded|bonus|track)\b",
    re.IGNORECASE,
)
_ARTIST_SPLIT_RE = re.compile(
    r"\s+&\s+|\s+feat\.?\s+|\s+featuring\s+|\s+ft\.?\s+|\s+with\s+|\s+x\s+|\s+\+\s+|\s*,\s*|\s*;\s*",
    re.IGNORECASE,
)


def _strip_accents(s: str) -> str:
    return "".join(c for c in unicodedata.normalize("NFD", s) if not unicodedata.combining(c))


def normalize_string(s: Any) -> str:
    """Lowercase, strip diacritics and punctuation, collapse whitespace.

    Total over any input (non-strings normalize to ``""``) and idempotent.
    """
    if not isinstance(s, str) or not s:
        return ""
    s = _strip_accents(s.lower())
    s = _PUNCT_RE.sub(" ", s)
    return _SPACE_RE.sub(" ", s).strip()


def levenshtein(a: str, b: str) -> int:
    return Levenshtein.distance(a or "", b or "")


def string_similarity(a: Any, b: Any) -> float:
    """Edit-distance similarity in [0, 1] over normalized forms.

    Two empty values compare as identical (1.0); one empty side scores 0.0.
    """
    na, nb = normalize_string(a), normalize_string(b)
    if na == nb:
        return 1.0
    if not na or not nb:
        return 0.0
    return 1.0 - levenshtein(na, nb) / max(len(na), len(nb))


def jaccard_similarity(a: Any, b: Any) -> float:
    ta = set(normalize_string(a).split())
    tb = set(normalize_string(b).split())
    union = ta | tb
    if not union:
        return 0.0
    return len(ta & tb) / len(union)


def normalize_search_term(s: Any) -> str:
    """Light cleanup for text sent to a catalog search endpoint."""
    if not isinstance(s, str):
        return ""
    s = _FEAT_PAREN_RE.sub("", s)
    s = s.replace("&", " and ")
    s = re.sub(r"[\"'`’‘“”]", "", s)
    return _SPACE_RE.sub(" ", s).strip()


def normalize_score_term(s: Any) -> str:
    """Aggressive normalization used before comparing titles and albums.

    Bracketed text and edition qualifiers are removed so that
    "Help! (Remastered 2009)" and "Help!" compare equal.
    """
    if not isinstance(s, str):
        return ""
    s = _BRACKETED_RE.sub(" ", s)
    s = re.sub(r"[-/]", " ", s).replace("&", " and ")
    s = _QUALIFIER_RE.sub(" ", s)
    return normalize_string(s)


def parse_artist_string(s: Any) -> List[str]:
    """Split a joined artist credit into individual names, preserving order."""
    if not isinstance(s, str) or not s.strip():
        return []
    out: List[str] = []
    seen = set()
    for part in _ARTIST_SPLIT_RE.split(s):
        part = part.strip()
        key = part.lower()
        if part and key not in seen:
            seen.add(key)
            out.append(part)
    return out
