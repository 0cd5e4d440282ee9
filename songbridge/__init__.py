"""
songbridge: move playlists between streaming catalogs.

This package provides:
- Cross-catalog track resolution through a tiered search (ISRC, metadata, text, artist).
- Edition-aware match scoring with named weight profiles.
- Bounded-concurrency batch resolution with cancellation and progress streaming.
- Review sessions that hold ambiguous tracks until a human settles them.
"""
