import asyncio
from dataclasses import replace

from songbridge.matcher import STRICT, MatchScorer
from songbridge.search import ArtistOnlyTier, FlexibleTier, IsrcTier, PreciseMetadataTier, default_tiers

from conftest import FakeCatalog, apple_song


def test_tier_order():
    assert [t.tier for t in default_tiers()] == [1, 2, 3, 4]


def test_queries(yesterday):
    assert IsrcTier().build_query(yesterday) == "GBAYE0601498"
    assert PreciseMetadataTier().build_query(yesterday) == "Yesterday The Beatles Help!"
    assert FlexibleTier().build_query(yesterday) == "Yesterday The Beatles"
    assert ArtistOnlyTier().build_query(yesterday) == "The Beatles"


def test_queries_are_truncated(yesterday):
    long = replace(yesterday, name="x" * 300)
    assert len(PreciseMetadataTier().build_query(long)) <= 200
    assert len(FlexibleTier().build_query(long)) <= 150


def test_isrc_tier_skipped_without_code(yesterday):
    result = asyncio.run(IsrcTier().run(FakeCatalog(), replace(yesterday, isrc=None), MatchScorer(STRICT)))
    assert result is None


def test_duplicate_candidates_are_collapsed(yesterday):
    song = apple_song("am-1", "Yesterday", "The Beatles", "Help!", 185000)
    catalog = FakeCatalog(isrc={yesterday.isrc: [song, song]})
    result = asyncio.run(IsrcTier().run(catalog, yesterday, MatchScorer(STRICT)))
    assert result.accepted.id == "am-1"
    assert result.alternatives == []
    assert result.attempt.results_count == 2


def test_failed_fetch_is_recorded(yesterday):
    catalog = FakeCatalog(fail=("search",))
    result = asyncio.run(PreciseMetadataTier().run(catalog, yesterday, MatchScorer(STRICT)))
    assert result.accepted is None
    assert "search endpoint down" in result.attempt.error
    assert not result.stop


def test_unreadable_items_are_skipped(yesterday):
    good = apple_song("am-1", "Yesterday", "The Beatles", "Help!", 185000)
    catalog = FakeCatalog(isrc={yesterday.isrc: [None, "junk", {"id": "x", "attributes": 3}, good]})
    result = asyncio.run(IsrcTier().run(catalog, yesterday, MatchScorer(STRICT)))
    assert result.attempt.error is None
    assert result.accepted.id == "am-1"
