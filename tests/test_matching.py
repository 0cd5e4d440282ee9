"""Tests for the tiered resolution engine."""

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from songbridge.errors import TransferCancelled
from songbridge.executor import CancellationToken
from songbridge.fingerprint import DisabledFingerprinter, FingerprintResult
from songbridge.matcher import STRICT
from songbridge.matching import ResolutionEngine, partition_results
from songbridge.models import Confidence, TrackDescriptor

from conftest import FakeCatalog, apple_song

YESTERDAY_ISRC = "GBAYE0601498"


def exact_yesterday(id="am-1", duration=185000):
    return apple_song(id, "Yesterday", "The Beatles", "Help!", duration, YESTERDAY_ISRC)


def resolve(catalog, track, **kw):
    engine = ResolutionEngine(catalog, profile=STRICT, **kw)
    return asyncio.run(engine.resolve(track))


def test_isrc_exact_match_auto_accepts(yesterday):
    catalog = FakeCatalog(isrc={YESTERDAY_ISRC: [exact_yesterday()]})
    result = resolve(catalog, yesterday)
    assert result.match_method == "ISRC"
    assert result.confidence == Confidence.HIGH
    assert result.outcome == "auto"
    assert not result.needs_review and not result.unavailable
    assert [a.tier for a in result.search_attempts] == [1]
    assert catalog.calls == [("isrc", YESTERDAY_ISRC)]


def test_isrc_match_with_small_duration_gap_stays_high(yesterday):
    catalog = FakeCatalog(isrc={YESTERDAY_ISRC: [exact_yesterday(duration=186500)]})
    result = resolve(catalog, yesterday)
    assert result.match.score.breakdown["duration"] == 10
    assert result.confidence == Confidence.HIGH


def test_medium_confidence_goes_to_review(yesterday):
    cand = apple_song("am-2", "Yesterday", "The Beatles", "1", 187500, YESTERDAY_ISRC)
    catalog = FakeCatalog(isrc={YESTERDAY_ISRC: [cand]})
    result = resolve(catalog, yesterday)
    assert result.needs_review
    assert result.match.id == "am-2"
    assert result.confidence == Confidence.MEDIUM
    assert [c.id for c in result.alternatives] == ["am-2"]


def test_tier_failure_falls_through(yesterday):
    query = "Yesterday The Beatles Help!"
    catalog = FakeCatalog(terms={query: [exact_yesterday()]}, fail=("isrc",))
    result = resolve(catalog, yesterday)
    assert result.match_method == "Precise Metadata"
    assert result.search_attempts[0].error
    assert result.search_attempts[1].results_count == 1
    assert result.outcome == "auto"


def test_sub_threshold_alternatives_stop_the_chain(yesterday):
    track = replace(yesterday, isrc=None)
    weak = apple_song("am-9", "Yesterday Once More", "The Beatles", "Other")
    catalog = FakeCatalog(terms={"Yesterday The Beatles Help!": [weak]})
    result = resolve(catalog, track)
    assert result.needs_review
    assert result.match is None
    assert [c.id for c in result.alternatives] == ["am-9"]
    assert 50 <= result.alternatives[0].score.total < 75
    # flexible and artist-only tiers never ran
    assert [a.tier for a in result.search_attempts] == [2]
    assert len(catalog.calls) == 1


def test_artist_only_hit_is_never_auto_accepted(yesterday):
    track = replace(yesterday, isrc=None, album="", duration_ms=None)
    catalog = FakeCatalog(terms={"The Beatles": [apple_song("am-3", "Yesterday", "The Beatles")]})
    result = resolve(catalog, track)
    assert result.needs_review
    assert result.match_method == "Artist Only"
    assert [a.tier for a in result.search_attempts] == [2, 3, 4]


def test_flexible_tier_drops_other_artists(yesterday):
    track = replace(yesterday, isrc=None)
    cover = apple_song("am-5", "Yesterday", "Boyz II Men", "", 185000)
    catalog = FakeCatalog(terms={"Yesterday The Beatles": [cover]})
    result = resolve(catalog, track)
    assert result.unavailable
    assert result.search_attempts[1].results_count == 1


def test_nothing_found_is_unavailable(yesterday):
    result = resolve(FakeCatalog(), yesterday)
    assert result.unavailable
    assert result.match is None and result.alternatives == []
    assert [a.tier for a in result.search_attempts] == [1, 2, 3, 4]
    assert result.to_dict()["match"] is None


class FoundIt:
    async def identify(self, track):
        found = TrackDescriptor(
            name="Yesterday", artists=["The Beatles"], album="Help!", duration_ms=185000, isrc=YESTERDAY_ISRC
        )
        return FingerprintResult(success=True, track=found)


def test_fingerprint_fallback_goes_to_review(yesterday):
    track = replace(yesterday, isrc=None, name="Track 01", artists=[], album="")
    catalog = FakeCatalog(isrc={YESTERDAY_ISRC: [exact_yesterday()]})
    result = resolve(catalog, track, fingerprinter=FoundIt())
    assert result.needs_review
    assert result.match_method == "Fingerprint/ISRC"


def test_disabled_fingerprinter_changes_nothing(yesterday):
    result = resolve(FakeCatalog(), yesterday, fingerprinter=DisabledFingerprinter())
    assert result.unavailable


def test_cancelled_token_stops_resolution(yesterday):
    token = CancellationToken()
    token.cancel()
    engine = ResolutionEngine(FakeCatalog(), profile=STRICT)
    with pytest.raises(TransferCancelled):
        asyncio.run(engine.resolve(yesterday, token))


def test_resolve_all_keeps_order_and_partitions(yesterday):
    other = TrackDescriptor(name="Unknown Song", artists=["Nobody"])
    catalog = FakeCatalog(isrc={YESTERDAY_ISRC: [exact_yesterday()]})
    engine = ResolutionEngine(catalog, profile=STRICT)
    events = []
    results = asyncio.run(engine.resolve_all([other, yesterday], max_concurrent=2, on_progress=events.append))
    assert [r.source_track.name for r in results] == ["Unknown Song", "Yesterday"]
    buckets = partition_results(results)
    assert len(buckets["auto_matched"]) == 1
    assert len(buckets["unavailable"]) == 1
    assert sorted(e.current for e in events) == [1, 2]


def test_resolve_all_in_batches(yesterday):
    catalog = FakeCatalog(isrc={YESTERDAY_ISRC: [exact_yesterday()]})
    engine = ResolutionEngine(catalog, profile=STRICT)
    tracks = [replace(yesterday, id=str(i)) for i in range(5)]
    batches = []
    results = asyncio.run(engine.resolve_all(tracks, batch_size=2, on_batch=batches.append))
    assert [r.source_track.id for r in results] == ["0", "1", "2", "3", "4"]
    assert all(r.outcome == "auto" for r in results)
    assert [b.processed_items for b in batches] == [2, 4, 5]


def test_unreadable_catalog_items_do_not_abort_the_chain(yesterday):
    broken = [None, {"id": "bad", "attributes": "not-a-dict"}]
    catalog = FakeCatalog(
        isrc={YESTERDAY_ISRC: broken},
        terms={"Yesterday The Beatles Help!": [exact_yesterday()]},
    )
    result = resolve(catalog, yesterday)
    assert result.match_method == "Precise Metadata"
    assert result.outcome == "auto"
    assert result.search_attempts[0].results_count == 2
    assert [a.tier for a in result.search_attempts] == [1, 2]


def test_flexible_alternatives_stop_before_artist_only(yesterday):
    track = replace(yesterday, isrc=None)
    weak = apple_song("am-8", "Yesterday Once More", "The Beatles", "Other")
    catalog = FakeCatalog(terms={"Yesterday The Beatles": [weak]})
    result = resolve(catalog, track)
    assert result.needs_review
    assert result.match is None
    assert 40 <= result.alternatives[0].score.total < 70
    assert [a.tier for a in result.search_attempts] == [2, 3]
    assert ("search", "The Beatles") not in catalog.calls


def test_alternatives_are_capped(yesterday):
    track = replace(yesterday, isrc=None)
    weak = [apple_song(f"am-{i}", "Yesterday Once More", "The Beatles", "Other") for i in range(15)]
    catalog = FakeCatalog(terms={"Yesterday The Beatles Help!": weak})
    result = resolve(catalog, track)
    assert result.search_attempts[0].results_count == 15
    assert len(result.alternatives) == 10
