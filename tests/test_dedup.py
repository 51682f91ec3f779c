"""Tests for near-duplicate eviction decisions."""

import logging

from tooldex.index.dedup import NearDuplicateResolver
from tooldex.index.types import SearchHit


def _hit(name, similarity):
    return SearchHit(
        tool_id=1,
        fingerprint=f"fp-{name}",
        model="fake-model",
        tool_name=name,
        description="",
        distance=1.0 - similarity,
    )


def test_evicts_at_threshold():
    resolver = NearDuplicateResolver(eviction_threshold=0.96)
    superseded = resolver.find_superseded(
        "mail__email_send", "Sends an email message", [_hit("mail__send_email", 0.97)]
    )
    assert [hit.tool_name for hit in superseded] == ["mail__send_email"]


def test_keeps_candidates_below_threshold():
    resolver = NearDuplicateResolver(eviction_threshold=0.96)
    assert resolver.find_superseded("a__x", "", [_hit("a__y", 0.95)]) == []


def test_identical_name_does_not_force_eviction():
    resolver = NearDuplicateResolver(eviction_threshold=0.96)
    assert resolver.find_superseded("files__read", "", [_hit("files__read", 0.8)]) == []


def test_default_threshold_from_config():
    assert NearDuplicateResolver().eviction_threshold == 0.96


def test_logs_name_similarity(caplog):
    resolver = NearDuplicateResolver(eviction_threshold=0.5)
    with caplog.at_level(logging.INFO, logger="tooldex.index.dedup"):
        resolver.find_superseded("abcd", "", [_hit("abce", 0.9)])
    assert "name similarity 0.7500" in caplog.text
