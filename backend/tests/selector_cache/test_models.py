"""
Unit tests for selector cache models.

Tests confidence math, TTL, health and failure-closed row decoding.
"""

import pytest
import json
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "app"))

from selector_cache.errors import MalformedRecordError
from selector_cache.knowledge.models import (
    ElementType,
    SelectorDraft,
    SelectorEntry,
    SelectorHealth,
    CleanupReport,
    decode_alternatives,
    extract_domain,
    laplace_confidence,
    merge_alternatives,
)


def make_entry(**overrides) -> SelectorEntry:
    data = {
        "id": "sel-1",
        "domain": "example.com",
        "url_pattern": "/login",
        "test_id": "login-btn",
        "css_selector": "#login",
        "last_used": 1000,
        "last_updated": 1000,
        "ttl_ms": 500,
    }
    data.update(overrides)
    return SelectorEntry(**data)


class TestLaplaceConfidence:
    """Test the confidence formula."""

    def test_no_outcomes_is_zero(self):
        assert laplace_confidence(0, 0) == 0.0

    def test_single_failure_is_zero(self):
        assert laplace_confidence(0, 1) == 0.0

    def test_smoothed_ratio(self):
        assert laplace_confidence(3, 1) == pytest.approx(3 / 5)

    def test_never_reaches_one(self):
        assert laplace_confidence(1000, 0) < 1.0


class TestSelectorEntry:
    """Test SelectorEntry behaviour."""

    def test_entry_is_frozen(self):
        """Test that entries can't be mutated in place."""
        entry = make_entry()
        with pytest.raises(Exception):
            entry.confidence = 0.1

    def test_with_outcome_success(self):
        entry = make_entry(success_count=1, failure_count=1)
        updated = entry.with_outcome(success=True, now=2000)

        assert updated.success_count == 2
        assert updated.failure_count == 1
        assert updated.confidence == pytest.approx(2 / 4)
        assert updated.last_used == 2000
        # Original untouched
        assert entry.success_count == 1

    def test_with_outcome_failure(self):
        entry = make_entry()
        updated = entry.with_outcome(success=False, now=2000)

        assert updated.failure_count == 1
        assert updated.confidence == 0.0

    def test_confidence_invariant_over_sequence(self):
        """Test confidence matches the counters after every outcome."""
        entry = make_entry()
        for i, success in enumerate([True, True, False, True, False, False, True]):
            entry = entry.with_outcome(success=success, now=2000 + i)
            expected = entry.success_count / (entry.success_count + entry.failure_count + 1)
            assert entry.confidence == pytest.approx(expected)

    def test_is_expired_is_strict(self):
        """Test that an entry at exactly last_updated + ttl is still valid."""
        entry = make_entry(last_updated=1000, ttl_ms=500)

        assert not entry.is_expired(1500)
        assert entry.is_expired(1501)

    def test_unknown_element_type_becomes_other(self):
        entry = make_entry(element_type="checkbox")
        assert entry.element_type == ElementType.OTHER

    def test_health_bands(self):
        assert make_entry(confidence=0.9).health == SelectorHealth.FRESH
        assert make_entry(confidence=0.4).health == SelectorHealth.DEGRADED
        assert make_entry(confidence=0.1).health == SelectorHealth.EXHAUSTED
        assert make_entry(confidence=0.1, alternatives=["#b"]).health == SelectorHealth.DEGRADED

    def test_confidence_out_of_range_rejected(self):
        with pytest.raises(Exception):
            make_entry(confidence=1.5)


class TestRowDecoding:
    """Test SelectorEntry.from_row."""

    def test_row_roundtrip(self):
        entry = make_entry(alternatives=["#b", "#c"], element_type=ElementType.BUTTON)
        row = entry.to_row()

        assert json.loads(row["alternatives"]) == ["#b", "#c"]
        assert row["element_type"] == "button"
        assert SelectorEntry.from_row(row) == entry

    def test_broken_alternatives_decode_to_empty(self):
        row = make_entry().to_row()
        row["alternatives"] = "{not json"

        entry = SelectorEntry.from_row(row)

        assert entry.alternatives == []

    def test_non_string_alternatives_decode_to_empty(self):
        assert decode_alternatives(json.dumps([1, 2])) == []
        assert decode_alternatives(json.dumps({"a": "b"})) == []

    def test_null_columns_default(self):
        row = make_entry().to_row()
        row["last_used"] = None
        row["description"] = None

        entry = SelectorEntry.from_row(row)

        assert entry.last_used == 0
        assert entry.description == ""

    def test_missing_required_column_raises(self):
        """Test that a row without a css selector is rejected."""
        row = make_entry().to_row()
        row["css_selector"] = None

        with pytest.raises(MalformedRecordError) as exc_info:
            SelectorEntry.from_row(row)

        assert exc_info.value.row_id == "sel-1"


class TestSelectorDraft:
    """Test SelectorDraft.to_entry."""

    def test_defaults(self):
        draft = SelectorDraft(
            url_pattern="https://shop.example.com/cart",
            test_id="checkout",
            css_selector="#checkout"
        )
        entry = draft.to_entry("id-1", now=5000, default_ttl_ms=1000, max_alternatives=5)

        assert entry.domain == "shop.example.com"
        assert entry.confidence == 1.0
        assert entry.ttl_ms == 1000
        assert entry.last_used == 5000
        assert entry.last_updated == 5000

    def test_alternatives_are_deduplicated_and_capped(self):
        draft = SelectorDraft(
            url_pattern="/p",
            test_id="x",
            css_selector="#a",
            alternatives=["#b", "#a", "#b", "#c", "#d"]
        )
        entry = draft.to_entry("id-1", now=0, default_ttl_ms=1000, max_alternatives=2)

        assert entry.alternatives == ["#b", "#c"]

    def test_counts_override_seed_confidence(self):
        draft = SelectorDraft(
            url_pattern="/p",
            test_id="x",
            css_selector="#a",
            confidence=1.0,
            success_count=3,
            failure_count=1
        )
        entry = draft.to_entry("id-1", now=0, default_ttl_ms=1000, max_alternatives=5)

        assert entry.confidence == pytest.approx(0.6)
        assert entry.success_count == 3

    def test_seed_confidence_kept_without_counts(self):
        draft = SelectorDraft(url_pattern="/p", test_id="x", css_selector="#a", confidence=0.8)
        entry = draft.to_entry("id-1", now=0, default_ttl_ms=1000, max_alternatives=5)

        assert entry.confidence == 0.8


class TestHelpers:
    """Test module-level helpers."""

    def test_extract_domain(self):
        assert extract_domain("https://app.example.com/login?x=1") == "app.example.com"
        assert extract_domain("/login") == ""
        assert extract_domain("example.com/login") == "example.com"
        assert extract_domain("") == ""

    def test_merge_alternatives_keeps_order(self):
        merged = merge_alternatives(["#b"], ["#c", "#b", "", "#d"], limit=5, exclude="#d")
        assert merged == ["#b", "#c"]

    def test_cleanup_report_total(self):
        report = CleanupReport(memory_removed=1, prefetch_removed=2, store_removed=3)
        assert report.total == 6
