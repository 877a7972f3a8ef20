"""Tests for permit_leads/deduplication.py.

Covers pairwise matching, union-find grouping (transitive merges), merge
priority and field inheritance, and the reporting stats.
"""

import sys
from datetime import date
from itertools import permutations
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[2]))

from permit_leads.deduplication import (
    are_duplicates,
    deduplicate_records,
    find_duplicate_groups,
    get_deduplication_stats,
    merge_records,
)
from permit_leads.models import LeadRecord


def lead(id, address, city="Dallas", **extra):
    return LeadRecord(id=id, address=address, city=city, **extra)


# ============================================================================
# Test pairwise matching
# ============================================================================


class TestAreDuplicates:
    """Test the pairwise duplicate predicate."""

    def test_same_site_same_city(self):
        """A suite suffix does not hide a duplicate."""
        first = lead("a", "123 Main Street")
        second = lead("b", "123 Main St Suite 200")
        assert are_duplicates(first, second) is True

    def test_directional_prefix_same_site(self):
        """'123 N Main St' and '123 North Main Street' are one site."""
        first = lead("a", "123 N Main St")
        second = lead("b", "123 North Main Street")
        third = lead("c", "123 Main St")
        assert are_duplicates(first, second) is True
        assert are_duplicates(second, third) is True

    def test_city_compared_case_insensitively(self):
        """City matching ignores case and padding."""
        first = lead("a", "123 Main St", city="Dallas")
        second = lead("b", "123 Main St", city="  DALLAS ")
        assert are_duplicates(first, second) is True

    def test_different_cities_never_match(self):
        """Identical addresses in different cities stay apart."""
        first = lead("a", "123 Main St", city="Dallas")
        second = lead("b", "123 Main St", city="Fort Worth")
        assert are_duplicates(first, second) is False

    def test_missing_city_never_matches(self):
        """Records without a city are never merged."""
        first = lead("a", "123 Main St", city=None)
        second = lead("b", "123 Main St", city=None)
        assert are_duplicates(first, second) is False

    def test_different_buildings(self):
        """Different house numbers are different sites."""
        assert are_duplicates(lead("a", "123 Main St"), lead("b", "125 Main St")) is False

    @pytest.mark.parametrize(
        "first, second",
        [("123 Main St", "123 Maine St"), ("500 Elm St", "500 Elms St"), ("200 Park Ave", "200 Parker Ave")],
    )
    def test_similar_street_names_are_different_sites(self, first, second):
        """Streets whose names overlap are not merged."""
        assert are_duplicates(lead("a", first), lead("b", second)) is False

    def test_same_record_is_not_its_own_duplicate(self):
        """A record never matches itself."""
        record = lead("a", "123 Main St")
        assert are_duplicates(record, record) is False


# ============================================================================
# Test grouping and transitivity
# ============================================================================


class TestDeduplicateRecords:
    """Test connected-component merging."""

    def test_three_sources_collapse_in_any_order(self):
        """A, B and C at one site merge to one record regardless of input order."""
        records = [
            lead("a", "123 Main Street", valuation=80_000, data_source="permits"),
            lead("b", "123 Main St", valuation=120_000, data_source="co_filings"),
            lead("c", "123 Main St Suite 200", valuation=95_000, data_source="utilities"),
        ]
        outcomes = set()
        for ordering in permutations(records):
            deduped = deduplicate_records(list(ordering))
            assert len(deduped) == 1
            merged = deduped[0]
            outcomes.add((merged.id, merged.source_ids, merged.merged_ids, merged.data_source))
        assert outcomes == {
            ("b", frozenset({"a", "b", "c"}), ("a", "c"), "co_filings + utilities + permits")
        }

    def test_chain_links_are_transitive(self):
        """A~B and B~C merge all three even though A and C do not match directly."""
        a = lead("a", "100 Commerce St")
        b = lead("b", "100 Comerce St")
        c = lead("c", "100 Comerse St")
        assert are_duplicates(a, b)
        assert are_duplicates(b, c)
        assert not are_duplicates(a, c)

        for ordering in permutations([a, b, c]):
            deduped = deduplicate_records(list(ordering))
            assert len(deduped) == 1
            assert deduped[0].source_ids == frozenset({"a", "b", "c"})

    def test_near_miss_street_names_kept_apart(self):
        """Main St and Maine St survive deduplication as two leads."""
        deduped = deduplicate_records([lead("a", "123 Main St"), lead("b", "123 Maine St")])
        assert sorted(record.id for record in deduped) == ["a", "b"]
        assert all(record.merged_ids == () for record in deduped)

    def test_unrelated_records_pass_through(self):
        """Records with nothing in common are returned unmerged."""
        records = [
            lead("a", "123 Main St"),
            lead("b", "456 Oak Ave"),
            lead("c", "123 Main St", city="Plano"),
        ]
        deduped = deduplicate_records(records)
        assert sorted(record.id for record in deduped) == ["a", "b", "c"]
        assert all(record.source_count == 1 for record in deduped)

    def test_output_order_is_input_independent(self):
        """Output is ordered by merge priority, not input position."""
        records = [
            lead("a", "123 Main St", valuation=50_000),
            lead("b", "456 Oak Ave", valuation=900_000),
            lead("c", "789 Elm Blvd", valuation=50_000),
        ]
        expected = [record.id for record in deduplicate_records(records)]
        assert expected == ["b", "a", "c"]
        for ordering in permutations(records):
            assert [record.id for record in deduplicate_records(list(ordering))] == expected

    def test_inputs_not_mutated(self):
        """Deduplication returns new records and leaves the input alone."""
        records = [lead("a", "123 Main St"), lead("b", "123 Main St Suite 4")]
        snapshot = [record.model_dump() for record in records]
        deduplicate_records(records)
        assert [record.model_dump() for record in records] == snapshot

    def test_groups_are_partition(self):
        """Every index lands in exactly one group."""
        records = [lead("a", "123 Main St"), lead("b", "123 Main St"), lead("c", "9 Pine Ln")]
        groups = find_duplicate_groups(records)
        flattened = sorted(index for group in groups for index in group)
        assert flattened == [0, 1, 2]
        assert len(groups) == 2


# ============================================================================
# Test merge priority
# ============================================================================


class TestMergeRecords:
    """Test which record wins and what it inherits."""

    def test_highest_valuation_wins(self):
        """The most valuable constituent is the primary."""
        merged = merge_records([
            lead("a", "123 Main St", valuation=10_000),
            lead("b", "123 Main St", valuation=500_000),
        ])
        assert merged.id == "b"
        assert merged.valuation == 500_000

    def test_tie_broken_by_earliest_date(self):
        """Equal valuations fall back to the earliest applied date."""
        merged = merge_records([
            lead("a", "123 Main St", valuation=100_000, applied_date=date(2025, 5, 1)),
            lead("b", "123 Main St", valuation=100_000, applied_date=date(2025, 3, 1)),
        ])
        assert merged.id == "b"

    def test_undated_record_loses_tie(self):
        """A dated record beats an undated one of equal value."""
        merged = merge_records([
            lead("a", "123 Main St", valuation=100_000),
            lead("b", "123 Main St", valuation=100_000, applied_date=date(2025, 5, 1)),
        ])
        assert merged.id == "b"

    def test_full_tie_broken_by_id(self):
        """The smallest id wins when everything else is equal."""
        merged = merge_records([lead("z", "123 Main St"), lead("m", "123 Main St")])
        assert merged.id == "m"

    def test_missing_fields_inherited(self):
        """The winner keeps its own values and fills gaps from the others."""
        merged = merge_records([
            lead("a", "123 Main St", valuation=500_000, ai_confidence=40),
            lead(
                "b",
                "123 Main St",
                valuation=20_000,
                ai_confidence=90,
                ai_category="Retail",
                latitude=32.78,
                longitude=-96.80,
                enrichment_verified=True,
            ),
        ])
        assert merged.id == "a"
        assert merged.ai_confidence == 40
        assert merged.ai_category == "Retail"
        assert (merged.latitude, merged.longitude) == (32.78, -96.80)
        assert merged.enrichment_verified is True

    def test_empty_group_rejected(self):
        """Merging nothing is a programming error."""
        with pytest.raises(ValueError):
            merge_records([])


# ============================================================================
# Test stats
# ============================================================================


class TestDeduplicationStats:
    """Test reporting counts."""

    def test_counts(self):
        """Counts and rate reflect the merged groups."""
        records = [
            lead("a", "123 Main St"),
            lead("b", "123 Main St Suite 2"),
            lead("c", "456 Oak Ave"),
            lead("d", "456 Oak Avenue"),
            lead("e", "9 Pine Ln"),
        ]
        deduped = deduplicate_records(records)
        stats = get_deduplication_stats(records, deduped)
        assert stats.original_count == 5
        assert stats.deduped_count == 3
        assert stats.duplicates_removed == 2
        assert stats.multi_signal_leads == 2
        assert stats.deduplication_rate == pytest.approx(40.0)

    def test_empty_input(self):
        """No input means a zero rate, not a division error."""
        stats = get_deduplication_stats([], [])
        assert stats.deduplication_rate == 0.0
        assert stats.duplicates_removed == 0
