"""
Tests for human-readable document numbers.

Covers:
- Format and zero padding
- Sequence per subsidiary, prefix and year
- Subsidiary-specific PO prefixes
"""

from datetime import datetime, timezone

from mfg_kernel.numbering import format_number


class TestFormatNumber:

    def test_padding(self):
        assert format_number("MO", 2024, 7) == "MO-2024-0007"

    def test_wide_sequence_not_truncated(self):
        assert format_number("PO", 2024, 12345) == "PO-2024-12345"


class TestDocumentSequences:
    """Numbers assigned by the lifecycle managers."""

    def test_orders_numbered_in_sequence(self, create_order):
        first = create_order()
        second = create_order()

        assert first.mo_number == "MO-2024-0001"
        assert second.mo_number == "MO-2024-0002"

    def test_sequence_is_per_subsidiary(self, create_order):
        create_order(subsidiary="furniture")
        other = create_order(subsidiary="finishes")

        assert other.mo_number == "MO-2024-0001"

    def test_sequence_restarts_each_year(self, create_order, deterministic_clock):
        create_order()
        deterministic_clock.set_time(datetime(2025, 2, 1, tzinfo=timezone.utc))

        assert create_order().mo_number == "MO-2025-0001"

    def test_finishes_purchase_orders_use_own_prefix(self, create_po):
        standard = create_po()
        finishes = create_po(subsidiary="finishes")

        assert standard.po_number == "PO-2024-0001"
        assert finishes.po_number == "PO-FIN-2024-0001"
