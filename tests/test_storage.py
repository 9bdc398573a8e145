"""
Unit tests for storage layer.

Tests schema creation, additive merge, audit trail and synchronization flags.
"""

import os
import shutil
import tempfile
import threading
from datetime import date
from decimal import Decimal

import pytest

from breakage_export.core.errors import ValidationError
from breakage_export.storage.db import get_connection
from breakage_export.storage.models import Product, UnitType
from breakage_export.storage.repository import (
    DEFAULT_REASONS,
    EntryRepository,
    initialize_schema,
    seed_demo_products,
)

DAY = date(2024, 1, 15)


class RepositoryTestCase:
    """Creates a fresh database for every test."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.repo = EntryRepository(self.db_path)
        self.reason = self.repo.get_reason_by_code("01")
        self.other_reason = self.repo.get_reason_by_code("02")

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def count_entries(self) -> int:
        conn = get_connection(self.db_path)
        try:
            return conn.execute("SELECT COUNT(*) FROM entries").fetchone()[0]
        finally:
            conn.close()


class TestStorageSchema(RepositoryTestCase):
    """Test database schema creation and seeding."""

    def test_tables_created(self):
        """Verify all entry store tables exist."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            tables = {row[0] for row in cursor.fetchall()}
        finally:
            conn.close()
        assert {"products", "reasons", "entries", "entry_changes"} <= tables

    def test_default_reasons_seeded(self):
        """Verify the reason catalog is seeded in code order."""
        reasons = self.repo.get_active_reasons()
        assert [r.code for r in reasons] == [code for code, _ in DEFAULT_REASONS]
        assert reasons[0].description == "Produto Vencido"

    def test_initialize_is_idempotent(self):
        """Running schema setup twice does not duplicate reasons."""
        initialize_schema(self.db_path)
        assert len(self.repo.get_active_reasons()) == len(DEFAULT_REASONS)

    def test_reason_lookup_accepts_unpadded_code(self):
        assert self.repo.get_reason_by_code("1") == self.reason
        assert self.repo.get_reason_by_code("99") is None


class TestUpsertEntry(RepositoryTestCase):
    """Test additive merge of entries."""

    def test_additive_merge(self):
        """3 then 2 for the same triple gives a single entry of 5."""
        first_id = self.repo.upsert_entry("789", self.reason.id, 3, DAY)
        second_id = self.repo.upsert_entry("789", self.reason.id, 2, DAY)

        assert first_id == second_id
        assert self.repo.total_for("789", self.reason.id, DAY) == Decimal("5")
        assert self.count_entries() == 1

    def test_new_entry_is_pending(self):
        self.repo.upsert_entry("789", self.reason.id, Decimal("1.5"), DAY)

        entry = self.repo.get_entry("789", self.reason.id, DAY)
        assert entry.quantity == Decimal("1.5")
        assert entry.is_exported is False
        assert entry.is_synchronized is False

    def test_merge_records_audit_change(self):
        """Each merge appends an audit row with old and new values."""
        entry_id = self.repo.upsert_entry("789", self.reason.id, 3, DAY)
        self.repo.upsert_entry("789", self.reason.id, 2, DAY)
        self.repo.upsert_entry("789", self.reason.id, "0.5", DAY)

        changes = self.repo.get_entry_changes(entry_id)
        assert [(c.old_value, c.new_value) for c in changes] == [("3", "5"), ("5", "5.5")]
        assert all(c.field_name == "quantity" for c in changes)

    def test_first_insert_has_no_audit_change(self):
        entry_id = self.repo.upsert_entry("789", self.reason.id, 3, DAY)
        assert self.repo.get_entry_changes(entry_id) == []

    def test_distinct_triples_are_separate_entries(self):
        self.repo.upsert_entry("789", self.reason.id, 1, DAY)
        self.repo.upsert_entry("789", self.other_reason.id, 1, DAY)
        self.repo.upsert_entry("789", self.reason.id, 1, date(2024, 1, 16))
        assert self.count_entries() == 3

    def test_float_quantities_sum_exactly(self):
        self.repo.upsert_entry("789", self.reason.id, 0.1, DAY)
        self.repo.upsert_entry("789", self.reason.id, 0.2, DAY)
        assert self.repo.total_for("789", self.reason.id, DAY) == Decimal("0.3")

    @pytest.mark.parametrize("quantity", [0, -1, "0", "abc", "NaN", Decimal("-0.5")])
    def test_invalid_quantity_rejected(self, quantity):
        """Quantities <= 0 or non-numeric never reach the store."""
        with pytest.raises(ValidationError):
            self.repo.upsert_entry("789", self.reason.id, quantity, DAY)
        assert self.count_entries() == 0

    def test_concurrent_upserts_do_not_lose_updates(self):
        """Racing submissions for one triple all land in the total."""
        errors = []

        def submit():
            try:
                # Separate repositories so only the database lock serializes them
                EntryRepository(self.db_path).upsert_entry("789", self.reason.id, 1, DAY)
            except Exception as e:  # surfaced through the assertion below
                errors.append(e)

        threads = [threading.Thread(target=submit) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert self.repo.total_for("789", self.reason.id, DAY) == Decimal("10")
        assert self.count_entries() == 1


class TestEntryQueries(RepositoryTestCase):
    """Test read operations."""

    def test_total_for_missing_triple_is_zero(self):
        assert self.repo.total_for("nope", self.reason.id, DAY) == Decimal(0)

    def test_total_for_lookup_error_is_zero(self):
        """A database without the schema yields 0 instead of raising."""
        repo = EntryRepository(os.path.join(self.temp_dir, "empty.db"))
        assert repo.total_for("789", 1, DAY) == Decimal(0)

    def test_entries_for_orders_by_product_code(self):
        self.repo.upsert_entry("300", self.reason.id, 1, DAY)
        self.repo.upsert_entry("100", self.reason.id, 1, DAY)
        self.repo.upsert_entry("200", self.reason.id, 1, DAY)
        self.repo.upsert_entry("150", self.reason.id, 1, date(2024, 1, 14))
        self.repo.upsert_entry("050", self.other_reason.id, 1, DAY)

        entries = self.repo.entries_for(self.reason.id, DAY)
        assert [e.product_code for e in entries] == ["100", "200", "300"]

    def test_consolidation_rows_join_unit_type(self):
        self.repo.insert_or_update_product(Product("789", "LEITE", UnitType.UNIT))
        self.repo.upsert_entry("789", self.reason.id, 2, DAY)
        self.repo.upsert_entry("unknown", self.reason.id, 1, DAY)

        rows = sorted(self.repo.fetch_consolidation_rows(self.reason.id), key=lambda r: r.product_code)
        assert [(r.product_code, r.quantity, r.unit_type) for r in rows] == [
            ("789", Decimal("2"), UnitType.UNIT),
            ("unknown", Decimal("1"), None),
        ]
        assert rows[0].entry_id == self.repo.get_entry("789", self.reason.id, DAY).id


class TestSynchronizationFlags(RepositoryTestCase):
    """Test synchronized and exported flag transitions."""

    def test_mark_synchronized_covers_all_dates_of_reason(self):
        self.repo.upsert_entry("1", self.reason.id, 1, DAY)
        self.repo.upsert_entry("1", self.reason.id, 1, date(2023, 12, 31))
        self.repo.upsert_entry("1", self.other_reason.id, 1, DAY)

        self.repo.mark_synchronized(self.reason.id)

        assert all(e.is_synchronized for e in self.repo.entries_by_reason(self.reason.id))
        assert not any(e.is_synchronized for e in self.repo.entries_by_reason(self.other_reason.id))
        assert self.repo.fetch_consolidation_rows(self.reason.id) == []

    def test_synchronized_never_reverts(self):
        """Later merges and repeated marking keep the flag set."""
        self.repo.upsert_entry("1", self.reason.id, 1, DAY)
        self.repo.mark_synchronized(self.reason.id)
        self.repo.upsert_entry("1", self.reason.id, 4, DAY)
        self.repo.mark_synchronized(self.reason.id)
        self.repo.mark_exported(self.reason.id, DAY)

        entry = self.repo.get_entry("1", self.reason.id, DAY)
        assert entry.is_synchronized is True
        assert entry.quantity == Decimal("5")

    def test_mark_only_rows_that_were_read(self):
        """Entries added or grown after the read stay pending."""
        self.repo.upsert_entry("1", self.reason.id, 1, DAY)
        self.repo.upsert_entry("2", self.reason.id, 1, DAY)
        rows = self.repo.fetch_consolidation_rows(self.reason.id)

        self.repo.upsert_entry("2", self.reason.id, 3, DAY)
        self.repo.upsert_entry("3", self.reason.id, 1, DAY)
        self.repo.mark_synchronized(self.reason.id, rows)

        assert self.repo.get_entry("1", self.reason.id, DAY).is_synchronized is True
        assert self.repo.get_entry("2", self.reason.id, DAY).is_synchronized is False
        assert self.repo.get_entry("3", self.reason.id, DAY).is_synchronized is False
        pending = self.repo.fetch_consolidation_rows(self.reason.id)
        assert sorted(r.product_code for r in pending) == ["2", "3"]

    def test_mark_rows_ignores_other_reasons(self):
        self.repo.upsert_entry("1", self.other_reason.id, 1, DAY)
        rows = self.repo.fetch_consolidation_rows(self.other_reason.id)

        self.repo.mark_synchronized(self.reason.id, rows)

        assert self.repo.get_entry("1", self.other_reason.id, DAY).is_synchronized is False

    def test_mark_rows_round_trips_exponent_quantities(self):
        self.repo.upsert_entry("1", self.reason.id, "1e3", DAY)
        rows = self.repo.fetch_consolidation_rows(self.reason.id)

        self.repo.mark_synchronized(self.reason.id, rows)

        assert self.repo.get_entry("1", self.reason.id, DAY).is_synchronized is True

    def test_mark_exported_is_per_day_and_independent(self):
        self.repo.upsert_entry("1", self.reason.id, 1, DAY)
        self.repo.upsert_entry("1", self.reason.id, 1, date(2024, 1, 16))

        self.repo.mark_exported(self.reason.id, DAY)

        exported = self.repo.get_entry("1", self.reason.id, DAY)
        other_day = self.repo.get_entry("1", self.reason.id, date(2024, 1, 16))
        assert exported.is_exported is True
        assert exported.is_synchronized is False
        assert other_day.is_exported is False


class TestProductCatalog(RepositoryTestCase):
    """Test product catalog operations."""

    def test_insert_then_update_product(self):
        self.repo.insert_or_update_product(Product("789", "LEITE", UnitType.UNIT, Decimal("4.85")))
        self.repo.insert_or_update_product(Product("789", "LEITE 1L", UnitType.UNIT, Decimal("5.00")))

        product = self.repo.get_product_by_code("789")
        assert product.name == "LEITE 1L"
        assert product.regular_price == Decimal("5.00")
        assert product.club_price is None

    def test_seed_demo_products(self):
        count = seed_demo_products(self.db_path)

        assert count > 0
        assert self.repo.get_product_by_code("7891000100103").unit_type == UnitType.UNIT
        assert self.repo.get_product_by_code("1234567890123").unit_type == UnitType.WEIGHT
