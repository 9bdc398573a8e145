"""
Consolidation of breakage entries into per-product totals.

Totals are computed fresh on every call and are never cached. Reads are
not isolated from concurrent submissions; a consolidation reflects the
store as of the moment it ran.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from breakage_export.storage.models import ConsolidatedRecord, ConsolidationRow, UnitType
from breakage_export.storage.repository import EntryRepository

from .encoding import PRODUCT_CODE_WIDTH

logger = logging.getLogger(__name__)


def _sort_key(record: ConsolidatedRecord) -> Tuple[str, str]:
    return (record.product_code.rjust(PRODUCT_CODE_WIDTH, "0"), record.product_code)


@dataclass(frozen=True)
class ConsolidationSnapshot:
    """Consolidated records together with the entry rows they were built from."""
    records: List[ConsolidatedRecord]
    rows: List[ConsolidationRow]


class Consolidator:
    """Aggregates the entries of a reason into one total per product."""

    def __init__(self, repository: EntryRepository):
        self.repository = repository

    def consolidate(self, reason_id: int, include_all: bool = False) -> List[ConsolidatedRecord]:
        """Sum entry quantities per product code for one reason.
        
        Args:
            reason_id: Id of the breakage reason
            include_all: When False only the unsynchronized backlog is
                included, across every entry date. When True every entry
                counts regardless of synchronization state.
                
        Returns:
            Records ordered by zero-padded product code. Empty when the
            reason has no qualifying entries.
        """
        return self.snapshot(reason_id, include_all=include_all).records

    def snapshot(self, reason_id: int, include_all: bool = False) -> ConsolidationSnapshot:
        """Like ``consolidate`` but also keeps the rows that were read."""
        rows = self.repository.fetch_consolidation_rows(reason_id, include_all=include_all)
        return ConsolidationSnapshot(records=self._aggregate(rows), rows=rows)

    def consolidate_day(self, reason_id: int, day: date) -> List[ConsolidatedRecord]:
        """Consolidate only the entries recorded on one day."""
        rows = []
        unit_types: Dict[str, Optional[UnitType]] = {}
        for entry in self.repository.entries_for(reason_id, day):
            if entry.product_code not in unit_types:
                product = self.repository.get_product_by_code(entry.product_code)
                unit_types[entry.product_code] = product.unit_type if product else None
            rows.append(ConsolidationRow(
                entry_id=entry.id,
                product_code=entry.product_code,
                quantity=entry.quantity,
                unit_type=unit_types[entry.product_code]
            ))
        return self._aggregate(rows)

    def _aggregate(self, rows: List[ConsolidationRow]) -> List[ConsolidatedRecord]:
        totals: Dict[str, Decimal] = {}
        unit_types: Dict[str, Optional[UnitType]] = {}
        for row in rows:
            totals[row.product_code] = totals.get(row.product_code, Decimal(0)) + row.quantity
            unit_types[row.product_code] = row.unit_type

        records = [
            ConsolidatedRecord(
                product_code=code,
                total_quantity=total,
                unit_type=unit_types[code]
            )
            for code, total in totals.items()
        ]
        records.sort(key=_sort_key)
        logger.debug("Consolidated %d entries into %d records", len(rows), len(records))
        return records
