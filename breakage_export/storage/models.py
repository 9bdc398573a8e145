"""
Data models for storage layer.

Defines the catalog entities, breakage entries and the derived
consolidation record.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional


class UnitType(Enum):
    """How a product is counted. Values match the stored catalog codes."""
    UNIT = "UN"
    WEIGHT = "KG"


@dataclass(frozen=True)
class Reason:
    """Breakage cause from the seeded catalog."""
    id: int
    code: str
    description: str


@dataclass(frozen=True)
class Product:
    """Catalog product. Only code and unit type matter for export."""
    code: str
    name: str
    unit_type: UnitType
    regular_price: Optional[Decimal] = None
    club_price: Optional[Decimal] = None


@dataclass(frozen=True)
class Entry:
    """Accumulated breakage quantity for one (product, reason, day) triple."""
    id: int
    product_code: str
    reason_id: int
    quantity: Decimal
    entry_date: date
    is_exported: bool = False
    is_synchronized: bool = False


@dataclass(frozen=True)
class EntryChange:
    """Audit row written whenever an existing entry's quantity grows."""
    entry_id: int
    field_name: str
    old_value: Optional[str]
    new_value: str
    change_date: datetime


@dataclass(frozen=True)
class ConsolidationRow:
    """One entry as read for consolidation.

    ``quantity`` is the value at read time; marking compares against it
    so an entry that grew afterwards is left pending.
    """
    entry_id: int
    product_code: str
    quantity: Decimal
    unit_type: Optional[UnitType]


@dataclass(frozen=True)
class ConsolidatedRecord:
    """Total quantity of one product within one reason. Never persisted."""
    product_code: str
    total_quantity: Decimal
    unit_type: Optional[UnitType]
