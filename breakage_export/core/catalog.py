"""
Product catalog import.

Reads pipe-delimited lines ``code|name|UN|regular_price|club_price``.
Prices are optional. Bad lines are collected, never raised, so one typo
does not stop the rest of the catalog from loading.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional

from breakage_export.storage.models import Product, UnitType
from breakage_export.storage.repository import EntryRepository

logger = logging.getLogger(__name__)


@dataclass
class ProductImportResult:
    """Summary of a catalog import."""
    count: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        message = f"{self.count} produtos importados com sucesso"
        if self.errors:
            message += f"\n{len(self.errors)} erros encontrados"
        return message


def parse_product_line(line: str) -> Product:
    """Parse one catalog line.
    
    Raises:
        ValueError: If the line has fewer than 3 fields, an unknown unit
            type or a non-numeric price
    """
    parts = [part.strip() for part in line.strip().split("|")]
    if len(parts) < 3 or not parts[0] or not parts[1]:
        raise ValueError("Formato inválido")

    try:
        unit_type = UnitType(parts[2].upper())
    except ValueError:
        raise ValueError("Tipo de unidade inválido")

    return Product(
        code=parts[0],
        name=parts[1],
        unit_type=unit_type,
        regular_price=_parse_price(parts, 3),
        club_price=_parse_price(parts, 4),
    )


def _parse_price(parts: List[str], index: int) -> Optional[Decimal]:
    if len(parts) <= index or not parts[index]:
        return None
    try:
        return Decimal(parts[index].replace(",", "."))
    except InvalidOperation:
        raise ValueError(f"Preço inválido: {parts[index]!r}")


def import_products(lines: Iterable[str], repository: EntryRepository) -> ProductImportResult:
    """Insert or update every valid product line. Blank lines are ignored."""
    result = ProductImportResult()
    for line in lines:
        if not line.strip():
            continue
        try:
            repository.insert_or_update_product(parse_product_line(line))
        except ValueError as e:
            result.errors.append(f'Linha "{line.strip()}": {e}')
            continue
        result.count += 1

    logger.info("Imported %d products, %d rejected lines", result.count, len(result.errors))
    return result
