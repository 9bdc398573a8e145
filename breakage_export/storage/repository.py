"""
Repository pattern for data access.

Handles the entry store: additive merge of breakage entries, the audit
trail of quantity changes, synchronization flags and the product and
reason catalogs.
"""

import logging
import sqlite3
import threading
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional, Union

from breakage_export.core.errors import ValidationError

from .db import DEFAULT_DB_PATH, get_connection
from .models import ConsolidationRow, Entry, EntryChange, Product, Reason, UnitType

logger = logging.getLogger(__name__)

QuantityLike = Union[Decimal, int, float, str]

DEFAULT_REASONS = [
    ("01", "Produto Vencido"),
    ("02", "Avaria no Transporte"),
    ("03", "Quebra no Manuseio"),
    ("04", "Problema de Qualidade"),
    ("05", "Devolução Cliente"),
]

DEMO_PRODUCTS = [
    Product("7891000053607", "ARROZ BRANCO TIPO 1 5KG", UnitType.WEIGHT, Decimal("12.90"), Decimal("11.61")),
    Product("7891000315507", "FEIJAO PRETO TIPO 1 1KG", UnitType.WEIGHT, Decimal("8.50"), Decimal("7.65")),
    Product("7891118400171", "ACUCAR CRISTAL 1KG", UnitType.WEIGHT, Decimal("4.20"), Decimal("3.78")),
    Product("7891000100103", "LEITE INTEGRAL 1L", UnitType.UNIT, Decimal("4.85"), Decimal("4.36")),
    Product("7891118401017", "CAFE TORRADO MOIDO 500G", UnitType.UNIT, Decimal("15.90"), Decimal("14.31")),
    Product("7891234567890", "OLEO DE SOJA 900ML", UnitType.UNIT, Decimal("6.50"), Decimal("5.85")),
    Product("1234567890123", "BANANA NANICA KG", UnitType.WEIGHT, Decimal("5.80"), Decimal("5.22")),
    Product("4567890123456", "REFRIGERANTE COLA 2L", UnitType.UNIT, Decimal("8.90"), Decimal("8.01")),
]


def to_quantity(value: QuantityLike) -> Decimal:
    """Convert a submitted quantity to a positive Decimal.

    Floats go through ``str`` so ``0.1`` stays ``0.1`` instead of its
    binary expansion.

    Raises:
        ValidationError: If the value is not a finite number > 0
    """
    try:
        quantity = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid quantity: {value!r}")
    if not quantity.is_finite() or quantity <= 0:
        raise ValidationError(f"Quantity must be > 0, got {value!r}")
    return quantity


def _to_price(value) -> Optional[Decimal]:
    return None if value is None else Decimal(value)


def _row_to_entry(row: tuple) -> Entry:
    return Entry(
        id=row[0],
        product_code=row[1],
        reason_id=row[2],
        quantity=Decimal(row[3]),
        entry_date=date.fromisoformat(row[4]),
        is_exported=bool(row[5]),
        is_synchronized=bool(row[6]),
    )


def _row_to_product(row: tuple) -> Product:
    return Product(
        code=row[0],
        name=row[1],
        unit_type=UnitType(row[2]),
        regular_price=_to_price(row[3]),
        club_price=_to_price(row[4]),
    )


_ENTRY_COLUMNS = """
    id, product_code, reason_id, quantity, entry_date,
    is_exported, is_synchronized
"""

_PRODUCT_COLUMNS = "code, name, unit_type, regular_price, club_price"


class EntryRepository:
    """Repository for breakage entries and their catalogs.

    Each call opens its own short-lived connection. Quantities are kept
    as decimal text so totals are summed exactly in Python.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._write_lock = threading.Lock()

    def upsert_entry(
        self,
        product_code: str,
        reason_id: int,
        quantity: QuantityLike,
        entry_date: date
    ) -> int:
        """Add a quantity to the entry for (product, reason, day).

        If the triple already exists its quantity is incremented in place
        and an ``entry_changes`` row records the old and new values.
        Otherwise a new pending entry is inserted.

        The read-modify-write runs under ``BEGIN IMMEDIATE`` so the
        database write lock is held from the read until the commit.

        Args:
            product_code: Product catalog code
            reason_id: Id of the breakage reason
            quantity: Amount to add, must be > 0
            entry_date: Calendar day of the observation

        Returns:
            Id of the inserted or updated entry

        Raises:
            ValidationError: If quantity is not a positive number
        """
        amount = to_quantity(quantity)
        day = entry_date.isoformat()

        with self._write_lock:
            conn = get_connection(self.db_path)
            try:
                conn.execute("BEGIN IMMEDIATE")
                row = conn.execute("""
                    SELECT id, quantity FROM entries
                    WHERE product_code = ? AND reason_id = ? AND entry_date = ?
                """, (product_code, reason_id, day)).fetchone()
                now = datetime.now().isoformat()

                if row is not None:
                    entry_id = row[0]
                    old_quantity = Decimal(row[1])
                    new_quantity = old_quantity + amount
                    conn.execute("""
                        INSERT INTO entry_changes
                        (entry_id, field_name, old_value, new_value, change_date)
                        VALUES (?, 'quantity', ?, ?, ?)
                    """, (entry_id, str(old_quantity), str(new_quantity), now))
                    conn.execute("""
                        UPDATE entries SET quantity = ?, updated_at = ?
                        WHERE id = ?
                    """, (str(new_quantity), now, entry_id))
                    logger.debug(
                        "Merged %s into entry %s (%s -> %s)",
                        amount, entry_id, old_quantity, new_quantity
                    )
                else:
                    cursor = conn.execute("""
                        INSERT INTO entries
                        (product_code, reason_id, quantity, entry_date,
                         is_exported, is_synchronized, created_at, updated_at)
                        VALUES (?, ?, ?, ?, 0, 0, ?, ?)
                    """, (product_code, reason_id, str(amount), day, now, now))
                    entry_id = cursor.lastrowid
                    logger.debug("Created entry %s for %s/%s/%s", entry_id, product_code, reason_id, day)

                conn.commit()
                return entry_id
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

    def total_for(self, product_code: str, reason_id: int, entry_date: date) -> Decimal:
        """Get the stored quantity for a triple, or 0 if there is none.

        Lookup errors are logged and reported as 0.
        """
        try:
            conn = get_connection(self.db_path)
            try:
                rows = conn.execute("""
                    SELECT quantity FROM entries
                    WHERE product_code = ? AND reason_id = ? AND entry_date = ?
                """, (product_code, reason_id, entry_date.isoformat())).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.warning("Could not read total for %s/%s: %s", product_code, reason_id, e)
            return Decimal(0)
        return sum((Decimal(row[0]) for row in rows), Decimal(0))

    def get_entry(self, product_code: str, reason_id: int, entry_date: date) -> Optional[Entry]:
        """Get the entry for a triple if it exists."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(f"""
                SELECT {_ENTRY_COLUMNS} FROM entries
                WHERE product_code = ? AND reason_id = ? AND entry_date = ?
            """, (product_code, reason_id, entry_date.isoformat())).fetchone()
            return _row_to_entry(row) if row else None
        finally:
            conn.close()

    def entries_for(self, reason_id: int, entry_date: date) -> List[Entry]:
        """Get all entries of one reason on one day, ordered by product code."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(f"""
                SELECT {_ENTRY_COLUMNS} FROM entries
                WHERE reason_id = ? AND entry_date = ?
                ORDER BY product_code
            """, (reason_id, entry_date.isoformat()))
            return [_row_to_entry(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def entries_by_reason(self, reason_id: int) -> List[Entry]:
        """Get every entry of one reason across all dates."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(f"""
                SELECT {_ENTRY_COLUMNS} FROM entries
                WHERE reason_id = ?
                ORDER BY entry_date, product_code
            """, (reason_id,))
            return [_row_to_entry(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def get_entry_changes(self, entry_id: int) -> List[EntryChange]:
        """Get the audit trail of an entry, oldest first."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT entry_id, field_name, old_value, new_value, change_date
                FROM entry_changes WHERE entry_id = ?
                ORDER BY id
            """, (entry_id,))
            return [
                EntryChange(
                    entry_id=row[0],
                    field_name=row[1],
                    old_value=row[2],
                    new_value=row[3],
                    change_date=datetime.fromisoformat(row[4]),
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    def fetch_consolidation_rows(
        self,
        reason_id: int,
        include_all: bool = False
    ) -> List[ConsolidationRow]:
        """Get every entry of a reason with its product's unit type.

        Args:
            reason_id: Id of the breakage reason
            include_all: When False only entries not yet synchronized are returned

        Returns:
            One row per entry. Unit type is None when the product is not
            in the catalog.
        """
        query = """
            SELECT e.id, e.product_code, e.quantity, p.unit_type
            FROM entries e
            LEFT JOIN products p ON p.code = e.product_code
            WHERE e.reason_id = ?
        """
        if not include_all:
            query += " AND e.is_synchronized = 0"

        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(query, (reason_id,))
            return [
                ConsolidationRow(
                    entry_id=row[0],
                    product_code=row[1],
                    quantity=Decimal(row[2]),
                    unit_type=UnitType(row[3]) if row[3] else None
                )
                for row in cursor.fetchall()
            ]
        finally:
            conn.close()

    def mark_synchronized(
        self,
        reason_id: int,
        exported_rows: Optional[Iterable[ConsolidationRow]] = None
    ) -> None:
        """Flag pending entries of a reason as synchronized.

        Only call this after the export file has been written. The flag
        is never cleared again.

        Args:
            reason_id: Id of the breakage reason
            exported_rows: Rows that went into the file. Each is marked
                only if its quantity is still the one that was written;
                entries added or merged since stay pending. When None,
                every pending entry of the reason is marked.
        """
        now = datetime.now().isoformat()
        conn = get_connection(self.db_path)
        try:
            if exported_rows is None:
                cursor = conn.execute("""
                    UPDATE entries SET is_synchronized = 1, updated_at = ?
                    WHERE reason_id = ? AND is_synchronized = 0
                """, (now, reason_id))
                marked = cursor.rowcount
            else:
                # Stored quantities are str(Decimal), which round-trips exactly
                marked = 0
                for row in exported_rows:
                    cursor = conn.execute("""
                        UPDATE entries SET is_synchronized = 1, updated_at = ?
                        WHERE id = ? AND reason_id = ? AND quantity = ?
                          AND is_synchronized = 0
                    """, (now, row.entry_id, reason_id, str(row.quantity)))
                    marked += cursor.rowcount
            conn.commit()
            logger.debug("Marked %d entries of reason %s as synchronized", marked, reason_id)
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def mark_exported(self, reason_id: int, entry_date: date) -> None:
        """Flag the entries of one reason and day as exported."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                UPDATE entries SET is_exported = 1, updated_at = ?
                WHERE reason_id = ? AND entry_date = ?
            """, (datetime.now().isoformat(), reason_id, entry_date.isoformat()))
            conn.commit()
        finally:
            conn.close()

    def get_active_reasons(self) -> List[Reason]:
        """Get the reason catalog ordered by code."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("SELECT id, code, description FROM reasons ORDER BY code")
            return [Reason(id=row[0], code=row[1], description=row[2]) for row in cursor.fetchall()]
        finally:
            conn.close()

    def get_reason_by_code(self, code: str) -> Optional[Reason]:
        """Get a reason by its catalog code, accepting '1' for '01'."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT id, code, description FROM reasons WHERE code = ? OR code = ?",
                (code, code.zfill(2))
            ).fetchone()
            return Reason(id=row[0], code=row[1], description=row[2]) if row else None
        finally:
            conn.close()

    def insert_or_update_product(self, product: Product) -> None:
        """Insert a product or replace the catalog data of an existing code."""
        now = datetime.now().isoformat()
        conn = get_connection(self.db_path)
        try:
            conn.execute(f"""
                INSERT INTO products ({_PRODUCT_COLUMNS}, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(code) DO UPDATE SET
                    name = excluded.name,
                    unit_type = excluded.unit_type,
                    regular_price = excluded.regular_price,
                    club_price = excluded.club_price,
                    updated_at = excluded.updated_at
            """, (
                product.code,
                product.name,
                product.unit_type.value,
                None if product.regular_price is None else str(product.regular_price),
                None if product.club_price is None else str(product.club_price),
                now,
                now
            ))
            conn.commit()
        finally:
            conn.close()

    def get_product_by_code(self, code: str) -> Optional[Product]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"SELECT {_PRODUCT_COLUMNS} FROM products WHERE code = ?", (code,)
            ).fetchone()
            return _row_to_product(row) if row else None
        finally:
            conn.close()


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the entry store tables and seed the reason catalog.

    Safe to run repeatedly: tables use IF NOT EXISTS and seeding uses
    INSERT OR IGNORE.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                code TEXT UNIQUE NOT NULL,
                name TEXT NOT NULL,
                unit_type TEXT NOT NULL CHECK(unit_type IN ('UN', 'KG')),
                regular_price TEXT,
                club_price TEXT,
                created_at TEXT,
                updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS reasons (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                code TEXT UNIQUE NOT NULL,
                description TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                product_code TEXT NOT NULL,
                reason_id INTEGER NOT NULL,
                quantity TEXT NOT NULL,
                entry_date TEXT NOT NULL,
                is_exported INTEGER NOT NULL DEFAULT 0,
                is_synchronized INTEGER NOT NULL DEFAULT 0,
                created_at TEXT,
                updated_at TEXT,
                FOREIGN KEY (reason_id) REFERENCES reasons (id),
                UNIQUE(product_code, reason_id, entry_date)
            );

            CREATE TABLE IF NOT EXISTS entry_changes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                entry_id INTEGER NOT NULL,
                field_name TEXT NOT NULL,
                old_value TEXT,
                new_value TEXT NOT NULL,
                change_date TEXT NOT NULL,
                FOREIGN KEY (entry_id) REFERENCES entries (id)
            );
        """)
        conn.executemany(
            "INSERT OR IGNORE INTO reasons (code, description) VALUES (?, ?)",
            DEFAULT_REASONS
        )
        conn.commit()
    finally:
        conn.close()


def seed_demo_products(db_path: str = DEFAULT_DB_PATH) -> int:
    """Load the demo product catalog. Returns the number of products written."""
    repository = EntryRepository(db_path)
    for product in DEMO_PRODUCTS:
        repository.insert_or_update_product(product)
    return len(DEMO_PRODUCTS)
