"""
Database connection management.

Provides SQLite connection for the entry store.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "breakage.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection with foreign keys enabled.
    
    The busy timeout lets a writer wait for another writer's
    ``BEGIN IMMEDIATE`` transaction instead of failing straight away.
    
    Args:
        db_path: Path to SQLite database file
        
    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=30.0)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
