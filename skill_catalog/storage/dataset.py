"""
Open an SQLite dataset from raw bytes and discover its skills table.
"""
from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence

from skill_catalog.domain.errors import NoTableFound, ParseError

logger = logging.getLogger(__name__)

PREFERRED_TABLES = ("skills", "skill")


def select_table_name(names: Iterable[str]) -> Optional[str]:
    """
    Choose the table holding skills.

    ``skills`` wins over ``skill``; otherwise the lexicographically first
    table is used. Returns None when there are no tables at all.
    """
    candidates = sorted(set(names))
    for preferred in PREFERRED_TABLES:
        if preferred in candidates:
            return preferred
    return candidates[0] if candidates else None


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class LoadedDataset:
    """
    An in-memory SQLite database plus the table queries run against.

    The dataset owns its connection; ``close()`` releases it.
    """

    def __init__(self, conn: sqlite3.Connection, table: str, columns: Sequence[str]):
        self.conn: Optional[sqlite3.Connection] = conn
        self.table = table
        self.columns: FrozenSet[str] = frozenset(columns)
        self.column_order: List[str] = list(columns)

    @property
    def quoted_table(self) -> str:
        return quote_identifier(self.table)

    @property
    def closed(self) -> bool:
        return self.conn is None

    def has_column(self, name: str) -> bool:
        return name in self.columns

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Run a read-only query and return rows as dictionaries."""
        if self.conn is None:
            raise sqlite3.ProgrammingError("Dataset has been closed")
        cursor = self.conn.execute(sql, tuple(params))
        try:
            return [dict(row) for row in cursor.fetchall()]
        finally:
            cursor.close()

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def close(self):
        """Close the underlying connection."""
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class DatasetBuilder:
    """Turns the bytes of an SQLite file into a ``LoadedDataset``."""

    def build(self, data: bytes) -> LoadedDataset:
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        try:
            try:
                conn.deserialize(bytes(data))
                conn.row_factory = sqlite3.Row
                names = [
                    row[0]
                    for row in conn.execute(
                        "SELECT name FROM sqlite_master "
                        "WHERE type='table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
                    )
                ]
            except sqlite3.DatabaseError as e:
                logger.error(f"Failed to open dataset ({len(data)} bytes): {e}")
                raise ParseError(f"Dataset is not a valid SQLite database: {e}") from e

            table = select_table_name(names)
            if not table:
                raise NoTableFound("No skills table found")

            columns = [row[1] for row in conn.execute(f"PRAGMA table_info({quote_identifier(table)})")]
        except Exception:
            conn.close()
            raise

        logger.debug(f"Opened dataset: table={table}, columns={len(columns)}, tables={names}")
        return LoadedDataset(conn, table, columns)
