"""Record store: rows carrying ``updated_at`` and a pending ``delta`` flag."""

from __future__ import annotations

import logging
import re
import sqlite3
from typing import TYPE_CHECKING, Any

from deltaq.errors import InvalidIndex, RecordStoreUnavailable

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _check_table(table: str) -> str:
    if not _IDENTIFIER_RE.match(table):
        raise InvalidIndex(f"Invalid table name: {table!r}")
    return table


def open_db(db_path: Path) -> sqlite3.Connection:
    """Open the record database with WAL journaling and ``sqlite3.Row`` rows."""
    conn = sqlite3.connect(str(db_path), timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


class RecordStore:
    """Read cutoffs and clear ``delta`` flags in a SQLite database.

    A new connection is opened per call; workers run in separate
    processes and hold nothing between runs.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        try:
            return open_db(self.db_path)
        except sqlite3.Error as exc:
            raise RecordStoreUnavailable(f"Cannot open {self.db_path}: {exc}") from exc

    def create_table(self, table: str) -> None:
        """Create *table* with the columns deltaq relies on, if missing."""
        table = _check_table(table)
        conn = self._connect()
        try:
            conn.execute(
                f"CREATE TABLE IF NOT EXISTS {table} ("
                "id INTEGER PRIMARY KEY AUTOINCREMENT, "
                "updated_at NUMERIC NOT NULL, "
                "delta INTEGER NOT NULL DEFAULT 1)"
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{table}_delta ON {table}(delta, updated_at)"
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise RecordStoreUnavailable(f"Cannot create table {table}: {exc}") from exc
        finally:
            conn.close()

    def max_updated_at(self, table: str) -> Any:
        """Return the newest ``updated_at`` among rows still flagged ``delta``.

        Returns None when no row is pending.
        """
        table = _check_table(table)
        conn = self._connect()
        try:
            row = conn.execute(
                f"SELECT max(updated_at) AS max_updated_at FROM {table} WHERE delta = 1"  # noqa: S608
            ).fetchone()
        except sqlite3.Error as exc:
            raise RecordStoreUnavailable(f"Cannot read cutoff from {table}: {exc}") from exc
        finally:
            conn.close()
        return None if row is None else row["max_updated_at"]

    def clear_delta_flag(self, table: str, cutoff: Any, *, inclusive: bool = True) -> int:
        """Clear ``delta`` on pending rows up to *cutoff*.

        ``inclusive=True`` clears ``updated_at <= cutoff``; ``False`` clears
        ``updated_at < cutoff``. Rows touched after the cutoff keep their flag.
        Returns the number of rows cleared.
        """
        table = _check_table(table)
        op = "<=" if inclusive else "<"
        conn = self._connect()
        try:
            cursor = conn.execute(
                f"UPDATE {table} SET delta = 0 WHERE delta = 1 AND updated_at {op} ?",  # noqa: S608
                (cutoff,),
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise RecordStoreUnavailable(f"Cannot clear delta flags in {table}: {exc}") from exc
        finally:
            conn.close()
        logger.debug(
            "Cleared %d delta flags in %s (updated_at %s %r)", cursor.rowcount, table, op, cutoff
        )
        return cursor.rowcount
