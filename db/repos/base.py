from __future__ import annotations

import sqlite3
from typing import Any, List, Optional, Sequence

from db.connection import WRITE_LOCK


class BaseRepo:
    """Thin helpers so every statement on the shared connection runs under one lock."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def _fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        with WRITE_LOCK:
            cur = self.conn.execute(sql, tuple(params))
            return cur.fetchone()

    def _fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        with WRITE_LOCK:
            cur = self.conn.execute(sql, tuple(params))
            return cur.fetchall()

    def _write(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        """Execute one statement and commit; returns the spent cursor (rowcount/lastrowid)."""
        with WRITE_LOCK:
            cur = self.conn.execute(sql, tuple(params))
            self.conn.commit()
            return cur

    def _write_returning(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        with WRITE_LOCK:
            cur = self.conn.execute(sql, tuple(params))
            row = cur.fetchone()
            self.conn.commit()
            return row
