from __future__ import annotations

import sqlite3
from typing import Any, Dict, List, Optional

from db.repos.base import BaseRepo
from models.account import AccountCredential
from utils.clock import db_now, utc_now


def _today() -> str:
    return utc_now().strftime("%Y-%m-%d")


def _row_to_account(row: sqlite3.Row) -> AccountCredential:
    data = dict(row)
    data["is_active"] = bool(data.get("is_active"))
    return AccountCredential.model_validate(data)


class AccountsRepo(BaseRepo):
    """Profile API credentials: quota counters and the one-operation-at-a-time claim."""

    def upsert_account(self, account_id: str, label: Optional[str] = None, daily_limit: int = 80, is_active: bool = True) -> None:
        self._write(
            (
                "INSERT INTO accounts (account_id, label, is_active, daily_limit, usage_date) VALUES (?, ?, ?, ?, ?) "
                "ON CONFLICT(account_id) DO UPDATE SET "
                " label = COALESCE(excluded.label, accounts.label), "
                " is_active = excluded.is_active, "
                " daily_limit = excluded.daily_limit;"
            ),
            (account_id, label, 1 if is_active else 0, daily_limit, _today()),
        )

    def get(self, account_id: str) -> Optional[AccountCredential]:
        row = self._fetchone("SELECT * FROM accounts WHERE account_id = ?", (account_id,))
        return _row_to_account(row) if row else None

    def list_active(self) -> List[AccountCredential]:
        rows = self._fetchall("SELECT * FROM accounts WHERE is_active = 1 ORDER BY account_id;")
        return [_row_to_account(r) for r in rows]

    def list_all(self) -> List[AccountCredential]:
        return [_row_to_account(r) for r in self._fetchall("SELECT * FROM accounts ORDER BY account_id;")]

    def claim_operation(self, account_id: str, operation_id: str) -> bool:
        """Take the credential for one external call; False if another operation holds it."""
        cur = self._write(
            (
                "UPDATE accounts SET current_operation_id = ?, operation_started_at = ? "
                "WHERE account_id = ? AND is_active = 1 AND current_operation_id IS NULL;"
            ),
            (operation_id, db_now(), account_id),
        )
        return cur.rowcount == 1

    def release_operation(self, account_id: str, operation_id: str) -> bool:
        cur = self._write(
            (
                "UPDATE accounts SET current_operation_id = NULL, operation_started_at = NULL "
                "WHERE account_id = ? AND current_operation_id = ?;"
            ),
            (account_id, operation_id),
        )
        return cur.rowcount == 1

    def has_quota(self, account_id: str) -> bool:
        acct = self.get(account_id)
        if acct is None or not acct.is_active:
            return False
        if acct.usage_date != _today():
            return acct.daily_limit > 0
        return acct.has_quota

    def reserve_call(self, account_id: str) -> bool:
        """Count one issued call against today's quota, resetting the counter on a new day.

        Returns False (and counts nothing) when today's limit is already reached.
        """
        today = _today()
        cur = self._write(
            (
                "UPDATE accounts SET "
                " daily_usage_count = CASE WHEN usage_date = ? THEN daily_usage_count + 1 ELSE 1 END, "
                " usage_date = ? "
                "WHERE account_id = ? AND daily_limit > 0 "
                "  AND (usage_date IS NOT ? OR daily_usage_count < daily_limit);"
            ),
            (today, today, account_id, today),
        )
        return cur.rowcount == 1

    def mark_last_error(self, account_id: str, error_kind: Optional[str]) -> None:
        self._write("UPDATE accounts SET last_error_kind = ? WHERE account_id = ?;", (error_kind, account_id))

    def force_release_stale(self, started_before: str) -> List[str]:
        """Release credentials whose operation started before the cutoff; returns their ids."""
        rows = self._fetchall(
            "SELECT account_id FROM accounts WHERE current_operation_id IS NOT NULL AND operation_started_at < ?;",
            (started_before,),
        )
        released: List[str] = []
        for row in rows:
            cur = self._write(
                (
                    "UPDATE accounts SET current_operation_id = NULL, operation_started_at = NULL, last_error_kind = 'timeout' "
                    "WHERE account_id = ? AND operation_started_at < ?;"
                ),
                (row[0], started_before),
            )
            if cur.rowcount == 1:
                released.append(str(row[0]))
        return released

    def usage_summary(self) -> List[Dict[str, Any]]:
        today = _today()
        out: List[Dict[str, Any]] = []
        for acct in self.list_all():
            used = acct.daily_usage_count if acct.usage_date == today else 0
            out.append({
                "account_id": acct.account_id,
                "label": acct.label,
                "is_active": acct.is_active,
                "used_today": used,
                "daily_limit": acct.daily_limit,
                "remaining": max(0, acct.daily_limit - used),
                "busy": acct.current_operation_id is not None,
                "last_error_kind": acct.last_error_kind,
            })
        return out
