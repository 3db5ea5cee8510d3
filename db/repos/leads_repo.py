from __future__ import annotations

import json
import sqlite3
from typing import Any, Dict, List, Optional

from db.connection import WRITE_LOCK
from db.repos.base import BaseRepo
from models.lead import Lead
from pipelines.errors import DuplicateSubjectError
from utils.clock import db_now


def _row_to_lead(row: sqlite3.Row) -> Lead:
    data = dict(row)
    data["selected_roles"] = json.loads(data.pop("selected_roles_json") or "[]")
    return Lead.model_validate(data)


class LeadsRepo(BaseRepo):
    def create(
        self,
        subject_key: str,
        record_id: int,
        author_name: Optional[str] = None,
        author_profile_url: Optional[str] = None,
        headline: Optional[str] = None,
        company: Optional[str] = None,
        company_domain: Optional[str] = None,
        position: Optional[str] = None,
        category: Optional[str] = None,
        selected_roles: Optional[List[str]] = None,
        post_url: Optional[str] = None,
        activity_at: Optional[str] = None,
    ) -> int:
        """Insert the Lead for a subject key; returns the new lead id.

        Raises DuplicateSubjectError carrying the existing lead when the subject
        already has one. The UNIQUE constraint decides, so two racing workers
        cannot both create.
        """
        now = db_now()
        with WRITE_LOCK:
            cur = self.conn.execute(
                (
                    "INSERT INTO leads (subject_key, author_name, author_profile_url, headline, company, company_domain, position, category, "
                    " selected_roles_json, first_record_id, latest_record_id, latest_post_url, latest_activity_at, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                    "ON CONFLICT(subject_key) DO NOTHING "
                    "RETURNING id;"
                ),
                (
                    subject_key,
                    author_name,
                    author_profile_url,
                    headline,
                    company,
                    company_domain,
                    position,
                    category,
                    json.dumps(selected_roles or [], ensure_ascii=False),
                    record_id,
                    record_id,
                    post_url,
                    activity_at or now,
                    now,
                    now,
                ),
            )
            row = cur.fetchone()
            self.conn.commit()
            if row:
                return int(row[0])
            existing = self.conn.execute(
                "SELECT id, first_record_id FROM leads WHERE subject_key = ?", (subject_key,)
            ).fetchone()
        if existing is None:
            raise RuntimeError(f"Lead for {subject_key} neither inserted nor found")
        raise DuplicateSubjectError(subject_key, int(existing[0]), existing[1])

    def merge_latest_activity(self, lead_id: int, record_id: int, post_url: Optional[str], activity_at: Optional[str] = None) -> None:
        """Point the lead at its newest qualifying record; identity fields stay untouched."""
        self._write(
            (
                "UPDATE leads SET latest_record_id = ?, latest_post_url = COALESCE(?, latest_post_url), "
                "latest_activity_at = ?, updated_at = ? WHERE id = ?;"
            ),
            (record_id, post_url, activity_at or db_now(), db_now(), lead_id),
        )

    def get(self, lead_id: int) -> Optional[Lead]:
        row = self._fetchone("SELECT * FROM leads WHERE id = ?", (lead_id,))
        return _row_to_lead(row) if row else None

    def get_by_subject(self, subject_key: str) -> Optional[Lead]:
        row = self._fetchone("SELECT * FROM leads WHERE subject_key = ?", (subject_key,))
        return _row_to_lead(row) if row else None

    def count(self) -> int:
        row = self._fetchone("SELECT COUNT(*) FROM leads")
        return int(row[0]) if row else 0

    def list_recent(self, limit: int = 50) -> List[Dict[str, Any]]:
        rows = self._fetchall(
            "SELECT id, subject_key, author_name, company, category, latest_activity_at FROM leads "
            "ORDER BY latest_activity_at DESC LIMIT ?;",
            (limit,),
        )
        return [dict(r) for r in rows]
