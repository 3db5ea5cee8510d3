from __future__ import annotations

from typing import Any, Dict, List, Optional

from db.repos.base import BaseRepo
from utils.clock import db_now


class EventsRepo(BaseRepo):
    """Append-only log of stage handoffs and record transitions."""

    def append(
        self,
        event_type: str,
        record_id: Optional[int] = None,
        stage: Optional[str] = None,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        outcome: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> int:
        cur = self._write(
            (
                "INSERT INTO workflow_events (record_id, event_type, stage, from_status, to_status, outcome, detail, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?);"
            ),
            (record_id, event_type, stage, from_status, to_status, outcome, detail, db_now()),
        )
        return int(cur.lastrowid)

    def for_record(self, record_id: int) -> List[Dict[str, Any]]:
        rows = self._fetchall(
            "SELECT * FROM workflow_events WHERE record_id = ? ORDER BY id ASC;",
            (record_id,),
        )
        return [dict(r) for r in rows]

    def count_by_type(self) -> Dict[str, int]:
        rows = self._fetchall("SELECT event_type, COUNT(*) FROM workflow_events GROUP BY event_type ORDER BY event_type;")
        return {str(r[0]): int(r[1]) for r in rows}
