from __future__ import annotations

import json
import sqlite3
from typing import Any, Dict, Iterable, List, Mapping, Optional

from db.repos.base import BaseRepo
from models.record import Record, RecordStatus, Stage, TERMINAL_STATUSES, WAITING_STATUS
from utils.clock import db_now


# Columns a compare-and-set may touch; everything else is immutable after insert
_MUTABLE_COLUMNS = (
    "status",
    "current_stage",
    "status_reason",
    "stage_results",
    "priority",
    "retry_count",
    "last_retry_at",
    "next_retry_at",
    "materialized_entity_id",
    "subject_key",
    "requalified_at",
)

# Statuses that mean a record for the subject already got past the rejecting stages
_ADVANCED_STATUSES = (
    RecordStatus.AWAITING_STAGE3.value,
    RecordStatus.AWAITING_ENRICHMENT.value,
    RecordStatus.AWAITING_MATERIALIZATION.value,
    RecordStatus.MATERIALIZED.value,
    RecordStatus.DUPLICATE.value,
)


def _placeholders(values: Iterable[Any]) -> str:
    return ", ".join("?" for _ in values)


def _row_to_record(row: sqlite3.Row) -> Record:
    data = dict(row)
    data["payload"] = json.loads(data.pop("payload_json") or "{}")
    data["stage_results"] = json.loads(data.pop("stage_results_json") or "{}")
    return Record.model_validate(data)


def dump_stage_results(results: Mapping[str, Any]) -> str:
    """Serialize a stage-key -> result mapping (models or plain dicts) to JSON text."""
    out: Dict[str, Any] = {}
    for key, value in results.items():
        out[key] = value.model_dump() if hasattr(value, "model_dump") else value
    return json.dumps(out, ensure_ascii=False)


class RecordsRepo(BaseRepo):
    """Durable record store. Every state change is a compare-and-set."""

    def insert_raw(
        self,
        natural_key: str,
        payload: Dict[str, Any],
        batch_id: Optional[str] = None,
        subject_key: Optional[str] = None,
        priority: int = 5,
    ) -> Optional[int]:
        """Insert a freshly ingested record as `queued`.

        Returns the new id, or None when the natural key was already delivered.
        """
        now = db_now()
        row = self._write_returning(
            (
                "INSERT INTO records (natural_key, batch_id, payload_json, subject_key, status, current_stage, priority, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(natural_key) DO NOTHING "
                "RETURNING id;"
            ),
            (
                natural_key,
                batch_id,
                json.dumps(payload, ensure_ascii=False),
                subject_key,
                RecordStatus.QUEUED.value,
                Stage.STAGE1.value,
                priority,
                now,
                now,
            ),
        )
        return int(row[0]) if row else None

    def get(self, record_id: int) -> Optional[Record]:
        row = self._fetchone("SELECT * FROM records WHERE id = ?", (record_id,))
        return _row_to_record(row) if row else None

    def get_by_natural_key(self, natural_key: str) -> Optional[Record]:
        row = self._fetchone("SELECT * FROM records WHERE natural_key = ?", (natural_key,))
        return _row_to_record(row) if row else None

    def compare_and_set(
        self,
        record_id: int,
        expected_status: RecordStatus,
        changes: Dict[str, Any],
        expected_stage: Optional[Stage] = None,
    ) -> bool:
        """Apply `changes` only if the record is still in `expected_status` (and stage).

        Returns False when another worker got there first.
        """
        sets: List[str] = []
        values: List[Any] = []
        for key, value in changes.items():
            if key not in _MUTABLE_COLUMNS:
                raise ValueError(f"Column {key} cannot be updated")
            if key == "stage_results":
                sets.append("stage_results_json = ?")
                values.append(dump_stage_results(value or {}))
            else:
                sets.append(f"{key} = ?")
                values.append(value.value if hasattr(value, "value") else value)
        sets.append("updated_at = ?")
        values.append(db_now())
        sql = f"UPDATE records SET {', '.join(sets)} WHERE id = ? AND status = ?"
        values.extend([record_id, expected_status.value])
        if expected_stage is not None:
            sql += " AND current_stage = ?"
            values.append(expected_stage.value)
        cur = self._write(sql, values)
        return cur.rowcount == 1

    def select_eligible_ids(self, stage: Stage, limit: int, batch_id: Optional[str] = None, now: Optional[str] = None) -> List[int]:
        """Ids waiting for `stage`, or scheduled to retry it and due; queue order."""
        now = now or db_now()
        sql = (
            "SELECT id FROM records "
            "WHERE current_stage = ? "
            "  AND (status = ? OR (status = ? AND (next_retry_at IS NULL OR next_retry_at <= ?))) "
        )
        params: List[Any] = [stage.value, WAITING_STATUS[stage].value, RecordStatus.RETRY_SCHEDULED.value, now]
        if batch_id:
            sql += "  AND batch_id = ? "
            params.append(batch_id)
        sql += "ORDER BY priority ASC, created_at ASC, id ASC LIMIT ?;"
        params.append(limit)
        return [int(r[0]) for r in self._fetchall(sql, params)]

    def claim(self, record_id: int, stage: Stage, now: Optional[str] = None) -> bool:
        """Mark an eligible record `processing` for `stage`; False if someone else has it."""
        now = now or db_now()
        cur = self._write(
            (
                "UPDATE records SET status = ?, updated_at = ? "
                "WHERE id = ? AND current_stage = ? "
                "  AND (status = ? OR (status = ? AND (next_retry_at IS NULL OR next_retry_at <= ?)));"
            ),
            (
                RecordStatus.PROCESSING.value,
                now,
                record_id,
                stage.value,
                WAITING_STATUS[stage].value,
                RecordStatus.RETRY_SCHEDULED.value,
                now,
            ),
        )
        return cur.rowcount == 1

    def find_recent_enrichment(self, subject_key: str, since: str, exclude_record_id: Optional[int] = None) -> Optional[Dict[str, Any]]:
        """Most recent enrichment result stored for the subject since `since`, as a dict."""
        sql = (
            "SELECT json_extract(stage_results_json, '$.enrichment') AS enrichment FROM records "
            "WHERE subject_key = ? AND updated_at >= ? "
            "  AND json_extract(stage_results_json, '$.enrichment') IS NOT NULL "
        )
        params: List[Any] = [subject_key, since]
        if exclude_record_id is not None:
            sql += "  AND id != ? "
            params.append(exclude_record_id)
        sql += "ORDER BY updated_at DESC LIMIT 1;"
        row = self._fetchone(sql, params)
        if not row or not row[0]:
            return None
        return json.loads(row[0])

    def exists_in_later_state(self, subject_key: str, exclude_record_id: int) -> bool:
        row = self._fetchone(
            (
                f"SELECT 1 FROM records WHERE subject_key = ? AND id != ? "
                f"AND status IN ({_placeholders(_ADVANCED_STATUSES)}) LIMIT 1;"
            ),
            (subject_key, exclude_record_id, *_ADVANCED_STATUSES),
        )
        return row is not None

    def list_by_status(
        self,
        statuses: Iterable[RecordStatus],
        created_since: Optional[str] = None,
        batch_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Record]:
        values = [s.value for s in statuses]
        sql = f"SELECT * FROM records WHERE status IN ({_placeholders(values)}) "
        params: List[Any] = list(values)
        if created_since:
            sql += "AND created_at >= ? "
            params.append(created_since)
        if batch_id:
            sql += "AND batch_id = ? "
            params.append(batch_id)
        sql += "ORDER BY priority ASC, created_at ASC, id ASC"
        if limit:
            sql += " LIMIT ?"
            params.append(limit)
        return [_row_to_record(r) for r in self._fetchall(sql, params)]

    def list_requalification_candidates(
        self,
        statuses: Iterable[RecordStatus],
        created_since: Optional[str] = None,
        batch_id: Optional[str] = None,
        after_id: int = 0,
        page_size: int = 200,
    ) -> List[Record]:
        """Rejected records never requalified before, paged by id so a sweep can walk the whole window."""
        values = [s.value for s in statuses]
        sql = (
            f"SELECT * FROM records WHERE status IN ({_placeholders(values)}) "
            "AND requalified_at IS NULL AND id > ? "
        )
        params: List[Any] = [*values, after_id]
        if created_since:
            sql += "AND created_at >= ? "
            params.append(created_since)
        if batch_id:
            sql += "AND batch_id = ? "
            params.append(batch_id)
        sql += "ORDER BY id ASC LIMIT ?;"
        params.append(page_size)
        return [_row_to_record(r) for r in self._fetchall(sql, params)]

    def list_stale(self, updated_before: str, batch_id: Optional[str] = None) -> List[Record]:
        """Non-terminal records whose last update is older than `updated_before`."""
        terminal = [s.value for s in TERMINAL_STATUSES]
        sql = f"SELECT * FROM records WHERE status NOT IN ({_placeholders(terminal)}) AND updated_at < ? "
        params: List[Any] = [*terminal, updated_before]
        if batch_id:
            sql += "AND batch_id = ? "
            params.append(batch_id)
        sql += "ORDER BY updated_at ASC;"
        return [_row_to_record(r) for r in self._fetchall(sql, params)]

    def count_by_status(self, batch_id: Optional[str] = None) -> Dict[str, int]:
        sql = "SELECT status, COUNT(*) FROM records "
        params: List[Any] = []
        if batch_id:
            sql += "WHERE batch_id = ? "
            params.append(batch_id)
        sql += "GROUP BY status ORDER BY status;"
        return {str(r[0]): int(r[1]) for r in self._fetchall(sql, params)}

    def count_by_reason(self) -> Dict[str, int]:
        rows = self._fetchall(
            "SELECT status_reason, COUNT(*) FROM records WHERE status_reason IS NOT NULL "
            "GROUP BY status_reason ORDER BY COUNT(*) DESC;"
        )
        return {str(r[0]): int(r[1]) for r in rows}

    def count_by_stage(self) -> Dict[str, Dict[str, int]]:
        """Non-terminal records grouped by current stage, then status."""
        terminal = [s.value for s in TERMINAL_STATUSES]
        rows = self._fetchall(
            (
                f"SELECT current_stage, status, COUNT(*) FROM records WHERE status NOT IN ({_placeholders(terminal)}) "
                "GROUP BY current_stage, status ORDER BY current_stage, status;"
            ),
            terminal,
        )
        out: Dict[str, Dict[str, int]] = {}
        for stage, status, count in rows:
            out.setdefault(str(stage), {})[str(status)] = int(count)
        return out
