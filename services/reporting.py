from __future__ import annotations

import json
import logging
import os
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

from config.settings import get_settings
from db.repos.accounts_repo import AccountsRepo
from db.repos.records_repo import RecordsRepo
from models.record import TERMINAL_STATUSES
from utils.clock import db_ago


logger = logging.getLogger(__name__)


def status_counts(conn: sqlite3.Connection, batch_id: Optional[str] = None) -> Dict[str, int]:
    return RecordsRepo(conn).count_by_status(batch_id)


def reason_counts(conn: sqlite3.Connection) -> Dict[str, int]:
    """Terminal non-success reasons with how many records carry each."""
    return RecordsRepo(conn).count_by_reason()


def stage_counts(conn: sqlite3.Connection) -> Dict[str, Dict[str, int]]:
    return RecordsRepo(conn).count_by_stage()


def stuck_records(conn: sqlite3.Connection, hours: float = 24, limit: int = 100) -> List[Dict[str, Any]]:
    """Non-terminal records not updated for `hours`, oldest first."""
    out: List[Dict[str, Any]] = []
    for rec in RecordsRepo(conn).list_stale(db_ago(hours=hours))[:limit]:
        out.append({
            "record_id": rec.id,
            "natural_key": rec.natural_key,
            "batch_id": rec.batch_id,
            "status": rec.status.value,
            "current_stage": rec.current_stage.value,
            "retry_count": rec.retry_count,
            "updated_at": rec.updated_at,
        })
    return out


def account_usage(conn: sqlite3.Connection) -> List[Dict[str, Any]]:
    return AccountsRepo(conn).usage_summary()


def _llm_usage_for_run(run_id: str) -> Dict[str, Dict[str, int]]:
    """Aggregate traced external calls for the given run_id from the JSONL call log.

    Returns dict like { 'openai': {'calls': N, 'tokens': T, 'errors': E}, 'profile_api': {...} }
    """
    result: Dict[str, Dict[str, int]] = {}
    log_path = Path(get_settings().llm_log_path)
    if not log_path.exists():
        return result
    with log_path.open("r", encoding="utf-8") as f:
        for line in f:
            try:
                rec = json.loads(line)
            except ValueError:
                continue
            if not isinstance(rec, dict) or rec.get("run_id") != run_id:
                continue
            provider = rec.get("provider") or "unknown"
            usage = rec.get("usage") or {}
            bucket = result.setdefault(provider, {"calls": 0, "tokens": 0, "errors": 0})
            bucket["calls"] += 1
            bucket["tokens"] += int(usage.get("total_tokens") or 0)
            if rec.get("status") != "ok":
                bucket["errors"] += 1
    return result


def build_summary(conn: sqlite3.Connection, batch_id: Optional[str] = None) -> Dict[str, Any]:
    counts = status_counts(conn, batch_id)
    terminal = sum(v for k, v in counts.items() if k in {s.value for s in TERMINAL_STATUSES})
    return {
        "batch_id": batch_id,
        "total": sum(counts.values()),
        "terminal": terminal,
        "statuses": counts,
        "stages": stage_counts(conn),
        "reasons": reason_counts(conn),
    }


def print_summary(summary: Dict[str, Any]) -> None:
    """Print a human-readable pipeline summary."""
    print("\n" + "=" * 60)
    print("POST-TO-LEAD PIPELINE - SUMMARY")
    print("=" * 60)
    if summary.get("batch_id"):
        print(f"Batch: {summary['batch_id']}")
    print(f"Records: {summary.get('total', 0)} (terminal: {summary.get('terminal', 0)})")
    print()
    print("By status:")
    for status, count in (summary.get("statuses") or {}).items():
        print(f"  {status}: {count}")
    reasons = summary.get("reasons") or {}
    if reasons:
        print()
        print("Top reasons:")
        for reason, count in list(reasons.items())[:10]:
            print(f"  {count:>5}  {reason}")
    # Call usage for current RUN_ID if tracing enabled
    settings = get_settings()
    run_id = os.getenv("RUN_ID")
    if run_id and settings.llm_trace:
        usage = _llm_usage_for_run(run_id)
        if usage:
            print()
            print("External calls:")
            for provider, stats in usage.items():
                print(f"  {provider}: calls={stats['calls']}, tokens={stats['tokens']}, errors={stats['errors']}")
    print("=" * 60)
