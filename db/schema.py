from __future__ import annotations

import sqlite3


def bootstrap(conn: sqlite3.Connection) -> None:
    """Create records, leads, accounts and workflow event tables (idempotent)."""
    cur = conn.cursor()

    # Leads: one row per real-world subject
    cur.execute(
        (
            "CREATE TABLE IF NOT EXISTS leads (\n"
            "  id INTEGER PRIMARY KEY AUTOINCREMENT,\n"
            "  subject_key TEXT NOT NULL UNIQUE,\n"
            "  author_name TEXT,\n"
            "  author_profile_url TEXT,\n"
            "  headline TEXT,\n"
            "  company TEXT,\n"
            "  company_domain TEXT,\n"
            "  position TEXT,\n"
            "  category TEXT,\n"
            "  selected_roles_json TEXT,\n"
            "  first_record_id INTEGER,\n"
            "  latest_record_id INTEGER,\n"
            "  latest_post_url TEXT,\n"
            "  latest_activity_at TEXT,\n"
            "  created_at TEXT NOT NULL DEFAULT (datetime('now')),\n"
            "  updated_at TEXT NOT NULL DEFAULT (datetime('now'))\n"
            ")"
        )
    )

    # Records: one row per ingested post
    cur.execute(
        (
            "CREATE TABLE IF NOT EXISTS records (\n"
            "  id INTEGER PRIMARY KEY AUTOINCREMENT,\n"
            "  natural_key TEXT NOT NULL UNIQUE,\n"
            "  batch_id TEXT,\n"
            "  payload_json TEXT NOT NULL DEFAULT '{}',\n"
            "  subject_key TEXT,\n"
            "  status TEXT NOT NULL DEFAULT 'queued',\n"
            "  current_stage TEXT NOT NULL DEFAULT 'stage1',\n"
            "  status_reason TEXT,\n"
            "  stage_results_json TEXT NOT NULL DEFAULT '{}',\n"
            "  priority INTEGER NOT NULL DEFAULT 5,\n"
            "  retry_count INTEGER NOT NULL DEFAULT 0,\n"
            "  last_retry_at TEXT,\n"
            "  next_retry_at TEXT,\n"
            "  materialized_entity_id INTEGER,\n"
            "  requalified_at TEXT,\n"
            "  created_at TEXT NOT NULL DEFAULT (datetime('now')),\n"
            "  updated_at TEXT NOT NULL DEFAULT (datetime('now')),\n"
            "  FOREIGN KEY(materialized_entity_id) REFERENCES leads(id) ON DELETE SET NULL\n"
            ")"
        )
    )
    # Backfill columns if table existed before
    try:
        cur.execute("ALTER TABLE records ADD COLUMN requalified_at TEXT;")
    except sqlite3.OperationalError:
        pass
    cur.execute("CREATE INDEX IF NOT EXISTS idx_records_status_stage ON records(status, current_stage);")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_records_queue_order ON records(priority, created_at);")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_records_batch ON records(batch_id);")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_records_subject ON records(subject_key);")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_records_updated ON records(updated_at);")

    # Profile API credentials (quota buckets)
    cur.execute(
        (
            "CREATE TABLE IF NOT EXISTS accounts (\n"
            "  account_id TEXT PRIMARY KEY,\n"
            "  label TEXT,\n"
            "  is_active INTEGER NOT NULL DEFAULT 1,\n"
            "  daily_usage_count INTEGER NOT NULL DEFAULT 0,\n"
            "  daily_limit INTEGER NOT NULL DEFAULT 80,\n"
            "  usage_date TEXT,\n"
            "  current_operation_id TEXT,\n"
            "  operation_started_at TEXT,\n"
            "  last_error_kind TEXT\n"
            ")"
        )
    )

    # Observable stage handoffs and transitions
    cur.execute(
        (
            "CREATE TABLE IF NOT EXISTS workflow_events (\n"
            "  id INTEGER PRIMARY KEY AUTOINCREMENT,\n"
            "  record_id INTEGER,\n"
            "  event_type TEXT NOT NULL,\n"
            "  stage TEXT,\n"
            "  from_status TEXT,\n"
            "  to_status TEXT,\n"
            "  outcome TEXT,\n"
            "  detail TEXT,\n"
            "  created_at TEXT NOT NULL DEFAULT (datetime('now'))\n"
            ")"
        )
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_workflow_events_record ON workflow_events(record_id);")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_workflow_events_type ON workflow_events(event_type, created_at);")

    # View for joined reads (admin surface)
    cur.execute("DROP VIEW IF EXISTS v_records_with_lead;")
    cur.execute(
        (
            "CREATE VIEW v_records_with_lead AS\n"
            "SELECT\n"
            "  r.id AS record_id,\n"
            "  r.natural_key,\n"
            "  r.batch_id,\n"
            "  r.status,\n"
            "  r.current_stage,\n"
            "  r.status_reason,\n"
            "  r.retry_count,\n"
            "  r.subject_key,\n"
            "  r.updated_at,\n"
            "  l.id AS lead_id,\n"
            "  l.author_name,\n"
            "  l.company,\n"
            "  l.category\n"
            "FROM records r LEFT JOIN leads l ON r.materialized_entity_id = l.id;"
        )
    )

    conn.commit()
