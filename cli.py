import argparse
import json
import os
import uuid as _uuid

from config.settings import get_settings
from db import schema
from db.connection import get_connection
from db.repos.accounts_repo import AccountsRepo
from db.repos.leads_repo import LeadsRepo
from models.record import Stage, STAGE_ORDER
from pipelines.runner import Pipeline, RunContext
from pipelines.runtime import build_runtime
from pipelines.steps import LoadDataset, PersistPosts, ValidatePosts
from services import reporting
from utils.logging_setup import init_logging


def _ensure_run_id() -> str:
    if not os.getenv("RUN_ID"):
        os.environ["RUN_ID"] = _uuid.uuid4().hex
    return os.environ["RUN_ID"]


def _open(args):
    conn = get_connection(args.db)
    schema.bootstrap(conn)
    return conn


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def cmd_bootstrap(args):
    conn = get_connection(args.db)
    schema.bootstrap(conn)
    print("Schema ready")


def cmd_ingest(args):
    conn = _open(args)
    batch_id = args.batch_id or _uuid.uuid4().hex[:12]
    ctx = RunContext(batch_id=batch_id)
    pipeline = Pipeline([
        LoadDataset(args.source, args.input),
        ValidatePosts(),
        PersistPosts(conn),
    ])
    ctx = pipeline.run(ctx)
    print(
        f"Batch {batch_id}: received={ctx.meta.get('received', 0)} "
        f"queued={ctx.meta.get('inserted', 0)} duplicates={ctx.meta.get('duplicates', 0)} "
        f"invalid={ctx.meta.get('invalid', 0)}"
    )


def cmd_run(args):
    _ensure_run_id()
    conn = _open(args)
    runtime = build_runtime(conn)
    if args.stage == "all":
        totals = runtime.queue_manager.drain(batch_id=args.batch_id)
        _print_json(totals)
    else:
        report = runtime.queue_manager.run_stage(Stage(args.stage), max_size=args.limit, batch_id=args.batch_id)
        _print_json(report.to_dict())
    if args.summary:
        reporting.print_summary(reporting.build_summary(conn, args.batch_id))


def cmd_dispatch(args):
    _ensure_run_id()
    conn = _open(args)
    settings = get_settings()
    runtime = build_runtime(conn)
    dispatcher = runtime.dispatcher(args.workers or settings.dispatch_workers)
    handled = dispatcher.run_until_idle(batch_id=args.batch_id, limit=args.limit)
    print(f"Dispatched {handled} events ({dispatcher.failed} failed)")


def cmd_recover(args):
    conn = _open(args)
    runtime = build_runtime(conn)
    recovery = runtime.recovery
    if args.action == "stale":
        count = recovery.sweep_stale(args.hours, batch_id=args.batch_id)
        print(f"Requeued {count} stale records")
    elif args.action == "rejected":
        count = recovery.requalify_rejected(args.days, batch_id=args.batch_id)
        print(f"Requalified {count} rejected records")
    elif args.action == "emergency":
        count = recovery.emergency_reprocess(batch_id=args.batch_id, force_all=args.force_all)
        print(f"Reset {count} records for reprocessing")
    elif args.action == "credentials":
        released = recovery.release_stale_credentials(args.minutes)
        print(f"Released {len(released)} credentials")


def cmd_report(args):
    conn = _open(args)
    if args.view == "status":
        _print_json(reporting.build_summary(conn, args.batch_id))
    elif args.view == "stuck":
        _print_json(reporting.stuck_records(conn, args.hours))
    elif args.view == "accounts":
        _print_json(reporting.account_usage(conn))
    elif args.view == "leads":
        _print_json(LeadsRepo(conn).list_recent(args.limit))


def cmd_accounts(args):
    conn = _open(args)
    repo = AccountsRepo(conn)
    if args.action == "add":
        if not args.account_id:
            raise SystemExit("--account-id is required for add")
        limit = args.daily_limit if args.daily_limit is not None else get_settings().account_daily_limit
        repo.upsert_account(args.account_id, label=args.label, daily_limit=limit, is_active=not args.inactive)
        print(f"Account {args.account_id} saved")
    else:
        _print_json([a.model_dump() for a in repo.list_all()])


def main():
    settings = get_settings()
    init_logging(settings.log_level)
    parser = argparse.ArgumentParser(description="Post-to-lead pipeline CLI")
    parser.add_argument("--db", default=settings.db_path, help="Path to SQLite DB (default from settings)")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_boot = sub.add_parser("bootstrap", help="Create tables and indexes")
    p_boot.set_defaults(func=cmd_bootstrap)

    p_ing = sub.add_parser("ingest", help="Ingest a scraped post dataset as queued records")
    p_ing.add_argument("--input", required=True, help="Path to JSON / JSONL dataset")
    p_ing.add_argument("--batch-id", default=None, help="Batch identifier (default: random)")
    p_ing.add_argument("--source", default="json_dataset", help="Registered dataset source (default: json_dataset)")
    p_ing.set_defaults(func=cmd_ingest)

    p_run = sub.add_parser("run", help="Run one stage batch, or drain every stage")
    p_run.add_argument("--stage", choices=[s.value for s in STAGE_ORDER] + ["all"], default="all")
    p_run.add_argument("--limit", type=int, default=None, help="Max records per batch (default: BATCH_SIZE)")
    p_run.add_argument("--batch-id", default=None, help="Only records from this ingestion batch")
    p_run.add_argument("--summary", action="store_true", help="Print a status summary afterwards")
    p_run.set_defaults(func=cmd_run)

    p_dis = sub.add_parser("dispatch", help="Chain stages through the event dispatcher until idle")
    p_dis.add_argument("--workers", type=int, default=None, help="Worker threads (default: DISPATCH_WORKERS)")
    p_dis.add_argument("--limit", type=int, default=50, help="Max records seeded per stage")
    p_dis.add_argument("--batch-id", default=None)
    p_dis.set_defaults(func=cmd_dispatch)

    p_rec = sub.add_parser("recover", help="Recovery sweeps")
    p_rec.add_argument("action", choices=["stale", "rejected", "emergency", "credentials"])
    p_rec.add_argument("--hours", type=float, default=None, help="Age threshold for the stale sweep")
    p_rec.add_argument("--days", type=int, default=None, help="Lookback window for requalification")
    p_rec.add_argument("--minutes", type=int, default=None, help="Credential operation timeout")
    p_rec.add_argument("--force-all", action="store_true", help="Emergency: ignore the recent-window limit")
    p_rec.add_argument("--batch-id", default=None)
    p_rec.set_defaults(func=cmd_recover)

    p_rep = sub.add_parser("report", help="Read-only pipeline status queries")
    p_rep.add_argument("view", choices=["status", "stuck", "accounts", "leads"])
    p_rep.add_argument("--hours", type=float, default=24)
    p_rep.add_argument("--limit", type=int, default=20)
    p_rep.add_argument("--batch-id", default=None)
    p_rep.set_defaults(func=cmd_report)

    p_acc = sub.add_parser("accounts", help="Manage profile API credentials")
    p_acc.add_argument("action", choices=["add", "list"])
    p_acc.add_argument("--account-id", default=None)
    p_acc.add_argument("--label", default=None)
    p_acc.add_argument("--daily-limit", type=int, default=None)
    p_acc.add_argument("--inactive", action="store_true")
    p_acc.set_defaults(func=cmd_accounts)

    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
