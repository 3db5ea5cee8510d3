from __future__ import annotations

from db.repos.accounts_repo import AccountsRepo
from db.repos.events_repo import EventsRepo
from db.repos.leads_repo import LeadsRepo
from db.repos.records_repo import RecordsRepo
from models.record import Record, RecordStatus, Stage
from models.stage_results import HiringVerdict
from pipelines.recovery import RecoveryController
from services.priority import EMERGENCY_PRIORITY, REQUALIFIED_PRIORITY
from services.requalification import KeywordPolicy, SubstantialTextPolicy, TitleKeywordPolicy


def _controller(conn, settings):
    return RecoveryController(RecordsRepo(conn), LeadsRepo(conn), AccountsRepo(conn), EventsRepo(conn), settings)


def _age(conn, record_id: int, column: str = "updated_at") -> None:
    conn.execute(f"UPDATE records SET {column} = '2000-01-01 00:00:00' WHERE id = ?", (record_id,))
    conn.commit()


def test_sweep_stale_requeues_at_current_stage_with_penalty(conn, fast_settings):
    records = RecordsRepo(conn)
    stuck = records.insert_raw("urn:stuck", {}, priority=5)
    records.compare_and_set(stuck, RecordStatus.QUEUED, {"status": RecordStatus.AWAITING_STAGE3, "current_stage": Stage.STAGE3})
    records.claim(stuck, Stage.STAGE3)
    fresh = records.insert_raw("urn:fresh", {})
    _age(conn, stuck)

    assert _controller(conn, fast_settings).sweep_stale(24) == 1

    rec = records.get(stuck)
    assert rec.status == RecordStatus.AWAITING_STAGE3
    assert rec.current_stage == Stage.STAGE3
    assert rec.priority == 5 + fast_settings.requeue_priority_penalty
    assert records.get(fresh).status == RecordStatus.QUEUED
    assert EventsRepo(conn).count_by_type()["recovered_stale"] == 1


def test_requalify_rejected_resets_to_stage1(conn, fast_settings):
    records = RecordsRepo(conn)
    rid = records.insert_raw("urn:1", {"text": "Nous recrutons, envoyez vos candidatures"}, subject_key="id:1", priority=6)
    records.compare_and_set(
        rid,
        RecordStatus.QUEUED,
        {"status": RecordStatus.STAGE1_REJECTED, "status_reason": "no", "stage_results": {"stage1": HiringVerdict(is_hiring=False)}},
    )
    ignored = records.insert_raw("urn:2", {"text": "Nice sunset"})
    records.compare_and_set(ignored, RecordStatus.QUEUED, {"status": RecordStatus.STAGE1_REJECTED})

    assert _controller(conn, fast_settings).requalify_rejected() == 1

    rec = records.get(rid)
    assert rec.status == RecordStatus.QUEUED
    assert rec.current_stage == Stage.STAGE1
    assert rec.priority == REQUALIFIED_PRIORITY
    assert rec.stage_results == {}
    assert rec.status_reason is None
    assert records.get(ignored).status == RecordStatus.STAGE1_REJECTED


def test_requalify_skips_subject_that_already_has_a_lead(conn, fast_settings):
    records = RecordsRepo(conn)
    leads = LeadsRepo(conn)
    winner = records.insert_raw("urn:1", {}, subject_key="id:9")
    leads.create("id:9", winner)
    rid = records.insert_raw("urn:2", {"text": "on recrute"}, subject_key="id:9")
    records.compare_and_set(rid, RecordStatus.QUEUED, {"status": RecordStatus.STAGE1_REJECTED})

    assert _controller(conn, fast_settings).requalify_rejected() == 0
    assert records.get(rid).status == RecordStatus.STAGE1_REJECTED


def test_requalify_respects_lookback(conn, fast_settings):
    records = RecordsRepo(conn)
    rid = records.insert_raw("urn:1", {"text": "hiring now"})
    records.compare_and_set(rid, RecordStatus.QUEUED, {"status": RecordStatus.STAGE1_REJECTED})
    _age(conn, rid, "created_at")

    assert _controller(conn, fast_settings).requalify_rejected(lookback_days=7) == 0


def _reject(records, natural_key: str, text: str, priority: int = 5) -> int:
    rid = records.insert_raw(natural_key, {"text": text}, priority=priority)
    records.compare_and_set(rid, RecordStatus.QUEUED, {"status": RecordStatus.STAGE1_REJECTED})
    return rid


def test_requalify_looks_past_rejects_the_policy_refuses(conn, fast_settings):
    records = RecordsRepo(conn)
    for n in range(60):
        _reject(records, f"urn:sunset:{n}", "Nice sunset", priority=1)
    target = _reject(records, "urn:hiring", "Nous recrutons, envoyez vos candidatures", priority=6)

    assert _controller(conn, fast_settings).requalify_rejected() == 1
    assert records.get(target).status == RecordStatus.QUEUED


def test_requalify_stops_at_limit(conn, fast_settings):
    records = RecordsRepo(conn)
    ids = [_reject(records, f"urn:{n}", "on recrute un dev") for n in range(5)]

    assert _controller(conn, fast_settings).requalify_rejected(limit=3) == 3
    statuses = [records.get(rid).status for rid in ids]
    assert statuses.count(RecordStatus.QUEUED) == 3
    assert statuses.count(RecordStatus.STAGE1_REJECTED) == 2


def test_requalified_record_rejected_again_is_left_alone(conn, fast_settings):
    records = RecordsRepo(conn)
    rid = _reject(records, "urn:1", "Nous recrutons, envoyez vos candidatures")
    controller = _controller(conn, fast_settings)

    assert controller.requalify_rejected() == 1
    assert records.get(rid).requalified_at is not None
    # Stage 1 turns it down a second time
    records.compare_and_set(rid, RecordStatus.QUEUED, {"status": RecordStatus.STAGE1_REJECTED})

    assert controller.requalify_rejected() == 0
    assert records.get(rid).status == RecordStatus.STAGE1_REJECTED
    assert EventsRepo(conn).count_by_type()["requalified"] == 1


def test_emergency_reprocess_window_and_force_all(conn, fast_settings):
    records = RecordsRepo(conn)
    recent = records.insert_raw("urn:recent", {})
    old = records.insert_raw("urn:old", {})
    for rid in (recent, old):
        records.compare_and_set(
            rid,
            RecordStatus.QUEUED,
            {"status": RecordStatus.FAILED_PERMANENTLY, "current_stage": Stage.ENRICHMENT, "retry_count": 3},
        )
    _age(conn, old, "created_at")
    controller = _controller(conn, fast_settings)

    assert controller.emergency_reprocess() == 1
    rec = records.get(recent)
    assert rec.status == RecordStatus.QUEUED
    assert rec.current_stage == Stage.STAGE1
    assert rec.retry_count == 0
    assert rec.priority == EMERGENCY_PRIORITY
    assert records.get(old).status == RecordStatus.FAILED_PERMANENTLY

    assert controller.emergency_reprocess(force_all=True) == 1
    assert records.get(old).status == RecordStatus.QUEUED


def test_release_stale_credentials(conn, fast_settings):
    accounts = AccountsRepo(conn)
    accounts.upsert_account("a1")
    accounts.claim_operation("a1", "op")
    conn.execute("UPDATE accounts SET operation_started_at = '2000-01-01 00:00:00'")
    conn.commit()

    assert _controller(conn, fast_settings).release_stale_credentials(10) == ["a1"]
    assert accounts.get("a1").current_operation_id is None


def _rec(text="", title="", status=RecordStatus.STAGE1_REJECTED, headline=None) -> Record:
    payload = {"text": text, "title": title}
    if headline:
        payload["author_headline"] = headline
    return Record(id=1, natural_key="k", payload=payload, status=status)


def test_requalification_policies():
    assert KeywordPolicy().should_requalify(_rec("Je recrute un dev"))
    assert not KeywordPolicy().should_requalify(_rec("Je recrute un dev", status=RecordStatus.STAGE2_REJECTED))
    assert TitleKeywordPolicy().should_requalify(_rec(title="Job: Backend", status=RecordStatus.STAGE2_REJECTED))
    assert not TitleKeywordPolicy().should_requalify(_rec("hiring"))

    long_text = "Notre équipe grandit et nous recherchons un profil senior pour ce poste. " * 4
    policy = SubstantialTextPolicy()
    assert policy.score(_rec(long_text, headline="Talent acquisition")) > 0.6
    assert not policy.should_requalify(_rec("short"))
