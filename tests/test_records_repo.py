from __future__ import annotations

import pytest

from db.repos.records_repo import RecordsRepo
from models.record import RecordStatus, Stage
from models.stage_results import HiringVerdict, ProfileEnrichment
from utils.clock import db_ago, db_in


def test_insert_raw_duplicate_natural_key_is_noop(conn):
    repo = RecordsRepo(conn)
    first = repo.insert_raw("urn:1", {"text": "hello"}, batch_id="b1")
    second = repo.insert_raw("urn:1", {"text": "changed"}, batch_id="b2")
    assert isinstance(first, int)
    assert second is None
    rec = repo.get(first)
    assert rec.payload == {"text": "hello"}
    assert rec.status == RecordStatus.QUEUED
    assert rec.current_stage == Stage.STAGE1
    assert rec.batch_id == "b1"
    assert repo.get_by_natural_key("urn:1").id == first
    assert repo.get_by_natural_key("urn:missing") is None


def test_compare_and_set_requires_expected_status(conn):
    repo = RecordsRepo(conn)
    rid = repo.insert_raw("urn:1", {})
    assert repo.compare_and_set(rid, RecordStatus.AWAITING_STAGE2, {"status": RecordStatus.PROCESSING}) is False
    assert repo.compare_and_set(
        rid,
        RecordStatus.QUEUED,
        {"status": RecordStatus.AWAITING_STAGE2, "current_stage": Stage.STAGE2, "stage_results": {"stage1": HiringVerdict(is_hiring=True, roles=["Dev"])}},
        expected_stage=Stage.STAGE1,
    ) is True
    rec = repo.get(rid)
    assert rec.status == RecordStatus.AWAITING_STAGE2
    verdict = rec.result_for(Stage.STAGE1)
    assert isinstance(verdict, HiringVerdict) and verdict.roles == ["Dev"]


def test_compare_and_set_rejects_immutable_columns(conn):
    repo = RecordsRepo(conn)
    rid = repo.insert_raw("urn:1", {})
    with pytest.raises(ValueError):
        repo.compare_and_set(rid, RecordStatus.QUEUED, {"natural_key": "other"})


def test_select_eligible_orders_by_priority_then_age(conn):
    repo = RecordsRepo(conn)
    low = repo.insert_raw("urn:low", {}, priority=7)
    high = repo.insert_raw("urn:high", {}, priority=2)
    mid = repo.insert_raw("urn:mid", {}, priority=5)
    assert repo.select_eligible_ids(Stage.STAGE1, 10) == [high, mid, low]
    assert repo.select_eligible_ids(Stage.STAGE1, 2) == [high, mid]
    assert repo.select_eligible_ids(Stage.STAGE2, 10) == []


def test_retry_scheduled_eligible_only_when_due(conn):
    repo = RecordsRepo(conn)
    later = repo.insert_raw("urn:later", {})
    due = repo.insert_raw("urn:due", {})
    repo.compare_and_set(later, RecordStatus.QUEUED, {"status": RecordStatus.RETRY_SCHEDULED, "next_retry_at": db_in(3600)})
    repo.compare_and_set(due, RecordStatus.QUEUED, {"status": RecordStatus.RETRY_SCHEDULED, "next_retry_at": db_ago(minutes=1)})
    assert repo.select_eligible_ids(Stage.STAGE1, 10) == [due]
    assert repo.claim(later, Stage.STAGE1) is False
    assert repo.claim(due, Stage.STAGE1) is True


def test_claim_is_exclusive(conn):
    repo = RecordsRepo(conn)
    rid = repo.insert_raw("urn:1", {})
    assert repo.claim(rid, Stage.STAGE1) is True
    assert repo.claim(rid, Stage.STAGE1) is False
    assert repo.get(rid).status == RecordStatus.PROCESSING


def test_batch_filter(conn):
    repo = RecordsRepo(conn)
    a = repo.insert_raw("urn:a", {}, batch_id="a")
    repo.insert_raw("urn:b", {}, batch_id="b")
    assert repo.select_eligible_ids(Stage.STAGE1, 10, batch_id="a") == [a]
    assert repo.count_by_status("a") == {"queued": 1}


def test_find_recent_enrichment_for_subject(conn):
    repo = RecordsRepo(conn)
    key = "https://linkedin.com/in/jane"
    done = repo.insert_raw("urn:1", {}, subject_key=key)
    other = repo.insert_raw("urn:2", {}, subject_key=key)
    enrichment = ProfileEnrichment(subject_key=key, company="Acme", position="CTO")
    repo.compare_and_set(done, RecordStatus.QUEUED, {"stage_results": {"enrichment": enrichment}})

    found = repo.find_recent_enrichment(key, since=db_ago(days=1), exclude_record_id=other)
    assert found is not None and found["company"] == "Acme"
    assert repo.find_recent_enrichment(key, since=db_ago(days=1), exclude_record_id=done) is None
    assert repo.find_recent_enrichment("https://linkedin.com/in/nobody", since=db_ago(days=1)) is None


def test_exists_in_later_state(conn):
    repo = RecordsRepo(conn)
    key = "id:42"
    first = repo.insert_raw("urn:1", {}, subject_key=key)
    second = repo.insert_raw("urn:2", {}, subject_key=key)
    assert repo.exists_in_later_state(key, second) is False
    repo.compare_and_set(first, RecordStatus.QUEUED, {"status": RecordStatus.AWAITING_ENRICHMENT, "current_stage": Stage.ENRICHMENT})
    assert repo.exists_in_later_state(key, second) is True
    assert repo.exists_in_later_state(key, first) is False


def test_list_stale_skips_terminal(conn):
    repo = RecordsRepo(conn)
    waiting = repo.insert_raw("urn:1", {})
    done = repo.insert_raw("urn:2", {})
    repo.compare_and_set(done, RecordStatus.QUEUED, {"status": RecordStatus.STAGE1_REJECTED})
    conn.execute("UPDATE records SET updated_at = '2000-01-01 00:00:00'")
    conn.commit()
    stale = repo.list_stale(db_ago(hours=1))
    assert [r.id for r in stale] == [waiting]


def test_requalification_candidates_page_by_id_and_skip_marked(conn):
    repo = RecordsRepo(conn)
    ids = []
    for n in range(5):
        rid = repo.insert_raw(f"urn:{n}", {}, priority=5 - n)
        repo.compare_and_set(rid, RecordStatus.QUEUED, {"status": RecordStatus.STAGE1_REJECTED})
        ids.append(rid)
    repo.compare_and_set(ids[1], RecordStatus.STAGE1_REJECTED, {"requalified_at": db_ago(hours=1)})
    statuses = [RecordStatus.STAGE1_REJECTED]

    first = repo.list_requalification_candidates(statuses, page_size=2)
    second = repo.list_requalification_candidates(statuses, after_id=first[-1].id, page_size=2)
    rest = repo.list_requalification_candidates(statuses, after_id=second[-1].id, page_size=2)

    assert [r.id for r in first] == [ids[0], ids[2]]
    assert [r.id for r in second] == [ids[3], ids[4]]
    assert rest == []
