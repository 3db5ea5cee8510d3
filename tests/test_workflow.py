from __future__ import annotations

import random

import pytest

from config.settings import Settings
from db.repos.events_repo import EventsRepo
from db.repos.leads_repo import LeadsRepo
from db.repos.records_repo import RecordsRepo
from models.record import RecordStatus, Stage, STAGE_ORDER, WAITING_STATUS
from models.stage_results import (
    Categorization,
    HiringVerdict,
    Materialization,
    ProfileEnrichment,
    TargetingVerdict,
)
from pipelines.errors import InvalidTransitionError
from pipelines.stages.base import StageOutcome
from pipelines.workflow import TRANSITIONS, WorkflowOrchestrator, assert_transition


def _completed(stage: Stage, lead_id: int, subject_key: str) -> StageOutcome:
    results = {
        Stage.STAGE1: HiringVerdict(is_hiring=True, roles=["Backend Engineer"]),
        Stage.STAGE2: TargetingVerdict(is_target=True, language="en"),
        Stage.STAGE3: Categorization(category="Tech", selected_roles=["Backend Engineer"]),
        Stage.ENRICHMENT: ProfileEnrichment(subject_key=subject_key, company="Acme"),
        Stage.MATERIALIZATION: Materialization(lead_id=lead_id, created=True),
    }
    return StageOutcome.completed(results[stage])


def _random_outcome(rng: random.Random, stage: Stage, lead_id: int, subject_key: str) -> StageOutcome:
    choices = ["completed"] * 6 + ["transient"] * 3 + ["permanent", "skipped"]
    if stage in (Stage.STAGE1, Stage.STAGE2):
        choices.append("rejected")
    pick = rng.choice(choices)
    if pick == "completed":
        return _completed(stage, lead_id, subject_key)
    if pick == "transient":
        return StageOutcome.transient("rate_limited: slow down", "rate_limited")
    if pick == "permanent":
        return StageOutcome.permanent("auth_error: bad key", "auth_error")
    if pick == "rejected":
        return StageOutcome.rejected(None, "no")
    resume = rng.choice(STAGE_ORDER[: STAGE_ORDER.index(stage) + 1])
    return StageOutcome.skipped(resume, "precondition unmet")


def test_random_outcome_sequences_follow_transition_table(conn):
    records = RecordsRepo(conn)
    leads = LeadsRepo(conn)
    events = EventsRepo(conn)
    settings = Settings(run_env="test", stage_max_retries=3, stage_retry_delay_seconds=0)
    orchestrator = WorkflowOrchestrator(records, events, settings)
    rng = random.Random(1234)

    for n in range(40):
        subject = f"id:{n}"
        rid = records.insert_raw(f"urn:{n}", {"text": "x"}, subject_key=subject)
        lead_id = leads.create(subject, rid)
        for _ in range(500):
            rec = records.get(rid)
            if rec.is_terminal:
                break
            stage = rec.current_stage
            assert records.claim(rid, stage) is True
            result = orchestrator.apply(rid, stage, _random_outcome(rng, stage, lead_id, subject))
            assert result is not None
            assert (result.from_status, result.to_status) in TRANSITIONS
            after = records.get(rid)
            assert after.status == result.to_status
            assert after.retry_count <= settings.stage_max_retries
        final = records.get(rid)
        assert final.is_terminal, f"record {rid} never reached a terminal status"
        for stage in STAGE_ORDER:
            assert records.claim(rid, stage) is False


def test_apply_is_noop_unless_claimed_for_that_stage(conn):
    records = RecordsRepo(conn)
    orchestrator = WorkflowOrchestrator(records, EventsRepo(conn), Settings(run_env="test"))
    rid = records.insert_raw("urn:1", {"text": "x"})
    outcome = _completed(Stage.STAGE1, 0, "id:1")

    # Not claimed yet
    assert orchestrator.apply(rid, Stage.STAGE1, outcome) is None
    assert records.get(rid).status == RecordStatus.QUEUED

    records.claim(rid, Stage.STAGE1)
    first = orchestrator.apply(rid, Stage.STAGE1, outcome)
    assert first is not None and first.to_status == RecordStatus.AWAITING_STAGE2
    # Re-delivered completion
    assert orchestrator.apply(rid, Stage.STAGE1, outcome) is None
    rec = records.get(rid)
    assert rec.status == RecordStatus.AWAITING_STAGE2
    assert rec.current_stage == Stage.STAGE2
    transitions = [e for e in EventsRepo(conn).for_record(rid) if e["event_type"] == "transition"]
    assert len(transitions) == 1


def test_completion_resets_retry_budget_per_stage(conn):
    records = RecordsRepo(conn)
    orchestrator = WorkflowOrchestrator(records, None, Settings(run_env="test", stage_max_retries=3, stage_retry_delay_seconds=0))
    rid = records.insert_raw("urn:1", {"text": "x"})

    records.claim(rid, Stage.STAGE1)
    orchestrator.apply(rid, Stage.STAGE1, StageOutcome.transient("timeout"))
    assert records.get(rid).retry_count == 1

    records.claim(rid, Stage.STAGE1)
    orchestrator.apply(rid, Stage.STAGE1, _completed(Stage.STAGE1, 0, "id:1"))
    rec = records.get(rid)
    assert rec.retry_count == 0
    assert rec.status == WAITING_STATUS[Stage.STAGE2]


def test_transient_until_budget_exhausted(conn):
    records = RecordsRepo(conn)
    orchestrator = WorkflowOrchestrator(
        records, None, Settings(run_env="test", stage_retry_delay_seconds=0), max_retries={Stage.STAGE1: 2}
    )
    rid = records.insert_raw("urn:1", {"text": "x"})

    records.claim(rid, Stage.STAGE1)
    first = orchestrator.apply(rid, Stage.STAGE1, StageOutcome.transient("provider_unavailable"))
    assert first.to_status == RecordStatus.RETRY_SCHEDULED
    rec = records.get(rid)
    assert rec.next_retry_at is not None and rec.last_retry_at is not None

    records.claim(rid, Stage.STAGE1)
    second = orchestrator.apply(rid, Stage.STAGE1, StageOutcome.transient("provider_unavailable"))
    assert second.to_status == RecordStatus.FAILED_PERMANENTLY
    rec = records.get(rid)
    assert rec.retry_count == 2
    assert "Retries exhausted" in rec.status_reason


def test_permanent_failure_at_enrichment_is_enrichment_failed(conn):
    records = RecordsRepo(conn)
    orchestrator = WorkflowOrchestrator(records, None, Settings(run_env="test"))
    rid = records.insert_raw("urn:1", {"text": "x"})
    records.compare_and_set(rid, RecordStatus.QUEUED, {"status": RecordStatus.AWAITING_ENRICHMENT, "current_stage": Stage.ENRICHMENT})
    records.claim(rid, Stage.ENRICHMENT)
    result = orchestrator.apply(rid, Stage.ENRICHMENT, StageOutcome.permanent("not_found: gone"))
    assert result.to_status == RecordStatus.ENRICHMENT_FAILED
    assert records.get(rid).status_reason == "not_found: gone"


def test_duplicate_materialization_records_existing_lead(conn):
    records = RecordsRepo(conn)
    leads = LeadsRepo(conn)
    orchestrator = WorkflowOrchestrator(records, None, Settings(run_env="test"))
    first = records.insert_raw("urn:1", {}, subject_key="id:1")
    second = records.insert_raw("urn:2", {}, subject_key="id:1")
    lead_id = leads.create("id:1", first)
    records.compare_and_set(second, RecordStatus.QUEUED, {"status": RecordStatus.AWAITING_MATERIALIZATION, "current_stage": Stage.MATERIALIZATION})
    records.claim(second, Stage.MATERIALIZATION)

    result = orchestrator.apply(second, Stage.MATERIALIZATION, StageOutcome.completed(Materialization(lead_id=lead_id, created=False)))

    assert result.to_status == RecordStatus.DUPLICATE
    assert records.get(second).materialized_entity_id == lead_id


def test_materialization_completion_without_lead_result_is_rejected(conn):
    records = RecordsRepo(conn)
    orchestrator = WorkflowOrchestrator(records, None, Settings(run_env="test"))
    rid = records.insert_raw("urn:1", {}, subject_key="id:1")
    records.compare_and_set(rid, RecordStatus.QUEUED, {"status": RecordStatus.AWAITING_MATERIALIZATION, "current_stage": Stage.MATERIALIZATION})
    records.claim(rid, Stage.MATERIALIZATION)

    with pytest.raises(InvalidTransitionError):
        orchestrator.apply(rid, Stage.MATERIALIZATION, StageOutcome.completed(HiringVerdict(is_hiring=True)))
    assert records.get(rid).status == RecordStatus.PROCESSING
    assert records.get(rid).materialized_entity_id is None


def test_invalid_transitions_raise(conn):
    with pytest.raises(InvalidTransitionError):
        assert_transition(RecordStatus.QUEUED, RecordStatus.MATERIALIZED)
    with pytest.raises(InvalidTransitionError):
        assert_transition(RecordStatus.MATERIALIZED, RecordStatus.QUEUED)

    records = RecordsRepo(conn)
    orchestrator = WorkflowOrchestrator(records, None, Settings(run_env="test"))
    rid = records.insert_raw("urn:1", {})
    records.compare_and_set(rid, RecordStatus.QUEUED, {"status": RecordStatus.AWAITING_STAGE3, "current_stage": Stage.STAGE3})
    records.claim(rid, Stage.STAGE3)
    with pytest.raises(InvalidTransitionError):
        orchestrator.apply(rid, Stage.STAGE3, StageOutcome.rejected(None, "stage 3 never rejects"))
    with pytest.raises(InvalidTransitionError):
        orchestrator.apply(rid, Stage.STAGE3, StageOutcome.skipped(Stage.MATERIALIZATION, "forward skip"))
    # Nothing was written
    assert records.get(rid).status == RecordStatus.PROCESSING


def test_skip_returns_record_to_earlier_stage(conn):
    records = RecordsRepo(conn)
    orchestrator = WorkflowOrchestrator(records, None, Settings(run_env="test"))
    rid = records.insert_raw("urn:1", {})
    records.compare_and_set(rid, RecordStatus.QUEUED, {"status": RecordStatus.AWAITING_STAGE3, "current_stage": Stage.STAGE3, "retry_count": 1})
    records.claim(rid, Stage.STAGE3)

    result = orchestrator.apply(rid, Stage.STAGE3, StageOutcome.skipped(Stage.STAGE1, "stage1 verdict missing"))

    assert result.to_status == RecordStatus.QUEUED
    assert result.ready_stage == Stage.STAGE1
    rec = records.get(rid)
    assert rec.current_stage == Stage.STAGE1
    assert rec.retry_count == 1
