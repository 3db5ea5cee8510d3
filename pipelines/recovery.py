from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from config.settings import Settings, get_settings
from models.record import Record, RecordStatus, Stage, WAITING_STATUS
from pipelines.errors import InvalidTransitionError, StaleClaimError
from pipelines.workflow import assert_recovery
from ports.repos import AccountStorePort, EventLogPort, LeadStorePort, RecordStorePort
from services.priority import EMERGENCY_PRIORITY, REQUALIFIED_PRIORITY, with_penalty
from services.requalification import RequalificationPolicy, default_policy
from utils.clock import db_ago, db_now


logger = logging.getLogger(__name__)


class RecoveryController:
    """Sweeps that re-admit stuck, over-rejected or failed records."""

    def __init__(
        self,
        records: RecordStorePort,
        leads: LeadStorePort,
        accounts: AccountStorePort,
        events: Optional[EventLogPort] = None,
        settings: Optional[Settings] = None,
        policy: Optional[RequalificationPolicy] = None,
    ) -> None:
        self.records = records
        self.leads = leads
        self.accounts = accounts
        self.events = events
        self.settings = settings or get_settings()
        self.policy = policy or default_policy()

    def _record_event(self, event_type: str, record: Record, to_status: RecordStatus, detail: Optional[str] = None) -> None:
        if self.events is not None:
            self.events.append(
                event_type,
                record_id=record.id,
                stage=record.current_stage.value,
                from_status=record.status.value,
                to_status=to_status.value,
                detail=detail,
            )

    def _reset_changes(self, priority: int) -> Dict[str, Any]:
        return {
            "current_stage": Stage.STAGE1,
            "retry_count": 0,
            "stage_results": {},
            "status_reason": None,
            "next_retry_at": None,
            "last_retry_at": db_now(),
            "materialized_entity_id": None,
            "priority": priority,
        }

    def sweep_stale(self, age_hours: Optional[float] = None, batch_id: Optional[str] = None) -> int:
        """Re-queue non-terminal records untouched for `age_hours` at their current stage."""
        hours = age_hours if age_hours is not None else self.settings.stale_after_hours
        requeued = 0
        for record in self.records.list_stale(db_ago(hours=hours), batch_id):
            if record.status == RecordStatus.PROCESSING:
                # Expected crash leftover; recovered here, never surfaced
                logger.warning(str(StaleClaimError(record.id, record.current_stage.value)), extra={"record_id": record.id})
            target = WAITING_STATUS[record.current_stage]
            try:
                assert_recovery(record.status, target, record.id)
            except InvalidTransitionError as exc:
                logger.error(str(exc), extra={"record_id": record.id})
                continue
            changes = {
                "status": target,
                "priority": with_penalty(record.priority, self.settings.requeue_priority_penalty),
                "next_retry_at": None,
            }
            if self.records.compare_and_set(record.id, record.status, changes, expected_stage=record.current_stage):
                requeued += 1
                self._record_event("recovered_stale", record, target)
        logger.info(f"Stale sweep requeued {requeued} records", extra={"step": "sweep_stale"})
        return requeued

    def requalify_rejected(self, lookback_days: Optional[int] = None, batch_id: Optional[str] = None, limit: int = 50) -> int:
        """Give rejected records that a looser policy accepts one more pass from stage 1.

        Walks the whole lookback window in id order until `limit` records are
        requalified. A record is requalified at most once.
        """
        days = lookback_days if lookback_days is not None else self.settings.requalify_lookback_days
        created_since = db_ago(days=days)
        statuses = [RecordStatus.STAGE1_REJECTED, RecordStatus.STAGE2_REJECTED]
        requalified = 0
        examined = 0
        after_id = 0
        while requalified < limit:
            page = self.records.list_requalification_candidates(
                statuses,
                created_since=created_since,
                batch_id=batch_id,
                after_id=after_id,
            )
            if not page:
                break
            after_id = page[-1].id
            for record in page:
                examined += 1
                if self._requalify(record):
                    requalified += 1
                    if requalified >= limit:
                        break
        logger.info(f"Requalified {requalified} of {examined} rejected records", extra={"step": "requalify"})
        return requalified

    def _requalify(self, record: Record) -> bool:
        if not self.policy.should_requalify(record):
            return False
        if record.subject_key and (
            self.leads.get_by_subject(record.subject_key) is not None
            or self.records.exists_in_later_state(record.subject_key, record.id)
        ):
            logger.info("Subject already progressed elsewhere; not requalifying", extra={"record_id": record.id})
            return False
        assert_recovery(record.status, RecordStatus.QUEUED, record.id)
        changes = self._reset_changes(REQUALIFIED_PRIORITY)
        changes["status"] = RecordStatus.QUEUED
        changes["requalified_at"] = db_now()
        if not self.records.compare_and_set(record.id, record.status, changes):
            return False
        self._record_event("requalified", record, RecordStatus.QUEUED)
        return True

    def emergency_reprocess(self, batch_id: Optional[str] = None, force_all: bool = False) -> int:
        """Operator escape hatch: reset failed and scheduled records to `queued` with outputs cleared."""
        created_since = None if force_all else db_ago(hours=self.settings.emergency_window_hours)
        candidates = self.records.list_by_status(
            [RecordStatus.ERROR, RecordStatus.FAILED_PERMANENTLY, RecordStatus.RETRY_SCHEDULED],
            created_since=created_since,
            batch_id=batch_id,
        )
        reset = 0
        for record in candidates:
            target = RecordStatus.QUEUED
            assert_recovery(record.status, target, record.id)
            changes = self._reset_changes(EMERGENCY_PRIORITY)
            changes["status"] = target
            if self.records.compare_and_set(record.id, record.status, changes):
                reset += 1
                self._record_event("emergency_reprocess", record, target, "force_all" if force_all else None)
        logger.warning(f"Emergency reprocess reset {reset} records", extra={"step": "emergency"})
        return reset

    def release_stale_credentials(self, timeout_minutes: Optional[int] = None) -> List[str]:
        minutes = timeout_minutes if timeout_minutes is not None else self.settings.operation_timeout_minutes
        released = self.accounts.force_release_stale(db_ago(minutes=minutes))
        for account_id in released:
            logger.warning("Force-released stuck credential", extra={"account": account_id})
        return released
