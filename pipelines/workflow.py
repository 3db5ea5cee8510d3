from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional, Tuple

from config.settings import Settings, get_settings
from models.record import (
    Record,
    RecordStatus,
    Stage,
    STAGE_ORDER,
    TERMINAL_STATUSES,
    WAITING_STATUS,
)
from models.stage_results import Materialization
from pipelines.errors import InvalidTransitionError
from pipelines.stages.base import OutcomeKind, StageOutcome
from ports.repos import EventLogPort, RecordStorePort
from services.priority import compute_priority
from utils.clock import db_in, db_now


logger = logging.getLogger(__name__)

S = RecordStatus

_WAITING = tuple(WAITING_STATUS.values())

# Stage transitions, from the status a record waits in to the status the stage leaves it in
TRANSITIONS: FrozenSet[Tuple[RecordStatus, RecordStatus]] = frozenset(
    {
        (S.QUEUED, S.AWAITING_STAGE2),
        (S.QUEUED, S.STAGE1_REJECTED),
        (S.AWAITING_STAGE2, S.AWAITING_STAGE3),
        (S.AWAITING_STAGE2, S.STAGE2_REJECTED),
        (S.AWAITING_STAGE3, S.AWAITING_ENRICHMENT),
        (S.AWAITING_ENRICHMENT, S.AWAITING_MATERIALIZATION),
        (S.AWAITING_ENRICHMENT, S.ENRICHMENT_FAILED),
        (S.AWAITING_MATERIALIZATION, S.MATERIALIZED),
        (S.AWAITING_MATERIALIZATION, S.DUPLICATE),
    }
    | {(w, S.RETRY_SCHEDULED) for w in _WAITING}
    | {(w, S.FAILED_PERMANENTLY) for w in _WAITING}
    | {(w, S.ERROR) for w in _WAITING if w not in (S.AWAITING_ENRICHMENT,)}
    # A skipped stage hands the record back to an earlier (or the same) stage
    | {
        (WAITING_STATUS[later], WAITING_STATUS[earlier])
        for i, later in enumerate(STAGE_ORDER)
        for earlier in STAGE_ORDER[: i + 1]
    }
)

# Operator / sweep re-admissions
RECOVERY_TRANSITIONS: FrozenSet[Tuple[RecordStatus, RecordStatus]] = frozenset(
    {(w, w) for w in _WAITING}
    | {(S.PROCESSING, w) for w in _WAITING}
    | {(S.RETRY_SCHEDULED, w) for w in _WAITING}
    | {(S.STAGE1_REJECTED, S.QUEUED), (S.STAGE2_REJECTED, S.QUEUED)}
    | {(S.ERROR, S.QUEUED), (S.FAILED_PERMANENTLY, S.QUEUED)}
)

_REJECTED_STATUS: Dict[Stage, RecordStatus] = {
    Stage.STAGE1: S.STAGE1_REJECTED,
    Stage.STAGE2: S.STAGE2_REJECTED,
}


def assert_transition(from_status: RecordStatus, to_status: RecordStatus, record_id: Optional[int] = None) -> None:
    if (from_status, to_status) not in TRANSITIONS:
        raise InvalidTransitionError(from_status.value, to_status.value, record_id)


def assert_recovery(from_status: RecordStatus, to_status: RecordStatus, record_id: Optional[int] = None) -> None:
    if (from_status, to_status) not in RECOVERY_TRANSITIONS:
        raise InvalidTransitionError(from_status.value, to_status.value, record_id)


def next_stage(stage: Stage) -> Optional[Stage]:
    idx = STAGE_ORDER.index(stage)
    return STAGE_ORDER[idx + 1] if idx + 1 < len(STAGE_ORDER) else None


@dataclass(frozen=True)
class TransitionResult:
    record_id: int
    stage: Stage
    outcome: OutcomeKind
    from_status: RecordStatus
    to_status: RecordStatus
    current_stage: Stage

    @property
    def is_terminal(self) -> bool:
        return self.to_status in TERMINAL_STATUSES

    @property
    def ready_stage(self) -> Optional[Stage]:
        """Stage the record is now waiting for, if it can run immediately."""
        if self.to_status in _WAITING:
            return self.current_stage
        return None


class WorkflowOrchestrator:
    """Decides and durably records where a record goes after a stage ran.

    Only a record claimed `processing` for the same stage is moved; anything
    else (already advanced, re-delivered event) is a logged no-op.
    """

    def __init__(
        self,
        records: RecordStorePort,
        events: Optional[EventLogPort] = None,
        settings: Optional[Settings] = None,
        max_retries: Optional[Dict[Stage, int]] = None,
    ) -> None:
        self.records = records
        self.events = events
        self.settings = settings or get_settings()
        self.max_retries = dict(max_retries or {})

    def max_retries_for(self, stage: Stage) -> int:
        return self.max_retries.get(stage, self.settings.stage_max_retries)

    def apply(self, record_id: int, stage: Stage, outcome: StageOutcome) -> Optional[TransitionResult]:
        record = self.records.get(record_id)
        if record is None or record.status != S.PROCESSING or record.current_stage != stage:
            logger.info(
                "Stale stage completion ignored",
                extra={
                    "step": stage.value,
                    "record_id": record_id,
                    "status": record.status.value if record else "missing",
                },
            )
            return None

        origin = WAITING_STATUS[stage]
        to_status, changes = self._decide(record, stage, outcome)
        assert_transition(origin, to_status, record_id)

        changes["status"] = to_status
        if not self.records.compare_and_set(record_id, S.PROCESSING, changes, expected_stage=stage):
            logger.info("Lost transition race; no-op", extra={"step": stage.value, "record_id": record_id})
            return None

        result = TransitionResult(
            record_id=record_id,
            stage=stage,
            outcome=outcome.kind,
            from_status=origin,
            to_status=to_status,
            current_stage=changes.get("current_stage", stage),
        )
        logger.info(
            f"{origin.value} -> {to_status.value}",
            extra={"step": stage.value, "record_id": record_id, "status": outcome.kind.value},
        )
        if self.events is not None:
            self.events.append(
                "transition",
                record_id=record_id,
                stage=stage.value,
                from_status=origin.value,
                to_status=to_status.value,
                outcome=outcome.kind.value,
                detail=changes.get("status_reason"),
            )
        return result

    def _decide(self, record: Record, stage: Stage, outcome: StageOutcome) -> Tuple[RecordStatus, Dict[str, Any]]:
        changes: Dict[str, Any] = {}
        kind = outcome.kind

        if kind == OutcomeKind.COMPLETED:
            results = dict(record.stage_results)
            results[stage.value] = outcome.result
            changes["stage_results"] = results
            changes["status_reason"] = None
            changes["next_retry_at"] = None
            if stage == Stage.MATERIALIZATION:
                if not isinstance(outcome.result, Materialization):
                    raise InvalidTransitionError(S.PROCESSING.value, "materialized", record.id)
                changes["materialized_entity_id"] = outcome.result.lead_id
                if outcome.result.created:
                    return S.MATERIALIZED, changes
                changes["status_reason"] = f"Subject already has lead {outcome.result.lead_id}"
                return S.DUPLICATE, changes
            following = next_stage(stage)
            if following is None:
                raise InvalidTransitionError(S.PROCESSING.value, "past the last stage", record.id)
            changes["current_stage"] = following
            changes["retry_count"] = 0
            changes["priority"] = compute_priority(record.payload)
            return WAITING_STATUS[following], changes

        if kind == OutcomeKind.REJECTED:
            if outcome.result is not None:
                results = dict(record.stage_results)
                results[stage.value] = outcome.result
                changes["stage_results"] = results
            changes["status_reason"] = outcome.reason or f"Rejected at {stage.value}"
            rejected = _REJECTED_STATUS.get(stage)
            if rejected is None:
                raise InvalidTransitionError(WAITING_STATUS[stage].value, "rejected", record.id)
            return rejected, changes

        if kind == OutcomeKind.PERMANENT:
            changes["status_reason"] = outcome.reason or f"Permanent failure at {stage.value}"
            if stage == Stage.ENRICHMENT:
                return S.ENRICHMENT_FAILED, changes
            return S.ERROR, changes

        if kind == OutcomeKind.TRANSIENT:
            retry_count = record.retry_count + 1
            limit = self.max_retries_for(stage)
            changes["retry_count"] = retry_count
            changes["last_retry_at"] = db_now()
            if retry_count < limit:
                changes["next_retry_at"] = db_in(self.settings.stage_retry_delay_seconds)
                changes["status_reason"] = outcome.reason
                return S.RETRY_SCHEDULED, changes
            changes["next_retry_at"] = None
            changes["status_reason"] = f"Retries exhausted at {stage.value} after {retry_count} attempts: {outcome.reason}"
            return S.FAILED_PERMANENTLY, changes

        # Skipped: release the claim to the furthest ready stage without spending a retry
        resume = outcome.resume_stage or Stage.STAGE1
        if STAGE_ORDER.index(resume) > STAGE_ORDER.index(stage):
            raise InvalidTransitionError(WAITING_STATUS[stage].value, WAITING_STATUS[resume].value, record.id)
        changes["current_stage"] = resume
        changes["status_reason"] = outcome.reason
        return WAITING_STATUS[resume], changes
