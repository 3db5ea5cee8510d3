from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Protocol

from models.record import Record, Stage, STAGE_ORDER
from models.stage_results import Categorization, HiringVerdict, ProfileEnrichment, StageResult, TargetingVerdict
from pipelines.errors import PermanentExternalError, TransientExternalError


logger = logging.getLogger(__name__)


class OutcomeKind(str, Enum):
    COMPLETED = "completed"
    REJECTED = "rejected"
    SKIPPED = "skipped"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class StageOutcome:
    kind: OutcomeKind
    result: Optional[StageResult] = None
    reason: Optional[str] = None
    resume_stage: Optional[Stage] = None
    error_kind: Optional[str] = None

    @classmethod
    def completed(cls, result: StageResult) -> "StageOutcome":
        return cls(OutcomeKind.COMPLETED, result=result)

    @classmethod
    def rejected(cls, result: Optional[StageResult], reason: str) -> "StageOutcome":
        return cls(OutcomeKind.REJECTED, result=result, reason=reason)

    @classmethod
    def skipped(cls, resume_stage: Stage, reason: str) -> "StageOutcome":
        return cls(OutcomeKind.SKIPPED, reason=reason, resume_stage=resume_stage)

    @classmethod
    def transient(cls, reason: str, error_kind: Optional[str] = None) -> "StageOutcome":
        return cls(OutcomeKind.TRANSIENT, reason=reason, error_kind=error_kind)

    @classmethod
    def permanent(cls, reason: str, error_kind: Optional[str] = None) -> "StageOutcome":
        return cls(OutcomeKind.PERMANENT, reason=reason, error_kind=error_kind)


def _stage1_positive(record: Record) -> bool:
    verdict = record.result_for(Stage.STAGE1)
    return isinstance(verdict, HiringVerdict) and verdict.is_hiring


def _stage2_positive(record: Record) -> bool:
    verdict = record.result_for(Stage.STAGE2)
    return isinstance(verdict, TargetingVerdict) and verdict.is_target


def _categorized(record: Record) -> bool:
    return isinstance(record.result_for(Stage.STAGE3), Categorization)


def _enriched(record: Record) -> bool:
    return isinstance(record.result_for(Stage.ENRICHMENT), ProfileEnrichment)


# Own requirement of each stage; a stage is ready when it and every earlier one hold
_OWN_PRECONDITION: Dict[Stage, Callable[[Record], bool]] = {
    Stage.STAGE1: lambda record: True,
    Stage.STAGE2: _stage1_positive,
    Stage.STAGE3: _stage2_positive,
    Stage.ENRICHMENT: _categorized,
    Stage.MATERIALIZATION: _enriched,
}


def precondition_holds(stage: Stage, record: Record) -> bool:
    for s in STAGE_ORDER[: STAGE_ORDER.index(stage) + 1]:
        if not _OWN_PRECONDITION[s](record):
            return False
    return True


def furthest_ready_stage(record: Record, upto: Stage) -> Stage:
    """Latest stage, not past `upto`, whose precondition chain holds for the record."""
    ready = Stage.STAGE1
    for s in STAGE_ORDER[: STAGE_ORDER.index(upto) + 1]:
        if not _OWN_PRECONDITION[s](record):
            break
        ready = s
    return ready


class StageExecutor(Protocol):
    stage: Stage

    def run(self, record: Record) -> StageOutcome:
        ...


class BaseStage:
    """Precondition gate plus error mapping around a stage's `execute`."""

    stage: Stage

    def run(self, record: Record) -> StageOutcome:
        if not precondition_holds(self.stage, record):
            resume = furthest_ready_stage(record, self.stage)
            return StageOutcome.skipped(resume, f"{self.stage.value} precondition unmet; resume at {resume.value}")
        try:
            return self.execute(record)
        except TransientExternalError as exc:
            logger.info(
                "Stage hit a transient failure",
                extra={"step": self.stage.value, "record_id": record.id, "error": exc.kind.value},
            )
            return StageOutcome.transient(f"{exc.kind.value}: {exc}", exc.kind.value)
        except PermanentExternalError as exc:
            logger.warning(
                "Stage hit a permanent failure",
                extra={"step": self.stage.value, "record_id": record.id, "error": exc.kind.value},
            )
            return StageOutcome.permanent(f"{exc.kind.value}: {exc}", exc.kind.value)

    def execute(self, record: Record) -> StageOutcome:
        raise NotImplementedError
