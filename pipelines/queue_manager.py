from __future__ import annotations

import logging
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from config.settings import Settings, get_settings
from models.record import Record, Stage, STAGE_ORDER
from pipelines.errors import PipelineError
from pipelines.stages.base import StageExecutor, StageOutcome
from pipelines.workflow import TransitionResult, WorkflowOrchestrator
from ports.repos import RecordStorePort


logger = logging.getLogger(__name__)


@dataclass
class BatchReport:
    stage: Stage
    selected: int = 0
    outcomes: Counter = field(default_factory=Counter)
    statuses: Counter = field(default_factory=Counter)
    failures: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "stage": self.stage.value,
            "selected": self.selected,
            "outcomes": dict(self.outcomes),
            "statuses": dict(self.statuses),
            "failures": self.failures,
        }


class QueueManager:
    """Select, claim and run batches of records for one stage at a time."""

    def __init__(
        self,
        records: RecordStorePort,
        orchestrator: WorkflowOrchestrator,
        stages: Dict[Stage, StageExecutor],
        settings: Optional[Settings] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.records = records
        self.orchestrator = orchestrator
        self.stages = stages
        self.settings = settings or get_settings()
        self._sleep = sleep

    def select_batch(self, stage: Stage, max_size: int, batch_id: Optional[str] = None) -> List[Record]:
        """Claim up to `max_size` eligible records for `stage`, in queue order."""
        claimed: List[Record] = []
        for record_id in self.records.select_eligible_ids(stage, max_size, batch_id):
            if not self.records.claim(record_id, stage):
                # Another worker took it between select and claim
                continue
            record = self.records.get(record_id)
            if record is not None:
                claimed.append(record)
        return claimed

    def run_stage_for(self, stage: Stage, record: Record) -> StageOutcome:
        """Run the stage executor for one claimed record; never raises."""
        try:
            return self.stages[stage].run(record)
        except Exception as exc:  # isolate one record from its siblings
            logger.exception(
                "Stage crashed",
                extra={"step": stage.value, "record_id": record.id, "error": str(exc)},
            )
            return StageOutcome.permanent(f"Unexpected error: {exc}")

    def process_record(self, stage: Stage, record: Record) -> Optional[TransitionResult]:
        outcome = self.run_stage_for(stage, record)
        return self.orchestrator.apply(record.id, stage, outcome)

    def process_batch(self, stage: Stage, records: List[Record]) -> BatchReport:
        report = BatchReport(stage=stage, selected=len(records))
        size = max(1, self.settings.concurrency)
        chunks = [records[i : i + size] for i in range(0, len(records), size)]
        with ThreadPoolExecutor(max_workers=size) as pool:
            for idx, chunk in enumerate(chunks):
                futures = [(rec, pool.submit(self.process_record, stage, rec)) for rec in chunk]
                for rec, fut in futures:
                    try:
                        result = fut.result()
                    except PipelineError as exc:
                        report.failures += 1
                        logger.error(
                            "Transition failed",
                            extra={"step": stage.value, "record_id": rec.id, "error": str(exc)},
                        )
                        continue
                    if result is None:
                        report.outcomes["noop"] += 1
                        continue
                    report.outcomes[result.outcome.value] += 1
                    report.statuses[result.to_status.value] += 1
                if idx + 1 < len(chunks) and self.settings.sub_batch_pause_seconds > 0:
                    self._sleep(self.settings.sub_batch_pause_seconds)
        logger.info(
            f"Processed {report.selected} records",
            extra={"step": stage.value, "status": dict(report.statuses)},
        )
        return report

    def run_stage(self, stage: Stage, max_size: Optional[int] = None, batch_id: Optional[str] = None) -> BatchReport:
        batch = self.select_batch(stage, max_size or self.settings.batch_size, batch_id)
        if not batch:
            return BatchReport(stage=stage)
        return self.process_batch(stage, batch)

    def drain(self, batch_id: Optional[str] = None, max_rounds: int = 100) -> Dict[str, Dict[str, int]]:
        """Run every stage in order until nothing is eligible; returns per-stage status totals."""
        totals: Dict[str, Counter] = {s.value: Counter() for s in STAGE_ORDER}
        for _ in range(max_rounds):
            progressed = False
            for stage in STAGE_ORDER:
                report = self.run_stage(stage, batch_id=batch_id)
                if report.selected:
                    progressed = True
                    totals[stage.value].update(report.statuses)
            if not progressed:
                break
        return {k: dict(v) for k, v in totals.items()}
