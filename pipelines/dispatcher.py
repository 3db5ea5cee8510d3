from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import List, Optional, Union

from models.record import Stage, STAGE_ORDER
from pipelines.queue_manager import QueueManager
from pipelines.stages.base import StageOutcome
from pipelines.workflow import WorkflowOrchestrator
from ports.repos import EventLogPort, RecordStorePort


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StageReady:
    record_id: int
    stage: Stage


@dataclass(frozen=True)
class StageCompleted:
    record_id: int
    stage: Stage
    outcome: StageOutcome


Event = Union[StageReady, StageCompleted]

_STOP = object()


class Dispatcher:
    """Message-passing stage chaining.

    A worker that finishes a stage only enqueues `StageCompleted`; applying the
    transition enqueues `StageReady` for the next stage. No worker ever waits
    on another record's next stage. A failed handler leaves the record in its
    durable state for the recovery sweep.
    """

    def __init__(
        self,
        records: RecordStorePort,
        queue_manager: QueueManager,
        orchestrator: WorkflowOrchestrator,
        events: EventLogPort,
        workers: int = 4,
    ) -> None:
        self.records = records
        self.queue_manager = queue_manager
        self.orchestrator = orchestrator
        self.events = events
        self.workers = max(1, workers)
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._threads: List[threading.Thread] = []
        self.handled = 0
        self.failed = 0
        self._lock = threading.Lock()

    def submit(self, event: Event) -> None:
        if isinstance(event, StageReady):
            self.events.append("stage_ready", record_id=event.record_id, stage=event.stage.value)
        else:
            self.events.append(
                "stage_completed",
                record_id=event.record_id,
                stage=event.stage.value,
                outcome=event.outcome.kind.value,
                detail=event.outcome.reason,
            )
        self._queue.put(event)

    def seed(self, stages: Optional[List[Stage]] = None, batch_id: Optional[str] = None, limit: int = 50) -> int:
        """Enqueue StageReady for every currently eligible record."""
        count = 0
        for stage in stages or STAGE_ORDER:
            for record_id in self.records.select_eligible_ids(stage, limit, batch_id):
                self.submit(StageReady(record_id, stage))
                count += 1
        return count

    def _handle(self, event: Event) -> None:
        if isinstance(event, StageReady):
            if not self.records.claim(event.record_id, event.stage):
                logger.info("Record not claimable; dropping ready event", extra={"step": event.stage.value, "record_id": event.record_id})
                return
            record = self.records.get(event.record_id)
            if record is None:
                return
            outcome = self.queue_manager.run_stage_for(event.stage, record)
            self.submit(StageCompleted(event.record_id, event.stage, outcome))
            return

        result = self.orchestrator.apply(event.record_id, event.stage, event.outcome)
        if result is not None and result.ready_stage is not None:
            self.submit(StageReady(event.record_id, result.ready_stage))

    def _worker(self) -> None:
        while True:
            event = self._queue.get()
            try:
                if event is _STOP:
                    return
                self._handle(event)  # type: ignore[arg-type]
                with self._lock:
                    self.handled += 1
            except Exception as exc:
                with self._lock:
                    self.failed += 1
                record_id = getattr(event, "record_id", None)
                stage = getattr(event, "stage", None)
                logger.exception("Dispatch handler failed", extra={"record_id": record_id, "error": str(exc)})
                self.events.append(
                    "dispatch_failed",
                    record_id=record_id,
                    stage=stage.value if stage else None,
                    detail=str(exc),
                )
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self._threads:
            return
        for i in range(self.workers):
            t = threading.Thread(target=self._worker, name=f"dispatch-{i}", daemon=True)
            t.start()
            self._threads.append(t)

    def stop(self) -> None:
        for _ in self._threads:
            self._queue.put(_STOP)
        for t in self._threads:
            t.join()
        self._threads = []

    def run_until_idle(self, batch_id: Optional[str] = None, limit: int = 50) -> int:
        """Seed eligible records, run workers until the queue drains; returns events handled."""
        # Seed before workers start so a record advanced mid-seed is not enqueued twice
        self.seed(batch_id=batch_id, limit=limit)
        self.start()
        try:
            self._queue.join()
        finally:
            self.stop()
        return self.handled
