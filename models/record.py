from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from models.stage_results import StageResult


class Stage(str, Enum):
    STAGE1 = "stage1"  # hiring detection
    STAGE2 = "stage2"  # language / geography targeting
    STAGE3 = "stage3"  # job categorization
    ENRICHMENT = "enrichment"
    MATERIALIZATION = "materialization"


STAGE_ORDER: list[Stage] = [
    Stage.STAGE1,
    Stage.STAGE2,
    Stage.STAGE3,
    Stage.ENRICHMENT,
    Stage.MATERIALIZATION,
]


class RecordStatus(str, Enum):
    QUEUED = "queued"
    AWAITING_STAGE2 = "awaiting_stage2"
    AWAITING_STAGE3 = "awaiting_stage3"
    AWAITING_ENRICHMENT = "awaiting_enrichment"
    AWAITING_MATERIALIZATION = "awaiting_materialization"
    PROCESSING = "processing"
    RETRY_SCHEDULED = "retry_scheduled"
    STAGE1_REJECTED = "stage1_rejected"
    STAGE2_REJECTED = "stage2_rejected"
    ENRICHMENT_FAILED = "enrichment_failed"
    MATERIALIZED = "materialized"
    DUPLICATE = "duplicate"
    ERROR = "error"
    FAILED_PERMANENTLY = "failed_permanently"


TERMINAL_STATUSES = frozenset({
    RecordStatus.STAGE1_REJECTED,
    RecordStatus.STAGE2_REJECTED,
    RecordStatus.ENRICHMENT_FAILED,
    RecordStatus.MATERIALIZED,
    RecordStatus.DUPLICATE,
    RecordStatus.ERROR,
    RecordStatus.FAILED_PERMANENTLY,
})

# Status a record sits in while waiting for a given stage to pick it up
WAITING_STATUS: Dict[Stage, RecordStatus] = {
    Stage.STAGE1: RecordStatus.QUEUED,
    Stage.STAGE2: RecordStatus.AWAITING_STAGE2,
    Stage.STAGE3: RecordStatus.AWAITING_STAGE3,
    Stage.ENRICHMENT: RecordStatus.AWAITING_ENRICHMENT,
    Stage.MATERIALIZATION: RecordStatus.AWAITING_MATERIALIZATION,
}


class Record(BaseModel):
    """App/DB record shape for one ingested post moving through the pipeline."""

    id: int
    natural_key: str
    batch_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    subject_key: Optional[str] = None
    status: RecordStatus = RecordStatus.QUEUED
    current_stage: Stage = Stage.STAGE1
    status_reason: Optional[str] = None
    stage_results: Dict[str, StageResult] = Field(default_factory=dict)
    priority: int = 5
    retry_count: int = 0
    last_retry_at: Optional[str] = None
    next_retry_at: Optional[str] = None
    materialized_entity_id: Optional[int] = None
    requalified_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def result_for(self, stage: Stage) -> Optional[StageResult]:
        return self.stage_results.get(stage.value)

    @property
    def text(self) -> str:
        return str(self.payload.get("text") or "")

    @property
    def title(self) -> str:
        return str(self.payload.get("title") or "")
