from .record import Record, RecordStatus, Stage, STAGE_ORDER, TERMINAL_STATUSES, WAITING_STATUS
from .stage_results import (
    Categorization,
    HiringVerdict,
    Materialization,
    ProfileEnrichment,
    StageResult,
    TargetingVerdict,
)
from .lead import Lead
from .account import AccountCredential
from .raw_post import RawPost

__all__ = [
    "Record",
    "RecordStatus",
    "Stage",
    "STAGE_ORDER",
    "TERMINAL_STATUSES",
    "WAITING_STATUS",
    "Categorization",
    "HiringVerdict",
    "Materialization",
    "ProfileEnrichment",
    "StageResult",
    "TargetingVerdict",
    "Lead",
    "AccountCredential",
    "RawPost",
]
