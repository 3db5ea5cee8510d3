# Stage executors, one per pipeline stage
from .base import OutcomeKind, StageExecutor, StageOutcome  # noqa: F401
from .classification import CategorizationStage, HiringDetectionStage, TargetingStage  # noqa: F401
from .enrichment import EnrichmentStage  # noqa: F401
from .materialization import MaterializationStage  # noqa: F401
