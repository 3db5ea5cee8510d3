from __future__ import annotations

import logging

from pipelines.runner import RunContext
from sources.registry import get_source


logger = logging.getLogger(__name__)


class LoadDataset:
    """Attach the producer's lazy item sequence for one batch to the context."""

    def __init__(self, source_name: str, location: str) -> None:
        self.source_name = source_name
        self.location = location

    def run(self, ctx: RunContext) -> RunContext:
        source = get_source(self.source_name)
        ctx.items = source.iter_items(self.location)
        ctx.meta["source_name"] = getattr(source, "source_name", self.source_name)
        logger.info(f"Loading dataset {self.location}", extra={"step": "load_dataset", "run_id": ctx.batch_id})
        return ctx
