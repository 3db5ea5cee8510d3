from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol

from utils.logging_setup import init_logging


logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """State handed from one ingestion step to the next for a single batch."""

    batch_id: Optional[str] = None
    items: Iterable[Any] = field(default_factory=list)
    posts: list = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)


class Step(Protocol):
    def run(self, ctx: RunContext) -> RunContext:
        ...


class Pipeline:
    def __init__(self, steps: List[Step]):
        self.steps = steps

    def run(self, ctx: RunContext) -> RunContext:
        # Make logging idempotent for any direct runner use
        init_logging()
        for step in self.steps:
            name = type(step).__name__
            t0 = time.time()
            ctx = step.run(ctx)
            logger.debug(
                f"{name} finished",
                extra={"step": name, "run_id": ctx.batch_id, "duration_ms": int((time.time() - t0) * 1000)},
            )
        return ctx
