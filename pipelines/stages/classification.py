from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, TypeVar

from config.settings import Settings, get_settings
from models.record import Record, Stage
from models.stage_results import Categorization, HiringVerdict, TargetingVerdict
from pipelines.errors import ClassificationParseError
from pipelines.stages.base import BaseStage, StageOutcome
from ports.llm import LLMClientPort
from services import classifiers


logger = logging.getLogger(__name__)

T = TypeVar("T")


class _ClassificationStage(BaseStage):
    """Ask the classifier; on an unparseable reply use the keyword heuristic instead.

    With no LLM client configured the heuristic is the classifier.
    """

    use_case: str = ""

    def __init__(self, llm: Optional[LLMClientPort] = None, settings: Optional[Settings] = None) -> None:
        self.llm = llm
        self.settings = settings or get_settings()

    def system_prompt(self) -> str:
        raise NotImplementedError

    def _classify(
        self,
        record: Record,
        user_prompt: str,
        parse: Callable[[Dict[str, Any]], T],
        fallback: Callable[[], T],
    ) -> T:
        if self.llm is None:
            return fallback()
        try:
            data = self.llm.classify(
                use_case=self.use_case,
                system_prompt=self.system_prompt(),
                user_prompt=user_prompt,
                record_id=record.id,
            )
            return parse(data)
        except ClassificationParseError as exc:
            logger.warning(
                "Classifier reply unusable; using heuristic",
                extra={"step": self.stage.value, "record_id": record.id, "error": str(exc)},
            )
            return fallback()


class HiringDetectionStage(_ClassificationStage):
    stage = Stage.STAGE1
    use_case = "hiring_detection"

    def system_prompt(self) -> str:
        return classifiers.HIRING_SYSTEM_PROMPT

    def execute(self, record: Record) -> StageOutcome:
        if not record.text.strip():
            return StageOutcome.rejected(HiringVerdict(is_hiring=False), "Post has no text")
        verdict = self._classify(
            record,
            classifiers.build_post_prompt(record.payload),
            classifiers.parse_hiring_reply,
            lambda: classifiers.detect_hiring(record.text, record.title),
        )
        if not verdict.is_hiring:
            return StageOutcome.rejected(verdict, "Not an in-house hiring post")
        return StageOutcome.completed(verdict)


class TargetingStage(_ClassificationStage):
    stage = Stage.STAGE2
    use_case = "targeting"

    def system_prompt(self) -> str:
        return (
            classifiers.TARGETING_SYSTEM_PROMPT
            .replace("{languages}", ", ".join(self.settings.target_languages))
            .replace("{locations}", ", ".join(self.settings.target_locations))
        )

    def execute(self, record: Record) -> StageOutcome:
        verdict: TargetingVerdict = self._classify(
            record,
            classifiers.build_post_prompt(record.payload),
            classifiers.parse_targeting_reply,
            lambda: classifiers.detect_targeting(
                record.payload, self.settings.target_languages, self.settings.target_locations
            ),
        )
        if not verdict.is_target:
            return StageOutcome.rejected(
                verdict,
                f"Outside target markets (language={verdict.language or 'unknown'}, location={verdict.location or 'unknown'})",
            )
        return StageOutcome.completed(verdict)


class CategorizationStage(_ClassificationStage):
    stage = Stage.STAGE3
    use_case = "categorization"

    def system_prompt(self) -> str:
        return classifiers.CATEGORIZATION_SYSTEM_PROMPT.format(categories=", ".join(classifiers.CATEGORIES))

    def execute(self, record: Record) -> StageOutcome:
        hiring = record.result_for(Stage.STAGE1)
        roles = list(hiring.roles) if isinstance(hiring, HiringVerdict) else []
        result: Categorization = self._classify(
            record,
            classifiers.build_post_prompt(record.payload, {"Roles": ", ".join(roles) or "none listed"}),
            classifiers.parse_categorization_reply,
            lambda: classifiers.categorize(roles, record.text),
        )
        return StageOutcome.completed(result)
