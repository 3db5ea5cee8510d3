from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from config.settings import Settings, get_settings
from models.record import Record, Stage
from models.stage_results import ProfileEnrichment
from pipelines.errors import ExternalCallError
from pipelines.stages.base import BaseStage, StageOutcome
from ports.repos import RecordStorePort
from services.call_executor import RateLimitedCallExecutor
from services.profile_api import current_experience
from utils.clock import db_ago


logger = logging.getLogger(__name__)


def profile_identifier(record: Record) -> Optional[str]:
    """Identifier the profile API understands: the scraped provider id, else the URL slug."""
    profile_id = record.payload.get("author_profile_id")
    if profile_id:
        return str(profile_id)
    key = record.subject_key or ""
    if key.startswith("id:"):
        return key[3:]
    if "/in/" in key:
        return key.rsplit("/in/", 1)[1] or None
    return None


class EnrichmentStage(BaseStage):
    stage = Stage.ENRICHMENT

    def __init__(
        self,
        records: RecordStorePort,
        executor: RateLimitedCallExecutor,
        settings: Optional[Settings] = None,
    ) -> None:
        self.records = records
        self.executor = executor
        self.settings = settings or get_settings()

    def execute(self, record: Record) -> StageOutcome:
        if not record.subject_key:
            return StageOutcome.permanent("No author identity to enrich")

        cached = self.records.find_recent_enrichment(
            record.subject_key,
            since=db_ago(days=self.settings.enrichment_cache_days),
            exclude_record_id=record.id,
        )
        if cached:
            logger.info("Reusing recent enrichment", extra={"step": self.stage.value, "record_id": record.id})
            data = dict(cached)
            data["source"] = "cache"
            return StageOutcome.completed(ProfileEnrichment.model_validate(data))

        profile_id = profile_identifier(record)
        if not profile_id:
            return StageOutcome.permanent("No profile identifier for the author")

        account_id = self.executor.pick_account()
        profile = self.executor.execute(account_id, "scrape_profile", {"profile_id": profile_id}, record_id=record.id)
        result = self._from_profile(record.subject_key, profile)
        if result.company_linkedin_id:
            result = self._with_company(account_id, record, result)
        return StageOutcome.completed(result)

    @staticmethod
    def _from_profile(subject_key: str, profile: Dict[str, Any]) -> ProfileEnrichment:
        exp = current_experience(profile)
        return ProfileEnrichment(
            subject_key=subject_key,
            company=exp.get("company") or None,
            position=exp.get("position") or exp.get("title") or None,
            headline=profile.get("headline") or None,
            company_linkedin_id=(str(exp["company_id"]) if exp.get("company_id") else None),
            source="api",
        )

    def _with_company(self, account_id: str, record: Record, result: ProfileEnrichment) -> ProfileEnrichment:
        # Company website is optional; a failed lookup keeps the profile result
        try:
            company = self.executor.execute(
                account_id,
                "scrape_company",
                {"company_id": result.company_linkedin_id},
                record_id=record.id,
            )
        except ExternalCallError as exc:
            logger.warning(
                "Company lookup failed; keeping profile data",
                extra={"step": self.stage.value, "record_id": record.id, "error": exc.kind.value},
            )
            return result
        website = company.get("website") or company.get("websiteUrl")
        return result.model_copy(update={"company_website": website or None})
