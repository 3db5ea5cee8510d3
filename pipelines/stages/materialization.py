from __future__ import annotations

import logging

from models.record import Record, Stage
from models.stage_results import Categorization, Materialization, ProfileEnrichment
from pipelines.errors import DuplicateSubjectError, ErrorKind, PermanentExternalError
from pipelines.stages.base import BaseStage, StageOutcome
from ports.repos import LeadStorePort
from services.domain_utils import extract_apex_domain
from utils.clock import db_now, from_iso, to_db


logger = logging.getLogger(__name__)


class MaterializationStage(BaseStage):
    """Create the Lead for the record's subject, or fold the record into the existing one."""

    stage = Stage.MATERIALIZATION

    def __init__(self, leads: LeadStorePort) -> None:
        self.leads = leads

    def execute(self, record: Record) -> StageOutcome:
        enrichment = record.result_for(Stage.ENRICHMENT)
        if not isinstance(enrichment, ProfileEnrichment):
            raise PermanentExternalError(ErrorKind.INVALID_REQUEST, "enrichment result missing")
        category = record.result_for(Stage.STAGE3)
        payload = record.payload
        posted = from_iso(payload.get("posted_at_iso"))
        activity_at = to_db(posted) if posted else db_now()

        try:
            lead_id = self.leads.create(
                enrichment.subject_key,
                record.id,
                author_name=payload.get("author_name"),
                author_profile_url=payload.get("author_profile_url"),
                headline=enrichment.headline or payload.get("author_headline"),
                company=enrichment.company,
                company_domain=extract_apex_domain(enrichment.company_website),
                position=enrichment.position,
                category=category.category if isinstance(category, Categorization) else None,
                selected_roles=list(category.selected_roles) if isinstance(category, Categorization) else [],
                post_url=payload.get("url"),
                activity_at=activity_at,
            )
        except DuplicateSubjectError as dup:
            if dup.first_record_id == record.id:
                # Re-delivery of the record that created the lead
                return StageOutcome.completed(Materialization(lead_id=dup.lead_id, created=True))
            self.leads.merge_latest_activity(dup.lead_id, record.id, payload.get("url"), activity_at)
            logger.info(
                "Subject already has a lead; merged latest activity",
                extra={"step": self.stage.value, "record_id": record.id},
            )
            return StageOutcome.completed(Materialization(lead_id=dup.lead_id, created=False))
        return StageOutcome.completed(Materialization(lead_id=lead_id, created=True))
