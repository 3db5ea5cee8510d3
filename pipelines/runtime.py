from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from config.settings import Settings, get_settings
from db.repos.accounts_repo import AccountsRepo
from db.repos.events_repo import EventsRepo
from db.repos.leads_repo import LeadsRepo
from db.repos.records_repo import RecordsRepo
from models.record import Stage
from pipelines.dispatcher import Dispatcher
from pipelines.queue_manager import QueueManager
from pipelines.recovery import RecoveryController
from pipelines.stages import (
    CategorizationStage,
    EnrichmentStage,
    HiringDetectionStage,
    MaterializationStage,
    TargetingStage,
)
from pipelines.workflow import WorkflowOrchestrator
from ports.llm import LLMClientPort
from services.call_executor import RateLimitedCallExecutor
from services.llm_client import LLMClient
from services.profile_api import ProfileApiClient
from services.rate_limiter import AccountRateLimiter


STUB_ACCOUNT_ID = "stub-account"


def stub_profile_operations() -> Dict[str, Callable[[str, Dict[str, Any]], Dict[str, Any]]]:
    # Placeholder profile API for local test runs; no network
    def _profile(account_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return {"provider_id": payload.get("profile_id"), "headline": None, "work_experience": []}

    def _company(account_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return {"id": payload.get("company_id"), "website": None}

    return {"scrape_profile": _profile, "scrape_company": _company}


@dataclass
class Runtime:
    records: RecordsRepo
    leads: LeadsRepo
    accounts: AccountsRepo
    events: EventsRepo
    executor: RateLimitedCallExecutor
    orchestrator: WorkflowOrchestrator
    queue_manager: QueueManager
    recovery: RecoveryController

    def dispatcher(self, workers: int) -> Dispatcher:
        return Dispatcher(self.records, self.queue_manager, self.orchestrator, self.events, workers=workers)


def _resolve_llm(settings: Settings) -> Optional[LLMClientPort]:
    provider = (settings.ai_provider or "stub").lower()
    if settings.ai_enabled and provider == "openai":
        return LLMClient(settings)
    # Heuristic-only classification allowed only in test environment
    if (settings.run_env or "").lower() != "test":
        raise RuntimeError("Stub classification provider is only allowed when RUN_ENV=test")
    return None


def build_runtime(
    conn: sqlite3.Connection,
    settings: Optional[Settings] = None,
    llm: Optional[LLMClientPort] = None,
    profile_operations: Optional[Dict[str, Callable[[str, Dict[str, Any]], Dict[str, Any]]]] = None,
    limiter: Optional[AccountRateLimiter] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> Runtime:
    """Wire repositories, stage executors and controllers around one connection."""
    settings = settings or get_settings()
    records = RecordsRepo(conn)
    leads = LeadsRepo(conn)
    accounts = AccountsRepo(conn)
    events = EventsRepo(conn)

    for account_id in settings.profile_accounts:
        accounts.upsert_account(account_id, daily_limit=settings.account_daily_limit)

    if profile_operations is None:
        if settings.profile_api_key:
            profile_operations = ProfileApiClient(settings).operations()
        elif (settings.run_env or "").lower() == "test":
            profile_operations = stub_profile_operations()
            if not settings.profile_accounts:
                accounts.upsert_account(STUB_ACCOUNT_ID, label="stub", daily_limit=settings.account_daily_limit)
        else:
            raise RuntimeError("PROFILE_API_KEY required outside RUN_ENV=test")

    if llm is None:
        llm = _resolve_llm(settings)

    executor_kwargs: Dict[str, Any] = {}
    if sleep is not None:
        executor_kwargs["sleep"] = sleep
    executor = RateLimitedCallExecutor(accounts, profile_operations, limiter=limiter, settings=settings, **executor_kwargs)

    stages = {
        Stage.STAGE1: HiringDetectionStage(llm, settings),
        Stage.STAGE2: TargetingStage(llm, settings),
        Stage.STAGE3: CategorizationStage(llm, settings),
        Stage.ENRICHMENT: EnrichmentStage(records, executor, settings),
        Stage.MATERIALIZATION: MaterializationStage(leads),
    }
    orchestrator = WorkflowOrchestrator(records, events, settings)
    qm_kwargs: Dict[str, Any] = {}
    if sleep is not None:
        qm_kwargs["sleep"] = sleep
    queue_manager = QueueManager(records, orchestrator, stages, settings, **qm_kwargs)
    recovery = RecoveryController(records, leads, accounts, events, settings)
    return Runtime(
        records=records,
        leads=leads,
        accounts=accounts,
        events=events,
        executor=executor,
        orchestrator=orchestrator,
        queue_manager=queue_manager,
        recovery=recovery,
    )
