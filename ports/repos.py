from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Protocol

from models.account import AccountCredential
from models.lead import Lead
from models.record import Record, RecordStatus, Stage


class RecordStorePort(Protocol):
    def insert_raw(
        self,
        natural_key: str,
        payload: Dict[str, Any],
        batch_id: Optional[str] = None,
        subject_key: Optional[str] = None,
        priority: int = 5,
    ) -> Optional[int]:
        ...

    def get(self, record_id: int) -> Optional[Record]:
        ...

    def compare_and_set(
        self,
        record_id: int,
        expected_status: RecordStatus,
        changes: Dict[str, Any],
        expected_stage: Optional[Stage] = None,
    ) -> bool:
        ...

    def select_eligible_ids(self, stage: Stage, limit: int, batch_id: Optional[str] = None, now: Optional[str] = None) -> List[int]:
        ...

    def claim(self, record_id: int, stage: Stage, now: Optional[str] = None) -> bool:
        ...

    def find_recent_enrichment(self, subject_key: str, since: str, exclude_record_id: Optional[int] = None) -> Optional[Dict[str, Any]]:
        ...

    def exists_in_later_state(self, subject_key: str, exclude_record_id: int) -> bool:
        ...

    def list_requalification_candidates(
        self,
        statuses: Iterable[RecordStatus],
        created_since: Optional[str] = None,
        batch_id: Optional[str] = None,
        after_id: int = 0,
        page_size: int = 200,
    ) -> List[Record]:
        ...

    def list_by_status(
        self,
        statuses: Iterable[RecordStatus],
        created_since: Optional[str] = None,
        batch_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Record]:
        ...

    def list_stale(self, updated_before: str, batch_id: Optional[str] = None) -> List[Record]:
        ...


class LeadStorePort(Protocol):
    def create(self, subject_key: str, record_id: int, **fields: Any) -> int:
        ...

    def merge_latest_activity(self, lead_id: int, record_id: int, post_url: Optional[str], activity_at: Optional[str] = None) -> None:
        ...

    def get_by_subject(self, subject_key: str) -> Optional[Lead]:
        ...


class AccountStorePort(Protocol):
    def get(self, account_id: str) -> Optional[AccountCredential]:
        ...

    def list_active(self) -> List[AccountCredential]:
        ...

    def claim_operation(self, account_id: str, operation_id: str) -> bool:
        ...

    def release_operation(self, account_id: str, operation_id: str) -> bool:
        ...

    def has_quota(self, account_id: str) -> bool:
        ...

    def reserve_call(self, account_id: str) -> bool:
        ...

    def mark_last_error(self, account_id: str, error_kind: Optional[str]) -> None:
        ...

    def force_release_stale(self, started_before: str) -> List[str]:
        ...


class EventLogPort(Protocol):
    def append(
        self,
        event_type: str,
        record_id: Optional[int] = None,
        stage: Optional[str] = None,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        outcome: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> int:
        ...
