from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict


class AccountCredential(BaseModel):
    """One quota bucket on the profile API."""

    account_id: str
    label: Optional[str] = None
    is_active: bool = True
    daily_usage_count: int = 0
    daily_limit: int = 80
    usage_date: Optional[str] = None
    current_operation_id: Optional[str] = None
    operation_started_at: Optional[str] = None
    last_error_kind: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    @property
    def has_quota(self) -> bool:
        return self.daily_usage_count < self.daily_limit
