from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Lead(BaseModel):
    """Deduplicated downstream entity, one per subject key."""

    id: int
    subject_key: str
    author_name: Optional[str] = None
    author_profile_url: Optional[str] = None
    headline: Optional[str] = None
    company: Optional[str] = None
    company_domain: Optional[str] = None
    position: Optional[str] = None
    category: Optional[str] = None
    selected_roles: list[str] = Field(default_factory=list)
    first_record_id: Optional[int] = None
    latest_record_id: Optional[int] = None
    latest_post_url: Optional[str] = None
    latest_activity_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    model_config = ConfigDict(extra="ignore")
