from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class HiringVerdict(BaseModel):
    """Stage 1 output: is the author actively hiring for their own company."""

    stage: Literal["stage1"] = "stage1"
    is_hiring: bool
    roles: list[str] = Field(default_factory=list)
    fallback: bool = False

    model_config = ConfigDict(extra="forbid")


class TargetingVerdict(BaseModel):
    """Stage 2 output: language / geography match."""

    stage: Literal["stage2"] = "stage2"
    is_target: bool
    language: Optional[str] = None
    location: Optional[str] = None
    fallback: bool = False

    model_config = ConfigDict(extra="forbid")


class Categorization(BaseModel):
    stage: Literal["stage3"] = "stage3"
    category: str
    selected_roles: list[str] = Field(default_factory=list)
    justification: Optional[str] = None
    fallback: bool = False

    model_config = ConfigDict(extra="forbid")


class ProfileEnrichment(BaseModel):
    stage: Literal["enrichment"] = "enrichment"
    subject_key: str
    company: Optional[str] = None
    position: Optional[str] = None
    headline: Optional[str] = None
    company_linkedin_id: Optional[str] = None
    company_website: Optional[str] = None
    source: Literal["api", "cache"] = "api"

    model_config = ConfigDict(extra="forbid")


class Materialization(BaseModel):
    stage: Literal["materialization"] = "materialization"
    lead_id: int
    created: bool

    model_config = ConfigDict(extra="forbid")


StageResult = Annotated[
    Union[HiringVerdict, TargetingVerdict, Categorization, ProfileEnrichment, Materialization],
    Field(discriminator="stage"),
]
