from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RawPost(BaseModel):
    """Ingestion shape of one scraped social post.

    Accepts the scraper's camelCase aliases; unknown keys are kept so the
    stored payload stays a faithful copy of what the producer delivered.
    """

    natural_key: Optional[str] = Field(default=None, alias="urn")
    url: Optional[str] = None
    text: Optional[str] = None
    title: Optional[str] = None
    author_name: Optional[str] = Field(default=None, alias="authorName")
    author_profile_url: Optional[str] = Field(default=None, alias="authorProfileUrl")
    author_profile_id: Optional[str] = Field(default=None, alias="authorProfileId")
    author_headline: Optional[str] = Field(default=None, alias="authorHeadline")
    author_location: Optional[str] = Field(default=None, alias="authorLocation")
    posted_at_iso: Optional[str] = Field(default=None, alias="postedAtISO")
    is_repost: bool = Field(default=False, alias="isRepost")

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _accept_natural_key(cls, data: Any) -> Any:
        if isinstance(data, dict) and "urn" not in data and "natural_key" in data:
            data = dict(data)
            data["urn"] = data.pop("natural_key")
        return data

    def to_payload(self) -> Dict[str, Any]:
        payload = self.model_dump(exclude={"natural_key"}, exclude_none=True)
        return payload
