"""
Profile API client (people and company lookups) over HTTP.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from config.settings import Settings, get_settings
from pipelines.errors import (
    ErrorKind,
    PermanentExternalError,
    TransientExternalError,
    classify_http_status,
    error_for_kind,
)


logger = logging.getLogger(__name__)


class ProfileApiClient:
    """One HTTP request per call. Retrying and spacing belong to the call executor."""

    def __init__(self, settings: Optional[Settings] = None, session: Optional[requests.Session] = None):
        self.settings = settings or get_settings()
        self.base_url = self.settings.profile_api_base_url.rstrip("/")
        self.session = session or requests.Session()

    def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Accept": "application/json"}
        if self.settings.profile_api_key:
            headers["X-API-KEY"] = self.settings.profile_api_key
        url = f"{self.base_url}{path}"
        try:
            response = self.session.get(url, params=params, headers=headers, timeout=self.settings.http_timeout_seconds)
        except requests.exceptions.Timeout as e:
            raise TransientExternalError(ErrorKind.TIMEOUT, f"Timeout calling {path}: {e}")
        except requests.exceptions.RequestException as e:
            raise TransientExternalError(ErrorKind.NETWORK, f"Request error calling {path}: {e}")

        if response.status_code >= 400:
            kind = classify_http_status(response.status_code, response.text)
            logger.error(f"Profile API request failed with status {response.status_code}: {response.text[:200]}")
            raise error_for_kind(kind, f"{path} returned {response.status_code}", response.status_code)
        try:
            data = response.json()
        except ValueError:
            raise TransientExternalError(ErrorKind.PROVIDER_UNAVAILABLE, f"Non-JSON body from {path}", response.status_code)
        if not isinstance(data, dict):
            raise PermanentExternalError(ErrorKind.INVALID_REQUEST, f"Unexpected body shape from {path}")
        return data

    def scrape_profile(self, account_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        profile_id = payload.get("profile_id")
        if not profile_id:
            raise PermanentExternalError(ErrorKind.INVALID_REQUEST, "profile_id missing")
        return self._get(
            f"/users/{quote(str(profile_id), safe='')}",
            {"account_id": account_id, "linkedin_sections": "experience"},
        )

    def scrape_company(self, account_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        company_id = payload.get("company_id")
        if not company_id:
            raise PermanentExternalError(ErrorKind.INVALID_REQUEST, "company_id missing")
        return self._get(f"/linkedin/company/{quote(str(company_id), safe='')}", {"account_id": account_id})

    def operations(self) -> Dict[str, Any]:
        """Operation table for RateLimitedCallExecutor."""
        return {
            "scrape_profile": self.scrape_profile,
            "scrape_company": self.scrape_company,
        }


def current_experience(profile: Dict[str, Any]) -> Dict[str, Any]:
    """Pick the ongoing position from a profile response (no end date), else the most recent."""
    experiences = profile.get("work_experience") or (profile.get("linkedin_profile") or {}).get("experience") or []
    if not experiences:
        return {}
    for exp in experiences:
        if not exp.get("end"):
            return exp
    return experiences[0]
