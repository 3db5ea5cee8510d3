from __future__ import annotations

import pytest
import requests

from config.settings import Settings
from pipelines.errors import ErrorKind, PermanentExternalError, TransientExternalError
from services.profile_api import ProfileApiClient, current_experience


class FakeResponse:
    def __init__(self, status_code: int, body=None, text: str = ""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        if self.exc is not None:
            raise self.exc
        return self.response


def _client(session) -> ProfileApiClient:
    settings = Settings(run_env="test", profile_api_base_url="https://api.example.com/v1/", profile_api_key="k-123")
    return ProfileApiClient(settings, session=session)


def test_scrape_profile_builds_request():
    session = FakeSession(FakeResponse(200, {"provider_id": "jane"}))
    data = _client(session).scrape_profile("acct-1", {"profile_id": "jane-doe"})

    assert data == {"provider_id": "jane"}
    call = session.calls[0]
    assert call["url"] == "https://api.example.com/v1/users/jane-doe"
    assert call["params"] == {"account_id": "acct-1", "linkedin_sections": "experience"}
    assert call["headers"]["X-API-KEY"] == "k-123"


def test_scrape_company_path():
    session = FakeSession(FakeResponse(200, {"website": "https://acme.com"}))
    _client(session).scrape_company("acct-1", {"company_id": "123"})
    assert session.calls[0]["url"] == "https://api.example.com/v1/linkedin/company/123"


@pytest.mark.parametrize(
    "status, body, kind, transient",
    [
        (429, "slow down", ErrorKind.RATE_LIMITED, True),
        (503, "", ErrorKind.PROVIDER_UNAVAILABLE, True),
        (400, '{"type": "errors/provider_error"}', ErrorKind.PROVIDER_UNAVAILABLE, True),
        (401, "", ErrorKind.AUTH_ERROR, False),
        (404, "", ErrorKind.NOT_FOUND, False),
        (422, "", ErrorKind.INVALID_REQUEST, False),
    ],
)
def test_http_errors_are_classified(status, body, kind, transient):
    session = FakeSession(FakeResponse(status, None, body))
    expected = TransientExternalError if transient else PermanentExternalError
    with pytest.raises(expected) as info:
        _client(session).scrape_profile("acct-1", {"profile_id": "x"})
    assert info.value.kind == kind
    assert info.value.status_code == status


def test_timeouts_and_network_errors_are_transient():
    with pytest.raises(TransientExternalError) as info:
        _client(FakeSession(exc=requests.exceptions.Timeout("slow"))).scrape_profile("a", {"profile_id": "x"})
    assert info.value.kind == ErrorKind.TIMEOUT

    with pytest.raises(TransientExternalError) as info:
        _client(FakeSession(exc=requests.exceptions.ConnectionError("down"))).scrape_profile("a", {"profile_id": "x"})
    assert info.value.kind == ErrorKind.NETWORK


def test_missing_identifier_is_permanent():
    with pytest.raises(PermanentExternalError):
        _client(FakeSession()).scrape_profile("a", {})


def test_current_experience_prefers_ongoing_position():
    profile = {
        "work_experience": [
            {"company": "Old Co", "position": "Dev", "end": "2020-01"},
            {"company": "Acme", "position": "CTO", "end": None},
        ]
    }
    assert current_experience(profile)["company"] == "Acme"
    assert current_experience({"work_experience": [{"company": "Old", "end": "2019"}]})["company"] == "Old"
    assert current_experience({}) == {}
