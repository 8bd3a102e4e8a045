from __future__ import annotations

import pytest
import requests

from towdesk_client.api_client import ApiClient, ApiError
from towdesk_client.config import load_config


class _FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.headers = {"Content-Type": "application/json"} if payload is not None else {}
        self.content = b""
        self.text = "" if payload is None else str(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("no body")
        return self._payload


@pytest.fixture()
def calls(monkeypatch):
    recorded = []
    responses = []

    def fake_request(method, url, **kwargs):
        recorded.append((method, url, kwargs))
        return responses.pop(0)

    monkeypatch.setattr(requests, "request", fake_request)
    return recorded, responses


PROFILE = {
    "user_id": "u-1",
    "name": "Eve",
    "username": "eve",
    "email": "eve@towdesk.test",
    "phone": None,
    "role": "employee",
    "clocked_in": False,
    "created_at": "2024-01-01T00:00:00+00:00",
}


def test_login_stores_token_and_sends_bearer(calls):
    recorded, responses = calls
    responses.append(_FakeResponse(payload={"access_token": "abc", "token_type": "bearer", "profile": PROFILE}))
    responses.append(_FakeResponse(payload=[]))

    client = ApiClient("http://towdesk.local/")
    profile = client.login("eve", "secret123")
    assert profile.role == "employee"
    assert client.token == "abc"

    assert client.list_reports(status="open", mine=True) == []
    method, url, kwargs = recorded[1]
    assert (method, url) == ("GET", "http://towdesk.local/reports")
    assert kwargs["headers"]["Authorization"] == "Bearer abc"
    assert kwargs["params"] == {"status": "open", "mine": "true"}


def test_error_response_raises_api_error_with_detail(calls):
    _, responses = calls
    responses.append(_FakeResponse(status_code=409, payload={"detail": "Already clocked in"}))

    client = ApiClient("http://towdesk.local", token="abc")
    with pytest.raises(ApiError) as excinfo:
        client.clock_in()
    assert excinfo.value.status_code == 409
    assert "Already clocked in" in str(excinfo.value)


def test_report_actions_parse_reports(calls):
    recorded, responses = calls
    report = {
        "id": 4,
        "title": "Highway breakdown",
        "type": "tow",
        "status": "en_route",
        "location": "I-95 mile 12",
        "assigned_to": "u-1",
        "assignee_name": "Eve",
        "created_at": "2024-01-01T10:00:00+00:00",
    }
    responses.append(_FakeResponse(payload=report))

    parsed = ApiClient("http://towdesk.local", token="abc").set_report_status(4, "en_route")
    assert parsed.status == "en_route"
    assert parsed.created_at.year == 2024
    assert recorded[0][2]["json"] == {"status": "en_route"}


def test_application_status_not_found(calls):
    _, responses = calls
    responses.append(_FakeResponse(payload={"found": False, "application": None}))
    assert ApiClient("http://towdesk.local").check_application_status("TOW00000000") is None


def test_logout_clears_token_on_204(calls):
    _, responses = calls
    responses.append(_FakeResponse(status_code=204))
    client = ApiClient("http://towdesk.local", token="abc")
    client.logout()
    assert client.token is None


def test_load_config_reads_environment(monkeypatch):
    monkeypatch.setenv("TOWDESK_API_BASE_URL", "http://dispatch:9000")
    monkeypatch.setenv("TOWDESK_TIMEOUT", "5")
    config = load_config()
    assert config.api_base_url == "http://dispatch:9000"
    assert config.timeout_seconds == 5
