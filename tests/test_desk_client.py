"""Tests for the Zoho Desk client request, paging and metrics behaviour."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock
import sys

import pytest
from requests import HTTPError

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from desk_insights import desk_client
from desk_insights.desk_client import DeskAPIError, DeskAuth, DeskClient
from desk_insights.reconcile import TicketRecord


def _mock_response(
    payload: Optional[Any] = None,
    status_code: int = 200,
    headers: Optional[Dict[str, str]] = None,
) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.reason = ""
    response.text = ""
    response.content = b"{}" if payload is not None else b""
    response.json.return_value = payload if payload is not None else {}
    if status_code >= 400:
        response.raise_for_status.side_effect = HTTPError(response=response)
    else:
        response.raise_for_status.return_value = None
    return response


def _client(**kwargs: Any) -> DeskClient:
    kwargs.setdefault("auth", DeskAuth(access_token="token-1"))
    kwargs.setdefault("min_request_interval", 0)
    client = DeskClient(**kwargs)
    client.session = MagicMock()
    return client


@pytest.fixture
def sleeps(monkeypatch) -> List[float]:
    recorded: List[float] = []
    monkeypatch.setattr(desk_client.time, "sleep", recorded.append)
    return recorded


@pytest.mark.parametrize(
    "base_url",
    [
        "https://desk.zoho.com",
        "https://desk.zoho.com/",
        "https://desk.zoho.com/api/v1",
        "https://desk.zoho.com/api/v1/",
    ],
)
def test_request_url_normalisation(base_url: str) -> None:
    client = _client(base_url=base_url)
    client.session.request.return_value = _mock_response({})

    client._request("GET", "/api/v1/tickets")

    method, url = client.session.request.call_args[0]
    assert method == "GET"
    assert url == "https://desk.zoho.com/api/v1/tickets"
    headers = client.session.request.call_args[1]["headers"]
    assert headers == {"Authorization": "Zoho-oauthtoken token-1"}


def test_org_id_header_is_set_on_session() -> None:
    client = DeskClient(auth=DeskAuth(access_token="t"), org_id="12345")
    assert client.session.headers["orgId"] == "12345"


def test_empty_body_returns_empty_dict() -> None:
    client = _client()
    client.session.request.return_value = _mock_response(None, status_code=204)
    assert client._request("GET", "/api/v1/tickets") == {}


def test_active_tickets_page_from_one_until_short_batch() -> None:
    client = _client(per_page=2)
    client.session.request.side_effect = [
        _mock_response({"data": [{"id": "1"}, {"id": "2"}]}),
        _mock_response({"data": [{"id": "3"}]}),
    ]
    progress: List[int] = []

    tickets = list(
        client.iter_tickets(department_id="10", progress_callback=lambda done, total: progress.append(done))
    )

    assert [ticket["id"] for ticket in tickets] == ["1", "2", "3"]
    params = [call[1]["params"] for call in client.session.request.call_args_list]
    assert params == [
        {"from": 1, "limit": 2, "departmentId": "10"},
        {"from": 3, "limit": 2, "departmentId": "10"},
    ]
    assert progress == [2, 3]


def test_archived_tickets_start_at_zero_and_respect_cap() -> None:
    client = _client(per_page=2, archived_ticket_cap=2)
    client.session.request.side_effect = [
        _mock_response({"data": [{"id": "1"}, {"id": "2"}]}),
        _mock_response({"data": [{"id": "3"}, {"id": "4"}]}),
        _mock_response({"data": [{"id": "5"}, {"id": "6"}]}),
    ]

    tickets = list(client.iter_archived_tickets("10"))

    assert [ticket["id"] for ticket in tickets] == ["1", "2", "3", "4"]
    offsets = [call[1]["params"]["from"] for call in client.session.request.call_args_list]
    assert offsets == [0, 2]
    assert client.session.request.call_args_list[0][0][1].endswith("/api/v1/tickets/archivedTickets")


def test_retries_rate_limited_requests_using_retry_after(sleeps: List[float]) -> None:
    client = _client()
    client.session.request.side_effect = [
        _mock_response({}, status_code=429, headers={"Retry-After": "3"}),
        _mock_response({}, status_code=503),
        _mock_response({"ok": True}),
    ]

    assert client._request("GET", "/api/v1/tickets") == {"ok": True}
    assert sleeps == [3.0, 1.0]


def test_raises_after_exhausting_retries(sleeps: List[float]) -> None:
    client = _client(max_retries=2)
    client.session.request.return_value = _mock_response({"message": "slow down"}, status_code=429)

    with pytest.raises(DeskAPIError) as excinfo:
        client._request("GET", "/api/v1/tickets")

    assert excinfo.value.status_code == 429
    assert "slow down" in str(excinfo.value)
    assert client.session.request.call_count == 3
    assert sleeps == [0.5, 1.0]


def test_client_error_is_not_retried(sleeps: List[float]) -> None:
    client = _client()
    client.session.request.return_value = _mock_response({"errorCode": "INVALID_DATA"}, status_code=422)

    with pytest.raises(DeskAPIError, match="INVALID_DATA"):
        client._request("GET", "/api/v1/tickets")
    assert client.session.request.call_count == 1
    assert sleeps == []


def test_token_is_refreshed_and_cached() -> None:
    now = [0.0]
    auth = DeskAuth(
        client_id="id",
        client_secret="secret",
        refresh_token="refresh",
        clock=lambda: now[0],
    )
    session = MagicMock()
    session.post.return_value = _mock_response({"access_token": "fresh", "expires_in": 3600})

    assert auth.token(session, timeout=5, verify=True) == "fresh"
    assert auth.token(session, timeout=5, verify=True) == "fresh"
    assert session.post.call_count == 1
    url = session.post.call_args[0][0]
    assert url == "https://accounts.zoho.com/oauth/v2/token"
    assert session.post.call_args[1]["data"]["grant_type"] == "refresh_token"

    now[0] = 3541.0
    session.post.return_value = _mock_response({"access_token": "newer", "expires_in": 3600})
    assert auth.token(session, timeout=5, verify=True) == "newer"


def test_unauthorised_response_triggers_one_refresh() -> None:
    auth = DeskAuth(client_id="id", client_secret="secret", refresh_token="refresh")
    client = _client(auth=auth)
    client.session.post.side_effect = [
        _mock_response({"access_token": "first"}),
        _mock_response({"access_token": "second"}),
    ]
    client.session.request.side_effect = [
        _mock_response({}, status_code=401),
        _mock_response({"data": []}),
    ]

    assert client._request("GET", "/api/v1/users") == {"data": []}
    tokens = [call[1]["headers"]["Authorization"] for call in client.session.request.call_args_list]
    assert tokens == ["Zoho-oauthtoken first", "Zoho-oauthtoken second"]


def test_auth_requires_token_or_refresh_credentials() -> None:
    with pytest.raises(ValueError):
        DeskAuth(client_id="id")


def _ticket(ticket_id: str, created: str) -> TicketRecord:
    return TicketRecord.from_api(
        {"id": ticket_id, "ticketNumber": f"T{ticket_id}", "status": "Open", "createdTime": created}
    )


def test_metrics_fetch_limits_to_newest_tickets_and_skips_failures(monkeypatch) -> None:
    client = _client(max_concurrent_requests=2)
    calls: List[str] = []

    def fake_metrics(ticket_id: str) -> Dict[str, Any]:
        calls.append(ticket_id)
        if ticket_id == "2":
            raise DeskAPIError("boom", 500)
        return {"firstResponseTime": "00:05 hrs", "threadCount": 2}

    monkeypatch.setattr(client, "get_ticket_metrics", fake_metrics)
    tickets = [
        _ticket("1", "2024-01-01T00:00:00Z"),
        _ticket("2", "2024-01-03T00:00:00Z"),
        _ticket("3", "2024-01-02T00:00:00Z"),
        _ticket("4", "2023-12-31T00:00:00Z"),
    ]
    progress: List[tuple] = []

    metrics = client.fetch_metrics_for_tickets(
        tickets, limit=3, progress_callback=lambda done, total: progress.append((done, total))
    )

    assert sorted(calls) == ["1", "2", "3"]
    assert [item.ticket_number for item in metrics] == ["T3", "T1"]
    assert metrics[0].first_response_time == "00:05 hrs"
    assert metrics[0].thread_count == 2
    assert sorted(progress) == [(1, 3), (2, 3), (3, 3)]


def test_get_users_skips_failures() -> None:
    client = _client()
    client.session.request.side_effect = [
        _mock_response({"id": "1", "displayName": "Alice"}),
        _mock_response({}, status_code=404),
    ]

    users = client.get_users(["1", "2"])

    assert users == [{"id": "1", "displayName": "Alice"}]
