"""HTTP client for the Zoho Desk REST API."""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, Generator, Iterable, List, Optional, Sequence
from urllib.parse import urljoin

import requests
from requests import HTTPError

from .reconcile import TicketMetrics, TicketRecord

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://desk.zoho.com"
DEFAULT_ACCOUNTS_URL = "https://accounts.zoho.com"
RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})
TOKEN_REFRESH_MARGIN = 60.0

ProgressCallback = Callable[[int, Optional[int]], None]


class DeskAPIError(RuntimeError):
    """Raised when the helpdesk API keeps failing after retries."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


_HINTS = {
    400: "Bad Request - verify the query parameters",
    401: "Unauthorized - check the OAuth client and refresh token",
    403: "Forbidden - the token lacks the Desk.tickets.READ scope",
    404: "Not Found - the ticket, department or endpoint may be incorrect",
    422: "Unprocessable Entity - Zoho Desk rejected the parameters",
    429: "Too Many Requests - rate limit exceeded",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
    504: "Gateway Timeout",
}


def describe_http_error(error: HTTPError, context: Optional[str] = None) -> str:
    """Build a readable message from an ``HTTPError`` and its response body."""
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    reason = getattr(response, "reason", "") or ""
    prefix = "Zoho Desk request failed"
    if context:
        prefix = f"{prefix} for {context}"
    if status is not None:
        status_part = f"status {status}"
        if reason:
            status_part += f" {reason}".rstrip()
        hint = _HINTS.get(status)
        if hint:
            status_part += f" ({hint})"
        prefix = f"{prefix} with {status_part}"

    detail = ""
    if response is not None:
        try:
            parsed = response.json()
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            errors = parsed.get("errors")
            message = parsed.get("message") or parsed.get("errorCode") or parsed.get("error")
            if isinstance(errors, list):
                detail = "; ".join(str(item) for item in errors if item)
            elif isinstance(errors, dict):
                detail = "; ".join(f"{key}: {value}" for key, value in errors.items())
            elif message:
                detail = str(message)
        if not detail:
            text = getattr(response, "text", "")
            if isinstance(text, str) and text:
                detail = text.strip()
    if detail:
        snippet = detail if len(detail) <= 500 else detail[:497] + "..."
        prefix = f"{prefix}: {snippet}"
    return prefix


class DeskAuth:
    """OAuth refresh-token exchange with an in-memory access token cache."""

    def __init__(
        self,
        *,
        accounts_url: str = DEFAULT_ACCOUNTS_URL,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        refresh_token: Optional[str] = None,
        access_token: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not access_token and not (client_id and client_secret and refresh_token):
            raise ValueError(
                "Provide desk.access_token or desk.client_id, desk.client_secret and desk.refresh_token"
            )
        self.accounts_url = accounts_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self._clock = clock
        self._lock = threading.Lock()
        self._access_token = access_token
        self._expires_at: Optional[float] = None

    @property
    def can_refresh(self) -> bool:
        return bool(self.client_id and self.client_secret and self.refresh_token)

    def invalidate(self) -> None:
        with self._lock:
            if self.can_refresh:
                self._access_token = None
                self._expires_at = None

    def token(self, session: requests.Session, *, timeout: int, verify: bool) -> str:
        with self._lock:
            if self._access_token and (self._expires_at is None or self._clock() < self._expires_at):
                return self._access_token
            if not self.can_refresh:
                return self._access_token or ""
            LOGGER.info("Refreshing Zoho Desk access token")
            response = session.post(
                f"{self.accounts_url}/oauth/v2/token",
                data={
                    "refresh_token": self.refresh_token,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "grant_type": "refresh_token",
                },
                timeout=timeout,
                verify=verify,
            )
            try:
                response.raise_for_status()
            except HTTPError as exc:
                raise DeskAPIError(describe_http_error(exc, "token refresh"), response.status_code) from exc
            payload = response.json()
            access_token = payload.get("access_token") if isinstance(payload, dict) else None
            if not access_token:
                raise DeskAPIError(f"Token refresh returned no access_token: {payload!r}")
            expires_in = float(payload.get("expires_in") or 3600)
            self._access_token = access_token
            self._expires_at = self._clock() + max(expires_in - TOKEN_REFRESH_MARGIN, 0.0)
            return access_token


class DeskClient:
    """Wrapper around the Zoho Desk API used for tickets, users and metrics."""

    def __init__(
        self,
        *,
        auth: DeskAuth,
        base_url: str = DEFAULT_BASE_URL,
        org_id: Optional[str] = None,
        verify_ssl: bool = True,
        timeout: int = 30,
        per_page: int = 100,
        rate_limit_per_minute: Optional[int] = None,
        min_request_interval: float = 0.2,
        max_concurrent_requests: int = 3,
        max_retries: int = 4,
        backoff_factor: float = 0.5,
        metrics_ticket_limit: int = 300,
        archived_ticket_cap: int = 4900,
    ) -> None:
        self.base_url = self._normalise_base_url(base_url)
        if self.base_url.rstrip("/") != base_url.rstrip("/"):
            LOGGER.debug("Normalised Zoho Desk base URL from %s to %s", base_url, self.base_url)
        self.auth = auth
        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if org_id:
            self.session.headers.update({"orgId": str(org_id)})
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.per_page = min(max(int(per_page), 1), 100)  # API maximum is 100
        self.max_concurrent_requests = max(int(max_concurrent_requests), 1)
        self.max_retries = max(int(max_retries), 0)
        self.backoff_factor = float(backoff_factor)
        self.metrics_ticket_limit = int(metrics_ticket_limit)
        self.archived_ticket_cap = int(archived_ticket_cap)
        per_minute_interval = 60.0 / rate_limit_per_minute if rate_limit_per_minute else 0.0
        self._sleep_between_requests = max(float(min_request_interval or 0.0), per_minute_interval)
        self._last_request_time: Optional[float] = None
        self._throttle_lock = threading.Lock()

    # -- Low level request helpers -------------------------------------------------
    def _wait_for_slot(self, method: str, url: str) -> None:
        with self._throttle_lock:
            if self._sleep_between_requests and self._last_request_time is not None:
                remaining = self._sleep_between_requests - (time.monotonic() - self._last_request_time)
                if remaining > 0:
                    LOGGER.debug(
                        "Sleeping %.2fs before %s %s to respect rate limits", remaining, method, url
                    )
                    time.sleep(remaining)
            self._last_request_time = time.monotonic()

    def _retry_delay(self, response: requests.Response, attempt: int) -> float:
        retry_after = getattr(response, "headers", {}).get("Retry-After")
        if retry_after:
            try:
                return max(float(retry_after), 0.0)
            except (TypeError, ValueError):
                LOGGER.debug("Ignoring non-numeric Retry-After header %r", retry_after)
        return self.backoff_factor * (2 ** (attempt - 1))

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = self._build_url(path)
        attempt = 0
        reauthenticated = False
        while True:
            attempt += 1
            token = self.auth.token(self.session, timeout=self.timeout, verify=self.verify_ssl)
            self._wait_for_slot(method, url)
            LOGGER.debug("HTTP %s %s params=%s", method, url, kwargs.get("params"))
            response = self.session.request(
                method,
                url,
                headers={"Authorization": f"Zoho-oauthtoken {token}"},
                timeout=self.timeout,
                verify=self.verify_ssl,
                **kwargs,
            )
            status = response.status_code
            LOGGER.debug("Response status=%s", status)
            if status == 401 and not reauthenticated and self.auth.can_refresh:
                LOGGER.info("Access token rejected; refreshing and retrying %s %s", method, url)
                self.auth.invalidate()
                reauthenticated = True
                continue
            if status in RETRY_STATUSES and attempt <= self.max_retries:
                delay = self._retry_delay(response, attempt)
                LOGGER.warning(
                    "Received %s from Zoho Desk for %s %s; retry %s/%s in %.2fs",
                    status,
                    method,
                    url,
                    attempt,
                    self.max_retries,
                    delay,
                )
                time.sleep(delay)
                continue
            try:
                response.raise_for_status()
            except HTTPError as exc:
                raise DeskAPIError(describe_http_error(exc, f"{method} {path}"), status) from exc
            if status == 204 or not response.content:
                return {}
            return response.json()

    def _normalise_base_url(self, base_url: str) -> str:
        """Trim common API suffixes and return a clean base domain."""

        cleaned = base_url.strip().rstrip("/")
        if cleaned.lower().endswith("/api/v1"):
            cleaned = cleaned[: -len("/api/v1")]
        cleaned = cleaned.rstrip("/")
        return cleaned or base_url.rstrip("/")

    def _build_url(self, path: str) -> str:
        normalised_path = path.lstrip("/")
        base = self.base_url.rstrip("/") + "/"
        return urljoin(base, normalised_path)

    def _paginate(
        self,
        path: str,
        *,
        start: int,
        limit: int,
        label: str,
        params: Optional[Dict[str, Any]] = None,
        cap: Optional[int] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Generator[Dict[str, Any], None, None]:
        offset = start
        processed = 0
        while True:
            query: Dict[str, Any] = {"from": offset, "limit": limit}
            if params:
                query.update({key: value for key, value in params.items() if value not in (None, "")})
            payload = self._request("GET", path, params=query)
            batch = payload.get("data") if isinstance(payload, dict) else None
            batch = batch if isinstance(batch, list) else []
            LOGGER.info("Fetched %s %s from offset %s", len(batch), label, offset)
            for item in batch:
                yield item
            processed += len(batch)
            if progress_callback:
                progress_callback(processed, None)
            if len(batch) < limit:
                break
            if cap is not None and offset >= cap:
                LOGGER.warning("Stopped paging %s at offset %s (safety cap)", label, offset)
                break
            offset += limit

    # -- Public API ----------------------------------------------------------------
    def iter_tickets(
        self,
        *,
        department_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Generator[Dict[str, Any], None, None]:
        """Yield active tickets, optionally scoped to a department or agent."""
        return self._paginate(
            "/api/v1/tickets",
            start=1,
            limit=self.per_page,
            label="tickets",
            params={"departmentId": department_id, "agentId": agent_id},
            progress_callback=progress_callback,
        )

    def iter_archived_tickets(
        self,
        department_id: str,
        *,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Generator[Dict[str, Any], None, None]:
        """Yield archived tickets for one department.

        Archived paging starts at offset 0 and stops at ``archived_ticket_cap``.
        """
        return self._paginate(
            "/api/v1/tickets/archivedTickets",
            start=0,
            limit=self.per_page,
            label="archived tickets",
            params={"departmentId": department_id},
            cap=self.archived_ticket_cap,
            progress_callback=progress_callback,
        )

    def iter_users(self) -> Generator[Dict[str, Any], None, None]:
        return self._paginate("/api/v1/users", start=1, limit=self.per_page, label="users")

    def get_user(self, user_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/v1/users/{user_id}")

    def get_users(self, user_ids: Iterable[str]) -> List[Dict[str, Any]]:
        """Fetch individual users, skipping any that cannot be retrieved."""
        users: List[Dict[str, Any]] = []
        for user_id in user_ids:
            try:
                payload = self.get_user(user_id)
            except (DeskAPIError, requests.RequestException) as exc:
                LOGGER.warning("Unable to fetch user %s: %s", user_id, exc)
                continue
            if payload:
                users.append(payload)
        return users

    def iter_department_agents(self, department_id: str) -> Generator[Dict[str, Any], None, None]:
        return self._paginate(
            f"/api/v1/departments/{department_id}/agents",
            start=1,
            limit=200,
            label="department agents",
        )

    def get_ticket_metrics(self, ticket_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/v1/tickets/{ticket_id}/metrics")

    def fetch_metrics_for_tickets(
        self,
        tickets: Sequence[TicketRecord],
        *,
        limit: Optional[int] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> List[TicketMetrics]:
        """Fetch metrics for the most recently created tickets.

        Requests run on a bounded thread pool. A ticket whose metrics cannot
        be fetched is logged and left out.
        """
        limit = self.metrics_ticket_limit if limit is None else limit
        candidates = sorted(
            (ticket for ticket in tickets if ticket.created_time is not None and ticket.id),
            key=lambda ticket: ticket.created_time,
            reverse=True,
        )[: max(limit, 0)]
        if not candidates:
            return []

        results: Dict[str, TicketMetrics] = {}
        done = 0
        with ThreadPoolExecutor(max_workers=self.max_concurrent_requests) as executor:
            futures = {
                executor.submit(self.get_ticket_metrics, ticket.id): ticket for ticket in candidates
            }
            for future in as_completed(futures):
                ticket = futures[future]
                done += 1
                try:
                    payload = future.result()
                except (DeskAPIError, requests.RequestException) as exc:
                    LOGGER.warning("Skipping metrics for ticket %s: %s", ticket.ticket_number, exc)
                else:
                    results[ticket.id] = TicketMetrics.from_api(payload or {}, ticket_number=ticket.ticket_number)
                if progress_callback:
                    progress_callback(done, len(candidates))
        LOGGER.info("Fetched metrics for %s of %s tickets", len(results), len(candidates))
        return [results[ticket.id] for ticket in candidates if ticket.id in results]
