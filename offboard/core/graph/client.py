"""Low-level HTTP client for the Microsoft Graph API.

Handles client-credentials authentication, token refresh, request execution,
pagination and error mapping.
"""
from __future__ import annotations
import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import requests

from .exceptions import (
    GraphAPIError,
    GraphConfigurationError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitedError,
    TransientError,
    UnauthorizedError,
    UnknownGraphError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10
GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
GRAPH_AUTHORITY = "https://login.microsoftonline.com"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"

_TRANSIENT_CODES = (429, 500, 502, 503, 504)
_MAX_RETRY_DELAY = 30.0
_NOT_FOUND_CODES = {"Request_ResourceNotFound", "ResourceNotFound", "NotFound"}
_PERMISSION_CODES = {"Authorization_RequestDenied", "Forbidden", "accessDenied"}
# Returned by /auditLogs/signIns when the tenant lacks an Entra ID P1/P2 license
_LICENSE_GATED_CODES = {
    "Authentication_RequestFromNonPremiumTenantOrB2CTenant",
    "Authentication_RequestFromUnsupportedUserRole",
}


class GraphClient:
    """HTTP client for Microsoft Graph with automatic token management.

    Features:
    - Client credentials token acquisition with refresh before expiry
    - Bounded timeout on every call
    - Bounded retries for idempotent calls (GET, DELETE) on 429/5xx
    - ``@odata.nextLink`` pagination
    - Centralized mapping of HTTP failures to typed exceptions

    Usage:
        client = GraphClient("tenant-id", "client-id", "secret")
        user = client.get("/users/alice@example.com", operation="get_user_by_principal")
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        base_url: Optional[str] = None,
        authority: Optional[str] = None,
        timeout: int = REQUEST_TIMEOUT,
        max_retries: int = 2,
    ):
        if not tenant_id or not client_id or not client_secret:
            raise GraphConfigurationError("tenant_id, client_id and client_secret are required")
        self.tenant_id = tenant_id
        self.client_id = client_id
        self._client_secret = client_secret
        self.base_url = (base_url or GRAPH_BASE_URL).rstrip("/")
        self.authority = (authority or GRAPH_AUTHORITY).rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self._token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None
        self._token_lock = threading.Lock()

    @classmethod
    def from_settings(cls, cfg) -> Optional["GraphClient"]:
        """Build a client from AppConfig, or None when credentials are missing."""
        if not cfg.graph_configured:
            return None
        return cls(
            cfg.tenant_id,
            cfg.client_id,
            cfg.client_secret,
            base_url=cfg.graph_base_url,
            authority=cfg.graph_authority,
            timeout=cfg.request_timeout,
            max_retries=cfg.max_retries,
        )

    # ─────────────────────────────────────────────────────────────────────
    # Authentication
    # ─────────────────────────────────────────────────────────────────────
    def _ensure_authenticated(self) -> str:
        """Return a valid token, refreshing when expired or expiring soon."""
        with self._token_lock:
            if (
                self._token
                and self._token_expires_at
                and datetime.now() < self._token_expires_at - timedelta(seconds=60)
            ):
                return self._token
            token, expires_in = self._acquire_token()
            self._token = token
            self._token_expires_at = datetime.now() + timedelta(seconds=expires_in)
            return token

    def _acquire_token(self) -> tuple[str, int]:
        """Fetch an app-only token using the client credentials flow."""
        url = f"{self.authority}/{self.tenant_id}/oauth2/v2.0/token"
        data = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self._client_secret,
            "scope": GRAPH_SCOPE,
        }
        try:
            resp = requests.post(url, data=data, timeout=self.timeout)
        except requests.RequestException as exc:
            raise TransientError("acquire_token", None, None, str(exc)) from exc

        body = _json_body(resp)
        if resp.status_code != 200 or "access_token" not in body:
            raise UnauthorizedError(
                "acquire_token",
                resp.status_code,
                body.get("error"),
                body.get("error_description") or "token request rejected",
            )
        return body["access_token"], int(body.get("expires_in", 3600))

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._ensure_authenticated()}",
            "Accept": "application/json",
        }

    # ─────────────────────────────────────────────────────────────────────
    # HTTP verbs
    # ─────────────────────────────────────────────────────────────────────
    def get(self, path: str, params: Optional[Dict] = None, operation: str = "get") -> Dict[str, Any]:
        """Execute GET and return the decoded JSON body.

        Args:
            path: API path ("/users/{id}") or absolute URL (nextLink)
            params: Query parameters
            operation: Client operation name used in errors

        Raises:
            GraphAPIError: On HTTP or transport error
        """
        resp = self._send("get", self._url(path), operation, retry=True, params=params)
        return _json_body(resp)

    def post(self, path: str, json: Optional[Dict] = None, operation: str = "post") -> Dict[str, Any]:
        """Execute POST (never retried) and return the decoded JSON body."""
        resp = self._send("post", self._url(path), operation, retry=False, json=json if json is not None else {})
        return _json_body(resp)

    def patch(self, path: str, json: Dict, operation: str = "patch") -> Dict[str, Any]:
        """Execute PATCH (never retried) and return the decoded JSON body."""
        resp = self._send("patch", self._url(path), operation, retry=False, json=json)
        return _json_body(resp)

    def delete(self, path: str, operation: str = "delete") -> None:
        """Execute DELETE. Retried on transient failures since deletes are idempotent."""
        self._send("delete", self._url(path), operation, retry=True)

    def collect_pages(self, path: str, params: Optional[Dict] = None, operation: str = "list") -> List[Dict[str, Any]]:
        """Follow ``@odata.nextLink`` until exhausted and return every item.

        Items keep first-seen order; an id seen on an earlier page is not
        repeated. A nextLink that was already visited ends the walk.
        """
        items: List[Dict[str, Any]] = []
        seen_ids: set[str] = set()
        seen_links: set[str] = set()

        payload = self.get(path, params=params, operation=operation)
        while True:
            for item in payload.get("value") or []:
                item_id = item.get("id") if isinstance(item, dict) else None
                if item_id is not None:
                    if item_id in seen_ids:
                        continue
                    seen_ids.add(item_id)
                items.append(item)

            next_link = payload.get("@odata.nextLink")
            if not next_link or next_link in seen_links:
                break
            seen_links.add(next_link)
            payload = self.get(next_link, operation=operation)

        return items

    # ─────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────
    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _send(self, verb: str, url: str, operation: str, retry: bool, **kwargs) -> requests.Response:
        """Send one request, retrying idempotent verbs on transient failures."""
        attempts = self.max_retries + 1 if retry else 1
        for attempt in range(attempts):
            sender = getattr(requests, verb)
            try:
                resp = sender(url, headers=self._headers(), timeout=self.timeout, **kwargs)
            except requests.RequestException as exc:
                if attempt + 1 < attempts:
                    delay = float(attempt + 1)
                    logger.info("Transport error on %s (%s), retrying in %ss", operation, exc, delay)
                    time.sleep(delay)
                    continue
                raise TransientError(operation, None, None, str(exc)) from exc

            if resp.status_code in _TRANSIENT_CODES and attempt + 1 < attempts:
                delay = _retry_delay(resp, attempt)
                logger.info("Transient %s on %s, retrying in %ss", resp.status_code, operation, delay)
                time.sleep(delay)
                continue

            self._handle_error(resp, operation)
            return resp

        raise UnknownGraphError(operation, None, None, "retry loop exhausted")

    def _handle_error(self, resp: requests.Response, operation: str) -> None:
        """Centralized error handling for HTTP responses.

        Raises:
            GraphAPIError subclass matching the failure category
        """
        status = resp.status_code
        if status < 400:
            return

        error = _json_body(resp).get("error") or {}
        if not isinstance(error, dict):
            error = {"message": str(error)}
        code = error.get("code")
        message = error.get("message") or getattr(resp, "text", "") or f"HTTP {status}"

        if status == 404 or code in _NOT_FOUND_CODES:
            raise NotFoundError(operation, status, code, message)
        if code in _LICENSE_GATED_CODES or (status == 403 and "premium" in message.lower()):
            raise UpstreamUnavailableError(operation, status, code, message)
        if status == 403 or code in _PERMISSION_CODES:
            raise PermissionDeniedError(operation, status, code, message)
        if status == 401:
            raise UnauthorizedError(operation, status, code, message)
        if status == 429:
            raise RateLimitedError(operation, status, code, message, retry_after=_retry_after_header(resp))
        if status >= 500:
            raise TransientError(operation, status, code, message)
        raise UnknownGraphError(operation, status, code, message)


def _json_body(resp: requests.Response) -> Dict[str, Any]:
    """Decode a JSON object body; empty/204/non-JSON bodies give {}."""
    if resp.status_code == 204:
        return {}
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {"value": body}


def _retry_after_header(resp: requests.Response) -> Optional[float]:
    headers = getattr(resp, "headers", None) or {}
    raw = headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def _retry_delay(resp: requests.Response, attempt: int) -> float:
    retry_after = _retry_after_header(resp)
    if retry_after is not None:
        return min(retry_after, _MAX_RETRY_DELAY)
    return float(2 ** attempt)
