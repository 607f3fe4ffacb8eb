"""Microsoft Graph exceptions for error handling.

Every failure leaving the client is one of these types. ``kind`` gives the
coarse category callers branch on (NotFound, Unauthorized, PermissionDenied,
RateLimited, Transient, UpstreamUnavailable, Unknown).
"""
from __future__ import annotations
from typing import Optional

# Operation name -> Graph application permission the call needs
REQUIRED_PERMISSION_BY_OPERATION = {
    "get_user_by_principal": "User.Read.All",
    "list_users": "User.Read.All",
    "list_user_oauth_grants": "DelegatedPermissionGrant.ReadWrite.All",
    "delete_oauth_grant": "DelegatedPermissionGrant.ReadWrite.All",
    "update_oauth_grant_scopes": "DelegatedPermissionGrant.ReadWrite.All",
    "list_user_app_role_assignments": "Directory.Read.All",
    "delete_app_role_assignment": "AppRoleAssignment.ReadWrite.All",
    "revoke_sign_in_sessions": "User.RevokeSessions.All",
    "list_sign_ins": "AuditLog.Read.All",
    "list_registered_devices": "Directory.Read.All",
    "get_service_principal": "Application.Read.All",
    "find_service_principal_by_app_id": "Application.Read.All",
}


class GraphError(Exception):
    """Base exception for all Microsoft Graph operations."""

    kind = "Unknown"


class GraphConfigurationError(GraphError):
    """Tenant id, client id or client secret missing."""

    kind = "Unauthorized"


class GraphAPIError(GraphError):
    """Error returned by (or while talking to) the Graph REST API.

    Attributes:
        operation: Client operation that failed (e.g. "delete_oauth_grant")
        status_code: HTTP status code, None for transport failures
        graph_code: Upstream error code (e.g. "Request_ResourceNotFound")
        message: Upstream or transport error message
    """

    kind = "Unknown"

    def __init__(
        self,
        operation: str,
        status_code: Optional[int],
        graph_code: Optional[str],
        message: str,
    ):
        self.operation = operation
        self.status_code = status_code
        self.graph_code = graph_code
        self.message = message
        status = status_code if status_code is not None else "no-response"
        code = f" {graph_code}" if graph_code else ""
        super().__init__(f"[{status}{code}] {operation}: {message}")

    def to_detail(self) -> dict:
        """Diagnostic payload embedded in remediation results."""
        return {
            "error_kind": self.kind,
            "operation": self.operation,
            "status_code": self.status_code,
            "graph_code": self.graph_code,
            "message": self.message,
        }


class NotFoundError(GraphAPIError):
    """Subject, grant, assignment or application does not exist."""

    kind = "NotFound"


class UnauthorizedError(GraphAPIError):
    """Token rejected or could not be obtained."""

    kind = "Unauthorized"


class PermissionDeniedError(GraphAPIError):
    """The app registration lacks the Graph permission for this call."""

    kind = "PermissionDenied"

    def __init__(self, operation, status_code, graph_code, message):
        super().__init__(operation, status_code, graph_code, message)
        self.required_permission = REQUIRED_PERMISSION_BY_OPERATION.get(operation)

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail["required_permission"] = self.required_permission
        return detail


class RateLimitedError(GraphAPIError):
    """Throttled (HTTP 429). Retry with backoff."""

    kind = "RateLimited"

    def __init__(self, operation, status_code, graph_code, message, retry_after: Optional[float] = None):
        super().__init__(operation, status_code, graph_code, message)
        self.retry_after = retry_after

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail["retry_after"] = self.retry_after
        return detail


class TransientError(GraphAPIError):
    """5xx, timeout or connection failure. Retry with backoff."""

    kind = "Transient"


class UpstreamUnavailableError(GraphAPIError):
    """Feature gated by tenant tier/license (e.g. sign-in logs without P1)."""

    kind = "UpstreamUnavailable"


class UnknownGraphError(GraphAPIError):
    """Any other upstream failure."""

    kind = "Unknown"
