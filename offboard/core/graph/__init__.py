"""Microsoft Graph client library.

Architecture:
- client.py: HTTP client with client-credentials auth, retries and pagination
- users.py: User lookups
- grants.py: Delegated OAuth2 permission grants (list, delete, re-scope)
- roles.py: Enterprise app role assignments
- sessions.py: Session revocation and sign-in logs
- devices.py: Registered devices
- service_principals.py: Application metadata with TTL cache
- directory.py: GraphDirectory facade over all of the above
- exceptions.py: Typed exceptions for error handling

Usage:
    from offboard.core.graph import GraphClient, GraphDirectory

    directory = GraphDirectory(GraphClient(tenant_id, client_id, client_secret))
    identity = directory.get_user_by_principal("alice@example.com")
"""
from .client import GraphClient, REQUEST_TIMEOUT
from .devices import DeviceService
from .directory import GraphDirectory, build_directory
from .exceptions import (
    REQUIRED_PERMISSION_BY_OPERATION,
    GraphError,
    GraphConfigurationError,
    GraphAPIError,
    NotFoundError,
    UnauthorizedError,
    PermissionDeniedError,
    RateLimitedError,
    TransientError,
    UpstreamUnavailableError,
    UnknownGraphError,
)
from .grants import GrantService
from .models import (
    Identity,
    OAuthGrant,
    AppRoleAssignment,
    SignIn,
    RegisteredDevice,
    ServicePrincipal,
    split_scopes,
    parse_graph_datetime,
)
from .roles import AppRoleService
from .service_principals import ServicePrincipalCache, ServicePrincipalService
from .sessions import SessionService
from .users import UserService

__all__ = [
    "GraphClient",
    "REQUEST_TIMEOUT",
    "GraphDirectory",
    "build_directory",
    "UserService",
    "GrantService",
    "AppRoleService",
    "SessionService",
    "DeviceService",
    "ServicePrincipalService",
    "ServicePrincipalCache",
    "REQUIRED_PERMISSION_BY_OPERATION",
    "GraphError",
    "GraphConfigurationError",
    "GraphAPIError",
    "NotFoundError",
    "UnauthorizedError",
    "PermissionDeniedError",
    "RateLimitedError",
    "TransientError",
    "UpstreamUnavailableError",
    "UnknownGraphError",
    "Identity",
    "OAuthGrant",
    "AppRoleAssignment",
    "SignIn",
    "RegisteredDevice",
    "ServicePrincipal",
    "split_scopes",
    "parse_graph_datetime",
]
