"""Tests for the Graph resource services and the GraphDirectory facade."""
from unittest.mock import MagicMock

import pytest

from offboard.config import AppConfig
from offboard.core.graph import (
    GraphDirectory,
    NotFoundError,
    ServicePrincipalCache,
    TransientError,
    build_directory,
)
from offboard.core.graph.models import SignIn, parse_graph_datetime, split_scopes


def _not_found(operation="op"):
    return NotFoundError(operation, 404, "Request_ResourceNotFound", "missing")


@pytest.fixture()
def client():
    return MagicMock()


@pytest.fixture()
def directory(client):
    return GraphDirectory(client)


# ─────────────────────────────────────────────────────────────────────────────
# Users
# ─────────────────────────────────────────────────────────────────────────────
def test_get_user_by_principal_maps_identity(directory, client):
    client.get.return_value = {
        "id": "user-1",
        "userPrincipalName": "alice@example.com",
        "displayName": "Alice",
        "mail": "alice@example.com",
        "accountEnabled": False,
    }

    identity = directory.get_user_by_principal("alice@example.com")

    assert identity.provider_id == "user-1"
    assert identity.enabled is False
    path = client.get.call_args.args[0]
    assert path == "/users/alice@example.com"


def test_get_user_by_principal_returns_none_when_absent(directory, client):
    client.get.side_effect = _not_found()
    assert directory.get_user_by_principal("ghost@example.com") is None


def test_get_user_by_principal_propagates_other_failures(directory, client):
    client.get.side_effect = TransientError("get_user_by_principal", 503, None, "unavailable")
    with pytest.raises(TransientError):
        directory.get_user_by_principal("alice@example.com")


# ─────────────────────────────────────────────────────────────────────────────
# Grants
# ─────────────────────────────────────────────────────────────────────────────
def test_list_user_oauth_grants_uses_pagination(directory, client):
    client.collect_pages.return_value = [
        {"id": "g1", "clientId": "sp-1", "resourceId": "res", "scope": " Mail.Read  Mail.Read User.Read ", "consentType": "Principal"},
    ]

    grants = directory.list_user_oauth_grants("user-1")

    assert grants[0].id == "g1"
    assert grants[0].scopes == ["Mail.Read", "User.Read"]
    assert client.collect_pages.call_args.args[0] == "/users/user-1/oauth2PermissionGrants"


def test_delete_oauth_grant_reports_absence_as_false(directory, client):
    assert directory.delete_oauth_grant("g1") is True
    client.delete.side_effect = _not_found("delete_oauth_grant")
    assert directory.delete_oauth_grant("g1") is False


def test_update_oauth_grant_scopes_patches_scope(directory, client):
    directory.update_oauth_grant_scopes("g1", "User.Read")
    client.patch.assert_called_once_with(
        "/oauth2PermissionGrants/g1",
        json={"scope": "User.Read"},
        operation="update_oauth_grant_scopes",
    )


def test_update_oauth_grant_scopes_raises_when_absent(directory, client):
    client.patch.side_effect = _not_found("update_oauth_grant_scopes")
    with pytest.raises(NotFoundError):
        directory.update_oauth_grant_scopes("g1", "User.Read")


# ─────────────────────────────────────────────────────────────────────────────
# App roles, sessions, devices
# ─────────────────────────────────────────────────────────────────────────────
def test_delete_app_role_assignment_idempotent(directory, client):
    client.delete.side_effect = _not_found("delete_app_role_assignment")
    assert directory.delete_app_role_assignment("user-1", "a1") is False
    assert client.delete.call_args.args[0] == "/users/user-1/appRoleAssignments/a1"


@pytest.mark.parametrize("body, expected", [({"value": True}, True), ({"value": False}, False), ({}, False)])
def test_revoke_sign_in_sessions_requires_confirmation(directory, client, body, expected):
    client.post.return_value = body
    assert directory.revoke_sign_in_sessions("user-1") is expected
    assert client.post.call_args.args[0] == "/users/user-1/revokeSignInSessions"


def test_list_sign_ins_filters_by_principal(directory, client):
    client.collect_pages.return_value = [
        {
            "id": "s1",
            "appId": "app-1",
            "appDisplayName": "Teams",
            "createdDateTime": "2025-12-05T14:30:00.1234567Z",
            "status": {"errorCode": 0},
            "riskLevelAggregated": "High",
            "location": {"city": "Lyon", "countryOrRegion": "FR"},
        }
    ]

    sign_ins = directory.list_sign_ins("o'neil@example.com", days_back=7)

    assert sign_ins[0].succeeded is True
    assert sign_ins[0].risky is True
    assert sign_ins[0].created_at.year == 2025
    params = client.collect_pages.call_args.kwargs["params"]
    assert "userPrincipalName eq 'o''neil@example.com'" in params["$filter"]
    assert params["$orderby"] == "createdDateTime desc"


def test_list_registered_devices_ignores_other_objects(directory, client):
    client.collect_pages.return_value = [
        {"id": "d1", "@odata.type": "#microsoft.graph.device", "displayName": "Laptop"},
        {"id": "x1", "@odata.type": "#microsoft.graph.servicePrincipal"},
    ]
    devices = directory.list_registered_devices("user-1")
    assert [device.id for device in devices] == ["d1"]


# ─────────────────────────────────────────────────────────────────────────────
# Service principals
# ─────────────────────────────────────────────────────────────────────────────
def test_service_principal_lookup_is_cached(directory, client):
    client.get.return_value = {
        "id": "sp-1",
        "appId": "app-1",
        "displayName": "Contoso CRM",
        "appRoles": [{"id": "role-1", "value": "CRM.Admin"}],
    }

    first = directory.get_service_principal("sp-1")
    second = directory.get_service_principal("sp-1")
    by_app = directory.find_service_principal_by_app_id("app-1")

    assert first is second is by_app
    assert first.app_roles == {"role-1": "CRM.Admin"}
    assert client.get.call_count == 1


def test_missing_service_principal_is_cached_as_none(directory, client):
    client.get.side_effect = _not_found("get_service_principal")
    assert directory.get_service_principal("sp-x") is None
    assert directory.get_service_principal("sp-x") is None
    assert client.get.call_count == 1


def test_find_service_principal_by_app_id_filters(directory, client):
    client.get.return_value = {"value": []}
    assert directory.find_service_principal_by_app_id("app-9") is None
    assert client.get.call_args.kwargs["params"]["$filter"] == "appId eq 'app-9'"


def test_cache_expires_and_evicts():
    now = [0.0]
    cache = ServicePrincipalCache(ttl_seconds=10, max_entries=2, clock=lambda: now[0])
    cache.put("a", None)
    cache.put("b", None)
    cache.put("c", None)

    assert len(cache) == 2
    assert cache.get("c") is None

    now[0] = 11.0
    assert cache.get("c") is not None  # expired: sentinel, not the cached None
    assert len(cache) == 1


def test_build_directory_requires_credentials(graph_config):
    assert build_directory(AppConfig()) is None
    directory = build_directory(graph_config)
    assert isinstance(directory, GraphDirectory)
    assert directory.service_principals.cache.max_entries == graph_config.sp_cache_max_entries


# ─────────────────────────────────────────────────────────────────────────────
# Payload helpers
# ─────────────────────────────────────────────────────────────────────────────
def test_split_scopes_keeps_order_and_dedupes():
    assert split_scopes("openid  profile openid Mail.Read") == ["openid", "profile", "Mail.Read"]
    assert split_scopes(None) == []


def test_parse_graph_datetime_handles_seven_fraction_digits():
    parsed = parse_graph_datetime("2025-12-05T14:30:00.1234567Z")
    assert parsed.microsecond == 123456
    assert parsed.utcoffset().total_seconds() == 0
    assert parse_graph_datetime("not-a-date") is None


def test_failed_sign_in_is_not_successful():
    sign_in = SignIn.from_graph({"id": "s1", "status": {"errorCode": 50126}})
    assert sign_in.succeeded is False
    assert sign_in.risky is False
