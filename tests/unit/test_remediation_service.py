"""Tests for RemediationService."""
import pytest

from offboard.core.graph import PermissionDeniedError, TransientError
from offboard.core.graph.models import AppRoleAssignment
from offboard.core.remediation_service import SKIPPED_REASON, RemediationService


@pytest.fixture()
def service(fake_directory):
    return RemediationService(fake_directory, max_concurrency=4)


@pytest.fixture()
def alice(fake_directory):
    identity = fake_directory.add_user("alice@example.com", "user-1", enabled=False)
    fake_directory.add_service_principal("sp-crm", "app-crm", "Contoso CRM")
    fake_directory.add_grant("user-1", "g1", "sp-crm", "Mail.ReadWrite")
    fake_directory.add_grant("user-1", "g2", "sp-crm", "User.Read")
    fake_directory.add_grant("user-1", "g3", "sp-other", "Files.Read")
    return identity


def _permission_denied(operation="delete_oauth_grant"):
    return PermissionDeniedError(operation, 403, "Authorization_RequestDenied", "Insufficient privileges")


# ─────────────────────────────────────────────────────────────────────────────
# Unconfigured
# ─────────────────────────────────────────────────────────────────────────────
@pytest.mark.parametrize(
    "call",
    [
        lambda s: s.revoke_oauth_grant("g1"),
        lambda s: s.revoke_all_oauth_grants("alice@example.com"),
        lambda s: s.revoke_oauth_grants_for_app("alice@example.com", "app-crm"),
        lambda s: s.update_grant_scopes("g1", ["User.Read"]),
        lambda s: s.revoke_app_role_assignment("alice@example.com", "a1"),
        lambda s: s.revoke_all_app_role_assignments("alice@example.com"),
        lambda s: s.revoke_sign_in_sessions("alice@example.com"),
        lambda s: s.full_remediation("alice@example.com"),
    ],
)
def test_unconfigured_methods_are_skipped(call):
    result = call(RemediationService(None))
    assert result.success is True
    assert result.skipped is True
    assert result.details["reason"] == SKIPPED_REASON
    assert result.outcomes == []


def test_unconfigured_user_state_is_unknown():
    assert RemediationService(None).is_user_disabled("alice@example.com") is None


# ─────────────────────────────────────────────────────────────────────────────
# Grants
# ─────────────────────────────────────────────────────────────────────────────
def test_revoke_single_grant_is_idempotent(service, alice):
    first = service.revoke_oauth_grant("g1", principal_name="alice@example.com")
    second = service.revoke_oauth_grant("g1", principal_name="alice@example.com")

    assert first.success and second.success
    assert first.details["already_absent"] is False
    assert second.details["already_absent"] is True


def test_revoke_all_grants(service, fake_directory, alice):
    result = service.revoke_all_oauth_grants("alice@example.com")

    assert result.success is True
    assert result.details["total_grants"] == 3
    assert result.details["revoked"] == 3
    assert result.details["failed"] == 0
    assert fake_directory.grants["user-1"] == []
    assert {outcome.action for outcome in result.outcomes} == {"delete_oauth_grant"}


def test_revoke_all_grants_reports_partial_failure(service, fake_directory, alice):
    original = fake_directory.delete_oauth_grant

    def flaky_delete(grant_id):
        if grant_id == "g2":
            raise _permission_denied()
        return original(grant_id)

    fake_directory.delete_oauth_grant = flaky_delete

    result = service.revoke_all_oauth_grants("alice@example.com")

    assert result.success is False
    assert result.details["revoked"] == 2
    assert result.details["failed"] == 1
    failed = [outcome for outcome in result.outcomes if not outcome.success]
    assert failed[0].detail["grant_id"] == "g2"
    assert failed[0].detail["required_permission"] == "DelegatedPermissionGrant.ReadWrite.All"
    assert result.error == "Insufficient privileges"


def test_revoke_grants_for_app_matches_application_id(service, fake_directory, alice):
    result = service.revoke_oauth_grants_for_app("alice@example.com", "app-crm")

    assert result.success is True
    assert result.details["matching_grants"] == 2
    assert result.details["service_principal_id"] == "sp-crm"
    assert [grant.id for grant in fake_directory.grants["user-1"]] == ["g3"]


def test_revoke_grants_for_app_accepts_service_principal_id(service, fake_directory, alice):
    result = service.revoke_oauth_grants_for_app("alice@example.com", "sp-other")

    assert result.details["matching_grants"] == 1
    assert [grant.id for grant in fake_directory.grants["user-1"]] == ["g1", "g2"]


def test_unknown_subject_fails_without_raising(service):
    result = service.revoke_all_oauth_grants("ghost@example.com")
    assert result.success is False
    assert result.details["error_kind"] == "NotFound"
    assert "ghost@example.com" in result.error


def test_listing_failure_becomes_failed_result(service, fake_directory, alice):
    fake_directory.failures["list_user_oauth_grants"] = TransientError("list_user_oauth_grants", 503, None, "down")

    result = service.revoke_all_oauth_grants("alice@example.com")

    assert result.success is False
    assert result.details["error_kind"] == "Transient"


# ─────────────────────────────────────────────────────────────────────────────
# Scopes
# ─────────────────────────────────────────────────────────────────────────────
def test_update_grant_scopes_dedupes(service, fake_directory, alice):
    result = service.update_grant_scopes("g1", ["Mail.Read", "User.Read", "Mail.Read"])

    assert result.success is True
    assert result.details["result"] == "updated"
    assert fake_directory.grants["user-1"][0].scope == "Mail.Read User.Read"


def test_update_grant_scopes_with_empty_list_deletes(service, fake_directory, alice):
    result = service.update_grant_scopes("g1", [])

    assert result.success is True
    assert result.details["result"] == "deleted"
    assert "delete_oauth_grant" in fake_directory.call_names()
    assert "update_oauth_grant_scopes" not in fake_directory.call_names()


def test_update_missing_grant_fails(service, alice):
    result = service.update_grant_scopes("nope", ["User.Read"])
    assert result.success is False
    assert result.details["error"]["error_kind"] == "NotFound"


# ─────────────────────────────────────────────────────────────────────────────
# App roles and sessions
# ─────────────────────────────────────────────────────────────────────────────
def test_revoke_all_app_role_assignments(service, fake_directory, alice):
    fake_directory.assignments["user-1"] = [
        AppRoleAssignment(id="a1", app_role_id="r1", resource_id="sp-hr"),
        AppRoleAssignment(id="a2", app_role_id="r2", resource_id="sp-hr"),
    ]

    result = service.revoke_all_app_role_assignments("alice@example.com")

    assert result.success is True
    assert result.details["total_assignments"] == 2
    assert fake_directory.assignments["user-1"] == []


def test_revoke_absent_app_role_assignment_succeeds(service, alice):
    result = service.revoke_app_role_assignment("alice@example.com", "missing")
    assert result.success is True
    assert result.details["already_absent"] is True


def test_sign_out_uses_resolved_object_id(service, fake_directory, alice):
    result = service.revoke_sign_in_sessions("alice@example.com")

    assert result.success is True
    assert ("revoke_sign_in_sessions", ("user-1",)) in fake_directory.calls


def test_unconfirmed_sign_out_fails(service, fake_directory, alice):
    fake_directory.revoke_confirms = False
    result = service.revoke_sign_in_sessions("alice@example.com")
    assert result.success is False
    assert result.error == "Session revocation was not confirmed by the directory"


# ─────────────────────────────────────────────────────────────────────────────
# Full remediation
# ─────────────────────────────────────────────────────────────────────────────
def test_full_remediation_revokes_grants_before_sessions(service, fake_directory, alice):
    result = service.full_remediation("alice@example.com")

    assert result.success is True
    names = fake_directory.call_names()
    last_delete = max(index for index, name in enumerate(names) if name == "delete_oauth_grant")
    assert names.index("revoke_sign_in_sessions") > last_delete
    assert result.details["grants_success"] is True
    assert result.details["sessions_success"] is True
    assert len(result.outcomes) == 4


def test_full_remediation_fails_if_sessions_fail(service, fake_directory, alice):
    fake_directory.failures["revoke_sign_in_sessions"] = _permission_denied("revoke_sign_in_sessions")

    result = service.full_remediation("alice@example.com")

    assert result.success is False
    assert result.details["grants_success"] is True
    assert result.details["sessions_success"] is False
    assert result.details["sessions"]["required_permission"] == "User.RevokeSessions.All"


def test_is_user_disabled(service, alice):
    assert service.is_user_disabled("alice@example.com") is True
    assert service.is_user_disabled("ghost@example.com") is None
