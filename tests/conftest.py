"""Pytest shared fixtures."""
import json
import pathlib
import sys
import threading

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
import requests

from offboard.config import AppConfig
from offboard.core.graph import Identity, NotFoundError, OAuthGrant, ServicePrincipal
from scripts import audit


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch, request):
    """
    Prevent unit tests from reaching Microsoft Graph or the token endpoint.

    Tests that exercise the HTTP client replace these stubs with their own.
    Integration tests are marked with @pytest.mark.integration and skip this.
    """
    if request.node.get_closest_marker("integration"):
        return

    def _blocked(verb):
        def _stub(url, *args, **kwargs):
            raise RuntimeError(f"Unexpected HTTP {verb} in unit test: {url}")
        return _stub

    for verb in ("get", "post", "patch", "delete"):
        monkeypatch.setattr(requests, verb, _blocked(verb.upper()))


@pytest.fixture(autouse=True)
def _isolated_audit_log(monkeypatch, tmp_path):
    """Write audit events to a per-test directory."""
    audit_dir = tmp_path / "audit"
    monkeypatch.setattr(audit, "AUDIT_LOG_DIR", audit_dir)
    monkeypatch.setattr(audit, "AUDIT_LOG_FILE", audit_dir / "offboarding-events.jsonl")
    monkeypatch.setenv("AUDIT_LOG_SIGNING_KEY", "test-signing-key-for-audit-trail")
    return audit_dir


# ─────────────────────────────────────────────────────────────────────────────
# HTTP stubs
# ─────────────────────────────────────────────────────────────────────────────
class StubResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, payload=None, status_code: int = 200, headers=None):
        self._payload = payload
        self.status_code = status_code
        self.headers = headers or {}
        self.text = json.dumps(payload) if payload is not None else ""

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


def graph_error(status: int, code: str, message: str = "error", headers=None) -> StubResponse:
    return StubResponse({"error": {"code": code, "message": message}}, status_code=status, headers=headers)


# ─────────────────────────────────────────────────────────────────────────────
# In-memory directory
# ─────────────────────────────────────────────────────────────────────────────
class FakeDirectory:
    """GraphDirectory stand-in backed by dicts.

    ``failures`` maps a method name to an exception raised on every call.
    ``calls`` records (method, args) in call order.
    """

    def __init__(self):
        self.users = {}
        self.grants = {}
        self.assignments = {}
        self.sign_ins = {}
        self.devices = {}
        self.service_principals = {}
        self.failures = {}
        self.revoke_confirms = True
        self.calls = []
        self._lock = threading.RLock()

    # Setup helpers
    def add_user(self, principal, user_id, enabled=True, display_name=""):
        self.users[principal] = Identity(
            provider_id=user_id,
            principal_name=principal,
            display_name=display_name or principal.split("@")[0],
            enabled=enabled,
            mail=principal,
        )
        self.grants.setdefault(user_id, [])
        self.assignments.setdefault(user_id, [])
        return self.users[principal]

    def add_grant(self, user_id, grant_id, client_id, scope, consent_type="Principal"):
        grant = OAuthGrant(id=grant_id, client_id=client_id, resource_id="res-graph", scope=scope, consent_type=consent_type, principal_id=user_id)
        self.grants.setdefault(user_id, []).append(grant)
        return grant

    def add_service_principal(self, sp_id, app_id, display_name, app_roles=None):
        self.service_principals[sp_id] = ServicePrincipal(id=sp_id, app_id=app_id, display_name=display_name, app_roles=app_roles or {})

    def _record(self, name, *args):
        with self._lock:
            self.calls.append((name, args))
        failure = self.failures.get(name)
        if failure is not None:
            raise failure

    def call_names(self):
        return [name for name, _ in self.calls]

    # Contract
    def get_user_by_principal(self, principal):
        self._record("get_user_by_principal", principal)
        return self.users.get(principal)

    def list_users(self):
        self._record("list_users")
        return list(self.users.values())

    def list_user_oauth_grants(self, subject_id):
        self._record("list_user_oauth_grants", subject_id)
        return list(self.grants.get(subject_id, []))

    def delete_oauth_grant(self, grant_id):
        self._record("delete_oauth_grant", grant_id)
        with self._lock:
            for grants in self.grants.values():
                for grant in grants:
                    if grant.id == grant_id:
                        grants.remove(grant)
                        return True
        return False

    def update_oauth_grant_scopes(self, grant_id, scope):
        self._record("update_oauth_grant_scopes", grant_id, scope)
        with self._lock:
            for grants in self.grants.values():
                for grant in grants:
                    if grant.id == grant_id:
                        grant.scope = scope
                        return
        raise NotFoundError("update_oauth_grant_scopes", 404, "Request_ResourceNotFound", "grant not found")

    def list_user_app_role_assignments(self, subject_id):
        self._record("list_user_app_role_assignments", subject_id)
        return list(self.assignments.get(subject_id, []))

    def delete_app_role_assignment(self, subject_id, assignment_id):
        self._record("delete_app_role_assignment", subject_id, assignment_id)
        with self._lock:
            assignments = self.assignments.get(subject_id, [])
            for assignment in assignments:
                if assignment.id == assignment_id:
                    assignments.remove(assignment)
                    return True
        return False

    def revoke_sign_in_sessions(self, subject_id):
        self._record("revoke_sign_in_sessions", subject_id)
        return self.revoke_confirms

    def list_sign_ins(self, principal, days_back=30, top=50):
        self._record("list_sign_ins", principal)
        return list(self.sign_ins.get(principal, []))

    def list_registered_devices(self, subject_id):
        self._record("list_registered_devices", subject_id)
        return list(self.devices.get(subject_id, []))

    def get_service_principal(self, sp_id):
        self._record("get_service_principal", sp_id)
        return self.service_principals.get(sp_id)

    def find_service_principal_by_app_id(self, app_id):
        self._record("find_service_principal_by_app_id", app_id)
        for sp in self.service_principals.values():
            if sp.app_id == app_id:
                return sp
        return None


@pytest.fixture()
def fake_directory():
    return FakeDirectory()


@pytest.fixture()
def graph_config():
    """AppConfig with Graph credentials set."""
    return AppConfig(
        tenant_id="tenant-123",
        client_id="client-abc",
        client_secret="secret-xyz",
        max_retries=2,
        max_concurrency=4,
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (requires a live tenant)"
    )
